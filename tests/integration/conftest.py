"""Integration test fixtures with a real (in-memory SQLite) database."""

from __future__ import annotations

from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any
from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from compensation_engine.database import make_session_factory
from compensation_engine.models import Base, Employee, Tenant, WageConfiguration

# In-memory SQLite shared by every session of a test through a single connection
TEST_DATABASE_URL = "sqlite+aiosqlite://"

# The 50,000 wage configuration used throughout the tests
STANDARD_RULES: dict[str, Any] = {
    "basic": {"type": "PERCENTAGE_OF_WAGE", "value": 50},
    "hra": {"type": "PERCENTAGE_OF_BASIC", "value": 40},
    "fixedAllowance": {"type": "REMAINING_AMOUNT"},
}


@pytest_asyncio.fixture
async def engine():
    """Create test database engine with the schema in place."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest_asyncio.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def tenant(session: AsyncSession) -> Tenant:
    """Create a test tenant."""
    tenant = Tenant(tenant_id=uuid4(), name="Acme Industries")
    session.add(tenant)
    await session.flush()
    return tenant


@pytest.fixture
def make_employee(session: AsyncSession, tenant: Tenant) -> Callable[..., Awaitable[Employee]]:
    """Factory for employees; complete records unless overridden."""

    async def _make(name: str = "Asha Rao", **overrides: Any) -> Employee:
        values: dict[str, Any] = {
            "employee_id": uuid4(),
            "tenant_id": tenant.tenant_id,
            "name": name,
            "title": "Engineer",
            "join_date": date(2022, 4, 1),
            "status": "active",
            "bank_account": "HDFC-000123",
            "manager_id": None,
        }
        values.update(overrides)
        employee = Employee(**values)
        session.add(employee)
        await session.flush()
        return employee

    return _make


@pytest.fixture
def make_wage_configuration(
    session: AsyncSession, tenant: Tenant
) -> Callable[..., Awaitable[WageConfiguration]]:
    """Factory for wage configurations; each call is a newer version than the last."""
    counter = {"n": 0}

    async def _make(employee: Employee, **overrides: Any) -> WageConfiguration:
        counter["n"] += 1
        values: dict[str, Any] = {
            "tenant_id": tenant.tenant_id,
            "employee_id": employee.employee_id,
            "wage": Decimal("50000.00"),
            "wage_type": "FIXED",
            "component_config": STANDARD_RULES,
            "deduction_rate": Decimal("12.00"),
            "fixed_deduction": Decimal("200.00"),
            "created_at": datetime(2023, 1, 1, tzinfo=timezone.utc)
            + timedelta(days=counter["n"]),
        }
        values.update(overrides)
        row = WageConfiguration(**values)
        session.add(row)
        await session.flush()
        return row

    return _make


@pytest_asyncio.fixture
async def manager(make_employee, make_wage_configuration) -> Employee:
    """Top of the reporting line: no manager of their own, wage 80,000."""
    manager = await make_employee("Meera Iyer", title="Engineering Manager")
    await make_wage_configuration(manager, wage=Decimal("80000.00"))
    return manager


@pytest_asyncio.fixture
async def employee(make_employee, make_wage_configuration, manager) -> Employee:
    """An active employee with a manager, a bank account and the standard configuration."""
    employee = await make_employee("Asha Rao", manager_id=manager.employee_id)
    await make_wage_configuration(employee)
    return employee
