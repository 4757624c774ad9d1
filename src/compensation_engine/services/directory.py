"""Collaborators consumed by the lifecycle controller.

The employee directory and attendance source live outside this engine. The
protocols below are what the controller needs from them; the SQL directory
and the working-calendar attendance provider are the default adapters.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from compensation_engine.calculators.proration import working_days_in_month
from compensation_engine.calculators.types import AttendanceSummary
from compensation_engine.config import get_settings
from compensation_engine.models import Employee, WageConfiguration


class EmployeeDirectory(Protocol):
    """Source of employees and their wage configurations."""

    async def list_active_employees(self, tenant_id: UUID) -> list[Employee]:
        """Active employees of the tenant, in a stable order."""
        ...

    async def get_employee(self, tenant_id: UUID, employee_id: UUID) -> Employee | None:
        ...

    async def get_wage_configuration(
        self, tenant_id: UUID, employee_id: UUID
    ) -> WageConfiguration | None:
        """The authoritative (latest) configuration, or None."""
        ...


class AttendanceProvider(Protocol):
    """Source of payable-day counts."""

    async def get_payable_days(
        self, tenant_id: UUID, employee_id: UUID, period_month: date
    ) -> AttendanceSummary:
        ...


class SqlEmployeeDirectory:
    """EmployeeDirectory backed by the employee and wage_configuration tables."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_active_employees(self, tenant_id: UUID) -> list[Employee]:
        result = await self.session.execute(
            select(Employee)
            .where(Employee.tenant_id == tenant_id, Employee.status == "active")
            .order_by(Employee.name, Employee.employee_id)
        )
        return list(result.scalars().all())

    async def get_employee(self, tenant_id: UUID, employee_id: UUID) -> Employee | None:
        result = await self.session.execute(
            select(Employee).where(
                Employee.employee_id == employee_id,
                Employee.tenant_id == tenant_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_wage_configuration(
        self, tenant_id: UUID, employee_id: UUID
    ) -> WageConfiguration | None:
        result = await self.session.execute(
            select(WageConfiguration)
            .where(
                WageConfiguration.tenant_id == tenant_id,
                WageConfiguration.employee_id == employee_id,
            )
            .order_by(WageConfiguration.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()


class WorkingCalendarAttendance:
    """Attendance provider that treats every working day of the month as present.

    Used when no attendance system is connected; payable days then equal the
    working days of the period.
    """

    def __init__(self, mon_to_fri: bool | None = None):
        if mon_to_fri is None:
            mon_to_fri = get_settings().work_week_mon_to_fri
        self.mon_to_fri = mon_to_fri

    async def get_payable_days(
        self, tenant_id: UUID, employee_id: UUID, period_month: date
    ) -> AttendanceSummary:
        working_days = working_days_in_month(
            period_month.year, period_month.month, self.mon_to_fri
        )
        return AttendanceSummary(
            total_working_days=working_days,
            present_days=Decimal(working_days),
        )
