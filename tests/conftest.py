"""Pytest fixtures for compensation engine tests."""

from __future__ import annotations

from decimal import Decimal

import pytest

from compensation_engine.config import Settings


@pytest.fixture
def settings() -> Settings:
    """Settings with the production defaults, independent of the environment."""
    return Settings(
        database_url="sqlite+aiosqlite://",
        engine_version="test",
        host="127.0.0.1",
        port=8000,
        debug=False,
        log_level="INFO",
        default_deduction_rate=Decimal("12.00"),
        default_fixed_deduction=Decimal("200.00"),
        conservation_tolerance=Decimal("1"),
        pf_wage_cap=Decimal("15000"),
        professional_tax_threshold=Decimal("15000"),
        statement_professional_tax=Decimal("200"),
        lock_timeout_seconds=5.0,
        work_week_mon_to_fri=True,
    )
