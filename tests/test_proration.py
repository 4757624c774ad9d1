"""Tests for working days and proration."""

from decimal import Decimal

import pytest

from compensation_engine.calculators.proration import prorate, working_days_in_month
from compensation_engine.calculators.types import AttendanceSummary


class TestWorkingDays:
    @pytest.mark.parametrize(
        "year,month,expected",
        [
            (2024, 1, 23),
            (2024, 2, 21),
            (2024, 6, 20),
            (2025, 3, 21),
        ],
    )
    def test_weekdays(self, year, month, expected):
        assert working_days_in_month(year, month) == expected

    def test_calendar_days(self):
        assert working_days_in_month(2024, 2, mon_to_fri=False) == 29


class TestProrate:
    def test_splits_attendance_and_paid_leave(self):
        summary = AttendanceSummary(
            total_working_days=20,
            present_days=Decimal("17"),
            paid_leave_days=Decimal("2"),
            unpaid_leave_days=Decimal("1"),
        )

        proration = prorate(Decimal("50000.00"), summary)

        assert proration.daily_rate == Decimal("2500.00")
        assert proration.payable_days == Decimal("19")
        assert proration.attendance_days_amount == Decimal("42500.00")
        assert proration.paid_leave_days_amount == Decimal("5000.00")

    def test_no_working_days(self):
        proration = prorate(Decimal("50000.00"), AttendanceSummary(0, Decimal("0")))
        assert proration.daily_rate == Decimal("0.00")
        assert proration.attendance_days_amount == Decimal("0.00")
