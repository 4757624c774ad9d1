"""Working-day calendar and payable-day proration."""

from __future__ import annotations

import calendar
from datetime import date
from decimal import Decimal

from compensation_engine.calculators.money import ZERO, round_money
from compensation_engine.calculators.types import AttendanceSummary, Proration


def working_days_in_month(year: int, month: int, mon_to_fri: bool = True) -> int:
    """Count working days in a month; every calendar day when not Mon-Fri."""
    days_in_month = calendar.monthrange(year, month)[1]
    if not mon_to_fri:
        return days_in_month
    return sum(
        1 for day in range(1, days_in_month + 1) if date(year, month, day).weekday() < 5
    )


def prorate(gross_monthly: Decimal, summary: AttendanceSummary) -> Proration:
    """Split the monthly gross into attendance and paid-leave amounts."""
    if summary.total_working_days > 0:
        daily_rate = round_money(gross_monthly / Decimal(summary.total_working_days))
    else:
        daily_rate = ZERO

    return Proration(
        payable_days=summary.payable_days,
        total_working_days=summary.total_working_days,
        present_days=summary.present_days,
        paid_leave_days=summary.paid_leave_days,
        daily_rate=daily_rate,
        attendance_days_amount=round_money(daily_rate * summary.present_days),
        paid_leave_days_amount=round_money(daily_rate * summary.paid_leave_days),
    )
