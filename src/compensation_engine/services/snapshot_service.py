"""Payslip snapshotter: persists resolved breakdowns as payslips."""

from __future__ import annotations

import hashlib
import json
from typing import Any, Iterable
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from compensation_engine.calculators.types import ComputedBreakdown, Proration
from compensation_engine.models import Payrun, Payslip


class PayslipSnapshotter:
    """Writes one payslip per (payrun, employee).

    Key invariants:
    1. A second write for the same employee overwrites the row in place, so
       the unique (payrun_id, employee_id) constraint is never hit.
    2. The calculation hash only depends on the employee, the period, the
       breakdown and the proration, so identical inputs hash identically.
    3. Frozen payslips are protected by the model's update guard.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_existing(self, payrun_id: UUID, employee_id: UUID) -> Payslip | None:
        result = await self.session.execute(
            select(Payslip)
            .where(
                Payslip.payrun_id == payrun_id,
                Payslip.employee_id == employee_id,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def write(
        self,
        payrun: Payrun,
        employee_id: UUID,
        breakdown: ComputedBreakdown,
        proration: Proration,
        status: str | None = None,
    ) -> Payslip:
        """Create or overwrite the payslip of an employee in a payrun.

        ``status`` defaults to the payrun's current status.
        """
        payslip = await self.get_existing(payrun.payrun_id, employee_id)
        if payslip is None:
            payslip = Payslip(
                tenant_id=payrun.tenant_id,
                payrun_id=payrun.payrun_id,
                employee_id=employee_id,
                period_month=payrun.period_month,
            )
            self.session.add(payslip)

        payslip.basic = breakdown.basic
        payslip.components = build_components_snapshot(breakdown, proration)
        payslip.allowances_total = breakdown.allowances_total
        payslip.gross_monthly = breakdown.gross_monthly
        payslip.gross_yearly = breakdown.gross_yearly
        payslip.deduction_employee = breakdown.deduction_employee
        payslip.deduction_employer = breakdown.deduction_employer
        payslip.fixed_deduction = breakdown.fixed_deduction
        payslip.net_salary = breakdown.net_salary
        payslip.payable_days = proration.payable_days
        payslip.total_working_days = proration.total_working_days
        payslip.attendance_days_amount = proration.attendance_days_amount
        payslip.paid_leave_days_amount = proration.paid_leave_days_amount
        payslip.calculation_hash = compute_calculation_hash(
            employee_id, payrun.period_month.isoformat(), breakdown, proration
        )
        payslip.status = status or payrun.status

        await self.session.flush()
        return payslip

    async def remove_stale(self, payrun: Payrun, keep_employee_ids: Iterable[UUID]) -> int:
        """Delete payslips of employees the latest compute did not produce.

        Returns count of deleted payslips.
        """
        keep = list(keep_employee_ids)
        stmt = delete(Payslip).where(Payslip.payrun_id == payrun.payrun_id)
        if keep:
            stmt = stmt.where(Payslip.employee_id.not_in(keep))
        result = await self.session.execute(stmt.execution_options(synchronize_session=False))
        return result.rowcount or 0


def build_components_snapshot(
    breakdown: ComputedBreakdown, proration: Proration
) -> dict[str, Any]:
    """JSON snapshot stored on the payslip: the breakdown plus proration figures."""
    snapshot = breakdown.to_canonical_dict()
    snapshot["warnings"] = list(breakdown.warnings)
    snapshot["present_days"] = str(proration.present_days)
    snapshot["paid_leave_days"] = str(proration.paid_leave_days)
    snapshot["daily_rate"] = str(proration.daily_rate)
    return snapshot


def compute_calculation_hash(
    employee_id: UUID,
    period: str,
    breakdown: ComputedBreakdown,
    proration: Proration,
) -> str:
    """Compute a deterministic hash of a payslip's inputs and results."""
    data = {
        "employee_id": str(employee_id),
        "period": period,
        "breakdown": breakdown.to_canonical_dict(),
        "proration": {
            "payable_days": str(proration.payable_days),
            "total_working_days": proration.total_working_days,
            "daily_rate": str(proration.daily_rate),
        },
    }
    json_str = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(json_str.encode()).hexdigest()
