"""Tests for the payrun lifecycle controller."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy import select

from compensation_engine.calculators.types import AttendanceSummary
from compensation_engine.errors import NotFoundError, PayslipFrozenError
from compensation_engine.models import AuditEvent
from compensation_engine.services.directory import WorkingCalendarAttendance
from compensation_engine.services.payrun_service import DuplicatePayrunError, PayrunService
from compensation_engine.services.state_machine import InvalidTransitionError

MARCH = date(2024, 3, 1)


class FixedAttendance:
    """Attendance source reporting 18 present days and 1 paid leave day out of 20."""

    async def get_payable_days(self, tenant_id, employee_id, period_month):
        return AttendanceSummary(
            total_working_days=20,
            present_days=Decimal("18"),
            paid_leave_days=Decimal("1"),
            unpaid_leave_days=Decimal("1"),
        )


class BrokenAttendance:
    """Attendance source that fails for one employee."""

    def __init__(self, broken_employee_id):
        self.broken_employee_id = broken_employee_id
        self.calendar = WorkingCalendarAttendance(mon_to_fri=True)

    async def get_payable_days(self, tenant_id, employee_id, period_month):
        if employee_id == self.broken_employee_id:
            raise RuntimeError("attendance service unavailable")
        return await self.calendar.get_payable_days(tenant_id, employee_id, period_month)


@pytest.fixture
def service(session, settings) -> PayrunService:
    return PayrunService(session, settings=settings)


@pytest_asyncio.fixture
async def payrun(service, tenant, employee):
    return await service.create_payrun(tenant.tenant_id, MARCH)


async def audit_actions(session, entity_id) -> list[str]:
    result = await session.execute(
        select(AuditEvent.action)
        .where(AuditEvent.entity_id == entity_id)
        .order_by(AuditEvent.created_at)
    )
    return list(result.scalars().all())


class TestCreatePayrun:
    async def test_creates_draft_for_first_of_month(self, service, session, tenant):
        actor = uuid4()
        payrun = await service.create_payrun(tenant.tenant_id, date(2024, 3, 15), actor)

        assert payrun.status == "draft"
        assert payrun.period_month == MARCH
        assert payrun.created_by == actor
        assert payrun.employees_count == 0
        assert await audit_actions(session, payrun.payrun_id) == ["created"]

    async def test_duplicate_period_rejected(self, service, tenant):
        await service.create_payrun(tenant.tenant_id, MARCH)

        with pytest.raises(DuplicatePayrunError) as exc_info:
            await service.create_payrun(tenant.tenant_id, date(2024, 3, 20))

        assert exc_info.value.code == "PAYRUN_EXISTS"
        assert exc_info.value.status_code == 409

    async def test_cancelled_payrun_frees_the_period(self, service, tenant):
        first = await service.create_payrun(tenant.tenant_id, MARCH)
        await service.cancel_payrun(tenant.tenant_id, first.payrun_id)

        second = await service.create_payrun(tenant.tenant_id, MARCH)

        assert second.payrun_id != first.payrun_id
        assert second.status == "draft"

    async def test_other_tenant_cannot_see_payrun(self, service, tenant):
        payrun = await service.create_payrun(tenant.tenant_id, MARCH)
        with pytest.raises(NotFoundError):
            await service.get_payrun(uuid4(), payrun.payrun_id)


class TestComputePayrun:
    async def test_computes_every_active_employee(self, service, tenant, payrun, employee, manager):
        result = await service.compute_payrun(tenant.tenant_id, payrun.payrun_id)

        assert result.success
        assert result.payrun.status == "computed"
        assert result.payrun.employees_count == 2
        assert result.payrun.gross_total == Decimal("130000.00")
        assert result.payrun.net_total == Decimal("121800.00")

        payslip = next(p for p in result.payslips if p.employee_id == employee.employee_id)
        assert payslip.basic == Decimal("25000.00")
        assert payslip.allowances == {"hra": "10000.00", "fixedAllowance": "15000.00"}
        assert payslip.allowances_total == Decimal("25000.00")
        assert payslip.deduction_employee == Decimal("3000.00")
        assert payslip.deduction_employer == Decimal("3000.00")
        assert payslip.fixed_deduction == Decimal("200.00")
        assert payslip.net_salary == Decimal("46800.00")
        assert payslip.total_working_days == 21
        assert payslip.payable_days == Decimal("21")
        assert payslip.status == "computed"

    async def test_missing_manager_and_bank_account_are_warnings(
        self, service, tenant, make_employee, make_wage_configuration, manager, employee
    ):
        unbanked = await make_employee(
            "Ravi Kumar", bank_account=None, manager_id=manager.employee_id
        )
        await make_wage_configuration(unbanked, wage=Decimal("30000.00"))
        payrun = await service.create_payrun(tenant.tenant_id, MARCH)

        result = await service.compute_payrun(tenant.tenant_id, payrun.payrun_id)

        codes = {(w.employee_id, w.code) for w in result.warnings}
        assert codes == {
            (manager.employee_id, "MISSING_MANAGER"),
            (unbanked.employee_id, "MISSING_BANK_ACCOUNT"),
        }
        assert len(result.payslips) == 3

    async def test_unconfigured_employee_is_collected_not_fatal(
        self, service, tenant, make_employee, employee, manager
    ):
        newcomer = await make_employee("Zoya Khan", manager_id=manager.employee_id)
        payrun = await service.create_payrun(tenant.tenant_id, MARCH)

        result = await service.compute_payrun(tenant.tenant_id, payrun.payrun_id)

        assert not result.success
        assert [(e.employee_id, e.code) for e in result.errors] == [
            (newcomer.employee_id, "NOT_COMPUTABLE")
        ]
        assert {p.employee_id for p in result.payslips} == {
            employee.employee_id,
            manager.employee_id,
        }
        assert result.payrun.status == "computed"
        assert result.payrun.employees_count == 2

    async def test_unexpected_failure_is_isolated_to_the_employee(
        self, session, settings, tenant, payrun, employee, manager
    ):
        service = PayrunService(
            session, attendance=BrokenAttendance(manager.employee_id), settings=settings
        )

        result = await service.compute_payrun(tenant.tenant_id, payrun.payrun_id)

        assert [(e.employee_id, e.code) for e in result.errors] == [
            (manager.employee_id, "INTERNAL_ERROR")
        ]
        assert [p.employee_id for p in result.payslips] == [employee.employee_id]
        assert result.payrun.status == "computed"
        assert result.payrun.employees_count == 1
        assert result.payrun.net_total == Decimal("46800.00")

    async def test_oversized_rule_values_are_ignored(
        self, service, tenant, payrun, make_employee, make_wage_configuration, manager
    ):
        outlier = await make_employee("Vikram Shah", manager_id=manager.employee_id)
        await make_wage_configuration(
            outlier,
            component_config={
                "basic": {"type": "PERCENTAGE_OF_WAGE", "value": 50},
                "hra": {"type": "FIXED_AMOUNT", "value": "1e40"},
                "fixedAllowance": {"type": "REMAINING_AMOUNT"},
            },
        )

        result = await service.compute_payrun(tenant.tenant_id, payrun.payrun_id)

        assert result.success
        payslip = next(p for p in result.payslips if p.employee_id == outlier.employee_id)
        assert payslip.allowances == {"fixedAllowance": "25000.00"}
        assert len(result.payslips) == 3

    async def test_recompute_overwrites_in_place(self, service, tenant, payrun):
        first = await service.compute_payrun(tenant.tenant_id, payrun.payrun_id)
        first_ids = {p.employee_id: (p.payslip_id, p.calculation_hash) for p in first.payslips}

        second = await service.compute_payrun(tenant.tenant_id, payrun.payrun_id)

        assert {p.employee_id: (p.payslip_id, p.calculation_hash) for p in second.payslips} == first_ids
        assert second.payrun.gross_total == first.payrun.gross_total
        payslips = await service.list_payslips(tenant.tenant_id, payrun.payrun_id)
        assert len(payslips) == 2

    async def test_stale_payslips_are_removed(self, service, session, tenant, payrun, manager):
        await service.compute_payrun(tenant.tenant_id, payrun.payrun_id)
        manager.status = "inactive"
        await session.flush()

        result = await service.compute_payrun(tenant.tenant_id, payrun.payrun_id)

        payslips = await service.list_payslips(tenant.tenant_id, payrun.payrun_id)
        assert [p.employee_id for p in payslips] == [p.employee_id for p in result.payslips]
        assert len(payslips) == 1
        assert result.payrun.gross_total == Decimal("50000.00")

    async def test_proration_is_recorded_without_changing_net(
        self, session, settings, tenant, payrun, employee
    ):
        service = PayrunService(session, attendance=FixedAttendance(), settings=settings)

        result = await service.compute_payrun(tenant.tenant_id, payrun.payrun_id)

        payslip = next(p for p in result.payslips if p.employee_id == employee.employee_id)
        assert payslip.payable_days == Decimal("19")
        assert payslip.total_working_days == 20
        assert payslip.attendance_days_amount == Decimal("45000.00")
        assert payslip.paid_leave_days_amount == Decimal("2500.00")
        assert payslip.components["daily_rate"] == "2500.00"
        assert payslip.net_salary == Decimal("46800.00")

    async def test_compute_records_audit(self, service, session, tenant, payrun):
        await service.compute_payrun(tenant.tenant_id, payrun.payrun_id)
        assert set(await audit_actions(session, payrun.payrun_id)) == {"created", "computed"}


class TestTransitions:
    async def test_validate_requires_compute(self, service, tenant, payrun):
        with pytest.raises(InvalidTransitionError) as exc_info:
            await service.validate_payrun(tenant.tenant_id, payrun.payrun_id)

        assert exc_info.value.from_status == "draft"
        assert exc_info.value.to_status == "validated"

    async def test_full_lifecycle(self, service, session, tenant, payrun):
        actor = uuid4()
        await service.compute_payrun(tenant.tenant_id, payrun.payrun_id)

        validated = await service.validate_payrun(tenant.tenant_id, payrun.payrun_id, actor)
        assert validated.status == "validated"
        assert validated.validated_by == actor
        assert validated.validated_at is not None

        done = await service.finalize_payrun(tenant.tenant_id, payrun.payrun_id, actor)
        assert done.status == "done"
        assert done.finalized_at is not None

        payslips = await service.list_payslips(tenant.tenant_id, payrun.payrun_id)
        assert {p.status for p in payslips} == {"done"}
        assert set(await audit_actions(session, payrun.payrun_id)) == {
            "created",
            "computed",
            "status_change:computed:validated",
            "status_change:validated:done",
        }

    async def test_compute_after_validation_rejected(self, service, tenant, payrun):
        await service.compute_payrun(tenant.tenant_id, payrun.payrun_id)
        await service.validate_payrun(tenant.tenant_id, payrun.payrun_id)

        with pytest.raises(InvalidTransitionError):
            await service.compute_payrun(tenant.tenant_id, payrun.payrun_id)

    async def test_double_validate_rejected(self, service, tenant, payrun):
        await service.compute_payrun(tenant.tenant_id, payrun.payrun_id)
        await service.validate_payrun(tenant.tenant_id, payrun.payrun_id)

        with pytest.raises(InvalidTransitionError):
            await service.validate_payrun(tenant.tenant_id, payrun.payrun_id)

    async def test_done_is_terminal(self, service, tenant, payrun):
        await service.compute_payrun(tenant.tenant_id, payrun.payrun_id)
        await service.validate_payrun(tenant.tenant_id, payrun.payrun_id)
        await service.finalize_payrun(tenant.tenant_id, payrun.payrun_id)

        with pytest.raises(InvalidTransitionError):
            await service.cancel_payrun(tenant.tenant_id, payrun.payrun_id)
        with pytest.raises(InvalidTransitionError):
            await service.compute_payrun(tenant.tenant_id, payrun.payrun_id)

    async def test_cancel_keeps_payslips(self, service, tenant, payrun):
        await service.compute_payrun(tenant.tenant_id, payrun.payrun_id)

        cancelled = await service.cancel_payrun(tenant.tenant_id, payrun.payrun_id)

        assert cancelled.status == "cancelled"
        assert cancelled.cancelled_at is not None
        payslips = await service.list_payslips(tenant.tenant_id, payrun.payrun_id)
        assert len(payslips) == 2
        assert {p.status for p in payslips} == {"cancelled"}

    async def test_list_payruns_filters_by_status(self, service, tenant, payrun):
        other = await service.create_payrun(tenant.tenant_id, date(2024, 4, 1))
        await service.cancel_payrun(tenant.tenant_id, other.payrun_id)

        everything = await service.list_payruns(tenant.tenant_id)
        drafts = await service.list_payruns(tenant.tenant_id, status="draft")

        assert [p.period_month for p in everything] == [date(2024, 4, 1), MARCH]
        assert [p.payrun_id for p in drafts] == [payrun.payrun_id]


class TestFrozenPayslips:
    async def test_finalized_payslip_cannot_change(self, service, session, tenant, payrun):
        result = await service.compute_payrun(tenant.tenant_id, payrun.payrun_id)
        await service.validate_payrun(tenant.tenant_id, payrun.payrun_id)
        await service.finalize_payrun(tenant.tenant_id, payrun.payrun_id)

        payslip = await service.get_payslip(tenant.tenant_id, result.payslips[0].payslip_id)
        payslip.net_salary = Decimal("1.00")

        with pytest.raises(PayslipFrozenError) as exc_info:
            await session.flush()
        assert exc_info.value.code == "PAYSLIP_FROZEN"

    async def test_finalized_payslip_cannot_be_deleted(self, service, session, tenant, payrun):
        result = await service.compute_payrun(tenant.tenant_id, payrun.payrun_id)
        await service.validate_payrun(tenant.tenant_id, payrun.payrun_id)
        await service.finalize_payrun(tenant.tenant_id, payrun.payrun_id)

        payslip = await service.get_payslip(tenant.tenant_id, result.payslips[0].payslip_id)
        await session.delete(payslip)

        with pytest.raises(PayslipFrozenError):
            await session.flush()


class TestRecomputePayslip:
    async def test_recompute_applies_new_configuration(
        self, service, session, tenant, payrun, employee, make_wage_configuration
    ):
        result = await service.compute_payrun(tenant.tenant_id, payrun.payrun_id)
        await service.validate_payrun(tenant.tenant_id, payrun.payrun_id)
        original = next(p for p in result.payslips if p.employee_id == employee.employee_id)
        old_hash = original.calculation_hash
        await make_wage_configuration(employee, wage=Decimal("60000.00"))

        payslip = await service.recompute_payslip(tenant.tenant_id, original.payslip_id)

        assert payslip.payslip_id == original.payslip_id
        assert payslip.basic == Decimal("30000.00")
        assert payslip.net_salary == Decimal("56200.00")
        assert payslip.calculation_hash != old_hash
        assert payslip.status == "validated"

        refreshed = await service.get_payrun(tenant.tenant_id, payrun.payrun_id)
        assert refreshed.status == "validated"
        assert refreshed.gross_total == Decimal("140000.00")
        assert refreshed.net_total == Decimal("131200.00")
        assert await audit_actions(session, payslip.payslip_id) == ["recomputed"]

    async def test_recompute_rejected_after_finalize(self, service, tenant, payrun):
        result = await service.compute_payrun(tenant.tenant_id, payrun.payrun_id)
        await service.validate_payrun(tenant.tenant_id, payrun.payrun_id)
        await service.finalize_payrun(tenant.tenant_id, payrun.payrun_id)

        with pytest.raises(InvalidTransitionError) as exc_info:
            await service.recompute_payslip(tenant.tenant_id, result.payslips[0].payslip_id)
        assert exc_info.value.from_status == "done"

    async def test_recompute_rejected_after_cancel(self, service, tenant, payrun):
        result = await service.compute_payrun(tenant.tenant_id, payrun.payrun_id)
        await service.cancel_payrun(tenant.tenant_id, payrun.payrun_id)

        with pytest.raises(InvalidTransitionError):
            await service.recompute_payslip(tenant.tenant_id, result.payslips[0].payslip_id)

    async def test_unknown_payslip(self, service, tenant):
        with pytest.raises(NotFoundError):
            await service.recompute_payslip(tenant.tenant_id, uuid4())


class TestPayrollWarnings:
    async def test_counts_incomplete_records(self, service, tenant, make_employee, employee, manager):
        unbanked = await make_employee("Ravi Kumar", bank_account="", manager_id=manager.employee_id)
        await make_employee("Former Staff", status="inactive", bank_account=None)

        warnings = await service.get_payroll_warnings(tenant.tenant_id)

        assert warnings.without_bank_account == [unbanked.employee_id]
        assert warnings.without_manager == [manager.employee_id]
        body = warnings.to_dict()
        assert body["employees_without_bank_account"]["count"] == 1
        assert body["employees_without_manager"]["employee_ids"] == [str(manager.employee_id)]
