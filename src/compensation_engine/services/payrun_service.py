"""Payrun service - lifecycle controller for payroll cycles."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from compensation_engine.calculators.component_resolver import ComponentResolver
from compensation_engine.calculators.config_loader import load_wage_configuration
from compensation_engine.calculators.money import sum_money
from compensation_engine.calculators.proration import prorate
from compensation_engine.calculators.types import ComputedBreakdown, EmployeeIssue, Proration
from compensation_engine.config import Settings, get_settings
from compensation_engine.errors import (
    ConfigurationError,
    EngineError,
    InternalError,
    NotFoundError,
)
from compensation_engine.models import AuditEvent, Employee, Payrun, Payslip
from compensation_engine.models.base import utcnow
from compensation_engine.services.directory import (
    AttendanceProvider,
    EmployeeDirectory,
    SqlEmployeeDirectory,
    WorkingCalendarAttendance,
)
from compensation_engine.services.locking_service import LockingService
from compensation_engine.services.snapshot_service import PayslipSnapshotter
from compensation_engine.services.state_machine import (
    InvalidTransitionError,
    PayrunStateMachine,
    PayrunStatus,
)

logger = logging.getLogger(__name__)


class DuplicatePayrunError(EngineError):
    """Raised when a live payrun already exists for the tenant and month."""

    code = "PAYRUN_EXISTS"
    status_code = 409

    def __init__(self, tenant_id: UUID, period_month: date):
        self.tenant_id = tenant_id
        self.period_month = period_month
        super().__init__(
            f"A payrun for {period_month:%Y-%m} already exists",
            {"period_month": period_month.isoformat()},
        )


@dataclass
class ComputeResult:
    """Outcome of computing a payrun."""

    payrun: Payrun
    payslips: list[Payslip] = field(default_factory=list)
    warnings: list[EmployeeIssue] = field(default_factory=list)
    errors: list[EmployeeIssue] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors


@dataclass
class PayrollWarnings:
    """Active employees whose records would block or degrade payment."""

    without_bank_account: list[UUID] = field(default_factory=list)
    without_manager: list[UUID] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "employees_without_bank_account": {
                "count": len(self.without_bank_account),
                "employee_ids": [str(i) for i in self.without_bank_account],
            },
            "employees_without_manager": {
                "count": len(self.without_manager),
                "employee_ids": [str(i) for i in self.without_manager],
            },
        }


def employee_warnings(employee: Employee) -> list[EmployeeIssue]:
    """Non-fatal data problems that do not stop a payslip from being computed."""
    issues = []
    if not employee.bank_account:
        issues.append(
            EmployeeIssue(
                employee.employee_id,
                "MISSING_BANK_ACCOUNT",
                f"Employee {employee.name} has no bank account on file",
            )
        )
    if employee.manager_id is None:
        issues.append(
            EmployeeIssue(
                employee.employee_id,
                "MISSING_MANAGER",
                f"Employee {employee.name} has no manager assigned",
            )
        )
    return issues


class PayrunService:
    """Service for managing payrun lifecycle.

    Operations:
    - create_payrun: open a draft payrun for a month
    - compute_payrun: resolve and snapshot every active employee
    - validate_payrun / finalize_payrun: move forward, freezing at done
    - cancel_payrun: abandon a payrun that is not yet done
    - recompute_payslip: re-resolve a single employee
    """

    def __init__(
        self,
        session: AsyncSession,
        directory: EmployeeDirectory | None = None,
        attendance: AttendanceProvider | None = None,
        settings: Settings | None = None,
    ):
        self.session = session
        self.settings = settings or get_settings()
        self.directory = directory or SqlEmployeeDirectory(session)
        self.attendance = attendance or WorkingCalendarAttendance(
            self.settings.work_week_mon_to_fri
        )
        self.resolver = ComponentResolver(self.settings.conservation_tolerance)
        self.locking_service = LockingService(session, self.settings.lock_timeout_seconds)
        self.snapshotter = PayslipSnapshotter(session)

    # ----- Queries -----

    async def get_payrun(self, tenant_id: UUID, payrun_id: UUID) -> Payrun:
        """Load a payrun, raising NotFoundError if absent for the tenant."""
        result = await self.session.execute(
            select(Payrun)
            .where(Payrun.payrun_id == payrun_id, Payrun.tenant_id == tenant_id)
            .execution_options(populate_existing=True)
        )
        payrun = result.scalar_one_or_none()
        if payrun is None:
            raise NotFoundError("Payrun", payrun_id)
        return payrun

    async def list_payruns(
        self,
        tenant_id: UUID,
        status: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Payrun]:
        """List payruns, newest period first."""
        stmt = select(Payrun).where(Payrun.tenant_id == tenant_id)
        if status:
            stmt = stmt.where(Payrun.status == status)
        stmt = (
            stmt.order_by(Payrun.period_month.desc(), Payrun.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_payslips(self, tenant_id: UUID, payrun_id: UUID) -> list[Payslip]:
        await self.get_payrun(tenant_id, payrun_id)
        result = await self.session.execute(
            select(Payslip)
            .where(Payslip.payrun_id == payrun_id, Payslip.tenant_id == tenant_id)
            .order_by(Payslip.employee_id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def get_payslip(self, tenant_id: UUID, payslip_id: UUID) -> Payslip:
        result = await self.session.execute(
            select(Payslip)
            .where(Payslip.payslip_id == payslip_id, Payslip.tenant_id == tenant_id)
            .execution_options(populate_existing=True)
        )
        payslip = result.scalar_one_or_none()
        if payslip is None:
            raise NotFoundError("Payslip", payslip_id)
        return payslip

    async def get_payroll_warnings(self, tenant_id: UUID) -> PayrollWarnings:
        """Active employees missing a bank account or a manager."""
        warnings = PayrollWarnings()
        for employee in await self.directory.list_active_employees(tenant_id):
            if not employee.bank_account:
                warnings.without_bank_account.append(employee.employee_id)
            if employee.manager_id is None:
                warnings.without_manager.append(employee.employee_id)
        return warnings

    # ----- Lifecycle -----

    async def create_payrun(
        self,
        tenant_id: UUID,
        period_month: date,
        actor_user_id: UUID | None = None,
    ) -> Payrun:
        """Open a draft payrun for the month containing ``period_month``.

        Raises:
            DuplicatePayrunError: If a non-cancelled payrun exists for the month
        """
        period_month = period_month.replace(day=1)

        existing = await self.session.execute(
            select(Payrun.payrun_id).where(
                Payrun.tenant_id == tenant_id,
                Payrun.period_month == period_month,
                Payrun.status != PayrunStatus.CANCELLED.value,
            )
        )
        if existing.first() is not None:
            raise DuplicatePayrunError(tenant_id, period_month)

        payrun = Payrun(
            tenant_id=tenant_id,
            period_month=period_month,
            status=PayrunStatus.DRAFT.value,
            created_by=actor_user_id,
        )
        self.session.add(payrun)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            # Lost a race with a concurrent create for the same month
            raise DuplicatePayrunError(tenant_id, period_month) from exc

        await self._record_audit(
            tenant_id,
            "payrun",
            payrun.payrun_id,
            "created",
            actor_user_id,
            after={"period_month": period_month.isoformat()},
        )
        logger.info("Created payrun %s for %s", payrun.payrun_id, period_month)
        return payrun

    async def compute_payrun(
        self,
        tenant_id: UUID,
        payrun_id: UUID,
        actor_user_id: UUID | None = None,
    ) -> ComputeResult:
        """Compute payslips for every active employee.

        Per-employee configuration failures are collected in the result's
        errors and do not abort the run. Payslips of employees who are no
        longer produced are removed, aggregates are rebuilt from the payslips
        written and the payrun moves to computed.
        """
        async with self.locking_service.payrun_lock(tenant_id, payrun_id) as payrun:
            if not PayrunStateMachine.can_compute(payrun.status):
                raise InvalidTransitionError(
                    payrun.status,
                    PayrunStatus.COMPUTED,
                    f"a {payrun.status} payrun cannot be computed",
                )

            result = ComputeResult(payrun=payrun)
            employees = await self.directory.list_active_employees(tenant_id)

            for employee in employees:
                result.warnings.extend(employee_warnings(employee))
                try:
                    breakdown, proration = await self._compute_employee(
                        payrun, employee.employee_id
                    )
                except EngineError as exc:
                    logger.warning(
                        "Payrun %s: employee %s not computable: %s",
                        payrun_id,
                        employee.employee_id,
                        exc.message,
                    )
                    result.errors.append(
                        EmployeeIssue(employee.employee_id, exc.code, exc.message)
                    )
                    continue
                except Exception:
                    logger.exception(
                        "Payrun %s: unexpected failure computing employee %s",
                        payrun_id,
                        employee.employee_id,
                    )
                    result.errors.append(
                        EmployeeIssue(
                            employee.employee_id,
                            InternalError.code,
                            "Unexpected error while computing this employee",
                        )
                    )
                    continue

                for message in breakdown.warnings:
                    result.warnings.append(
                        EmployeeIssue(employee.employee_id, "OVER_ALLOCATED", message)
                    )
                payslip = await self.snapshotter.write(
                    payrun,
                    employee.employee_id,
                    breakdown,
                    proration,
                    status=PayrunStatus.COMPUTED.value,
                )
                result.payslips.append(payslip)

            removed = await self.snapshotter.remove_stale(
                payrun, [p.employee_id for p in result.payslips]
            )

            await self._transition(
                payrun,
                PayrunStatus.COMPUTED,
                employees_count=len(result.payslips),
                gross_total=sum_money(p.gross_monthly for p in result.payslips),
                net_total=sum_money(p.net_salary for p in result.payslips),
            )
            await self._record_audit(
                tenant_id,
                "payrun",
                payrun_id,
                "computed",
                actor_user_id,
                after={
                    "employees_count": payrun.employees_count,
                    "gross_total": str(payrun.gross_total),
                    "net_total": str(payrun.net_total),
                    "errors": [issue.to_dict() for issue in result.errors],
                    "removed_payslips": removed,
                },
            )

        logger.info(
            "Computed payrun %s: %d payslips, %d warnings, %d errors",
            payrun_id,
            len(result.payslips),
            len(result.warnings),
            len(result.errors),
        )
        return result

    async def validate_payrun(
        self,
        tenant_id: UUID,
        payrun_id: UUID,
        actor_user_id: UUID | None = None,
    ) -> Payrun:
        """Move a computed payrun to validated without recomputing."""
        return await self._apply_transition(
            tenant_id,
            payrun_id,
            PayrunStatus.VALIDATED,
            actor_user_id,
            validated_by=actor_user_id,
            validated_at=utcnow(),
        )

    async def finalize_payrun(
        self,
        tenant_id: UUID,
        payrun_id: UUID,
        actor_user_id: UUID | None = None,
    ) -> Payrun:
        """Move a validated payrun to done. Its payslips become immutable."""
        return await self._apply_transition(
            tenant_id,
            payrun_id,
            PayrunStatus.DONE,
            actor_user_id,
            finalized_at=utcnow(),
        )

    async def cancel_payrun(
        self,
        tenant_id: UUID,
        payrun_id: UUID,
        actor_user_id: UUID | None = None,
    ) -> Payrun:
        """Cancel a payrun that has not been finalized. Payslips are kept."""
        return await self._apply_transition(
            tenant_id,
            payrun_id,
            PayrunStatus.CANCELLED,
            actor_user_id,
            cancelled_at=utcnow(),
        )

    async def recompute_payslip(
        self,
        tenant_id: UUID,
        payslip_id: UUID,
        actor_user_id: UUID | None = None,
    ) -> Payslip:
        """Re-resolve one payslip and adjust the payrun totals by the difference.

        The parent status is read under the payrun lock, so a payrun finalized
        by a concurrent request is seen here.
        """
        payslip = await self.get_payslip(tenant_id, payslip_id)

        async with self.locking_service.payrun_lock(tenant_id, payslip.payrun_id) as payrun:
            if not PayrunStateMachine.can_recompute_payslip(payrun.status):
                raise InvalidTransitionError(
                    payrun.status,
                    "recompute",
                    f"payslips of a {payrun.status} payrun cannot be recomputed",
                )

            old_gross = payslip.gross_monthly
            old_net = payslip.net_salary
            old_hash = payslip.calculation_hash

            breakdown, proration = await self._compute_employee(payrun, payslip.employee_id)
            payslip = await self.snapshotter.write(
                payrun,
                payslip.employee_id,
                breakdown,
                proration,
                status=payrun.status,
            )

            payrun.gross_total = payrun.gross_total + (payslip.gross_monthly - old_gross)
            payrun.net_total = payrun.net_total + (payslip.net_salary - old_net)
            await self.session.flush()

            await self._record_audit(
                tenant_id,
                "payslip",
                payslip.payslip_id,
                "recomputed",
                actor_user_id,
                before={"calculation_hash": old_hash, "net_salary": str(old_net)},
                after={
                    "calculation_hash": payslip.calculation_hash,
                    "net_salary": str(payslip.net_salary),
                },
            )

        logger.info("Recomputed payslip %s in payrun %s", payslip_id, payslip.payrun_id)
        return payslip

    # ----- Internals -----

    async def _compute_employee(
        self, payrun: Payrun, employee_id: UUID
    ) -> tuple[ComputedBreakdown, Proration]:
        row = await self.directory.get_wage_configuration(payrun.tenant_id, employee_id)
        if row is None:
            raise ConfigurationError(employee_id, "no wage configuration")

        config = load_wage_configuration(row, self.settings)
        breakdown = self.resolver.resolve_config(config)
        summary = await self.attendance.get_payable_days(
            payrun.tenant_id, employee_id, payrun.period_month
        )
        return breakdown, prorate(breakdown.gross_monthly, summary)

    async def _apply_transition(
        self,
        tenant_id: UUID,
        payrun_id: UUID,
        to_status: PayrunStatus,
        actor_user_id: UUID | None,
        **values: Any,
    ) -> Payrun:
        async with self.locking_service.payrun_lock(tenant_id, payrun_id) as payrun:
            from_status = payrun.status
            await self._transition(payrun, to_status, **values)
            await self._mirror_payslip_status(payrun)
            await self._record_audit(
                tenant_id,
                "payrun",
                payrun_id,
                f"status_change:{from_status}:{to_status.value}",
                actor_user_id,
                before={"status": from_status},
                after={"status": to_status.value},
            )

        logger.info("Payrun %s moved from %s to %s", payrun_id, from_status, to_status.value)
        return payrun

    async def _transition(
        self,
        payrun: Payrun,
        to_status: PayrunStatus,
        **values: Any,
    ) -> None:
        """Compare-and-swap the payrun status.

        Raises InvalidTransitionError if the transition is not allowed or the
        stored status no longer matches what was read.
        """
        from_status = payrun.status
        PayrunStateMachine.validate_transition(from_status, to_status)

        result = await self.session.execute(
            update(Payrun)
            .where(
                Payrun.payrun_id == payrun.payrun_id,
                Payrun.tenant_id == payrun.tenant_id,
                Payrun.status == from_status,
            )
            .values(status=to_status.value, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        await self.session.refresh(payrun)

        if result.rowcount == 0:
            raise InvalidTransitionError(
                payrun.status,
                to_status,
                "status changed by a concurrent request",
            )

    async def _mirror_payslip_status(self, payrun: Payrun) -> None:
        await self.session.execute(
            update(Payslip)
            .where(Payslip.payrun_id == payrun.payrun_id)
            .values(status=payrun.status, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )

    async def _record_audit(
        self,
        tenant_id: UUID,
        entity_type: str,
        entity_id: UUID,
        action: str,
        actor_user_id: UUID | None = None,
        before: dict | None = None,
        after: dict | None = None,
    ) -> None:
        """Record an audit event."""
        event = AuditEvent(
            tenant_id=tenant_id,
            actor_user_id=actor_user_id,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            before_json=before,
            after_json=after,
        )
        self.session.add(event)
        await self.session.flush()
