"""Lifecycle operations racing each other on the same payrun.

Every session of a test shares one in-memory connection, so a second session
sees the first one's flushed writes. Assertions run before any session of the
race is closed.
"""

import asyncio
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy import func, select, update

from compensation_engine.models import AuditEvent, Payrun, Payslip
from compensation_engine.services.directory import SqlEmployeeDirectory
from compensation_engine.services.payrun_service import PayrunService
from compensation_engine.services.state_machine import InvalidTransitionError, PayrunStatus

MARCH = date(2024, 3, 1)


class CancellingDirectory(SqlEmployeeDirectory):
    """Directory that cancels the payrun while the employee list is read."""

    def __init__(self, session, payrun_id):
        super().__init__(session)
        self.payrun_id = payrun_id

    async def list_active_employees(self, tenant_id):
        await self.session.execute(
            update(Payrun)
            .where(Payrun.payrun_id == self.payrun_id)
            .values(status=PayrunStatus.CANCELLED.value)
            .execution_options(synchronize_session=False)
        )
        return await super().list_active_employees(tenant_id)


@pytest.fixture
def service(session, settings) -> PayrunService:
    return PayrunService(session, settings=settings)


@pytest_asyncio.fixture
async def payrun(service, tenant, employee, manager):
    return await service.create_payrun(tenant.tenant_id, MARCH)


async def reload_payrun(session, payrun_id) -> Payrun:
    return await session.get(Payrun, payrun_id, populate_existing=True)


async def payslip_statuses(session, payrun_id) -> list[str]:
    result = await session.execute(select(Payslip.status).where(Payslip.payrun_id == payrun_id))
    return list(result.scalars().all())


class TestStatusCompareAndSwap:
    async def test_stale_status_is_rejected(self, session, service, tenant, payrun):
        await service.compute_payrun(tenant.tenant_id, payrun.payrun_id)
        await session.execute(
            update(Payrun)
            .where(Payrun.payrun_id == payrun.payrun_id)
            .values(status=PayrunStatus.CANCELLED.value)
            .execution_options(synchronize_session=False)
        )
        assert payrun.status == "computed"

        with pytest.raises(InvalidTransitionError) as exc_info:
            await service._transition(payrun, PayrunStatus.VALIDATED, validated_by=uuid4())

        assert exc_info.value.code == "INVALID_TRANSITION"
        assert exc_info.value.from_status == "cancelled"
        assert exc_info.value.to_status == "validated"

        stored = await reload_payrun(session, payrun.payrun_id)
        assert stored.status == "cancelled"
        assert stored.validated_by is None
        assert stored.validated_at is None

    async def test_compute_cancelled_midway_leaves_no_aggregates(
        self, session, settings, tenant, payrun
    ):
        tenant_id, payrun_id = tenant.tenant_id, payrun.payrun_id
        await session.commit()
        service = PayrunService(
            session, directory=CancellingDirectory(session, payrun_id), settings=settings
        )

        with pytest.raises(InvalidTransitionError) as exc_info:
            await service.compute_payrun(tenant_id, payrun_id)

        assert exc_info.value.from_status == "cancelled"
        assert exc_info.value.to_status == "computed"
        stored = await reload_payrun(session, payrun_id)
        assert stored.employees_count == 0
        assert stored.gross_total == Decimal("0")
        assert stored.net_total == Decimal("0")

        # The request's transaction is abandoned
        await session.rollback()
        stored = await reload_payrun(session, payrun_id)
        assert stored.status == "draft"
        assert await payslip_statuses(session, payrun_id) == []


class TestOverlappingOperations:
    async def test_overlapping_computes_are_serialized(
        self, session, session_factory, settings, tenant, payrun
    ):
        tenant_id, payrun_id = tenant.tenant_id, payrun.payrun_id
        await session.commit()

        async with session_factory() as first, session_factory() as second:
            results = await asyncio.gather(
                PayrunService(first, settings=settings).compute_payrun(tenant_id, payrun_id),
                PayrunService(second, settings=settings).compute_payrun(tenant_id, payrun_id),
            )

            assert all(result.success for result in results)
            assert all(len(result.payslips) == 2 for result in results)

            stored = await reload_payrun(first, payrun_id)
            assert stored.status == "computed"
            assert stored.employees_count == 2
            assert stored.gross_total == Decimal("130000.00")
            assert stored.net_total == Decimal("121800.00")
            assert await payslip_statuses(first, payrun_id) == ["computed", "computed"]

            computed_events = await first.scalar(
                select(func.count())
                .select_from(AuditEvent)
                .where(AuditEvent.entity_id == payrun_id, AuditEvent.action == "computed")
            )
            assert computed_events == 2

    @pytest.mark.parametrize(
        "prepare, winner_candidates",
        [
            (("compute",), ("validate_payrun", "cancel_payrun")),
            (("compute", "validate"), ("finalize_payrun", "cancel_payrun")),
        ],
    )
    async def test_transition_racing_cancel_has_one_winner(
        self,
        session,
        session_factory,
        service,
        settings,
        tenant,
        payrun,
        prepare,
        winner_candidates,
    ):
        tenant_id, payrun_id = tenant.tenant_id, payrun.payrun_id
        if "compute" in prepare:
            await service.compute_payrun(tenant_id, payrun_id)
        if "validate" in prepare:
            await service.validate_payrun(tenant_id, payrun_id)
        await session.commit()

        async with session_factory() as first, session_factory() as second:
            outcomes = await asyncio.gather(
                getattr(PayrunService(first, settings=settings), winner_candidates[0])(
                    tenant_id, payrun_id
                ),
                getattr(PayrunService(second, settings=settings), winner_candidates[1])(
                    tenant_id, payrun_id
                ),
                return_exceptions=True,
            )

            losers = [o for o in outcomes if isinstance(o, InvalidTransitionError)]
            winners = [o for o in outcomes if isinstance(o, Payrun)]
            assert len(losers) == 1
            assert len(winners) == 1

            final_status = winners[0].status
            assert losers[0].code == "INVALID_TRANSITION"
            assert losers[0].from_status == final_status

            stored = await reload_payrun(first, payrun_id)
            assert stored.status == final_status
            assert await payslip_statuses(first, payrun_id) == [final_status, final_status]

    async def test_recompute_after_concurrent_finalize_is_rejected(
        self,
        session,
        session_factory,
        service,
        settings,
        tenant,
        payrun,
        employee,
        make_wage_configuration,
    ):
        tenant_id, payrun_id = tenant.tenant_id, payrun.payrun_id
        result = await service.compute_payrun(tenant_id, payrun_id)
        payslip_id = next(
            p.payslip_id for p in result.payslips if p.employee_id == employee.employee_id
        )
        await service.validate_payrun(tenant_id, payrun_id)
        await session.commit()

        async with session_factory() as other:
            late = PayrunService(other, settings=settings)
            await late.get_payslip(tenant_id, payslip_id)
            seen = await late.get_payrun(tenant_id, payrun_id)
            assert seen.status == "validated"

            await service.finalize_payrun(tenant_id, payrun_id)
            await make_wage_configuration(employee, wage=Decimal("60000.00"))

            with pytest.raises(InvalidTransitionError) as exc_info:
                await late.recompute_payslip(tenant_id, payslip_id)

            assert exc_info.value.from_status == "done"
            assert exc_info.value.to_status == "recompute"

            stored = await reload_payrun(other, payrun_id)
            assert stored.status == "done"
            assert stored.gross_total == Decimal("130000.00")
            assert stored.net_total == Decimal("121800.00")
            net = await other.scalar(
                select(Payslip.net_salary).where(Payslip.payslip_id == payslip_id)
            )
            assert net == Decimal("46800.00")
