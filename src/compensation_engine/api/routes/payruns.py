"""Payrun API endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Query, status

from compensation_engine.api.dependencies import (
    ActorId,
    DbSession,
    PayrunServiceDep,
    TenantId,
)
from compensation_engine.api.schemas import (
    ComputeResponse,
    EmployeeIssueResponse,
    ErrorResponse,
    PayrollWarningsResponse,
    PayrunCreate,
    PayrunListResponse,
    PayrunResponse,
    PayslipListResponse,
    PayslipResponse,
)
from compensation_engine.services import PayrunStatus

router = APIRouter(tags=["payruns"])

ERROR_RESPONSES = {
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


# ============================================================================
# Payrun CRUD
# ============================================================================


@router.post(
    "/payruns",
    response_model=PayrunResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": ErrorResponse}},
)
async def create_payrun(
    db: DbSession,
    service: PayrunServiceDep,
    tenant_id: TenantId,
    actor_id: ActorId,
    payload: PayrunCreate,
) -> PayrunResponse:
    """Create a new payrun in draft status."""
    payrun = await service.create_payrun(tenant_id, payload.period_month, actor_id)
    await db.commit()
    return PayrunResponse.model_validate(payrun)


@router.get("/payruns", response_model=PayrunListResponse)
async def list_payruns(
    service: PayrunServiceDep,
    tenant_id: TenantId,
    status_filter: Annotated[PayrunStatus | None, Query(alias="status")] = None,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> PayrunListResponse:
    """List payruns for the tenant, newest period first."""
    payruns = await service.list_payruns(
        tenant_id,
        status=status_filter.value if status_filter else None,
        limit=limit,
        offset=offset,
    )
    return PayrunListResponse(
        items=[PayrunResponse.model_validate(p) for p in payruns],
        limit=limit,
        offset=offset,
    )


@router.get(
    "/payruns/{payrun_id}",
    response_model=PayrunResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_payrun(
    service: PayrunServiceDep,
    tenant_id: TenantId,
    payrun_id: Annotated[UUID, Path()],
) -> PayrunResponse:
    payrun = await service.get_payrun(tenant_id, payrun_id)
    return PayrunResponse.model_validate(payrun)


# ============================================================================
# Lifecycle
# ============================================================================


@router.post(
    "/payruns/{payrun_id}/compute",
    response_model=ComputeResponse,
    responses=ERROR_RESPONSES,
)
async def compute_payrun(
    db: DbSession,
    service: PayrunServiceDep,
    tenant_id: TenantId,
    actor_id: ActorId,
    payrun_id: Annotated[UUID, Path()],
) -> ComputeResponse:
    """Compute payslips for every active employee. Repeatable until validated."""
    result = await service.compute_payrun(tenant_id, payrun_id, actor_id)
    await db.commit()
    return ComputeResponse(
        payrun=PayrunResponse.model_validate(result.payrun),
        payslips_count=len(result.payslips),
        warnings=[EmployeeIssueResponse.model_validate(w) for w in result.warnings],
        errors=[EmployeeIssueResponse.model_validate(e) for e in result.errors],
    )


@router.post(
    "/payruns/{payrun_id}/validate",
    response_model=PayrunResponse,
    responses=ERROR_RESPONSES,
)
async def validate_payrun(
    db: DbSession,
    service: PayrunServiceDep,
    tenant_id: TenantId,
    actor_id: ActorId,
    payrun_id: Annotated[UUID, Path()],
) -> PayrunResponse:
    payrun = await service.validate_payrun(tenant_id, payrun_id, actor_id)
    await db.commit()
    return PayrunResponse.model_validate(payrun)


@router.post(
    "/payruns/{payrun_id}/finalize",
    response_model=PayrunResponse,
    responses=ERROR_RESPONSES,
)
async def finalize_payrun(
    db: DbSession,
    service: PayrunServiceDep,
    tenant_id: TenantId,
    actor_id: ActorId,
    payrun_id: Annotated[UUID, Path()],
) -> PayrunResponse:
    """Finalize a validated payrun. Its payslips become immutable."""
    payrun = await service.finalize_payrun(tenant_id, payrun_id, actor_id)
    await db.commit()
    return PayrunResponse.model_validate(payrun)


@router.post(
    "/payruns/{payrun_id}/cancel",
    response_model=PayrunResponse,
    responses=ERROR_RESPONSES,
)
async def cancel_payrun(
    db: DbSession,
    service: PayrunServiceDep,
    tenant_id: TenantId,
    actor_id: ActorId,
    payrun_id: Annotated[UUID, Path()],
) -> PayrunResponse:
    payrun = await service.cancel_payrun(tenant_id, payrun_id, actor_id)
    await db.commit()
    return PayrunResponse.model_validate(payrun)


@router.get(
    "/payruns/{payrun_id}/payslips",
    response_model=PayslipListResponse,
    responses={404: {"model": ErrorResponse}},
)
async def list_payslips(
    service: PayrunServiceDep,
    tenant_id: TenantId,
    payrun_id: Annotated[UUID, Path()],
) -> PayslipListResponse:
    payslips = await service.list_payslips(tenant_id, payrun_id)
    return PayslipListResponse(items=[PayslipResponse.model_validate(p) for p in payslips])


# ============================================================================
# Payslips
# ============================================================================


@router.get(
    "/payslips/{payslip_id}",
    response_model=PayslipResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_payslip(
    service: PayrunServiceDep,
    tenant_id: TenantId,
    payslip_id: Annotated[UUID, Path()],
) -> PayslipResponse:
    payslip = await service.get_payslip(tenant_id, payslip_id)
    return PayslipResponse.model_validate(payslip)


@router.post(
    "/payslips/{payslip_id}/recompute",
    response_model=PayslipResponse,
    responses=ERROR_RESPONSES,
)
async def recompute_payslip(
    db: DbSession,
    service: PayrunServiceDep,
    tenant_id: TenantId,
    actor_id: ActorId,
    payslip_id: Annotated[UUID, Path()],
) -> PayslipResponse:
    """Recompute a single payslip. Rejected once the payrun is done or cancelled."""
    payslip = await service.recompute_payslip(tenant_id, payslip_id, actor_id)
    await db.commit()
    return PayslipResponse.model_validate(payslip)


@router.get("/payroll/warnings", response_model=PayrollWarningsResponse)
async def payroll_warnings(
    service: PayrunServiceDep,
    tenant_id: TenantId,
) -> PayrollWarningsResponse:
    """Active employees missing a bank account or a manager."""
    warnings = await service.get_payroll_warnings(tenant_id)
    return PayrollWarningsResponse.model_validate(warnings.to_dict())
