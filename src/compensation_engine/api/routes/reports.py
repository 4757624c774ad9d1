"""Report endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Query

from compensation_engine.api.dependencies import StatementReconstructorDep, TenantId
from compensation_engine.api.schemas import (
    ErrorResponse,
    NetSalaryResponse,
    SalaryStatementResponse,
    StatementEmployeeResponse,
    StatementLineResponse,
)

router = APIRouter(prefix="/reports", tags=["reports"])


@router.get(
    "/salary-statement",
    response_model=SalaryStatementResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def salary_statement(
    reconstructor: StatementReconstructorDep,
    tenant_id: TenantId,
    employee_id: Annotated[UUID, Query()],
    year: Annotated[int, Query()],
) -> SalaryStatementResponse:
    """Annual salary statement, estimating months without a finalized payslip."""
    statement = await reconstructor.reconstruct(tenant_id, employee_id, year)
    return SalaryStatementResponse(
        employee=StatementEmployeeResponse.model_validate(statement.employee),
        year=statement.year,
        earnings=[StatementLineResponse.model_validate(line) for line in statement.earnings],
        deductions=[
            StatementLineResponse.model_validate(line) for line in statement.deductions
        ],
        net_salary=NetSalaryResponse(
            monthly=statement.net_monthly, yearly=statement.net_yearly
        ),
        estimated_months=statement.estimated_months,
        months_for_calculation=statement.months_for_calculation,
    )
