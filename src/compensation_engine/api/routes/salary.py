"""Employee salary configuration endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path

from compensation_engine.api.dependencies import (
    ActorId,
    DbSession,
    SalaryServiceDep,
    TenantId,
)
from compensation_engine.api.schemas import (
    BreakdownResponse,
    ComponentRuleSchema,
    EmployeeSalaryResponse,
    ErrorResponse,
    SalaryUpdate,
)
from compensation_engine.calculators.types import RuleBasedConfig
from compensation_engine.services import EmployeeSalary

router = APIRouter(prefix="/employees", tags=["salary"])


def _salary_response(salary: EmployeeSalary) -> EmployeeSalaryResponse:
    config = salary.config
    rules = config.rules if isinstance(config, RuleBasedConfig) else {}
    return EmployeeSalaryResponse(
        employee_id=salary.employee_id,
        wage=config.wage,
        wage_type=config.wage_type.value,
        component_config={
            name: ComponentRuleSchema(type=rule.type, value=rule.value)
            for name, rule in rules.items()
        },
        deduction_rate=config.deduction_rate,
        fixed_deduction=config.fixed_deduction,
        effective_from=salary.configuration.created_at,
        breakdown=BreakdownResponse.model_validate(salary.breakdown),
    )


@router.get(
    "/{employee_id}/salary",
    response_model=EmployeeSalaryResponse,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def get_employee_salary(
    service: SalaryServiceDep,
    tenant_id: TenantId,
    employee_id: Annotated[UUID, Path()],
) -> EmployeeSalaryResponse:
    """Current salary configuration and its resolved breakdown."""
    salary = await service.get_employee_salary(tenant_id, employee_id)
    return _salary_response(salary)


@router.put(
    "/{employee_id}/salary",
    response_model=EmployeeSalaryResponse,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def update_salary_configuration(
    db: DbSession,
    service: SalaryServiceDep,
    tenant_id: TenantId,
    actor_id: ActorId,
    employee_id: Annotated[UUID, Path()],
    payload: SalaryUpdate,
) -> EmployeeSalaryResponse:
    """Store a new configuration version with the given changes applied."""
    changes = payload.model_dump(mode="json", exclude_none=True)
    salary = await service.update_salary_configuration(
        tenant_id, employee_id, changes, actor_id
    )
    await db.commit()
    return _salary_response(salary)
