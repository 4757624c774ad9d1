"""Pydantic schemas for API request/response models.

Amounts are Decimal and serialize as strings; percentages are 0-100.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from compensation_engine.calculators.money import MAX_AMOUNT
from compensation_engine.calculators.types import ComponentRuleType

# ============================================================================
# Payrun schemas
# ============================================================================


class PayrunCreate(BaseModel):
    """Schema for creating a new payrun. Any day of the month may be given."""

    period_month: date


class PayrunResponse(BaseModel):
    """Schema for payrun response."""

    model_config = ConfigDict(from_attributes=True)

    payrun_id: UUID
    tenant_id: UUID
    period_month: date
    status: str
    employees_count: int
    gross_total: Decimal
    net_total: Decimal
    created_by: UUID | None = None
    validated_by: UUID | None = None
    validated_at: datetime | None = None
    finalized_at: datetime | None = None
    cancelled_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class PayrunListResponse(BaseModel):
    """Schema for listing payruns."""

    items: list[PayrunResponse]
    limit: int
    offset: int


class EmployeeIssueResponse(BaseModel):
    """A warning or error raised for one employee during compute."""

    model_config = ConfigDict(from_attributes=True)

    employee_id: UUID
    code: str
    message: str


class ComputeResponse(BaseModel):
    """Schema for compute response."""

    payrun: PayrunResponse
    payslips_count: int
    warnings: list[EmployeeIssueResponse]
    errors: list[EmployeeIssueResponse]


# ============================================================================
# Payslip schemas
# ============================================================================


class PayslipResponse(BaseModel):
    """Schema for payslip response."""

    model_config = ConfigDict(from_attributes=True)

    payslip_id: UUID
    payrun_id: UUID
    employee_id: UUID
    period_month: date
    status: str
    basic: Decimal
    allowances: dict[str, Decimal]
    allowances_total: Decimal
    gross_monthly: Decimal
    gross_yearly: Decimal
    deduction_employee: Decimal
    deduction_employer: Decimal
    fixed_deduction: Decimal
    net_salary: Decimal
    payable_days: Decimal
    total_working_days: int
    attendance_days_amount: Decimal
    paid_leave_days_amount: Decimal
    calculation_hash: str


class PayslipListResponse(BaseModel):
    items: list[PayslipResponse]


# ============================================================================
# Salary configuration schemas
# ============================================================================


class ComponentRuleSchema(BaseModel):
    """One component's resolution rule."""

    model_config = ConfigDict(from_attributes=True)

    type: ComponentRuleType
    value: Decimal = Field(default=Decimal("0"), ge=0, le=MAX_AMOUNT)


class SalaryUpdate(BaseModel):
    """Changes to apply over the current configuration. Omitted fields are kept."""

    wage: Decimal | None = Field(default=None, gt=0, le=MAX_AMOUNT)
    wage_type: Literal["FIXED"] | None = None
    component_config: dict[str, ComponentRuleSchema] | None = None
    deduction_rate: Decimal | None = Field(default=None, ge=0, le=100)
    fixed_deduction: Decimal | None = Field(default=None, ge=0, le=MAX_AMOUNT)


class BreakdownResponse(BaseModel):
    """Resolved salary breakdown."""

    model_config = ConfigDict(from_attributes=True)

    basic: Decimal
    allowances: dict[str, Decimal]
    allowances_total: Decimal
    gross_monthly: Decimal
    gross_yearly: Decimal
    deduction_employee: Decimal
    deduction_employer: Decimal
    fixed_deduction: Decimal
    net_salary: Decimal
    legacy: bool
    over_allocated: bool
    warnings: list[str]


class EmployeeSalaryResponse(BaseModel):
    """Current salary configuration with its breakdown."""

    employee_id: UUID
    wage: Decimal | None
    wage_type: str
    component_config: dict[str, ComponentRuleSchema]
    deduction_rate: Decimal
    fixed_deduction: Decimal
    effective_from: datetime
    breakdown: BreakdownResponse


# ============================================================================
# Report schemas
# ============================================================================


class StatementLineResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    key: str
    monthly_average: Decimal
    yearly_total: Decimal


class StatementEmployeeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    employee_id: UUID
    name: str
    title: str | None = None
    date_of_joining: date | None = None
    salary_effective_from: date | None = None


class NetSalaryResponse(BaseModel):
    monthly: Decimal
    yearly: Decimal


class SalaryStatementResponse(BaseModel):
    """Annual salary statement."""

    employee: StatementEmployeeResponse
    year: int
    earnings: list[StatementLineResponse]
    deductions: list[StatementLineResponse]
    net_salary: NetSalaryResponse
    estimated_months: list[str]
    months_for_calculation: int


class WarningGroupResponse(BaseModel):
    count: int
    employee_ids: list[UUID]


class PayrollWarningsResponse(BaseModel):
    """Employees whose records need attention before payment."""

    employees_without_bank_account: WarningGroupResponse
    employees_without_manager: WarningGroupResponse


# ============================================================================
# Error schemas
# ============================================================================


class ErrorBody(BaseModel):
    code: str
    message: str
    details: dict[str, Any] | None = None


class ErrorResponse(BaseModel):
    """Schema for error response."""

    error: ErrorBody
