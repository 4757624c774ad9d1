"""Type definitions for the compensation resolution pipeline."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Union
from uuid import UUID

BASIC = "basic"
CATCH_ALL = "fixedAllowance"

# Named components resolved between basic and the catch-all, in this order.
CANONICAL_COMPONENT_ORDER: tuple[str, ...] = (
    "hra",
    "standardAllowance",
    "performanceBonus",
    "lta",
)


class ComponentRuleType(str, Enum):
    """How a salary component derives its amount."""

    PERCENTAGE_OF_WAGE = "PERCENTAGE_OF_WAGE"
    PERCENTAGE_OF_BASIC = "PERCENTAGE_OF_BASIC"
    FIXED_AMOUNT = "FIXED_AMOUNT"
    REMAINING_AMOUNT = "REMAINING_AMOUNT"


class WageType(str, Enum):
    """Wage basis. Only fixed monthly wages are supported."""

    FIXED = "FIXED"


@dataclass(frozen=True)
class ComponentRule:
    """A single component's resolution rule."""

    type: ComponentRuleType
    value: Decimal = Decimal("0")

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "value": str(self.value)}


@dataclass(frozen=True)
class RuleBasedConfig:
    """Wage configuration driven by component rules."""

    wage: Decimal
    rules: dict[str, ComponentRule]
    deduction_rate: Decimal
    fixed_deduction: Decimal
    employee_id: UUID | None = None
    wage_type: WageType = WageType.FIXED


@dataclass(frozen=True)
class LegacyConfig:
    """Wage configuration stored as a fixed basic plus named allowances."""

    wage: Decimal | None
    basic: Decimal
    allowances: dict[str, Decimal]
    deduction_rate: Decimal
    fixed_deduction: Decimal
    employee_id: UUID | None = None
    wage_type: WageType = WageType.FIXED


LoadedConfig = Union[RuleBasedConfig, LegacyConfig]


@dataclass(frozen=True)
class ComputedBreakdown:
    """Itemized result of resolving one wage configuration."""

    basic: Decimal
    allowances: dict[str, Decimal]
    gross_monthly: Decimal
    gross_yearly: Decimal
    deduction_employee: Decimal
    deduction_employer: Decimal
    fixed_deduction: Decimal
    net_salary: Decimal
    legacy: bool = False
    over_allocated: bool = False
    warnings: tuple[str, ...] = ()

    @property
    def allowances_total(self) -> Decimal:
        return sum(self.allowances.values(), Decimal("0.00"))

    @property
    def components_total(self) -> Decimal:
        return self.basic + self.allowances_total

    def to_canonical_dict(self) -> dict[str, Any]:
        """Return canonical dict for hashing and JSON snapshots."""
        return {
            "basic": str(self.basic),
            "allowances": {name: str(amount) for name, amount in self.allowances.items()},
            "gross_monthly": str(self.gross_monthly),
            "gross_yearly": str(self.gross_yearly),
            "deduction_employee": str(self.deduction_employee),
            "deduction_employer": str(self.deduction_employer),
            "fixed_deduction": str(self.fixed_deduction),
            "net_salary": str(self.net_salary),
            "legacy": self.legacy,
            "over_allocated": self.over_allocated,
        }

    def fingerprint(self) -> str:
        """Deterministic hash of the breakdown."""
        json_str = json.dumps(self.to_canonical_dict(), sort_keys=True)
        return hashlib.sha256(json_str.encode()).hexdigest()[:32]


@dataclass(frozen=True)
class AttendanceSummary:
    """Day counts for one employee and period, supplied by the attendance collaborator."""

    total_working_days: int
    present_days: Decimal
    paid_leave_days: Decimal = Decimal("0")
    unpaid_leave_days: Decimal = Decimal("0")

    @property
    def payable_days(self) -> Decimal:
        return self.present_days + self.paid_leave_days


@dataclass(frozen=True)
class Proration:
    """Payable-day figures recorded on a payslip."""

    payable_days: Decimal
    total_working_days: int
    present_days: Decimal
    paid_leave_days: Decimal
    daily_rate: Decimal
    attendance_days_amount: Decimal
    paid_leave_days_amount: Decimal


@dataclass
class EmployeeIssue:
    """A non-fatal warning or per-employee failure collected during compute."""

    employee_id: UUID
    code: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {
            "employee_id": str(self.employee_id),
            "code": self.code,
            "message": self.message,
        }


@dataclass
class ResolutionTrace:
    """Running state while resolving a rule-based configuration."""

    running_total: Decimal = Decimal("0.00")
    warnings: list[str] = field(default_factory=list)
    over_allocated: bool = False
