"""Historical statement reconstructor.

Builds a full-year salary statement for one employee from the payslips of
finalized payruns, filling months without one from the employee's current
wage configuration. Read-only; takes no locks.
"""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from compensation_engine.calculators.component_resolver import ComponentResolver
from compensation_engine.calculators.config_loader import (
    load_wage_configuration,
    normalize_allowances,
)
from compensation_engine.calculators.money import (
    ZERO,
    divide,
    percent_of,
    round_money,
    sum_money,
    to_decimal,
)
from compensation_engine.calculators.types import ComputedBreakdown, LegacyConfig, LoadedConfig
from compensation_engine.config import Settings, get_settings
from compensation_engine.errors import (
    ConfigurationError,
    InsufficientDataError,
    NotFoundError,
    ValidationError,
)
from compensation_engine.models import Payrun, Payslip
from compensation_engine.services.directory import EmployeeDirectory, SqlEmployeeDirectory
from compensation_engine.services.state_machine import PayrunStatus

logger = logging.getLogger(__name__)

MONTH_LABELS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

BASIC_LABEL = "Basic"
PF_LABEL = "PF (Employee)"
PROFESSIONAL_TAX_LABEL = "Professional Tax"

MIN_YEAR = 2000
MAX_YEAR = 2100

_ACRONYMS = {"hra": "HRA", "lta": "LTA"}
_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def display_name(key: str) -> str:
    """Statement label for a component key: ``standardAllowance`` -> ``Standard Allowance``."""
    if key.lower() in _ACRONYMS:
        return _ACRONYMS[key.lower()]
    words = _CAMEL_BOUNDARY.sub(" ", key.replace("_", " ")).split()
    return " ".join(word[:1].upper() + word[1:] for word in words)


@dataclass(frozen=True)
class StatementLine:
    key: str
    monthly_average: Decimal
    yearly_total: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "monthly_average": str(self.monthly_average),
            "yearly_total": str(self.yearly_total),
        }


@dataclass(frozen=True)
class StatementEmployee:
    employee_id: UUID
    name: str
    title: str | None
    date_of_joining: date | None
    salary_effective_from: date | None


@dataclass(frozen=True)
class AnnualStatement:
    """Full-year salary statement for one employee."""

    employee: StatementEmployee
    year: int
    earnings: list[StatementLine]
    deductions: list[StatementLine]
    net_monthly: Decimal
    net_yearly: Decimal
    estimated_months: list[str]
    months_for_calculation: int

    @property
    def actual_months(self) -> int:
        return len(MONTH_LABELS) - len(self.estimated_months)


class StatementReconstructor:
    """Reconstructs annual salary statements.

    For each month of the year:
    - a payslip of a done payrun is used as recorded
    - otherwise the month is estimated from the latest wage configuration,
      with provident fund on the capped basic and professional tax above
      the gross threshold
    """

    def __init__(
        self,
        session: AsyncSession,
        directory: EmployeeDirectory | None = None,
        settings: Settings | None = None,
    ):
        self.session = session
        self.settings = settings or get_settings()
        self.directory = directory or SqlEmployeeDirectory(session)
        self.resolver = ComponentResolver(self.settings.conservation_tolerance)

    async def reconstruct(self, tenant_id: UUID, employee_id: UUID, year: int) -> AnnualStatement:
        """Build the statement of ``employee_id`` for ``year``.

        Raises:
            ValidationError: If the year is outside 2000-2100
            NotFoundError: If the employee does not exist for the tenant
            InsufficientDataError: If there is neither a payslip nor a configuration
        """
        if not MIN_YEAR <= year <= MAX_YEAR:
            raise ValidationError(
                f"Year must be between {MIN_YEAR} and {MAX_YEAR}", {"year": year}
            )

        employee = await self.directory.get_employee(tenant_id, employee_id)
        if employee is None:
            raise NotFoundError("Employee", employee_id)

        payslips = await self.finalized_payslips(tenant_id, employee_id, year)
        earnings: dict[str, Decimal] = defaultdict(lambda: ZERO)
        deductions: dict[str, Decimal] = defaultdict(lambda: ZERO)

        present_months = set()
        for payslip in payslips:
            present_months.add(payslip.period_month.month)
            earnings[BASIC_LABEL] += payslip.basic
            for key, value in payslip.allowances.items():
                amount = to_decimal(value)
                if amount is not None and amount > 0:
                    earnings[display_name(key)] += amount
            if payslip.deduction_employee > 0:
                deductions[PF_LABEL] += payslip.deduction_employee
            if payslip.fixed_deduction > 0:
                deductions[PROFESSIONAL_TAX_LABEL] += payslip.fixed_deduction

        estimated_months = [
            label for month, label in enumerate(MONTH_LABELS, start=1) if month not in present_months
        ]

        config_row = await self.directory.get_wage_configuration(tenant_id, employee_id)
        if config_row is None and not payslips:
            raise InsufficientDataError(employee_id, year)
        if estimated_months and config_row is not None:
            self._add_estimates(config_row, len(estimated_months), earnings, deductions)

        # Without a configuration, estimated months contribute nothing but still
        # count, so averages are always per calendar month
        months_for_calculation = len(present_months) + len(estimated_months)

        earning_lines = [
            self._line(key, earnings[key], months_for_calculation)
            for key in sorted(earnings, key=lambda k: (k != BASIC_LABEL, k))
        ]
        deduction_lines = [
            self._line(key, deductions[key], months_for_calculation) for key in sorted(deductions)
        ]

        net_yearly = sum_money(line.yearly_total for line in earning_lines) - sum_money(
            line.yearly_total for line in deduction_lines
        )
        return AnnualStatement(
            employee=StatementEmployee(
                employee_id=employee.employee_id,
                name=employee.name,
                title=employee.title,
                date_of_joining=employee.join_date,
                salary_effective_from=config_row.created_at.date() if config_row else None,
            ),
            year=year,
            earnings=earning_lines,
            deductions=deduction_lines,
            net_monthly=divide(net_yearly, months_for_calculation),
            net_yearly=net_yearly,
            estimated_months=estimated_months,
            months_for_calculation=months_for_calculation,
        )

    async def finalized_payslips(
        self, tenant_id: UUID, employee_id: UUID, year: int
    ) -> list[Payslip]:
        """Payslips of done payruns for the employee within the year."""
        result = await self.session.execute(
            select(Payslip)
            .join(Payrun, Payrun.payrun_id == Payslip.payrun_id)
            .where(
                Payslip.tenant_id == tenant_id,
                Payslip.employee_id == employee_id,
                Payrun.status == PayrunStatus.DONE.value,
                Payslip.period_month >= date(year, 1, 1),
                Payslip.period_month <= date(year, 12, 31),
            )
            .order_by(Payslip.period_month)
        )
        return list(result.scalars().all())

    def _add_estimates(
        self,
        config_row: Any,
        month_count: int,
        earnings: dict[str, Decimal],
        deductions: dict[str, Decimal],
    ) -> None:
        resolved = self._resolve_for_estimate(config_row)
        if resolved is None:
            return
        config, breakdown = resolved

        earnings[BASIC_LABEL] += breakdown.basic * month_count
        for key, amount in breakdown.allowances.items():
            if amount > 0:
                earnings[display_name(key)] += amount * month_count

        pf = percent_of(min(breakdown.basic, self.settings.pf_wage_cap), config.deduction_rate)
        if pf > 0:
            deductions[PF_LABEL] += pf * month_count

        if breakdown.components_total >= self.settings.professional_tax_threshold:
            deductions[PROFESSIONAL_TAX_LABEL] += (
                round_money(self.settings.statement_professional_tax) * month_count
            )

    def _resolve_for_estimate(
        self, config_row: Any
    ) -> tuple[LoadedConfig, ComputedBreakdown] | None:
        """Resolve the configuration used for estimated months.

        A row whose rules cannot be resolved falls back to its stored basic
        and allowances; without those the months are left unestimated.
        """
        try:
            config = load_wage_configuration(config_row, self.settings)
            return config, self.resolver.resolve_config(config)
        except ConfigurationError as exc:
            basic = to_decimal(config_row.basic)
            if basic is None:
                logger.warning(
                    "Employee %s: cannot estimate statement months: %s",
                    config_row.employee_id,
                    exc.message,
                )
                return None

        logger.info(
            "Employee %s: estimating statement months from the stored basic and allowances",
            config_row.employee_id,
        )
        config = LegacyConfig(
            wage=None,
            basic=round_money(basic),
            allowances=normalize_allowances(config_row.allowances),
            deduction_rate=to_decimal(
                config_row.deduction_rate, self.settings.default_deduction_rate
            ),
            fixed_deduction=to_decimal(
                config_row.fixed_deduction, self.settings.default_fixed_deduction
            ),
            employee_id=config_row.employee_id,
        )
        return config, self.resolver.resolve_legacy(config)

    @staticmethod
    def _line(key: str, total: Decimal, months: int) -> StatementLine:
        return StatementLine(
            key=key,
            monthly_average=divide(total, months),
            yearly_total=round_money(total),
        )
