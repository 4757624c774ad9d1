"""Employee salary configuration: read the resolved salary, write new versions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from compensation_engine.calculators.component_resolver import ComponentResolver
from compensation_engine.calculators.config_loader import (
    load_wage_configuration,
    parse_rule,
)
from compensation_engine.calculators.money import HUNDRED, MAX_AMOUNT, to_decimal
from compensation_engine.calculators.types import ComputedBreakdown, LoadedConfig
from compensation_engine.config import Settings, get_settings
from compensation_engine.errors import ConfigurationError, NotFoundError, ValidationError
from compensation_engine.models import AuditEvent, WageConfiguration
from compensation_engine.services.directory import EmployeeDirectory, SqlEmployeeDirectory

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("wage", "wage_type", "component_config", "deduction_rate", "fixed_deduction")


@dataclass(frozen=True)
class EmployeeSalary:
    """An employee's current configuration together with its resolved breakdown."""

    employee_id: UUID
    configuration: WageConfiguration
    config: LoadedConfig
    breakdown: ComputedBreakdown


class SalaryService:
    """Reads and versions wage configurations.

    An update never edits a row in place: it inserts a new version merged
    over the latest one, which keeps past payslips explainable.
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

    async def get_employee_salary(self, tenant_id: UUID, employee_id: UUID) -> EmployeeSalary:
        """Current configuration and breakdown.

        Raises:
            NotFoundError: If the employee does not exist
            ConfigurationError: If the employee has no wage configuration
        """
        await self._require_employee(tenant_id, employee_id)
        row = await self.directory.get_wage_configuration(tenant_id, employee_id)
        if row is None:
            raise ConfigurationError(employee_id, "no wage configuration")
        return self._resolve(row)

    async def update_salary_configuration(
        self,
        tenant_id: UUID,
        employee_id: UUID,
        changes: Mapping[str, Any],
        actor_user_id: UUID | None = None,
    ) -> EmployeeSalary:
        """Insert a new configuration version with ``changes`` applied.

        Keys left out of ``changes`` (or set to None) keep their current
        value. ``component_config`` replaces the rule map as a whole.

        Raises:
            NotFoundError: If the employee or their current configuration is missing
            ValidationError: If a changed value is out of range
        """
        await self._require_employee(tenant_id, employee_id)
        current = await self.directory.get_wage_configuration(tenant_id, employee_id)
        if current is None:
            raise NotFoundError("WageConfiguration", employee_id)

        unknown = set(changes) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(
                f"Unknown salary fields: {', '.join(sorted(unknown))}",
                {"fields": sorted(unknown)},
            )
        merged = {name: getattr(current, name) for name in UPDATABLE_FIELDS}
        merged.update({k: v for k, v in changes.items() if v is not None})
        self._validate(merged, changes)

        row = WageConfiguration(
            tenant_id=tenant_id,
            employee_id=employee_id,
            wage=to_decimal(merged["wage"]),
            wage_type=merged["wage_type"] or "FIXED",
            component_config=_rules_to_json(merged["component_config"]),
            deduction_rate=to_decimal(merged["deduction_rate"]),
            fixed_deduction=to_decimal(merged["fixed_deduction"]),
            basic=current.basic,
            allowances=current.allowances,
            created_by=actor_user_id,
        )
        salary = self._resolve(row)

        # Keep the legacy columns in step with what the rules resolve to
        row.basic = salary.breakdown.basic
        row.allowances = {k: str(v) for k, v in salary.breakdown.allowances.items()}
        self.session.add(row)
        await self.session.flush()

        self.session.add(
            AuditEvent(
                tenant_id=tenant_id,
                actor_user_id=actor_user_id,
                entity_type="wage_configuration",
                entity_id=row.wage_configuration_id,
                action="updated",
                before_json={"wage_configuration_id": str(current.wage_configuration_id)},
                after_json={
                    "wage": str(row.wage) if row.wage is not None else None,
                    "net_salary": str(salary.breakdown.net_salary),
                },
            )
        )
        await self.session.flush()

        logger.info(
            "Salary configuration updated for employee %s: wage=%s", employee_id, row.wage
        )
        return salary

    async def _require_employee(self, tenant_id: UUID, employee_id: UUID) -> None:
        if await self.directory.get_employee(tenant_id, employee_id) is None:
            raise NotFoundError("Employee", employee_id)

    def _resolve(self, row: WageConfiguration) -> EmployeeSalary:
        config = load_wage_configuration(row, self.settings)
        return EmployeeSalary(
            employee_id=row.employee_id,
            configuration=row,
            config=config,
            breakdown=self.resolver.resolve_config(config),
        )

    @staticmethod
    def _validate(merged: dict[str, Any], changes: Mapping[str, Any]) -> None:
        errors: dict[str, str] = {}

        if "wage" in changes and changes["wage"] is not None:
            wage = to_decimal(changes["wage"])
            if wage is None or not 0 < wage <= MAX_AMOUNT:
                errors["wage"] = f"must be a positive amount up to {MAX_AMOUNT}"

        rate = to_decimal(merged["deduction_rate"])
        if merged["deduction_rate"] is not None and (rate is None or not 0 <= rate <= HUNDRED):
            errors["deduction_rate"] = "must be a percentage between 0 and 100"

        fixed = to_decimal(merged["fixed_deduction"])
        if merged["fixed_deduction"] is not None and (
            fixed is None or not 0 <= fixed <= MAX_AMOUNT
        ):
            errors["fixed_deduction"] = f"must be between 0 and {MAX_AMOUNT}"

        if merged["wage_type"] not in (None, "FIXED"):
            errors["wage_type"] = "only FIXED is supported"

        rules = merged["component_config"] or {}
        if not isinstance(rules, Mapping):
            errors["component_config"] = "must be a mapping of component rules"
        else:
            bad = sorted(str(name) for name, rule in rules.items() if parse_rule(rule) is None)
            if bad:
                errors["component_config"] = f"malformed rules for: {', '.join(bad)}"

        if errors:
            raise ValidationError("Invalid salary configuration", {"fields": errors})


def _rules_to_json(rules: Any) -> dict[str, Any]:
    """Normalize a rule map for JSON storage (Decimals become strings)."""
    result: dict[str, Any] = {}
    for name, raw in (rules or {}).items():
        rule = parse_rule(raw)
        if rule is not None:
            result[str(name)] = rule.to_dict()
    return result

