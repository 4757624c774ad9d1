"""Component resolver: wage configuration in, itemized breakdown out.

Pure and deterministic. The same configuration always yields the same
breakdown, which is what lets payslip hashes and statements be reproduced.

Resolution order for rule-based configurations:
1. basic
2. CANONICAL_COMPONENT_ORDER, then any other configured names sorted
3. the catch-all (fixedAllowance)
4. reconciliation: any excess over the wage is taken from the catch-all only
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Mapping
from uuid import UUID

from compensation_engine.calculators.money import (
    MONTHS_PER_YEAR,
    ZERO,
    clamp_non_negative,
    percent_of,
    round_money,
    sum_money,
)
from compensation_engine.calculators.types import (
    BASIC,
    CANONICAL_COMPONENT_ORDER,
    CATCH_ALL,
    ComponentRule,
    ComponentRuleType,
    ComputedBreakdown,
    LegacyConfig,
    LoadedConfig,
    ResolutionTrace,
)
from compensation_engine.config import get_settings
from compensation_engine.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_BASIC_PERCENT = Decimal("50")


class ComponentResolver:
    """Resolves wage configurations into ComputedBreakdowns."""

    def __init__(self, tolerance: Decimal | None = None):
        if tolerance is None:
            tolerance = get_settings().conservation_tolerance
        self.tolerance = tolerance

    def resolve_config(self, config: LoadedConfig) -> ComputedBreakdown:
        """Resolve either configuration variant."""
        if isinstance(config, LegacyConfig):
            return self.resolve_legacy(config)
        return self.resolve(
            config.wage,
            config.rules,
            config.deduction_rate,
            config.fixed_deduction,
            employee_id=config.employee_id,
        )

    def resolve(
        self,
        wage: Decimal,
        rules: Mapping[str, ComponentRule],
        deduction_rate: Decimal,
        fixed_deduction: Decimal,
        employee_id: UUID | None = None,
    ) -> ComputedBreakdown:
        """Resolve a rule-based configuration.

        Raises:
            ConfigurationError: If the wage is missing or not positive
        """
        if wage is None or wage <= 0:
            raise ConfigurationError(employee_id, f"wage must be positive, got {wage}")

        trace = ResolutionTrace()
        basic = self._resolve_basic(wage, rules.get(BASIC))
        trace.running_total = basic

        allowances: dict[str, Decimal] = {}
        for name in self.component_order(rules):
            amount = self._evaluate(wage, basic, rules[name])
            if amount is None:
                continue
            allowances[name] = amount
            trace.running_total += amount

        catch_all_rule = rules.get(CATCH_ALL)
        if catch_all_rule is not None:
            self._resolve_catch_all(wage, basic, catch_all_rule, allowances, trace, employee_id)

        self._reconcile(wage, allowances, trace, employee_id)

        deduction = percent_of(basic, deduction_rate)
        fixed = round_money(fixed_deduction)
        gross = round_money(wage)
        return ComputedBreakdown(
            basic=basic,
            allowances=allowances,
            gross_monthly=gross,
            gross_yearly=gross * MONTHS_PER_YEAR,
            deduction_employee=deduction,
            deduction_employer=deduction,
            fixed_deduction=fixed,
            net_salary=gross - deduction - fixed,
            over_allocated=trace.over_allocated,
            warnings=tuple(trace.warnings),
        )

    def resolve_legacy(self, config: LegacyConfig) -> ComputedBreakdown:
        """Resolve a stored basic plus allowances configuration."""
        basic = round_money(config.basic)
        allowances = {name: round_money(amount) for name, amount in config.allowances.items()}

        if config.wage is not None and config.wage > 0:
            gross = round_money(config.wage)
        else:
            gross = basic + sum_money(allowances.values())

        deduction = percent_of(basic, config.deduction_rate)
        fixed = round_money(config.fixed_deduction)
        return ComputedBreakdown(
            basic=basic,
            allowances=allowances,
            gross_monthly=gross,
            gross_yearly=gross * MONTHS_PER_YEAR,
            deduction_employee=deduction,
            deduction_employer=deduction,
            fixed_deduction=fixed,
            net_salary=clamp_non_negative(gross - deduction - fixed),
            legacy=True,
        )

    @staticmethod
    def component_order(rules: Mapping[str, ComponentRule]) -> list[str]:
        """Names resolved between basic and the catch-all, in resolution order."""
        ordered = [name for name in CANONICAL_COMPONENT_ORDER if name in rules]
        extras = sorted(
            name
            for name in rules
            if name not in CANONICAL_COMPONENT_ORDER and name not in (BASIC, CATCH_ALL)
        )
        return ordered + extras

    @staticmethod
    def _resolve_basic(wage: Decimal, rule: ComponentRule | None) -> Decimal:
        if rule is not None:
            if rule.type is ComponentRuleType.PERCENTAGE_OF_WAGE:
                return percent_of(wage, rule.value)
            if rule.type is ComponentRuleType.FIXED_AMOUNT:
                return round_money(rule.value)
        return percent_of(wage, DEFAULT_BASIC_PERCENT)

    @staticmethod
    def _evaluate(wage: Decimal, basic: Decimal, rule: ComponentRule) -> Decimal | None:
        if rule.type is ComponentRuleType.PERCENTAGE_OF_WAGE:
            return percent_of(wage, rule.value)
        if rule.type is ComponentRuleType.PERCENTAGE_OF_BASIC:
            return percent_of(basic, rule.value)
        if rule.type is ComponentRuleType.FIXED_AMOUNT:
            return round_money(rule.value)
        # REMAINING_AMOUNT only means something for the catch-all
        return None

    def _resolve_catch_all(
        self,
        wage: Decimal,
        basic: Decimal,
        rule: ComponentRule,
        allowances: dict[str, Decimal],
        trace: ResolutionTrace,
        employee_id: UUID | None,
    ) -> None:
        if rule.type is not ComponentRuleType.REMAINING_AMOUNT:
            amount = self._evaluate(wage, basic, rule)
            if amount is not None:
                allowances[CATCH_ALL] = amount
                trace.running_total += amount
            return

        remaining = round_money(wage - trace.running_total)
        if remaining < 0:
            message = (
                f"Components exceed wage by {-remaining} before {CATCH_ALL}; "
                f"{CATCH_ALL} set to 0"
            )
            if -remaining > self.tolerance:
                logger.warning("Employee %s: %s", employee_id, message)
                trace.warnings.append(message)
            else:
                # Rounding noise: flagged, not reported
                logger.debug("Employee %s: %s", employee_id, message)
            trace.over_allocated = True
            remaining = ZERO

        allowances[CATCH_ALL] = remaining
        trace.running_total += remaining

    def _reconcile(
        self,
        wage: Decimal,
        allowances: dict[str, Decimal],
        trace: ResolutionTrace,
        employee_id: UUID | None,
    ) -> None:
        if trace.running_total <= wage + self.tolerance:
            return

        excess = trace.running_total - wage
        if CATCH_ALL in allowances:
            current = allowances[CATCH_ALL]
            reduced = clamp_non_negative(current - excess)
            allowances[CATCH_ALL] = reduced
            trace.running_total -= current - reduced
            logger.info(
                "Employee %s: reduced %s from %s to %s to fit wage %s",
                employee_id,
                CATCH_ALL,
                current,
                reduced,
                wage,
            )

        if trace.running_total > wage + self.tolerance:
            over = trace.running_total - wage
            message = f"Components exceed wage by {over} after reconciliation"
            logger.warning("Employee %s: %s", employee_id, message)
            trace.warnings.append(message)
            trace.over_allocated = True

