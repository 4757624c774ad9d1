"""Load stored wage configuration rows into a tagged configuration variant.

A row with a non-empty ``component_config`` becomes a ``RuleBasedConfig``;
an empty one falls back to the legacy stored ``basic`` and ``allowances``
(``LegacyConfig``). Rule maps are parsed leniently: an entry that cannot be
understood is dropped so its component takes the default path.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Mapping

from compensation_engine.calculators.money import MAX_AMOUNT, round_money, to_decimal
from compensation_engine.calculators.types import (
    ComponentRule,
    ComponentRuleType,
    LegacyConfig,
    LoadedConfig,
    RuleBasedConfig,
    WageType,
)
from compensation_engine.config import get_settings
from compensation_engine.errors import ConfigurationError

if TYPE_CHECKING:
    from compensation_engine.config import Settings
    from compensation_engine.models import WageConfiguration

logger = logging.getLogger(__name__)


def parse_rule(raw: Any) -> ComponentRule | None:
    """Parse one ``{"type": ..., "value": ...}`` entry, or None if malformed."""
    if isinstance(raw, ComponentRule):
        return raw
    if not isinstance(raw, Mapping):
        return None

    raw_type = raw.get("type")
    if isinstance(raw_type, ComponentRuleType):
        rule_type = raw_type
    else:
        try:
            rule_type = ComponentRuleType(str(raw_type).upper())
        except ValueError:
            return None

    if rule_type is ComponentRuleType.REMAINING_AMOUNT:
        return ComponentRule(type=rule_type)

    value = to_decimal(raw.get("value"))
    if value is None or not 0 <= value <= MAX_AMOUNT:
        return None
    return ComponentRule(type=rule_type, value=value)


def parse_rules(raw: Any) -> dict[str, ComponentRule]:
    """Parse a component rule map, keeping insertion order and dropping bad entries."""
    if not isinstance(raw, Mapping):
        return {}

    rules: dict[str, ComponentRule] = {}
    for name, raw_rule in raw.items():
        rule = parse_rule(raw_rule)
        if rule is None:
            logger.debug("Ignoring malformed component rule %r: %r", name, raw_rule)
            continue
        rules[str(name)] = rule
    return rules


def normalize_allowance_key(key: str) -> str:
    """Map historical allowance spellings onto the canonical component names."""
    lower_key = key.lower()
    if lower_key == "hra":
        return "hra"
    if lower_key == "lta":
        return "lta"
    if "standard" in lower_key:
        return "standardAllowance"
    if "performance" in lower_key:
        return "performanceBonus"
    if "fixed" in lower_key:
        return "fixedAllowance"
    return key[:1].lower() + key[1:]


def normalize_allowances(raw: Any) -> dict[str, Decimal]:
    """Normalize a stored allowance mapping; unparseable amounts are skipped."""
    if not isinstance(raw, Mapping):
        return {}

    allowances: dict[str, Decimal] = {}
    for key, value in raw.items():
        amount = to_decimal(value)
        if amount is None:
            continue
        name = normalize_allowance_key(str(key))
        allowances[name] = round_money(allowances.get(name, Decimal("0")) + amount)
    return allowances


def load_wage_configuration(
    row: WageConfiguration,
    settings: Settings | None = None,
) -> LoadedConfig:
    """Build the configuration variant for a stored row."""
    settings = settings or get_settings()

    deduction_rate = to_decimal(row.deduction_rate, settings.default_deduction_rate)
    fixed_deduction = to_decimal(row.fixed_deduction, settings.default_fixed_deduction)
    wage = to_decimal(row.wage)
    wage_type = WageType(row.wage_type or WageType.FIXED.value)

    if row.component_config:
        if wage is None:
            raise ConfigurationError(row.employee_id, "wage is not set")
        return RuleBasedConfig(
            wage=wage,
            rules=parse_rules(row.component_config),
            deduction_rate=deduction_rate,
            fixed_deduction=fixed_deduction,
            employee_id=row.employee_id,
            wage_type=wage_type,
        )

    basic = to_decimal(row.basic)
    if basic is None:
        raise ConfigurationError(
            row.employee_id, "no component rules and no stored basic salary"
        )
    return LegacyConfig(
        wage=wage,
        basic=round_money(basic),
        allowances=normalize_allowances(row.allowances),
        deduction_rate=deduction_rate,
        fixed_deduction=fixed_deduction,
        employee_id=row.employee_id,
        wage_type=wage_type,
    )
