"""Pure calculation code: money helpers, configuration loading, resolution, proration."""

from compensation_engine.calculators.component_resolver import ComponentResolver
from compensation_engine.calculators.config_loader import load_wage_configuration
from compensation_engine.calculators.proration import prorate, working_days_in_month
from compensation_engine.calculators.types import (
    CANONICAL_COMPONENT_ORDER,
    CATCH_ALL,
    AttendanceSummary,
    ComponentRule,
    ComponentRuleType,
    ComputedBreakdown,
    LegacyConfig,
    RuleBasedConfig,
)

__all__ = [
    "CANONICAL_COMPONENT_ORDER",
    "CATCH_ALL",
    "AttendanceSummary",
    "ComponentResolver",
    "ComponentRule",
    "ComponentRuleType",
    "ComputedBreakdown",
    "LegacyConfig",
    "RuleBasedConfig",
    "load_wage_configuration",
    "prorate",
    "working_days_in_month",
]
