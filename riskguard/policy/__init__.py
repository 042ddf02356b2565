# Custom Rules Module
from .conditions import (
    Operator,
    BaseCondition,
    AndCondition,
    OrCondition,
    FIELD_ACCESSORS,
    compare,
    parse_condition,
    resolve_field,
)
from .store import RuleStore, RuleDocument, InMemoryRuleStore, YamlRuleStore
from .custom_rules import (
    CustomRuleEvaluator,
    apply_rules,
    map_action_to_decision,
    rule_factor,
)

__all__ = [
    "Operator",
    "BaseCondition",
    "AndCondition",
    "OrCondition",
    "FIELD_ACCESSORS",
    "compare",
    "parse_condition",
    "resolve_field",
    "RuleStore",
    "RuleDocument",
    "InMemoryRuleStore",
    "YamlRuleStore",
    "CustomRuleEvaluator",
    "apply_rules",
    "map_action_to_decision",
    "rule_factor",
]
