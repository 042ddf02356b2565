"""
Custom Rule Schemas

Operator-authored rules as they are stored. Rules are created and
edited outside the core; the evaluator only reads them.

Actions and operators are kept as plain strings on the stored shape so
that a rule written with an unknown value still loads; the evaluator
degrades unknown values to the conservative choice.
"""

from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from .decisions import Decision, FraudFactor


class RuleAction(str, Enum):
    """Known rule actions."""
    ALLOW = "allow"
    BLOCK = "block"
    REVIEW = "review"
    ALERT = "alert"
    REQUIRE_3DS = "require_3ds"


class ConditionOperator(str, Enum):
    """Known comparison operators."""
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_THAN_OR_EQUALS = "greater_than_or_equals"
    LESS_THAN_OR_EQUALS = "less_than_or_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    IN = "in"
    NOT_IN = "not_in"


class LogicalOperator(str, Enum):
    """How sub-conditions combine with their parent."""
    AND = "AND"
    OR = "OR"


class RuleCondition(BaseModel):
    """
    Stored condition tree node.

    field/operator/value form the base comparison; sub_conditions are
    combined with it using logical_operator (AND by default).
    """
    field: str = Field(
        ...,
        description="Dotted field path, e.g. 'amount' or 'customer.tier'",
    )
    operator: str = Field(
        ...,
        description="One of ConditionOperator",
    )
    value: Any = Field(
        default=None,
        description="Literal to compare against",
    )
    logical_operator: Optional[str] = Field(
        default=None,
        description="AND or OR",
    )
    sub_conditions: list["RuleCondition"] = Field(
        default_factory=list,
        description="Nested conditions",
    )


class FraudDetectionRule(BaseModel):
    """
    Single custom rule definition.

    Rules are evaluated in ascending priority. First matching rule wins.
    """
    id: str = Field(
        default_factory=lambda: str(uuid4()),
        description="Unique rule identifier",
    )
    organization_id: str = Field(
        ...,
        description="Owning organization",
    )
    name: str = Field(
        ...,
        description="Human-readable rule name",
    )
    description: Optional[str] = Field(
        default=None,
        description="Rule description",
    )
    enabled: bool = Field(
        default=True,
        description="Whether rule is active",
    )
    priority: int = Field(
        default=0,
        description="Rule priority (lower = evaluated first)",
    )
    action: str = Field(
        ...,
        description="One of RuleAction",
    )
    threshold: Optional[int] = Field(
        default=None,
        description="Optional numeric threshold for score-based rules",
    )
    condition: RuleCondition = Field(
        ...,
        description="Condition tree",
    )


class CustomRuleResult(BaseModel):
    """Outcome of evaluating an organization's custom rules."""
    decision: Optional[Decision] = None
    factors: list[FraudFactor] = Field(default_factory=list)
    matched_rule: Optional[FraudDetectionRule] = None
    rules_evaluated: int = 0
    errors: int = 0
