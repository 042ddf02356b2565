"""
Rule Condition Interpreter

Stored RuleCondition trees are parsed once into a closed set of node
types and then evaluated against a TransactionContext:

    BaseCondition   field <operator> value
    AndCondition    base AND every child
    OrCondition     base OR any child

Field names resolve through FIELD_ACCESSORS. A name that is not in the
table, or whose value is None, is "missing" and never matches, for any
operator (including the negative ones).
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Union

from ..errors import RuleEvaluationError
from ..schemas import (
    ConditionOperator as Operator,
    CustomerContext,
    RuleCondition,
    TransactionContext,
    VelocityMetrics,
)

logger = logging.getLogger("riskguard.policy")

MAX_CONDITION_DEPTH = 16


NUMERIC_OPERATORS = {
    Operator.GREATER_THAN,
    Operator.LESS_THAN,
    Operator.GREATER_THAN_OR_EQUALS,
    Operator.LESS_THAN_OR_EQUALS,
}


# =============================================================================
# Field accessors
# =============================================================================

Accessor = Callable[[TransactionContext], Any]


def _top_level(name: str) -> Accessor:
    return lambda ctx: getattr(ctx, name)


def _customer(name: str) -> Accessor:
    return lambda ctx: getattr(ctx.customer, name) if ctx.customer is not None else None


def _velocity(name: str) -> Accessor:
    return lambda ctx: getattr(ctx.velocity, name) if ctx.velocity is not None else None


def _build_accessors() -> dict[str, Accessor]:
    table: dict[str, Accessor] = {
        name: _top_level(name)
        for name in TransactionContext.model_fields
        if name not in ("customer", "velocity", "metadata")
    }
    table.update({
        f"customer.{name}": _customer(name) for name in CustomerContext.model_fields
    })
    table.update({
        f"velocity.{name}": _velocity(name) for name in VelocityMetrics.model_fields
    })
    return table


FIELD_ACCESSORS: dict[str, Accessor] = _build_accessors()


def resolve_field(context: TransactionContext, name: str) -> Any:
    """
    Value of a named field, or None when missing.

    metadata.<key> reads from the context's metadata map. Enum values
    are reduced to their raw value.
    """
    if name.startswith("metadata."):
        value = context.metadata.get(name[len("metadata."):])
    else:
        accessor = FIELD_ACCESSORS.get(name)
        if accessor is None:
            return None
        value = accessor(context)

    if isinstance(value, Enum):
        return value.value
    return value


# =============================================================================
# AST
# =============================================================================

@dataclass(frozen=True)
class BaseCondition:
    field: str
    operator: Optional[Operator]
    value: Any = None
    raw_operator: str = ""

    def evaluate(self, context: TransactionContext) -> bool:
        actual = resolve_field(context, self.field)
        if actual is None:
            return False
        if self.operator is None:
            logger.warning("Unknown operator: %s", self.raw_operator)
            return False
        return compare(self.operator, actual, self.value)


@dataclass(frozen=True)
class AndCondition:
    base: BaseCondition
    children: tuple["Condition", ...]

    def evaluate(self, context: TransactionContext) -> bool:
        return self.base.evaluate(context) and all(c.evaluate(context) for c in self.children)


@dataclass(frozen=True)
class OrCondition:
    base: BaseCondition
    children: tuple["Condition", ...]

    def evaluate(self, context: TransactionContext) -> bool:
        return self.base.evaluate(context) or any(c.evaluate(context) for c in self.children)


Condition = Union[BaseCondition, AndCondition, OrCondition]


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return float(value)
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return None
    if number != number:  # NaN
        return None
    return number


def _strict_equals(actual: Any, expected: Any) -> bool:
    # Booleans never equal numbers or strings
    if isinstance(actual, bool) != isinstance(expected, bool):
        return False
    return actual == expected


def compare(operator: Operator, actual: Any, expected: Any) -> bool:
    """Apply one operator to a present value."""
    if operator == Operator.EQUALS:
        return _strict_equals(actual, expected)
    if operator == Operator.NOT_EQUALS:
        return not _strict_equals(actual, expected)

    if operator in NUMERIC_OPERATORS:
        left, right = _to_number(actual), _to_number(expected)
        if left is None or right is None:
            return False
        if operator == Operator.GREATER_THAN:
            return left > right
        if operator == Operator.LESS_THAN:
            return left < right
        if operator == Operator.GREATER_THAN_OR_EQUALS:
            return left >= right
        return left <= right

    if operator in (Operator.CONTAINS, Operator.NOT_CONTAINS):
        found = str(expected).lower() in str(actual).lower()
        return found if operator == Operator.CONTAINS else not found

    # IN / NOT_IN
    if not isinstance(expected, (list, tuple, set)):
        return False
    found = any(_strict_equals(actual, item) for item in expected)
    return found if operator == Operator.IN else not found


def parse_condition(stored: RuleCondition, depth: int = 0) -> Condition:
    """
    Parse a stored condition tree.

    Unknown operators parse to a base node that never matches. A
    logical operator other than AND combines children with OR.

    Raises:
        RuleEvaluationError: tree nested deeper than MAX_CONDITION_DEPTH
    """
    if depth > MAX_CONDITION_DEPTH:
        raise RuleEvaluationError(
            f"Condition tree deeper than {MAX_CONDITION_DEPTH} levels"
        )

    try:
        operator = Operator(stored.operator)
    except ValueError:
        operator = None

    base = BaseCondition(
        field=stored.field,
        operator=operator,
        value=stored.value,
        raw_operator=stored.operator,
    )
    if not stored.sub_conditions:
        return base

    children = tuple(parse_condition(c, depth + 1) for c in stored.sub_conditions)
    if (stored.logical_operator or "AND") == "AND":
        return AndCondition(base=base, children=children)
    return OrCondition(base=base, children=children)
