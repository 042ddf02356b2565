"""
Custom Rule Evaluator

Applies an organization's operator-authored rules before the system
heuristics. Rules are evaluated in ascending priority and the first
match decides. A rule that fails to evaluate is logged and skipped.

Action mapping:
    allow                      -> ALLOW
    block                      -> BLOCK
    review, alert, require_3ds -> REVIEW
    anything else              -> REVIEW (with a warning)
"""

import logging
from typing import Iterable

from ..errors import RuleEvaluationError
from ..metrics import metrics
from ..schemas import (
    CustomRuleResult,
    Decision,
    FactorCategory,
    FraudDetectionRule,
    FraudFactor,
    RuleAction,
    Severity,
    TransactionContext,
)
from .conditions import parse_condition
from .store import RuleStore

logger = logging.getLogger("riskguard.policy")

ACTION_DECISIONS = {
    RuleAction.ALLOW.value: Decision.ALLOW,
    RuleAction.BLOCK.value: Decision.BLOCK,
    RuleAction.REVIEW.value: Decision.REVIEW,
    RuleAction.ALERT.value: Decision.REVIEW,
    RuleAction.REQUIRE_3DS.value: Decision.REVIEW,
}

DECISION_WEIGHT_OFFSETS = {
    Decision.BLOCK: 30,
    Decision.REVIEW: 15,
    Decision.ALLOW: -20,
}

DECISION_SEVERITY = {
    Decision.BLOCK: Severity.HIGH,
    Decision.REVIEW: Severity.MEDIUM,
    Decision.ALLOW: Severity.LOW,
}


def map_action_to_decision(action: str) -> Decision:
    """Decision for a rule action; unknown actions fall back to REVIEW."""
    decision = ACTION_DECISIONS.get(action.lower())
    if decision is None:
        logger.warning("Unknown rule action %r, defaulting to REVIEW", action)
        return Decision.REVIEW
    return decision


def rule_factor(rule: FraudDetectionRule) -> FraudFactor:
    """The single factor reported for a matched rule."""
    decision = map_action_to_decision(rule.action)
    return FraudFactor(
        type="custom_rule",
        weight=(rule.priority or 0) + DECISION_WEIGHT_OFFSETS[decision],
        severity=DECISION_SEVERITY[decision],
        description=f"Custom Rule: {rule.name} - {rule.description or rule.action}",
        category=FactorCategory.BEHAVIOR,
    )


def rule_matches(rule: FraudDetectionRule, context: TransactionContext) -> bool:
    """
    Evaluate one rule's condition tree.

    Raises:
        RuleEvaluationError: the condition could not be evaluated
    """
    try:
        return parse_condition(rule.condition).evaluate(context)
    except RuleEvaluationError:
        raise
    except Exception as e:
        raise RuleEvaluationError(f"Rule {rule.id} failed: {e}") from e


def apply_rules(
    rules: Iterable[FraudDetectionRule],
    context: TransactionContext,
) -> CustomRuleResult:
    """
    Evaluate rules against a context.

    Only enabled rules are considered, lowest priority value first.

    Returns:
        CustomRuleResult with decision None when nothing matched
    """
    active = sorted((r for r in rules if r.enabled), key=lambda r: r.priority)
    errors = 0

    for evaluated, rule in enumerate(active, start=1):
        try:
            matched = rule_matches(rule, context)
        except RuleEvaluationError as e:
            errors += 1
            metrics.rule_errors.inc()
            logger.error("Error evaluating custom rule %s (%s): %s", rule.id, rule.name, e)
            continue

        if matched:
            decision = map_action_to_decision(rule.action)
            metrics.rule_matches.labels(action=decision.value).inc()
            logger.info(
                "Custom rule matched id=%s name=%s action=%s priority=%d",
                rule.id, rule.name, rule.action, rule.priority,
            )
            return CustomRuleResult(
                decision=decision,
                factors=[rule_factor(rule)],
                matched_rule=rule,
                rules_evaluated=evaluated,
                errors=errors,
            )

    return CustomRuleResult(rules_evaluated=len(active), errors=errors)


class CustomRuleEvaluator:
    """Loads an organization's rules from a RuleStore and applies them."""

    def __init__(self, store: RuleStore):
        self.store = store

    async def evaluate(
        self,
        context: TransactionContext,
        organization_id: str,
    ) -> CustomRuleResult:
        rules = await self.store.list_rules(organization_id)
        logger.debug("Loaded %d custom rules for %s", len(rules), organization_id)

        if not rules:
            return CustomRuleResult()

        result = apply_rules(rules, context)
        if result.decision is None:
            logger.info(
                "No custom rule matched org=%s payment=%s evaluated=%d",
                organization_id, context.payment_id, result.rules_evaluated,
            )
        return result
