"""
Custom Rule Storage

Rules are authored outside the assessment path; stores only hand them
to the evaluator by organization.

YamlRuleStore reads a document of the form:

    version: "1.0.0"
    rules:
      - organization_id: org_1
        name: Block high value
        action: block
        priority: 1
        condition:
          field: amount
          operator: greater_than
          value: 100000

and can be reloaded in place. A failed reload keeps the previous rules.
"""

import hashlib
import json
import logging
from pathlib import Path
from typing import Optional, Protocol

import yaml
from pydantic import BaseModel, Field, ValidationError

from ..schemas import FraudDetectionRule

logger = logging.getLogger("riskguard.policy")


class RuleStore(Protocol):
    """Read access to custom rules."""

    async def list_rules(self, organization_id: str) -> list[FraudDetectionRule]: ...


class RuleDocument(BaseModel):
    """Top-level shape of a YAML rules file."""
    version: str = Field(
        default="1.0.0",
        description="Rule set version for audit trail",
    )
    description: Optional[str] = None
    rules: list[FraudDetectionRule] = Field(default_factory=list)


class InMemoryRuleStore:
    """Rules held in process, keyed by organization."""

    def __init__(self, rules: Optional[list[FraudDetectionRule]] = None):
        self._rules: dict[str, dict[str, FraudDetectionRule]] = {}
        for rule in rules or []:
            self.add_rule(rule)

    def add_rule(self, rule: FraudDetectionRule) -> FraudDetectionRule:
        self._rules.setdefault(rule.organization_id, {})[rule.id] = rule
        return rule

    def remove_rule(self, organization_id: str, rule_id: str) -> bool:
        return self._rules.get(organization_id, {}).pop(rule_id, None) is not None

    async def list_rules(self, organization_id: str) -> list[FraudDetectionRule]:
        return list(self._rules.get(organization_id, {}).values())


class YamlRuleStore(InMemoryRuleStore):
    """
    Rules loaded from a YAML file.

    Supports hot reload via reload(); the rule set hash identifies which
    version produced a decision.
    """

    def __init__(self, path: Path):
        """
        Initialize YAML rule store.

        Args:
            path: Path to the rules file
        """
        super().__init__()
        self.path = Path(path)
        self.version = "0"
        self.rules_hash = self._compute_hash([])
        self.reload()

    @staticmethod
    def _compute_hash(rules: list[FraudDetectionRule]) -> str:
        payload = json.dumps([r.model_dump(mode="json") for r in rules], sort_keys=True)
        return hashlib.sha256(payload.encode()).hexdigest()[:16]

    def reload(self) -> bool:
        """
        Reload rules from the YAML file.

        Returns:
            True if reload successful
        """
        if not self.path.exists():
            logger.warning("Rules file %s not found", self.path)
            return False

        try:
            with open(self.path) as f:
                document = RuleDocument(**(yaml.safe_load(f) or {}))
        except (OSError, yaml.YAMLError, ValidationError, TypeError) as e:
            # Keep the rules already loaded
            logger.error("Rules reload failed: %s", e)
            return False

        self._rules = {}
        for rule in document.rules:
            self.add_rule(rule)
        self.version = document.version
        self.rules_hash = self._compute_hash(document.rules)

        logger.info(
            "Loaded %d custom rules from %s (version %s, hash %s)",
            len(document.rules), self.path, self.version, self.rules_hash,
        )
        return True
