#!/usr/bin/env python3
"""
KUBEMEND LINT EVALUATOR
-----------------------
Runs a selection of rules against one Document. Rules share no state and
run in registry order; a rule that blows up is reported as a synthetic
error Issue so the remaining rules still get their say.

Author: KubeMend Team
Date: 2026-10-17
"""

import logging
from typing import List, Optional, Sequence

from kubemend.core.document import Document
from kubemend.core.exceptions import RuleEvaluationError
from kubemend.core.models import Issue, RuleDescriptor, Severity
from kubemend.rules.registry import RuleRegistry

logger = logging.getLogger("kubemend.evaluator")


def run_rule(rule: RuleDescriptor, document: Document) -> List[Issue]:
    """Evaluates a single rule, raising RuleEvaluationError on any internal failure."""
    try:
        issues = list(rule.evaluate(document))
        for issue in issues:
            if not isinstance(issue, Issue):
                raise TypeError(f"rule returned {type(issue).__name__} instead of Issue")
        return issues
    except Exception as e:
        raise RuleEvaluationError(rule.id, e) from e


class LintEvaluator:
    """
    Evaluates documents against rules resolved from a RuleRegistry.
    """

    def __init__(self, registry: RuleRegistry):
        self.registry = registry

    def evaluate(self, document: Document, rule_names: Optional[Sequence[str]] = None) -> List[Issue]:
        # Unknown names surface here as ConfigurationError, before any rule runs
        selected = self.registry.select(rule_names)
        return self.evaluate_rules(document, selected)

    def evaluate_rules(self, document: Document, rules: Sequence[RuleDescriptor]) -> List[Issue]:
        issues: List[Issue] = []
        for rule in rules:
            try:
                issues.extend(run_rule(rule, document))
            except RuleEvaluationError as e:
                logger.warning(f"{document.ref}: {e}")
                issues.append(Issue(
                    rule_id=rule.id,
                    severity=Severity.ERROR,
                    message=f"rule failed: {type(e.cause).__name__}: {e.cause}",
                    path=None,
                    category=rule.category,
                    rule_failure=True,
                ))
        return issues
