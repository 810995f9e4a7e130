#!/usr/bin/env python3
"""
KUBEMEND SCORING POLICY
-----------------------
The deduction table behind the four analysis scores. Every score starts
at 100; each distinct finding on a document subtracts the amounts listed
for it here, once, and the result is clamped to [0, 100].

The table is data, not module state: tests and config files substitute
their own via ScoringPolicy.with_overrides().

Author: KubeMend Team
Date: 2026-10-17
"""

import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Iterable, Mapping, Tuple

from kubemend.core.exceptions import ConfigurationError
from kubemend.core.models import Category, Scores


class Axis(str, Enum):
    SECURITY = "security"
    PERFORMANCE = "performance"
    RELIABILITY = "reliability"
    COMPLEXITY = "complexity"


# Finding ids
NO_RESOURCE_LIMITS = "no-resource-limits"
NO_RESOURCE_REQUESTS = "no-resource-requests"
NO_LIVENESS_PROBE = "no-liveness-probe"
NO_READINESS_PROBE = "no-readiness-probe"
NO_SECURITY_CONTEXT = "no-security-context"
RUNS_AS_ROOT = "runs-as-root"
WRITABLE_ROOT_FILESYSTEM = "writable-root-filesystem"
PRIVILEGE_ESCALATION = "privilege-escalation"
MUTABLE_IMAGE_TAG = "mutable-image-tag"
MISSING_LABELS = "missing-labels"
SINGLE_REPLICA = "single-replica"
NO_ROLLOUT_STRATEGY = "no-rollout-strategy"
DEEP_NESTING = "deep-nesting"
MANY_CONTAINERS = "many-containers"
MANY_VOLUMES = "many-volumes"
RULE_FAILURE = "rule-failure"

DEFAULT_DEDUCTIONS: Dict[str, Dict[Axis, int]] = {
    NO_RESOURCE_LIMITS: {Axis.PERFORMANCE: 15},
    NO_RESOURCE_REQUESTS: {Axis.PERFORMANCE: 20},
    NO_LIVENESS_PROBE: {Axis.RELIABILITY: 15, Axis.PERFORMANCE: 5},
    NO_READINESS_PROBE: {Axis.RELIABILITY: 15, Axis.PERFORMANCE: 5},
    NO_SECURITY_CONTEXT: {Axis.SECURITY: 20},
    RUNS_AS_ROOT: {Axis.SECURITY: 15},
    WRITABLE_ROOT_FILESYSTEM: {Axis.SECURITY: 10},
    PRIVILEGE_ESCALATION: {Axis.SECURITY: 20},
    MUTABLE_IMAGE_TAG: {Axis.SECURITY: 15, Axis.RELIABILITY: 5},
    MISSING_LABELS: {Axis.COMPLEXITY: 5},
    SINGLE_REPLICA: {Axis.RELIABILITY: 10},
    NO_ROLLOUT_STRATEGY: {Axis.RELIABILITY: 5},
    DEEP_NESTING: {Axis.COMPLEXITY: 10},
    MANY_CONTAINERS: {Axis.COMPLEXITY: 10},
    MANY_VOLUMES: {Axis.COMPLEXITY: 5},
    RULE_FAILURE: {Axis.RELIABILITY: 5},
}

# Issues from rules outside the table (custom rules) deduct by category
DEFAULT_CATEGORY_DEDUCTIONS: Dict[Category, Dict[Axis, int]] = {
    Category.LABELS: {Axis.COMPLEXITY: 5},
    Category.RESOURCES: {Axis.PERFORMANCE: 5},
    Category.HEALTH_CHECKS: {Axis.RELIABILITY: 5},
    Category.SECURITY: {Axis.SECURITY: 5},
    Category.IMAGE_POLICY: {Axis.SECURITY: 5},
    Category.CUSTOM: {Axis.RELIABILITY: 5},
}

# Built-in rule id -> finding id
RULE_FINDINGS: Dict[str, str] = {
    "missing-labels": MISSING_LABELS,
    "resource-limits": NO_RESOURCE_LIMITS,
    "liveness-probe": NO_LIVENESS_PROBE,
    "readiness-probe": NO_READINESS_PROBE,
    "run-as-non-root": RUNS_AS_ROOT,
    "read-only-root-filesystem": WRITABLE_ROOT_FILESYSTEM,
    "latest-image-tag": MUTABLE_IMAGE_TAG,
}


def _parse_table(raw: Any, label: str) -> Dict[Axis, int]:
    if not isinstance(raw, Mapping):
        raise ConfigurationError(f"scoring.{label} must map score names to amounts")
    parsed: Dict[Axis, int] = {}
    for axis_name, amount in raw.items():
        try:
            axis = Axis(str(axis_name))
        except ValueError:
            raise ConfigurationError(
                f"scoring.{label}: unknown score '{axis_name}' "
                f"(expected one of {', '.join(a.value for a in Axis)})"
            ) from None
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
            raise ConfigurationError(f"scoring.{label}.{axis_name} must be a non-negative integer")
        parsed[axis] = amount
    return parsed


@dataclass(frozen=True)
class ScoringPolicy:
    deductions: Mapping[str, Mapping[Axis, int]] = field(default_factory=lambda: dict(DEFAULT_DEDUCTIONS))
    category_deductions: Mapping[Category, Mapping[Axis, int]] = field(
        default_factory=lambda: dict(DEFAULT_CATEGORY_DEDUCTIONS))
    max_nesting_depth: int = 12
    max_containers: int = 3
    max_volumes: int = 5
    recommendation_threshold: int = 80
    file_recommendation_threshold: int = 70

    def with_overrides(self, overrides: Mapping[str, Any]) -> "ScoringPolicy":
        """Replaces table rows by finding id; thresholds may be overridden by name."""
        table = dict(self.deductions)
        thresholds = {}
        for key, value in overrides.items():
            if key in ("max_nesting_depth", "max_containers", "max_volumes",
                       "recommendation_threshold", "file_recommendation_threshold"):
                if isinstance(value, bool) or not isinstance(value, int):
                    raise ConfigurationError(f"scoring.{key} must be an integer")
                thresholds[key] = value
                continue
            if key not in table:
                raise ConfigurationError(f"scoring: unknown finding '{key}'")
            table[key] = _parse_table(value, key)
        return replace(self, deductions=table, **thresholds)

    def deductions_for(self, finding: str, category: Category = Category.CUSTOM) -> Mapping[Axis, int]:
        if finding in self.deductions:
            return self.deductions[finding]
        return self.category_deductions.get(category, {})


def compute_scores(deductions: Iterable[Mapping[Axis, int]]) -> Scores:
    totals = {axis: 100 for axis in Axis}
    for row in deductions:
        for axis, amount in row.items():
            totals[axis] -= amount
    clamp = {axis.value: max(0, min(100, value)) for axis, value in totals.items()}
    return Scores(**clamp)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def mean_scores(scores: Tuple[Scores, ...]) -> Scores:
    """Arithmetic mean per score, rounded half-up. No documents is a perfect 100."""
    if not scores:
        return Scores()
    n = len(scores)
    return Scores(**{
        axis.value: round_half_up(sum(getattr(s, axis.value) for s in scores) / n)
        for axis in Axis
    })
