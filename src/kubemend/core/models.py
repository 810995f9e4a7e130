#!/usr/bin/env python3
"""
KUBEMEND CORE MODELS
--------------------
Defines the result structures exchanged between the KubeMend engines:
issues found by rules, rule descriptors, analysis scores and
remediation plans. All of them are immutable and built fresh per call.

Author: KubeMend Team
Date: 2026-10-17
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from kubemend.core.document import Document, DocumentRef


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class Category(str, Enum):
    LABELS = "labels"
    RESOURCES = "resources"
    HEALTH_CHECKS = "health-checks"
    SECURITY = "security"
    IMAGE_POLICY = "image-policy"
    CUSTOM = "custom"


class Mode(str, Enum):
    FIX = "fix"
    OPTIMIZE = "optimize"


class Aggressiveness(str, Enum):
    CONSERVATIVE = "conservative"
    AGGRESSIVE = "aggressive"


@dataclass(frozen=True)
class Issue:
    """
    A single rule finding against one document.
    """
    rule_id: str                      # Registry id of the rule that fired
    severity: Severity
    message: str
    path: Optional[str] = None        # JSON pointer of the offending node
    category: Optional[Category] = None
    rule_failure: bool = False        # Set only by the evaluator for a rule that crashed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "severity": self.severity.value,
            "message": self.message,
            "path": self.path,
            "category": self.category.value if self.category else None,
            "rule_failure": self.rule_failure,
        }


@dataclass(frozen=True)
class RuleDescriptor:
    """
    Metadata plus the pure evaluation function of one check.
    """
    id: str
    category: Category
    evaluate: Callable[[Document], Sequence[Issue]] = field(compare=False)
    description: str = ""
    severity: Severity = Severity.WARNING


@dataclass(frozen=True)
class Scores:
    security: int = 100
    performance: int = 100
    reliability: int = 100
    complexity: int = 100

    def to_dict(self) -> Dict[str, int]:
        return {
            "security": self.security,
            "performance": self.performance,
            "reliability": self.reliability,
            "complexity": self.complexity,
        }


@dataclass(frozen=True)
class ResourceUsage:
    cpu_requests: Optional[str] = None
    memory_requests: Optional[str] = None
    cpu_limits: Optional[str] = None
    memory_limits: Optional[str] = None
    has_probes: bool = False
    has_security_context: bool = False


@dataclass(frozen=True)
class DocumentAnalysis:
    document_ref: DocumentRef
    kind: Optional[str]
    name: Optional[str]
    namespace: Optional[str]
    issues: Tuple[Issue, ...]
    scores: Scores
    findings: Tuple[str, ...] = ()
    insights: Tuple[str, ...] = ()
    resource_usage: ResourceUsage = field(default_factory=ResourceUsage)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.document_ref.source,
            "index": self.document_ref.index,
            "kind": self.kind,
            "name": self.name,
            "namespace": self.namespace,
            "scores": self.scores.to_dict(),
            "findings": list(self.findings),
            "insights": list(self.insights),
            "issues": [i.to_dict() for i in self.issues],
            "resource_usage": dict(self.resource_usage.__dict__),
        }


@dataclass(frozen=True)
class AnalysisResult:
    per_document: Tuple[DocumentAnalysis, ...]
    aggregate_scores: Scores
    resource_types: Dict[str, int] = field(default_factory=dict)
    namespaces: Dict[str, int] = field(default_factory=dict)
    total_issues: int = 0
    error_issues: int = 0
    recommendations: Tuple[str, ...] = ()

    @property
    def document_count(self) -> int:
        return len(self.per_document)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "aggregate_scores": self.aggregate_scores.to_dict(),
            "documents": self.document_count,
            "resource_types": dict(self.resource_types),
            "namespaces": dict(self.namespaces),
            "total_issues": self.total_issues,
            "error_issues": self.error_issues,
            "recommendations": list(self.recommendations),
            "per_document": [d.to_dict() for d in self.per_document],
        }


@dataclass(frozen=True)
class Change:
    action: str
    path: str
    description: str


@dataclass(frozen=True)
class SkippedAction:
    action: str
    path: str
    reason: str


@dataclass(frozen=True)
class RemediationPlan:
    """
    Original document, remediated document and the changelog between them.
    """
    document_ref: DocumentRef
    original: Document
    remediated: Document
    changes: Tuple[Change, ...] = ()
    skipped: Tuple[SkippedAction, ...] = ()
    mode: Mode = Mode.FIX
    aggressiveness: Aggressiveness = Aggressiveness.CONSERVATIVE

    @property
    def changed(self) -> bool:
        return bool(self.changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.document_ref.source,
            "index": self.document_ref.index,
            "mode": self.mode.value,
            "aggressiveness": self.aggressiveness.value,
            "changes": [c.__dict__.copy() for c in self.changes],
            "skipped": [s.__dict__.copy() for s in self.skipped],
        }


def count_by_severity(issues: List[Issue]) -> Dict[str, int]:
    counts = {s.value: 0 for s in Severity}
    for issue in issues:
        counts[issue.severity.value] += 1
    return counts
