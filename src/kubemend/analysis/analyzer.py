#!/usr/bin/env python3
"""
KUBEMEND ANALYZER - Quality Scoring
-----------------------------------
Turns lint issues plus structural facts into four 0-100 scores
(security, performance, reliability, complexity) per document, then
aggregates a batch into mean scores, counts and recommendations.

Findings are deduplicated per document before scoring: a missing field
flagged both by a rule and by a structural check costs points once.

Author: KubeMend Team
Date: 2026-10-17
"""

import logging
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Sequence

from kubemend.analysis import scoring
from kubemend.analysis.scoring import ScoringPolicy, compute_scores, mean_scores
from kubemend.core.document import Document, MappingNode, SequenceNode
from kubemend.core.evaluator import LintEvaluator
from kubemend.core.models import (
    AnalysisResult, Category, DocumentAnalysis, Issue, ResourceUsage, RuleDescriptor, Severity,
)
from kubemend.rules.registry import RuleRegistry
from kubemend.rules.workload import REPLICATED_KINDS, containers, pod_spec_path

logger = logging.getLogger("kubemend.analyzer")


class Analyzer:
    """
    Scores documents with an injectable ScoringPolicy.
    """

    def __init__(self, registry: RuleRegistry, policy: Optional[ScoringPolicy] = None,
                 max_workers: int = 1):
        self.registry = registry
        self.evaluator = LintEvaluator(registry)
        self.policy = policy or ScoringPolicy()
        self.max_workers = max_workers

    # --- PER DOCUMENT ---

    def analyze_document(self, document: Document,
                         rules: Optional[Sequence[RuleDescriptor]] = None) -> DocumentAnalysis:
        if rules is None:
            rules = self.registry.select(None)
        issues = self.evaluator.evaluate_rules(document, rules)

        findings: Dict[str, Category] = {}
        for issue in issues:
            finding, category = self._finding_for_issue(issue)
            findings.setdefault(finding, category)
        for finding in self.structural_findings(document):
            findings.setdefault(finding, Category.CUSTOM)

        ordered = sorted(findings)
        scores = compute_scores(self.policy.deductions_for(f, findings[f]) for f in ordered)

        return DocumentAnalysis(
            document_ref=document.ref,
            kind=document.kind,
            name=document.name,
            namespace=document.namespace,
            issues=tuple(issues),
            scores=scores,
            findings=tuple(ordered),
            insights=tuple(self.insights(document)),
            resource_usage=self.resource_usage(document),
        )

    @staticmethod
    def _finding_for_issue(issue: Issue):
        if issue.rule_failure:
            return scoring.RULE_FAILURE, issue.category or Category.CUSTOM
        finding = scoring.RULE_FINDINGS.get(issue.rule_id, f"rule:{issue.rule_id}")
        return finding, issue.category or Category.CUSTOM

    def structural_findings(self, document: Document) -> List[str]:
        """Facts read straight from the manifest, independent of the selected rules."""
        policy = self.policy
        found = []
        workload = containers(document)

        for c in workload:
            resources = c.get("resources")
            requests = c.get("resources", "requests")
            limits = c.get("resources", "limits")
            if not isinstance(requests, MappingNode) or not requests:
                found.append(scoring.NO_RESOURCE_REQUESTS)
            if not isinstance(resources, MappingNode) or not isinstance(limits, MappingNode) or not limits:
                found.append(scoring.NO_RESOURCE_LIMITS)
            if c.get("livenessProbe") is None:
                found.append(scoring.NO_LIVENESS_PROBE)
            if c.get("readinessProbe") is None:
                found.append(scoring.NO_READINESS_PROBE)
            if not isinstance(c.get("securityContext"), MappingNode):
                found.append(scoring.NO_SECURITY_CONTEXT)
            if (c.value_at("securityContext", "allowPrivilegeEscalation") is True
                    or c.value_at("securityContext", "privileged") is True):
                found.append(scoring.PRIVILEGE_ESCALATION)

        kind = document.kind
        if kind in REPLICATED_KINDS:
            replicas = document.value_at(("spec", "replicas"), 1)
            if isinstance(replicas, int) and not isinstance(replicas, bool) and replicas < 2:
                found.append(scoring.SINGLE_REPLICA)
        if kind == "Deployment" and document.get(("spec", "strategy")) is None:
            found.append(scoring.NO_ROLLOUT_STRATEGY)

        if document.root.depth() > policy.max_nesting_depth:
            found.append(scoring.DEEP_NESTING)
        if len(workload) > policy.max_containers:
            found.append(scoring.MANY_CONTAINERS)
        spec_path = pod_spec_path(document)
        if spec_path is not None:
            volumes = document.get(spec_path + ("volumes",))
            if isinstance(volumes, SequenceNode) and len(volumes) > policy.max_volumes:
                found.append(scoring.MANY_VOLUMES)
        return found

    @staticmethod
    def insights(document: Document) -> List[str]:
        kind = document.kind
        notes = []
        if kind == "Deployment":
            replicas = document.value_at(("spec", "replicas"))
            if replicas == 1:
                notes.append("Consider increasing replicas for high availability")
            elif isinstance(replicas, int) and replicas > 10:
                notes.append("High replica count - ensure your cluster can handle the resource requirements")
            if document.get(("spec", "strategy")) is None:
                notes.append("Consider adding a deployment strategy for controlled rollouts")
        elif kind == "Service":
            if document.value_at(("spec", "type")) == "LoadBalancer":
                notes.append("LoadBalancer services incur cloud provider costs - consider an Ingress if appropriate")
        elif kind == "Pod":
            notes.append("Consider using a Deployment instead of a bare Pod for better management")
        return notes

    @staticmethod
    def resource_usage(document: Document) -> ResourceUsage:
        values: Dict[str, Optional[str]] = {
            "cpu_requests": None, "memory_requests": None, "cpu_limits": None, "memory_limits": None,
        }
        has_probes = False
        has_security_context = False
        for c in containers(document):
            for section in ("requests", "limits"):
                for resource in ("cpu", "memory"):
                    key = f"{resource}_{section}"
                    value = c.value_at("resources", section, resource)
                    if values[key] is None and value is not None:
                        values[key] = str(value)
            has_probes = has_probes or c.get("livenessProbe") is not None or c.get("readinessProbe") is not None
            has_security_context = has_security_context or c.get("securityContext") is not None
        return ResourceUsage(has_probes=has_probes, has_security_context=has_security_context, **values)

    # --- BATCH ---

    def analyze(self, documents: Sequence[Document], rule_names: Optional[Sequence[str]] = None,
                max_workers: Optional[int] = None) -> AnalysisResult:
        """
        Analyzes a batch. With more than one worker documents are scored
        concurrently; results always come back in input order.
        """
        rules = self.registry.select(rule_names)
        workers = max_workers if max_workers is not None else self.max_workers
        documents = list(documents)

        if workers <= 1 or len(documents) <= 1:
            per_document = [self.analyze_document(d, rules) for d in documents]
        else:
            with ThreadPoolExecutor(max_workers=min(workers, len(documents))) as executor:
                futures = [executor.submit(self.analyze_document, d, rules) for d in documents]
                per_document = [f.result() for f in futures]

        return self.summarize(per_document)

    def summarize(self, per_document: Sequence[DocumentAnalysis]) -> AnalysisResult:
        per_document = tuple(per_document)
        aggregate = mean_scores(tuple(d.scores for d in per_document))
        kinds = Counter(d.kind or "Unknown" for d in per_document)
        namespaces = Counter(d.namespace or "default" for d in per_document)
        total_issues = sum(len(d.issues) for d in per_document)
        error_issues = sum(1 for d in per_document for i in d.issues if i.severity == Severity.ERROR)

        return AnalysisResult(
            per_document=per_document,
            aggregate_scores=aggregate,
            resource_types=dict(sorted(kinds.items())),
            namespaces=dict(sorted(namespaces.items())),
            total_issues=total_issues,
            error_issues=error_issues,
            recommendations=tuple(self.recommendations(aggregate, len(per_document), total_issues,
                                                       error_issues, len(kinds))),
        )

    def recommendations(self, aggregate, documents: int, total_issues: int,
                        error_issues: int, kind_count: int) -> List[str]:
        if documents == 0:
            return []
        threshold = self.policy.recommendation_threshold
        advice = []
        if aggregate.security < threshold:
            advice.append("Security score is below the recommended threshold. Add security contexts "
                          "and pin image tags.")
        if aggregate.performance < threshold:
            advice.append("Add resource requests and limits to improve scheduling and resource management.")
        if aggregate.reliability < threshold:
            advice.append("Add health probes and run more than one replica to improve reliability.")
        if aggregate.complexity < threshold:
            advice.append("Manifests are complex. Consider splitting large pod specs or adding labels.")
        if error_issues:
            advice.append(f"Address {error_issues} error-level issue(s) first.")
        if total_issues > documents * 2:
            advice.append("High number of issues detected. Consider a systematic review process.")
        if kind_count > 5:
            advice.append("Multiple resource types detected. Consider organizing by application or namespace.")
        return advice

    def file_recommendations(self, per_document: Sequence[DocumentAnalysis]) -> List[str]:
        """Advice for the documents of one file, judged against the looser per-file threshold."""
        if not per_document:
            return []
        threshold = self.policy.file_recommendation_threshold
        average = mean_scores(tuple(d.scores for d in per_document))
        errors = sum(1 for d in per_document for i in d.issues if i.severity == Severity.ERROR)
        advice = []
        if average.security < threshold:
            advice.append("Add security contexts and avoid mutable image tags.")
        if average.performance < threshold:
            advice.append("Add resource requests and limits.")
        if errors:
            advice.append(f"Address {errors} error-level issue(s).")
        if len(per_document) > 5:
            advice.append("Consider splitting this file into smaller, more focused files.")
        return advice
