#!/usr/bin/env python3
"""
KUBEMEND BUILT-IN RULES
-----------------------
Each function is one pure, total check: Document in, Issues out.
A missing field is reported as a finding, never raised as an error, and
kinds without containers simply produce nothing from container rules.

To add a rule: write a `check_*` function returning a list of Issues and
register it in BUILTIN_RULES (the order there is the report order).

Author: KubeMend Team
Date: 2026-10-17
"""

from typing import List

from kubemend.core.document import Document, MappingNode, pointer
from kubemend.core.models import Category, Issue, RuleDescriptor, Severity
from kubemend.rules.workload import containers, pod_spec_path, uses_mutable_tag


def check_missing_labels(doc: Document) -> List[Issue]:
    """Rule: resources should carry at least one label for selection and ownership."""
    labels = doc.get(("metadata", "labels"))
    if isinstance(labels, MappingNode) and len(labels) > 0:
        return []
    return [Issue(
        rule_id="missing-labels",
        severity=Severity.WARNING,
        message=f"{doc.display_name} has no labels.",
        path=pointer(("metadata", "labels")),
        category=Category.LABELS,
    )]


def check_resource_limits(doc: Document) -> List[Issue]:
    """Rule: every container declares CPU and memory limits."""
    issues = []
    for container in containers(doc):
        limits = container.get("resources", "limits")
        missing = [
            r for r in ("cpu", "memory")
            if not isinstance(limits, MappingNode) or r not in limits
        ]
        if missing:
            issues.append(Issue(
                rule_id="resource-limits",
                severity=Severity.WARNING,
                message=f"Container '{container.name}' is missing {' and '.join(missing)} limits.",
                path=pointer(container.path + ("resources", "limits")),
                category=Category.RESOURCES,
            ))
    return issues


def _probe_check(doc: Document, field: str, rule_id: str) -> List[Issue]:
    return [
        Issue(
            rule_id=rule_id,
            severity=Severity.WARNING,
            message=f"Container '{c.name}' is missing {field}.",
            path=pointer(c.path + (field,)),
            category=Category.HEALTH_CHECKS,
        )
        for c in containers(doc)
        if c.get(field) is None
    ]


def check_liveness_probe(doc: Document) -> List[Issue]:
    """Rule: containers declare a livenessProbe so hung processes get restarted."""
    return _probe_check(doc, "livenessProbe", "liveness-probe")


def check_readiness_probe(doc: Document) -> List[Issue]:
    """Rule: containers declare a readinessProbe so traffic waits for startup."""
    return _probe_check(doc, "readinessProbe", "readiness-probe")


def check_run_as_non_root(doc: Document) -> List[Issue]:
    """
    Rule: containers must not run as root.

    The container securityContext wins; otherwise the pod-level
    securityContext applies. Anything other than an explicit `true` fires,
    including a missing securityContext.
    """
    spec_path = pod_spec_path(doc)
    if spec_path is None:
        return []
    pod_level = doc.value_at(spec_path + ("securityContext", "runAsNonRoot"))

    issues = []
    for container in containers(doc):
        own = container.value_at("securityContext", "runAsNonRoot")
        effective = own if own is not None else pod_level
        if effective is not True:
            issues.append(Issue(
                rule_id="run-as-non-root",
                severity=Severity.ERROR,
                message=f"Container '{container.name}' does not set runAsNonRoot: true.",
                path=pointer(container.path + ("securityContext", "runAsNonRoot")),
                category=Category.SECURITY,
            ))
    return issues


def check_read_only_root_filesystem(doc: Document) -> List[Issue]:
    """
    Rule: a declared securityContext should state readOnlyRootFilesystem.
    Containers without any securityContext are covered by run-as-non-root.
    """
    issues = []
    for container in containers(doc):
        context = container.get("securityContext")
        if isinstance(context, MappingNode) and "readOnlyRootFilesystem" not in context:
            issues.append(Issue(
                rule_id="read-only-root-filesystem",
                severity=Severity.WARNING,
                message=f"Container '{container.name}' does not set readOnlyRootFilesystem.",
                path=pointer(container.path + ("securityContext", "readOnlyRootFilesystem")),
                category=Category.SECURITY,
            ))
    return issues


def check_latest_image_tag(doc: Document) -> List[Issue]:
    """Rule: images are pinned; ':latest' and untagged images drift silently."""
    issues = []
    for container in containers(doc):
        image = container.value_at("image")
        if not isinstance(image, str) or not uses_mutable_tag(image):
            continue
        how = "the 'latest' tag" if image.endswith(":latest") else "no tag (implicitly 'latest')"
        issues.append(Issue(
            rule_id="latest-image-tag",
            severity=Severity.WARNING,
            message=f"Container '{container.name}' image '{image}' uses {how}.",
            path=pointer(container.path + ("image",)),
            category=Category.IMAGE_POLICY,
        ))
    return issues


BUILTIN_RULES = (
    RuleDescriptor("missing-labels", Category.LABELS, check_missing_labels,
                   "Resource metadata has no labels.", Severity.WARNING),
    RuleDescriptor("resource-limits", Category.RESOURCES, check_resource_limits,
                   "Containers declare CPU and memory limits.", Severity.WARNING),
    RuleDescriptor("liveness-probe", Category.HEALTH_CHECKS, check_liveness_probe,
                   "Containers declare a liveness probe.", Severity.WARNING),
    RuleDescriptor("readiness-probe", Category.HEALTH_CHECKS, check_readiness_probe,
                   "Containers declare a readiness probe.", Severity.WARNING),
    RuleDescriptor("run-as-non-root", Category.SECURITY, check_run_as_non_root,
                   "Containers run with runAsNonRoot: true.", Severity.ERROR),
    RuleDescriptor("read-only-root-filesystem", Category.SECURITY, check_read_only_root_filesystem,
                   "Security contexts state readOnlyRootFilesystem.", Severity.WARNING),
    RuleDescriptor("latest-image-tag", Category.IMAGE_POLICY, check_latest_image_tag,
                   "Images are pinned to a specific tag or digest.", Severity.WARNING),
)
