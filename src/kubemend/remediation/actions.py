#!/usr/bin/env python3
"""
KUBEMEND REMEDIATION ACTIONS - The Shield Library
-------------------------------------------------
Each action inspects the ORIGINAL document and yields the edits it would
make. A satisfied precondition yields nothing, which is what makes a
second pass over remediated output a no-op. Actions only write leaves
they own, so their edits compose in declared order without ever being
re-evaluated against each other.

Author: KubeMend Team
Date: 2026-10-17
"""

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Iterable, Iterator, Mapping, Optional, Tuple, Union

from kubemend.core import quantity
from kubemend.core.document import Document, MappingNode, Path, SequenceNode
from kubemend.core.models import Mode
from kubemend.rules.workload import REPLICATED_KINDS, containers, pod_spec_path, split_image, uses_mutable_tag

FIX = Mode.FIX
OPTIMIZE = Mode.OPTIMIZE

# Pinned tags known without a registry lookup; config files extend this table
DEFAULT_IMAGE_TAGS: Dict[str, Tuple[str, ...]] = {
    "nginx": ("1.27", "1.27.2"),
    "httpd": ("2.4", "2.4.62"),
    "redis": ("7.4", "7.4.1"),
    "memcached": ("1.6", "1.6.32"),
    "postgres": ("17", "17.0"),
    "mysql": ("8.4", "8.4.3"),
    "busybox": ("1.37", "1.37.0"),
    "alpine": ("3.20", "3.20.3"),
    "ubuntu": ("24.04",),
    "python": ("3.12", "3.12.7"),
    "node": ("22", "22.11.0"),
}


@dataclass(frozen=True)
class RemediationPolicy:
    cpu_request: str = "100m"
    memory_request: str = "128Mi"
    cpu_limit: str = "500m"
    memory_limit: str = "512Mi"
    probe_path: str = "/health"
    readiness_initial_delay: int = 10
    readiness_period: int = 10
    liveness_initial_delay: int = 30
    liveness_period: int = 30
    fix_replicas: int = 2
    optimize_replicas: int = 3
    image_tags: Mapping[str, Tuple[str, ...]] = field(default_factory=lambda: dict(DEFAULT_IMAGE_TAGS))
    fallback_tag: Optional[str] = None
    tmp_volume_name: str = "writable-tmp"

    def request(self, resource: str) -> str:
        return self.cpu_request if resource == "cpu" else self.memory_request

    def limit(self, resource: str) -> str:
        return self.cpu_limit if resource == "cpu" else self.memory_limit


@dataclass(frozen=True)
class Edit:
    path: Path
    value: Any
    description: str
    append: bool = False
    behavior_changing: bool = False


@dataclass(frozen=True)
class Skip:
    path: Path
    reason: str


Step = Union[Edit, Skip]


@dataclass(frozen=True)
class Action:
    id: str
    description: str
    plan: Callable[[Document, RemediationPolicy, Mode], Iterable[Step]]
    modes: FrozenSet[Mode]
    aggressive_in: FrozenSet[Mode] = frozenset()


# --- LABELS ---

def _label_edit(doc: Document, key: str, description: str) -> Iterator[Step]:
    metadata = doc.get(("metadata",))
    labels = doc.get(("metadata", "labels"))
    if metadata is not None and not isinstance(metadata, MappingNode):
        yield Skip(("metadata",), "metadata is not a mapping")
        return
    if labels is not None and not isinstance(labels, MappingNode):
        yield Skip(("metadata", "labels"), "labels is not a mapping")
        return
    if labels is not None and key in labels:
        return
    if not doc.name:
        yield Skip(("metadata", "labels", key), f"metadata.name is missing; cannot derive '{key}' label")
        return
    yield Edit(("metadata", "labels", key), doc.name, description)


def plan_app_label(doc, policy, mode):
    yield from _label_edit(doc, "app", "Added 'app' label based on resource name")


def plan_recommended_labels(doc, policy, mode):
    yield from _label_edit(doc, "app.kubernetes.io/name",
                           "Added recommended label 'app.kubernetes.io/name'")


# --- RESOURCES ---

def _resource_sections(container) -> Optional[Skip]:
    resources = container.get("resources")
    if resources is not None and not isinstance(resources, MappingNode):
        return Skip(container.path + ("resources",), "resources is not a mapping")
    for section in ("requests", "limits"):
        node = container.get("resources", section)
        if node is not None and not isinstance(node, MappingNode):
            return Skip(container.path + ("resources", section), f"resources.{section} is not a mapping")
    return None


def plan_resource_requests(doc, policy, mode):
    for c in containers(doc):
        problem = _resource_sections(c)
        if problem:
            yield problem
            continue
        for resource in ("cpu", "memory"):
            if c.get("resources", "requests", resource) is not None:
                continue
            value = policy.request(resource)
            limit = c.value_at("resources", "limits", resource)
            # a request above the existing limit would be rejected by the API server
            if limit is not None and quantity.compare(resource, value, limit) == 1:
                value = str(limit)
            yield Edit(c.path + ("resources", "requests", resource), value,
                       f"Added {resource} request {value} to container '{c.name}'")


def plan_resource_limits(doc, policy, mode):
    for c in containers(doc):
        problem = _resource_sections(c)
        if problem:
            yield problem
            continue
        for resource in ("cpu", "memory"):
            if c.get("resources", "limits", resource) is not None:
                continue
            value = policy.limit(resource)
            request = c.value_at("resources", "requests", resource)
            if request is not None and quantity.compare(resource, request, value) == 1:
                value = str(request)
            yield Edit(c.path + ("resources", "limits", resource), value,
                       f"Added {resource} limit {value} to container '{c.name}'")


# --- HEALTH CHECKS ---

def _first_port(container) -> Optional[Any]:
    ports = container.get("ports")
    if not isinstance(ports, SequenceNode) or not len(ports):
        return None
    first = ports[0]
    if not isinstance(first, MappingNode):
        return None
    port = first.value_at(("containerPort",))
    if isinstance(port, int) and not isinstance(port, bool):
        return port
    name = first.value_at(("name",))
    return name if isinstance(name, str) and name else None


def _probe_plan(doc, field_name: str, initial_delay: int, period: int, policy) -> Iterator[Step]:
    for c in containers(doc):
        if c.get(field_name) is not None:
            continue
        port = _first_port(c)
        if port is None:
            yield Skip(c.path + (field_name,), f"container '{c.name}' declares no port to probe")
            continue
        probe = {
            "httpGet": {"path": policy.probe_path, "port": port},
            "initialDelaySeconds": initial_delay,
            "periodSeconds": period,
        }
        yield Edit(c.path + (field_name,), probe, f"Added {field_name} for container '{c.name}'")


def plan_readiness_probe(doc, policy, mode):
    yield from _probe_plan(doc, "readinessProbe", policy.readiness_initial_delay,
                           policy.readiness_period, policy)


def plan_liveness_probe(doc, policy, mode):
    yield from _probe_plan(doc, "livenessProbe", policy.liveness_initial_delay,
                           policy.liveness_period, policy)


# --- SECURITY ---

def _security_contexts(doc) -> Iterator[Tuple[Any, Optional[MappingNode], Optional[Skip]]]:
    for c in containers(doc):
        context = c.get("securityContext")
        if context is not None and not isinstance(context, MappingNode):
            yield c, None, Skip(c.path + ("securityContext",), "securityContext is not a mapping")
        else:
            yield c, context, None


def plan_run_as_non_root(doc, policy, mode):
    spec_path = pod_spec_path(doc)
    pod_level = doc.value_at(spec_path + ("securityContext", "runAsNonRoot")) if spec_path else None
    for c, context, problem in _security_contexts(doc):
        if problem:
            yield problem
            continue
        own = context.value_at(("runAsNonRoot",)) if context is not None else None
        effective = own if own is not None else pod_level
        if effective is True:
            continue
        # overriding an explicit `false` is a deliberate policy change
        explicit = own is False or (own is None and pod_level is False)
        yield Edit(c.path + ("securityContext", "runAsNonRoot"), True,
                   f"Set runAsNonRoot: true for container '{c.name}'", behavior_changing=explicit)


def plan_disable_privilege_escalation(doc, policy, mode):
    for c, context, problem in _security_contexts(doc):
        if problem:
            yield problem
            continue
        current = context.value_at(("allowPrivilegeEscalation",)) if context is not None else None
        if current is False:
            continue
        yield Edit(c.path + ("securityContext", "allowPrivilegeEscalation"), False,
                   f"Set allowPrivilegeEscalation: false for container '{c.name}'")


def plan_drop_all_capabilities(doc, policy, mode):
    for c, context, problem in _security_contexts(doc):
        if problem:
            yield problem
            continue
        capabilities = context.get(("capabilities",)) if context is not None else None
        if capabilities is not None and not isinstance(capabilities, MappingNode):
            yield Skip(c.path + ("securityContext", "capabilities"), "capabilities is not a mapping")
            continue
        drop = capabilities.get(("drop",)) if capabilities is not None else None
        if drop is not None and not isinstance(drop, SequenceNode):
            yield Skip(c.path + ("securityContext", "capabilities", "drop"), "capabilities.drop is not a sequence")
            continue
        if drop is not None and "ALL" in drop.to_python():
            continue
        # added capabilities are left alone; drop ALL only clears the runtime defaults
        yield Edit(c.path + ("securityContext", "capabilities", "drop"), "ALL",
                   f"Dropped all Linux capabilities for container '{c.name}'", append=True)


def plan_read_only_root_filesystem(doc, policy, mode):
    spec_path = pod_spec_path(doc)
    volume = policy.tmp_volume_name
    needs_volume = False

    for c, context, problem in _security_contexts(doc):
        if problem:
            yield problem
            continue
        if context is not None and "readOnlyRootFilesystem" in context:
            continue
        mounts = c.get("volumeMounts")
        if mounts is not None and not isinstance(mounts, SequenceNode):
            yield Skip(c.path + ("volumeMounts",), "volumeMounts is not a sequence")
            continue
        yield Edit(c.path + ("securityContext", "readOnlyRootFilesystem"), True,
                   f"Set readOnlyRootFilesystem: true for container '{c.name}'")
        has_tmp = mounts is not None and any(
            isinstance(m, MappingNode) and m.value_at(("mountPath",)) == "/tmp" for m in mounts
        )
        if not has_tmp:
            yield Edit(c.path + ("volumeMounts",), {"name": volume, "mountPath": "/tmp"},
                       f"Mounted writable emptyDir at /tmp for container '{c.name}'", append=True)
            needs_volume = True

    if not needs_volume:
        return
    volumes = doc.get(spec_path + ("volumes",))
    if volumes is not None and not isinstance(volumes, SequenceNode):
        yield Skip(spec_path + ("volumes",), "volumes is not a sequence")
        return
    if volumes is not None and any(
        isinstance(v, MappingNode) and v.value_at(("name",)) == volume for v in volumes
    ):
        return
    yield Edit(spec_path + ("volumes",), {"name": volume, "emptyDir": {}},
               f"Added emptyDir volume '{volume}'", append=True)


# --- IMAGE POLICY ---

def _specificity(tag: str):
    numbers = []
    for part in re.split(r"[.\-]", tag):
        if not part.isdigit():
            break
        numbers.append(int(part))
    return len(numbers), tuple(numbers), -len(tag)


def _known_tags(policy: RemediationPolicy, repository: str) -> Tuple[str, ...]:
    candidates = [repository]
    for prefix in ("docker.io/library/", "docker.io/", "library/"):
        if repository.startswith(prefix):
            candidates.append(repository[len(prefix):])
    for name in candidates:
        tags = policy.image_tags.get(name)
        if tags:
            return tuple(tags)
    return ()


def plan_pin_image_tag(doc, policy, mode):
    for c in containers(doc):
        image = c.value_at("image")
        if not isinstance(image, str) or not uses_mutable_tag(image):
            continue
        repository, _, _ = split_image(image)
        tags = _known_tags(policy, repository)
        if tags:
            tag = max(tags, key=_specificity)
        elif policy.fallback_tag:
            tag = policy.fallback_tag
        else:
            yield Skip(c.path + ("image",), f"no known tag for '{repository}'; pin it manually")
            continue
        pinned = f"{repository}:{tag}"
        yield Edit(c.path + ("image",), pinned, f"Changed image from '{image}' to '{pinned}'")


def plan_prefer_cached_images(doc, policy, mode):
    for c in containers(doc):
        image = c.value_at("image")
        if c.value_at("imagePullPolicy") != "Always":
            continue
        # a mutable tag still needs Always to pick up new pushes
        if not isinstance(image, str) or uses_mutable_tag(image):
            continue
        yield Edit(c.path + ("imagePullPolicy",), "IfNotPresent",
                   f"Changed imagePullPolicy from Always to IfNotPresent for container '{c.name}'")


# --- WORKLOAD SHAPE ---

def _spec(doc) -> Optional[MappingNode]:
    spec = doc.get(("spec",))
    return spec if isinstance(spec, MappingNode) else None


def _spec_default(kinds: Tuple[str, ...], key: str, value_for: Callable[[RemediationPolicy, Mode], Any],
                  description: str):
    def plan(doc, policy, mode):
        if doc.kind not in kinds:
            return
        spec = _spec(doc)
        if spec is None:
            yield Skip(("spec",), f"{doc.kind} has no spec mapping")
            return
        if key in spec:
            return
        value = value_for(policy, mode)
        yield Edit(("spec", key), value, description.format(value=value))
    return plan


def plan_deployment_selector(doc, policy, mode):
    if doc.kind != "Deployment":
        return
    spec = _spec(doc)
    if spec is None or "selector" in spec:
        return
    labels = doc.get(("spec", "template", "metadata", "labels"))
    if not isinstance(labels, MappingNode) or not len(labels):
        yield Skip(("spec", "selector"), "pod template has no labels to select on")
        return
    yield Edit(("spec", "selector"), {"matchLabels": labels.to_python()},
               "Added selector matching the pod template labels")


plan_rolling_update = _spec_default(
    ("Deployment",), "strategy",
    lambda policy, mode: {"type": "RollingUpdate",
                          "rollingUpdate": {"maxUnavailable": "25%", "maxSurge": "25%"}},
    "Added RollingUpdate strategy",
)

plan_replicas = _spec_default(
    REPLICATED_KINDS, "replicas",
    lambda policy, mode: policy.fix_replicas if mode is FIX else policy.optimize_replicas,
    "Set replicas to {value}",
)

plan_restart_policy = _spec_default(
    ("Pod",), "restartPolicy", lambda policy, mode: "Always", "Added restartPolicy: {value}",
)

plan_dns_policy = _spec_default(
    ("Pod",), "dnsPolicy", lambda policy, mode: "ClusterFirst", "Added dnsPolicy: {value}",
)

plan_session_affinity = _spec_default(
    ("Service",), "sessionAffinity", lambda policy, mode: "None", "Added explicit sessionAffinity: {value}",
)


BOTH = frozenset({FIX, OPTIMIZE})

DEFAULT_ACTIONS: Tuple[Action, ...] = (
    Action("add-app-label", "Label resources with their name", plan_app_label, BOTH),
    Action("add-recommended-labels", "Add app.kubernetes.io labels", plan_recommended_labels,
           frozenset({OPTIMIZE})),
    Action("add-resource-requests", "Add CPU/memory requests", plan_resource_requests, BOTH),
    Action("add-resource-limits", "Add CPU/memory limits", plan_resource_limits, BOTH,
           aggressive_in=frozenset({OPTIMIZE})),
    Action("add-readiness-probe", "Add an HTTP readiness probe", plan_readiness_probe, frozenset({FIX})),
    Action("add-liveness-probe", "Add an HTTP liveness probe", plan_liveness_probe, frozenset({FIX})),
    Action("set-run-as-non-root", "Require a non-root user", plan_run_as_non_root, BOTH),
    Action("disable-privilege-escalation", "Forbid privilege escalation",
           plan_disable_privilege_escalation, BOTH, aggressive_in=BOTH),
    Action("drop-all-capabilities", "Drop all Linux capabilities", plan_drop_all_capabilities, BOTH,
           aggressive_in=BOTH),
    Action("set-read-only-root-filesystem", "Make the root filesystem read-only",
           plan_read_only_root_filesystem, BOTH, aggressive_in=BOTH),
    Action("pin-image-tag", "Replace mutable image tags", plan_pin_image_tag, frozenset({FIX})),
    Action("prefer-cached-images", "Avoid re-pulling pinned images", plan_prefer_cached_images,
           frozenset({OPTIMIZE})),
    Action("add-deployment-selector", "Add a missing Deployment selector", plan_deployment_selector,
           frozenset({FIX})),
    Action("add-rolling-update-strategy", "Add a RollingUpdate strategy", plan_rolling_update, BOTH),
    Action("set-replicas", "Run more than one replica", plan_replicas, BOTH, aggressive_in=BOTH),
    Action("set-restart-policy", "Make the Pod restart policy explicit", plan_restart_policy, BOTH),
    Action("set-dns-policy", "Make the Pod DNS policy explicit", plan_dns_policy,
           frozenset({OPTIMIZE}), aggressive_in=frozenset({OPTIMIZE})),
    Action("set-session-affinity", "Make Service session affinity explicit", plan_session_affinity,
           frozenset({OPTIMIZE})),
)
