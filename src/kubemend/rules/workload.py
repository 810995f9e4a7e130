#!/usr/bin/env python3
"""
KUBEMEND WORKLOAD TRAVERSAL
---------------------------
Locates the pod spec and containers of a workload document. The resource
kind decides the traversal root; kinds without a pod template have no
containers, which is not an error.

Author: KubeMend Team
Date: 2026-10-17
"""

from dataclasses import dataclass
from typing import Any, List, Optional

from kubemend.core.document import Document, MappingNode, Path, SequenceNode, pointer

# Kinds whose pods are described by spec.template
TEMPLATE_KINDS = ("Deployment", "StatefulSet", "DaemonSet", "ReplicaSet", "Job")

# Kinds that carry spec.replicas
REPLICATED_KINDS = ("Deployment", "StatefulSet", "ReplicaSet")


def pod_spec_path(doc: Document) -> Optional[Path]:
    kind = doc.kind
    if kind == "Pod":
        return ("spec",)
    if kind in TEMPLATE_KINDS:
        return ("spec", "template", "spec")
    if kind == "CronJob":
        return ("spec", "jobTemplate", "spec", "template", "spec")
    return None


@dataclass(frozen=True)
class ContainerRef:
    index: int
    path: Path
    node: MappingNode

    @property
    def name(self) -> str:
        name = self.node.value_at(("name",))
        return name if isinstance(name, str) and name else f"#{self.index}"

    @property
    def pointer(self) -> str:
        return pointer(self.path)

    def get(self, *sub: Any):
        return self.node.get(sub)

    def value_at(self, *sub: Any, default: Any = None) -> Any:
        return self.node.value_at(sub, default)


def containers(doc: Document) -> List[ContainerRef]:
    """Containers of a workload, in manifest order. Non-mapping entries are skipped."""
    spec_path = pod_spec_path(doc)
    if spec_path is None:
        return []
    path = spec_path + ("containers",)
    seq = doc.get(path)
    if not isinstance(seq, SequenceNode):
        return []
    return [
        ContainerRef(i, path + (i,), item)
        for i, item in enumerate(seq)
        if isinstance(item, MappingNode)
    ]


def split_image(image: str):
    """
    Splits an image reference into (repository, tag, digest).
    A registry port ("host:5000/app") is not mistaken for a tag.
    """
    digest = None
    if "@" in image:
        image, digest = image.split("@", 1)
    slash = image.rfind("/")
    colon = image.rfind(":")
    if colon > slash:
        return image[:colon], image[colon + 1:], digest
    return image, None, digest


def uses_mutable_tag(image: str) -> bool:
    """True for ':latest' and for untagged images (which resolve to latest)."""
    _, tag, digest = split_image(image)
    if digest:
        return False
    return tag is None or tag == "latest"
