#!/usr/bin/env python3
"""
KUBEMEND EXPORTER - High-Fidelity Round-Trip
--------------------------------------------
Renders Documents back to YAML text. A Document that came from the
Loader still carries the ruamel tree it was parsed from; rendering
starts from a deep copy of that tree and rewrites only what differs, so
comments, quoting and key order of untouched keys survive a fix.

Author: KubeMend Team
Date: 2026-10-17
"""

import copy
import io
from typing import Any, Iterable

from ruamel.yaml import YAML
from ruamel.yaml.comments import CommentedMap, CommentedSeq

from kubemend.core.document import Document, MappingNode, Node, ScalarNode, SequenceNode, _plain_scalar


def _make_emitter() -> YAML:
    """One emitter per export: ruamel keeps serializer state on the YAML instance."""
    yaml = YAML(typ='rt')
    yaml.preserve_quotes = True
    # Standard K8s: 2 spaces, but sequences are indented 4 (offset 2)
    # for maximum readability in IDEs.
    yaml.indent(mapping=2, sequence=4, offset=2)
    yaml.width = 4096
    return yaml


class KubeExporter:
    """
    The Reconstructor: converts Documents back to YAML strings.
    Holds no emitter state, so one instance can serve many threads.
    """

    # --- TREE CONVERSION ---

    def _build(self, node: Node) -> Any:
        """Fresh ruamel containers for nodes with no original counterpart."""
        if isinstance(node, MappingNode):
            built = CommentedMap()
            for key, child in node.items():
                built[key] = self._build(child)
            return built
        if isinstance(node, SequenceNode):
            return CommentedSeq(self._build(child) for child in node)
        return node.to_python()

    def _sync(self, target: Any, node: Node) -> Any:
        """
        Brings a copied origin subtree in line with `node` and returns it.
        Existing keys keep their position and comments; new keys go last.
        """
        if isinstance(node, MappingNode):
            if not isinstance(target, CommentedMap):
                return self._build(node)
            for key in [k for k in target if k not in node]:
                del target[key]
            for key, child in node.items():
                if key in target:
                    target[key] = self._sync(target[key], child)
                else:
                    target[key] = self._build(child)
            return target

        if isinstance(node, SequenceNode):
            if not isinstance(target, CommentedSeq):
                return self._build(node)
            for i, child in enumerate(node):
                if i < len(target):
                    target[i] = self._sync(target[i], child)
                else:
                    target.append(self._build(child))
            while len(target) > len(node):
                del target[-1]
            return target

        if isinstance(target, (CommentedMap, CommentedSeq)):
            return node.to_python()
        try:
            # Same value: keep the original scalar object and its quoting
            if ScalarNode(_plain_scalar(target)) == node:
                return target
        except TypeError:
            pass
        return node.to_python()

    def to_yaml_tree(self, document: Document) -> Any:
        if document.origin is None:
            return self._build(document.root)
        return self._sync(copy.deepcopy(document.origin), document.root)

    # --- EXPORT ---

    def export(self, documents: Iterable[Document]) -> str:
        """
        Exports documents into a single string with explicit separators,
        in the order given.
        """
        yaml = _make_emitter()
        stream = io.StringIO()

        for i, doc in enumerate(documents):
            # For multi-document files, we explicitly write the separator
            if i > 0:
                stream.write("---\n")
            yaml.dump(self.to_yaml_tree(doc), stream)

        return stream.getvalue()


def render_documents(documents: Iterable[Document]) -> str:
    return KubeExporter().export(documents)
