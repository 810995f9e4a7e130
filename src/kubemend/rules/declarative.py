#!/usr/bin/env python3
"""
KUBEMEND DECLARATIVE RULES
--------------------------
Custom rules described as data (path + expected value + severity) instead
of code, so they can come from a config file.

    custom_rules:
      - id: no-host-network
        path: spec.template.spec.hostNetwork
        expected: false
        severity: error
        message: Pods must not use the host network.

A rule without `expected` fires when the path is absent. A `*` path
element fans out over every item of a sequence (or value of a mapping).

Author: KubeMend Team
Date: 2026-10-17
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Tuple

from kubemend.core.document import Document, MappingNode, Node, SequenceNode, pointer
from kubemend.core.exceptions import ConfigurationError
from kubemend.core.models import Category, Issue, RuleDescriptor, Severity

WILDCARD = "*"
_UNSET = object()

ALLOWED_KEYS = {"id", "path", "expected", "severity", "message", "category", "kinds", "description"}


def parse_path(raw: Any) -> Tuple[Any, ...]:
    """Accepts 'a.b.0.c' or a list; numeric segments become sequence indices."""
    if isinstance(raw, str):
        parts = raw.split(".")
    elif isinstance(raw, (list, tuple)):
        parts = list(raw)
    else:
        raise ConfigurationError(f"invalid rule path: {raw!r} (expected a dotted string or a list)")
    if not parts or any(p == "" for p in parts):
        raise ConfigurationError(f"invalid rule path: {raw!r}")
    for p in parts:
        # bool is an int subclass but never a sequence index
        if isinstance(p, bool) or not isinstance(p, (str, int)) or (isinstance(p, int) and p < 0):
            raise ConfigurationError(f"invalid rule path: {raw!r} (segment {p!r} is not a key or index)")
    return tuple(int(p) if isinstance(p, str) and p.isdigit() else p for p in parts)


def _expand(node: Node, path: Tuple[Any, ...], prefix: Tuple[Any, ...] = ()) -> Iterator[Tuple[Any, ...]]:
    """Yields concrete paths; stops at the first missing step so absence is still reported."""
    if not path:
        yield prefix
        return
    head, rest = path[0], path[1:]
    if head != WILDCARD:
        child = node.get((head,)) if node is not None else None
        yield from _expand(child, rest, prefix + (head,))
        return
    if isinstance(node, SequenceNode):
        for i, item in enumerate(node):
            yield from _expand(item, rest, prefix + (i,))
    elif isinstance(node, MappingNode):
        for key, item in node.items():
            yield from _expand(item, rest, prefix + (key,))


@dataclass(frozen=True)
class DeclarativeRule:
    id: str
    path: Tuple[Any, ...]
    message: str
    severity: Severity = Severity.WARNING
    category: Category = Category.CUSTOM
    expected: Any = _UNSET
    kinds: Tuple[str, ...] = ()
    description: str = ""

    def evaluate(self, doc: Document) -> List[Issue]:
        if self.kinds and doc.kind not in self.kinds:
            return []
        issues = []
        for concrete in _expand(doc.root, self.path):
            node = doc.get(concrete)
            if node is None:
                violated = self.expected is _UNSET or self.expected is not None
            elif self.expected is _UNSET:
                violated = False
            else:
                violated = node != Node.from_python(self.expected)
            if violated:
                issues.append(Issue(self.id, self.severity, self.message, pointer(concrete), self.category))
        return issues

    def descriptor(self) -> RuleDescriptor:
        return RuleDescriptor(self.id, self.category, self.evaluate,
                              self.description or self.message, self.severity)


def _enum(enum_cls, raw: Any, field: str, rule_id: str):
    try:
        return enum_cls(str(raw).lower())
    except ValueError:
        allowed = ", ".join(e.value for e in enum_cls)
        raise ConfigurationError(f"custom rule '{rule_id}': {field} must be one of {allowed}")


def from_mapping(spec: Dict[str, Any]) -> DeclarativeRule:
    """Builds a rule from its config-file form, rejecting anything malformed."""
    if not isinstance(spec, dict):
        raise ConfigurationError("custom rule entries must be mappings")
    rule_id = spec.get("id")
    if not isinstance(rule_id, str) or not rule_id:
        raise ConfigurationError("custom rule is missing a string 'id'")
    unknown = set(spec) - ALLOWED_KEYS
    if unknown:
        raise ConfigurationError(f"custom rule '{rule_id}': unknown keys {sorted(unknown)}")
    if "path" not in spec:
        raise ConfigurationError(f"custom rule '{rule_id}' is missing 'path'")

    kinds = spec.get("kinds", ())
    if isinstance(kinds, str):
        kinds = (kinds,)

    return DeclarativeRule(
        id=rule_id,
        path=parse_path(spec["path"]),
        message=str(spec.get("message") or f"{rule_id} check failed."),
        severity=_enum(Severity, spec.get("severity", "warning"), "severity", rule_id),
        category=_enum(Category, spec.get("category", "custom"), "category", rule_id),
        expected=spec.get("expected", _UNSET),
        kinds=tuple(kinds),
        description=str(spec.get("description", "")),
    )
