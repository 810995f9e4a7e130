#!/usr/bin/env python3
"""
KUBEMEND DOCUMENT MODEL
-----------------------
The generic, order-preserving tree every other component works on.

A manifest is parsed into immutable nodes (mapping / sequence / scalar).
Reads are single `get(path)` calls that return None when anything along
the path is missing. Writes never touch the receiver: `with_value` copies
only the ancestor chain of the written path and shares every untouched
sibling, so an original Document and its remediated copy can never alias
each other's edits.

Author: KubeMend Team
Date: 2026-10-17
"""

import datetime
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional, Sequence, Tuple, Union

from ruamel.yaml.scalarbool import ScalarBoolean

from kubemend.core.exceptions import PathError

PathElement = Union[str, int]
Path = Tuple[PathElement, ...]

SCALAR_TYPES = (str, int, float, bool, type(None))


def _check_path(path: Sequence[Any]) -> Path:
    """Normalizes a path to a tuple and rejects elements that can't address anything."""
    if isinstance(path, str):
        raise PathError((path,), "path must be a sequence of keys, not a string")
    checked = tuple(path)
    for element in checked:
        if isinstance(element, bool) or not isinstance(element, (str, int)):
            raise PathError(checked, f"invalid path element {element!r}")
    return checked


def pointer(path: Sequence[PathElement]) -> str:
    """Renders a path as a JSON pointer (RFC 6901 escaping)."""
    parts = [str(p).replace("~", "~0").replace("/", "~1") for p in path]
    return "".join("/" + part for part in parts)


class Node:
    """Base class of the three immutable node kinds."""

    __slots__ = ()

    def __setattr__(self, name, value):
        raise AttributeError(f"{type(self).__name__} is immutable")

    # --- CONSTRUCTION ---

    @staticmethod
    def from_python(value: Any) -> "Node":
        """
        Converts plain containers (and ruamel round-trip containers) into nodes.
        Existing nodes are returned unchanged.
        """
        if isinstance(value, Node):
            return value
        if isinstance(value, dict):
            return MappingNode(value.items())
        if isinstance(value, (list, tuple)):
            return SequenceNode(value)
        return ScalarNode(_plain_scalar(value))

    # --- READ ACCESS ---

    def _child(self, element: PathElement) -> Optional["Node"]:
        return None

    def get(self, path: Sequence[PathElement]) -> Optional["Node"]:
        node: Optional[Node] = self
        for element in _check_path(path):
            node = node._child(element)
            if node is None:
                return None
        return node

    def value_at(self, path: Sequence[PathElement], default: Any = None) -> Any:
        """Returns the plain Python value at `path`, or `default` when absent."""
        node = self.get(path)
        if node is None:
            return default
        return node.to_python()

    def to_python(self) -> Any:
        raise NotImplementedError

    def depth(self) -> int:
        """Nesting depth; a scalar has depth 0."""
        return 0

    # --- PURE WRITES ---

    def _with(self, path: Path, pos: int, new: "Node") -> "Node":
        if pos == len(path):
            return new
        raise PathError(path[:pos + 1], "cannot descend into a scalar")

    def with_value(self, path: Sequence[PathElement], value: Any) -> "Node":
        checked = _check_path(path)
        return self._with(checked, 0, Node.from_python(value))

    def appended(self, path: Sequence[PathElement], value: Any) -> "Node":
        """Appends to the sequence at `path`, creating the sequence when absent."""
        checked = _check_path(path)
        item = Node.from_python(value)
        target = self.get(checked)
        if target is None:
            return self._with(checked, 0, SequenceNode._build((item,)))
        if not isinstance(target, SequenceNode):
            raise PathError(checked, "cannot append to a non-sequence")
        return self._with(checked, 0, SequenceNode._build(target.items + (item,)))

    def without(self, path: Sequence[PathElement]) -> "Node":
        """Removes a mapping key. Missing keys are a no-op."""
        checked = _check_path(path)
        if not checked:
            raise PathError(checked, "cannot remove the root")
        parent = self.get(checked[:-1])
        if parent is None:
            return self
        if not isinstance(parent, MappingNode):
            raise PathError(checked, "can only remove keys from a mapping")
        if checked[-1] not in parent:
            return self
        kept = {k: v for k, v in parent.items() if k != checked[-1]}
        return self._with(checked[:-1], 0, MappingNode._build(kept))


class ScalarNode(Node):
    __slots__ = ("_value",)

    def __init__(self, value: Any = None):
        if not isinstance(value, SCALAR_TYPES):
            raise TypeError(f"unsupported scalar type: {type(value).__name__}")
        object.__setattr__(self, "_value", value)

    @property
    def value(self) -> Any:
        return self._value

    def to_python(self) -> Any:
        return self._value

    def __eq__(self, other):
        if not isinstance(other, ScalarNode):
            return NotImplemented
        # True == 1 in Python; a YAML bool and int are different values
        return type(self._value) is type(other._value) and self._value == other._value

    def __repr__(self):
        return f"ScalarNode({self._value!r})"


class MappingNode(Node):
    __slots__ = ("_items",)

    def __init__(self, items: Any = ()):
        if isinstance(items, dict):
            items = items.items()
        converted: Dict[Any, Node] = {}
        for key, value in items:
            key = _plain_scalar(key)
            if key in converted:
                raise ValueError(f"duplicate mapping key: {key!r}")
            converted[key] = Node.from_python(value)
        object.__setattr__(self, "_items", converted)

    @classmethod
    def _build(cls, items: Dict[Any, Node]) -> "MappingNode":
        node = cls.__new__(cls)
        object.__setattr__(node, "_items", items)
        return node

    def _child(self, element: PathElement) -> Optional[Node]:
        return self._items.get(element)

    def keys(self):
        return self._items.keys()

    def items(self):
        return self._items.items()

    def values(self):
        return self._items.values()

    def __contains__(self, key) -> bool:
        return key in self._items

    def __iter__(self) -> Iterator[Any]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def to_python(self) -> Dict[Any, Any]:
        return {k: v.to_python() for k, v in self._items.items()}

    def depth(self) -> int:
        return 1 + max((v.depth() for v in self._items.values()), default=0)

    def _with(self, path: Path, pos: int, new: Node) -> Node:
        if pos == len(path):
            return new
        key = path[pos]
        child = self._items.get(key)
        last = pos + 1 == len(path)
        if last:
            replacement = new
        else:
            if child is None:
                if isinstance(path[pos + 1], int):
                    raise PathError(path[:pos + 2], "missing sequence index (no implicit padding)")
                child = EMPTY_MAPPING
            replacement = child._with(path, pos + 1, new)
        items = dict(self._items)
        # reassigning an existing key keeps its position; new keys go last
        items[key] = replacement
        return MappingNode._build(items)

    def __eq__(self, other):
        if not isinstance(other, MappingNode):
            return NotImplemented
        return self._items == other._items

    def __repr__(self):
        return f"MappingNode({self._items!r})"


class SequenceNode(Node):
    __slots__ = ("_items",)

    def __init__(self, items: Any = ()):
        object.__setattr__(self, "_items", tuple(Node.from_python(v) for v in items))

    @classmethod
    def _build(cls, items: Tuple[Node, ...]) -> "SequenceNode":
        node = cls.__new__(cls)
        object.__setattr__(node, "_items", items)
        return node

    @property
    def items(self) -> Tuple[Node, ...]:
        return self._items

    def _child(self, element: PathElement) -> Optional[Node]:
        if isinstance(element, int) and 0 <= element < len(self._items):
            return self._items[element]
        return None

    def __iter__(self) -> Iterator[Node]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __getitem__(self, index: int) -> Node:
        return self._items[index]

    def to_python(self) -> list:
        return [v.to_python() for v in self._items]

    def depth(self) -> int:
        return 1 + max((v.depth() for v in self._items), default=0)

    def _with(self, path: Path, pos: int, new: Node) -> Node:
        if pos == len(path):
            return new
        index = path[pos]
        if not isinstance(index, int):
            raise PathError(path[:pos + 1], "sequence requires an integer index")
        if not 0 <= index < len(self._items):
            raise PathError(path[:pos + 1], "sequence index out of range (no implicit padding)")
        items = list(self._items)
        items[index] = items[index]._with(path, pos + 1, new)
        return SequenceNode._build(tuple(items))

    def __eq__(self, other):
        if not isinstance(other, SequenceNode):
            return NotImplemented
        return self._items == other._items

    def __repr__(self):
        return f"SequenceNode({list(self._items)!r})"


EMPTY_MAPPING = MappingNode._build({})


def _plain_scalar(value: Any) -> Any:
    """Strips ruamel scalar subclasses down to the plain Python value."""
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, ScalarBoolean):
        return bool(value)
    if isinstance(value, str):
        return str(value)
    if isinstance(value, int):
        return int(value)
    if isinstance(value, float):
        return float(value)
    if isinstance(value, (datetime.date, datetime.datetime)):
        return value.isoformat()
    raise TypeError(f"unsupported YAML value of type {type(value).__name__}")


@dataclass(frozen=True, order=True)
class DocumentRef:
    """Provenance of a top-level document: source path and position in it."""
    source: str
    index: int

    def __str__(self):
        return f"{self.source}#{self.index}"


class Document:
    """
    One top-level manifest: a root node plus provenance.

    `origin` is the tree the Loader parsed (ruamel round-trip containers).
    It is never mutated; the exporter deep-copies it to keep comments and
    formatting of untouched keys.
    """

    __slots__ = ("root", "source", "index", "origin")

    def __init__(self, root: Any, source: str = "<memory>", index: int = 0, origin: Any = None):
        object.__setattr__(self, "root", Node.from_python(root))
        object.__setattr__(self, "source", source)
        object.__setattr__(self, "index", index)
        object.__setattr__(self, "origin", origin)

    def __setattr__(self, name, value):
        raise AttributeError("Document is immutable")

    @property
    def ref(self) -> DocumentRef:
        return DocumentRef(self.source, self.index)

    def _derive(self, root: Node) -> "Document":
        return Document(root, self.source, self.index, self.origin)

    # --- PATH ACCESS ---

    def get(self, path: Sequence[PathElement]) -> Optional[Node]:
        return self.root.get(path)

    def value_at(self, path: Sequence[PathElement], default: Any = None) -> Any:
        return self.root.value_at(path, default)

    def with_value(self, path: Sequence[PathElement], value: Any) -> "Document":
        return self._derive(self.root.with_value(path, value))

    def appended(self, path: Sequence[PathElement], value: Any) -> "Document":
        return self._derive(self.root.appended(path, value))

    def without(self, path: Sequence[PathElement]) -> "Document":
        return self._derive(self.root.without(path))

    # --- IDENTITY (lazy, never raises) ---

    def _text(self, path: Path) -> Optional[str]:
        node = self.root.get(path)
        if isinstance(node, ScalarNode) and isinstance(node.value, str):
            return node.value
        return None

    @property
    def kind(self) -> Optional[str]:
        return self._text(("kind",))

    @property
    def api_version(self) -> Optional[str]:
        return self._text(("apiVersion",))

    @property
    def name(self) -> Optional[str]:
        return self._text(("metadata", "name"))

    @property
    def namespace(self) -> Optional[str]:
        return self._text(("metadata", "namespace"))

    @property
    def display_name(self) -> str:
        return f"{self.kind or 'Unknown'}/{self.name or 'unnamed'}"

    def to_python(self) -> Any:
        return self.root.to_python()

    def __eq__(self, other):
        if not isinstance(other, Document):
            return NotImplemented
        return self.ref == other.ref and self.root == other.root

    __hash__ = None

    def __repr__(self):
        return f"Document({self.display_name} @ {self.ref})"
