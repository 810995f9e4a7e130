#!/usr/bin/env python3
"""
KUBEMEND RULE REGISTRY
----------------------
Holds the closed set of rules available to a run. Built once at startup,
never mutated afterwards; extending it produces a new registry.

Author: KubeMend Team
Date: 2026-10-17
"""

from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from kubemend.core.exceptions import ConfigurationError
from kubemend.core.models import RuleDescriptor
from kubemend.rules.checks import BUILTIN_RULES


class RuleRegistry:
    """
    Ordered, read-only collection of RuleDescriptors.
    Declaration order is evaluation and report order.
    """

    def __init__(self, descriptors: Iterable[RuleDescriptor]):
        rules: Dict[str, RuleDescriptor] = {}
        for descriptor in descriptors:
            if descriptor.id in rules:
                raise ConfigurationError(f"Duplicate rule id: '{descriptor.id}'")
            rules[descriptor.id] = descriptor
        self._rules = rules
        self._order: Tuple[str, ...] = tuple(rules)

    def __contains__(self, rule_id: str) -> bool:
        return rule_id in self._rules

    def __iter__(self) -> Iterator[RuleDescriptor]:
        return (self._rules[rule_id] for rule_id in self._order)

    def __len__(self) -> int:
        return len(self._order)

    @property
    def ids(self) -> Tuple[str, ...]:
        return self._order

    def get(self, rule_id: str) -> RuleDescriptor:
        try:
            return self._rules[rule_id]
        except KeyError:
            raise ConfigurationError(f"Unknown rule: '{rule_id}'") from None

    def select(self, names: Optional[Sequence[str]] = None) -> List[RuleDescriptor]:
        """
        Resolves a requested rule-name list. None selects every rule.
        Unknown names are a configuration error, never silently dropped.
        """
        if names is None:
            return list(self)
        unknown = [n for n in names if n not in self._rules]
        if unknown:
            known = ", ".join(self._order)
            raise ConfigurationError(f"Unknown rule(s): {', '.join(unknown)}. Available: {known}")
        wanted = set(names)
        return [self._rules[rule_id] for rule_id in self._order if rule_id in wanted]

    def extended(self, descriptors: Iterable[RuleDescriptor]) -> "RuleRegistry":
        return RuleRegistry(list(self) + list(descriptors))


def default_registry(custom: Iterable[RuleDescriptor] = ()) -> RuleRegistry:
    """Built-in rules followed by any custom (declarative) rules."""
    return RuleRegistry(list(BUILTIN_RULES) + list(custom))
