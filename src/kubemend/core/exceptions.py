#!/usr/bin/env python3
"""
KUBEMEND EXCEPTIONS
-------------------
Typed failures raised across the KubeMend core. Each class is scoped:
document-level and rule-level failures are contained where they happen,
only configuration failures abort a whole invocation.

Author: KubeMend Team
Date: 2026-10-17
"""

from typing import Any, Optional, Sequence


class KubeMendError(Exception):
    """Root of every error raised by KubeMend."""


class ParseError(KubeMendError):
    """
    A single document inside a source could not be parsed.

    Returned as a value by the Loader so the remaining documents of the
    same source are still processed.
    """

    def __init__(self, source: str, index: int, message: str, line: Optional[int] = None):
        self.source = source
        self.index = index
        self.message = message
        self.line = line
        location = f"{source}#{index}"
        if line is not None:
            location += f" (line {line})"
        super().__init__(f"{location}: {message}")

    def to_dict(self) -> dict:
        return {
            "source": self.source,
            "index": self.index,
            "message": self.message,
            "line": self.line,
        }


class PathError(KubeMendError):
    """A document path is malformed or cannot be written as requested."""

    def __init__(self, path: Sequence[Any], reason: str):
        self.path = tuple(path)
        self.reason = reason
        super().__init__(f"{reason} at path {list(self.path)!r}")


class RuleEvaluationError(KubeMendError):
    """Wraps an unexpected failure raised from inside a rule."""

    def __init__(self, rule_id: str, cause: BaseException):
        self.rule_id = rule_id
        self.cause = cause
        super().__init__(f"rule failed: {rule_id}: {type(cause).__name__}: {cause}")


class ConfigurationError(KubeMendError):
    """Unknown rule names, invalid modes or malformed settings."""


class UnfixableError(KubeMendError):
    """A remediation action cannot be applied safely to this document."""

    def __init__(self, reason: str, path: Sequence[Any] = ()):
        self.reason = reason
        self.path = tuple(path)
        super().__init__(reason)
