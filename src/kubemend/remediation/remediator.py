#!/usr/bin/env python3
"""
KUBEMEND REMEDIATOR - Policy Enforcement
----------------------------------------
Runs a document through the gauntlet of remediation actions for one mode
(FIX or OPTIMIZE) and returns a RemediationPlan: the untouched original,
the remediated copy and a changelog of what was applied or skipped.

Conservative runs only apply edits that don't change runtime behavior;
everything else is recorded as skipped so the user can see what
--aggressive would have done.

Author: KubeMend Team
Date: 2026-10-17
"""

import logging
from typing import Any, List, Optional, Sequence, Type, TypeVar

from kubemend.core.document import Document, MappingNode, pointer
from kubemend.core.exceptions import ConfigurationError, PathError, UnfixableError
from kubemend.core.models import Aggressiveness, Change, Mode, RemediationPlan, SkippedAction
from kubemend.remediation.actions import DEFAULT_ACTIONS, Action, Edit, RemediationPolicy, Skip

logger = logging.getLogger("kubemend.remediator")

E = TypeVar("E", Mode, Aggressiveness)

AGGRESSIVE_ONLY = "changes runtime behavior; requires aggressive mode"


def coerce(enum: Type[E], value: Any) -> E:
    """Accepts an enum member or its string value ('fix', 'aggressive')."""
    if isinstance(value, enum):
        return value
    try:
        return enum(str(value).lower())
    except ValueError:
        choices = ", ".join(m.value for m in enum)
        raise ConfigurationError(f"invalid {enum.__name__.lower()} '{value}' (expected one of {choices})") from None


class Remediator:
    """
    The 'Shield' for manifests: hardens documents with a fixed, ordered
    library of actions parameterized by a RemediationPolicy.
    """

    def __init__(self, policy: Optional[RemediationPolicy] = None,
                 actions: Sequence[Action] = DEFAULT_ACTIONS):
        self.policy = policy or RemediationPolicy()
        self.actions = tuple(actions)

    def actions_for(self, mode: Mode) -> List[Action]:
        return [a for a in self.actions if mode in a.modes]

    def remediate(self, document: Document, mode: Any = Mode.FIX,
                  aggressiveness: Any = Aggressiveness.CONSERVATIVE) -> RemediationPlan:
        mode = coerce(Mode, mode)
        aggressiveness = coerce(Aggressiveness, aggressiveness)
        aggressive = aggressiveness is Aggressiveness.AGGRESSIVE

        changes: List[Change] = []
        skipped: List[SkippedAction] = []
        working = document

        # Only mapping roots describe resources
        if isinstance(document.root, MappingNode):
            for action in self.actions_for(mode):
                gated = mode in action.aggressive_in
                try:
                    # Preconditions are read from the original, never from earlier edits
                    steps = list(action.plan(document, self.policy, mode))
                except UnfixableError as e:
                    skipped.append(SkippedAction(action.id, pointer(e.path), e.reason))
                    continue

                for step in steps:
                    if isinstance(step, Skip):
                        skipped.append(SkippedAction(action.id, pointer(step.path), step.reason))
                        continue
                    if (gated or step.behavior_changing) and not aggressive:
                        skipped.append(SkippedAction(action.id, pointer(step.path), AGGRESSIVE_ONLY))
                        continue
                    try:
                        working = self._apply(working, step)
                    except PathError as e:
                        logger.info(f"{document.ref}: {action.id} cannot write {pointer(step.path)}: {e}")
                        skipped.append(SkippedAction(action.id, pointer(step.path), e.reason))
                        continue
                    changes.append(Change(action.id, pointer(step.path), step.description))

        if changes:
            logger.debug(f"{document.ref}: {len(changes)} change(s) in {mode.value} mode")

        return RemediationPlan(
            document_ref=document.ref,
            original=document,
            remediated=working,
            changes=tuple(changes),
            skipped=tuple(skipped),
            mode=mode,
            aggressiveness=aggressiveness,
        )

    @staticmethod
    def _apply(document: Document, edit: Edit) -> Document:
        if edit.append:
            return document.appended(edit.path, edit.value)
        return document.with_value(edit.path, edit.value)
