#!/usr/bin/env python3
"""
KUBEMEND VALIDATOR - The Judge
------------------------------
Structural pre-flight checks for a single manifest: the identity fields
every Kubernetes object needs, plus the few per-kind fields without which
the API server rejects the object outright.

Author: KubeMend Team
Date: 2026-10-17
"""

import logging
from typing import List, Tuple

from kubemend.core.document import Document, MappingNode, SequenceNode
from kubemend.rules.workload import pod_spec_path

# Standardized logging for audit trails
logger = logging.getLogger("kubemend.validator")

# Core fields that must exist in every single K8s resource
REQUIRED_FIELDS = ("apiVersion", "kind", "metadata")

# Per-kind fields the API server insists on
KIND_REQUIREMENTS = {
    "Deployment": (("spec", "selector"), ("spec", "template")),
    "Service": (("spec", "ports"),),
}


class KubeValidator:
    """
    Enforces structural integrity on manifests, before and after remediation.
    """

    def validate(self, document: Document) -> List[str]:
        """Returns every structural error found; an empty list means valid."""
        root = document.root
        if not isinstance(root, MappingNode):
            return ["Document is not a mapping."]

        # --- TEST 1: Identity & Metadata Presence ---
        errors = [f"Missing required field '{f}'." for f in REQUIRED_FIELDS if f not in root]
        metadata = root.get(("metadata",))
        if metadata is not None:
            if not isinstance(metadata, MappingNode):
                errors.append("'metadata' must be a mapping.")
            elif document.name is None:
                errors.append("Missing required field 'metadata.name'.")

        # --- TEST 2: Kind-Specific Requirements ---
        kind = document.kind
        for path in KIND_REQUIREMENTS.get(kind, ()):
            if document.get(path) is None:
                errors.append(f"{kind} requires '{'.'.join(path)}'.")

        spec_path = pod_spec_path(document)
        if spec_path is not None and document.get(spec_path) is not None:
            containers = document.get(spec_path + ("containers",))
            dotted = ".".join(spec_path + ("containers",))
            if containers is None:
                if kind == "Pod":
                    errors.append("Pod requires 'spec.containers'.")
            elif not isinstance(containers, SequenceNode):
                errors.append(f"'{dotted}' must be a sequence.")
            elif kind == "Pod" and not len(containers):
                errors.append("Pod requires at least one container.")
        elif kind == "Pod":
            errors.append("Pod requires 'spec.containers'.")

        if errors:
            logger.debug(f"{document.ref}: {len(errors)} validation error(s)")
        return errors

    def validate_reconstruction(self, document: Document) -> Tuple[bool, str]:
        """The (ok, message) verdict used when deciding whether output is safe to keep."""
        errors = self.validate(document)
        if errors:
            return False, f"Validation Failed: {errors[0]}"
        return True, "Manifest passes structural integrity check."


def validate(document: Document) -> List[str]:
    return KubeValidator().validate(document)
