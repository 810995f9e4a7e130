#!/usr/bin/env python3
"""
KUBEMEND SETTINGS
-----------------
Optional YAML configuration. Looked up from --config, else from
`.kubemend.yaml` in the working directory. Every value has a default, so
an absent file is the same as an empty one.

    rules: [resource-limits, latest-image-tag]
    jobs: 4
    remediation:
      cpu_limit: 1
      image_tags:
        registry.example.com/api: ["2.3.1"]
    scoring:
      no-liveness-probe: {reliability: 20}
    custom_rules:
      - id: no-host-network
        path: spec.template.spec.hostNetwork
        expected: false

Author: KubeMend Team
Date: 2026-10-17
"""

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from ruamel.yaml import YAML, YAMLError

from kubemend.analysis.scoring import ScoringPolicy
from kubemend.core.exceptions import ConfigurationError
from kubemend.core.models import RuleDescriptor
from kubemend.remediation.actions import RemediationPolicy
from kubemend.rules.declarative import from_mapping

logger = logging.getLogger("kubemend.config")

DEFAULT_CONFIG_NAME = ".kubemend.yaml"

TOP_LEVEL_KEYS = {"rules", "jobs", "extensions", "max_depth", "remediation", "scoring", "custom_rules"}

_QUANTITY_KEYS = ("cpu_request", "memory_request", "cpu_limit", "memory_limit")


@dataclass(frozen=True)
class Settings:
    rules: Optional[Tuple[str, ...]] = None
    jobs: int = 1
    extensions: Tuple[str, ...] = (".yaml", ".yml")
    max_depth: int = 10
    remediation: RemediationPolicy = field(default_factory=RemediationPolicy)
    scoring: ScoringPolicy = field(default_factory=ScoringPolicy)
    custom_rules: Tuple[RuleDescriptor, ...] = ()

    def overridden(self, **values: Any) -> "Settings":
        """CLI flags win over file values; None means 'not given'."""
        return replace(self, **{k: v for k, v in values.items() if v is not None})


def _positive_int(value: Any, key: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigurationError(f"'{key}' must be a positive integer")
    return value


def _string_list(value: Any, key: str) -> Tuple[str, ...]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list) or not all(isinstance(v, str) and v for v in value):
        raise ConfigurationError(f"'{key}' must be a list of strings")
    return tuple(value)


def _remediation(raw: Any) -> RemediationPolicy:
    if not isinstance(raw, dict):
        raise ConfigurationError("'remediation' must be a mapping")
    policy = RemediationPolicy()
    values: Dict[str, Any] = {}

    for key, value in raw.items():
        if key in _QUANTITY_KEYS:
            if isinstance(value, bool) or not isinstance(value, (str, int, float)):
                raise ConfigurationError(f"remediation.{key} must be a quantity")
            values[key] = str(value)
        elif key == "probe_path":
            if not isinstance(value, str) or not value.startswith("/"):
                raise ConfigurationError("remediation.probe_path must be an absolute HTTP path")
            values[key] = value
        elif key == "fallback_tag":
            if value is not None and (not isinstance(value, str) or not value):
                raise ConfigurationError("remediation.fallback_tag must be a string")
            values[key] = value
        elif key == "replicas":
            # one number for both modes, or {fix: 2, optimize: 3}
            if isinstance(value, dict):
                unknown = set(value) - {"fix", "optimize"}
                if unknown:
                    raise ConfigurationError(f"remediation.replicas: unknown keys {sorted(unknown)}")
                if "fix" in value:
                    values["fix_replicas"] = _positive_int(value["fix"], "remediation.replicas.fix")
                if "optimize" in value:
                    values["optimize_replicas"] = _positive_int(value["optimize"], "remediation.replicas.optimize")
            else:
                count = _positive_int(value, "remediation.replicas")
                values["fix_replicas"] = values["optimize_replicas"] = count
        elif key == "image_tags":
            if not isinstance(value, dict):
                raise ConfigurationError("remediation.image_tags must map repositories to tag lists")
            tags = dict(policy.image_tags)
            for repository, candidates in value.items():
                tags[str(repository)] = _string_list(candidates, f"remediation.image_tags.{repository}")
            values[key] = tags
        else:
            raise ConfigurationError(f"remediation: unknown key '{key}'")

    return replace(policy, **values)


def parse_settings(data: Any) -> Settings:
    """Validates a parsed config mapping into Settings."""
    if data is None:
        return Settings()
    if not isinstance(data, dict):
        raise ConfigurationError("configuration must be a mapping")
    unknown = set(data) - TOP_LEVEL_KEYS
    if unknown:
        raise ConfigurationError(f"unknown configuration key(s): {', '.join(sorted(map(str, unknown)))}")

    values: Dict[str, Any] = {}
    if data.get("rules") is not None:
        values["rules"] = _string_list(data["rules"], "rules")
    if "jobs" in data:
        values["jobs"] = _positive_int(data["jobs"], "jobs")
    if "max_depth" in data:
        values["max_depth"] = _positive_int(data["max_depth"], "max_depth")
    if "extensions" in data:
        values["extensions"] = tuple(
            e if e.startswith(".") else f".{e}" for e in _string_list(data["extensions"], "extensions")
        )
    if "remediation" in data:
        values["remediation"] = _remediation(data["remediation"])
    if "scoring" in data:
        if not isinstance(data["scoring"], Mapping):
            raise ConfigurationError("'scoring' must be a mapping")
        values["scoring"] = ScoringPolicy().with_overrides(data["scoring"])
    if "custom_rules" in data:
        entries = data["custom_rules"]
        if not isinstance(entries, list):
            raise ConfigurationError("'custom_rules' must be a list")
        values["custom_rules"] = tuple(from_mapping(entry).descriptor() for entry in entries)

    return Settings(**values)


def load_settings(path: Optional[Union[str, Path]] = None, cwd: Optional[Path] = None) -> Settings:
    """
    Reads settings from `path`, or from .kubemend.yaml under `cwd` when no
    path is given and that file exists. An explicit path must exist.
    """
    if path is None:
        candidate = (cwd or Path.cwd()) / DEFAULT_CONFIG_NAME
        if not candidate.is_file():
            return Settings()
        path = candidate

    config_path = Path(path)
    try:
        text = config_path.read_text(encoding='utf-8-sig')
    except OSError as e:
        raise ConfigurationError(f"cannot read config file {config_path}: {e}") from e

    try:
        data = YAML(typ='safe').load(text)
    except YAMLError as e:
        raise ConfigurationError(f"invalid YAML in config file {config_path}: {e}") from e

    logger.info(f"Loaded settings from {config_path}")
    return parse_settings(data)
