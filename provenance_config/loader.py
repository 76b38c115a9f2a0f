"""
Configuration Loader (``provenance_config.loader``).

Responsibility
--------------
Loads a tracer YAML file and parses it into a ``TracerConfig``.  The single
public entry point for runtime config is
``provenance_config.get_tracer_config()``.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` with descriptive messages; unknown
  sections and keys are rejected rather than ignored.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Out-of-range or unknown values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from provenance_config.schema import (
    LOG_LEVELS,
    SIGNIFICANCE_MODELS,
    TRAVERSAL_STRATEGIES,
    TracerConfig,
)

# section -> {yaml key: TracerConfig field}
_SECTIONS: dict[str, dict[str, str]] = {
    "tracer": {
        "default_max_depth": "default_max_depth",
        "default_min_occurrences": "default_min_occurrences",
        "default_lookup_limit": "default_lookup_limit",
        "fetch_workers": "fetch_workers",
        "traversal_strategy": "traversal_strategy",
    },
    "significance": {
        "model": "significance_model",
        "baseline_firing_rate": "baseline_firing_rate",
    },
    "logging": {
        "level": "log_level",
    },
    "database": {
        "url": "database_url",
    },
}
_TOP_LEVEL_KEYS = frozenset({"config_id", "version"}) | frozenset(_SECTIONS)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _require_positive_int(name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer, got {value!r}")
    if value < 1:
        raise ValueError(f"{name} must be >= 1, got {value}")
    return value


def parse_tracer_config(data: dict[str, Any]) -> TracerConfig:
    """
    Parse a raw YAML mapping into a validated ``TracerConfig``.

    Missing sections and keys fall back to the dataclass defaults.
    """
    if not isinstance(data, dict):
        raise ValueError("Configuration root must be a mapping")

    unknown = set(data) - _TOP_LEVEL_KEYS
    if unknown:
        raise ValueError(f"Unknown configuration sections: {sorted(unknown)}")

    fields: dict[str, Any] = {}
    for section, keys in _SECTIONS.items():
        values = data.get(section) or {}
        if not isinstance(values, dict):
            raise ValueError(f"Section '{section}' must be a mapping")
        unknown_keys = set(values) - set(keys)
        if unknown_keys:
            raise ValueError(
                f"Unknown keys in section '{section}': {sorted(unknown_keys)}"
            )
        for key, field_name in keys.items():
            if key in values:
                fields[field_name] = values[key]

    if "config_id" in data:
        fields["config_id"] = str(data["config_id"])
    if "version" in data:
        fields["version"] = _require_positive_int("version", data["version"])

    for name in (
        "default_max_depth",
        "default_min_occurrences",
        "default_lookup_limit",
        "fetch_workers",
    ):
        if name in fields:
            _require_positive_int(name, fields[name])

    strategy = fields.get("traversal_strategy", "bfs")
    if strategy not in TRAVERSAL_STRATEGIES:
        raise ValueError(
            f"traversal_strategy must be one of {TRAVERSAL_STRATEGIES}, got {strategy!r}"
        )

    model = fields.get("significance_model", "poisson")
    if model not in SIGNIFICANCE_MODELS:
        raise ValueError(
            f"significance.model must be one of {SIGNIFICANCE_MODELS}, got {model!r}"
        )

    if "baseline_firing_rate" in fields:
        rate = float(fields["baseline_firing_rate"])
        if not 0.0 < rate < 1.0:
            raise ValueError(f"baseline_firing_rate must be in (0, 1), got {rate}")
        fields["baseline_firing_rate"] = rate

    if "log_level" in fields:
        level = str(fields["log_level"]).upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"logging.level must be one of {LOG_LEVELS}, got {level!r}")
        fields["log_level"] = level

    return TracerConfig(checksum=compute_checksum(data), **fields)


def load_tracer_config(path: Path) -> TracerConfig:
    """Load and parse a tracer configuration file."""
    return parse_tracer_config(load_yaml_file(path))
