"""
TracerConfig schema.

The parsed, validated form of a tracer configuration file.  YAML sections
are flattened into a single frozen dataclass; the loader is the only code
that builds one from disk.
"""

from __future__ import annotations

from dataclasses import dataclass

TRAVERSAL_STRATEGIES = ("bfs", "cte")
SIGNIFICANCE_MODELS = ("poisson", "ratio")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class TracerConfig:
    """Runtime settings for the causal tracer and its store."""

    config_id: str = "default"
    version: int = 1

    # Tracer
    default_max_depth: int = 100
    default_min_occurrences: int = 5
    default_lookup_limit: int = 100
    fetch_workers: int = 1
    traversal_strategy: str = "bfs"

    # Pattern significance
    significance_model: str = "poisson"
    baseline_firing_rate: float = 0.05

    # Ambient
    log_level: str = "INFO"
    database_url: str = "sqlite:///:memory:"

    checksum: str = ""
