"""
Config -> Kernel Bridges.

Functions that turn a TracerConfig into kernel objects.  They live in
provenance_config (the producer) because the kernel must NEVER import
provenance_config.

Usage:
    from provenance_config import get_tracer_config
    from provenance_config.bridges import build_tracer

    config = get_tracer_config()
    tracer = build_tracer(config, store)
"""

from __future__ import annotations

from provenance_config.schema import TracerConfig
from provenance_kernel.domain.clock import Clock
from provenance_kernel.domain.significance import (
    SignificanceModel,
    build_significance_model,
)
from provenance_kernel.logging_config import configure_logging
from provenance_kernel.services.causal_tracer import CausalTracer
from provenance_kernel.store.base import CausalStore


def build_significance(config: TracerConfig) -> SignificanceModel:
    """The significance model named by the config."""
    return build_significance_model(
        config.significance_model, config.baseline_firing_rate
    )


def build_tracer(
    config: TracerConfig,
    store: CausalStore,
    clock: Clock | None = None,
) -> CausalTracer:
    """A CausalTracer over ``store`` with every default taken from ``config``."""
    return CausalTracer(
        store,
        clock=clock,
        significance=build_significance(config),
        default_max_depth=config.default_max_depth,
        default_min_occurrences=config.default_min_occurrences,
        default_lookup_limit=config.default_lookup_limit,
        fetch_workers=config.fetch_workers,
        traversal_strategy=config.traversal_strategy,
    )


def apply_logging(config: TracerConfig) -> None:
    """Configure kernel logging at the configured level."""
    configure_logging(level=config.log_level)
