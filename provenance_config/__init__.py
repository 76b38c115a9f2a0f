"""
provenance_config -- single public entrypoint for tracer configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_tracer_config()``.  No other component reads configuration files
    directly.

Architecture position:
    This package sits above ``provenance_kernel``.  The kernel MUST NEVER
    import from ``provenance_config``; ``bridges`` translates a
    ``TracerConfig`` into kernel objects.

Audit relevance:
    Every successful ``get_tracer_config()`` call emits a
    ``PROVENANCE_CONFIG_TRACE`` log entry with the config id, version and
    checksum, tying every trace back to the settings that produced it.
"""

from __future__ import annotations

import logging
from pathlib import Path

from provenance_config.loader import load_tracer_config
from provenance_config.schema import TracerConfig

_logger = logging.getLogger("provenance_kernel.config")

_DEFAULT_CONFIG_FILE = Path(__file__).parent / "sets" / "default.yaml"


def get_tracer_config(path: Path | str | None = None) -> TracerConfig:
    """
    The ONLY public configuration entrypoint.

    Args:
        path: YAML file to load.  Defaults to the bundled
            ``provenance_config/sets/default.yaml``.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If configuration validation fails.
    """
    config_path = Path(path) if path is not None else _DEFAULT_CONFIG_FILE
    config = load_tracer_config(config_path)

    _logger.info(
        "PROVENANCE_CONFIG_TRACE",
        extra={
            "trace_type": "PROVENANCE_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "traversal_strategy": config.traversal_strategy,
            "significance_model": config.significance_model,
        },
    )
    return config


__all__ = [
    "TracerConfig",
    "get_tracer_config",
]
