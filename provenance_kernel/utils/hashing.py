"""
Deterministic hashing utilities.

All hashing in the provenance kernel must be deterministic and reproducible.
Pattern fingerprints in particular are compared across independently
observed spike events, so the same firing pattern must always hash the same.
"""

import hashlib
import json
from datetime import date, datetime
from typing import Any, Iterable


def _json_serializer(obj: Any) -> Any:
    """Serialize types json does not handle natively."""
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)
    if isinstance(obj, bytes):
        return obj.hex()

    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: dict | list | Any) -> str:
    """
    Convert data to canonical JSON string.

    Keys are sorted and no whitespace is emitted, so equal data always
    produces the same string.
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def hash_payload(payload: dict) -> str:
    """Hex-encoded SHA-256 of the canonical JSON of ``payload``."""
    canonical = canonicalize_json(payload)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def compute_pattern_fingerprint(
    population_id: str,
    layer_index: int,
    neuron_indices: Iterable[int],
) -> str:
    """
    Fingerprint of a spike firing pattern.

    Depends only on which neurons fired in which population/layer: order and
    repeats in ``neuron_indices`` are ignored.

    Args:
        population_id: Neuron population that fired.
        layer_index: Layer of the population in the network.
        neuron_indices: Indices of the neurons that fired.

    Returns:
        Hex-encoded SHA-256 (64 characters).
    """
    return hash_payload({
        "population_id": population_id,
        "layer_index": int(layer_index),
        "neuron_indices": sorted({int(i) for i in neuron_indices}),
    })
