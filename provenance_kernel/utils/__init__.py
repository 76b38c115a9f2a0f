"""Utility functions for the provenance kernel."""

from provenance_kernel.utils.hashing import (
    canonicalize_json,
    compute_pattern_fingerprint,
    hash_payload,
)

__all__ = [
    "canonicalize_json",
    "compute_pattern_fingerprint",
    "hash_payload",
]
