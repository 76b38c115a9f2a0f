"""Causal store contract and its implementations."""

from provenance_kernel.store.base import CausalStore
from provenance_kernel.store.memory import InMemoryCausalStore
from provenance_kernel.store.sql import SqlCausalStore

__all__ = [
    "CausalStore",
    "InMemoryCausalStore",
    "SqlCausalStore",
]
