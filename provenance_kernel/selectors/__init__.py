"""Read-only query selectors over the causal tables."""

from provenance_kernel.selectors.base import BaseSelector
from provenance_kernel.selectors.causal_chain_selector import CausalChainSelector

__all__ = [
    "BaseSelector",
    "CausalChainSelector",
]
