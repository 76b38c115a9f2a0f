"""
Provenance Kernel

Causal provenance for an AI system's externally observable outputs:
- Five-level causal chain from spike events to external outputs
- Bounded backward tracing with per-node depth and edge confidence
- Two-way audit of individual agent actions
- Detection of spike patterns recurring above chance
- Write-once storage of every entity and link
"""

__version__ = "0.1.0"
