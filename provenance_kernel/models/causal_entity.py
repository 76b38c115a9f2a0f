"""
Module: provenance_kernel.models.causal_entity
Responsibility: Shared conversion between the five causal entity models and
    the domain ``CausalNode`` record.
Architecture position: Kernel > Models.  May import from db/ and domain/.

A node's ``metadata`` mapping is the flat set of the entity's attribute
columns (``NODE_FIELDS``), plus the free-form producer metadata under
``"extra"``.  The same shape is used by the in-memory store, so the two
store implementations return identical nodes for identical data.
"""

from __future__ import annotations

from typing import Any, ClassVar

from provenance_kernel.domain.causal_graph import CausalNode, NodeType


class CausalEntityMixin:
    """Conversion and lifecycle metadata for causal entity models."""

    NODE_TYPE: ClassVar[NodeType]
    TIMESTAMP_FIELD: ClassVar[str] = "timestamp"
    # Attribute columns exported into CausalNode.metadata
    NODE_FIELDS: ClassVar[tuple[str, ...]] = ()
    # Columns that may be set once when the entity completes
    COMPLETION_FIELDS: ClassVar[frozenset[str]] = frozenset()
    # Once status holds one of these, nothing may change
    TERMINAL_STATUSES: ClassVar[frozenset[str]] = frozenset()

    def to_node(self, depth: int = 0) -> CausalNode:
        """Convert ORM row to a CausalNode at ``depth``."""
        metadata: dict[str, Any] = {}
        for name in self.NODE_FIELDS:
            value = getattr(self, name)
            if value is not None:
                metadata[name] = value
        if self.extra_metadata:
            metadata["extra"] = dict(self.extra_metadata)
        return CausalNode(
            id=self.id,
            type=self.NODE_TYPE,
            timestamp=getattr(self, self.TIMESTAMP_FIELD),
            depth=depth,
            metadata=metadata,
        )

    @classmethod
    def from_node(cls, node: CausalNode):
        """Create ORM row from a CausalNode produced by the recorder."""
        if node.type != cls.NODE_TYPE:
            raise ValueError(
                f"{cls.__name__} cannot be built from a {node.type.value} node"
            )
        metadata = dict(node.metadata or {})
        kwargs: dict[str, Any] = {
            name: metadata[name] for name in cls.NODE_FIELDS if name in metadata
        }
        kwargs[cls.TIMESTAMP_FIELD] = node.timestamp
        return cls(
            id=node.id,
            extra_metadata=metadata.get("extra"),
            **kwargs,
        )
