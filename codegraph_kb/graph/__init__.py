"""
Graph model: typed nodes, relationships and deterministic IDs.
"""

from .model import (
    ExtractionResult,
    GraphNode,
    GraphRelationship,
    NodeIdGenerator,
    NodeType,
    RelationType,
    merge_by_id,
    node_id,
    relationship_id,
    utc_timestamp,
)

__all__ = [
    "ExtractionResult",
    "GraphNode",
    "GraphRelationship",
    "NodeIdGenerator",
    "NodeType",
    "RelationType",
    "merge_by_id",
    "node_id",
    "relationship_id",
    "utc_timestamp",
]
