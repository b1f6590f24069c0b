"""
Typed graph value objects and deterministic ID generation.

Every node ID is a pure function of the node type and its qualifying key,
and every relationship ID is a pure function of ``(type, source, target)``.
Re-extracting an unchanged source tree therefore produces the same IDs,
which is what lets the graph store upsert instead of duplicating.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


# ---------------------------------------------------------------------------
# Node / Relationship type enums
# ---------------------------------------------------------------------------

class NodeType(str, Enum):
    PACKAGE = "PACKAGE"
    FILE = "FILE"
    ENTITY = "ENTITY"
    FUNCTION = "FUNCTION"
    CLASS = "CLASS"
    INTERFACE = "INTERFACE"
    IMPORT = "IMPORT"
    DOCUMENT = "DOCUMENT"


class RelationType(str, Enum):
    CONTAINS = "CONTAINS"
    DEPENDS_ON = "DEPENDS_ON"
    IMPORTS = "IMPORTS"
    CALLS = "CALLS"
    REFERENCES = "REFERENCES"
    USES_TYPE = "USES_TYPE"
    DEFINES = "DEFINES"
    IMPLEMENTS = "IMPLEMENTS"
    EXTENDS = "EXTENDS"
    RELATED_TO = "RELATED_TO"


def utc_timestamp() -> str:
    """Return the current time as an ISO-8601 UTC string."""
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


# ---------------------------------------------------------------------------
# ID generation
# ---------------------------------------------------------------------------

def _normalize_part(part: Any) -> str:
    text = str(part).strip().replace("\\", "/")
    if not text:
        raise ValueError("ID key parts must be non-empty")
    return text


def node_id(node_type: NodeType | str, *key_parts: Any) -> str:
    """
    Return the deterministic ID for a node.

    Parameters
    ----------
    node_type:
        The node's :class:`NodeType`.
    key_parts:
        One or more qualifying key parts (package name, file path, symbol
        name, ...). Parts are joined with ``::``.

    Raises
    ------
    ValueError
        If no key part is given or a part is empty.
    """
    if not key_parts:
        raise ValueError("node_id requires at least one key part")
    prefix = NodeType(node_type).value.lower()
    return f"{prefix}:" + "::".join(_normalize_part(p) for p in key_parts)


def relationship_id(rel_type: RelationType | str, source_id: str, target_id: str) -> str:
    """Return the deterministic ID for a ``source -> target`` edge of *rel_type*."""
    prefix = RelationType(rel_type).value.lower()
    return f"{prefix}:{_normalize_part(source_id)}->{_normalize_part(target_id)}"


class NodeIdGenerator:
    """Named constructors for node IDs, one per node type."""

    @staticmethod
    def package(name: str) -> str:
        return node_id(NodeType.PACKAGE, name)

    @staticmethod
    def file(package: Optional[str], path: str) -> str:
        if package:
            return node_id(NodeType.FILE, package, path)
        return node_id(NodeType.FILE, path)

    @staticmethod
    def entity(name: str, package: Optional[str] = None) -> str:
        if package:
            return node_id(NodeType.ENTITY, package, name)
        return node_id(NodeType.ENTITY, name)

    @staticmethod
    def function(file_path: str, name: str, parent: Optional[str] = None) -> str:
        if parent:
            return node_id(NodeType.FUNCTION, file_path, f"{parent}.{name}")
        return node_id(NodeType.FUNCTION, file_path, name)

    @staticmethod
    def klass(file_path: str, name: str) -> str:
        return node_id(NodeType.CLASS, file_path, name)

    @staticmethod
    def interface(file_path: str, name: str) -> str:
        return node_id(NodeType.INTERFACE, file_path, name)

    @staticmethod
    def import_(file_path: str, module: str) -> str:
        return node_id(NodeType.IMPORT, file_path, module)

    @staticmethod
    def document(path: str) -> str:
        return node_id(NodeType.DOCUMENT, path)


# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------

@dataclass
class GraphNode:
    """A typed vertex of the code knowledge graph."""
    id: str
    type: NodeType
    name: str
    properties: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.type = NodeType(self.type)
        self.metadata = {"confidence": 1.0, **self.metadata}

    @property
    def confidence(self) -> float:
        return float(self.metadata.get("confidence", 1.0))

    @property
    def package(self) -> str:
        """Owning package name, or empty string."""
        if self.type == NodeType.PACKAGE:
            return self.name
        return str(self.properties.get("package") or self.metadata.get("package") or "")

    @property
    def file_path(self) -> str:
        return str(
            self.properties.get("file_path")
            or self.properties.get("path")
            or self.metadata.get("source_file")
            or ""
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type.value,
            "name": self.name,
            "properties": dict(self.properties),
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "GraphNode":
        return cls(
            id=data["id"],
            type=NodeType(data["type"]),
            name=data.get("name", ""),
            properties=dict(data.get("properties") or {}),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class GraphRelationship:
    """A typed, directed edge. Endpoints may dangle across partial runs."""
    id: str
    type: RelationType
    source: str
    target: str
    properties: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.type = RelationType(self.type)
        self.metadata = {"confidence": 1.0, **self.metadata}

    @classmethod
    def create(
        cls,
        rel_type: RelationType,
        source: str,
        target: str,
        properties: Optional[dict[str, Any]] = None,
        confidence: float = 1.0,
        origin: str = "",
    ) -> "GraphRelationship":
        """Build a relationship whose ID is derived from *rel_type*, *source* and *target*."""
        return cls(
            id=relationship_id(rel_type, source, target),
            type=rel_type,
            source=source,
            target=target,
            properties=dict(properties or {}),
            metadata={"confidence": confidence, "origin": origin},
        )

    @property
    def confidence(self) -> float:
        return float(self.metadata.get("confidence", 1.0))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type.value,
            "source": self.source,
            "target": self.target,
            "properties": dict(self.properties),
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "GraphRelationship":
        return cls(
            id=data["id"],
            type=RelationType(data["type"]),
            source=data["source"],
            target=data["target"],
            properties=dict(data.get("properties") or {}),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class ExtractionResult:
    """The unit of work exchanged between an extractor and the orchestrator."""
    nodes: list[GraphNode] = field(default_factory=list)
    relationships: list[GraphRelationship] = field(default_factory=list)
    source_count: int = 0
    extractor_name: str = ""
    elapsed_seconds: float = 0.0
    errors: int = 0

    @property
    def node_count(self) -> int:
        return len(self.nodes)

    @property
    def relationship_count(self) -> int:
        return len(self.relationships)


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


def merge_by_id(items) -> list:
    """
    Deduplicate nodes or relationships by ID, in first-seen order.

    Later occurrences win, except that an empty property value never
    replaces a non-empty one. Inputs are never mutated: a merged item is a
    fresh copy.
    """
    merged: dict[str, Any] = {}
    for item in items:
        existing = merged.get(item.id)
        if existing is None:
            merged[item.id] = item
            continue
        properties = dict(existing.properties)
        for key, value in item.properties.items():
            if key not in properties or not _is_empty(value):
                properties[key] = value
        if isinstance(item, GraphNode):
            merged[item.id] = GraphNode(
                id=item.id, type=item.type, name=item.name or existing.name,
                properties=properties, metadata=dict(item.metadata),
            )
        else:
            merged[item.id] = GraphRelationship(
                id=item.id, type=item.type, source=item.source, target=item.target,
                properties=properties, metadata=dict(item.metadata),
            )
    return list(merged.values())
