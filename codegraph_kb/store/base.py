"""
Graph store contract shared by the Neo4j and NetworkX backends.

A store is a context manager: entering connects, leaving always
disconnects, even when the body raised. Writes are upserts keyed by the
deterministic node / relationship IDs, so importing the same graph twice
leaves a single copy of every element.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Iterator, Optional, Sequence

from ..cancellation import CancellationToken, check
from ..config import Config
from ..graph.model import GraphNode, GraphRelationship

CORRELATION_ORIGIN = "correlation"


def run_stamp() -> str:
    """UTC timestamp with microsecond precision; lexicographic order equals time order."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def batched(items: Sequence, size: int) -> Iterator[list]:
    size = max(1, int(size))
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


@dataclass
class ImportSummary:
    """What one import or incremental update wrote."""
    nodes_written: int = 0
    relationships_written: int = 0
    node_batches: int = 0
    relationship_batches: int = 0
    removed: int = 0
    mode: str = "full"
    run_timestamp: str = ""
    elapsed_seconds: float = 0.0

    def to_dict(self) -> dict:
        return {
            "nodes_written": self.nodes_written,
            "relationships_written": self.relationships_written,
            "node_batches": self.node_batches,
            "relationship_batches": self.relationship_batches,
            "removed": self.removed,
            "mode": self.mode,
            "run_timestamp": self.run_timestamp,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
        }


@dataclass
class GraphStats:
    node_count: int = 0
    relationship_count: int = 0
    node_types: dict[str, int] = field(default_factory=dict)
    relationship_types: dict[str, int] = field(default_factory=dict)
    last_updated: str = ""

    @property
    def is_empty(self) -> bool:
        return self.node_count == 0

    @classmethod
    def from_elements(
        cls,
        nodes: Iterable[GraphNode],
        relationships: Iterable[GraphRelationship],
    ) -> "GraphStats":
        """Compute stats for an in-memory graph (e.g. a JSON snapshot)."""
        stats = cls()
        for node in nodes:
            stats.node_count += 1
            stats.node_types[node.type.value] = stats.node_types.get(node.type.value, 0) + 1
            seen = str(node.metadata.get("last_seen") or node.metadata.get("extracted_at") or "")
            stats.last_updated = max(stats.last_updated, seen)
        for rel in relationships:
            stats.relationship_count += 1
            stats.relationship_types[rel.type.value] = stats.relationship_types.get(rel.type.value, 0) + 1
        return stats

    def to_dict(self) -> dict:
        return {
            "node_count": self.node_count,
            "relationship_count": self.relationship_count,
            "node_types": dict(sorted(self.node_types.items())),
            "relationship_types": dict(sorted(self.relationship_types.items())),
            "last_updated": self.last_updated,
        }


def stamp_node(node: GraphNode, stamp: str) -> GraphNode:
    return GraphNode(
        id=node.id, type=node.type, name=node.name,
        properties=dict(node.properties),
        metadata={**node.metadata, "last_seen": stamp},
    )


def stamp_relationship(rel: GraphRelationship, stamp: str) -> GraphRelationship:
    return GraphRelationship(
        id=rel.id, type=rel.type, source=rel.source, target=rel.target,
        properties=dict(rel.properties),
        metadata={**rel.metadata, "last_seen": stamp},
    )


def relationship_in_scope(
    origin: Optional[str],
    source_extractor: Optional[str],
    target_extractor: Optional[str],
    extractors: Optional[Iterable[str]],
) -> bool:
    """
    Whether a stale relationship may be swept by a run scoped to *extractors*.

    Correlation edges are only rederived when both endpoints were in the
    run's results, so they qualify only when both endpoint nodes came from
    extractors that ran. Any other edge qualifies when its origin ran.
    """
    if extractors is None:
        return True
    names = set(extractors)
    if origin == CORRELATION_ORIGIN:
        return source_extractor in names and target_extractor in names
    return origin in names


class GraphStore(ABC):
    """
    Abstract property-graph store.

    Parameters
    ----------
    config:
        Supplies batch sizes and backend settings.
    logger:
        Injected logger.
    """

    backend = "abstract"

    def __init__(self, config: Optional[Config] = None, logger: Optional[logging.Logger] = None) -> None:
        self.config = config or Config()
        self.logger = logger or logging.getLogger(type(self).__module__)

    def __enter__(self) -> "GraphStore":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.disconnect()
        return False

    # ------------------------------------------------------------------
    # Backend operations
    # ------------------------------------------------------------------

    @abstractmethod
    def connect(self) -> None:
        """Open the connection. Raises :class:`~codegraph_kb.errors.GraphStoreError`."""

    @abstractmethod
    def verify(self) -> bool:
        """Return True when the store answers a trivial request."""

    @abstractmethod
    def disconnect(self) -> None:
        """Release the connection. Idempotent and safe after a failed connect."""

    @abstractmethod
    def clear_database(self) -> None:
        """Delete every node and relationship."""

    @abstractmethod
    def _upsert_nodes(self, batch: list[GraphNode]) -> None:
        """Write one batch of nodes in a single transaction."""

    @abstractmethod
    def _upsert_relationships(self, batch: list[GraphRelationship]) -> None:
        """Write one batch of relationships in a single transaction, creating missing endpoints."""

    @abstractmethod
    def sweep_stale(self, run_timestamp: str, extractors: Optional[Iterable[str]] = None) -> int:
        """
        Delete elements whose ``last_seen`` is older than *run_timestamp*.

        Parameters
        ----------
        run_timestamp:
            Stamp of the import that just completed.
        extractors:
            When given, only nodes produced by these extractors are
            eligible, along with relationships they emitted and correlation
            relationships whose endpoints both came from them.

        Returns
        -------
        int
            Number of nodes plus relationships removed.
        """

    @abstractmethod
    def get_stats(self) -> GraphStats:
        ...

    @abstractmethod
    def load_snapshot(self) -> tuple[list[GraphNode], list[GraphRelationship]]:
        """Read the whole stored graph back as value objects."""

    # ------------------------------------------------------------------
    # Import
    # ------------------------------------------------------------------

    def import_data(
        self,
        nodes: Sequence[GraphNode],
        relationships: Sequence[GraphRelationship],
        run_timestamp: Optional[str] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ImportSummary:
        """
        Upsert *nodes* then *relationships* in bounded batches.

        Every element is stamped with ``last_seen = run_timestamp``. The
        cancel token is checked between batches; a batch in flight always
        completes.
        """
        start = time.perf_counter()
        stamp = run_timestamp or run_stamp()
        summary = ImportSummary(run_timestamp=stamp)
        nodes = list(nodes)
        relationships = list(relationships)

        for batch in batched(nodes, self.config.NODE_BATCH_SIZE):
            check(cancel_token, "node import")
            self._upsert_nodes([stamp_node(n, stamp) for n in batch])
            summary.nodes_written += len(batch)
            summary.node_batches += 1
            self.logger.debug("Upserted node batch %d (%d nodes)", summary.node_batches, len(batch))

        for batch in batched(relationships, self.config.RELATIONSHIP_BATCH_SIZE):
            check(cancel_token, "relationship import")
            self._upsert_relationships([stamp_relationship(r, stamp) for r in batch])
            summary.relationships_written += len(batch)
            summary.relationship_batches += 1
            self.logger.debug("Upserted relationship batch %d (%d relationships)",
                              summary.relationship_batches, len(batch))

        summary.elapsed_seconds = time.perf_counter() - start
        self.logger.info(
            "Imported %d nodes and %d relationships into %s in %.2fs",
            summary.nodes_written, summary.relationships_written, self.backend,
            summary.elapsed_seconds,
        )
        return summary

    def incremental_update(
        self,
        nodes: Sequence[GraphNode],
        relationships: Sequence[GraphRelationship],
        extractors: Optional[Iterable[str]] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ImportSummary:
        """
        Bring the store in line with a fresh extraction.

        An empty store gets a plain import. Otherwise the data is imported
        with a new run stamp and everything the given *extractors* produced
        earlier but not in this run is swept.
        """
        if self.get_stats().is_empty:
            self.logger.info("Store is empty; performing a full import")
            summary = self.import_data(nodes, relationships, cancel_token=cancel_token)
            summary.mode = "full"
            return summary

        stamp = run_stamp()
        summary = self.import_data(nodes, relationships, run_timestamp=stamp, cancel_token=cancel_token)
        check(cancel_token, "stale sweep")
        summary.removed = self.sweep_stale(stamp, extractors)
        summary.mode = "incremental"
        self.logger.info("Incremental update removed %d stale elements", summary.removed)
        return summary
