"""
Local graph store backed by a NetworkX multi-digraph persisted as a pickle.

Nodes are keyed by node ID and edges by relationship ID. Node attributes
are ``type``, ``name``, ``properties`` and ``metadata``; edge attributes
add ``id``. A single writer is enforced with a ``.lock`` file next to the
pickle.
"""

from __future__ import annotations

import logging
import os
import pickle
from collections import Counter
from typing import Iterable, Optional

import networkx as nx

from ..config import Config
from ..errors import GraphStoreError
from ..graph.model import GraphNode, GraphRelationship, NodeType, RelationType
from .base import GraphStats, GraphStore, relationship_in_scope


class WriterLock:
    """
    Exclusive lock file holding the owner's PID.

    A lock left behind by a process that no longer exists is taken over.
    """

    def __init__(self, path: str) -> None:
        self.path = path
        self.held = False

    @staticmethod
    def _pid_alive(pid: int) -> bool:
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            return True
        return True

    def acquire(self) -> None:
        os.makedirs(os.path.dirname(os.path.abspath(self.path)), exist_ok=True)
        for _ in range(2):
            try:
                fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
            except FileExistsError:
                try:
                    with open(self.path, encoding="utf-8") as fh:
                        owner = int(fh.read().strip() or 0)
                except (OSError, ValueError):
                    owner = 0
                if owner and owner != os.getpid() and self._pid_alive(owner):
                    raise GraphStoreError(
                        f"Graph store is locked by process {owner} ({self.path})"
                    ) from None
                os.remove(self.path)
                continue
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(str(os.getpid()))
            self.held = True
            return
        raise GraphStoreError(f"Could not acquire graph store lock {self.path}")

    def release(self) -> None:
        if not self.held:
            return
        self.held = False
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass


class NetworkXGraphStore(GraphStore):
    """
    In-process graph store.

    Parameters
    ----------
    config:
        ``STORE_PATH`` locates the pickle file.
    logger:
        Injected logger.
    path:
        Overrides ``config.STORE_PATH``.
    read_only:
        Skip the writer lock and never write the pickle back.
    """

    backend = "networkx"

    def __init__(
        self,
        config: Optional[Config] = None,
        logger: Optional[logging.Logger] = None,
        path: Optional[str] = None,
        read_only: bool = False,
    ) -> None:
        super().__init__(config, logger)
        self.path = os.path.abspath(path or self.config.STORE_PATH)
        self.read_only = read_only
        self._g: Optional[nx.MultiDiGraph] = None
        self._dirty = False
        self._lock = WriterLock(os.path.join(os.path.dirname(self.path), ".lock"))

    @property
    def graph(self) -> nx.MultiDiGraph:
        if self._g is None:
            raise GraphStoreError("Graph store is not connected")
        return self._g

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    def connect(self) -> None:
        if self._g is not None:
            return
        if not self.read_only:
            self._lock.acquire()
        try:
            if os.path.exists(self.path):
                with open(self.path, "rb") as fh:
                    graph = pickle.load(fh)
                if not isinstance(graph, nx.MultiDiGraph):
                    raise GraphStoreError(f"{self.path} does not contain a graph store")
                self._g = graph
                self.logger.debug("Loaded graph (%d nodes, %d edges) from %s",
                                  graph.number_of_nodes(), graph.number_of_edges(), self.path)
            else:
                self._g = nx.MultiDiGraph()
        except (OSError, pickle.UnpicklingError, EOFError, AttributeError) as exc:
            self._lock.release()
            raise GraphStoreError(f"Cannot open graph store {self.path}: {exc}") from exc
        except GraphStoreError:
            self._lock.release()
            raise
        self._dirty = False

    def verify(self) -> bool:
        return self._g is not None

    def disconnect(self) -> None:
        try:
            if self._g is not None and self._dirty and not self.read_only:
                self._save()
        finally:
            self._g = None
            self._dirty = False
            self._lock.release()

    def _save(self) -> None:
        os.makedirs(os.path.dirname(self.path), exist_ok=True)
        tmp = f"{self.path}.tmp"
        with open(tmp, "wb") as fh:
            pickle.dump(self._g, fh, protocol=pickle.HIGHEST_PROTOCOL)
        os.replace(tmp, self.path)
        self.logger.debug("Saved graph (%d nodes, %d edges) to %s",
                          self._g.number_of_nodes(), self._g.number_of_edges(), self.path)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def clear_database(self) -> None:
        self.graph.clear()
        self._dirty = True
        self.logger.info("Cleared graph store %s", self.path)

    def _upsert_nodes(self, batch: list[GraphNode]) -> None:
        g = self.graph
        for node in batch:
            attrs = {
                "type": node.type.value,
                "name": node.name,
                "properties": dict(node.properties),
                "metadata": dict(node.metadata),
            }
            if g.has_node(node.id):
                g.nodes[node.id].clear()
                g.nodes[node.id].update(attrs)
            else:
                g.add_node(node.id, **attrs)
        self._dirty = True

    def _upsert_relationships(self, batch: list[GraphRelationship]) -> None:
        g = self.graph
        for rel in batch:
            for endpoint in (rel.source, rel.target):
                if not g.has_node(endpoint):
                    g.add_node(endpoint, placeholder=True)
            attrs = {
                "id": rel.id,
                "type": rel.type.value,
                "properties": dict(rel.properties),
                "metadata": dict(rel.metadata),
            }
            if g.has_edge(rel.source, rel.target, key=rel.id):
                data = g.edges[rel.source, rel.target, rel.id]
                data.clear()
                data.update(attrs)
            else:
                g.add_edge(rel.source, rel.target, key=rel.id, **attrs)
        self._dirty = True

    def sweep_stale(self, run_timestamp: str, extractors: Optional[Iterable[str]] = None) -> int:
        g = self.graph
        names = None if extractors is None else set(extractors)

        def extractor_of(nid):
            return g.nodes[nid].get("metadata", {}).get("extractor")

        stale_edges = [
            (s, t, k) for s, t, k, data in g.edges(keys=True, data=True)
            if data.get("metadata", {}).get("last_seen", "") < run_timestamp
            and relationship_in_scope(data.get("metadata", {}).get("origin"),
                                      extractor_of(s), extractor_of(t), names)
        ]
        g.remove_edges_from(stale_edges)

        stale_nodes = []
        for nid, data in g.nodes(data=True):
            if data.get("placeholder"):
                continue
            meta = data.get("metadata", {})
            if meta.get("last_seen", "") >= run_timestamp:
                continue
            if names is not None and meta.get("extractor") not in names:
                continue
            stale_nodes.append(nid)
        incident = {
            key
            for n in stale_nodes
            for edges in (g.in_edges(n, keys=True), g.out_edges(n, keys=True))
            for _, _, key in edges
        }
        removed_edges = len(stale_edges) + len(incident)
        g.remove_nodes_from(stale_nodes)

        orphans = [n for n, data in g.nodes(data=True) if data.get("placeholder") and g.degree(n) == 0]
        g.remove_nodes_from(orphans)
        if stale_edges or stale_nodes or orphans:
            self._dirty = True
        self.logger.debug("Swept %d nodes and %d relationships older than %s",
                          len(stale_nodes), removed_edges, run_timestamp)
        return len(stale_nodes) + removed_edges

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_stats(self) -> GraphStats:
        g = self.graph
        node_types = Counter(
            data["type"] for _, data in g.nodes(data=True) if not data.get("placeholder")
        )
        rel_types = Counter(data.get("type", "") for _, _, data in g.edges(data=True))
        last_updated = max(
            (data.get("metadata", {}).get("last_seen", "") for _, data in g.nodes(data=True)),
            default="",
        )
        return GraphStats(
            node_count=sum(node_types.values()),
            relationship_count=g.number_of_edges(),
            node_types=dict(node_types),
            relationship_types=dict(rel_types),
            last_updated=last_updated,
        )

    def load_snapshot(self) -> tuple[list[GraphNode], list[GraphRelationship]]:
        g = self.graph
        nodes = [
            GraphNode(
                id=nid, type=NodeType(data["type"]), name=data.get("name", ""),
                properties=dict(data.get("properties") or {}),
                metadata=dict(data.get("metadata") or {}),
            )
            for nid, data in g.nodes(data=True) if not data.get("placeholder")
        ]
        relationships = [
            GraphRelationship(
                id=key, type=RelationType(data["type"]), source=s, target=t,
                properties=dict(data.get("properties") or {}),
                metadata=dict(data.get("metadata") or {}),
            )
            for s, t, key, data in g.edges(keys=True, data=True)
        ]
        return nodes, relationships
