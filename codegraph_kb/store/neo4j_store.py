"""
Neo4j graph store.

Every node carries the ``GraphNode`` label plus a per-type label
(``Package``, ``File``, ...). Properties and metadata are flattened into
top-level keys with ``prop_`` and ``metadata_`` prefixes because Neo4j
properties cannot hold maps.
"""

from __future__ import annotations

import json
import logging
import math
from collections import defaultdict
from typing import Any, Iterable, Optional

from neo4j import GraphDatabase
from neo4j.exceptions import DriverError, Neo4jError

from ..config import Config
from ..errors import GraphStoreError
from ..graph.model import GraphNode, GraphRelationship, NodeType, RelationType
from .base import CORRELATION_ORIGIN, GraphStats, GraphStore

PROP_PREFIX = "prop_"
META_PREFIX = "metadata_"
# Bookkeeping keys listing which flattened keys need rebuilding on read
NESTED_KEYS = "_nested_keys"
JSON_KEYS = "_json_keys"

_SCHEMA_STATEMENTS = (
    "CREATE CONSTRAINT graph_node_id IF NOT EXISTS FOR (n:GraphNode) REQUIRE n.id IS UNIQUE",
    "CREATE INDEX graph_node_type IF NOT EXISTS FOR (n:GraphNode) ON (n.type)",
    "CREATE INDEX graph_node_name IF NOT EXISTS FOR (n:GraphNode) ON (n.name)",
)

_STORE_ERRORS = (Neo4jError, DriverError, OSError, ValueError)


def _label(node_type: NodeType) -> str:
    return node_type.value.title()


def _scalar(value: Any) -> Any:
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return value


def _is_scalar(value: Any) -> bool:
    return value is None or isinstance(value, (str, int, float, bool))


def _flatten_into(row: dict, prefix: str, data: dict, nested: list, as_json: list, depth: int = 0) -> None:
    for key, value in data.items():
        flat_key = f"{prefix}{key}"
        if isinstance(value, dict) and depth == 0:
            nested.append(flat_key)
            _flatten_into(row, f"{flat_key}_", value, nested, as_json, depth + 1)
        elif isinstance(value, dict):
            # only one level is flattened; deeper maps are stored as JSON
            as_json.append(flat_key)
            row[flat_key] = json.dumps(value, default=str)
        elif isinstance(value, (list, tuple)):
            if all(_is_scalar(v) and v is not None for v in value):
                row[flat_key] = [_scalar(v) for v in value]
            else:
                as_json.append(flat_key)
                row[flat_key] = json.dumps(list(value), default=str)
        elif _is_scalar(value):
            row[flat_key] = _scalar(value)
        else:
            row[flat_key] = str(value)


def flatten_element(element: GraphNode | GraphRelationship) -> dict:
    """
    Flatten a node or relationship into a Neo4j property map.

    Nested maps become ``prefix_key_subkey`` entries. Maps below that
    level and lists holding non-scalars become JSON strings. Non-finite
    floats become null.
    """
    row: dict[str, Any] = {"id": element.id, "type": element.type.value}
    if isinstance(element, GraphNode):
        row["name"] = element.name
    nested: list[str] = []
    as_json: list[str] = []
    _flatten_into(row, PROP_PREFIX, element.properties, nested, as_json)
    _flatten_into(row, META_PREFIX, element.metadata, nested, as_json)
    if nested:
        row[NESTED_KEYS] = nested
    if as_json:
        row[JSON_KEYS] = as_json
    return row


def _unflatten_section(row: dict, prefix: str) -> dict:
    nested = set(row.get(NESTED_KEYS) or [])
    as_json = set(row.get(JSON_KEYS) or [])
    section: dict[str, Any] = {}
    for flat_key in sorted(row):
        if not flat_key.startswith(prefix):
            continue
        value = row[flat_key]
        if flat_key in as_json:
            try:
                value = json.loads(value)
            except (TypeError, ValueError):
                pass
        parent = next((n for n in nested if flat_key.startswith(f"{n}_")), None)
        if parent is not None:
            section.setdefault(parent[len(prefix):], {})[flat_key[len(parent) + 1:]] = value
        else:
            section[flat_key[len(prefix):]] = value
    for key in nested:
        if key.startswith(prefix):
            section.setdefault(key[len(prefix):], {})
    return section


def unflatten_node(row: dict) -> GraphNode:
    """Rebuild a :class:`GraphNode` from a flattened property map."""
    return GraphNode(
        id=row["id"],
        type=NodeType(row["type"]),
        name=row.get("name") or "",
        properties=_unflatten_section(row, PROP_PREFIX),
        metadata=_unflatten_section(row, META_PREFIX),
    )


def unflatten_relationship(row: dict, source: str, target: str) -> GraphRelationship:
    return GraphRelationship(
        id=row["id"],
        type=RelationType(row["type"]),
        source=source,
        target=target,
        properties=_unflatten_section(row, PROP_PREFIX),
        metadata=_unflatten_section(row, META_PREFIX),
    )


class Neo4jGraphStore(GraphStore):
    """
    Graph store on a Neo4j server via the official driver.

    Parameters
    ----------
    config:
        ``NEO4J_URI``, ``NEO4J_USERNAME``, ``NEO4J_PASSWORD`` and
        ``NEO4J_DATABASE`` select the server.
    logger:
        Injected logger.
    driver:
        Pre-built driver (tests); when omitted one is created on connect.
    """

    backend = "neo4j"

    def __init__(
        self,
        config: Optional[Config] = None,
        logger: Optional[logging.Logger] = None,
        driver: Any = None,
    ) -> None:
        super().__init__(config, logger)
        self._injected = driver
        self._driver = None

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    def connect(self) -> None:
        if self._driver is not None:
            return
        uri = self.config.NEO4J_URI
        try:
            driver = self._injected or GraphDatabase.driver(
                uri, auth=(self.config.NEO4J_USERNAME, self.config.NEO4J_PASSWORD),
            )
            self._driver = driver
            driver.verify_connectivity()
            with self._session() as session:
                for statement in _SCHEMA_STATEMENTS:
                    session.run(statement).consume()
        except _STORE_ERRORS as exc:
            self.disconnect()
            raise GraphStoreError(f"Cannot connect to Neo4j at {uri}: {exc}") from exc
        self.logger.info("Connected to Neo4j at %s (database %s)", uri, self.config.NEO4J_DATABASE)

    def verify(self) -> bool:
        try:
            return self._read("RETURN 1 AS ok")[0]["ok"] == 1
        except GraphStoreError:
            return False

    def disconnect(self) -> None:
        driver, self._driver = self._driver, None
        if driver is None:
            return
        try:
            driver.close()
        except _STORE_ERRORS as exc:
            self.logger.warning("Error while closing Neo4j driver: %s", exc)
        else:
            self.logger.debug("Disconnected from Neo4j")

    def _session(self):
        if self._driver is None:
            raise GraphStoreError("Neo4j store is not connected")
        return self._driver.session(database=self.config.NEO4J_DATABASE)

    def _read(self, query: str, **params) -> list[dict]:
        try:
            with self._session() as session:
                return session.run(query, **params).data()
        except _STORE_ERRORS as exc:
            raise GraphStoreError(f"Neo4j query failed: {exc}") from exc

    def _write(self, work, *args) -> Any:
        try:
            with self._session() as session:
                return session.execute_write(work, *args)
        except _STORE_ERRORS as exc:
            raise GraphStoreError(f"Neo4j transaction failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def clear_database(self) -> None:
        self._write(lambda tx: tx.run("MATCH (n:GraphNode) DETACH DELETE n").consume())
        self.logger.info("Cleared Neo4j database %s", self.config.NEO4J_DATABASE)

    @staticmethod
    def _write_nodes_tx(tx, rows_by_type: dict[NodeType, list[dict]]) -> None:
        for node_type, rows in rows_by_type.items():
            tx.run(
                "UNWIND $rows AS row "
                "MERGE (n:GraphNode {id: row.id}) "
                f"SET n = row, n:{_label(node_type)}",
                rows=rows,
            ).consume()

    @staticmethod
    def _write_relationships_tx(tx, rows_by_type: dict[RelationType, list[dict]]) -> None:
        for rel_type, rows in rows_by_type.items():
            tx.run(
                "UNWIND $rows AS row "
                "MERGE (s:GraphNode {id: row.source}) ON CREATE SET s.placeholder = true "
                "MERGE (t:GraphNode {id: row.target}) ON CREATE SET t.placeholder = true "
                f"MERGE (s)-[r:{rel_type.value} {{id: row.id}}]->(t) "
                "SET r = row.props",
                rows=rows,
            ).consume()

    def _upsert_nodes(self, batch: list[GraphNode]) -> None:
        rows_by_type: dict[NodeType, list[dict]] = defaultdict(list)
        for node in batch:
            rows_by_type[node.type].append(flatten_element(node))
        self._write(self._write_nodes_tx, dict(rows_by_type))

    def _upsert_relationships(self, batch: list[GraphRelationship]) -> None:
        rows_by_type: dict[RelationType, list[dict]] = defaultdict(list)
        for rel in batch:
            rows_by_type[rel.type].append({
                "id": rel.id, "source": rel.source, "target": rel.target,
                "props": flatten_element(rel),
            })
        self._write(self._write_relationships_tx, dict(rows_by_type))

    @staticmethod
    def _sweep_tx(tx, stamp: str, extractors: Optional[list[str]]) -> int:
        rels = tx.run(
            "MATCH (s)-[r]->(t) "
            "WHERE r.metadata_last_seen < $stamp "
            "AND ($extractors IS NULL OR r.metadata_origin IN $extractors "
            "OR (r.metadata_origin = $correlation "
            "AND s.metadata_extractor IN $extractors AND t.metadata_extractor IN $extractors)) "
            "DELETE r RETURN count(*) AS removed",
            stamp=stamp, extractors=extractors, correlation=CORRELATION_ORIGIN,
        ).single()["removed"]
        nodes = tx.run(
            "MATCH (n:GraphNode) "
            "WHERE n.metadata_last_seen < $stamp "
            "AND ($extractors IS NULL OR n.metadata_extractor IN $extractors) "
            "OPTIONAL MATCH (n)-[r]-() "
            "WITH n, count(r) AS degree "
            "DETACH DELETE n RETURN count(n) + sum(degree) AS removed",
            stamp=stamp, extractors=extractors,
        ).single()["removed"]
        tx.run(
            "MATCH (n:GraphNode) WHERE n.placeholder = true AND NOT (n)--() DELETE n"
        ).consume()
        return int(rels or 0) + int(nodes or 0)

    def sweep_stale(self, run_timestamp: str, extractors: Optional[Iterable[str]] = None) -> int:
        names = None if extractors is None else list(extractors)
        return self._write(self._sweep_tx, run_timestamp, names)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_stats(self) -> GraphStats:
        node_types = {
            r["type"]: r["count"] for r in self._read(
                "MATCH (n:GraphNode) WHERE n.type IS NOT NULL "
                "RETURN n.type AS type, count(*) AS count"
            )
        }
        rel_types = {
            r["type"]: r["count"] for r in self._read(
                "MATCH ()-[r]->() RETURN type(r) AS type, count(*) AS count"
            )
        }
        last = self._read("MATCH (n:GraphNode) RETURN max(n.metadata_last_seen) AS last")
        return GraphStats(
            node_count=sum(node_types.values()),
            relationship_count=sum(rel_types.values()),
            node_types=node_types,
            relationship_types=rel_types,
            last_updated=(last[0]["last"] if last else None) or "",
        )

    def load_snapshot(self) -> tuple[list[GraphNode], list[GraphRelationship]]:
        nodes = [
            unflatten_node(r["props"]) for r in self._read(
                "MATCH (n:GraphNode) WHERE n.type IS NOT NULL RETURN properties(n) AS props"
            )
        ]
        relationships = [
            unflatten_relationship(r["props"], r["source"], r["target"]) for r in self._read(
                "MATCH (s:GraphNode)-[r]->(t:GraphNode) "
                "RETURN properties(r) AS props, s.id AS source, t.id AS target"
            )
        ]
        return nodes, relationships
