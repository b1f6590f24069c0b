"""
Ranked, intent-aware search over a loaded code knowledge graph.

Every node gets an additive relevance score in ``[0, 1]``:

* name match: 0.6 for an exact match, otherwise 0.35 times the fraction
  of query tokens found in the name plus 0.1 for a substring hit;
* 0.2 when the query names the node's type ("entity", "function", ...);
* 0.15 for first-party nodes, applied only when a query-driven signal
  already fired;
* 0.05 per query token found in the description, at most 0.2.

The engine only reads the graph it is given.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Iterable, Optional

import networkx as nx

from ..config import Config
from ..graph.model import GraphNode, GraphRelationship, NodeType
from ..text import normalize_name, tokenize

logger = logging.getLogger(__name__)

EXACT_NAME_WEIGHT = 0.6
TOKEN_NAME_WEIGHT = 0.35
SUBSTRING_WEIGHT = 0.1
TYPE_KEYWORD_WEIGHT = 0.2
FIRST_PARTY_WEIGHT = 0.15
DESCRIPTION_TOKEN_WEIGHT = 0.05
DESCRIPTION_CAP = 0.2

TYPE_KEYWORDS: dict[str, NodeType] = {
    "entity": NodeType.ENTITY, "entities": NodeType.ENTITY,
    "schema": NodeType.ENTITY, "schemas": NodeType.ENTITY,
    "model": NodeType.ENTITY, "models": NodeType.ENTITY,
    "function": NodeType.FUNCTION, "functions": NodeType.FUNCTION,
    "method": NodeType.FUNCTION, "methods": NodeType.FUNCTION,
    "class": NodeType.CLASS, "classes": NodeType.CLASS,
    "file": NodeType.FILE, "files": NodeType.FILE,
    "package": NodeType.PACKAGE, "packages": NodeType.PACKAGE,
    "module": NodeType.PACKAGE, "modules": NodeType.PACKAGE,
    "doc": NodeType.DOCUMENT, "docs": NodeType.DOCUMENT,
    "documentation": NodeType.DOCUMENT, "readme": NodeType.DOCUMENT,
    "import": NodeType.IMPORT, "imports": NodeType.IMPORT,
    "interface": NodeType.INTERFACE, "interfaces": NodeType.INTERFACE,
}

TYPE_PRIORITY: dict[NodeType, int] = {
    NodeType.ENTITY: 0,
    NodeType.CLASS: 1,
    NodeType.INTERFACE: 1,
    NodeType.FUNCTION: 2,
    NodeType.PACKAGE: 3,
    NodeType.DOCUMENT: 4,
    NodeType.FILE: 5,
    NodeType.IMPORT: 6,
}

_DEFINITION_TYPES = (NodeType.ENTITY, NodeType.CLASS, NodeType.INTERFACE)


@dataclass
class ScoredNode:
    node: GraphNode
    score: float
    first_party: bool = False
    reasons: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {**self.node.to_dict(), "score": round(self.score, 4),
                "first_party": self.first_party, "reasons": list(self.reasons)}


@dataclass
class QueryResult:
    """Ranked nodes for one query plus optional one-hop relationships."""
    query: str
    tokens: list[str] = field(default_factory=list)
    nodes: list[ScoredNode] = field(default_factory=list)
    relationships: list[GraphRelationship] = field(default_factory=list)
    total_found: int = 0
    confidence: float = 0.0
    execution_time_ms: float = 0.0

    @property
    def is_empty(self) -> bool:
        return not self.nodes

    def to_dict(self) -> dict:
        return {
            "query": self.query,
            "tokens": list(self.tokens),
            "nodes": [s.to_dict() for s in self.nodes],
            "relationships": [r.to_dict() for r in self.relationships],
            "total_found": self.total_found,
            "confidence": round(self.confidence, 4),
            "execution_time_ms": round(self.execution_time_ms, 2),
        }


@dataclass
class _Indexed:
    node: GraphNode
    name_tokens: set[str]
    normalized: str
    text_tokens: set[str]
    first_party: bool


class IntelligentQueryEngine:
    """
    Query engine over an in-memory snapshot of the graph.

    Parameters
    ----------
    nodes, relationships:
        The graph, e.g. from :meth:`GraphStore.load_snapshot` or the JSON sink.
    config:
        ``INTERNAL_NAMESPACE``, ``MAX_RESULTS`` and ``MIN_SCORE``.
    logger:
        Injected logger.
    """

    def __init__(
        self,
        nodes: Iterable[GraphNode],
        relationships: Iterable[GraphRelationship],
        config: Optional[Config] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.config = config or Config()
        self.logger = logger or logging.getLogger(__name__)
        self.nodes: dict[str, GraphNode] = {n.id: n for n in nodes}
        self.relationships: dict[str, GraphRelationship] = {r.id: r for r in relationships}

        self._g = nx.MultiDiGraph()
        self._g.add_nodes_from(self.nodes)
        for rel in self.relationships.values():
            self._g.add_edge(rel.source, rel.target, key=rel.id)

        workspace = {n.name for n in self.nodes.values() if n.type == NodeType.PACKAGE}
        namespace = self.config.INTERNAL_NAMESPACE
        self._index = [
            self._index_node(node, workspace, namespace)
            for node in sorted(self.nodes.values(), key=lambda n: n.id)
        ]

    @staticmethod
    def _index_node(node: GraphNode, workspace: set[str], namespace: str) -> _Indexed:
        text = " ".join(
            str(node.properties.get(key) or "") for key in ("description", "title")
        )
        package = node.package
        first_party = bool(package) and (
            (bool(namespace) and package.startswith(namespace)) or package in workspace
        )
        return _Indexed(
            node=node,
            name_tokens=set(tokenize(node.name)),
            normalized=normalize_name(node.name),
            text_tokens=set(tokenize(text)),
            first_party=first_party,
        )

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    @staticmethod
    def _split_query(text: str) -> tuple[list[str], set[NodeType]]:
        tokens = tokenize(text if isinstance(text, str) else "")
        types = {TYPE_KEYWORDS[t] for t in tokens if t in TYPE_KEYWORDS}
        search = [t for t in tokens if t not in TYPE_KEYWORDS] or tokens
        return search, types

    def _score(self, item: _Indexed, search: list[str], types: set[NodeType]) -> Optional[ScoredNode]:
        if not search and not types:
            return None
        score = 0.0
        reasons: list[str] = []

        if search:
            joined = normalize_name("".join(search))
            if item.normalized and item.normalized == joined:
                score += EXACT_NAME_WEIGHT
                reasons.append("exact_name")
            else:
                found = sum(1 for t in search if t in item.name_tokens)
                if found:
                    score += TOKEN_NAME_WEIGHT * found / len(search)
                    reasons.append("name_tokens")
                if any(len(t) >= 3 and t in item.normalized for t in search):
                    score += SUBSTRING_WEIGHT
                    reasons.append("name_substring")

        if item.node.type in types:
            score += TYPE_KEYWORD_WEIGHT
            reasons.append("type_keyword")

        overlap = sum(1 for t in search if t in item.text_tokens)
        if overlap:
            score += min(DESCRIPTION_CAP, DESCRIPTION_TOKEN_WEIGHT * overlap)
            reasons.append("description")

        if not reasons:
            return None
        if item.first_party:
            score += FIRST_PARTY_WEIGHT
            reasons.append("first_party")
        return ScoredNode(item.node, max(0.0, min(1.0, score)), item.first_party, reasons)

    @staticmethod
    def _sort_key(scored: ScoredNode):
        return (
            -scored.score,
            not scored.first_party,
            TYPE_PRIORITY.get(scored.node.type, len(TYPE_PRIORITY)),
            scored.node.name.lower(),
            scored.node.id,
        )

    def _rank(self, items: Iterable[_Indexed], search: list[str], types: set[NodeType]) -> list[ScoredNode]:
        floor = self.config.MIN_SCORE
        scored = [s for s in (self._score(i, search, types) for i in items) if s and s.score > floor]
        scored.sort(key=self._sort_key)
        return scored

    def confidence(self, results: list[ScoredNode], tokens: Optional[list[str]] = None) -> float:
        """
        Overall confidence: top score averaged with query-token coverage.

        Coverage is the fraction of *tokens* found in the names or
        descriptions of *results*. Returns 0.0 for no results.
        """
        if not results:
            return 0.0
        top = results[0].score
        if not tokens:
            return top
        seen: set[str] = set()
        for s in results:
            text = f"{s.node.name} {s.node.properties.get('description') or ''}"
            seen.update(tokenize(text))
        coverage = sum(1 for t in tokens if t in seen) / len(tokens)
        return round((top + coverage) / 2, 4)

    def _finish(
        self,
        text: str,
        search: list[str],
        ranked: list[ScoredNode],
        include_related: bool,
        max_results: Optional[int],
        start: float,
    ) -> QueryResult:
        limit = max_results or self.config.MAX_RESULTS
        selected = ranked[:limit]
        result = QueryResult(
            query=text if isinstance(text, str) else "",
            tokens=list(search),
            nodes=selected,
            total_found=len(ranked),
            confidence=self.confidence(selected, search),
        )
        if include_related and selected:
            result.relationships = self.related_relationships(s.node.id for s in selected)
        result.execution_time_ms = (time.perf_counter() - start) * 1000
        self.logger.debug("Query %r: %d/%d results in %.1fms", text, len(selected),
                          len(ranked), result.execution_time_ms)
        return result

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def query(self, text: str, include_related: bool = False, max_results: Optional[int] = None) -> QueryResult:
        """
        Rank all nodes against *text*.

        Parameters
        ----------
        text:
            Free-text query.
        include_related:
            Attach relationships incident to the returned nodes.
        max_results:
            Cut-off; defaults to ``Config.MAX_RESULTS``.

        Returns
        -------
        QueryResult
            Empty (confidence 0) when nothing overlaps the query.
        """
        start = time.perf_counter()
        search, types = self._split_query(text)
        ranked = self._rank(self._index, search, types)
        return self._finish(text, search, ranked, include_related, max_results, start)

    def find_entity(self, name: str, include_related: bool = False, max_results: Optional[int] = None) -> QueryResult:
        """Entities, classes and interfaces matching *name*, ahead of the general ranking."""
        start = time.perf_counter()
        search, types = self._split_query(name)
        terms = [t for t in search if len(t) > 2]
        key = normalize_name(name if isinstance(name, str) else "")
        definitions = [
            i for i in self._index
            if i.node.type in _DEFINITION_TYPES and (
                any(t in i.name_tokens for t in terms) or (key and key in i.normalized)
            )
        ]
        primary = self._rank(definitions, terms or search, types)
        seen = {s.node.id for s in primary}
        rest = [s for s in self._rank(self._index, search, types) if s.node.id not in seen]
        return self._finish(name, search, primary + rest, include_related, max_results, start)

    def find_symbol(self, name: str, include_related: bool = False, max_results: Optional[int] = None) -> QueryResult:
        """Nodes named exactly *name* (case-insensitive), then nodes whose name contains it."""
        start = time.perf_counter()
        search, types = self._split_query(name)
        key = normalize_name(name if isinstance(name, str) else "")
        if not key:
            return self._finish(name, search, [], include_related, max_results, start)
        exact = [i for i in self._index if i.normalized == key]
        partial = [i for i in self._index if i.normalized != key and key in i.normalized]
        ranked = []
        for group in (exact, partial):
            scored = [self._score(i, search, types) or ScoredNode(i.node, 0.0, i.first_party) for i in group]
            ranked.extend(sorted(scored, key=self._sort_key))
        return self._finish(name, search, ranked, include_related, max_results, start)

    def find_pattern(self, text: str, include_related: bool = False, max_results: Optional[int] = None) -> QueryResult:
        """Nodes whose name or description matches *text*."""
        start = time.perf_counter()
        search, types = self._split_query(text)
        key = normalize_name(text if isinstance(text, str) else "")
        matching = [
            i for i in self._index
            if any(t in i.name_tokens or t in i.text_tokens for t in search)
            or (len(key) >= 3 and key in i.normalized)
        ]
        ranked = self._rank(matching, search, types)
        return self._finish(text, search, ranked, include_related, max_results, start)

    def neighbors(self, node_id: str) -> list[tuple[GraphRelationship, Optional[GraphNode]]]:
        """One-hop neighborhood of *node_id*: ``(relationship, other endpoint)`` pairs, outgoing first."""
        if node_id not in self._g:
            return []
        pairs = []
        for _, target, key in sorted(self._g.out_edges(node_id, keys=True), key=lambda e: e[2]):
            pairs.append((self.relationships[key], self.nodes.get(target)))
        for source, _, key in sorted(self._g.in_edges(node_id, keys=True), key=lambda e: e[2]):
            if source == node_id:
                continue
            pairs.append((self.relationships[key], self.nodes.get(source)))
        return pairs

    def related_relationships(self, node_ids: Iterable[str]) -> list[GraphRelationship]:
        """Relationships incident to any of *node_ids*, deduplicated and sorted by ID."""
        found: dict[str, GraphRelationship] = {}
        for node_id in node_ids:
            for rel, _ in self.neighbors(node_id):
                found[rel.id] = rel
        return [found[k] for k in sorted(found)]
