"""
Cross-extractor correlation.

Runs after every extractor has finished and looks across their combined
output for relationships no single extractor can see: a schema entity and
the class that implements it, a function whose signature mentions an
entity, an import of a workspace package, a document about a package.

Two tiers:

* **Deterministic** rules on exact names emit edges with confidence 1.0.
* **Fuzzy** scoring over candidate pairs drawn from type / namespace
  buckets emits ``RELATED_TO`` edges with a bounded confidence (never above
  :data:`MAX_FUZZY_SCORE`, never below ``Config.CONFIDENCE_FLOOR``).
  Scores that land in the ambiguous band are handed to a
  :class:`~codegraph_kb.correlation.matcher.FuzzyMatcher`.
"""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from typing import Iterable, Optional

from ..config import Config
from ..graph.model import (
    ExtractionResult, GraphNode, GraphRelationship, NodeType, RelationType,
    merge_by_id,
)
from ..text import normalize_name, similarity_ratio, tokenize
from .matcher import FuzzyMatcher, NullFuzzyMatcher

logger = logging.getLogger(__name__)

ORIGIN = "correlation"
MAX_FUZZY_SCORE = 0.95
# Candidates added only because they share a namespace, per node
NAMESPACE_CANDIDATE_LIMIT = 200

# (source type, target type) buckets compared by the fuzzy tier
FUZZY_PAIRS: tuple[tuple[NodeType, NodeType], ...] = (
    (NodeType.ENTITY, NodeType.CLASS),
    (NodeType.ENTITY, NodeType.INTERFACE),
    (NodeType.ENTITY, NodeType.FUNCTION),
    (NodeType.CLASS, NodeType.INTERFACE),
    (NodeType.DOCUMENT, NodeType.ENTITY),
    (NodeType.DOCUMENT, NodeType.PACKAGE),
)

_IDENT_RE = re.compile(r"[A-Za-z_$][A-Za-z0-9_$]*")


def _trigrams(text: str) -> set[str]:
    return {text[i:i + 3] for i in range(len(text) - 2)}


def fuzzy_score(a: GraphNode, b: GraphNode) -> float:
    """
    Heuristic relatedness of two nodes by name.

    Weighted sum of token Jaccard (0.45), sequence similarity ratio (0.35),
    substring containment (0.15) and a same-namespace bonus (0.05), capped
    at :data:`MAX_FUZZY_SCORE`.
    """
    ta, tb = set(tokenize(a.name)), set(tokenize(b.name))
    jaccard = len(ta & tb) / len(ta | tb) if ta and tb else 0.0
    ratio = similarity_ratio(a.name, b.name)
    na, nb = normalize_name(a.name), normalize_name(b.name)
    contained = 1.0 if len(na) >= 3 and len(nb) >= 3 and (na in nb or nb in na) else 0.0
    same_ns = 1.0 if a.package and a.package == b.package else 0.0
    score = 0.45 * jaccard + 0.35 * ratio + 0.15 * contained + 0.05 * same_ns
    return max(0.0, min(MAX_FUZZY_SCORE, score))


class CorrelationAnalyzer:
    """
    Infers relationships across extraction results.

    Parameters
    ----------
    config:
        Supplies ``CONFIDENCE_FLOOR``, ``AMBIGUOUS_LOW`` and ``MAX_BUCKET_PAIRS``.
    matcher:
        Consulted for ambiguous fuzzy scores. Defaults to :class:`NullFuzzyMatcher`.
    logger:
        Injected logger.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        matcher: Optional[FuzzyMatcher] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.config = config or Config()
        self.matcher = matcher or NullFuzzyMatcher()
        self.logger = logger or logging.getLogger(__name__)
        self.floor = float(self.config.CONFIDENCE_FLOOR)
        self.ambiguous_low = min(float(self.config.AMBIGUOUS_LOW), self.floor)
        self.max_bucket_pairs = int(self.config.MAX_BUCKET_PAIRS)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def analyze(self, results: Iterable[ExtractionResult]) -> list[GraphRelationship]:
        """
        Return inferred relationships for *results*. Never returns nodes.

        Relationships that an extractor already produced, and pairs that are
        already linked in either direction, are not emitted again.
        """
        results = list(results)
        nodes = merge_by_id(n for r in results for n in r.nodes)
        nodes.sort(key=lambda n: n.id)
        by_type: dict[NodeType, list[GraphNode]] = defaultdict(list)
        for node in nodes:
            by_type[node.type].append(node)

        self._existing_ids = {rel.id for r in results for rel in r.relationships}
        self._linked = {frozenset((rel.source, rel.target)) for r in results for rel in r.relationships}
        self._emitted: list[GraphRelationship] = []

        self._entity_class_rules(by_type)
        self._signature_rules(by_type)
        self._import_package_rules(by_type)
        self._document_package_rules(by_type)
        self._package_file_rules(by_type)
        deterministic = len(self._emitted)

        for source_type, target_type in FUZZY_PAIRS:
            self._fuzzy_bucket(by_type.get(source_type, []), by_type.get(target_type, []),
                               f"{source_type.value}->{target_type.value}")

        self.logger.info(
            "Correlation: %d deterministic, %d fuzzy relationships across %d nodes",
            deterministic, len(self._emitted) - deterministic, len(nodes),
        )
        return list(self._emitted)

    # ------------------------------------------------------------------
    # Emission
    # ------------------------------------------------------------------

    def _emit(
        self,
        rel_type: RelationType,
        source: GraphNode,
        target: GraphNode,
        confidence: float,
        **properties,
    ) -> bool:
        if source.id == target.id:
            return False
        rel = GraphRelationship.create(rel_type, source.id, target.id, properties=properties,
                                       confidence=confidence, origin=ORIGIN)
        pair = frozenset((source.id, target.id))
        if rel.id in self._existing_ids or pair in self._linked:
            return False
        self._existing_ids.add(rel.id)
        self._linked.add(pair)
        self._emitted.append(rel)
        return True

    # ------------------------------------------------------------------
    # Deterministic tier
    # ------------------------------------------------------------------

    def _entity_class_rules(self, by_type: dict[NodeType, list[GraphNode]]) -> None:
        entities = defaultdict(list)
        for node in by_type.get(NodeType.ENTITY, []):
            entities[normalize_name(node.name)].append(node)
        interfaces = defaultdict(list)
        for node in by_type.get(NodeType.INTERFACE, []):
            interfaces[normalize_name(node.name)].append(node)

        for node in by_type.get(NodeType.CLASS, []) + by_type.get(NodeType.INTERFACE, []):
            for entity in entities.get(normalize_name(node.name), []):
                self._emit(RelationType.RELATED_TO, entity, node, 1.0, rule="entity_name_match")

        # A class named after an entity implements the same-named interface
        for cls in by_type.get(NodeType.CLASS, []):
            key = normalize_name(cls.name)
            if key not in entities:
                continue
            for iface in interfaces.get(key, []):
                self._emit(RelationType.IMPLEMENTS, cls, iface, 1.0, rule="entity_name_match")

    def _signature_rules(self, by_type: dict[NodeType, list[GraphNode]]) -> None:
        entities = defaultdict(list)
        for node in by_type.get(NodeType.ENTITY, []):
            entities[node.name].append(node)
        if not entities:
            return

        for fn in by_type.get(NodeType.FUNCTION, []):
            text = " ".join([
                str(fn.properties.get("signature") or ""),
                str(fn.properties.get("return_type") or ""),
                " ".join(str(p) for p in fn.properties.get("params") or []),
            ])
            for ident in dict.fromkeys(_IDENT_RE.findall(text)):
                candidates = entities.get(ident)
                if not candidates:
                    continue
                local = [e for e in candidates if fn.package and e.package == fn.package]
                for entity in local or candidates:
                    self._emit(RelationType.USES_TYPE, fn, entity, 1.0, rule="signature_type")

    def _import_package_rules(self, by_type: dict[NodeType, list[GraphNode]]) -> None:
        packages = {node.name: node for node in by_type.get(NodeType.PACKAGE, [])}
        if not packages:
            return
        for imp in by_type.get(NodeType.IMPORT, []):
            module = str(imp.properties.get("module") or imp.name)
            package = packages.get(module)
            if package is not None:
                self._emit(RelationType.REFERENCES, imp, package, 1.0, rule="import_module")

    def _document_package_rules(self, by_type: dict[NodeType, list[GraphNode]]) -> None:
        packages = {node.name: node for node in by_type.get(NodeType.PACKAGE, [])}
        titles = {node.name.lower(): node for node in by_type.get(NodeType.PACKAGE, [])}
        if not packages:
            return
        for doc in by_type.get(NodeType.DOCUMENT, []):
            package = packages.get(doc.package)
            rule = "document_package"
            if package is None:
                title = str(doc.properties.get("title") or doc.name).strip().lower()
                package = titles.get(title)
                rule = "document_title"
            if package is not None:
                self._emit(RelationType.REFERENCES, doc, package, 1.0, rule=rule)

    def _package_file_rules(self, by_type: dict[NodeType, list[GraphNode]]) -> None:
        packages = {node.name: node for node in by_type.get(NodeType.PACKAGE, [])}
        if not packages:
            return
        for file_node in by_type.get(NodeType.FILE, []):
            package = packages.get(file_node.package)
            if package is not None:
                self._emit(RelationType.CONTAINS, package, file_node, 1.0, rule="file_package")

    # ------------------------------------------------------------------
    # Fuzzy tier
    # ------------------------------------------------------------------

    def _candidates(
        self,
        sources: list[GraphNode],
        targets: list[GraphNode],
        label: str,
    ) -> Iterable[tuple[GraphNode, GraphNode]]:
        """
        Yield pre-filtered pairs: shared name token, same namespace or substring containment.

        Containment candidates come from a trigram index over normalized
        target names. Every containment check counts against
        ``MAX_BUCKET_PAIRS``; the search stops once the cap is reached.
        """
        by_token: dict[str, list[GraphNode]] = defaultdict(list)
        by_namespace: dict[str, list[GraphNode]] = defaultdict(list)
        # trigram -> targets containing it / targets starting with it
        by_trigram: dict[str, list[tuple[str, GraphNode]]] = defaultdict(list)
        by_head: dict[str, list[tuple[str, GraphNode]]] = defaultdict(list)
        for target in targets:
            for token in tokenize(target.name):
                by_token[token].append(target)
            if target.package:
                by_namespace[target.package].append(target)
            norm = normalize_name(target.name)
            if len(norm) >= 3:
                by_head[norm[:3]].append((norm, target))
                for gram in _trigrams(norm):
                    by_trigram[gram].append((norm, target))

        checks = 0
        for source in sources:
            seen: dict[str, GraphNode] = {}
            for token in tokenize(source.name):
                for target in by_token.get(token, ()):
                    seen.setdefault(target.id, target)
            if source.package:
                for target in by_namespace.get(source.package, ())[:NAMESPACE_CANDIDATE_LIMIT]:
                    seen.setdefault(target.id, target)
            key = normalize_name(source.name)
            if len(key) >= 3:
                # key in norm => norm holds key[:3]; norm in key => key holds norm[:3]
                pool = list(by_trigram.get(key[:3], ()))
                for gram in _trigrams(key):
                    pool.extend(by_head.get(gram, ()))
                checks += len(pool)
                if checks > self.max_bucket_pairs:
                    self.logger.warning(
                        "Correlation bucket %s hit the %d pair cap during candidate search; "
                        "remaining pairs skipped", label, self.max_bucket_pairs,
                    )
                    return
                for norm, target in pool:
                    if key in norm or norm in key:
                        seen.setdefault(target.id, target)
            for target_id in sorted(seen):
                yield source, seen[target_id]

    def _fuzzy_bucket(self, sources: list[GraphNode], targets: list[GraphNode], label: str) -> None:
        if not sources or not targets:
            return
        compared = 0
        for source, target in self._candidates(sources, targets, label):
            if source.id == target.id or frozenset((source.id, target.id)) in self._linked:
                continue
            if compared >= self.max_bucket_pairs:
                self.logger.warning(
                    "Correlation bucket %s hit the %d pair cap; remaining pairs skipped",
                    label, self.max_bucket_pairs,
                )
                return
            compared += 1

            score = fuzzy_score(source, target)
            method = "heuristic"
            if self.ambiguous_low <= score < self.floor:
                opinion = self.matcher.score(source, target)
                if opinion is not None:
                    score = max(0.0, min(MAX_FUZZY_SCORE, float(opinion)))
                    method = "semantic"
            if score < self.floor:
                continue
            self._emit(RelationType.RELATED_TO, source, target, score,
                       rule="fuzzy_name", method=method, score=round(score, 3))
