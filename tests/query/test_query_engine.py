"""
Unit tests for codegraph_kb.query.engine

A small hand-built graph keeps the expected scores easy to reason about::

    PACKAGE  @acme/core
    ENTITY   User               (@acme/core, first-party)
    FUNCTION createUserSession  (@acme/core)  -USES_TYPE->  User
    DOCUMENT User Guide         (@acme/core)  -REFERENCES-> User
    ENTITY   Order              (vendor, third-party)
    CLASS    Order              (vendor, third-party)
"""

from __future__ import annotations

import pytest

from codegraph_kb.config import Config
from codegraph_kb.graph.model import GraphNode, GraphRelationship, NodeType, RelationType
from codegraph_kb.query import IntelligentQueryEngine

USER_ID = "entity:@acme/core::User"
FN_ID = "function:packages/core/src/session.ts::createUserSession"
DOC_ID = "document:docs/users.md"


def build_graph():
    nodes = [
        GraphNode(id="package:@acme/core", type=NodeType.PACKAGE, name="@acme/core",
                  properties={"path": "packages/core"}),
        GraphNode(id=USER_ID, type=NodeType.ENTITY, name="User", properties={
            "package": "@acme/core", "description": "Registered user account",
            "file_path": "packages/core/src/user.ts", "line": 3,
            "fields": ["id", "email"],
        }),
        GraphNode(id=FN_ID, type=NodeType.FUNCTION, name="createUserSession", properties={
            "package": "@acme/core", "signature": "(user: User)",
            "file_path": "packages/core/src/session.ts", "line_start": 10,
            "language": "typescript",
        }),
        GraphNode(id=DOC_ID, type=NodeType.DOCUMENT, name="User Guide", properties={
            "title": "User Guide", "path": "docs/users.md", "package": "@acme/core",
        }),
        GraphNode(id="entity:vendor::Order", type=NodeType.ENTITY, name="Order",
                  properties={"package": "vendor", "file_path": "vendor/order.ts"}),
        GraphNode(id="class:vendor/lib.py::Order", type=NodeType.CLASS, name="Order",
                  properties={"package": "vendor", "file_path": "vendor/lib.py"}),
    ]
    rels = [
        GraphRelationship.create(RelationType.USES_TYPE, FN_ID, USER_ID),
        GraphRelationship.create(RelationType.REFERENCES, DOC_ID, USER_ID),
    ]
    return nodes, rels


@pytest.fixture()
def engine():
    nodes, rels = build_graph()
    return IntelligentQueryEngine(nodes, rels, Config({"internal_namespace": "@acme/"}))


def _ids(result):
    return [s.node.id for s in result.nodes]


class TestQuery:
    def test_entity_outranks_function_mentioning_it(self, engine):
        result = engine.query("User entity")
        assert _ids(result) == [USER_ID, DOC_ID, FN_ID, "entity:vendor::Order"]
        assert result.nodes[0].score == pytest.approx(1.0)
        assert result.nodes[2].score == pytest.approx(0.6)
        assert result.nodes[3].score == pytest.approx(0.2)
        assert result.tokens == ["user"]

    def test_exact_name_wins(self, engine):
        result = engine.query("createUserSession")
        assert _ids(result)[0] == FN_ID
        assert "exact_name" in result.nodes[0].reasons

    def test_no_overlap_gives_empty_result(self, engine):
        result = engine.query("kubernetes helm")
        assert result.is_empty
        assert result.total_found == 0
        assert result.confidence == 0.0

    def test_non_string_query(self, engine):
        result = engine.query(None)
        assert result.is_empty
        assert result.query == ""

    def test_first_party_bonus_needs_another_signal(self, engine):
        result = engine.query("User entity")
        assert "package:@acme/core" not in _ids(result)

    def test_third_party_type_match_ranks_last(self, engine):
        scored = {s.node.id: s for s in engine.query("User entity").nodes}
        vendor = scored["entity:vendor::Order"]
        assert vendor.reasons == ["type_keyword"]
        assert vendor.first_party is False
        assert all(vendor.score < scored[i].score for i in (USER_ID, DOC_ID, FN_ID))

    def test_type_keyword_alone_selects_type(self, engine):
        result = engine.query("entities")
        assert {s.node.type for s in result.nodes} == {NodeType.ENTITY}

    def test_min_score_filter(self):
        nodes, rels = build_graph()
        engine = IntelligentQueryEngine(nodes, rels, Config({
            "internal_namespace": "@acme/", "min_score": 0.7,
        }))
        assert _ids(engine.query("User entity")) == [USER_ID]

    def test_max_results(self, engine):
        result = engine.query("User entity", max_results=1)
        assert len(result.nodes) == 1
        assert result.total_found == 4

    def test_confidence_combines_score_and_coverage(self, engine):
        result = engine.query("User entity")
        assert result.confidence == pytest.approx((1.0 + 1.0) / 2)
        assert 0.0 <= engine.query("user billing").confidence < result.confidence

    def test_include_related(self, engine):
        result = engine.query("createUserSession", include_related=True)
        assert any(r.type == RelationType.USES_TYPE for r in result.relationships)
        assert engine.query("createUserSession").relationships == []

    def test_to_dict(self, engine):
        data = engine.query("User entity").to_dict()
        assert data["nodes"][0]["name"] == "User"
        assert data["nodes"][0]["first_party"] is True
        assert data["total_found"] == 4


class TestSpecializedLookups:
    def test_find_symbol_exact_then_partial(self, engine):
        result = engine.find_symbol("user")
        assert _ids(result)[0] == USER_ID
        assert FN_ID in _ids(result)

    def test_find_symbol_tie_broken_by_type(self, engine):
        result = engine.find_symbol("Order")
        assert _ids(result) == ["entity:vendor::Order", "class:vendor/lib.py::Order"]

    def test_find_symbol_empty(self, engine):
        assert engine.find_symbol("  ").is_empty

    def test_find_entity_puts_definitions_first(self, engine):
        result = engine.find_entity("user")
        assert _ids(result)[0] == USER_ID
        assert set(_ids(result)) >= {USER_ID, FN_ID, DOC_ID}

    def test_find_pattern(self, engine):
        assert _ids(engine.find_pattern("session")) == [FN_ID]


class TestNeighborhood:
    def test_neighbors(self, engine):
        pairs = engine.neighbors(USER_ID)
        assert {(rel.type, other.id) for rel, other in pairs} == {
            (RelationType.USES_TYPE, FN_ID),
            (RelationType.REFERENCES, DOC_ID),
        }

    def test_unknown_node(self, engine):
        assert engine.neighbors("entity:nope") == []

    def test_related_relationships_deduplicated(self, engine):
        rels = engine.related_relationships([USER_ID, FN_ID])
        assert len(rels) == 2
        assert [r.id for r in rels] == sorted(r.id for r in rels)
