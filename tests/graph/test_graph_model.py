"""
Unit tests for codegraph_kb.graph.model

Covers deterministic ID generation, value-object round trips and the
merge-by-ID rule used by the orchestrator.
"""

from __future__ import annotations

import pytest

from codegraph_kb.graph.model import (
    ExtractionResult, GraphNode, GraphRelationship, NodeIdGenerator, NodeType,
    RelationType, merge_by_id, node_id, relationship_id,
)


# ---------------------------------------------------------------------------
# IDs
# ---------------------------------------------------------------------------

class TestNodeIds:
    def test_node_id_is_prefixed_with_lowercase_type(self):
        assert node_id(NodeType.PACKAGE, "pkg-a") == "package:pkg-a"

    def test_parts_are_joined_with_double_colon(self):
        assert node_id(NodeType.FUNCTION, "src/a.ts", "run") == "function:src/a.ts::run"

    def test_same_inputs_give_same_id(self):
        assert node_id("ENTITY", "core", "User") == node_id(NodeType.ENTITY, "core", "User")

    def test_backslashes_are_normalized(self):
        assert node_id(NodeType.FILE, "src\\a.py") == "file:src/a.py"

    def test_missing_parts_rejected(self):
        with pytest.raises(ValueError):
            node_id(NodeType.FILE)

    def test_empty_part_rejected(self):
        with pytest.raises(ValueError):
            node_id(NodeType.FILE, "  ")

    def test_unknown_type_rejected(self):
        with pytest.raises(ValueError):
            node_id("WIDGET", "x")

    def test_generators(self):
        assert NodeIdGenerator.package("pkg-a") == "package:pkg-a"
        assert NodeIdGenerator.file("pkg-a", "packages/pkg-a/README.md") == \
            "file:pkg-a::packages/pkg-a/README.md"
        assert NodeIdGenerator.file(None, "README.md") == "file:README.md"
        assert NodeIdGenerator.entity("User") == "entity:User"
        assert NodeIdGenerator.entity("User", "core") == "entity:core::User"
        assert NodeIdGenerator.function("a.py", "save", "Repo") == "function:a.py::Repo.save"
        assert NodeIdGenerator.klass("a.py", "Repo") == "class:a.py::Repo"
        assert NodeIdGenerator.interface("a.ts", "Shape") == "interface:a.ts::Shape"
        assert NodeIdGenerator.import_("a.py", "os") == "import:a.py::os"
        assert NodeIdGenerator.document("docs/guide.md") == "document:docs/guide.md"


class TestRelationshipIds:
    def test_format(self):
        rid = relationship_id(RelationType.DEPENDS_ON, "package:a", "package:b")
        assert rid == "depends_on:package:a->package:b"

    def test_direction_matters(self):
        forward = relationship_id(RelationType.CALLS, "x", "y")
        backward = relationship_id(RelationType.CALLS, "y", "x")
        assert forward != backward

    def test_type_matters(self):
        assert relationship_id(RelationType.CALLS, "x", "y") != \
            relationship_id(RelationType.REFERENCES, "x", "y")

    def test_create_derives_id(self):
        rel = GraphRelationship.create(RelationType.CONTAINS, "package:a", "file:a::x",
                                       confidence=0.7, origin="package")
        assert rel.id == "contains:package:a->file:a::x"
        assert rel.confidence == 0.7
        assert rel.metadata["origin"] == "package"


# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------

class TestGraphNode:
    def test_type_coerced_from_string(self):
        node = GraphNode(id="entity:User", type="ENTITY", name="User")
        assert node.type is NodeType.ENTITY

    def test_default_confidence(self):
        node = GraphNode(id="entity:User", type=NodeType.ENTITY, name="User")
        assert node.confidence == 1.0

    def test_shared_metadata_dict_not_mutated(self):
        shared = {"extractor": "schema"}
        node = GraphNode(id="entity:User", type=NodeType.ENTITY, name="User", metadata=shared)
        rel = GraphRelationship(id="uses_type:a->b", type=RelationType.USES_TYPE,
                                source="a", target="b", metadata=shared)
        assert shared == {"extractor": "schema"}
        assert node.metadata == {"confidence": 1.0, "extractor": "schema"}
        assert rel.confidence == 1.0
        assert node.metadata is not rel.metadata

    def test_explicit_confidence_kept(self):
        node = GraphNode(id="entity:User", type=NodeType.ENTITY, name="User",
                         metadata={"confidence": 0.7})
        assert node.confidence == 0.7

    def test_package_and_file_path(self):
        node = GraphNode(
            id="function:a.py::f", type=NodeType.FUNCTION, name="f",
            properties={"file_path": "a.py", "package": "core"},
        )
        assert node.package == "core"
        assert node.file_path == "a.py"

    def test_package_node_is_its_own_package(self):
        node = GraphNode(id="package:core", type=NodeType.PACKAGE, name="core")
        assert node.package == "core"

    def test_dict_round_trip(self):
        node = GraphNode(
            id="entity:User", type=NodeType.ENTITY, name="User",
            properties={"fields": ["id", "email"]},
            metadata={"confidence": 1.0, "extractor": "schema"},
        )
        assert GraphNode.from_dict(node.to_dict()) == node

    def test_relationship_round_trip(self):
        rel = GraphRelationship.create(RelationType.USES_TYPE, "a", "b", properties={"field": "x"})
        assert GraphRelationship.from_dict(rel.to_dict()) == rel


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------

class TestMergeById:
    def _node(self, **props):
        return GraphNode(id="file:a.py", type=NodeType.FILE, name="a.py", properties=props)

    def test_duplicates_collapse(self):
        merged = merge_by_id([self._node(language="python"), self._node(language="python")])
        assert len(merged) == 1

    def test_first_seen_order_is_kept(self):
        other = GraphNode(id="file:b.py", type=NodeType.FILE, name="b.py")
        merged = merge_by_id([self._node(), other, self._node()])
        assert [n.id for n in merged] == ["file:a.py", "file:b.py"]

    def test_empty_values_do_not_overwrite(self):
        merged = merge_by_id([
            self._node(language="python", hash="abc"),
            self._node(language="", package="core"),
        ])
        props = merged[0].properties
        assert props["language"] == "python"
        assert props["hash"] == "abc"
        assert props["package"] == "core"

    def test_later_non_empty_values_win(self):
        merged = merge_by_id([self._node(size=1), self._node(size=2)])
        assert merged[0].properties["size"] == 2

    def test_inputs_not_mutated(self):
        first = self._node(language="python")
        second = self._node(package="core")
        merge_by_id([first, second])
        assert "package" not in first.properties

    def test_relationships_merge(self):
        a = GraphRelationship.create(RelationType.CALLS, "x", "y", properties={"line": 3})
        b = GraphRelationship.create(RelationType.CALLS, "x", "y", properties={"line": 9})
        merged = merge_by_id([a, b])
        assert len(merged) == 1
        assert merged[0].properties["line"] == 9


class TestExtractionResult:
    def test_counts(self):
        result = ExtractionResult(
            nodes=[GraphNode(id="package:a", type=NodeType.PACKAGE, name="a")],
            relationships=[],
        )
        assert result.node_count == 1
        assert result.relationship_count == 0
