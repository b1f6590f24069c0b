"""
Unit tests for codegraph_kb.store.networkx_store and the shared
import / incremental-update logic in codegraph_kb.store.base
"""

from __future__ import annotations

import os

import pytest

from codegraph_kb.cancellation import CancellationToken
from codegraph_kb.config import Config
from codegraph_kb.errors import GraphStoreError, OperationCancelled
from codegraph_kb.graph.model import (
    GraphNode, GraphRelationship, NodeIdGenerator, NodeType, RelationType,
)
from codegraph_kb.store import create_store
from codegraph_kb.store.base import run_stamp
from codegraph_kb.store.networkx_store import NetworkXGraphStore, WriterLock


def _package(name, extractor="package", **props):
    return GraphNode(
        id=NodeIdGenerator.package(name), type=NodeType.PACKAGE, name=name,
        properties=props, metadata={"extractor": extractor, "confidence": 1.0},
    )


def _depends(a, b, origin="package"):
    return GraphRelationship.create(
        RelationType.DEPENDS_ON, NodeIdGenerator.package(a), NodeIdGenerator.package(b),
        origin=origin,
    )


def _graph(*names):
    nodes = [_package(n) for n in names]
    rels = [_depends(a, b) for a, b in zip(names, names[1:])]
    return nodes, rels


@pytest.fixture()
def store_path(tmp_path):
    return str(tmp_path / ".codegraph" / "graph.pkl")


@pytest.fixture()
def store(store_path):
    s = NetworkXGraphStore(Config({"node_batch_size": 2, "relationship_batch_size": 2}),
                           path=store_path)
    with s:
        yield s


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------

class TestImport:
    def test_import_writes_everything(self, store):
        nodes, rels = _graph("pkg-a", "pkg-b", "pkg-c")
        summary = store.import_data(nodes, rels)
        stats = store.get_stats()
        assert stats.node_count == 3
        assert stats.relationship_count == 2
        assert stats.node_types == {"PACKAGE": 3}
        assert summary.nodes_written == 3
        assert summary.node_batches == 2
        assert summary.relationship_batches == 1

    def test_reimport_does_not_duplicate(self, store):
        nodes, rels = _graph("pkg-a", "pkg-b")
        store.import_data(nodes, rels)
        store.import_data(nodes, rels)
        stats = store.get_stats()
        assert stats.node_count == 2
        assert stats.relationship_count == 1

    def test_new_dependency_adds_edge_not_node(self, store):
        store.import_data(*_graph("pkg-a", "pkg-b"))
        store.import_data(
            [_package("pkg-a"), _package("pkg-c")],
            [_depends("pkg-a", "pkg-b"), _depends("pkg-a", "pkg-c")],
        )
        nodes, rels = store.load_snapshot()
        assert [n.id for n in nodes].count("package:pkg-a") == 1
        outgoing = sorted(r.target for r in rels
                          if r.source == "package:pkg-a" and r.type == RelationType.DEPENDS_ON)
        assert outgoing == ["package:pkg-b", "package:pkg-c"]

    def test_upsert_replaces_properties(self, store):
        store.import_data([_package("pkg-a", version="1.0.0")], [])
        store.import_data([_package("pkg-a", version="2.0.0")], [])
        nodes, _ = store.load_snapshot()
        assert nodes[0].properties["version"] == "2.0.0"

    def test_last_seen_stamped(self, store):
        stamp = run_stamp()
        store.import_data(*_graph("pkg-a", "pkg-b"), run_timestamp=stamp)
        nodes, rels = store.load_snapshot()
        assert {n.metadata["last_seen"] for n in nodes} == {stamp}
        assert {r.metadata["last_seen"] for r in rels} == {stamp}
        assert store.get_stats().last_updated == stamp

    def test_dangling_endpoint_becomes_placeholder(self, store):
        store.import_data([_package("pkg-a")], [_depends("pkg-a", "ghost")])
        stats = store.get_stats()
        assert stats.node_count == 1
        assert stats.relationship_count == 1
        assert store.graph.nodes["package:ghost"]["placeholder"] is True

    def test_placeholder_filled_by_later_node(self, store):
        store.import_data([_package("pkg-a")], [_depends("pkg-a", "pkg-b")])
        store.import_data([_package("pkg-b")], [])
        assert store.get_stats().node_count == 2
        assert "placeholder" not in store.graph.nodes["package:pkg-b"]

    def test_cancel_between_batches(self, store):
        token = CancellationToken()
        token.cancel("stop")
        with pytest.raises(OperationCancelled):
            store.import_data(*_graph("pkg-a", "pkg-b"), cancel_token=token)
        assert store.get_stats().is_empty

    def test_clear(self, store):
        store.import_data(*_graph("pkg-a", "pkg-b"))
        store.clear_database()
        assert store.get_stats().is_empty


# ---------------------------------------------------------------------------
# Persistence and locking
# ---------------------------------------------------------------------------

class TestPersistence:
    def test_round_trip_through_pickle(self, store_path):
        nodes, rels = _graph("pkg-a", "pkg-b")
        with NetworkXGraphStore(Config(), path=store_path) as s:
            s.import_data(nodes, rels)
        with NetworkXGraphStore(Config(), path=store_path, read_only=True) as s:
            loaded_nodes, loaded_rels = s.load_snapshot()
        assert sorted(n.id for n in loaded_nodes) == ["package:pkg-a", "package:pkg-b"]
        assert [r.id for r in loaded_rels] == [rels[0].id]

    def test_lock_released_on_exit(self, store_path):
        with NetworkXGraphStore(Config(), path=store_path):
            assert os.path.exists(os.path.join(os.path.dirname(store_path), ".lock"))
        assert not os.path.exists(os.path.join(os.path.dirname(store_path), ".lock"))

    def test_lock_released_when_body_raises(self, store_path):
        with pytest.raises(RuntimeError):
            with NetworkXGraphStore(Config(), path=store_path):
                raise RuntimeError("boom")
        assert not os.path.exists(os.path.join(os.path.dirname(store_path), ".lock"))

    def test_live_lock_holder_blocks_writer(self, tmp_path):
        holder = os.getppid()
        if holder in (0, os.getpid()):
            pytest.skip("no live parent process to hold the lock")
        lock_path = tmp_path / ".lock"
        lock_path.write_text(str(holder))
        with pytest.raises(GraphStoreError, match=f"locked by process {holder}"):
            WriterLock(str(lock_path)).acquire()

    def test_dead_lock_holder_is_taken_over(self, tmp_path):
        lock_path = tmp_path / ".lock"
        lock_path.write_text(str(2 ** 22 + 12345))
        lock = WriterLock(str(lock_path))
        lock.acquire()
        assert lock_path.read_text() == str(os.getpid())
        lock.release()
        assert not lock_path.exists()

    def test_corrupt_pickle(self, store_path):
        os.makedirs(os.path.dirname(store_path))
        with open(store_path, "wb") as fh:
            fh.write(b"not a pickle")
        with pytest.raises(GraphStoreError):
            NetworkXGraphStore(Config(), path=store_path).connect()
        assert not os.path.exists(os.path.join(os.path.dirname(store_path), ".lock"))

    def test_not_connected(self, store_path):
        with pytest.raises(GraphStoreError):
            NetworkXGraphStore(Config(), path=store_path).get_stats()

    def test_factory_selects_backend(self, tmp_path):
        config = Config({"backend": "networkx", "store_path": str(tmp_path / "g.pkl")})
        assert isinstance(create_store(config), NetworkXGraphStore)


# ---------------------------------------------------------------------------
# Incremental update and sweep
# ---------------------------------------------------------------------------

class TestIncremental:
    def test_empty_store_gets_full_import(self, store):
        summary = store.incremental_update(*_graph("pkg-a", "pkg-b"), extractors=["package"])
        assert summary.mode == "full"
        assert summary.removed == 0
        assert store.get_stats().node_count == 2

    def test_removed_package_is_swept(self, store):
        store.import_data(*_graph("pkg-a", "pkg-b", "pkg-c"))
        summary = store.incremental_update(*_graph("pkg-a", "pkg-b"), extractors=["package"])
        nodes, rels = store.load_snapshot()
        assert summary.mode == "incremental"
        assert sorted(n.name for n in nodes) == ["pkg-a", "pkg-b"]
        assert [(r.source, r.target) for r in rels] == [("package:pkg-a", "package:pkg-b")]
        assert summary.removed == 2

    def test_failed_extractor_output_is_kept(self, store):
        doc = GraphNode(id="document:README.md", type=NodeType.DOCUMENT, name="README",
                        metadata={"extractor": "document"})
        nodes, rels = _graph("pkg-a", "pkg-b")
        store.import_data(nodes + [doc], rels)
        store.incremental_update(nodes, rels, extractors=["package"])
        assert "document:README.md" in {n.id for n in store.load_snapshot()[0]}

    def test_stale_correlation_edges_swept(self, store):
        nodes, rels = _graph("pkg-a", "pkg-b")
        guess = GraphRelationship.create(RelationType.RELATED_TO, "package:pkg-b", "package:pkg-a",
                                         origin="correlation")
        store.import_data(nodes, rels + [guess])
        store.incremental_update(nodes, rels, extractors=["package"])
        assert guess.id not in {r.id for r in store.load_snapshot()[1]}

    def test_correlation_edge_kept_when_endpoint_extractor_did_not_run(self, store):
        fn = GraphNode(id="function:src/session.ts::createSession", type=NodeType.FUNCTION,
                       name="createSession", metadata={"extractor": "function"})
        user = GraphNode(id="entity:@acme/core::User", type=NodeType.ENTITY, name="User",
                         metadata={"extractor": "schema"})
        uses = GraphRelationship.create(RelationType.USES_TYPE, fn.id, user.id, origin="correlation")
        nodes, rels = _graph("pkg-a", "pkg-b")
        store.import_data(nodes + [fn, user], rels + [uses])

        store.incremental_update(nodes, rels, extractors=["package"])
        assert uses.id in {r.id for r in store.load_snapshot()[1]}

        store.incremental_update(nodes + [fn], rels, extractors=["package", "function"])
        assert uses.id in {r.id for r in store.load_snapshot()[1]}

        store.incremental_update(nodes + [fn, user], rels, extractors=["function", "schema"])
        assert uses.id not in {r.id for r in store.load_snapshot()[1]}

    def test_unscoped_sweep_removes_everything_older(self, store):
        old = run_stamp()
        store.import_data(*_graph("pkg-a", "pkg-b"), run_timestamp=old)
        new = run_stamp()
        store.import_data([_package("pkg-a")], [], run_timestamp=new)
        removed = store.sweep_stale(new)
        assert [n.name for n in store.load_snapshot()[0]] == ["pkg-a"]
        assert removed == 2

    def test_orphan_placeholder_removed(self, store):
        old = run_stamp()
        store.import_data([_package("pkg-a")], [_depends("pkg-a", "ghost")], run_timestamp=old)
        store.sweep_stale(run_stamp())
        assert not store.graph.has_node("package:ghost")
