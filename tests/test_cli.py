"""
Tests for the ``codegraph`` command line (codegraph_kb.cli).

The package, schema and document extractors are run, so these tests
exercise the full extract -> store -> query path on the shared monorepo
fixture. Tests that extract schemas skip when the TypeScript or Python
grammar is not installed.
"""

from __future__ import annotations

import json

import pytest

from codegraph_kb.cli import (
    EXIT_CONFIG, EXIT_FAILURE, EXIT_OK, bucket_related_files, main,
)
from codegraph_kb.graph.model import GraphNode, NodeType

EXTRACTORS = "package,schema,document"


@pytest.fixture()
def schema_grammars():
    pytest.importorskip("tree_sitter_typescript")
    pytest.importorskip("tree_sitter_python")


@pytest.fixture()
def cli_config(tmp_path):
    """Write a networkx-backed config file and return its path."""
    path = tmp_path / "codegraph.yaml"
    path.write_text(
        "backend: networkx\n"
        f"store_path: {tmp_path / 'store' / 'graph.pkl'}\n"
        "internal_namespace: '@acme/'\n"
        "max_workers: 2\n",
        encoding="utf-8",
    )
    return str(path)


def _extract_json(monorepo, cli_config, out_dir):
    return main([
        "extract", "--extractors", EXTRACTORS, "--output", "json",
        "--file", str(out_dir / "graph.json"),
        "--working-dir", str(monorepo), "--config", cli_config,
    ])


class TestExtract:
    def test_json_output(self, schema_grammars, monorepo, cli_config, tmp_path, capsys):
        out_dir = tmp_path / "out"
        assert _extract_json(monorepo, cli_config, out_dir) == EXIT_OK
        nodes = json.loads((out_dir / "nodes.json").read_text(encoding="utf-8"))
        rels = json.loads((out_dir / "relationships.json").read_text(encoding="utf-8"))
        assert {"ENTITY", "PACKAGE", "DOCUMENT"} <= {n["type"] for n in nodes}
        assert any(r["type"] == "DEPENDS_ON" for r in rels)
        out = capsys.readouterr().out
        assert "Wrote" in out
        assert "schema" in out

    def test_console_output(self, monorepo, cli_config, capsys):
        code = main(["extract", "--extractors", "package", "--output", "console",
                     "--working-dir", str(monorepo), "--config", cli_config])
        assert code == EXIT_OK
        out = capsys.readouterr().out
        assert "PACKAGE      3" in out
        assert "DEPENDS_ON" in out

    def test_graph_output_then_incremental(self, schema_grammars, monorepo, cli_config, capsys):
        args = ["extract", "--extractors", EXTRACTORS, "--working-dir", str(monorepo),
                "--config", cli_config]
        assert main(args) == EXIT_OK
        assert "[full]" in capsys.readouterr().out
        assert main(args) == EXIT_OK
        assert "[incremental]" in capsys.readouterr().out

    def test_unknown_extractor(self, monorepo, cli_config, capsys):
        code = main(["extract", "--extractors", "nope", "--working-dir", str(monorepo),
                     "--config", cli_config])
        assert code == EXIT_CONFIG
        assert "Unknown extractor" in capsys.readouterr().err

    def test_missing_working_dir(self, tmp_path, cli_config):
        code = main(["extract", "--working-dir", str(tmp_path / "missing"), "--config", cli_config])
        assert code == EXIT_CONFIG

    def test_missing_config_file(self, monorepo, tmp_path):
        code = main(["extract", "--working-dir", str(monorepo),
                     "--config", str(tmp_path / "absent.yaml")])
        assert code == EXIT_CONFIG

    def test_neo4j_without_password(self, monorepo, tmp_path, capsys):
        path = tmp_path / "neo.yaml"
        path.write_text("backend: neo4j\n", encoding="utf-8")
        code = main(["extract", "--working-dir", str(monorepo), "--config", str(path)])
        assert code == EXIT_CONFIG
        assert "NEO4J_PASSWORD" in capsys.readouterr().err


class TestQuery:
    def test_find_entity_from_json_snapshot(self, schema_grammars, monorepo, cli_config, tmp_path, capsys):
        out_dir = tmp_path / "out"
        _extract_json(monorepo, cli_config, out_dir)
        capsys.readouterr()

        code = main(["query", "--find-entity", "User", "--include-related",
                     "--source", "json", "--data-dir", str(out_dir), "--config", cli_config])
        assert code == EXIT_OK
        payload = json.loads(capsys.readouterr().out)
        assert payload["success"] is True
        assert payload["query"] == {"type": "find_entity", "target": "User",
                                    "for_entity": None, "include_related": True}
        target = payload["results"]["primary_target"]
        assert target["name"] == "User"
        assert target["type"] == "ENTITY"
        assert "email" in target["current_fields"]
        related = [p for paths in payload["results"]["related_files"].values() for p in paths]
        assert any(p.endswith("user.ts") for p in related)
        assert "common_field_types" in payload["results"]["suggestions"]
        assert payload["metadata"]["confidence"] > 0

    def test_find_pattern_from_store(self, schema_grammars, monorepo, cli_config, capsys):
        main(["extract", "--extractors", EXTRACTORS, "--working-dir", str(monorepo),
              "--config", cli_config])
        capsys.readouterr()

        code = main(["query", "--find-pattern", "add field", "--for-entity", "User",
                     "--config", cli_config])
        assert code == EXIT_OK
        [pattern] = json.loads(capsys.readouterr().out)["results"]["patterns"]
        assert pattern["name"] == "add_field"
        assert pattern["title"] == "Add a field to User"

    def test_no_match_gives_hints(self, schema_grammars, monorepo, cli_config, tmp_path, capsys):
        out_dir = tmp_path / "out"
        _extract_json(monorepo, cli_config, out_dir)
        capsys.readouterr()

        main(["query", "--find-symbol", "kubernetes", "--source", "json",
              "--data-dir", str(out_dir), "--config", cli_config])
        payload = json.loads(capsys.readouterr().out)
        assert payload["results"]["primary_target"] is None
        assert payload["results"]["suggestions"]["hints"]
        assert payload["metadata"]["confidence"] == 0

    def test_missing_snapshot_is_json_error(self, tmp_path, cli_config, capsys):
        code = main(["query", "--find-entity", "User", "--source", "json",
                     "--data-dir", str(tmp_path / "missing"), "--config", cli_config])
        assert code == EXIT_FAILURE
        payload = json.loads(capsys.readouterr().out)
        assert payload["success"] is False
        assert payload["query"]["target"] == "User"
        assert payload["error"]

    def test_text_format(self, schema_grammars, monorepo, cli_config, tmp_path, capsys):
        out_dir = tmp_path / "out"
        _extract_json(monorepo, cli_config, out_dir)
        capsys.readouterr()

        main(["query", "--find-entity", "Order", "--format", "text", "--source", "json",
              "--data-dir", str(out_dir), "--config", cli_config])
        out = capsys.readouterr().out
        assert "Name:     Order" in out


class TestStats:
    def test_stats_json(self, monorepo, cli_config, capsys):
        main(["extract", "--extractors", "package", "--working-dir", str(monorepo),
              "--config", cli_config])
        capsys.readouterr()

        assert main(["stats", "--format", "json", "--config", cli_config]) == EXIT_OK
        stats = json.loads(capsys.readouterr().out)
        assert stats["node_types"]["PACKAGE"] == 3
        assert stats["relationship_types"]["DEPENDS_ON"] == 1
        assert stats["last_updated"]

    def test_stats_text_from_snapshot(self, schema_grammars, monorepo, cli_config, tmp_path, capsys):
        out_dir = tmp_path / "out"
        _extract_json(monorepo, cli_config, out_dir)
        capsys.readouterr()

        main(["stats", "--source", "json", "--data-dir", str(out_dir), "--config", cli_config])
        out = capsys.readouterr().out
        assert "Code Graph Statistics" in out
        assert "ENTITY" in out


class TestBucketRelatedFiles:
    def test_paths_grouped_by_segment(self):
        nodes = [
            GraphNode(id=f"file:{path}", type=NodeType.FILE, name=path.rsplit("/", 1)[-1],
                      properties={"path": path})
            for path in (
                "packages/db/src/schema/user.ts",
                "packages/api/src/routers/user.ts",
                "apps/web/components/UserForm.tsx",
                "packages/db/migrations/001_user.sql",
                "packages/api/tests/user.test.ts",
                "packages/core/src/userUtils.ts",
                "packages/core/src/order.ts",
            )
        ]
        buckets = bucket_related_files(nodes, "User")
        assert buckets["schemas"] == ["packages/db/src/schema/user.ts"]
        assert buckets["apis"] == ["packages/api/src/routers/user.ts"]
        assert buckets["ui_components"] == ["apps/web/components/UserForm.tsx"]
        assert buckets["migrations"] == ["packages/db/migrations/001_user.sql"]
        assert buckets["tests"] == ["packages/api/tests/user.test.ts"]
        assert buckets["other"] == ["packages/core/src/userUtils.ts"]

    def test_empty_name(self):
        assert not any(bucket_related_files([], "").values())
