"""
Unit tests for codegraph_kb.config
"""

from __future__ import annotations

import pytest

from codegraph_kb.config import Config
from codegraph_kb.errors import ConfigError


class TestResolution:
    def test_defaults(self):
        config = Config()
        assert config.BACKEND == "neo4j"
        assert config.NEO4J_URI == "bolt://localhost:7687"
        assert config.MAX_WORKERS == 4
        assert config.CONFIDENCE_FLOOR == 0.6
        assert config.MIN_SCORE == 0.1
        assert config.PACKAGE_DIRS == ["packages", "modules", "tools", "apps"]

    def test_yaml_overrides_defaults(self):
        config = Config({"backend": "NetworkX", "max_results": 5, "package_dirs": ["libs"]})
        assert config.BACKEND == "networkx"
        assert config.MAX_RESULTS == 5
        assert config.PACKAGE_DIRS == ["libs"]

    def test_env_overrides_yaml(self, monkeypatch):
        monkeypatch.setenv("NEO4J_PASSWORD", "from-env")
        monkeypatch.setenv("CODEGRAPH_MAX_WORKERS", "8")
        config = Config({"neo4j_password": "from-yaml", "max_workers": 2})
        assert config.NEO4J_PASSWORD == "from-env"
        assert config.MAX_WORKERS == 8

    def test_nested_sections(self):
        config = Config({
            "neo4j": {"uri": "neo4j://db:7687", "password": "pw"},
            "matcher": {"url": "http://llm/v1/chat/completions", "max_calls": 3},
        })
        assert config.NEO4J_URI == "neo4j://db:7687"
        assert config.NEO4J_PASSWORD == "pw"
        assert config.MATCHER_URL == "http://llm/v1/chat/completions"
        assert config.MATCHER_MAX_CALLS == 3

    def test_flat_key_wins_over_section(self):
        config = Config({"neo4j_database": "flat", "neo4j": {"database": "nested"}})
        assert config.NEO4J_DATABASE == "flat"

    def test_bad_number_names_source(self, monkeypatch):
        monkeypatch.setenv("CODEGRAPH_MIN_SCORE", "high")
        with pytest.raises(ConfigError, match="CODEGRAPH_MIN_SCORE"):
            Config()

    def test_bad_package_dirs_falls_back(self):
        assert Config({"package_dirs": "packages"}).PACKAGE_DIRS == [
            "packages", "modules", "tools", "apps",
        ]


class TestLoad:
    def test_explicit_file(self, tmp_path):
        path = tmp_path / "graph.yaml"
        path.write_text("backend: networkx\nneo4j:\n  username: admin\n", encoding="utf-8")
        config = Config.load(str(path))
        assert config.BACKEND == "networkx"
        assert config.NEO4J_USERNAME == "admin"

    def test_file_in_working_directory(self, tmp_path, monkeypatch):
        (tmp_path / ".codegraph.yaml").write_text("max_results: 7\n", encoding="utf-8")
        monkeypatch.chdir(tmp_path)
        assert Config.load().MAX_RESULTS == 7

    def test_malformed_yaml_ignored(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("backend: [unclosed\n", encoding="utf-8")
        assert Config.load(str(path)).BACKEND == "neo4j"


class TestValidateStore:
    def test_neo4j_requires_password(self):
        with pytest.raises(ConfigError, match="NEO4J_PASSWORD"):
            Config().validate_store()

    def test_neo4j_uri_needs_scheme(self):
        with pytest.raises(ConfigError, match="Invalid NEO4J_URI"):
            Config({"neo4j": {"password": "pw", "uri": "localhost:7687"}}).validate_store()

    def test_valid_neo4j(self):
        Config({"neo4j": {"password": "pw"}}).validate_store()

    def test_unknown_backend(self):
        with pytest.raises(ConfigError, match="Unknown graph backend"):
            Config({"backend": "sqlite"}).validate_store()

    def test_networkx_needs_no_credentials(self):
        Config({"backend": "networkx"}).validate_store()
