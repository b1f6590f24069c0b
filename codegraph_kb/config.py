"""
Configuration: loads settings from .codegraph.yaml, environment variables,
and built-in defaults (in that priority order: CLI args > env > YAML > defaults).
"""

import os

import yaml

from .errors import ConfigError


_DEFAULTS = {
    "backend": "neo4j",
    "neo4j_uri": "bolt://localhost:7687",
    "neo4j_username": "neo4j",
    "neo4j_password": "",
    "neo4j_database": "neo4j",
    "store_path": ".codegraph/graph.pkl",
    "output_dir": "graph-data",
    "internal_namespace": "",
    "package_dirs": ["packages", "modules", "tools", "apps"],
    "max_workers": 4,
    "node_batch_size": 500,
    "relationship_batch_size": 1000,
    "confidence_floor": 0.6,
    "ambiguous_low": 0.4,
    "max_bucket_pairs": 50000,
    "max_results": 20,
    "min_score": 0.1,
    "matcher_url": "",
    "matcher_api_key": "",
    "matcher_model": "gpt-4o-mini",
    "matcher_max_calls": 200,
}

SUPPORTED_BACKENDS = ("neo4j", "networkx")

# Config file search locations
_CONFIG_FILENAMES = [".codegraph.yaml", ".codegraph.yml"]


def _find_config_file(explicit_path: str | None = None) -> str | None:
    """Find the config file. Checks explicit path, CWD, then user home."""
    if explicit_path:
        if os.path.isfile(explicit_path):
            return explicit_path
        return None

    search_dirs = [os.getcwd(), os.path.expanduser("~")]
    for d in search_dirs:
        for name in _CONFIG_FILENAMES:
            path = os.path.join(d, name)
            if os.path.isfile(path):
                return path
    return None


def _load_yaml(path: str) -> dict:
    """Load YAML file, returns empty dict on failure."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return data if isinstance(data, dict) else {}
    except (OSError, yaml.YAMLError):
        return {}


class Config:
    """Application configuration.

    Settings are resolved in priority order:
    1. CLI arguments (handled by caller)
    2. Environment variables
    3. .codegraph.yaml config file
    4. Built-in defaults

    The YAML file may group store settings under ``neo4j:`` and matcher
    settings under ``matcher:``; flat keys are accepted as well.
    """

    def __init__(self, yaml_data: dict | None = None):
        yd = dict(yaml_data or {})
        for section, prefix in (("neo4j", "neo4j_"), ("matcher", "matcher_")):
            nested = yd.get(section)
            if isinstance(nested, dict):
                for key, value in nested.items():
                    yd.setdefault(f"{prefix}{key}", value)

        # Helper: env var > yaml > default
        def _get(env_key: str, yaml_key: str, default, cast=str):
            env_val = os.getenv(env_key)
            raw, source = (env_val, env_key) if env_val is not None else (yd.get(yaml_key), yaml_key)
            if raw is None:
                return default
            try:
                return cast(raw)
            except (TypeError, ValueError):
                raise ConfigError(f"Invalid value for {source}: {raw!r}") from None

        self.BACKEND = _get("CODEGRAPH_BACKEND", "backend", _DEFAULTS["backend"]).lower()

        # Graph database connection
        self.NEO4J_URI = _get("NEO4J_URI", "neo4j_uri", _DEFAULTS["neo4j_uri"])
        self.NEO4J_USERNAME = _get("NEO4J_USERNAME", "neo4j_username",
                                   _DEFAULTS["neo4j_username"])
        self.NEO4J_PASSWORD = _get("NEO4J_PASSWORD", "neo4j_password",
                                   _DEFAULTS["neo4j_password"])
        self.NEO4J_DATABASE = _get("NEO4J_DATABASE", "neo4j_database",
                                   _DEFAULTS["neo4j_database"])

        # Local store / JSON sink
        self.STORE_PATH = _get("CODEGRAPH_STORE_PATH", "store_path",
                               _DEFAULTS["store_path"])
        self.OUTPUT_DIR = _get("CODEGRAPH_OUTPUT_DIR", "output_dir",
                               _DEFAULTS["output_dir"])

        # Workspace layout
        self.INTERNAL_NAMESPACE = _get("CODEGRAPH_NAMESPACE", "internal_namespace",
                                       _DEFAULTS["internal_namespace"])
        self.PACKAGE_DIRS: list[str] = yd.get("package_dirs", _DEFAULTS["package_dirs"])
        if not isinstance(self.PACKAGE_DIRS, list):
            self.PACKAGE_DIRS = list(_DEFAULTS["package_dirs"])

        # Pipeline sizing
        self.MAX_WORKERS = _get("CODEGRAPH_MAX_WORKERS", "max_workers",
                                _DEFAULTS["max_workers"], cast=int)
        self.NODE_BATCH_SIZE = _get("CODEGRAPH_NODE_BATCH_SIZE", "node_batch_size",
                                    _DEFAULTS["node_batch_size"], cast=int)
        self.RELATIONSHIP_BATCH_SIZE = _get("CODEGRAPH_REL_BATCH_SIZE",
                                            "relationship_batch_size",
                                            _DEFAULTS["relationship_batch_size"],
                                            cast=int)

        # Correlation
        self.CONFIDENCE_FLOOR = _get("CODEGRAPH_CONFIDENCE_FLOOR", "confidence_floor",
                                     _DEFAULTS["confidence_floor"], cast=float)
        self.AMBIGUOUS_LOW = _get("CODEGRAPH_AMBIGUOUS_LOW", "ambiguous_low",
                                  _DEFAULTS["ambiguous_low"], cast=float)
        self.MAX_BUCKET_PAIRS = _get("CODEGRAPH_MAX_BUCKET_PAIRS", "max_bucket_pairs",
                                     _DEFAULTS["max_bucket_pairs"], cast=int)

        # Query
        self.MAX_RESULTS = _get("CODEGRAPH_MAX_RESULTS", "max_results",
                                _DEFAULTS["max_results"], cast=int)
        self.MIN_SCORE = _get("CODEGRAPH_MIN_SCORE", "min_score",
                              _DEFAULTS["min_score"], cast=float)

        # Optional semantic matcher (OpenAI-compatible endpoint)
        self.MATCHER_URL = _get("CODEGRAPH_MATCHER_URL", "matcher_url",
                                _DEFAULTS["matcher_url"])
        self.MATCHER_API_KEY = _get("CODEGRAPH_MATCHER_API_KEY", "matcher_api_key",
                                    _DEFAULTS["matcher_api_key"])
        self.MATCHER_MODEL = _get("CODEGRAPH_MATCHER_MODEL", "matcher_model",
                                  _DEFAULTS["matcher_model"])
        self.MATCHER_MAX_CALLS = _get("CODEGRAPH_MATCHER_MAX_CALLS", "matcher_max_calls",
                                      _DEFAULTS["matcher_max_calls"], cast=int)

    def validate_store(self) -> None:
        """Raise :class:`ConfigError` if the graph store settings are unusable."""
        if self.BACKEND not in SUPPORTED_BACKENDS:
            raise ConfigError(
                f"Unknown graph backend '{self.BACKEND}'. "
                f"Supported: {', '.join(SUPPORTED_BACKENDS)}"
            )
        if self.BACKEND == "neo4j":
            missing = [
                name for name, value in (
                    ("NEO4J_URI", self.NEO4J_URI),
                    ("NEO4J_USERNAME", self.NEO4J_USERNAME),
                    ("NEO4J_PASSWORD", self.NEO4J_PASSWORD),
                    ("NEO4J_DATABASE", self.NEO4J_DATABASE),
                ) if not value
            ]
            if missing:
                raise ConfigError(
                    f"Missing graph database configuration: {', '.join(missing)}"
                )
            if "://" not in self.NEO4J_URI:
                raise ConfigError(f"Invalid NEO4J_URI '{self.NEO4J_URI}'")
        elif not self.STORE_PATH:
            raise ConfigError("CODEGRAPH_STORE_PATH must not be empty")

    @classmethod
    def load(cls, config_path: str | None = None) -> "Config":
        """Load config from YAML file (if found) + env vars + defaults."""
        path = _find_config_file(config_path)
        yaml_data = _load_yaml(path) if path else {}
        return cls(yaml_data)
