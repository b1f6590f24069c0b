"""
Graph persistence: the store contract, its backends and the JSON sink.
"""

from __future__ import annotations

import logging
from typing import Optional

from ..config import Config
from .base import GraphStats, GraphStore, ImportSummary, run_stamp
from .json_sink import load_json_snapshot, write_json_snapshot


def create_store(
    config: Config,
    logger: Optional[logging.Logger] = None,
    read_only: bool = False,
) -> GraphStore:
    """
    Build the backend selected by ``config.BACKEND``.

    Raises
    ------
    ConfigError
        If the backend is unknown or its settings are incomplete.
    """
    config.validate_store()
    if config.BACKEND == "networkx":
        from .networkx_store import NetworkXGraphStore
        return NetworkXGraphStore(config, logger, read_only=read_only)
    from .neo4j_store import Neo4jGraphStore
    return Neo4jGraphStore(config, logger)


__all__ = [
    "GraphStats",
    "GraphStore",
    "ImportSummary",
    "create_store",
    "load_json_snapshot",
    "run_stamp",
    "write_json_snapshot",
]
