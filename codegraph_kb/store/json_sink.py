"""
JSON snapshot sink: ``nodes.json`` and ``relationships.json`` in one directory.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Sequence

from ..errors import GraphStoreError
from ..graph.model import GraphNode, GraphRelationship

logger = logging.getLogger(__name__)

NODES_FILE = "nodes.json"
RELATIONSHIPS_FILE = "relationships.json"


def _atomic_write_json(path: str, payload) -> None:
    tmp = f"{path}.tmp"
    with open(tmp, "w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2, ensure_ascii=False, default=str)
        fh.write("\n")
    os.replace(tmp, path)


def write_json_snapshot(
    output_dir: str,
    nodes: Sequence[GraphNode],
    relationships: Sequence[GraphRelationship],
) -> tuple[str, str]:
    """
    Write the graph as two pretty-printed JSON arrays, replacing any previous run.

    Returns
    -------
    tuple[str, str]
        Paths of the nodes and relationships files.

    Raises
    ------
    GraphStoreError
        If the directory cannot be written.
    """
    nodes_path = os.path.join(output_dir, NODES_FILE)
    rels_path = os.path.join(output_dir, RELATIONSHIPS_FILE)
    try:
        os.makedirs(output_dir, exist_ok=True)
        _atomic_write_json(nodes_path, [n.to_dict() for n in nodes])
        _atomic_write_json(rels_path, [r.to_dict() for r in relationships])
    except OSError as exc:
        raise GraphStoreError(f"Cannot write JSON snapshot to {output_dir}: {exc}") from exc
    logger.info("Wrote %d nodes and %d relationships to %s", len(nodes), len(relationships), output_dir)
    return nodes_path, rels_path


def load_json_snapshot(output_dir: str) -> tuple[list[GraphNode], list[GraphRelationship]]:
    """
    Read a snapshot written by :func:`write_json_snapshot`.

    Raises
    ------
    GraphStoreError
        If either file is missing or malformed.
    """
    try:
        with open(os.path.join(output_dir, NODES_FILE), encoding="utf-8") as fh:
            nodes = [GraphNode.from_dict(d) for d in json.load(fh)]
        with open(os.path.join(output_dir, RELATIONSHIPS_FILE), encoding="utf-8") as fh:
            relationships = [GraphRelationship.from_dict(d) for d in json.load(fh)]
    except (OSError, ValueError, KeyError, TypeError) as exc:
        raise GraphStoreError(f"Cannot read JSON snapshot from {output_dir}: {exc}") from exc
    return nodes, relationships
