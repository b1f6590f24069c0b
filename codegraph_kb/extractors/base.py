"""
Common extraction contract.

Every extractor follows the same template: ``extract_raw_data`` walks the
source tree into a typed intermediate representation, ``validate`` gates
the transformation, ``transform_to_graph`` maps raw facts to nodes and
relationships using the deterministic ID generators, and
``get_source_count`` reports how many sources were examined.
"""

from __future__ import annotations

import logging
import os
import time
from abc import ABC, abstractmethod
from typing import Any, Optional

from ..config import Config
from ..errors import ExtractionError
from ..graph.model import (
    ExtractionResult, GraphNode, GraphRelationship, NodeType, RelationType,
    utc_timestamp,
)
from .manifests import PackageManifest, discover_packages, owning_package


class BaseExtractor(ABC):
    """
    Base class for all extractors.

    Parameters
    ----------
    working_dir:
        Root of the source tree to mine. Defaults to the current directory.
    config:
        Shared :class:`~codegraph_kb.config.Config`.
    logger:
        Logger to report through. Defaults to the concrete module's logger.
    """

    name = "base"

    def __init__(
        self,
        working_dir: Optional[str] = None,
        config: Optional[Config] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.working_dir = os.path.abspath(working_dir or os.getcwd())
        self.config = config or Config()
        self.logger = logger or logging.getLogger(type(self).__module__)
        self.errors = 0
        self._run_stamp = utc_timestamp()
        self._packages: Optional[list[PackageManifest]] = None

    # ------------------------------------------------------------------
    # Template steps
    # ------------------------------------------------------------------

    @abstractmethod
    def extract_raw_data(self) -> Any:
        """Walk the source tree and return the raw intermediate representation."""

    @abstractmethod
    def validate(self, raw: Any) -> bool:
        """Return True if *raw* is worth transforming."""

    @abstractmethod
    def transform_to_graph(self, raw: Any) -> ExtractionResult:
        """Map *raw* to nodes and relationships."""

    @abstractmethod
    def get_source_count(self, raw: Any) -> int:
        """Return the number of sources examined (files, manifests, ...)."""

    def extract(self) -> ExtractionResult:
        """
        Run the full template: raw data, validation, transformation.

        Returns
        -------
        ExtractionResult
            Empty (but successful) when validation rejects the raw data.

        Raises
        ------
        ExtractionError
            If the working directory does not exist or cannot be listed.
        """
        start = time.perf_counter()
        self.errors = 0
        self._run_stamp = utc_timestamp()
        self.logger.info("[%s] Extracting from %s", self.name, self.working_dir)
        if not os.path.isdir(self.working_dir):
            raise ExtractionError(f"Working directory not found: {self.working_dir}")
        if not os.access(self.working_dir, os.R_OK | os.X_OK):
            raise ExtractionError(f"Working directory is not readable: {self.working_dir}")

        raw = self.extract_raw_data()
        source_count = self.get_source_count(raw)
        if not self.validate(raw):
            self.logger.warning("[%s] Validation failed; no graph data produced", self.name)
            result = ExtractionResult(source_count=source_count)
        else:
            result = self.transform_to_graph(raw)
            result.source_count = source_count

        result.extractor_name = self.name
        result.errors = self.errors
        result.elapsed_seconds = time.perf_counter() - start
        self.logger.info(
            "[%s] %d nodes, %d relationships from %d sources (%d errors) in %.2fs",
            self.name, result.node_count, result.relationship_count,
            result.source_count, result.errors, result.elapsed_seconds,
        )
        return result

    # ------------------------------------------------------------------
    # Helpers for subclasses
    # ------------------------------------------------------------------

    def abs_path(self, rel_path: str) -> str:
        return os.path.join(self.working_dir, rel_path)

    def packages(self) -> list[PackageManifest]:
        """Workspace package manifests (cached per extractor)."""
        if self._packages is None:
            self._packages = discover_packages(self.working_dir, self.config.PACKAGE_DIRS)
        return self._packages

    def package_of(self, rel_path: str) -> str:
        """Name of the workspace package owning *rel_path*, or ""."""
        return owning_package(rel_path, self.packages())

    def is_internal(self, name: str) -> bool:
        """True if *name* is a first-party package (namespace prefix or a scanned package)."""
        if not name:
            return False
        ns = self.config.INTERNAL_NAMESPACE
        if ns and name.startswith(ns):
            return True
        return any(m.name == name for m in self.packages())

    def record_error(self, what: str, exc: BaseException) -> None:
        """Log and count a per-entity error; extraction continues."""
        self.errors += 1
        self.logger.warning("[%s] Skipping %s: %s", self.name, what, exc)

    def make_node(
        self,
        node_type: NodeType,
        node_id: str,
        name: str,
        properties: Optional[dict[str, Any]] = None,
        source_file: str = "",
        confidence: float = 1.0,
    ) -> GraphNode:
        return GraphNode(
            id=node_id,
            type=node_type,
            name=name,
            properties=dict(properties or {}),
            metadata={
                "source_file": source_file,
                "extracted_at": self._run_stamp,
                "confidence": confidence,
                "extractor": self.name,
            },
        )

    def make_relationship(
        self,
        rel_type: RelationType,
        source: str,
        target: str,
        properties: Optional[dict[str, Any]] = None,
        confidence: float = 1.0,
    ) -> GraphRelationship:
        return GraphRelationship.create(
            rel_type, source, target,
            properties=properties, confidence=confidence, origin=self.name,
        )
