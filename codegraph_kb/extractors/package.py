"""
Package / dependency extractor.

Builds one PACKAGE node per workspace manifest, CONTAINS edges to the
package's key files and DEPENDS_ON edges restricted to first-party
dependencies. Also computes a topological build order.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Callable

from ..graph.model import ExtractionResult, NodeIdGenerator, NodeType, RelationType
from .base import BaseExtractor
from .manifests import PackageManifest

logger = logging.getLogger(__name__)

# (relative file name, file_type, is_entry_point)
_KEY_FILES: list[tuple[str, str, bool]] = [
    ("README.md", "readme", False),
    ("CHANGELOG.md", "changelog", False),
    ("DESIGN.md", "design", False),
    ("src/index.ts", "entry", True),
    ("src/index.js", "entry", True),
    ("index.ts", "entry", True),
    ("index.js", "entry", True),
]


@dataclass
class PackageRawData:
    packages: list[PackageManifest] = field(default_factory=list)
    build_order: list[str] = field(default_factory=list)
    cycles: list[list[str]] = field(default_factory=list)


def compute_build_order(
    packages: list[PackageManifest],
    warn: Callable[[str], None] = logger.warning,
) -> tuple[list[str], list[list[str]]]:
    """
    Depth-first topological sort over dependencies between *packages*.

    Dependencies come before dependents. A cycle is reported through *warn*
    and recorded; every package still appears in the order exactly once.

    Returns
    -------
    tuple[list[str], list[list[str]]]
        ``(build_order, cycles)``.
    """
    names = {p.name for p in packages}
    deps_by_name = {
        p.name: sorted(d for d in p.all_dependencies() if d in names and d != p.name)
        for p in packages
    }
    order: list[str] = []
    cycles: list[list[str]] = []
    visited: set[str] = set()
    visiting: set[str] = set()

    def _visit(name: str, stack: list[str]) -> None:
        if name in visited:
            return
        if name in visiting:
            cycle = stack[stack.index(name):] + [name]
            cycles.append(cycle)
            warn(f"Circular package dependency: {' -> '.join(cycle)}")
            return
        visiting.add(name)
        stack.append(name)
        for dep in deps_by_name.get(name, []):
            _visit(dep, stack)
        stack.pop()
        visiting.discard(name)
        visited.add(name)
        order.append(name)

    for name in sorted(deps_by_name):
        _visit(name, [])
    return order, cycles


class PackageExtractor(BaseExtractor):
    """Extracts PACKAGE nodes, key FILE nodes, CONTAINS and DEPENDS_ON edges."""

    name = "package"

    def extract_raw_data(self) -> PackageRawData:
        packages = self.packages()
        order, cycles = compute_build_order(packages, warn=self.logger.warning)
        return PackageRawData(packages=packages, build_order=order, cycles=cycles)

    def validate(self, raw: PackageRawData) -> bool:
        if not raw.packages:
            return False
        seen: set[str] = set()
        for pkg in raw.packages:
            if pkg.name in seen:
                self.logger.warning("[%s] Duplicate package name %s", self.name, pkg.name)
            seen.add(pkg.name)
        return True

    def get_source_count(self, raw: PackageRawData) -> int:
        return len(raw.packages)

    def transform_to_graph(self, raw: PackageRawData) -> ExtractionResult:
        result = ExtractionResult()
        position = {name: idx for idx, name in enumerate(raw.build_order)}
        in_cycle = {name for cycle in raw.cycles for name in cycle}

        for pkg in raw.packages:
            pid = NodeIdGenerator.package(pkg.name)
            result.nodes.append(self.make_node(
                NodeType.PACKAGE, pid, pkg.name,
                properties={
                    "version": pkg.version,
                    "description": pkg.description,
                    "path": pkg.path,
                    "main": pkg.main,
                    "types": pkg.types,
                    "keywords": list(pkg.keywords),
                    "manifest_kind": pkg.kind,
                    "dependencies": sorted(pkg.dependencies),
                    "dev_dependencies": sorted(pkg.dev_dependencies),
                    "is_internal": self.is_internal(pkg.name),
                    "build_order": position.get(pkg.name, -1),
                    "in_dependency_cycle": pkg.name in in_cycle,
                },
                source_file=pkg.manifest_file,
            ))
            self._add_key_files(pkg, pid, result)
            self._add_dependencies(pkg, pid, result)

        return result

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _key_file_candidates(self, pkg: PackageManifest) -> list[tuple[str, str, bool]]:
        candidates = list(_KEY_FILES)
        candidates.append((os.path.basename(pkg.manifest_file), "manifest", False))
        if pkg.main:
            candidates.append((pkg.main.lstrip("./"), "entry", True))
        if pkg.kind == "python":
            module = pkg.name.replace("-", "_")
            candidates.append((f"src/{module}/__init__.py", "entry", True))
            candidates.append((f"{module}/__init__.py", "entry", True))
        return candidates

    def _add_key_files(self, pkg: PackageManifest, pid: str, result: ExtractionResult) -> None:
        seen: set[str] = set()
        for rel_name, file_type, is_entry in self._key_file_candidates(pkg):
            rel_path = f"{pkg.path}/{rel_name}" if pkg.path else rel_name
            if rel_path in seen:
                continue
            abs_path = self.abs_path(rel_path)
            if not os.path.isfile(abs_path):
                continue
            seen.add(rel_path)
            fid = NodeIdGenerator.file(pkg.name, rel_path)
            try:
                size = os.path.getsize(abs_path)
            except OSError as exc:
                self.record_error(rel_path, exc)
                continue
            result.nodes.append(self.make_node(
                NodeType.FILE, fid, os.path.basename(rel_path),
                properties={
                    "file_type": file_type,
                    "file_path": rel_path,
                    "size": size,
                    "is_key_file": True,
                    "package": pkg.name,
                },
                source_file=rel_path,
            ))
            result.relationships.append(self.make_relationship(
                RelationType.CONTAINS, pid, fid,
                properties={"file_type": file_type, "is_entry_point": is_entry},
            ))

    def _add_dependencies(self, pkg: PackageManifest, pid: str, result: ExtractionResult) -> None:
        for kind, deps in (("runtime", pkg.dependencies),
                           ("dev", pkg.dev_dependencies),
                           ("peer", pkg.peer_dependencies)):
            for dep_name, spec in sorted(deps.items()):
                if dep_name == pkg.name or not self.is_internal(dep_name):
                    continue
                result.relationships.append(self.make_relationship(
                    RelationType.DEPENDS_ON, pid, NodeIdGenerator.package(dep_name),
                    properties={
                        "dependency_type": kind,
                        "version_spec": str(spec),
                        "is_internal": True,
                    },
                ))
