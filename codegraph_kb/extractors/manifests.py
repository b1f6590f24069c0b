"""
Workspace package manifest discovery (package.json and pyproject.toml).
"""

from __future__ import annotations

import json
import logging
import os
import re
import tomllib
from dataclasses import dataclass, field
from typing import Iterable, Optional

logger = logging.getLogger(__name__)

_REQ_NAME_RE = re.compile(r"^\s*([A-Za-z0-9][A-Za-z0-9._-]*)")


@dataclass
class PackageManifest:
    """One workspace package as declared by its manifest."""
    name: str
    path: str                   # directory relative to the working dir ("" for root)
    manifest_file: str          # manifest path relative to the working dir
    kind: str                   # "npm" | "python"
    version: str = "1.0.0"
    description: str = ""
    main: str = ""
    types: str = ""
    keywords: list[str] = field(default_factory=list)
    dependencies: dict[str, str] = field(default_factory=dict)
    dev_dependencies: dict[str, str] = field(default_factory=dict)
    peer_dependencies: dict[str, str] = field(default_factory=dict)

    def all_dependencies(self) -> dict[str, str]:
        merged: dict[str, str] = {}
        for deps in (self.dependencies, self.dev_dependencies, self.peer_dependencies):
            merged.update(deps)
        return merged


def _join(rel_dir: str, name: str) -> str:
    return f"{rel_dir}/{name}" if rel_dir else name


def _read_package_json(abs_path: str, rel_dir: str) -> Optional[PackageManifest]:
    with open(abs_path, "r", encoding="utf-8") as fh:
        data = json.load(fh)
    if not isinstance(data, dict) or not data.get("name"):
        return None
    keywords = data.get("keywords") or []
    return PackageManifest(
        name=str(data["name"]),
        path=rel_dir,
        manifest_file=_join(rel_dir, "package.json"),
        kind="npm",
        version=str(data.get("version") or "1.0.0"),
        description=str(data.get("description") or ""),
        main=str(data.get("main") or ""),
        types=str(data.get("types") or data.get("typings") or ""),
        keywords=[str(k) for k in keywords] if isinstance(keywords, list) else [],
        dependencies=dict(data.get("dependencies") or {}),
        dev_dependencies=dict(data.get("devDependencies") or {}),
        peer_dependencies=dict(data.get("peerDependencies") or {}),
    )


def _requirements_to_dict(reqs: Iterable[str]) -> dict[str, str]:
    out: dict[str, str] = {}
    for req in reqs:
        m = _REQ_NAME_RE.match(str(req))
        if m:
            out[m.group(1)] = str(req)[m.end():].strip() or "*"
    return out


def _read_pyproject(abs_path: str, rel_dir: str) -> Optional[PackageManifest]:
    with open(abs_path, "rb") as fh:
        data = tomllib.load(fh)
    project = data.get("project")
    if not isinstance(project, dict) or not project.get("name"):
        return None
    optional = project.get("optional-dependencies") or {}
    dev_reqs: list[str] = []
    if isinstance(optional, dict):
        for reqs in optional.values():
            dev_reqs.extend(reqs or [])
    return PackageManifest(
        name=str(project["name"]),
        path=rel_dir,
        manifest_file=_join(rel_dir, "pyproject.toml"),
        kind="python",
        version=str(project.get("version") or "1.0.0"),
        description=str(project.get("description") or ""),
        keywords=[str(k) for k in project.get("keywords") or []],
        dependencies=_requirements_to_dict(project.get("dependencies") or []),
        dev_dependencies=_requirements_to_dict(dev_reqs),
    )


def read_manifest(working_dir: str, rel_dir: str) -> Optional[PackageManifest]:
    """
    Read the manifest in *rel_dir*, preferring package.json over pyproject.toml.

    Returns None when the directory has no usable manifest. A malformed
    manifest is logged and skipped.
    """
    abs_dir = os.path.join(working_dir, rel_dir) if rel_dir else working_dir
    for filename, reader in (("package.json", _read_package_json),
                             ("pyproject.toml", _read_pyproject)):
        path = os.path.join(abs_dir, filename)
        if not os.path.isfile(path):
            continue
        try:
            return reader(path, rel_dir)
        except (OSError, ValueError, tomllib.TOMLDecodeError) as exc:
            logger.warning("Skipping unreadable manifest %s: %s", path, exc)
            return None
    return None


def discover_packages(working_dir: str, package_dirs: Iterable[str]) -> list[PackageManifest]:
    """
    Return the root manifest (if any) followed by every package found one
    level below each of *package_dirs*. Missing directories are skipped.
    """
    manifests: list[PackageManifest] = []
    root = read_manifest(working_dir, "")
    if root is not None:
        manifests.append(root)
    for pkg_dir in package_dirs:
        abs_pkg_dir = os.path.join(working_dir, pkg_dir)
        if not os.path.isdir(abs_pkg_dir):
            continue
        for entry in sorted(os.listdir(abs_pkg_dir)):
            if entry.startswith(".") or not os.path.isdir(os.path.join(abs_pkg_dir, entry)):
                continue
            manifest = read_manifest(working_dir, f"{pkg_dir}/{entry}")
            if manifest is not None:
                manifests.append(manifest)
    return manifests


def owning_package(rel_path: str, manifests: Iterable[PackageManifest]) -> str:
    """Return the name of the package whose directory most tightly contains *rel_path*."""
    best_name = ""
    best_len = -1
    rel_path = rel_path.replace("\\", "/")
    for m in manifests:
        prefix = f"{m.path}/" if m.path else ""
        if rel_path.startswith(prefix) and len(prefix) > best_len:
            best_name, best_len = m.name, len(prefix)
    return best_name
