"""
Source-tree walking shared by the extractors.

Skips vendored, generated and hidden directories and honours the
project's .gitignore patterns.
"""

from __future__ import annotations

import fnmatch
import logging
import os
from typing import Iterable, Optional

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Directory / file exclusion rules
# ---------------------------------------------------------------------------

SKIP_DIRS: frozenset[str] = frozenset({
    "node_modules", "dist", "build", "__pycache__",
    ".git", "vendor", ".codegraph", "graph-data",
    ".venv", "venv", "env", ".env",
    ".tox", ".mypy_cache", ".pytest_cache",
    "target",           # Rust/Java build output
    "bin", "obj",       # C# build output
    "coverage",
    ".next", ".nuxt", ".turbo",
    "out", ".output",
    "eggs", ".eggs",
    ".cache",
})


def load_gitignore_patterns(project_root: str) -> list[str]:
    """Read .gitignore from *project_root* and return glob patterns."""
    gi_path = os.path.join(project_root, ".gitignore")
    patterns: list[str] = []
    if not os.path.exists(gi_path):
        return patterns
    with open(gi_path, encoding="utf-8", errors="replace") as fh:
        for line in fh:
            line = line.strip()
            if line and not line.startswith("#") and not line.startswith("!"):
                patterns.append(line.rstrip("/"))
    return patterns


def is_ignored(path: str, gitignore_patterns: list[str]) -> bool:
    """Return True if *path* matches any gitignore pattern."""
    name = os.path.basename(path)
    for pattern in gitignore_patterns:
        if fnmatch.fnmatch(name, pattern):
            return True
        if fnmatch.fnmatch(path, pattern):
            return True
    return False


def walk_files(
    root: str,
    extensions: Iterable[str],
    max_depth: Optional[int] = None,
    base: Optional[str] = None,
) -> list[str]:
    """
    Walk *root* and return paths of files whose extension is in *extensions*.

    Parameters
    ----------
    root:
        Directory to walk. A missing directory yields an empty list.
    extensions:
        Lower-case extensions including the dot, e.g. ``{".ts", ".py"}``.
    max_depth:
        Maximum directory depth below *root* to descend into, or None.
    base:
        Directory the returned paths are relative to (defaults to *root*).

    Returns
    -------
    list[str]
        Sorted relative paths using forward slashes.
    """
    if not os.path.isdir(root):
        logger.debug("Directory not found, skipping: %s", root)
        return []
    base = base or root
    exts = {e.lower() for e in extensions}
    gi_patterns = load_gitignore_patterns(base)
    root_depth = os.path.abspath(root).rstrip(os.sep).count(os.sep)
    results: list[str] = []

    for dirpath, dirnames, filenames in os.walk(root, topdown=True):
        depth = os.path.abspath(dirpath).rstrip(os.sep).count(os.sep) - root_depth
        if max_depth is not None and depth >= max_depth:
            dirnames[:] = []
        else:
            # Prune excluded directories in-place (modifies the walk)
            dirnames[:] = [
                d for d in dirnames
                if d not in SKIP_DIRS
                and not d.startswith(".")
                and not is_ignored(os.path.join(dirpath, d), gi_patterns)
            ]

        for fname in filenames:
            if os.path.splitext(fname)[1].lower() not in exts:
                continue
            rel_path = os.path.relpath(os.path.join(dirpath, fname), base)
            rel_path = rel_path.replace(os.sep, "/")
            if is_ignored(rel_path, gi_patterns):
                continue
            results.append(rel_path)

    return sorted(results)


def read_text(path: str) -> str:
    """Read *path* as UTF-8, replacing undecodable bytes."""
    with open(path, "r", encoding="utf-8", errors="replace") as fh:
        return fh.read()
