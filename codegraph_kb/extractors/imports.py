"""
Import extractor.

Records every module import as an IMPORT node owned by its FILE and, when
the module resolves to a file or a first-party package of the workspace,
adds an IMPORTS edge from the importing FILE to the FILE or PACKAGE.
"""

from __future__ import annotations

import logging
import posixpath
from dataclasses import dataclass, field
from typing import Optional

from ..graph.model import ExtractionResult, NodeIdGenerator, NodeType, RelationType
from .base import BaseExtractor
from .parser import EXTENSION_TO_LANGUAGE, ParsedFile, ParsedImport, parse_file
from .walker import walk_files

logger = logging.getLogger(__name__)

_JS_RESOLVE_SUFFIXES = (
    "", ".ts", ".tsx", ".js", ".jsx", ".mjs",
    "/index.ts", "/index.tsx", "/index.js",
)


@dataclass
class ImportRawData:
    files: list[ParsedFile] = field(default_factory=list)
    files_scanned: int = 0


def build_python_module_map(source_files: list[str]) -> dict[str, str]:
    """
    Map Python dotted module names to workspace-relative file paths.

    ``pkg/sub/mod.py`` is reachable as ``pkg.sub.mod``; a leading ``src/``
    directory is also stripped so src-layout packages resolve.
    """
    module_map: dict[str, str] = {}
    for rel_path in source_files:
        if not rel_path.endswith(".py"):
            continue
        module = rel_path[:-3].replace("/", ".")
        if module.endswith(".__init__"):
            module = module[:-len(".__init__")]
        module_map.setdefault(module, rel_path)
        parts = module.split(".")
        if "src" in parts:
            stripped = ".".join(parts[parts.index("src") + 1:])
            if stripped:
                module_map.setdefault(stripped, rel_path)
    return module_map


def package_name_of(module: str) -> str:
    """Top-level package name of an import specifier (``@scope/name/x`` -> ``@scope/name``)."""
    if module.startswith("@"):
        return "/".join(module.split("/")[:2])
    return module.split("/")[0].split(".")[0]


class ImportExtractor(BaseExtractor):
    """Extracts IMPORT nodes and FILE -> FILE/PACKAGE IMPORTS edges."""

    name = "import"

    def extract_raw_data(self) -> ImportRawData:
        raw = ImportRawData()
        for rel_path in walk_files(self.working_dir, EXTENSION_TO_LANGUAGE):
            raw.files_scanned += 1
            parsed = parse_file(self.abs_path(rel_path), display_path=rel_path)
            if parsed.parse_error:
                self.record_error(rel_path, ValueError(parsed.parse_error))
                continue
            raw.files.append(parsed)
        return raw

    def validate(self, raw: ImportRawData) -> bool:
        return any(parsed.imports for parsed in raw.files)

    def get_source_count(self, raw: ImportRawData) -> int:
        return raw.files_scanned

    def transform_to_graph(self, raw: ImportRawData) -> ExtractionResult:
        result = ExtractionResult()
        known_files = {parsed.path for parsed in raw.files}
        module_map = build_python_module_map(sorted(known_files))

        for parsed in raw.files:
            if not parsed.imports:
                continue
            package = self.package_of(parsed.path)
            fid = NodeIdGenerator.file(package or None, parsed.path)
            result.nodes.append(self.make_node(
                NodeType.FILE, fid, parsed.path.rsplit("/", 1)[-1],
                properties={
                    "file_path": parsed.path,
                    "language": parsed.language,
                    "package": package,
                },
                source_file=parsed.path,
            ))
            for imp in parsed.imports:
                self._add_import(parsed, imp, fid, package, known_files, module_map, result)
        return result

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _add_import(
        self,
        parsed: ParsedFile,
        imp: ParsedImport,
        fid: str,
        package: str,
        known_files: set[str],
        module_map: dict[str, str],
        result: ExtractionResult,
    ) -> None:
        is_relative = imp.module.startswith(".")
        target_file = self._resolve_file(parsed, imp.module, known_files, module_map)
        target_package = "" if target_file or is_relative else self._resolve_package(imp.module)
        is_internal = bool(target_file or target_package)

        iid = NodeIdGenerator.import_(parsed.path, imp.module)
        result.nodes.append(self.make_node(
            NodeType.IMPORT, iid, imp.module,
            properties={
                "module": imp.module,
                "file_path": parsed.path,
                "line": imp.line,
                "imported_names": list(imp.names),
                "is_relative": is_relative,
                "is_internal": is_internal,
                "is_external": not is_internal and not is_relative,
                "is_dynamic": imp.is_dynamic,
                "resolved_path": target_file or "",
                "package": package,
            },
            source_file=parsed.path,
        ))
        result.relationships.append(self.make_relationship(RelationType.CONTAINS, fid, iid))

        if target_file:
            target_id = NodeIdGenerator.file(self.package_of(target_file) or None, target_file)
        elif target_package:
            target_id = NodeIdGenerator.package(target_package)
        else:
            return
        result.relationships.append(self.make_relationship(
            RelationType.IMPORTS, fid, target_id,
            properties={"module": imp.module, "imported_names": list(imp.names)},
        ))

    def _resolve_file(
        self,
        parsed: ParsedFile,
        module: str,
        known_files: set[str],
        module_map: dict[str, str],
    ) -> Optional[str]:
        if parsed.language == "python":
            if module.startswith("."):
                level = len(module) - len(module.lstrip("."))
                base = posixpath.dirname(parsed.path)
                for _ in range(level - 1):
                    base = posixpath.dirname(base)
                rest = module[level:].replace(".", "/")
                stem = posixpath.join(base, rest) if rest else base
                for candidate in (f"{stem}.py", f"{stem}/__init__.py"):
                    if candidate in known_files:
                        return candidate
                return None
            return module_map.get(module)

        if module.startswith("."):
            stem = posixpath.normpath(posixpath.join(posixpath.dirname(parsed.path), module))
            for suffix in _JS_RESOLVE_SUFFIXES:
                if stem + suffix in known_files:
                    return stem + suffix
        return None

    def _resolve_package(self, module: str) -> str:
        name = package_name_of(module)
        for manifest in self.packages():
            if manifest.name in (name, name.replace("_", "-")):
                return manifest.name
        if self.is_internal(name):
            return name
        return ""
