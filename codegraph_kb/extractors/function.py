"""
Function / class extractor.

Parses supported source files with tree-sitter and produces FUNCTION,
CLASS and INTERFACE nodes with CONTAINS, EXTENDS, IMPLEMENTS and CALLS
edges. Call edges are inferred by matching call-site names against the
functions defined in the same file first, then across the workspace.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from ..graph.model import ExtractionResult, NodeIdGenerator, NodeType, RelationType
from .base import BaseExtractor
from .parser import EXTENSION_TO_LANGUAGE, ParsedClass, ParsedFile, parse_file
from .walker import walk_files

logger = logging.getLogger(__name__)

LOCAL_CALL_CONFIDENCE = 1.0
GLOBAL_CALL_CONFIDENCE = 0.8


@dataclass
class FunctionRawData:
    files: list[ParsedFile] = field(default_factory=list)
    files_scanned: int = 0


class FunctionExtractor(BaseExtractor):
    """Extracts functions, classes and interfaces with their structural edges."""

    name = "function"

    def extract_raw_data(self) -> FunctionRawData:
        raw = FunctionRawData()
        for rel_path in walk_files(self.working_dir, EXTENSION_TO_LANGUAGE):
            raw.files_scanned += 1
            parsed = parse_file(self.abs_path(rel_path), display_path=rel_path)
            if parsed.parse_error:
                self.record_error(rel_path, ValueError(parsed.parse_error))
                continue
            raw.files.append(parsed)
        return raw

    def validate(self, raw: FunctionRawData) -> bool:
        return bool(raw.files)

    def get_source_count(self, raw: FunctionRawData) -> int:
        return raw.files_scanned

    def transform_to_graph(self, raw: FunctionRawData) -> ExtractionResult:
        result = ExtractionResult()
        # name -> [(file_path, node_id)] for cross-file resolution
        types_by_name: dict[str, list[tuple[str, str, str]]] = {}
        funcs_by_name: dict[str, list[tuple[str, str]]] = {}

        for parsed in raw.files:
            package = self.package_of(parsed.path)
            fid = NodeIdGenerator.file(package or None, parsed.path)
            result.nodes.append(self.make_node(
                NodeType.FILE, fid, parsed.path.rsplit("/", 1)[-1],
                properties={
                    "file_path": parsed.path,
                    "language": parsed.language,
                    "hash": parsed.hash,
                    "package": package,
                },
                source_file=parsed.path,
            ))

            class_ids: dict[str, str] = {}
            for cls in parsed.classes:
                cid = self._class_id(cls)
                class_ids.setdefault(cls.name, cid)
                types_by_name.setdefault(cls.name, []).append((parsed.path, cid, cls.kind))
                result.nodes.append(self.make_node(
                    NodeType.INTERFACE if cls.kind == "interface" else NodeType.CLASS,
                    cid, cls.name,
                    properties={
                        "file_path": parsed.path,
                        "line_start": cls.line_start,
                        "line_end": cls.line_end,
                        "description": cls.docstring,
                        "extends": list(cls.extends),
                        "implements": list(cls.implements),
                        "is_exported": cls.is_exported,
                        "language": parsed.language,
                        "package": package,
                    },
                    source_file=parsed.path,
                ))
                result.relationships.append(
                    self.make_relationship(RelationType.CONTAINS, fid, cid)
                )

            for fn in parsed.functions:
                fnid = NodeIdGenerator.function(parsed.path, fn.name, fn.parent_class)
                funcs_by_name.setdefault(fn.name, []).append((parsed.path, fnid))
                result.nodes.append(self.make_node(
                    NodeType.FUNCTION, fnid, fn.name,
                    properties={
                        "file_path": parsed.path,
                        "line_start": fn.line_start,
                        "line_end": fn.line_end,
                        "signature": fn.signature,
                        "params": list(fn.params),
                        "return_type": fn.return_type,
                        "description": fn.docstring,
                        "parent_class": fn.parent_class or "",
                        "is_async": fn.is_async,
                        "is_exported": fn.is_exported,
                        "language": parsed.language,
                        "package": package,
                    },
                    source_file=parsed.path,
                ))
                owner = class_ids.get(fn.parent_class or "", fid)
                result.relationships.append(
                    self.make_relationship(RelationType.CONTAINS, owner, fnid)
                )

        for parsed in raw.files:
            self._add_inheritance(parsed, types_by_name, result)
            self._add_calls(parsed, funcs_by_name, result)
        return result

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _class_id(cls: ParsedClass) -> str:
        if cls.kind == "interface":
            return NodeIdGenerator.interface(cls.file_path, cls.name)
        return NodeIdGenerator.klass(cls.file_path, cls.name)

    @staticmethod
    def _pick(candidates: list, file_path: str) -> Optional[tuple]:
        """Prefer a candidate defined in *file_path*, else the first one."""
        for cand in candidates:
            if cand[0] == file_path:
                return cand
        return candidates[0] if candidates else None

    def _add_inheritance(
        self,
        parsed: ParsedFile,
        types_by_name: dict[str, list[tuple[str, str, str]]],
        result: ExtractionResult,
    ) -> None:
        for cls in parsed.classes:
            cid = self._class_id(cls)
            for base in cls.extends:
                target = self._pick(types_by_name.get(base, []), parsed.path)
                if target and target[1] != cid:
                    result.relationships.append(
                        self.make_relationship(RelationType.EXTENDS, cid, target[1])
                    )
            for iface in cls.implements:
                target = self._pick(types_by_name.get(iface, []), parsed.path)
                if target:
                    result.relationships.append(
                        self.make_relationship(RelationType.IMPLEMENTS, cid, target[1])
                    )

    def _add_calls(
        self,
        parsed: ParsedFile,
        funcs_by_name: dict[str, list[tuple[str, str]]],
        result: ExtractionResult,
    ) -> None:
        local = {fn.name: NodeIdGenerator.function(parsed.path, fn.name, fn.parent_class)
                 for fn in reversed(parsed.functions)}
        for call in parsed.calls:
            caller_id = local.get(call.caller_function)
            if caller_id is None:
                continue
            callee = self._pick(funcs_by_name.get(call.callee_name, []), parsed.path)
            if callee is None:
                continue
            is_local = callee[0] == parsed.path
            result.relationships.append(self.make_relationship(
                RelationType.CALLS, caller_id, callee[1],
                properties={
                    "line": call.line,
                    "resolution": "local" if is_local else "global",
                },
                confidence=LOCAL_CALL_CONFIDENCE if is_local else GLOBAL_CALL_CONFIDENCE,
            ))
