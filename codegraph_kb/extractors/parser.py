"""
Tree-sitter source parser used by the function, import and schema extractors.

Supports: Python, JavaScript, TypeScript (incl. TSX), Java, Go, Rust.

Uses tree-sitter >= 0.22 API with individual language packages.
"""

from __future__ import annotations

import hashlib
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Optional

import tree_sitter as ts

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Language mapping
# ---------------------------------------------------------------------------

EXTENSION_TO_LANGUAGE: dict[str, str] = {
    ".py": "python",
    ".js": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".jsx": "javascript",
    ".ts": "typescript",
    ".mts": "typescript",
    ".cts": "typescript",
    ".tsx": "tsx",
    ".java": "java",
    ".go": "go",
    ".rs": "rust",
}

SUPPORTED_LANGUAGES: set[str] = set(EXTENSION_TO_LANGUAGE.values())


def detect_language(file_path: str) -> Optional[str]:
    """Return the tree-sitter language name for *file_path*, or None if unsupported."""
    ext = os.path.splitext(file_path)[1].lower()
    if file_path.endswith(".d.ts"):
        return "typescript"
    return EXTENSION_TO_LANGUAGE.get(ext)


# ---------------------------------------------------------------------------
# Data classes returned by the parser
# ---------------------------------------------------------------------------

@dataclass
class ParsedFunction:
    """A function or method declaration."""
    name: str
    file_path: str
    line_start: int
    line_end: int
    signature: str = ""
    params: list[str] = field(default_factory=list)
    return_type: str = ""
    docstring: str = ""
    parent_class: Optional[str] = None   # set if this is a method
    is_async: bool = False
    is_exported: bool = False


@dataclass
class ParsedClass:
    """A class or interface declaration."""
    name: str
    file_path: str
    line_start: int
    line_end: int
    kind: str = "class"                  # "class" | "interface"
    docstring: str = ""
    extends: list[str] = field(default_factory=list)
    implements: list[str] = field(default_factory=list)
    is_exported: bool = False


@dataclass
class ParsedImport:
    """A module import statement."""
    source_file: str
    module: str
    line: int = 0
    names: list[str] = field(default_factory=list)
    is_dynamic: bool = False


@dataclass
class ParsedCall:
    """A call site found in a function body."""
    caller_function: str
    callee_name: str
    file_path: str
    line: int


@dataclass
class ParsedFile:
    """All structural information extracted from a single source file."""
    path: str
    language: str
    hash: str
    functions: list[ParsedFunction] = field(default_factory=list)
    classes: list[ParsedClass] = field(default_factory=list)
    imports: list[ParsedImport] = field(default_factory=list)
    calls: list[ParsedCall] = field(default_factory=list)
    parse_error: Optional[str] = None


# ---------------------------------------------------------------------------
# Language / parser loading
# ---------------------------------------------------------------------------

def _language_pointer(language: str):
    """Return the raw grammar pointer for *language*, or None if the grammar is not installed."""
    try:
        if language == "python":
            import tree_sitter_python as m  # type: ignore
            return m.language()
        if language == "javascript":
            import tree_sitter_javascript as m  # type: ignore
            return m.language()
        if language == "typescript":
            import tree_sitter_typescript as m  # type: ignore
            return m.language_typescript()
        if language == "tsx":
            import tree_sitter_typescript as m  # type: ignore
            return m.language_tsx()
        if language == "java":
            import tree_sitter_java as m  # type: ignore
            return m.language()
        if language == "go":
            import tree_sitter_go as m  # type: ignore
            return m.language()
        if language == "rust":
            import tree_sitter_rust as m  # type: ignore
            return m.language()
    except ImportError as exc:
        logger.debug("Grammar for %s not installed: %s", language, exc)
    return None


_LANG_CACHE: dict[str, ts.Language] = {}
_QUERY_CACHE: dict[tuple[str, str], Optional[ts.Query]] = {}


def get_language(language: str) -> Optional[ts.Language]:
    """Return the cached tree_sitter.Language for *language*, or None."""
    if language not in _LANG_CACHE:
        pointer = _language_pointer(language)
        if pointer is None:
            return None
        _LANG_CACHE[language] = ts.Language(pointer)
    return _LANG_CACHE[language]


def _compile(language: str, pattern: str) -> Optional[ts.Query]:
    key = (language, pattern)
    if key not in _QUERY_CACHE:
        lang = get_language(language)
        try:
            _QUERY_CACHE[key] = ts.Query(lang, pattern) if lang is not None else None
        except Exception as exc:  # grammar versions differ in node names
            logger.debug("Query does not compile for %s: %s", language, exc)
            _QUERY_CACHE[key] = None
    return _QUERY_CACHE[key]


def _matches(language: str, query_src: str, root) -> list[dict]:
    """
    Run each blank-line separated sub-pattern of *query_src* on *root*.

    Returns a flat list of capture dicts: ``[{capture_name: [Node]}]``.
    Patterns that do not compile for the installed grammar are skipped.
    """
    results: list[dict] = []
    for pattern in (p.strip() for p in query_src.strip().split("\n\n")):
        if not pattern:
            continue
        query = _compile(language, pattern)
        if query is None:
            continue
        for _idx, caps in ts.QueryCursor(query).matches(root):
            results.append(caps)
    return results


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

_TS_FUNCTIONS = """\
(function_declaration
  name: (identifier) @func.name
  parameters: (formal_parameters) @func.params) @func.def

(method_definition
  name: (property_identifier) @func.name
  parameters: (formal_parameters) @func.params) @func.def

(variable_declarator
  name: (identifier) @func.name
  value: (arrow_function
    parameters: (formal_parameters) @func.params)) @func.def
"""

_TS_CALLS = """\
(call_expression function: (identifier) @call.name)

(call_expression function: (member_expression
  property: (property_identifier) @call.name))
"""

_TS_IMPORTS = """\
(import_statement source: (string) @import.mod) @import.stmt

(export_statement source: (string) @import.mod) @import.stmt
"""

_QUERIES: dict[str, dict[str, str]] = {
    "python": {
        "functions": """\
(function_definition
  name: (identifier) @func.name
  parameters: (parameters) @func.params) @func.def
""",
        "classes": """\
(class_definition name: (identifier) @class.name) @class.def
""",
        "imports": """\
(import_statement (dotted_name) @import.mod) @import.stmt

(import_from_statement module_name: (dotted_name) @import.mod) @import.stmt

(import_from_statement module_name: (relative_import) @import.mod) @import.stmt
""",
        "calls": """\
(call function: (identifier) @call.name)

(call function: (attribute attribute: (identifier) @call.name))
""",
    },
    "javascript": {
        "functions": _TS_FUNCTIONS,
        "classes": """\
(class_declaration name: (identifier) @class.name) @class.def
""",
        "imports": _TS_IMPORTS + """
(call_expression
  function: (identifier) @req.keyword
  arguments: (arguments (string) @import.mod)) @import.stmt
""",
        "calls": _TS_CALLS,
    },
    "typescript": {
        "functions": _TS_FUNCTIONS,
        "classes": """\
(class_declaration name: (type_identifier) @class.name) @class.def

(abstract_class_declaration name: (type_identifier) @class.name) @class.def

(interface_declaration name: (type_identifier) @class.name) @class.def
""",
        "imports": _TS_IMPORTS,
        "calls": _TS_CALLS,
    },
    "java": {
        "functions": """\
(method_declaration
  name: (identifier) @func.name
  parameters: (formal_parameters) @func.params) @func.def
""",
        "classes": """\
(class_declaration name: (identifier) @class.name) @class.def

(interface_declaration name: (identifier) @class.name) @class.def
""",
        "imports": """\
(import_declaration (scoped_identifier) @import.mod) @import.stmt
""",
        "calls": """\
(method_invocation name: (identifier) @call.name)
""",
    },
    "go": {
        "functions": """\
(function_declaration
  name: (identifier) @func.name
  parameters: (parameter_list) @func.params) @func.def

(method_declaration
  name: (field_identifier) @func.name
  parameters: (parameter_list) @func.params) @func.def
""",
        "classes": """\
(type_spec name: (type_identifier) @class.name type: (struct_type)) @class.def

(type_spec name: (type_identifier) @class.name type: (interface_type)) @class.def
""",
        "imports": """\
(import_spec path: (interpreted_string_literal) @import.mod) @import.stmt
""",
        "calls": """\
(call_expression function: (identifier) @call.name)

(call_expression function: (selector_expression
  field: (field_identifier) @call.name))
""",
    },
    "rust": {
        "functions": """\
(function_item
  name: (identifier) @func.name
  parameters: (parameters) @func.params) @func.def
""",
        "classes": """\
(struct_item name: (type_identifier) @class.name) @class.def

(trait_item name: (type_identifier) @class.name) @class.def
""",
        "imports": """\
(use_declaration argument: (_) @import.mod) @import.stmt
""",
        "calls": """\
(call_expression function: (identifier) @call.name)
""",
    },
}
_QUERIES["tsx"] = _QUERIES["typescript"]

_INTERFACE_NODE_TYPES = frozenset({"interface_declaration", "trait_item", "interface_type"})
_IMPORT_NAME_RE = re.compile(r"\b([A-Za-z_$][\w$]*)\b")
_IMPORT_NOISE = frozenset({"import", "from", "as", "type", "export", "require", "const", "let", "var"})


# ---------------------------------------------------------------------------
# Node helpers
# ---------------------------------------------------------------------------

def _text(node) -> str:
    """Decode a tree-sitter Node's text as UTF-8."""
    if node is None or not node.text:
        return ""
    return node.text.decode("utf-8", errors="replace")


def _first(caps: dict, key: str):
    nodes = caps.get(key)
    return nodes[0] if nodes else None


def _strip_quotes(raw: str) -> str:
    return raw.strip().strip("\"'`<> ")


def _python_docstring(def_node) -> str:
    """First string statement of a Python function/class body, or ""."""
    body = def_node.child_by_field_name("body")
    if body is None or not body.children:
        return ""
    stmt = body.children[0]
    if stmt.type != "expression_statement" or not stmt.children:
        return ""
    raw = _text(stmt.children[0])
    if stmt.children[0].type != "string":
        return ""
    for q in ('"""', "'''", '"', "'"):
        if raw.startswith(q) and raw.endswith(q) and len(raw) >= 2 * len(q):
            return raw[len(q):-len(q)].strip()
    return raw.strip()


def _leading_comment(def_node) -> str:
    """JSDoc / Javadoc / line-comment block immediately above a declaration."""
    target = def_node
    if target.parent is not None and target.parent.type in ("export_statement", "lexical_declaration"):
        target = target.parent
    prev = target.prev_named_sibling
    if prev is None or prev.type not in ("comment", "line_comment", "block_comment"):
        return ""
    lines = []
    for line in _text(prev).splitlines():
        line = line.strip().lstrip("/*").rstrip("*/").strip()
        if line and not line.startswith("@"):
            lines.append(line)
    return " ".join(lines)


def _param_names(params_node) -> list[str]:
    """Parameter names from a parameter-list node, skipping self/cls/this."""
    if params_node is None:
        return []
    names: list[str] = []
    for child in params_node.named_children:
        ident = child if child.type == "identifier" else None
        if ident is None:
            ident = child.child_by_field_name("pattern") or child.child_by_field_name("name")
        if ident is None:
            for sub in child.named_children:
                if sub.type == "identifier":
                    ident = sub
                    break
        name = _text(ident)
        if name and name not in ("self", "cls", "this"):
            names.append(name)
    return names


def _return_type(def_node) -> str:
    ret = def_node.child_by_field_name("return_type") or def_node.child_by_field_name("result")
    if ret is None:
        value = def_node.child_by_field_name("value")  # arrow function bound to a variable
        if value is not None:
            ret = value.child_by_field_name("return_type")
    return _text(ret).lstrip(":").strip() if ret is not None else ""


def _is_exported(def_node) -> bool:
    node = def_node
    for _ in range(3):
        if node is None:
            return False
        if node.type == "export_statement":
            return True
        node = node.parent
    return False


def _heritage(def_node, language: str) -> tuple[list[str], list[str]]:
    """Return ``(extends, implements)`` type names for a class/interface node."""
    extends: list[str] = []
    implements: list[str] = []
    if language == "python":
        supers = def_node.child_by_field_name("superclasses")
        for arg in supers.named_children if supers is not None else []:
            if arg.type in ("identifier", "attribute"):
                name = _text(arg).rsplit(".", 1)[-1]
                if name != "object":
                    extends.append(name)
        return extends, implements

    for child in def_node.children:
        text = _text(child)
        if child.type in ("class_heritage", "extends_clause", "implements_clause",
                          "superclass", "super_interfaces", "extends_interfaces",
                          "extends_type_clause"):
            current = implements if child.type in ("implements_clause", "super_interfaces") else extends
            for word in re.findall(r"\b(extends|implements)\b|([A-Z][\w.]*)", text):
                keyword, name = word
                if keyword == "extends":
                    current = extends
                elif keyword == "implements":
                    current = implements
                elif name:
                    current.append(name.rsplit(".", 1)[-1])
    return extends, implements


def _tightest(row_start: int, row_end: int, ranges: list[tuple[int, int, str]]) -> Optional[str]:
    """Name of the smallest range enclosing ``[row_start, row_end]``."""
    best: Optional[tuple[int, int, str]] = None
    for start, end, name in ranges:
        if start <= row_start and end >= row_end:
            if best is None or (end - start) < (best[1] - best[0]):
                best = (start, end, name)
    return best[2] if best else None


def _imported_names(stmt_text: str, module: str) -> list[str]:
    head = stmt_text.replace(module, " ")
    names = [n for n in _IMPORT_NAME_RE.findall(head) if n not in _IMPORT_NOISE]
    return list(dict.fromkeys(names))[:20]


# ---------------------------------------------------------------------------
# Main public parse functions
# ---------------------------------------------------------------------------

def parse_code(source_bytes: bytes, language: str, file_path: str = "") -> ParsedFile:
    """
    Parse raw code bytes and return structural information.

    Parameters
    ----------
    source_bytes:
        Raw bytes of the source code.
    language:
        A name from :data:`SUPPORTED_LANGUAGES`.
    file_path:
        Path recorded on every returned record.

    Returns
    -------
    ParsedFile
        With ``parse_error`` set (and empty lists) if the grammar is missing
        or parsing fails.
    """
    file_hash = hashlib.sha256(source_bytes).hexdigest()
    result = ParsedFile(path=file_path, language=language, hash=file_hash)

    lang = get_language(language)
    if lang is None:
        result.parse_error = f"tree-sitter grammar unavailable for {language}"
        return result
    try:
        root = ts.Parser(lang).parse(source_bytes).root_node
    except Exception as exc:
        result.parse_error = f"Parse error: {exc}"
        return result

    queries = _QUERIES.get(language, {})

    # ------------------------------------------------------------------ classes
    class_ranges: list[tuple[int, int, str]] = []
    for caps in _matches(language, queries.get("classes", ""), root):
        def_node, name_node = _first(caps, "class.def"), _first(caps, "class.name")
        name = _text(name_node)
        if def_node is None or not name:
            continue
        kind_node = def_node.child_by_field_name("type") if def_node.type == "type_spec" else def_node
        extends, implements = _heritage(def_node, language)
        result.classes.append(ParsedClass(
            name=name,
            file_path=file_path,
            line_start=def_node.start_point[0] + 1,
            line_end=def_node.end_point[0] + 1,
            kind="interface" if kind_node is not None and kind_node.type in _INTERFACE_NODE_TYPES else "class",
            docstring=_python_docstring(def_node) if language == "python" else _leading_comment(def_node),
            extends=extends,
            implements=implements,
            is_exported=_is_exported(def_node),
        ))
        class_ranges.append((def_node.start_point[0], def_node.end_point[0], name))

    # ---------------------------------------------------------------- functions
    for caps in _matches(language, queries.get("functions", ""), root):
        def_node, name_node = _first(caps, "func.def"), _first(caps, "func.name")
        name = _text(name_node)
        if def_node is None or not name:
            continue
        params_node = _first(caps, "func.params")
        head = _text(def_node)[:40]
        result.functions.append(ParsedFunction(
            name=name,
            file_path=file_path,
            line_start=def_node.start_point[0] + 1,
            line_end=def_node.end_point[0] + 1,
            signature=" ".join(_text(params_node).split()),
            params=_param_names(params_node),
            return_type=_return_type(def_node),
            docstring=_python_docstring(def_node) if language == "python" else _leading_comment(def_node),
            parent_class=_tightest(def_node.start_point[0], def_node.end_point[0], class_ranges),
            is_async=head.lstrip().startswith("async") or "= async" in head,
            is_exported=_is_exported(def_node) or (language == "python" and not name.startswith("_")),
        ))

    # ----------------------------------------------------------------- imports
    seen_imports: set[str] = set()
    for caps in _matches(language, queries.get("imports", ""), root):
        keyword = _first(caps, "req.keyword")
        if keyword is not None and _text(keyword) not in ("require", "import"):
            continue
        mod_node = _first(caps, "import.mod")
        module = _strip_quotes(_text(mod_node))
        if not module or module in seen_imports:
            continue
        seen_imports.add(module)
        stmt = _first(caps, "import.stmt")
        result.imports.append(ParsedImport(
            source_file=file_path,
            module=module,
            line=mod_node.start_point[0] + 1,
            names=_imported_names(_text(stmt), _text(mod_node)) if stmt is not None else [],
            is_dynamic=keyword is not None,
        ))

    # -------------------------------------------------------------------- calls
    fn_ranges = [(f.line_start - 1, f.line_end - 1, f.name) for f in result.functions]
    seen_calls: set[tuple[str, str]] = set()
    for caps in _matches(language, queries.get("calls", ""), root):
        callee_node = _first(caps, "call.name")
        callee = _text(callee_node)
        if not callee:
            continue
        row = callee_node.start_point[0]
        caller = _tightest(row, row, fn_ranges) or "<module>"
        if (caller, callee) in seen_calls:
            continue
        seen_calls.add((caller, callee))
        result.calls.append(ParsedCall(
            caller_function=caller, callee_name=callee, file_path=file_path, line=row + 1,
        ))

    return result


def parse_tree(source_bytes: bytes, language: str):
    """
    Return the root node of *source_bytes* parsed as *language*.

    Raises
    ------
    ValueError
        If the grammar is not installed.
    """
    lang = get_language(language)
    if lang is None:
        raise ValueError(f"tree-sitter grammar unavailable for {language}")
    return ts.Parser(lang).parse(source_bytes).root_node


def iter_nodes(root):
    """Yield *root* and every named descendant in document order."""
    stack = [root]
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.named_children))


def parse_file(file_path: str, display_path: Optional[str] = None) -> ParsedFile:
    """
    Parse a single source file from disk.

    Unsupported extensions and unreadable files yield a ParsedFile with
    ``parse_error`` set so callers can skip and count them.

    Parameters
    ----------
    file_path:
        Path used to read the file.
    display_path:
        Path recorded on the result (e.g. workspace-relative). Defaults to
        *file_path*.
    """
    shown = display_path or file_path
    language = detect_language(file_path)
    if language is None:
        return ParsedFile(path=shown, language="unknown", hash="",
                          parse_error="Unsupported file extension")
    try:
        with open(file_path, "rb") as fh:
            source_bytes = fh.read()
    except OSError as exc:
        return ParsedFile(path=shown, language=language, hash="",
                          parse_error=f"Cannot read file: {exc}")
    return parse_code(source_bytes, language, shown)
