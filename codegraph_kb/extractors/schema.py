"""
Schema / entity extractor.

Recognises entity definitions in TypeScript/JavaScript (``defineEntity``,
``EntityImpl`` subclasses and instances, zod ``z.object`` schemas) and in
Python (pydantic ``BaseModel`` subclasses, dataclasses). Each schema
becomes an ENTITY node with its field list; DEFINES edges link the
defining file, USES_TYPE edges link entities referencing each other.

Definitions are located on the tree-sitter syntax tree, so comments and
string literals inside a schema body never change its field list.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Optional

from ..graph.model import ExtractionResult, NodeIdGenerator, NodeType, RelationType
from .base import BaseExtractor
from .parser import detect_language, iter_nodes, parse_tree
from .walker import read_text, walk_files

SCHEMA_EXTENSIONS = {".ts", ".tsx", ".js", ".mjs", ".py"}

# ---------------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------------

_ZOD_NAME_RE = re.compile(r"^(\w+?)Schema$")
_IDENTIFIER_RE = re.compile(r"^\w+$")
_ENTITY_BASE_RE = re.compile(r"\bextends\s+EntityImpl\b")
_DATACLASS_RE = re.compile(r"^@(?:dataclasses\.)?dataclass\b")
_SCHEMA_REF_RE = re.compile(r"\b([A-Z]\w*?)Schema\b")
_CAPITALIZED_RE = re.compile(r"\b([A-Z]\w*)\b")

# keyword -> inferred field type, checked in order
_TYPE_KEYWORDS: list[tuple[tuple[str, ...], str]] = [
    (("array", "list", "set", "tuple"), "array"),
    (("email", "url", "uuid", "string", "str", "text"), "string"),
    (("number", "int", "float", "decimal", "bigint"), "number"),
    (("boolean", "bool"), "boolean"),
    (("datetime", "date"), "date"),
    (("enum", "literal"), "enum"),
    (("object", "dict", "record", "mapping"), "object"),
]

_VALIDATION_KEYWORDS = ("min", "max", "email", "url", "uuid", "regex", "length")

_PY_BUILTIN_TYPES = frozenset({
    "Optional", "List", "Dict", "Set", "Tuple", "Union", "Any", "Literal",
    "None", "Field", "ClassVar", "Annotated", "Sequence", "Mapping",
})

_CLASS_FIELD_NODES = frozenset({"public_field_definition", "field_definition"})


# ---------------------------------------------------------------------------
# Raw data
# ---------------------------------------------------------------------------

@dataclass
class ParsedField:
    name: str
    type: str
    required: bool = True
    validations: list[str] = field(default_factory=list)
    reference: Optional[str] = None


@dataclass
class ParsedSchema:
    name: str
    kind: str               # "zod" | "entity" | "pydantic" | "dataclass"
    file_path: str
    line: int
    package: str = ""
    fields: list[ParsedField] = field(default_factory=list)


@dataclass
class SchemaRawData:
    files_scanned: int = 0
    schemas: list[ParsedSchema] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------

def infer_field_type(expr: str) -> str:
    """Infer a coarse field type from a field's type expression."""
    lowered = expr.lower()
    for keywords, field_type in _TYPE_KEYWORDS:
        if any(re.search(rf"\b{kw}\b", lowered) for kw in keywords):
            return field_type
    ref = _SCHEMA_REF_RE.search(expr)
    if ref:
        return ref.group(1)
    return "unknown"


def parse_validations(expr: str) -> tuple[bool, list[str]]:
    """Return ``(required, validation_names)`` for a field expression."""
    lowered = expr.lower()
    required = not any(tok in lowered for tok in (".optional(", ".nullable(", "optional[", "| none", ".nullish("))
    validations = [kw for kw in _VALIDATION_KEYWORDS if re.search(rf"[.(]\s*{kw}\s*\(", lowered)]
    validations.insert(0, "required" if required else "optional")
    return required, validations


def _mark_optional(validations: list[str]) -> None:
    validations[0] = "optional"


# ---------------------------------------------------------------------------
# Syntax tree helpers
# ---------------------------------------------------------------------------

def _text(node) -> str:
    if node is None or not node.text:
        return ""
    return node.text.decode("utf-8", errors="replace")


def _compact(node) -> str:
    return "".join(_text(node).split())


def _line(node) -> int:
    return node.start_point[0] + 1


def _key_name(key) -> str:
    """Plain name of an object key or class member, or "" for computed keys."""
    if key is None or key.type == "computed_property_name":
        return ""
    name = _text(key).strip("\"'`")
    return name if _IDENTIFIER_RE.match(name) else ""


def _first_object_argument(call):
    args = call.child_by_field_name("arguments")
    for arg in args.named_children if args is not None else []:
        if arg.type == "object":
            return arg
    return None


def _zod_object_call(call):
    """The ``z.object(...)`` call at the root of a zod method chain, or None."""
    node = call
    while node is not None and node.type == "call_expression":
        function = node.child_by_field_name("function")
        if _compact(function) == "z.object":
            return node
        if function is None or function.type != "member_expression":
            return None
        node = function.child_by_field_name("object")
    return None


def _ts_field(name: str, expr: str, optional_marker: bool = False) -> ParsedField:
    required, validations = parse_validations(expr)
    if optional_marker and required:
        required = False
        _mark_optional(validations)
    ref = _SCHEMA_REF_RE.search(expr)
    return ParsedField(
        name=name,
        type=infer_field_type(expr),
        required=required,
        validations=validations,
        reference=ref.group(1) if ref else None,
    )


def object_fields(obj) -> list[ParsedField]:
    """
    Fields declared by a TS/JS object literal node.

    A nested ``fields: {...}`` member (the ``defineEntity`` layout) takes
    precedence over the object's own members. Spreads, shorthand
    properties, methods and comments are not fields.
    """
    if obj is None:
        return []
    pairs = [child for child in obj.named_children if child.type == "pair"]
    for pair in pairs:
        value = pair.child_by_field_name("value")
        if _key_name(pair.child_by_field_name("key")) == "fields" and value is not None \
                and value.type == "object":
            return object_fields(value)

    fields: list[ParsedField] = []
    for pair in pairs:
        name = _key_name(pair.child_by_field_name("key"))
        value = pair.child_by_field_name("value")
        if name and value is not None:
            fields.append(_ts_field(name, _text(value)))
    return fields


def class_fields(body) -> list[ParsedField]:
    """Typed member declarations of a TS/JS class body."""
    fields: list[ParsedField] = []
    for member in body.named_children if body is not None else []:
        if member.type not in _CLASS_FIELD_NODES:
            continue
        name = _key_name(member.child_by_field_name("name") or member.child_by_field_name("property"))
        if not name:
            continue
        parts = (member.child_by_field_name("type"), member.child_by_field_name("value"))
        expr = " ".join(_text(p).lstrip(":").strip() for p in parts if p is not None)
        optional = any(child.type == "?" for child in member.children)
        fields.append(_ts_field(name, expr, optional_marker=optional))
    return fields


def python_fields(body) -> list[ParsedField]:
    """Annotated attributes (``name: Type [= default]``) of a Python class body."""
    fields: list[ParsedField] = []
    for stmt in body.named_children if body is not None else []:
        if stmt.type != "expression_statement" or not stmt.named_children:
            continue
        assign = stmt.named_children[0]
        if assign.type != "assignment":
            continue
        left = assign.child_by_field_name("left")
        annotation = _text(assign.child_by_field_name("type")).strip()
        if left is None or left.type != "identifier" or not annotation:
            continue
        name = _text(left)
        if name.startswith("_") or annotation.startswith("ClassVar"):
            continue
        default = _text(assign.child_by_field_name("right")).strip()
        required, validations = parse_validations(f"{annotation} {default}")
        if default and "Field(" not in default:
            required = False
            _mark_optional(validations)
        refs = [c for c in _CAPITALIZED_RE.findall(annotation) if c not in _PY_BUILTIN_TYPES]
        fields.append(ParsedField(
            name=name,
            type=infer_field_type(annotation) if not refs else refs[0],
            required=required,
            validations=validations,
            reference=refs[0] if refs else None,
        ))
    return fields


# ---------------------------------------------------------------------------
# Schema discovery
# ---------------------------------------------------------------------------

def _ts_schemas(root, file_path: str) -> list[ParsedSchema]:
    schemas: list[ParsedSchema] = []

    def add(name_node, name: str, kind: str, fields: list[ParsedField]) -> None:
        schemas.append(ParsedSchema(name=name, kind=kind, file_path=file_path,
                                    line=_line(name_node), fields=fields))

    for node in iter_nodes(root):
        if node.type == "variable_declarator":
            name_node = node.child_by_field_name("name")
            value = node.child_by_field_name("value")
            if name_node is None or value is None or name_node.type != "identifier":
                continue
            if value.type == "call_expression":
                zod_name = _ZOD_NAME_RE.match(_text(name_node))
                call = _zod_object_call(value)
                if zod_name and call is not None:
                    add(name_node, zod_name.group(1), "zod", object_fields(_first_object_argument(call)))
            elif value.type == "new_expression" \
                    and _compact(value.child_by_field_name("constructor")) == "EntityImpl":
                add(name_node, _text(name_node), "entity", object_fields(_first_object_argument(value)))

        elif node.type == "call_expression" \
                and _compact(node.child_by_field_name("function")) == "defineEntity":
            args = node.child_by_field_name("arguments")
            first = args.named_children[0] if args is not None and args.named_children else None
            if first is None or first.type != "string":
                continue
            name = _text(first).strip("\"'`")
            if _IDENTIFIER_RE.match(name):
                add(first, name, "entity", object_fields(_first_object_argument(node)))

        elif node.type in ("class_declaration", "abstract_class_declaration", "class"):
            name_node = node.child_by_field_name("name")
            heritage = next((c for c in node.named_children if c.type == "class_heritage"), None)
            if name_node is not None and _ENTITY_BASE_RE.search(_text(heritage)):
                add(name_node, _text(name_node), "entity", class_fields(node.child_by_field_name("body")))
    return schemas


def _python_schemas(root, file_path: str) -> list[ParsedSchema]:
    schemas: list[ParsedSchema] = []
    for node in root.named_children:
        decorators: list[str] = []
        cls = node
        if node.type == "decorated_definition":
            decorators = [_text(d) for d in node.named_children if d.type == "decorator"]
            cls = node.child_by_field_name("definition")
        if cls is None or cls.type != "class_definition":
            continue
        supers = cls.child_by_field_name("superclasses")
        bases = [
            _text(arg).rsplit(".", 1)[-1]
            for arg in (supers.named_children if supers is not None else [])
            if arg.type in ("identifier", "attribute")
        ]
        if "BaseModel" in bases:
            kind = "pydantic"
        elif any(_DATACLASS_RE.match(d) for d in decorators):
            kind = "dataclass"
        else:
            continue
        name_node = cls.child_by_field_name("name")
        schemas.append(ParsedSchema(
            name=_text(name_node), kind=kind, file_path=file_path, line=_line(name_node),
            fields=python_fields(cls.child_by_field_name("body")),
        ))
    return schemas


def parse_schemas(text: str, file_path: str) -> list[ParsedSchema]:
    """
    Return every schema definition found in *text*.

    Raises
    ------
    ValueError
        If the tree-sitter grammar for the file's language is not installed.
    """
    language = detect_language(file_path)
    if language is None:
        return []
    root = parse_tree(text.encode("utf-8"), language)
    if language == "python":
        return _python_schemas(root, file_path)
    return _ts_schemas(root, file_path)


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------

class SchemaExtractor(BaseExtractor):
    """Extracts ENTITY nodes with DEFINES and USES_TYPE edges."""

    name = "schema"

    def extract_raw_data(self) -> SchemaRawData:
        raw = SchemaRawData()
        for rel_path in walk_files(self.working_dir, SCHEMA_EXTENSIONS):
            raw.files_scanned += 1
            try:
                text = read_text(self.abs_path(rel_path))
                found = parse_schemas(text, rel_path)
            except (OSError, ValueError) as exc:
                self.record_error(rel_path, exc)
                continue
            package = self.package_of(rel_path)
            for schema in found:
                schema.package = package
            raw.schemas.extend(found)
        return raw

    def validate(self, raw: SchemaRawData) -> bool:
        return bool(raw.schemas)

    def get_source_count(self, raw: SchemaRawData) -> int:
        return raw.files_scanned

    def transform_to_graph(self, raw: SchemaRawData) -> ExtractionResult:
        result = ExtractionResult()
        # name -> {package: entity id}; used to resolve references
        index: dict[str, dict[str, str]] = {}
        entities: dict[str, tuple[ParsedSchema, list[ParsedField]]] = {}

        for schema in raw.schemas:
            eid = NodeIdGenerator.entity(schema.name, schema.package or None)
            index.setdefault(schema.name, {})[schema.package] = eid
            if eid in entities:
                # Same entity declared twice (e.g. entity + zod): union of fields
                known = {f.name for f in entities[eid][1]}
                entities[eid][1].extend(f for f in schema.fields if f.name not in known)
            else:
                entities[eid] = (schema, list(schema.fields))

        for eid, (schema, fields) in entities.items():
            result.nodes.append(self.make_node(
                NodeType.ENTITY, eid, schema.name,
                properties={
                    "schema_kind": schema.kind,
                    "file_path": schema.file_path,
                    "line": schema.line,
                    "package": schema.package,
                    "fields": [f.name for f in fields],
                    "field_types": [f"{f.name}:{f.type}" for f in fields],
                    "required_fields": [f.name for f in fields if f.required],
                    "field_count": len(fields),
                    "description": f"{schema.kind} schema {schema.name} with fields "
                                   + ", ".join(f.name for f in fields),
                },
                source_file=schema.file_path,
            ))
            fid = NodeIdGenerator.file(schema.package or None, schema.file_path)
            result.nodes.append(self.make_node(
                NodeType.FILE, fid, schema.file_path.rsplit("/", 1)[-1],
                properties={
                    "file_path": schema.file_path,
                    "file_type": "schema",
                    "package": schema.package,
                },
                source_file=schema.file_path,
            ))
            result.relationships.append(self.make_relationship(
                RelationType.DEFINES, fid, eid, properties={"line": schema.line},
            ))
            for fld in fields:
                if not fld.reference or fld.reference == schema.name:
                    continue
                target = self._resolve(index, fld.reference, schema.package)
                if target:
                    result.relationships.append(self.make_relationship(
                        RelationType.USES_TYPE, eid, target,
                        properties={"field": fld.name, "required": fld.required},
                    ))
        return result

    @staticmethod
    def _resolve(index: dict[str, dict[str, str]], name: str, package: str) -> Optional[str]:
        candidates = index.get(name)
        if not candidates:
            return None
        if package in candidates:
            return candidates[package]
        return candidates[sorted(candidates)[0]]
