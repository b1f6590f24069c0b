"""
Document extractor.

Indexes documentation files (Markdown, reStructuredText, AsciiDoc, plain
text) as DOCUMENT nodes with lightweight metadata used for relevance
boosting, and links documents to each other through relative links.
"""

from __future__ import annotations

import logging
import os
import posixpath
import re
from dataclasses import dataclass, field

import yaml

from ..graph.model import ExtractionResult, NodeIdGenerator, NodeType, RelationType
from .base import BaseExtractor
from .walker import read_text, walk_files

logger = logging.getLogger(__name__)

DOC_EXTENSIONS = {".md", ".mdx", ".rst", ".txt", ".adoc"}
MAX_DOC_DEPTH = 3
MAX_HEADINGS = 50

_MD_HEADING_RE = re.compile(r"^(#{1,6})\s+(.+?)\s*#*\s*$", re.M)
_RST_HEADING_RE = re.compile(r"^([^\n]+)\n([=\-~^\"'`#*+]{3,})\s*$", re.M)
_ADOC_HEADING_RE = re.compile(r"^(={1,6})\s+(.+)$", re.M)
_MD_LINK_RE = re.compile(r"\[([^\]]*)\]\(([^)\s#]+)(?:#[^)]*)?\)")
_CODE_FENCE_RE = re.compile(r"^```(\w+)", re.M)
_FRONT_MATTER_RE = re.compile(r"\A---\s*\n(.*?)\n---\s*\n", re.S)

_DOC_TYPES = (
    ("readme", "readme"),
    ("changelog", "changelog"),
    ("design", "design"),
    ("contributing", "contributing"),
    ("api", "api"),
    ("guide", "guide"),
)


@dataclass
class ParsedDocument:
    path: str
    title: str
    size: int
    word_count: int
    description: str = ""
    headings: list[str] = field(default_factory=list)
    links: list[str] = field(default_factory=list)
    code_languages: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    package: str = ""


@dataclass
class DocumentRawData:
    documents: list[ParsedDocument] = field(default_factory=list)


def _front_matter(text: str) -> tuple[dict, str]:
    """Split YAML front matter from *text*; malformed front matter is ignored."""
    m = _FRONT_MATTER_RE.match(text)
    if not m:
        return {}, text
    try:
        data = yaml.safe_load(m.group(1))
    except yaml.YAMLError:
        return {}, text
    return (data if isinstance(data, dict) else {}), text[m.end():]


def _headings(text: str, ext: str) -> list[str]:
    if ext == ".rst":
        return [m.group(1).strip() for m in _RST_HEADING_RE.finditer(text)
                if len(m.group(2)) >= len(m.group(1).strip())]
    if ext == ".adoc":
        return [m.group(2).strip() for m in _ADOC_HEADING_RE.finditer(text)]
    return [m.group(2).strip() for m in _MD_HEADING_RE.finditer(text)]


def _first_paragraph(text: str) -> str:
    for block in re.split(r"\n\s*\n", text):
        block = block.strip()
        if block and not block.startswith(("#", "=", "```", "<", "|", "![", "---")):
            return " ".join(block.split())[:200]
    return ""


def parse_document(path: str, text: str, size: int) -> ParsedDocument:
    """Extract title, headings, links and summary metadata from a document's text."""
    ext = os.path.splitext(path)[1].lower()
    meta, body = _front_matter(text)
    headings = _headings(body, ext)
    stem = os.path.splitext(os.path.basename(path))[0]
    title = str(meta.get("title") or (headings[0] if headings else stem))

    links: list[str] = []
    base = posixpath.dirname(path)
    for _label, target in _MD_LINK_RE.findall(body):
        if re.match(r"^[a-z][a-z0-9+.-]*:", target, re.I) or target.startswith("/"):
            continue
        links.append(posixpath.normpath(posixpath.join(base, target)))

    tags = meta.get("tags") or []
    return ParsedDocument(
        path=path,
        title=title,
        size=size,
        word_count=len(body.split()),
        description=str(meta.get("description") or _first_paragraph(body)),
        headings=headings[:MAX_HEADINGS],
        links=list(dict.fromkeys(links)),
        code_languages=sorted(set(_CODE_FENCE_RE.findall(body))),
        tags=[str(t) for t in tags] if isinstance(tags, list) else [],
    )


def doc_type_of(path: str) -> str:
    name = os.path.basename(path).lower()
    for needle, doc_type in _DOC_TYPES:
        if needle in name:
            return doc_type
    return "doc"


class DocumentExtractor(BaseExtractor):
    """Extracts DOCUMENT nodes and document-to-document REFERENCES edges."""

    name = "document"

    def extract_raw_data(self) -> DocumentRawData:
        raw = DocumentRawData()
        for rel_path in walk_files(self.working_dir, DOC_EXTENSIONS, max_depth=MAX_DOC_DEPTH):
            abs_path = self.abs_path(rel_path)
            try:
                doc = parse_document(rel_path, read_text(abs_path), os.path.getsize(abs_path))
            except OSError as exc:
                self.record_error(rel_path, exc)
                continue
            doc.package = self.package_of(rel_path)
            raw.documents.append(doc)
        return raw

    def validate(self, raw: DocumentRawData) -> bool:
        return bool(raw.documents)

    def get_source_count(self, raw: DocumentRawData) -> int:
        return len(raw.documents)

    def transform_to_graph(self, raw: DocumentRawData) -> ExtractionResult:
        result = ExtractionResult()
        by_path = {doc.path: NodeIdGenerator.document(doc.path) for doc in raw.documents}

        for doc in raw.documents:
            did = by_path[doc.path]
            result.nodes.append(self.make_node(
                NodeType.DOCUMENT, did, doc.title,
                properties={
                    "title": doc.title,
                    "path": doc.path,
                    "file_path": doc.path,
                    "doc_type": doc_type_of(doc.path),
                    "size": doc.size,
                    "word_count": doc.word_count,
                    "description": doc.description,
                    "headings": list(doc.headings),
                    "code_languages": list(doc.code_languages),
                    "tags": list(doc.tags),
                    "package": doc.package,
                },
                source_file=doc.path,
            ))
            for link in doc.links:
                target = by_path.get(link)
                if target and target != did:
                    result.relationships.append(self.make_relationship(
                        RelationType.REFERENCES, did, target,
                        properties={"link": link},
                    ))
        return result
