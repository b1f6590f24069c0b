"""
Unit tests for codegraph_kb.extractors.document
"""

from __future__ import annotations

import pytest

from codegraph_kb.extractors.document import DocumentExtractor, doc_type_of, parse_document
from codegraph_kb.graph.model import NodeType, RelationType


class TestParseDocument:
    def test_markdown_title_from_first_heading(self):
        doc = parse_document("docs/x.md", "# Hello\n\nSome words here.\n", 25)
        assert doc.title == "Hello"
        assert doc.description == "Some words here."
        assert doc.word_count == 5

    def test_front_matter_wins(self):
        text = "---\ntitle: Override\ndescription: Short\n---\n# Heading\n"
        doc = parse_document("docs/x.md", text, len(text))
        assert doc.title == "Override"
        assert doc.description == "Short"

    def test_malformed_front_matter_ignored(self):
        text = "---\ntitle: [unclosed\n---\n# Heading\n"
        doc = parse_document("docs/x.md", text, len(text))
        assert doc.title == "Heading"

    def test_title_falls_back_to_file_stem(self):
        doc = parse_document("notes/todo.txt", "just text\n", 10)
        assert doc.title == "todo"

    def test_rst_headings(self):
        doc = parse_document("docs/a.rst", "Title\n=====\n\nBody text.\n", 20)
        assert doc.headings == ["Title"]

    def test_relative_links_resolved_external_skipped(self):
        text = "[a](../README.md) [b](https://example.com) [c](./api.md#section)"
        doc = parse_document("docs/guide.md", text, len(text))
        assert doc.links == ["README.md", "docs/api.md"]

    @pytest.mark.parametrize("path,expected", [
        ("README.md", "readme"),
        ("docs/CHANGELOG.md", "changelog"),
        ("docs/api-reference.md", "api"),
        ("docs/notes.md", "doc"),
    ])
    def test_doc_type(self, path, expected):
        assert doc_type_of(path) == expected


class TestDocumentExtractor:
    @pytest.fixture()
    def result(self, monorepo, config):
        return DocumentExtractor(str(monorepo), config).extract()

    def _docs(self, result):
        return {n.properties["path"]: n for n in result.nodes if n.type == NodeType.DOCUMENT}

    def test_documents_indexed(self, result):
        assert sorted(self._docs(result)) == [
            "README.md", "docs/guide.md", "packages/pkg-a/README.md",
        ]

    def test_guide_metadata(self, result):
        guide = self._docs(result)["docs/guide.md"]
        assert guide.name == "Developer Guide"
        assert guide.properties["tags"] == ["onboarding"]
        assert guide.properties["code_languages"] == ["ts"]
        assert guide.properties["package"] == "acme-workspace"

    def test_package_readme_owned_by_package(self, result):
        readme = self._docs(result)["packages/pkg-a/README.md"]
        assert readme.properties["package"] == "@acme/pkg-a"
        assert readme.properties["doc_type"] == "readme"

    def test_link_becomes_reference(self, result):
        refs = [(r.source, r.target) for r in result.relationships
                if r.type == RelationType.REFERENCES]
        assert refs == [("document:docs/guide.md", "document:README.md")]

    def test_empty_tree(self, tmp_path, config):
        result = DocumentExtractor(str(tmp_path), config).extract()
        assert result.nodes == []
