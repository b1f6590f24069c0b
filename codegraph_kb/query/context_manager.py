"""
Context manager: turns a ranked query into a structured context package
(entities, relationships, documentation, code examples and implementation
suggestions) for an assistant or a human reader.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from ..config import Config
from ..graph.model import GraphNode, GraphRelationship, NodeType
from .engine import IntelligentQueryEngine, ScoredNode
from .intent import Action, detect_action

logger = logging.getLogger(__name__)

MAX_SUGGESTION_FILES = 10


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass
class EntityInfo:
    name: str
    type: str
    description: str = ""
    location: dict[str, Any] = field(default_factory=dict)
    properties: dict[str, Any] = field(default_factory=dict)
    score: float = 0.0

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "type": self.type,
            "description": self.description,
            "location": dict(self.location),
            "properties": dict(self.properties),
            "score": round(self.score, 4),
        }


@dataclass
class RelationshipInfo:
    source: str
    target: str
    type: str
    description: str = ""

    def to_dict(self) -> dict:
        return {"from": self.source, "to": self.target, "type": self.type,
                "description": self.description}


@dataclass
class DocReference:
    title: str
    path: str
    description: str = ""
    relevance: str = "result"

    def to_dict(self) -> dict:
        return {"title": self.title, "path": self.path,
                "description": self.description, "relevance": self.relevance}


@dataclass
class CodeExample:
    name: str
    signature: str
    file: str = ""
    line: int = 0
    language: str = ""
    description: str = ""

    def to_dict(self) -> dict:
        return {"name": self.name, "signature": self.signature, "file": self.file,
                "line": self.line, "language": self.language,
                "description": self.description}


@dataclass
class ImplementationSuggestion:
    title: str
    description: str
    steps: list[str] = field(default_factory=list)
    files: list[str] = field(default_factory=list)
    priority: str = "medium"

    def to_dict(self) -> dict:
        return {"title": self.title, "description": self.description,
                "steps": list(self.steps), "files": list(self.files),
                "priority": self.priority}


@dataclass
class ContextResponse:
    """Everything known about a query, ready to serialize."""
    query: str
    action: Action = Action.UNKNOWN
    entities: list[EntityInfo] = field(default_factory=list)
    relationships: list[RelationshipInfo] = field(default_factory=list)
    documentation: list[DocReference] = field(default_factory=list)
    examples: list[CodeExample] = field(default_factory=list)
    suggestions: list[ImplementationSuggestion] = field(default_factory=list)
    confidence: float = 0.0

    def to_dict(self) -> dict:
        return {
            "query": self.query,
            "action": self.action.value,
            "entities": [e.to_dict() for e in self.entities],
            "relationships": [r.to_dict() for r in self.relationships],
            "documentation": [d.to_dict() for d in self.documentation],
            "examples": [x.to_dict() for x in self.examples],
            "suggestions": [s.to_dict() for s in self.suggestions],
            "confidence": round(self.confidence, 4),
        }


# ---------------------------------------------------------------------------
# Suggestion templates
# ---------------------------------------------------------------------------

# action -> (title template, description template, steps, priority)
_TEMPLATES: dict[Action, tuple[str, str, list[str], str]] = {
    Action.ADD_FIELD: (
        "Add a field to {target}",
        "Extend {target} with a new field and propagate it through every layer.",
        [
            "Define the field in the {target} schema with its type and validation",
            "Create a storage migration for the new column",
            "Expose the field in the API input and output types",
            "Add the field to forms and views that edit {target}",
            "Add or update tests covering the field",
        ],
        "high",
    ),
    Action.REMOVE_FIELD: (
        "Remove a field from {target}",
        "Drop the field from {target} and every place that reads or writes it.",
        [
            "Find every usage of the field in code referencing {target}",
            "Remove it from API types and UI components first",
            "Remove the field from the {target} schema",
            "Create a storage migration dropping the column",
            "Update tests that assert on the field",
        ],
        "high",
    ),
    Action.CREATE_API: (
        "Create an API for {target}",
        "Add endpoints exposing {target} following the existing API modules.",
        [
            "Reuse the {target} schema for input and output validation",
            "Add the route or procedure next to existing endpoints",
            "Wire the handler to the service layer",
            "Add integration tests for the endpoint",
        ],
        "medium",
    ),
    Action.CREATE_UI: (
        "Create UI for {target}",
        "Build a component or page for {target} using the existing UI packages.",
        [
            "Locate an existing component with a similar layout",
            "Derive form fields from the {target} schema",
            "Connect the component to the API",
            "Add component tests",
        ],
        "medium",
    ),
    Action.ADD_VALIDATION: (
        "Add validation to {target}",
        "Tighten the validation rules of {target}.",
        [
            "Add the rules to the {target} schema definition",
            "Surface validation errors in the API layer",
            "Show validation messages in forms",
            "Test valid and invalid inputs",
        ],
        "medium",
    ),
    Action.REFACTOR: (
        "Refactor {target}",
        "Restructure {target} without changing behaviour.",
        [
            "List the callers and dependents of {target}",
            "Make the change behind the existing interface",
            "Update dependents in small steps",
            "Run the full test suite after each step",
        ],
        "low",
    ),
    Action.OPTIMIZE: (
        "Optimize {target}",
        "Improve the performance of {target}.",
        [
            "Measure the current behaviour of {target}",
            "Identify hot paths among its callees",
            "Apply the optimization and measure again",
        ],
        "low",
    ),
    Action.UNKNOWN: (
        "Review {target}",
        "Start from {target} and the files listed below.",
        [
            "Read the definition of {target}",
            "Follow its relationships to related code",
        ],
        "low",
    ),
}


def _location(node: GraphNode) -> dict[str, Any]:
    line = node.properties.get("line_start") or node.properties.get("line") or 0
    return {"file": node.file_path, "line": int(line or 0)}


class ContextManager:
    """
    Builds a :class:`ContextResponse` for a free-text query.

    Parameters
    ----------
    engine:
        The query engine over the loaded graph.
    config:
        Shared configuration.
    logger:
        Injected logger.
    """

    def __init__(
        self,
        engine: IntelligentQueryEngine,
        config: Optional[Config] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.engine = engine
        self.config = config or engine.config
        self.logger = logger or logging.getLogger(__name__)

    def get_context(self, query: str, include_related: bool = True, max_results: Optional[int] = None) -> ContextResponse:
        """
        Assemble context for *query*.

        Never raises for "no results": the response is then empty with
        confidence 0.
        """
        action = detect_action(query)
        result = self.engine.query(query, include_related=include_related, max_results=max_results)
        response = ContextResponse(query=result.query, action=action, confidence=result.confidence)
        if result.is_empty:
            self.logger.info("No context found for %r", query)
            return response

        response.entities = [self._entity_info(s) for s in result.nodes]
        response.relationships = [self._relationship_info(r) for r in result.relationships]
        response.documentation = self._documentation(result.nodes)
        response.examples = [
            self._example(s.node) for s in result.nodes
            if s.node.type == NodeType.FUNCTION and s.node.properties.get("signature")
        ]
        response.suggestions = self._suggestions(action, result.nodes)
        return response

    # ------------------------------------------------------------------
    # Builders
    # ------------------------------------------------------------------

    @staticmethod
    def _entity_info(scored: ScoredNode) -> EntityInfo:
        node = scored.node
        return EntityInfo(
            name=node.name,
            type=node.type.value,
            description=str(node.properties.get("description") or ""),
            location=_location(node),
            properties=dict(node.properties),
            score=scored.score,
        )

    def _name_of(self, node_id: str) -> str:
        node = self.engine.nodes.get(node_id)
        return node.name if node is not None else node_id

    def _relationship_info(self, rel: GraphRelationship) -> RelationshipInfo:
        source, target = self._name_of(rel.source), self._name_of(rel.target)
        verb = rel.type.value.lower().replace("_", " ")
        return RelationshipInfo(source=source, target=target, type=rel.type.value,
                                description=f"{source} {verb} {target}")

    def _documentation(self, results: list[ScoredNode]) -> list[DocReference]:
        docs: dict[str, DocReference] = {}
        for scored in results:
            if scored.node.type == NodeType.DOCUMENT:
                docs.setdefault(scored.node.id, self._doc_ref(scored.node, "result"))
        for scored in results:
            for _, other in self.engine.neighbors(scored.node.id):
                if other is not None and other.type == NodeType.DOCUMENT:
                    docs.setdefault(other.id, self._doc_ref(other, "related"))
        return list(docs.values())

    @staticmethod
    def _doc_ref(node: GraphNode, relevance: str) -> DocReference:
        return DocReference(
            title=str(node.properties.get("title") or node.name),
            path=node.file_path,
            description=str(node.properties.get("description") or ""),
            relevance=relevance,
        )

    @staticmethod
    def _example(node: GraphNode) -> CodeExample:
        return CodeExample(
            name=node.name,
            signature=str(node.properties.get("signature") or ""),
            file=node.file_path,
            line=int(node.properties.get("line_start") or 0),
            language=str(node.properties.get("language") or ""),
            description=str(node.properties.get("description") or ""),
        )

    def _suggestions(self, action: Action, results: list[ScoredNode]) -> list[ImplementationSuggestion]:
        target = next(
            (s.node for s in results if s.node.type in (NodeType.ENTITY, NodeType.CLASS, NodeType.INTERFACE)),
            results[0].node,
        )
        files: list[str] = []
        for scored in results:
            path = scored.node.file_path
            if path and path not in files:
                files.append(path)
        return [build_suggestion(action, target.name, files)]


def build_suggestion(action: Action, target: str, files: Optional[list[str]] = None) -> ImplementationSuggestion:
    """Fill the template for *action* with *target*; at most ``MAX_SUGGESTION_FILES`` files are kept."""
    title, description, steps, priority = _TEMPLATES[action]
    return ImplementationSuggestion(
        title=title.format(target=target),
        description=description.format(target=target),
        steps=[step.format(target=target) for step in steps],
        files=list(files or [])[:MAX_SUGGESTION_FILES],
        priority=priority,
    )
