from .context_manager import (
    CodeExample, ContextManager, ContextResponse, DocReference, EntityInfo,
    ImplementationSuggestion, RelationshipInfo, build_suggestion,
)
from .engine import IntelligentQueryEngine, QueryResult, ScoredNode
from .intent import Action, detect_action

__all__ = [
    "Action",
    "CodeExample",
    "ContextManager",
    "ContextResponse",
    "DocReference",
    "EntityInfo",
    "ImplementationSuggestion",
    "IntelligentQueryEngine",
    "QueryResult",
    "RelationshipInfo",
    "ScoredNode",
    "build_suggestion",
    "detect_action",
]
