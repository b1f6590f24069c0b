"""
Keyword-based intent detection for natural-language queries.
"""

from __future__ import annotations

import re
from enum import Enum


class Action(str, Enum):
    ADD_FIELD = "add_field"
    REMOVE_FIELD = "remove_field"
    CREATE_API = "create_api"
    CREATE_UI = "create_ui"
    ADD_VALIDATION = "add_validation"
    REFACTOR = "refactor"
    OPTIMIZE = "optimize"
    UNKNOWN = "unknown"


_FIELD_WORDS = {"field", "fields", "property", "properties", "column", "columns"}

# (action, required word groups); every group must contribute at least one word
_RULES: tuple[tuple[Action, tuple[frozenset[str], ...]], ...] = (
    (Action.ADD_FIELD, (frozenset({"add"}), frozenset(_FIELD_WORDS))),
    (Action.REMOVE_FIELD, (frozenset({"remove", "delete", "drop"}), frozenset(_FIELD_WORDS))),
    (Action.CREATE_API, (frozenset({"api", "endpoint", "endpoints", "route", "router"}),)),
    (Action.CREATE_UI, (frozenset({"component", "components", "ui", "page", "form"}),)),
    (Action.ADD_VALIDATION, (frozenset({"validation", "validate", "validator"}),)),
    (Action.REFACTOR, (frozenset({"refactor", "restructure"}),)),
    (Action.OPTIMIZE, (frozenset({"optimize", "optimise", "performance", "slow"}),)),
)


def detect_action(text) -> Action:
    """
    Classify *text* into an :class:`Action` using ordered keyword rules.

    Never raises; anything that is not a non-empty string is ``UNKNOWN``.
    """
    if not isinstance(text, str) or not text.strip():
        return Action.UNKNOWN
    words = set(re.findall(r"[a-z]+", text.lower()))
    for action, groups in _RULES:
        if all(words & group for group in groups):
            return action
    return Action.UNKNOWN
