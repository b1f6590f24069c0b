"""
Identifier and free-text tokenization shared by correlation and query code.
"""

from __future__ import annotations

import re
from difflib import SequenceMatcher

_WORD_RE = re.compile(r"[A-Z]+(?=[A-Z][a-z])|[A-Z]?[a-z]+|[A-Z]+|\d+")
_SPLIT_RE = re.compile(r"[^A-Za-z0-9]+")

STOPWORDS: frozenset[str] = frozenset({
    "a", "an", "and", "are", "as", "at", "be", "by", "for", "from", "how",
    "i", "in", "into", "is", "it", "of", "on", "or", "the", "to", "with",
    "what", "where", "which", "who", "why", "do", "does", "can", "should",
    "me", "my", "we", "our", "this", "that", "these", "those", "all", "new",
})


def split_identifier(name: str) -> list[str]:
    """
    Split an identifier or path into lower-case words.

    ``createUserSession`` -> ``["create", "user", "session"]``,
    ``@scope/auth-core`` -> ``["scope", "auth", "core"]``.
    """
    words: list[str] = []
    for chunk in _SPLIT_RE.split(name or ""):
        words.extend(w.lower() for w in _WORD_RE.findall(chunk))
    return words


def tokenize(text: str, min_len: int = 2) -> list[str]:
    """Tokenize free text or identifiers, dropping stopwords and short tokens. Order-preserving, unique."""
    tokens = [t for t in split_identifier(text) if len(t) >= min_len and t not in STOPWORDS]
    return list(dict.fromkeys(tokens))


def normalize_name(name: str) -> str:
    """Lower-case alphanumerics only: ``User_Profile`` -> ``userprofile``."""
    return re.sub(r"[^a-z0-9]", "", (name or "").lower())


def similarity_ratio(a: str, b: str) -> float:
    """Similarity of two normalized names in ``[0, 1]``."""
    a, b = normalize_name(a), normalize_name(b)
    if not a or not b:
        return 0.0
    return SequenceMatcher(None, a, b).ratio()
