"""
Optional semantic scorers consulted by the correlation fuzzy tier for
ambiguous candidate pairs.

The default :class:`NullFuzzyMatcher` never has an opinion, which keeps the
analyzer deterministic and testable without any external service.
"""

from __future__ import annotations

import logging
import re
import threading
from abc import ABC, abstractmethod
from typing import Optional

import requests

from ..config import Config
from ..graph.model import GraphNode

logger = logging.getLogger(__name__)

_FLOAT_RE = re.compile(r"(?<![\d.])(0(?:\.\d+)?|1(?:\.0+)?)(?![\d.])")


class FuzzyMatcher(ABC):
    """Scores how related two nodes are, or returns None for "no opinion"."""

    @abstractmethod
    def score(self, a: GraphNode, b: GraphNode) -> Optional[float]:
        ...


class NullFuzzyMatcher(FuzzyMatcher):
    """Deterministic default: never overrides the heuristic score."""

    def score(self, a: GraphNode, b: GraphNode) -> Optional[float]:
        return None


class HttpFuzzyMatcher(FuzzyMatcher):
    """
    Asks an OpenAI-compatible chat-completions endpoint for a relatedness score.

    Parameters
    ----------
    base_url:
        Endpoint base, e.g. ``https://api.openai.com/v1``.
    api_key:
        Bearer token (may be empty for local servers).
    model:
        Model name sent with each request.
    max_calls:
        Upper bound on requests per matcher instance; further pairs get None.
    timeout:
        ``(connect, read)`` timeout in seconds.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        model: str = "gpt-4o-mini",
        max_calls: int = 200,
        timeout: tuple[float, float] = (10, 60),
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.max_calls = max_calls
        self.timeout = timeout
        self.calls = 0
        self._lock = threading.Lock()
        self.logger = logger or logging.getLogger(__name__)

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    @staticmethod
    def _describe(node: GraphNode) -> str:
        desc = str(node.properties.get("description") or "")[:200]
        return f"{node.type.value} '{node.name}'" + (f" ({desc})" if desc else "")

    def _prompt(self, a: GraphNode, b: GraphNode) -> str:
        return (
            "Rate from 0 to 1 how likely these two code elements describe the "
            "same concept or depend on each other. Answer with the number only.\n"
            f"A: {self._describe(a)}\nB: {self._describe(b)}"
        )

    def score(self, a: GraphNode, b: GraphNode) -> Optional[float]:
        with self._lock:
            if self.calls >= self.max_calls:
                return None
            self.calls += 1

        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": "You compare code entities."},
                {"role": "user", "content": self._prompt(a, b)},
            ],
            "temperature": 0,
            "stream": False,
        }
        try:
            response = requests.post(f"{self.base_url}/chat/completions",
                                     headers=self._headers(), json=payload,
                                     timeout=self.timeout)
            response.raise_for_status()
            content = response.json()["choices"][0]["message"]["content"]
        except (requests.exceptions.RequestException, KeyError, IndexError, ValueError) as exc:
            self.logger.warning("Semantic matcher unavailable for %s / %s: %s", a.name, b.name, exc)
            return None

        m = _FLOAT_RE.search(str(content))
        if not m:
            self.logger.debug("Unparseable matcher answer: %r", content)
            return None
        return float(m.group(1))


def build_matcher(config: Config, logger: Optional[logging.Logger] = None) -> FuzzyMatcher:
    """Return an :class:`HttpFuzzyMatcher` when an endpoint is configured, else the null matcher."""
    if config.MATCHER_URL:
        return HttpFuzzyMatcher(
            config.MATCHER_URL,
            api_key=config.MATCHER_API_KEY,
            model=config.MATCHER_MODEL,
            max_calls=config.MATCHER_MAX_CALLS,
            logger=logger,
        )
    return NullFuzzyMatcher()
