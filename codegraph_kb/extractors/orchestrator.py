"""
Extraction orchestrator.

Runs the selected extractors concurrently on a bounded worker pool,
isolates per-extractor failures, waits for every extractor to finish and
only then hands the results to the correlation pass.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional, Protocol

from ..cancellation import CancellationToken, check
from ..config import Config
from ..errors import OperationCancelled
from ..graph.model import ExtractionResult, GraphNode, GraphRelationship, merge_by_id
from .base import BaseExtractor
from .registry import EXTRACTOR_REGISTRY, ExtractorKind, resolve_kinds


class Correlator(Protocol):
    def analyze(self, results: list[ExtractionResult]) -> list[GraphRelationship]:
        ...


@dataclass
class ExtractorOutcome:
    """Success / failure record for one extractor in a run."""
    name: str
    success: bool
    error: str = ""
    node_count: int = 0
    relationship_count: int = 0
    source_count: int = 0
    elapsed_seconds: float = 0.0

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "success": self.success,
            "error": self.error,
            "node_count": self.node_count,
            "relationship_count": self.relationship_count,
            "source_count": self.source_count,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
        }


@dataclass
class OrchestrationResult:
    """Union of everything the successful extractors produced, plus the failure map."""
    results: list[ExtractionResult] = field(default_factory=list)
    outcomes: dict[str, ExtractorOutcome] = field(default_factory=dict)
    nodes: list[GraphNode] = field(default_factory=list)
    relationships: list[GraphRelationship] = field(default_factory=list)
    correlated: int = 0
    elapsed_seconds: float = 0.0

    @property
    def succeeded(self) -> list[str]:
        return [name for name, o in self.outcomes.items() if o.success]

    @property
    def failed(self) -> list[str]:
        return [name for name, o in self.outcomes.items() if not o.success]

    @property
    def all_failed(self) -> bool:
        return bool(self.outcomes) and not self.succeeded


class ExtractionOrchestrator:
    """
    Runs extractors and merges their output.

    Parameters
    ----------
    working_dir:
        Root of the source tree.
    config:
        Shared configuration; ``MAX_WORKERS`` bounds the pool.
    correlator:
        Optional post-pass (e.g. :class:`~codegraph_kb.correlation.CorrelationAnalyzer`)
        invoked once all extractors have completed.
    logger:
        Injected logger, also handed to every extractor.
    extractor_factory:
        Override for building extractor instances (mainly for tests).
    """

    def __init__(
        self,
        working_dir: Optional[str] = None,
        config: Optional[Config] = None,
        correlator: Optional[Correlator] = None,
        logger: Optional[logging.Logger] = None,
        extractor_factory: Optional[Callable[[ExtractorKind], BaseExtractor]] = None,
    ) -> None:
        self.working_dir = working_dir
        self.config = config or Config()
        self.correlator = correlator
        self.logger = logger or logging.getLogger(__name__)
        self._factory = extractor_factory or self._default_factory

    def _default_factory(self, kind: ExtractorKind) -> BaseExtractor:
        return EXTRACTOR_REGISTRY[kind](self.working_dir, self.config, self.logger)

    def run(
        self,
        kinds: Iterable[ExtractorKind] | str = "all",
        cancel_token: Optional[CancellationToken] = None,
        progress_callback: Optional[Callable[[ExtractorOutcome], None]] = None,
    ) -> OrchestrationResult:
        """
        Run the selected extractors and the correlation pass.

        Parameters
        ----------
        kinds:
            Extractor kinds, or a comma-separated string (``"all"`` included).
        cancel_token:
            Checked before each extractor starts and before correlation.
        progress_callback:
            Called with each :class:`ExtractorOutcome` as extractors finish.

        Returns
        -------
        OrchestrationResult

        Raises
        ------
        ConfigError
            For unknown extractor names (before anything runs).
        OperationCancelled
            If the token was cancelled at a checkpoint.
        """
        if isinstance(kinds, str):
            kinds = resolve_kinds(kinds)
        kinds = list(kinds)
        start = time.perf_counter()
        outcome = OrchestrationResult()
        check(cancel_token, "start of extraction")

        workers = max(1, min(self.config.MAX_WORKERS, len(kinds) or 1))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="extractor") as pool:
            futures = {
                pool.submit(self._run_one, kind, cancel_token): kind
                for kind in kinds
            }
            # Join barrier: every future completes before correlation starts.
            for future in as_completed(futures):
                kind = futures[future]
                result, record = future.result()
                outcome.outcomes[kind.value] = record
                if result is not None:
                    outcome.results.append(result)
                if progress_callback:
                    progress_callback(record)

        # Keep registry order regardless of completion order
        order = {k.value: i for i, k in enumerate(kinds)}
        outcome.results.sort(key=lambda r: order.get(r.extractor_name, len(order)))
        outcome.outcomes = dict(sorted(outcome.outcomes.items(), key=lambda kv: order.get(kv[0], 0)))

        if cancel_token is not None and cancel_token.cancelled:
            raise OperationCancelled(f"Extraction cancelled: {cancel_token.reason}")

        outcome.nodes = merge_by_id(n for r in outcome.results for n in r.nodes)
        relationships = [rel for r in outcome.results for rel in r.relationships]

        if self.correlator is not None and outcome.results:
            check(cancel_token, "correlation")
            inferred = self.correlator.analyze(outcome.results)
            outcome.correlated = len(inferred)
            relationships.extend(inferred)
        outcome.relationships = merge_by_id(relationships)
        outcome.elapsed_seconds = time.perf_counter() - start

        for name in outcome.failed:
            self.logger.warning("Extractor %s failed: %s", name, outcome.outcomes[name].error)
        self.logger.info(
            "Extraction finished: %d nodes, %d relationships (%d correlated), "
            "%d/%d extractors succeeded in %.2fs",
            len(outcome.nodes), len(outcome.relationships), outcome.correlated,
            len(outcome.succeeded), len(outcome.outcomes), outcome.elapsed_seconds,
        )
        return outcome

    def _run_one(
        self,
        kind: ExtractorKind,
        cancel_token: Optional[CancellationToken],
    ) -> tuple[Optional[ExtractionResult], ExtractorOutcome]:
        """Run one extractor, converting any exception into a failed outcome."""
        start = time.perf_counter()
        try:
            check(cancel_token, f"extractor {kind.value}")
            extractor = self._factory(kind)
            result = extractor.extract()
            result.extractor_name = kind.value
        except OperationCancelled as exc:
            return None, ExtractorOutcome(kind.value, False, error=str(exc),
                                          elapsed_seconds=time.perf_counter() - start)
        except Exception as exc:
            self.logger.debug("Extractor %s raised", kind.value, exc_info=True)
            return None, ExtractorOutcome(
                kind.value, False, error=f"{type(exc).__name__}: {exc}",
                elapsed_seconds=time.perf_counter() - start,
            )
        return result, ExtractorOutcome(
            kind.value, True,
            node_count=result.node_count,
            relationship_count=result.relationship_count,
            source_count=result.source_count,
            elapsed_seconds=result.elapsed_seconds,
        )
