"""
codegraph_kb: code knowledge graph.

Mines a source tree for packages, schemas, functions, imports and documents,
correlates them across extractors, persists the graph idempotently and
answers ranked, intent-aware queries::

    from codegraph_kb import Config, ExtractionOrchestrator, CorrelationAnalyzer

    config = Config.load()
    result = ExtractionOrchestrator(".", config, CorrelationAnalyzer(config)).run("all")
"""

from .config import Config
from .correlation import CorrelationAnalyzer
from .extractors.orchestrator import ExtractionOrchestrator

__version__ = "0.1.0"

__all__ = ["Config", "CorrelationAnalyzer", "ExtractionOrchestrator"]
