"""
Exception hierarchy shared by the extraction, storage and query layers.
"""


class CodeGraphError(Exception):
    """Base class for all codegraph_kb errors."""


class ConfigError(CodeGraphError):
    """Raised for invalid configuration: bad extractor name, output format or credentials."""


class ExtractionError(CodeGraphError):
    """Raised when an extractor cannot complete as a whole."""


class GraphStoreError(CodeGraphError):
    """Raised when the graph backend is unreachable or a transaction fails."""


class OperationCancelled(CodeGraphError):
    """Raised at a checkpoint after a cancellation was requested."""
