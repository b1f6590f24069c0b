"""
Extractors: each one mines the source tree for one kind of fact.
"""

from .base import BaseExtractor
from .document import DocumentExtractor
from .function import FunctionExtractor
from .imports import ImportExtractor
from .package import PackageExtractor
from .registry import EXTRACTOR_REGISTRY, ExtractorKind, resolve_kinds
from .schema import SchemaExtractor

__all__ = [
    "BaseExtractor",
    "DocumentExtractor",
    "EXTRACTOR_REGISTRY",
    "ExtractorKind",
    "FunctionExtractor",
    "ImportExtractor",
    "PackageExtractor",
    "SchemaExtractor",
    "resolve_kinds",
]
