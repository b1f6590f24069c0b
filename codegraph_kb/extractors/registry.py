"""
Extractor kinds and the registry mapping each kind to its implementation.
"""

from __future__ import annotations

from enum import Enum
from typing import Iterable, Union

from ..errors import ConfigError
from .base import BaseExtractor
from .document import DocumentExtractor
from .function import FunctionExtractor
from .imports import ImportExtractor
from .package import PackageExtractor
from .schema import SchemaExtractor


class ExtractorKind(str, Enum):
    PACKAGE = "package"
    SCHEMA = "schema"
    FUNCTION = "function"
    IMPORT = "import"
    DOCUMENT = "document"


EXTRACTOR_REGISTRY: dict[ExtractorKind, type[BaseExtractor]] = {
    ExtractorKind.PACKAGE: PackageExtractor,
    ExtractorKind.SCHEMA: SchemaExtractor,
    ExtractorKind.FUNCTION: FunctionExtractor,
    ExtractorKind.IMPORT: ImportExtractor,
    ExtractorKind.DOCUMENT: DocumentExtractor,
}

ALL = "all"


def resolve_kinds(spec: Union[str, Iterable[str]]) -> list[ExtractorKind]:
    """
    Turn a comma-separated list (or iterable) of names into extractor kinds.

    ``"all"`` expands to every registered kind in registry order. Duplicates
    are dropped, order is otherwise preserved.

    Raises
    ------
    ConfigError
        If a name is unknown or the selection is empty.
    """
    names = spec.split(",") if isinstance(spec, str) else list(spec)
    names = [n.strip().lower() for n in names if n and n.strip()]
    if not names:
        raise ConfigError("No extractors selected")

    kinds: list[ExtractorKind] = []
    for name in names:
        if name == ALL:
            candidates = list(EXTRACTOR_REGISTRY)
        else:
            try:
                candidates = [ExtractorKind(name)]
            except ValueError:
                valid = ", ".join([k.value for k in ExtractorKind] + [ALL])
                raise ConfigError(f"Unknown extractor '{name}'. Valid: {valid}") from None
        for kind in candidates:
            if kind not in kinds:
                kinds.append(kind)
    return kinds
