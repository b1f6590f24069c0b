"""
Cooperative cancellation for long-running extraction and import runs.
"""

from __future__ import annotations

import threading

from .errors import OperationCancelled


class CancellationToken:
    """
    Thread-safe flag checked at checkpoints between extractors and between
    import batches. Work in progress at the time of :meth:`cancel` is never
    interrupted; the run stops at the next checkpoint.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason = ""

    def cancel(self, reason: str = "cancelled") -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, checkpoint: str = "") -> None:
        """Raise :class:`OperationCancelled` if :meth:`cancel` was called."""
        if self._event.is_set():
            where = f" at {checkpoint}" if checkpoint else ""
            raise OperationCancelled(f"Operation cancelled{where}: {self.reason}")


def check(token: "CancellationToken | None", checkpoint: str = "") -> None:
    """Checkpoint helper accepting an optional token."""
    if token is not None:
        token.raise_if_cancelled(checkpoint)
