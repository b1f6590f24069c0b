"""
Watch mode: re-run extraction when source files change.

Uses watchdog to monitor the working directory. Bursts of events (editor
auto-saves, branch switches) are coalesced: a re-run starts once no
relevant event has arrived for ``debounce_seconds``.
"""

from __future__ import annotations

import logging
import os
import threading
from typing import Callable, Optional

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .extractors.document import DOC_EXTENSIONS
from .extractors.parser import EXTENSION_TO_LANGUAGE
from .extractors.schema import SCHEMA_EXTENSIONS
from .extractors.walker import SKIP_DIRS

logger = logging.getLogger(__name__)

WATCHED_EXTENSIONS = frozenset(EXTENSION_TO_LANGUAGE) | frozenset(DOC_EXTENSIONS) | frozenset(SCHEMA_EXTENSIONS)
WATCHED_FILENAMES = frozenset({"package.json", "pyproject.toml"})


class ExtractionEventHandler(FileSystemEventHandler):
    """
    Collects relevant file events and fires *on_batch* after a quiet period.

    Parameters
    ----------
    on_batch:
        Called with the sorted list of changed project-relative paths.
    project_root:
        Absolute path used to compute relative paths.
    debounce_seconds:
        Quiet period before a batch is flushed.
    """

    def __init__(
        self,
        on_batch: Callable[[list[str]], None],
        project_root: str,
        debounce_seconds: float = 1.0,
    ) -> None:
        super().__init__()
        self._on_batch = on_batch
        self._project_root = os.path.abspath(project_root)
        self._debounce = debounce_seconds
        self._pending: set[str] = set()
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Watchdog event dispatch
    # ------------------------------------------------------------------

    def on_modified(self, event) -> None:
        if not event.is_directory:
            self._record(event.src_path)

    def on_created(self, event) -> None:
        if not event.is_directory:
            self._record(event.src_path)

    def on_deleted(self, event) -> None:
        if not event.is_directory:
            self._record(event.src_path)

    def on_moved(self, event) -> None:
        if not event.is_directory:
            self._record(event.src_path)
            self._record(event.dest_path)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def should_ignore(self, abs_path: str) -> bool:
        """Return True if a change to *abs_path* cannot affect the graph."""
        name = os.path.basename(abs_path)
        ext = os.path.splitext(name)[1].lower()
        if name not in WATCHED_FILENAMES and ext not in WATCHED_EXTENSIONS:
            return True
        try:
            rel = os.path.relpath(abs_path, self._project_root)
        except ValueError:
            return True
        parts = rel.replace("\\", "/").split("/")
        if parts[0] == "..":
            return True
        return any(p in SKIP_DIRS or (p.startswith(".") and p not in (".", "..")) for p in parts[:-1])

    def _record(self, abs_path) -> None:
        abs_path = os.fsdecode(abs_path)
        if self.should_ignore(abs_path):
            return
        rel = os.path.relpath(abs_path, self._project_root).replace("\\", "/")
        with self._lock:
            self._pending.add(rel)
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self._debounce, self.flush)
            self._timer.daemon = True
            self._timer.start()

    def flush(self) -> None:
        """Deliver pending changes now, if any."""
        with self._lock:
            changed = sorted(self._pending)
            self._pending.clear()
            self._timer = None
        if not changed:
            return
        logger.info("[watch] %d file(s) changed; re-running extraction", len(changed))
        try:
            self._on_batch(changed)
        except Exception as exc:
            logger.warning("[watch] Re-run failed: %s", exc)

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._pending.clear()


class ExtractionWatcher:
    """
    Monitors a working directory and re-runs extraction on change.

    Usage::

        watcher = ExtractionWatcher(rerun, working_dir="/path/to/repo")
        watcher.start()   # blocks until Ctrl+C or stop()

    Parameters
    ----------
    on_change:
        Called with the list of changed relative paths after each quiet period.
    working_dir:
        Directory to watch (recursively).
    debounce_seconds:
        Quiet period before a re-run.
    """

    def __init__(
        self,
        on_change: Callable[[list[str]], None],
        working_dir: str,
        debounce_seconds: float = 1.0,
    ) -> None:
        self._working_dir = os.path.abspath(working_dir)
        self._handler = ExtractionEventHandler(on_change, self._working_dir, debounce_seconds)
        self._observer: Optional[Observer] = None
        self._stopped = threading.Event()

    @property
    def handler(self) -> ExtractionEventHandler:
        return self._handler

    def start(self) -> None:
        """Start watching. Blocks until :meth:`stop` is called or Ctrl+C."""
        observer = Observer()
        observer.schedule(self._handler, self._working_dir, recursive=True)
        observer.start()
        self._observer = observer
        logger.info("[watch] Watching %s", self._working_dir)
        try:
            while observer.is_alive() and not self._stopped.is_set():
                observer.join(timeout=1)
        except KeyboardInterrupt:
            pass
        finally:
            self._shutdown()

    def stop(self) -> None:
        self._stopped.set()
        self._shutdown()

    def _shutdown(self) -> None:
        self._handler.cancel()
        observer, self._observer = self._observer, None
        if observer is not None:
            observer.stop()
            observer.join()
            logger.info("[watch] Stopped")
