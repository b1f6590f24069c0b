"""
Unit tests for codegraph_kb.watcher

The event handler is driven with fake watchdog events; no observer thread
is started except in the stop() test.
"""

from __future__ import annotations

import os
import threading
from unittest.mock import MagicMock

import pytest

from codegraph_kb.watcher import ExtractionEventHandler, ExtractionWatcher


def _event(path, is_directory=False, dest=None):
    event = MagicMock()
    event.src_path = path
    event.is_directory = is_directory
    event.dest_path = dest
    return event


@pytest.fixture()
def batches():
    return []


@pytest.fixture()
def handler(tmp_path, batches):
    h = ExtractionEventHandler(batches.append, str(tmp_path), debounce_seconds=60)
    yield h
    h.cancel()


class TestShouldIgnore:
    @pytest.mark.parametrize("rel", [
        "packages/pkg-a/src/index.ts",
        "services/orders/models.py",
        "docs/guide.md",
        "packages/pkg-a/package.json",
    ])
    def test_relevant_files(self, handler, tmp_path, rel):
        assert not handler.should_ignore(str(tmp_path / rel))

    @pytest.mark.parametrize("rel", [
        "image.png",
        "node_modules/lodash/index.js",
        ".git/HEAD.md",
        ".codegraph/graph.pkl",
        "packages/.cache/a.ts",
    ])
    def test_irrelevant_files(self, handler, tmp_path, rel):
        assert handler.should_ignore(str(tmp_path / rel))

    def test_outside_project(self, handler, tmp_path):
        assert handler.should_ignore(os.path.join(str(tmp_path.parent), "other.ts"))


class TestDebounce:
    def test_events_coalesced_into_one_batch(self, handler, tmp_path, batches):
        handler.on_modified(_event(str(tmp_path / "a.ts")))
        handler.on_created(_event(str(tmp_path / "b.py")))
        handler.on_modified(_event(str(tmp_path / "a.ts")))
        handler.flush()
        assert batches == [["a.ts", "b.py"]]

    def test_directories_and_ignored_paths_skipped(self, handler, tmp_path, batches):
        handler.on_modified(_event(str(tmp_path / "src"), is_directory=True))
        handler.on_modified(_event(str(tmp_path / "logo.png")))
        handler.flush()
        assert batches == []

    def test_move_records_both_paths(self, handler, tmp_path, batches):
        handler.on_moved(_event(str(tmp_path / "old.md"), dest=str(tmp_path / "new.md")))
        handler.flush()
        assert batches == [["new.md", "old.md"]]

    def test_cancel_drops_pending(self, handler, tmp_path, batches):
        handler.on_deleted(_event(str(tmp_path / "a.ts")))
        handler.cancel()
        handler.flush()
        assert batches == []

    def test_timer_fires_after_quiet_period(self, tmp_path):
        fired = threading.Event()
        received = []

        def on_batch(changed):
            received.append(changed)
            fired.set()

        h = ExtractionEventHandler(on_batch, str(tmp_path), debounce_seconds=0.05)
        h.on_modified(_event(str(tmp_path / "a.ts")))
        assert fired.wait(5)
        assert received == [["a.ts"]]

    def test_callback_error_is_logged(self, tmp_path, caplog):
        h = ExtractionEventHandler(MagicMock(side_effect=RuntimeError("boom")), str(tmp_path),
                                   debounce_seconds=60)
        h.on_modified(_event(str(tmp_path / "a.ts")))
        h.flush()
        assert "Re-run failed: boom" in caplog.text


class TestExtractionWatcher:
    def test_stop_unblocks_start(self, tmp_path):
        watcher = ExtractionWatcher(lambda changed: None, str(tmp_path), debounce_seconds=0.05)
        thread = threading.Thread(target=watcher.start, daemon=True)
        thread.start()
        watcher.stop()
        thread.join(timeout=5)
        assert not thread.is_alive()

    def test_stop_before_start(self, tmp_path):
        ExtractionWatcher(lambda changed: None, str(tmp_path)).stop()
