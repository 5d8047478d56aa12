"""Tests for change detection and dispatch.

Covers:
- PollingChangeSource scan semantics (first scan, unchanged, modified, new)
- Debounce coalescing of bursts into one pass
- Self-write suppression within the quiet window
- Supersession of in-flight passes by newer events
- Failure isolation of individual passes
"""

from __future__ import annotations

import asyncio
import logging
import threading
from pathlib import Path

from poolman.sync.dispatcher import ChangeDispatcher, PollingChangeSource
from poolman.sync.models import PassAction, PassResult

# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeService:
    """Records reconcile_file calls instead of touching any files."""

    def __init__(self, error: Exception | None = None) -> None:
        self.on_write = None
        self.calls: list[Path] = []
        self.error = error

    def reconcile_file(self, path, is_current=lambda: True) -> PassResult:
        self.calls.append(path)
        if self.error is not None:
            raise self.error
        return PassResult(path=str(path), action=PassAction.UNCHANGED)


class BlockingService(FakeService):
    """Blocks inside the first pass until released."""

    def __init__(self) -> None:
        super().__init__()
        self.started = threading.Event()
        self.release = threading.Event()
        self.currency: list[bool] = []

    def reconcile_file(self, path, is_current=lambda: True) -> PassResult:
        self.calls.append(path)
        if len(self.calls) == 1:
            self.started.set()
            self.release.wait(timeout=5)
        self.currency.append(is_current())
        return PassResult(path=str(path), action=PassAction.UNCHANGED)


# ---------------------------------------------------------------------------
# PollingChangeSource
# ---------------------------------------------------------------------------


class TestPollingChangeSource:
    """Tests for PollingChangeSource.scan()/changes()."""

    def test_first_scan_reports_all_profiles(self, tmp_path: Path):
        (tmp_path / "b.json").write_text("{}")
        (tmp_path / "a.json").write_text("{}")
        (tmp_path / "notes.txt").write_text("x")
        (tmp_path / ".tmp123.json").write_text("{}")

        source = PollingChangeSource(tmp_path)

        assert source.scan() == [tmp_path / "a.json", tmp_path / "b.json"]

    def test_unchanged_files_not_reported(self, tmp_path: Path):
        (tmp_path / "a.json").write_text("{}")
        source = PollingChangeSource(tmp_path)
        source.scan()
        assert source.scan() == []

    def test_modified_file_reported(self, tmp_path: Path):
        path = tmp_path / "a.json"
        path.write_text("{}")
        source = PollingChangeSource(tmp_path)
        source.scan()

        path.write_text('{"name": "PLA"}')

        assert source.scan() == [path]

    def test_new_file_reported(self, tmp_path: Path):
        (tmp_path / "a.json").write_text("{}")
        source = PollingChangeSource(tmp_path)
        source.scan()

        (tmp_path / "c.json").write_text("{}")

        assert source.scan() == [tmp_path / "c.json"]

    def test_missing_directory(self, tmp_path: Path, caplog):
        source = PollingChangeSource(tmp_path / "missing")
        with caplog.at_level(logging.WARNING):
            assert source.scan() == []
        assert "Filament directory missing" in caplog.text

    async def test_changes_yields_paths(self, tmp_path: Path):
        (tmp_path / "a.json").write_text("{}")
        source = PollingChangeSource(tmp_path)

        stream = source.changes(0.01)
        try:
            first = await asyncio.wait_for(stream.__anext__(), timeout=5)
        finally:
            await stream.aclose()

        assert first == tmp_path / "a.json"


# ---------------------------------------------------------------------------
# ChangeDispatcher
# ---------------------------------------------------------------------------


class TestChangeDispatcher:
    """Tests for ChangeDispatcher."""

    def test_registers_write_callback(self):
        service = FakeService()
        dispatcher = ChangeDispatcher(service)
        assert service.on_write == dispatcher.record_self_write

    async def test_burst_coalesces_into_one_pass(self, tmp_path: Path):
        service = FakeService()
        dispatcher = ChangeDispatcher(service, debounce=0.05)
        path = tmp_path / "a.json"

        for _ in range(3):
            dispatcher.notify(path)
        await dispatcher.drain()

        assert service.calls == [path]
        assert dispatcher.last_results[path].action == PassAction.UNCHANGED

    async def test_distinct_paths_each_reconciled(self, tmp_path: Path):
        service = FakeService()
        dispatcher = ChangeDispatcher(service, debounce=0.01)

        dispatcher.notify(tmp_path / "a.json")
        dispatcher.notify(tmp_path / "b.json")
        await dispatcher.drain()

        assert sorted(service.calls) == [
            tmp_path / "a.json",
            tmp_path / "b.json",
        ]

    async def test_run_consumes_source(self, tmp_path: Path):
        service = FakeService()
        dispatcher = ChangeDispatcher(service, debounce=0.01)

        async def source():
            yield tmp_path / "a.json"
            yield tmp_path / "b.json"

        await dispatcher.run(source())
        await dispatcher.drain()

        assert len(service.calls) == 2

    async def test_self_write_suppressed(self, tmp_path: Path):
        service = FakeService()
        dispatcher = ChangeDispatcher(service, debounce=0.01)
        path = tmp_path / "a.json"
        path.write_bytes(b"{}\n")

        dispatcher.record_self_write(path, b"{}\n")
        dispatcher.notify(path)
        await dispatcher.drain()

        assert service.calls == []

    async def test_foreign_write_after_self_write(self, tmp_path: Path):
        service = FakeService()
        dispatcher = ChangeDispatcher(service, debounce=0.01)
        path = tmp_path / "a.json"

        dispatcher.record_self_write(path, b"{}\n")
        path.write_bytes(b'{"name": "edited"}\n')
        dispatcher.notify(path)
        await dispatcher.drain()

        assert service.calls == [path]

    async def test_quiet_window_expires(self, tmp_path: Path):
        now = [100.0]
        service = FakeService()
        dispatcher = ChangeDispatcher(
            service, debounce=0.01, quiet_window=2.0, clock=lambda: now[0]
        )
        path = tmp_path / "a.json"
        path.write_bytes(b"{}\n")

        dispatcher.record_self_write(path, b"{}\n")
        now[0] += 5
        dispatcher.notify(path)
        await dispatcher.drain()

        assert service.calls == [path]

    async def test_newer_event_supersedes_running_pass(self, tmp_path: Path):
        service = BlockingService()
        dispatcher = ChangeDispatcher(service, debounce=0.01)
        path = tmp_path / "a.json"

        dispatcher.notify(path)
        assert await asyncio.to_thread(service.started.wait, 5)
        dispatcher.notify(path)
        service.release.set()
        await dispatcher.drain()

        assert service.calls == [path, path]
        assert service.currency == [False, True]

    async def test_failed_pass_is_logged(self, tmp_path: Path, caplog):
        service = FakeService(error=RuntimeError("boom"))
        dispatcher = ChangeDispatcher(service, debounce=0.01)
        path = tmp_path / "a.json"

        with caplog.at_level(logging.ERROR):
            dispatcher.notify(path)
            await dispatcher.drain()

        assert path not in dispatcher.last_results
        assert "Reconciliation pass failed" in caplog.text
