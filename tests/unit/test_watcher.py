"""
Unit tests for the change watcher.

Tests cover:
- Debounce coalescing and cancellation
- watchdog event mapping
- Ignore and binary filtering
- Ignore file hot reload
- Initial scan
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Callable

import pytest
from watchdog.events import (
    DirCreatedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)

from vecsync.config import IndexingConfig
from vecsync.indexing.ignore_rules import IgnoreRuleSet
from vecsync.indexing.watcher import (
    ChangeWatcher,
    Debouncer,
    _WatchdogBridge,
    walk_project,
)
from vecsync.models import EventType, FileEvent


async def _wait_for(condition: Callable[[], bool], timeout: float = 3.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not condition():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.02)


# ==============================================================================
# Debouncer
# ==============================================================================

class TestDebouncer:
    """Tests for per-path debounce timers."""

    @pytest.mark.asyncio
    async def test_burst_coalesced(self):
        """Test change, change, change fires once with the last type."""
        fired: list[tuple[str, EventType]] = []
        debouncer = Debouncer(
            asyncio.get_running_loop(), 0.03, lambda p, t: fired.append((p, t))
        )

        debouncer.schedule("/p/a.ts", EventType.CHANGE)
        debouncer.schedule("/p/a.ts", EventType.CHANGE)
        debouncer.schedule("/p/a.ts", EventType.CHANGE)
        assert debouncer.pending_count == 1

        await asyncio.sleep(0.1)

        assert fired == [("/p/a.ts", EventType.CHANGE)]
        assert debouncer.pending_count == 0

    @pytest.mark.asyncio
    async def test_last_type_wins(self):
        """Test a later event overwrites the pending type."""
        fired: list[tuple[str, EventType]] = []
        debouncer = Debouncer(
            asyncio.get_running_loop(), 0.03, lambda p, t: fired.append((p, t))
        )

        debouncer.schedule("/p/a.ts", EventType.ADD)
        debouncer.schedule("/p/a.ts", EventType.UNLINK)
        assert debouncer.get("/p/a.ts").event_type == EventType.UNLINK

        await asyncio.sleep(0.1)

        assert fired == [("/p/a.ts", EventType.UNLINK)]

    @pytest.mark.asyncio
    async def test_paths_independent(self):
        """Test each path has its own timer."""
        fired: list[str] = []
        debouncer = Debouncer(asyncio.get_running_loop(), 0.03, lambda p, t: fired.append(p))

        debouncer.schedule("/p/a.ts", EventType.ADD)
        debouncer.schedule("/p/b.ts", EventType.ADD)

        await asyncio.sleep(0.1)

        assert sorted(fired) == ["/p/a.ts", "/p/b.ts"]

    @pytest.mark.asyncio
    async def test_cancel_all(self):
        """Test cancelled timers never fire."""
        fired: list[str] = []
        debouncer = Debouncer(asyncio.get_running_loop(), 0.03, lambda p, t: fired.append(p))

        debouncer.schedule("/p/a.ts", EventType.ADD)
        debouncer.schedule("/p/b.ts", EventType.ADD)

        assert debouncer.cancel_all() == 2
        await asyncio.sleep(0.1)

        assert fired == []


# ==============================================================================
# watchdog bridge
# ==============================================================================

class TestWatchdogBridge:
    """Tests for mapping watchdog events to file events."""

    @pytest.mark.asyncio
    async def test_event_mapping(self):
        """Test created/modified/deleted/moved map to add/change/unlink."""
        received: list[tuple[str, EventType]] = []
        bridge = _WatchdogBridge(
            asyncio.get_running_loop(), lambda p, t: received.append((p, t))
        )

        bridge.on_created(FileCreatedEvent("/p/new.ts"))
        bridge.on_modified(FileModifiedEvent("/p/edit.ts"))
        bridge.on_deleted(FileDeletedEvent("/p/old.ts"))
        bridge.on_moved(FileMovedEvent("/p/from.ts", "/p/to.ts"))
        await asyncio.sleep(0.01)

        assert received == [
            ("/p/new.ts", EventType.ADD),
            ("/p/edit.ts", EventType.CHANGE),
            ("/p/old.ts", EventType.UNLINK),
            ("/p/from.ts", EventType.UNLINK),
            ("/p/to.ts", EventType.ADD),
        ]

    @pytest.mark.asyncio
    async def test_directory_events_dropped(self):
        """Test directory events produce nothing."""
        received: list[tuple[str, EventType]] = []
        bridge = _WatchdogBridge(
            asyncio.get_running_loop(), lambda p, t: received.append((p, t))
        )

        bridge.on_created(DirCreatedEvent("/p/src"))
        await asyncio.sleep(0.01)

        assert received == []


# ==============================================================================
# ChangeWatcher
# ==============================================================================

@pytest.fixture
def events() -> list[FileEvent]:
    return []


@pytest.fixture
async def watcher(test_config, events):
    """A started watcher with no initial scan."""
    watcher = ChangeWatcher(test_config, "demo", on_event=events.append)
    await watcher.start(initial_scan=False)
    yield watcher
    await watcher.stop()


class TestChangeWatcher:
    """Tests for filtering, debouncing and lifecycle."""

    @pytest.mark.asyncio
    async def test_burst_delivers_one_event(self, watcher, events, temp_dir):
        """Test rapid changes to one path produce one event."""
        path = str(temp_dir / "src" / "app.ts")

        for _ in range(3):
            watcher.handle_event(path, EventType.CHANGE)

        await _wait_for(lambda: len(events) >= 1)
        await asyncio.sleep(0.1)

        assert events == [FileEvent(type=EventType.CHANGE, path=path, project="demo")]

    @pytest.mark.asyncio
    async def test_ignored_path_dropped(self, watcher, events, temp_dir):
        """Test default-ignored paths are never scheduled."""
        watcher.handle_event(str(temp_dir / "node_modules" / "x" / "index.js"), EventType.ADD)

        assert watcher.pending_count == 0

    @pytest.mark.asyncio
    async def test_binary_extension_dropped(self, watcher, temp_dir):
        """Test binary files are filtered before debouncing."""
        watcher.handle_event(str(temp_dir / "photo.png"), EventType.ADD)

        assert watcher.pending_count == 0

    @pytest.mark.asyncio
    async def test_stop_cancels_pending(self, test_config, events, temp_dir):
        """Test stop() cancels timers so nothing fires afterwards."""
        watcher = ChangeWatcher(test_config, "demo", on_event=events.append)
        await watcher.start(initial_scan=False)

        watcher.handle_event(str(temp_dir / "a.ts"), EventType.ADD)
        assert watcher.pending_count == 1
        await watcher.stop()
        await asyncio.sleep(0.15)

        assert events == []
        assert not watcher.running

    @pytest.mark.asyncio
    async def test_ignore_file_reload(self, test_config, temp_dir):
        """Test editing the override file swaps rules and notifies."""
        events: list[FileEvent] = []
        reloads: list[IgnoreRuleSet] = []
        watcher = ChangeWatcher(
            test_config,
            "demo",
            on_event=events.append,
            on_ignore_change=reloads.append,
        )
        await watcher.start(initial_scan=False)
        try:
            before = watcher.rules
            assert not before.is_ignored("generated/schema.ts")

            override = temp_dir / ".vecsyncignore"
            override.write_text("generated/\n")
            watcher.handle_event(str(override), EventType.CHANGE)

            await _wait_for(lambda: len(reloads) >= 1)

            assert watcher.rules is not before
            assert watcher.rules.is_ignored("generated/schema.ts")
            assert reloads[-1] is watcher.rules
            assert all(e.path != str(override) for e in events)
        finally:
            await watcher.stop()

    @pytest.mark.asyncio
    async def test_callback_errors_reported(self, test_config, temp_dir):
        """Test a failing on_event goes to on_error and the watcher keeps going."""
        errors: list[BaseException] = []
        calls: list[FileEvent] = []

        async def on_event(event: FileEvent) -> None:
            calls.append(event)
            if len(calls) == 1:
                raise RuntimeError("handler bug")

        watcher = ChangeWatcher(test_config, "demo", on_event=on_event, on_error=errors.append)
        await watcher.start(initial_scan=False)
        try:
            watcher.handle_event(str(temp_dir / "a.ts"), EventType.ADD)
            await _wait_for(lambda: len(errors) == 1)
            watcher.handle_event(str(temp_dir / "b.ts"), EventType.ADD)
            await _wait_for(lambda: len(calls) == 2)
        finally:
            await watcher.stop()

        assert isinstance(errors[0], RuntimeError)

    @pytest.mark.asyncio
    async def test_initial_scan(self, test_config, sample_project, temp_dir):
        """Test the initial scan emits ADD for eligible files only."""
        events: list[FileEvent] = []
        watcher = ChangeWatcher(test_config, "demo", on_event=events.append)
        await watcher.start(initial_scan=True)
        try:
            await _wait_for(lambda: len(events) >= 2)
            await asyncio.sleep(0.1)
        finally:
            await watcher.stop()

        paths = {e.path for e in events}
        assert str(sample_project["app"]) in paths
        assert str(sample_project["readme"]) in paths
        assert str(sample_project["dependency"]) not in paths
        assert str(sample_project["logo"]) not in paths
        assert all(e.type == EventType.ADD for e in events if e.path in {
            str(sample_project["app"]), str(sample_project["readme"])
        })

    @pytest.mark.asyncio
    async def test_initial_scan_skips_ignore_files(self, test_config, sample_project, temp_dir):
        """Test existing ignore files are neither emitted nor trigger a reload."""
        (temp_dir / ".gitignore").write_text("*.tmp\n")
        (temp_dir / ".vecsyncignore").write_text("generated/\n")
        events: list[FileEvent] = []
        reloads: list[IgnoreRuleSet] = []
        watcher = ChangeWatcher(
            test_config, "demo", on_event=events.append, on_ignore_change=reloads.append
        )
        await watcher.start(initial_scan=True)
        try:
            await _wait_for(lambda: len(events) >= 2)
            await asyncio.sleep(0.15)
        finally:
            await watcher.stop()

        paths = {e.path for e in events}
        assert str(temp_dir / ".gitignore") not in paths
        assert str(temp_dir / ".vecsyncignore") not in paths
        assert reloads == []

    @pytest.mark.asyncio
    async def test_stop_waits_for_running_reload(self, test_config, temp_dir):
        """Test stop() lets an in-flight ignore-change callback finish."""
        started = asyncio.Event()
        finished: list[bool] = []

        async def slow_cleanup(rules: IgnoreRuleSet) -> None:
            started.set()
            await asyncio.sleep(0.2)
            finished.append(True)

        watcher = ChangeWatcher(
            test_config, "demo", on_event=lambda e: None, on_ignore_change=slow_cleanup
        )
        await watcher.start(initial_scan=False)
        watcher.handle_event(str(temp_dir / ".vecsyncignore"), EventType.CHANGE)
        await asyncio.wait_for(started.wait(), timeout=2)

        await watcher.stop()

        assert finished == [True]

    @pytest.mark.asyncio
    async def test_stop_cancels_after_timeout(self, test_config, temp_dir):
        """Test a stuck callback is cancelled once the shutdown timeout passes."""
        config = test_config.model_copy(
            update={"indexing": IndexingConfig(shutdown_timeout_seconds=0.05)}
        )
        started = asyncio.Event()
        finished: list[bool] = []

        async def stuck_cleanup(rules: IgnoreRuleSet) -> None:
            started.set()
            await asyncio.sleep(10)
            finished.append(True)

        watcher = ChangeWatcher(
            config, "demo", on_event=lambda e: None, on_ignore_change=stuck_cleanup
        )
        await watcher.start(initial_scan=False)
        watcher.handle_event(str(temp_dir / ".vecsyncignore"), EventType.CHANGE)
        await asyncio.wait_for(started.wait(), timeout=2)

        await asyncio.wait_for(watcher.stop(), timeout=2)

        assert finished == []

    @pytest.mark.asyncio
    async def test_real_file_change(self, watcher, events, temp_dir):
        """Test an on-disk write reaches on_event through watchdog."""
        path = temp_dir / "live.ts"
        path.write_text("export const live = true;\n")

        await _wait_for(lambda: any(e.path == str(path) for e in events), timeout=5.0)

        event = next(e for e in events if e.path == str(path))
        assert event.type in (EventType.ADD, EventType.CHANGE)


class TestWalkProject:
    """Tests for the project tree walk."""

    def test_prunes_ignored_dirs(self, sample_project, temp_dir):
        """Test ignored directories and binaries are excluded."""
        rules = IgnoreRuleSet(patterns=("node_modules",))

        found = set(walk_project(temp_dir, rules))

        assert found == {str(sample_project["app"]), str(sample_project["readme"])}

    def test_negation_reaches_into_ignored_dir(self, temp_dir: Path):
        """Test a re-included file inside an ignored directory is found."""
        (temp_dir / "dist").mkdir()
        (temp_dir / "dist" / "app.js").write_text("x")
        (temp_dir / "dist" / "keep.ts").write_text("y")
        rules = IgnoreRuleSet(patterns=("dist", "!dist/keep.ts"))

        found = list(walk_project(temp_dir, rules))

        assert found == [str(temp_dir / "dist" / "keep.ts")]

    def test_ignore_files_not_yielded(self, temp_dir: Path):
        """Test ignore files are left out of the walk."""
        (temp_dir / ".gitignore").write_text("*.tmp\n")
        (temp_dir / ".custom-ignore").write_text("x\n")
        (temp_dir / "main.py").write_text("print()\n")
        rules = IgnoreRuleSet(patterns=())

        found = list(walk_project(temp_dir, rules, (".gitignore", ".custom-ignore")))

        assert found == [str(temp_dir / "main.py")]
