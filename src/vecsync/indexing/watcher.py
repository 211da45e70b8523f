"""
File system watcher with per-path debouncing.

watchdog delivers events on its observer thread; the bridge handler hops
each one onto the asyncio loop, where all debounce state lives. Each path
has at most one pending timer, and only the last event in a burst is
delivered.
"""

from __future__ import annotations

import asyncio
import inspect
import os
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Iterable, Iterator

import structlog
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from vecsync.indexing.classifier import is_binary_extension
from vecsync.indexing.ignore_rules import (
    DEFAULT_OVERRIDE_NAME,
    GITIGNORE_NAME,
    IgnoreRuleSet,
    load_ignore_rules,
)
from vecsync.models import EventType, FileEvent

if TYPE_CHECKING:
    from vecsync.config import Config

logger = structlog.get_logger(__name__)

EventCallback = Callable[[FileEvent], Any]
IgnoreChangeCallback = Callable[[IgnoreRuleSet], Any]
ErrorCallback = Callable[[BaseException], Any]


async def _maybe_await(value: Any) -> None:
    if inspect.isawaitable(value):
        await value


def _relative(path: str, root: str) -> str:
    return os.path.relpath(path, root).replace(os.sep, "/")


def walk_project(
    root: str | Path,
    rules: IgnoreRuleSet,
    ignore_file_names: Iterable[str] = (GITIGNORE_NAME, DEFAULT_OVERRIDE_NAME),
) -> Iterator[str]:
    """
    Yield absolute paths of indexable files under a project root.

    Ignored directories are pruned unless the rule set re-includes paths,
    in which case every file is checked on its own. Ignore files themselves
    are never yielded.
    """
    root = os.path.abspath(str(root))
    skip_names = frozenset(ignore_file_names)
    prune = not rules.has_negations

    for current, dirs, files in os.walk(root):
        if prune:
            dirs[:] = [
                d
                for d in dirs
                if not rules.is_ignored(_relative(os.path.join(current, d), root) + "/")
            ]
        dirs.sort()

        for name in sorted(files):
            if name in skip_names:
                continue
            path = os.path.join(current, name)
            if rules.is_ignored(_relative(path, root)):
                continue
            if is_binary_extension(path):
                continue
            yield path


@dataclass
class PendingEvent:
    """The latest event seen for a path, waiting out the quiet period."""

    path: str
    event_type: EventType
    timer: asyncio.TimerHandle


class Debouncer:
    """
    Per-path debounce timers.

    Must only be used from the event loop thread. A new event for a path
    cancels its pending timer and replaces the event type.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        delay_seconds: float,
        callback: Callable[[str, EventType], None],
    ) -> None:
        self._loop = loop
        self.delay_seconds = delay_seconds
        self._callback = callback
        self._pending: dict[str, PendingEvent] = {}

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def get(self, path: str) -> PendingEvent | None:
        return self._pending.get(path)

    def schedule(self, path: str, event_type: EventType) -> None:
        """Start or restart the quiet period for a path."""
        existing = self._pending.pop(path, None)
        if existing is not None:
            existing.timer.cancel()
            logger.debug(
                "Debounce reset",
                path=path,
                previous=existing.event_type.value,
                event_type=event_type.value,
            )

        timer = self._loop.call_later(self.delay_seconds, self._fire, path)
        self._pending[path] = PendingEvent(path=path, event_type=event_type, timer=timer)

    def _fire(self, path: str) -> None:
        pending = self._pending.pop(path, None)
        if pending is None:
            return
        self._callback(pending.path, pending.event_type)

    def cancel_all(self) -> int:
        """Cancel every pending timer. Returns how many were cancelled."""
        count = len(self._pending)
        for pending in self._pending.values():
            pending.timer.cancel()
        self._pending.clear()
        return count


class _WatchdogBridge(FileSystemEventHandler):
    """Forwards watchdog events from the observer thread to the loop."""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        sink: Callable[[str, EventType], None],
    ) -> None:
        super().__init__()
        self._loop = loop
        self._sink = sink

    def _forward(self, path: str | bytes, event_type: EventType) -> None:
        if self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._sink, os.fsdecode(path), event_type)

    def on_created(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self._forward(event.src_path, EventType.ADD)

    def on_modified(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self._forward(event.src_path, EventType.CHANGE)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self._forward(event.src_path, EventType.UNLINK)

    def on_moved(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self._forward(event.src_path, EventType.UNLINK)
        self._forward(event.dest_path, EventType.ADD)


class ChangeWatcher:
    """
    Watches one project tree and emits debounced file events.

    Features:
    - Ignore rules checked on every event, with hot reload
    - Extension-based binary filtering before debouncing
    - Optional initial scan that emits ADD for every eligible file
    - Callback failures reported to on_error, never raised into the loop
    """

    def __init__(
        self,
        config: "Config",
        project_name: str,
        on_event: EventCallback,
        on_ignore_change: IgnoreChangeCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> None:
        """
        Initialize the watcher.

        Args:
            config: vecsync configuration; project_root is the watched tree.
            project_name: Project the emitted events belong to.
            on_event: Called with each debounced FileEvent.
            on_ignore_change: Called with the new rule set after a reload.
            on_error: Called with exceptions raised by the callbacks.
        """
        self.config = config
        self.project_name = project_name
        self.root = os.path.abspath(str(config.project_root))
        self.on_event = on_event
        self.on_ignore_change = on_ignore_change
        self.on_error = on_error

        self.override_name = config.watcher.ignore_file_name
        self._ignore_files = {
            os.path.join(self.root, GITIGNORE_NAME),
            os.path.join(self.root, self.override_name),
        }

        self._rules = load_ignore_rules(Path(self.root), self.override_name)
        self._loop: asyncio.AbstractEventLoop | None = None
        self._debouncer: Debouncer | None = None
        self._observer: Any = None
        self._tasks: set[asyncio.Task[None]] = set()
        self._running = False

    @property
    def rules(self) -> IgnoreRuleSet:
        """The current ignore rule set."""
        return self._rules

    @property
    def running(self) -> bool:
        return self._running

    @property
    def pending_count(self) -> int:
        return self._debouncer.pending_count if self._debouncer else 0

    async def start(self, initial_scan: bool = True) -> None:
        """Start the observer and optionally queue every existing file."""
        if self._running:
            return

        logger.info(
            "Starting file watcher",
            path=self.root,
            project=self.project_name,
        )

        self._loop = asyncio.get_running_loop()
        self._debouncer = Debouncer(
            self._loop,
            self.config.watcher.debounce_ms / 1000.0,
            self._on_debounced,
        )

        handler = _WatchdogBridge(self._loop, self.handle_event)
        self._observer = Observer()
        self._observer.schedule(handler, self.root, recursive=True)
        self._observer.start()
        self._running = True

        logger.info("File watcher started", project=self.project_name)

        if initial_scan:
            await self.initial_scan()

    async def stop(self) -> None:
        """
        Cancel pending timers, stop the observer thread, then wait for
        callbacks already running, up to shutdown_timeout_seconds.
        """
        if not self._running:
            return

        logger.info("Stopping file watcher", project=self.project_name)
        self._running = False

        if self._debouncer is not None:
            cancelled = self._debouncer.cancel_all()
            if cancelled:
                logger.debug("Cancelled pending events", count=cancelled)

        if self._observer is not None:
            self._observer.stop()
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(
                None,
                self._observer.join,
                self.config.watcher.observer_join_timeout_seconds,
            )
            self._observer = None

        # In-flight emits and rule reloads (with their cleanup) get a bounded wait
        if self._tasks:
            timeout = self.config.indexing.shutdown_timeout_seconds
            _, still_running = await asyncio.wait(set(self._tasks), timeout=timeout)
            if still_running:
                logger.warning(
                    "Shutdown timeout; cancelling watcher tasks",
                    project=self.project_name,
                    pending=len(still_running),
                )
                for task in still_running:
                    task.cancel()
                await asyncio.gather(*still_running, return_exceptions=True)
        self._tasks.clear()

        logger.info("File watcher stopped", project=self.project_name)

    async def initial_scan(self) -> int:
        """
        Emit ADD for every eligible file currently in the tree.

        Returns:
            Number of files scheduled.
        """
        rules = self._rules
        loop = asyncio.get_running_loop()
        paths = await loop.run_in_executor(
            None,
            lambda: list(
                walk_project(self.root, rules, (GITIGNORE_NAME, self.override_name))
            ),
        )

        for path in paths:
            self.handle_event(path, EventType.ADD)

        logger.info("Initial scan complete", project=self.project_name, files=len(paths))
        return len(paths)

    def handle_event(self, path: str, event_type: EventType) -> None:
        """
        Filter a raw event and schedule it. Runs on the loop thread.

        Args:
            path: Absolute path from the observer.
            event_type: Mapped event type.
        """
        if self._debouncer is None or not self._running:
            return

        path = os.path.abspath(path)

        if path in self._ignore_files:
            self._debouncer.schedule(path, event_type)
            return

        relative = _relative(path, self.root)
        if self._rules.is_ignored(relative):
            logger.debug("Ignored path", path=relative)
            return

        if is_binary_extension(path):
            logger.debug("Skipped binary file", path=relative)
            return

        self._debouncer.schedule(path, event_type)

    def _on_debounced(self, path: str, event_type: EventType) -> None:
        if path in self._ignore_files:
            self._spawn(self._reload_rules())
            return

        event = FileEvent(type=event_type, path=path, project=self.project_name)
        self._spawn(self._emit(event))

    def _spawn(self, coro: Any) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _emit(self, event: FileEvent) -> None:
        try:
            await _maybe_await(self.on_event(event))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(
                "File event callback failed",
                path=event.path,
                event_type=event.type.value,
                error=str(e),
            )
            await self._report(e)

    async def _reload_rules(self) -> None:
        rules = load_ignore_rules(Path(self.root), self.override_name)
        self._rules = rules

        logger.info(
            "Reloaded ignore rules",
            project=self.project_name,
            patterns=len(rules.patterns),
            sources=list(rules.sources),
        )

        if self.on_ignore_change is None:
            return
        try:
            await _maybe_await(self.on_ignore_change(rules))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Ignore change callback failed", error=str(e))
            await self._report(e)

    async def _report(self, error: BaseException) -> None:
        if self.on_error is None:
            return
        try:
            await _maybe_await(self.on_error(error))
        except Exception:
            logger.exception("Watcher error callback failed")
