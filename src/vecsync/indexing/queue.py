"""
Bounded work queue between the watcher and the orchestrator.

Debounced events are submitted here and processed by a fixed pool of
worker tasks. Every event produces exactly one IndexResult on the result
channel; failures are additionally reported to the error callback.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import TYPE_CHECKING, Any, Awaitable, Callable

import structlog

from vecsync.errors import VecsyncError
from vecsync.models import FileEvent, IndexResult, IndexStatus

if TYPE_CHECKING:
    from vecsync.config import IndexingConfig

logger = structlog.get_logger(__name__)

EventHandler = Callable[[FileEvent], Awaitable[IndexResult]]
ResultCallback = Callable[[IndexResult], Any]
ErrorCallback = Callable[[FileEvent, BaseException], Any]


async def _maybe_await(value: Any) -> None:
    if inspect.isawaitable(value):
        await value


class IndexingQueue:
    """
    Fixed-size worker pool over a bounded asyncio.Queue.

    submit() blocks when the queue is full, which slows the producer down
    instead of dropping events.
    """

    def __init__(
        self,
        config: "IndexingConfig",
        handler: EventHandler,
        on_result: ResultCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> None:
        """
        Initialize the queue.

        Args:
            config: Indexing configuration (worker count, queue size, timeouts).
            handler: Coroutine applying one event, usually
                IndexingOrchestrator.on_file_event.
            on_result: Called with every IndexResult, successful or not.
            on_error: Called with the event and exception on failure.
        """
        self.config = config
        self.handler = handler
        self.on_result = on_result
        self.on_error = on_error

        self._queue: asyncio.Queue[FileEvent] = asyncio.Queue(maxsize=config.queue_size)
        self._workers: list[asyncio.Task[None]] = []
        self._accepting = False

    @property
    def running(self) -> bool:
        return bool(self._workers)

    @property
    def pending(self) -> int:
        """Events waiting for a worker."""
        return self._queue.qsize()

    def start(self) -> None:
        """Spawn the worker tasks."""
        if self._workers:
            return

        self._accepting = True
        for i in range(self.config.workers):
            task = asyncio.create_task(self._worker(i), name=f"vecsync-worker-{i}")
            self._workers.append(task)

        logger.info("Indexing queue started", workers=self.config.workers)

    async def submit(self, event: FileEvent) -> None:
        """
        Enqueue an event, waiting while the queue is full.

        Raises:
            RuntimeError: If the queue is not accepting events.
        """
        if not self._accepting:
            raise RuntimeError("Indexing queue is not running")
        await self._queue.put(event)

    async def join(self) -> None:
        """Wait until every submitted event has been processed."""
        await self._queue.join()

    async def stop(self, drain: bool = True) -> None:
        """
        Stop the workers.

        Args:
            drain: Wait (up to shutdown_timeout_seconds) for queued and
                in-flight events before cancelling.
        """
        if not self._workers:
            return

        self._accepting = False

        if drain:
            try:
                await asyncio.wait_for(
                    self._queue.join(),
                    timeout=self.config.shutdown_timeout_seconds,
                )
            except asyncio.TimeoutError:
                logger.warning(
                    "Shutdown timeout; abandoning queued events",
                    pending=self._queue.qsize(),
                )

        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers.clear()

        logger.info("Indexing queue stopped")

    async def _worker(self, worker_id: int) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._process(event)
            finally:
                self._queue.task_done()

    async def _process(self, event: FileEvent) -> None:
        try:
            result = await self.handler(event)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if isinstance(e, VecsyncError):
                logger.error(
                    "Failed to process file event",
                    path=event.path,
                    event_type=event.type.value,
                    error=str(e),
                )
            else:
                logger.exception(
                    "Unexpected error processing file event",
                    path=event.path,
                    event_type=event.type.value,
                )
            result = IndexResult(
                path=event.path,
                project=event.project,
                event_type=event.type,
                status=IndexStatus.FAILED,
                error=str(e),
            )
            await self._notify(self.on_error, event, e)

        await self._notify(self.on_result, result)

    async def _notify(self, callback: Callable[..., Any] | None, *args: Any) -> None:
        if callback is None:
            return
        try:
            await _maybe_await(callback(*args))
        except Exception:
            logger.exception("Indexing queue callback failed")
