"""
Indexing orchestrator.

Turns file events into vector store mutations. Every (re)index of a file
runs as one replace unit: delete all of the file's points, then insert the
new points in a single batch. Everything that can fail without touching the
store (reading, classifying, extracting, embedding) happens before the unit
starts, so those failures leave the previous vectors in place.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections import defaultdict
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, AsyncIterator, Protocol

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from vecsync.errors import (
    ClassificationError,
    ConfigurationError,
    FileReadError,
    IndexingError,
    VectorStoreError,
)
from vecsync.indexing.chunker import Chunker, TextChunk
from vecsync.indexing.classifier import (
    DOCUMENT_EXTENSIONS,
    FileClassification,
    classify,
    file_extension,
    file_type,
)
from vecsync.indexing.ignore_rules import IgnoreRuleSet, load_ignore_rules
from vecsync.models import (
    ChunkPayload,
    CleanupReport,
    EventType,
    FileEvent,
    IndexResult,
    IndexStatus,
    ProjectStats,
    SearchHit,
    VectorPoint,
)
from vecsync.storage.filters import AnyOf, And, Equals, by_file_path, by_project
from vecsync.storage.vector_store import project_collection_name

if TYPE_CHECKING:
    from vecsync.config import Config
    from vecsync.indexing.embedder import EmbeddingGateway
    from vecsync.storage.vector_store import VectorStore

logger = structlog.get_logger(__name__)

NO_EXTRACTOR_REASON = "no document extractor configured"
FILE_GONE_REASON = "file no longer exists"

_MB = 1024 * 1024


@dataclass
class ExtractedDocument:
    """Text pulled out of a binary document container."""

    text: str
    kind: str
    metadata: dict[str, Any] = field(default_factory=dict)


class DocumentExtractor(Protocol):
    """Turns a PDF/Word/Excel file into plain text."""

    async def extract(self, path: Path) -> ExtractedDocument: ...


class KeyedLock:
    """
    One asyncio.Lock per key, created on demand.

    Entries are reference-counted and dropped once no task holds or waits
    on them, so the table only grows with the number of busy keys.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
            self._waiters[key] = 0

        self._waiters[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._locks[key]
                del self._waiters[key]

    def __len__(self) -> int:
        return len(self._locks)

    def __contains__(self, key: object) -> bool:
        return key in self._locks


@dataclass
class _Prepared:
    """Points ready for the replace unit, or the reason there are none."""

    points: list[VectorPoint]
    reason: str | None = None


def normalize_path(path: str | Path) -> str:
    """Absolute, normalized path used as the file_path payload key."""
    return os.path.abspath(os.path.normpath(str(path)))


def _pattern_bucket(relative_path: str) -> str:
    """Group label for a path removed by cleanup."""
    parts = relative_path.split("/")
    if "node_modules" in parts[:-1]:
        return "node_modules/"
    ext = file_extension(relative_path)
    return f"*.{ext}" if ext else "(no extension)"


class IndexingOrchestrator:
    """
    Applies file events to a project's collection.

    Features:
    - Per-path single-flight: events for one file never interleave
    - Embed-before-delete, so provider outages keep old vectors
    - Retried delete+insert unit
    - Cleanup of files newly excluded by ignore rules
    - Project-scoped code and document search
    """

    def __init__(
        self,
        config: "Config",
        vector_store: "VectorStore",
        embedder: "EmbeddingGateway",
        extractor: DocumentExtractor | None = None,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            config: vecsync configuration.
            vector_store: Vector store gateway.
            embedder: Embedding gateway.
            extractor: Optional document text extractor.
        """
        self.config = config
        self.vector_store = vector_store
        self.embedder = embedder
        self.extractor = extractor

        self.chunker = Chunker(config.chunking)
        self.sample_bytes = config.watcher.sample_bytes
        self.max_file_size = int(config.watcher.max_file_size_mb * _MB)
        self.max_document_size = int(config.watcher.max_document_size_mb * _MB)

        self._locks = KeyedLock()

    # Event routing

    async def on_file_event(self, event: FileEvent) -> IndexResult:
        """
        Apply one debounced file event.

        Raises:
            VecsyncError: Subclasses for read, embedding and store failures.
        """
        if event.type == EventType.UNLINK:
            return await self.remove_file(event.path, event.project)
        if event.type == EventType.ADD:
            return await self.index_file(event.path, event.project)
        return await self.update_file(event.path, event.project)

    async def index_file(self, path: str | Path, project: str) -> IndexResult:
        """
        Index a file, replacing any vectors it already has.

        Args:
            path: File path.
            project: Project name.

        Returns:
            IndexResult describing the outcome.
        """
        file_path = normalize_path(path)
        async with self._locks.hold(file_path):
            return await self._reindex(file_path, project, EventType.ADD)

    async def update_file(self, path: str | Path, project: str) -> IndexResult:
        """Reindex a changed file. Same protocol as index_file."""
        file_path = normalize_path(path)
        async with self._locks.hold(file_path):
            return await self._reindex(file_path, project, EventType.CHANGE)

    async def remove_file(self, path: str | Path, project: str) -> IndexResult:
        """Delete every vector belonging to a file."""
        file_path = normalize_path(path)
        async with self._locks.hold(file_path):
            collection = await self.vector_store.ensure_project_collection(project)
            await self._replace(collection, file_path, [])

        logger.info("Removed file from index", path=file_path, project=project)
        return IndexResult(
            path=file_path,
            project=project,
            event_type=EventType.UNLINK,
            status=IndexStatus.REMOVED,
        )

    # Replace protocol

    async def _reindex(
        self,
        file_path: str,
        project: str,
        event_type: EventType,
    ) -> IndexResult:
        collection = await self.vector_store.ensure_project_collection(project)

        prepared = await self._prepare(file_path, project)
        await self._replace(collection, file_path, prepared.points)

        if prepared.reason is not None:
            logger.debug("Skipped file", path=file_path, reason=prepared.reason)
            status = (
                IndexStatus.REMOVED
                if prepared.reason == FILE_GONE_REASON
                else IndexStatus.SKIPPED
            )
            return IndexResult(
                path=file_path,
                project=project,
                event_type=event_type,
                status=status,
                reason=prepared.reason,
            )

        logger.info(
            "Indexed file",
            path=file_path,
            project=project,
            chunks=len(prepared.points),
        )
        return IndexResult(
            path=file_path,
            project=project,
            event_type=event_type,
            status=IndexStatus.INDEXED,
            chunks=len(prepared.points),
        )

    async def _prepare(self, file_path: str, project: str) -> _Prepared:
        """Read, classify, chunk and embed a file without touching the store."""
        path = Path(file_path)

        try:
            stat = path.stat()
        except FileNotFoundError:
            return _Prepared(points=[], reason=FILE_GONE_REASON)
        except OSError as e:
            raise FileReadError(f"Cannot stat {file_path}: {e}", path=file_path) from e

        if not path.is_file():
            raise ClassificationError(f"Not a regular file: {file_path}", path=file_path)

        # Extension-only pass; needs no read
        classification = classify(path)
        if classification.is_binary:
            return _Prepared(points=[], reason="binary file")

        if classification.is_document:
            if stat.st_size > self.max_document_size:
                return _Prepared(points=[], reason="document too large")
            return await self._prepare_document(file_path, project, classification)

        if stat.st_size > self.max_file_size:
            return _Prepared(points=[], reason="file too large")

        loop = asyncio.get_running_loop()
        try:
            data = await loop.run_in_executor(None, path.read_bytes)
        except FileNotFoundError:
            return _Prepared(points=[], reason=FILE_GONE_REASON)
        except OSError as e:
            raise FileReadError(f"Cannot read {file_path}: {e}", path=file_path) from e

        if classify(path, data[: self.sample_bytes]).is_binary:
            return _Prepared(points=[], reason="binary file")

        text = data.decode("utf-8", errors="replace")
        if not text.strip():
            return _Prepared(points=[], reason="empty file")

        chunks = self.chunker.chunk(text)
        points = await self._embed_chunks(
            chunks,
            file_path=file_path,
            project=project,
            payload_type=file_type(path),
            extra={},
        )
        return _Prepared(points=points)

    async def _prepare_document(
        self,
        file_path: str,
        project: str,
        classification: FileClassification,
    ) -> _Prepared:
        if self.extractor is None:
            return _Prepared(points=[], reason=NO_EXTRACTOR_REASON)

        try:
            document = await self.extractor.extract(Path(file_path))
        except Exception as e:
            raise IndexingError(
                f"Document extraction failed for {file_path}: {e}", path=file_path
            ) from e

        if not document.text.strip():
            return _Prepared(points=[], reason="no text extracted")

        kind = document.kind or classification.document_kind or "unknown"
        extra = {"document_type": kind, **document.metadata}

        chunks = self.chunker.chunk_document(document.text)
        points = await self._embed_chunks(
            chunks,
            file_path=file_path,
            project=project,
            payload_type=f"document_{kind}",
            extra=extra,
        )
        return _Prepared(points=points)

    async def _embed_chunks(
        self,
        chunks: list[TextChunk],
        file_path: str,
        project: str,
        payload_type: str,
        extra: dict[str, Any],
    ) -> list[VectorPoint]:
        vectors = await self.embedder.embed_batch([c.content for c in chunks])
        self._check_dimensions(vectors, file_path)

        updated_at = datetime.now(timezone.utc).isoformat()
        file_name = os.path.basename(file_path)

        points = []
        for chunk, vector in zip(chunks, vectors):
            payload = ChunkPayload(
                file_path=file_path,
                file_name=file_name,
                file_type=payload_type,
                line_start=chunk.line_start,
                line_end=chunk.line_end,
                project=project,
                chunk_index=chunk.index,
                total_chunks=chunk.total,
                updated_at=updated_at,
                content=chunk.content,
                extra=dict(extra),
            )
            points.append(
                VectorPoint(id=str(uuid.uuid4()), vector=vector, payload=payload.to_dict())
            )

        return points

    def _check_dimensions(self, vectors: list[Any], file_path: str) -> None:
        """Reject vectors the collection cannot hold before anything is deleted."""
        expected = self.vector_store.vector_size
        for vector in vectors:
            if len(vector) != expected:
                raise ConfigurationError(
                    f"Embedding dimension {len(vector)} does not match "
                    f"vector_store.vector_size {expected} (file {file_path})"
                )

    def _log_retry(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "Retrying vector replace",
            attempt=retry_state.attempt_number,
            error=str(error),
        )

    async def _replace(
        self,
        collection: str,
        file_path: str,
        points: list[VectorPoint],
    ) -> None:
        """
        Delete a file's points and insert the new ones, retrying as a unit.

        Raises:
            VectorStoreError: If the unit still fails after all attempts.
        """
        indexing = self.config.indexing
        retrying = AsyncRetrying(
            stop=stop_after_attempt(indexing.max_attempts),
            wait=wait_exponential(
                multiplier=indexing.retry_min_seconds,
                min=indexing.retry_min_seconds,
                max=indexing.retry_max_seconds,
            ),
            retry=retry_if_exception_type(VectorStoreError),
            before_sleep=self._log_retry,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    await self.vector_store.delete_by_filter(
                        collection, by_file_path(file_path)
                    )
                    if points:
                        await self.vector_store.upsert(collection, points)
        except VectorStoreError as e:
            logger.error(
                "Vector replace failed; file may be missing from the index",
                path=file_path,
                collection=collection,
                attempts=indexing.max_attempts,
                error=str(e),
            )
            raise

    # Project-wide operations

    async def cleanup_project(
        self,
        project_root: str | Path,
        project: str,
        rules: IgnoreRuleSet | None = None,
    ) -> CleanupReport:
        """
        Delete vectors for files the ignore rules now exclude.

        Args:
            project_root: Project root directory.
            project: Project name.
            rules: Current rule set; loaded from disk if not provided.

        Returns:
            CleanupReport summarizing what was removed.
        """
        root = normalize_path(project_root)
        if rules is None:
            rules = load_ignore_rules(Path(root), self.config.watcher.ignore_file_name)

        report = CleanupReport()
        collection = project_collection_name(project)
        if not await self.vector_store.collection_exists(collection):
            return report

        points = await self.vector_store.scroll_all(
            collection,
            by_project(project),
            page_size=self.config.indexing.scroll_page_size,
        )
        file_paths = sorted({p.payload.get("file_path", "") for p in points} - {""})
        report.checked = len(file_paths)

        by_pattern: dict[str, list[str]] = defaultdict(list)
        for file_path in file_paths:
            relative = os.path.relpath(file_path, root).replace(os.sep, "/")
            if not rules.is_ignored(relative):
                report.kept_files += 1
                continue

            await self.remove_file(file_path, project)
            report.deleted += 1
            report.deleted_files.append(file_path)
            by_pattern[_pattern_bucket(relative)].append(relative)

        report.by_pattern = dict(by_pattern)

        logger.info(
            "Cleanup complete",
            project=project,
            checked=report.checked,
            deleted=report.deleted,
            kept=report.kept_files,
        )
        return report

    async def search_code(
        self,
        query: str,
        project: str,
        file_type: str | None = None,
        limit: int = 10,
    ) -> list[SearchHit]:
        """
        Semantic search over one project's chunks.

        Args:
            query: Natural-language or code query.
            project: Project name; required.
            file_type: Optional file_type payload filter.
            limit: Maximum hits.

        Returns:
            Hits sorted by descending similarity.
        """
        if not project:
            raise ValueError("project is required for code search")

        collection = project_collection_name(project)
        if not await self.vector_store.collection_exists(collection):
            return []

        exprs: list[Any] = [Equals("project", project)]
        if file_type:
            exprs.append(Equals("file_type", file_type))

        vector = await self.embedder.embed(query)
        return await self.vector_store.search(collection, vector, limit, And(*exprs))

    async def search_documents(
        self,
        query: str,
        project: str,
        document_type: str | None = None,
        limit: int = 10,
    ) -> list[SearchHit]:
        """Semantic search restricted to extracted document chunks."""
        if not project:
            raise ValueError("project is required for document search")

        collection = project_collection_name(project)
        if not await self.vector_store.collection_exists(collection):
            return []

        if document_type:
            type_filter: Any = Equals("document_type", document_type)
        else:
            kinds = sorted(set(DOCUMENT_EXTENSIONS.values()))
            type_filter = AnyOf("file_type", [f"document_{k}" for k in kinds])

        vector = await self.embedder.embed(query)
        return await self.vector_store.search(
            collection,
            vector,
            limit,
            And(Equals("project", project), type_filter),
        )

    async def get_project_stats(self, project: str) -> ProjectStats | None:
        """Chunk and file counts for a project, or None if never indexed."""
        collection = project_collection_name(project)
        if not await self.vector_store.collection_exists(collection):
            return None

        chunk_count = await self.vector_store.count(collection, by_project(project))
        points = await self.vector_store.scroll_all(
            collection,
            by_project(project),
            page_size=self.config.indexing.scroll_page_size,
        )
        files = {p.payload.get("file_path") for p in points}
        files.discard(None)

        return ProjectStats(
            collection=collection,
            chunk_count=chunk_count,
            file_count=len(files),
        )
