"""
vecsync main entry point.

Provides the IndexingService façade and the CLI interface.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import signal
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, AsyncIterator, Callable

import click
import structlog

from vecsync.config import Config, load_config
from vecsync.errors import VecsyncError
from vecsync.indexing.ignore_rules import (
    GITIGNORE_NAME,
    IgnoreRuleSet,
    create_default_ignore_file,
    load_ignore_rules,
)
from vecsync.models import IndexStatus

if TYPE_CHECKING:
    from vecsync.indexing.embedder import EmbeddingGateway
    from vecsync.indexing.orchestrator import DocumentExtractor, IndexingOrchestrator
    from vecsync.indexing.queue import IndexingQueue
    from vecsync.indexing.watcher import ChangeWatcher
    from vecsync.models import (
        CleanupReport,
        FileEvent,
        IndexResult,
        ProjectStats,
        SearchHit,
    )
    from vecsync.storage.vector_store import VectorStore

logger = structlog.get_logger(__name__)

ResultCallback = Callable[["IndexResult"], Any]
ServiceErrorCallback = Callable[[BaseException, "FileEvent | None"], Any]


async def _maybe_await(value: Any) -> None:
    if inspect.isawaitable(value):
        await value


def configure_logging(level: str = "INFO") -> None:
    """Route structlog output through a level filter."""
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
    )


@dataclass
class WatchedProject:
    """A live watcher and its work queue."""

    name: str
    root: Path
    watcher: "ChangeWatcher"
    queue: "IndexingQueue"


class IndexingService:
    """
    Main vecsync service wiring all components together.

    This is the primary interface for embedding vecsync. It manages:
    - Vector store and embedding gateway lifecycles
    - One watcher and work queue per watched project
    - Direct indexing, cleanup and search calls
    """

    def __init__(
        self,
        config: Config | None = None,
        vector_store: "VectorStore | None" = None,
        embedder: "EmbeddingGateway | None" = None,
        extractor: "DocumentExtractor | None" = None,
    ) -> None:
        """
        Initialize the service.

        Args:
            config: Configuration instance. Uses default if not provided.
            vector_store: Vector store; built from config if not provided.
            embedder: Embedding gateway; built from config if not provided.
            extractor: Optional document text extractor.
        """
        self.config = config or Config()

        self._vector_store = vector_store
        self._embedder = embedder
        self._extractor = extractor
        self._orchestrator: IndexingOrchestrator | None = None
        self._projects: dict[str, WatchedProject] = {}

        self._initialized = False
        self._shutdown_event = asyncio.Event()

    @property
    def orchestrator(self) -> "IndexingOrchestrator":
        if self._orchestrator is None:
            raise VecsyncError("Service not initialized")
        return self._orchestrator

    async def initialize(self) -> None:
        """Connect to the vector store and build the orchestrator."""
        if self._initialized:
            return

        logger.info("Initializing vecsync service")

        # Import here to avoid circular imports
        from vecsync.indexing.embedder import EmbeddingGateway
        from vecsync.indexing.orchestrator import IndexingOrchestrator
        from vecsync.storage.vector_store import VectorStore

        if self._vector_store is None:
            self._vector_store = VectorStore(self.config.vector_store)
        await self._vector_store.initialize()
        await self._vector_store.ensure_global_collections()

        if self._embedder is None:
            self._embedder = EmbeddingGateway(self.config.embedding)

        self._orchestrator = IndexingOrchestrator(
            self.config,
            self._vector_store,
            self._embedder,
            extractor=self._extractor,
        )

        self._shutdown_event.clear()
        self._initialized = True
        logger.info("vecsync service initialized")

    async def shutdown(self) -> None:
        """Stop every watcher, then close the gateways."""
        logger.info("Shutting down vecsync service")

        for name in list(self._projects):
            await self.stop_project(name)

        if self._embedder is not None:
            await self._embedder.close()

        if self._vector_store is not None:
            await self._vector_store.close()

        self._orchestrator = None
        self._initialized = False
        self._shutdown_event.set()
        logger.info("vecsync service shutdown complete")

    @asynccontextmanager
    async def session(self) -> AsyncIterator["IndexingService"]:
        """Context manager for service lifecycle."""
        try:
            await self.initialize()
            yield self
        finally:
            await self.shutdown()

    async def wait_closed(self) -> None:
        """Block until shutdown() completes."""
        await self._shutdown_event.wait()

    # Watching

    async def watch_project(
        self,
        project_root: str | Path,
        project_name: str | None = None,
        initial_scan: bool = True,
        on_result: ResultCallback | None = None,
        on_error: ServiceErrorCallback | None = None,
    ) -> str:
        """
        Start watching a project tree.

        Args:
            project_root: Directory to watch.
            project_name: Project name; defaults to the directory name.
            initial_scan: Queue every existing file for indexing.
            on_result: Called with every IndexResult from the work queue.
            on_error: Called as on_error(error, event) for per-file failures,
                and as on_error(error, None) for watcher and cleanup failures.

        Returns:
            The project name.
        """
        if not self._initialized:
            await self.initialize()

        from vecsync.indexing.queue import IndexingQueue
        from vecsync.indexing.watcher import ChangeWatcher

        root = Path(project_root).resolve()
        name = project_name or root.name

        if name in self._projects:
            logger.warning("Project already watched", project=name)
            return name

        config = self.config.model_copy(
            update={"project_root": root, "project_name": name}
        )
        orchestrator = self.orchestrator

        async def handle_result(result: "IndexResult") -> None:
            self._on_result(result)
            if on_result is not None:
                await _maybe_await(on_result(result))

        async def handle_event_error(event: "FileEvent", error: BaseException) -> None:
            if on_error is not None:
                await _maybe_await(on_error(error, event))

        async def handle_watcher_error(error: BaseException) -> None:
            if on_error is not None:
                await _maybe_await(on_error(error, None))

        queue = IndexingQueue(
            config.indexing,
            orchestrator.on_file_event,
            on_result=handle_result,
            on_error=handle_event_error,
        )

        async def on_ignore_change(rules: IgnoreRuleSet) -> None:
            await orchestrator.cleanup_project(root, name, rules)

        watcher = ChangeWatcher(
            config,
            name,
            on_event=queue.submit,
            on_ignore_change=on_ignore_change,
            on_error=handle_watcher_error,
        )

        queue.start()
        try:
            await watcher.start(initial_scan=initial_scan)
        except Exception:
            await queue.stop(drain=False)
            raise

        self._projects[name] = WatchedProject(
            name=name, root=root, watcher=watcher, queue=queue
        )
        logger.info("Watching project", project=name, path=str(root))
        return name

    async def stop_project(self, name: str) -> bool:
        """
        Stop watching a project and drain its queue.

        Returns:
            True if the project was being watched.
        """
        project = self._projects.pop(name, None)
        if project is None:
            return False

        await project.watcher.stop()
        await project.queue.stop(drain=True)
        logger.info("Stopped watching project", project=name)
        return True

    def active_projects(self) -> list[str]:
        """Names of the projects currently watched."""
        return sorted(self._projects)

    def _on_result(self, result: "IndexResult") -> None:
        if result.status == IndexStatus.FAILED:
            logger.warning(
                "File event failed",
                path=result.path,
                project=result.project,
                error=result.error,
            )
            return
        logger.debug(
            "Processed file event",
            path=result.path,
            status=result.status.value,
            chunks=result.chunks,
            reason=result.reason,
        )

    # Direct operations

    async def on_file_event(self, event: "FileEvent") -> "IndexResult":
        return await self.orchestrator.on_file_event(event)

    async def index_file(self, path: str | Path, project: str) -> "IndexResult":
        return await self.orchestrator.index_file(path, project)

    async def update_file(self, path: str | Path, project: str) -> "IndexResult":
        return await self.orchestrator.update_file(path, project)

    async def remove_file(self, path: str | Path, project: str) -> "IndexResult":
        return await self.orchestrator.remove_file(path, project)

    async def index_directory(
        self,
        project_root: str | Path | None = None,
        project: str | None = None,
    ) -> dict[str, int]:
        """
        Index every eligible file under a directory.

        Args:
            project_root: Directory to index. Uses config.project_root if not provided.
            project: Project name; defaults to the directory name.

        Returns:
            Statistics about indexed files.
        """
        if not self._initialized:
            await self.initialize()

        from vecsync.indexing.watcher import walk_project

        root = Path(project_root or self.config.project_root).resolve()
        name = project or (
            self.config.effective_project_name
            if project_root is None
            else root.name
        )

        logger.info("Indexing directory", path=str(root), project=name)

        override_name = self.config.watcher.ignore_file_name
        rules = load_ignore_rules(root, override_name)
        loop = asyncio.get_running_loop()
        paths = await loop.run_in_executor(
            None,
            lambda: list(walk_project(root, rules, (GITIGNORE_NAME, override_name))),
        )

        stats = {"files": 0, "indexed": 0, "skipped": 0, "chunks": 0, "errors": 0}

        for path in paths:
            stats["files"] += 1
            try:
                result = await self.orchestrator.index_file(path, name)
            except VecsyncError as e:
                logger.error("Error indexing file", path=path, error=str(e))
                stats["errors"] += 1
                continue

            if result.status == IndexStatus.INDEXED:
                stats["indexed"] += 1
                stats["chunks"] += result.chunks
            else:
                stats["skipped"] += 1

            if stats["files"] % 100 == 0:
                logger.info(
                    "Indexing progress",
                    files=stats["files"],
                    chunks=stats["chunks"],
                )

        logger.info("Directory indexing complete", project=name, **stats)
        return stats

    async def cleanup_project(
        self,
        project_root: str | Path,
        project: str,
        rules: IgnoreRuleSet | None = None,
    ) -> "CleanupReport":
        return await self.orchestrator.cleanup_project(project_root, project, rules)

    async def search_code(
        self,
        query: str,
        project: str,
        file_type: str | None = None,
        limit: int = 10,
    ) -> list["SearchHit"]:
        return await self.orchestrator.search_code(query, project, file_type, limit)

    async def search_documents(
        self,
        query: str,
        project: str,
        document_type: str | None = None,
        limit: int = 10,
    ) -> list["SearchHit"]:
        return await self.orchestrator.search_documents(
            query, project, document_type, limit
        )

    async def get_project_stats(self, project: str) -> "ProjectStats | None":
        return await self.orchestrator.get_project_stats(project)


# CLI Implementation
@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file",
)
@click.option(
    "--project",
    "-p",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=Path.cwd(),
    help="Project root directory",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose logging",
)
@click.pass_context
def cli(ctx: click.Context, config: Path | None, project: Path, verbose: bool) -> None:
    """vecsync - keep a semantic index in sync with a file tree."""
    ctx.ensure_object(dict)

    loaded = load_config(config_path=config, project_root=project)
    configure_logging("DEBUG" if verbose else loaded.log_level)

    ctx.obj["config"] = loaded


@cli.command()
@click.pass_context
def index(ctx: click.Context) -> None:
    """Index the project directory once."""
    config: Config = ctx.obj["config"]

    async def run_index() -> None:
        service = IndexingService(config)
        async with service.session():
            stats = await service.index_directory()
            click.echo(f"Indexed {stats['indexed']} of {stats['files']} files")
            click.echo(f"Created {stats['chunks']} chunks")
            if stats["errors"] > 0:
                click.echo(f"Errors: {stats['errors']}", err=True)

    asyncio.run(run_index())


@cli.command()
@click.argument("query")
@click.option("--limit", "-n", type=int, default=10, help="Number of results")
@click.option("--type", "-t", "file_type", help="Restrict to a file type")
@click.option("--documents", "-d", is_flag=True, help="Search extracted documents only")
@click.pass_context
def search(
    ctx: click.Context,
    query: str,
    limit: int,
    file_type: str | None,
    documents: bool,
) -> None:
    """Search the project index."""
    config: Config = ctx.obj["config"]
    project = config.effective_project_name

    async def run_search() -> None:
        service = IndexingService(config)
        async with service.session():
            if documents:
                hits = await service.search_documents(query, project, file_type, limit)
            else:
                hits = await service.search_code(query, project, file_type, limit)

            for i, hit in enumerate(hits, 1):
                payload: dict[str, Any] = hit.payload
                content = payload.get("content", "")
                click.echo(f"\n--- Result {i} (score: {hit.score:.3f}) ---")
                click.echo(f"File: {payload.get('file_path')}:{payload.get('line_start')}")
                click.echo(content[:500] + "..." if len(content) > 500 else content)

    asyncio.run(run_search())


@cli.command()
@click.option("--no-scan", is_flag=True, help="Skip the initial full scan")
@click.pass_context
def watch(ctx: click.Context, no_scan: bool) -> None:
    """Watch for file changes and keep the index updated."""
    config: Config = ctx.obj["config"]

    async def run_watch() -> None:
        service = IndexingService(config)

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(
                sig,
                lambda: asyncio.create_task(service.shutdown()),
            )

        await service.initialize()
        await service.watch_project(
            config.project_root,
            config.effective_project_name,
            initial_scan=not no_scan,
        )
        click.echo("Watching for changes... (Ctrl+C to stop)")

        await service.wait_closed()

    asyncio.run(run_watch())


@cli.command()
@click.pass_context
def cleanup(ctx: click.Context) -> None:
    """Remove vectors for files the ignore rules now exclude."""
    config: Config = ctx.obj["config"]

    async def run_cleanup() -> None:
        service = IndexingService(config)
        async with service.session():
            report = await service.cleanup_project(
                config.project_root, config.effective_project_name
            )
            click.echo(f"Checked {report.checked} files, removed {report.deleted}")
            for bucket, paths in sorted(report.by_pattern.items()):
                click.echo(f"  {bucket}: {len(paths)}")

    asyncio.run(run_cleanup())


@cli.command()
@click.pass_context
def stats(ctx: click.Context) -> None:
    """Show index statistics for the project."""
    config: Config = ctx.obj["config"]

    async def run_stats() -> None:
        service = IndexingService(config)
        async with service.session():
            project_stats = await service.get_project_stats(config.effective_project_name)
            if project_stats is None:
                click.echo("Project not indexed")
                return
            click.echo(f"Collection: {project_stats.collection}")
            click.echo(f"Chunks: {project_stats.chunk_count}")
            click.echo(f"Files: {project_stats.file_count}")

    asyncio.run(run_stats())


@cli.command()
@click.pass_context
def init(ctx: click.Context) -> None:
    """Write a starter ignore file in the project root."""
    config: Config = ctx.obj["config"]

    target = config.project_root / config.watcher.ignore_file_name
    if target.exists():
        click.echo(f"{target} already exists")
        return

    target.write_text(create_default_ignore_file())
    click.echo(f"Created {target}")


def main() -> None:
    """Main entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
