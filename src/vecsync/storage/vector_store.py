"""
Qdrant vector store gateway.

Wraps AsyncQdrantClient behind collection-scoped upsert / delete-by-filter /
search / scroll operations. Payload filters are passed as typed expressions
(see vecsync.storage.filters) and compiled here.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

import numpy as np
import structlog
from qdrant_client import AsyncQdrantClient, models

from vecsync.errors import VectorStoreError
from vecsync.models import ScrolledPoint, SearchHit, VectorPoint
from vecsync.storage.filters import FilterExpr, compile_filter

if TYPE_CHECKING:
    from vecsync.config import VectorStoreConfig

logger = structlog.get_logger(__name__)

# Process-wide collections for cross-cutting data
TECH_DOCS_COLLECTION = "tech_docs_cache"
PROJECT_PLANS_COLLECTION = "project_plans"
PROJECT_THOUGHTS_COLLECTION = "project_thoughts"

GLOBAL_COLLECTIONS = (
    TECH_DOCS_COLLECTION,
    PROJECT_PLANS_COLLECTION,
    PROJECT_THOUGHTS_COLLECTION,
)


def project_collection_name(project: str) -> str:
    """Collection holding one project's code chunks."""
    return f"project_{project}"


def _as_list(vector: np.ndarray | list[float]) -> list[float]:
    if isinstance(vector, np.ndarray):
        return vector.astype(np.float32).tolist()
    return [float(v) for v in vector]


class VectorStore:
    """
    Collection-scoped vector store backed by Qdrant.

    Features:
    - Lazy collection creation with a fixed vector size
    - Typed payload filters
    - Paged scrolling
    - Store errors surfaced as VectorStoreError
    """

    def __init__(
        self,
        config: "VectorStoreConfig",
        client: AsyncQdrantClient | None = None,
    ) -> None:
        """
        Initialize the vector store.

        Args:
            config: Vector store configuration.
            client: Pre-built client; created from config if not provided.
        """
        self.config = config
        self.vector_size = config.vector_size

        self._client = client
        self._known_collections: set[str] = set()
        self._collection_lock = asyncio.Lock()

    @property
    def client(self) -> AsyncQdrantClient:
        if self._client is None:
            raise VectorStoreError("Vector store not initialized")
        return self._client

    async def initialize(self) -> None:
        """Create the client and check connectivity."""
        if self._client is None:
            if self.config.location:
                self._client = AsyncQdrantClient(location=self.config.location)
            else:
                self._client = AsyncQdrantClient(
                    url=self.config.url,
                    api_key=self.config.api_key,
                    timeout=self.config.timeout_seconds,
                )

        try:
            result = await self._client.get_collections()
        except Exception as e:
            raise VectorStoreError(f"Vector store unreachable: {e}") from e

        logger.info(
            "Vector store connected",
            location=self.config.location or self.config.url,
            collections=len(result.collections),
        )

    async def close(self) -> None:
        """Close the underlying client."""
        if self._client is not None:
            await self._client.close()
            self._client = None
        self._known_collections.clear()

    async def collection_exists(self, name: str) -> bool:
        """Check whether a collection exists."""
        try:
            return await self.client.collection_exists(name)
        except Exception as e:
            raise VectorStoreError(f"Failed to check collection {name}: {e}") from e

    async def ensure_collection(self, name: str, size: int | None = None) -> None:
        """
        Create a collection if it does not exist yet.

        Args:
            name: Collection name.
            size: Vector dimension; defaults to the configured size.
        """
        if name in self._known_collections:
            return

        async with self._collection_lock:
            if name in self._known_collections:
                return

            if not await self.collection_exists(name):
                try:
                    await self.client.create_collection(
                        collection_name=name,
                        vectors_config=models.VectorParams(
                            size=size or self.vector_size,
                            distance=models.Distance.COSINE,
                        ),
                    )
                except Exception as e:
                    raise VectorStoreError(
                        f"Failed to create collection {name}: {e}"
                    ) from e
                logger.info(
                    "Created collection",
                    collection=name,
                    size=size or self.vector_size,
                )

            self._known_collections.add(name)

    async def ensure_project_collection(self, project: str) -> str:
        """Ensure the project's code collection exists and return its name."""
        name = project_collection_name(project)
        await self.ensure_collection(name)
        return name

    async def ensure_global_collections(self) -> None:
        """Ensure the process-wide collections exist."""
        for name in GLOBAL_COLLECTIONS:
            await self.ensure_collection(name)

    async def delete_collection(self, name: str) -> bool:
        """
        Delete a collection.

        Returns:
            True if deleted, False if it did not exist.
        """
        if not await self.collection_exists(name):
            return False

        try:
            await self.client.delete_collection(collection_name=name)
        except Exception as e:
            raise VectorStoreError(f"Failed to delete collection {name}: {e}") from e

        self._known_collections.discard(name)
        logger.info("Deleted collection", collection=name)
        return True

    async def list_collections(self) -> list[str]:
        """List collection names."""
        try:
            result = await self.client.get_collections()
        except Exception as e:
            raise VectorStoreError(f"Failed to list collections: {e}") from e
        return [c.name for c in result.collections]

    async def upsert(self, collection: str, points: list[VectorPoint]) -> list[str]:
        """
        Write points in one batch.

        Args:
            collection: Target collection.
            points: Points to write.

        Returns:
            Ids of the written points.
        """
        if not points:
            return []

        structs = [
            models.PointStruct(
                id=point.id,
                vector=_as_list(point.vector),
                payload=point.payload,
            )
            for point in points
        ]

        try:
            await self.client.upsert(
                collection_name=collection,
                points=structs,
                wait=True,
            )
        except Exception as e:
            raise VectorStoreError(
                f"Failed to upsert {len(points)} points into {collection}: {e}"
            ) from e

        return [point.id for point in points]

    async def delete_by_filter(self, collection: str, expr: FilterExpr) -> None:
        """Delete every point whose payload matches the filter."""
        compiled = compile_filter(expr)
        if compiled is None:
            raise ValueError("Refusing to delete with an empty filter")

        try:
            await self.client.delete(
                collection_name=collection,
                points_selector=models.FilterSelector(filter=compiled),
                wait=True,
            )
        except Exception as e:
            raise VectorStoreError(f"Failed to delete from {collection}: {e}") from e

    async def search(
        self,
        collection: str,
        query_vector: np.ndarray | list[float],
        limit: int = 10,
        expr: FilterExpr | None = None,
    ) -> list[SearchHit]:
        """
        Search for nearest neighbors.

        Args:
            collection: Collection to search.
            query_vector: Query embedding.
            limit: Maximum hits.
            expr: Optional payload filter.

        Returns:
            Hits sorted by descending similarity.
        """
        try:
            response = await self.client.query_points(
                collection_name=collection,
                query=_as_list(query_vector),
                limit=limit,
                query_filter=compile_filter(expr),
                with_payload=True,
            )
        except Exception as e:
            raise VectorStoreError(f"Search failed in {collection}: {e}") from e

        return [
            SearchHit(
                id=str(point.id),
                score=float(point.score),
                payload=dict(point.payload or {}),
            )
            for point in response.points
        ]

    async def scroll(
        self,
        collection: str,
        expr: FilterExpr | None = None,
        limit: int = 100,
        offset: Any = None,
    ) -> tuple[list[ScrolledPoint], Any]:
        """
        Fetch one page of points matching a filter.

        Returns:
            The page and the offset of the next page (None when exhausted).
        """
        try:
            records, next_offset = await self.client.scroll(
                collection_name=collection,
                scroll_filter=compile_filter(expr),
                limit=limit,
                offset=offset,
                with_payload=True,
                with_vectors=False,
            )
        except Exception as e:
            raise VectorStoreError(f"Scroll failed in {collection}: {e}") from e

        points = [
            ScrolledPoint(id=str(record.id), payload=dict(record.payload or {}))
            for record in records
        ]
        return points, next_offset

    async def scroll_all(
        self,
        collection: str,
        expr: FilterExpr | None = None,
        page_size: int = 256,
    ) -> list[ScrolledPoint]:
        """Fetch every point matching a filter, page by page."""
        results: list[ScrolledPoint] = []
        offset: Any = None

        while True:
            page, offset = await self.scroll(
                collection, expr, limit=page_size, offset=offset
            )
            results.extend(page)
            if offset is None or not page:
                break

        return results

    async def count(self, collection: str, expr: FilterExpr | None = None) -> int:
        """Count points matching a filter."""
        try:
            result = await self.client.count(
                collection_name=collection,
                count_filter=compile_filter(expr),
                exact=True,
            )
        except Exception as e:
            raise VectorStoreError(f"Count failed in {collection}: {e}") from e
        return result.count

    async def get_collection_stats(self, name: str) -> dict[str, int] | None:
        """Get point counts for a collection, or None if it does not exist."""
        if not await self.collection_exists(name):
            return None

        try:
            info = await self.client.get_collection(collection_name=name)
        except Exception as e:
            raise VectorStoreError(f"Failed to read collection {name}: {e}") from e

        points = info.points_count or 0
        return {
            "points_count": points,
            "indexed_vectors_count": info.indexed_vectors_count or points,
        }
