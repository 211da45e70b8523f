"""
Pytest configuration and fixtures for vecsync tests.
"""

from __future__ import annotations

import hashlib
import tempfile
from pathlib import Path
from typing import AsyncIterator, Iterator

import numpy as np
import pytest

from vecsync.config import Config
from vecsync.errors import EmbeddingError

VECTOR_SIZE = 8


class FakeEmbedder:
    """
    In-process stand-in for the embedding gateway.

    Generates deterministic embeddings based on content hash.
    """

    def __init__(self, dimension: int = VECTOR_SIZE):
        self.dimension = dimension
        self.fail = False
        self.batch_calls: list[list[str]] = []
        self.closed = False

    def _vector(self, text: str) -> np.ndarray:
        hash_bytes = hashlib.sha256(text.encode()).digest()
        rng = np.random.default_rng(int.from_bytes(hash_bytes[:8], "little"))
        embedding = rng.standard_normal(self.dimension).astype(np.float32)
        return embedding / np.linalg.norm(embedding)

    async def embed(self, text: str) -> np.ndarray:
        if self.fail:
            raise EmbeddingError("embedding service down")
        return self._vector(text)

    async def embed_batch(self, texts: list[str]) -> list[np.ndarray]:
        if self.fail:
            raise EmbeddingError("embedding service down")
        self.batch_calls.append(list(texts))
        return [self._vector(t) for t in texts]

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def temp_dir() -> Iterator[Path]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir).resolve()


@pytest.fixture
def test_config(temp_dir: Path) -> Config:
    """Create a test configuration backed by an in-memory Qdrant."""
    return Config(
        project_root=temp_dir,
        project_name="demo",
        log_level="DEBUG",
        vector_store={"location": ":memory:", "vector_size": VECTOR_SIZE},
        chunking={"chunk_size": 200, "chunk_overlap": 50},
        watcher={"debounce_ms": 50},
        indexing={
            "workers": 2,
            "max_attempts": 2,
            "retry_min_seconds": 0,
            "retry_max_seconds": 0,
            "shutdown_timeout_seconds": 5,
            "scroll_page_size": 2,
        },
    )


@pytest.fixture
def fake_embedder() -> FakeEmbedder:
    """Get a deterministic fake embedder."""
    return FakeEmbedder()


@pytest.fixture
async def vector_store(test_config: Config) -> AsyncIterator:
    """Create an in-memory vector store for testing."""
    from vecsync.storage.vector_store import VectorStore

    store = VectorStore(test_config.vector_store)
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
def orchestrator(test_config: Config, vector_store, fake_embedder: FakeEmbedder):
    """Create an orchestrator wired to the in-memory store."""
    from vecsync.indexing.orchestrator import IndexingOrchestrator

    return IndexingOrchestrator(test_config, vector_store, fake_embedder)


@pytest.fixture
def sample_project(temp_dir: Path) -> dict[str, Path]:
    """Create a small project tree."""
    files = {}

    (temp_dir / "src").mkdir()
    files["app"] = temp_dir / "src" / "app.ts"
    files["app"].write_text(
        "\n".join(f"export const value{i} = {i};" for i in range(40))
    )

    files["readme"] = temp_dir / "README.md"
    files["readme"].write_text("# Demo\n\nA small demo project.\n")

    (temp_dir / "node_modules" / "lib").mkdir(parents=True)
    files["dependency"] = temp_dir / "node_modules" / "lib" / "index.js"
    files["dependency"].write_text("module.exports = {};\n")

    files["logo"] = temp_dir / "logo.png"
    files["logo"].write_bytes(b"\x89PNG\r\n\x1a\n" + b"\x00" * 32)

    return files
