"""
Shared data types for the indexing pipeline.

Payload field names are snake_case because they are stored verbatim in the
vector store and used as filter keys.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

import numpy as np


class EventType(str, Enum):
    """Filesystem event types delivered to the orchestrator."""

    ADD = "add"
    CHANGE = "change"
    UNLINK = "unlink"


class IndexStatus(str, Enum):
    """Outcome of processing one file event."""

    INDEXED = "indexed"
    REMOVED = "removed"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class FileEvent:
    """A debounced filesystem event for one file in one project."""

    type: EventType
    path: str
    project: str


@dataclass
class ChunkPayload:
    """Metadata stored alongside every chunk vector."""

    file_path: str
    file_name: str
    file_type: str
    line_start: int
    line_end: int
    project: str
    chunk_index: int
    total_chunks: int
    updated_at: str
    content: str
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Flatten into the stored payload, merging extra keys last."""
        data = asdict(self)
        extra = data.pop("extra")
        data.update(extra)
        return data


@dataclass
class VectorPoint:
    """A point to write to a collection."""

    id: str
    vector: np.ndarray | list[float]
    payload: dict[str, Any]


@dataclass
class SearchHit:
    """A similarity search result."""

    id: str
    score: float
    payload: dict[str, Any]


@dataclass
class ScrolledPoint:
    """A point returned by a filtered scroll, without its vector."""

    id: str
    payload: dict[str, Any]


@dataclass
class IndexResult:
    """Result of handling one file event, reported on the result channel."""

    path: str
    project: str
    event_type: EventType
    status: IndexStatus
    chunks: int = 0
    reason: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status != IndexStatus.FAILED


@dataclass
class CleanupReport:
    """Summary of a project-wide sweep for newly ignored files."""

    checked: int = 0
    deleted: int = 0
    deleted_files: list[str] = field(default_factory=list)
    kept_files: int = 0
    by_pattern: dict[str, list[str]] = field(default_factory=dict)


@dataclass
class ProjectStats:
    """Point and file counts for a project collection."""

    collection: str
    chunk_count: int
    file_count: int
