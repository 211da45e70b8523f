"""
Line-aligned text chunking.

Splits a document into overlapping windows under a character budget.
Boundaries always fall between lines; a single line longer than the
budget is emitted whole, so the budget is a soft target.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from vecsync.config import ChunkingConfig


@dataclass
class TextChunk:
    """A contiguous, line-aligned window of a document."""

    content: str
    index: int
    total: int
    line_start: int  # 1-based, inclusive
    line_end: int  # 1-based, inclusive


def _joined_length(lines: list[str]) -> int:
    """Length of the lines joined with newlines."""
    if not lines:
        return 0
    return sum(len(line) for line in lines) + len(lines) - 1


def _get_overlap_lines(lines: list[str], overlap_chars: int) -> list[str]:
    """
    Take the trailing lines whose joined length fits the overlap budget.

    Returns an empty list if not even the last line fits.
    """
    if not lines or overlap_chars <= 0:
        return []

    overlap: list[str] = []
    length = 0

    for line in reversed(lines):
        added = len(line) + (1 if overlap else 0)
        if length + added > overlap_chars:
            break
        overlap.insert(0, line)
        length += added

    return overlap


def chunk_text(text: str, chunk_size: int, overlap: int) -> list[TextChunk]:
    """
    Split text into overlapping, line-aligned chunks.

    Args:
        text: Document body.
        chunk_size: Target maximum chunk length in characters.
        overlap: Maximum characters carried over from the previous chunk.

    Returns:
        Chunks in document order with dense indices; empty for empty text.
    """
    if not text:
        return []

    lines = text.split("\n")

    if len(text) <= chunk_size:
        return [
            TextChunk(
                content=text,
                index=0,
                total=1,
                line_start=1,
                line_end=len(lines),
            )
        ]

    chunks: list[TextChunk] = []

    buffer: list[str] = []
    buffer_start = 1
    # Lines in the buffer from this index on were not carried over
    fresh_from = 0

    for line_number, line in enumerate(lines, start=1):
        candidate = _joined_length(buffer) + (1 if buffer else 0) + len(line)

        if candidate > chunk_size and buffer:
            chunks.append(
                TextChunk(
                    content="\n".join(buffer),
                    index=len(chunks),
                    total=0,
                    line_start=buffer_start,
                    line_end=line_number - 1,
                )
            )

            # Only lines first seen in this chunk may be carried over,
            # so no line lands in more than two chunks. The carried lines
            # plus the current line must still fit the chunk budget.
            budget = min(overlap, chunk_size - len(line) - 1)
            overlap_lines = _get_overlap_lines(buffer[fresh_from:], budget)
            buffer = overlap_lines + [line]
            buffer_start = line_number - len(overlap_lines)
            fresh_from = len(overlap_lines)
        else:
            buffer.append(line)

    if buffer:
        chunks.append(
            TextChunk(
                content="\n".join(buffer),
                index=len(chunks),
                total=0,
                line_start=buffer_start,
                line_end=len(lines),
            )
        )

    total = len(chunks)
    for i, chunk in enumerate(chunks):
        chunk.index = i
        chunk.total = total

    return chunks


class Chunker:
    """
    Chunker bound to configured sizes.

    Plain text and extracted documents use separate size profiles;
    documents are denser per byte and get larger windows.
    """

    def __init__(self, config: "ChunkingConfig") -> None:
        self.chunk_size = config.chunk_size
        self.overlap = config.chunk_overlap
        self.document_chunk_size = config.document_chunk_size
        self.document_overlap = config.document_chunk_overlap

    def chunk(self, text: str) -> list[TextChunk]:
        """Chunk plain-text file content."""
        return chunk_text(text, self.chunk_size, self.overlap)

    def chunk_document(self, text: str) -> list[TextChunk]:
        """Chunk text extracted from a document."""
        return chunk_text(text, self.document_chunk_size, self.document_overlap)
