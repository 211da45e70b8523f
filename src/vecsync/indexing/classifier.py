"""
File classification: binary, extractable document, or plain text.

Cheapest checks run first. The extension tables need no I/O; magic bytes
and the null-byte heuristic only run when the caller supplies a sample.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

import structlog

logger = structlog.get_logger(__name__)

NULL_SAMPLE_SIZE = 512

BINARY_EXTENSIONS = frozenset(
    {
        # Images
        ".png", ".jpg", ".jpeg", ".gif", ".bmp", ".ico", ".webp", ".svg",
        ".tiff", ".tif",
        # Audio
        ".mp3", ".wav", ".ogg", ".flac", ".aac", ".wma", ".m4a",
        # Video
        ".mp4", ".avi", ".mkv", ".mov", ".wmv", ".flv", ".webm",
        # Archives
        ".zip", ".rar", ".7z", ".tar", ".gz", ".bz2", ".xz",
        # Office formats without a text extractor
        ".ppt", ".pptx",
        # Fonts
        ".ttf", ".otf", ".woff", ".woff2", ".eot",
        # Executables and objects
        ".exe", ".dll", ".so", ".dylib", ".bin",
        ".pyc", ".pyo", ".class", ".o", ".obj", ".lib", ".a",
        # Databases and lockfiles
        ".db", ".sqlite", ".sqlite3",
        ".lock", ".lockb",
    }
)

# Extension -> document kind handed to the extractor
DOCUMENT_EXTENSIONS: dict[str, str] = {
    ".pdf": "pdf",
    ".docx": "docx",
    ".doc": "doc",
    ".xlsx": "xlsx",
    ".xls": "xls",
}

# Ordered; first match wins
MAGIC_BYTES: tuple[tuple[bytes, str], ...] = (
    (b"\x89PNG", "PNG"),
    (b"\xff\xd8\xff", "JPEG"),
    (b"GIF8", "GIF"),
    (b"PK\x03\x04", "ZIP"),
    (b"%PDF", "PDF"),
    (b"\x7fELF", "ELF"),
    (b"MZ", "EXE/DLL"),
    (b"Rar!", "RAR"),
    (b"\x1f\x8b", "GZIP"),
    (b"BZh", "BZIP2"),
    (b"\xfd7zXZ", "XZ"),
    (b"\x00\x00\x00", "Null bytes"),
)

FILE_TYPES: dict[str, str] = {
    # JavaScript/TypeScript
    "js": "javascript",
    "jsx": "javascript",
    "mjs": "javascript",
    "cjs": "javascript",
    "ts": "typescript",
    "tsx": "typescript",
    # Web
    "html": "html",
    "htm": "html",
    "css": "css",
    "scss": "scss",
    "sass": "sass",
    "less": "less",
    # Data
    "json": "json",
    "yaml": "yaml",
    "yml": "yaml",
    "xml": "xml",
    "toml": "toml",
    # Documentation
    "md": "markdown",
    "mdx": "markdown",
    "txt": "text",
    "rst": "rst",
    # Python
    "py": "python",
    "pyw": "python",
    "pyx": "python",
    # Other languages
    "go": "go",
    "rs": "rust",
    "java": "java",
    "kt": "kotlin",
    "swift": "swift",
    "c": "c",
    "cpp": "cpp",
    "h": "c",
    "hpp": "cpp",
    "cs": "csharp",
    "rb": "ruby",
    "php": "php",
    "sh": "shell",
    "bash": "shell",
    "zsh": "shell",
    "ps1": "powershell",
    "sql": "sql",
    # Config
    "env": "env",
    "ini": "ini",
    "conf": "config",
    "cfg": "config",
}


class FileKind(str, Enum):
    """Top-level classification of a file."""

    PLAIN_TEXT = "plain_text"
    EXTRACTABLE_DOCUMENT = "extractable_document"
    BINARY = "binary"


@dataclass(frozen=True)
class FileClassification:
    """Classification result; document_kind is set for documents only."""

    kind: FileKind
    document_kind: str | None = None

    @property
    def is_binary(self) -> bool:
        return self.kind == FileKind.BINARY

    @property
    def is_document(self) -> bool:
        return self.kind == FileKind.EXTRACTABLE_DOCUMENT


PLAIN_TEXT = FileClassification(FileKind.PLAIN_TEXT)
BINARY = FileClassification(FileKind.BINARY)


def _extension(path: str | Path) -> str:
    return os.path.splitext(str(path))[1].lower()


def is_binary_extension(path: str | Path) -> bool:
    """Check the extension against the static binary set."""
    return _extension(path) in BINARY_EXTENSIONS


def is_extractable_document(path: str | Path) -> bool:
    """Check whether the extension belongs to a text-extractable document."""
    return _extension(path) in DOCUMENT_EXTENSIONS


def has_magic_bytes(sample: bytes) -> bool:
    """Check whether the sample starts with a known binary signature."""
    if len(sample) < 2:
        return False

    for signature, description in MAGIC_BYTES:
        if sample.startswith(signature):
            logger.debug("Matched binary signature", signature=description)
            return True

    return False


def has_null_bytes(sample: bytes, sample_size: int = NULL_SAMPLE_SIZE) -> bool:
    """Check the first sample_size bytes for a NUL byte."""
    return b"\x00" in sample[:sample_size]


def classify(path: str | Path, sample: bytes | None = None) -> FileClassification:
    """
    Classify a file for indexing.

    Args:
        path: File path; only the extension is inspected.
        sample: Optional leading bytes of the file.

    Returns:
        FileClassification for the file.
    """
    ext = _extension(path)

    if ext in BINARY_EXTENSIONS:
        return BINARY

    # Documents are binary containers; sniffing would misreport them
    if ext in DOCUMENT_EXTENSIONS:
        return FileClassification(
            FileKind.EXTRACTABLE_DOCUMENT,
            document_kind=DOCUMENT_EXTENSIONS[ext],
        )

    if sample:
        if has_magic_bytes(sample) or has_null_bytes(sample):
            return BINARY

    return PLAIN_TEXT


def file_extension(path: str | Path) -> str:
    """Return the lowercase extension without the leading dot."""
    return _extension(path).lstrip(".")


def file_type(path: str | Path) -> str:
    """Map a file's extension to the file_type label stored in payloads."""
    ext = file_extension(path)
    return FILE_TYPES.get(ext) or ext or "unknown"
