"""
Exception hierarchy for vecsync.

Orchestration-level failures (no embedding provider, unreachable store,
unreadable file) are raised as subclasses of VecsyncError so callers can
report them per file without catching unrelated exceptions.
"""


class VecsyncError(Exception):
    """Base exception for vecsync errors."""

    pass


class ConfigurationError(VecsyncError):
    """Raised when there's a configuration problem."""

    pass


class EmbeddingUnavailableError(ConfigurationError):
    """Raised when no configured embedding provider is reachable."""

    pass


class EmbeddingError(VecsyncError):
    """Raised when a reachable provider fails to produce embeddings."""

    pass


class VectorStoreError(VecsyncError):
    """Raised when a vector store operation fails."""

    pass


class IndexingError(VecsyncError):
    """Raised when a single file cannot be indexed."""

    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path


class FileReadError(IndexingError):
    """Raised when a file cannot be read from disk."""

    pass


class ClassificationError(IndexingError):
    """Raised when a file cannot be classified."""

    pass
