"""
Configuration module for vecsync.

Provides strongly-typed configuration with pydantic, supporting both
file-based and environment variable configuration.
"""

from __future__ import annotations

import json
import tomllib
from enum import Enum
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EmbeddingProviderName(str, Enum):
    """Supported embedding providers."""

    OLLAMA = "ollama"
    OPENAI = "openai"


class VectorStoreConfig(BaseModel):
    """Vector store (Qdrant) connection configuration."""

    url: str = Field(
        default="http://localhost:6333",
        description="Qdrant server URL",
    )
    location: str | None = Field(
        default=None,
        description="Embedded Qdrant location (':memory:' or a path); overrides url",
    )
    api_key: str | None = Field(
        default=None,
        description="Qdrant API key",
    )
    vector_size: int = Field(
        default=768,
        ge=2,
        le=8192,
        description="Vector dimension; must match the embedding provider output",
    )
    timeout_seconds: int = Field(
        default=30,
        ge=1,
        le=300,
        description="Request timeout in seconds",
    )


class EmbeddingConfig(BaseModel):
    """Embedding provider selection and connection settings."""

    provider: EmbeddingProviderName = Field(
        default=EmbeddingProviderName.OLLAMA,
        description="Primary embedding provider",
    )
    fallback_provider: EmbeddingProviderName | None = Field(
        default=EmbeddingProviderName.OPENAI,
        description="Provider to try when the primary is unreachable",
    )
    ollama_url: str = Field(
        default="http://localhost:11434",
        description="Ollama base URL",
    )
    ollama_model: str = Field(
        default="nomic-embed-text",
        description="Ollama embedding model",
    )
    auto_pull_model: bool = Field(
        default=True,
        description="Pull the Ollama model when it is not available locally",
    )
    openai_api_key: str | None = Field(
        default=None,
        description="OpenAI API key",
    )
    openai_model: str = Field(
        default="text-embedding-3-small",
        description="OpenAI embedding model",
    )
    openai_base_url: str | None = Field(
        default=None,
        description="Override for the OpenAI API base URL",
    )
    openai_dimensions: int | None = Field(
        default=768,
        ge=2,
        le=8192,
        description=(
            "Output dimension requested from OpenAI; keep equal to "
            "vector_store.vector_size. None uses the model default"
        ),
    )
    batch_size: int = Field(
        default=64,
        ge=1,
        le=2048,
        description="Maximum texts per provider batch request",
    )
    timeout_seconds: int = Field(
        default=60,
        ge=5,
        le=600,
        description="Request timeout in seconds",
    )


class ChunkingConfig(BaseModel):
    """Line-aligned text chunking configuration."""

    chunk_size: int = Field(
        default=1000,
        ge=100,
        le=20000,
        description="Target chunk size in characters",
    )
    chunk_overlap: int = Field(
        default=200,
        ge=0,
        le=5000,
        description="Overlap between consecutive chunks in characters",
    )
    document_chunk_size: int = Field(
        default=1500,
        ge=100,
        le=20000,
        description="Target chunk size for extracted documents",
    )
    document_chunk_overlap: int = Field(
        default=200,
        ge=0,
        le=5000,
        description="Overlap for extracted documents",
    )

    @model_validator(mode="after")
    def check_overlap(self) -> "ChunkingConfig":
        """Overlap must be smaller than the chunk it overlaps."""
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")
        if self.document_chunk_overlap >= self.document_chunk_size:
            raise ValueError(
                "document_chunk_overlap must be smaller than document_chunk_size"
            )
        return self


class WatcherConfig(BaseModel):
    """File system watcher configuration."""

    debounce_ms: int = Field(
        default=500,
        ge=10,
        le=10000,
        description="Debounce delay in milliseconds",
    )
    max_file_size_mb: float = Field(
        default=1.0,
        gt=0,
        le=100,
        description="Maximum plain-text file size to index in MB",
    )
    max_document_size_mb: float = Field(
        default=50.0,
        gt=0,
        le=1000,
        description="Maximum extractable document size to index in MB",
    )
    sample_bytes: int = Field(
        default=512,
        ge=16,
        le=65536,
        description="Bytes sampled for magic-byte and null-byte detection",
    )
    ignore_file_name: str = Field(
        default=".vecsyncignore",
        description="Project-specific ignore override file",
    )
    observer_join_timeout_seconds: float = Field(
        default=5.0,
        ge=0.1,
        le=60.0,
        description="How long to wait for the observer thread on stop",
    )


class IndexingConfig(BaseModel):
    """Work queue and write-retry configuration."""

    workers: int = Field(
        default=4,
        ge=1,
        le=64,
        description="Concurrent indexing workers",
    )
    queue_size: int = Field(
        default=1000,
        ge=1,
        le=100000,
        description="Maximum queued file events before submit blocks",
    )
    max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts for the delete+insert unit",
    )
    retry_min_seconds: float = Field(
        default=0.5,
        ge=0.0,
        le=60.0,
        description="Minimum backoff between attempts",
    )
    retry_max_seconds: float = Field(
        default=10.0,
        ge=0.0,
        le=300.0,
        description="Maximum backoff between attempts",
    )
    shutdown_timeout_seconds: float = Field(
        default=30.0,
        ge=0.0,
        le=600.0,
        description="Best-effort wait for in-flight work on shutdown",
    )
    scroll_page_size: int = Field(
        default=256,
        ge=1,
        le=10000,
        description="Page size when scrolling a collection",
    )


class Config(BaseSettings):
    """
    Main vecsync configuration.

    Can be configured via:
    1. Configuration file (vecsync.toml or vecsync.yaml)
    2. Environment variables with VECSYNC_ prefix
    3. Programmatic overrides
    """

    model_config = SettingsConfigDict(
        env_prefix="VECSYNC_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    project_root: Path = Field(
        default_factory=lambda: Path.cwd(),
        description="Project root directory",
    )
    project_name: str | None = Field(
        default=None,
        description="Project name (defaults to the root directory name)",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    vector_store: VectorStoreConfig = Field(default_factory=VectorStoreConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    watcher: WatcherConfig = Field(default_factory=WatcherConfig)
    indexing: IndexingConfig = Field(default_factory=IndexingConfig)

    @field_validator("project_root", mode="before")
    @classmethod
    def resolve_project_root(cls, v: Path | str) -> Path:
        """Resolve project root to absolute path."""
        path = Path(v) if isinstance(v, str) else v
        return path.resolve()

    @property
    def effective_project_name(self) -> str:
        """Project name, falling back to the root directory name."""
        return self.project_name or self.project_root.name

    @property
    def collection_name(self) -> str:
        """Vector store collection for this project."""
        from vecsync.storage.vector_store import project_collection_name

        return project_collection_name(self.effective_project_name)

    @classmethod
    def from_file(cls, path: Path) -> "Config":
        """Load configuration from a TOML, YAML or JSON file."""
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        suffix = path.suffix.lower()
        content = path.read_text()

        if suffix == ".toml":
            data = tomllib.loads(content)
        elif suffix in (".yaml", ".yml"):
            data = yaml.safe_load(content) or {}
        elif suffix == ".json":
            data = json.loads(content)
        else:
            raise ValueError(f"Unsupported config format: {suffix}")

        return cls(**data)

    def to_dict(self) -> dict:
        """Convert configuration to dictionary."""
        return self.model_dump()


def load_config(
    config_path: Path | None = None,
    project_root: Path | None = None,
) -> Config:
    """
    Load configuration with automatic discovery.

    Priority:
    1. Explicit config_path if provided
    2. vecsync.toml in project_root
    3. .vecsync/config.toml in project_root
    4. vecsync.yaml in project_root
    5. Default configuration
    """
    root = (project_root or Path.cwd()).resolve()

    if config_path and config_path.exists():
        config = Config.from_file(config_path)
        return config.model_copy(update={"project_root": root})

    candidates = [
        root / "vecsync.toml",
        root / ".vecsync" / "config.toml",
        root / "vecsync.yaml",
    ]

    for candidate in candidates:
        if candidate.exists():
            config = Config.from_file(candidate)
            return config.model_copy(update={"project_root": root})

    return Config(project_root=root)
