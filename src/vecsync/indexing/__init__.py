"""
Indexing modules for vecsync.

Provides:
- Ignore rule evaluation (.gitignore, .vecsyncignore)
- Binary / document / plain-text classification
- Line-aligned text chunking
- Embedding providers (Ollama, OpenAI) behind a fallback gateway
- Debounced file system watching
- The delete-then-insert indexing orchestrator and its work queue
"""

from vecsync.indexing.chunker import Chunker, TextChunk, chunk_text
from vecsync.indexing.classifier import FileClassification, FileKind, classify
from vecsync.indexing.embedder import (
    EmbeddingGateway,
    EmbeddingProvider,
    OllamaProvider,
    OpenAIProvider,
)
from vecsync.indexing.ignore_rules import (
    IgnoreRuleSet,
    create_default_ignore_file,
    is_ignored,
    load_ignore_rules,
    parse_ignore_file,
)
from vecsync.indexing.orchestrator import (
    DocumentExtractor,
    ExtractedDocument,
    IndexingOrchestrator,
    KeyedLock,
)
from vecsync.indexing.queue import IndexingQueue
from vecsync.indexing.watcher import ChangeWatcher, Debouncer, walk_project

__all__ = [
    "ChangeWatcher",
    "Debouncer",
    "walk_project",
    "Chunker",
    "TextChunk",
    "chunk_text",
    "FileClassification",
    "FileKind",
    "classify",
    "EmbeddingGateway",
    "EmbeddingProvider",
    "OllamaProvider",
    "OpenAIProvider",
    "IgnoreRuleSet",
    "create_default_ignore_file",
    "is_ignored",
    "load_ignore_rules",
    "parse_ignore_file",
    "DocumentExtractor",
    "ExtractedDocument",
    "IndexingOrchestrator",
    "KeyedLock",
    "IndexingQueue",
]
