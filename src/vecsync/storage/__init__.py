"""
Storage modules for vecsync.

Provides the Qdrant-backed vector store gateway and the typed payload
filter expressions it accepts.
"""

from vecsync.storage.filters import And, AnyOf, Equals, compile_filter
from vecsync.storage.vector_store import VectorStore, project_collection_name

__all__ = [
    "VectorStore",
    "project_collection_name",
    "And",
    "AnyOf",
    "Equals",
    "compile_filter",
]
