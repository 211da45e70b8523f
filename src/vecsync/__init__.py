"""
vecsync - incremental semantic indexing for live file trees.

Watches a project directory, chunks and embeds eligible files, and keeps a
vector store holding exactly the chunks of the current on-disk version of
every non-ignored file.
"""

__version__ = "0.1.0"
__all__ = [
    "Config",
    "IndexingService",
]

from vecsync.config import Config
from vecsync.main import IndexingService
