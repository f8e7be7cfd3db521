"""Indexer module exports."""

from .incremental import ChangeSet, FileStat, detect_changes, scan_directory_stats
from .method_indexer import IndexStats, MethodIndexer
from .roles import RoleRules
from .store import IndexStore, write_json_atomic, write_text_atomic

__all__ = [
    "ChangeSet",
    "FileStat",
    "IndexStats",
    "IndexStore",
    "MethodIndexer",
    "RoleRules",
    "detect_changes",
    "scan_directory_stats",
    "write_json_atomic",
    "write_text_atomic",
]
