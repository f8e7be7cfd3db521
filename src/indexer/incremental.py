"""
Incremental indexing - only re-parse what changed.

Core logic:
1. List current source files with their stat (mtime, size)
2. Compare with the FileRecords of the stored index
3. Same mtime + size -> skip, otherwise re-parse
4. Files in the index but no longer on disk -> purge
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, NamedTuple

from ..models import FileRecord

logger = logging.getLogger(__name__)

BACKUP_SUFFIX = ".backup"


class FileStat(NamedTuple):
    path: Path
    mtime: float
    size: int


@dataclass
class ChangeSet:
    """Change set between the stored index and the source tree"""
    added: list[str] = field(default_factory=list)
    modified: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.added or self.modified or self.deleted)

    def all_changed(self) -> list[str]:
        return self.added + self.modified

    def summary(self) -> str:
        return f"+{len(self.added)} ~{len(self.modified)} -{len(self.deleted)} ={len(self.unchanged)}"


def scan_directory_stats(
    src_root: Path,
    project_root: Path,
    extensions: Iterable[str],
    ignore_dirs: Iterable[str] = (),
    max_file_size: int = 0,
) -> dict[str, FileStat]:
    """
    List eligible source files under src_root.

    Skips dot-directories, ignored directory names, *.backup files and files
    larger than max_file_size (0 = no limit).

    Returns:
        {path relative to project_root (posix): FileStat}
    """
    extensions = set(extensions)
    ignore_dirs = set(ignore_dirs)
    result = {}
    if not src_root.is_dir():
        logger.warning("Source directory not found: %s", src_root)
        return result

    for dirpath, dirnames, filenames in os.walk(src_root):
        dirnames[:] = sorted(
            d for d in dirnames
            if not d.startswith(".") and d not in ignore_dirs
        )
        for filename in sorted(filenames):
            if filename.endswith(BACKUP_SUFFIX):
                continue
            file_path = Path(dirpath) / filename
            if file_path.suffix not in extensions:
                continue
            try:
                stat = file_path.stat()
            except OSError as e:
                logger.warning("Cannot stat %s: %s", file_path, e)
                continue
            if max_file_size and stat.st_size > max_file_size:
                logger.debug("Skipping %s: %d bytes over size limit", file_path, stat.st_size)
                continue
            rel_path = file_path.relative_to(project_root).as_posix()
            result[rel_path] = FileStat(file_path, stat.st_mtime, stat.st_size)

    return result


def detect_changes(
    records: dict[str, FileRecord],
    current: dict[str, FileStat],
    force: bool = False,
) -> ChangeSet:
    """
    Compare stored FileRecords with the current listing.

    With force every present file counts as modified.
    """
    changes = ChangeSet()
    for rel_path, stat in current.items():
        record = records.get(rel_path)
        if record is None:
            changes.added.append(rel_path)
        elif force or not record.matches(stat.mtime, stat.size):
            changes.modified.append(rel_path)
        else:
            changes.unchanged.append(rel_path)
    changes.deleted = [p for p in records if p not in current]
    return changes
