"""
Method snapshots.

A snapshot records the verbatim code of extracted methods plus a hash of
every involved file. It is written once at extraction and read once at
reinjection, where the file hashes guard against concurrent edits.
"""

import hashlib
import json
import logging
import re
from pathlib import Path
from typing import Iterable, Optional, Union

from .indexer.method_indexer import MethodIndexer
from .indexer.store import write_json_atomic
from .models import Snapshot, SnapshotFile, SnapshotMethod

logger = logging.getLogger(__name__)

_NORMALIZE_STEPS = [
    (re.compile(r"\s+"), " "),
    (re.compile(r"\s*\{\s*"), " { "),
    (re.compile(r"\s*\}\s*"), " } "),
    (re.compile(r"\s*\(\s*"), "("),
    (re.compile(r"\s*\)\s*"), ")"),
    (re.compile(r"\s*;\s*"), ";"),
    (re.compile(r"\s*,\s*"), ", "),
]

FUNCTIONS_GROUP = "_functions"
SEPARATOR = "// " + "=" * 44


def normalize_code(code: str) -> str:
    """Whitespace-insensitive form of a code fragment, for comparisons only."""
    text = code.replace("\r\n", "\n")
    for pattern, replacement in _NORMALIZE_STEPS:
        text = pattern.sub(replacement, text)
    return text.strip()


def hash_file(path: Union[str, Path]) -> Optional[str]:
    """sha256 of the raw file bytes (16 hex chars), None if unreadable"""
    try:
        return hashlib.sha256(Path(path).read_bytes()).hexdigest()[:16]
    except OSError:
        return None


class MethodSnapshot:
    """Capture, persist and render snapshots"""

    def __init__(self, indexer: MethodIndexer):
        self.indexer = indexer

    def capture(self, keys: Iterable[str], scores: Optional[dict[str, int]] = None) -> Snapshot:
        """
        Snapshot the current code of the given methods.

        Keys that are not indexed or cannot be extracted are skipped.
        """
        scores = scores or {}
        snapshot = Snapshot()
        root = self.indexer.config.project_root

        for key in keys:
            entry = self.indexer.get_method(key)
            if entry is None:
                logger.warning("Method not found, not captured: %s", key)
                continue
            code = self.indexer.extract_method_code(key)
            if code is None:
                logger.warning("Could not extract code, not captured: %s", key)
                continue

            snapshot.methods[key] = SnapshotMethod(
                code=code,
                normalized_code=normalize_code(code),
                file=entry.file,
                name=entry.name,
                class_name=entry.class_name,
                line=entry.line,
                end_line=entry.end_line,
                score=scores.get(key, 0),
            )
            file_info = snapshot.files.get(entry.file)
            if file_info is None:
                absolute = root / entry.file
                file_info = SnapshotFile(
                    absolute_path=str(absolute),
                    original_file_hash=hash_file(absolute) or "",
                )
                snapshot.files[entry.file] = file_info
            file_info.method_keys.append(key)

        logger.info("Captured %d methods from %d files", len(snapshot.methods), len(snapshot.files))
        return snapshot

    @staticmethod
    def check_file_integrity(snapshot: Snapshot) -> dict[str, list[str]]:
        """Compare each file's current hash with the one recorded at capture."""
        result: dict[str, list[str]] = {"unchanged": [], "modified": [], "missing": []}
        for rel_path, info in snapshot.files.items():
            current = hash_file(info.absolute_path)
            if current is None:
                result["missing"].append(rel_path)
            elif current == info.original_file_hash:
                result["unchanged"].append(rel_path)
            else:
                result["modified"].append(rel_path)
        return result

    @staticmethod
    def save(snapshot: Snapshot, path: Union[str, Path]) -> Path:
        path = Path(path)
        write_json_atomic(path, snapshot.to_dict())
        logger.info("Snapshot saved: %s", path)
        return path

    @staticmethod
    def load(path: Union[str, Path]) -> Snapshot:
        return Snapshot.from_dict(json.loads(Path(path).read_text(encoding="utf-8")))

    @staticmethod
    def render_artifact(snapshot: Snapshot, include_header: bool = True, group_by_class: bool = True) -> str:
        """
        Editable text with one marked block per method:

            // Method: Orb.nova
            // File: src/Orb.js:12
            // Score: 16
            <code>
        """
        parts = []
        if include_header:
            parts.append(
                "/**\n"
                " * Extracted methods - edit the code below, keep the marker comments.\n"
                f" * Generated: {snapshot.timestamp}\n"
                f" * Methods: {', '.join(snapshot.methods)}\n"
                " */\n\n"
            )

        groups: dict[str, list[tuple[str, SnapshotMethod]]] = {}
        for key, method in snapshot.methods.items():
            group = method.class_name if group_by_class and method.class_name else FUNCTIONS_GROUP
            groups.setdefault(group, []).append((key, method))

        for group, methods in groups.items():
            if group != FUNCTIONS_GROUP:
                parts.append(f"{SEPARATOR}\n// Class: {group}\n{SEPARATOR}\n\n")
            for key, method in methods:
                parts.append(
                    f"// Method: {key}\n"
                    f"// File: {method.file}:{method.line}\n"
                    f"// Score: {method.score or 0}\n"
                    f"{method.code}\n\n"
                )
        return "".join(parts)
