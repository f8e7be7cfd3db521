"""
Persisted index store.

The index document is owned by one writer. Saves go through a temp file and
os.replace, so an interrupted save leaves the previous index intact.
"""

import json
import logging
import os
import shutil
import tempfile
from pathlib import Path

from ..models import MethodIndex, now_iso

logger = logging.getLogger(__name__)


def write_text_atomic(path: Path, text: str):
    """Write text to a sibling temp file, then swap it into place. Newlines are written as given."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(text)
        if path.exists():
            shutil.copymode(path, tmp_name)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


def write_json_atomic(path: Path, data: dict):
    """Write JSON to a sibling temp file, then swap it into place."""
    write_text_atomic(path, json.dumps(data, indent=2, ensure_ascii=False))


class IndexStore:
    """Load/save lifecycle for the method index file"""

    def __init__(self, path: Path, root_path: str = ""):
        self.path = Path(path)
        self.root_path = root_path

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> MethodIndex:
        """Load the index, or an empty one if it is missing or unreadable."""
        if self.path.exists():
            try:
                data = json.loads(self.path.read_text(encoding="utf-8"))
                index = MethodIndex.from_dict(data)
                logger.debug("Loaded index from %s (%d methods)", self.path, len(index.methods))
                return index
            except (json.JSONDecodeError, KeyError, TypeError, ValueError, OSError) as e:
                logger.warning("Failed to load index from %s: %s", self.path, e)
        return MethodIndex(root_path=self.root_path)

    def save(self, index: MethodIndex):
        index.generated = now_iso()
        if self.root_path and not index.root_path:
            index.root_path = self.root_path
        write_json_atomic(self.path, index.to_dict())
        logger.debug("Saved index to %s", self.path)
