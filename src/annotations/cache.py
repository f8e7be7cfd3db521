"""
JIT annotation cache.

Annotations produced outside the source (heuristics, an external annotator,
manual edits) are kept per method key together with the body hash they
describe. They are merged into index entries at read time, and only while
that hash still matches.

Storage format:
{
    "version": "1.0",
    "generated": "2024-01-15T10:30:00",
    "annotations": {
        "Orb.nova": {"role": "helper", "annotatedBodyHash": "abc123...", ...}
    }
}
"""

import json
import logging
from pathlib import Path
from typing import Optional, Union

from ..indexer.store import write_json_atomic
from ..models import (
    AnnotationRecord,
    AnnotationStatus,
    MethodContext,
    MethodEntry,
    Role,
    RoleSource,
    now_iso,
)

logger = logging.getLogger(__name__)

CACHE_VERSION = "1.0"


class AnnotationCache:
    """Explicit store with a load/save lifecycle"""

    def __init__(self, path: Path):
        self.path = Path(path)
        self.annotations: dict[str, AnnotationRecord] = {}
        self.generated: Optional[str] = None
        self._loaded = False

    def load(self) -> bool:
        """Load from disk. Returns False if missing or unreadable (cache starts empty)."""
        self._loaded = True
        self.annotations = {}
        if not self.path.exists():
            return False
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            self.annotations = {
                key: AnnotationRecord.from_dict(record)
                for key, record in data.get("annotations", {}).items()
            }
            self.generated = data.get("generated")
            return True
        except (ValueError, AttributeError, TypeError, KeyError, OSError) as e:
            logger.warning("Failed to load annotation cache from %s: %s", self.path, e)
            return False

    def _ensure_loaded(self):
        if not self._loaded:
            self.load()

    def save(self):
        self._ensure_loaded()
        self.generated = now_iso()
        write_json_atomic(self.path, {
            "version": CACHE_VERSION,
            "generated": self.generated,
            "annotations": {key: rec.to_dict() for key, rec in sorted(self.annotations.items())},
        })
        logger.debug("Saved %d annotations to %s", len(self.annotations), self.path)

    def get(self, key: str) -> Optional[AnnotationRecord]:
        self._ensure_loaded()
        return self.annotations.get(key)

    def set(self, key: str, annotation: Union[AnnotationRecord, dict], body_hash: str) -> AnnotationRecord:
        """Store an annotation for the body it was produced from."""
        self._ensure_loaded()
        if isinstance(annotation, dict):
            annotation = AnnotationRecord.from_dict(annotation)
        annotation.annotated_body_hash = body_hash
        annotation.annotated_at = now_iso()
        self.annotations[key] = annotation
        return annotation

    def remove(self, key: str) -> bool:
        self._ensure_loaded()
        return self.annotations.pop(key, None) is not None

    def is_up_to_date(self, key: str, current_hash: str) -> bool:
        record = self.get(key)
        return record is not None and record.annotated_body_hash == current_hash

    def merge_with_method(self, entry: MethodEntry, key: Optional[str] = None) -> MethodEntry:
        """
        Merged view of an index entry.

        Fields declared in the source win. Empty fields are filled from the
        cached record, and only while its body hash matches the entry. A role
        guessed from naming rules yields to a cached role.
        """
        record = self.get(key or entry.key)
        if record is None or record.annotated_body_hash != entry.body_hash:
            return entry

        merged = entry.copy(from_cache=True, cache_source=record.source)

        if record.role is not None and (entry.role is None or entry.role_source != RoleSource.TAG):
            merged.role = record.role
        if not entry.description and record.description:
            merged.description = record.description
        if not entry.has_effects and record.effects:
            merged.effects = {kind: list(targets) for kind, targets in record.effects.items()}
        if not entry.consumers and record.consumers:
            merged.consumers = list(record.consumers)
        if entry.context.is_empty() and not record.context.is_empty():
            merged.context = MethodContext(
                list(record.context.requires), list(record.context.provides)
            )
        return merged

    def status_for(self, entry: Optional[MethodEntry]) -> AnnotationStatus:
        """
        complete - role and description from source, or a fresh cached record
        outdated - cached record for an older body
        partial  - some metadata in source
        missing  - nothing at all
        """
        if entry is None:
            return AnnotationStatus.MISSING

        has_role = entry.role is not None and entry.role != Role.INTERNAL
        if entry.role_source == RoleSource.TAG and has_role and entry.description:
            return AnnotationStatus.COMPLETE

        record = self.get(entry.key)
        if record is not None:
            if record.annotated_body_hash != entry.body_hash:
                return AnnotationStatus.OUTDATED
            return AnnotationStatus.COMPLETE

        if entry.role_source == RoleSource.TAG or entry.description or entry.has_effects or entry.consumers:
            return AnnotationStatus.PARTIAL
        return AnnotationStatus.MISSING

    def prune(self, live_keys) -> int:
        """Drop records whose method no longer exists."""
        self._ensure_loaded()
        live = set(live_keys)
        dead = [key for key in self.annotations if key not in live]
        for key in dead:
            del self.annotations[key]
        return len(dead)

    def get_stats(self) -> dict:
        self._ensure_loaded()
        by_source: dict[str, int] = {}
        for record in self.annotations.values():
            by_source[record.source.value] = by_source.get(record.source.value, 0) + 1
        return {
            "total": len(self.annotations),
            "bySource": by_source,
            "generated": self.generated,
        }

