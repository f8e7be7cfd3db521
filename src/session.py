"""
Search Session: refine one query's result set step by step.

Sessions are in-memory only and never persisted. Every operation appends
an immutable record to the session history.
"""

import logging
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

from .annotations.cache import AnnotationCache
from .annotations.heuristic import HeuristicAnnotator
from .models import AnnotationRecord, AnnotationSource, AnnotationStatus, MethodEntry, SearchHit
from .search import MethodSearch

logger = logging.getLogger(__name__)

DIRECTIONS = ("callers", "calls", "both")
LEVEL_KEYS, LEVEL_DESCRIPTIONS, LEVEL_SIGNATURES, LEVEL_CODE, LEVEL_FILES = range(5)

SESSION_MAX_METHODS = 15
SESSION_MIN_SCORE = 1


@dataclass(frozen=True)
class HistoryEntry:
    operation: str
    details: Mapping = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {"operation": self.operation, "details": dict(self.details), "timestamp": self.timestamp}


class SearchSession:
    """
    Mutable result set for one query.

    Usage:
        session = SearchSession(search, "create orb")
        session.exclude(["Orb.debug"])
        session.expand("Orb.nova", depth=2)
        code = session.get_at_level(3)
    """

    def __init__(
        self,
        search: MethodSearch,
        query: str,
        annotation_cache: Optional[AnnotationCache] = None,
        creator_suffixes: Optional[Iterable[str]] = None,
        max_methods: int = SESSION_MAX_METHODS,
        min_score: int = SESSION_MIN_SCORE,
        **options,
    ):
        self.search = search
        self.indexer = search.indexer
        self.annotation_cache = annotation_cache or search.annotation_cache
        self.creator_suffixes = list(creator_suffixes or self.indexer.config.creator_suffixes)
        self.query = query
        self.options = {"max_methods": max_methods, "min_score": min_score, **options}

        self._results: list[SearchHit] = []
        self._excluded: set[str] = set()
        self._expanded: set[str] = set()
        self._loaded_code: dict[str, str] = {}
        self._loaded_files: dict[str, dict] = {}
        self._history: list[HistoryEntry] = []

        self._run()
        self._add_history("create", query=query, count=self.count)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def results(self) -> list[SearchHit]:
        return list(self._results)

    @property
    def count(self) -> int:
        return len(self._results)

    @property
    def keys(self) -> list[str]:
        return [hit.key for hit in self._results]

    @property
    def excluded(self) -> frozenset:
        return frozenset(self._excluded)

    @property
    def history(self) -> tuple[HistoryEntry, ...]:
        return tuple(self._history)

    def _add_history(self, operation: str, **details):
        self._history.append(HistoryEntry(operation, MappingProxyType(details)))

    def _run(self):
        options = dict(self.options)
        limit = options.pop("max_methods")
        hits = self.search.find_relevant_methods(
            self.query, max_methods=limit + len(self._excluded), **options
        )
        self._results = [hit for hit in hits if hit.key not in self._excluded][:limit]

    def summary(self) -> dict:
        by_role: dict[str, int] = {}
        for hit in self._results:
            role = hit.method.role.value if hit.method.role else "none"
            by_role[role] = by_role.get(role, 0) + 1
        return {
            "query": self.query,
            "count": self.count,
            "excluded": len(self._excluded),
            "expanded": sorted(self._expanded),
            "byRole": by_role,
            "loadedCode": len(self._loaded_code),
            "loadedFiles": len(self._loaded_files),
            "operations": len(self._history),
        }

    # ------------------------------------------------------------------
    # Refinement
    # ------------------------------------------------------------------

    def exclude(self, keys: Iterable[str]) -> int:
        """Remove keys now and keep them out of later retries. Returns how many were removed."""
        keys = set(keys)
        self._excluded |= keys
        before = self.count
        self._results = [hit for hit in self._results if hit.key not in keys]
        removed = before - self.count
        self._add_history("exclude", keys=tuple(sorted(keys)), removed=removed)
        return removed

    def reset_exclusions(self):
        self._excluded.clear()
        self._add_history("reset_exclusions")

    def retry(self, new_query: Optional[str] = None, **new_options) -> list[SearchHit]:
        """Re-run the search, optionally with a new query/options. Exclusions still apply."""
        if new_query:
            self.query = new_query
        self.options.update(new_options)
        self._run()
        self._add_history("retry", query=self.query, count=self.count)
        return self.results

    def _related(self, method: MethodEntry, direction: str) -> list[MethodEntry]:
        related = []
        if direction in ("callers", "both"):
            for consumer in method.consumers:
                related.extend(self.indexer.methods_of_class(consumer))
        if direction in ("calls", "both"):
            for class_name in method.effects.get("creates", []):
                for suffix in self.creator_suffixes:
                    creator = self.indexer.get_method(f"{class_name}.{suffix}")
                    if creator is not None:
                        related.append(creator)
        return related

    def expand(self, key: str, depth: int = 1, direction: str = "both") -> list[str]:
        """
        Pull in methods related to key.

        callers: methods of the classes listed in the method's consumers
        calls:   creator methods (Class.<suffix>) of the classes it creates

        Added entries get score 0. A key is expanded at most once.

        Returns:
            Keys added to the result set
        """
        if direction not in DIRECTIONS:
            raise ValueError(f"direction must be one of {DIRECTIONS}, got {direction!r}")
        if key in self._expanded:
            return []
        self._expanded.add(key)

        method = self.search.get_method(key)
        if method is None:
            self._add_history("expand", key=key, added=())
            return []

        present = set(self.keys)
        added = []
        related_keys = []
        for entry in self._related(method, direction):
            related_keys.append(entry.key)
            if entry.key in present or entry.key in self._excluded:
                continue
            present.add(entry.key)
            merged = self.search.get_method(entry.key) or entry
            self._results.append(SearchHit(key=entry.key, method=merged, score=0))
            added.append(entry.key)

        self._add_history("expand", key=key, depth=depth, direction=direction, added=tuple(added))

        if depth > 1:
            for related_key in dict.fromkeys(related_keys):
                added.extend(self.expand(related_key, depth - 1, direction))
        return added

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load_code(self, keys: Iterable[str]) -> dict[str, str]:
        """Extract code for keys, once per key per session."""
        loaded = {}
        for key in keys:
            if key not in self._loaded_code:
                code = self.indexer.extract_method_code(key)
                if code is None:
                    continue
                self._loaded_code[key] = code
            loaded[key] = self._loaded_code[key]
        self._add_history("load_code", keys=tuple(loaded))
        return loaded

    def load_file(self, rel_path: str) -> Optional[dict]:
        """Whole file content, once per path per session. Paths outside the project are refused."""
        if rel_path in self._loaded_files:
            return self._loaded_files[rel_path]

        root = self.indexer.config.project_root
        file_path = (root / rel_path).resolve()
        try:
            file_path.relative_to(root)
        except ValueError:
            logger.warning("Refusing to load file outside the project: %s", rel_path)
            return None
        try:
            content = file_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Cannot load %s: %s", rel_path, e)
            return None

        loaded = {"path": rel_path, "content": content, "lines": len(content.splitlines())}
        self._loaded_files[rel_path] = loaded
        self._add_history("load_file", path=rel_path)
        return loaded

    def get_all_loaded_code(self) -> dict[str, str]:
        return dict(self._loaded_code)

    def get_all_loaded_files(self) -> dict[str, dict]:
        return dict(self._loaded_files)

    def get_at_level(self, level: int = LEVEL_DESCRIPTIONS, include_descriptions: bool = True):
        """
        Results with progressive detail.

        0: keys only
        1: + class, name, role, description
        2: + file, signature, effects, consumers
        3: + extracted code
        4: whole files grouped by path

        Unknown levels fall back to 1.
        """
        if level == LEVEL_KEYS:
            return self.keys

        if level == LEVEL_FILES:
            groups: dict[str, dict] = {}
            for hit in self._results:
                path = hit.method.file
                if path not in groups:
                    loaded = self.load_file(path)
                    groups[path] = {
                        "path": path,
                        "content": loaded["content"] if loaded else None,
                        "methods": [],
                    }
                groups[path]["methods"].append(hit.key)
            return list(groups.values())

        if level not in (LEVEL_DESCRIPTIONS, LEVEL_SIGNATURES, LEVEL_CODE):
            level = LEVEL_DESCRIPTIONS

        if level == LEVEL_CODE:
            self.load_code(self.keys)

        items = []
        for hit in self._results:
            method = hit.method
            item = {
                "key": hit.key,
                "class": method.class_name,
                "name": method.name,
                "role": method.role.value if method.role else None,
                "score": hit.score,
            }
            if level >= LEVEL_SIGNATURES:
                item["file"] = method.file
                item["signature"] = method.signature
            if level == LEVEL_SIGNATURES:
                item["effects"] = method.effects
                item["consumers"] = method.consumers
            if level == LEVEL_CODE:
                item["code"] = self._loaded_code.get(hit.key)
            if include_descriptions and method.description:
                item["description"] = method.description
            items.append(item)
        return items

    # ------------------------------------------------------------------
    # JIT annotations
    # ------------------------------------------------------------------

    def _require_cache(self) -> AnnotationCache:
        if self.annotation_cache is None:
            raise ValueError("Session has no annotation cache")
        return self.annotation_cache

    def check_annotations(self) -> dict[str, list[str]]:
        """Classify current results as complete / outdated / partial / missing."""
        cache = self._require_cache()
        result: dict[str, list[str]] = {status.value: [] for status in AnnotationStatus}
        for key in self.keys:
            status = cache.status_for(self.indexer.get_method(key))
            result[status.value].append(key)
        self._add_history("check_annotations", **{k: len(v) for k, v in result.items()})
        return result

    def get_methods_needing_annotation(
        self,
        include_outdated: bool = True,
        include_partial: bool = False,
        max_methods: int = 5,
    ) -> dict:
        status = self.check_annotations()
        candidates = list(status[AnnotationStatus.MISSING.value])
        if include_outdated:
            candidates += status[AnnotationStatus.OUTDATED.value]
        if include_partial:
            candidates += status[AnnotationStatus.PARTIAL.value]

        methods = []
        for key in candidates[:max_methods]:
            entry = self.indexer.get_method(key)
            code = self.load_code([key]).get(key)
            if entry is None or not code:
                continue
            methods.append({
                "key": key,
                "file": entry.file,
                "class": entry.class_name,
                "name": entry.name,
                "signature": entry.signature,
                "currentRole": entry.role.value if entry.role else None,
                "currentDescription": entry.description,
                "bodyHash": entry.body_hash,
                "code": code,
            })

        tokens_estimate = -(-sum(len(m["code"]) for m in methods) // 4)
        self._add_history(
            "get_methods_needing_annotation",
            requested=min(len(candidates), max_methods),
            with_code=len(methods),
            tokens_estimate=tokens_estimate,
        )
        return {
            "needsAnnotation": methods,
            "alreadyComplete": len(status[AnnotationStatus.COMPLETE.value]),
            "tokensEstimate": tokens_estimate,
        }

    def apply_annotations(self, annotations: Iterable[dict]) -> int:
        """
        Write externally produced annotations to the cache.

        Each item needs "key" and "bodyHash"; an item whose hash does not
        match the method's current body is rejected.

        Returns:
            Number of annotations applied
        """
        cache = self._require_cache()
        applied = 0
        rejected = []
        for item in annotations:
            key = item.get("key")
            entry = self.indexer.get_method(key) if key else None
            if entry is None:
                rejected.append(key)
                continue
            if item.get("bodyHash") != entry.body_hash:
                logger.warning("Rejected annotation for %s: body hash does not match", key)
                rejected.append(key)
                continue
            record = AnnotationRecord.from_dict({"source": AnnotationSource.EXTERNAL.value, **item})
            cache.set(key, record, entry.body_hash)
            applied += 1

        if applied:
            cache.save()
        self._add_history("apply_annotations", applied=applied, rejected=tuple(rejected))
        return applied

    def annotate_heuristically(self, include_outdated: bool = True) -> int:
        """Fill missing (and outdated) annotations with heuristic ones."""
        cache = self._require_cache()
        status = self.check_annotations()
        keys = list(status[AnnotationStatus.MISSING.value])
        if include_outdated:
            keys += status[AnnotationStatus.OUTDATED.value]

        annotator = HeuristicAnnotator(self.indexer)
        applied = 0
        for key in keys:
            record = annotator.annotate(key)
            if record is None:
                continue
            cache.set(key, record, record.annotated_body_hash)
            applied += 1
        if applied:
            cache.save()
            self._refresh_merged()
        self._add_history("annotate_heuristically", applied=applied)
        return applied

    def _refresh_merged(self):
        self._results = [
            SearchHit(hit.key, self.search.get_method(hit.key) or hit.method, hit.score)
            for hit in self._results
        ]

    def annotation_request(self, **options) -> dict:
        """Prompt asking an external annotator for the methods that need it."""
        needed = self.get_methods_needing_annotation(**options)
        methods = needed["needsAnnotation"]
        if not methods:
            return {"prompt": None, "methods": [], "tokensEstimate": 0}

        lines = [
            "## Annotation Request",
            "",
            "Analyze the following methods. For each one return a JSON object with:",
            "- `key`: the method key",
            "- `bodyHash`: the body hash shown with the method (unchanged)",
            "- `role`: entry|core|service|flow|bridge|helper|internal|adapter",
            "- `description`: one line",
            "- `effects`: { creates: [...], mutates: [...], emits: [...] }",
            "- `consumers`: [classes that call this method]",
            "",
            "### Methods",
            "",
        ]
        for method in methods:
            lines += [
                f"#### {method['key']}",
                f"File: {method['file']}",
                f"Body hash: {method['bodyHash']}",
                "```javascript",
                method["code"],
                "```",
                "",
            ]
        lines += [
            "### Response format",
            "```json",
            '[{"key": "ClassName.methodName", "bodyHash": "...", "role": "...", '
            '"description": "...", "effects": {}, "consumers": []}]',
            "```",
        ]
        return {
            "prompt": "\n".join(lines),
            "methods": [m["key"] for m in methods],
            "tokensEstimate": needed["tokensEstimate"],
        }

    def to_context(self, include_code: bool = False, include_descriptions: bool = True, max_methods: int = 10) -> dict:
        methods = []
        for hit in self._results[:max_methods]:
            method = hit.method
            item = {
                "key": hit.key,
                "file": method.file,
                "signature": method.signature,
                "role": method.role.value if method.role else None,
                "score": hit.score,
            }
            if include_descriptions and method.description:
                item["description"] = method.description
            if include_code:
                item["code"] = self._loaded_code.get(hit.key)
            methods.append(item)
        return {
            "query": self.query,
            "methodCount": len(methods),
            "totalFound": self.count,
            "excluded": sorted(self._excluded),
            "methods": methods,
            "loadedFiles": list(self._loaded_files),
        }
