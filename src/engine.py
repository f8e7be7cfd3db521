"""
Main engine - wires the stores and components of one project.

Usage:
1. engine.index_all() - Build / update the method index
2. engine.find_relevant_methods(query) - Scored search
3. engine.create_search_session(query) - Refine a result set step by step
4. engine.extract(query=...) - Snapshot + editable artifact
5. engine.reinject(artifact) - Apply the edited artifact to the sources
"""

import logging
from pathlib import Path
from typing import Iterable, Optional, Union

from .annotations import AnnotationCache, HeuristicAnnotator
from .config import CartographConfig, load_config
from .indexer import IndexStats, IndexStore, MethodIndexer
from .models import SearchHit
from .reinjector import MethodReinjector, ReinjectionResult
from .search import MethodSearch
from .session import SearchSession
from .snapshot import MethodSnapshot

logger = logging.getLogger(__name__)

SNAPSHOT_FILE = "snapshot.json"
ARTIFACT_FILE = "methods.js"


class CartographEngine:
    """
    Project engine

    Main features:
    1. index_all() - Incremental method index
    2. find_relevant_methods() / create_search_session() - Search
    3. extract() / reinject() - Extraction round trip
    """

    def __init__(self, config: Optional[CartographConfig] = None):
        self.config = config or load_config()
        self.store = IndexStore(self.config.index_path, root_path=str(self.config.project_root))
        self.indexer = MethodIndexer(self.config, store=self.store)
        self.annotation_cache = AnnotationCache(self.config.annotation_cache_path)
        self.search = MethodSearch(self.indexer, self.annotation_cache)
        self.snapshot = MethodSnapshot(self.indexer)

    @classmethod
    def for_project(cls, project_root: Optional[Union[str, Path]] = None) -> "CartographEngine":
        return cls(load_config(project_root))

    def index_all(self, force: bool = False, show_progress: bool = False) -> IndexStats:
        return self.indexer.index_all(force=force, show_progress=show_progress)

    def ensure_index(self):
        """Build the index on first use."""
        if not self.store.exists():
            logger.info("No index at %s, building it", self.store.path)
            self.index_all()

    def find_relevant_methods(self, query: str, **options) -> list[SearchHit]:
        self.ensure_index()
        return self.search.find_relevant_methods(query, **options)

    def create_search_session(self, query: str, **options) -> SearchSession:
        self.ensure_index()
        return SearchSession(
            self.search,
            query,
            annotation_cache=self.annotation_cache,
            creator_suffixes=self.config.creator_suffixes,
            **options,
        )

    def extract_method_code(self, key: str) -> Optional[str]:
        self.ensure_index()
        return self.indexer.extract_method_code(key)

    def extract(
        self,
        keys: Optional[Iterable[str]] = None,
        query: Optional[str] = None,
        output_dir: Optional[Union[str, Path]] = None,
        **search_options,
    ) -> dict:
        """
        Snapshot methods and write the editable artifact.

        Methods come from explicit keys, or from a search when only a query
        is given.

        Returns:
            {"snapshot": path, "artifact": path, "methods": [keys]}
        """
        self.ensure_index()
        scores: dict[str, int] = {}
        if keys is None:
            if not query:
                raise ValueError("extract needs method keys or a query")
            hits = self.search.find_relevant_methods(query, **search_options)
            keys = [hit.key for hit in hits]
            scores = {hit.key: hit.score for hit in hits}
        keys = list(keys)

        snapshot = self.snapshot.capture(keys, scores)
        out = Path(output_dir) if output_dir else self.config.work_dir
        snapshot_path = self.snapshot.save(snapshot, out / SNAPSHOT_FILE)
        artifact_path = out / ARTIFACT_FILE
        with open(artifact_path, "w", encoding="utf-8", newline="") as f:
            f.write(self.snapshot.render_artifact(snapshot))
        logger.info("Artifact written: %s", artifact_path)

        return {
            "snapshot": str(snapshot_path),
            "artifact": str(artifact_path),
            "methods": list(snapshot.methods),
            "missing": [k for k in keys if k not in snapshot.methods],
        }

    def reinject(
        self,
        artifact_path: Optional[Union[str, Path]] = None,
        snapshot_path: Optional[Union[str, Path]] = None,
        force: bool = False,
        backup: bool = True,
        dry_run: bool = False,
        reindex: bool = True,
    ) -> ReinjectionResult:
        """Reinject an edited artifact, then re-index the touched files."""
        artifact_path = Path(artifact_path) if artifact_path else self.config.work_dir / ARTIFACT_FILE
        snapshot_path = Path(snapshot_path) if snapshot_path else artifact_path.parent / SNAPSHOT_FILE

        reinjector = MethodReinjector(backup=backup, dry_run=dry_run, scanner=self.indexer.scanner)
        result = reinjector.reinject(snapshot_path, artifact_path, force=force)

        if reindex and result.success_count and not dry_run:
            self.index_all()
        return result

    def annotate(self, query: str, **options) -> dict:
        """Heuristic annotations for a query's results that lack them."""
        session = self.create_search_session(query, **options)
        applied = session.annotate_heuristically()
        return {"query": query, "applied": applied, "status": session.check_annotations()}

    def annotate_method(self, key: str) -> bool:
        entry = self.indexer.get_method(key)
        if entry is None:
            return False
        record = HeuristicAnnotator(self.indexer).annotate(key)
        if record is None:
            return False
        self.annotation_cache.set(key, record, record.annotated_body_hash)
        self.annotation_cache.save()
        return True

    def stats(self) -> dict:
        return {
            "project": str(self.config.project_root),
            "index": self.indexer.get_stats(),
            "annotations": self.annotation_cache.get_stats(),
        }
