"""
Method indexer.

Maintains the persisted index of classes, methods and standalone functions
of a source tree. The index stores positions and hashes only; code is
re-extracted from the owning file on demand.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from ..config import CartographConfig
from ..models import ClassEntry, FileRecord, MethodContext, MethodEntry, MethodIndex, Role, RoleSource
from ..scanner import BaseScanner, JavaScriptScanner, ParsedFile, ParsedMethod, ParseError
from .incremental import FileStat, detect_changes, scan_directory_stats
from .roles import RoleRules
from .store import IndexStore

logger = logging.getLogger(__name__)


@dataclass
class IndexStats:
    """Outcome of one indexing pass"""
    updated: int = 0
    skipped: int = 0
    errors: int = 0
    deleted: int = 0
    error_files: list[dict] = field(default_factory=list)

    def add_error(self, path: str, error: str):
        self.errors += 1
        self.error_files.append({"path": path, "error": error})

    def to_dict(self) -> dict:
        return {
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": self.errors,
            "deleted": self.deleted,
            "errorFiles": self.error_files,
        }


class MethodIndexer:
    """
    Incremental method indexer

    Usage:
        indexer = MethodIndexer(config)
        stats = indexer.index_all()
        entry = indexer.get_method("Orb.nova")
        code = indexer.extract_method_code("Orb.nova")
    """

    def __init__(
        self,
        config: CartographConfig,
        store: Optional[IndexStore] = None,
        scanner: Optional[BaseScanner] = None,
        role_rules: Optional[RoleRules] = None,
    ):
        self.config = config
        self.store = store or IndexStore(config.index_path, root_path=str(config.project_root))
        self.scanner = scanner or JavaScriptScanner(doc_lookback=config.doc_lookback)
        self.role_rules = role_rules or RoleRules(config.role_rules, config.factory_token)
        self._index: Optional[MethodIndex] = None

    @property
    def index(self) -> MethodIndex:
        if self._index is None:
            self._index = self.store.load()
        return self._index

    def load(self) -> MethodIndex:
        """(Re)load the index from the store."""
        self._index = self.store.load()
        return self._index

    def save(self):
        self.store.save(self.index)

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------

    def list_source_files(self) -> dict[str, FileStat]:
        return scan_directory_stats(
            self.config.src_path,
            self.config.project_root,
            self.config.extensions,
            self.config.ignore_dirs,
            self.config.max_file_size,
        )

    def index_all(self, force: bool = False, show_progress: bool = False) -> IndexStats:
        """
        Index every eligible file under the source root.

        Unchanged files (same mtime and size) are skipped unless force is set.
        Files that disappeared are purged. The index is saved after the pass.
        """
        index = self.index
        current = self.list_source_files()
        changes = detect_changes(index.files, current, force=force)
        stats = IndexStats(skipped=len(changes.unchanged))
        logger.info("Indexing %s: %s", self.config.src_path, changes.summary())

        iterator = changes.all_changed()
        if show_progress:
            from tqdm import tqdm
            iterator = tqdm(iterator, desc="Indexing")

        for rel_path in iterator:
            error = self._index_path(rel_path, current[rel_path])
            if error is None:
                stats.updated += 1
            else:
                stats.add_error(rel_path, error)

        for rel_path in changes.deleted:
            removed_methods, removed_classes = index.remove_file(rel_path)
            stats.deleted += 1
            logger.info(
                "Purged %s (%d methods, %d classes)", rel_path, removed_methods, removed_classes
            )

        for rel_path, error in self._restore_orphans():
            if error is not None:
                if all(item["path"] != rel_path for item in stats.error_files):
                    stats.add_error(rel_path, error)
            elif rel_path in changes.unchanged:
                stats.skipped -= 1
                stats.updated += 1

        self.save()
        logger.info(
            "Index pass done: %d updated, %d skipped, %d errors, %d deleted",
            stats.updated, stats.skipped, stats.errors, stats.deleted,
        )
        return stats

    def index_file(self, file_path: Path) -> bool:
        """Re-index a single file now. Does not save."""
        file_path = Path(file_path).resolve()
        try:
            rel_path = file_path.relative_to(self.config.project_root).as_posix()
        except ValueError as e:
            logger.warning("Cannot index %s: %s", file_path, e)
            return False
        stat = self._stat(rel_path)
        if stat is None:
            return False
        indexed = self._index_path(rel_path, stat) is None
        self._restore_orphans()
        return indexed

    def remove_file(self, rel_path: str) -> bool:
        if rel_path not in self.index.files:
            return False
        self.index.remove_file(rel_path)
        self._restore_orphans()
        return True

    def _stat(self, rel_path: str) -> Optional[FileStat]:
        path = self.config.project_root / rel_path
        try:
            stat = path.stat()
        except OSError as e:
            logger.warning("Cannot index %s: %s", path, e)
            return None
        return FileStat(path, stat.st_mtime, stat.st_size)

    def _restore_orphans(self) -> list[tuple[str, Optional[str]]]:
        """
        Re-parse files whose declarations lost their row.

        A key collision keeps one file's row; when that file is pruned or stops
        declaring the key, the other declaring file is indexed again so the
        key comes back. Returns (path, error) per re-parsed file.
        """
        restored = []
        for rel_path in self.index.files_with_orphans():
            stat = self._stat(rel_path)
            if stat is None:
                continue
            logger.info("Re-indexing %s to restore keys it also declares", rel_path)
            restored.append((rel_path, self._index_path(rel_path, stat)))
        return restored

    def _index_path(self, rel_path: str, stat: FileStat) -> Optional[str]:
        """Parse and insert one file. Returns an error message on failure."""
        try:
            parsed = self.scanner.scan_file(stat.path)
        except (ParseError, UnicodeDecodeError, OSError) as e:
            # Old rows stay; no FileRecord update, so the file is retried next pass
            logger.warning("Failed to parse %s: %s", rel_path, e)
            return str(e)

        self.index.remove_file(rel_path)
        self._insert(rel_path, parsed, stat)
        return None

    def _insert(self, rel_path: str, parsed: ParsedFile, stat: FileStat):
        index = self.index
        method_count = 0

        for parsed_class in parsed.classes:
            existing = index.classes.get(parsed_class.name)
            if existing is not None and existing.file != rel_path:
                logger.warning(
                    "Class %s declared in both %s and %s; keeping %s",
                    parsed_class.name, existing.file, rel_path, rel_path,
                )
            doc = parsed_class.doc
            index.classes[parsed_class.name] = ClassEntry(
                name=parsed_class.name,
                file=rel_path,
                extends=parsed_class.superclass,
                is_exported=parsed_class.is_exported,
                role=Role.parse(doc.role) if doc else None,
                description=doc.description if doc else None,
                line=parsed_class.line,
                method_count=len(parsed_class.methods),
            )
            for method in parsed_class.methods:
                method.is_exported = parsed_class.is_exported
                self._put_method(self._entry(rel_path, method))
                method_count += 1

        for function in parsed.functions:
            self._put_method(self._entry(rel_path, function))
            method_count += 1

        index.files[rel_path] = FileRecord(
            path=rel_path,
            mtime=stat.mtime,
            size=stat.size,
            content_hash=parsed.content_hash,
            class_count=len(parsed.classes),
            method_count=method_count,
            method_keys=[method.key for method in parsed.all_methods()],
            class_names=[parsed_class.name for parsed_class in parsed.classes],
        )

    def _put_method(self, entry: MethodEntry):
        existing = self.index.methods.get(entry.key)
        if existing is not None and existing.file != entry.file:
            logger.warning(
                "Method key %s found in both %s and %s; keeping %s",
                entry.key, existing.file, entry.file, entry.file,
            )
        self.index.methods[entry.key] = entry

    def _entry(self, rel_path: str, method: ParsedMethod) -> MethodEntry:
        doc = method.doc
        role, role_source = self.role_rules.resolve(
            doc.role if doc else None,
            method.name,
            is_private=method.is_private,
            is_exported_function=method.class_name is None and method.is_exported,
        )
        return MethodEntry(
            key=method.key,
            file=rel_path,
            name=method.name,
            class_name=method.class_name,
            signature=method.signature,
            is_static=method.is_static,
            is_private=method.is_private,
            is_async=method.is_async,
            is_exported=method.is_exported,
            role=role,
            role_source=role_source,
            description=doc.description if doc else None,
            effects={kind: list(targets) for kind, targets in doc.effects.items()} if doc else {},
            consumers=list(doc.consumers) if doc else [],
            context=MethodContext(list(doc.requires), list(doc.provides)) if doc else MethodContext(),
            body_hash=method.body_hash,
            line=method.line,
            end_line=method.end_line,
        )

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get_method(self, key: str) -> Optional[MethodEntry]:
        return self.index.methods.get(key)

    def get_class(self, name: str) -> Optional[ClassEntry]:
        return self.index.classes.get(name)

    def methods_of_class(self, class_name: str) -> list[MethodEntry]:
        return [m for m in self.index.methods.values() if m.class_name == class_name]

    def parse_owning_file(self, key: str) -> Optional[tuple[MethodEntry, ParsedFile]]:
        entry = self.get_method(key)
        if entry is None:
            return None
        file_path = self.config.project_root / entry.file
        if not file_path.exists():
            logger.debug("File of %s no longer exists: %s", key, file_path)
            return None
        try:
            return entry, self.scanner.scan_file(file_path)
        except (ParseError, UnicodeDecodeError, OSError) as e:
            logger.warning("Cannot re-parse %s for %s: %s", entry.file, key, e)
            return None

    def extract_method_code(self, key: str) -> Optional[str]:
        """
        Exact source of a method, adjacent leading comments included.

        Returns None when the key, the file or the method is gone.
        """
        found = self.parse_owning_file(key)
        if found is None:
            return None
        _, parsed = found
        method = parsed.find(key)
        if method is None:
            return None
        return parsed.code_of(method)

    def search_methods(
        self,
        role: Optional[str] = None,
        class_name: Optional[str] = None,
        file: Optional[str] = None,
        name: Optional[str] = None,
        has_effect: Optional[str] = None,
        is_public: Optional[bool] = None,
    ) -> list[MethodEntry]:
        """Filter index entries by exact role/class and substring file/name."""
        wanted_role = Role.parse(role) if role else None
        results = []
        for entry in self.index.methods.values():
            if wanted_role is not None and entry.role != wanted_role:
                continue
            if class_name is not None and entry.class_name != class_name:
                continue
            if file and file not in entry.file:
                continue
            if name and name.lower() not in entry.name.lower():
                continue
            if has_effect and not entry.effects.get(has_effect):
                continue
            if is_public is not None and entry.is_private == is_public:
                continue
            results.append(entry)
        return sorted(results, key=lambda m: m.key)

    def get_stats(self) -> dict:
        index = self.index
        by_role: dict[str, int] = {}
        tagged = 0
        for entry in index.methods.values():
            role = entry.role.value if entry.role else "none"
            by_role[role] = by_role.get(role, 0) + 1
            if entry.role_source == RoleSource.TAG:
                tagged += 1
        total = len(index.methods)
        return {
            "files": len(index.files),
            "classes": len(index.classes),
            "methods": total,
            "byRole": dict(sorted(by_role.items())),
            "documented": tagged,
            "documentedPercent": round(tagged * 100 / total, 1) if total else 0.0,
            "generated": index.generated,
        }
