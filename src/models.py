"""
Core data models for Cartograph.

Method key format: ClassName.methodName (or bare functionName)
e.g. Orb.nova, Particle.genesis, formatDate
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Optional


INDEX_VERSION = "2.0"


class Role(str, Enum):
    """Architectural role of a method"""
    ENTRY = "entry"         # public entry point
    CORE = "core"           # core business logic
    SERVICE = "service"     # lookup / update service
    FLOW = "flow"           # lifecycle / orchestration
    BRIDGE = "bridge"       # glue between subsystems
    HELPER = "helper"       # utility, factory
    INTERNAL = "internal"   # implementation detail
    ADAPTER = "adapter"     # data transformation

    @classmethod
    def parse(cls, value) -> Optional["Role"]:
        """Role from a token, None when the token is not a known role."""
        if value is None:
            return None
        if isinstance(value, Role):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


class RoleSource(str, Enum):
    """Where a method's role came from"""
    TAG = "tag"
    HEURISTIC = "heuristic"
    DEFAULT = "default"


class AnnotationSource(str, Enum):
    HEURISTIC = "heuristic"
    EXTERNAL = "external"
    MANUAL = "manual"


class AnnotationStatus(str, Enum):
    COMPLETE = "complete"
    OUTDATED = "outdated"
    PARTIAL = "partial"
    MISSING = "missing"


def now_iso() -> str:
    return datetime.now().isoformat()


def _copy_effects(effects: Optional[dict]) -> dict[str, list[str]]:
    return {kind: list(targets) for kind, targets in (effects or {}).items()}


@dataclass
class MethodContext:
    """Inputs a method needs and outputs it makes available"""
    requires: list[str] = field(default_factory=list)
    provides: list[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.requires or self.provides)

    def to_dict(self) -> dict:
        return {"requires": list(self.requires), "provides": list(self.provides)}

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "MethodContext":
        data = data or {}
        return cls(
            requires=list(data.get("requires", [])),
            provides=list(data.get("provides", [])),
        )


@dataclass
class MethodEntry:
    """
    One structural unit: a class method or a standalone function.

    The index stores positions and hashes, not code. Code is re-extracted
    from the owning file on demand.
    """
    key: str
    file: str
    name: str
    class_name: Optional[str] = None
    signature: str = ""

    is_static: bool = False
    is_private: bool = False
    is_async: bool = False
    is_exported: bool = False

    role: Optional[Role] = None
    role_source: RoleSource = RoleSource.DEFAULT
    description: Optional[str] = None
    effects: dict[str, list[str]] = field(default_factory=dict)
    consumers: list[str] = field(default_factory=list)
    context: MethodContext = field(default_factory=MethodContext)

    body_hash: str = ""
    line: int = 0
    end_line: int = 0

    # Set on merged views only, never persisted
    from_cache: bool = False
    cache_source: Optional[AnnotationSource] = None

    @property
    def has_effects(self) -> bool:
        return any(self.effects.values())

    def copy(self, **changes) -> "MethodEntry":
        """Independent copy, mutable fields included."""
        base = replace(
            self,
            effects=_copy_effects(self.effects),
            consumers=list(self.consumers),
            context=MethodContext(list(self.context.requires), list(self.context.provides)),
        )
        return replace(base, **changes) if changes else base

    def to_dict(self) -> dict:
        data = {
            "key": self.key,
            "file": self.file,
            "class": self.class_name,
            "name": self.name,
            "signature": self.signature,
            "isStatic": self.is_static,
            "isPrivate": self.is_private,
            "isAsync": self.is_async,
            "isExported": self.is_exported,
            "role": self.role.value if self.role else None,
            "roleSource": self.role_source.value,
            "description": self.description,
            "effects": _copy_effects(self.effects),
            "consumers": list(self.consumers),
            "context": self.context.to_dict(),
            "bodyHash": self.body_hash,
            "line": self.line,
            "endLine": self.end_line,
        }
        if self.from_cache:
            data["fromCache"] = True
            data["cacheSource"] = self.cache_source.value if self.cache_source else None
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "MethodEntry":
        return cls(
            key=data["key"],
            file=data["file"],
            name=data["name"],
            class_name=data.get("class"),
            signature=data.get("signature", ""),
            is_static=data.get("isStatic", False),
            is_private=data.get("isPrivate", False),
            is_async=data.get("isAsync", False),
            is_exported=data.get("isExported", False),
            role=Role.parse(data.get("role")),
            role_source=RoleSource(data.get("roleSource", RoleSource.DEFAULT.value)),
            description=data.get("description"),
            effects=_copy_effects(data.get("effects")),
            consumers=list(data.get("consumers", [])),
            context=MethodContext.from_dict(data.get("context")),
            body_hash=data.get("bodyHash", ""),
            line=data.get("line", 0),
            end_line=data.get("endLine", 0),
        )


@dataclass
class ClassEntry:
    """A declared class. One entry per class name."""
    name: str
    file: str
    extends: Optional[str] = None
    is_exported: bool = False
    role: Optional[Role] = None
    description: Optional[str] = None
    line: int = 0
    method_count: int = 0

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "file": self.file,
            "extends": self.extends,
            "isExported": self.is_exported,
            "role": self.role.value if self.role else None,
            "description": self.description,
            "line": self.line,
            "methodCount": self.method_count,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ClassEntry":
        return cls(
            name=data["name"],
            file=data["file"],
            extends=data.get("extends"),
            is_exported=data.get("isExported", False),
            role=Role.parse(data.get("role")),
            description=data.get("description"),
            line=data.get("line", 0),
            method_count=data.get("methodCount", 0),
        )


@dataclass
class FileRecord:
    """
    Fingerprint of an indexed file.

    mtime + size decide whether the file is re-parsed; content_hash is
    informational. method_keys and class_names list everything the file
    declares, including keys another file won on a collision.
    """
    path: str
    mtime: float
    size: int
    content_hash: str = ""
    class_count: int = 0
    method_count: int = 0
    method_keys: list[str] = field(default_factory=list)
    class_names: list[str] = field(default_factory=list)

    def matches(self, mtime: float, size: int) -> bool:
        return self.mtime == mtime and self.size == size

    def to_dict(self) -> dict:
        return {
            "path": self.path,
            "mtime": self.mtime,
            "size": self.size,
            "contentHash": self.content_hash,
            "classCount": self.class_count,
            "methodCount": self.method_count,
            "methodKeys": self.method_keys,
            "classNames": self.class_names,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "FileRecord":
        return cls(
            path=data["path"],
            mtime=data.get("mtime", 0.0),
            size=data.get("size", 0),
            content_hash=data.get("contentHash", ""),
            class_count=data.get("classCount", 0),
            method_count=data.get("methodCount", 0),
            method_keys=list(data.get("methodKeys", [])),
            class_names=list(data.get("classNames", [])),
        )


@dataclass
class MethodIndex:
    """
    Aggregate root of the persisted index.

    Storage format:
    {
        "version": "2.0",
        "generated": "2024-01-15T10:30:00",
        "rootPath": "/path/to/project",
        "files":   {"src/Orb.js": {...}},
        "methods": {"Orb.nova": {...}},
        "classes": {"Orb": {...}}
    }
    """
    root_path: str = ""
    version: str = INDEX_VERSION
    generated: str = field(default_factory=now_iso)
    files: dict[str, FileRecord] = field(default_factory=dict)
    methods: dict[str, MethodEntry] = field(default_factory=dict)
    classes: dict[str, ClassEntry] = field(default_factory=dict)

    def remove_file(self, rel_path: str) -> tuple[int, int]:
        """Drop a file with all of its methods and classes. Returns (methods, classes) removed."""
        method_keys = [k for k, m in self.methods.items() if m.file == rel_path]
        class_names = [n for n, c in self.classes.items() if c.file == rel_path]
        for key in method_keys:
            del self.methods[key]
        for name in class_names:
            del self.classes[name]
        self.files.pop(rel_path, None)
        return len(method_keys), len(class_names)

    def files_with_orphans(self) -> list[str]:
        """Files declaring a method key or class name that has no row any more."""
        return sorted(
            path for path, record in self.files.items()
            if any(key not in self.methods for key in record.method_keys)
            or any(name not in self.classes for name in record.class_names)
        )

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "generated": self.generated,
            "rootPath": self.root_path,
            "files": {path: f.to_dict() for path, f in self.files.items()},
            "methods": {key: m.to_dict() for key, m in self.methods.items()},
            "classes": {name: c.to_dict() for name, c in self.classes.items()},
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MethodIndex":
        return cls(
            root_path=data.get("rootPath", ""),
            version=data.get("version", INDEX_VERSION),
            generated=data.get("generated", ""),
            files={p: FileRecord.from_dict(f) for p, f in data.get("files", {}).items()},
            methods={k: MethodEntry.from_dict(m) for k, m in data.get("methods", {}).items()},
            classes={n: ClassEntry.from_dict(c) for n, c in data.get("classes", {}).items()},
        )


@dataclass
class AnnotationRecord:
    """
    Metadata generated outside the source (JIT annotation).

    Only valid while annotated_body_hash equals the method's current body hash.
    """
    role: Optional[Role] = None
    description: Optional[str] = None
    effects: dict[str, list[str]] = field(default_factory=dict)
    consumers: list[str] = field(default_factory=list)
    context: MethodContext = field(default_factory=MethodContext)
    annotated_body_hash: str = ""
    source: AnnotationSource = AnnotationSource.EXTERNAL
    annotated_at: str = field(default_factory=now_iso)

    def to_dict(self) -> dict:
        return {
            "role": self.role.value if self.role else None,
            "description": self.description,
            "effects": _copy_effects(self.effects),
            "consumers": list(self.consumers),
            "context": self.context.to_dict(),
            "annotatedBodyHash": self.annotated_body_hash,
            "source": self.source.value,
            "annotatedAt": self.annotated_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AnnotationRecord":
        source = data.get("source") or AnnotationSource.EXTERNAL.value
        try:
            source = AnnotationSource(source)
        except ValueError:
            source = AnnotationSource.EXTERNAL
        return cls(
            role=Role.parse(data.get("role")),
            description=data.get("description"),
            effects=_copy_effects(data.get("effects")),
            consumers=list(data.get("consumers", [])),
            context=MethodContext.from_dict(data.get("context")),
            annotated_body_hash=data.get("annotatedBodyHash", ""),
            source=source,
            annotated_at=data.get("annotatedAt", ""),
        )


@dataclass
class SearchHit:
    """A scored search result"""
    key: str
    method: MethodEntry
    score: int

    def to_dict(self) -> dict:
        return {"key": self.key, "score": self.score, "method": self.method.to_dict()}


@dataclass
class SnapshotMethod:
    code: str
    normalized_code: str
    file: str
    name: str
    class_name: Optional[str] = None
    line: int = 0
    end_line: int = 0
    score: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "normalizedCode": self.normalized_code,
            "file": self.file,
            "class": self.class_name,
            "name": self.name,
            "line": self.line,
            "endLine": self.end_line,
            "score": self.score,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SnapshotMethod":
        return cls(
            code=data["code"],
            normalized_code=data.get("normalizedCode", ""),
            file=data["file"],
            name=data.get("name", ""),
            class_name=data.get("class"),
            line=data.get("line", 0),
            end_line=data.get("endLine", 0),
            score=data.get("score"),
        )


@dataclass
class SnapshotFile:
    absolute_path: str
    method_keys: list[str] = field(default_factory=list)
    original_file_hash: str = ""

    def to_dict(self) -> dict:
        return {
            "absolutePath": self.absolute_path,
            "methodKeys": list(self.method_keys),
            "originalFileHash": self.original_file_hash,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SnapshotFile":
        return cls(
            absolute_path=data["absolutePath"],
            method_keys=list(data.get("methodKeys", [])),
            original_file_hash=data.get("originalFileHash", ""),
        )


@dataclass
class Snapshot:
    """What existed before an extraction. Never mutated after capture."""
    timestamp: str = field(default_factory=now_iso)
    methods: dict[str, SnapshotMethod] = field(default_factory=dict)
    files: dict[str, SnapshotFile] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "methods": {k: m.to_dict() for k, m in self.methods.items()},
            "files": {p: f.to_dict() for p, f in self.files.items()},
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Snapshot":
        return cls(
            timestamp=data.get("timestamp", ""),
            methods={k: SnapshotMethod.from_dict(m) for k, m in data.get("methods", {}).items()},
            files={p: SnapshotFile.from_dict(f) for p, f in data.get("files", {}).items()},
        )
