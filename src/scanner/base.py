"""
Base scanner class for structural parsing.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
import hashlib


class ParseError(ValueError):
    """A file could not be parsed into a clean syntax tree."""

    def __init__(self, message: str, path: Optional[str] = None, line: Optional[int] = None):
        self.path = path
        self.line = line
        location = ""
        if path:
            location = f"{path}:{line}: " if line else f"{path}: "
        super().__init__(f"{location}{message}")


def compute_hash(text: str) -> str:
    """sha256 of the text, first 16 hex chars"""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]


@dataclass
class DocComment:
    """Parsed documentation comment"""
    raw: str = ""
    description: Optional[str] = None
    role: Optional[str] = None
    consumers: list[str] = field(default_factory=list)
    effects: dict[str, list[str]] = field(default_factory=dict)
    requires: list[str] = field(default_factory=list)
    provides: list[str] = field(default_factory=list)


@dataclass
class ParsedMethod:
    """A method or standalone function as found in the source"""
    name: str
    class_name: Optional[str] = None
    is_static: bool = False
    is_private: bool = False
    is_async: bool = False
    is_arrow: bool = False
    is_exported: bool = False
    params: list[str] = field(default_factory=list)

    # Byte offsets into the source
    start: int = 0          # declaration start
    end: int = 0            # declaration end
    code_start: int = 0     # first adjacent leading comment, or start
    body_start: int = 0
    body_end: int = 0

    line: int = 0
    end_line: int = 0
    body_hash: str = ""
    body: str = ""
    doc: Optional[DocComment] = None

    @property
    def key(self) -> str:
        return f"{self.class_name}.{self.name}" if self.class_name else self.name

    @property
    def signature(self) -> str:
        return f"{self.name}({', '.join(self.params)})"


@dataclass
class ParsedClass:
    name: str
    superclass: Optional[str] = None
    is_exported: bool = False
    start: int = 0
    end: int = 0
    code_start: int = 0
    line: int = 0
    end_line: int = 0
    doc: Optional[DocComment] = None
    methods: list[ParsedMethod] = field(default_factory=list)


@dataclass
class ParsedFile:
    """Everything a scanner extracted from one file"""
    path: str
    source: bytes
    content_hash: str = ""
    classes: list[ParsedClass] = field(default_factory=list)
    functions: list[ParsedMethod] = field(default_factory=list)

    def all_methods(self) -> list[ParsedMethod]:
        methods = []
        for cls in self.classes:
            methods.extend(cls.methods)
        methods.extend(self.functions)
        return methods

    def find(self, key: str) -> Optional[ParsedMethod]:
        for method in self.all_methods():
            if method.key == key:
                return method
        return None

    def code_of(self, item) -> str:
        """Exact source slice of a method or class, leading comments included."""
        return self.source[item.code_start:item.end].decode("utf-8")


class BaseScanner(ABC):
    """
    Scanner base class

    Subclasses must implement:
    - scan_source(): Parse source text into a ParsedFile
    - supported_extensions: List of supported file extensions
    """

    supported_extensions: list[str] = []

    @abstractmethod
    def scan_source(self, source: str, suffix: str, path: str = "<source>") -> ParsedFile:
        """
        Parse source text

        Raises:
            ParseError: the source does not parse cleanly
        """
        pass

    def scan_file(self, file_path: Path) -> ParsedFile:
        """Read and parse a file. Line endings are kept as they are on disk."""
        content = file_path.read_bytes().decode("utf-8")
        return self.scan_source(content, file_path.suffix, path=str(file_path))

    def can_scan(self, file_path: Path) -> bool:
        """Check if this file type is supported"""
        return file_path.suffix in self.supported_extensions
