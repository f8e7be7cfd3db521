"""Scanner module exports."""

from .base import (
    BaseScanner,
    DocComment,
    ParsedClass,
    ParsedFile,
    ParsedMethod,
    ParseError,
    compute_hash,
)
from .doc_tags import parse_doc_comment
from .javascript import JavaScriptScanner

__all__ = [
    "BaseScanner",
    "DocComment",
    "JavaScriptScanner",
    "ParsedClass",
    "ParsedFile",
    "ParsedMethod",
    "ParseError",
    "compute_hash",
    "parse_doc_comment",
]
