"""
Documentation comment tag parsing.

Recognized tags:
    @role <entry|core|service|flow|bridge|helper|internal|adapter>
    @consumer A, B
    @effect <kind>: target, target      (repeatable, accumulates per kind)
    @context requires: a, b
    @context provides: c

Free text before the first tag is the description.
"""

import re
from typing import Optional

from ..models import Role
from .base import DocComment

_TAG_START = re.compile(r"@\w+")
_ROLE_TAG = re.compile(r"@role:?\s*(\w+)", re.IGNORECASE)
_CONSUMER_TAG = re.compile(r"@consumers?:?\s+([^\n@]+)", re.IGNORECASE)
_EFFECT_TAG = re.compile(r"@effect\s+(\w+):?\s*([^\n@]+)", re.IGNORECASE)
_REQUIRES_TAG = re.compile(r"@context\s+requires:?\s*([^\n@]+)", re.IGNORECASE)
_PROVIDES_TAG = re.compile(r"@context\s+provides:?\s*([^\n@]+)", re.IGNORECASE)
_LIST_SPLIT = re.compile(r"[,\s]+")


def _split_list(text: str) -> list[str]:
    return [item for item in _LIST_SPLIT.split(text.strip()) if item and not item.startswith("*")]


def clean_comment(raw: str) -> str:
    """Strip comment delimiters and leading `*` gutters."""
    text = raw.replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r"^/\*\*", "", text)
    text = re.sub(r"\*+/$", "", text)
    lines = [re.sub(r"^\s*\*\s?", "", line) for line in text.split("\n")]
    return "\n".join(lines).strip()


def parse_doc_comment(raw: Optional[str]) -> Optional[DocComment]:
    """
    Parse a /** ... */ block.

    Returns None for an empty input. Unknown role tokens are ignored.
    """
    if not raw:
        return None

    cleaned = clean_comment(raw)
    doc = DocComment(raw=raw)

    first_tag = _TAG_START.search(cleaned)
    description = cleaned if first_tag is None else cleaned[:first_tag.start()]
    doc.description = " ".join(description.split()) or None

    role_match = _ROLE_TAG.search(cleaned)
    if role_match:
        role = Role.parse(role_match.group(1))
        doc.role = role.value if role else None

    consumer_match = _CONSUMER_TAG.search(cleaned)
    if consumer_match:
        doc.consumers = _split_list(consumer_match.group(1))

    for match in _EFFECT_TAG.finditer(cleaned):
        kind = match.group(1).lower()
        doc.effects.setdefault(kind, []).extend(_split_list(match.group(2)))

    requires_match = _REQUIRES_TAG.search(cleaned)
    if requires_match:
        doc.requires = _split_list(requires_match.group(1))

    provides_match = _PROVIDES_TAG.search(cleaned)
    if provides_match:
        doc.provides = _split_list(provides_match.group(1))

    return doc
