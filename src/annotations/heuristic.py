"""
Heuristic annotator.

Derives effects and context from a method body with simple text patterns.
Results are stored in the annotation cache with source=heuristic; they never
touch the source files.
"""

import logging
import re
from typing import Optional

from ..indexer.method_indexer import MethodIndexer
from ..models import AnnotationRecord, AnnotationSource, MethodContext

logger = logging.getLogger(__name__)

_NEW_INSTANCE = re.compile(r"\bnew\s+(?:this\.\$\.)?([A-Za-z_$][\w$]*)")
_THIS_ASSIGN = re.compile(r"this\.([A-Za-z_$][\w$]*)\s*=(?!=)")
_EMITS = re.compile(r"\b(?:notify|emit|dispatch|trigger)\w*\s*\(", re.IGNORECASE)
_OBSERVERS = re.compile(r"addObserver|addEventListener", re.IGNORECASE)
_LOCAL_STORAGE = re.compile(r"\b(?:localStorage|sessionStorage)\b")
_FILE_WRITE = re.compile(r"\b(?:writeJSON|writeFile)\w*\s*\(")
_RESETS = re.compile(r"\breset\w*\s*\(", re.IGNORECASE)
_CONTEXT_ACCESS = re.compile(r"this\.\$\.")
_RETURNS = re.compile(r"\breturn\s+(?:new\s+)?(?:this\.\$\.)?([A-Za-z_$][\w$]*)")
_PARAM_NAME = re.compile(r"^(?:\.\.\.)?\s*([A-Za-z_$][\w$]*)")

_NOT_PROVIDED = {"this", "null", "undefined", "true", "false", "await"}


def _add(items: list[str], value: str):
    if value not in items:
        items.append(value)


class HeuristicAnnotator:
    """Pattern-based effects/context analysis"""

    def __init__(self, indexer: MethodIndexer, factory_token: Optional[str] = None):
        self.indexer = indexer
        self.factory_token = factory_token or indexer.config.factory_token
        self._factory_call = re.compile(
            r"(?:this\.\$\.)?([A-Za-z_$][\w$]*)\." + re.escape(self.factory_token) + r"\s*\("
        )

    def analyze_effects(self, body: str) -> dict[str, list[str]]:
        effects: dict[str, list[str]] = {
            "creates": [], "mutates": [], "emits": [], "stores": [], "resets": [],
        }
        if not body:
            return {}

        for match in _NEW_INSTANCE.finditer(body):
            _add(effects["creates"], match.group(1))
        for match in self._factory_call.finditer(body):
            _add(effects["creates"], match.group(1))
        for match in _THIS_ASSIGN.finditer(body):
            if match.group(1) not in ("$", "constructor"):
                _add(effects["mutates"], f"this.{match.group(1)}")
        if _EMITS.search(body):
            _add(effects["emits"], "events")
        if _OBSERVERS.search(body):
            _add(effects["emits"], "observers")
        if _LOCAL_STORAGE.search(body):
            _add(effects["stores"], "localStorage")
        if _FILE_WRITE.search(body):
            _add(effects["stores"], "file")
        if _RESETS.search(body):
            _add(effects["resets"], "state")

        return {kind: targets for kind, targets in effects.items() if targets}

    def analyze_context(self, params: list[str], body: str) -> MethodContext:
        context = MethodContext()
        for param in params:
            match = _PARAM_NAME.match(param.strip())
            if match:
                _add(context.requires, match.group(1))
        if body and _CONTEXT_ACCESS.search(body):
            _add(context.requires, "this.$")
        for match in _RETURNS.finditer(body or ""):
            if match.group(1) not in _NOT_PROVIDED:
                _add(context.provides, match.group(1))
        return context

    def annotate(self, key: str) -> Optional[AnnotationRecord]:
        """Heuristic annotation for one indexed method, None if it cannot be located."""
        found = self.indexer.parse_owning_file(key)
        if found is None:
            return None
        entry, parsed = found
        method = parsed.find(key)
        if method is None:
            return None
        if method.body_hash != entry.body_hash:
            logger.info("Index is stale for %s; annotating the current body", key)

        return AnnotationRecord(
            role=self.indexer.role_rules.infer(method.name, method.is_private),
            effects=self.analyze_effects(method.body),
            context=self.analyze_context(method.params, method.body),
            annotated_body_hash=method.body_hash,
            source=AnnotationSource.HEURISTIC,
        )
