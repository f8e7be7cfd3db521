"""
Relevance search over the method index.

Scoring (additive, per candidate):
    +50  explicit Class.method reference in the query
    +20  token equals the method name
    +3   token longer than 3 chars contained in the method name
    +10  token equals the class name
    +3   token found in the description
    +2   token found in a consumer
    +2   token found in an effect target
    +2   role entry / +1 role core

Zero results trigger one widened retry (role filters cleared, private
methods included, lower threshold).
"""

import logging
import re
from typing import Iterable, Optional

from .annotations.cache import AnnotationCache
from .indexer.method_indexer import MethodIndexer
from .models import MethodEntry, Role, SearchHit

logger = logging.getLogger(__name__)

EXPLICIT_REFERENCE_BONUS = 50
EXACT_NAME_SCORE = 20
PARTIAL_NAME_SCORE = 3
CLASS_NAME_SCORE = 10
DESCRIPTION_SCORE = 3
CONSUMER_SCORE = 2
EFFECT_SCORE = 2
ROLE_BONUS = {Role.ENTRY: 2, Role.CORE: 1}

DEFAULT_MAX_METHODS = 10
DEFAULT_MIN_SCORE = 3
DEFAULT_EXCLUDE_ROLES = ("internal",)

_EXPLICIT_REFERENCE = re.compile(r"([A-Za-z_$][\w$]*)\.([A-Za-z_$#][\w$]*)")


def tokenize(query: str) -> list[str]:
    """Lower-cased whitespace tokens longer than 2 characters"""
    return [token for token in query.lower().split() if len(token) > 2]


def explicit_references(query: str) -> set[str]:
    """All Class.method references in the query, lower-cased"""
    return {
        f"{cls}.{name.lstrip('#')}".lower()
        for cls, name in _EXPLICIT_REFERENCE.findall(query)
    }


def score_method(entry: MethodEntry, tokens: list[str], references: set[str]) -> int:
    score = 0
    if entry.key.lower() in references:
        score += EXPLICIT_REFERENCE_BONUS

    name = entry.name.lower()
    class_name = (entry.class_name or "").lower()
    description = (entry.description or "").lower()
    consumers = [c.lower() for c in entry.consumers]
    targets = [t.lower() for targets in entry.effects.values() for t in targets]

    for token in tokens:
        if name == token:
            score += EXACT_NAME_SCORE
        elif len(token) > 3 and token in name:
            score += PARTIAL_NAME_SCORE
        if class_name and class_name == token:
            score += CLASS_NAME_SCORE
        if token in description:
            score += DESCRIPTION_SCORE
        score += CONSUMER_SCORE * sum(1 for consumer in consumers if token in consumer)
        score += EFFECT_SCORE * sum(1 for target in targets if token in target)

    score += ROLE_BONUS.get(entry.role, 0)
    return score


def _role_set(roles: Optional[Iterable]) -> Optional[set]:
    if roles is None:
        return None
    return {role for role in (Role.parse(r) for r in roles) if role is not None}


class MethodSearch:
    """Scored search with a widen-and-retry fallback"""

    def __init__(self, indexer: MethodIndexer, annotation_cache: Optional[AnnotationCache] = None):
        self.indexer = indexer
        self.annotation_cache = annotation_cache

    def entries(self) -> list[MethodEntry]:
        """Index entries, merged with fresh cached annotations"""
        entries = list(self.indexer.index.methods.values())
        if self.annotation_cache is None:
            return entries
        return [self.annotation_cache.merge_with_method(entry) for entry in entries]

    def get_method(self, key: str) -> Optional[MethodEntry]:
        entry = self.indexer.get_method(key)
        if entry is None or self.annotation_cache is None:
            return entry
        return self.annotation_cache.merge_with_method(entry)

    def find_relevant_methods(
        self,
        query: str,
        max_methods: int = DEFAULT_MAX_METHODS,
        min_score: int = DEFAULT_MIN_SCORE,
        roles: Optional[Iterable] = None,
        exclude_roles: Iterable = DEFAULT_EXCLUDE_ROLES,
        include_private: bool = False,
        retry: bool = True,
    ) -> list[SearchHit]:
        """
        Rank index entries against a free-text query.

        Args:
            query: Free text, may contain Class.method references
            max_methods: Result limit
            min_score: Drop candidates scoring below this
            roles: Allow-list of roles (None = all)
            exclude_roles: Roles never returned
            include_private: Include #private / private methods
            retry: Allow one widened retry when nothing matches

        Returns:
            Hits sorted by score descending, then key
        """
        tokens = tokenize(query)
        references = explicit_references(query)
        allowed = _role_set(roles)
        excluded = _role_set(exclude_roles) or set()

        hits = []
        for entry in self.entries():
            if entry.is_private and not include_private:
                continue
            if entry.role in excluded:
                continue
            if allowed is not None and entry.role not in allowed:
                continue
            score = score_method(entry, tokens, references)
            if score >= min_score:
                hits.append(SearchHit(key=entry.key, method=entry, score=score))

        hits.sort(key=lambda hit: (-hit.score, hit.key))
        hits = hits[:max_methods]

        if not hits and retry:
            logger.debug("No results for %r, retrying with widened filters", query)
            return self.find_relevant_methods(
                query,
                max_methods=max_methods,
                min_score=max(1, min_score - 2),
                roles=None,
                exclude_roles=(),
                include_private=True,
                retry=False,
            )

        logger.debug("Search %r: %d results", query, len(hits))
        return hits
