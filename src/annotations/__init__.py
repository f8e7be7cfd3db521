"""Annotation module exports."""

from .cache import CACHE_VERSION, AnnotationCache
from .heuristic import HeuristicAnnotator

__all__ = [
    "AnnotationCache",
    "CACHE_VERSION",
    "HeuristicAnnotator",
]
