"""Prefetch heuristics, cache and behavior tracking."""

from .behavior import BehaviorTracker
from .cache import PrefetchCache, PrefetchStore
from .heuristics import CitedSource, generate_candidates, score_confidence

__all__ = [
    "BehaviorTracker",
    "PrefetchCache",
    "PrefetchStore",
    "CitedSource",
    "generate_candidates",
    "score_confidence",
]
