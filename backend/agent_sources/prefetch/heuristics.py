"""Prefetch candidate heuristics and confidence scoring.

Every heuristic and signal is a plain function so each can be tested on its own.
Candidate heuristics return a `PrefetchCandidate` or None; confidence signals
return a `(weight, reason)` pair or None.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Sequence, Tuple

from agent_sources.models.entities import PrefetchCandidate, UserBehaviorProfile
from agent_sources.utils.time import utc_now

SMALL_FILE_BYTES = 1024 * 1024
OPTIMAL_SIZE_BYTES = 5 * 1024 * 1024
COMMON_TYPES = ("pdf", "text", "txt", "docx")
POPULAR_TYPES = ("pdf", "txt", "docx", "xlsx")
DOCUMENT_MARKERS = ("pdf", "doc", "text", "txt")
BUSINESS_HOURS = range(9, 18)


@dataclass(slots=True)
class CitedSource:
    """One citation of the current message, as seen by the heuristics."""

    message_id: str
    file_id: str
    index: int
    file_type: str | None = None
    size_bytes: int | None = None


@dataclass(slots=True)
class Confidence:
    value: float
    reasons: list[str]


CandidateHeuristic = Callable[[CitedSource, Sequence[CitedSource]], Optional[PrefetchCandidate]]
Signal = Optional[Tuple[float, str]]


def _type(source: CitedSource) -> str:
    return (source.file_type or "").lower()


def is_document_like(source: CitedSource) -> bool:
    file_type = _type(source)
    return any(marker in file_type for marker in DOCUMENT_MARKERS)


def by_position(source: CitedSource, sources: Sequence[CitedSource]) -> PrefetchCandidate | None:
    return PrefetchCandidate(
        message_id=source.message_id,
        file_id=source.file_id,
        priority=max(1, 10 - source.index),
        reason="same_message_related",
    )


def by_common_type(source: CitedSource, sources: Sequence[CitedSource]) -> PrefetchCandidate | None:
    if _type(source) not in COMMON_TYPES:
        return None
    return PrefetchCandidate(source.message_id, source.file_id, priority=7, reason="common_file_type")


def by_document_batch(source: CitedSource, sources: Sequence[CitedSource]) -> PrefetchCandidate | None:
    if not is_document_like(source):
        return None
    if sum(1 for other in sources if is_document_like(other)) < 2:
        return None
    return PrefetchCandidate(source.message_id, source.file_id, priority=6, reason="document_batch_likely")


def by_small_size(source: CitedSource, sources: Sequence[CitedSource]) -> PrefetchCandidate | None:
    if not source.size_bytes or source.size_bytes >= SMALL_FILE_BYTES:
        return None
    return PrefetchCandidate(source.message_id, source.file_id, priority=5, reason="small_file_fast_prefetch")


CANDIDATE_HEURISTICS: tuple[CandidateHeuristic, ...] = (
    by_position,
    by_common_type,
    by_document_batch,
    by_small_size,
)


def generate_candidates(
    sources: Sequence[CitedSource],
    limit: int,
    heuristics: Sequence[CandidateHeuristic] = CANDIDATE_HEURISTICS,
) -> list[PrefetchCandidate]:
    """Run every heuristic, keep the highest priority per (message, file), return the top `limit`."""
    best: dict[str, PrefetchCandidate] = {}
    for source in sources:
        for heuristic in heuristics:
            candidate = heuristic(source, sources)
            if candidate is None:
                continue
            current = best.get(candidate.key)
            if current is None or current.priority < candidate.priority:
                best[candidate.key] = candidate
    ranked = sorted(best.values(), key=lambda candidate: candidate.priority, reverse=True)
    return ranked[: max(limit, 0)]


def size_signal(source: CitedSource, profile: UserBehaviorProfile | None, now: datetime) -> Signal:
    if source.size_bytes and source.size_bytes < OPTIMAL_SIZE_BYTES:
        return 0.3, "optimal_file_size"
    return None


def type_signal(source: CitedSource, profile: UserBehaviorProfile | None, now: datetime) -> Signal:
    file_type = _type(source)
    if file_type and any(popular in file_type for popular in POPULAR_TYPES):
        return 0.2, "popular_file_type"
    return None


def position_signal(source: CitedSource, profile: UserBehaviorProfile | None, now: datetime) -> Signal:
    if 0 <= source.index < 3:
        return 0.2 - source.index * 0.05, "high_visibility_position"
    return None


def session_signal(source: CitedSource, profile: UserBehaviorProfile | None, now: datetime) -> Signal:
    if profile is not None and profile.downloads_in_session > 2:
        return 0.15, "active_download_session"
    return None


def preview_signal(source: CitedSource, profile: UserBehaviorProfile | None, now: datetime) -> Signal:
    if profile is not None and profile.previews_before_download:
        return 0.1, "preview_behavior_pattern"
    return None


def batch_signal(source: CitedSource, profile: UserBehaviorProfile | None, now: datetime) -> Signal:
    if profile is not None and profile.batch_download_tendency:
        return 0.15, "batch_download_tendency"
    return None


def preferred_type_signal(source: CitedSource, profile: UserBehaviorProfile | None, now: datetime) -> Signal:
    if profile is not None and _type(source) and _type(source) in profile.preferred_file_types:
        return 0.1, "preferred_file_type"
    return None


def time_of_day_signal(source: CitedSource, profile: UserBehaviorProfile | None, now: datetime) -> Signal:
    if profile is not None and now.hour in profile.hourly_activity:
        activity = min(max(profile.hourly_activity[now.hour], 0.0), 1.0)
        return (activity * 0.1, "hourly_activity_pattern") if activity > 0 else None
    if now.hour in BUSINESS_HOURS:
        return 0.1, "business_hours_activity"
    return None


CONFIDENCE_SIGNALS = (
    size_signal,
    type_signal,
    position_signal,
    session_signal,
    preview_signal,
    batch_signal,
    preferred_type_signal,
    time_of_day_signal,
)


def score_confidence(
    source: CitedSource,
    profile: UserBehaviorProfile | None = None,
    now: datetime | None = None,
) -> Confidence:
    """Sum the weighted signals for `source`, capped at 1.0."""
    moment = now or utc_now()
    total = 0.0
    reasons: list[str] = []
    for signal in CONFIDENCE_SIGNALS:
        result = signal(source, profile, moment)
        if result is None:
            continue
        weight, reason = result
        total += weight
        reasons.append(reason)
    return Confidence(value=min(total, 1.0), reasons=reasons)


__all__ = [
    "CitedSource",
    "Confidence",
    "CANDIDATE_HEURISTICS",
    "CONFIDENCE_SIGNALS",
    "by_position",
    "by_common_type",
    "by_document_batch",
    "by_small_size",
    "generate_candidates",
    "score_confidence",
    "is_document_like",
]
