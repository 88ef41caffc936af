"""Rolling per-conversation user behavior profiles."""

from __future__ import annotations

import time
from dataclasses import replace
from datetime import datetime
from typing import Callable

from agent_sources.models.entities import UserBehaviorProfile
from agent_sources.utils.time import utc_now

BATCH_DOWNLOAD_THRESHOLD = 3
MAX_PROFILES = 10_000


class BehaviorTracker:
    """One profile per (user, conversation), evicted when idle or when the tracker is full."""

    def __init__(self, clock: Callable[[], datetime] = utc_now, max_profiles: int = MAX_PROFILES) -> None:
        self.clock = clock
        self.max_profiles = max_profiles
        self._profiles: dict[tuple[str, str], UserBehaviorProfile] = {}
        self._events: dict[tuple[str, str], dict[int, int]] = {}
        self._last_seen: dict[tuple[str, str], float] = {}

    def __len__(self) -> int:
        return len(self._profiles)

    def _profile(self, user_id: str, conversation_id: str) -> UserBehaviorProfile:
        identity = (user_id, conversation_id)
        profile = self._profiles.get(identity)
        if profile is None:
            profile = UserBehaviorProfile(session_started_at=time.time())
            self._profiles[identity] = profile
        self._last_seen[identity] = self.clock().timestamp()
        if len(self._profiles) > self.max_profiles:
            others = (key for key in self._last_seen if key != identity)
            self._drop(min(others, key=self._last_seen.__getitem__))
        return profile

    def track_download(self, user_id: str, conversation_id: str, file_type: str | None = None) -> None:
        profile = self._profile(user_id, conversation_id)
        profile.downloads_in_session += 1
        if file_type:
            normalized = file_type.lower()
            if normalized not in profile.preferred_file_types:
                profile.preferred_file_types.append(normalized)
        if profile.downloads_in_session >= BATCH_DOWNLOAD_THRESHOLD:
            profile.batch_download_tendency = True
        self._record_hour(user_id, conversation_id)

    def track_preview(self, user_id: str, conversation_id: str) -> None:
        profile = self._profile(user_id, conversation_id)
        profile.previews_before_download = True
        self._record_hour(user_id, conversation_id)

    def profile(self, user_id: str, conversation_id: str) -> UserBehaviorProfile | None:
        """Snapshot of the profile, or None when nothing has been tracked yet."""
        profile = self._profiles.get((user_id, conversation_id))
        if profile is None:
            return None
        return replace(
            profile,
            preferred_file_types=list(profile.preferred_file_types),
            hourly_activity=dict(profile.hourly_activity),
        )

    def forget_conversation(self, user_id: str, conversation_id: str) -> None:
        self._drop((user_id, conversation_id))

    def sweep(self, max_idle_seconds: float) -> int:
        """Drop profiles with no activity in the last `max_idle_seconds`; returns how many."""
        cutoff = self.clock().timestamp() - max_idle_seconds
        idle = [identity for identity, seen in self._last_seen.items() if seen <= cutoff]
        for identity in idle:
            self._drop(identity)
        return len(idle)

    def clear(self) -> None:
        self._profiles.clear()
        self._events.clear()
        self._last_seen.clear()

    def _drop(self, identity: tuple[str, str]) -> None:
        self._profiles.pop(identity, None)
        self._events.pop(identity, None)
        self._last_seen.pop(identity, None)

    def _record_hour(self, user_id: str, conversation_id: str) -> None:
        # hourly_activity holds each hour's share of all events, 0..1
        identity = (user_id, conversation_id)
        counts = self._events.setdefault(identity, {})
        hour = self.clock().hour
        counts[hour] = counts.get(hour, 0) + 1
        total = sum(counts.values())
        self._profiles[identity].hourly_activity = {slot: count / total for slot, count in counts.items()}


__all__ = ["BehaviorTracker", "BATCH_DOWNLOAD_THRESHOLD", "MAX_PROFILES"]
