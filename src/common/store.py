# ABOUTME: Mastery Profile Store: async key-value persistence keyed by (student, skill).
# ABOUTME: Enforces strictly increasing write timestamps per key and offers lock-free snapshots.

from __future__ import annotations

import abc
import asyncio
import threading
from datetime import datetime
from typing import Dict, Iterable, Optional, Tuple

from .errors import StaleWriteError
from .schemas import MasteryProfile

ProfileKey = Tuple[str, str]


class MasteryProfileStore(abc.ABC):
    """Persistence interface for MasteryProfile records."""

    @abc.abstractmethod
    async def get(self, student_id: str, skill_id: str) -> Optional[MasteryProfile]: ...

    @abc.abstractmethod
    async def put(self, profile: MasteryProfile, overwrite: bool = False) -> None:
        """Write a profile. Without ``overwrite`` the timestamp must be newer than the stored one."""

    @abc.abstractmethod
    async def profiles_for_student(self, student_id: str) -> Dict[str, MasteryProfile]: ...

    @abc.abstractmethod
    def snapshot(self) -> Dict[ProfileKey, MasteryProfile]:
        """Consistent copy of every profile; used by batch readers that take no per-key lock."""


class InMemoryMasteryStore(MasteryProfileStore):
    def __init__(self, write_delay: float = 0.0, profiles: Iterable[MasteryProfile] = ()):
        self._profiles: Dict[ProfileKey, MasteryProfile] = {p.key: p for p in profiles}
        self._lock = threading.Lock()
        self._write_delay = write_delay

    async def get(self, student_id: str, skill_id: str) -> Optional[MasteryProfile]:
        with self._lock:
            return self._profiles.get((student_id, skill_id))

    async def put(self, profile: MasteryProfile, overwrite: bool = False) -> None:
        if self._write_delay:
            await asyncio.sleep(self._write_delay)
        with self._lock:
            current = self._profiles.get(profile.key)
            if not overwrite and current is not None and not _is_newer(profile.last_update, current.last_update):
                raise StaleWriteError(
                    f"Write for {profile.key} at {profile.last_update} is not newer than {current.last_update}"
                )
            self._profiles[profile.key] = profile

    async def profiles_for_student(self, student_id: str) -> Dict[str, MasteryProfile]:
        with self._lock:
            return {skill: p for (student, skill), p in self._profiles.items() if student == student_id}

    def snapshot(self) -> Dict[ProfileKey, MasteryProfile]:
        with self._lock:
            return dict(self._profiles)


def _is_newer(candidate: Optional[datetime], current: Optional[datetime]) -> bool:
    if current is None:
        return True
    if candidate is None:
        return False
    return candidate > current


class ExposureLog:
    """Per-student record of when each item was last shown."""

    def __init__(self) -> None:
        self._last_shown: Dict[Tuple[str, str], datetime] = {}
        self._lock = threading.Lock()

    def record(self, student_id: str, item_id: str, shown_at: datetime) -> None:
        with self._lock:
            self._last_shown[(student_id, item_id)] = shown_at

    def last_shown(self, student_id: str, item_id: str) -> Optional[datetime]:
        with self._lock:
            return self._last_shown.get((student_id, item_id))
