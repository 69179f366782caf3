"""
Versioned cache of ranked correlation results.

Keyed by (user_id, window_days, window_end): the window_end component makes
the key slide with the calendar, so yesterday's last-30-days entry is never
served today.

Reads take no lock beyond a dict lookup.  Writes swap one entry under a
lock and are ordered by request version, not wall-clock: a write older
than the stored entry, or older than the user's last invalidation, raises
CacheConsistencyError and leaves the cache untouched.
"""

from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Tuple

from models import CacheConsistencyError, CorrelationResultSet

log = logging.getLogger("pipeline.result_cache")

CacheKey = Tuple[str, int, date]


@dataclass(frozen=True)
class CacheEntry:
    result_set: CorrelationResultSet
    version: int
    window_start: date

    @property
    def calculated_at(self) -> datetime:
        return self.result_set.calculated_at


class ResultCache:
    def __init__(self):
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._invalidated_at: Dict[str, int] = {}
        self._lock = threading.Lock()
        self._versions = itertools.count(1)

    @staticmethod
    def make_key(user_id: str, window_days: int, window_end: date) -> CacheKey:
        return (str(user_id), int(window_days), window_end)

    def next_version(self) -> int:
        with self._lock:
            return next(self._versions)

    def get(self, key: CacheKey) -> Optional[CacheEntry]:
        return self._entries.get(key)

    def store(self, key: CacheKey, entry: CacheEntry) -> None:
        user_id = key[0]
        with self._lock:
            floor = self._invalidated_at.get(user_id, 0)
            if entry.version <= floor:
                raise CacheConsistencyError(
                    f"version {entry.version} predates invalidation {floor} for user {user_id}"
                )
            current = self._entries.get(key)
            if current is not None and current.version > entry.version:
                raise CacheConsistencyError(
                    f"version {entry.version} is older than cached version {current.version}"
                )
            self._entries[key] = entry

    def invalidate(self, user_id: str) -> int:
        """Drop every entry for *user_id* and fence off in-flight writes. Returns the drop count."""
        user_id = str(user_id)
        with self._lock:
            self._invalidated_at[user_id] = next(self._versions)
            stale = [k for k in self._entries if k[0] == user_id]
            for k in stale:
                del self._entries[k]
        if stale:
            log.info("   Invalidated %d cached result set(s) for user %s", len(stale), user_id)
        return len(stale)

    def covers(self, user_id: str, day: date) -> bool:
        """True when *day* falls inside any cached window of *user_id*, or on
        the lookback day just before it."""
        user_id = str(user_id)
        return any(
            k[0] == user_id and e.window_start - timedelta(days=1) <= day <= k[2]
            for k, e in list(self._entries.items())
        )

    def entries_for(self, user_id: str) -> List[CacheEntry]:
        user_id = str(user_id)
        return [e for k, e in list(self._entries.items()) if k[0] == user_id]

    def last_calculated(self, user_id: str) -> Optional[datetime]:
        stamps = [e.calculated_at for e in self.entries_for(user_id)]
        return max(stamps) if stamps else None
