import logging
import threading
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from functools import lru_cache
from typing import Optional

from config import get_settings
from ledger import LedgerView, SortOption
from periods import DateFilter


logger = logging.getLogger(__name__)

CacheKey = tuple[str, DateFilter, SortOption, Optional[tuple[int, int]]]
Generation = tuple[int, int]


@dataclass(frozen=True)
class _CachedView:
    view: LedgerView
    stored_at: datetime


class LedgerCache:
    """Ledger views keyed by owner, filter and sort order, plus today's month
    for unbounded views.

    Any mutation of an owner's transactions or recurring rules must call
    ``invalidate_owner`` so the next read is rebuilt from the stores. Readers
    take a ``generation`` before querying and hand it to ``put``; a view built
    across an invalidation is dropped instead of stored.
    """

    def __init__(self, ttl_secs: int) -> None:
        self.ttl = timedelta(seconds=ttl_secs)
        self._entries: dict[CacheKey, _CachedView] = {}
        self._generations: dict[str, int] = {}
        self._epoch = 0
        self._lock = threading.Lock()

    @staticmethod
    def key(
        user_id: str,
        date_filter: DateFilter,
        sort_by: SortOption,
        today: Optional[date] = None,
    ) -> CacheKey:
        # unbounded views carry today's month of recurring entries
        month = (today.year, today.month) if today is not None else None
        return (user_id, date_filter, sort_by, month)

    def generation(self, user_id: str) -> Generation:
        with self._lock:
            return (self._epoch, self._generations.get(user_id, 0))

    def get(self, key: CacheKey, now: Optional[datetime] = None) -> Optional[LedgerView]:
        now = now or datetime.now(timezone.utc)
        with self._lock:
            cached = self._entries.get(key)
            if cached is None:
                return None
            if now - cached.stored_at > self.ttl:
                del self._entries[key]
                return None
            return cached.view

    def put(
        self,
        key: CacheKey,
        view: LedgerView,
        now: Optional[datetime] = None,
        generation: Optional[Generation] = None,
    ) -> bool:
        now = now or datetime.now(timezone.utc)
        with self._lock:
            current = (self._epoch, self._generations.get(key[0], 0))
            if generation is not None and generation != current:
                logger.debug(f"ledger_cache: dropped stale view owner={key[0]}")
                return False
            self._entries[key] = _CachedView(view=view, stored_at=now)
        return True

    def invalidate_owner(self, user_id: str) -> int:
        with self._lock:
            self._generations[user_id] = self._generations.get(user_id, 0) + 1
            stale = [key for key in self._entries if key[0] == user_id]
            for key in stale:
                del self._entries[key]
        logger.info(f"ledger_cache: invalidated owner={user_id} keys={len(stale)}")
        return len(stale)

    def expire(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        with self._lock:
            stale = [
                key
                for key, cached in self._entries.items()
                if now - cached.stored_at > self.ttl
            ]
            for key in stale:
                del self._entries[key]
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._epoch += 1
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


@lru_cache(maxsize=1)
def get_ledger_cache() -> LedgerCache:
    return LedgerCache(ttl_secs=get_settings().ledger_cache_ttl_secs)
