from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

DEFAULT_TTL_SECONDS = 5 * 60


@dataclass(frozen=True)
class CachedSummary:
    value: Any
    expires_at: float | None


@dataclass
class SummaryCache:
    """Read-through cache of derived summaries keyed by (user_id, month key).

    Writes that touch a user's records must call ``invalidate`` so the next
    read recomputes from fresh records.
    """

    ttl_seconds: Optional[int] = DEFAULT_TTL_SECONDS
    clock: Callable[[], float] = time.monotonic
    _cache: dict[tuple[int, str], CachedSummary] = field(default_factory=dict)

    def get_or_compute(self, user_id: int, month_key: str, compute: Callable[[], Any]) -> Any:
        cache_key = (user_id, month_key)
        now = self.clock()
        self._prune(now)
        cached = self._cache.get(cache_key)
        if cached and (cached.expires_at is None or cached.expires_at > now):
            return cached.value

        value = compute()
        expires_at = None
        if self.ttl_seconds is not None:
            expires_at = now + self.ttl_seconds
        self._cache[cache_key] = CachedSummary(value=value, expires_at=expires_at)
        return value

    def invalidate(self, user_id: int, month_key: str | None = None) -> None:
        if month_key is not None:
            self._cache.pop((user_id, month_key), None)
            return
        for cache_key in [key for key in self._cache if key[0] == user_id]:
            del self._cache[cache_key]

    def _prune(self, now: float) -> None:
        expired = [
            key
            for key, cached in self._cache.items()
            if cached.expires_at is not None and cached.expires_at <= now
        ]
        for key in expired:
            del self._cache[key]

    def clear(self) -> None:
        self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)
