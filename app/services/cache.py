"""Small TTL cache for profile-visible aggregates."""

from __future__ import annotations

import logging
import time
from typing import Any, Awaitable, Callable, Iterable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def profile_key(profile_id: int, name: str) -> str:
    """Return the cache key of a profile aggregate."""

    return f"profile:{profile_id}:{name}"


def profile_pattern(profile_id: int) -> str:
    return f"profile:{profile_id}:"


class CacheService:
    """Key/value store with per-entry expiry and substring invalidation."""

    def __init__(
        self,
        default_ttl: int = 300,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._default_ttl = default_ttl
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if expires_at <= self._clock():
            self._entries.pop(key, None)
            return None
        return value

    def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        resolved_ttl = self._default_ttl if ttl is None else ttl
        if resolved_ttl <= 0:
            return
        self._entries[key] = (self._clock() + resolved_ttl, value)

    async def get_or_set(
        self,
        key: str,
        factory: Callable[[], Awaitable[T]],
        ttl: int | None = None,
    ) -> T:
        """Return the cached value or compute, store and return it."""

        cached = self.get(key)
        if cached is not None:
            return cached
        value = await factory()
        self.set(key, value, ttl)
        return value

    def invalidate(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def invalidate_pattern(self, pattern: str) -> int:
        """Drop every key containing ``pattern``; return how many were removed."""

        keys = [key for key in self._entries if pattern in key]
        for key in keys:
            del self._entries[key]
        if keys:
            logger.debug("Invalidated %d cache keys matching %s", len(keys), pattern)
        return len(keys)

    def flush(self) -> None:
        self._entries.clear()

    def keys(self) -> list[str]:
        return list(self._entries)


def invalidate_profiles(cache: CacheService | None, profile_ids: Iterable[int]) -> None:
    """Best-effort invalidation of every aggregate cached for the profiles.

    Failures are logged and swallowed: a stale cache entry expires on its own
    and must never undo the mutation that triggered the invalidation.
    """

    if cache is None:
        return
    for profile_id in profile_ids:
        try:
            cache.invalidate_pattern(profile_pattern(profile_id))
        except Exception:  # pragma: no cover - background safety net
            logger.exception("Cache invalidation failed for profile %s", profile_id)
