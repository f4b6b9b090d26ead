"""
Expiring key/value cache with an injectable clock.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

from .context import SystemClock

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    value: Any
    expires_at: Optional[datetime] = None


class ExpiringCache:
    """
    Mapping of key -> value with a per-entry time to live.

    Expired entries are dropped lazily on read and in bulk by
    purge_expired(). A ttl of 0 or None stores the entry without expiry.
    """

    def __init__(self, default_ttl: Optional[float] = None, clock=None):
        """
        Initialize the cache.

        Args:
            default_ttl: Seconds an entry lives when set() gets no ttl.
            clock: Object with a now() method. Defaults to the system clock.
        """
        self.default_ttl = default_ttl
        self.clock = clock or SystemClock()
        self._entries: dict[str, CacheEntry] = {}
        self.hits = 0
        self.misses = 0

    def _expiry(self, ttl: Optional[float]) -> Optional[datetime]:
        ttl = self.default_ttl if ttl is None else ttl
        if not ttl:
            return None
        return self.clock.now() + timedelta(seconds=ttl)

    def _is_expired(self, entry: CacheEntry, now: datetime) -> bool:
        return entry.expires_at is not None and entry.expires_at <= now

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        self._entries[key] = CacheEntry(value=value, expires_at=self._expiry(ttl))

    def get(self, key: str, default: Any = None) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return default

        if self._is_expired(entry, self.clock.now()):
            del self._entries[key]
            self.misses += 1
            return default

        self.hits += 1
        return entry.value

    def has(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and not self._is_expired(entry, self.clock.now())

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def expires_at(self, key: str) -> Optional[datetime]:
        entry = self._entries.get(key)
        return entry.expires_at if entry else None

    def keys(self, prefix: str = "") -> list[str]:
        """Live keys, optionally filtered by prefix."""
        now = self.clock.now()
        return [
            k for k, entry in self._entries.items()
            if k.startswith(prefix) and not self._is_expired(entry, now)
        ]

    def purge_expired(self) -> int:
        """
        Remove every expired entry.

        Returns:
            Number of entries removed.
        """
        now = self.clock.now()
        expired = [k for k, entry in self._entries.items() if self._is_expired(entry, now)]
        for key in expired:
            del self._entries[key]

        if expired:
            logger.debug(f"Purged {len(expired)} expired cache entries")
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> dict:
        return {
            "keys": len(self._entries),
            "hits": self.hits,
            "misses": self.misses,
        }

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.has(key)
