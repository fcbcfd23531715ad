"""
Cache types.
"""

from __future__ import annotations

import fnmatch
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta
from typing import Protocol

# ═══════════════════════════════════════════════════════════════════════════════
# Tier Protocol
# ═══════════════════════════════════════════════════════════════════════════════


class Tier[T](Protocol):
    """
    Cache tier protocol.

    Implement this for shared backends (Redis, Memcached, ...). A tier owns
    its own expiry; ``remaining`` reports how long a key has left, or None
    when the tier does not track it.
    """

    @property
    def name(self) -> str: ...

    async def get(self, key: str) -> T | None:
        """Get value. Returns None on miss or expiry."""
        ...

    async def set(self, key: str, value: T) -> None: ...

    async def delete(self, key: str) -> bool:
        """Delete key. Returns True if existed."""
        ...

    async def delete_pattern(self, pattern: str) -> int:
        """Delete keys matching a glob pattern. Returns count."""
        ...

    def remaining(self, key: str) -> timedelta | None: ...


# ═══════════════════════════════════════════════════════════════════════════════
# TTL Tier - In-Process LRU With Expiry
# ═══════════════════════════════════════════════════════════════════════════════


class TTLTier[T]:
    """
    In-process LRU tier where every entry expires ``ttl`` after it was set.

    Example:
        tier = TTLTier[Product](ttl=timedelta(seconds=60), max_size=1024)

    Note: one instance per process, passed to whoever needs it. The clock is
    injectable so tests can move time.
    """

    def __init__(
        self,
        ttl: timedelta,
        max_size: int = 1024,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self._ttl = ttl.total_seconds()
        self._max_size = max_size
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, T]] = OrderedDict()

    @property
    def name(self) -> str:
        return "ttl"

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, key: str) -> T | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if expires_at <= self._clock():
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return value

    async def set(self, key: str, value: T) -> None:
        if key in self._entries:
            self._entries.move_to_end(key)
        elif len(self._entries) >= self._max_size:
            self._entries.popitem(last=False)
        self._entries[key] = (self._clock() + self._ttl, value)

    async def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    async def delete_pattern(self, pattern: str) -> int:
        doomed = [k for k in self._entries if fnmatch.fnmatch(k, pattern)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def remaining(self, key: str) -> timedelta | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        left = entry[0] - self._clock()
        return timedelta(seconds=left) if left > 0 else None


# ═══════════════════════════════════════════════════════════════════════════════
# Cache Result
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class CacheResult[T]:
    """Cache read with metadata."""

    value: T
    hit: bool
    tier: str | None
    ttl_remaining: timedelta | None


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "Tier",
    "TTLTier",
    "CacheResult",
)
