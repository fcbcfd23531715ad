"""
Cache builder - fluent API over one or more tiers.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from kungfu import Error, LazyCoroResult, Ok, Result

from keymart.cache._types import CacheResult, Tier
from keymart.log import get_logger

log = get_logger("cache")

type KeyFn[K] = Callable[[K], str]


# ═══════════════════════════════════════════════════════════════════════════════
# Cache Builder
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(slots=True, frozen=True)
class Cache[K, T, E]:
    """
    Fluent cache builder.

    Example:
        products = (
            C.cache(lambda pid: f"product:{pid}", catalog.get_product)
            .tier(C.TTLTier(ttl=timedelta(seconds=60)))
            .build()
        )
    """

    _key_fn: KeyFn[K]
    _fetch: Callable[[K], LazyCoroResult[T, E]]
    _tiers: tuple[Tier[T], ...]

    def tier(self, t: Tier[T]) -> Cache[K, T, E]:
        return Cache(_key_fn=self._key_fn, _fetch=self._fetch, _tiers=(*self._tiers, t))

    def build(self) -> CacheExecutor[K, T, E]:
        return CacheExecutor(key_fn=self._key_fn, tiers=self._tiers, fetch=self._fetch)


# ═══════════════════════════════════════════════════════════════════════════════
# Cache Executor
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(slots=True, frozen=True)
class CacheExecutor[K, T, E]:
    """
    Read-through cache.

    Tiers are tried in order; a miss falls back to ``fetch`` and populates
    every tier. Tier failures degrade to a miss: the source stays the
    authority.
    """

    key_fn: KeyFn[K]
    tiers: tuple[Tier[T], ...]
    fetch: Callable[[K], LazyCoroResult[T, E]]

    def get(self, key: K) -> LazyCoroResult[CacheResult[T], E]:
        cache_key = self.key_fn(key)
        tiers = self.tiers
        fetch_fn = self.fetch

        async def execute() -> Result[CacheResult[T], E]:
            for t in tiers:
                try:
                    value = await t.get(cache_key)
                except Exception as e:
                    log.warning("cache_tier_read_failed", tier=t.name, key=cache_key, error=str(e))
                    continue
                if value is not None:
                    return Ok(CacheResult(value=value, hit=True, tier=t.name, ttl_remaining=t.remaining(cache_key)))

            match await fetch_fn(key):
                case Ok(value):
                    for t in tiers:
                        try:
                            await t.set(cache_key, value)
                        except Exception as e:
                            log.warning("cache_tier_write_failed", tier=t.name, key=cache_key, error=str(e))
                    return Ok(CacheResult(value=value, hit=False, tier=None, ttl_remaining=None))
                case Error(e):
                    return Error(e)

        return LazyCoroResult(execute)

    def value(self, key: K) -> LazyCoroResult[T, E]:
        """Like ``get`` but without metadata."""
        return self.get(key).map(lambda r: r.value)

    async def invalidate(self, key: K) -> bool:
        cache_key = self.key_fn(key)
        deleted = False
        for t in self.tiers:
            if await t.delete(cache_key):
                deleted = True
        return deleted


# ═══════════════════════════════════════════════════════════════════════════════
# cache() - Entry Point
# ═══════════════════════════════════════════════════════════════════════════════


def cache[K, T, E](
    key: KeyFn[K],
    fetch: Callable[[K], LazyCoroResult[T, E]],
) -> Cache[K, T, E]:
    """Create a cache builder from a key function and a source fetch."""
    return Cache(_key_fn=key, _fetch=fetch, _tiers=())


__all__ = ("Cache", "CacheExecutor", "cache")
