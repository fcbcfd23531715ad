"""
Cache - read-through caching with expiring tiers.

    from keymart import cache as C

    products = C.cache(key_fn, fetch_fn).tier(C.TTLTier(ttl=timedelta(seconds=60))).build()
    result = await products.get(product_id)
"""

from __future__ import annotations

from keymart.cache._types import Tier, TTLTier, CacheResult
from keymart.cache._builder import cache, Cache, CacheExecutor

__all__ = (
    "Tier",
    "TTLTier",
    "CacheResult",
    "cache",
    "Cache",
    "CacheExecutor",
)
