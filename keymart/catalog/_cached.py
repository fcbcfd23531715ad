"""
Product reads through the injected TTL cache.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import timedelta

from combinators import lift as L
from kungfu import Error, LazyCoroResult, Ok, Result

from keymart import cache as C
from keymart._types import ProductId
from keymart.catalog._sources import Catalog
from keymart.catalog._types import Product
from keymart.errors import NotFound, TransientStoreError, store_error

type ProductCache = C.CacheExecutor[ProductId, Product, NotFound | TransientStoreError]


def product_cache(
    catalog: Catalog,
    *,
    ttl: timedelta,
    max_size: int = 1024,
    clock: Callable[[], float] = time.monotonic,
) -> ProductCache:
    """
    Read-through product cache, one per process.

    Example:
        products = product_cache(catalog, ttl=settings.catalog_cache_ttl)
        product = await products.value(product_id)
    """

    def fetch(product_id: ProductId) -> LazyCoroResult[Product, NotFound | TransientStoreError]:
        async def found(product: Product | None) -> Result[Product, NotFound | TransientStoreError]:
            if product is None:
                return Error(NotFound("product", product_id))
            return Ok(product)

        return L.catching_async(lambda: catalog.get_product(product_id), on_error=store_error).then(found)

    return (
        C.cache(lambda product_id: f"product:{product_id}", fetch)
        .tier(C.TTLTier[Product](ttl=ttl, max_size=max_size, clock=clock))
        .build()
    )


__all__ = ("ProductCache", "product_cache")
