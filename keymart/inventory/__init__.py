"""
Inventory Key Pool - single-use license keys per product.

    pool = MemoryKeyPool()
    await pool.add_keys("prod_1", [NewKey.from_plaintext("AAAA-BBBB")])
    match await pool.allocate("prod_1", 1, order_id):
        case Ok(key_ids): ...
        case Error(OutOfStock()): ...
"""

from keymart.inventory._types import (
    AllocateError,
    fingerprint,
    NewKey,
    LicenseKey,
    StockLevel,
    UploadReport,
    KeyPool,
)
from keymart.inventory._memory import MemoryKeyPool
from keymart.inventory._sqlalchemy import SQLAlchemyKeyPool

__all__ = (
    "AllocateError",
    "fingerprint",
    "NewKey",
    "LicenseKey",
    "StockLevel",
    "UploadReport",
    "KeyPool",
    "MemoryKeyPool",
    "SQLAlchemyKeyPool",
)
