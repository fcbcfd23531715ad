"""
HTTP surface - FastAPI app over a wired ``Services`` graph.

    services = await build_sql(Settings.from_env())
    app = create_app(services)
    # uvicorn.run(app)
"""

from keymart.api._app import (
    Route,
    error_status,
    error_response,
    respond,
    routes,
    add_routes,
    create_app,
)
from keymart.api._models import (
    OwnerIn,
    CartLineIn,
    CheckoutIn,
    RefundIn,
    KeysIn,
    ErrorOut,
    LineItemOut,
    CheckoutOut,
    OrderOut,
    TransactionOut,
    WalletOut,
    StockOut,
    UploadOut,
    WebhookOut,
)

__all__ = (
    "Route",
    "error_status",
    "error_response",
    "respond",
    "routes",
    "add_routes",
    "create_app",
    "OwnerIn",
    "CartLineIn",
    "CheckoutIn",
    "RefundIn",
    "KeysIn",
    "ErrorOut",
    "LineItemOut",
    "CheckoutOut",
    "OrderOut",
    "TransactionOut",
    "WalletOut",
    "StockOut",
    "UploadOut",
    "WebhookOut",
)
