"""
FastAPI app - a route table over the services, one error-to-status map.

Handlers unwrap a ``Result`` into JSON: ``Ok`` through the response model,
``Error`` through ``ErrorOut`` with the status from ``error_status``.
"""

from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any, Protocol

import fastapi
from combinators import lift as L
from combinators import zip_par
from fastapi.responses import JSONResponse
from kungfu import Error, Ok, Result
from pydantic import BaseModel

from keymart._types import new_id
from keymart.api._models import (
    CheckoutIn,
    CheckoutOut,
    ErrorOut,
    KeysIn,
    OrderOut,
    OwnerIn,
    RefundIn,
    StockOut,
    UploadOut,
    WalletOut,
    WebhookOut,
)
from keymart.errors import (
    FulfillmentError,
    GatewayError,
    IdempotencyConflict,
    InsufficientFunds,
    NotFound,
    OutOfStock,
    ReconciliationMismatch,
    SessionNotPayable,
    SignatureInvalid,
    TransientStoreError,
    ValidationError,
)
from keymart.log import bind_request, clear_request, get_logger
from keymart.payments import webhook_status
from keymart.wiring import Services

log = get_logger("api")

type Route = tuple[str, str, Callable[..., Awaitable[JSONResponse]], int]  # (method, path, handler, status)


class _FromDomain(Protocol):
    @classmethod
    def from_domain(cls, value: Any) -> BaseModel: ...


# ═══════════════════════════════════════════════════════════════════════════════
# Result -> HTTP
# ═══════════════════════════════════════════════════════════════════════════════


def error_status(error: FulfillmentError) -> int:
    match error:
        case ValidationError():
            return 422
        case NotFound():
            return 404
        case InsufficientFunds():
            return 402
        case OutOfStock() | SessionNotPayable():
            return 409
        case IdempotencyConflict() | ReconciliationMismatch():
            return 200
        case SignatureInvalid():
            return 400
        case TransientStoreError():
            return 503
        case GatewayError():
            return 502
        case _:
            return 500


def error_response(error: FulfillmentError, status: int | None = None) -> JSONResponse:
    status = status or error_status(error)
    headers = {"Retry-After": "1"} if status == 503 else None
    if status >= 500:
        log.warning("request_failed", status=status, code=error.code, error=error.message)
    return JSONResponse(ErrorOut.from_domain(error).model_dump(mode="json"), status_code=status, headers=headers)


def respond(result: Result[Any, Any], out: type[_FromDomain], status: int = 200) -> JSONResponse:
    match result:
        case Ok(value):
            return JSONResponse(out.from_domain(value).model_dump(mode="json"), status_code=status)
        case Error(e):
            return error_response(e)


# ═══════════════════════════════════════════════════════════════════════════════
# Routes
# ═══════════════════════════════════════════════════════════════════════════════


def routes(services: Services) -> list[Route]:
    checkout = services.checkout
    reconciler = services.reconciler

    async def create_checkout(req: CheckoutIn) -> JSONResponse:
        match req.to_domain():
            case Error(e):
                return error_response(e)
            case Ok((owner, None)):
                created = await checkout.create_from_cart(owner, coupon_code=req.coupon_code, rail=req.payment_rail)
            case Ok((_, cart)):
                created = await checkout.create(cart, coupon_code=req.coupon_code, rail=req.payment_rail)
        return respond(created, CheckoutOut, status=201)

    async def get_checkout(checkout_id: str) -> JSONResponse:
        return respond(await checkout.get(checkout_id), CheckoutOut)

    async def cancel_checkout(checkout_id: str, req: OwnerIn) -> JSONResponse:
        match req.to_domain():
            case Error(e):
                return error_response(e)
            case Ok(owner):
                return respond(await checkout.cancel(checkout_id, owner), CheckoutOut)

    async def begin_card_payment(checkout_id: str) -> JSONResponse:
        return respond(await checkout.begin_card_payment(checkout_id), CheckoutOut)

    async def pay_with_wallet(checkout_id: str, req: OwnerIn) -> JSONResponse:
        match req.to_domain():
            case Error(e):
                return error_response(e)
            case Ok(owner):
                return respond(await reconciler.pay_with_wallet(checkout_id, owner), OrderOut)

    async def paypal_webhook(request: fastapi.Request) -> JSONResponse:
        body = await request.body()
        result = await reconciler.handle_webhook(body, dict(request.headers))
        status = webhook_status(result)
        match result:
            case Ok(done):
                return JSONResponse(WebhookOut.from_domain(done).model_dump(mode="json"), status_code=status)
            case Error(e):
                return error_response(e, status)

    async def get_order(order_id: str) -> JSONResponse:
        async def found(order: Any) -> Result[Any, FulfillmentError]:
            return Ok(order) if order is not None else Error(NotFound("order", order_id))

        return respond(await L.call(services.orders.get, order_id).then(found), OrderOut)

    async def refund_order(order_id: str, req: RefundIn) -> JSONResponse:
        return respond(await reconciler.refund_order(order_id, req.reason), OrderOut)

    async def get_wallet(user_id: str, page: int = 1, page_size: int = 20) -> JSONResponse:
        wallet = services.wallet
        loaded = await zip_par(
            L.call(wallet.balance, user_id),
            L.call(wallet.transactions, user_id, page, page_size),
        )
        return respond(loaded.map(lambda pair: (user_id, *pair)), WalletOut)

    async def upload_keys(product_id: str, req: KeysIn) -> JSONResponse:
        keys = req.to_domain()
        if not keys:
            return error_response(ValidationError("no keys given", field="keys"))
        return respond(await services.pool.add_keys(product_id, keys), UploadOut, status=201)

    async def get_stock(product_id: str) -> JSONResponse:
        return respond(await services.pool.availability(product_id), StockOut)

    return [
        ("POST", "/checkouts", create_checkout, 201),
        ("GET", "/checkouts/{checkout_id}", get_checkout, 200),
        ("POST", "/checkouts/{checkout_id}/cancel", cancel_checkout, 200),
        ("POST", "/checkouts/{checkout_id}/card", begin_card_payment, 200),
        ("POST", "/checkouts/{checkout_id}/wallet-payment", pay_with_wallet, 200),
        ("POST", "/webhooks/paypal", paypal_webhook, 200),
        ("GET", "/orders/{order_id}", get_order, 200),
        ("POST", "/orders/{order_id}/refund", refund_order, 200),
        ("GET", "/wallets/{user_id}", get_wallet, 200),
        ("POST", "/products/{product_id}/keys", upload_keys, 201),
        ("GET", "/products/{product_id}/stock", get_stock, 200),
    ]


def add_routes(app: fastapi.FastAPI, table: list[Route]) -> None:
    for method, path, handler, status in table:
        route_method = getattr(app, method.lower(), None)
        if route_method is None:
            raise ValueError(f"Unsupported HTTP method: {method}")

        route_method(path, status_code=status)(handler)


# ═══════════════════════════════════════════════════════════════════════════════
# App
# ═══════════════════════════════════════════════════════════════════════════════


def create_app(services: Services) -> fastapi.FastAPI:
    @asynccontextmanager
    async def lifespan(_: fastapi.FastAPI) -> AsyncIterator[None]:
        yield
        await services.close()

    app = fastapi.FastAPI(title="keymart", lifespan=lifespan)

    @app.middleware("http")
    async def request_context(
        request: fastapi.Request,
        call_next: Callable[[fastapi.Request], Awaitable[fastapi.Response]],
    ) -> fastapi.Response:
        clear_request()
        bind_request(request_id=request.headers.get("x-request-id") or new_id("req"), path=request.url.path)
        try:
            return await call_next(request)
        finally:
            clear_request()

    add_routes(app, routes(services))
    return app


__all__ = ("Route", "error_status", "error_response", "respond", "routes", "add_routes", "create_app")
