from collections.abc import AsyncIterator

import httpx
import pytest

from keymart.api import create_app, error_status
from keymart.errors import (
    GatewayError,
    InsufficientFunds,
    NotFound,
    OutOfStock,
    SessionNotPayable,
    SignatureInvalid,
    TransientStoreError,
    ValidationError,
)
from keymart.gateway import FakeGateway
from keymart.payments import CAPTURE_COMPLETED, sign
from keymart.wiring import Services

from tests.conftest import BOB, SECRET, cart, stock
from tests.test_payments import event

STARFALL = [
    {"product_id": "game", "seller_id": "seller-a", "qty": 1},
    {"product_id": "dlc", "seller_id": "seller-b", "qty": 1},
]


@pytest.fixture
async def client(services: Services) -> AsyncIterator[httpx.AsyncClient]:
    await stock(services.pool, "game", 3)
    await stock(services.pool, "dlc", 3)
    transport = httpx.ASGITransport(app=create_app(services))
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http


async def open_checkout(client: httpx.AsyncClient, **body: object) -> dict:
    response = await client.post("/checkouts", json={"items": STARFALL, **body})
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.parametrize(
    ("error", "status"),
    [
        (ValidationError("bad"), 422),
        (NotFound("order", "ord_1"), 404),
        (InsufficientFunds("alice", 0, 100), 402),
        (OutOfStock("game", 1, 0), 409),
        (SessionNotPayable("chk_1", "expired"), 409),
        (SignatureInvalid(), 400),
        (TransientStoreError("db down"), 503),
        (GatewayError("timeout"), 502),
    ],
)
def test_error_status(error, status: int) -> None:
    assert error_status(error) == status


# ═══════════════════════════════════════════════════════════════════════════════
# Checkouts
# ═══════════════════════════════════════════════════════════════════════════════


async def test_create_checkout_returns_the_quote(client: httpx.AsyncClient, services: Services) -> None:
    await services.wallet.credit("alice", 10_000)

    created = await open_checkout(client, user_id="alice", coupon_code="SAVE10")

    assert created["status"] == "pending"
    assert created["subtotal"] == 10_000
    assert created["bundle_discount"] == 1_000
    assert created["subscription_discount"] == 450
    assert created["coupon_discount"] == 855
    assert created["total_amount"] == 7_695
    assert created["handling_fee"] == 154
    assert created["grand_total"] == 7_849
    assert created["payment_method"] == "Wallet"
    assert [item["discount_type"] for item in created["items"]] == ["none", "none"]

    fetched = await client.get(f"/checkouts/{created['id']}")
    assert fetched.status_code == 200
    assert fetched.json() == created


async def test_create_checkout_from_stored_cart(client: httpx.AsyncClient, sources) -> None:
    sources.carts.put(cart(BOB, ("dlc", 2)))

    created = await open_checkout(client, user_id="bob", items=None)

    assert created["subtotal"] == 8_000
    assert created["payment_method"] == "PayPal"


async def test_create_checkout_rejects_bad_owner(client: httpx.AsyncClient) -> None:
    response = await client.post("/checkouts", json={"items": STARFALL})

    assert response.status_code == 422
    assert response.json() == {
        "code": "validation_error",
        "message": "user_id or guest_email is required",
        "field": "owner",
    }


async def test_create_checkout_out_of_stock(client: httpx.AsyncClient) -> None:
    items = [{"product_id": "game", "seller_id": "seller-a", "qty": 4}]

    response = await client.post("/checkouts", json={"user_id": "bob", "items": items})

    assert response.status_code == 409
    assert response.json()["code"] == "out_of_stock"


async def test_unknown_checkout_is_404(client: httpx.AsyncClient) -> None:
    response = await client.get("/checkouts/chk_missing")

    assert response.status_code == 404
    assert response.json()["code"] == "not_found"


async def test_cancel_checkout(client: httpx.AsyncClient) -> None:
    created = await open_checkout(client, user_id="bob")

    stranger = await client.post(f"/checkouts/{created['id']}/cancel", json={"user_id": "alice"})
    owner = await client.post(f"/checkouts/{created['id']}/cancel", json={"user_id": "bob"})
    again = await client.post(f"/checkouts/{created['id']}/cancel", json={"user_id": "bob"})

    assert stranger.status_code == 404
    assert owner.status_code == 200 and owner.json()["status"] == "cancelled"
    assert again.status_code == 409


# ═══════════════════════════════════════════════════════════════════════════════
# Payments
# ═══════════════════════════════════════════════════════════════════════════════


async def test_wallet_payment_and_order_lookup(client: httpx.AsyncClient, services: Services) -> None:
    await services.wallet.credit("alice", 10_000)
    created = await open_checkout(client, user_id="alice", coupon_code="SAVE10")

    paid = await client.post(f"/checkouts/{created['id']}/wallet-payment", json={"user_id": "alice"})

    assert paid.status_code == 200, paid.text
    order = paid.json()
    assert order["payment_status"] == "paid"
    assert order["order_status"] == "completed"
    assert all(len(item["key_ids"]) == 1 for item in order["items"])

    fetched = await client.get(f"/orders/{order['id']}")
    assert fetched.json() == order

    wallet = (await client.get("/wallets/alice")).json()
    assert wallet["balance"] == 2_151
    assert [tx["kind"] for tx in wallet["transactions"]] == ["debit", "credit"]


async def test_wallet_payment_without_funds_is_rejected(client: httpx.AsyncClient) -> None:
    created = await open_checkout(client, user_id="bob")

    response = await client.post(f"/checkouts/{created['id']}/wallet-payment", json={"user_id": "bob"})

    assert response.status_code == 422
    assert response.json()["field"] == "payment_method"


async def test_card_payment_and_webhook(client: httpx.AsyncClient, gateway: FakeGateway) -> None:
    created = await open_checkout(client, user_id="bob")

    linked = await client.post(f"/checkouts/{created['id']}/card")
    paypal_order_id = linked.json()["paypal_order_id"]
    body = event(CAPTURE_COMPLETED, paypal_order_id, "91.80")
    headers = {"Content-Type": "application/json", "X-Webhook-Signature": sign(body, SECRET)}
    delivered = await client.post("/webhooks/paypal", content=body, headers=headers)
    replayed = await client.post("/webhooks/paypal", content=body, headers=headers)

    assert linked.status_code == 200
    assert paypal_order_id in gateway.orders
    assert delivered.status_code == 200
    assert delivered.json()["outcome"] == "processed"
    assert replayed.status_code == 200
    assert replayed.json() == {**delivered.json(), "outcome": "duplicate"}

    refunded = await client.post(f"/orders/{delivered.json()['order_id']}/refund", json={"reason": "changed mind"})
    assert refunded.status_code == 200
    assert refunded.json()["payment_status"] == "refunded"
    assert gateway.refunds == [("CAP-1", 9_180)]


async def test_card_payment_gateway_failure_is_502(client: httpx.AsyncClient, gateway: FakeGateway) -> None:
    created = await open_checkout(client, user_id="bob")
    gateway.fail_with = ConnectionError("gateway unreachable")

    response = await client.post(f"/checkouts/{created['id']}/card")

    assert response.status_code == 502
    assert response.json()["code"] == "gateway_error"


async def test_webhook_with_bad_signature_is_400(client: httpx.AsyncClient) -> None:
    body = event(CAPTURE_COMPLETED, "PAYID-1")

    response = await client.post("/webhooks/paypal", content=body, headers={"X-Webhook-Signature": "nope"})

    assert response.status_code == 400
    assert response.json()["code"] == "signature_invalid"


async def test_orphan_webhook_is_acked(client: httpx.AsyncClient) -> None:
    body = event(CAPTURE_COMPLETED, "PAYID-UNKNOWN")

    response = await client.post("/webhooks/paypal", content=body, headers={"X-Webhook-Signature": sign(body, SECRET)})

    assert response.status_code == 200
    assert response.json()["outcome"] == "orphan"


async def test_unknown_order_is_404(client: httpx.AsyncClient) -> None:
    assert (await client.get("/orders/ord_missing")).status_code == 404
    assert (await client.post("/orders/ord_missing/refund", json={})).status_code == 404


# ═══════════════════════════════════════════════════════════════════════════════
# Wallets & stock
# ═══════════════════════════════════════════════════════════════════════════════


async def test_wallet_history_pages(client: httpx.AsyncClient, services: Services) -> None:
    for amount in (100, 200, 300):
        await services.wallet.credit("alice", amount)

    response = await client.get("/wallets/alice", params={"page": 1, "page_size": 2})

    body = response.json()
    assert body["balance"] == 600
    assert body["total"] == 3
    assert [tx["amount"] for tx in body["transactions"]] == [300, 200]


async def test_upload_keys_and_stock(client: httpx.AsyncClient) -> None:
    uploaded = await client.post("/products/tool/keys", json={"keys": ["T-1", "T-2", "T-1"]})
    again = await client.post("/products/tool/keys", json={"keys": ["T-2", "T-3"]})
    stocked = await client.get("/products/tool/stock")

    assert uploaded.status_code == 201
    assert uploaded.json() == {"product_id": "tool", "added": 2, "duplicates": 1}
    assert again.json() == {"product_id": "tool", "added": 1, "duplicates": 1}
    assert stocked.json() == {"product_id": "tool", "total": 3, "available": 3}


async def test_upload_blank_keys_is_rejected(client: httpx.AsyncClient) -> None:
    response = await client.post("/products/tool/keys", json={"keys": ["  "]})

    assert response.status_code == 422
    assert response.json()["field"] == "keys"
