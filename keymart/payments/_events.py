"""
Gateway webhook events - signature check and payload model.

Signature: hex HMAC-SHA256 of the raw body with the shared secret, sent in
``X-Webhook-Signature`` (an optional ``sha256=`` prefix is accepted).
"""

from __future__ import annotations

import hashlib
import hmac
from collections.abc import Mapping

import pydantic
from kungfu import Error, Ok, Result
from pydantic import BaseModel, ConfigDict, Field

from keymart._types import Cents
from keymart.errors import SignatureInvalid, ValidationError
from keymart.money import parse_amount

SIGNATURE_HEADER = "x-webhook-signature"

CAPTURE_COMPLETED = "PAYMENT.CAPTURE.COMPLETED"
CAPTURE_DENIED = "PAYMENT.CAPTURE.DENIED"
CAPTURE_REFUNDED = "PAYMENT.CAPTURE.REFUNDED"


# ═══════════════════════════════════════════════════════════════════════════════
# Signature
# ═══════════════════════════════════════════════════════════════════════════════


def sign(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def verify(body: bytes, headers: Mapping[str, str], secret: str) -> Result[None, SignatureInvalid]:
    provided = next((v for k, v in headers.items() if k.lower() == SIGNATURE_HEADER), "")
    provided = provided.strip().removeprefix("sha256=")
    if not provided or not hmac.compare_digest(provided, sign(body, secret)):
        return Error(SignatureInvalid())
    return Ok(None)


# ═══════════════════════════════════════════════════════════════════════════════
# Payload
# ═══════════════════════════════════════════════════════════════════════════════


class _Model(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


class Amount(_Model):
    value: str
    currency_code: str


class RelatedIds(_Model):
    order_id: str | None = None
    capture_id: str | None = None


class SupplementaryData(_Model):
    related_ids: RelatedIds = Field(default_factory=RelatedIds)


class Resource(_Model):
    id: str | None = None
    status: str | None = None
    amount: Amount | None = None
    capture_id: str | None = None
    supplementary_data: SupplementaryData = Field(default_factory=SupplementaryData)


class WebhookEvent(_Model):
    id: str | None = None
    event_type: str
    resource: Resource = Field(default_factory=Resource)

    @property
    def paypal_order_id(self) -> str | None:
        return self.resource.supplementary_data.related_ids.order_id

    @property
    def capture_id(self) -> str | None:
        """The capture this event is about. Refund events carry it separately."""
        if self.event_type == CAPTURE_REFUNDED:
            return self.resource.capture_id or self.resource.supplementary_data.related_ids.capture_id
        return self.resource.id

    def captured(self) -> Result[tuple[Cents, str], ValidationError]:
        if self.resource.amount is None:
            return Error(ValidationError("resource.amount is required", field="resource.amount"))
        try:
            cents = parse_amount(self.resource.amount.value)
        except ValueError as e:
            return Error(ValidationError(str(e), field="resource.amount.value"))
        return Ok((cents, self.resource.amount.currency_code))


def parse_event(body: bytes) -> Result[WebhookEvent, ValidationError]:
    try:
        return Ok(WebhookEvent.model_validate_json(body))
    except pydantic.ValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        where = ".".join(str(p) for p in first.get("loc", ())) or None
        return Error(ValidationError(f"invalid webhook event: {first.get('msg', e)}", field=where))


__all__ = (
    "SIGNATURE_HEADER",
    "CAPTURE_COMPLETED",
    "CAPTURE_DENIED",
    "CAPTURE_REFUNDED",
    "sign",
    "verify",
    "Amount",
    "RelatedIds",
    "SupplementaryData",
    "Resource",
    "WebhookEvent",
    "parse_event",
)
