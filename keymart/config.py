"""
Settings - immutable configuration with fluent builders.

    settings = (
        Settings.from_env()
        .with_handling_fee(HandlingFee.percentage_of(2))
        .with_checkout_ttl(minutes=15)
    )

Environment variables (all optional):

    KEYMART_DATABASE_URL            sqlite+aiosqlite:///:memory:
    KEYMART_WEBHOOK_SECRET          HMAC-SHA256 secret for gateway events
    KEYMART_CURRENCY                USD
    KEYMART_CHECKOUT_TTL_MINUTES    30
    KEYMART_SUBSCRIPTION_DISCOUNT   2
    KEYMART_FEE_ENABLED             false
    KEYMART_FEE_TYPE                percentage | fixed
    KEYMART_FEE_PERCENTAGE          5
    KEYMART_FEE_FIXED_CENTS         0
    KEYMART_CACHE_TTL_SECONDS       60
    KEYMART_LOG_LEVEL               INFO
    KEYMART_LOG_JSON                true
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, replace
from datetime import timedelta
from decimal import Decimal
from enum import StrEnum

from keymart._types import Cents
from keymart.money import as_percent


# ═══════════════════════════════════════════════════════════════════════════════
# Handling Fee
# ═══════════════════════════════════════════════════════════════════════════════


class FeeKind(StrEnum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


@dataclass(frozen=True, slots=True)
class HandlingFee:
    """
    Buyer-side surcharge, added after all discounts.

    Note: percentage is clamped to 0..100 on construction.
    """

    enabled: bool = False
    kind: FeeKind = FeeKind.PERCENTAGE
    percentage: Decimal = Decimal(5)
    fixed_cents: Cents = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "percentage", as_percent(self.percentage))
        if self.fixed_cents < 0:
            object.__setattr__(self, "fixed_cents", 0)

    @staticmethod
    def disabled() -> HandlingFee:
        return HandlingFee(enabled=False)

    @staticmethod
    def percentage_of(percent: Decimal | int | str) -> HandlingFee:
        return HandlingFee(enabled=True, kind=FeeKind.PERCENTAGE, percentage=as_percent(percent))

    @staticmethod
    def fixed(cents: Cents) -> HandlingFee:
        return HandlingFee(enabled=True, kind=FeeKind.FIXED, fixed_cents=cents)


# ═══════════════════════════════════════════════════════════════════════════════
# Settings
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Settings:
    """
    Process-wide configuration.

    Note: Immutable - each ``with_*`` returns a new Settings.
    """

    database_url: str = "sqlite+aiosqlite:///:memory:"
    webhook_secret: str = "dev-webhook-secret"
    currency: str = "USD"
    checkout_ttl: timedelta = timedelta(minutes=30)
    amount_tolerance_cents: Cents = 1
    subscription_discount_percent: Decimal = Decimal(2)
    handling_fee: HandlingFee = HandlingFee()
    catalog_cache_ttl: timedelta = timedelta(seconds=60)
    catalog_cache_size: int = 1024
    store_retry_times: int = 3
    log_level: str = "INFO"
    log_json: bool = True

    # ─── builders ────────────────────────────────────────────────────────────

    def with_database_url(self, url: str) -> Settings:
        return replace(self, database_url=url)

    def with_webhook_secret(self, secret: str) -> Settings:
        return replace(self, webhook_secret=secret)

    def with_checkout_ttl(
        self,
        *,
        minutes: float | None = None,
        delta: timedelta | None = None,
    ) -> Settings:
        """
        Example:
            .with_checkout_ttl(minutes=30)
            .with_checkout_ttl(delta=timedelta(hours=1))
        """
        ttl = delta if delta is not None else timedelta(minutes=minutes or 0)
        if ttl <= timedelta(0):
            raise ValueError("checkout ttl must be positive")
        return replace(self, checkout_ttl=ttl)

    def with_subscription_discount(self, percent: Decimal | int | str) -> Settings:
        return replace(self, subscription_discount_percent=as_percent(percent))

    def with_handling_fee(self, fee: HandlingFee) -> Settings:
        return replace(self, handling_fee=fee)

    def with_cache(self, *, ttl_seconds: float, max_size: int | None = None) -> Settings:
        return replace(
            self,
            catalog_cache_ttl=timedelta(seconds=ttl_seconds),
            catalog_cache_size=max_size if max_size is not None else self.catalog_cache_size,
        )

    def with_logging(self, *, level: str | None = None, json: bool | None = None) -> Settings:
        return replace(
            self,
            log_level=level or self.log_level,
            log_json=self.log_json if json is None else json,
        )

    # ─── loading ─────────────────────────────────────────────────────────────

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        env = os.environ if environ is None else environ
        defaults = cls()

        def get(name: str) -> str | None:
            value = env.get(f"KEYMART_{name}")
            return value.strip() if value is not None and value.strip() else None

        fee = HandlingFee(
            enabled=_flag(get("FEE_ENABLED"), default=False),
            kind=FeeKind(get("FEE_TYPE") or FeeKind.PERCENTAGE),
            percentage=Decimal(get("FEE_PERCENTAGE") or "5"),
            fixed_cents=int(get("FEE_FIXED_CENTS") or 0),
        )

        ttl_minutes = get("CHECKOUT_TTL_MINUTES")
        cache_ttl = get("CACHE_TTL_SECONDS")

        return cls(
            database_url=get("DATABASE_URL") or defaults.database_url,
            webhook_secret=get("WEBHOOK_SECRET") or defaults.webhook_secret,
            currency=(get("CURRENCY") or defaults.currency).upper(),
            checkout_ttl=(
                timedelta(minutes=float(ttl_minutes)) if ttl_minutes else defaults.checkout_ttl
            ),
            subscription_discount_percent=as_percent(
                get("SUBSCRIPTION_DISCOUNT") or defaults.subscription_discount_percent
            ),
            handling_fee=fee,
            catalog_cache_ttl=(
                timedelta(seconds=float(cache_ttl)) if cache_ttl else defaults.catalog_cache_ttl
            ),
            log_level=(get("LOG_LEVEL") or defaults.log_level).upper(),
            log_json=_flag(get("LOG_JSON"), default=defaults.log_json),
        )


def _flag(value: str | None, *, default: bool) -> bool:
    if value is None:
        return default
    return value.lower() in ("1", "true", "yes", "on")


__all__ = ("FeeKind", "HandlingFee", "Settings")
