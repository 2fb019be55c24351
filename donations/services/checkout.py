"""
Checkout session builder for one-time carts and monthly donations.

Validation happens before any side effect. A cart checkout persists its
DonationIntent (and line snapshots) before Stripe is called, so a session that
completes after a crash can still be reconciled from the webhook.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Mapping, Optional

from flask import current_app
from sqlalchemy import select

from donations.errors import UpstreamFailure, ValidationFailed
from donations.extensions import db
from donations.models import CatalogItem, DonationIntent, DonationIntentItem
from donations.services.price_cache import (
    CUSTOM_DONATION,
    ensure_recurring_price,
    ensure_stripe_product,
)
from donations.services.stripe_gateway import StripeGateway

log = logging.getLogger(__name__)

PAYMENT_STATUSES = ("paid", "unpaid", "no_payment_required")


# ----------------------------
# Input parsing
# ----------------------------
def _number(raw: Any) -> Optional[float]:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return float(raw)
    if isinstance(raw, str):
        try:
            return float(raw.strip())
        except ValueError:
            return None
    return None


def _round_half_up(x: float) -> int:
    return int(Decimal(repr(x)).to_integral_value(rounding=ROUND_HALF_UP))


def _quantity(raw: Any) -> int:
    n = _number(raw)
    if n is None or not math.isfinite(n):
        return 0
    return int(math.floor(n))


@dataclass(frozen=True)
class CheckoutLine:
    catalog_item_id: str
    quantity: int


@dataclass(frozen=True)
class CartRequest:
    lines: List[CheckoutLine] = field(default_factory=list)
    custom_amount_cents: int = 0

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "CartRequest":
        cfg = current_app.config

        raw_custom = data.get("customAmountCents")
        if raw_custom is None:
            custom = 0
        else:
            n = _number(raw_custom)
            if n is None or not math.isfinite(n) or n < 0:
                raise ValidationFailed("Invalid custom amount")
            custom = _round_half_up(n)

        if custom and not (cfg["DONATIONS_CUSTOM_MIN_CENTS"] <= custom <= cfg["DONATIONS_CUSTOM_MAX_CENTS"]):
            raise ValidationFailed("Custom amount is out of range")

        max_qty = int(cfg["DONATIONS_MAX_QUANTITY"])
        lines: List[CheckoutLine] = []
        items = data.get("items")
        for line in items if isinstance(items, list) else []:
            if not isinstance(line, Mapping):
                continue
            item_id = line.get("catalogItemId")
            qty = _quantity(line.get("quantity"))
            if not isinstance(item_id, str) or not item_id or qty <= 0:
                continue
            lines.append(CheckoutLine(item_id, min(max_qty, qty)))

        if len(lines) > int(cfg["DONATIONS_MAX_LINES"]):
            raise ValidationFailed("Too many line items")
        if not lines and custom == 0:
            raise ValidationFailed("Add items or a custom amount")

        return cls(lines=lines, custom_amount_cents=custom)


def parse_monthly_amount(raw: Any) -> int:
    cfg = current_app.config
    n = _number(raw)
    if n is None or not math.isfinite(n):
        raise ValidationFailed("Monthly amount is out of range")
    cents = _round_half_up(n)
    if not (cfg["DONATIONS_MONTHLY_MIN_CENTS"] <= cents <= cfg["DONATIONS_MONTHLY_MAX_CENTS"]):
        raise ValidationFailed("Monthly amount is out of range")
    if cents % 100 != 0:
        raise ValidationFailed("Monthly amount must be a whole dollar amount")
    return cents


# ----------------------------
# Pricing
# ----------------------------
@dataclass
class PricedCart:
    currency: str
    items_total_cents: int
    custom_amount_cents: int
    intent_items: List[Dict[str, Any]]
    stripe_line_items: List[Dict[str, Any]]

    @property
    def total_cents(self) -> int:
        return self.items_total_cents + self.custom_amount_cents


def price_cart(cart: CartRequest) -> PricedCart:
    """Resolve every line against the catalog; any gap in price data is a hard rejection."""
    ids = sorted({line.catalog_item_id for line in cart.lines})
    rows: Dict[str, CatalogItem] = {}
    if ids:
        rows = {row.id: row for row in db.session.execute(select(CatalogItem).where(CatalogItem.id.in_(ids))).scalars()}

    currency = current_app.config["DONATIONS_DEFAULT_CURRENCY"]
    currency_locked = False
    items_total = 0
    intent_items: List[Dict[str, Any]] = []
    stripe_lines: List[Dict[str, Any]] = []

    for line in cart.lines:
        row = rows.get(line.catalog_item_id)
        if row is None:
            raise ValidationFailed("One or more items are unavailable")
        if not row.is_active:
            raise ValidationFailed("One or more items are currently unavailable")
        if not row.stripe_price_id or not row.stripe_price_id.startswith("price_"):
            raise ValidationFailed("One or more items are not ready for checkout yet")
        if not row.unit_cost_cents or row.unit_cost_cents < 0:
            raise ValidationFailed("One or more items are missing an amount")
        if not row.currency:
            raise ValidationFailed("One or more items are missing currency")
        if not currency_locked:
            currency, currency_locked = row.currency, True
        elif row.currency != currency:
            raise ValidationFailed("Items must share a single currency")

        line_amount = row.unit_cost_cents * line.quantity
        items_total += line_amount
        intent_items.append(
            {
                "catalog_item_id": row.id,
                "quantity": line.quantity,
                "unit_amount_cents": row.unit_cost_cents,
                "line_amount_cents": line_amount,
            }
        )
        stripe_lines.append({"price": row.stripe_price_id, "quantity": line.quantity})

    return PricedCart(
        currency=currency.upper(),
        items_total_cents=items_total,
        custom_amount_cents=cart.custom_amount_cents,
        intent_items=intent_items,
        stripe_line_items=stripe_lines,
    )


def _session_url(session: Mapping[str, Any]) -> str:
    url = session.get("url")
    if not isinstance(url, str) or not url:
        raise UpstreamFailure("Stripe did not return a checkout URL")
    return url


# ----------------------------
# Sessions
# ----------------------------
def create_checkout_session(
    gateway: StripeGateway,
    cart: CartRequest,
    *,
    site_url: str,
    ip_hash: str,
    user_agent: Optional[str],
) -> str:
    priced = price_cart(cart)

    intent = DonationIntent(
        status="pending",
        total_amount_cents=priced.total_cents,
        currency=priced.currency,
        custom_amount_cents=priced.custom_amount_cents,
        metadata_json={"source": "iharc.ca", "ip_hash": ip_hash, "ua": user_agent},
    )
    for pos, item in enumerate(priced.intent_items):
        intent.items.append(DonationIntentItem(position=pos, **item))
    db.session.add(intent)
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    line_items = list(priced.stripe_line_items)
    if priced.custom_amount_cents > 0:
        product_id = ensure_stripe_product(gateway, CUSTOM_DONATION)
        line_items.append(
            {
                "price_data": {
                    "currency": priced.currency.lower(),
                    "unit_amount": priced.custom_amount_cents,
                    "product": product_id,
                },
                "quantity": 1,
            }
        )

    params: Dict[str, Any] = {
        "mode": "payment",
        "submit_type": "donate",
        "billing_address_collection": "required",
        "customer_creation": "always",
        "line_items": line_items,
        "success_url": f"{site_url}/donate/success?session_id={{CHECKOUT_SESSION_ID}}",
        "cancel_url": f"{site_url}/donate/cancel",
        "client_reference_id": intent.id,
        "metadata": {"donation_intent_id": intent.id},
        "payment_intent_data": {"metadata": {"donation_intent_id": intent.id}},
    }

    try:
        session = gateway.create_checkout_session(params, idempotency_key=f"donations_checkout_session_{intent.id}")
    except UpstreamFailure:
        log.error("checkout: session create failed intent=%s", intent.id)
        raise

    intent.stripe_checkout_session_id = str(session.get("id") or "") or None
    intent.status = "requires_payment"
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    log.info("checkout: session created intent=%s total=%s %s", intent.id, intent.total_amount_cents, intent.currency)
    return _session_url(session)


def create_subscription_session(gateway: StripeGateway, monthly_amount_cents: int, *, site_url: str) -> str:
    currency = current_app.config["DONATIONS_DEFAULT_CURRENCY"]
    price_id = ensure_recurring_price(gateway, currency, monthly_amount_cents)

    metadata = {
        "donation_type": "monthly",
        "amount_cents": str(monthly_amount_cents),
        "currency": currency,
    }
    params: Dict[str, Any] = {
        "mode": "subscription",
        "billing_address_collection": "required",
        "line_items": [{"price": price_id, "quantity": 1}],
        "success_url": f"{site_url}/donate/success?session_id={{CHECKOUT_SESSION_ID}}",
        "cancel_url": f"{site_url}/donate/cancel",
        "metadata": metadata,
        "subscription_data": {"metadata": dict(metadata)},
    }
    session = gateway.create_checkout_session(params)
    return _session_url(session)


def get_checkout_status(gateway: StripeGateway, session_id: Any) -> Dict[str, Any]:
    sid = session_id.strip() if isinstance(session_id, str) else ""
    if not sid.startswith("cs_"):
        raise ValidationFailed("Invalid session id")

    try:
        session = gateway.retrieve_checkout_session(sid)
    except UpstreamFailure as e:
        raise UpstreamFailure(
            "Unable to confirm donation status",
            error_type=e.error_type,
            code=e.code,
            request_id=e.request_id,
        ) from e

    payment_status = session.get("payment_status")
    amount_total = session.get("amount_total")
    currency = session.get("currency")
    return {
        "mode": "subscription" if session.get("mode") == "subscription" else "payment",
        "paymentStatus": payment_status if payment_status in PAYMENT_STATUSES else "unknown",
        "amountTotalCents": amount_total if isinstance(amount_total, int) and not isinstance(amount_total, bool) else None,
        "currency": currency.upper() if isinstance(currency, str) else None,
    }
