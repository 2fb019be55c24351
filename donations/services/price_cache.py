"""
Local cache of Stripe products and recurring prices.

Creation is guarded twice: a deterministic Stripe idempotency key makes racing
callers converge on one Stripe object, and the local unique constraint makes
the loser of the insert re-read the winner's row.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from donations.extensions import db
from donations.models import StripeAmountPrice, StripeProduct
from donations.services.stripe_gateway import StripeGateway

log = logging.getLogger(__name__)

CUSTOM_DONATION = "custom_donation"
MONTHLY_DONATION = "monthly_donation"

PRODUCTS: Dict[str, Dict[str, str]] = {
    CUSTOM_DONATION: {
        "name": "Custom donation",
        "description": "A custom donation to support IHARC outreach.",
    },
    MONTHLY_DONATION: {
        "name": "Monthly donation",
        "description": "A monthly donation to support IHARC outreach.",
    },
}


def _cached_product_id(mode: str, key: str) -> Optional[str]:
    return db.session.execute(
        select(StripeProduct.stripe_product_id).where(StripeProduct.stripe_mode == mode, StripeProduct.key == key)
    ).scalar_one_or_none()


def _cached_price_id(mode: str, currency: str, interval: str, amount_cents: int) -> Optional[str]:
    return db.session.execute(
        select(StripeAmountPrice.stripe_price_id).where(
            StripeAmountPrice.stripe_mode == mode,
            StripeAmountPrice.currency == currency,
            StripeAmountPrice.interval == interval,
            StripeAmountPrice.amount_cents == amount_cents,
        )
    ).scalar_one_or_none()


def ensure_stripe_product(gateway: StripeGateway, key: str) -> str:
    """Return the Stripe product id for a logical key, creating it once per mode."""
    mode = gateway.mode
    existing = _cached_product_id(mode, key)
    if existing:
        return existing

    info = PRODUCTS[key]
    product = gateway.create_product(
        {"name": info["name"], "description": info["description"], "metadata": {"donations_key": key}},
        idempotency_key=f"donations_product_{mode}_{key}",
    )
    product_id = str(product["id"])

    db.session.add(StripeProduct(stripe_mode=mode, key=key, stripe_product_id=product_id))
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        winner = _cached_product_id(mode, key)
        if not winner:
            raise
        return winner

    log.info("stripe product cached mode=%s key=%s id=%s", mode, key, product_id)
    return product_id


def ensure_recurring_price(
    gateway: StripeGateway,
    currency: str,
    amount_cents: int,
    *,
    interval: str = "month",
) -> str:
    """Return the Stripe recurring price id for an amount, creating it once per mode."""
    mode = gateway.mode
    currency = currency.upper()
    existing = _cached_price_id(mode, currency, interval, amount_cents)
    if existing:
        return existing

    product_id = ensure_stripe_product(gateway, MONTHLY_DONATION)
    price = gateway.create_price(
        {
            "currency": currency.lower(),
            "unit_amount": int(amount_cents),
            "recurring": {"interval": interval},
            "product": product_id,
            "nickname": f"Monthly donation {currency} {amount_cents // 100}",
        },
        idempotency_key=f"donations_price_{interval}_{mode}_{currency}_{amount_cents}",
    )
    price_id = str(price["id"])

    db.session.add(
        StripeAmountPrice(
            stripe_mode=mode,
            currency=currency,
            interval=interval,
            amount_cents=int(amount_cents),
            stripe_product_id=product_id,
            stripe_price_id=price_id,
        )
    )
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        winner = _cached_price_id(mode, currency, interval, amount_cents)
        if not winner:
            raise
        return winner

    log.info("stripe price cached mode=%s %s %s/%s id=%s", mode, currency, amount_cents, interval, price_id)
    return price_id
