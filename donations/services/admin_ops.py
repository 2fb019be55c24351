"""Operator actions behind the admin endpoints and CLI."""

from __future__ import annotations

import logging
from typing import Any, Dict

from donations.errors import DonationsError, NotFound, UpstreamFailure, ValidationFailed
from donations.extensions import db
from donations.helpers import normalize_email
from donations.models import CatalogItem
from donations.models.mixins import utcnow
from donations.services import ledger, manage_tokens, webhook_log
from donations.services.stripe_events import read_ts
from donations.services.stripe_gateway import StripeGateway

log = logging.getLogger(__name__)


def _prefixed_id(raw: Any, prefix: str, label: str) -> str:
    value = raw.strip() if isinstance(raw, str) else ""
    if not value.startswith(prefix):
        raise ValidationFailed(f"Invalid {label}")
    return value


def cancel_subscription(gateway: StripeGateway, raw_subscription_id: Any) -> None:
    subscription_id = _prefixed_id(raw_subscription_id, "sub_", "subscription id")

    canceled = gateway.cancel_subscription(subscription_id)
    canceled_at = read_ts(canceled, "canceled_at") or utcnow()
    touched = ledger.mark_subscription_canceled(subscription_id, canceled_at)
    log.info("admin: subscription canceled id=%s local_rows=%s", subscription_id, touched)


def reprocess_event(gateway: StripeGateway, raw_event_id: Any) -> None:
    event_id = _prefixed_id(raw_event_id, "evt_", "event id")

    outcome = webhook_log.reprocess_failed(gateway, event_id)
    if outcome is webhook_log.Outcome.FAILED:
        raise DonationsError("Reprocessing failed", status=500)
    log.info("admin: event reprocessed id=%s", event_id)


def resend_manage_link(raw_email: Any) -> None:
    email = normalize_email(raw_email)
    if email is None:
        raise ValidationFailed("Invalid email")

    issued = manage_tokens.issue_and_send(email)
    log.info("admin: manage link resent donor=%s", issued.donor_id)


def _price_matches(price: Dict[str, Any], amount_cents: int, currency: str) -> bool:
    return (
        price.get("unit_amount") == amount_cents
        and str(price.get("currency") or "").upper() == currency
        and price.get("active", True) is not False
    )


def sync_catalog_item(gateway: StripeGateway, raw_item_id: Any) -> Dict[str, str]:
    """
    Make sure a catalog item has a Stripe product and a one-time price that
    matches its unit cost. Returns the ids now stored on the item.
    """
    item_id = raw_item_id.strip() if isinstance(raw_item_id, str) else ""
    if not item_id:
        raise ValidationFailed("Missing catalog item id")

    item = db.session.get(CatalogItem, item_id)
    if item is None:
        raise NotFound("Catalog item not found")
    if not item.unit_cost_cents or item.unit_cost_cents <= 0:
        raise ValidationFailed("Catalog item needs a unit cost before syncing")

    currency = (item.currency or "CAD").upper()

    if not item.stripe_product_id:
        product = gateway.create_product(
            {"name": item.title, "metadata": {"catalog_item_id": item.id, "slug": item.slug}},
            idempotency_key=f"donations_catalog_product_{gateway.mode}_{item.id}",
        )
        item.stripe_product_id = str(product["id"])

    price_id = item.stripe_price_id
    if price_id:
        try:
            current = gateway.retrieve_price(price_id)
        except UpstreamFailure:
            log.warning("admin: stored price not retrievable item=%s price=%s", item.id, price_id)
            current = {}
        if not _price_matches(current, item.unit_cost_cents, currency):
            try:
                gateway.deactivate_price(price_id)
            except UpstreamFailure:
                log.warning("admin: could not deactivate stale price item=%s price=%s", item.id, price_id)
            price_id = None

    if not price_id:
        price = gateway.create_price(
            {
                "currency": currency.lower(),
                "unit_amount": int(item.unit_cost_cents),
                "product": item.stripe_product_id,
                "metadata": {"catalog_item_id": item.id},
            }
        )
        price_id = str(price["id"])

    item.stripe_price_id = price_id
    item.currency = currency
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    log.info("admin: catalog item synced item=%s product=%s price=%s", item.id, item.stripe_product_id, price_id)
    return {"stripeProductId": item.stripe_product_id, "stripePriceId": price_id}
