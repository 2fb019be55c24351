"""
Reconcile decoded Stripe events into the donations ledger.

Handlers are safe to rerun for the same event: payment inserts are keyed on
provider ids, and a receipt goes out only when this run created the row.
"""

from __future__ import annotations

import logging
from functools import singledispatch
from typing import Any, Mapping

from donations.errors import NotFound
from donations.extensions import db
from donations.models import DonationIntent, DonationPayment
from donations.models.mixins import utcnow
from donations.services import ledger, notifications
from donations.services.stripe_events import (
    ChargeRefunded,
    CheckoutSessionCompleted,
    Ignored,
    InvoicePaid,
    InvoicePaymentFailed,
    StripeEvent,
    SubscriptionChanged,
    decode_event,
    parse_subscription,
)
from donations.services.stripe_gateway import StripeGateway

log = logging.getLogger(__name__)


def process_stripe_event(gateway: StripeGateway, event: Mapping[str, Any]) -> StripeEvent:
    """Decode and apply one raw Stripe event. Returns the decoded variant."""
    decoded = decode_event(event)
    _handle(decoded, gateway)
    return decoded


@singledispatch
def _handle(decoded: StripeEvent, gateway: StripeGateway) -> None:
    raise TypeError(f"no handler for {type(decoded).__name__}")


@_handle.register
def _(decoded: Ignored, gateway: StripeGateway) -> None:
    log.debug("stripe event ignored id=%s type=%s", decoded.event_id, decoded.type)


@_handle.register
def _(decoded: CheckoutSessionCompleted, gateway: StripeGateway) -> None:
    donor = ledger.upsert_donor(
        decoded.email,
        name=decoded.name,
        address=decoded.address,
        stripe_customer_id=decoded.customer_id,
        keep_subscribed_customer=decoded.mode != "subscription",
    )

    if decoded.mode == "subscription":
        subscription = parse_subscription(gateway.retrieve_subscription(str(decoded.subscription_id)))
        ledger.upsert_subscription(donor.id, subscription)
        log.info(
            "checkout completed (subscription) event=%s subscription=%s",
            decoded.event_id,
            subscription.subscription_id,
        )
        return

    intent = db.session.get(DonationIntent, decoded.donation_intent_id)
    if intent is None:
        raise NotFound(f"Donation intent {decoded.donation_intent_id} not found")

    intent.donor_id = donor.id
    intent.stripe_checkout_session_id = decoded.session_id
    intent.status = "paid" if decoded.paid else "failed"
    intent.completed_at = utcnow()
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    if not decoded.paid:
        log.info("checkout completed unpaid event=%s intent=%s", decoded.event_id, intent.id)
        return

    payment = ledger.record_payment(
        DonationPayment(
            donor_id=donor.id,
            donation_intent_id=intent.id,
            stripe_payment_intent_id=decoded.payment_intent_id,
            amount_cents=int(decoded.amount_total or 0),
            currency=str(decoded.currency),
            status="succeeded",
            paid_at=utcnow(),
            raw=decoded.raw,
        )
    )
    if payment is None:
        log.info("payment already recorded event=%s intent=%s", decoded.event_id, intent.id)
        return

    log.info("payment recorded event=%s intent=%s payment=%s", decoded.event_id, intent.id, payment.id)
    notifications.send_receipt(
        decoded.email,
        amount_cents=payment.amount_cents,
        currency=payment.currency,
        kind="one_time",
        reference=payment.id,
    )


@_handle.register
def _(decoded: InvoicePaid, gateway: StripeGateway) -> None:
    donor = ledger.link_customer_to_donor(gateway, decoded.customer_id, decoded.customer_email)
    subscription = parse_subscription(gateway.retrieve_subscription(decoded.subscription_id))

    sub = ledger.upsert_subscription(
        donor.id,
        subscription,
        currency=decoded.currency,
        last_invoice_status=decoded.status,
        last_payment_at=utcnow(),
    )

    payment = ledger.record_payment(
        DonationPayment(
            donor_id=donor.id,
            donation_subscription_id=sub.id,
            stripe_invoice_id=decoded.invoice_id,
            stripe_charge_id=decoded.charge_id,
            amount_cents=decoded.amount_paid,
            currency=decoded.currency,
            status="succeeded",
            paid_at=utcnow(),
            raw=decoded.raw,
        )
    )
    if payment is None:
        log.info("invoice already recorded event=%s invoice=%s", decoded.event_id, decoded.invoice_id)
        return

    log.info("invoice payment recorded event=%s invoice=%s payment=%s", decoded.event_id, decoded.invoice_id, payment.id)
    if decoded.customer_email:
        notifications.send_receipt(
            decoded.customer_email,
            amount_cents=decoded.amount_paid,
            currency=decoded.currency,
            kind="monthly",
            reference=payment.id,
        )


@_handle.register
def _(decoded: InvoicePaymentFailed, gateway: StripeGateway) -> None:
    touched = ledger.mark_subscription_past_due(decoded.subscription_id, decoded.status)
    if not touched:
        log.warning(
            "invoice.payment_failed for unknown subscription event=%s subscription=%s",
            decoded.event_id,
            decoded.subscription_id,
        )


@_handle.register
def _(decoded: SubscriptionChanged, gateway: StripeGateway) -> None:
    snap = decoded.subscription
    donor = ledger.link_customer_to_donor(gateway, str(snap.customer_id), None)
    ledger.upsert_subscription(donor.id, snap)
    log.info("subscription %s event=%s status=%s", snap.subscription_id, decoded.event_id, snap.status)


@_handle.register
def _(decoded: ChargeRefunded, gateway: StripeGateway) -> None:
    touched = ledger.mark_charge_refunded(decoded.charge_id, utcnow(), decoded.payment_intent_id)
    log.info("charge refunded event=%s charge=%s rows=%s", decoded.event_id, decoded.charge_id, touched)
