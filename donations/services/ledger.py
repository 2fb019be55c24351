"""
Ledger writes shared by the event processor and admin operations.

Every write commits on its own. Inserts that can race (donor by email,
subscription by Stripe id, payment by provider id) use insert-then-reread:
try the insert, and on a unique violation roll back and load the winner.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError

from donations.errors import EventDecodeError
from donations.extensions import db
from donations.models import DonationPayment, DonationSubscription, Donor
from donations.models.subscription import MANAGEABLE_STATUSES
from donations.services.stripe_events import SubscriptionSnapshot
from donations.services.stripe_gateway import StripeGateway

log = logging.getLogger(__name__)

_UNSET: Any = object()


def _commit() -> None:
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def donor_by_email(email: str) -> Optional[Donor]:
    return db.session.execute(select(Donor).where(Donor.email == email)).scalar_one_or_none()


def donor_by_customer(customer_id: str) -> Optional[Donor]:
    return db.session.execute(select(Donor).where(Donor.stripe_customer_id == customer_id)).scalar_one_or_none()


def has_manageable_subscription(donor_id: str) -> bool:
    found = db.session.execute(
        select(DonationSubscription.id)
        .where(
            DonationSubscription.donor_id == donor_id,
            DonationSubscription.status.in_(MANAGEABLE_STATUSES),
        )
        .limit(1)
    ).first()
    return found is not None


def _apply_donor_fields(
    donor: Donor,
    name: Optional[str],
    address: Optional[Dict[str, Any]],
    customer_id: Optional[str],
    keep_subscribed_customer: bool = False,
) -> None:
    if name:
        donor.name = name
    if address:
        donor.address = address
    if not customer_id or customer_id == donor.stripe_customer_id:
        return
    # the Billing Portal only shows subscriptions owned by the stored customer
    if keep_subscribed_customer and donor.stripe_customer_id and donor.id and has_manageable_subscription(donor.id):
        log.info("donor %s keeps customer %s; ignoring %s", donor.id, donor.stripe_customer_id, customer_id)
        return
    donor.stripe_customer_id = customer_id


def upsert_donor(
    email: str,
    *,
    name: Optional[str] = None,
    address: Optional[Dict[str, Any]] = None,
    stripe_customer_id: Optional[str] = None,
    keep_subscribed_customer: bool = False,
) -> Donor:
    """
    Create or refresh the donor for an email; known values are never blanked.

    With keep_subscribed_customer, a donor who already has a manageable
    subscription keeps its stored Stripe customer id.
    """
    email = (email or "").strip().lower()
    if not email:
        raise EventDecodeError("An email is required to create a donor record")

    donor = donor_by_email(email)
    if donor is None:
        donor = Donor(email=email)
        _apply_donor_fields(donor, name, address, stripe_customer_id)
        db.session.add(donor)
        try:
            db.session.commit()
            return donor
        except IntegrityError:
            db.session.rollback()
            donor = donor_by_email(email)
            if donor is None:
                raise

    _apply_donor_fields(donor, name, address, stripe_customer_id, keep_subscribed_customer)
    _commit()
    return donor


def link_customer_to_donor(gateway: StripeGateway, customer_id: str, email: Optional[str]) -> Donor:
    """
    Resolve a Stripe customer to a donor: by stored customer id, then by
    email (back-filling the customer id), then by fetching the customer.
    """
    donor = donor_by_customer(customer_id)
    if donor is not None:
        return donor

    if email:
        donor = donor_by_email(email.strip().lower())
        if donor is not None:
            donor.stripe_customer_id = customer_id
            _commit()
            return donor

    customer = gateway.retrieve_customer(customer_id)
    customer_email = customer.get("email") if not customer.get("deleted") else None
    if not isinstance(customer_email, str) or not customer_email.strip():
        raise EventDecodeError("Stripe customer is missing email")

    address = customer.get("address")
    return upsert_donor(
        customer_email,
        name=customer.get("name") if isinstance(customer.get("name"), str) else None,
        address=dict(address) if isinstance(address, dict) else None,
        stripe_customer_id=customer_id,
    )


def subscription_by_stripe_id(subscription_id: str) -> Optional[DonationSubscription]:
    return db.session.execute(
        select(DonationSubscription).where(DonationSubscription.stripe_subscription_id == subscription_id)
    ).scalar_one_or_none()


def _apply_subscription(
    sub: DonationSubscription,
    donor_id: str,
    snap: SubscriptionSnapshot,
    last_invoice_status: Any,
    last_payment_at: Any,
    currency: Optional[str],
) -> None:
    sub.donor_id = donor_id
    sub.status = snap.status
    sub.amount_cents = snap.amount_cents
    sub.currency = currency or snap.currency
    sub.stripe_price_id = snap.price_id
    sub.started_at = snap.started_at
    sub.canceled_at = snap.canceled_at
    if last_invoice_status is not _UNSET:
        sub.last_invoice_status = last_invoice_status
    if last_payment_at is not _UNSET:
        sub.last_payment_at = last_payment_at


def upsert_subscription(
    donor_id: str,
    snap: SubscriptionSnapshot,
    *,
    last_invoice_status: Any = _UNSET,
    last_payment_at: Any = _UNSET,
    currency: Optional[str] = None,
) -> DonationSubscription:
    sub = subscription_by_stripe_id(snap.subscription_id)
    if sub is None:
        sub = DonationSubscription(stripe_subscription_id=snap.subscription_id)
        _apply_subscription(sub, donor_id, snap, last_invoice_status, last_payment_at, currency)
        db.session.add(sub)
        try:
            db.session.commit()
            return sub
        except IntegrityError:
            db.session.rollback()
            sub = subscription_by_stripe_id(snap.subscription_id)
            if sub is None:
                raise

    _apply_subscription(sub, donor_id, snap, last_invoice_status, last_payment_at, currency)
    _commit()
    return sub


def mark_subscription_past_due(subscription_id: str, invoice_status: Optional[str]) -> int:
    res = db.session.execute(
        update(DonationSubscription)
        .where(DonationSubscription.stripe_subscription_id == subscription_id)
        .values(status="past_due", last_invoice_status=invoice_status)
    )
    _commit()
    return int(res.rowcount or 0)


def mark_subscription_canceled(subscription_id: str, canceled_at: datetime) -> int:
    res = db.session.execute(
        update(DonationSubscription)
        .where(DonationSubscription.stripe_subscription_id == subscription_id)
        .values(status="canceled", canceled_at=canceled_at)
    )
    _commit()
    return int(res.rowcount or 0)


def _existing_payment_query(payment: DonationPayment):
    if payment.stripe_payment_intent_id:
        return select(DonationPayment.id).where(DonationPayment.stripe_payment_intent_id == payment.stripe_payment_intent_id)
    if payment.stripe_invoice_id:
        return select(DonationPayment.id).where(DonationPayment.stripe_invoice_id == payment.stripe_invoice_id)
    return None


def record_payment(payment: DonationPayment) -> Optional[DonationPayment]:
    """
    Insert a payment row. Returns the new row, or None when a row for the
    same provider id already exists. Any other integrity failure is raised.
    """
    existing = _existing_payment_query(payment)
    db.session.add(payment)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        if existing is not None and db.session.execute(existing).first() is not None:
            return None
        raise
    return payment


def mark_charge_refunded(charge_id: str, refunded_at: datetime, payment_intent_id: Optional[str] = None) -> int:
    """One-time payments carry no charge id, so they match on the payment intent instead."""
    match = DonationPayment.stripe_charge_id == charge_id
    if payment_intent_id:
        match = or_(match, DonationPayment.stripe_payment_intent_id == payment_intent_id)
    res = db.session.execute(
        update(DonationPayment)
        .where(match)
        .values(status="refunded", refunded_at=refunded_at)
    )
    _commit()
    return int(res.rowcount or 0)
