"""
Typed decoding of the Stripe webhook events the ledger cares about.

``decode_event`` turns a raw event dict into one variant of a closed set.
Each variant checks the fields its handler needs at decode time, so a payload
missing one fails with :class:`EventDecodeError` before any row is touched.
Unrecognized event types decode to :class:`Ignored`.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Union

from donations.errors import EventDecodeError
from donations.models.subscription import SUBSCRIPTION_STATUSES


# ----------------------------
# Field readers
# ----------------------------
def _str(obj: Mapping[str, Any], key: str) -> Optional[str]:
    v = obj.get(key)
    return v if isinstance(v, str) and v else None


def _int(obj: Mapping[str, Any], key: str) -> Optional[int]:
    v = obj.get(key)
    if isinstance(v, bool) or not isinstance(v, int):
        return None
    return v


def _map(obj: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    v = obj.get(key)
    return v if isinstance(v, Mapping) else {}


def _id_of(obj: Mapping[str, Any], key: str) -> Optional[str]:
    """Stripe fields may hold an id string or an expanded object."""
    v = obj.get(key)
    if isinstance(v, str) and v:
        return v
    if isinstance(v, Mapping):
        return _str(v, "id")
    return None


def read_ts(obj: Mapping[str, Any], key: str) -> Optional[datetime]:
    v = _int(obj, key)
    if not v:
        return None
    return datetime.fromtimestamp(v, tz=timezone.utc).replace(tzinfo=None)


def _email(raw: Optional[str]) -> Optional[str]:
    s = (raw or "").strip().lower()
    return s or None


def _currency(obj: Mapping[str, Any], key: str = "currency") -> Optional[str]:
    c = _str(obj, key)
    return c.upper() if c else None


def map_subscription_status(raw: Any) -> str:
    if raw in SUBSCRIPTION_STATUSES:
        return str(raw)
    raise EventDecodeError(f"Unhandled Stripe subscription status: {raw!s}")


# ----------------------------
# Variants
# ----------------------------
@dataclass(frozen=True)
class SubscriptionSnapshot:
    subscription_id: str
    customer_id: Optional[str]
    status: str
    price_id: str
    amount_cents: int
    currency: str
    started_at: Optional[datetime]
    canceled_at: Optional[datetime]


def parse_subscription(obj: Mapping[str, Any]) -> SubscriptionSnapshot:
    """Decode a subscription object (webhook payload or API response with expanded prices)."""
    sub_id = _str(obj, "id")
    if not sub_id:
        raise EventDecodeError("Subscription is missing its id")

    status = map_subscription_status(obj.get("status"))

    items = _map(obj, "items").get("data")
    first = items[0] if isinstance(items, list) and items and isinstance(items[0], Mapping) else {}
    price = _map(first, "price")
    price_id = _str(price, "id")
    amount = _int(price, "unit_amount")
    currency = _currency(price)
    if not price_id or amount is None or not currency:
        raise EventDecodeError("Unable to resolve subscription price details")

    return SubscriptionSnapshot(
        subscription_id=sub_id,
        customer_id=_id_of(obj, "customer"),
        status=status,
        price_id=price_id,
        amount_cents=amount,
        currency=currency,
        started_at=read_ts(obj, "start_date"),
        canceled_at=read_ts(obj, "canceled_at"),
    )


@dataclass(frozen=True)
class CheckoutSessionCompleted:
    event_id: str
    session_id: str
    mode: str
    payment_status: Optional[str]
    customer_id: Optional[str]
    email: str
    name: Optional[str]
    address: Optional[Dict[str, Any]]
    donation_intent_id: Optional[str]
    payment_intent_id: Optional[str]
    amount_total: Optional[int]
    currency: Optional[str]
    subscription_id: Optional[str]
    raw: Dict[str, Any]

    @property
    def paid(self) -> bool:
        return self.payment_status == "paid"


@dataclass(frozen=True)
class InvoicePaid:
    event_id: str
    invoice_id: str
    subscription_id: str
    customer_id: str
    customer_email: Optional[str]
    charge_id: Optional[str]
    amount_paid: int
    currency: str
    status: Optional[str]
    raw: Dict[str, Any]


@dataclass(frozen=True)
class InvoicePaymentFailed:
    event_id: str
    invoice_id: Optional[str]
    subscription_id: str
    status: Optional[str]


@dataclass(frozen=True)
class SubscriptionChanged:
    event_id: str
    deleted: bool
    subscription: SubscriptionSnapshot


@dataclass(frozen=True)
class ChargeRefunded:
    event_id: str
    charge_id: str
    payment_intent_id: Optional[str] = None


@dataclass(frozen=True)
class Ignored:
    event_id: str
    type: str


StripeEvent = Union[
    CheckoutSessionCompleted,
    InvoicePaid,
    InvoicePaymentFailed,
    SubscriptionChanged,
    ChargeRefunded,
    Ignored,
]


# ----------------------------
# Decoders
# ----------------------------
def _invoice_subscription_id(inv: Mapping[str, Any]) -> Optional[str]:
    # newer API versions move it under parent.subscription_details
    return _id_of(inv, "subscription") or _id_of(_map(_map(inv, "parent"), "subscription_details"), "subscription")


def _decode_checkout_session(event_id: str, obj: Mapping[str, Any]) -> CheckoutSessionCompleted:
    session_id = _str(obj, "id")
    if not session_id:
        raise EventDecodeError("Checkout session is missing its id")

    mode = obj.get("mode")
    if mode not in ("payment", "subscription"):
        raise EventDecodeError(f"Unsupported checkout session mode: {mode!s}")

    details = _map(obj, "customer_details")
    email = _email(_str(details, "email"))
    if not email:
        raise EventDecodeError("Stripe customer_details.email is required to create donor record")

    name = _str(details, "name")
    address = details.get("address") if isinstance(details.get("address"), Mapping) else None
    metadata = _map(obj, "metadata")

    decoded = CheckoutSessionCompleted(
        event_id=event_id,
        session_id=session_id,
        mode=str(mode),
        payment_status=_str(obj, "payment_status"),
        customer_id=_id_of(obj, "customer"),
        email=email,
        name=name.strip() if name else None,
        address=dict(address) if address else None,
        donation_intent_id=_str(metadata, "donation_intent_id"),
        payment_intent_id=_id_of(obj, "payment_intent"),
        amount_total=_int(obj, "amount_total"),
        currency=_currency(obj),
        subscription_id=_id_of(obj, "subscription"),
        raw=dict(obj),
    )

    if decoded.mode == "payment":
        if not decoded.donation_intent_id:
            raise EventDecodeError("Missing donation_intent_id metadata on checkout session")
        if decoded.paid:
            if decoded.amount_total is None or not decoded.currency:
                raise EventDecodeError("Stripe session is missing amount_total or currency")
            if not decoded.payment_intent_id:
                raise EventDecodeError("Stripe session is missing payment_intent")
    elif not decoded.subscription_id:
        raise EventDecodeError("Missing subscription id on checkout session")

    return decoded


def _decode_invoice_paid(event_id: str, obj: Mapping[str, Any]) -> InvoicePaid:
    invoice_id = _str(obj, "id")
    subscription_id = _invoice_subscription_id(obj)
    customer_id = _id_of(obj, "customer")
    amount_paid = _int(obj, "amount_paid")
    currency = _currency(obj)
    if not invoice_id or not subscription_id or not customer_id or amount_paid is None or not currency:
        raise EventDecodeError("Invoice is missing required identifiers")

    return InvoicePaid(
        event_id=event_id,
        invoice_id=invoice_id,
        subscription_id=subscription_id,
        customer_id=customer_id,
        customer_email=_email(_str(obj, "customer_email")),
        charge_id=_id_of(obj, "charge"),
        amount_paid=amount_paid,
        currency=currency,
        status=_str(obj, "status"),
        raw=dict(obj),
    )


def _decode_invoice_failed(event_id: str, obj: Mapping[str, Any]) -> InvoicePaymentFailed:
    subscription_id = _invoice_subscription_id(obj)
    if not subscription_id:
        raise EventDecodeError("Invoice payment_failed missing subscription id")
    return InvoicePaymentFailed(
        event_id=event_id,
        invoice_id=_str(obj, "id"),
        subscription_id=subscription_id,
        status=_str(obj, "status"),
    )


def _decode_subscription(event_id: str, obj: Mapping[str, Any], *, deleted: bool) -> SubscriptionChanged:
    snapshot = parse_subscription(obj)
    if not snapshot.customer_id:
        raise EventDecodeError("Subscription event missing ids")
    return SubscriptionChanged(event_id=event_id, deleted=deleted, subscription=snapshot)


def _decode_charge_refunded(event_id: str, obj: Mapping[str, Any]) -> ChargeRefunded:
    charge_id = _str(obj, "id")
    if not charge_id:
        raise EventDecodeError("Refunded charge event missing id")
    return ChargeRefunded(event_id=event_id, charge_id=charge_id, payment_intent_id=_id_of(obj, "payment_intent"))


def decode_event(event: Mapping[str, Any]) -> StripeEvent:
    event_id = _str(event, "id")
    etype = _str(event, "type")
    if not event_id or not etype:
        raise EventDecodeError("Stripe event is missing id or type")

    obj = _map(_map(event, "data"), "object")

    if etype == "checkout.session.completed":
        return _decode_checkout_session(event_id, obj)
    if etype == "invoice.paid":
        return _decode_invoice_paid(event_id, obj)
    if etype == "invoice.payment_failed":
        return _decode_invoice_failed(event_id, obj)
    if etype in ("customer.subscription.updated", "customer.subscription.deleted"):
        return _decode_subscription(event_id, obj, deleted=etype.endswith(".deleted"))
    if etype == "charge.refunded":
        return _decode_charge_refunded(event_id, obj)
    return Ignored(event_id=event_id, type=etype)
