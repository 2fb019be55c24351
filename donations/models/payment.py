from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.orm import Mapped, mapped_column

from donations.extensions import db
from donations.models.mixins import JSONType, TimestampMixin, new_id

PAYMENT_STATUSES = ("succeeded", "refunded")


class DonationPayment(db.Model, TimestampMixin):
    """
    One successful (or later refunded) charge.

    Linked to a DonationIntent (one-time) or a DonationSubscription (invoice).
    The provider ids are unique so a redelivered event cannot record twice.
    """

    __tablename__ = "donation_payments"

    id: Mapped[str] = mapped_column(db.String(36), primary_key=True, default=new_id)

    donor_id: Mapped[Optional[str]] = mapped_column(
        db.String(36), db.ForeignKey("donors.id"), nullable=True, index=True
    )
    donation_intent_id: Mapped[Optional[str]] = mapped_column(
        db.String(36), db.ForeignKey("donation_intents.id"), nullable=True, index=True
    )
    donation_subscription_id: Mapped[Optional[str]] = mapped_column(
        db.String(36), db.ForeignKey("donation_subscriptions.id"), nullable=True, index=True
    )

    stripe_payment_intent_id: Mapped[Optional[str]] = mapped_column(
        db.String(255), unique=True, nullable=True, doc="pi_... for one-time payments"
    )
    stripe_invoice_id: Mapped[Optional[str]] = mapped_column(
        db.String(255), unique=True, nullable=True, doc="in_... for subscription invoices"
    )
    stripe_charge_id: Mapped[Optional[str]] = mapped_column(
        db.String(255), nullable=True, index=True
    )

    amount_cents: Mapped[int] = mapped_column(db.Integer, nullable=False)
    currency: Mapped[str] = mapped_column(db.String(3), nullable=False)
    status: Mapped[str] = mapped_column(db.String(32), nullable=False, default="succeeded", index=True)

    paid_at: Mapped[Optional[datetime]] = mapped_column(db.DateTime, nullable=True)
    refunded_at: Mapped[Optional[datetime]] = mapped_column(db.DateTime, nullable=True)

    raw: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType, nullable=True)

    def __repr__(self) -> str:
        return f"<DonationPayment {self.id} {self.amount_cents}{self.currency} {self.status}>"
