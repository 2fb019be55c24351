from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Mapped, mapped_column

from donations.extensions import db
from donations.models.mixins import TimestampMixin, new_id

SUBSCRIPTION_STATUSES = (
    "active",
    "canceled",
    "past_due",
    "unpaid",
    "incomplete",
    "incomplete_expired",
    "trialing",
)

# Statuses that still entitle the donor to the billing portal
MANAGEABLE_STATUSES = ("active", "trialing", "past_due")


class DonationSubscription(db.Model, TimestampMixin):
    __tablename__ = "donation_subscriptions"

    id: Mapped[str] = mapped_column(db.String(36), primary_key=True, default=new_id)

    stripe_subscription_id: Mapped[str] = mapped_column(
        db.String(255), unique=True, index=True, nullable=False
    )
    donor_id: Mapped[str] = mapped_column(
        db.String(36), db.ForeignKey("donors.id"), nullable=False, index=True
    )

    status: Mapped[str] = mapped_column(db.String(32), nullable=False, index=True)
    amount_cents: Mapped[int] = mapped_column(db.Integer, nullable=False)
    currency: Mapped[str] = mapped_column(db.String(3), nullable=False)
    stripe_price_id: Mapped[Optional[str]] = mapped_column(db.String(255), nullable=True)

    started_at: Mapped[Optional[datetime]] = mapped_column(db.DateTime, nullable=True)
    canceled_at: Mapped[Optional[datetime]] = mapped_column(db.DateTime, nullable=True)
    last_invoice_status: Mapped[Optional[str]] = mapped_column(db.String(32), nullable=True)
    last_payment_at: Mapped[Optional[datetime]] = mapped_column(db.DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<DonationSubscription {self.stripe_subscription_id} {self.status}>"
