from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Index
from sqlalchemy.orm import Mapped, mapped_column

from donations.extensions import db
from donations.models.mixins import new_id, utcnow

ERROR_MAX_CHARS = 5000


class StripeWebhookEvent(db.Model):
    """
    Append-only idempotency ledger of delivered Stripe events.

    A row is inserted before processing with no status; processing then marks
    it succeeded or failed.
    """

    __tablename__ = "stripe_webhook_events"
    __table_args__ = (
        Index("ix_stripe_webhook_events_status_received", "status", "received_at"),
    )

    id: Mapped[str] = mapped_column(db.String(36), primary_key=True, default=new_id)

    stripe_event_id: Mapped[str] = mapped_column(
        db.String(255),
        unique=True,
        index=True,
        nullable=False,
        doc="Stripe event id (evt_...)",
    )
    type: Mapped[str] = mapped_column(
        db.String(120),
        index=True,
        nullable=False,
        doc="Stripe event type (checkout.session.completed, etc)",
    )

    status: Mapped[Optional[str]] = mapped_column(
        db.String(16),
        nullable=True,
        doc="succeeded | failed; NULL while in flight",
    )
    error: Mapped[Optional[str]] = mapped_column(db.Text, nullable=True)

    received_at: Mapped[datetime] = mapped_column(db.DateTime, nullable=False, default=utcnow)
    processed_at: Mapped[Optional[datetime]] = mapped_column(db.DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<StripeWebhookEvent {self.stripe_event_id} {self.type} {self.status}>"
