from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Mapped, mapped_column, relationship

from donations.extensions import db
from donations.models.mixins import JSONType, TimestampMixin, new_id

INTENT_STATUSES = ("pending", "requires_payment", "paid", "failed")


class DonationIntent(db.Model, TimestampMixin):
    """One one-time checkout attempt, from cart to terminal paid/failed."""

    __tablename__ = "donation_intents"

    id: Mapped[str] = mapped_column(db.String(36), primary_key=True, default=new_id)

    status: Mapped[str] = mapped_column(
        db.String(32),
        nullable=False,
        default="pending",
        index=True,
        doc="pending -> requires_payment -> paid | failed",
    )

    total_amount_cents: Mapped[int] = mapped_column(db.Integer, nullable=False)
    currency: Mapped[str] = mapped_column(db.String(3), nullable=False)
    custom_amount_cents: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)

    stripe_checkout_session_id: Mapped[Optional[str]] = mapped_column(
        db.String(255), unique=True, nullable=True
    )
    donor_id: Mapped[Optional[str]] = mapped_column(
        db.String(36), db.ForeignKey("donors.id"), nullable=True, index=True
    )

    metadata_json: Mapped[Dict[str, Any]] = mapped_column(
        "metadata",
        JSONType,
        nullable=False,
        default=dict,
        doc="source, ip_hash, ua",
    )

    completed_at: Mapped[Optional[datetime]] = mapped_column(db.DateTime, nullable=True)

    items: Mapped[List["DonationIntentItem"]] = relationship(
        back_populates="intent",
        cascade="all, delete-orphan",
        order_by="DonationIntentItem.position",
    )

    def __repr__(self) -> str:
        return f"<DonationIntent {self.id} {self.status} {self.total_amount_cents}{self.currency}>"


class DonationIntentItem(db.Model):
    """Line snapshot; immutable once written."""

    __tablename__ = "donation_intent_items"

    id: Mapped[str] = mapped_column(db.String(36), primary_key=True, default=new_id)
    donation_intent_id: Mapped[str] = mapped_column(
        db.String(36), db.ForeignKey("donation_intents.id", ondelete="CASCADE"), nullable=False, index=True
    )
    catalog_item_id: Mapped[str] = mapped_column(
        db.String(36), db.ForeignKey("catalog_items.id"), nullable=False
    )
    position: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)

    quantity: Mapped[int] = mapped_column(db.Integer, nullable=False)
    unit_amount_cents: Mapped[int] = mapped_column(db.Integer, nullable=False)
    line_amount_cents: Mapped[int] = mapped_column(db.Integer, nullable=False)

    intent: Mapped[DonationIntent] = relationship(back_populates="items")
