from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.orm import Mapped, mapped_column

from donations.extensions import db
from donations.models.mixins import JSONType, TimestampMixin, new_id, utcnow


class Donor(db.Model, TimestampMixin):
    """Deduplicated by email. Never deleted."""

    __tablename__ = "donors"

    id: Mapped[str] = mapped_column(db.String(36), primary_key=True, default=new_id)

    email: Mapped[str] = mapped_column(
        db.String(320),
        unique=True,
        index=True,
        nullable=False,
        doc="Lower-cased, trimmed",
    )
    name: Mapped[Optional[str]] = mapped_column(db.String(255), nullable=True)
    address: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType, nullable=True)

    stripe_customer_id: Mapped[Optional[str]] = mapped_column(
        db.String(255), unique=True, index=True, nullable=True
    )

    def __repr__(self) -> str:
        return f"<Donor {self.id}>"


class DonorManageToken(db.Model):
    """Single-use link credential. Only the sha256 of the raw token is stored."""

    __tablename__ = "donor_manage_tokens"

    id: Mapped[str] = mapped_column(db.String(36), primary_key=True, default=new_id)
    donor_id: Mapped[str] = mapped_column(
        db.String(36), db.ForeignKey("donors.id"), nullable=False, index=True
    )
    token_hash: Mapped[str] = mapped_column(db.String(64), unique=True, nullable=False)

    expires_at: Mapped[datetime] = mapped_column(db.DateTime, nullable=False)
    consumed_at: Mapped[Optional[datetime]] = mapped_column(db.DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(db.DateTime, nullable=False, default=utcnow)
