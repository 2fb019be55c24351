from __future__ import annotations

from datetime import datetime

from sqlalchemy import UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from donations.extensions import db
from donations.models.mixins import new_id


class RateLimitBucket(db.Model):
    """Fixed-window counter per (event, hashed identifier)."""

    __tablename__ = "rate_limit_buckets"
    __table_args__ = (UniqueConstraint("event", "identifier", name="uq_rate_limit_buckets_event_identifier"),)

    id: Mapped[str] = mapped_column(db.String(36), primary_key=True, default=new_id)
    event: Mapped[str] = mapped_column(db.String(120), nullable=False)
    identifier: Mapped[str] = mapped_column(db.String(64), nullable=False, doc="sha256 hex; never raw PII")

    window_started_at: Mapped[datetime] = mapped_column(db.DateTime, nullable=False)
    count: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    last_attempt_at: Mapped[datetime] = mapped_column(db.DateTime, nullable=False)
