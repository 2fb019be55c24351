from __future__ import annotations

from typing import Optional

from sqlalchemy.orm import Mapped, mapped_column

from donations.extensions import db
from donations.models.mixins import TimestampMixin


class DonationSettings(db.Model, TimestampMixin):
    """
    Single-row store for the Stripe credentials in use.

    Kept in the database so operators can flip test/live or rotate keys
    without a redeploy.
    """

    __tablename__ = "donation_settings"

    id: Mapped[int] = mapped_column(primary_key=True, default=1)

    stripe_mode: Mapped[Optional[str]] = mapped_column(db.String(8), nullable=True, doc="test | live")
    stripe_secret_key: Mapped[Optional[str]] = mapped_column(db.String(255), nullable=True)
    stripe_webhook_secret: Mapped[Optional[str]] = mapped_column(db.String(255), nullable=True)
