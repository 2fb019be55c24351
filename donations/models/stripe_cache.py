from __future__ import annotations

from sqlalchemy import UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from donations.extensions import db
from donations.models.mixins import TimestampMixin, new_id


class StripeProduct(db.Model, TimestampMixin):
    """Logical product key -> Stripe product id, per Stripe mode."""

    __tablename__ = "stripe_products"
    __table_args__ = (UniqueConstraint("stripe_mode", "key", name="uq_stripe_products_mode_key"),)

    id: Mapped[str] = mapped_column(db.String(36), primary_key=True, default=new_id)
    stripe_mode: Mapped[str] = mapped_column(db.String(8), nullable=False)
    key: Mapped[str] = mapped_column(db.String(120), nullable=False)
    stripe_product_id: Mapped[str] = mapped_column(db.String(255), nullable=False)


class StripeAmountPrice(db.Model, TimestampMixin):
    """(currency, interval, amount) -> Stripe recurring price id, per Stripe mode."""

    __tablename__ = "stripe_amount_prices"
    __table_args__ = (
        UniqueConstraint(
            "stripe_mode",
            "currency",
            "interval",
            "amount_cents",
            name="uq_stripe_amount_prices_mode_amount",
        ),
    )

    id: Mapped[str] = mapped_column(db.String(36), primary_key=True, default=new_id)
    stripe_mode: Mapped[str] = mapped_column(db.String(8), nullable=False)
    currency: Mapped[str] = mapped_column(db.String(3), nullable=False)
    interval: Mapped[str] = mapped_column(db.String(16), nullable=False)
    amount_cents: Mapped[int] = mapped_column(db.Integer, nullable=False)
    stripe_product_id: Mapped[str] = mapped_column(db.String(255), nullable=False)
    stripe_price_id: Mapped[str] = mapped_column(db.String(255), nullable=False)
