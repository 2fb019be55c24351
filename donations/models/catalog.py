from __future__ import annotations

from typing import Optional

from sqlalchemy.orm import Mapped, mapped_column

from donations.extensions import db
from donations.models.mixins import TimestampMixin, new_id


class CatalogItem(db.Model, TimestampMixin):
    __tablename__ = "catalog_items"

    id: Mapped[str] = mapped_column(db.String(36), primary_key=True, default=new_id)

    slug: Mapped[str] = mapped_column(db.String(120), unique=True, index=True, nullable=False)
    title: Mapped[str] = mapped_column(db.String(255), nullable=False)

    currency: Mapped[Optional[str]] = mapped_column(
        db.String(3),
        nullable=True,
        doc="ISO currency, upper-case (CAD)",
    )
    unit_cost_cents: Mapped[Optional[int]] = mapped_column(db.Integer, nullable=True)

    stripe_product_id: Mapped[Optional[str]] = mapped_column(db.String(120), nullable=True)
    stripe_price_id: Mapped[Optional[str]] = mapped_column(
        db.String(120),
        nullable=True,
        doc="Current one-time Stripe price (price_...)",
    )

    is_active: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=True, index=True)

    def __repr__(self) -> str:
        return f"<CatalogItem {self.slug} {self.unit_cost_cents} {self.currency}>"
