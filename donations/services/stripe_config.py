from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from donations.errors import ConfigurationError
from donations.extensions import db
from donations.models import DonationSettings

STRIPE_MODES = ("test", "live")


@dataclass(frozen=True)
class StripeConfig:
    mode: str
    secret_key: str
    webhook_secret: str

    def __repr__(self) -> str:
        # never print the keys
        return f"StripeConfig(mode={self.mode!r})"


def load_stripe_config() -> StripeConfig:
    """Read the active Stripe credentials from the settings row."""
    row: Optional[DonationSettings] = db.session.get(DonationSettings, 1)
    if row is None:
        raise ConfigurationError("Stripe is not configured")

    mode = (row.stripe_mode or "").strip().lower()
    if mode not in STRIPE_MODES:
        raise ConfigurationError("Stripe mode must be 'test' or 'live'")

    secret_key = (row.stripe_secret_key or "").strip()
    webhook_secret = (row.stripe_webhook_secret or "").strip()
    if not secret_key:
        raise ConfigurationError("Stripe secret key is missing")
    if not webhook_secret:
        raise ConfigurationError("Stripe webhook secret is missing")

    return StripeConfig(mode=mode, secret_key=secret_key, webhook_secret=webhook_secret)


def save_stripe_config(mode: str, secret_key: str, webhook_secret: str) -> DonationSettings:
    mode = (mode or "").strip().lower()
    if mode not in STRIPE_MODES:
        raise ConfigurationError("Stripe mode must be 'test' or 'live'")

    row = db.session.get(DonationSettings, 1)
    if row is None:
        row = DonationSettings(id=1)
        db.session.add(row)
    row.stripe_mode = mode
    row.stripe_secret_key = secret_key.strip()
    row.stripe_webhook_secret = webhook_secret.strip()
    db.session.commit()
    return row
