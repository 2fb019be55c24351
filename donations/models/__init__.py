from __future__ import annotations

from donations.models.catalog import CatalogItem
from donations.models.donor import Donor, DonorManageToken
from donations.models.intent import DonationIntent, DonationIntentItem
from donations.models.payment import DonationPayment
from donations.models.rate_limit import RateLimitBucket
from donations.models.settings import DonationSettings
from donations.models.stripe_cache import StripeAmountPrice, StripeProduct
from donations.models.stripe_event import StripeWebhookEvent
from donations.models.subscription import DonationSubscription

__all__ = [
    "CatalogItem",
    "Donor",
    "DonorManageToken",
    "DonationIntent",
    "DonationIntentItem",
    "DonationPayment",
    "DonationSettings",
    "DonationSubscription",
    "RateLimitBucket",
    "StripeAmountPrice",
    "StripeProduct",
    "StripeWebhookEvent",
]
