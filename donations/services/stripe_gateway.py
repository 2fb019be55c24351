"""
Thin Stripe access layer.

Every call passes the request's secret key explicitly; the module never sets
``stripe.api_key``. Results are handed back as plain dicts, and SDK errors are
re-raised as :class:`UpstreamFailure` carrying Stripe's diagnostics.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, Optional

import stripe

from donations.errors import BadPayload, UpstreamFailure
from donations.services.stripe_config import StripeConfig, load_stripe_config

log = logging.getLogger(__name__)


def _as_dict(obj: Any) -> Dict[str, Any]:
    if isinstance(obj, stripe.StripeObject):
        return json.loads(str(obj))
    return dict(obj or {})


def _upstream(e: stripe.StripeError, what: str) -> UpstreamFailure:
    err = getattr(e, "error", None)
    etype = getattr(err, "type", None) or type(e).__name__
    msg = getattr(e, "user_message", None) or f"Stripe {what} failed"
    return UpstreamFailure(
        msg,
        error_type=etype,
        code=getattr(e, "code", None),
        request_id=getattr(e, "request_id", None),
    )


class StripeGateway:
    def __init__(self, config: StripeConfig):
        self.config = config

    @property
    def mode(self) -> str:
        return self.config.mode

    def _call(self, what: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Dict[str, Any]:
        try:
            obj = fn(*args, api_key=self.config.secret_key, **kwargs)
        except stripe.StripeError as e:
            log.error(
                "stripe: %s failed type=%s code=%s request_id=%s",
                what,
                type(e).__name__,
                getattr(e, "code", None),
                getattr(e, "request_id", None),
            )
            raise _upstream(e, what) from e
        return _as_dict(obj)

    # ---- checkout ----
    def create_checkout_session(self, params: Dict[str, Any], *, idempotency_key: Optional[str] = None) -> Dict[str, Any]:
        extra = {"idempotency_key": idempotency_key} if idempotency_key else {}
        return self._call("checkout session create", stripe.checkout.Session.create, **extra, **params)

    def retrieve_checkout_session(self, session_id: str) -> Dict[str, Any]:
        return self._call("checkout session retrieve", stripe.checkout.Session.retrieve, session_id)

    # ---- catalog objects ----
    def create_product(self, params: Dict[str, Any], *, idempotency_key: Optional[str] = None) -> Dict[str, Any]:
        extra = {"idempotency_key": idempotency_key} if idempotency_key else {}
        return self._call("product create", stripe.Product.create, **extra, **params)

    def create_price(self, params: Dict[str, Any], *, idempotency_key: Optional[str] = None) -> Dict[str, Any]:
        extra = {"idempotency_key": idempotency_key} if idempotency_key else {}
        return self._call("price create", stripe.Price.create, **extra, **params)

    def retrieve_price(self, price_id: str) -> Dict[str, Any]:
        return self._call("price retrieve", stripe.Price.retrieve, price_id)

    def deactivate_price(self, price_id: str) -> Dict[str, Any]:
        return self._call("price deactivate", stripe.Price.modify, price_id, active=False)

    # ---- billing ----
    def retrieve_subscription(self, subscription_id: str) -> Dict[str, Any]:
        return self._call(
            "subscription retrieve",
            stripe.Subscription.retrieve,
            subscription_id,
            expand=["items.data.price"],
        )

    def cancel_subscription(self, subscription_id: str) -> Dict[str, Any]:
        return self._call("subscription cancel", stripe.Subscription.cancel, subscription_id)

    def retrieve_customer(self, customer_id: str) -> Dict[str, Any]:
        return self._call("customer retrieve", stripe.Customer.retrieve, customer_id)

    def create_portal_session(self, customer_id: str, return_url: str) -> Dict[str, Any]:
        return self._call(
            "billing portal session create",
            stripe.billing_portal.Session.create,
            customer=customer_id,
            return_url=return_url,
        )

    def retrieve_event(self, event_id: str) -> Dict[str, Any]:
        return self._call("event retrieve", stripe.Event.retrieve, event_id)

    # ---- webhooks ----
    def verify_webhook(self, payload: bytes, signature: str) -> Dict[str, Any]:
        """
        Check the Stripe-Signature header against the raw body bytes and return
        the decoded event. Never re-serializes the payload before checking.
        """
        if not signature:
            raise BadPayload("Missing stripe-signature header")
        try:
            stripe.Webhook.construct_event(payload, signature, self.config.webhook_secret)
        except stripe.SignatureVerificationError as e:
            raise BadPayload("Invalid signature") from e
        except ValueError as e:
            raise BadPayload("Invalid payload") from e

        event = json.loads(payload)
        if not isinstance(event, dict):
            raise BadPayload("Invalid payload")
        return event


def load_gateway() -> StripeGateway:
    """Build a gateway from the credentials currently stored in the database."""
    return StripeGateway(load_stripe_config())

