from __future__ import annotations

import logging

from flask import Blueprint, current_app, request

from donations.errors import DonationsError
from donations.helpers import client_ip, json_error, json_response, request_payload, sha256_hex
from donations.services import checkout, manage_tokens, rate_limiter, stripe_gateway, webhook_log

log = logging.getLogger(__name__)

donations_bp = Blueprint("donations", __name__)


def _enforce_or_fail_closed(event: str, ip: str) -> None:
    """Throttle a money-moving endpoint; a broken limiter rejects the request."""
    try:
        rate_limiter.enforce(event, ip)
    except DonationsError:
        raise
    except Exception as e:
        log.exception("rate limit check failed event=%s", event)
        raise DonationsError("Unable to process request", status=500) from e


# ─────────────────────────────────────────────────────────────
# Checkout
# ─────────────────────────────────────────────────────────────
@donations_bp.route("/donations_create_checkout_session", methods=["POST"])
def create_checkout_session():
    ip = client_ip()
    _enforce_or_fail_closed(rate_limiter.CHECKOUT_IP, ip)

    cart = checkout.CartRequest.from_payload(request_payload("Invalid JSON payload"))
    gateway = stripe_gateway.load_gateway()
    url = checkout.create_checkout_session(
        gateway,
        cart,
        site_url=current_app.config["SITE_URL"],
        ip_hash=sha256_hex(ip),
        user_agent=request.headers.get("User-Agent"),
    )
    return json_response({"url": url})


@donations_bp.route("/donations_create_subscription_session", methods=["POST"])
def create_subscription_session():
    _enforce_or_fail_closed(rate_limiter.SUBSCRIPTION_IP, client_ip())

    cents = checkout.parse_monthly_amount(request_payload("Invalid JSON payload").get("monthlyAmountCents"))
    gateway = stripe_gateway.load_gateway()
    url = checkout.create_subscription_session(gateway, cents, site_url=current_app.config["SITE_URL"])
    return json_response({"url": url})


@donations_bp.route("/donations_get_checkout_status", methods=["POST"])
def get_checkout_status():
    session_id = request_payload().get("sessionId")
    gateway = stripe_gateway.load_gateway()
    return json_response(checkout.get_checkout_status(gateway, session_id))


# ─────────────────────────────────────────────────────────────
# Stripe webhook (raw body; never re-serialized before verification)
# ─────────────────────────────────────────────────────────────
@donations_bp.route("/donations_stripe_webhook", methods=["POST"])
def stripe_webhook():
    payload = request.get_data(cache=False)
    signature = request.headers.get("Stripe-Signature", "")

    try:
        gateway = stripe_gateway.load_gateway()
        event = gateway.verify_webhook(payload, signature)
        outcome = webhook_log.handle_delivery(gateway, event)
    except DonationsError:
        raise
    except Exception:
        log.exception("webhook: unhandled failure")
        return json_error("Processing failed", 500)

    if outcome is webhook_log.Outcome.FAILED:
        return json_error("Processing failed", 500)
    return json_response({"ok": True})


# ─────────────────────────────────────────────────────────────
# Donor self-service
# ─────────────────────────────────────────────────────────────
@donations_bp.route("/donations_request_manage_link", methods=["POST"])
def request_manage_link():
    manage_tokens.request_manage_link(request_payload(None).get("email"), client_ip())
    return json_response({"ok": True})


@donations_bp.route("/donations_create_portal_session", methods=["POST"])
def create_portal_session():
    token = request_payload().get("token")
    gateway = stripe_gateway.load_gateway()
    url = manage_tokens.redeem_token(gateway, token)
    return json_response({"url": url})
