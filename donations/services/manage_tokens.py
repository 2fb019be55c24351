"""
Donor self-service links.

A manage token is 32 random bytes (hex) mailed to the donor; only its sha256
is stored. Redemption consumes the token with a conditional update before the
Billing Portal session is created, so two concurrent redemptions can never
both reach Stripe.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Optional
from urllib.parse import quote

from flask import current_app
from sqlalchemy import select, update

from donations.errors import NotFound, RateLimited, UpstreamFailure, ValidationFailed
from donations.extensions import db
from donations.helpers import normalize_email, sha256_hex
from donations.models import Donor, DonorManageToken
from donations.models.mixins import utcnow
from donations.services import notifications, rate_limiter
from donations.services.ledger import donor_by_email, has_manageable_subscription
from donations.services.stripe_gateway import StripeGateway

log = logging.getLogger(__name__)

MIN_TOKEN_LENGTH = 16


@dataclass(frozen=True)
class IssuedToken:
    donor_id: str
    link: str
    ttl_minutes: int


def eligible_donor(email: str) -> Optional[Donor]:
    """The donor for an email, if it has a Stripe customer and a manageable subscription."""
    donor = donor_by_email(email)
    if donor is None or not donor.stripe_customer_id:
        return None
    if not has_manageable_subscription(donor.id):
        return None
    return donor


def issue_token(donor: Donor) -> IssuedToken:
    ttl = int(current_app.config["MANAGE_TOKEN_TTL_MINUTES"])
    raw = secrets.token_hex(32)
    db.session.add(
        DonorManageToken(
            donor_id=donor.id,
            token_hash=sha256_hex(raw),
            expires_at=utcnow() + timedelta(minutes=ttl),
        )
    )
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    site = current_app.config["SITE_URL"]
    return IssuedToken(donor_id=donor.id, link=f"{site}/manage-donation/portal?token={quote(raw)}", ttl_minutes=ttl)


def issue_and_send(email: str) -> IssuedToken:
    """Issue a token for an eligible donor and email the link. Raises NotFound otherwise."""
    donor = eligible_donor(email)
    if donor is None:
        raise NotFound("No active monthly donation found for that email")

    issued = issue_token(donor)
    if not notifications.send_manage_link(donor.email, link=issued.link, ttl_minutes=issued.ttl_minutes):
        log.warning("manage link email not sent donor=%s", donor.id)
    return issued


def _limited(event: str, identifier: str) -> bool:
    """True when the request should be dropped. Limiter failures count as allowed."""
    try:
        rate_limiter.enforce(event, identifier)
    except RateLimited:
        return True
    except Exception:
        log.exception("manage link: rate limit check failed event=%s", event)
    return False


def request_manage_link(raw_email: Any, ip: str) -> None:
    """
    Public manage-link request. Always completes silently: unknown donors,
    throttled callers and send failures look identical to a real send.
    """
    email = normalize_email(raw_email)
    if email is None:
        return

    if _limited(rate_limiter.MANAGE_LINK_IP, ip) or _limited(rate_limiter.MANAGE_LINK_EMAIL, email):
        return

    try:
        issue_and_send(email)
    except NotFound:
        return
    except Exception:
        log.exception("manage link: issue failed email_hash=%s", sha256_hex(email)[:12])


def consume_token(raw_token: Any) -> DonorManageToken:
    """Atomically mark a presented token used. Raises ValidationFailed when it cannot be used."""
    if not isinstance(raw_token, str) or len(raw_token.strip()) < MIN_TOKEN_LENGTH:
        raise ValidationFailed("Invalid token")

    token_hash = sha256_hex(raw_token.strip())
    row = db.session.execute(
        select(DonorManageToken).where(DonorManageToken.token_hash == token_hash)
    ).scalar_one_or_none()
    if row is None or row.consumed_at is not None:
        raise ValidationFailed("Invalid token")

    now = utcnow()
    if row.expires_at <= now:
        raise ValidationFailed("Token expired")

    res = db.session.execute(
        update(DonorManageToken)
        .where(DonorManageToken.id == row.id, DonorManageToken.consumed_at.is_(None))
        .values(consumed_at=now)
        .execution_options(synchronize_session=False)
    )
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    if not res.rowcount:
        raise ValidationFailed("Token already used")
    return row


def redeem_token(gateway: StripeGateway, raw_token: Any) -> str:
    """Exchange a manage token for a Stripe Billing Portal URL."""
    row = consume_token(raw_token)

    donor = db.session.get(Donor, row.donor_id)
    if donor is None or not donor.stripe_customer_id:
        raise ValidationFailed("No Stripe customer linked to this donor")

    portal = gateway.create_portal_session(
        donor.stripe_customer_id,
        f"{current_app.config['SITE_URL']}/manage-donation",
    )
    url = portal.get("url")
    if not isinstance(url, str) or not url:
        raise UpstreamFailure("Stripe did not return a portal URL")

    log.info("manage token redeemed donor=%s", donor.id)
    return url
