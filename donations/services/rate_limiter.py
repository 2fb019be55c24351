"""
Database-backed fixed-window rate limiter with a per-identifier cooldown.

Each check is one transaction over the (event, identifier) bucket row, locked
with SELECT ... FOR UPDATE where the backend supports it. Identifiers are
hashed by the caller helpers; raw IPs or emails never reach the table.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from flask import current_app
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from donations.errors import RateLimited
from donations.extensions import db
from donations.helpers import sha256_hex
from donations.models import RateLimitBucket
from donations.models.mixins import utcnow

log = logging.getLogger(__name__)

CHECKOUT_IP = "donations:create_checkout_session:ip"
SUBSCRIPTION_IP = "donations:create_subscription_session:ip"
MANAGE_LINK_IP = "donations:manage_link:ip"
MANAGE_LINK_EMAIL = "donations:manage_link:email"

_RULE_CONFIG_KEYS = {
    CHECKOUT_IP: "RATE_LIMIT_CHECKOUT",
    SUBSCRIPTION_IP: "RATE_LIMIT_SUBSCRIPTION",
    MANAGE_LINK_IP: "RATE_LIMIT_MANAGE_LINK_IP",
    MANAGE_LINK_EMAIL: "RATE_LIMIT_MANAGE_LINK_EMAIL",
}


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    retry_in_ms: int = 0


@dataclass(frozen=True)
class RateLimitRule:
    event: str
    limit: int
    window_ms: int
    cooldown_ms: int

    @classmethod
    def for_event(cls, event: str) -> "RateLimitRule":
        limit, window_s, cooldown_s = current_app.config[_RULE_CONFIG_KEYS[event]]
        return cls(event=event, limit=int(limit), window_ms=int(window_s) * 1000, cooldown_ms=int(cooldown_s) * 1000)


def _ms(delta: timedelta) -> int:
    return int(delta.total_seconds() * 1000)


def _decide(bucket: RateLimitBucket, now: datetime, limit: int, window_ms: int, cooldown_ms: int) -> RateLimitResult:
    since_last = _ms(now - bucket.last_attempt_at)
    if cooldown_ms > 0 and 0 <= since_last < cooldown_ms:
        return RateLimitResult(False, cooldown_ms - since_last)

    window_end = bucket.window_started_at + timedelta(milliseconds=window_ms)
    if now >= window_end:
        bucket.window_started_at = now
        bucket.count = 1
    elif bucket.count >= limit:
        return RateLimitResult(False, max(1, _ms(window_end - now)))
    else:
        bucket.count += 1

    bucket.last_attempt_at = now
    return RateLimitResult(True)


def check_rate_limit(
    event: str,
    identifier: str,
    limit: int,
    window_ms: int,
    cooldown_ms: int,
    *,
    now: Optional[datetime] = None,
    _retried: bool = False,
) -> RateLimitResult:
    """
    Count one attempt for (event, identifier) and report whether it is allowed.

    Database errors propagate; callers decide whether to fail open or closed.
    """
    now = now or utcnow()

    stmt = (
        select(RateLimitBucket)
        .where(RateLimitBucket.event == event, RateLimitBucket.identifier == identifier)
        .with_for_update()
    )
    try:
        bucket = db.session.execute(stmt).scalar_one_or_none()
        if bucket is None:
            db.session.add(
                RateLimitBucket(
                    event=event,
                    identifier=identifier,
                    window_started_at=now,
                    count=1,
                    last_attempt_at=now,
                )
            )
            db.session.commit()
            return RateLimitResult(True)

        result = _decide(bucket, now, limit, window_ms, cooldown_ms)
        db.session.commit()
    except IntegrityError:
        # a concurrent first attempt created the bucket; count against it
        db.session.rollback()
        if _retried:
            raise
        return check_rate_limit(event, identifier, limit, window_ms, cooldown_ms, now=now, _retried=True)
    except Exception:
        db.session.rollback()
        raise

    if not result.allowed:
        log.info("rate limit hit event=%s id=%s retry_in_ms=%s", event, identifier[:12], result.retry_in_ms)
    return result


def enforce(event: str, raw_identifier: str) -> None:
    """Hash the identifier, check the configured rule and raise RateLimited when exceeded."""
    rule = RateLimitRule.for_event(event)
    result = check_rate_limit(rule.event, sha256_hex(raw_identifier), rule.limit, rule.window_ms, rule.cooldown_ms)
    if not result.allowed:
        raise RateLimited(result.retry_in_ms)
