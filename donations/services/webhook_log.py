"""
Idempotent intake of Stripe webhook deliveries.

Per event id: (unseen) -> inserted(no status) -> succeeded | failed.
A unique-constraint collision on insert means the event was delivered before;
a stored ``succeeded`` short-circuits, anything else is processed again.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from donations.errors import BadPayload, NotFound, ValidationFailed
from donations.extensions import db
from donations.models import StripeWebhookEvent
from donations.models.mixins import utcnow
from donations.models.stripe_event import ERROR_MAX_CHARS
from donations.services.event_processor import process_stripe_event
from donations.services.stripe_gateway import StripeGateway

log = logging.getLogger(__name__)


class Outcome(str, Enum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    FAILED = "failed"


def format_error(exc: BaseException) -> str:
    return f"{type(exc).__name__}: {exc}"[:ERROR_MAX_CHARS]


def event_row(stripe_event_id: str) -> Optional[StripeWebhookEvent]:
    return db.session.execute(
        select(StripeWebhookEvent).where(StripeWebhookEvent.stripe_event_id == stripe_event_id)
    ).scalar_one_or_none()


def record_delivery(stripe_event_id: str, event_type: str) -> StripeWebhookEvent:
    """
    Insert the log row for a delivery, or return the existing one when this
    event id was seen before. Errors other than the duplicate are raised.
    """
    row = StripeWebhookEvent(stripe_event_id=stripe_event_id, type=event_type, received_at=utcnow())
    db.session.add(row)
    try:
        db.session.commit()
        return row
    except IntegrityError:
        db.session.rollback()
        existing = event_row(stripe_event_id)
        if existing is None:
            raise
        return existing


def _finish(row: StripeWebhookEvent, *, error: Optional[str]) -> None:
    row.status = "failed" if error else "succeeded"
    row.error = error
    row.processed_at = utcnow()
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def run_processor(gateway: StripeGateway, row: StripeWebhookEvent, event: Mapping[str, Any]) -> Outcome:
    """Process an event and stamp its log row. Processing errors are stored, not raised."""
    try:
        process_stripe_event(gateway, event)
    except Exception as exc:
        db.session.rollback()
        log.exception("webhook: processing failed event=%s type=%s", row.stripe_event_id, row.type)
        _finish(row, error=format_error(exc))
        return Outcome.FAILED

    _finish(row, error=None)
    return Outcome.PROCESSED


def handle_delivery(gateway: StripeGateway, event: Mapping[str, Any]) -> Outcome:
    event_id = event.get("id")
    event_type = event.get("type")
    if not isinstance(event_id, str) or not event_id or not isinstance(event_type, str) or not event_type:
        raise BadPayload("Invalid payload")

    row = record_delivery(event_id, event_type)
    if row.status == "succeeded":
        log.info("webhook: duplicate delivery skipped event=%s", event_id)
        return Outcome.DUPLICATE

    return run_processor(gateway, row, event)


def reprocess_failed(gateway: StripeGateway, stripe_event_id: str) -> Outcome:
    """Re-fetch a previously failed event from Stripe and run it again."""
    row = event_row(stripe_event_id)
    if row is None:
        raise NotFound("Event not found")
    if row.status != "failed":
        raise ValidationFailed("Only failed events can be reprocessed")

    event = gateway.retrieve_event(stripe_event_id)
    log.info("webhook: reprocessing event=%s type=%s", stripe_event_id, row.type)
    return run_processor(gateway, row, event)
