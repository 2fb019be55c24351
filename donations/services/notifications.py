"""
Donor-facing emails. All sends are best-effort: a failure is logged and
reported as False, and never undoes the ledger change that triggered it.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from babel.numbers import format_currency
from flask import current_app

from donations.extensions import send_email
from donations.models.mixins import utcnow

log = logging.getLogger(__name__)

RECEIPT_SUBJECTS = {
    "one_time": "IHARC donation receipt",
    "monthly": "IHARC monthly donation receipt",
}
MANAGE_LINK_SUBJECT = "Manage your monthly donation to IHARC"

AMOUNT_LOCALE = "en_CA"


def format_amount(amount_cents: int, currency: str) -> str:
    """Whole-unit amount label in the donor-facing locale, e.g. 3500 CAD -> '$35'."""
    whole = (Decimal(int(amount_cents)) / Decimal("100")).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return format_currency(whole, currency.upper(), format="¤#,##0", locale=AMOUNT_LOCALE, currency_digits=False)


def send_receipt(
    recipient: str,
    *,
    amount_cents: int,
    currency: str,
    kind: str,
    reference: str,
    when: Optional[datetime] = None,
) -> bool:
    if "@" not in (recipient or ""):
        log.error("receipt not sent: invalid recipient reference=%s", reference)
        return False

    when = when or utcnow()
    return send_email(
        current_app._get_current_object(),
        RECEIPT_SUBJECTS[kind],
        [recipient],
        text_template="receipt.txt",
        html_template="receipt.html",
        context={
            "kind_label": "monthly" if kind == "monthly" else "one-time",
            "amount_label": format_amount(amount_cents, currency),
            "date_label": when.strftime("%b %d, %Y"),
            "reference": reference,
        },
    )


def send_manage_link(recipient: str, *, link: str, ttl_minutes: int) -> bool:
    return send_email(
        current_app._get_current_object(),
        MANAGE_LINK_SUBJECT,
        [recipient],
        text_template="manage_link.txt",
        html_template="manage_link.html",
        context={"link": link, "ttl_minutes": ttl_minutes},
    )
