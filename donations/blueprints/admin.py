from __future__ import annotations

import logging

from flask import Blueprint, g

from donations.auth import require_admin
from donations.helpers import json_response, request_payload
from donations.services import admin_ops, stripe_gateway

log = logging.getLogger(__name__)

admin_bp = Blueprint("donations_admin", __name__)


@admin_bp.route("/donations_admin_cancel_subscription", methods=["POST"])
@require_admin
def cancel_subscription():
    data = request_payload()
    admin_ops.cancel_subscription(stripe_gateway.load_gateway(), data.get("stripeSubscriptionId"))
    log.info("admin action by %s: cancel subscription", g.admin_subject)
    return json_response({"ok": True})


@admin_bp.route("/donations_admin_reprocess_webhook_event", methods=["POST"])
@require_admin
def reprocess_webhook_event():
    data = request_payload()
    admin_ops.reprocess_event(stripe_gateway.load_gateway(), data.get("stripeEventId"))
    log.info("admin action by %s: reprocess event", g.admin_subject)
    return json_response({"ok": True})


@admin_bp.route("/donations_admin_resend_manage_link", methods=["POST"])
@require_admin
def resend_manage_link():
    admin_ops.resend_manage_link(request_payload().get("email"))
    log.info("admin action by %s: resend manage link", g.admin_subject)
    return json_response({"ok": True})


@admin_bp.route("/donations_admin_sync_catalog_item_stripe", methods=["POST"])
@require_admin
def sync_catalog_item_stripe():
    data = request_payload()
    ids = admin_ops.sync_catalog_item(stripe_gateway.load_gateway(), data.get("catalogItemId"))
    log.info("admin action by %s: sync catalog item", g.admin_subject)
    return json_response(ids)
