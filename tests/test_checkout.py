import pytest
from sqlalchemy import func, select

from donations.errors import UpstreamFailure, ValidationFailed
from donations.extensions import db
from donations.helpers import sha256_hex
from donations.models import DonationIntent, DonationIntentItem
from donations.services.checkout import CartRequest, parse_monthly_amount, price_cart

URL = "/donations_create_checkout_session"


def _intent_count():
    return db.session.execute(select(func.count(DonationIntent.id))).scalar_one()


# ----------------------------
# Cart parsing
# ----------------------------
def test_quantities_are_clamped_and_empty_lines_dropped(app):
    cart = CartRequest.from_payload(
        {
            "items": [
                {"catalogItemId": "a", "quantity": 40},
                {"catalogItemId": "b", "quantity": 0},
                {"catalogItemId": "", "quantity": 2},
                {"quantity": 3},
                "junk",
                {"catalogItemId": "c", "quantity": "2.7"},
            ],
            "customAmountCents": 0,
        }
    )
    assert [(line.catalog_item_id, line.quantity) for line in cart.lines] == [("a", 25), ("c", 2)]


@pytest.mark.parametrize(
    "payload, message",
    [
        ({"items": []}, "Add items or a custom amount"),
        ({"items": [{"catalogItemId": "a", "quantity": 0}], "customAmountCents": 0}, "Add items or a custom amount"),
        ({"customAmountCents": -5}, "Invalid custom amount"),
        ({"customAmountCents": "lots"}, "Invalid custom amount"),
        ({"customAmountCents": 99}, "Custom amount is out of range"),
        ({"customAmountCents": 500_001}, "Custom amount is out of range"),
        ({"items": [{"catalogItemId": f"i{n}", "quantity": 1} for n in range(26)]}, "Too many line items"),
    ],
)
def test_cart_validation_messages(app, payload, message):
    with pytest.raises(ValidationFailed) as exc:
        CartRequest.from_payload(payload)
    assert exc.value.message == message
    assert exc.value.status == 422


def test_custom_amount_rounds_half_up(app):
    assert CartRequest.from_payload({"customAmountCents": 1234.5}).custom_amount_cents == 1235


def test_rounding_is_exact_at_the_half_cent_boundary(app):
    # 0.49999999999999994 + 0.5 is exactly 1.0 in binary floating point
    cart = CartRequest.from_payload(
        {"items": [{"catalogItemId": "item_1", "quantity": 1}], "customAmountCents": 0.49999999999999994}
    )
    assert cart.custom_amount_cents == 0
    assert parse_monthly_amount(2499.5) == 2500


@pytest.mark.parametrize("raw, cents", [(500, 500), (2500, 2500), ("10000", 10000), (500_000, 500_000)])
def test_monthly_amount_accepts_whole_dollars(app, raw, cents):
    assert parse_monthly_amount(raw) == cents


@pytest.mark.parametrize(
    "raw, message",
    [
        (2550, "Monthly amount must be a whole dollar amount"),
        (400, "Monthly amount is out of range"),
        (500_100, "Monthly amount is out of range"),
        (None, "Monthly amount is out of range"),
    ],
)
def test_monthly_amount_rejections(app, raw, message):
    with pytest.raises(ValidationFailed) as exc:
        parse_monthly_amount(raw)
    assert exc.value.message == message


# ----------------------------
# Pricing against the catalog
# ----------------------------
def test_price_cart_rejects_unusable_items(app, make_item):
    inactive = make_item(is_active=False)
    unpriced = make_item(stripe_price_id=None)
    usd = make_item(currency="USD")
    cad = make_item()

    cases = [
        ("missing-id", "One or more items are unavailable"),
        (inactive.id, "One or more items are currently unavailable"),
        (unpriced.id, "One or more items are not ready for checkout yet"),
    ]
    for item_id, message in cases:
        with pytest.raises(ValidationFailed) as exc:
            price_cart(CartRequest.from_payload({"items": [{"catalogItemId": item_id, "quantity": 1}]}))
        assert exc.value.message == message

    with pytest.raises(ValidationFailed) as exc:
        price_cart(
            CartRequest.from_payload(
                {"items": [{"catalogItemId": cad.id, "quantity": 1}, {"catalogItemId": usd.id, "quantity": 1}]}
            )
        )
    assert exc.value.message == "Items must share a single currency"


# ----------------------------
# Endpoint
# ----------------------------
def test_checkout_with_items_and_custom_amount(client, gateway, make_item):
    item = make_item(unit_cost_cents=1500, stripe_price_id="price_kit")

    resp = client.post(
        URL,
        json={
            "items": [{"catalogItemId": item.id, "quantity": 1}, {"catalogItemId": item.id, "quantity": 0}],
            "customAmountCents": 2000,
        },
        headers={"User-Agent": "pytest-agent"},
    )

    assert resp.status_code == 200
    assert resp.get_json()["url"].startswith("https://checkout.stripe.test/")

    db.session.expire_all()
    intent = db.session.execute(select(DonationIntent)).scalar_one()
    assert intent.total_amount_cents == 3500
    assert intent.custom_amount_cents == 2000
    assert intent.currency == "CAD"
    assert intent.status == "requires_payment"
    assert intent.stripe_checkout_session_id.startswith("cs_test_")
    assert intent.metadata_json == {"source": "iharc.ca", "ip_hash": sha256_hex("127.0.0.1"), "ua": "pytest-agent"}

    lines = db.session.execute(select(DonationIntentItem)).scalars().all()
    assert [(x.quantity, x.unit_amount_cents, x.line_amount_cents) for x in lines] == [(1, 1500, 1500)]

    (_, (params,), kwargs), = gateway.calls_to("create_checkout_session")
    assert kwargs["idempotency_key"] == f"donations_checkout_session_{intent.id}"
    assert params["mode"] == "payment"
    assert params["submit_type"] == "donate"
    assert params["customer_creation"] == "always"
    assert params["client_reference_id"] == intent.id
    assert params["metadata"] == {"donation_intent_id": intent.id}
    assert params["payment_intent_data"] == {"metadata": {"donation_intent_id": intent.id}}
    assert params["success_url"] == "https://iharc.test/donate/success?session_id={CHECKOUT_SESSION_ID}"
    assert params["cancel_url"] == "https://iharc.test/donate/cancel"
    assert params["line_items"][0] == {"price": "price_kit", "quantity": 1}
    assert params["line_items"][1]["price_data"]["unit_amount"] == 2000
    assert params["line_items"][1]["price_data"]["currency"] == "cad"


def test_empty_cart_is_rejected_without_side_effects(client, gateway):
    resp = client.post(URL, json={"items": [], "customAmountCents": 0})

    assert resp.status_code == 422
    assert resp.get_json() == {"error": "Add items or a custom amount"}
    assert gateway.calls == []
    assert _intent_count() == 0


@pytest.mark.parametrize(
    "url, message",
    [
        (URL, "Invalid JSON payload"),
        ("/donations_create_subscription_session", "Invalid JSON payload"),
        ("/donations_get_checkout_status", "Invalid payload"),
        ("/donations_create_portal_session", "Invalid payload"),
    ],
)
def test_malformed_json_is_a_bad_request(client, gateway, url, message):
    resp = client.post(url, data="{\"items\": [", content_type="application/json")

    assert resp.status_code == 400
    assert resp.get_json() == {"error": message}
    assert gateway.calls == []
    assert _intent_count() == 0


def test_stripe_failure_maps_to_502_and_keeps_pending_intent(client, gateway):
    gateway.fail.add("create_checkout_session")

    resp = client.post(URL, json={"customAmountCents": 1000})

    assert resp.status_code == 502
    body = resp.get_json()
    assert body["type"] == "api_error"
    assert body["requestId"] == "req_fake"

    db.session.expire_all()
    intent = db.session.execute(select(DonationIntent)).scalar_one()
    assert intent.status == "pending"
    assert intent.stripe_checkout_session_id is None


def test_subscription_session(client, gateway):
    resp = client.post("/donations_create_subscription_session", json={"monthlyAmountCents": 2500})

    assert resp.status_code == 200
    (_, (params,), kwargs), = gateway.calls_to("create_checkout_session")
    assert kwargs["idempotency_key"] is None
    assert params["mode"] == "subscription"
    assert "customer_creation" not in params
    assert params["metadata"] == {"donation_type": "monthly", "amount_cents": "2500", "currency": "CAD"}
    assert params["subscription_data"]["metadata"] == params["metadata"]
    assert len(gateway.calls_to("create_price")) == 1


def test_subscription_rejects_cents(client, gateway):
    resp = client.post("/donations_create_subscription_session", json={"monthlyAmountCents": 2550})

    assert resp.status_code == 422
    assert resp.get_json()["error"] == "Monthly amount must be a whole dollar amount"
    assert gateway.calls == []


# ----------------------------
# Status lookup
# ----------------------------
def test_checkout_status(client, gateway):
    gateway.sessions["cs_test_abc"] = {
        "id": "cs_test_abc",
        "mode": "payment",
        "payment_status": "paid",
        "amount_total": 3500,
        "currency": "cad",
    }

    resp = client.post("/donations_get_checkout_status", json={"sessionId": "cs_test_abc"})

    assert resp.status_code == 200
    assert resp.get_json() == {"mode": "payment", "paymentStatus": "paid", "amountTotalCents": 3500, "currency": "CAD"}


def test_checkout_status_unknown_values(client, gateway):
    gateway.sessions["cs_test_x"] = {"id": "cs_test_x", "mode": "setup", "payment_status": "weird"}

    data = client.post("/donations_get_checkout_status", json={"sessionId": "cs_test_x"}).get_json()

    assert data == {"mode": "payment", "paymentStatus": "unknown", "amountTotalCents": None, "currency": None}


def test_checkout_status_validation_and_upstream(client, gateway):
    bad = client.post("/donations_get_checkout_status", json={"sessionId": "pi_123"})
    assert bad.status_code == 422
    assert bad.get_json() == {"error": "Invalid session id"}

    missing = client.post("/donations_get_checkout_status", json={"sessionId": "cs_missing"})
    assert missing.status_code == 502
    assert missing.get_json()["error"] == "Unable to confirm donation status"


def test_get_is_not_allowed(client):
    resp = client.get(URL)
    assert resp.status_code == 405
    assert resp.get_json() == {"error": "Method not allowed"}


def test_upstream_failure_carries_diagnostics():
    err = UpstreamFailure("boom", error_type="card_error", code="card_declined", request_id="req_1")
    assert err.to_dict() == {"error": "boom", "type": "card_error", "code": "card_declined", "requestId": "req_1"}
