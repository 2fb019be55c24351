import hashlib
import hmac
import itertools
import json
import time

import pytest
from faker import Faker

from donations import create_app
from donations.errors import UpstreamFailure
from donations.extensions import db, mail
from donations.models import CatalogItem, DonationSubscription, Donor
from donations.services import stripe_gateway
from donations.services.stripe_config import StripeConfig, save_stripe_config

fake = Faker()

WEBHOOK_SECRET = "whsec_test_donations"
ADMIN_TOKEN = "admin-test-token"


def pytest_configure(config):
    config.addinivalue_line("markers", "webhook: Stripe webhook delivery tests")
    config.addinivalue_line("markers", "admin: admin endpoint tests")


# ─────────────────────────────────────────────────────────────
# Fake Stripe gateway: network calls replaced, signature check kept real
# ─────────────────────────────────────────────────────────────
class FakeGateway(stripe_gateway.StripeGateway):
    def __init__(self):
        super().__init__(StripeConfig(mode="test", secret_key="sk_test_fake", webhook_secret=WEBHOOK_SECRET))
        self._seq = itertools.count(1)
        self.calls = []
        self.sessions = {}
        self.prices = {}
        self.subscriptions = {}
        self.customers = {}
        self.events = {}
        self.fail = set()

    def _next(self, prefix):
        return f"{prefix}_{next(self._seq):04d}"

    def _record(self, name, *args, **kwargs):
        self.calls.append((name, args, kwargs))
        if name in self.fail:
            raise UpstreamFailure(f"Stripe {name} failed", error_type="api_error", code="fake", request_id="req_fake")

    def calls_to(self, name):
        return [c for c in self.calls if c[0] == name]

    def _lookup(self, store, key, what):
        if key not in store:
            raise UpstreamFailure(f"No such {what}: {key}", error_type="invalid_request_error", code="resource_missing")
        return store[key]

    def create_checkout_session(self, params, *, idempotency_key=None):
        self._record("create_checkout_session", params, idempotency_key=idempotency_key)
        sid = self._next("cs_test")
        return {"id": sid, "url": f"https://checkout.stripe.test/c/pay/{sid}"}

    def retrieve_checkout_session(self, session_id):
        self._record("retrieve_checkout_session", session_id)
        return self._lookup(self.sessions, session_id, "checkout session")

    def create_product(self, params, *, idempotency_key=None):
        self._record("create_product", params, idempotency_key=idempotency_key)
        return {"id": self._next("prod"), **params}

    def create_price(self, params, *, idempotency_key=None):
        self._record("create_price", params, idempotency_key=idempotency_key)
        price = {"id": self._next("price"), "active": True, **params}
        self.prices[price["id"]] = price
        return price

    def retrieve_price(self, price_id):
        self._record("retrieve_price", price_id)
        return self._lookup(self.prices, price_id, "price")

    def deactivate_price(self, price_id):
        self._record("deactivate_price", price_id)
        price = self._lookup(self.prices, price_id, "price")
        price["active"] = False
        return price

    def retrieve_subscription(self, subscription_id):
        self._record("retrieve_subscription", subscription_id)
        return self._lookup(self.subscriptions, subscription_id, "subscription")

    def cancel_subscription(self, subscription_id):
        self._record("cancel_subscription", subscription_id)
        sub = dict(self.subscriptions.get(subscription_id) or {"id": subscription_id})
        sub.update(status="canceled", canceled_at=int(time.time()))
        return sub

    def retrieve_customer(self, customer_id):
        self._record("retrieve_customer", customer_id)
        return self._lookup(self.customers, customer_id, "customer")

    def create_portal_session(self, customer_id, return_url):
        self._record("create_portal_session", customer_id, return_url=return_url)
        return {"id": self._next("bps"), "url": f"https://billing.stripe.test/p/session/{customer_id}"}

    def retrieve_event(self, event_id):
        self._record("retrieve_event", event_id)
        return self._lookup(self.events, event_id, "event")


# ─────────────────────────────────────────────────────────────
# App / client
# ─────────────────────────────────────────────────────────────
@pytest.fixture()
def app():
    app = create_app("testing")
    with app.app_context():
        save_stripe_config("test", "sk_test_fake", WEBHOOK_SECRET)
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def gateway(monkeypatch):
    fake_gateway = FakeGateway()
    monkeypatch.setattr(stripe_gateway, "load_gateway", lambda: fake_gateway)
    return fake_gateway


@pytest.fixture()
def outbox(app):
    with mail.record_messages() as sent:
        yield sent


@pytest.fixture()
def admin_headers():
    return {"Authorization": f"Bearer {ADMIN_TOKEN}"}


# ─────────────────────────────────────────────────────────────
# Data builders
# ─────────────────────────────────────────────────────────────
@pytest.fixture()
def make_item(app):
    def _make(**overrides):
        data = {
            "slug": fake.unique.slug(),
            "title": fake.catch_phrase(),
            "currency": "CAD",
            "unit_cost_cents": 1500,
            "stripe_price_id": f"price_{fake.unique.lexify('????????')}",
            "is_active": True,
        }
        data.update(overrides)
        item = CatalogItem(**data)
        db.session.add(item)
        db.session.commit()
        return item

    return _make


@pytest.fixture()
def make_donor(app):
    def _make(email=None, customer_id=None, subscription_status=None, subscription_id=None):
        donor = Donor(email=(email or fake.unique.email()).lower(), stripe_customer_id=customer_id)
        db.session.add(donor)
        db.session.commit()
        if subscription_status:
            db.session.add(
                DonationSubscription(
                    stripe_subscription_id=subscription_id or f"sub_{fake.unique.lexify('????????')}",
                    donor_id=donor.id,
                    status=subscription_status,
                    amount_cents=2500,
                    currency="CAD",
                    stripe_price_id="price_monthly",
                )
            )
            db.session.commit()
        return donor

    return _make


def subscription_object(sub_id, customer_id, *, status="active", amount=2500, price_id="price_monthly_2500", **extra):
    obj = {
        "id": sub_id,
        "object": "subscription",
        "customer": customer_id,
        "status": status,
        "start_date": 1760000000,
        "canceled_at": None,
        "items": {
            "object": "list",
            "data": [{"id": "si_1", "price": {"id": price_id, "unit_amount": amount, "currency": "cad"}}],
        },
    }
    obj.update(extra)
    return obj


def stripe_event(event_type, obj, event_id=None):
    return {
        "id": event_id or f"evt_{fake.unique.lexify('????????????')}",
        "object": "event",
        "type": event_type,
        "created": int(time.time()),
        "data": {"object": obj},
    }


# ─────────────────────────────────────────────────────────────
# Webhook signing (same scheme Stripe uses: t=<ts>,v1=HMAC_SHA256("<ts>.<body>"))
# ─────────────────────────────────────────────────────────────
def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp=None) -> str:
    ts = int(timestamp if timestamp is not None else time.time())
    signed = f"{ts}.".encode("utf-8") + payload
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


@pytest.fixture()
def post_webhook(client):
    def _post(event, secret=WEBHOOK_SECRET):
        payload = json.dumps(event).encode("utf-8")
        return client.post(
            "/donations_stripe_webhook",
            data=payload,
            headers={"Stripe-Signature": sign_payload(payload, secret), "Content-Type": "application/json"},
        )

    return _post
