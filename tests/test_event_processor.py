import pytest
from sqlalchemy import func, select

from donations.errors import EventDecodeError
from donations.extensions import db
from donations.models import DonationIntent, DonationPayment, DonationSubscription, Donor
from donations.services.event_processor import process_stripe_event
from donations.services.ledger import upsert_donor
from tests.conftest import stripe_event, subscription_object


def _payments():
    db.session.expire_all()
    return db.session.execute(select(DonationPayment)).scalars().all()


def _subscription(sub_id):
    db.session.expire_all()
    return db.session.execute(
        select(DonationSubscription).where(DonationSubscription.stripe_subscription_id == sub_id)
    ).scalar_one()


def _invoice(invoice_id="in_1", sub_id="sub_1", customer_id="cus_1", email="donor@example.com", **extra):
    obj = {
        "id": invoice_id,
        "subscription": sub_id,
        "customer": customer_id,
        "customer_email": email,
        "amount_paid": 2500,
        "currency": "cad",
        "status": "paid",
        "charge": f"ch_{invoice_id}",
    }
    obj.update(extra)
    return obj


@pytest.fixture()
def intent(app):
    row = DonationIntent(status="requires_payment", total_amount_cents=2000, currency="CAD", custom_amount_cents=2000)
    db.session.add(row)
    db.session.commit()
    return row


# ----------------------------
# checkout.session.completed
# ----------------------------
def test_unpaid_checkout_marks_intent_failed(app, gateway, intent, outbox):
    process_stripe_event(
        gateway,
        stripe_event(
            "checkout.session.completed",
            {
                "id": "cs_test_unpaid",
                "mode": "payment",
                "payment_status": "unpaid",
                "customer_details": {"email": "donor@example.com"},
                "metadata": {"donation_intent_id": intent.id},
            },
        ),
    )

    db.session.expire_all()
    row = db.session.get(DonationIntent, intent.id)
    assert row.status == "failed"
    assert row.completed_at is not None
    assert row.donor_id is not None
    assert _payments() == []
    assert outbox == []


def test_subscription_checkout_upserts_subscription_without_payment(app, gateway, outbox):
    gateway.subscriptions["sub_new"] = subscription_object("sub_new", "cus_new")

    process_stripe_event(
        gateway,
        stripe_event(
            "checkout.session.completed",
            {
                "id": "cs_test_sub",
                "mode": "subscription",
                "payment_status": "paid",
                "customer": "cus_new",
                "subscription": "sub_new",
                "customer_details": {"email": "Monthly@Example.com", "name": "Jo"},
                "metadata": {"donation_type": "monthly"},
            },
        ),
    )

    sub = _subscription("sub_new")
    donor = db.session.get(Donor, sub.donor_id)
    assert donor.email == "monthly@example.com"
    assert donor.stripe_customer_id == "cus_new"
    assert (sub.status, sub.amount_cents, sub.currency) == ("active", 2500, "CAD")
    assert sub.last_payment_at is None
    assert _payments() == []
    assert outbox == []


# ----------------------------
# invoice.paid
# ----------------------------
def test_invoice_paid_records_payment_and_sends_monthly_receipt(app, gateway, make_donor, outbox):
    donor = make_donor(email="donor@example.com", customer_id="cus_1")
    gateway.subscriptions["sub_1"] = subscription_object("sub_1", "cus_1")
    event = stripe_event("invoice.paid", _invoice(), "evt_inv_1")

    process_stripe_event(gateway, event)
    process_stripe_event(gateway, event)

    (payment,) = _payments()
    assert payment.donor_id == donor.id
    assert payment.stripe_invoice_id == "in_1"
    assert payment.stripe_charge_id == "ch_in_1"
    assert payment.amount_cents == 2500

    sub = _subscription("sub_1")
    assert payment.donation_subscription_id == sub.id
    assert sub.last_invoice_status == "paid"
    assert sub.last_payment_at is not None

    assert len(outbox) == 1
    assert outbox[0].subject == "IHARC monthly donation receipt"
    assert "monthly" in outbox[0].body
    assert gateway.calls_to("retrieve_customer") == []


def test_invoice_paid_backfills_customer_on_email_match(app, gateway, make_donor):
    donor = make_donor(email="donor@example.com")
    gateway.subscriptions["sub_1"] = subscription_object("sub_1", "cus_later")

    process_stripe_event(gateway, stripe_event("invoice.paid", _invoice(customer_id="cus_later")))

    db.session.expire_all()
    assert db.session.get(Donor, donor.id).stripe_customer_id == "cus_later"
    assert gateway.calls_to("retrieve_customer") == []


def test_invoice_paid_fetches_unknown_customer(app, gateway):
    gateway.customers["cus_remote"] = {"id": "cus_remote", "email": "Remote@Example.com", "name": "Remy"}
    gateway.subscriptions["sub_1"] = subscription_object("sub_1", "cus_remote")

    process_stripe_event(gateway, stripe_event("invoice.paid", _invoice(customer_id="cus_remote", email=None)))

    donor = db.session.execute(select(Donor)).scalar_one()
    assert (donor.email, donor.name, donor.stripe_customer_id) == ("remote@example.com", "Remy", "cus_remote")
    assert len(_payments()) == 1


def test_deleted_customer_without_email_is_an_error(app, gateway):
    gateway.customers["cus_gone"] = {"id": "cus_gone", "deleted": True}
    gateway.subscriptions["sub_1"] = subscription_object("sub_1", "cus_gone")

    with pytest.raises(EventDecodeError):
        process_stripe_event(gateway, stripe_event("invoice.paid", _invoice(customer_id="cus_gone", email=None)))
    assert _payments() == []


def test_checkout_and_first_invoice_do_not_double_record(app, gateway, outbox):
    gateway.customers["cus_1"] = {"id": "cus_1", "email": "donor@example.com"}
    gateway.subscriptions["sub_1"] = subscription_object("sub_1", "cus_1")
    checkout = stripe_event(
        "checkout.session.completed",
        {
            "id": "cs_test_sub",
            "mode": "subscription",
            "payment_status": "paid",
            "customer": "cus_1",
            "subscription": "sub_1",
            "customer_details": {"email": "donor@example.com"},
        },
    )
    invoice = stripe_event("invoice.paid", _invoice())

    # Stripe does not order these two
    process_stripe_event(gateway, invoice)
    process_stripe_event(gateway, checkout)
    process_stripe_event(gateway, invoice)

    assert len(_payments()) == 1
    assert db.session.execute(select(func.count(DonationSubscription.id))).scalar_one() == 1
    assert db.session.execute(select(func.count(Donor.id))).scalar_one() == 1
    assert len(outbox) == 1

    # the checkout upsert must not clear what the invoice set
    assert _subscription("sub_1").last_invoice_status == "paid"


# ----------------------------
# invoice.payment_failed / subscription changes
# ----------------------------
def test_invoice_payment_failed_marks_past_due(app, gateway, make_donor, outbox):
    make_donor(customer_id="cus_1", subscription_status="active", subscription_id="sub_1")

    process_stripe_event(
        gateway, stripe_event("invoice.payment_failed", {"id": "in_9", "subscription": "sub_1", "status": "open"})
    )

    sub = _subscription("sub_1")
    assert sub.status == "past_due"
    assert sub.last_invoice_status == "open"
    assert _payments() == []
    assert outbox == []


def test_subscription_updated_and_deleted(app, gateway, make_donor):
    make_donor(customer_id="cus_1", subscription_status="active", subscription_id="sub_1")

    process_stripe_event(
        gateway,
        stripe_event("customer.subscription.updated", subscription_object("sub_1", "cus_1", amount=5000, price_id="price_50")),
    )
    sub = _subscription("sub_1")
    assert (sub.amount_cents, sub.stripe_price_id, sub.status) == (5000, "price_50", "active")

    process_stripe_event(
        gateway,
        stripe_event(
            "customer.subscription.deleted",
            subscription_object("sub_1", "cus_1", status="canceled", amount=5000, canceled_at=1760500000),
        ),
    )
    sub = _subscription("sub_1")
    assert sub.status == "canceled"
    assert sub.canceled_at is not None


# ----------------------------
# charge.refunded
# ----------------------------
def test_refund_matches_one_time_payment_by_payment_intent(app, gateway, intent):
    donor = upsert_donor("donor@example.com")
    db.session.add(
        DonationPayment(
            donor_id=donor.id,
            donation_intent_id=intent.id,
            stripe_payment_intent_id="pi_refund",
            amount_cents=2000,
            currency="CAD",
        )
    )
    db.session.commit()

    process_stripe_event(gateway, stripe_event("charge.refunded", {"id": "ch_unknown", "payment_intent": "pi_refund"}))

    (payment,) = _payments()
    assert payment.status == "refunded"
    assert payment.refunded_at is not None


def test_refund_for_unknown_charge_is_a_no_op(app, gateway):
    process_stripe_event(gateway, stripe_event("charge.refunded", {"id": "ch_nothing"}))
    assert _payments() == []


# ----------------------------
# Donor upsert
# ----------------------------
def test_donor_upsert_never_blanks_known_values(app):
    upsert_donor("Donor@Example.com", name="Sam", address={"city": "Cobourg"}, stripe_customer_id="cus_1")
    again = upsert_donor(" donor@example.com ")

    assert again.name == "Sam"
    assert again.address == {"city": "Cobourg"}
    assert again.stripe_customer_id == "cus_1"
    assert db.session.execute(select(func.count(Donor.id))).scalar_one() == 1


def _one_time_checkout(intent_id, customer_id, email):
    return stripe_event(
        "checkout.session.completed",
        {
            "id": f"cs_test_{customer_id}",
            "mode": "payment",
            "payment_status": "paid",
            "customer": customer_id,
            "customer_details": {"email": email},
            "metadata": {"donation_intent_id": intent_id},
            "payment_intent": f"pi_{customer_id}",
            "amount_total": 2000,
            "currency": "cad",
        },
    )


def test_one_time_gift_keeps_monthly_donors_customer(app, gateway, make_donor, intent):
    donor = make_donor(email="monthly@example.com", customer_id="cus_monthly", subscription_status="active")

    process_stripe_event(gateway, _one_time_checkout(intent.id, "cus_once", "monthly@example.com"))

    db.session.expire_all()
    assert db.session.get(Donor, donor.id).stripe_customer_id == "cus_monthly"
    (payment,) = _payments()
    assert payment.donor_id == donor.id


def test_one_time_gift_updates_customer_without_live_subscription(app, gateway, make_donor, intent):
    donor = make_donor(email="lapsed@example.com", customer_id="cus_old", subscription_status="canceled")

    process_stripe_event(gateway, _one_time_checkout(intent.id, "cus_new", "lapsed@example.com"))

    db.session.expire_all()
    assert db.session.get(Donor, donor.id).stripe_customer_id == "cus_new"
