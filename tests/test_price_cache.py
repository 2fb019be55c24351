from unittest.mock import patch

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from donations.extensions import db
from donations.models import StripeAmountPrice, StripeProduct
from donations.services.price_cache import (
    CUSTOM_DONATION,
    MONTHLY_DONATION,
    ensure_recurring_price,
    ensure_stripe_product,
)


def test_product_is_created_once_per_mode(app, gateway):
    first = ensure_stripe_product(gateway, CUSTOM_DONATION)
    second = ensure_stripe_product(gateway, CUSTOM_DONATION)

    assert first == second
    creates = gateway.calls_to("create_product")
    assert len(creates) == 1
    assert creates[0][2]["idempotency_key"] == "donations_product_test_custom_donation"
    assert creates[0][1][0]["name"] == "Custom donation"


def test_recurring_price_uses_deterministic_key_and_caches(app, gateway):
    price_id = ensure_recurring_price(gateway, "cad", 2500)

    assert ensure_recurring_price(gateway, "CAD", 2500) == price_id
    creates = gateway.calls_to("create_price")
    assert len(creates) == 1
    params, key = creates[0][1][0], creates[0][2]["idempotency_key"]
    assert key == "donations_price_month_test_CAD_2500"
    assert params["recurring"] == {"interval": "month"}
    assert params["currency"] == "cad"
    assert params["nickname"] == "Monthly donation CAD 25"

    row = db.session.execute(select(StripeAmountPrice)).scalar_one()
    assert (row.stripe_mode, row.currency, row.interval, row.amount_cents) == ("test", "CAD", "month", 2500)

    product_keys = db.session.execute(select(StripeProduct.key)).scalars().all()
    assert product_keys == [MONTHLY_DONATION]


def test_different_amounts_get_different_prices(app, gateway):
    assert ensure_recurring_price(gateway, "CAD", 2500) != ensure_recurring_price(gateway, "CAD", 3000)
    assert db.session.execute(select(func.count(StripeAmountPrice.id))).scalar_one() == 2


def test_losing_the_insert_race_returns_winner(app, gateway):
    winner = StripeProduct(stripe_mode="test", key=CUSTOM_DONATION, stripe_product_id="prod_winner")

    real_commit = db.session.commit
    state = {"raced": False}

    def racing_commit():
        if not state["raced"]:
            state["raced"] = True
            # another worker inserted the same key first
            db.session.rollback()
            db.session.add(winner)
            real_commit()
            raise IntegrityError("INSERT", {}, Exception("duplicate key"))
        return real_commit()

    with patch.object(db.session, "commit", side_effect=racing_commit):
        product_id = ensure_stripe_product(gateway, CUSTOM_DONATION)

    assert product_id == "prod_winner"
    assert db.session.execute(select(func.count(StripeProduct.id))).scalar_one() == 1
