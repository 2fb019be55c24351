import pytest

from donations.services.notifications import format_amount, send_receipt


@pytest.mark.parametrize(
    "cents, currency, label",
    [
        (3500, "CAD", "$35"),
        (3500, "cad", "$35"),
        (123450, "CAD", "$1,235"),
        (2549, "CAD", "$25"),
        (2500, "USD", "US$25"),
        (2500, "EUR", "€25"),
    ],
)
def test_format_amount_uses_whole_units_in_canadian_english(cents, currency, label):
    assert format_amount(cents, currency) == label


def test_receipt_shows_non_cad_currency(app, outbox):
    assert send_receipt("donor@example.com", amount_cents=5000, currency="usd", kind="one_time", reference="pi_usd")

    assert "US$50" in outbox[0].body
    assert "US$50" in outbox[0].html


def test_receipt_to_invalid_recipient_is_not_sent(app, outbox):
    assert send_receipt("nobody", amount_cents=5000, currency="CAD", kind="monthly", reference="in_1") is False
    assert outbox == []
