import random

import click
from faker import Faker
from flask.cli import AppGroup
from sqlalchemy import select

from donations.errors import DonationsError
from donations.extensions import db

fake = Faker()

donations_cli = AppGroup("donations", help="IHARC donations operator tools.")


@donations_cli.command("set-stripe-config")
@click.option("--mode", type=click.Choice(["test", "live"]), required=True, help="Stripe mode to activate.")
@click.option("--secret-key", envvar="STRIPE_SECRET_KEY", prompt=True, hide_input=True, help="sk_test_... / sk_live_...")
@click.option(
    "--webhook-secret",
    envvar="STRIPE_WEBHOOK_SECRET",
    prompt=True,
    hide_input=True,
    help="whsec_... for the donations webhook endpoint.",
)
def set_stripe_config(mode, secret_key, webhook_secret):
    """Store the Stripe credentials the service uses (no redeploy needed)."""
    from donations.services.stripe_config import save_stripe_config

    expected = "sk_live_" if mode == "live" else "sk_test_"
    if not secret_key.startswith(expected):
        click.secho(f"⚠️  secret key does not start with {expected}", fg="yellow")

    try:
        save_stripe_config(mode, secret_key, webhook_secret)
    except DonationsError as e:
        raise click.ClickException(e.message) from e
    click.secho(f"✅ Stripe config saved (mode={mode})", fg="bright_green")


@donations_cli.command("seed-catalog")
@click.option("--count", default=6, show_default=True, help="Number of demo catalog items.")
@click.option("--currency", default="CAD", show_default=True)
def seed_catalog(count, currency):
    """🌱 Seed demo catalog items (no Stripe ids; sync them from the admin API)."""
    from donations.models import CatalogItem

    created = 0
    for _ in range(count):
        title = fake.unique.catch_phrase()
        slug = fake.unique.slug(title)
        if db.session.execute(select(CatalogItem.id).where(CatalogItem.slug == slug)).first():
            continue
        db.session.add(
            CatalogItem(
                slug=slug,
                title=title,
                currency=currency.upper(),
                unit_cost_cents=random.choice([500, 1000, 1500, 2500, 5000]),
                is_active=True,
            )
        )
        created += 1
    db.session.commit()
    click.secho(f"✅ {created} catalog item(s) seeded", fg="bright_green")


@donations_cli.command("reprocess-event")
@click.argument("stripe_event_id")
def reprocess_event(stripe_event_id):
    """Re-run a failed Stripe webhook event by id (evt_...)."""
    from donations.services import admin_ops, stripe_gateway

    try:
        admin_ops.reprocess_event(stripe_gateway.load_gateway(), stripe_event_id)
    except DonationsError as e:
        raise click.ClickException(f"{e.message} ({e.status})") from e
    click.secho(f"✅ {stripe_event_id} reprocessed", fg="bright_green")
