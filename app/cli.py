import click
from flask.cli import with_appcontext
from app.errors import SlotMarketError
from app.extensions import db
from app.models.user import User
from app.services import expiry, pricing


@click.group()
def users():
    """User management."""

@users.command("create")
@click.option("--email", required=True)
@click.option("--password", required=True)
@click.option("--admin", "is_admin", is_flag=True, default=False)
@with_appcontext
def users_create(email, password, is_admin):
    if db.session.query(User).filter_by(email=email).count():
        raise click.ClickException("User already exists")

    user = User(email=email, is_active=True, is_admin=is_admin)
    user.set_password(password)
    db.session.add(user)
    db.session.commit()

    click.echo(f"User created id={user.id} email={user.email} admin={user.is_admin}")

@users.command("promote")
@click.option("--email", required=True)
@click.option("--revoke", is_flag=True, default=False, help="Remove admin instead")
@with_appcontext
def users_promote(email, revoke):
    user = db.session.query(User).filter_by(email=email).one_or_none()
    if not user:
        raise click.ClickException("User not found")

    # Safety rail: keep at least one admin
    if revoke and user.is_admin:
        admins = db.session.query(User).filter_by(is_admin=True).count()
        if admins <= 1:
            raise click.ClickException("Refused: cannot revoke the last admin")

    user.is_admin = not revoke
    db.session.commit()
    click.echo(f"{email} admin={user.is_admin}")


@click.group()
def packages():
    """Pricing catalog ops."""

@packages.command("seed")
@with_appcontext
def packages_seed():
    added = pricing.seed_default_packages()
    click.echo(f"Seeded {added} package(s)")

@packages.command("deactivate")
@click.argument("package_id", type=int)
@with_appcontext
def packages_deactivate(package_id):
    try:
        pkg = pricing.deactivate_package(package_id)
    except SlotMarketError as e:
        raise click.ClickException(e.message)
    click.echo(f"Package {pkg.id} deactivated")

@packages.command("set-price")
@click.argument("package_id", type=int)
@click.argument("price_cents", type=int)
@with_appcontext
def packages_set_price(package_id, price_cents):
    try:
        pkg = pricing.set_package_price(package_id, price_cents)
    except SlotMarketError as e:
        raise click.ClickException(e.message)
    click.echo(f"Package {pkg.id} price_cents={pkg.price_cents}")


@click.group()
def slots():
    """Slot maintenance."""

@slots.command("sweep")
@with_appcontext
def slots_sweep():
    """Persist expiries and abandon stale pending purchases. Safe to run from cron."""
    counts = expiry.sweep()
    click.echo(
        f"Expired listings={counts['listings']} purchases={counts['purchases']} "
        f"abandoned={counts['abandoned']}"
    )


def register_cli(app):
    app.cli.add_command(users)
    app.cli.add_command(packages)
    app.cli.add_command(slots)
