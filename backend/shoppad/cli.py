# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/shoppad/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates tables and the default payment methods.
# - python -m flask system seed-demo
#   Adds a demo catalog and a demo shopper with a filled cart.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Shopper inspection/bootstrap:
# - python -m flask users list
#   List all shoppers with their linked NFC card (masked).
# - python -m flask users create --name "Ana" --phone 0123456789 --password secret
#   Create a shopper (prompts if options are omitted).
#
# Maintenance (safe to run from cron):
# - python -m flask maintenance cleanup-qr-sessions --retention-days 7
#   Expire overdue QR login sessions and delete old ones.
# - python -m flask maintenance prune-nfc-events --retention-days 7
#   Delete processed NFC events older than the retention window.
# - python -m flask maintenance release-stale-nfc-locks
#   Drop tap-to-pay locks left behind by crashed workers.
# - python -m flask maintenance fail-abandoned-transactions --older-than-minutes 15
#   Mark transactions stuck in pending as failed.
# - python -m flask maintenance cleanup-access-tokens --older-than-days 30
#   Delete expired or revoked bearer tokens.

import click
from decimal import Decimal
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import User, Product, CartItem, PaymentMethod
from .services import auth_service
from .services import cart_service
from .services import maintenance_service
from .services.errors import DomainError
from .services.nfc_link_service import mask_uid


DEFAULT_PAYMENT_METHODS = [
    # (code, name, icon, display_order)
    ("card", "Credit / Debit Card", "credit-card", 1),
    ("wallet", "Mobile Wallet", "smartphone", 2),
    ("bank", "Bank Transfer", "landmark", 3),
]

DEMO_PRODUCTS = [
    # (name, price, barcode, category)
    ("Whole Milk 1L", "1.49", "4006381333931", "Dairy"),
    ("Sourdough Bread", "3.20", "4006381333948", "Bakery"),
    ("Bananas 1kg", "1.99", "4006381333955", "Produce"),
    ("Ground Coffee 500g", "7.85", "4006381333962", "Pantry"),
    ("Sparkling Water 6x1.5L", "4.14", "4006381333979", "Drinks"),
]

DEMO_PHONE = "0100000000"
DEMO_PASSWORD = "demo1234"


def ensure_payment_methods() -> int:
    """Create the default payment methods that are missing. Returns count created."""
    created = 0
    for code, name, icon, order in DEFAULT_PAYMENT_METHODS:
        if db.session.query(PaymentMethod).filter_by(code=code).first():
            continue
        db.session.add(PaymentMethod(code=code, name=name, icon=icon, enabled=True, display_order=order))
        created += 1
    db.session.commit()
    return created


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Initialize the ShopPad backend: schema and payment methods.

    Safe to run repeatedly. In production prefer `flask db upgrade` for the
    schema; create_all() only adds tables that do not exist yet.
    """
    click.echo("START Initializing ShopPad...")

    db.create_all()
    click.echo("PASS Tables ready")

    created = ensure_payment_methods()
    methods = db.session.query(PaymentMethod).order_by(PaymentMethod.display_order).all()
    click.echo(f"PASS Payment methods: {', '.join(m.code for m in methods)} ({created} new)")

    click.echo("\nDONE ShopPad initialized.")


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """
    Add a demo catalog and a demo shopper whose cart is ready to check out.

    Demo login: phone 0100000000, password demo1234.
    """
    ensure_payment_methods()

    products = []
    for name, price, barcode, category in DEMO_PRODUCTS:
        product = db.session.query(Product).filter_by(barcode=barcode).first()
        if not product:
            product = Product(name=name, price=Decimal(price), barcode=barcode, category=category)
            db.session.add(product)
        products.append(product)
    db.session.commit()
    click.echo(f"PASS Catalog: {len(products)} products")

    user = db.session.query(User).filter_by(phone=DEMO_PHONE).first()
    if not user:
        user = auth_service.register_user(name="Demo Shopper", phone=DEMO_PHONE, password=DEMO_PASSWORD)
        click.echo(f"PASS Created demo shopper (phone {DEMO_PHONE}, password {DEMO_PASSWORD})")
    else:
        click.echo(f"PASS Using existing demo shopper (ID: {user.id})")

    if not db.session.query(CartItem).filter_by(user_id=user.id).first():
        for quantity, product in enumerate(products[:3], start=1):
            cart_service.add_item(user.id, product.id, quantity)
        click.echo("PASS Filled demo cart")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@click.group('users')
def users_group():
    """Shopper inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--name', prompt=True, help='Display name')
@click.option('--phone', prompt=True, help='Phone number (login identifier)')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@with_appcontext
def create_user_cli(name, phone, password):
    """Create a shopper account. Password is hashed with bcrypt."""
    try:
        user = auth_service.register_user(name=name, phone=phone, password=password)
        click.echo(f"PASS Created shopper: {user.name} ({user.phone}) ID {user.id}")
        click.echo("SECURITY Password securely hashed with bcrypt")
    except DomainError as e:
        click.echo(f"FAIL {e.message}")
    except Exception:
        current_app.logger.exception("Failed to create user from CLI")
        click.echo("FAIL Failed to create user, see log")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all shoppers."""
    users = db.session.query(User).order_by(User.id).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Name':<25} {'Phone':<16} {'NFC':<12} {'Payment'}")
    click.echo("="*80)

    for user in users:
        method = user.preferred_payment_method.code if user.preferred_payment_method else "-"
        nfc = mask_uid(user.nfc_uid) or "-"
        click.echo(f"{user.id:<5} {user.name:<25} {user.phone:<16} {nfc:<12} {method}")

    click.echo("="*80 + "\n")


@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('cleanup-qr-sessions')
@click.option('--retention-days', type=int, default=None, help='Defaults to QR_SESSION_RETENTION_DAYS')
@with_appcontext
def cleanup_qr_sessions_cli(retention_days):
    """Expire overdue QR login sessions and delete sessions past retention."""
    if retention_days is None:
        retention_days = current_app.config["QR_SESSION_RETENTION_DAYS"]
    if retention_days < 0:
        raise click.BadParameter("retention-days must be >= 0")
    expired, deleted = maintenance_service.cleanup_qr_sessions(retention_days=retention_days)
    click.echo(f"Expired {expired} QR sessions, deleted {deleted} older than {retention_days} days.")


@maintenance_group.command('prune-nfc-events')
@click.option('--retention-days', type=int, default=None, help='Defaults to NFC_EVENT_RETENTION_DAYS')
@with_appcontext
def prune_nfc_events_cli(retention_days):
    """Delete processed NFC events older than the retention window."""
    if retention_days is None:
        retention_days = current_app.config["NFC_EVENT_RETENTION_DAYS"]
    if retention_days < 0:
        raise click.BadParameter("retention-days must be >= 0")
    deleted = maintenance_service.prune_nfc_events(retention_days=retention_days)
    click.echo(f"Deleted {deleted} processed NFC events older than {retention_days} days.")


@maintenance_group.command('release-stale-nfc-locks')
@with_appcontext
def release_stale_nfc_locks_cli():
    released = maintenance_service.release_stale_nfc_locks()
    click.echo(f"Released {released} stale NFC payment locks.")


@maintenance_group.command('fail-abandoned-transactions')
@click.option('--older-than-minutes', type=int, default=15, show_default=True)
@with_appcontext
def fail_abandoned_transactions_cli(older_than_minutes):
    """Mark transactions left pending by a crashed checkout as failed."""
    failed = maintenance_service.fail_abandoned_transactions(older_than_minutes=older_than_minutes)
    click.echo(f"Marked {failed} abandoned transactions as failed.")


@maintenance_group.command('cleanup-access-tokens')
@click.option('--older-than-days', type=int, default=30, show_default=True)
@with_appcontext
def cleanup_access_tokens_cli(older_than_days):
    deleted = maintenance_service.cleanup_access_tokens(older_than_days=older_than_days)
    click.echo(f"Deleted {deleted} expired or revoked access tokens.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(maintenance_group)
