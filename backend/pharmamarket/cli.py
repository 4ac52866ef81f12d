# Overview: Flask CLI command groups for bootstrap, reconciliation, and tracking sync.

# backend/pharmamarket/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--admin-email admin@pharmamarket.local]
#   Idempotent bootstrap: creates tables and the platform admin user.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users list [--role seller]
# - python -m flask users create --name "Eczane A" --email a@example.com --role seller
#
# Categories:
# - python -m flask categories propagate 3
#   Copy category 3's own rates onto its direct children.
#
# Wallets:
# - python -m flask wallets verify [--seller-id 7]
#   Recompute cached balances from the transaction log; exit code 1 on drift.
#
# Orders:
# - python -m flask orders sync-tracking [--order-id 42]
#   Pull carrier tracking for one or all shipped orders.
#
# Payouts:
# - python -m flask payouts pending
#   List open payout requests (admin review queue).

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import User
from .services import commission_service, order_service, payout_service, wallet_service
from .services.access_service import ROLE_ADMIN, VALID_ROLES
from .services.errors import MarketplaceError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--admin-name', default='Platform Admin', help='Admin display name')
@click.option('--admin-email', default='admin@pharmamarket.local', help='Admin email')
@with_appcontext
def init_system(admin_name, admin_email):
    """
    Initialize the marketplace: schema and the platform admin user.

    Safe to run repeatedly; existing rows are left alone.
    """
    click.echo("START Initializing PharmaMarket...")

    db.create_all()
    click.echo("PASS Schema ready")

    admin = db.session.query(User).filter_by(email=admin_email).first()
    if admin:
        click.echo(f"PASS Using existing admin: {admin.email} (ID: {admin.id})")
    else:
        admin = User(name=admin_name, email=admin_email, role=ROLE_ADMIN, is_active=True)
        db.session.add(admin)
        db.session.commit()
        click.echo(f"PASS Created admin: {admin.email} (ID: {admin.id})")

    click.echo("DONE PharmaMarket initialized")


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
    """Marketplace actor commands."""


@users_group.command('list')
@click.option('--role', type=click.Choice(sorted(VALID_ROLES)), help='Filter by role')
@with_appcontext
def list_users(role):
    """List users with their role and active status."""
    query = db.session.query(User)
    if role:
        query = query.filter_by(role=role)
    users = query.order_by(User.id).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo(f"{'ID':<5} {'Role':<8} {'Active':<8} {'Email':<35} {'Name'}")
    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.role:<8} {active_str:<8} {user.email:<35} {user.name}")


@users_group.command('create')
@click.option('--name', prompt=True)
@click.option('--email', prompt=True)
@click.option('--role', type=click.Choice(sorted(VALID_ROLES)), prompt=True)
@with_appcontext
def create_user_cli(name, email, role):
    """Create a buyer, seller or admin."""
    if db.session.query(User).filter_by(email=email).first():
        raise click.ClickException(f"User {email} already exists")
    user = User(name=name, email=email, role=role, is_active=True)
    db.session.add(user)
    db.session.commit()
    click.echo(f"PASS Created {role}: {email} (ID: {user.id})")


@click.group('categories')
def categories_group():
    """Category rate commands."""


@categories_group.command('propagate')
@click.argument('category_id', type=int)
@with_appcontext
def propagate_cli(category_id):
    """Copy a category's own rates onto its direct children."""
    try:
        affected = commission_service.propagate(category_id)
    except MarketplaceError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS Updated {affected} child categories of {category_id}")


@click.group('wallets')
def wallets_group():
    """Seller wallet commands."""


@wallets_group.command('verify')
@click.option('--seller-id', type=int, help='Verify one seller (default: all wallets)')
@with_appcontext
def verify_wallets_cli(seller_id):
    """
    Recompute cached wallet balances from the transaction log.

    Exits with status 1 if any wallet drifted.
    """
    try:
        reports = [wallet_service.verify_wallet(seller_id)] if seller_id else wallet_service.verify_all_wallets()
    except MarketplaceError as e:
        raise click.ClickException(e.message)

    drifted = 0
    for report in reports:
        if report["ok"]:
            click.echo(f"PASS seller {report['seller_id']}: {report['transaction_count']} transactions")
        else:
            drifted += 1
            click.echo(f"FAIL seller {report['seller_id']}: drift {report['drift']}")

    click.echo(f"Checked {len(reports)} wallets, {drifted} with drift")
    if drifted:
        raise SystemExit(1)


@click.group('orders')
def orders_group():
    """Order fulfilment commands."""


@orders_group.command('sync-tracking')
@click.option('--order-id', type=int, help='Sync one order (default: every shipped order)')
@with_appcontext
def sync_tracking_cli(order_id):
    """Pull carrier tracking into shipment records; delivers orders the carrier reports delivered."""
    if order_id:
        try:
            outcome = order_service.sync_shipment_tracking(order_id)
        except MarketplaceError as e:
            raise click.ClickException(e.message)
        results = [{
            "order_id": order_id,
            "ok": True,
            "changed": outcome["changed"],
            "delivered": outcome["delivered"],
            "normalized_status": int(outcome["tracking"].normalized_status),
        }]
    else:
        results = order_service.sync_all_shipped()

    for result in results:
        if result["ok"]:
            flags = []
            if result["changed"]:
                flags.append("changed")
            if result["delivered"]:
                flags.append("delivered")
            click.echo(
                f"PASS order {result['order_id']}: status {result['normalized_status']}"
                + (f" ({', '.join(flags)})" if flags else "")
            )
        else:
            click.echo(f"FAIL order {result['order_id']}: {result['error']['message']}")

    click.echo(f"Synced {len(results)} orders")


@click.group('payouts')
def payouts_group():
    """Payout review commands."""


@payouts_group.command('pending')
@with_appcontext
def pending_payouts_cli():
    """List open payout requests, oldest first."""
    payouts = payout_service.list_pending_payouts()
    if not payouts:
        click.echo("No open payout requests.")
        return

    click.echo(f"{'ID':<6} {'Seller':<8} {'Amount':>12} {'Status':<10} {'Requested'}")
    for payout in payouts:
        data = payout.to_dict()
        click.echo(
            f"{data['id']:<6} {data['seller_id']:<8} {data['amount_cents']:>12} "
            f"{data['status']:<10} {data['requested_at']}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(categories_group)
    app.cli.add_command(wallets_group)
    app.cli.add_command(orders_group)
    app.cli.add_command(payouts_group)
