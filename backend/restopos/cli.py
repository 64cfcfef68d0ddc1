# Overview: Flask CLI command groups for bootstrap, inspection, and reconciliation.

# backend/restopos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to "restopos:create_app".
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# POS sessions:
# - python -m flask sessions list --branch-id 1 --status open
#   List recent sessions.
# - python -m flask sessions audit 12
#   Compare a session's running totals with the payment log.
#
# Promotions / delivery:
# - python -m flask promos list --active-only
# - python -m flask delivery show 1
#   Show a branch's delivery pricing.

import click
from flask.cli import with_appcontext

from .extensions import db
from .money import format_money
from .services import delivery_service, discount_service, session_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created.")


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

    click.echo("PASS Database reset complete.")


# =============================================================================
# POS SESSIONS
# =============================================================================

@click.group('sessions')
def sessions_group():
    """POS session inspection and reconciliation commands."""


@sessions_group.command('list')
@click.option('--branch-id', type=int, help='Filter by branch ID')
@click.option('--status', type=click.Choice(['open', 'closed']), help='Filter by status')
@click.option('--limit', type=int, default=20, help='Max sessions to show')
@with_appcontext
def list_sessions_cli(branch_id, status, limit):
    """
    List POS sessions.

    Example:
        flask sessions list
        flask sessions list --branch-id 1 --status open
    """
    sessions = session_service.list_sessions(branch_id=branch_id, status=status, limit=limit)
    if not sessions:
        click.echo("No sessions found.")
        return

    for s in sessions:
        difference = format_money(s.cash_difference_cents) if s.cash_difference_cents is not None else "-"
        click.echo(
            f"{s.id:>5}  {s.session_number:<16} branch={s.branch_id} till={s.till:<6} "
            f"{s.status.value:<6} sales={format_money(s.total_sales_cents):>12} "
            f"orders={s.total_orders:<4} diff={difference}"
        )


@sessions_group.command('audit')
@click.argument('session_id', type=int)
@with_appcontext
def audit_session_cli(session_id):
    """
    Compare a session's running totals with the payment log.

    Exits with status 1 when they disagree.
    """
    report = session_service.audit_session(session_id)
    click.echo(f"Session {report['session_number']} ({report['status']})")

    for item in report["discrepancies"]:
        click.echo(
            f"FAIL {item['field']}: session={item['session']} payment_log={item['payment_log']}"
        )
    for payment_id in report["unapplied_payment_ids"]:
        click.echo(f"FAIL payment {payment_id} is in the log but was never applied")

    if report["matches"]:
        click.echo("PASS Running totals match the payment log.")
    else:
        raise SystemExit(1)


# =============================================================================
# PROMOTIONS & DELIVERY
# =============================================================================

@click.group('promos')
def promos_group():
    """Promo code inspection commands."""


@promos_group.command('list')
@click.option('--branch-id', type=int, help='Codes valid at this branch')
@click.option('--active-only', is_flag=True, help='Hide inactive codes')
@with_appcontext
def list_promos_cli(branch_id, active_only):
    promos = discount_service.list_promo_codes(branch_id, active_only)
    if not promos:
        click.echo("No promo codes found.")
        return

    for p in promos:
        limit = p.usage_limit if p.usage_limit is not None else "inf"
        scope = f"branch {p.branch_id}" if p.branch_id else "all branches"
        state = "active" if p.is_active else "inactive"
        click.echo(
            f"{p.code:<16} {p.discount_type.value:<10} {p.discount_value!s:>8}  "
            f"used {p.usage_count}/{limit}  {scope}  {state}"
        )


@click.group('delivery')
def delivery_group():
    """Delivery pricing inspection commands."""


@delivery_group.command('show')
@click.argument('branch_id', type=int)
@with_appcontext
def show_delivery_cli(branch_id):
    config = delivery_service.get_delivery_config(branch_id)
    if config is None:
        click.echo(f"Branch {branch_id} has no delivery config; the default fee applies.")
        return

    for key, value in config.to_dict().items():
        click.echo(f"{key:<24} {value}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(sessions_group)
    app.cli.add_command(promos_group)
    app.cli.add_command(delivery_group)
