# Overview: Flask CLI command groups for payout operations and database bootstrap.

# backend/finboost/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to "finboost:create_app".
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables that do not exist yet (dev/test; production uses migrations).
#
# Payout batches:
# - python -m flask payouts list --cycle-id 18
#   List a cycle's batches with status counters.
# - python -m flask payouts cancel 42 --admin-id 1 --reason "Wrong amounts"
#   Cancel a batch locally (the PayPal batch is not touched).
# - python -m flask payouts refresh 42
#   Poll PayPal for the batch and reconcile the result.
# - python -m flask payouts retry 42 --admin-id 1
#   Re-send the failed items of a failed or partially completed batch.

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .services import disbursement_service, payout_store
from .services.errors import PayoutError


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create database tables."""
    db.create_all()
    click.echo("OK Database tables created")


@click.group('payouts')
def payouts_group():
    """Payout batch inspection and repair."""


@payouts_group.command('list')
@click.option('--cycle-id', type=int, required=True, help='Cycle ID')
@click.option('--active-only', is_flag=True, help='Hide cancelled batches')
@with_appcontext
def list_batches(cycle_id, active_only):
    """List payout batches for a cycle."""
    batches = payout_store.list_batches_for_cycle(cycle_id, include_cancelled=not active_only)

    if not batches:
        click.echo(f"No payout batches for cycle {cycle_id}.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<6} {'Sender Batch ID':<44} {'Status':<20} {'Items':<7} {'OK':<6} {'Fail':<6} {'Pend':<6} {'Amount'}")
    click.echo("="*100)

    for b in batches:
        amount = f"{b.total_amount / 100:.2f}"
        click.echo(
            f"{b.id:<6} {b.sender_batch_id:<44} {b.status:<20} {b.total_recipients:<7} "
            f"{b.successful_count:<6} {b.failed_count:<6} {b.pending_count:<6} {amount}"
        )

    click.echo("="*100 + "\n")


@payouts_group.command('cancel')
@click.argument('batch_id', type=int)
@click.option('--admin-id', type=int, required=True, help='Admin performing the cancellation')
@click.option('--reason', default=None, help='Reason recorded on the batch')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def cancel_batch(batch_id, admin_id, reason, yes):
    """Cancel a payout batch so the request can be attempted again."""
    if not yes:
        click.confirm(f"Cancel payout batch {batch_id}?", abort=True)
    try:
        batch = disbursement_service.cancel_batch(batch_id, admin_id, reason)
    except PayoutError as e:
        raise click.ClickException(str(e))
    click.echo(f"OK Batch {batch['id']} cancelled ({batch['sender_batch_id']})")


@payouts_group.command('refresh')
@click.argument('batch_id', type=int)
@with_appcontext
def refresh_batch(batch_id):
    """Poll PayPal for a batch and reconcile it."""
    try:
        result = disbursement_service.refresh_batch(batch_id, current_app.extensions["paypal_client"])
    except PayoutError as e:
        raise click.ClickException(str(e))
    click.echo(
        f"OK Batch {batch_id}: {result.batch_status} "
        f"(success={result.successful_payouts}, failed={result.failed_payouts}, "
        f"pending={result.pending_payouts}, unclaimed={result.unclaimed_payouts}, "
        f"rewards created={result.user_rewards_created})"
    )
    for problem in result.consistency_errors:
        click.echo(f"WARN {problem}")


@payouts_group.command('retry')
@click.argument('batch_id', type=int)
@click.option('--admin-id', type=int, required=True, help='Admin performing the retry')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def retry_batch(batch_id, admin_id, yes):
    """Cancel a failed batch and submit its failed items as the next attempt."""
    if not yes:
        click.confirm(f"Retry failed items of payout batch {batch_id}?", abort=True)
    try:
        result = disbursement_service.retry_batch(batch_id, admin_id, current_app.extensions["paypal_client"])
    except PayoutError as e:
        raise click.ClickException(str(e))
    click.echo(
        f"{'OK' if result['success'] else 'WARN'} Batch {batch_id} retried as "
        f"{result['batchId']} ({result['senderBatchId']}): {result['status']}"
    )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(payouts_group)
