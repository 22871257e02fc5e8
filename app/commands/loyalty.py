"""
CLI Commands for loyalty ledger maintenance.

These commands can be run manually or via cron jobs when the in-process
scheduler is disabled:

# Token expiration (daily, shortly after midnight UTC)
15 0 * * * cd /app && flask loyalty expire-tokens

# Membership expiration (daily)
5 0 * * * cd /app && flask loyalty expire-memberships

# Conservation audit
0 3 * * 0 cd /app && flask loyalty verify-balances
"""

import click
from flask.cli import with_appcontext

from ..models import Tenant
from ..services import ExpirationSweeper, LedgerService, MembershipResolver


@click.group('loyalty')
def loyalty_cli():
    """Loyalty ledger commands."""
    pass


@loyalty_cli.command('expire-tokens')
@click.option('--tenant-id', type=int, help='Specific tenant ID (or all if not specified)')
@click.option('--dry-run', is_flag=True, help='Preview without expiring tokens')
@with_appcontext
def expire_tokens(tenant_id, dry_run):
    """
    Expire earned tokens that are past their expiry date.

    Safe to re-run; already expired tokens are never expired twice.
    """
    if tenant_id and not Tenant.query.filter_by(id=tenant_id).first():
        click.echo(f"Tenant {tenant_id} not found")
        return

    prefix = '[DRY RUN] ' if dry_run else ''
    results = ExpirationSweeper().expire_tokens(tenant_id=tenant_id, dry_run=dry_run)

    if not results:
        click.echo(f"{prefix}No tokens to expire")
        return

    for row in results:
        click.echo(
            f"{prefix}Tenant {row['tenant_id']}: {row['transactions_expired']} balances, "
            f"{row['tokens_expired']} tokens expired"
        )

    total = sum(r['tokens_expired'] for r in results)
    click.echo(f"\n{prefix}TOTAL: {total} tokens across {len(results)} tenants")


@loyalty_cli.command('expire-memberships')
@click.option('--dry-run', is_flag=True, help='Preview without changing memberships')
@with_appcontext
def expire_memberships(dry_run):
    """Mark active memberships past their end date as expired."""
    result = MembershipResolver().expire_memberships(dry_run=dry_run)
    click.echo(f"{'[DRY RUN] ' if dry_run else ''}Expired memberships: {result['expired']}")


@loyalty_cli.command('expiring-tokens')
@click.option('--tenant-id', type=int, help='Specific tenant ID (or all if not specified)')
@click.option('--days', default=30, show_default=True, help='Look-ahead window in days')
@with_appcontext
def expiring_tokens(tenant_id, days):
    """List balances with tokens expiring soon."""
    preview = ExpirationSweeper().preview_expiring_tokens(days=days, tenant_id=tenant_id)

    if not preview:
        click.echo(f"No tokens expiring in the next {days} days")
        return

    for row in preview:
        click.echo(
            f"  Tenant {row['tenant_id']} customer {row['customer_id']}: "
            f"{row['expiring_tokens']} tokens, next expiry {row['next_expiry']}"
        )
    click.echo(f"\n{len(preview)} balances with tokens expiring in the next {days} days")


@loyalty_cli.command('verify-balances')
@click.option('--tenant-id', type=int, help='Specific tenant ID (or all if not specified)')
@with_appcontext
def verify_balances(tenant_id):
    """
    Recompute every balance from the ledger and report mismatches.

    Exits with status 1 if any balance fails.
    """
    reports = LedgerService(actor='system:audit').verify_all(tenant_id=tenant_id)
    failures = [r for r in reports if not r['ok']]

    for report in failures:
        click.echo(f"  Balance {report['balance_id']}: {'; '.join(report['issues'])}")

    click.echo(f"Checked {len(reports)} balances, {len(failures)} with issues")
    if failures:
        raise SystemExit(1)


def init_app(app):
    """Register loyalty commands with the Flask app."""
    app.cli.add_command(loyalty_cli)
