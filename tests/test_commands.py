"""
Tests for the `flask loyalty` CLI commands and the scheduled jobs that
wrap the same services.
"""
from datetime import datetime, timedelta

import pytest

from app.extensions import db
from app.models import TokenBalance, TokenTransaction
from app.utils import scheduler


@pytest.fixture
def overdue_balance(app, tenant, program, customer):
    """A balance holding 70 tokens whose earn entry expired yesterday."""
    with app.app_context():
        balance = TokenBalance(
            tenant_id=tenant, program_id=program, customer_id=customer,
            current_balance=70, total_earned=70, total_spent=0, total_expired=0,
        )
        db.session.add(balance)
        db.session.flush()
        db.session.add(TokenTransaction(
            tenant_id=tenant, program_id=program, balance_id=balance.id,
            transaction_type='earn', award_type='manual', tokens=70, balance_after=70,
            source_type='manual', expires_at=datetime.utcnow() - timedelta(days=1),
            created_by='test', created_at=datetime.utcnow() - timedelta(days=366),
        ))
        db.session.commit()
        return balance.id


class TestExpireTokensCommand:

    def test_nothing_to_expire(self, app, program):
        result = app.test_cli_runner().invoke(args=['loyalty', 'expire-tokens'])

        assert result.exit_code == 0
        assert 'No tokens to expire' in result.output

    def test_expires_overdue_tokens(self, app, tenant, overdue_balance):
        result = app.test_cli_runner().invoke(args=['loyalty', 'expire-tokens'])

        assert result.exit_code == 0
        assert f'Tenant {tenant}: 1 balances, 70 tokens expired' in result.output
        assert 'TOTAL: 70 tokens across 1 tenants' in result.output

        with app.app_context():
            assert db.session.get(TokenBalance, overdue_balance).current_balance == 0

    def test_dry_run(self, app, overdue_balance):
        result = app.test_cli_runner().invoke(args=['loyalty', 'expire-tokens', '--dry-run'])

        assert '[DRY RUN]' in result.output
        with app.app_context():
            assert db.session.get(TokenBalance, overdue_balance).current_balance == 70

    def test_unknown_tenant(self, app):
        result = app.test_cli_runner().invoke(args=['loyalty', 'expire-tokens', '--tenant-id', '999'])

        assert 'Tenant 999 not found' in result.output


class TestOtherCommands:

    def test_expire_memberships(self, app, customer, make_membership):
        make_membership(customer, end_date=datetime.utcnow() - timedelta(days=2))

        result = app.test_cli_runner().invoke(args=['loyalty', 'expire-memberships'])

        assert result.exit_code == 0
        assert 'Expired memberships: 1' in result.output

    def test_expiring_tokens(self, app, tenant, customer, fund):
        fund(customer, 40)

        result = app.test_cli_runner().invoke(args=['loyalty', 'expiring-tokens', '--days', '400'])

        assert f'Tenant {tenant} customer {customer}: 40 tokens' in result.output

    def test_verify_balances_ok(self, app, customer, fund):
        fund(customer, 40)

        result = app.test_cli_runner().invoke(args=['loyalty', 'verify-balances'])

        assert result.exit_code == 0
        assert 'Checked 1 balances, 0 with issues' in result.output

    def test_verify_balances_reports_drift(self, app, customer, fund):
        balance_id = fund(customer, 40)['balance_id']
        with app.app_context():
            db.session.get(TokenBalance, balance_id).total_earned = 41
            db.session.commit()

        result = app.test_cli_runner().invoke(args=['loyalty', 'verify-balances'])

        assert result.exit_code == 1
        assert f'Balance {balance_id}:' in result.output


class TestScheduledJobs:

    def test_scheduler_disabled_in_testing(self, app):
        assert scheduler.init_scheduler(app) is None

    def test_token_expiration_job(self, app, overdue_balance, monkeypatch):
        monkeypatch.setattr(scheduler, '_flask_app', app)

        scheduler.run_token_expiration()

        with app.app_context():
            assert db.session.get(TokenBalance, overdue_balance).current_balance == 0

    def test_membership_expiration_job(self, app, customer, make_membership, monkeypatch):
        make_membership(customer, end_date=datetime.utcnow() - timedelta(days=2))
        monkeypatch.setattr(scheduler, '_flask_app', app)

        scheduler.run_membership_expiration()

        with app.app_context():
            from app.models import Membership
            assert Membership.query.one().status == 'expired'
