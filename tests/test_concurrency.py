"""
Concurrency tests for ledger mutations.

These run against a file-backed SQLite database so that every worker thread
gets its own connection; writers are serialized by the engine's
BEGIN IMMEDIATE transactions the same way FOR UPDATE serializes them on
PostgreSQL.
"""
import sqlite3
import threading
from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from app import create_app
from app.extensions import db
from app.models import Redemption, Reward, TokenBalance, TokenTransaction
from app.services import ExpirationSweeper, LedgerService, RedemptionService
from app.utils.exceptions import LedgerContentionError
from app.utils.locking import is_lock_contention, run_with_retry


@pytest.fixture
def app(tmp_path):
    """Overrides the in-memory app with a file database shared across threads."""
    app = create_app('testing', config_overrides={
        'SQLALCHEMY_DATABASE_URI': f'sqlite:///{tmp_path}/ledger.db',
        'SQLALCHEMY_ENGINE_OPTIONS': {'connect_args': {'timeout': 30, 'check_same_thread': False}},
    })
    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()


def _run_concurrently(app, target, args_list):
    """Start one thread per args tuple at the same moment; return their results."""
    barrier = threading.Barrier(len(args_list))
    results = [None] * len(args_list)
    errors = []

    def worker(index, args):
        barrier.wait()
        try:
            with app.app_context():
                results[index] = target(*args)
                db.session.remove()
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(i, args)) for i, args in enumerate(args_list)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)

    assert errors == []
    return results


class TestConcurrentRedemptions:

    def test_last_unit_goes_to_exactly_one_customer(self, app, tenant, make_customer, make_reward, fund):
        customers = [make_customer(name=f'Customer {i}') for i in range(8)]
        for customer_id in customers:
            fund(customer_id, 100)
        limited = make_reward(stock_limit=1)

        results = _run_concurrently(
            app,
            lambda customer_id: RedemptionService().redeem_reward(tenant, customer_id, limited),
            [(c,) for c in customers],
        )

        assert sum(1 for r in results if r['success']) == 1
        assert {r['error_code'] for r in results if not r['success']} == {'STOCK_EXHAUSTED'}

        with app.app_context():
            assert db.session.get(Reward, limited).stock_used == 1
            assert Redemption.query.count() == 1
            spent = sum(b.total_spent for b in TokenBalance.query.all())
            assert spent == 50

    def test_one_balance_is_never_overdrawn(self, app, tenant, customer, make_reward, fund):
        fund(customer, 100)
        reward = make_reward(tokens_required=30)

        results = _run_concurrently(
            app,
            lambda: RedemptionService().redeem_reward(tenant, customer, reward),
            [()] * 6,
        )

        assert sum(1 for r in results if r['success']) == 3
        assert {r['error_code'] for r in results if not r['success']} == {'INSUFFICIENT_BALANCE'}

        with app.app_context():
            balance = TokenBalance.query.one()
            assert balance.current_balance == 10
            assert LedgerService().verify_balance(balance.id)['ok'] is True


class TestConcurrentAwards:

    def test_parallel_awards_all_land(self, app, program, customer):
        results = _run_concurrently(
            app,
            lambda: LedgerService().award_tokens(program, customer, 10),
            [()] * 10,
        )

        assert all(r['success'] for r in results)
        assert sorted(r['new_balance'] for r in results) == list(range(10, 101, 10))

        with app.app_context():
            assert TokenBalance.query.count() == 1
            balance = TokenBalance.query.one()
            assert balance.current_balance == 100
            assert TokenTransaction.query.count() == 10
            assert LedgerService().verify_balance(balance.id)['ok'] is True


class TestSweepDuringTraffic:

    def test_sweep_alongside_awards_and_redemptions(self, app, tenant, program, customer, make_reward, fund):
        balance_id = fund(customer, 100)['balance_id']
        reward = make_reward(tokens_required=30)
        later = datetime.utcnow() + timedelta(days=366)

        def operation(kind):
            if kind == 'sweep':
                return ExpirationSweeper().expire_tokens(now=later)
            if kind == 'redeem':
                return RedemptionService().redeem_reward(tenant, customer, reward)
            return LedgerService().award_tokens(program, customer, 10)

        kinds = ['sweep', 'redeem', 'award', 'sweep', 'redeem', 'award', 'redeem']
        results = _run_concurrently(app, operation, [(kind,) for kind in kinds])

        for kind, result in zip(kinds, results):
            if kind == 'award':
                assert result['success'] is True
            elif kind == 'redeem' and not result['success']:
                assert result['error_code'] == 'INSUFFICIENT_BALANCE'

        with app.app_context():
            sweeper = ExpirationSweeper()
            sweeper.expire_tokens(now=later)

            assert sweeper.expire_tokens(now=later) == []

            balance = db.session.get(TokenBalance, balance_id)
            assert balance.current_balance == 0
            assert balance.total_earned == 120
            assert balance.total_spent == 30 * Redemption.query.count()
            assert LedgerService().verify_balance(balance_id)['ok'] is True


class TestRetry:
    """Lock contention classification and retry."""

    def test_sqlite_locked_is_contention(self):
        exc = OperationalError('UPDATE token_balances', {}, sqlite3.OperationalError('database is locked'))
        assert is_lock_contention(exc) is True

    def test_postgres_lock_timeout_is_contention(self):
        orig = MagicMock(pgcode='55P03')
        exc = OperationalError('SELECT ... FOR UPDATE', {}, orig)
        assert is_lock_contention(exc) is True

    def test_other_errors_are_not_contention(self):
        exc = OperationalError('SELECT 1', {}, sqlite3.OperationalError('no such table: rewards'))
        assert is_lock_contention(exc) is False
        assert is_lock_contention(IntegrityError('INSERT', {}, Exception('unique'))) is False

    def test_retries_then_succeeds(self, app):
        calls = []

        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise OperationalError('UPDATE', {}, sqlite3.OperationalError('database is locked'))
            return 'done'

        with app.app_context():
            assert run_with_retry(flaky, 'flaky', attempts=3, backoff_base=0) == 'done'
        assert len(calls) == 3

    def test_exhausted_retries_raise_contention_error(self, app):
        def locked():
            raise OperationalError('UPDATE', {}, sqlite3.OperationalError('database is locked'))

        with app.app_context():
            with pytest.raises(LedgerContentionError) as info:
                run_with_retry(locked, 'award_tokens', attempts=2, backoff_base=0)

        assert info.value.retryable is True
        assert info.value.code == 'LEDGER_CONTENTION'

    def test_non_contention_errors_propagate(self, app):
        calls = []

        def broken():
            calls.append(1)
            raise OperationalError('SELECT', {}, sqlite3.OperationalError('no such table: rewards'))

        with app.app_context():
            with pytest.raises(OperationalError):
                run_with_retry(broken, 'broken', attempts=3, backoff_base=0)
        assert len(calls) == 1
