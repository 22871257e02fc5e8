"""
Expiration Sweeper.

Batch job that retires earned tokens past their expiry window:

1. Find earn transactions with expires_at <= now that no TokenExpiry row
   has matched yet, grouped by balance.
2. Per balance, in its own short transaction: lock the balance, re-read the
   unmatched earns under the lock, expire min(sum, current_balance) with one
   'expire' transaction, and link every earn row to it.

Tokens already spent cannot be un-spent, so expiration is clamped to what
remains on the balance (no FIFO earn/spend matching). Earn rows are linked
even when nothing is left to expire so they are never reconsidered. The
unique TokenExpiry.earn_transaction_id makes re-runs expire nothing twice,
and the per-balance lock keeps the sweep safe beside live award/redeem
traffic.
"""
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import (
    TokenBalance,
    TokenExpiry,
    TokenSourceType,
    TokenTransaction,
    TokenTransactionType,
)
from ..utils.exceptions import LedgerContentionError
from ..utils.locking import lock_for_update, run_with_retry


class ExpirationSweeper:
    """
    Usage:
        results = ExpirationSweeper().expire_tokens()
        # [{'tenant_id': 1, 'transactions_expired': 3, 'tokens_expired': 120}, ...]
    """

    def __init__(self, actor: str = 'system:expiration'):
        self.actor = actor

    # ==================== Queries ====================

    @staticmethod
    def _unmatched_earns():
        """Earn transactions no sweep has linked yet."""
        return (
            TokenTransaction.query
            .outerjoin(TokenExpiry, TokenExpiry.earn_transaction_id == TokenTransaction.id)
            .filter(
                TokenTransaction.transaction_type == TokenTransactionType.EARN.value,
                TokenTransaction.expires_at.isnot(None),
                TokenExpiry.id.is_(None),
            )
        )

    def find_expirable(self, now: datetime, tenant_id: Optional[int] = None):
        """(balance_id, tenant_id) for balances holding expired, unswept earns."""
        query = (
            self._unmatched_earns()
            .filter(TokenTransaction.expires_at <= now)
            .with_entities(
                TokenTransaction.balance_id,
                TokenTransaction.tenant_id,
            )
            .distinct()
            .order_by(TokenTransaction.balance_id)
        )
        if tenant_id is not None:
            query = query.filter(TokenTransaction.tenant_id == tenant_id)
        return query.all()

    # ==================== Sweep ====================

    def expire_tokens(self, now: datetime = None, tenant_id: Optional[int] = None,
                      dry_run: bool = False) -> List[Dict[str, Any]]:
        """
        Expire overdue tokens across all (or one) tenants.

        Returns:
            One entry per tenant that had tokens expired:
            {'tenant_id', 'transactions_expired', 'tokens_expired'}
        """
        now = now or datetime.utcnow()
        groups = self.find_expirable(now, tenant_id)
        # End the scan's read transaction before taking per-balance locks
        db.session.commit()

        totals = defaultdict(lambda: {'transactions_expired': 0, 'tokens_expired': 0})

        for balance_id, group_tenant_id in groups:
            if dry_run:
                expired = self._estimate_balance(balance_id, now)
            else:
                try:
                    expired = run_with_retry(
                        lambda: self._expire_balance(balance_id, now),
                        f'expire_tokens[balance={balance_id}]',
                    )
                except LedgerContentionError:
                    # Left unmatched; the next sweep picks it up
                    current_app.logger.warning(f"Skipped expiring balance {balance_id}: lock contention")
                    continue
                except IntegrityError:
                    # Another sweep linked these earns first
                    db.session.rollback()
                    current_app.logger.info(f"Balance {balance_id} already swept concurrently")
                    continue

            if expired > 0:
                totals[group_tenant_id]['transactions_expired'] += 1
                totals[group_tenant_id]['tokens_expired'] += expired

        results = [{'tenant_id': t, **counts} for t, counts in sorted(totals.items())]
        if results:
            current_app.logger.info(
                f"{'[DRY RUN] ' if dry_run else ''}Token expiration: "
                f"{sum(r['tokens_expired'] for r in results)} tokens across {len(results)} tenants"
            )
        return results

    def _expire_balance(self, balance_id: int, now: datetime) -> int:
        """Expire one balance's overdue earns under its row lock. Returns tokens expired."""
        balance = lock_for_update(TokenBalance.query.filter_by(id=balance_id)).one()

        earns = (
            self._unmatched_earns()
            .filter(
                TokenTransaction.balance_id == balance_id,
                TokenTransaction.expires_at <= now,
            )
            .order_by(TokenTransaction.id)
            .all()
        )
        if not earns:
            db.session.rollback()
            return 0

        group_sum = sum(e.tokens for e in earns)
        to_expire = min(group_sum, balance.current_balance)
        written_at = datetime.utcnow()

        expire_tx = None
        if to_expire > 0:
            balance.current_balance -= to_expire
            balance.total_expired = (balance.total_expired or 0) + to_expire
            balance.last_expire_at = written_at

            expire_tx = TokenTransaction(
                tenant_id=balance.tenant_id,
                program_id=balance.program_id,
                balance_id=balance.id,
                transaction_type=TokenTransactionType.EXPIRE.value,
                tokens=-to_expire,
                balance_after=balance.current_balance,
                source_type=TokenSourceType.EXPIRY.value,
                description=f'{to_expire} tokens expired',
                created_by=self.actor,
                created_at=written_at,
            )
            db.session.add(expire_tx)
            db.session.flush()

        for earn in earns:
            db.session.add(TokenExpiry(
                earn_transaction_id=earn.id,
                expire_transaction_id=expire_tx.id if expire_tx else None,
                balance_id=balance_id,
                created_at=written_at,
            ))

        new_balance = balance.current_balance
        db.session.commit()

        if to_expire > 0:
            current_app.logger.info(
                f"Expired {to_expire} tokens on balance {balance_id} "
                f"({len(earns)} earn entries, {group_sum - to_expire} already spent), balance now {new_balance}"
            )
        return to_expire

    def _estimate_balance(self, balance_id: int, now: datetime) -> int:
        balance = db.session.get(TokenBalance, balance_id)
        estimate = min(self._overdue_tokens(balance_id, now), balance.current_balance)
        db.session.rollback()
        return estimate

    # ==================== Previews ====================

    def _overdue_tokens(self, balance_id: int, now: datetime) -> int:
        total = (
            self._unmatched_earns()
            .filter(TokenTransaction.balance_id == balance_id, TokenTransaction.expires_at <= now)
            .with_entities(func.coalesce(func.sum(TokenTransaction.tokens), 0))
            .scalar()
        )
        return int(total or 0)

    def expiring_for_balance(self, balance: TokenBalance, days: int = None,
                             now: datetime = None) -> Dict[str, Any]:
        """
        Token availability for one balance.

        available excludes tokens that are already past expiry but not swept
        yet; expiring_soon is what will expire within `days`, capped at what
        is available.
        """
        now = now or datetime.utcnow()
        if days is None:
            days = current_app.config.get('LOYALTY_EXPIRING_SOON_DAYS', 30)
        window_end = now + timedelta(days=days)

        overdue = min(self._overdue_tokens(balance.id, now), balance.current_balance)
        available = balance.current_balance - overdue

        upcoming = (
            self._unmatched_earns()
            .filter(
                TokenTransaction.balance_id == balance.id,
                TokenTransaction.expires_at > now,
                TokenTransaction.expires_at <= window_end,
            )
            .with_entities(func.coalesce(func.sum(TokenTransaction.tokens), 0))
            .scalar()
        )
        next_expiry = (
            self._unmatched_earns()
            .filter(TokenTransaction.balance_id == balance.id, TokenTransaction.expires_at > now)
            .with_entities(func.min(TokenTransaction.expires_at))
            .scalar()
        )

        return {
            'total': balance.current_balance,
            'available': available,
            'expiring_soon': min(int(upcoming or 0), available),
            'expiring_soon_days': days,
            'next_expiry': next_expiry.isoformat() if next_expiry else None,
        }

    def preview_expiring_tokens(self, days: int = 30, tenant_id: Optional[int] = None,
                                now: datetime = None) -> List[Dict[str, Any]]:
        """
        Balances with tokens expiring within `days`, soonest first.

        Amounts are capped at the current balance, matching what a sweep
        would actually expire.
        """
        now = now or datetime.utcnow()
        window_end = now + timedelta(days=days)

        query = (
            self._unmatched_earns()
            .join(TokenBalance, TokenBalance.id == TokenTransaction.balance_id)
            .filter(TokenTransaction.expires_at > now, TokenTransaction.expires_at <= window_end)
            .with_entities(
                TokenBalance.id,
                TokenBalance.tenant_id,
                TokenBalance.program_id,
                TokenBalance.customer_id,
                TokenBalance.current_balance,
                func.sum(TokenTransaction.tokens),
                func.min(TokenTransaction.expires_at),
            )
            .group_by(
                TokenBalance.id,
                TokenBalance.tenant_id,
                TokenBalance.program_id,
                TokenBalance.customer_id,
                TokenBalance.current_balance,
            )
            .order_by(func.min(TokenTransaction.expires_at))
        )
        if tenant_id is not None:
            query = query.filter(TokenBalance.tenant_id == tenant_id)

        preview = []
        for balance_id, b_tenant_id, program_id, customer_id, current, tokens, next_expiry in query.all():
            expiring = min(int(tokens or 0), current)
            if expiring <= 0:
                continue
            preview.append({
                'balance_id': balance_id,
                'tenant_id': b_tenant_id,
                'program_id': program_id,
                'customer_id': customer_id,
                'expiring_tokens': expiring,
                'next_expiry': next_expiry.isoformat() if next_expiry else None,
            })
        return preview
