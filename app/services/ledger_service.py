"""
Ledger Service for the loyalty token economy.

Award processing and balance reads:
- award_tokens credits a customer's balance and appends an earn transaction
- get_balance / get_history read a balance and its ledger
- verify_balance recomputes a balance from its ledger

ARCHITECTURE:
- TokenBalance is a denormalized running total; TokenTransaction is the
  authoritative, append-only record
- Every mutation locks the balance row (SELECT ... FOR UPDATE) and writes the
  transaction's balance_after under that same lock
- Business-rule violations come back as failure results
  ({'success': False, 'error': ..., 'error_code': ...}); storage errors and
  exhausted lock retries propagate

Callers pass the already-verified actor; tenant/customer relationships are
re-checked here regardless of how much the caller is trusted.
"""

import math
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..models import (
    TokenBalance,
    TokenSourceType,
    TokenTransaction,
    TokenTransactionType,
)
from ..utils.exceptions import (
    AccessDeniedError,
    BusinessRuleError,
    NotFoundError,
    ValidationError,
)
from ..utils.locking import lock_for_update, run_with_retry
from ..utils.validation import parse_int
from .expiration_service import ExpirationSweeper
from .membership_resolver import MembershipResolver
from .program_registry import ProgramRegistry
from .tenant_guard import require_customer_in_tenant


def lock_balance(tenant_id: int, program_id: int, customer_id: int,
                 create: bool = False) -> Optional[TokenBalance]:
    """
    Lock a (program, customer) balance row for the rest of the transaction.

    With create=True a missing balance is inserted under a savepoint; if a
    concurrent first award wins the insert, the existing row is locked
    instead.
    """
    query = TokenBalance.query.filter_by(program_id=program_id, customer_id=customer_id)
    balance = lock_for_update(query).first()
    if balance is not None or not create:
        return balance

    balance = TokenBalance(
        tenant_id=tenant_id,
        program_id=program_id,
        customer_id=customer_id,
        current_balance=0,
        total_earned=0,
        total_spent=0,
        total_expired=0,
    )
    try:
        with db.session.begin_nested():
            db.session.add(balance)
    except IntegrityError:
        balance = lock_for_update(query).one()
    return balance


class LedgerService:
    """
    Award processing and balance queries.

    Usage:
        service = LedgerService(actor='staff:42')

        result = service.award_tokens(program_id, customer_id, 100, 'manual',
                                      'Welcome bonus')
        balance = service.get_balance(tenant_id, program_id, customer_id)
    """

    def __init__(self, actor: str = 'system'):
        """
        Args:
            actor: Verified identity recorded as created_by on every write
        """
        self.actor = actor
        self.registry = ProgramRegistry()
        self.resolver = MembershipResolver()

    # ==================== Award ====================

    def award_tokens(
        self,
        program_id: int,
        customer_id: int,
        tokens: int,
        award_type: str = TokenSourceType.MANUAL.value,
        description: str = None,
        source_id: str = None,
        source_type: str = None,
        tenant_id: int = None,
    ) -> Dict[str, Any]:
        """
        Credit tokens to a customer's balance in a program.

        Args:
            program_id: Program to award in
            customer_id: Customer receiving the tokens; must belong to the program's tenant
            tokens: Base amount before the membership multiplier
            award_type: Category of award (manual, appointment, ...)
            description: Human-readable description
            source_id: Reference to the originating record
            source_type: Kind of originating record (defaults to award_type)
            tenant_id: When given, the program must belong to this tenant

        Returns:
            {'success': True, 'balance_id', 'new_balance', 'transaction_id',
             'tokens_awarded', 'multiplier'} or a failure result
        """
        try:
            return run_with_retry(
                lambda: self._award(program_id, customer_id, tokens, award_type,
                                    description, source_id, source_type, tenant_id),
                'award_tokens',
            )
        except BusinessRuleError as e:
            db.session.rollback()
            current_app.logger.info(
                f"Award rejected: program {program_id} customer {customer_id}: {e.message}"
            )
            return e.to_result()
        except SQLAlchemyError as e:
            db.session.rollback()
            current_app.logger.error(f"Award failed: program {program_id} customer {customer_id}: {e}")
            raise

    def _award(self, program_id, customer_id, tokens, award_type, description,
               source_id, source_type, tenant_id) -> Dict[str, Any]:
        if isinstance(tokens, bool) or not isinstance(tokens, int) or tokens <= 0:
            raise ValidationError('Token amount must be a positive integer', 'tokens')
        program_id = parse_int(program_id, 'program_id')
        customer_id = parse_int(customer_id, 'customer_id')

        program = self.registry.get_program(program_id)
        if program is None or not program['is_active']:
            raise NotFoundError('Program', program_id, message='Program not found or inactive')
        if tenant_id is not None and program['tenant_id'] != tenant_id:
            raise AccessDeniedError('Access denied: program belongs to a different tenant')

        require_customer_in_tenant(customer_id, program['tenant_id'])

        multiplier = self.resolver.resolve_multiplier(customer_id, program_id)
        awarded = math.floor(Decimal(tokens) * multiplier)
        if awarded <= 0:
            raise ValidationError(
                f'Award of {tokens} tokens at x{multiplier} rounds down to zero', 'tokens'
            )

        balance = lock_balance(program['tenant_id'], program_id, customer_id, create=True)

        now = datetime.utcnow()
        balance.current_balance += awarded
        balance.total_earned = (balance.total_earned or 0) + awarded
        balance.last_earn_at = now

        expires_at = None
        if program['expiry_days'] and program['expiry_days'] > 0:
            expires_at = now + timedelta(days=program['expiry_days'])

        transaction = TokenTransaction(
            tenant_id=program['tenant_id'],
            program_id=program_id,
            balance_id=balance.id,
            transaction_type=TokenTransactionType.EARN.value,
            award_type=award_type,
            tokens=awarded,
            balance_after=balance.current_balance,
            source_type=source_type or award_type,
            source_id=str(source_id) if source_id is not None else None,
            description=description or f'Earned {awarded} tokens',
            expires_at=expires_at,
            created_by=self.actor,
            created_at=now,
        )
        db.session.add(transaction)
        db.session.flush()

        result = {
            'success': True,
            'balance_id': balance.id,
            'new_balance': balance.current_balance,
            'transaction_id': transaction.id,
            'tokens_awarded': awarded,
            'multiplier': float(multiplier),
            'expires_at': expires_at.isoformat() if expires_at else None,
        }
        db.session.commit()

        current_app.logger.info(
            f"Tokens awarded: customer {customer_id} +{awarded} "
            f"({tokens} base x{multiplier}) in program {program_id}, balance {result['new_balance']}"
        )
        return result

    # ==================== Reads ====================

    def _owned_balance(self, tenant_id: int, program_id: int, customer_id: int) -> TokenBalance:
        program = self.registry.get_program(program_id)
        if program is None:
            raise NotFoundError('Program', program_id)
        if program['tenant_id'] != tenant_id:
            raise AccessDeniedError('Access denied: program belongs to a different tenant')
        require_customer_in_tenant(customer_id, tenant_id)

        balance = TokenBalance.query.filter_by(program_id=program_id, customer_id=customer_id).first()
        if balance is None:
            raise NotFoundError('Balance', message='No token balance for this customer in this program')
        return balance

    def get_balance(self, tenant_id: int, program_id: int, customer_id: int) -> Dict[str, Any]:
        """
        Balance with lifetime counters and expiry outlook.

        Returns:
            {'success': True, 'balance': {...}, 'tokens': {'total', 'available',
             'expiring_soon', 'expiring_soon_days', 'next_expiry'}}
        """
        try:
            balance = self._owned_balance(tenant_id, program_id, customer_id)
        except BusinessRuleError as e:
            return e.to_result()

        return {
            'success': True,
            'balance': balance.to_dict(),
            'tokens': ExpirationSweeper().expiring_for_balance(balance),
        }

    def get_history(
        self,
        tenant_id: int,
        program_id: int,
        customer_id: int,
        page: int = 1,
        per_page: int = 50,
        transaction_type: str = None,
    ) -> Dict[str, Any]:
        """Paginated ledger entries for a balance, newest first."""
        try:
            balance = self._owned_balance(tenant_id, program_id, customer_id)
        except BusinessRuleError as e:
            return e.to_result()

        query = TokenTransaction.query.filter_by(balance_id=balance.id)
        if transaction_type:
            query = query.filter_by(transaction_type=transaction_type)

        pagination = query.order_by(
            TokenTransaction.created_at.desc(), TokenTransaction.id.desc()
        ).paginate(page=page, per_page=per_page, error_out=False)

        return {
            'success': True,
            'transactions': [t.to_dict() for t in pagination.items],
            'total': pagination.total,
            'page': page,
            'pages': pagination.pages,
            'per_page': per_page,
        }

    # ==================== Audit ====================

    def verify_balance(self, balance_id: int) -> Dict[str, Any]:
        """
        Recompute a balance from its ledger.

        Checks that current_balance equals total_earned - total_spent -
        total_expired, that each counter matches its transactions, and that
        the latest balance_after agrees with the balance row.

        Returns:
            {'balance_id', 'ok', 'issues': [...], 'current_balance',
             'ledger_sum', 'earned', 'spent', 'expired'}
        """
        balance = db.session.get(TokenBalance, balance_id)
        if balance is None:
            return {'balance_id': balance_id, 'ok': False, 'issues': ['balance not found']}

        sums = dict(
            db.session.query(TokenTransaction.transaction_type, func.sum(TokenTransaction.tokens))
            .filter(TokenTransaction.balance_id == balance_id)
            .group_by(TokenTransaction.transaction_type)
            .all()
        )
        earned = int(sums.get(TokenTransactionType.EARN.value) or 0)
        spent = -int(sums.get(TokenTransactionType.REDEEM.value) or 0)
        expired = -int(sums.get(TokenTransactionType.EXPIRE.value) or 0)
        ledger_sum = earned - spent - expired

        latest = (
            TokenTransaction.query
            .filter_by(balance_id=balance_id)
            .order_by(TokenTransaction.id.desc())
            .first()
        )

        issues = []
        if balance.current_balance != balance.total_earned - balance.total_spent - balance.total_expired:
            issues.append('counters do not add up to current_balance')
        if balance.current_balance != ledger_sum:
            issues.append(f'ledger sums to {ledger_sum}, balance is {balance.current_balance}')
        if balance.total_earned != earned:
            issues.append(f'total_earned {balance.total_earned} != ledger {earned}')
        if balance.total_spent != spent:
            issues.append(f'total_spent {balance.total_spent} != ledger {spent}')
        if balance.total_expired != expired:
            issues.append(f'total_expired {balance.total_expired} != ledger {expired}')
        if latest is not None and latest.balance_after != balance.current_balance:
            issues.append(f'latest balance_after {latest.balance_after} != balance {balance.current_balance}')
        if balance.current_balance < 0:
            issues.append('negative balance')

        return {
            'balance_id': balance_id,
            'ok': not issues,
            'issues': issues,
            'current_balance': balance.current_balance,
            'ledger_sum': ledger_sum,
            'earned': earned,
            'spent': spent,
            'expired': expired,
        }

    def verify_all(self, tenant_id: int = None) -> List[Dict[str, Any]]:
        """verify_balance for every balance (optionally one tenant's)."""
        query = TokenBalance.query.with_entities(TokenBalance.id).order_by(TokenBalance.id)
        if tenant_id is not None:
            query = query.filter(TokenBalance.tenant_id == tenant_id)
        return [self.verify_balance(balance_id) for (balance_id,) in query.all()]
