"""
Redemption Processor.

Exchanges a customer's tokens for a catalog reward. One redemption is one
database transaction:

    customer ownership -> lock Reward -> availability/stock -> caps
    -> lock Balance -> sufficient tokens -> debit -> Redemption
    -> compensating 'redeem' transaction -> stock_used + 1

Reward is always locked before Balance. Nothing is visible until commit, so a
failure at any step simply rolls the whole unit back.
"""
import secrets
from datetime import datetime, timedelta
from typing import Any, Dict

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import (
    LoyaltyProgram,
    Redemption,
    RedemptionStatus,
    Reward,
    TokenBalance,
    TokenSourceType,
    TokenTransaction,
    TokenTransactionType,
)
from ..utils.exceptions import (
    AccessDeniedError,
    BusinessRuleError,
    InsufficientBalanceError,
    NotFoundError,
    RedemptionLimitReachedError,
    StockExhaustedError,
)
from ..utils.locking import lock_for_update, run_with_retry
from ..utils.validation import parse_int
from .program_registry import ProgramRegistry
from .tenant_guard import require_customer_in_tenant

# No 0/O or 1/I; 32 symbols x 12 characters = 60 bits per code
CODE_ALPHABET = 'ABCDEFGHJKLMNPQRSTUVWXYZ23456789'
CODE_LENGTH = 12


def generate_redemption_code(length: int = CODE_LENGTH) -> str:
    """
    Random redemption code.

    Collisions are negligible at this entropy and are not re-checked; the
    unique index on redemptions.code turns one into an IntegrityError.
    """
    return ''.join(secrets.choice(CODE_ALPHABET) for _ in range(length))


class RedemptionService:
    """
    Usage:
        service = RedemptionService(actor='customer:17')
        result = service.redeem_reward(tenant_id, customer_id, reward_id)
        if result['success']:
            code = result['redemption_code']
    """

    def __init__(self, actor: str = 'system'):
        self.actor = actor
        self.registry = ProgramRegistry()

    def redeem_reward(self, tenant_id: int, customer_id: int, reward_id: int) -> Dict[str, Any]:
        """
        Redeem a reward for a customer.

        Returns:
            {'success': True, 'redemption_id', 'redemption_code', 'new_balance',
             'tokens_used', 'valid_until'} or a failure result
        """
        try:
            return run_with_retry(
                lambda: self._redeem(tenant_id, customer_id, reward_id),
                'redeem_reward',
            )
        except BusinessRuleError as e:
            db.session.rollback()
            current_app.logger.info(
                f"Redemption rejected: tenant {tenant_id} customer {customer_id} "
                f"reward {reward_id}: {e.message}"
            )
            return e.to_result()
        except SQLAlchemyError as e:
            db.session.rollback()
            current_app.logger.error(
                f"Redemption failed: tenant {tenant_id} customer {customer_id} reward {reward_id}: {e}"
            )
            raise

    def _redeem(self, tenant_id: int, customer_id: int, reward_id: int) -> Dict[str, Any]:
        now = datetime.utcnow()
        customer_id = parse_int(customer_id, 'customer_id')
        reward_id = parse_int(reward_id, 'reward_id')

        require_customer_in_tenant(customer_id, tenant_id)

        reward = lock_for_update(Reward.query.filter_by(id=reward_id)).first()
        if reward is None:
            raise NotFoundError('Reward', reward_id)

        program = db.session.get(LoyaltyProgram, reward.program_id)
        if reward.tenant_id != tenant_id or program.tenant_id != tenant_id:
            raise AccessDeniedError('Access denied: reward belongs to a different tenant')

        if not program.is_active or not reward.is_available(now):
            raise NotFoundError('Reward', message='Reward not found or not available')

        if reward.stock_limit is not None and (reward.stock_used or 0) >= reward.stock_limit:
            raise StockExhaustedError(reward.name, reward.stock_limit)

        # Counts are stable while the reward row is locked
        claimed = Redemption.query.filter(
            Redemption.reward_id == reward.id,
            Redemption.status != RedemptionStatus.CANCELLED.value,
        )
        if reward.max_per_customer is not None:
            if claimed.filter(Redemption.customer_id == customer_id).count() >= reward.max_per_customer:
                raise RedemptionLimitReachedError('customer', reward.max_per_customer)
        if reward.max_total is not None and claimed.count() >= reward.max_total:
            raise RedemptionLimitReachedError('reward', reward.max_total)

        balance = lock_for_update(
            TokenBalance.query.filter_by(program_id=reward.program_id, customer_id=customer_id)
        ).first()
        if balance is None:
            raise NotFoundError('Balance', message='No token balance for this customer in this program')
        if balance.current_balance < reward.tokens_required:
            raise InsufficientBalanceError(balance.current_balance, reward.tokens_required)

        balance.current_balance -= reward.tokens_required
        balance.total_spent = (balance.total_spent or 0) + reward.tokens_required
        balance.last_redeem_at = now

        valid_days = reward.valid_days
        if valid_days is None:
            valid_days = current_app.config.get('LOYALTY_DEFAULT_VALID_DAYS', 30)
        redemption = Redemption(
            tenant_id=tenant_id,
            program_id=reward.program_id,
            balance_id=balance.id,
            customer_id=customer_id,
            reward_id=reward.id,
            tokens_used=reward.tokens_required,
            code=generate_redemption_code(),
            valid_until=now + timedelta(days=valid_days),
            status=RedemptionStatus.PENDING.value,
            reward_snapshot=reward.to_dict(),
            created_by=self.actor,
            created_at=now,
        )
        db.session.add(redemption)
        db.session.flush()

        db.session.add(TokenTransaction(
            tenant_id=tenant_id,
            program_id=reward.program_id,
            balance_id=balance.id,
            transaction_type=TokenTransactionType.REDEEM.value,
            tokens=-reward.tokens_required,
            balance_after=balance.current_balance,
            source_type=TokenSourceType.REDEMPTION.value,
            source_id=str(redemption.id),
            description=f'Redeemed: {reward.name}',
            created_by=self.actor,
            created_at=now,
        ))

        reward.stock_used = (reward.stock_used or 0) + 1

        result = {
            'success': True,
            'redemption_id': redemption.id,
            'redemption_code': redemption.code,
            'tokens_used': reward.tokens_required,
            'new_balance': balance.current_balance,
            'valid_until': redemption.valid_until.isoformat(),
        }
        program_id = reward.program_id
        db.session.commit()

        self.registry.invalidate_rewards(program_id)
        current_app.logger.info(
            f"Reward redeemed: customer {customer_id} reward {reward_id} "
            f"-{result['tokens_used']} tokens, balance {result['new_balance']}"
        )
        return result

    def validate_redemption_code(self, code: str, tenant_id: int) -> Dict[str, Any]:
        """
        Check a redemption code presented at the counter.

        Codes of other tenants are reported as not found.

        Returns:
            {'is_valid': bool, 'status': str|None, 'error': str|None, 'redemption': dict|None}
        """
        normalized = (code or '').strip().upper()
        redemption = Redemption.query.filter_by(code=normalized, tenant_id=tenant_id).first()

        if redemption is None:
            return {'is_valid': False, 'status': None, 'error': 'Redemption code not found', 'redemption': None}

        error = None
        if redemption.status == RedemptionStatus.FULFILLED.value:
            error = 'Redemption code already used'
        elif redemption.status == RedemptionStatus.CANCELLED.value:
            error = 'Redemption was cancelled'
        elif redemption.status == RedemptionStatus.EXPIRED.value or (
            redemption.valid_until and redemption.valid_until < datetime.utcnow()
        ):
            error = 'Redemption code expired'

        return {
            'is_valid': error is None,
            'status': redemption.status,
            'error': error,
            'redemption': redemption.to_dict(),
        }
