"""
Program Registry and Reward Catalog reads.

Programs and rewards are read on every award and listing but only change when
a tenant administrator edits them, so dict snapshots are served from
Flask-Caching and invalidated after an edit commits. Paths that lock a row
(redemption) always read it from the database instead.
"""
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from flask import current_app

from ..extensions import db
from ..models import LoyaltyProgram, Reward
from ..utils.cache import cache, cache_key, invalidate
from ..utils.exceptions import (
    AccessDeniedError,
    BusinessRuleError,
    NotFoundError,
    ValidationError,
)
from ..utils.validation import parse_int

# Fields an administrator may change through this registry
PROGRAM_EDITABLE_FIELDS = {'name', 'is_active', 'tokens_enabled', 'token_name', 'earn_ratio', 'expiry_days'}
REWARD_EDITABLE_FIELDS = {
    'name', 'description', 'tokens_required', 'stock_limit', 'max_per_customer',
    'max_total', 'valid_days', 'available_from', 'available_until', 'is_active',
}

# Integer fields and their smallest allowed value
PROGRAM_INT_FIELDS = {'expiry_days': 0}
REWARD_INT_FIELDS = {
    'tokens_required': 1, 'stock_limit': 0, 'max_per_customer': 0, 'max_total': 0, 'valid_days': 0,
}


def _program_key(program_id: int) -> str:
    return cache_key('program', program_id)


def _tenant_program_key(tenant_id: int) -> str:
    return cache_key('program', tenant_id=tenant_id)


def _rewards_key(program_id: int) -> str:
    return cache_key('rewards', program_id=program_id)


def _coerce_int_fields(changes: Dict[str, Any], minimums: Dict[str, int]) -> None:
    for field, minimum in minimums.items():
        if changes.get(field) is not None:
            changes[field] = parse_int(changes[field], field, minimum)


class ProgramRegistry:
    """
    Cached access to program configuration and the reward catalog.

    Usage:
        registry = ProgramRegistry()
        program = registry.get_program(program_id)      # dict or None
        rewards = registry.list_available_rewards(program_id)
    """

    @property
    def timeout(self) -> int:
        return current_app.config.get('LOYALTY_CATALOG_CACHE_TIMEOUT', 300)

    # ==================== Programs ====================

    def get_program(self, program_id: int) -> Optional[Dict[str, Any]]:
        """Program snapshot by id, or None."""
        key = _program_key(program_id)
        snapshot = cache.get(key)
        if snapshot is None:
            program = db.session.get(LoyaltyProgram, program_id)
            if program is None:
                return None
            snapshot = program.to_dict()
            cache.set(key, snapshot, timeout=self.timeout)
        return snapshot

    def get_active_program_for_tenant(self, tenant_id: int) -> Optional[Dict[str, Any]]:
        """The tenant's program if it is active and token-enabled."""
        key = _tenant_program_key(tenant_id)
        snapshot = cache.get(key)
        if snapshot is None:
            program = LoyaltyProgram.query.filter_by(tenant_id=tenant_id).first()
            if program is None:
                return None
            snapshot = program.to_dict()
            cache.set(key, snapshot, timeout=self.timeout)

        if not snapshot['is_active'] or not snapshot['tokens_enabled']:
            return None
        return snapshot

    @staticmethod
    def earn_ratio(program: Dict[str, Any]) -> Decimal:
        return Decimal(program['earn_ratio'] or '0')

    def update_program(self, program_id: int, tenant_id: int, **changes) -> Dict[str, Any]:
        """
        Apply an administrator edit and drop the cached snapshot.

        Returns:
            {'success': True, 'program': {...}} or a failure result
        """
        try:
            program = db.session.get(LoyaltyProgram, program_id)
            if program is None:
                raise NotFoundError('Program', program_id)
            if program.tenant_id != tenant_id:
                raise AccessDeniedError('Access denied: program belongs to a different tenant')

            unknown = set(changes) - PROGRAM_EDITABLE_FIELDS
            if unknown:
                raise ValidationError(f"Cannot edit program fields: {', '.join(sorted(unknown))}")

            if 'earn_ratio' in changes:
                changes['earn_ratio'] = self._parse_ratio(changes['earn_ratio'])
            _coerce_int_fields(changes, PROGRAM_INT_FIELDS)

            for field, value in changes.items():
                setattr(program, field, value)

            snapshot = program.to_dict()
            db.session.commit()
        except BusinessRuleError as e:
            db.session.rollback()
            return e.to_result()

        invalidate(_program_key(program_id), _tenant_program_key(tenant_id))
        current_app.logger.info(f"Program {program_id} updated: {sorted(changes)}")
        return {'success': True, 'program': snapshot}

    @staticmethod
    def _parse_ratio(value) -> Decimal:
        try:
            ratio = Decimal(str(value))
        except InvalidOperation:
            raise ValidationError('earn_ratio must be a number', 'earn_ratio')
        if ratio < 0:
            raise ValidationError('earn_ratio cannot be negative', 'earn_ratio')
        return ratio

    # ==================== Rewards ====================

    def list_available_rewards(self, program_id: int, now: datetime = None) -> List[Dict[str, Any]]:
        """
        Rewards currently redeemable in a program, cheapest first.

        Stock figures are as of the last catalog refresh; redemption re-checks
        them under lock.
        """
        key = _rewards_key(program_id)
        rewards = cache.get(key)
        if rewards is None:
            rows = (
                Reward.query
                .filter_by(program_id=program_id, is_active=True)
                .order_by(Reward.tokens_required.asc(), Reward.id.asc())
                .all()
            )
            rewards = [r.to_dict() for r in rows]
            cache.set(key, rewards, timeout=self.timeout)

        now = now or datetime.utcnow()
        return [r for r in rewards if self._in_window(r, now) and r['stock_remaining'] != 0]

    @staticmethod
    def _in_window(reward: Dict[str, Any], now: datetime) -> bool:
        starts = reward['available_from']
        ends = reward['available_until']
        if starts and now < datetime.fromisoformat(starts):
            return False
        if ends and now > datetime.fromisoformat(ends):
            return False
        return True

    def update_reward(self, reward_id: int, tenant_id: int, **changes) -> Dict[str, Any]:
        """Apply an administrator edit to a reward and drop the cached catalog."""
        try:
            # Lock like a redemption would, so stock_limit can't slip under stock_used
            reward = Reward.query.filter_by(id=reward_id).with_for_update().first()
            if reward is None:
                raise NotFoundError('Reward', reward_id)
            if reward.tenant_id != tenant_id:
                raise AccessDeniedError('Access denied: reward belongs to a different tenant')

            unknown = set(changes) - REWARD_EDITABLE_FIELDS
            if unknown:
                raise ValidationError(f"Cannot edit reward fields: {', '.join(sorted(unknown))}")

            if 'tokens_required' in changes and changes['tokens_required'] is None:
                raise ValidationError('tokens_required is required', 'tokens_required')
            _coerce_int_fields(changes, REWARD_INT_FIELDS)
            stock_limit = changes.get('stock_limit', reward.stock_limit)
            if stock_limit is not None and stock_limit < (reward.stock_used or 0):
                raise ValidationError(
                    f'stock_limit cannot be below the {reward.stock_used} already redeemed',
                    'stock_limit',
                )

            for field, value in changes.items():
                setattr(reward, field, value)

            program_id = reward.program_id
            snapshot = reward.to_dict()
            db.session.commit()
        except BusinessRuleError as e:
            db.session.rollback()
            return e.to_result()

        self.invalidate_rewards(program_id)
        current_app.logger.info(f"Reward {reward_id} updated: {sorted(changes)}")
        return {'success': True, 'reward': snapshot}

    def invalidate_rewards(self, program_id: int) -> None:
        invalidate(_rewards_key(program_id))
