"""
Membership/Multiplier Resolver.

Looks up a customer's active membership in a program and returns the plan's
token multiplier. Read-only: the multiplier is applied at award time and
never stored.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from flask import current_app
from sqlalchemy import or_

from ..extensions import db
from ..models import Membership, MembershipPlan, MembershipStatus

DEFAULT_MULTIPLIER = Decimal('1.0')


class MembershipResolver:
    """Resolve earning multipliers and maintain membership status."""

    def _active_memberships(self, customer_id: int, program_id: int, now: datetime):
        return (
            Membership.query
            .join(MembershipPlan, Membership.plan_id == MembershipPlan.id)
            .filter(
                Membership.customer_id == customer_id,
                Membership.program_id == program_id,
                Membership.status == MembershipStatus.ACTIVE.value,
                or_(Membership.end_date.is_(None), Membership.end_date > now),
            )
        )

    def resolve_multiplier(self, customer_id: int, program_id: int, now: datetime = None) -> Decimal:
        """
        Token multiplier for a customer, 1.0 without an active membership.

        When several memberships are active at once the most generous
        plan wins.
        """
        now = now or datetime.utcnow()
        row = (
            self._active_memberships(customer_id, program_id, now)
            .with_entities(MembershipPlan.tokens_multiplier)
            .order_by(MembershipPlan.tokens_multiplier.desc())
            .first()
        )
        if row is None or row[0] is None:
            return DEFAULT_MULTIPLIER
        return Decimal(str(row[0]))

    def get_active_membership(self, customer_id: int, program_id: int,
                              now: datetime = None) -> Optional[Dict[str, Any]]:
        """The membership that resolve_multiplier would use, or None."""
        now = now or datetime.utcnow()
        membership = (
            self._active_memberships(customer_id, program_id, now)
            .order_by(MembershipPlan.tokens_multiplier.desc())
            .first()
        )
        return membership.to_dict() if membership else None

    def is_membership_active(self, customer_id: int, program_id: int, now: datetime = None) -> bool:
        return self.get_active_membership(customer_id, program_id, now) is not None

    def expire_memberships(self, now: datetime = None, dry_run: bool = False) -> Dict[str, Any]:
        """
        Mark active memberships past their end date as expired.

        Returns:
            {'expired': count, 'membership_ids': [...], 'dry_run': bool}
        """
        now = now or datetime.utcnow()
        overdue = (
            Membership.query
            .filter(
                Membership.status == MembershipStatus.ACTIVE.value,
                Membership.end_date.isnot(None),
                Membership.end_date < now,
            )
            .order_by(Membership.id)
            .all()
        )
        membership_ids = [m.id for m in overdue]

        if dry_run:
            db.session.rollback()
        else:
            for membership in overdue:
                membership.status = MembershipStatus.EXPIRED.value
            db.session.commit()

        if membership_ids:
            current_app.logger.info(
                f"{'[DRY RUN] ' if dry_run else ''}Expired {len(membership_ids)} memberships"
            )
        return {'expired': len(membership_ids), 'membership_ids': membership_ids, 'dry_run': dry_run}
