"""
Loyalty ledger API endpoints.

Handles:
- Token awards (manual/administrative)
- Reward redemption
- Balance, history and available-reward lookups
- Redemption code validation

Every endpoint acts for the verified tenant in g.tenant_id; ids in the URL
or body are re-checked against it by the services.
"""
from flask import Blueprint, request, jsonify, g

from ..middleware import require_ledger_context
from ..services import LedgerService, ProgramRegistry, RedemptionService
from ..utils.errors import ErrorCode, bad_request, failure_response, not_found, service_unavailable
from ..utils.exceptions import LedgerContentionError

loyalty_bp = Blueprint('loyalty', __name__)


@loyalty_bp.errorhandler(LedgerContentionError)
def handle_contention(error):
    return service_unavailable(error.message)


def _require_fields(data, *fields):
    if not isinstance(data, dict):
        return bad_request('Request body must be a JSON object')
    missing = [f for f in fields if data.get(f) is None]
    if missing:
        return bad_request(f"Missing required fields: {', '.join(missing)}", ErrorCode.MISSING_FIELD)
    return None


# ==============================================================================
# AWARDS & REDEMPTIONS
# ==============================================================================

@loyalty_bp.route('/award', methods=['POST'])
@require_ledger_context
def award_tokens():
    """
    Award tokens to a customer.

    JSON body:
        program_id: Program to award in (required)
        customer_id: Customer receiving tokens (required)
        tokens: Base token amount, positive integer (required)
        type: Award category (default 'manual')
        description: Text shown in the customer's history
        source_id / source_type: Reference to the originating record
    """
    data = request.get_json(silent=True) or {}
    missing = _require_fields(data, 'program_id', 'customer_id', 'tokens')
    if missing:
        return missing

    result = LedgerService(actor=g.actor).award_tokens(
        program_id=data['program_id'],
        customer_id=data['customer_id'],
        tokens=data['tokens'],
        award_type=data.get('type') or 'manual',
        description=data.get('description'),
        source_id=data.get('source_id'),
        source_type=data.get('source_type'),
        tenant_id=g.tenant_id,
    )
    if not result['success']:
        return failure_response(result)
    return jsonify(result), 201


@loyalty_bp.route('/redeem', methods=['POST'])
@require_ledger_context
def redeem_reward():
    """
    Redeem a reward.

    JSON body:
        customer_id: Redeeming customer (required)
        reward_id: Reward to redeem (required)
    """
    data = request.get_json(silent=True) or {}
    missing = _require_fields(data, 'customer_id', 'reward_id')
    if missing:
        return missing

    result = RedemptionService(actor=g.actor).redeem_reward(
        tenant_id=g.tenant_id,
        customer_id=data['customer_id'],
        reward_id=data['reward_id'],
    )
    if not result['success']:
        return failure_response(result)
    return jsonify(result), 201


@loyalty_bp.route('/redemptions/<code>', methods=['GET'])
@require_ledger_context
def validate_redemption(code):
    """Check whether a redemption code can still be honoured."""
    result = RedemptionService(actor=g.actor).validate_redemption_code(code, g.tenant_id)
    if result['status'] is None:
        return not_found(result['error'])
    return jsonify(result)


# ==============================================================================
# BALANCES & CATALOG
# ==============================================================================

@loyalty_bp.route('/balances/<int:program_id>/<int:customer_id>', methods=['GET'])
@require_ledger_context
def get_balance(program_id, customer_id):
    """Current balance, lifetime counters and expiring tokens."""
    result = LedgerService(actor=g.actor).get_balance(g.tenant_id, program_id, customer_id)
    if not result['success']:
        return failure_response(result)
    return jsonify(result)


@loyalty_bp.route('/balances/<int:program_id>/<int:customer_id>/history', methods=['GET'])
@require_ledger_context
def get_history(program_id, customer_id):
    """
    Ledger entries for a balance, newest first.

    Query params:
        page: Page number (default 1)
        per_page: Items per page (default 50, max 100)
        type: earn, redeem or expire
    """
    page = request.args.get('page', 1, type=int)
    per_page = min(request.args.get('per_page', 50, type=int), 100)

    result = LedgerService(actor=g.actor).get_history(
        g.tenant_id, program_id, customer_id,
        page=page, per_page=per_page,
        transaction_type=request.args.get('type'),
    )
    if not result['success']:
        return failure_response(result)
    return jsonify(result)


@loyalty_bp.route('/programs/<int:program_id>/rewards', methods=['GET'])
@require_ledger_context
def list_rewards(program_id):
    """Rewards currently redeemable in a program."""
    registry = ProgramRegistry()
    program = registry.get_program(program_id)
    if program is None or program['tenant_id'] != g.tenant_id:
        return not_found('Program not found')

    rewards = registry.list_available_rewards(program_id)
    return jsonify({'rewards': rewards, 'count': len(rewards)})
