"""
Appointment lifecycle webhook.

The booking subsystem posts every appointment status change here after
committing it. Completions are handed to the token trigger adapter; the
response never reflects whether tokens were awarded, so a ledger problem
cannot make the booking side retry or fail.
"""
from flask import Blueprint, request, jsonify, current_app

from . import require_webhook_signature
from ..services.appointment_trigger import AppointmentEvent, on_event_completed
from ..utils.errors import bad_request

appointments_webhook_bp = Blueprint('appointments_webhook', __name__)


@appointments_webhook_bp.route('/status', methods=['POST'])
@require_webhook_signature
def handle_appointment_status():
    """
    Handle an appointment status change.

    JSON body:
        id: Appointment id
        tenant_id: Owning tenant
        customer_id: Customer the appointment is for
        status: New status
        previous_status: Status before the change
        service_id: Booked service (optional, prices the award)
    """
    payload = request.get_json(silent=True) or {}
    try:
        event = AppointmentEvent.from_payload(payload)
    except (KeyError, TypeError, ValueError) as e:
        current_app.logger.warning(f'Malformed appointment webhook: {e}')
        return bad_request('Malformed appointment event')

    on_event_completed(event)
    return jsonify({'received': True, 'appointment_id': event.id})
