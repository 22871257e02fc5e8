"""
Tests for the appointment status webhook.

Covers signature verification, payload validation and token awards for
completed appointments.
"""
import base64
import hashlib
import hmac
import json

from app.models import TokenBalance

SECRET = 'test-webhook-secret'


def generate_signature(payload: bytes, secret: str = SECRET) -> str:
    return base64.b64encode(
        hmac.new(secret.encode('utf-8'), payload, hashlib.sha256).digest()
    ).decode('utf-8')


def post_event(client, event, signature: str = None):
    body = json.dumps(event).encode('utf-8')
    headers = {'Content-Type': 'application/json'}
    headers['X-Signature'] = signature if signature is not None else generate_signature(body)
    return client.post('/webhooks/appointments/status', data=body, headers=headers)


class TestSignatureValidation:

    def test_missing_signature_returns_401(self, client, tenant):
        response = client.post('/webhooks/appointments/status', json={'id': 1})

        assert response.status_code == 401
        assert response.get_json()['error']['code'] == 'INVALID_SIGNATURE'

    def test_wrong_secret_returns_401(self, client, tenant, customer):
        body = json.dumps({'id': 1}).encode('utf-8')

        response = post_event(client, {'id': 1}, signature=generate_signature(body, 'wrong-secret'))

        assert response.status_code == 401

    def test_signature_is_deterministic(self):
        payload = b'{"id": 1}'
        assert generate_signature(payload) == generate_signature(payload)
        assert generate_signature(payload) != generate_signature(b'{"id": 2}')


class TestAppointmentStatus:

    def test_completed_appointment_awards_tokens(self, app, client, tenant, program, customer):
        response = post_event(client, {
            'id': 'appt-42', 'tenant_id': tenant, 'customer_id': customer,
            'status': 'completed', 'previous_status': 'confirmed',
        })

        assert response.status_code == 200
        assert response.get_json() == {'received': True, 'appointment_id': 'appt-42'}

        with app.app_context():
            assert TokenBalance.query.one().current_balance == 50

    def test_redelivered_event_awards_once(self, app, client, tenant, program, customer):
        event = {
            'id': 'appt-42', 'tenant_id': tenant, 'customer_id': customer,
            'status': 'completed', 'previous_status': 'confirmed',
        }
        post_event(client, event)
        response = post_event(client, event)

        assert response.status_code == 200
        with app.app_context():
            assert TokenBalance.query.one().current_balance == 50

    def test_non_completion_is_acknowledged(self, app, client, tenant, program, customer):
        response = post_event(client, {
            'id': 'appt-43', 'tenant_id': tenant, 'customer_id': customer,
            'status': 'no_show', 'previous_status': 'confirmed',
        })

        assert response.status_code == 200
        with app.app_context():
            assert TokenBalance.query.count() == 0

    def test_foreign_customer_is_acknowledged(self, app, client, tenant, program, other_customer):
        response = post_event(client, {
            'id': 'appt-44', 'tenant_id': tenant, 'customer_id': other_customer,
            'status': 'completed',
        })

        assert response.status_code == 200
        with app.app_context():
            assert TokenBalance.query.count() == 0

    def test_malformed_payload_returns_400(self, client, tenant):
        response = post_event(client, {'id': 'appt-45', 'tenant_id': 'not-a-number',
                                       'customer_id': 1, 'status': 'completed'})

        assert response.status_code == 400

    def test_non_object_payload_returns_400(self, app, client, tenant, program):
        response = post_event(client, [1])

        assert response.status_code == 400
        with app.app_context():
            assert TokenBalance.query.count() == 0

    def test_list_ids_return_400(self, client, tenant, customer):
        response = post_event(client, {'id': 'appt-46', 'tenant_id': [tenant],
                                       'customer_id': customer, 'status': 'completed'})

        assert response.status_code == 400
