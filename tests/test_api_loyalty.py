"""
Tests for the loyalty ledger API endpoints.
"""
from unittest.mock import patch

import pytest

from app.extensions import db
from app.models import Redemption, TokenBalance
from app.utils.exceptions import LedgerContentionError


class TestLedgerContext:
    """Tests for the verified tenant/actor context."""

    def test_missing_context_returns_401(self, client, program):
        response = client.get(f'/api/loyalty/programs/{program}/rewards')

        assert response.status_code == 401
        assert response.get_json()['error']['code'] == 'AUTH_REQUIRED'

    def test_invalid_tenant_header_returns_401(self, client, program):
        response = client.get(
            f'/api/loyalty/programs/{program}/rewards',
            headers={'X-Tenant-ID': 'abc', 'X-Actor-ID': 'staff:1'},
        )

        assert response.status_code == 401

    def test_unknown_tenant_returns_403(self, client, program):
        response = client.get(
            f'/api/loyalty/programs/{program}/rewards',
            headers={'X-Tenant-ID': '99999', 'X-Actor-ID': 'staff:1'},
        )

        assert response.status_code == 403
        assert response.get_json()['error']['code'] == 'ACCESS_DENIED'


class TestAwardEndpoint:

    def test_award(self, client, program, customer, ledger_headers):
        response = client.post('/api/loyalty/award', headers=ledger_headers, json={
            'program_id': program, 'customer_id': customer, 'tokens': 25, 'description': 'Birthday',
        })

        assert response.status_code == 201
        data = response.get_json()
        assert data['success'] is True
        assert data['new_balance'] == 25

    def test_award_missing_fields(self, client, program, ledger_headers):
        response = client.post('/api/loyalty/award', headers=ledger_headers, json={'program_id': program})

        assert response.status_code == 400
        error = response.get_json()['error']
        assert error['code'] == 'MISSING_FIELD'
        assert 'customer_id' in error['message']

    def test_award_invalid_amount(self, client, program, customer, ledger_headers):
        response = client.post('/api/loyalty/award', headers=ledger_headers, json={
            'program_id': program, 'customer_id': customer, 'tokens': -3,
        })

        assert response.status_code == 400
        assert response.get_json()['error']['code'] == 'VALIDATION_ERROR'

    def test_award_non_object_body(self, client, program, ledger_headers):
        response = client.post('/api/loyalty/award', headers=ledger_headers, json=[1, 2])

        assert response.status_code == 400
        assert response.get_json()['error']['code'] == 'INVALID_REQUEST'

    @pytest.mark.parametrize('field, value', [
        ('customer_id', [1]),
        ('customer_id', {'id': 1}),
        ('customer_id', True),
        ('program_id', 'abc'),
        ('program_id', 1.5),
    ])
    def test_award_malformed_ids(self, app, client, program, customer, ledger_headers, field, value):
        body = {'program_id': program, 'customer_id': customer, 'tokens': 10}
        body[field] = value

        response = client.post('/api/loyalty/award', headers=ledger_headers, json=body)

        assert response.status_code == 400
        error = response.get_json()['error']
        assert error['code'] == 'VALIDATION_ERROR'
        assert field in error['message']

        with app.app_context():
            assert TokenBalance.query.count() == 0

    def test_award_accepts_numeric_string_ids(self, client, program, customer, ledger_headers):
        response = client.post('/api/loyalty/award', headers=ledger_headers, json={
            'program_id': str(program), 'customer_id': str(customer), 'tokens': 10,
        })

        assert response.status_code == 201
        assert response.get_json()['new_balance'] == 10

    def test_award_in_other_tenants_program(self, client, other_program, customer, ledger_headers):
        response = client.post('/api/loyalty/award', headers=ledger_headers, json={
            'program_id': other_program, 'customer_id': customer, 'tokens': 10,
        })

        assert response.status_code == 403

    def test_lock_contention_returns_503(self, client, program, customer, ledger_headers):
        with patch('app.api.loyalty.LedgerService') as ledger:
            ledger.return_value.award_tokens.side_effect = LedgerContentionError('award_tokens')

            response = client.post('/api/loyalty/award', headers=ledger_headers, json={
                'program_id': program, 'customer_id': customer, 'tokens': 10,
            })

        assert response.status_code == 503
        assert response.headers['Retry-After'] == '1'
        assert response.get_json()['error']['code'] == 'LEDGER_CONTENTION'


class TestRedeemEndpoint:

    def test_redeem(self, client, customer, reward, fund, ledger_headers):
        fund(customer, 80)

        response = client.post('/api/loyalty/redeem', headers=ledger_headers, json={
            'customer_id': customer, 'reward_id': reward,
        })

        assert response.status_code == 201
        data = response.get_json()
        assert data['new_balance'] == 30
        assert data['redemption_code']

        lookup = client.get(f"/api/loyalty/redemptions/{data['redemption_code']}", headers=ledger_headers)
        assert lookup.status_code == 200
        assert lookup.get_json()['is_valid'] is True

    def test_redeem_insufficient_balance(self, client, customer, reward, fund, ledger_headers):
        fund(customer, 10)

        response = client.post('/api/loyalty/redeem', headers=ledger_headers, json={
            'customer_id': customer, 'reward_id': reward,
        })

        assert response.status_code == 422
        error = response.get_json()['error']
        assert error['code'] == 'INSUFFICIENT_BALANCE'
        assert 'short by 40' in error['message']

    def test_redeem_sold_out(self, client, customer, make_reward, fund, ledger_headers):
        sold_out = make_reward(stock_limit=2, stock_used=2)
        fund(customer, 100)

        response = client.post('/api/loyalty/redeem', headers=ledger_headers, json={
            'customer_id': customer, 'reward_id': sold_out,
        })

        assert response.status_code == 409
        assert response.get_json()['error']['code'] == 'STOCK_EXHAUSTED'

    def test_redeem_non_object_body(self, client, customer, reward, ledger_headers):
        response = client.post('/api/loyalty/redeem', headers=ledger_headers, json=[customer, reward])

        assert response.status_code == 400
        assert response.get_json()['error']['code'] == 'INVALID_REQUEST'

    @pytest.mark.parametrize('field, value', [
        ('reward_id', {'x': 1}),
        ('reward_id', [1]),
        ('customer_id', 'not-a-number'),
    ])
    def test_redeem_malformed_ids(self, app, client, customer, reward, fund, ledger_headers, field, value):
        balance_id = fund(customer, 80)['balance_id']
        body = {'customer_id': customer, 'reward_id': reward}
        body[field] = value

        response = client.post('/api/loyalty/redeem', headers=ledger_headers, json=body)

        assert response.status_code == 400
        assert response.get_json()['error']['code'] == 'VALIDATION_ERROR'

        with app.app_context():
            assert Redemption.query.count() == 0
            assert db.session.get(TokenBalance, balance_id).current_balance == 80

    def test_unknown_redemption_code(self, client, tenant, ledger_headers):
        response = client.get('/api/loyalty/redemptions/NOPE23456789', headers=ledger_headers)

        assert response.status_code == 404


class TestBalanceEndpoints:

    def test_balance(self, client, program, customer, fund, ledger_headers):
        fund(customer, 60)

        response = client.get(f'/api/loyalty/balances/{program}/{customer}', headers=ledger_headers)

        assert response.status_code == 200
        data = response.get_json()
        assert data['balance']['current_balance'] == 60
        assert data['tokens']['available'] == 60

    def test_balance_not_found(self, client, program, customer, ledger_headers):
        response = client.get(f'/api/loyalty/balances/{program}/{customer}', headers=ledger_headers)

        assert response.status_code == 404

    def test_history(self, client, program, customer, fund, ledger_headers):
        fund(customer, 5)
        fund(customer, 7)

        response = client.get(
            f'/api/loyalty/balances/{program}/{customer}/history?per_page=1',
            headers=ledger_headers,
        )

        assert response.status_code == 200
        data = response.get_json()
        assert data['total'] == 2
        assert data['transactions'][0]['tokens'] == 7

    def test_rewards(self, client, program, reward, ledger_headers):
        response = client.get(f'/api/loyalty/programs/{program}/rewards', headers=ledger_headers)

        assert response.status_code == 200
        data = response.get_json()
        assert data['count'] == 1
        assert data['rewards'][0]['id'] == reward

    def test_rewards_of_other_tenant(self, client, other_program, ledger_headers):
        response = client.get(f'/api/loyalty/programs/{other_program}/rewards', headers=ledger_headers)

        assert response.status_code == 404


def test_health(client):
    response = client.get('/health')

    assert response.status_code == 200
    assert response.get_json()['status'] == 'healthy'
