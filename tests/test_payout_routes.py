"""Creator-facing payout endpoints and manual payout requests."""

from decimal import Decimal

from vocalcast.models.podcast import db, Payout, PayoutRequest
from vocalcast.pi_client import GatewayError, GatewayTimeout

from conftest import WALLET


def test_request_payout_endpoint(client, gateway, make_wallet, make_tip):
    make_wallet('alice')
    make_tip('alice', '2.5')
    make_tip('alice', '2.5')

    res = client.post('/request-payout', json={'username': 'alice', 'uid': 'pi-uid-1'})

    assert res.status_code == 200
    body = res.get_json()
    assert body['success'] is True
    assert body['amount'] == 5.0
    assert body['fee'] == 0.5
    assert body['netAmount'] == 4.5
    assert body['paymentId'] == 'pay_1'
    assert body['paidTo'] == WALLET
    assert gateway.calls[0][4] == 'pi-uid-1'


def test_request_payout_below_minimum(client, gateway, make_wallet, make_tip):
    make_wallet('alice')
    make_tip('alice', '1')

    res = client.post('/request-payout', json={'username': 'alice'})

    assert res.status_code == 400
    body = res.get_json()
    assert body['code'] == 'BelowMinimum'
    assert body['total'] == 1.0
    assert gateway.calls == []


def test_request_payout_without_wallet(client, make_tip):
    make_tip('alice', '10')
    res = client.post('/request-payout', json={'username': 'alice'})
    assert res.status_code == 400
    assert res.get_json()['code'] == 'NoWalletOnFile'


def test_gateway_error_maps_to_500(client, gateway, make_wallet, make_tip):
    make_wallet('alice')
    make_tip('alice', '10')
    gateway.fail_on['approve'] = GatewayError('approve', 400, 'bad request')

    res = client.post('/request-payout', json={'username': 'alice'})

    assert res.status_code == 500
    assert res.get_json()['code'] == 'GatewayError'
    assert Payout.query.one().status == 'failed'


def test_gateway_timeout_maps_to_504(client, gateway, make_wallet, make_tip):
    make_wallet('alice')
    make_tip('alice', '10')
    gateway.fail_on['create'] = GatewayTimeout('create')

    res = client.post('/request-payout', json={'username': 'alice'})

    assert res.status_code == 504
    assert res.get_json()['code'] == 'GatewayTimeout'


def test_ledger_failure_returns_reconciliation_required(client, gateway, make_wallet, make_tip, monkeypatch):
    from sqlalchemy.exc import OperationalError
    from vocalcast.services.payout_service import PayoutService

    def broken_settle(self, payout):
        raise OperationalError('UPDATE tips', {}, Exception('db down'))

    monkeypatch.setattr(PayoutService, '_settle', broken_settle)
    make_wallet('alice')
    make_tip('alice', '10')

    res = client.post('/request-payout', json={'username': 'alice'})

    assert res.status_code == 500
    body = res.get_json()
    assert body['code'] == 'ReconciliationRequired'
    assert body['payout_id'] == Payout.query.one().id


class TestManualPayoutRequest:

    def test_creates_request_and_notifies(self, client, mailer, make_wallet, make_tip):
        make_wallet('alice')
        make_tip('alice', '1.25')

        res = client.post('/request-manual-payout', json={'username': 'alice'})

        assert res.status_code == 201
        body = res.get_json()
        assert body['notified'] is True
        assert body['amount'] == 1.25
        assert body['request']['fulfilled'] is False
        assert mailer.sent == [('alice', WALLET, Decimal('1.250000'))]

    def test_open_request_is_a_conflict(self, client, make_wallet):
        make_wallet('alice')
        assert client.post('/request-manual-payout', json={'username': 'alice'}).status_code == 201

        res = client.post('/request-manual-payout', json={'username': 'alice'})
        assert res.status_code == 409
        assert res.get_json()['code'] == 'AlreadyRequested'
        assert PayoutRequest.query.count() == 1

    def test_fulfilled_request_is_reopened(self, client, admin_headers, make_wallet):
        make_wallet('alice')
        client.post('/request-manual-payout', json={'username': 'alice'})
        client.patch('/admin/payout-requests/alice/fulfill', headers=admin_headers)

        res = client.post('/request-manual-payout', json={'username': 'alice'})

        assert res.status_code == 201
        request_row = PayoutRequest.query.one()
        assert request_row.fulfilled is False
        assert request_row.fulfilled_at is None

    def test_requires_wallet(self, client):
        res = client.post('/request-manual-payout', json={'username': 'alice'})
        assert res.status_code == 400
        assert res.get_json()['code'] == 'NoWalletOnFile'

    def test_email_failure_does_not_fail_request(self, client, mailer, make_wallet):
        mailer.succeed = False
        make_wallet('alice')

        res = client.post('/request-manual-payout', json={'username': 'alice'})

        assert res.status_code == 201
        assert res.get_json()['notified'] is False
        assert db.session.query(PayoutRequest).count() == 1
