"""Automatic payout saga, reconciliation and the per-creator lock."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import event
from sqlalchemy.exc import OperationalError

from vocalcast.errors import (
    ConflictError,
    ReconciliationRequired,
    UpstreamError,
    UpstreamTimeout,
    ValidationError,
)
from vocalcast.models.podcast import db, Payout, PayoutLock, Tip
from vocalcast.pi_client import GatewayError, GatewayTimeout
from vocalcast.services.payout_service import PayoutService, list_unsettled_payouts, parse_amount


@pytest.fixture
def service(gateway):
    return PayoutService(gateway=gateway, fee_rate=Decimal('0.10'), min_payout=Decimal('3'))


@pytest.fixture
def funded_creator(make_wallet, make_tip):
    make_wallet('alice')
    make_tip('alice', '2')
    make_tip('alice', '3')
    return 'alice'


class TestParseAmount:

    def test_accepts_numbers_and_strings(self):
        assert parse_amount(1.5) == Decimal('1.5')
        assert parse_amount('0.000001') == Decimal('0.000001')

    @pytest.mark.parametrize('value', [None, '', 0, -1, 'abc', '1.0000001', True, 'NaN'])
    def test_rejects_bad_amounts(self, value):
        with pytest.raises(ValidationError):
            parse_amount(value)


def test_successful_payout_runs_all_phases_in_order(app, service, gateway, funded_creator):
    result = service.request_payout('alice', txid='tx-abc')

    assert gateway.phases() == ['create', 'approve', 'complete']
    create = gateway.calls[0]
    assert create[1] == Decimal('4.5')
    assert create[3]['creator'] == 'alice'
    assert create[3]['type'] == 'payout'
    assert create[4] == 'alice'
    assert gateway.calls[2] == ('complete', result.gateway_payment_id, 'tx-abc')

    assert result.amount == Decimal('5')
    assert result.fee == Decimal('0.5')
    assert result.net_amount == Decimal('4.5')
    assert result.fee + result.net_amount == result.amount

    payout = db.session.get(Payout, result.payout_id)
    assert payout.status == 'completed'
    assert payout.txid == 'tx-abc'
    assert payout.gateway_payment_id == result.gateway_payment_id
    assert Tip.query.filter_by(recipient_username='alice', paid=False).count() == 0
    assert PayoutLock.query.count() == 0


def test_generated_txid_when_none_given(app, service, gateway, funded_creator):
    result = service.request_payout('alice', recipient_uid='uid-123')

    assert gateway.calls[0][4] == 'uid-123'
    assert result.txid
    assert gateway.calls[2][2] == result.txid


def test_below_minimum_never_calls_gateway(app, service, gateway, make_wallet, make_tip):
    make_wallet('alice')
    make_tip('alice', '2.999999')

    with pytest.raises(ValidationError) as exc:
        service.request_payout('alice')

    assert exc.value.code == 'BelowMinimum'
    assert gateway.calls == []
    assert Payout.query.count() == 0
    assert PayoutLock.query.count() == 0


def test_missing_wallet_rejected(app, service, gateway, make_tip):
    make_tip('alice', '10')

    with pytest.raises(ValidationError) as exc:
        service.request_payout('alice')

    assert exc.value.code == 'NoWalletOnFile'
    assert gateway.calls == []


def test_short_wallet_counts_as_missing(app, service, make_wallet, make_tip):
    make_wallet('alice', wallet='G12345')
    make_tip('alice', '10')

    with pytest.raises(ValidationError) as exc:
        service.request_payout('alice')
    assert exc.value.code == 'NoWalletOnFile'


def test_already_paid_tips_are_not_counted(app, service, gateway, make_wallet, make_tip):
    make_wallet('alice')
    make_tip('alice', '100', paid=True)
    make_tip('alice', '4')

    result = service.request_payout('alice')
    assert result.amount == Decimal('4')


@pytest.mark.parametrize('phase', ['create', 'approve'])
def test_gateway_failure_before_complete_fails_payout_and_releases_tips(app, service, gateway, funded_creator, phase):
    gateway.fail_on[phase] = GatewayError(phase, 500, 'boom')

    with pytest.raises(UpstreamError):
        service.request_payout('alice')

    expected = ['create', 'approve']
    assert gateway.phases() == expected[:expected.index(phase) + 1]

    payout = Payout.query.one()
    assert payout.status == 'failed'
    assert phase in payout.reason
    tips = Tip.query.filter_by(recipient_username='alice').all()
    assert all(not t.paid and t.payout_id is None for t in tips)
    assert PayoutLock.query.count() == 0


def test_gateway_timeout_surfaces_as_upstream_timeout(app, service, gateway, funded_creator):
    gateway.fail_on['approve'] = GatewayTimeout('approve')

    with pytest.raises(UpstreamTimeout):
        service.request_payout('alice')
    assert 'complete' not in gateway.phases()


def test_complete_timeout_after_gateway_paid_is_never_paid_twice(app, service, gateway, funded_creator):
    def timeout_after_paying():
        raise GatewayTimeout('complete')

    gateway.after_complete = timeout_after_paying
    with pytest.raises(ReconciliationRequired) as exc:
        service.request_payout('alice', txid='tx-late')
    gateway.after_complete = None

    payout = db.session.get(Payout, exc.value.payout_id)
    assert payout.status == 'initiated'
    assert payout.gateway_payment_id == 'pay_1'
    assert payout.txid == 'tx-late'
    assert Tip.query.filter_by(payout_id=payout.id, paid=False).count() == 2
    assert PayoutLock.query.count() == 0

    with pytest.raises(ReconciliationRequired):
        service.request_payout('alice')
    assert gateway.phases() == ['create', 'approve', 'complete']

    reconciled = service.reconcile_payout(payout.id)
    assert reconciled.status == 'completed'
    assert reconciled.txid == 'tx-late'
    assert Tip.query.filter_by(recipient_username='alice', paid=False).count() == 0
    completed = [pid for pid, p in gateway.payments.items() if p['status'].get('developer_completed')]
    assert completed == ['pay_1']


def test_complete_error_leaves_payout_pending_reconciliation(app, service, gateway, funded_creator):
    gateway.fail_on['complete'] = GatewayError('complete', 502)

    with pytest.raises(ReconciliationRequired) as exc:
        service.request_payout('alice')
    gateway.fail_on.clear()

    payout = db.session.get(Payout, exc.value.payout_id)
    assert payout.status == 'initiated'
    assert Tip.query.filter_by(payout_id=payout.id).count() == 2

    with pytest.raises(ConflictError) as pending:
        service.reconcile_payout(payout.id)
    assert pending.value.code == 'PaymentPending'
    assert db.session.get(Payout, payout.id).status == 'initiated'
    assert gateway.phases().count('create') == 1


def test_reconcile_while_lock_held_is_in_progress(app, service, gateway, funded_creator):
    gateway.fail_on['complete'] = GatewayError('complete', 502)
    with pytest.raises(ReconciliationRequired) as exc:
        service.request_payout('alice')

    db.session.add(PayoutLock(creator_username='alice', acquired_at=datetime.now(timezone.utc)))
    db.session.commit()

    with pytest.raises(ConflictError) as held:
        service.reconcile_payout(exc.value.payout_id)
    assert held.value.code == 'PayoutInProgress'
    assert 'fetch' not in gateway.phases()


def test_failed_payout_can_be_retried(app, service, gateway, funded_creator):
    gateway.fail_on['create'] = GatewayError('create', 503)
    with pytest.raises(UpstreamError):
        service.request_payout('alice')

    gateway.fail_on.clear()
    result = service.request_payout('alice')
    assert result.amount == Decimal('5')


def test_held_lock_rejects_concurrent_payout(app, service, gateway, funded_creator):
    db.session.add(PayoutLock(creator_username='alice', acquired_at=datetime.now(timezone.utc)))
    db.session.commit()

    with pytest.raises(ConflictError) as exc:
        service.request_payout('alice')

    assert exc.value.code == 'PayoutInProgress'
    assert gateway.calls == []
    assert PayoutLock.query.count() == 1


def test_stale_lock_is_taken_over(app, service, gateway, funded_creator):
    stale = datetime.now(timezone.utc) - timedelta(hours=2)
    db.session.add(PayoutLock(creator_username='alice', acquired_at=stale))
    db.session.commit()

    result = service.request_payout('alice')
    assert result.amount == Decimal('5')
    assert PayoutLock.query.count() == 0


def test_ledger_failure_after_gateway_requires_reconciliation(app, service, gateway, funded_creator):
    def broken_settle(payout):
        raise OperationalError('UPDATE tips', {}, Exception('db down'))

    service._settle = broken_settle

    with pytest.raises(ReconciliationRequired) as exc:
        service.request_payout('alice', txid='tx-1')

    payout = db.session.get(Payout, exc.value.payout_id)
    assert payout.status == 'gateway_confirmed'
    assert payout.txid == 'tx-1'
    assert gateway.phases() == ['create', 'approve', 'complete']
    assert Tip.query.filter_by(payout_id=payout.id, paid=False).count() == 2
    assert list_unsettled_payouts() == [payout]
    assert PayoutLock.query.count() == 0

    # A new payout is refused until reconciled, and the gateway is not touched
    with pytest.raises(ReconciliationRequired):
        service.request_payout('alice')
    assert len(gateway.calls) == 3

    del service._settle
    reconciled = service.reconcile_payout(payout.id)

    assert reconciled.status == 'completed'
    assert Tip.query.filter_by(payout_id=payout.id, paid=True).count() == 2
    assert len(gateway.calls) == 3


def test_confirm_write_failure_reconciles_from_gateway_state(app, service, gateway, funded_creator):
    state = {'armed': False}

    def fail_next_commit(session):
        if state['armed']:
            state['armed'] = False
            raise OperationalError('UPDATE payouts', {}, Exception('db down'))

    event.listen(db.session, 'before_commit', fail_next_commit)
    gateway.after_complete = lambda: state.update(armed=True)
    try:
        with pytest.raises(ReconciliationRequired) as exc:
            service.request_payout('alice', txid='tx-2')
    finally:
        event.remove(db.session, 'before_commit', fail_next_commit)

    payout = db.session.get(Payout, exc.value.payout_id)
    assert payout.status == 'initiated'
    assert payout.gateway_payment_id

    reconciled = service.reconcile_payout(payout.id)
    assert reconciled.status == 'completed'
    assert reconciled.txid == 'tx-2'
    assert gateway.phases().count('complete') == 1
    assert Tip.query.filter_by(recipient_username='alice', paid=False).count() == 0


def test_reconcile_abandoned_initiated_payout_fails_it(app, service, gateway, funded_creator):
    payout = Payout(
        creator_username='alice',
        gross_amount=Decimal('5'),
        platform_fee=Decimal('0.5'),
        amount_paid=Decimal('4.5'),
        status='initiated',
    )
    db.session.add(payout)
    db.session.flush()
    Tip.query.update({Tip.payout_id: payout.id}, synchronize_session=False)
    db.session.commit()

    reconciled = service.reconcile_payout(payout.id)

    assert reconciled.status == 'failed'
    assert Tip.query.filter(Tip.payout_id.isnot(None)).count() == 0
    assert gateway.calls == []


def test_reconcile_pending_gateway_payment_is_left_alone(app, service, gateway, funded_creator):
    gateway.payments['pay_x'] = {'status': {'developer_approved': True}}
    payout = Payout(
        creator_username='alice',
        gross_amount=Decimal('5'),
        platform_fee=Decimal('0.5'),
        amount_paid=Decimal('4.5'),
        gateway_payment_id='pay_x',
        status='initiated',
    )
    db.session.add(payout)
    db.session.commit()

    with pytest.raises(ConflictError) as exc:
        service.reconcile_payout(payout.id)
    assert exc.value.code == 'PaymentPending'
    assert db.session.get(Payout, payout.id).status == 'initiated'


def test_reconcile_completed_payout_is_a_conflict(app, service, funded_creator):
    result = service.request_payout('alice')
    with pytest.raises(ConflictError) as exc:
        service.reconcile_payout(result.payout_id)
    assert exc.value.code == 'NothingToReconcile'


def test_tips_after_snapshot_are_not_included(app, service, gateway, funded_creator, make_tip):
    def tip_during_payout():
        db.session.add(Tip(tipper_username='dave', recipient_username='alice', amount=Decimal('7'), paid=False))

    gateway.after_complete = tip_during_payout
    result = service.request_payout('alice')

    assert result.amount == Decimal('5')
    leftover = Tip.query.filter_by(recipient_username='alice', paid=False).all()
    assert [t.amount for t in leftover] == [Decimal('7')]
    assert leftover[0].payout_id is None
