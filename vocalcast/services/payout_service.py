"""
Creator payouts.

An automatic payout settles every unpaid tip a creator has received:

1. take the per-creator payout lock
2. snapshot and reserve the unpaid tips under a new ``initiated`` payout
3. create -> approve -> complete the payment at the Pi gateway
4. record ``gateway_confirmed`` (payment id and txid) before touching the ledger
5. mark the reserved tips paid and the payout ``completed``

Once step 3 succeeds the gateway is never called again for that payout. A
failure in steps 4 or 5 raises ReconciliationRequired and leaves a durable
record that ``reconcile_payout`` (admin endpoint and scripts/reconcile_payouts.py)
finishes later.

The manual path only records requests and operator-made payouts; it never
moves funds itself.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from uuid import uuid4

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from vocalcast.config import settings
from vocalcast.config.settings import calculate_platform_fee, quantize_amount
from vocalcast.errors import (
    ConflictError,
    NotFoundError,
    PersistenceError,
    ReconciliationRequired,
    UpstreamError,
    ValidationError,
)
from vocalcast.models.podcast import (
    db,
    _as_utc,
    eligible_tips_query,
    sum_tips,
    Payout,
    PayoutLock,
    PayoutRequest,
    Tip,
    PAYOUT_COMPLETED,
    PAYOUT_FAILED,
    PAYOUT_FULFILLED,
    PAYOUT_GATEWAY_CONFIRMED,
    PAYOUT_INITIATED,
)
from vocalcast.services.wallet_service import validate_wallet_address, wallet_on_file

logger = logging.getLogger(__name__)

UNSETTLED_STATUSES = (PAYOUT_INITIATED, PAYOUT_GATEWAY_CONFIRMED)


def parse_amount(value, field: str = 'amount') -> Decimal:
    """Parse a positive amount with at most six decimal places."""
    if isinstance(value, bool) or value is None or value == '':
        raise ValidationError(f'{field} is required')
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f'{field} must be a number')
    if not amount.is_finite() or amount <= 0:
        raise ValidationError(f'{field} must be greater than zero')
    if amount != quantize_amount(amount):
        raise ValidationError(f'{field} supports at most 6 decimal places')
    return quantize_amount(amount)


@dataclass
class PayoutResult:
    payout_id: int
    amount: Decimal
    fee: Decimal
    net_amount: Decimal
    gateway_payment_id: str
    txid: str
    wallet: str

    def to_dict(self) -> dict:
        return {
            'success': True,
            'payoutId': self.payout_id,
            'amount': float(self.amount),
            'fee': float(self.fee),
            'netAmount': float(self.net_amount),
            'paymentId': self.gateway_payment_id,
            'txid': self.txid,
            'paidTo': self.wallet,
        }


class PayoutService:
    """Runs payouts against one gateway client.

    The gateway only needs ``create_payment``, ``approve_payment``,
    ``complete_payment`` and ``get_payment``, so tests can hand in a fake.
    """

    def __init__(
        self,
        gateway=None,
        fee_rate: Decimal | None = None,
        min_payout: Decimal | None = None,
        lock_ttl_seconds: int | None = None,
    ):
        self.gateway = gateway
        self.fee_rate = settings.PLATFORM_FEE_RATE if fee_rate is None else Decimal(fee_rate)
        self.min_payout = settings.MIN_PAYOUT if min_payout is None else Decimal(min_payout)
        ttl = settings.PAYOUT_LOCK_TTL_SECONDS if lock_ttl_seconds is None else lock_ttl_seconds
        self.lock_ttl = timedelta(seconds=ttl)

    # ------------------------------------------------------------------
    # Per-creator lock
    # ------------------------------------------------------------------

    def _acquire_lock(self, username: str) -> None:
        now = datetime.now(timezone.utc)
        db.session.add(PayoutLock(creator_username=username, acquired_at=now))
        try:
            db.session.commit()
            return
        except IntegrityError:
            db.session.rollback()

        lock = db.session.get(PayoutLock, username)
        if lock is not None and _as_utc(lock.acquired_at) < now - self.lock_ttl:
            taken = PayoutLock.query.filter_by(
                creator_username=username,
                acquired_at=lock.acquired_at,
            ).update({PayoutLock.acquired_at: now}, synchronize_session=False)
            db.session.commit()
            if taken == 1:
                logger.warning("Took over stale payout lock for %s (held since %s)", username, lock.acquired_at)
                return
        raise ConflictError('A payout for this creator is already in progress', code='PayoutInProgress')

    def _release_lock(self, username: str) -> None:
        try:
            PayoutLock.query.filter_by(creator_username=username).delete(synchronize_session=False)
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("Could not release payout lock for %s; it expires after %s", username, self.lock_ttl)

    # ------------------------------------------------------------------
    # Automatic payout
    # ------------------------------------------------------------------

    def request_payout(self, username: str, recipient_uid: str | None = None, txid: str | None = None) -> PayoutResult:
        username = (username or '').strip()
        if not username:
            raise ValidationError('username is required')
        if self.gateway is None:
            raise UpstreamError('Pi gateway is not configured', code='GatewayNotConfigured')

        self._acquire_lock(username)
        try:
            return self._run_payout(username, recipient_uid, txid)
        finally:
            self._release_lock(username)

    def _run_payout(self, username: str, recipient_uid: str | None, txid: str | None) -> PayoutResult:
        stuck = Payout.query.filter(
            Payout.creator_username == username,
            Payout.status.in_(UNSETTLED_STATUSES),
        ).first()
        if stuck is not None:
            logger.critical(
                "Payout %s for %s is %s; refusing a new payout until it is reconciled",
                stuck.id, username, stuck.status,
            )
            raise ReconciliationRequired(
                'A previous payout for this creator needs reconciliation',
                payout_id=stuck.id,
            )

        wallet = wallet_on_file(username)

        tips = eligible_tips_query(username).order_by(Tip.id).all()
        gross = quantize_amount(sum((Decimal(tip.amount) for tip in tips), Decimal('0')))
        if gross < self.min_payout:
            raise ValidationError(
                f'Minimum payout is {self.min_payout} Pi',
                code='BelowMinimum',
                total=float(gross),
            )
        fee, net = calculate_platform_fee(gross, self.fee_rate)
        memo = f'Vocalcast creator payout for {username}'

        payout = Payout(
            creator_username=username,
            gross_amount=gross,
            platform_fee=fee,
            amount_paid=net,
            paid_to=wallet,
            memo=memo,
            status=PAYOUT_INITIATED,
            is_manual=False,
        )
        db.session.add(payout)
        db.session.flush()
        tip_ids = [tip.id for tip in tips]
        reserved = Tip.query.filter(
            Tip.id.in_(tip_ids),
            Tip.paid.is_(False),
            Tip.payout_id.is_(None),
        ).update({Tip.payout_id: payout.id}, synchronize_session=False)
        if reserved != len(tip_ids):
            db.session.rollback()
            raise ConflictError('Tips changed while preparing the payout', code='PayoutInProgress')
        db.session.commit()
        payout_id = payout.id
        logger.info(
            "Payout %s initiated for %s: gross=%s fee=%s net=%s tips=%s",
            payout_id, username, gross, fee, net, len(tip_ids),
        )

        payment_id = None
        txid = txid or uuid4().hex
        try:
            payment_id = self.gateway.create_payment(
                net,
                memo=memo,
                metadata={'creator': username, 'type': 'payout', 'payout_id': payout_id},
                uid=recipient_uid or username,
            )
            payout.gateway_payment_id = payment_id
            payout.txid = txid
            db.session.commit()
            self.gateway.approve_payment(payment_id)
        except UpstreamError as e:
            self._fail_payout(payout_id, e.message)
            raise
        except SQLAlchemyError as e:
            # Only reachable before approve, so no funds have moved yet
            self._fail_payout(payout_id, 'could not record gateway payment id')
            raise PersistenceError('Could not record the payment; no funds were moved') from e

        try:
            self.gateway.complete_payment(payment_id, txid)
        except UpstreamError as e:
            # The gateway may have completed before failing; tips stay reserved
            self._completion_unknown(payout_id, username, payment_id, txid, e)

        try:
            payout.status = PAYOUT_GATEWAY_CONFIRMED
            payout.txid = txid
            db.session.commit()
        except SQLAlchemyError as e:
            self._reconciliation_needed(payout_id, username, payment_id, txid, e)

        try:
            self._settle(payout)
        except SQLAlchemyError as e:
            self._reconciliation_needed(payout_id, username, payment_id, txid, e)

        logger.info("Payout %s completed for %s payment=%s txid=%s", payout_id, username, payment_id, txid)
        return PayoutResult(
            payout_id=payout_id,
            amount=gross,
            fee=fee,
            net_amount=net,
            gateway_payment_id=payment_id,
            txid=txid,
            wallet=wallet,
        )

    def _settle(self, payout: Payout) -> None:
        """Mark the payout's reserved tips paid and the payout completed, in one commit."""
        Tip.query.filter_by(payout_id=payout.id).update({Tip.paid: True}, synchronize_session=False)
        payout.status = PAYOUT_COMPLETED
        db.session.commit()

    def _fail_payout(self, payout_id: int, reason: str) -> None:
        db.session.rollback()
        try:
            payout = db.session.get(Payout, payout_id)
            payout.status = PAYOUT_FAILED
            payout.reason = (reason or '')[:500]
            Tip.query.filter_by(payout_id=payout_id, paid=False).update(
                {Tip.payout_id: None},
                synchronize_session=False,
            )
            db.session.commit()
            logger.warning("Payout %s failed and its tips were released: %s", payout_id, reason)
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("Payout %s failed but could not be marked; it stays %s", payout_id, PAYOUT_INITIATED)

    def _reconciliation_needed(self, payout_id, username, payment_id, txid, exc):
        db.session.rollback()
        logger.critical(
            "RECONCILIATION REQUIRED payout=%s creator=%s payment=%s txid=%s: ledger write failed after "
            "the gateway completed the payment (%s)",
            payout_id, username, payment_id, txid, exc.__class__.__name__,
        )
        raise ReconciliationRequired(
            'Payment was sent but could not be recorded; it has been flagged for reconciliation',
            payout_id=payout_id,
        ) from exc

    def _completion_unknown(self, payout_id, username, payment_id, txid, exc):
        db.session.rollback()
        logger.critical(
            "RECONCILIATION REQUIRED payout=%s creator=%s payment=%s txid=%s: complete did not confirm "
            "after approval (%s); payout left %s with its tips reserved",
            payout_id, username, payment_id, txid, exc.message, PAYOUT_INITIATED,
        )
        raise ReconciliationRequired(
            'The payment may have been sent; it has been flagged for reconciliation',
            payout_id=payout_id,
        ) from exc

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def reconcile_payout(self, payout_id: int) -> Payout:
        """Finish a payout left in ``initiated`` or ``gateway_confirmed``.

        Runs under the creator's payout lock so a payout still in flight is
        reported as PayoutInProgress instead of being failed underneath it.
        """
        payout = db.session.get(Payout, payout_id)
        if payout is None:
            raise NotFoundError('Payout not found')

        username = payout.creator_username
        self._acquire_lock(username)
        try:
            return self._reconcile(payout_id)
        finally:
            self._release_lock(username)

    def _reconcile(self, payout_id: int) -> Payout:
        payout = db.session.get(Payout, payout_id)
        if payout.status == PAYOUT_GATEWAY_CONFIRMED:
            self._settle(payout)
            logger.warning("Payout %s reconciled from gateway_confirmed", payout_id)
            return payout

        if payout.status != PAYOUT_INITIATED:
            raise ConflictError(f'Payout is already {payout.status}', code='NothingToReconcile')

        if not payout.gateway_payment_id:
            self._fail_payout(payout_id, 'abandoned before the gateway payment was created')
            return db.session.get(Payout, payout_id)

        if self.gateway is None:
            raise UpstreamError('Pi gateway is not configured', code='GatewayNotConfigured')

        payment = self.gateway.get_payment(payout.gateway_payment_id)
        status = payment.get('status') or {}
        if status.get('developer_completed'):
            transaction = payment.get('transaction') or {}
            payout.txid = transaction.get('txid') or payout.txid
            self._settle(payout)
            logger.warning("Payout %s reconciled from gateway state (completed)", payout_id)
            return payout
        if status.get('cancelled') or status.get('user_cancelled'):
            self._fail_payout(payout_id, 'payment cancelled at the gateway')
            return db.session.get(Payout, payout_id)
        raise ConflictError('Payment is still pending at the gateway', code='PaymentPending')

    # ------------------------------------------------------------------
    # Manual payouts recorded by operators
    # ------------------------------------------------------------------

    def record_manual_payout(
        self,
        username: str,
        amount=None,
        reason: str | None = None,
        txid: str | None = None,
        wallet_address: str | None = None,
    ) -> Payout:
        """Record a payout an operator made outside the gateway.

        Settles every currently unpaid tip of the creator. ``amount`` defaults
        to their sum; an explicit amount is recorded as the gross instead.
        """
        username = (username or '').strip()
        if not username:
            raise ValidationError('username is required')
        wallet = validate_wallet_address(wallet_address) if wallet_address else wallet_on_file(username)

        self._acquire_lock(username)
        try:
            tips_query = eligible_tips_query(username)
            gross = parse_amount(amount) if amount not in (None, '') else sum_tips(tips_query)
            if gross <= 0:
                raise ValidationError('Nothing to pay out', code='BelowMinimum', total=0.0)
            fee, net = calculate_platform_fee(gross, self.fee_rate)
            txid = (txid or '').strip() or None

            payout = Payout(
                creator_username=username,
                gross_amount=gross,
                platform_fee=fee,
                amount_paid=net,
                paid_to=wallet,
                txid=txid,
                status=PAYOUT_FULFILLED if txid else PAYOUT_COMPLETED,
                is_manual=True,
                reason=reason,
            )
            db.session.add(payout)
            db.session.flush()
            settled = tips_query.update(
                {Tip.paid: True, Tip.payout_id: payout.id},
                synchronize_session=False,
            )
            PayoutRequest.query.filter_by(username=username, fulfilled=False).update(
                {PayoutRequest.fulfilled: True, PayoutRequest.fulfilled_at: datetime.now(timezone.utc)},
                synchronize_session=False,
            )
            db.session.commit()
            logger.info("Manual payout %s recorded for %s gross=%s tips=%s", payout.id, username, gross, settled)
            return payout
        finally:
            self._release_lock(username)


def list_unsettled_payouts() -> list[Payout]:
    return Payout.query.filter(Payout.status.in_(UNSETTLED_STATUSES)).order_by(Payout.id).all()


def _get_payout(payout_id: int) -> Payout:
    payout = db.session.get(Payout, payout_id)
    if payout is None:
        raise NotFoundError('Payout not found')
    return payout


def set_payout_txid(payout_id: int, txid) -> Payout:
    """Record the on-chain transaction id; this fulfills a completed payout."""
    txid = (txid or '').strip() if isinstance(txid, str) else ''
    if not txid:
        raise ValidationError('txid is required')
    payout = _get_payout(payout_id)
    if payout.status not in (PAYOUT_COMPLETED, PAYOUT_FULFILLED):
        raise ConflictError(f'Cannot record a txid on a {payout.status} payout', code='InvalidPayoutState')
    payout.txid = txid
    payout.status = PAYOUT_FULFILLED
    db.session.commit()
    logger.info("Payout %s fulfilled with txid %s", payout_id, txid)
    return payout


def fulfill_payout(payout_id: int, txid=None) -> Payout:
    payout = _get_payout(payout_id)
    if txid:
        return set_payout_txid(payout_id, txid)
    if not payout.txid:
        raise ValidationError('A transaction id is required to fulfill a payout', code='MissingTxid')
    if payout.status not in (PAYOUT_COMPLETED, PAYOUT_FULFILLED):
        raise ConflictError(f'Cannot fulfill a {payout.status} payout', code='InvalidPayoutState')
    payout.status = PAYOUT_FULFILLED
    db.session.commit()
    return payout


def list_payouts(status: str | None = None, username: str | None = None) -> list[Payout]:
    query = Payout.query
    if status:
        query = query.filter(Payout.status == status)
    if username:
        query = query.filter(Payout.creator_username == username)
    return query.order_by(Payout.payout_date.desc(), Payout.id.desc()).all()


# ----------------------------------------------------------------------
# Manual payout requests
# ----------------------------------------------------------------------

def request_manual_payout(username: str, mailer=None) -> tuple[PayoutRequest, Decimal, bool]:
    """Open a payout request for operators. Returns (request, amount due, notified).

    The unique username column decides duplicates. A fulfilled request is
    reopened; an open one is rejected with AlreadyRequested.
    """
    username = (username or '').strip()
    if not username:
        raise ValidationError('username is required')
    wallet = wallet_on_file(username)
    amount = sum_tips(eligible_tips_query(username))
    now = datetime.now(timezone.utc)

    db.session.add(PayoutRequest(username=username, requested_at=now, fulfilled=False))
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        reopened = PayoutRequest.query.filter_by(username=username, fulfilled=True).update(
            {
                PayoutRequest.fulfilled: False,
                PayoutRequest.fulfilled_at: None,
                PayoutRequest.requested_at: now,
            },
            synchronize_session=False,
        )
        if not reopened:
            db.session.rollback()
            raise ConflictError('A payout request is already open for this user', code='AlreadyRequested')
        db.session.commit()

    payout_request = PayoutRequest.query.filter_by(username=username).one()
    logger.info("Manual payout requested by %s amount=%s", username, amount)

    notified = False
    if mailer is not None:
        result = mailer.send_payout_request_email(username, wallet, amount)
        notified = bool(result and result.success)
        if not notified:
            logger.error(
                "Payout request email for %s was not sent: %s",
                username,
                getattr(result, 'error', None),
            )
    return payout_request, amount, notified


def fulfill_payout_request(username: str) -> PayoutRequest:
    updated = PayoutRequest.query.filter_by(username=username, fulfilled=False).update(
        {PayoutRequest.fulfilled: True, PayoutRequest.fulfilled_at: datetime.now(timezone.utc)},
        synchronize_session=False,
    )
    if not updated:
        db.session.rollback()
        raise NotFoundError('No open payout request for this user')
    db.session.commit()
    return PayoutRequest.query.filter_by(username=username).one()


def list_payout_requests(status: str = 'all') -> list[dict]:
    query = PayoutRequest.query
    if status == 'open':
        query = query.filter(PayoutRequest.fulfilled.is_(False))
    elif status == 'fulfilled':
        query = query.filter(PayoutRequest.fulfilled.is_(True))
    elif status != 'all':
        raise ValidationError('status must be open, fulfilled or all')

    rows = []
    for payout_request in query.order_by(PayoutRequest.requested_at.desc()).all():
        item = payout_request.to_dict()
        item['amount_due'] = float(sum_tips(eligible_tips_query(payout_request.username)))
        rows.append(item)
    return rows
