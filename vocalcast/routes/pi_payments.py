"""User-to-app payments started in the Pi Browser (listener tips).

The Pi SDK calls back into these endpoints: first to approve the payment
server-side, then to complete it once the blockchain transaction exists.
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from vocalcast.errors import ConflictError, UpstreamError, ValidationError
from vocalcast.extensions import GATEWAY_KEY

logger = logging.getLogger(__name__)

pi_payments_bp = Blueprint('pi_payments', __name__)


def _gateway():
    gateway = current_app.extensions.get(GATEWAY_KEY)
    if gateway is None:
        raise UpstreamError('Pi gateway is not configured', code='GatewayNotConfigured')
    return gateway


@pi_payments_bp.route('/approve-payment', methods=['POST'])
def approve_payment():
    data = request.get_json(silent=True) or {}
    payment_id = (data.get('paymentId') or '').strip()
    if not payment_id:
        raise ValidationError('paymentId is required')

    gateway = _gateway()
    payment = gateway.get_payment(payment_id)
    status = payment.get('status') or {}
    if status.get('developer_approved'):
        raise ConflictError('Payment already approved', code='AlreadyApproved')
    if status.get('cancelled') or status.get('user_cancelled'):
        raise ConflictError('Payment was cancelled', code='PaymentCancelled')

    gateway.approve_payment(payment_id)
    logger.info("Approved user payment %s", payment_id)
    return jsonify({'success': True, 'paymentId': payment_id})


@pi_payments_bp.route('/complete-payment', methods=['POST'])
def complete_payment():
    data = request.get_json(silent=True) or {}
    payment_id = (data.get('paymentId') or '').strip()
    txid = (data.get('txid') or '').strip()
    if not payment_id or not txid:
        raise ValidationError('paymentId and txid are required')

    _gateway().complete_payment(payment_id, txid)
    logger.info("Completed user payment %s txid=%s", payment_id, txid)
    return jsonify({'success': True, 'paymentId': payment_id, 'txid': txid})
