"""Creator-facing payout endpoints.

- POST /request-payout: automatic payout of all unpaid tips through the Pi gateway
- POST /request-manual-payout: ask operators to pay out by hand
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from vocalcast.extensions import limiter, GATEWAY_KEY, MAILER_KEY
from vocalcast.services.payout_service import PayoutService, request_manual_payout

logger = logging.getLogger(__name__)

payouts_bp = Blueprint('payouts', __name__)


def _payout_service() -> PayoutService:
    return PayoutService(gateway=current_app.extensions.get(GATEWAY_KEY))


@payouts_bp.route('/request-payout', methods=['POST'])
@limiter.limit("10 per hour")
def request_payout():
    data = request.get_json(silent=True) or {}
    result = _payout_service().request_payout(
        data.get('username'),
        recipient_uid=data.get('uid'),
        txid=data.get('txid'),
    )
    return jsonify(result.to_dict())


@payouts_bp.route('/request-manual-payout', methods=['POST'])
@limiter.limit("10 per hour")
def manual_payout_request():
    data = request.get_json(silent=True) or {}
    payout_request, amount, notified = request_manual_payout(
        data.get('username'),
        mailer=current_app.extensions.get(MAILER_KEY),
    )
    return jsonify({
        'success': True,
        'request': payout_request.to_dict(),
        'amount': float(amount),
        'notified': notified,
    }), 201
