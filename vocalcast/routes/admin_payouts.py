"""Admin payout endpoints.

All routes require the admin API key. They cover:
- Manual payout requests (list, fulfill)
- Payout history and manual payout records
- Transaction ids and fulfillment
- Reconciliation of payouts left unsettled by a failed ledger write
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from vocalcast.auth import require_api_key
from vocalcast.extensions import GATEWAY_KEY
from vocalcast.services.payout_service import (
    PayoutService,
    fulfill_payout,
    fulfill_payout_request,
    list_payout_requests,
    list_payouts,
    set_payout_txid,
)

logger = logging.getLogger(__name__)

admin_payouts_bp = Blueprint('admin_payouts', __name__)


def _payout_service() -> PayoutService:
    return PayoutService(gateway=current_app.extensions.get(GATEWAY_KEY))


@admin_payouts_bp.route('/admin/payout-requests', methods=['GET'])
@require_api_key
def get_payout_requests():
    status = (request.args.get('status') or 'open').strip().lower()
    return jsonify(list_payout_requests(status))


@admin_payouts_bp.route('/admin/payout-requests/<username>/fulfill', methods=['PATCH'])
@require_api_key
def patch_fulfill_payout_request(username):
    payout_request = fulfill_payout_request(username)
    return jsonify({'success': True, 'request': payout_request.to_dict()})


@admin_payouts_bp.route('/admin/payouts', methods=['GET'])
@require_api_key
def get_payouts():
    payouts = list_payouts(
        status=(request.args.get('status') or '').strip() or None,
        username=(request.args.get('username') or '').strip() or None,
    )
    return jsonify([payout.to_dict() for payout in payouts])


@admin_payouts_bp.route('/admin/manual-payout', methods=['POST'])
@require_api_key
def post_manual_payout():
    data = request.get_json(silent=True) or {}
    payout = _payout_service().record_manual_payout(
        data.get('username'),
        amount=data.get('amount'),
        reason=data.get('reason'),
        txid=data.get('txid'),
        wallet_address=data.get('walletAddress'),
    )
    return jsonify({'success': True, 'payout': payout.to_dict()}), 201


@admin_payouts_bp.route('/admin/payouts/<int:payout_id>/txid', methods=['PATCH'])
@require_api_key
def patch_payout_txid(payout_id):
    data = request.get_json(silent=True) or {}
    payout = set_payout_txid(payout_id, data.get('txid'))
    return jsonify({'success': True, 'payout': payout.to_dict()})


@admin_payouts_bp.route('/admin/payouts/<int:payout_id>/fulfill', methods=['PATCH'])
@require_api_key
def patch_fulfill_payout(payout_id):
    data = request.get_json(silent=True) or {}
    payout = fulfill_payout(payout_id, data.get('txid'))
    return jsonify({'success': True, 'payout': payout.to_dict()})


@admin_payouts_bp.route('/admin/payouts/<int:payout_id>/reconcile', methods=['POST'])
@require_api_key
def post_reconcile_payout(payout_id):
    payout = _payout_service().reconcile_payout(payout_id)
    logger.info("Admin reconciled payout %s -> %s", payout_id, payout.status)
    return jsonify({'success': True, 'payout': payout.to_dict()})
