"""Tips blueprint: record listener tips and report per-creator totals."""

import logging

from flask import Blueprint, jsonify, request

from vocalcast.services.tip_service import record_tip, tips_received, tips_since_last_payout, total_tips

logger = logging.getLogger(__name__)

tips_bp = Blueprint('tips', __name__)


@tips_bp.route('/tip', methods=['POST'])
def create_tip():
    data = request.get_json(silent=True) or {}
    tip = record_tip(
        data.get('podcastId'),
        data.get('tipper'),
        data.get('amount'),
        recipient=data.get('recipient'),
    )
    return jsonify({'success': True, 'tip': tip.to_dict()}), 201


@tips_bp.route('/tips/<username>', methods=['GET'])
def list_tips(username):
    return jsonify([tip.to_dict() for tip in tips_received(username)])


@tips_bp.route('/total-tips/<username>', methods=['GET'])
def get_total_tips(username):
    return jsonify({'username': username, 'total': float(total_tips(username))})


@tips_bp.route('/tips-since-last-payout/<username>', methods=['GET'])
def get_tips_since_last_payout(username):
    return jsonify(tips_since_last_payout(username))
