"""Wallet address blueprint."""

from flask import Blueprint, jsonify, request

from vocalcast.services.wallet_service import get_wallet_address, set_wallet_address

wallets_bp = Blueprint('wallets', __name__)


@wallets_bp.route('/wallet-address', methods=['POST'])
def save_wallet_address():
    data = request.get_json(silent=True) or {}
    user = set_wallet_address(data.get('username'), data.get('walletAddress'))
    return jsonify({'success': True, 'user': user.to_dict()})


@wallets_bp.route('/wallet-address/<username>', methods=['GET'])
def fetch_wallet_address(username):
    user = get_wallet_address(username)
    return jsonify({'username': user.username, 'walletAddress': user.wallet_address})
