"""Pi Browser login verification."""

import logging

from flask import Blueprint, jsonify, request

from vocalcast.auth import issue_user_token, verify_pi_login_signature
from vocalcast.errors import ValidationError

logger = logging.getLogger(__name__)

auth_bp = Blueprint('auth', __name__)


@auth_bp.route('/verify-login', methods=['POST'])
def verify_login():
    data = request.get_json(silent=True) or {}
    user = data.get('user')
    jwt = data.get('jwt')
    signature = data.get('signature')
    if not isinstance(user, dict) or not jwt or not signature:
        raise ValidationError('user, jwt and signature are required')

    username = user.get('username')
    if not verify_pi_login_signature(user, jwt, signature):
        logger.warning("Login signature rejected for %s", username)
        return jsonify({'success': False, 'error': 'Invalid signature', 'code': 'InvalidSignature'}), 401

    issued = issue_user_token(username, uid=user.get('uid'))
    logger.info("Pi login verified for %s", username)
    return jsonify({
        'success': True,
        'username': username,
        'uid': user.get('uid'),
        'token': issued['token'],
        'expires_in': issued['expires_in'],
    })
