"""Authentication decorators and utilities.

- require_api_key: admin endpoint protection (X-API-Key, optional IP whitelist)
- verify_pi_login_signature: Ed25519 check of the Pi Browser login payload
- issue_user_token: signed session token handed out after login
- Client IP resolution
"""

import base64
import binascii
import json
import logging
import os
import time
from functools import wraps

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey
from flask import current_app, jsonify, make_response, request
from itsdangerous import URLSafeTimedSerializer

from vocalcast.config import settings

logger = logging.getLogger(__name__)

TOKEN_TTL_SECONDS = 60 * 60 * 24 * 30


# ---------------------------------------------------------------------------
# IP whitelist configuration
# ---------------------------------------------------------------------------

def _get_allowed_admin_ips() -> list[str]:
    """Parse IP whitelist from environment."""
    return [ip.strip() for ip in os.getenv('ADMIN_IP_WHITELIST', '').split(',') if ip.strip()]


def get_client_ip() -> str:
    """Get the real client IP, handling proxies and load balancers."""
    forwarded_for = request.headers.get('X-Forwarded-For')
    if forwarded_for:
        # First entry is the original client
        return forwarded_for.split(',')[0].strip()

    real_ip = request.headers.get('X-Real-IP')
    if real_ip:
        return real_ip.strip()

    return request.remote_addr or ''


def _mask_admin_key(value: str | None) -> str:
    if not value:
        return '(none)'
    trimmed = value.strip()
    if len(trimmed) <= 6:
        return '***'
    return f"{trimmed[:3]}...{trimmed[-3:]}"


# ---------------------------------------------------------------------------
# Session tokens
# ---------------------------------------------------------------------------

def _user_serializer() -> URLSafeTimedSerializer:
    """Get a URL-safe timed serializer for user tokens."""
    secret = current_app.config.get('SECRET_KEY') or os.getenv('SECRET_KEY')
    is_prod = os.getenv("FLASK_ENV", "").lower() in ("prod", "production", "stage", "staging")

    # Fail fast in production if SECRET_KEY is missing or default
    if is_prod and (not secret or secret == 'change-me'):
        raise RuntimeError("SECRET_KEY must be properly configured in production")

    return URLSafeTimedSerializer(secret_key=secret or 'change-me', salt='pi-login')


def issue_user_token(username: str, uid: str | None = None, ttl_seconds: int = TOKEN_TTL_SECONDS) -> dict:
    """Issue a signed token for a verified Pi user.

    Returns:
        Dict with 'token' and 'expires_in' keys
    """
    payload = {'username': username, 'uid': uid, 'iat': int(time.time())}
    token = _user_serializer().dumps(payload)
    logger.info("Issued session token for %s", username)
    return {'token': token, 'expires_in': ttl_seconds}


def load_user_token(token: str, max_age: int = TOKEN_TTL_SECONDS) -> dict:
    """Decode a token from issue_user_token. Raises itsdangerous BadSignature/SignatureExpired."""
    return _user_serializer().loads(token, max_age=max_age)


# ---------------------------------------------------------------------------
# Pi login signature
# ---------------------------------------------------------------------------

def login_message(user, jwt) -> bytes:
    """The exact bytes the Pi Browser signs: compact JSON of user then jwt."""
    return json.dumps({'user': user, 'jwt': jwt}, separators=(',', ':')).encode('utf-8')


def _login_public_key(public_key_hex: str | None = None) -> Ed25519PublicKey:
    der = bytes.fromhex(public_key_hex or settings.PI_LOGIN_PUBLIC_KEY)
    key = serialization.load_der_public_key(der)
    if not isinstance(key, Ed25519PublicKey):
        raise ValueError('PI_LOGIN_PUBLIC_KEY is not an Ed25519 key')
    return key


def verify_pi_login_signature(user, jwt, signature: str, public_key_hex: str | None = None) -> bool:
    """Return True when ``signature`` (base64) signs the login message."""
    try:
        raw_signature = base64.b64decode(signature, validate=True)
    except (binascii.Error, ValueError, TypeError):
        logger.info("Login signature is not valid base64")
        return False

    try:
        _login_public_key(public_key_hex).verify(raw_signature, login_message(user, jwt))
    except InvalidSignature:
        return False
    return True


# ---------------------------------------------------------------------------
# Auth decorators
# ---------------------------------------------------------------------------

def require_api_key(f):
    """Decorator to require the admin API key, with optional IP whitelisting.

    Missing key 401, wrong key 403, ADMIN_API_KEY unset 500.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if request.method == 'OPTIONS':
            return make_response('', 204)

        client_ip = get_client_ip()

        allowed_ips = _get_allowed_admin_ips()
        if allowed_ips and client_ip not in allowed_ips:
            logger.warning("Admin access denied for IP %s (not in whitelist)", client_ip)
            return jsonify({
                'error': 'Access denied from this IP address',
                'code': 'IpNotAllowed',
            }), 403

        required_api_key = (os.getenv('ADMIN_API_KEY') or '').strip()
        if not required_api_key:
            logger.warning("ADMIN_API_KEY not configured in environment")
            return jsonify({
                'error': 'API authentication not configured',
                'code': 'AdminAuthNotConfigured',
            }), 500

        provided_key = (request.headers.get('X-API-Key') or request.headers.get('X-Admin-Key') or '').strip()
        masked_key = _mask_admin_key(provided_key)

        if not provided_key:
            logger.warning("Admin API key missing ip=%s endpoint=%s", client_ip, request.endpoint)
            return jsonify({'error': 'Admin API key required', 'code': 'Unauthorized'}), 401

        if provided_key != required_api_key:
            logger.warning(
                "Invalid admin credential ip=%s endpoint=%s key=%s",
                client_ip,
                request.endpoint,
                masked_key,
            )
            return jsonify({'error': 'Invalid admin credential', 'code': 'Forbidden'}), 403

        logger.info("Admin auth granted ip=%s endpoint=%s key=%s", client_ip, request.endpoint, masked_key)
        return f(*args, **kwargs)

    return decorated_function
