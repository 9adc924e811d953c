"""Error taxonomy shared by the workflows and the HTTP layer."""
from __future__ import annotations

import logging
import os
from uuid import uuid4

from flask import jsonify
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

logger = logging.getLogger(__name__)


class VocalcastError(Exception):
    """Base class for failures that map onto a single HTTP response."""

    status_code = 500
    default_code = 'InternalError'

    def __init__(self, message: str, code: str | None = None, **context) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.context = context

    def to_dict(self) -> dict:
        payload = {'error': self.message, 'code': self.code}
        payload.update({k: v for k, v in self.context.items() if v is not None})
        return payload


class ValidationError(VocalcastError):
    status_code = 400
    default_code = 'ValidationError'


class ForbiddenError(VocalcastError):
    status_code = 403
    default_code = 'Forbidden'


class NotFoundError(VocalcastError):
    status_code = 404
    default_code = 'NotFound'


class ConflictError(VocalcastError):
    status_code = 409
    default_code = 'Conflict'


class UpstreamError(VocalcastError):
    """A gateway, storage or email call failed. Messages never carry credentials."""

    status_code = 500
    default_code = 'UpstreamError'


class UpstreamTimeout(UpstreamError):
    status_code = 504
    default_code = 'UpstreamTimeout'


class PersistenceError(VocalcastError):
    status_code = 500
    default_code = 'PersistenceError'


class ReconciliationRequired(VocalcastError):
    """Funds moved at the gateway but the ledger could not record it."""

    status_code = 500
    default_code = 'ReconciliationRequired'

    def __init__(self, message: str, payout_id: int | None = None, **context) -> None:
        super().__init__(message, payout_id=payout_id, **context)
        self.payout_id = payout_id


def _is_production() -> bool:
    """Check if running in production environment."""
    env = (os.getenv('ENV') or os.getenv('FLASK_ENV') or os.getenv('APP_ENV') or '').strip().lower()
    return env in ('prod', 'production')


def _safe_error_payload(exc: Exception, fallback_message: str, include_detail: bool = False) -> dict[str, str]:
    """Return a sanitized error payload, hiding internal details in production."""
    payload = {'error': fallback_message}
    if include_detail or not _is_production():
        payload['detail'] = str(exc)
    else:
        reference = uuid4().hex[:8]
        payload['reference'] = reference
        logger.error('Error reference=%s: %s', reference, exc, exc_info=True)
    return payload


def register_error_handlers(app) -> None:
    """Map the taxonomy onto JSON responses for every blueprint."""
    from vocalcast.models.podcast import db

    @app.errorhandler(VocalcastError)
    def handle_vocalcast_error(exc: VocalcastError):
        if isinstance(exc, ReconciliationRequired):
            # Already logged at CRITICAL where it was raised; never downgrade it here
            return jsonify(exc.to_dict()), exc.status_code
        if exc.status_code >= 500:
            logger.error('%s: %s', exc.code, exc.message)
            payload = _safe_error_payload(exc, exc.message)
            payload['code'] = exc.code
            return jsonify(payload), exc.status_code
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(SQLAlchemyError)
    def handle_database_error(exc: SQLAlchemyError):
        db.session.rollback()
        logger.exception('Database error')
        payload = _safe_error_payload(exc, 'A database error occurred. Please try again later.')
        payload['code'] = PersistenceError.default_code
        return jsonify(payload), PersistenceError.status_code

    @app.errorhandler(Exception)
    def handle_unexpected_error(exc: Exception):
        if isinstance(exc, HTTPException):
            return jsonify({'error': exc.description, 'code': exc.name.replace(' ', '')}), exc.code
        logger.exception('Unhandled error')
        return jsonify(_safe_error_payload(exc, 'An unexpected error occurred. Please try again later.')), 500
