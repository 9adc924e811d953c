"""Operator maintenance tasks behind the scripts/ entry points."""
import logging

from sqlalchemy import inspect

from vocalcast.models.podcast import db, Payout, PayoutLock, PayoutRequest, Tip
from vocalcast.services.moderation_service import clear_podcasts

logger = logging.getLogger(__name__)


def reset_payments() -> dict:
    """Delete every tip, payout, payout request and payout lock.

    Returns the number of rows removed per table.
    """
    removed = {
        'tips': Tip.query.delete(synchronize_session=False),
        'payouts': Payout.query.delete(synchronize_session=False),
        'payout_requests': PayoutRequest.query.delete(synchronize_session=False),
        'payout_locks': PayoutLock.query.delete(synchronize_session=False),
    }
    db.session.commit()
    logger.warning("Payment data reset: %s", removed)
    return removed


def inspect_schema() -> dict[str, list[dict]]:
    """Describe each table in the connected database as name -> columns."""
    inspector = inspect(db.engine)
    schema = {}
    for table in sorted(inspector.get_table_names()):
        schema[table] = [
            {
                'name': column['name'],
                'type': str(column['type']),
                'nullable': bool(column.get('nullable', True)),
            }
            for column in inspector.get_columns(table)
        ]
    return schema


__all__ = ['clear_podcasts', 'inspect_schema', 'reset_payments']
