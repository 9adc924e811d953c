"""Listener tips and the per-creator tip totals."""
from __future__ import annotations

import logging

from sqlalchemy import func

from vocalcast.errors import NotFoundError, ValidationError
from vocalcast.models.podcast import db, eligible_tips_query, sum_tips, Payout, Podcast, Tip, PAYOUT_FAILED
from vocalcast.services.payout_service import parse_amount
from vocalcast.utils.sanitize import clean_field

logger = logging.getLogger(__name__)


def record_tip(podcast_id, tipper, amount, recipient=None) -> Tip:
    """Record a tip against a podcast. The recipient defaults to its creator."""
    tipper = clean_field(tipper, 120)
    if podcast_id in (None, '') or not tipper:
        raise ValidationError('podcastId, tipper and amount are required')
    try:
        podcast_id = int(podcast_id)
    except (TypeError, ValueError):
        raise ValidationError('podcastId must be an integer')
    value = parse_amount(amount)

    podcast = db.session.get(Podcast, podcast_id)
    if podcast is None:
        raise NotFoundError('Podcast not found')

    tip = Tip(
        podcast_id=podcast_id,
        tipper_username=tipper,
        recipient_username=clean_field(recipient, 120) or podcast.creator_pi_username,
        amount=value,
        paid=False,
    )
    db.session.add(tip)
    db.session.commit()
    logger.info("Tip %s: %s -> %s amount=%s", tip.id, tipper, tip.recipient_username, value)
    return tip


def tips_received(username: str) -> list[Tip]:
    return (
        Tip.query.filter_by(recipient_username=username)
        .order_by(Tip.created_at.desc(), Tip.id.desc())
        .all()
    )


def total_tips(username: str):
    return sum_tips(Tip.query.filter_by(recipient_username=username))


def tips_since_last_payout(username: str) -> dict:
    tips = eligible_tips_query(username).order_by(Tip.created_at.desc(), Tip.id.desc()).all()
    last_payout_at = (
        db.session.query(func.max(Payout.payout_date))
        .filter(Payout.creator_username == username, Payout.status != PAYOUT_FAILED)
        .scalar()
    )
    return {
        'username': username,
        'total': float(sum_tips(eligible_tips_query(username))),
        'tips': [tip.to_dict() for tip in tips],
        'lastPayoutAt': last_payout_at.isoformat() if last_payout_at else None,
    }
