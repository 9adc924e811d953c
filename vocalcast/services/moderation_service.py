"""Community flagging and the visible -> hidden -> banned escalation."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from vocalcast.config import settings
from vocalcast.errors import ConflictError, NotFoundError, ValidationError
from vocalcast.models.podcast import (
    db,
    Flag,
    Podcast,
    MODERATION_STATUSES,
    STATUS_BANNED,
    STATUS_HIDDEN,
    STATUS_VISIBLE,
)

logger = logging.getLogger(__name__)

_SEVERITY = {status: rank for rank, status in enumerate(MODERATION_STATUSES)}


def next_status(
    current: str,
    flag_count: int,
    creator_hidden_count: int,
    hide_threshold: int | None = None,
    ban_threshold: int | None = None,
) -> str:
    """Return the moderation status a podcast should move to.

    Statuses only ever move forward: visible -> hidden -> banned.
    """
    hide_threshold = settings.HIDE_THRESHOLD if hide_threshold is None else hide_threshold
    ban_threshold = settings.BAN_THRESHOLD if ban_threshold is None else ban_threshold

    target = current if current in _SEVERITY else STATUS_VISIBLE
    if flag_count >= hide_threshold and _SEVERITY[target] < _SEVERITY[STATUS_HIDDEN]:
        target = STATUS_HIDDEN
    if creator_hidden_count >= ban_threshold:
        target = STATUS_BANNED
    return max(current, target, key=lambda s: _SEVERITY.get(s, 0))


@dataclass
class ModerationResult:
    podcast_id: int
    flag_count: int
    status: str
    creator_username: str

    @property
    def hidden(self) -> bool:
        return self.status != STATUS_VISIBLE

    @property
    def creator_banned(self) -> bool:
        return self.status == STATUS_BANNED

    def to_dict(self) -> dict:
        return {
            'success': True,
            'podcastId': self.podcast_id,
            'flag_count': self.flag_count,
            'status': self.status,
            'hidden': self.hidden,
            'creator_banned': self.creator_banned,
        }


def is_creator_banned(username: str) -> bool:
    return db.session.query(
        Podcast.query.filter_by(creator_pi_username=username, status=STATUS_BANNED).exists()
    ).scalar()


def _creator_hidden_count(username: str, exclude_id: int | None = None) -> int:
    query = db.session.query(func.count(Podcast.id)).filter(
        Podcast.creator_pi_username == username,
        Podcast.status != STATUS_VISIBLE,
    )
    if exclude_id is not None:
        query = query.filter(Podcast.id != exclude_id)
    return query.scalar() or 0


def report_content(
    podcast_id,
    reporter: str,
    hide_threshold: int | None = None,
    ban_threshold: int | None = None,
) -> ModerationResult:
    """Record one reporter's flag against a podcast and escalate if needed.

    The (podcast_id, flagged_by) unique constraint decides duplicates: the
    flag is inserted first and a constraint violation becomes AlreadyFlagged.
    """
    reporter = (reporter or '').strip()
    if podcast_id in (None, '') or not reporter:
        raise ValidationError('podcastId and flagger are required')
    try:
        podcast_id = int(podcast_id)
    except (TypeError, ValueError):
        raise ValidationError('podcastId must be an integer')

    podcast = db.session.get(Podcast, podcast_id)
    if podcast is None:
        raise NotFoundError('Podcast not found')

    db.session.add(Flag(podcast_id=podcast_id, flagged_by=reporter))
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        logger.info("Duplicate flag ignored podcast=%s reporter=%s", podcast_id, reporter)
        raise ConflictError('You have already flagged this podcast', code='AlreadyFlagged')

    Podcast.query.filter_by(id=podcast_id).update(
        {Podcast.flag_count: Podcast.flag_count + 1},
        synchronize_session=False,
    )
    db.session.refresh(podcast)

    creator = podcast.creator_pi_username
    status = next_status(podcast.status, podcast.flag_count, 0, hide_threshold, ban_threshold)
    hidden_count = _creator_hidden_count(creator, exclude_id=podcast.id) + (status != STATUS_VISIBLE)
    status = next_status(status, podcast.flag_count, hidden_count, hide_threshold, ban_threshold)

    if status == STATUS_BANNED and podcast.status != STATUS_BANNED:
        Podcast.query.filter_by(creator_pi_username=creator).update(
            {Podcast.status: STATUS_BANNED},
            synchronize_session=False,
        )
        logger.warning("Creator %s banned after %s hidden podcasts", creator, hidden_count)
    elif status != podcast.status:
        podcast.status = status
        logger.warning("Podcast %s hidden after %s flags", podcast.id, podcast.flag_count)

    db.session.commit()
    db.session.refresh(podcast)

    return ModerationResult(
        podcast_id=podcast.id,
        flag_count=podcast.flag_count,
        status=podcast.status,
        creator_username=creator,
    )


def clear_podcasts() -> int:
    """Delete every podcast and its flags. Returns the number of podcasts removed."""
    Flag.query.delete(synchronize_session=False)
    removed = Podcast.query.delete(synchronize_session=False)
    db.session.commit()
    logger.warning("Cleared %s podcasts", removed)
    return removed
