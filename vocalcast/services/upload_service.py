"""Podcast uploads: media goes to object storage, metadata to the podcasts table."""
from __future__ import annotations

import logging

from vocalcast.errors import ForbiddenError, ValidationError
from vocalcast.models.podcast import db, Podcast, STATUS_VISIBLE
from vocalcast.services.moderation_service import is_creator_banned
from vocalcast.utils.sanitize import clean_description, clean_field, clean_title

logger = logging.getLogger(__name__)


def normalize_tags(raw) -> list[str]:
    """Split a comma separated tag string, trimming blanks and repeats.

    The first occurrence of a tag wins and input order is kept.
    """
    if raw is None:
        return []
    if isinstance(raw, (list, tuple)):
        parts = [str(item) for item in raw]
    else:
        parts = str(raw).split(',')
    cleaned = [clean_field(part, 64) for part in parts]
    return list(dict.fromkeys(tag for tag in cleaned if tag))


def _has_content(upload) -> bool:
    return upload is not None and bool(getattr(upload, 'filename', None))


def upload_podcast(storage, audio, image, metadata) -> Podcast:
    """Store the audio (and optional cover image) and create the podcast row.

    ``audio`` and ``image`` are werkzeug FileStorage objects (or anything with
    ``filename``, ``mimetype`` and ``read()``); ``metadata`` is the form data.
    """
    if not _has_content(audio):
        raise ValidationError('An audio file is required', code='MissingAudio')

    title = clean_title(metadata.get('title'))
    creator = clean_field(metadata.get('creator_pi_username'), 120)
    if not title or not creator:
        raise ValidationError('title and creator_pi_username are required')

    if is_creator_banned(creator):
        logger.warning("Rejected upload from banned creator %s", creator)
        raise ForbiddenError('This creator has been banned', code='CreatorBanned')

    audio_object = storage.upload(audio.read(), audio.filename, getattr(audio, 'mimetype', None))
    image_url = None
    if _has_content(image):
        image_object = storage.upload(image.read(), image.filename, getattr(image, 'mimetype', None))
        image_url = image_object.url

    podcast = Podcast(
        title=title,
        description=clean_description(metadata.get('description')),
        duration=clean_field(metadata.get('duration'), 32),
        genre=clean_field(metadata.get('genre'), 80),
        tags=normalize_tags(metadata.get('tags')),
        creator_pi_username=creator,
        audio_url=audio_object.url,
        image_url=image_url,
        status=STATUS_VISIBLE,
        flag_count=0,
    )
    db.session.add(podcast)
    db.session.commit()
    logger.info("Podcast %s uploaded by %s key=%s", podcast.id, creator, audio_object.key)
    return podcast


def list_podcasts(include_hidden: bool = False) -> list[Podcast]:
    query = Podcast.query
    if not include_hidden:
        query = query.filter(Podcast.status == STATUS_VISIBLE)
    return query.order_by(Podcast.uploaded_at.desc(), Podcast.id.desc()).all()
