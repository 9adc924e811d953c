"""Podcasts blueprint.

This blueprint handles:
- Podcast listing (moderated podcasts hidden unless asked for)
- Media uploads to object storage
- Community flagging
- Admin bulk clear
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from vocalcast.auth import require_api_key
from vocalcast.extensions import limiter, STORAGE_KEY
from vocalcast.services.moderation_service import clear_podcasts, report_content
from vocalcast.services.upload_service import list_podcasts, upload_podcast

logger = logging.getLogger(__name__)

podcasts_bp = Blueprint('podcasts', __name__)


def _truthy(value) -> bool:
    return (value or '').strip().lower() in ('1', 'true', 'yes')


@podcasts_bp.route('/podcasts', methods=['GET'])
def get_podcasts():
    podcasts = list_podcasts(include_hidden=_truthy(request.args.get('include_hidden')))
    return jsonify([podcast.to_dict() for podcast in podcasts])


@podcasts_bp.route('/upload', methods=['POST'])
@limiter.limit("20 per hour")
def upload():
    podcast = upload_podcast(
        current_app.extensions[STORAGE_KEY],
        request.files.get('file'),
        request.files.get('screenshot') or request.files.get('image'),
        request.form,
    )
    return jsonify({'success': True, 'podcast': podcast.to_dict()}), 201


@podcasts_bp.route('/report-podcast', methods=['POST'])
@limiter.limit("30 per hour")
def report_podcast():
    data = request.get_json(silent=True) or {}
    result = report_content(data.get('podcastId'), data.get('flagger') or data.get('username'))
    return jsonify(result.to_dict())


@podcasts_bp.route('/admin/podcasts', methods=['DELETE'])
@require_api_key
def admin_clear_podcasts():
    removed = clear_podcasts()
    return jsonify({'success': True, 'deleted': removed})
