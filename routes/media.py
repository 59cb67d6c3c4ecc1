"""Media asset API routes: metadata edits, deletion and embed parsing."""

from __future__ import annotations

from typing import Any, Mapping

from flask import Blueprint, jsonify, request, session

from accounts.service import record_audit
from lookups.service import get_lookup
from media import service as media_service
from media.embeds import parse_embed_url
from routes.api_utils import BadRequestError, NotFoundError, handle_api_errors

media_blueprint = Blueprint("media", __name__)

_context: dict[str, Any] = {}


def configure(context: Mapping[str, Any]) -> None:
    """Provide the database and storage used by the media API."""
    _context.update(context)


def _ctx(key: str) -> Any:
    if key not in _context:
        raise RuntimeError(f"media routes missing context value: {key}")
    return _context[key]


def _serialize(item: Mapping[str, Any]) -> dict[str, Any]:
    data = dict(item)
    storage = _ctx('storage')
    if data.get('storage_bucket') and data.get('storage_path'):
        data['public_url'] = storage.public_url(data['storage_bucket'], data['storage_path'])
    else:
        data['public_url'] = data.get('source_url')
    for key in ('created_at', 'deleted_at'):
        if data.get(key) is not None:
            data[key] = data[key].isoformat()
    return data


@media_blueprint.route('/api/media/embed')
@handle_api_errors
def api_media_embed():
    url = request.args.get('url', '')
    if not url.strip():
        raise BadRequestError('url is required')
    parsed = parse_embed_url(url)
    if parsed is None:
        return jsonify({'supported': False, 'provider': None, 'id': None})
    return jsonify({'supported': True, 'provider': parsed.provider, 'id': parsed.id})


@media_blueprint.route('/api/media/<media_id>', methods=['PUT', 'DELETE'])
@handle_api_errors
def api_media_item(media_id: str):
    db = _ctx('get_db')()

    if request.method == 'DELETE':
        with _ctx('db_lock'), db.begin() as conn:
            deleted = media_service.delete_media(conn, media_id, _ctx('storage'))
            if deleted is None:
                raise NotFoundError('media not found')
            record_audit(
                conn,
                user_id=session.get('user_id'),
                action='delete',
                entity_type='media',
                entity_id=media_id,
                summary=deleted.get('title'),
            )
        return jsonify({'status': 'deleted', 'id': media_id})

    payload = request.get_json(silent=True)
    if not isinstance(payload, Mapping):
        raise BadRequestError('invalid payload')

    with _ctx('db_lock'), db.begin() as conn:
        media_type_id = payload.get('media_type_id')
        if media_type_id:
            media_type = get_lookup(conn, str(media_type_id))
            if media_type is None or media_type['type'] != 'media_type':
                raise BadRequestError('unknown media type')
        updated = media_service.update_media(conn, media_id, payload)
    if updated is None:
        raise NotFoundError('media not found')
    return jsonify({'item': _serialize(updated)})
