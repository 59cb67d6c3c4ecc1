"""Media asset validation, upload and persistence."""

from __future__ import annotations

import io
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Sequence

from PIL import ExifTags, Image, UnidentifiedImageError
from sqlalchemy import insert, select, update as sa_update
from sqlalchemy.engine import Connection

from db.schema import games, media, new_id, now_utc
from helpers import _coerce_bool, _normalize_text, slugify
from media.embeds import SUPPORTED_PROVIDERS, parse_embed_url
from media.storage import LocalStorage, StorageError

logger = logging.getLogger(__name__)

COVER_SLUG = 'cover'

_ORIENTATION_TAG = next(
    key for key, value in ExifTags.TAGS.items() if value == 'Orientation'
)


class MediaError(ValueError):
    """Raised when a media item cannot be accepted."""


@dataclass
class MediaItemInput:
    """One pending media item from the form's media tab."""

    media_type_id: str | None
    source: str = 'uploaded_file'
    filename: str | None = None
    data: bytes | None = None
    content_type: str | None = None
    url: str | None = None
    embed_provider: str | None = None
    embed_id: str | None = None
    title: str | None = None
    caption: str | None = None
    credit: str | None = None
    is_official: bool = True
    is_nsfw: bool = False


def open_image_auto_rotate(source: Any) -> Image.Image:
    """Open image from bytes, path or file-like and auto-rotate using EXIF."""

    if isinstance(source, (bytes, bytearray)):
        source = io.BytesIO(source)
    img = Image.open(source) if not isinstance(source, Image.Image) else source
    orientation = img.getexif().get(_ORIENTATION_TAG)
    if orientation == 3:
        img = img.rotate(180, expand=True)
    elif orientation == 6:
        img = img.rotate(270, expand=True)
    elif orientation == 8:
        img = img.rotate(90, expand=True)
    return img


def read_image_dimensions(data: bytes | None) -> tuple[int, int] | None:
    """Return ``(width, height)`` of an image payload, ``None`` for non-images."""

    if not data:
        return None
    try:
        img = open_image_auto_rotate(data)
    except (UnidentifiedImageError, OSError):
        return None
    return img.size


def find_cover_type_id(media_types: Sequence[Mapping[str, Any]]) -> str | None:
    for media_type in media_types:
        if media_type.get('slug') == COVER_SLUG:
            return media_type['id']
    return None


def _storage_path(game_id: str, item: MediaItemInput, type_name: str | None) -> str:
    filename = item.filename or ''
    ext = filename.rsplit('.', 1)[-1].lower() if '.' in filename else 'bin'
    safe_title = slugify(item.title or type_name or 'asset') or 'asset'
    unique = f'{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}'
    return f'games/{game_id}/{unique}-{safe_title}.{ext}'


def build_media_rows(
    game_id: str,
    items: Iterable[MediaItemInput],
    *,
    media_types: Sequence[Mapping[str, Any]],
    storage: LocalStorage,
    min_cover_size: tuple[int, int] = (200, 300),
) -> list[dict[str, Any]]:
    """Validate ``items``, upload their files and return the ``media`` rows.

    Items without a media type are skipped. Files are uploaded as each item is
    processed, so a failure on a later item leaves earlier uploads in place.
    """

    types_by_id = {media_type['id']: media_type for media_type in media_types}
    rows: list[dict[str, Any]] = []

    for item in items:
        if not item.media_type_id:
            continue
        chosen_type = types_by_id.get(item.media_type_id)
        if chosen_type is None:
            raise MediaError('Unknown media type')
        is_cover = chosen_type.get('slug') == COVER_SLUG

        width = height = None
        if item.source == 'uploaded_file' and item.data:
            dimensions = read_image_dimensions(item.data)
            if dimensions is not None:
                width, height = dimensions

        if is_cover and item.source == 'uploaded_file':
            min_width, min_height = min_cover_size
            if (width or 0) < min_width or (height or 0) < min_height:
                raise MediaError(
                    f'Cover image must be at least {min_width}x{min_height} pixels'
                )

        storage_bucket = storage_path = source_url = None
        embed_provider = embed_id = None

        if item.source == 'uploaded_file':
            if not item.data:
                raise MediaError('Uploaded media requires a file')
            bucket = 'covers' if is_cover else 'media'
            path = _storage_path(game_id, item, chosen_type.get('canonical_name'))
            try:
                storage.upload(bucket, path, item.data)
            except StorageError as exc:
                raise MediaError(str(exc)) from exc
            storage_bucket = bucket
            storage_path = path
        elif item.source == 'external_url':
            source_url = _normalize_text(item.url) or None
        elif item.source == 'embedded':
            parsed = parse_embed_url(item.url) if item.url else None
            embed_provider = (
                _normalize_text(item.embed_provider)
                or (parsed.provider if parsed else '')
            ).lower() or None
            embed_id = _normalize_text(item.embed_id) or (parsed.id if parsed else None)
            if not embed_provider or not embed_id:
                raise MediaError('Embedded media requires a provider and embed ID')
            if embed_provider not in SUPPORTED_PROVIDERS:
                logger.warning("Embedded media uses unlisted provider %s", embed_provider)
        else:
            raise MediaError(f'Unsupported media source "{item.source}"')

        rows.append(
            {
                'id': new_id(),
                'entity_type': 'game',
                'entity_id': game_id,
                'media_type_id': item.media_type_id,
                'asset_source': item.source,
                'title': _normalize_text(item.title) or None,
                'caption': _normalize_text(item.caption) or None,
                'credit': _normalize_text(item.credit) or None,
                'storage_bucket': storage_bucket,
                'storage_path': storage_path,
                'source_url': source_url,
                'embed_provider': embed_provider,
                'embed_id': embed_id,
                'mime_type': item.content_type or None,
                'file_size_bytes': len(item.data) if item.data else None,
                'width': width,
                'height': height,
                'is_official': bool(item.is_official),
                'is_nsfw': bool(item.is_nsfw),
                'created_at': now_utc(),
            }
        )

    return rows


def insert_media_rows(conn: Connection, rows: Sequence[Mapping[str, Any]]) -> None:
    if rows:
        conn.execute(insert(media), [dict(row) for row in rows])


def _public_url(row: Mapping[str, Any], storage: LocalStorage) -> str | None:
    if row.get('storage_bucket') and row.get('storage_path'):
        return storage.public_url(row['storage_bucket'], row['storage_path'])
    return row.get('source_url')


def list_game_media(
    conn: Connection, game_id: str, storage: LocalStorage
) -> list[dict[str, Any]]:
    """Return the game's non-deleted media, newest first, with public URLs."""

    rows = (
        conn.execute(
            select(media)
            .where(
                media.c.entity_type == 'game',
                media.c.entity_id == game_id,
                media.c.deleted_at.is_(None),
            )
            .order_by(media.c.created_at.desc())
        )
        .mappings()
        .all()
    )
    items = []
    for row in rows:
        item = dict(row)
        item['public_url'] = _public_url(row, storage)
        items.append(item)
    return items


def get_media(conn: Connection, media_id: str) -> dict[str, Any] | None:
    row = conn.execute(select(media).where(media.c.id == media_id)).mappings().first()
    return dict(row) if row is not None else None


_EDITABLE_TEXT_FIELDS = ('title', 'caption', 'credit')


def update_media(conn: Connection, media_id: str, fields: Mapping[str, Any]) -> dict[str, Any] | None:
    """Update the editable metadata of ``media_id``; returns the stored row."""

    current = get_media(conn, media_id)
    if current is None:
        return None

    values: dict[str, Any] = {}
    media_type_id = _normalize_text(fields.get('media_type_id'))
    if media_type_id:
        values['media_type_id'] = media_type_id
    for key in _EDITABLE_TEXT_FIELDS:
        if key in fields:
            values[key] = _normalize_text(fields.get(key)) or None
    for key in ('is_official', 'is_nsfw'):
        if key in fields:
            values[key] = _coerce_bool(fields.get(key))

    if values:
        conn.execute(sa_update(media).where(media.c.id == media_id).values(**values))
    return get_media(conn, media_id)


def delete_media(conn: Connection, media_id: str, storage: LocalStorage) -> dict[str, Any] | None:
    """Delete ``media_id`` and its stored object; returns the deleted row."""

    current = get_media(conn, media_id)
    if current is None:
        return None

    if current.get('storage_bucket') and current.get('storage_path'):
        try:
            storage.remove(current['storage_bucket'], [current['storage_path']])
        except StorageError:
            logger.warning(
                "Failed to remove stored object for media %s", media_id, exc_info=True
            )

    conn.execute(
        sa_update(games)
        .where(games.c.cover_asset_id == media_id)
        .values(cover_asset_id=None)
    )
    conn.execute(media.delete().where(media.c.id == media_id))
    return current


__all__ = [
    'COVER_SLUG',
    'MediaError',
    'MediaItemInput',
    'build_media_rows',
    'delete_media',
    'find_cover_type_id',
    'get_media',
    'insert_media_rows',
    'list_game_media',
    'open_image_auto_rotate',
    'read_image_dimensions',
    'update_media',
]
