"""Parsing of the multi-tab game form into typed inputs."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date
from pathlib import PurePath
from typing import Any, Mapping, Protocol

from db.schema import GAME_STATUSES, MEDIA_SOURCES
from helpers import (
    _coerce_bool,
    _coerce_optional_int,
    _dedupe_preserve_order,
    _normalize_text,
    _parse_iso_date,
)
from media.service import MediaItemInput

FORM_TABS = (
    ('basics', 'Basics'),
    ('classification', 'Classification'),
    ('technical', 'Technical'),
    ('links', 'Links'),
    ('age_rating', 'Age rating'),
    ('release', 'Initial release'),
    ('media', 'Media'),
)

DEFAULT_EDITION_NAME = 'Standard Edition'

GAME_TEXT_FIELDS = (
    'canonical_title',
    'sort_title',
    'synopsis_short',
    'description_long',
    'official_site',
    'press_kit_url',
    'age_ratings_summary',
    'business_model_notes',
    'accessibility_summary',
    'tech_notes',
    'notes_internal',
)
GAME_DATE_FIELDS = ('first_announced_date', 'first_release_date')
GAME_LOOKUP_FIELDS = ('primary_genre_id', 'engine_id', 'monetisation_model_id')
GAME_INT_FIELDS = ('max_players_local', 'max_players_online')
GAME_BOOL_FIELDS = (
    'coop_supported',
    'is_vr_supported',
    'is_vr_only',
    'is_cloud_only',
    'crossplay_supported',
    'crosssave_supported',
)

_INDEXED_FIELD_RE = re.compile(r'^(?P<prefix>ratings|media)-(?P<index>\d+)-(?P<name>\w+)$')


class ValidationError(ValueError):
    """Raised when submitted form values cannot be accepted."""


class FormData(Protocol):
    def get(self, key: str, default: Any = None) -> Any: ...

    def getlist(self, key: str) -> list[Any]: ...

    def keys(self) -> Any: ...


@dataclass
class RatingInput:
    board_id: str | None = None
    category_id: str | None = None
    region_id: str | None = None
    rating_date: date | None = None
    certificate: str | None = None
    interactive: str | None = None
    notes: str | None = None

    @property
    def is_complete(self) -> bool:
        return bool(self.board_id and self.category_id)


@dataclass
class InitialReleaseInput:
    edition_name: str = DEFAULT_EDITION_NAME
    release_type_id: str | None = None
    platform_id: str | None = None
    region_id: str | None = None
    release_date: date | None = None
    distribution_format_id: str | None = None
    drm_tech_id: str | None = None
    storefront_id: str | None = None
    store_product_id: str | None = None
    store_url: str | None = None

    @property
    def is_ready(self) -> bool:
        return bool(self.platform_id and self.region_id)


@dataclass
class GameForm:
    game: dict[str, Any]
    additional_genre_ids: list[str] = field(default_factory=list)
    theme_ids: list[str] = field(default_factory=list)
    mode_ids: list[str] = field(default_factory=list)
    ratings: list[RatingInput] = field(default_factory=list)
    create_initial_release: bool = False
    initial_release: InitialReleaseInput = field(default_factory=InitialReleaseInput)
    media_items: list[MediaItemInput] = field(default_factory=list)

    def complete_ratings(self) -> list[RatingInput]:
        return [rating for rating in self.ratings if rating.is_complete]


def _optional(value: Any) -> str | None:
    return _normalize_text(value) or None


def _ids(form: FormData, key: str) -> list[str]:
    return _dedupe_preserve_order(_normalize_text(value) for value in form.getlist(key))


def _indexed_groups(form: FormData, prefix: str) -> list[dict[str, Any]]:
    groups: dict[int, dict[str, Any]] = {}
    for key in form.keys():
        match = _INDEXED_FIELD_RE.match(key)
        if match is None or match.group('prefix') != prefix:
            continue
        groups.setdefault(int(match.group('index')), {})[match.group('name')] = form.get(key)
    return [groups[index] for index in sorted(groups)]


# Submitted rating field name -> age_ratings column name.
_RATING_COLUMNS = {
    'board_id': 'board_id',
    'category_id': 'rating_category_id',
    'region_id': 'region_id',
    'date': 'rating_date',
    'certificate': 'certificate_id',
    'interactive': 'interactive_elements',
    'notes': 'notes',
}


def submitted_ratings(form: FormData) -> list[dict[str, Any]]:
    """Return the raw ``ratings-N-*`` rows of ``form`` keyed like ``age_ratings`` columns.

    Values are returned as typed so a rejected form can be shown again.
    """

    rows = []
    for group in _indexed_groups(form, 'ratings'):
        row = {column: _normalize_text(group.get(name)) for name, column in _RATING_COLUMNS.items()}
        if any(row.values()):
            rows.append(row)
    return rows


def _parse_date_text(value: Any, label: str) -> date | None:
    try:
        return _parse_iso_date(value)
    except ValueError as exc:
        raise ValidationError(f'{label} must be a date (YYYY-MM-DD)') from exc


def parse_game_fields(form: FormData) -> dict[str, Any]:
    """Return the ``games`` column values submitted with ``form``."""

    game: dict[str, Any] = {}
    for key in GAME_TEXT_FIELDS:
        game[key] = _optional(form.get(key))
    for key in GAME_LOOKUP_FIELDS:
        game[key] = _optional(form.get(key))
    for key in GAME_DATE_FIELDS:
        game[key] = _parse_date_text(form.get(key), key.replace('_', ' ').capitalize())
    for key in GAME_INT_FIELDS:
        raw = _normalize_text(form.get(key))
        number = _coerce_optional_int(raw)
        if raw and (number is None or number < 0):
            raise ValidationError(f"{key.replace('_', ' ').capitalize()} must be a positive number")
        game[key] = number
    for key in GAME_BOOL_FIELDS:
        game[key] = _coerce_bool(form.get(key))

    status = _normalize_text(form.get('status')).lower() or 'announced'
    if status not in GAME_STATUSES:
        raise ValidationError(f'Unknown status "{status}"')
    game['status'] = status
    return game


def _parse_ratings(form: FormData) -> list[RatingInput]:
    ratings = []
    for group in _indexed_groups(form, 'ratings'):
        ratings.append(
            RatingInput(
                board_id=_optional(group.get('board_id')),
                category_id=_optional(group.get('category_id')),
                region_id=_optional(group.get('region_id')),
                rating_date=_parse_date_text(group.get('date'), 'Rating date'),
                certificate=_optional(group.get('certificate')),
                interactive=_optional(group.get('interactive')),
                notes=_optional(group.get('notes')),
            )
        )
    return ratings


def _parse_initial_release(form: FormData) -> InitialReleaseInput:
    return InitialReleaseInput(
        edition_name=_normalize_text(form.get('edition_name')) or DEFAULT_EDITION_NAME,
        release_type_id=_optional(form.get('release_type_id')),
        platform_id=_optional(form.get('release_platform_id')),
        region_id=_optional(form.get('release_region_id')),
        release_date=_parse_date_text(form.get('release_date'), 'Release date'),
        distribution_format_id=_optional(form.get('distribution_format_id')),
        drm_tech_id=_optional(form.get('drm_tech_id')),
        storefront_id=_optional(form.get('storefront_id')),
        store_product_id=_optional(form.get('store_product_id')),
        store_url=_optional(form.get('store_url')),
    )


def _read_upload(upload: Any) -> tuple[str | None, bytes | None, str | None]:
    if upload is None or not getattr(upload, 'filename', None):
        return None, None, None
    data = upload.read()
    return upload.filename, data or None, getattr(upload, 'mimetype', None) or None


def _parse_media(form: FormData, files: Mapping[str, Any] | None) -> list[MediaItemInput]:
    files = files or {}
    items: list[MediaItemInput] = []
    indexes = sorted(
        {
            int(match.group('index'))
            for key in list(form.keys()) + list(files.keys())
            if (match := _INDEXED_FIELD_RE.match(key)) and match.group('prefix') == 'media'
        }
    )
    for index in indexes:
        prefix = f'media-{index}-'
        source = _normalize_text(form.get(f'{prefix}source')) or 'uploaded_file'
        if source not in MEDIA_SOURCES:
            raise ValidationError(f'Unsupported media source "{source}"')
        filename, data, content_type = _read_upload(files.get(f'{prefix}file'))
        items.append(
            MediaItemInput(
                media_type_id=_optional(form.get(f'{prefix}type_id')),
                source=source,
                filename=filename,
                data=data,
                content_type=content_type,
                url=_optional(form.get(f'{prefix}url')),
                embed_provider=_optional(form.get(f'{prefix}embed_provider')),
                embed_id=_optional(form.get(f'{prefix}embed_id')),
                title=_optional(form.get(f'{prefix}title')),
                caption=_optional(form.get(f'{prefix}caption')),
                credit=_optional(form.get(f'{prefix}credit')),
                is_official=_coerce_bool(form.get(f'{prefix}is_official')),
                is_nsfw=_coerce_bool(form.get(f'{prefix}is_nsfw')),
            )
        )

    bulk_type_id = _optional(form.get('media_bulk_type_id'))
    getlist = getattr(files, 'getlist', None)
    bulk_uploads = getlist('media_bulk_files') if getlist is not None else []
    for upload in bulk_uploads:
        filename, data, content_type = _read_upload(upload)
        if data is None:
            continue
        items.append(
            MediaItemInput(
                media_type_id=bulk_type_id,
                filename=filename,
                data=data,
                content_type=content_type,
                title=PurePath(filename or '').stem or None,
            )
        )
    return items


def parse_game_form(form: FormData, files: Mapping[str, Any] | None = None) -> GameForm:
    """Build a :class:`GameForm` from submitted fields and uploaded files."""

    return GameForm(
        game=parse_game_fields(form),
        additional_genre_ids=_ids(form, 'additional_genre_ids'),
        theme_ids=_ids(form, 'theme_ids'),
        mode_ids=_ids(form, 'mode_ids'),
        ratings=_parse_ratings(form),
        create_initial_release=_coerce_bool(form.get('create_initial_release')),
        initial_release=_parse_initial_release(form),
        media_items=_parse_media(form, files),
    )


__all__ = [
    'DEFAULT_EDITION_NAME',
    'FORM_TABS',
    'GameForm',
    'InitialReleaseInput',
    'RatingInput',
    'ValidationError',
    'parse_game_fields',
    'parse_game_form',
    'submitted_ratings',
]
