"""Lookup-table persistence and service-layer helpers."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

import pandas as pd
from sqlalchemy import and_, func, insert, select, update as sa_update
from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from db.schema import lookups, new_id, now_utc
from helpers import _coerce_optional_int, _normalize_text, slugify

logger = logging.getLogger(__name__)


class LookupServiceError(RuntimeError):
    """Base class for lookup service errors."""


class LookupNotFoundError(LookupServiceError):
    """Raised when a lookup entry cannot be located."""


LOOKUP_TYPES: dict[str, dict[str, Any]] = {
    'genre': {'label': 'Genre', 'order': 'sort_order'},
    'theme': {'label': 'Theme', 'order': 'canonical_name'},
    'mode': {'label': 'Game mode', 'order': 'canonical_name'},
    'engine': {'label': 'Engine', 'order': 'canonical_name'},
    'monetisation_model': {'label': 'Monetisation model', 'order': 'sort_order'},
    'platform': {'label': 'Platform', 'order': 'sort_order'},
    'region': {'label': 'Region', 'order': 'sort_order'},
    'release_type': {'label': 'Release type', 'order': 'sort_order'},
    'distribution_format': {'label': 'Distribution format', 'order': 'sort_order'},
    'drm_tech': {'label': 'DRM', 'order': 'canonical_name'},
    'storefront': {'label': 'Storefront', 'order': 'canonical_name'},
    'age_rating_board': {
        'label': 'Rating board',
        'order': 'canonical_name',
        'aliases': ('rating_board',),
    },
    'age_rating_category': {
        'label': 'Rating category',
        'order': 'canonical_name',
        'aliases': ('rating_category',),
    },
    'media_type': {'label': 'Media type', 'order': 'sort_order'},
}

# Keys used by the game form for each lookup list.
FORM_LOOKUP_KEYS: dict[str, str] = {
    'genres': 'genre',
    'themes': 'theme',
    'modes': 'mode',
    'engines': 'engine',
    'monetisation_models': 'monetisation_model',
    'platforms': 'platform',
    'regions': 'region',
    'release_types': 'release_type',
    'distribution_formats': 'distribution_format',
    'drm_techs': 'drm_tech',
    'storefronts': 'storefront',
    'rating_boards': 'age_rating_board',
    'rating_categories': 'age_rating_category',
    'media_types': 'media_type',
}


def _build_endpoint_map() -> dict[str, str]:
    mapping: dict[str, str] = {}
    for lookup_type, config in LOOKUP_TYPES.items():
        names = (lookup_type, *config.get('aliases', ()))
        for name in names:
            mapping[name] = lookup_type
            mapping[f'{name}s'] = lookup_type
    for form_key, lookup_type in FORM_LOOKUP_KEYS.items():
        mapping[form_key] = lookup_type
    return mapping


LOOKUP_ENDPOINT_MAP: dict[str, str] = _build_endpoint_map()


def normalize_lookup_type(raw_value: Any) -> str | None:
    """Return the canonical lookup type for ``raw_value`` (``"rating-boards"`` etc.)."""

    text = _normalize_text(raw_value).lower().replace('-', '_').replace(' ', '_')
    if not text:
        return None
    return LOOKUP_ENDPOINT_MAP.get(text)


def stored_types(lookup_type: str) -> tuple[str, ...]:
    """Return every ``lookups.type`` value stored for ``lookup_type``."""

    config = LOOKUP_TYPES.get(lookup_type, {})
    return (lookup_type, *config.get('aliases', ()))


def format_lookup_label(lookup_type: str) -> str:
    config = LOOKUP_TYPES.get(lookup_type)
    if config is None:
        return lookup_type.replace('_', ' ').capitalize()
    return config['label']


def _row_to_item(row: Mapping[str, Any]) -> dict[str, Any]:
    return {
        'id': row['id'],
        'type': row['type'],
        'canonical_name': _normalize_text(row['canonical_name']),
        'slug': row['slug'],
        'description': row.get('description'),
        'sort_order': row.get('sort_order') or 0,
        'is_active': bool(row.get('is_active', True)) and row.get('deleted_at') is None,
    }


def list_lookups(
    conn: Connection,
    lookup_type: str,
    *,
    include_inactive: bool = False,
) -> list[dict[str, Any]]:
    """Return the entries of ``lookup_type`` in the type's display order."""

    config = LOOKUP_TYPES.get(lookup_type)
    if config is None:
        raise LookupNotFoundError(f'unknown lookup type: {lookup_type}')

    statement = select(lookups).where(lookups.c.type.in_(stored_types(lookup_type)))
    if not include_inactive:
        statement = statement.where(
            lookups.c.is_active.is_(True), lookups.c.deleted_at.is_(None)
        )
    if config['order'] == 'sort_order':
        statement = statement.order_by(
            lookups.c.sort_order, func.lower(lookups.c.canonical_name)
        )
    else:
        statement = statement.order_by(func.lower(lookups.c.canonical_name))

    rows = conn.execute(statement).mappings().all()
    return [_row_to_item(row) for row in rows]


def load_form_lookups(conn: Connection) -> dict[str, list[dict[str, Any]]]:
    """Return every lookup list rendered by the game form."""

    return {
        form_key: list_lookups(conn, lookup_type)
        for form_key, lookup_type in FORM_LOOKUP_KEYS.items()
    }


def get_lookup(conn: Connection, lookup_id: str) -> dict[str, Any] | None:
    row = (
        conn.execute(select(lookups).where(lookups.c.id == lookup_id))
        .mappings()
        .first()
    )
    if row is None:
        return None
    return _row_to_item(row)


def _lookup_by_slug(
    conn: Connection, lookup_type: str, slug: str
) -> dict[str, Any] | None:
    row = (
        conn.execute(
            select(lookups).where(
                lookups.c.type.in_(stored_types(lookup_type)),
                lookups.c.slug == slug,
            )
        )
        .mappings()
        .first()
    )
    if row is None:
        return None
    return _row_to_item(row)


def create_lookup(
    conn: Connection,
    lookup_type: str,
    raw_name: Any,
    *,
    description: Any = None,
    sort_order: Any = None,
) -> tuple[str, dict[str, Any] | None]:
    """Create a lookup entry when missing and return ``(status, item)``.

    ``status`` is ``"created"``, ``"exists"`` when an active entry with the same
    slug is already stored for the type, ``"reactivated"`` when a deactivated
    entry with that slug is brought back, or ``"invalid"`` for blank names and
    unknown types.
    """

    if lookup_type not in LOOKUP_TYPES:
        return 'invalid', None
    name = _normalize_text(raw_name)
    slug = slugify(name)
    if not name or not slug:
        return 'invalid', None

    existing = _lookup_by_slug(conn, lookup_type, slug)
    if existing is not None:
        if existing['is_active']:
            return 'exists', existing
        values = {
            'canonical_name': name,
            'description': _normalize_text(description) or existing['description'],
            'is_active': True,
            'deleted_at': None,
        }
        if _coerce_optional_int(sort_order) is not None:
            values['sort_order'] = _coerce_optional_int(sort_order)
        conn.execute(
            sa_update(lookups).where(lookups.c.id == existing['id']).values(**values)
        )
        logger.info("Reactivated lookup %s/%s", existing['type'], slug)
        return 'reactivated', get_lookup(conn, existing['id'])

    lookup_id = new_id()
    values = {
        'id': lookup_id,
        'type': lookup_type,
        'canonical_name': name,
        'slug': slug,
        'description': _normalize_text(description) or None,
        'sort_order': _coerce_optional_int(sort_order) or 0,
        'is_active': True,
    }
    try:
        conn.execute(insert(lookups).values(**values))
    except IntegrityError:
        logger.warning("Lookup %s/%s inserted concurrently", lookup_type, slug)
        existing = _lookup_by_slug(conn, lookup_type, slug)
        if existing is None:
            raise
        return 'exists', existing

    created = get_lookup(conn, lookup_id)
    if created is None:  # pragma: no cover - insert visible in same transaction
        return 'invalid', None
    return 'created', created


def update_lookup(
    conn: Connection,
    lookup_id: str,
    raw_name: Any,
    *,
    description: Any = None,
) -> tuple[str, dict[str, Any] | None]:
    """Rename ``lookup_id``; the slug follows the new name."""

    name = _normalize_text(raw_name)
    slug = slugify(name)
    if not name or not slug:
        return 'invalid', None

    current = get_lookup(conn, lookup_id)
    if current is None:
        return 'not_found', None

    conflict = conn.execute(
        select(lookups.c.id).where(
            lookups.c.type.in_(stored_types(current['type'])),
            lookups.c.slug == slug,
            lookups.c.id != lookup_id,
        )
    ).first()
    if conflict is not None:
        return 'conflict', None

    conn.execute(
        sa_update(lookups)
        .where(lookups.c.id == lookup_id)
        .values(
            canonical_name=name,
            slug=slug,
            description=_normalize_text(description) or None,
        )
    )
    return 'updated', get_lookup(conn, lookup_id)


def deactivate_lookup(conn: Connection, lookup_id: str) -> bool:
    """Hide ``lookup_id`` from the forms without breaking existing references."""

    result = conn.execute(
        sa_update(lookups)
        .where(lookups.c.id == lookup_id, lookups.c.deleted_at.is_(None))
        .values(is_active=False, deleted_at=now_utc())
    )
    return bool(result.rowcount)


def resolve_slugs(
    conn: Connection,
    lookup_types: Iterable[str],
    slugs: Iterable[str],
) -> dict[str, str]:
    """Return ``{slug: id}`` for the given slugs in one query.

    Slugs are compared lowercase; unknown slugs are simply absent from the map.
    """

    wanted = sorted({_normalize_text(slug).lower() for slug in slugs} - {''})
    if not wanted:
        return {}
    types: list[str] = []
    for lookup_type in lookup_types:
        types.extend(stored_types(lookup_type))

    rows = conn.execute(
        select(lookups.c.id, lookups.c.slug).where(
            and_(
                lookups.c.type.in_(types),
                func.lower(lookups.c.slug).in_(wanted),
                lookups.c.deleted_at.is_(None),
            )
        )
    ).all()
    return {str(row.slug).lower(): row.id for row in rows}


def seed_lookups(conn: Connection, frame: pd.DataFrame) -> int:
    """Insert lookup rows from ``frame`` that are not stored yet.

    ``frame`` needs ``type`` and ``canonical_name`` columns; ``slug``,
    ``description`` and ``sort_order`` are optional.
    """

    if frame.empty:
        return 0
    missing = {'type', 'canonical_name'} - set(frame.columns)
    if missing:
        raise LookupServiceError(
            f"lookup seed is missing columns: {', '.join(sorted(missing))}"
        )

    existing = {
        (row.type, row.slug)
        for row in conn.execute(select(lookups.c.type, lookups.c.slug))
    }

    rows: list[dict[str, Any]] = []
    for record in frame.to_dict(orient='records'):
        lookup_type = normalize_lookup_type(record.get('type'))
        name = _normalize_text(record.get('canonical_name'))
        if lookup_type is None or not name:
            logger.warning("Skipping invalid lookup seed row: %s", record)
            continue
        slug = slugify(record.get('slug')) or slugify(name)
        key = (lookup_type, slug)
        if key in existing:
            continue
        existing.add(key)
        rows.append(
            {
                'id': new_id(),
                'type': lookup_type,
                'canonical_name': name,
                'slug': slug,
                'description': _normalize_text(record.get('description')) or None,
                'sort_order': _coerce_optional_int(record.get('sort_order')) or 0,
                'is_active': True,
                'created_at': now_utc(),
            }
        )

    if rows:
        try:
            conn.execute(insert(lookups), rows)
        except SQLAlchemyError as exc:
            raise LookupServiceError('failed to seed lookups') from exc
    return len(rows)


__all__ = [
    'FORM_LOOKUP_KEYS',
    'LOOKUP_ENDPOINT_MAP',
    'LOOKUP_TYPES',
    'LookupNotFoundError',
    'LookupServiceError',
    'create_lookup',
    'deactivate_lookup',
    'format_lookup_label',
    'get_lookup',
    'list_lookups',
    'load_form_lookups',
    'normalize_lookup_type',
    'resolve_slugs',
    'seed_lookups',
    'stored_types',
    'update_lookup',
]
