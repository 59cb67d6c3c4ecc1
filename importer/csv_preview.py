"""CSV template generation and bulk-import preview for games."""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field
from typing import Any

import pandas as pd
from sqlalchemy.engine import Connection

from db.schema import GAME_STATUSES
from helpers import (
    _coerce_optional_int,
    _normalize_text,
    _parse_slug_list,
)
from lookups.service import resolve_slugs

logger = logging.getLogger(__name__)

TEMPLATE_FILENAME = 'games_template.csv'

TEMPLATE_HEADERS: tuple[str, ...] = (
    'canonical_title',
    'sort_title',
    'status',
    'synopsis_short',
    'description_long',
    'first_announced_date',
    'first_release_date',
    'primary_genre_slug',
    'additional_genre_slugs',
    'engine_slug',
    'monetisation_model_slug',
    'coop_supported',
    'max_players_local',
    'max_players_online',
    'is_vr_supported',
    'is_vr_only',
    'is_cloud_only',
    'crossplay_supported',
    'crosssave_supported',
    'official_site',
    'press_kit_url',
    'age_ratings_summary',
    'business_model_notes',
    'accessibility_summary',
    'tech_notes',
    'notes_internal',
)

_BOOLEAN_COLUMNS = (
    'coop_supported',
    'is_vr_supported',
    'is_vr_only',
    'is_cloud_only',
    'crossplay_supported',
    'crosssave_supported',
)

_TEXT_COLUMNS = (
    'synopsis_short',
    'description_long',
    'first_announced_date',
    'first_release_date',
    'official_site',
    'press_kit_url',
    'age_ratings_summary',
    'business_model_notes',
    'accessibility_summary',
    'tech_notes',
    'notes_internal',
)


class CsvImportError(ValueError):
    """Raised when an uploaded CSV cannot be used as an import template."""


@dataclass
class ImportPreview:
    row_count: int
    unresolved: int
    payloads: list[dict[str, Any]] = field(default_factory=list)
    unresolved_slugs: list[str] = field(default_factory=list)

    @property
    def message(self) -> str:
        if self.unresolved > 0:
            suffix = f'{self.unresolved} unresolved lookup(s).'
        else:
            suffix = 'All lookups resolved.'
        return f'Parsed {self.row_count} row(s). {suffix}'

    def to_dict(self) -> dict[str, Any]:
        return {
            'rows': self.row_count,
            'unresolved': self.unresolved,
            'unresolved_slugs': self.unresolved_slugs,
            'message': self.message,
            'payloads': self.payloads,
        }


def template_csv() -> str:
    """Return the import template: the header row and a trailing newline."""

    return pd.DataFrame(columns=list(TEMPLATE_HEADERS)).to_csv(
        index=False, lineterminator='\n'
    )


def parse_csv(text: str) -> list[dict[str, str]]:
    """Parse CSV ``text`` into records keyed by the trimmed header names.

    Quoted fields may contain commas, newlines and doubled quotes. Blank lines
    are skipped, values are trimmed, and missing trailing values read as ``""``.
    When a header name repeats, the rightmost column's value is kept. A quote
    inside an unquoted field is kept as a literal character.
    """

    if not text or not text.strip():
        return []
    try:
        # Header row read as data; pandas would rename repeats to "a.1".
        frame = pd.read_csv(
            io.StringIO(text),
            header=None,
            dtype=str,
            index_col=False,
            keep_default_na=False,
            skip_blank_lines=True,
            skipinitialspace=False,
        )
    except pd.errors.EmptyDataError:
        return []
    except pd.errors.ParserError as exc:
        raise CsvImportError(f'Failed to parse template: {exc}') from exc

    frame = frame.fillna('')
    rows = frame.values.tolist()
    if not rows:
        return []
    headers = [str(column).strip() for column in rows[0]]
    records: list[dict[str, str]] = []
    for values in rows[1:]:
        cleaned = {
            header: str(value).strip() for header, value in zip(headers, values)
        }
        if not any(cleaned.values()):
            continue
        records.append(cleaned)
    return records


def _game_payload(
    record: dict[str, str],
    *,
    primary_genre_id: str | None,
    engine_id: str | None,
    monetisation_model_id: str | None,
) -> dict[str, Any]:
    title = record.get('canonical_title', '')
    status = _normalize_text(record.get('status')).lower() or 'announced'
    payload: dict[str, Any] = {
        'canonical_title': title,
        'sort_title': record.get('sort_title') or title,
        'status': status,
        'primary_genre_id': primary_genre_id,
        'engine_id': engine_id,
        'monetisation_model_id': monetisation_model_id,
        'max_players_local': _coerce_optional_int(record.get('max_players_local')),
        'max_players_online': _coerce_optional_int(record.get('max_players_online')),
    }
    for column in _BOOLEAN_COLUMNS:
        payload[column] = _normalize_text(record.get(column)).lower() == 'true'
    for column in _TEXT_COLUMNS:
        payload[column] = record.get(column) or None
    return payload


def preview_import(conn: Connection, text: str) -> ImportPreview:
    """Parse an uploaded template and resolve its lookup slugs without inserting.

    Unresolved primary genre, engine, monetisation and additional genre slugs
    are all counted in ``unresolved``.
    """

    rows = parse_csv(text)
    if not rows:
        raise CsvImportError('No rows found in CSV')

    missing_headers = [header for header in TEMPLATE_HEADERS if header not in rows[0]]
    if missing_headers:
        raise CsvImportError(f"Missing columns: {', '.join(missing_headers)}")

    genre_slugs: set[str] = set()
    engine_slugs: set[str] = set()
    monetisation_slugs: set[str] = set()
    for row in rows:
        if row['primary_genre_slug']:
            genre_slugs.add(row['primary_genre_slug'].lower())
        genre_slugs.update(_parse_slug_list(row['additional_genre_slugs']))
        if row['engine_slug']:
            engine_slugs.add(row['engine_slug'].lower())
        if row['monetisation_model_slug']:
            monetisation_slugs.add(row['monetisation_model_slug'].lower())

    genre_map = resolve_slugs(conn, ['genre'], genre_slugs)
    engine_map = resolve_slugs(conn, ['engine'], engine_slugs)
    monetisation_map = resolve_slugs(conn, ['monetisation_model'], monetisation_slugs)

    unresolved = 0
    unresolved_slugs: list[str] = []

    def _resolve(slug: str, mapping: dict[str, str]) -> str | None:
        nonlocal unresolved
        if not slug:
            return None
        resolved = mapping.get(slug.lower())
        if resolved is None:
            unresolved += 1
            unresolved_slugs.append(slug.lower())
        return resolved

    payloads: list[dict[str, Any]] = []
    for row in rows:
        primary_genre_id = _resolve(row['primary_genre_slug'], genre_map)
        engine_id = _resolve(row['engine_slug'], engine_map)
        monetisation_id = _resolve(row['monetisation_model_slug'], monetisation_map)
        additional_genre_ids = [
            genre_id
            for genre_id in (
                _resolve(slug, genre_map)
                for slug in _parse_slug_list(row['additional_genre_slugs'])
            )
            if genre_id is not None
        ]
        game = _game_payload(
            row,
            primary_genre_id=primary_genre_id,
            engine_id=engine_id,
            monetisation_model_id=monetisation_id,
        )
        if game['status'] not in GAME_STATUSES:
            logger.warning(
                "CSV row %r has unknown status %r", game['canonical_title'], game['status']
            )
        payloads.append({'game': game, 'additional_genre_ids': additional_genre_ids})

    preview = ImportPreview(
        row_count=len(rows),
        unresolved=unresolved,
        payloads=payloads,
        unresolved_slugs=sorted(set(unresolved_slugs)),
    )
    logger.info("CSV payloads (preview only, not inserted): %s", payloads)
    return preview


__all__ = [
    'CsvImportError',
    'ImportPreview',
    'TEMPLATE_FILENAME',
    'TEMPLATE_HEADERS',
    'parse_csv',
    'preview_import',
    'template_csv',
]
