"""Game persistence: the multi-step save flow, listing and soft deletion."""

from __future__ import annotations

import logging
import math
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator

from sqlalchemy import func, insert, or_, select, update as sa_update
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from accounts.service import record_audit
from catalog.forms import GameForm, ValidationError
from db.schema import (
    GAME_STATUSES,
    age_ratings,
    editions,
    game_genres,
    game_modes,
    game_themes,
    games,
    new_id,
    now_utc,
    releases,
)
from db.utils import DatabaseEngine
from lookups.service import list_lookups
from media.service import (
    MediaError,
    build_media_rows,
    find_cover_type_id,
    insert_media_rows,
    list_game_media,
)
from media.storage import LocalStorage, StorageError

logger = logging.getLogger(__name__)

SORT_COLUMNS = {
    'title': func.lower(games.c.canonical_title),
    'status': games.c.status,
    'first_release_date': games.c.first_release_date,
    'created_at': games.c.created_at,
}
DEFAULT_SORT = 'created_at'

_JOIN_TABLES = (
    (game_genres, 'genre_id', 'additional_genre_ids'),
    (game_themes, 'theme_id', 'theme_ids'),
    (game_modes, 'mode_id', 'mode_ids'),
)


class GameSaveError(RuntimeError):
    """Raised when a save step fails; earlier steps stay committed."""

    def __init__(self, message: str, *, step: str, game_id: str | None = None):
        super().__init__(message)
        self.step = step
        self.game_id = game_id


@dataclass
class SaveResult:
    game_id: str
    created: bool
    media_ids: list[str] = field(default_factory=list)
    cover_asset_id: str | None = None


@dataclass
class GamesPage:
    rows: list[dict[str, Any]]
    total: int
    page: int
    page_size: int
    query: str = ''
    status: str = ''
    sort: str = DEFAULT_SORT
    direction: str = 'desc'

    @property
    def page_count(self) -> int:
        return max(1, math.ceil(self.total / self.page_size)) if self.page_size else 1

    @property
    def has_previous(self) -> bool:
        return self.page > 1

    @property
    def has_next(self) -> bool:
        return self.page < self.page_count

    def to_dict(self) -> dict[str, Any]:
        return {
            'games': self.rows,
            'total': self.total,
            'page': self.page,
            'page_size': self.page_size,
            'page_count': self.page_count,
            'query': self.query,
            'status': self.status,
            'sort': self.sort,
            'direction': self.direction,
        }


@contextmanager
def _step(name: str, game_id: str | None) -> Iterator[None]:
    try:
        yield
    except MediaError as exc:
        raise GameSaveError(str(exc), step=name, game_id=game_id) from exc
    except (SQLAlchemyError, StorageError) as exc:
        logger.exception("Game save step %s failed for %s", name, game_id or 'new game')
        raise GameSaveError(
            f'Failed to save game ({name.replace("_", " ")}): {exc}',
            step=name,
            game_id=game_id,
        ) from exc


def validate_game(form: GameForm) -> None:
    if not form.game.get('canonical_title') or not form.game.get('sort_title'):
        raise ValidationError('Title and sort title are required')
    if form.game.get('status') not in GAME_STATUSES:
        raise ValidationError(f"Unknown status \"{form.game.get('status')}\"")


def _replace_links(conn: Connection, game_id: str, form: GameForm) -> None:
    for table, column, attribute in _JOIN_TABLES:
        conn.execute(table.delete().where(table.c.game_id == game_id))
        ids = getattr(form, attribute)
        if ids:
            conn.execute(insert(table), [{'game_id': game_id, column: value} for value in ids])


def _replace_ratings(conn: Connection, game_id: str, form: GameForm) -> None:
    conn.execute(age_ratings.delete().where(age_ratings.c.game_id == game_id))
    rows = [
        {
            'id': new_id(),
            'game_id': game_id,
            'board_id': rating.board_id,
            'rating_category_id': rating.category_id,
            'region_id': rating.region_id,
            'rating_date': rating.rating_date,
            'certificate_id': rating.certificate,
            'interactive_elements': rating.interactive,
            'notes': rating.notes,
        }
        for rating in form.complete_ratings()
    ]
    if rows:
        conn.execute(insert(age_ratings), rows)


def _insert_initial_release(conn: Connection, game_id: str, form: GameForm) -> str:
    release = form.initial_release
    edition_id = new_id()
    conn.execute(
        insert(editions).values(
            id=edition_id,
            game_id=game_id,
            edition_name=release.edition_name,
            release_type_id=release.release_type_id,
            includes_base_game=True,
            created_at=now_utc(),
        )
    )
    conn.execute(
        insert(releases).values(
            id=new_id(),
            edition_id=edition_id,
            platform_id=release.platform_id,
            region_id=release.region_id,
            release_date=release.release_date,
            distribution_format_id=release.distribution_format_id,
            drm_tech_id=release.drm_tech_id,
            storefront_id=release.storefront_id,
            store_product_id=release.store_product_id,
            store_url=release.store_url,
            created_at=now_utc(),
        )
    )
    return edition_id


def save_game(
    db: DatabaseEngine,
    form: GameForm,
    *,
    storage: LocalStorage,
    game_id: str | None = None,
    user_id: str | None = None,
    min_cover_size: tuple[int, int] = (200, 300),
) -> SaveResult:
    """Create or update a game and its related rows.

    Every step runs in its own transaction. When a step fails the remaining
    steps are skipped and :class:`GameSaveError` is raised; writes from the
    completed steps are kept.
    """

    validate_game(form)
    is_edit = game_id is not None

    with _step('game', game_id), db.begin() as conn:
        if is_edit:
            result = conn.execute(
                sa_update(games)
                .where(games.c.id == game_id, games.c.deleted_at.is_(None))
                .values(**form.game, updated_at=now_utc())
            )
            if not result.rowcount:
                raise GameSaveError('Game not found', step='game', game_id=game_id)
        else:
            game_id = new_id()
            conn.execute(
                insert(games).values(
                    id=game_id, **form.game, created_at=now_utc(), updated_at=now_utc()
                )
            )

    with _step('classification', game_id), db.begin() as conn:
        _replace_links(conn, game_id, form)

    with _step('age_ratings', game_id), db.begin() as conn:
        _replace_ratings(conn, game_id, form)

    if not is_edit and form.create_initial_release and form.initial_release.is_ready:
        with _step('initial_release', game_id), db.begin() as conn:
            _insert_initial_release(conn, game_id, form)

    media_rows: list[dict[str, Any]] = []
    if form.media_items:
        with _step('media', game_id):
            with db.connect() as conn:
                media_types = list_lookups(conn, 'media_type')
            media_rows = build_media_rows(
                game_id,
                form.media_items,
                media_types=media_types,
                storage=storage,
                min_cover_size=min_cover_size,
            )
            with db.begin() as conn:
                insert_media_rows(conn, media_rows)
        cover_type_id = find_cover_type_id(media_types)
    else:
        cover_type_id = None

    cover_asset_id = next(
        (row['id'] for row in media_rows if cover_type_id and row['media_type_id'] == cover_type_id),
        None,
    )
    if cover_asset_id is not None:
        with _step('cover', game_id), db.begin() as conn:
            conn.execute(
                sa_update(games)
                .where(games.c.id == game_id)
                .values(cover_asset_id=cover_asset_id)
            )

    with _step('audit', game_id), db.begin() as conn:
        record_audit(
            conn,
            user_id=user_id,
            action='update' if is_edit else 'create',
            entity_type='game',
            entity_id=game_id,
            summary=form.game['canonical_title'],
        )

    logger.info(
        "%s game %s with %d media item(s)",
        'Updated' if is_edit else 'Created',
        game_id,
        len(media_rows),
    )
    return SaveResult(
        game_id=game_id,
        created=not is_edit,
        media_ids=[row['id'] for row in media_rows],
        cover_asset_id=cover_asset_id,
    )


def get_game(conn: Connection, game_id: str) -> dict[str, Any] | None:
    row = (
        conn.execute(
            select(games).where(games.c.id == game_id, games.c.deleted_at.is_(None))
        )
        .mappings()
        .first()
    )
    return dict(row) if row is not None else None


def load_game_for_edit(
    conn: Connection, game_id: str, storage: LocalStorage
) -> dict[str, Any] | None:
    """Return the game with its classification, ratings and media for the form."""

    game = get_game(conn, game_id)
    if game is None:
        return None

    linked: dict[str, list[str]] = {}
    for table, column, attribute in _JOIN_TABLES:
        linked[attribute] = list(
            conn.execute(
                select(table.c[column]).where(table.c.game_id == game_id)
            ).scalars()
        )

    ratings = [
        dict(row)
        for row in conn.execute(
            select(age_ratings).where(age_ratings.c.game_id == game_id)
        ).mappings()
    ]

    return {
        'game': game,
        **linked,
        'ratings': ratings,
        'media': list_game_media(conn, game_id, storage),
    }


def _serialize_row(row: Any) -> dict[str, Any]:
    item = dict(row)
    for key in ('first_release_date', 'created_at', 'updated_at'):
        value = item.get(key)
        if value is not None:
            item[key] = value.isoformat()
    return item


def list_games(
    conn: Connection,
    *,
    query: str | None = None,
    status: str | None = None,
    sort: str | None = None,
    direction: str | None = None,
    page: int = 1,
    page_size: int = 10,
) -> GamesPage:
    """Return a page of non-deleted games matching ``query`` and ``status``."""

    query_text = (query or '').strip()
    status_text = (status or '').strip().lower()
    sort_key = sort if sort in SORT_COLUMNS else DEFAULT_SORT
    order = 'asc' if (direction or '').lower() == 'asc' else 'desc'
    page_size = max(1, int(page_size))

    conditions = [games.c.deleted_at.is_(None)]
    if query_text:
        pattern = f'%{query_text.lower()}%'
        conditions.append(
            or_(
                func.lower(games.c.canonical_title).like(pattern),
                func.lower(games.c.sort_title).like(pattern),
            )
        )
    if status_text in GAME_STATUSES:
        conditions.append(games.c.status == status_text)
    else:
        status_text = ''

    total = conn.execute(
        select(func.count()).select_from(games).where(*conditions)
    ).scalar_one()

    page_count = max(1, math.ceil(total / page_size))
    page = min(max(1, int(page)), page_count)

    sort_column = SORT_COLUMNS[sort_key]
    ordering = sort_column.asc() if order == 'asc' else sort_column.desc()
    rows = conn.execute(
        select(
            games.c.id,
            games.c.canonical_title,
            games.c.sort_title,
            games.c.status,
            games.c.first_release_date,
            games.c.created_at,
            games.c.updated_at,
        )
        .where(*conditions)
        .order_by(ordering, games.c.id)
        .limit(page_size)
        .offset((page - 1) * page_size)
    ).mappings()

    return GamesPage(
        rows=[_serialize_row(row) for row in rows],
        total=total,
        page=page,
        page_size=page_size,
        query=query_text,
        status=status_text,
        sort=sort_key,
        direction=order,
    )


def recent_games(conn: Connection, limit: int = 25) -> list[dict[str, Any]]:
    return list_games(conn, sort='created_at', direction='desc', page_size=limit).rows


def delete_game(conn: Connection, game_id: str, *, user_id: str | None = None) -> bool:
    """Soft-delete ``game_id``; returns ``False`` when it does not exist."""

    result = conn.execute(
        sa_update(games)
        .where(games.c.id == game_id, games.c.deleted_at.is_(None))
        .values(deleted_at=now_utc())
    )
    if not result.rowcount:
        return False
    record_audit(
        conn,
        user_id=user_id,
        action='delete',
        entity_type='game',
        entity_id=game_id,
    )
    return True


__all__ = [
    'GameSaveError',
    'GamesPage',
    'SORT_COLUMNS',
    'SaveResult',
    'delete_game',
    'get_game',
    'list_games',
    'load_game_for_edit',
    'recent_games',
    'save_game',
    'validate_game',
]
