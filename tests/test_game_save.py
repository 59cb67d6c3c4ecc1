"""Tests for the multi-step game save flow."""

from datetime import date

import pytest
from sqlalchemy import func, select
from werkzeug.datastructures import MultiDict

from catalog.forms import ValidationError, parse_game_form
from catalog.service import GameSaveError, load_game_for_edit, save_game
from db.schema import (
    age_ratings,
    audit_logs,
    editions,
    game_genres,
    game_modes,
    game_themes,
    games,
    media,
    releases,
)
from tests.app_helpers import game_form_data, lookup_id, png_bytes, upload


def _count(engine, table, *conditions):
    with engine.connect() as conn:
        return conn.execute(select(func.count()).select_from(table).where(*conditions)).scalar_one()


def _ids(engine, table, column, game_id):
    with engine.connect() as conn:
        return set(conn.execute(select(table.c[column]).where(table.c.game_id == game_id)).scalars())


def test_parse_game_form_coerces_values():
    form = parse_game_form(
        game_form_data(
            synopsis_short='  ',
            first_release_date='2017-02-24',
            max_players_local='2',
            coop_supported='on',
            theme_ids=['a', 'b', 'a', ''],
        )
    )
    assert form.game['synopsis_short'] is None
    assert form.game['first_release_date'] == date(2017, 2, 24)
    assert form.game['max_players_local'] == 2
    assert form.game['max_players_online'] is None
    assert form.game['coop_supported'] is True
    assert form.game['is_vr_only'] is False
    assert form.theme_ids == ['a', 'b']
    assert form.create_initial_release is False


@pytest.mark.parametrize(
    'overrides, message',
    [
        ({'first_release_date': '24/02/2017'}, 'must be a date'),
        ({'max_players_online': '-3'}, 'must be a positive number'),
        ({'status': 'vapourware'}, 'Unknown status'),
    ],
)
def test_parse_game_form_rejects_bad_values(overrides, message):
    with pytest.raises(ValidationError, match=message):
        parse_game_form(game_form_data(**overrides))


def test_save_requires_titles(db, storage):
    form = parse_game_form(game_form_data(sort_title=''))
    with pytest.raises(ValidationError, match='Title and sort title are required'):
        save_game(db, form, storage=storage)
    assert _count(db, games) == 0


def test_create_game_with_related_rows(db, storage):
    genre = lookup_id(db, 'genre', 'action')
    theme = lookup_id(db, 'theme', 'fantasy')
    mode = lookup_id(db, 'mode', 'single-player')
    board = lookup_id(db, 'age_rating_board', 'pegi')
    category = lookup_id(db, 'age_rating_category', 'pegi-12')
    platform = lookup_id(db, 'platform', 'pc-windows')
    region = lookup_id(db, 'region', 'worldwide')

    form = parse_game_form(
        game_form_data(
            primary_genre_id=genre,
            additional_genre_ids=[genre],
            theme_ids=[theme],
            mode_ids=[mode],
            **{
                'ratings-0-board_id': board,
                'ratings-0-category_id': category,
                'ratings-0-date': '2017-02-01',
                'ratings-1-board_id': board,
                'create_initial_release': 'on',
                'release_platform_id': platform,
                'release_region_id': region,
                'release_date': '2017-02-24',
            },
        )
    )
    result = save_game(db, form, storage=storage, user_id='admin@example.com')

    assert result.created is True
    assert _ids(db, game_genres, 'genre_id', result.game_id) == {genre}
    assert _ids(db, game_themes, 'theme_id', result.game_id) == {theme}
    assert _ids(db, game_modes, 'mode_id', result.game_id) == {mode}
    # the rating without a category is dropped
    assert _count(db, age_ratings, age_ratings.c.game_id == result.game_id) == 1

    with db.connect() as conn:
        edition = conn.execute(
            select(editions).where(editions.c.game_id == result.game_id)
        ).mappings().one()
        release = conn.execute(
            select(releases).where(releases.c.edition_id == edition['id'])
        ).mappings().one()
        audit = conn.execute(select(audit_logs)).mappings().one()
    assert edition['edition_name'] == 'Standard Edition'
    assert edition['includes_base_game'] is True
    assert release['platform_id'] == platform
    assert release['release_date'] == date(2017, 2, 24)
    assert audit['action'] == 'create'
    assert audit['entity_id'] == result.game_id
    assert audit['user_id'] == 'admin@example.com'


def test_initial_release_skipped_without_platform_and_region(db, storage):
    form = parse_game_form(game_form_data(create_initial_release='on'))
    result = save_game(db, form, storage=storage)
    assert _count(db, editions, editions.c.game_id == result.game_id) == 0


def test_edit_replaces_links_and_ratings(db, storage):
    action = lookup_id(db, 'genre', 'action')
    puzzle = lookup_id(db, 'genre', 'puzzle')
    board = lookup_id(db, 'age_rating_board', 'esrb')
    category = lookup_id(db, 'age_rating_category', 't-teen')

    created = save_game(
        db,
        parse_game_form(
            game_form_data(
                additional_genre_ids=[action],
                **{'ratings-0-board_id': board, 'ratings-0-category_id': category},
            )
        ),
        storage=storage,
    )

    updated = save_game(
        db,
        parse_game_form(
            game_form_data(
                canonical_title='Hollow Knight: Voidheart',
                additional_genre_ids=[puzzle],
                create_initial_release='on',
                release_platform_id=lookup_id(db, 'platform', 'linux'),
                release_region_id=lookup_id(db, 'region', 'europe'),
            )
        ),
        storage=storage,
        game_id=created.game_id,
    )

    assert updated.created is False
    assert updated.game_id == created.game_id
    assert _ids(db, game_genres, 'genre_id', created.game_id) == {puzzle}
    assert _count(db, age_ratings, age_ratings.c.game_id == created.game_id) == 0
    # releases are only created together with a new game
    assert _count(db, editions) == 0
    with db.connect() as conn:
        title = conn.execute(
            select(games.c.canonical_title).where(games.c.id == created.game_id)
        ).scalar_one()
        actions = list(conn.execute(select(audit_logs.c.action).order_by(audit_logs.c.created_at)).scalars())
    assert title == 'Hollow Knight: Voidheart'
    assert sorted(actions) == ['create', 'update']


def test_edit_unknown_game_fails(db, storage):
    with pytest.raises(GameSaveError, match='Game not found'):
        save_game(db, parse_game_form(game_form_data()), storage=storage, game_id='missing')


def test_cover_upload_sets_cover_pointer(db, storage):
    cover_type = lookup_id(db, 'media_type', 'cover')
    screenshot_type = lookup_id(db, 'media_type', 'screenshot')
    files = MultiDict(
        [
            ('media-0-file', upload(png_bytes(40, 40), 'shot.png')),
            ('media-1-file', upload(png_bytes(200, 300), 'box.png')),
        ]
    )
    form = parse_game_form(
        game_form_data(
            **{
                'media-0-type_id': screenshot_type,
                'media-0-title': 'Screenshot',
                'media-1-type_id': cover_type,
                'media-1-title': 'Box Art',
                'media-2-type_id': '',
            }
        ),
        files,
    )
    result = save_game(db, form, storage=storage)

    assert len(result.media_ids) == 2
    assert result.cover_asset_id is not None
    with db.connect() as conn:
        game = conn.execute(select(games).where(games.c.id == result.game_id)).mappings().one()
        cover = conn.execute(
            select(media).where(media.c.id == result.cover_asset_id)
        ).mappings().one()
    assert game['cover_asset_id'] == result.cover_asset_id
    assert cover['storage_bucket'] == 'covers'
    assert (cover['width'], cover['height']) == (200, 300)
    assert cover['storage_path'].startswith(f'games/{result.game_id}/')
    assert cover['storage_path'].endswith('-box-art.png')
    assert storage.resolve('covers', cover['storage_path']).is_file()


def test_small_cover_aborts_remaining_steps(db, storage):
    genre = lookup_id(db, 'genre', 'action')
    files = MultiDict([('media-0-file', upload(png_bytes(199, 300)))])
    form = parse_game_form(
        game_form_data(
            additional_genre_ids=[genre],
            **{'media-0-type_id': lookup_id(db, 'media_type', 'cover')},
        ),
        files,
    )

    with pytest.raises(GameSaveError) as excinfo:
        save_game(db, form, storage=storage)

    error = excinfo.value
    assert error.step == 'media'
    assert str(error) == 'Cover image must be at least 200x300 pixels'
    # earlier steps stay committed
    assert error.game_id is not None
    assert _count(db, games, games.c.id == error.game_id) == 1
    assert _ids(db, game_genres, 'genre_id', error.game_id) == {genre}
    # later steps never ran
    assert _count(db, media) == 0
    assert _count(db, audit_logs) == 0


def test_load_game_for_edit(db, storage):
    theme = lookup_id(db, 'theme', 'survival')
    embed_type = lookup_id(db, 'media_type', 'trailer')
    result = save_game(
        db,
        parse_game_form(
            game_form_data(
                theme_ids=[theme],
                **{
                    'media-0-type_id': embed_type,
                    'media-0-source': 'embedded',
                    'media-0-url': 'https://youtu.be/abc123',
                },
            )
        ),
        storage=storage,
    )
    with db.connect() as conn:
        state = load_game_for_edit(conn, result.game_id, storage)
        missing = load_game_for_edit(conn, 'missing', storage)

    assert missing is None
    assert state['game']['canonical_title'] == 'Hollow Knight'
    assert state['theme_ids'] == [theme]
    assert state['additional_genre_ids'] == []
    assert len(state['media']) == 1
    assert state['media'][0]['embed_provider'] == 'youtube'
    assert state['media'][0]['embed_id'] == 'abc123'
