"""Tests for the dashboard aggregates and page."""

from datetime import date, timedelta

import pytest
from sqlalchemy import update

from accounts.service import ensure_user_profile, record_audit, role_at_least
from catalog.forms import parse_game_form
from catalog.service import delete_game, save_game
from dashboard import stats
from db.schema import user_profiles
from tests.app_helpers import ADMIN_EMAIL, game_form_data, lookup_id


def _save(engine, storage, **fields):
    return save_game(engine, parse_game_form(game_form_data(**fields)), storage=storage)


def _cards(cards):
    return {card['key']: card['value'] for card in cards}


@pytest.mark.parametrize(
    'role, minimum, expected',
    [
        ('user', 'moderator', False),
        ('moderator', 'moderator', True),
        ('superadmin', 'admin', True),
        (None, 'user', True),
        ('unknown', 'moderator', False),
    ],
)
def test_role_at_least(role, minimum, expected):
    assert role_at_least(role, minimum) is expected


def test_stats_cards_depend_on_role(db, storage):
    _save(db, storage, status='released')
    _save(db, storage, canonical_title='Silksong', sort_title='Silksong', status='in_development')
    with db.begin() as conn:
        ensure_user_profile(conn, 'someone@example.com')

    with db.connect() as conn:
        user_cards = _cards(stats.stats_cards(conn, 'user'))
        moderator_cards = _cards(stats.stats_cards(conn, 'moderator'))
        admin_cards = _cards(stats.stats_cards(conn, 'admin'))

    assert user_cards == {'total_games': 1, 'recent_games': 2}
    assert moderator_cards == {'total_games': 2, 'recent_games': 2, 'pending_moderation': 0}
    assert admin_cards['active_users'] == 1


def test_data_quality(db, storage):
    with db.connect() as conn:
        assert stats.data_quality(conn) == 0.0

    _save(
        db,
        storage,
        synopsis_short='Bugs and blades.',
        first_release_date='2017-02-24',
        primary_genre_id=lookup_id(db, 'genre', 'action'),
    )
    with db.connect() as conn:
        # 3 of 15 fields
        assert stats.data_quality(conn) == 20.0


def test_games_per_day_covers_full_window(db, storage):
    _save(db, storage)
    today = date.today()
    with db.connect() as conn:
        series = stats.games_per_day(conn)
        short = stats.games_per_day(conn, days=6, today=today + timedelta(days=1))

    assert len(series) == 121
    assert sum(entry['count'] for entry in series) == 1
    assert len(short) == 7
    assert [entry['count'] for entry in short].count(0) == 6


def test_chart_data(db, storage):
    action = lookup_id(db, 'genre', 'action')
    puzzle = lookup_id(db, 'genre', 'puzzle')
    platform = lookup_id(db, 'platform', 'nintendo-switch')
    region = lookup_id(db, 'region', 'worldwide')
    today = date(2024, 6, 15)

    _save(db, storage, primary_genre_id=action, first_release_date='2024-05-02')
    _save(
        db,
        storage,
        primary_genre_id=action,
        first_release_date='2023-01-01',
        create_initial_release='on',
        release_platform_id=platform,
        release_region_id=region,
    )
    _save(db, storage, primary_genre_id=puzzle, status='announced')
    deleted = _save(db, storage, primary_genre_id=puzzle)
    with db.begin() as conn:
        delete_game(conn, deleted.game_id)

    with db.connect() as conn:
        charts = stats.chart_data(conn, today=today)

    status = {entry['status']: entry for entry in charts['status']}
    assert status['released']['count'] == 2
    assert status['released']['percentage'] == 66.7
    assert status['announced']['percentage'] == 33.3

    months = charts['releases_per_month']
    assert [entry['month'] for entry in months] == [
        '2024-01', '2024-02', '2024-03', '2024-04', '2024-05', '2024-06'
    ]
    assert [entry['count'] for entry in months] == [0, 0, 0, 0, 1, 0]

    assert charts['top_genres'][0] == {'name': 'Action', 'count': 2}
    assert {'name': 'Puzzle', 'count': 1} in charts['top_genres']
    assert charts['platforms'] == [{'name': 'Nintendo Switch', 'count': 1}]


def test_section_cards(db, storage):
    _save(
        db,
        storage,
        create_initial_release='on',
        release_platform_id=lookup_id(db, 'platform', 'linux'),
        release_region_id=lookup_id(db, 'region', 'europe'),
    )
    with db.connect() as conn:
        cards = _cards(stats.section_cards(conn))
    assert cards['total_games'] == 1
    assert cards['platforms'] == 1
    assert cards['recent_changes'] == 1


def test_recent_activity_is_scoped_for_plain_users(db):
    with db.begin() as conn:
        ensure_user_profile(conn, 'alice@example.com')
        record_audit(conn, user_id='alice@example.com', action='create', entity_type='game', entity_id='g1')
        record_audit(conn, user_id='bob@example.com', action='update', entity_type='game', entity_id='g2')

    with db.connect() as conn:
        own = stats.recent_activity(conn, 'alice@example.com', 'user')
        everything = stats.recent_activity(conn, 'alice@example.com', 'moderator')

    assert [entry['entity_id'] for entry in own] == ['g1']
    assert own[0]['username'] == 'alice'
    assert {entry['entity_id'] for entry in everything} == {'g1', 'g2'}


def test_dashboard_page_renders(auth_client, app_engine, app_storage):
    _save(app_engine, app_storage, canonical_title='Celeste', sort_title='Celeste')
    with app_engine.begin() as conn:
        ensure_user_profile(conn, ADMIN_EMAIL)
        conn.execute(
            update(user_profiles).where(user_profiles.c.id == ADMIN_EMAIL).values(role='admin')
        )

    response = auth_client.get('/dashboard')
    assert response.status_code == 200
    assert b'Celeste' in response.data
    assert b'Active Users' in response.data
