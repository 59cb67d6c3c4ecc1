"""Read-only aggregates for the dashboard cards, charts and activity feed."""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Any

import pandas as pd
from sqlalchemy import func, select
from sqlalchemy.engine import Connection

from accounts.service import role_at_least
from db.schema import (
    audit_logs,
    editions,
    games,
    lookups,
    moderation_queue,
    now_utc,
    releases,
    user_profiles,
)

RECENT_DAYS = 7
ACTIVE_USER_DAYS = 30
AUDIT_WINDOW_DAYS = 30
GAMES_PER_DAY_WINDOW = 120
RELEASE_MONTHS = 6
TOP_GENRES = 5
ACTIVITY_LIMIT = 20

# Fields whose non-null share makes up the data quality score.
QUALITY_FIELDS = (
    'synopsis_short',
    'description_long',
    'first_announced_date',
    'first_release_date',
    'primary_genre_id',
    'engine_id',
    'monetisation_model_id',
    'max_players_local',
    'max_players_online',
    'official_site',
    'press_kit_url',
    'age_ratings_summary',
    'accessibility_summary',
    'tech_notes',
    'cover_asset_id',
)

_LIVE_GAME = games.c.deleted_at.is_(None)


def _count(conn: Connection, table, *conditions) -> int:
    return int(
        conn.execute(select(func.count()).select_from(table).where(*conditions)).scalar_one()
    )


def _frame(conn: Connection, statement) -> pd.DataFrame:
    result = conn.execute(statement)
    columns = list(result.keys())
    return pd.DataFrame([dict(row) for row in result.mappings()], columns=columns)


def stats_cards(conn: Connection, role: str | None) -> list[dict[str, Any]]:
    """Return the headline cards visible to ``role``."""

    now = now_utc()
    statuses = ['released'] if (role or 'user') == 'user' else [
        'announced',
        'in_development',
        'released',
    ]
    cards = [
        {
            'key': 'total_games',
            'title': 'Total Games',
            'value': _count(conn, games, _LIVE_GAME, games.c.status.in_(statuses)),
            'description': 'Released games' if (role or 'user') == 'user' else 'All active games',
        },
        {
            'key': 'recent_games',
            'title': 'Recent Additions',
            'value': _count(
                conn,
                games,
                _LIVE_GAME,
                games.c.created_at >= now - timedelta(days=RECENT_DAYS),
            ),
            'description': f'Last {RECENT_DAYS} days',
        },
    ]
    if role_at_least(role, 'moderator'):
        cards.append(
            {
                'key': 'pending_moderation',
                'title': 'Pending Moderation',
                'value': _count(conn, moderation_queue, moderation_queue.c.status == 'pending'),
                'description': 'Items awaiting review',
            }
        )
    if role_at_least(role, 'admin'):
        cards.append(
            {
                'key': 'active_users',
                'title': 'Active Users',
                'value': _count(
                    conn,
                    user_profiles,
                    user_profiles.c.is_active.is_(True),
                    user_profiles.c.last_activity_at
                    >= now - timedelta(days=ACTIVE_USER_DAYS),
                ),
                'description': f'Last {ACTIVE_USER_DAYS} days',
            }
        )
    return cards


def data_quality(conn: Connection) -> float:
    """Return the percentage of filled quality fields across live games."""

    frame = _frame(conn, select(*(games.c[name] for name in QUALITY_FIELDS)).where(_LIVE_GAME))
    if frame.empty:
        return 0.0
    return round(float(frame.notna().to_numpy().mean()) * 100, 1)


def section_cards(conn: Connection) -> list[dict[str, Any]]:
    window_start = now_utc() - timedelta(days=AUDIT_WINDOW_DAYS)
    platforms = conn.execute(
        select(func.count(func.distinct(releases.c.platform_id))).where(
            releases.c.deleted_at.is_(None)
        )
    ).scalar_one()
    return [
        {
            'key': 'total_games',
            'title': 'Total Games',
            'value': _count(conn, games, _LIVE_GAME),
            'description': 'Games in the catalogue',
        },
        {
            'key': 'data_quality',
            'title': 'Data Quality',
            'value': data_quality(conn),
            'description': f'Filled share of {len(QUALITY_FIELDS)} key fields',
        },
        {
            'key': 'platforms',
            'title': 'Platforms',
            'value': int(platforms or 0),
            'description': 'Platforms with releases',
        },
        {
            'key': 'recent_changes',
            'title': 'Recent Changes',
            'value': _count(conn, audit_logs, audit_logs.c.created_at >= window_start),
            'description': f'Audit entries, last {AUDIT_WINDOW_DAYS} days',
        },
    ]


def games_per_day(
    conn: Connection,
    days: int = GAMES_PER_DAY_WINDOW,
    *,
    today: date | None = None,
) -> list[dict[str, Any]]:
    """Return ``{'date', 'count'}`` for every day from ``today - days`` to ``today``."""

    today = today or now_utc().date()
    start = today - timedelta(days=days)
    frame = _frame(
        conn,
        select(games.c.created_at).where(
            _LIVE_GAME, games.c.created_at >= datetime.combine(start, datetime.min.time())
        ),
    )
    index = pd.date_range(start=start, end=today, freq='D')
    if frame.empty:
        counts = pd.Series(0, index=index)
    else:
        created = pd.to_datetime(frame['created_at']).dt.normalize()
        counts = created.value_counts().reindex(index, fill_value=0)
    return [
        {'date': day.date().isoformat(), 'count': int(count)}
        for day, count in counts.items()
    ]


def _status_breakdown(conn: Connection) -> list[dict[str, Any]]:
    frame = _frame(conn, select(games.c.status).where(_LIVE_GAME))
    if frame.empty:
        return []
    counts = frame['status'].value_counts()
    total = int(counts.sum())
    return [
        {
            'status': str(status),
            'count': int(count),
            'percentage': round(int(count) / total * 100, 1),
        }
        for status, count in counts.items()
    ]


def _releases_per_month(conn: Connection, today: date) -> list[dict[str, Any]]:
    current = pd.Period(year=today.year, month=today.month, freq='M')
    months = pd.period_range(end=current, periods=RELEASE_MONTHS, freq='M')
    start = months[0].start_time.date()
    frame = _frame(
        conn,
        select(games.c.first_release_date).where(
            _LIVE_GAME,
            games.c.first_release_date.is_not(None),
            games.c.first_release_date >= start,
            games.c.first_release_date <= today,
        ),
    )
    if frame.empty:
        counts = pd.Series(0, index=months)
    else:
        periods = pd.to_datetime(frame['first_release_date']).dt.to_period('M')
        counts = periods.value_counts().reindex(months, fill_value=0)
    return [{'month': str(month), 'count': int(count)} for month, count in counts.items()]


def _top_genres(conn: Connection) -> list[dict[str, Any]]:
    frame = _frame(
        conn,
        select(lookups.c.canonical_name.label('name'))
        .select_from(games.join(lookups, games.c.primary_genre_id == lookups.c.id))
        .where(_LIVE_GAME),
    )
    if frame.empty:
        return []
    counts = frame['name'].value_counts().head(TOP_GENRES)
    return [{'name': str(name), 'count': int(count)} for name, count in counts.items()]


def _platform_distribution(conn: Connection) -> list[dict[str, Any]]:
    frame = _frame(
        conn,
        select(lookups.c.canonical_name.label('name'), editions.c.game_id)
        .select_from(
            releases.join(editions, releases.c.edition_id == editions.c.id)
            .join(games, editions.c.game_id == games.c.id)
            .join(lookups, releases.c.platform_id == lookups.c.id)
        )
        .where(_LIVE_GAME, releases.c.deleted_at.is_(None)),
    )
    if frame.empty:
        return []
    counts = frame.drop_duplicates().groupby('name')['game_id'].count().sort_values(
        ascending=False, kind='stable'
    )
    return [{'name': str(name), 'count': int(count)} for name, count in counts.items()]


def chart_data(conn: Connection, *, today: date | None = None) -> dict[str, Any]:
    today = today or now_utc().date()
    return {
        'status': _status_breakdown(conn),
        'releases_per_month': _releases_per_month(conn, today),
        'top_genres': _top_genres(conn),
        'platforms': _platform_distribution(conn),
    }


def recent_activity(
    conn: Connection,
    user_id: str | None,
    role: str | None,
    limit: int = ACTIVITY_LIMIT,
) -> list[dict[str, Any]]:
    """Return the latest audit entries; plain users only see their own."""

    statement = (
        select(
            audit_logs,
            user_profiles.c.username,
            user_profiles.c.display_name,
        )
        .select_from(
            audit_logs.outerjoin(user_profiles, audit_logs.c.user_id == user_profiles.c.id)
        )
        .order_by(audit_logs.c.created_at.desc())
        .limit(limit)
    )
    if (role or 'user') == 'user':
        statement = statement.where(audit_logs.c.user_id == user_id)
    return [dict(row) for row in conn.execute(statement).mappings()]


__all__ = [
    'QUALITY_FIELDS',
    'chart_data',
    'data_quality',
    'games_per_day',
    'recent_activity',
    'section_cards',
    'stats_cards',
]
