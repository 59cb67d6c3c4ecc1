"""Table definitions for the catalogue database."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.engine import Engine

metadata = MetaData()

GAME_STATUSES = (
    'announced',
    'in_development',
    'released',
    'cancelled',
    'delisted',
)

MEDIA_SOURCES = ('uploaded_file', 'external_url', 'embedded')

USER_ROLES = ('user', 'moderator', 'admin', 'superadmin')


def new_id() -> str:
    return str(uuid.uuid4())


def now_utc() -> datetime:
    """Return the current UTC time as a naive datetime, as stored in the tables."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


def _id_column() -> Column:
    return Column('id', String(36), primary_key=True, default=new_id)


def _lookup_fk(name: str, *, nullable: bool = True) -> Column:
    return Column(name, String(36), ForeignKey('lookups.id'), nullable=nullable)


lookups = Table(
    'lookups',
    metadata,
    _id_column(),
    Column('type', String(64), nullable=False, index=True),
    Column('canonical_name', String(255), nullable=False),
    Column('slug', String(255), nullable=False),
    Column('description', Text),
    Column('sort_order', Integer, nullable=False, default=0),
    Column('is_active', Boolean, nullable=False, default=True),
    Column('created_at', DateTime, nullable=False, default=now_utc),
    Column('deleted_at', DateTime),
    UniqueConstraint('type', 'slug', name='uq_lookups_type_slug'),
    mysql_engine='InnoDB',
)

games = Table(
    'games',
    metadata,
    _id_column(),
    Column('canonical_title', String(255), nullable=False),
    Column('sort_title', String(255), nullable=False),
    Column('status', String(32), nullable=False, default='announced'),
    Column('synopsis_short', Text),
    Column('description_long', Text),
    Column('first_announced_date', Date),
    Column('first_release_date', Date),
    _lookup_fk('primary_genre_id'),
    _lookup_fk('engine_id'),
    _lookup_fk('monetisation_model_id'),
    Column('coop_supported', Boolean, nullable=False, default=False),
    Column('max_players_local', Integer),
    Column('max_players_online', Integer),
    Column('is_vr_supported', Boolean, nullable=False, default=False),
    Column('is_vr_only', Boolean, nullable=False, default=False),
    Column('is_cloud_only', Boolean, nullable=False, default=False),
    Column('crossplay_supported', Boolean, nullable=False, default=False),
    Column('crosssave_supported', Boolean, nullable=False, default=False),
    Column('official_site', Text),
    Column('press_kit_url', Text),
    Column('age_ratings_summary', Text),
    Column('business_model_notes', Text),
    Column('accessibility_summary', Text),
    Column('tech_notes', Text),
    Column('notes_internal', Text),
    Column('cover_asset_id', String(36)),
    Column('created_at', DateTime, nullable=False, default=now_utc),
    Column('updated_at', DateTime, default=now_utc, onupdate=now_utc),
    Column('deleted_at', DateTime),
    mysql_engine='InnoDB',
)


def _join_table(name: str, lookup_column: str) -> Table:
    return Table(
        name,
        metadata,
        Column('game_id', String(36), ForeignKey('games.id'), primary_key=True),
        Column(lookup_column, String(36), ForeignKey('lookups.id'), primary_key=True),
        mysql_engine='InnoDB',
    )


game_genres = _join_table('game_genres', 'genre_id')
game_themes = _join_table('game_themes', 'theme_id')
game_modes = _join_table('game_modes', 'mode_id')

age_ratings = Table(
    'age_ratings',
    metadata,
    _id_column(),
    Column('game_id', String(36), ForeignKey('games.id'), nullable=False, index=True),
    _lookup_fk('board_id', nullable=False),
    _lookup_fk('rating_category_id', nullable=False),
    _lookup_fk('region_id'),
    Column('rating_date', Date),
    Column('certificate_id', String(255)),
    Column('interactive_elements', Text),
    Column('notes', Text),
    mysql_engine='InnoDB',
)

editions = Table(
    'editions',
    metadata,
    _id_column(),
    Column('game_id', String(36), ForeignKey('games.id'), nullable=False, index=True),
    Column('edition_name', String(255), nullable=False),
    _lookup_fk('release_type_id'),
    Column('includes_base_game', Boolean, nullable=False, default=True),
    Column('created_at', DateTime, nullable=False, default=now_utc),
    mysql_engine='InnoDB',
)

releases = Table(
    'releases',
    metadata,
    _id_column(),
    Column('edition_id', String(36), ForeignKey('editions.id'), nullable=False, index=True),
    _lookup_fk('platform_id', nullable=False),
    _lookup_fk('region_id', nullable=False),
    Column('release_date', Date),
    _lookup_fk('distribution_format_id'),
    _lookup_fk('drm_tech_id'),
    _lookup_fk('storefront_id'),
    Column('store_product_id', String(255)),
    Column('store_url', Text),
    Column('created_at', DateTime, nullable=False, default=now_utc),
    Column('deleted_at', DateTime),
    mysql_engine='InnoDB',
)

media = Table(
    'media',
    metadata,
    _id_column(),
    Column('entity_type', String(32), nullable=False),
    Column('entity_id', String(36), nullable=False, index=True),
    _lookup_fk('media_type_id', nullable=False),
    Column('asset_source', String(32), nullable=False),
    Column('title', String(255)),
    Column('caption', Text),
    Column('credit', String(255)),
    Column('storage_bucket', String(64)),
    Column('storage_path', String(512)),
    Column('source_url', Text),
    Column('embed_provider', String(32)),
    Column('embed_id', String(255)),
    Column('mime_type', String(128)),
    Column('file_size_bytes', Integer),
    Column('width', Integer),
    Column('height', Integer),
    Column('is_official', Boolean, nullable=False, default=True),
    Column('is_nsfw', Boolean, nullable=False, default=False),
    Column('created_at', DateTime, nullable=False, default=now_utc),
    Column('deleted_at', DateTime),
    mysql_engine='InnoDB',
)

user_profiles = Table(
    'user_profiles',
    metadata,
    Column('id', String(255), primary_key=True),
    Column('username', String(255), nullable=False),
    Column('display_name', String(255)),
    Column('role', String(32), nullable=False, default='user'),
    Column('is_active', Boolean, nullable=False, default=True),
    Column('last_activity_at', DateTime),
    Column('created_at', DateTime, nullable=False, default=now_utc),
    mysql_engine='InnoDB',
)

audit_logs = Table(
    'audit_logs',
    metadata,
    _id_column(),
    Column('user_id', String(255)),
    Column('action', String(64), nullable=False),
    Column('entity_type', String(32), nullable=False),
    Column('entity_id', String(36)),
    Column('summary', Text),
    Column('created_at', DateTime, nullable=False, default=now_utc, index=True),
    mysql_engine='InnoDB',
)

moderation_queue = Table(
    'moderation_queue',
    metadata,
    _id_column(),
    Column('entity_type', String(32), nullable=False),
    Column('entity_id', String(36)),
    Column('status', String(32), nullable=False, default='pending'),
    Column('created_at', DateTime, nullable=False, default=now_utc),
    mysql_engine='InnoDB',
)


def create_schema(engine: Engine) -> None:
    """Create every catalogue table that does not exist yet."""

    metadata.create_all(engine)


__all__ = [
    'GAME_STATUSES',
    'MEDIA_SOURCES',
    'USER_ROLES',
    'age_ratings',
    'audit_logs',
    'create_schema',
    'editions',
    'game_genres',
    'game_modes',
    'game_themes',
    'games',
    'lookups',
    'media',
    'metadata',
    'moderation_queue',
    'new_id',
    'now_utc',
    'releases',
    'user_profiles',
]
