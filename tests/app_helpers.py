"""Shared testing helpers for building the Flask app against temporary storage."""

from __future__ import annotations

import io
from pathlib import Path
from typing import Any

from PIL import Image
from sqlalchemy import select
from werkzeug.datastructures import FileStorage, MultiDict

from config import DEFAULT_LOOKUP_DATA_DIR
from db import utils as db_utils
from db.schema import lookups
from init import initialize_app
from media.storage import LocalStorage
from web.app_factory import create_app

APP_PASSWORD = "secret"
ADMIN_EMAIL = "admin@example.com"


def sqlite_url(tmp_path: Path) -> str:
    return f"sqlite:///{(tmp_path / 'gamevault.db').as_posix()}"


def build_app(tmp_path: Path):
    """Create an app with its own SQLite database, storage root and log file."""

    return create_app(
        database_url=sqlite_url(tmp_path),
        storage_dir=tmp_path / "storage",
        lookup_data_dir=DEFAULT_LOOKUP_DATA_DIR,
        log_file=tmp_path / "logs" / "app.log",
        app_password=APP_PASSWORD,
        seed_lookups=True,
        testing=True,
    )


def build_engine(tmp_path: Path) -> tuple[db_utils.DatabaseEngine, LocalStorage]:
    """Create a seeded database and storage without a Flask app."""

    engine = db_utils.build_engine_from_dsn(sqlite_url(tmp_path))
    storage = LocalStorage(tmp_path / "storage")
    initialize_app(
        engine=engine,
        storage=storage,
        lookup_data_dir=DEFAULT_LOOKUP_DATA_DIR,
        seed_lookups=True,
    )
    return engine, storage


def authenticate(client, email: str = ADMIN_EMAIL) -> None:
    with client.session_transaction() as sess:
        sess["authenticated"] = True
        sess["user_id"] = email


def lookup_id(engine: db_utils.DatabaseEngine, lookup_type: str, slug: str) -> str:
    with engine.connect() as conn:
        value = conn.execute(
            select(lookups.c.id).where(lookups.c.type == lookup_type, lookups.c.slug == slug)
        ).scalar_one()
    return value


def png_bytes(width: int, height: int) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color=(40, 90, 160)).save(buffer, format="PNG")
    return buffer.getvalue()


def upload(data: bytes, filename: str = "image.png", content_type: str = "image/png") -> FileStorage:
    return FileStorage(stream=io.BytesIO(data), filename=filename, content_type=content_type)


def game_form_data(**overrides: Any) -> MultiDict:
    """Return a minimal valid game form; list values become repeated fields."""

    fields: dict[str, Any] = {
        "canonical_title": "Hollow Knight",
        "sort_title": "Hollow Knight",
        "status": "released",
    }
    fields.update(overrides)
    items: list[tuple[str, Any]] = []
    for key, value in fields.items():
        if isinstance(value, (list, tuple)):
            items.extend((key, item) for item in value)
        elif value is not None:
            items.append((key, value))
    return MultiDict(items)
