"""Settings for the GameVault admin, read once from the environment and ``.env``."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Callable, Final, TypeVar
from urllib.parse import quote_plus

from dotenv import load_dotenv

BASE_DIR: Final[Path] = Path(__file__).resolve().parent

load_dotenv(BASE_DIR / ".env")

N = TypeVar("N", int, float)

_MARIADB_KEYS = ("DB_HOST", "DB_PORT", "DB_NAME", "DB_USER", "DB_PASSWORD")


def _env(name: str) -> str:
    return (os.environ.get(name) or "").strip()


def _env_path(name: str, default: Path) -> Path:
    """Return the path in ``name`` (``~`` expanded) or ``default``."""

    text = _env(name)
    path = Path(text).expanduser() if text else default
    return path.resolve() if path.is_absolute() else path


def _env_positive(name: str, default: N, cast: Callable[[str], N]) -> N:
    """Return ``name`` parsed with ``cast``; blank, invalid or non-positive values give ``default``."""

    text = _env(name)
    if not text:
        return default
    try:
        value = cast(float(text)) if cast is int else cast(text)
    except ValueError:
        return default
    return value if value > 0 else default


def _env_flag(name: str) -> bool:
    return _env(name).lower() in {"1", "true", "yes", "on"}


def _mariadb_dsn() -> str:
    user = _env("DB_USER")
    password = _env("DB_PASSWORD")
    credentials = ""
    if user:
        credentials = f"{user}:{quote_plus(password)}@" if password else f"{user}@"
    host = _env("DB_HOST") or "localhost"
    port = _env_positive("DB_PORT", 3306, int)
    name = _env("DB_NAME") or "gamevault"
    ssl_ca = _env("DB_SSL_CA")
    query = f"?ssl_ca={quote_plus(os.fspath(_env_path('DB_SSL_CA', Path())))}" if ssl_ca else ""
    return f"mariadb://{credentials}{host}:{port}/{name}{query}"


def database_url() -> str:
    """Return ``DATABASE_URL``, a MariaDB DSN when any ``DB_*`` is set, else SQLite."""

    explicit = _env("DATABASE_URL")
    if explicit:
        return explicit
    if any(_env(key) for key in _MARIADB_KEYS):
        return _mariadb_dsn()
    return f"sqlite:///{(BASE_DIR / 'gamevault.db').as_posix()}"


DB_DSN: Final[str] = database_url()
DB_CONNECT_TIMEOUT_SECONDS: Final[float] = _env_positive("DB_CONNECT_TIMEOUT", 10.0, float)

STORAGE_DIR: Final[str] = os.fspath(_env_path("STORAGE_DIR", BASE_DIR / "storage"))
LOG_DIR: Final[str] = os.fspath(_env_path("LOG_DIR", BASE_DIR / "logs"))
LOG_FILE: Final[str] = os.fspath(_env_path("LOG_FILE", Path(LOG_DIR) / "app.log"))

DEFAULT_LOOKUP_DATA_DIR: Final[Path] = BASE_DIR / "data"
SEED_LOOKUPS: Final[bool] = not _env_flag("SKIP_LOOKUP_SEED")

APP_SECRET_KEY: Final[str] = _env("APP_SECRET_KEY") or "dev-secret"
APP_PASSWORD: Final[str] = _env("APP_PASSWORD") or "password"

MAX_UPLOAD_MB: Final[int] = _env_positive("MAX_UPLOAD_MB", 50, int)
GAMES_PAGE_SIZE: Final[int] = _env_positive("GAMES_PAGE_SIZE", 10, int)
COVER_MIN_WIDTH: Final[int] = _env_positive("COVER_MIN_WIDTH", 200, int)
COVER_MIN_HEIGHT: Final[int] = _env_positive("COVER_MIN_HEIGHT", 300, int)


def get_lookup_data_dir() -> Path:
    """Return the directory holding ``lookups.csv``."""

    return _env_path("LOOKUP_DATA_DIR", DEFAULT_LOOKUP_DATA_DIR)


__all__ = [
    "APP_PASSWORD",
    "APP_SECRET_KEY",
    "BASE_DIR",
    "COVER_MIN_HEIGHT",
    "COVER_MIN_WIDTH",
    "DB_CONNECT_TIMEOUT_SECONDS",
    "DB_DSN",
    "DEFAULT_LOOKUP_DATA_DIR",
    "GAMES_PAGE_SIZE",
    "LOG_DIR",
    "LOG_FILE",
    "MAX_UPLOAD_MB",
    "SEED_LOOKUPS",
    "STORAGE_DIR",
    "database_url",
    "get_lookup_data_dir",
]
