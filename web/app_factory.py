"""Flask application factory: logging, database, storage and blueprints."""
from __future__ import annotations

import logging
import logging.config
import os
from functools import partial
from pathlib import Path

from flask import Flask, jsonify, request, url_for
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge

import config as app_config
from db import utils as db_utils
from init import initialize_app
from media.storage import LocalStorage
from routes.api_utils import APIError
from routes import games as routes_games
from routes import lookups as routes_lookups
from routes import media as routes_media
from routes import web as routes_web

logger = logging.getLogger(__name__)


def _determine_log_level(flask_app: Flask) -> int:
    if flask_app.debug:
        return logging.DEBUG
    if os.environ.get('FLASK_DEBUG', '').lower() in {'1', 'true', 'yes', 'on'}:
        return logging.DEBUG
    return logging.INFO


def _configure_logging(flask_app: Flask, log_file: str | os.PathLike[str]) -> None:
    log_level = _determine_log_level(flask_app)
    log_path = Path(log_file)
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError:
        logger.warning("Unable to create log directory %s", log_path.parent)

    for handler in list(flask_app.logger.handlers):
        flask_app.logger.removeHandler(handler)

    logging.config.dictConfig(
        {
            'version': 1,
            'disable_existing_loggers': False,
            'formatters': {
                'standard': {
                    'format': '%(asctime)s %(levelname)s [%(name)s] %(message)s',
                    'datefmt': '%Y-%m-%d %H:%M:%S',
                }
            },
            'handlers': {
                'console': {
                    'class': 'logging.StreamHandler',
                    'formatter': 'standard',
                    'level': log_level,
                    'stream': 'ext://sys.stdout',
                },
                'file': {
                    'class': 'logging.handlers.RotatingFileHandler',
                    'formatter': 'standard',
                    'level': logging.DEBUG,
                    'filename': os.fspath(log_path),
                    'maxBytes': 5 * 1024 * 1024,
                    'backupCount': 5,
                    'encoding': 'utf-8',
                },
            },
            'root': {
                'level': log_level,
                'handlers': ['console', 'file'],
            },
        }
    )

    flask_app.logger.setLevel(log_level)


def _register_error_handlers(flask_app: Flask) -> None:
    @flask_app.errorhandler(RequestEntityTooLarge)
    def handle_file_too_large(e):
        flask_app.logger.warning("File upload too large for path %s", request.path)
        return jsonify({'error': 'file too large'}), 413

    @flask_app.errorhandler(Exception)
    def handle_exception(e):
        if isinstance(e, HTTPException):
            return e
        flask_app.logger.exception("Unhandled exception")
        if request.path.startswith('/api/'):
            return jsonify(APIError().to_dict()), 500
        return "Internal Server Error", 500


def configure_blueprints(
    flask_app: Flask,
    *,
    engine: db_utils.DatabaseEngine,
    storage: LocalStorage,
) -> None:
    """Inject shared state into the route modules and register their blueprints."""

    get_db = partial(db_utils.get_db, lambda: engine)
    shared = {
        'get_db': get_db,
        'db_lock': db_utils.db_lock,
        'storage': storage,
    }

    routes_games.configure({**shared, 'page_size': flask_app.config['GAMES_PAGE_SIZE']})
    routes_lookups.configure(shared)
    routes_media.configure(shared)
    routes_web.configure(
        {
            **shared,
            'app_password': flask_app.config['APP_PASSWORD'],
            'page_size': flask_app.config['GAMES_PAGE_SIZE'],
            'cover_min_size': flask_app.config['COVER_MIN_SIZE'],
        }
    )

    for blueprint in (
        routes_web.web_blueprint,
        routes_games.games_blueprint,
        routes_lookups.lookups_blueprint,
        routes_media.media_blueprint,
    ):
        if blueprint.name not in flask_app.blueprints:
            flask_app.register_blueprint(blueprint)


def create_app(
    *,
    database_url: str | None = None,
    storage_dir: str | os.PathLike[str] | None = None,
    lookup_data_dir: str | os.PathLike[str] | None = None,
    log_file: str | os.PathLike[str] | None = None,
    app_password: str | None = None,
    seed_lookups: bool | None = None,
    testing: bool = False,
) -> Flask:
    """Return a configured Flask application instance."""

    flask_app = Flask(
        'gamevault',
        root_path=os.fspath(app_config.BASE_DIR),
        template_folder='templates',
        static_folder='static',
    )
    flask_app.secret_key = app_config.APP_SECRET_KEY
    flask_app.config.update(
        TESTING=testing,
        MAX_CONTENT_LENGTH=app_config.MAX_UPLOAD_MB * 1024 * 1024,
        APP_PASSWORD=app_password or app_config.APP_PASSWORD,
        GAMES_PAGE_SIZE=app_config.GAMES_PAGE_SIZE,
        COVER_MIN_SIZE=(app_config.COVER_MIN_WIDTH, app_config.COVER_MIN_HEIGHT),
    )

    _configure_logging(flask_app, log_file or app_config.LOG_FILE)

    engine = db_utils.build_engine_from_dsn(
        database_url or app_config.DB_DSN,
        timeout=app_config.DB_CONNECT_TIMEOUT_SECONDS,
    )
    storage = LocalStorage(
        storage_dir or app_config.STORAGE_DIR,
        url_builder=lambda bucket, path: url_for(
            'web.storage_object', bucket=bucket, object_path=path
        ),
    )
    initialize_app(
        engine=engine,
        storage=storage,
        lookup_data_dir=Path(lookup_data_dir or app_config.get_lookup_data_dir()),
        seed_lookups=app_config.SEED_LOOKUPS if seed_lookups is None else seed_lookups,
    )

    flask_app.extensions['gamevault'] = {'engine': engine, 'storage': storage}
    _register_error_handlers(flask_app)
    configure_blueprints(flask_app, engine=engine, storage=storage)
    logger.info("GameVault started with %s database", engine.dialect_name)
    return flask_app


__all__ = ['configure_blueprints', 'create_app']
