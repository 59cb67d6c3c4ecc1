"""Pytest fixtures shared across the test suite."""

import pytest

from db import utils as db_utils
from media.storage import LocalStorage
from tests.app_helpers import authenticate, build_app, build_engine


@pytest.fixture(autouse=True)
def reset_database_state():
    """Drop the cached fallback engine between tests."""

    db_utils.set_fallback_connection(None)
    yield
    db_utils.set_fallback_connection(None)


@pytest.fixture
def app(tmp_path):
    flask_app = build_app(tmp_path)
    yield flask_app
    flask_app.extensions["gamevault"]["engine"].dispose()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_client(client):
    authenticate(client)
    return client


@pytest.fixture
def app_engine(app):
    return app.extensions["gamevault"]["engine"]


@pytest.fixture
def app_storage(app):
    return app.extensions["gamevault"]["storage"]


@pytest.fixture
def db(tmp_path):
    engine, _ = build_engine(tmp_path)
    yield engine
    engine.dispose()


@pytest.fixture
def storage(tmp_path, db):
    return LocalStorage(tmp_path / "storage")
