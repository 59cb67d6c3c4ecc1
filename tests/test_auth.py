from sqlalchemy import select

from db.schema import user_profiles
from tests.app_helpers import APP_PASSWORD


def test_pages_redirect_to_login(client):
    response = client.get('/dashboard/games?page=2')
    assert response.status_code == 302
    location = response.headers['Location']
    assert '/login' in location
    assert 'next=' in location


def test_api_requires_session(client):
    response = client.get('/api/games')
    assert response.status_code == 401
    assert response.get_json() == {'error': 'Authentication required.'}


def test_login_page_is_public(client):
    response = client.get('/login')
    assert response.status_code == 200
    assert b'name="email"' in response.data


def test_login_requires_email(client):
    response = client.post('/login', data={'email': ' ', 'password': APP_PASSWORD})
    assert response.status_code == 200
    assert b'Email is required' in response.data


def test_login_rejects_wrong_password(client):
    response = client.post('/login', data={'email': 'editor@example.com', 'password': 'nope'})
    assert b'Invalid email or password' in response.data
    with client.session_transaction() as sess:
        assert 'authenticated' not in sess


def test_login_provisions_profile_and_follows_next(client, app_engine):
    response = client.post(
        '/login?next=/dashboard/games',
        data={'email': 'Editor@Example.com', 'password': APP_PASSWORD},
    )
    assert response.status_code == 302
    assert response.headers['Location'].endswith('/dashboard/games')

    with app_engine.connect() as conn:
        profile = conn.execute(
            select(user_profiles).where(user_profiles.c.id == 'editor@example.com')
        ).mappings().one()
    assert profile['username'] == 'editor'
    assert profile['role'] == 'user'
    assert profile['last_activity_at'] is not None

    assert client.get('/dashboard').status_code == 200


def test_login_ignores_external_next(client):
    response = client.post(
        '/login?next=//evil.example.com',
        data={'email': 'editor@example.com', 'password': APP_PASSWORD},
    )
    assert response.headers['Location'].endswith('/dashboard')


def test_logout_clears_session(auth_client):
    assert auth_client.get('/').status_code == 302
    response = auth_client.get('/logout')
    assert response.status_code == 302
    assert auth_client.get('/api/games').status_code == 401
