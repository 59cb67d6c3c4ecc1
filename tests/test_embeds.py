import pytest

from media.embeds import EmbedRef, parse_embed_url


@pytest.mark.parametrize(
    'url, expected',
    [
        ('https://www.youtube.com/watch?v=dQw4w9WgXcQ', EmbedRef('youtube', 'dQw4w9WgXcQ')),
        ('https://youtube.com/watch?v=abc123&t=42s', EmbedRef('youtube', 'abc123')),
        ('https://youtu.be/abc123', EmbedRef('youtube', 'abc123')),
        ('https://vimeo.com/76979871', EmbedRef('vimeo', '76979871')),
        ('https://vimeo.com/channels/staffpicks/123456', EmbedRef('vimeo', '123456')),
    ],
)
def test_supported_urls(url, expected):
    assert parse_embed_url(url) == expected


@pytest.mark.parametrize(
    'url',
    [
        '',
        None,
        'not a url',
        'https://example.com/watch?v=abc',
        'https://www.youtube.com/feed/trending',
        'https://vimeo.com/',
    ],
)
def test_unsupported_urls(url):
    assert parse_embed_url(url) is None


def test_embed_endpoint(auth_client):
    response = auth_client.get('/api/media/embed', query_string={'url': 'https://youtu.be/xyz'})
    assert response.status_code == 200
    assert response.get_json() == {'supported': True, 'provider': 'youtube', 'id': 'xyz'}

    response = auth_client.get(
        '/api/media/embed', query_string={'url': 'https://example.com/video'}
    )
    assert response.get_json() == {'supported': False, 'provider': None, 'id': None}

    response = auth_client.get('/api/media/embed')
    assert response.status_code == 400
