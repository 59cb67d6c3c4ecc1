"""Provider/ID extraction for embeddable video URLs."""

from __future__ import annotations

from typing import NamedTuple
from urllib.parse import parse_qs, urlparse

SUPPORTED_PROVIDERS = ('youtube', 'vimeo')


class EmbedRef(NamedTuple):
    provider: str
    id: str


def parse_embed_url(raw_url: str | None) -> EmbedRef | None:
    """Return the provider and video ID for a YouTube or Vimeo URL.

    ``youtu.be/<id>`` and ``youtube.com/watch?v=<id>`` map to ``youtube``; for
    ``vimeo.com`` the last path segment is the ID. Anything else, including
    text that is not an absolute URL, yields ``None``.
    """

    if not raw_url:
        return None
    try:
        parsed = urlparse(raw_url.strip())
        host = (parsed.hostname or '').lower()
    except ValueError:
        return None
    if not parsed.scheme or not host:
        return None

    if 'youtube.com' in host or 'youtu.be' in host:
        if 'youtu.be' in host:
            video_id = parsed.path.replace('/', '', 1)
        else:
            video_id = (parse_qs(parsed.query).get('v') or [''])[0]
        if video_id:
            return EmbedRef('youtube', video_id)

    if 'vimeo.com' in host:
        segments = [part for part in parsed.path.split('/') if part]
        if segments:
            return EmbedRef('vimeo', segments[-1])

    return None


__all__ = ['EmbedRef', 'SUPPORTED_PROVIDERS', 'parse_embed_url']
