"""Filesystem-backed storage buckets for uploaded media."""

from __future__ import annotations

import logging
import os
from pathlib import Path, PurePosixPath
from typing import Callable, Iterable

logger = logging.getLogger(__name__)

BUCKETS = ('covers', 'media')


class StorageError(RuntimeError):
    """Raised when an object cannot be stored or located."""


class LocalStorage:
    """Store objects as ``<root>/<bucket>/<path>`` files.

    ``url_builder`` turns ``(bucket, path)`` into the public URL; the Flask app
    passes a ``url_for`` based builder.
    """

    def __init__(
        self,
        root: str | os.PathLike[str],
        *,
        url_builder: Callable[[str, str], str] | None = None,
    ) -> None:
        self.root = Path(root)
        self._url_builder = url_builder

    def ensure_buckets(self) -> None:
        for bucket in BUCKETS:
            (self.root / bucket).mkdir(parents=True, exist_ok=True)

    def resolve(self, bucket: str, path: str) -> Path:
        """Return the file for ``bucket``/``path``, refusing paths outside the bucket."""

        if bucket not in BUCKETS:
            raise StorageError(f'Unknown storage bucket "{bucket}"')
        relative = PurePosixPath(path)
        if relative.is_absolute() or '..' in relative.parts or not relative.parts:
            raise StorageError(f'Invalid storage path "{path}"')
        return self.root / bucket / Path(*relative.parts)

    def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        *,
        upsert: bool = False,
    ) -> str:
        target = self.resolve(bucket, path)
        if target.exists() and not upsert:
            raise StorageError(f'Object already exists: {bucket}/{path}')
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as exc:
            raise StorageError(
                f'Storage upload failed for bucket "{bucket}". Details: {exc}'
            ) from exc
        logger.info("Stored %s bytes at %s/%s", len(data), bucket, path)
        return path

    def remove(self, bucket: str, paths: Iterable[str]) -> int:
        removed = 0
        for path in paths:
            target = self.resolve(bucket, path)
            try:
                target.unlink()
            except FileNotFoundError:
                logger.warning("Storage object already missing: %s/%s", bucket, path)
                continue
            except OSError as exc:
                raise StorageError(f'Failed to remove {bucket}/{path}: {exc}') from exc
            removed += 1
        return removed

    def public_url(self, bucket: str, path: str) -> str:
        if self._url_builder is not None:
            return self._url_builder(bucket, path)
        return f'/storage/{bucket}/{path}'


__all__ = ['BUCKETS', 'LocalStorage', 'StorageError']
