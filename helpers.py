"""General-purpose helper utilities shared across the application."""

from __future__ import annotations

import numbers
import re
from datetime import date, datetime
from typing import Any, Iterable

import pandas as pd


__all__ = [
    "_coerce_bool",
    "_coerce_optional_int",
    "_dedupe_preserve_order",
    "_normalize_text",
    "_parse_iso_date",
    "_parse_slug_list",
    "slugify",
]

_SLUG_INVALID_RE = re.compile(r"[^a-z0-9]+")

_TRUTHY = {"1", "true", "yes", "on"}


def _normalize_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        text = value.strip()
    else:
        try:
            if pd.isna(value):
                return ""
        except (TypeError, ValueError):
            pass
        text = str(value).strip()
    if text.lower() == "nan":
        return ""
    return text


def slugify(value: Any) -> str:
    """Return the URL-safe slug for ``value`` (``"Action RPG"`` -> ``"action-rpg"``)."""

    text = _normalize_text(value).lower()
    return _SLUG_INVALID_RE.sub("-", text).strip("-")


def _dedupe_preserve_order(values: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for value in values:
        text = str(value).strip()
        if not text:
            continue
        key = text.casefold()
        if key in seen:
            continue
        seen.add(key)
        result.append(text)
    return result


def _parse_slug_list(value: Any) -> list[str]:
    """Split a comma separated cell into lowercase slugs."""

    text = _normalize_text(value)
    if not text:
        return []
    return [part.strip().lower() for part in text.split(",") if part.strip()]


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    if isinstance(value, numbers.Number):
        return bool(value)
    return _normalize_text(value).lower() in _TRUTHY


def _coerce_optional_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, numbers.Number):
        try:
            return int(value)
        except (TypeError, ValueError, OverflowError):
            return None
    text = _normalize_text(value)
    if not text:
        return None
    try:
        return int(float(text))
    except (TypeError, ValueError, OverflowError):
        return None


def _parse_iso_date(value: Any) -> date | None:
    """Return a :class:`date` for ``YYYY-MM-DD`` text, ``None`` for blanks.

    Raises :class:`ValueError` for text that is not an ISO date.
    """

    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = _normalize_text(value)
    if not text:
        return None
    return date.fromisoformat(text[:10])
