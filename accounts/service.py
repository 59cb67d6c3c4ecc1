"""User profiles and the audit trail of catalogue changes."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import insert, select, update as sa_update
from sqlalchemy.engine import Connection

from db.schema import USER_ROLES, audit_logs, new_id, now_utc, user_profiles
from helpers import _normalize_text

logger = logging.getLogger(__name__)

_ROLE_RANK = {role: rank for rank, role in enumerate(USER_ROLES)}


def role_at_least(role: str | None, minimum: str) -> bool:
    """Return ``True`` when ``role`` ranks at or above ``minimum``."""

    return _ROLE_RANK.get(role or 'user', 0) >= _ROLE_RANK[minimum]


def username_from_identity(identity: str) -> str:
    text = _normalize_text(identity)
    local, _, _ = text.partition('@')
    return local or text


def get_user_profile(conn: Connection, identity: str) -> dict[str, Any] | None:
    row = (
        conn.execute(select(user_profiles).where(user_profiles.c.id == identity))
        .mappings()
        .first()
    )
    return dict(row) if row is not None else None


def ensure_user_profile(conn: Connection, identity: str) -> dict[str, Any]:
    """Return the profile for ``identity``, creating a ``user`` profile if missing."""

    profile = get_user_profile(conn, identity)
    if profile is not None:
        return profile

    username = username_from_identity(identity)
    conn.execute(
        insert(user_profiles).values(
            id=identity,
            username=username,
            display_name=username,
            role='user',
            is_active=True,
            last_activity_at=now_utc(),
            created_at=now_utc(),
        )
    )
    logger.info("Provisioned user profile for %s", identity)
    return get_user_profile(conn, identity) or {'id': identity, 'role': 'user'}


def touch_activity(conn: Connection, identity: str) -> None:
    conn.execute(
        sa_update(user_profiles)
        .where(user_profiles.c.id == identity)
        .values(last_activity_at=now_utc())
    )


def record_audit(
    conn: Connection,
    *,
    user_id: str | None,
    action: str,
    entity_type: str,
    entity_id: str | None,
    summary: str | None = None,
) -> str:
    """Append an audit log entry and return its id."""

    audit_id = new_id()
    conn.execute(
        insert(audit_logs).values(
            id=audit_id,
            user_id=user_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            summary=summary,
            created_at=now_utc(),
        )
    )
    return audit_id


__all__ = [
    'ensure_user_profile',
    'get_user_profile',
    'record_audit',
    'role_at_least',
    'touch_activity',
    'username_from_identity',
]
