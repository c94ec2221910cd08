"""
identity.py — Identity Provider collaborators.

Resolves an opaque bearer token to a user id. Issuing tokens is handled
elsewhere; this side only validates them.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from asyncpg_repository import DatabasePool

logger = logging.getLogger(__name__)


def parse_bearer(authorization: Optional[str]) -> Optional[str]:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) == 2 and parts[0].lower() == "bearer" and parts[1]:
        return parts[1]
    return None


class IdentityProvider:
    """Token → user id. Returns None for unknown or expired tokens."""

    async def resolve_identity(self, token: str) -> Optional[str]:
        raise NotImplementedError


class InMemoryIdentityProvider(IdentityProvider):
    """Static token map for tests / local dev."""

    def __init__(self, tokens: Optional[dict[str, str]] = None):
        self.tokens: dict[str, str] = dict(tokens or {})

    async def resolve_identity(self, token: str) -> Optional[str]:
        return self.tokens.get(token)


class AsyncPGIdentityProvider(IdentityProvider):
    """Looks up live sessions in user_sessions(token, user_id, expires_at)."""

    def __init__(self, db: DatabasePool):
        self.db = db

    async def resolve_identity(self, token: str) -> Optional[str]:
        async with self.db.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT user_id FROM user_sessions
                WHERE token = $1 AND (expires_at IS NULL OR expires_at > $2)
                """,
                token,
                datetime.now(timezone.utc),
            )
        if row is None:
            logger.debug("Unknown or expired session token")
            return None
        return str(row["user_id"])
