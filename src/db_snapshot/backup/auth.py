"""Caller authorization for backup, export, restore and schedule updates.

Two external capabilities are consumed: an identity provider that turns a
bearer token into a user id, and a role store answering "is this user an
admin".  ``Authorizer`` combines them with the two special paths:

- the scheduler token, accepted for backups (actor ``"system"``);
- the emergency restore override, which skips the credential check when
  the request carries the configured confirmation phrase.
"""

import logging
import secrets
from typing import Protocol

from supabase import AsyncClient

from db_snapshot.adapters.base import DatabaseClient
from db_snapshot.backup.restore import RestoreRequest
from db_snapshot.errors import AuthError

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"
EMERGENCY_ACTOR = "emergency"


class IdentityProvider(Protocol):
    async def verify_token(self, token: str) -> str | None:
        """User id for a valid token, ``None`` otherwise."""
        ...


class RoleStore(Protocol):
    async def is_admin(self, user_id: str) -> bool: ...


class SupabaseIdentityProvider:
    """Verifies access tokens with Supabase Auth."""

    def __init__(self, client: AsyncClient) -> None:
        self._client = client

    async def verify_token(self, token: str) -> str | None:
        try:
            response = await self._client.auth.get_user(token)
        except Exception as e:
            logger.warning(f"Token verification failed: {e}")
            return None
        if response is None or response.user is None:
            return None
        return response.user.id


class AdapterRoleStore:
    """Admin lookup in the ``user_roles`` table through any ``DatabaseClient``."""

    def __init__(self, adapter: DatabaseClient, table: str = "user_roles") -> None:
        self._adapter = adapter
        self._table = table

    async def is_admin(self, user_id: str) -> bool:
        rows = await self._adapter.select(
            self._table,
            "role",
            filters={"user_id": user_id, "role": "admin"},
            limit=1,
        )
        return bool(rows)


def bearer_token(authorization: str | None) -> str | None:
    """Token part of an ``Authorization: Bearer <token>`` header."""
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


class Authorizer:
    """Answers "may this caller run this operation"; raises ``AuthError`` if not."""

    def __init__(
        self,
        identity: IdentityProvider | None,
        roles: RoleStore,
        emergency_phrase: str = "confirm",
    ) -> None:
        self._identity = identity
        self._roles = roles
        self._emergency_phrase = emergency_phrase

    async def require_admin(self, authorization: str | None) -> str:
        """User id of an authenticated admin.

        Raises:
            AuthError: 401 for a missing or invalid token, 403 for non-admins.
        """
        if not authorization:
            logger.warning("Attempt without authorization header")
            raise AuthError("Unauthorized: No authorization header", 401)

        token = bearer_token(authorization)
        user_id = await self._identity.verify_token(token) if token and self._identity else None
        if not user_id:
            logger.warning("Attempt with invalid token")
            raise AuthError("Unauthorized: Invalid token", 401)

        if not await self._roles.is_admin(user_id):
            logger.warning(f"Attempt by non-admin user: {user_id}")
            raise AuthError("Forbidden: Admin access required", 403)

        return user_id

    async def authorize_backup(self, authorization: str | None, cron_token: str | None) -> str:
        """Actor label for a backup: ``"system"`` for the scheduler token, else the admin id."""
        token = bearer_token(authorization)
        if cron_token and token and secrets.compare_digest(token, cron_token):
            return SYSTEM_ACTOR
        return await self.require_admin(authorization)

    async def authorize_restore(self, request: RestoreRequest, authorization: str | None) -> str:
        """Actor label for a restore.

        An emergency restore bypasses the credential check but must carry
        the exact confirmation phrase.

        Raises:
            AuthError: 400 for a wrong phrase, otherwise as ``require_admin``.
        """
        if request.emergency_restore:
            if request.confirm_text != self._emergency_phrase:
                logger.warning("Emergency restore attempt without proper confirmation")
                raise AuthError(f"Type '{self._emergency_phrase}' to confirm the restore", 400)
            logger.warning("Emergency restore confirmed - credential check bypassed")
            return EMERGENCY_ACTOR
        return await self.require_admin(authorization)
