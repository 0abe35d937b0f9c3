"""Request authentication: service key or per-user API token."""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass

import structlog

from agentloop.shell.errors import UnauthorizedError
from agentloop.shell.store import Store

log = structlog.get_logger()


@dataclass(frozen=True)
class AuthContext:
    user_id: str | None
    is_service_request: bool


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


class Authenticator:
    def __init__(self, store: Store, service_key: str) -> None:
        self._store = store
        self._service_key = service_key

    async def authenticate(self, header: str | None) -> AuthContext:
        """Resolve an Authorization header. Raises UnauthorizedError when absent or invalid."""
        if not header or not header.startswith("Bearer "):
            raise UnauthorizedError("Missing authorization header")
        token = header[7:].strip()
        if not token:
            raise UnauthorizedError("Missing authorization header")

        if self._service_key and hmac.compare_digest(token, self._service_key):
            return AuthContext(user_id=None, is_service_request=True)

        user_id = await self._store.find_token_owner(hash_token(token))
        if not user_id:
            log.warning("auth.rejected")
            raise UnauthorizedError("Invalid or expired token")
        return AuthContext(user_id=user_id, is_service_request=False)
