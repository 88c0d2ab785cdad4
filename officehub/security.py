"""Security helpers for the OfficeHub HTTP service."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict

import anyio
from fastapi import HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .database import Database
from .models import Profile
from .results import Reason, message_for
from .tokens import TokenRegistry


def error_detail(reason: Reason, message: str | None = None) -> Dict[str, str]:
    return {"code": reason.value, "message": message or message_for(reason)}


def api_error(status_code: int, reason: Reason, message: str | None = None) -> HTTPException:
    return HTTPException(status_code=status_code, detail=error_detail(reason, message))


@dataclass(frozen=True)
class Principal:
    """Caller resolved from a bearer token."""

    token: str
    profile: Profile


class BearerAuth:
    """Resolve ``Authorization: Bearer`` tokens issued by :class:`TokenRegistry`."""

    def __init__(self, database: Database, tokens: TokenRegistry):
        self._database = database
        self._tokens = tokens
        self._bearer = HTTPBearer(auto_error=False)

    async def __call__(self, request: Request) -> Principal:
        credentials: HTTPAuthorizationCredentials | None = await self._bearer(request)  # type: ignore[assignment]
        if credentials is None or credentials.scheme.lower() != "bearer":
            raise api_error(status.HTTP_401_UNAUTHORIZED, Reason.NOT_AUTHENTICATED, "Missing bearer token")

        token = credentials.credentials.strip()
        user_id = self._tokens.resolve(token) if token else None
        if user_id is None:
            raise api_error(status.HTTP_401_UNAUTHORIZED, Reason.NOT_AUTHENTICATED, "Invalid or expired token")

        profile = await anyio.to_thread.run_sync(self._database.get_profile, user_id)
        if profile is None:
            self._tokens.revoke_user(user_id)
            raise api_error(status.HTTP_401_UNAUTHORIZED, Reason.NOT_AUTHENTICATED, "Account no longer exists")
        return Principal(token=token, profile=profile)


def require_admin(principal: Principal) -> Profile:
    if not principal.profile.is_admin:
        raise api_error(status.HTTP_403_FORBIDDEN, Reason.FORBIDDEN)
    return principal.profile


__all__ = ["BearerAuth", "Principal", "api_error", "error_detail", "require_admin"]
