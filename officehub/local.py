"""In-process collaborators backed directly by :class:`~officehub.database.Database`.

These adapters let the client core run against the reference store without
the HTTP service in between (CLI tools, tests, single-machine deployments).
Blocking SQLite calls are moved off the event loop with ``anyio.to_thread``.
"""

from __future__ import annotations

import logging
import secrets
from functools import partial
from typing import Dict, List, Mapping, Optional

import anyio

from .database import Database
from .events import AuthEvent, AuthHandler, PushChannel, Subscription
from .models import AttendanceRecord, Profile, Role, Session
from .results import StoreError, StoreResult

logger = logging.getLogger("officehub.local")


def _new_session(profile: Profile) -> Session:
    return Session(
        identity_id=profile.id,
        email=profile.email,
        email_verified=True,
        access_token=secrets.token_urlsafe(24),
    )


class LocalAuthProvider:
    """Identity provider that authenticates against the local database."""

    def __init__(
        self,
        database: Database,
        *,
        auto_confirm_email: bool = False,
        channel: Optional[PushChannel] = None,
    ) -> None:
        self._database = database
        self._auto_confirm = auto_confirm_email
        self._channel = channel or PushChannel()
        self._session: Optional[Session] = None

    @property
    def channel(self) -> PushChannel:
        return self._channel

    async def sign_in(self, email: str, password: str) -> Session:
        profile = await anyio.to_thread.run_sync(self._database.authenticate, email, password)
        session = _new_session(profile)
        self._session = session
        logger.info("Local sign-in for %s", profile.id)
        self._channel.emit(AuthEvent.SIGNED_IN, session)
        return session

    async def sign_up(self, email: str, password: str, metadata: Mapping[str, str]) -> Optional[Session]:
        """Register an identity; the caller still signs in explicitly."""

        create = partial(
            self._database.create_user,
            metadata.get("name", ""),
            email,
            password,
            company_id=metadata.get("company_id") or None,
            role=Role.USER,
            email_verified=self._auto_confirm,
        )
        profile = await anyio.to_thread.run_sync(create)
        logger.info("Registered %s (verified=%s)", profile.id, self._auto_confirm)
        if not self._auto_confirm:
            return None
        return Session(identity_id=profile.id, email=profile.email, email_verified=True)

    async def sign_out(self) -> None:
        if self._session is not None:
            logger.info("Local sign-out for %s", self._session.identity_id)
        self._session = None
        self._channel.emit(AuthEvent.SIGNED_OUT, None)

    async def get_current_session(self) -> Optional[Session]:
        return self._session

    async def request_password_reset(self, email: str) -> None:
        user_id = await anyio.to_thread.run_sync(self._database.get_user_id_by_email, email)
        # Unknown addresses are accepted silently.
        logger.info("Password reset requested for %s (known=%s)", email, user_id is not None)

    def subscribe(self, handler: AuthHandler) -> Subscription:
        return self._channel.subscribe(handler)

    # ------------------------------------------------------------------
    # Provider-side notifications
    # ------------------------------------------------------------------
    def refresh_token(self) -> Optional[Session]:
        session = self._session
        if session is None:
            return None
        refreshed = Session(
            identity_id=session.identity_id,
            email=session.email,
            email_verified=session.email_verified,
            access_token=secrets.token_urlsafe(24),
        )
        self._session = refreshed
        self._channel.emit(AuthEvent.TOKEN_REFRESHED, refreshed)
        return refreshed

    def notify_user_updated(self) -> None:
        if self._session is not None:
            self._channel.emit(AuthEvent.USER_UPDATED, self._session)

    async def delete_user(self, user_id: str) -> bool:
        deleted = await anyio.to_thread.run_sync(self._database.delete_user, user_id)
        if deleted and self._session is not None and self._session.identity_id == user_id:
            self._session = None
            self._channel.emit(AuthEvent.USER_DELETED, None)
        return deleted


class LocalProfileStore:
    def __init__(self, database: Database) -> None:
        self._database = database

    async def get_profile(self, user_id: str) -> Optional[Profile]:
        return await anyio.to_thread.run_sync(self._database.get_profile, user_id)

    async def update_profile(self, user_id: str, fields: Dict[str, str]) -> Profile:
        try:
            return await anyio.to_thread.run_sync(self._database.update_profile, user_id, dict(fields))
        except KeyError as exc:
            raise StoreError(str(exc), status_code=404) from exc
        except ValueError as exc:
            raise StoreError(str(exc), status_code=400) from exc

    async def list_profiles(self, company_id: str) -> List[Profile]:
        return await anyio.to_thread.run_sync(self._database.list_profiles, company_id)

    async def update_role(self, user_id: str, role: Role) -> Profile:
        try:
            return await anyio.to_thread.run_sync(self._database.update_role, user_id, Role(role))
        except KeyError as exc:
            raise StoreError(str(exc), status_code=404) from exc


class LocalAttendanceStore:
    def __init__(self, database: Database) -> None:
        self._database = database

    async def get_today(self, user_id: str) -> Optional[AttendanceRecord]:
        return await anyio.to_thread.run_sync(self._database.get_today, user_id)

    async def check_in(self, user_id: str) -> StoreResult:
        return await anyio.to_thread.run_sync(self._database.check_in, user_id)

    async def check_out(self, user_id: str) -> StoreResult:
        return await anyio.to_thread.run_sync(self._database.check_out, user_id)

    async def set_notes(self, user_id: str, text: str) -> StoreResult:
        return await anyio.to_thread.run_sync(self._database.set_notes, user_id, text)


__all__ = [
    "LocalAttendanceStore",
    "LocalAuthProvider",
    "LocalProfileStore",
]
