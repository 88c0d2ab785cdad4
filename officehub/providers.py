"""Interfaces of the remote collaborators consumed by the core."""

from __future__ import annotations

from typing import Dict, List, Mapping, Optional, Protocol, runtime_checkable

from .events import AuthHandler, Subscription
from .models import AttendanceRecord, Profile, Role, Session
from .results import StoreResult


@runtime_checkable
class AuthProvider(Protocol):
    """Identity service: credentials in, sessions and push events out."""

    async def sign_in(self, email: str, password: str) -> Session:
        """Return the new session or raise :class:`~officehub.results.AuthError`."""

    async def sign_up(self, email: str, password: str, metadata: Mapping[str, str]) -> Optional[Session]:
        """Register an identity; ``None`` when verification is still pending."""

    async def sign_out(self) -> None:
        """End the current session. Must not raise."""

    async def get_current_session(self) -> Optional[Session]:
        ...

    async def request_password_reset(self, email: str) -> None:
        ...

    def subscribe(self, handler: AuthHandler) -> Subscription:
        ...


@runtime_checkable
class ProfileStore(Protocol):
    async def get_profile(self, user_id: str) -> Optional[Profile]:
        ...

    async def update_profile(self, user_id: str, fields: Dict[str, str]) -> Profile:
        ...

    async def list_profiles(self, company_id: str) -> List[Profile]:
        """Profiles of one company, newest first."""

    async def update_role(self, user_id: str, role: Role) -> Profile:
        ...


@runtime_checkable
class AttendanceStore(Protocol):
    """Day-scoped attendance operations; the store decides what "today" is."""

    async def get_today(self, user_id: str) -> Optional[AttendanceRecord]:
        ...

    async def check_in(self, user_id: str) -> StoreResult:
        ...

    async def check_out(self, user_id: str) -> StoreResult:
        ...

    async def set_notes(self, user_id: str, text: str) -> StoreResult:
        ...


__all__ = ["AttendanceStore", "AuthProvider", "ProfileStore"]
