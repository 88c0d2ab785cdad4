"""Admin view of the active company's users."""

from __future__ import annotations

import logging
from typing import List, Optional

from .models import Profile, Role
from .providers import ProfileStore
from .results import ActionResult, Reason, StoreError
from .roles import Capability, RoleGate
from .sessions import SessionManager

logger = logging.getLogger("officehub.directory")

ROLE_CHANGED_MESSAGE = "역할이 변경되었습니다."


def _reason_for(exc: StoreError) -> Reason:
    if exc.status_code == 404:
        return Reason.NOT_FOUND
    if exc.status_code == 403:
        return Reason.FORBIDDEN
    if exc.status_code == 400:
        return Reason.INVALID_INPUT
    return Reason.UNAVAILABLE


class UserDirectory:
    """Company user list and role changes, checked locally before any request.

    The cached list belongs to the signed-in session and is dropped whenever
    the identity goes away.
    """

    def __init__(self, manager: SessionManager, profiles: ProfileStore, gate: Optional[RoleGate] = None) -> None:
        self._manager = manager
        self._profiles = profiles
        self._gate = gate or RoleGate(manager)
        self._users: List[Profile] = []
        self._epoch = 0
        self._scope = manager.register_session_scoped(self.clear)

    @property
    def users(self) -> List[Profile]:
        return list(self._users)

    def clear(self) -> None:
        self._epoch += 1
        self._users = []

    def close(self) -> None:
        self._scope.close()
        self.clear()

    async def load(self) -> ActionResult:
        verdict = self._gate.authorize(Capability.MANAGE_USERS)
        if not verdict:
            return verdict

        profile = self._manager.view.profile
        if profile is None or not profile.company_id:
            return ActionResult.failure(Reason.PROFILE_UNAVAILABLE)

        epoch = self._epoch
        try:
            users = await self._profiles.list_profiles(profile.company_id)
        except StoreError as exc:
            logger.warning("Listing users of %s failed: %s", profile.company_id, exc)
            return ActionResult.failure(_reason_for(exc))
        except Exception:
            logger.exception("Listing users of %s failed", profile.company_id)
            return ActionResult.failure(Reason.UNAVAILABLE)

        if epoch != self._epoch:
            logger.info("Discarding user list loaded for a previous session")
            return ActionResult.failure(Reason.NOT_AUTHENTICATED)

        self._users = list(users)
        return ActionResult.success(data=self.users)

    def search(self, query: str) -> List[Profile]:
        needle = (query or "").strip().casefold()
        if not needle:
            return self.users
        return [
            user
            for user in self._users
            if needle in user.name.casefold() or needle in user.email.casefold()
        ]

    async def change_role(self, user_id: str, role: Role) -> ActionResult:
        verdict = self._gate.authorize(Capability.EDIT_USER_ROLE)
        if not verdict:
            return verdict

        try:
            role = Role(role)
        except ValueError:
            return ActionResult.failure(Reason.INVALID_INPUT)

        epoch = self._epoch
        try:
            updated = await self._profiles.update_role(user_id, role)
        except StoreError as exc:
            logger.warning("Changing role of %s failed: %s", user_id, exc)
            return ActionResult.failure(_reason_for(exc))
        except Exception:
            logger.exception("Changing role of %s failed", user_id)
            return ActionResult.failure(Reason.UNAVAILABLE)

        if epoch == self._epoch:
            self._users = [updated if user.id == updated.id else user for user in self._users]
        if user_id == self._manager.view.user_id:
            await self._manager.refresh_profile()
        logger.info("Role of %s set to %s", user_id, role.value)
        return ActionResult.success(ROLE_CHANGED_MESSAGE, data=updated)


__all__ = ["UserDirectory"]
