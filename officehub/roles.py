"""Role-based authorization decisions derived from the active profile.

Every check reads the session manager's current view, so a profile change is
reflected immediately and nothing is cached across identities.
"""

from __future__ import annotations

from enum import Enum
from typing import Callable, Dict, FrozenSet, Iterable, List, Union

from .models import MenuItem, Role
from .results import ActionResult, Reason
from .sessions import SessionManager, SessionView


class RouteRequirement(str, Enum):
    NONE = "none"
    AUTHENTICATED = "authenticated"
    ADMIN_ONLY = "admin_only"


class Capability(str, Enum):
    """Actions and screens that can be granted to a role."""

    VIEW_DASHBOARD = "dashboard:view"
    RECORD_ATTENDANCE = "attendance:record"
    VIEW_ATTENDANCE_REPORT = "attendance:report"
    MANAGE_INVENTORY = "inventory:manage"
    VIEW_REPORTS = "reports:view"
    VIEW_ADMIN_SETTINGS = "settings:view"
    MANAGE_USERS = "users:manage"
    EDIT_USER_ROLE = "users:edit_role"


_EVERYONE: FrozenSet[Role] = frozenset({Role.USER, Role.ADMIN})
_ADMINS: FrozenSet[Role] = frozenset({Role.ADMIN})

CAPABILITY_ROLES: Dict[Capability, FrozenSet[Role]] = {
    Capability.VIEW_DASHBOARD: _EVERYONE,
    Capability.RECORD_ATTENDANCE: _EVERYONE,
    Capability.VIEW_ATTENDANCE_REPORT: _ADMINS,
    Capability.MANAGE_INVENTORY: _ADMINS,
    Capability.VIEW_REPORTS: _ADMINS,
    Capability.VIEW_ADMIN_SETTINGS: _ADMINS,
    Capability.MANAGE_USERS: _ADMINS,
    Capability.EDIT_USER_ROLE: _ADMINS,
}


def filter_menu(items: Iterable[MenuItem], role: Role) -> List[MenuItem]:
    """Return the entries ``role`` may see, dropping parents left without children."""

    visible: List[MenuItem] = []
    for item in items:
        if not item.allows(role):
            continue
        if item.sub_items:
            children = tuple(filter_menu(item.sub_items, role))
            if not children:
                continue
            if children != item.sub_items:
                item = MenuItem(title=item.title, path=item.path, roles=item.roles, sub_items=children)
        visible.append(item)
    return visible


ViewSource = Union[SessionManager, Callable[[], SessionView]]


class RoleGate:
    """Answer authorization questions against the current session view."""

    def __init__(self, source: ViewSource) -> None:
        if isinstance(source, SessionManager):
            manager = source
            self._current = lambda: manager.view
        else:
            self._current = source

    @property
    def view(self) -> SessionView:
        return self._current()

    def is_authenticated(self) -> bool:
        return self.view.is_authenticated

    def is_admin(self) -> bool:
        profile = self.view.profile
        return profile is not None and profile.role is Role.ADMIN

    def can_access(self, requirement: RouteRequirement) -> bool:
        if requirement is RouteRequirement.NONE:
            return True
        if requirement is RouteRequirement.AUTHENTICATED:
            return self.is_authenticated()
        return self.is_authenticated() and self.is_admin()

    def can(self, capability: Capability) -> bool:
        role = self.view.role
        if role is None:
            return False
        return role in CAPABILITY_ROLES.get(capability, frozenset())

    def authorize(self, capability: Capability) -> ActionResult:
        """Local guard evaluated before any admin call reaches the network."""

        if not self.is_authenticated():
            return ActionResult.failure(Reason.NOT_AUTHENTICATED)
        if not self.can(capability):
            return ActionResult.failure(Reason.FORBIDDEN)
        return ActionResult.success()

    def visible_menu(self, items: Iterable[MenuItem]) -> List[MenuItem]:
        role = self.view.role
        if role is None:
            return []
        return filter_menu(items, role)


__all__ = [
    "CAPABILITY_ROLES",
    "Capability",
    "RoleGate",
    "RouteRequirement",
    "filter_menu",
]
