"""Domain models shared by the session and attendance state machines."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import FrozenSet, Optional, Tuple


class Role(str, Enum):
    """Business role attached to a profile."""

    USER = "user"
    ADMIN = "admin"


class AttendanceStatus(str, Enum):
    """Classification assigned by the backing store, never by the client."""

    PRESENT = "present"
    LATE = "late"
    EARLY_LEAVE = "early_leave"


class AttendancePhase(str, Enum):
    """Per-day lifecycle of an attendance record as seen by the client."""

    NOT_CHECKED_IN = "not_checked_in"
    CHECKED_IN = "checked_in"
    CHECKED_OUT = "checked_out"


@dataclass(frozen=True)
class Session:
    """A live authentication grant issued by the identity provider."""

    identity_id: str
    email: str
    email_verified: bool = False
    access_token: Optional[str] = field(default=None, repr=False)


@dataclass(frozen=True)
class Profile:
    """Business identity layered on top of a session."""

    id: str
    name: str
    email: str
    company_id: Optional[str]
    company_name: Optional[str]
    role: Role
    created_at: datetime

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN


@dataclass(frozen=True)
class Company:
    """Tenant that owns a set of profiles."""

    id: str
    name: str
    code: str
    created_at: datetime


@dataclass(frozen=True)
class AttendanceRecord:
    """One user's attendance for one local calendar day."""

    user_id: str
    date: date
    check_in_time: Optional[datetime] = None
    check_out_time: Optional[datetime] = None
    status: Optional[AttendanceStatus] = None
    work_duration: Optional[int] = None
    notes: str = ""
    updated_at: Optional[datetime] = None

    @property
    def phase(self) -> AttendancePhase:
        if self.check_in_time is None:
            return AttendancePhase.NOT_CHECKED_IN
        if self.check_out_time is None:
            return AttendancePhase.CHECKED_IN
        return AttendancePhase.CHECKED_OUT


@dataclass(frozen=True)
class MenuItem:
    """Navigation entry; an empty ``roles`` set means any signed-in user."""

    title: str
    path: str
    roles: FrozenSet[Role] = frozenset()
    sub_items: Tuple["MenuItem", ...] = ()

    def allows(self, role: Role) -> bool:
        return not self.roles or role in self.roles


__all__ = [
    "AttendancePhase",
    "AttendanceRecord",
    "AttendanceStatus",
    "Company",
    "MenuItem",
    "Profile",
    "Role",
    "Session",
]
