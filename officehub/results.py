"""Result and error types returned across the core's public surface.

Every mutating operation of the core resolves to an :class:`ActionResult`
instead of raising, so callers can render a localized message without
inspecting exception internals. Collaborators signal failures with the two
exception types defined here; the core converts them at its boundary.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class Reason(str, Enum):
    """Machine-readable failure reasons."""

    # Credential failures
    INVALID_CREDENTIALS = "invalid_credentials"
    EMAIL_NOT_CONFIRMED = "email_not_confirmed"
    ALREADY_REGISTERED = "already_registered"
    WEAK_PASSWORD = "weak_password"
    # Session
    NOT_AUTHENTICATED = "not_authenticated"
    PROFILE_UNAVAILABLE = "profile_unavailable"
    # Authorization
    FORBIDDEN = "forbidden"
    # Attendance preconditions
    ALREADY_CHECKED_IN = "already_checked_in"
    NO_RECORD = "no_record"
    NO_CHECK_IN_TIME = "no_check_in_time"
    ALREADY_CHECKED_OUT = "already_checked_out"
    REQUEST_IN_FLIGHT = "request_in_flight"
    # Lookup / validation
    NOT_FOUND = "not_found"
    INVALID_INPUT = "invalid_input"
    # Transport or anything unexpected
    UNAVAILABLE = "unavailable"


MESSAGES: Dict[Reason, str] = {
    Reason.INVALID_CREDENTIALS: "이메일 또는 비밀번호가 올바르지 않습니다.",
    Reason.EMAIL_NOT_CONFIRMED: "이메일 확인이 필요합니다.",
    Reason.ALREADY_REGISTERED: "이미 등록된 이메일입니다.",
    Reason.WEAK_PASSWORD: "비밀번호가 너무 짧습니다.",
    Reason.NOT_AUTHENTICATED: "로그인이 필요합니다.",
    Reason.PROFILE_UNAVAILABLE: "프로필 정보를 불러오지 못했습니다.",
    Reason.FORBIDDEN: "접근 권한이 없습니다",
    Reason.ALREADY_CHECKED_IN: "이미 출근 처리되었습니다.",
    Reason.NO_RECORD: "출근 기록이 없습니다. 먼저 출근 체크를 해주세요.",
    Reason.NO_CHECK_IN_TIME: "출근 시간이 기록되지 않았습니다.",
    Reason.ALREADY_CHECKED_OUT: "이미 퇴근 처리되었습니다.",
    Reason.REQUEST_IN_FLIGHT: "요청을 처리하는 중입니다.",
    Reason.NOT_FOUND: "대상을 찾을 수 없습니다.",
    Reason.INVALID_INPUT: "입력값이 올바르지 않습니다.",
    Reason.UNAVAILABLE: "요청 처리 중 오류가 발생했습니다.",
}


def message_for(reason: Optional[Reason], default: str = "") -> str:
    if reason is None:
        return default
    return MESSAGES.get(reason, default or MESSAGES[Reason.UNAVAILABLE])


class AuthError(Exception):
    """Raised by identity providers for expected credential failures."""

    def __init__(self, reason: Reason, message: Optional[str] = None) -> None:
        self.reason = reason
        self.message = message or message_for(reason)
        super().__init__(self.message)


class StoreError(Exception):
    """Raised by stores and transports for unexpected backend failures."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        self.status_code = status_code
        super().__init__(message)


@dataclass(frozen=True)
class StoreResult:
    """Outcome of an attendance store mutation."""

    ok: bool
    reason: Optional[Reason] = None

    @classmethod
    def success(cls) -> "StoreResult":
        return cls(ok=True)

    @classmethod
    def failure(cls, reason: Reason) -> "StoreResult":
        return cls(ok=False, reason=reason)


@dataclass(frozen=True)
class ActionResult:
    """Outcome of a public core operation."""

    ok: bool
    reason: Optional[Reason] = None
    message: str = ""
    data: Any = None

    @classmethod
    def success(cls, message: str = "", data: Any = None) -> "ActionResult":
        return cls(ok=True, message=message, data=data)

    @classmethod
    def failure(cls, reason: Reason, message: Optional[str] = None) -> "ActionResult":
        return cls(ok=False, reason=reason, message=message or message_for(reason))

    def __bool__(self) -> bool:
        return self.ok


__all__ = [
    "ActionResult",
    "AuthError",
    "MESSAGES",
    "Reason",
    "StoreError",
    "StoreResult",
    "message_for",
]
