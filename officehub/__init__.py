"""Session and workforce-attendance core for the OfficeHub dashboard."""

from __future__ import annotations

from typing import Any

from .attendance import AttendanceTracker, ProgressTicker, WorkProgress, work_progress
from .config import Settings, load_settings
from .database import Database
from .events import AuthEvent, Subscription
from .models import AttendancePhase, AttendanceRecord, AttendanceStatus, MenuItem, Profile, Role, Session
from .results import ActionResult, AuthError, Reason, StoreError, StoreResult
from .roles import Capability, RoleGate, RouteRequirement
from .sessions import SessionManager, SessionState, SessionView


def create_app(*args: Any, **kwargs: Any):
    """Factory function that returns the reference HTTP service."""

    from .api import create_app as _create_app

    return _create_app(*args, **kwargs)


def build_local_core(*args: Any, **kwargs: Any):
    """Factory function for a client core backed by a local database."""

    from .application import build_local_core as _build_local_core

    return _build_local_core(*args, **kwargs)


def build_http_core(*args: Any, **kwargs: Any):
    """Factory function for a client core talking to the HTTP service."""

    from .application import build_http_core as _build_http_core

    return _build_http_core(*args, **kwargs)


__all__ = [
    "ActionResult",
    "AttendancePhase",
    "AttendanceRecord",
    "AttendanceStatus",
    "AttendanceTracker",
    "AuthError",
    "AuthEvent",
    "Capability",
    "Database",
    "MenuItem",
    "Profile",
    "ProgressTicker",
    "Reason",
    "Role",
    "RoleGate",
    "RouteRequirement",
    "Session",
    "SessionManager",
    "SessionState",
    "SessionView",
    "Settings",
    "StoreError",
    "StoreResult",
    "Subscription",
    "WorkProgress",
    "build_http_core",
    "build_local_core",
    "create_app",
    "load_settings",
    "work_progress",
]
