"""Assemble the client core against either backend."""
from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

import httpx

from .attendance import AttendanceTracker, ProgressTicker, WorkProgress
from .client import HTTPAttendanceStore, HTTPAuthProvider, HTTPProfileStore, ServiceClient
from .config import Settings
from .database import Database
from .directory import UserDirectory
from .events import Subscription
from .local import LocalAttendanceStore, LocalAuthProvider, LocalProfileStore
from .providers import AttendanceStore, AuthProvider, ProfileStore
from .roles import RoleGate
from .sessions import SessionManager

logger = logging.getLogger("officehub.application")


@dataclass
class ClientCore:
    """Session manager plus the components that follow it."""

    auth: AuthProvider
    manager: SessionManager
    gate: RoleGate
    tracker: AttendanceTracker
    directory: UserDirectory
    tick_interval: float = 1.0
    _cleanups: List[Callable[[], object]] = field(default_factory=list, repr=False)
    _binding: Optional[Subscription] = field(default=None, repr=False)

    async def start(self) -> "ClientCore":
        await self.manager.initialize()
        if self._binding is None:
            self._binding = self.tracker.bind(self.manager)
        return self

    def progress_ticker(self, callback: Callable[[WorkProgress], None]) -> ProgressTicker:
        return ProgressTicker(self.tracker, callback, interval=self.tick_interval)

    async def aclose(self) -> None:
        binding, self._binding = self._binding, None
        if binding is not None:
            binding.close()
        await self.tracker.close()
        self.directory.close()
        await self.manager.teardown()
        for cleanup in self._cleanups:
            outcome = cleanup()
            if inspect.isawaitable(outcome):
                await outcome

    async def __aenter__(self) -> "ClientCore":
        return await self.start()

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()


def assemble_core(
    auth: AuthProvider,
    profiles: ProfileStore,
    attendance: AttendanceStore,
    *,
    settings: Optional[Settings] = None,
) -> ClientCore:
    manager = SessionManager(auth, profiles)
    if settings is None:
        tracker = AttendanceTracker(attendance)
    else:
        tracker = AttendanceTracker(
            attendance,
            target=settings.workday.target,
            notes_debounce=settings.client.notes_debounce_seconds,
        )
    return ClientCore(
        auth=auth,
        manager=manager,
        gate=RoleGate(manager),
        tracker=tracker,
        directory=UserDirectory(manager, profiles),
        tick_interval=settings.client.tick_seconds if settings is not None else 1.0,
    )


def build_local_core(database: Database, *, settings: Optional[Settings] = None) -> ClientCore:
    """Core wired directly to a local :class:`Database`."""

    auto_confirm = settings.auto_confirm_email if settings is not None else False
    auth = LocalAuthProvider(database, auto_confirm_email=auto_confirm)
    return assemble_core(
        auth,
        LocalProfileStore(database),
        LocalAttendanceStore(database),
        settings=settings,
    )


def build_http_core(
    settings: Settings,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ClientCore:
    """Core wired to a running OfficeHub service at ``settings.api_base_url``."""

    client = ServiceClient(settings.api_base_url, timeout=settings.client.timeout, transport=transport)
    logger.debug("Using OfficeHub service at %s", client.base_url)
    core = assemble_core(
        HTTPAuthProvider(client),
        HTTPProfileStore(client),
        HTTPAttendanceStore(client),
        settings=settings,
    )
    core._cleanups.append(client.aclose)
    return core


__all__ = ["ClientCore", "assemble_core", "build_http_core", "build_local_core"]
