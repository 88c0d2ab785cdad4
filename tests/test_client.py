from __future__ import annotations

import asyncio
from datetime import datetime
from pathlib import Path
from typing import AsyncIterator, List

import httpx
import pytest
import pytest_asyncio

from officehub.api import create_app
from officehub.application import ClientCore, build_http_core
from officehub.client import ServiceClient, ServiceError, _extract_error
from officehub.config import Settings
from officehub.database import Database
from officehub.events import AuthEvent
from officehub.models import AttendancePhase, Role
from officehub.policy import WorkdayPolicy
from officehub.results import Reason
from officehub.sessions import SessionState
from officehub.tokens import TokenRegistry

from conftest import KST, MutableClock

PASSWORD = "correct-horse-battery"


async def settle(core: ClientCore) -> None:
    """Let spawned attendance fetches start and finish."""

    for _ in range(5):
        await asyncio.sleep(0)
    for _ in range(500):
        if not core.tracker.loading:
            return
        await asyncio.sleep(0.01)


@pytest.fixture()
def database(tmp_path: Path) -> Database:
    clock = MutableClock(datetime(2024, 3, 4, 9, 0, tzinfo=KST))
    db = Database(tmp_path / "client.sqlite3", policy=WorkdayPolicy(), zone=KST, clock=clock)
    db.initialize()
    acme = db.create_company("Acme", "ACME")
    db.create_user("Alice", "alice@example.com", PASSWORD, company_id=acme.id, email_verified=True)
    db.create_user("Admin", "admin@example.com", PASSWORD, company_id=acme.id, role=Role.ADMIN, email_verified=True)
    return db


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(database_path=tmp_path / "client.sqlite3", api_base_url="http://officehub.test")


@pytest.fixture()
def tokens() -> TokenRegistry:
    return TokenRegistry()


@pytest_asyncio.fixture()
async def core(database: Database, settings: Settings, tokens: TokenRegistry) -> AsyncIterator[ClientCore]:
    app = create_app(database=database, settings=settings, tokens=tokens)
    async with build_http_core(settings, transport=httpx.ASGITransport(app=app)) as started:
        yield started


def _user_id(database: Database, email: str) -> str:
    user_id = database.get_user_id_by_email(email)
    assert user_id is not None
    return user_id


@pytest.mark.parametrize(
    "payload,expected",
    [
        ({"detail": {"code": "no_record", "message": "missing"}}, ("no_record", "missing")),
        ({"detail": "Plain detail"}, (None, "Plain detail")),
        ({"error": "  spaced  "}, (None, "spaced")),
        ("text body", (None, "text body")),
        ([{"loc": ["body"]}], (None, "fallback")),
    ],
)
def test_extract_error(payload: object, expected: tuple) -> None:
    assert _extract_error(payload, "fallback") == expected


@pytest.mark.asyncio
async def test_sign_in_and_attendance_over_http(core: ClientCore, database: Database) -> None:
    result = await core.manager.sign_in("alice@example.com", PASSWORD)
    await core.manager.drain()
    await settle(core)

    alice = _user_id(database, "alice@example.com")
    assert result.ok
    assert core.manager.state is SessionState.AUTHENTICATED
    assert core.manager.view.profile is not None
    assert core.manager.view.profile.company_name == "Acme"
    assert core.tracker.user_id == alice

    assert (await core.tracker.check_out(alice)).reason is Reason.NO_RECORD
    assert (await core.tracker.update_notes(alice, "memo")).reason is Reason.NO_RECORD
    assert (await core.tracker.check_in(alice)).ok
    assert core.tracker.phase is AttendancePhase.CHECKED_IN
    assert (await core.tracker.check_in(alice)).reason is Reason.ALREADY_CHECKED_IN
    assert (await core.tracker.update_notes(alice, "메모")).ok
    assert (await core.tracker.check_out(alice)).ok
    assert core.tracker.phase is AttendancePhase.CHECKED_OUT
    assert (await core.tracker.check_out(alice)).reason is Reason.ALREADY_CHECKED_OUT
    assert core.tracker.record is not None and core.tracker.record.notes == "메모"


@pytest.mark.asyncio
async def test_invalid_credentials_over_http(core: ClientCore) -> None:
    result = await core.manager.sign_in("alice@example.com", "wrong-password")

    assert result.reason is Reason.INVALID_CREDENTIALS
    assert core.manager.state is SessionState.UNAUTHENTICATED


@pytest.mark.asyncio
async def test_sign_out_over_http(core: ClientCore, database: Database, tokens: TokenRegistry) -> None:
    await core.manager.sign_in("alice@example.com", PASSWORD)
    await core.manager.drain()
    await settle(core)

    await core.manager.sign_out()
    await core.manager.drain()

    assert core.manager.state is SessionState.UNAUTHENTICATED
    assert core.tracker.user_id is None
    assert tokens.revoke_user(_user_id(database, "alice@example.com")) == 0


@pytest.mark.asyncio
async def test_rejected_token_signs_the_client_out(core: ClientCore, database: Database, tokens: TokenRegistry) -> None:
    await core.manager.sign_in("alice@example.com", PASSWORD)
    await core.manager.drain()
    await settle(core)
    alice = _user_id(database, "alice@example.com")

    tokens.revoke_user(alice)
    result = await core.tracker.check_in(alice)
    await core.manager.drain()
    await settle(core)

    assert result.reason is Reason.UNAVAILABLE
    assert core.manager.state is SessionState.UNAUTHENTICATED
    assert core.tracker.user_id is None


@pytest.mark.asyncio
async def test_token_refresh_keeps_session(core: ClientCore) -> None:
    await core.manager.sign_in("alice@example.com", PASSWORD)
    await core.manager.drain()
    await settle(core)
    events = []
    core.auth.subscribe(lambda event, session: events.append(event))
    before = core.manager.view

    refreshed = await core.auth.refresh()  # type: ignore[attr-defined]
    await core.manager.drain()

    assert refreshed is not None
    assert events == [AuthEvent.TOKEN_REFRESHED]
    assert core.manager.view == before
    assert (await core.manager.refresh_profile()).ok


@pytest.mark.asyncio
async def test_admin_directory_over_http(core: ClientCore, database: Database) -> None:
    await core.manager.sign_in("admin@example.com", PASSWORD)
    await core.manager.drain()

    listed = await core.directory.load()
    assert listed.ok
    assert {user.name for user in core.directory.users} == {"Alice", "Admin"}

    alice = _user_id(database, "alice@example.com")
    changed = await core.directory.change_role(alice, Role.ADMIN)
    assert changed.ok
    assert database.get_profile(alice).role is Role.ADMIN  # type: ignore[union-attr]

    missing = await core.directory.change_role("missing", Role.ADMIN)
    assert missing.reason is Reason.NOT_FOUND


@pytest.mark.asyncio
async def test_restores_session_from_existing_token(
    database: Database, settings: Settings, tokens: TokenRegistry
) -> None:
    app = create_app(database=database, settings=settings, tokens=tokens)
    transport = httpx.ASGITransport(app=app)
    core = build_http_core(settings, transport=transport)
    await core.auth.sign_in("alice@example.com", PASSWORD)

    await core.start()
    try:
        assert core.manager.state is SessionState.AUTHENTICATED
        assert core.manager.view.profile is not None
        await settle(core)
    finally:
        await core.aclose()


@pytest.mark.asyncio
async def test_transport_failures_become_unavailable() -> None:
    def _refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = ServiceClient("http://officehub.test", transport=httpx.MockTransport(_refuse))
    try:
        with pytest.raises(ServiceError) as excinfo:
            await client.request("GET", "/health", authenticated=False)
        assert excinfo.value.reason is Reason.UNAVAILABLE
        assert excinfo.value.status_code is None

        with pytest.raises(ServiceError) as unauthenticated:
            await client.request("GET", "/attendance/today")
        assert unauthenticated.value.reason is Reason.NOT_AUTHENTICATED
    finally:
        await client.aclose()


@pytest.mark.asyncio
async def test_sign_out_survives_unreachable_service() -> None:
    def _refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    settings = Settings(database_path=Path("unused.sqlite3"), api_base_url="http://officehub.test")
    core = build_http_core(settings, transport=httpx.MockTransport(_refuse))
    events: List[AuthEvent] = []
    core.auth.subscribe(lambda event, session: events.append(event))

    await core.start()
    try:
        assert (await core.manager.sign_out()).ok
        assert events == [AuthEvent.SIGNED_OUT]
        assert (await core.manager.sign_in("alice@example.com", PASSWORD)).reason is Reason.UNAVAILABLE
    finally:
        await core.aclose()
