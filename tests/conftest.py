from __future__ import annotations

import asyncio
import sys
from dataclasses import replace
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Tuple

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from officehub.events import AuthEvent, AuthHandler, PushChannel, Subscription
from officehub.models import AttendanceRecord, AttendanceStatus, Profile, Role, Session
from officehub.results import AuthError, Reason, StoreError, StoreResult

KST = timezone(timedelta(hours=9))
COMPANY_ID = "company-1"


def make_profile(
    user_id: str,
    *,
    role: Role = Role.USER,
    name: Optional[str] = None,
    company_id: Optional[str] = COMPANY_ID,
    created_at: Optional[datetime] = None,
) -> Profile:
    return Profile(
        id=user_id,
        name=name or user_id.title(),
        email=f"{user_id}@example.com",
        company_id=company_id,
        company_name="Acme" if company_id else None,
        role=role,
        created_at=created_at or datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


def make_session(user_id: str) -> Session:
    return Session(identity_id=user_id, email=f"{user_id}@example.com", email_verified=True, access_token=f"token-{user_id}")


class FakeAuthProvider:
    """Scriptable identity provider with a synchronous push channel."""

    def __init__(self) -> None:
        self.channel = PushChannel()
        self.accounts: Dict[str, Tuple[str, str, bool]] = {}
        self.current: Optional[Session] = None
        self.emit_on_sign_in = True
        self.fail_current_session = False
        self.fail_sign_out = False
        self.subscribe_calls = 0
        self.sign_up_calls: List[Tuple[str, Mapping[str, str]]] = []
        self.reset_requests: List[str] = []

    def add_account(self, email: str, password: str, user_id: str, *, verified: bool = True) -> None:
        self.accounts[email] = (password, user_id, verified)

    async def sign_in(self, email: str, password: str) -> Session:
        account = self.accounts.get(email)
        if account is None or account[0] != password:
            raise AuthError(Reason.INVALID_CREDENTIALS)
        if not account[2]:
            raise AuthError(Reason.EMAIL_NOT_CONFIRMED)
        session = Session(identity_id=account[1], email=email, email_verified=True, access_token="token")
        self.current = session
        if self.emit_on_sign_in:
            self.channel.emit(AuthEvent.SIGNED_IN, session)
        return session

    async def sign_up(self, email: str, password: str, metadata: Mapping[str, str]) -> Optional[Session]:
        if email in self.accounts:
            raise AuthError(Reason.ALREADY_REGISTERED)
        self.sign_up_calls.append((email, dict(metadata)))
        self.accounts[email] = (password, f"new-{len(self.accounts)}", False)
        return None

    async def sign_out(self) -> None:
        self.current = None
        if self.fail_sign_out:
            raise RuntimeError("network down")
        self.channel.emit(AuthEvent.SIGNED_OUT, None)

    async def get_current_session(self) -> Optional[Session]:
        if self.fail_current_session:
            raise RuntimeError("identity provider unreachable")
        return self.current

    async def request_password_reset(self, email: str) -> None:
        self.reset_requests.append(email)

    def subscribe(self, handler: AuthHandler) -> Subscription:
        self.subscribe_calls += 1
        return self.channel.subscribe(handler)

    def emit(self, event: AuthEvent, session: Optional[Session] = None) -> None:
        self.channel.emit(event, session)


class FakeProfileStore:
    def __init__(self, *profiles: Profile) -> None:
        self.profiles: Dict[str, Profile] = {profile.id: profile for profile in profiles}
        self.get_calls: List[str] = []
        self.fail_get = False
        self.fail_list = False
        self.list_calls: List[str] = []

    async def get_profile(self, user_id: str) -> Optional[Profile]:
        self.get_calls.append(user_id)
        if self.fail_get:
            raise StoreError("profile service unavailable")
        return self.profiles.get(user_id)

    async def update_profile(self, user_id: str, fields: Dict[str, str]) -> Profile:
        profile = self.profiles.get(user_id)
        if profile is None:
            raise StoreError("missing", status_code=404)
        updated = replace(profile, **fields)
        self.profiles[user_id] = updated
        return updated

    async def list_profiles(self, company_id: str) -> List[Profile]:
        self.list_calls.append(company_id)
        if self.fail_list:
            raise StoreError("boom", status_code=500)
        members = [profile for profile in self.profiles.values() if profile.company_id == company_id]
        return sorted(members, key=lambda profile: profile.created_at, reverse=True)

    async def update_role(self, user_id: str, role: Role) -> Profile:
        profile = self.profiles.get(user_id)
        if profile is None:
            raise StoreError("missing", status_code=404)
        updated = replace(profile, role=role)
        self.profiles[user_id] = updated
        return updated


class FakeAttendanceStore:
    """Day-scoped store mirroring the reference rules for a single day."""

    def __init__(self, clock: Callable[[], datetime], *, day: date = date(2024, 3, 4)) -> None:
        self.clock = clock
        self.day = day
        self.records: Dict[str, AttendanceRecord] = {}
        self.calls: List[Tuple[str, str]] = []
        self.gate: Optional[asyncio.Event] = None
        self.fetch_gates: Dict[str, asyncio.Event] = {}
        self.fail_with: Optional[Exception] = None

    async def _wait(self) -> None:
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_with is not None:
            raise self.fail_with

    async def get_today(self, user_id: str) -> Optional[AttendanceRecord]:
        self.calls.append(("get_today", user_id))
        gate = self.fetch_gates.get(user_id)
        if gate is not None:
            await gate.wait()
        if self.fail_with is not None:
            raise self.fail_with
        return self.records.get(user_id)

    async def check_in(self, user_id: str) -> StoreResult:
        self.calls.append(("check_in", user_id))
        await self._wait()
        record = self.records.get(user_id)
        if record is not None and record.check_in_time is not None:
            return StoreResult.failure(Reason.ALREADY_CHECKED_IN)
        self.records[user_id] = AttendanceRecord(
            user_id=user_id,
            date=self.day,
            check_in_time=self.clock(),
            status=AttendanceStatus.PRESENT,
        )
        return StoreResult.success()

    async def check_out(self, user_id: str) -> StoreResult:
        self.calls.append(("check_out", user_id))
        await self._wait()
        record = self.records.get(user_id)
        if record is None:
            return StoreResult.failure(Reason.NO_RECORD)
        if record.check_in_time is None:
            return StoreResult.failure(Reason.NO_CHECK_IN_TIME)
        if record.check_out_time is not None:
            return StoreResult.failure(Reason.ALREADY_CHECKED_OUT)
        now = self.clock()
        self.records[user_id] = replace(
            record,
            check_out_time=now,
            status=AttendanceStatus.EARLY_LEAVE,
            work_duration=int((now - record.check_in_time).total_seconds() // 60),
        )
        return StoreResult.success()

    async def set_notes(self, user_id: str, text: str) -> StoreResult:
        self.calls.append(("set_notes", user_id))
        await self._wait()
        record = self.records.get(user_id)
        if record is None:
            return StoreResult.failure(Reason.NO_RECORD)
        self.records[user_id] = replace(record, notes=text)
        return StoreResult.success()

    def count(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)


class MutableClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture()
def clock() -> MutableClock:
    return MutableClock(datetime(2024, 3, 4, 9, 0, tzinfo=KST))


@pytest.fixture()
def auth() -> FakeAuthProvider:
    provider = FakeAuthProvider()
    provider.add_account("alice@example.com", "correct-horse", "alice")
    provider.add_account("bob@example.com", "battery-staple", "bob")
    provider.add_account("admin@example.com", "admin-password", "admin")
    provider.add_account("pending@example.com", "pending-password", "pending", verified=False)
    return provider


@pytest.fixture()
def profiles() -> FakeProfileStore:
    return FakeProfileStore(
        make_profile("alice", created_at=datetime(2024, 1, 2, tzinfo=timezone.utc)),
        make_profile("bob", created_at=datetime(2024, 1, 3, tzinfo=timezone.utc)),
        make_profile("admin", role=Role.ADMIN, created_at=datetime(2024, 1, 1, tzinfo=timezone.utc)),
    )


@pytest.fixture()
def attendance_store(clock: MutableClock) -> FakeAttendanceStore:
    return FakeAttendanceStore(clock)
