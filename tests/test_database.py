from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from pathlib import Path

import pytest

from officehub.database import Database, hash_password, verify_password
from officehub.models import AttendancePhase, AttendanceStatus, Company, Role
from officehub.policy import WorkdayPolicy
from officehub.results import AuthError, Reason

from conftest import KST, MutableClock

PASSWORD = "correct-horse-battery"


@pytest.fixture()
def clock() -> MutableClock:
    return MutableClock(datetime(2024, 3, 4, 9, 0, tzinfo=KST))


@pytest.fixture()
def database(tmp_path: Path, clock: MutableClock) -> Database:
    db = Database(tmp_path / "officehub.sqlite3", policy=WorkdayPolicy(), zone=KST, clock=clock)
    db.initialize()
    return db


@pytest.fixture()
def company(database: Database) -> Company:
    return database.create_company("Acme", "ACME")


def _user(database: Database, company: Company, name: str = "Alice", **kwargs) -> str:
    email = f"{name.lower()}@example.com"
    kwargs.setdefault("email_verified", True)
    return database.create_user(name, email, PASSWORD, company_id=company.id, **kwargs).id


def test_password_hashing_round_trip() -> None:
    hashed = hash_password("supersecurepassword")

    assert hashed.startswith("$pbkdf2-sha256$")
    assert verify_password("supersecurepassword", hashed)
    assert not verify_password("wrong", hashed)
    assert not verify_password("anything", "not-a-hash")


def test_company_codes_are_unique(database: Database, company: Company) -> None:
    with pytest.raises(ValueError):
        database.create_company("Other", "ACME")
    with pytest.raises(ValueError):
        database.create_company(" ", "X")

    assert database.get_company_by_code("ACME") == company
    assert [c.code for c in database.list_companies()] == ["ACME"]


def test_create_user_validation(database: Database, company: Company) -> None:
    _user(database, company)

    with pytest.raises(AuthError) as duplicate:
        database.create_user("Alice Again", "ALICE@example.com", PASSWORD, company_id=company.id)
    assert duplicate.value.reason is Reason.ALREADY_REGISTERED

    with pytest.raises(AuthError) as weak:
        database.create_user("Bob", "bob@example.com", "short", company_id=company.id)
    assert weak.value.reason is Reason.WEAK_PASSWORD

    with pytest.raises(AuthError) as unknown_company:
        database.create_user("Carol", "carol@example.com", PASSWORD, company_id="missing")
    assert unknown_company.value.reason is Reason.INVALID_INPUT


def test_authenticate(database: Database, company: Company) -> None:
    user_id = _user(database, company)
    pending_id = _user(database, company, "Pending", email_verified=False)

    assert database.authenticate(" Alice@Example.com ", PASSWORD).id == user_id

    with pytest.raises(AuthError) as wrong:
        database.authenticate("alice@example.com", "nope")
    assert wrong.value.reason is Reason.INVALID_CREDENTIALS

    with pytest.raises(AuthError) as unknown:
        database.authenticate("ghost@example.com", PASSWORD)
    assert unknown.value.reason is Reason.INVALID_CREDENTIALS

    with pytest.raises(AuthError) as unverified:
        database.authenticate("pending@example.com", PASSWORD)
    assert unverified.value.reason is Reason.EMAIL_NOT_CONFIRMED

    assert database.mark_email_verified(pending_id)
    assert database.authenticate("pending@example.com", PASSWORD).id == pending_id


def test_profiles_join_company_and_sort_newest_first(
    database: Database, company: Company, clock: MutableClock
) -> None:
    first = _user(database, company, "Alice")
    clock.advance(minutes=1)
    second = _user(database, company, "Bob")

    profiles = database.list_profiles(company.id)

    assert [profile.id for profile in profiles] == [second, first]
    assert profiles[0].company_name == "Acme"
    assert profiles[0].role is Role.USER


def test_update_profile_and_role(database: Database, company: Company) -> None:
    user_id = _user(database, company)
    _user(database, company, "Bob")

    updated = database.update_profile(user_id, {"name": "Alice Kim"})
    assert updated.name == "Alice Kim"

    with pytest.raises(ValueError):
        database.update_profile(user_id, {"role": "admin"})
    with pytest.raises(ValueError):
        database.update_profile(user_id, {"email": "bob@example.com"})
    with pytest.raises(KeyError):
        database.update_profile("missing", {"name": "Nobody"})

    assert database.update_role(user_id, Role.ADMIN).role is Role.ADMIN
    with pytest.raises(KeyError):
        database.update_role("missing", Role.ADMIN)


def test_check_in_is_first_writer_wins(database: Database, company: Company, clock: MutableClock) -> None:
    user_id = _user(database, company)

    assert database.check_in(user_id).ok
    clock.advance(minutes=20)
    second = database.check_in(user_id)

    assert second.reason is Reason.ALREADY_CHECKED_IN
    record = database.get_today(user_id)
    assert record is not None
    assert record.check_in_time == datetime(2024, 3, 4, 0, 0, tzinfo=timezone.utc)
    assert record.status is AttendanceStatus.PRESENT
    assert record.phase is AttendancePhase.CHECKED_IN


def test_late_check_in(database: Database, company: Company, clock: MutableClock) -> None:
    user_id = _user(database, company)
    clock.advance(minutes=30)

    database.check_in(user_id)

    record = database.get_today(user_id)
    assert record is not None and record.status is AttendanceStatus.LATE


def test_check_out_failures_and_early_leave(database: Database, company: Company, clock: MutableClock) -> None:
    user_id = _user(database, company)

    assert database.check_out(user_id).reason is Reason.NO_RECORD
    assert database.get_today(user_id) is None

    database.check_in(user_id)
    clock.advance(hours=8, minutes=30)
    assert database.check_out(user_id).ok

    record = database.get_today(user_id)
    assert record is not None
    assert record.status is AttendanceStatus.EARLY_LEAVE
    assert record.work_duration == 510
    assert record.phase is AttendancePhase.CHECKED_OUT

    assert database.check_out(user_id).reason is Reason.ALREADY_CHECKED_OUT
    assert database.check_in(user_id).reason is Reason.ALREADY_CHECKED_IN


def test_check_out_after_end_keeps_status(database: Database, company: Company, clock: MutableClock) -> None:
    user_id = _user(database, company)
    database.check_in(user_id)
    clock.advance(hours=9, minutes=15)

    database.check_out(user_id)

    record = database.get_today(user_id)
    assert record is not None and record.status is AttendanceStatus.PRESENT


def test_notes_require_todays_record(database: Database, company: Company) -> None:
    user_id = _user(database, company)

    assert database.set_notes(user_id, "memo").reason is Reason.NO_RECORD

    database.check_in(user_id)
    assert database.set_notes(user_id, "memo").ok
    assert database.set_notes(user_id, "x" * 501).reason is Reason.INVALID_INPUT

    record = database.get_today(user_id)
    assert record is not None and record.notes == "memo"


def test_today_follows_configured_timezone(database: Database, company: Company, clock: MutableClock) -> None:
    user_id = _user(database, company)
    clock.now = datetime(2024, 3, 4, 23, 30, tzinfo=timezone.utc)

    database.check_in(user_id)

    assert database.today() == date(2024, 3, 5)
    assert database.get_attendance(user_id, date(2024, 3, 5)) is not None
    assert database.list_attendance(user_id)[0].date == date(2024, 3, 5)


def test_check_in_for_unknown_user(database: Database) -> None:
    assert database.check_in("ghost").reason is Reason.NOT_FOUND


def test_delete_user_cascades(database: Database, company: Company) -> None:
    user_id = _user(database, company)
    database.check_in(user_id)

    assert database.delete_user(user_id)
    assert database.get_profile(user_id) is None
    assert database.get_attendance(user_id, database.today()) is None
    assert not database.delete_user(user_id)


def test_days_are_independent(database: Database, company: Company, clock: MutableClock) -> None:
    user_id = _user(database, company)
    database.check_in(user_id)
    clock.advance(days=1)

    assert database.get_today(user_id) is None
    assert database.check_in(user_id).ok
    assert len(database.list_attendance(user_id)) == 2
    assert database.today() - timedelta(days=1) == date(2024, 3, 4)
