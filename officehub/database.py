"""SQLite-backed reference store for companies, profiles and attendance."""
from __future__ import annotations

import sqlite3
import uuid
from contextlib import contextmanager
from datetime import date, datetime, timezone, tzinfo
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Mapping, Optional

from passlib.context import CryptContext

from .models import AttendanceRecord, AttendanceStatus, Company, Profile, Role
from .policy import WorkdayPolicy, work_duration_minutes
from .results import AuthError, Reason, StoreResult

PASSWORD_MIN_LENGTH = 8
NOTES_MAX_LENGTH = 500
_EDITABLE_PROFILE_FIELDS = frozenset({"name", "email"})

_pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def _current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_datetime(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def _normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def hash_password(password: str) -> str:
    return _pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    try:
        return _pwd_context.verify(password, hashed)
    except (ValueError, TypeError):
        return False


class Database:
    """Simple wrapper around SQLite playing the role of the remote backend.

    ``today`` is the calendar date in ``zone`` at the moment of the call;
    status and work duration are derived here with ``policy`` and are the
    only authoritative values clients ever see.
    """

    def __init__(
        self,
        path: Path,
        *,
        policy: Optional[WorkdayPolicy] = None,
        zone: Optional[tzinfo] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        _ensure_directory(path)
        self._path = path
        self._policy = policy or WorkdayPolicy()
        self._zone = zone or timezone.utc
        self._clock = clock or _current_timestamp

    @property
    def path(self) -> Path:
        return self._path

    @property
    def policy(self) -> WorkdayPolicy:
        return self._policy

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create the required tables if they do not already exist."""

        with self._transaction() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS companies (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    code TEXT NOT NULL UNIQUE,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS profiles (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    email TEXT NOT NULL UNIQUE,
                    company_id TEXT REFERENCES companies(id) ON DELETE SET NULL,
                    role TEXT NOT NULL DEFAULT 'user' CHECK (role IN ('user', 'admin')),
                    password_hash TEXT NOT NULL,
                    email_verified INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS attendance_records (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
                    date TEXT NOT NULL,
                    check_in_time TEXT,
                    check_out_time TEXT,
                    status TEXT,
                    work_duration INTEGER,
                    notes TEXT NOT NULL DEFAULT '',
                    updated_at TEXT NOT NULL,
                    UNIQUE (user_id, date),
                    CHECK (check_out_time IS NULL OR check_in_time IS NOT NULL)
                );

                CREATE INDEX IF NOT EXISTS idx_profiles_company_id ON profiles(company_id);
                CREATE INDEX IF NOT EXISTS idx_attendance_user_date ON attendance_records(user_id, date);
                """
            )

    # ------------------------------------------------------------------
    # Companies
    # ------------------------------------------------------------------
    def create_company(self, name: str, code: str) -> Company:
        cleaned_name = (name or "").strip()
        cleaned_code = (code or "").strip()
        if not cleaned_name or not cleaned_code:
            raise ValueError("Company name and code must not be empty")

        company = Company(
            id=str(uuid.uuid4()),
            name=cleaned_name,
            code=cleaned_code,
            created_at=self._clock(),
        )
        with self._transaction() as conn:
            try:
                conn.execute(
                    "INSERT INTO companies (id, name, code, created_at) VALUES (?, ?, ?, ?)",
                    (company.id, company.name, company.code, _serialize_datetime(company.created_at)),
                )
            except sqlite3.IntegrityError as exc:
                raise ValueError(f"Company code '{cleaned_code}' is already in use") from exc
        return company

    def get_company(self, company_id: str) -> Optional[Company]:
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM companies WHERE id = ?", (company_id,)).fetchone()
        return self._row_to_company(row) if row else None

    def get_company_by_code(self, code: str) -> Optional[Company]:
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM companies WHERE code = ?", ((code or "").strip(),)).fetchone()
        return self._row_to_company(row) if row else None

    def list_companies(self) -> List[Company]:
        with self._transaction() as conn:
            rows = conn.execute("SELECT * FROM companies ORDER BY name").fetchall()
        return [self._row_to_company(row) for row in rows]

    # ------------------------------------------------------------------
    # Identities and profiles
    # ------------------------------------------------------------------
    def create_user(
        self,
        name: str,
        email: str,
        password: str,
        *,
        company_id: Optional[str],
        role: Role = Role.USER,
        email_verified: bool = False,
    ) -> Profile:
        """Create an identity with its profile; raises :class:`AuthError` on rejection."""

        cleaned_name = (name or "").strip()
        normalized_email = _normalize_email(email)
        if not cleaned_name or "@" not in normalized_email:
            raise AuthError(Reason.INVALID_INPUT)
        if len(password or "") < PASSWORD_MIN_LENGTH:
            raise AuthError(Reason.WEAK_PASSWORD)
        if company_id is not None and self.get_company(company_id) is None:
            raise AuthError(Reason.INVALID_INPUT, f"Unknown company '{company_id}'")

        user_id = str(uuid.uuid4())
        created_at = self._clock()
        with self._transaction() as conn:
            try:
                conn.execute(
                    """
                    INSERT INTO profiles (id, name, email, company_id, role, password_hash, email_verified, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        user_id,
                        cleaned_name,
                        normalized_email,
                        company_id,
                        Role(role).value,
                        hash_password(password),
                        int(email_verified),
                        _serialize_datetime(created_at),
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise AuthError(Reason.ALREADY_REGISTERED) from exc

        profile = self.get_profile(user_id)
        assert profile is not None
        return profile

    def authenticate(self, email: str, password: str) -> Profile:
        """Verify credentials; raises :class:`AuthError` when they are rejected."""

        with self._transaction() as conn:
            row = conn.execute(
                "SELECT id, password_hash, email_verified FROM profiles WHERE email = ?",
                (_normalize_email(email),),
            ).fetchone()

        if row is None or not verify_password(password or "", row["password_hash"]):
            raise AuthError(Reason.INVALID_CREDENTIALS)
        if not row["email_verified"]:
            raise AuthError(Reason.EMAIL_NOT_CONFIRMED)

        profile = self.get_profile(row["id"])
        if profile is None:  # pragma: no cover - deleted between queries
            raise AuthError(Reason.INVALID_CREDENTIALS)
        return profile

    def get_user_id_by_email(self, email: str) -> Optional[str]:
        with self._transaction() as conn:
            row = conn.execute("SELECT id FROM profiles WHERE email = ?", (_normalize_email(email),)).fetchone()
        return row["id"] if row else None

    def is_email_verified(self, user_id: str) -> bool:
        with self._transaction() as conn:
            row = conn.execute("SELECT email_verified FROM profiles WHERE id = ?", (user_id,)).fetchone()
        return bool(row and row["email_verified"])

    def mark_email_verified(self, user_id: str) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute("UPDATE profiles SET email_verified = 1 WHERE id = ?", (user_id,))
        return cursor.rowcount > 0

    def get_profile(self, user_id: str) -> Optional[Profile]:
        with self._transaction() as conn:
            row = conn.execute(
                """
                SELECT p.*, c.name AS company_name
                FROM profiles p
                LEFT JOIN companies c ON c.id = p.company_id
                WHERE p.id = ?
                """,
                (user_id,),
            ).fetchone()
        return self._row_to_profile(row) if row else None

    def update_profile(self, user_id: str, fields: Mapping[str, str]) -> Profile:
        updates: Dict[str, str] = {}
        for key, value in fields.items():
            if key not in _EDITABLE_PROFILE_FIELDS:
                raise ValueError(f"Profile field '{key}' cannot be updated")
            cleaned = str(value).strip()
            if not cleaned:
                raise ValueError(f"Profile field '{key}' must not be empty")
            updates[key] = _normalize_email(cleaned) if key == "email" else cleaned
        if not updates:
            raise ValueError("No profile fields to update")

        assignments = ", ".join(f"{column} = ?" for column in updates)
        with self._transaction() as conn:
            try:
                cursor = conn.execute(
                    f"UPDATE profiles SET {assignments} WHERE id = ?",
                    (*updates.values(), user_id),
                )
            except sqlite3.IntegrityError as exc:
                raise ValueError("Email address is already in use") from exc
        if cursor.rowcount == 0:
            raise KeyError(f"Unknown user '{user_id}'")

        profile = self.get_profile(user_id)
        assert profile is not None
        return profile

    def list_profiles(self, company_id: str) -> List[Profile]:
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT p.*, c.name AS company_name
                FROM profiles p
                LEFT JOIN companies c ON c.id = p.company_id
                WHERE p.company_id = ?
                ORDER BY p.created_at DESC, p.rowid DESC
                """,
                (company_id,),
            ).fetchall()
        return [self._row_to_profile(row) for row in rows]

    def update_role(self, user_id: str, role: Role) -> Profile:
        with self._transaction() as conn:
            cursor = conn.execute("UPDATE profiles SET role = ? WHERE id = ?", (Role(role).value, user_id))
        if cursor.rowcount == 0:
            raise KeyError(f"Unknown user '{user_id}'")
        profile = self.get_profile(user_id)
        assert profile is not None
        return profile

    def delete_user(self, user_id: str) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM profiles WHERE id = ?", (user_id,))
        return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Attendance
    # ------------------------------------------------------------------
    def today(self, now: Optional[datetime] = None) -> date:
        return (now or self._clock()).astimezone(self._zone).date()

    def get_attendance(self, user_id: str, work_date: date) -> Optional[AttendanceRecord]:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM attendance_records WHERE user_id = ? AND date = ?",
                (user_id, work_date.isoformat()),
            ).fetchone()
        return self._row_to_attendance(row) if row else None

    def get_today(self, user_id: str) -> Optional[AttendanceRecord]:
        return self.get_attendance(user_id, self.today())

    def list_attendance(self, user_id: str, *, limit: int = 30) -> List[AttendanceRecord]:
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM attendance_records WHERE user_id = ? ORDER BY date DESC LIMIT ?",
                (user_id, limit),
            ).fetchall()
        return [self._row_to_attendance(row) for row in rows]

    def check_in(self, user_id: str) -> StoreResult:
        """Record today's check-in once; concurrent attempts keep the first writer."""

        now = self._clock()
        local_now = now.astimezone(self._zone)
        if self.get_profile(user_id) is None:
            return StoreResult.failure(Reason.NOT_FOUND)

        existing = self.get_attendance(user_id, local_now.date())
        if existing is not None and existing.check_in_time is not None:
            return StoreResult.failure(Reason.ALREADY_CHECKED_IN)

        status = self._policy.check_in_status(local_now)
        stamp = _serialize_datetime(now)
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO attendance_records (user_id, date, check_in_time, status, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT (user_id, date) DO UPDATE SET
                    check_in_time = excluded.check_in_time,
                    status = excluded.status,
                    updated_at = excluded.updated_at
                WHERE attendance_records.check_in_time IS NULL
                """,
                (user_id, local_now.date().isoformat(), stamp, status.value, stamp),
            )
        if cursor.rowcount == 0:
            return StoreResult.failure(Reason.ALREADY_CHECKED_IN)
        return StoreResult.success()

    def check_out(self, user_id: str) -> StoreResult:
        now = self._clock()
        local_now = now.astimezone(self._zone)
        record = self.get_attendance(user_id, local_now.date())
        if record is None:
            return StoreResult.failure(Reason.NO_RECORD)
        if record.check_in_time is None:
            return StoreResult.failure(Reason.NO_CHECK_IN_TIME)
        if record.check_out_time is not None:
            return StoreResult.failure(Reason.ALREADY_CHECKED_OUT)

        status = self._policy.check_out_status(local_now, record.status)
        duration = work_duration_minutes(record.check_in_time, now)
        stamp = _serialize_datetime(now)
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE attendance_records
                SET check_out_time = ?, status = ?, work_duration = ?, updated_at = ?
                WHERE user_id = ? AND date = ?
                  AND check_in_time IS NOT NULL AND check_out_time IS NULL
                """,
                (
                    stamp,
                    status.value if status else None,
                    duration,
                    stamp,
                    user_id,
                    local_now.date().isoformat(),
                ),
            )
        if cursor.rowcount == 0:
            return StoreResult.failure(Reason.ALREADY_CHECKED_OUT)
        return StoreResult.success()

    def set_notes(self, user_id: str, text: str) -> StoreResult:
        if len(text or "") > NOTES_MAX_LENGTH:
            return StoreResult.failure(Reason.INVALID_INPUT)

        now = self._clock()
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE attendance_records SET notes = ?, updated_at = ? WHERE user_id = ? AND date = ?",
                (text or "", _serialize_datetime(now), user_id, self.today(now).isoformat()),
            )
        if cursor.rowcount == 0:
            return StoreResult.failure(Reason.NO_RECORD)
        return StoreResult.success()

    # ------------------------------------------------------------------
    # Row conversion
    # ------------------------------------------------------------------
    @staticmethod
    def _row_to_company(row: sqlite3.Row) -> Company:
        return Company(
            id=row["id"],
            name=row["name"],
            code=row["code"],
            created_at=_parse_datetime(row["created_at"]),  # type: ignore[arg-type]
        )

    @staticmethod
    def _row_to_profile(row: sqlite3.Row) -> Profile:
        return Profile(
            id=row["id"],
            name=row["name"],
            email=row["email"],
            company_id=row["company_id"],
            company_name=row["company_name"],
            role=Role(row["role"]),
            created_at=_parse_datetime(row["created_at"]),  # type: ignore[arg-type]
        )

    @staticmethod
    def _row_to_attendance(row: sqlite3.Row) -> AttendanceRecord:
        status = row["status"]
        return AttendanceRecord(
            user_id=row["user_id"],
            date=date.fromisoformat(row["date"]),
            check_in_time=_parse_datetime(row["check_in_time"]),
            check_out_time=_parse_datetime(row["check_out_time"]),
            status=AttendanceStatus(status) if status else None,
            work_duration=row["work_duration"],
            notes=row["notes"] or "",
            updated_at=_parse_datetime(row["updated_at"]),
        )


__all__ = ["Database", "NOTES_MAX_LENGTH", "PASSWORD_MIN_LENGTH", "hash_password", "verify_password"]
