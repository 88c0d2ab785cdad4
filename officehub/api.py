"""FastAPI application that exposes the OfficeHub reference backend."""
from __future__ import annotations

import logging
from datetime import date, datetime
from typing import List, Optional

from fastapi import Depends, FastAPI, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator, model_validator

from .config import Settings, load_settings
from .database import NOTES_MAX_LENGTH, Database
from .models import AttendanceRecord, AttendanceStatus, Profile, Role
from .results import AuthError, Reason, StoreResult
from .security import BearerAuth, Principal, api_error, error_detail, require_admin
from .tokens import TokenRegistry

logger = logging.getLogger("officehub.api")

CalendarDate = date


class SignInRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1, max_length=255)


class SignUpRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1, max_length=255)
    name: str = Field(..., min_length=1, max_length=100)
    company_id: Optional[str] = Field(default=None, max_length=64)

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("name must not be empty")
        return stripped


class SignUpResponse(BaseModel):
    user_id: str
    email: str
    email_verified: bool


class PasswordResetRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)


class SessionResponse(BaseModel):
    user_id: str
    email: str
    email_verified: bool = True
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class ProfileResponse(BaseModel):
    id: str
    name: str
    email: str
    company_id: Optional[str]
    company_name: Optional[str]
    role: Role
    created_at: datetime

    @classmethod
    def from_profile(cls, profile: Profile) -> "ProfileResponse":
        return cls(
            id=profile.id,
            name=profile.name,
            email=profile.email,
            company_id=profile.company_id,
            company_name=profile.company_name,
            role=profile.role,
            created_at=profile.created_at,
        )


class UpdateProfileRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    email: Optional[str] = Field(default=None, min_length=3, max_length=255)

    @model_validator(mode="after")
    def _require_field(self) -> "UpdateProfileRequest":
        if self.name is None and self.email is None:
            raise ValueError("At least one of name or email must be provided")
        return self


class UpdateRoleRequest(BaseModel):
    role: Role


class AttendanceResponse(BaseModel):
    user_id: str
    date: CalendarDate
    check_in_time: Optional[datetime]
    check_out_time: Optional[datetime]
    status: Optional[AttendanceStatus]
    work_duration: Optional[int]
    notes: str
    updated_at: Optional[datetime]

    @classmethod
    def from_record(cls, record: AttendanceRecord) -> "AttendanceResponse":
        return cls(
            user_id=record.user_id,
            date=record.date,
            check_in_time=record.check_in_time,
            check_out_time=record.check_out_time,
            status=record.status,
            work_duration=record.work_duration,
            notes=record.notes,
            updated_at=record.updated_at,
        )


class TodayResponse(BaseModel):
    date: CalendarDate
    record: Optional[AttendanceResponse]


class NotesRequest(BaseModel):
    notes: str = Field(default="", max_length=NOTES_MAX_LENGTH)


class ActionResponse(BaseModel):
    ok: bool = True


_AUTH_ERROR_STATUS = {
    Reason.INVALID_CREDENTIALS: status.HTTP_400_BAD_REQUEST,
    Reason.EMAIL_NOT_CONFIRMED: status.HTTP_403_FORBIDDEN,
    Reason.ALREADY_REGISTERED: status.HTTP_409_CONFLICT,
    Reason.WEAK_PASSWORD: status.HTTP_400_BAD_REQUEST,
    Reason.INVALID_INPUT: status.HTTP_400_BAD_REQUEST,
}


def _raise_for_store_result(result: StoreResult) -> ActionResponse:
    if result.ok:
        return ActionResponse()
    reason = result.reason or Reason.UNAVAILABLE
    if reason is Reason.NOT_FOUND:
        raise api_error(status.HTTP_404_NOT_FOUND, reason)
    if reason is Reason.INVALID_INPUT:
        raise api_error(status.HTTP_400_BAD_REQUEST, reason)
    raise api_error(status.HTTP_409_CONFLICT, reason)


def create_app(
    *,
    database: Database | None = None,
    settings: Settings | None = None,
    tokens: TokenRegistry | None = None,
    initialize_database: bool = False,
) -> FastAPI:
    if settings is None:
        settings = load_settings()

    if database is None:
        database = Database(
            settings.database_path,
            policy=settings.workday.policy(),
            zone=settings.zone(),
        )
        database.initialize()
    elif initialize_database:
        database.initialize()

    if tokens is None:
        tokens = TokenRegistry(ttl=settings.token_ttl)

    auth = BearerAuth(database, tokens)
    auto_confirm = settings.auto_confirm_email

    app = FastAPI(
        title="OfficeHub",
        description="Session, profile and attendance backend for the OfficeHub dashboard",
        version="1.0.0",
    )
    app.state.database = database
    app.state.tokens = tokens
    app.state.settings = settings

    @app.exception_handler(AuthError)
    async def _auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
        status_code = _AUTH_ERROR_STATUS.get(exc.reason, status.HTTP_400_BAD_REQUEST)
        return JSONResponse(status_code=status_code, content={"detail": error_detail(exc.reason, exc.message)})

    def get_db() -> Database:
        return database

    async def get_principal(request: Request) -> Principal:
        return await auth(request)

    def session_response(token: str, profile: Profile) -> SessionResponse:
        return SessionResponse(
            user_id=profile.id,
            email=profile.email,
            access_token=token,
            expires_in=int(tokens.ttl.total_seconds()),
        )

    def get_target_profile(profile_id: str, db: Database) -> Profile:
        target = db.get_profile(profile_id)
        if target is None:
            raise api_error(status.HTTP_404_NOT_FOUND, Reason.NOT_FOUND, "Profile not found")
        return target

    @app.get("/health")
    async def healthcheck() -> dict:
        return {"status": "ok"}

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------
    @app.post("/auth/sign-in", response_model=SessionResponse)
    def sign_in(payload: SignInRequest, db: Database = Depends(get_db)) -> SessionResponse:
        profile = db.authenticate(payload.email, payload.password)
        token = tokens.issue(profile.id)
        logger.info("Issued token for %s", profile.id)
        return session_response(token, profile)

    @app.post("/auth/sign-up", response_model=SignUpResponse, status_code=status.HTTP_201_CREATED)
    def sign_up(payload: SignUpRequest, db: Database = Depends(get_db)) -> SignUpResponse:
        profile = db.create_user(
            payload.name,
            payload.email,
            payload.password,
            company_id=payload.company_id or None,
            role=Role.USER,
            email_verified=auto_confirm,
        )
        logger.info("Registered %s", profile.id)
        return SignUpResponse(user_id=profile.id, email=profile.email, email_verified=auto_confirm)

    @app.post("/auth/sign-out", status_code=status.HTTP_204_NO_CONTENT)
    async def sign_out(principal: Principal = Depends(get_principal)) -> Response:
        tokens.revoke(principal.token)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.post("/auth/refresh", response_model=SessionResponse)
    async def refresh(principal: Principal = Depends(get_principal)) -> SessionResponse:
        token = tokens.rotate(principal.token)
        if token is None:
            raise api_error(status.HTTP_401_UNAUTHORIZED, Reason.NOT_AUTHENTICATED, "Invalid or expired token")
        return session_response(token, principal.profile)

    @app.get("/auth/session", response_model=SessionResponse)
    async def read_session(principal: Principal = Depends(get_principal)) -> SessionResponse:
        return session_response(principal.token, principal.profile)

    @app.post("/auth/password-reset", response_model=ActionResponse, status_code=status.HTTP_202_ACCEPTED)
    def password_reset(payload: PasswordResetRequest, db: Database = Depends(get_db)) -> ActionResponse:
        known = db.get_user_id_by_email(payload.email) is not None
        logger.info("Password reset requested for %s (known=%s)", payload.email, known)
        return ActionResponse()

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------
    @app.get("/profiles/{profile_id}", response_model=ProfileResponse)
    def read_profile(
        profile_id: str,
        principal: Principal = Depends(get_principal),
        db: Database = Depends(get_db),
    ) -> ProfileResponse:
        target = get_target_profile(profile_id, db)
        caller = principal.profile
        if target.id != caller.id and not (caller.is_admin and caller.company_id == target.company_id):
            raise api_error(status.HTTP_403_FORBIDDEN, Reason.FORBIDDEN)
        return ProfileResponse.from_profile(target)

    @app.patch("/profiles/{profile_id}", response_model=ProfileResponse)
    def update_profile(
        profile_id: str,
        payload: UpdateProfileRequest,
        principal: Principal = Depends(get_principal),
        db: Database = Depends(get_db),
    ) -> ProfileResponse:
        if profile_id != principal.profile.id:
            raise api_error(status.HTTP_403_FORBIDDEN, Reason.FORBIDDEN)
        fields = payload.model_dump(exclude_none=True)
        try:
            profile = db.update_profile(profile_id, fields)
        except KeyError:
            raise api_error(status.HTTP_404_NOT_FOUND, Reason.NOT_FOUND, "Profile not found") from None
        except ValueError as exc:
            raise api_error(status.HTTP_400_BAD_REQUEST, Reason.INVALID_INPUT, str(exc)) from exc
        return ProfileResponse.from_profile(profile)

    @app.get("/companies/{company_id}/profiles", response_model=List[ProfileResponse])
    def list_company_profiles(
        company_id: str,
        principal: Principal = Depends(get_principal),
        db: Database = Depends(get_db),
    ) -> List[ProfileResponse]:
        admin = require_admin(principal)
        if admin.company_id != company_id:
            raise api_error(status.HTTP_403_FORBIDDEN, Reason.FORBIDDEN)
        return [ProfileResponse.from_profile(profile) for profile in db.list_profiles(company_id)]

    @app.put("/profiles/{profile_id}/role", response_model=ProfileResponse)
    def update_role(
        profile_id: str,
        payload: UpdateRoleRequest,
        principal: Principal = Depends(get_principal),
        db: Database = Depends(get_db),
    ) -> ProfileResponse:
        admin = require_admin(principal)
        target = get_target_profile(profile_id, db)
        if target.company_id != admin.company_id:
            raise api_error(status.HTTP_403_FORBIDDEN, Reason.FORBIDDEN)
        profile = db.update_role(profile_id, payload.role)
        logger.info("%s changed role of %s to %s", admin.id, profile_id, payload.role.value)
        return ProfileResponse.from_profile(profile)

    # ------------------------------------------------------------------
    # Attendance
    # ------------------------------------------------------------------
    @app.get("/attendance/today", response_model=TodayResponse)
    def read_today(principal: Principal = Depends(get_principal), db: Database = Depends(get_db)) -> TodayResponse:
        today = db.today()
        record = db.get_attendance(principal.profile.id, today)
        return TodayResponse(date=today, record=AttendanceResponse.from_record(record) if record else None)

    @app.post("/attendance/check-in", response_model=ActionResponse)
    def check_in(principal: Principal = Depends(get_principal), db: Database = Depends(get_db)) -> ActionResponse:
        return _raise_for_store_result(db.check_in(principal.profile.id))

    @app.post("/attendance/check-out", response_model=ActionResponse)
    def check_out(principal: Principal = Depends(get_principal), db: Database = Depends(get_db)) -> ActionResponse:
        return _raise_for_store_result(db.check_out(principal.profile.id))

    @app.put("/attendance/notes", response_model=ActionResponse)
    def update_notes(
        payload: NotesRequest,
        principal: Principal = Depends(get_principal),
        db: Database = Depends(get_db),
    ) -> ActionResponse:
        return _raise_for_store_result(db.set_notes(principal.profile.id, payload.notes))

    return app


__all__ = ["create_app"]
