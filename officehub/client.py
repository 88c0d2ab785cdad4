"""HTTP-backed collaborators that talk to the OfficeHub service."""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Dict, List, Mapping, Optional

import httpx

from .events import AuthEvent, AuthHandler, PushChannel, Subscription
from .models import AttendanceRecord, AttendanceStatus, Profile, Role, Session
from .results import AuthError, Reason, StoreError, StoreResult

logger = logging.getLogger("officehub.client")

_PRECONDITION_STATUSES = {400, 404, 409}


def _normalize_base_url(base_url: str) -> str:
    cleaned = (base_url or "").strip()
    if not cleaned:
        raise ValueError("API base URL must not be empty")
    return cleaned.rstrip("/")


def _extract_error(payload: object, default: str) -> tuple[Optional[str], str]:
    """Return ``(code, message)`` from an error body, tolerating foreign shapes."""

    if isinstance(payload, dict):
        detail = payload.get("detail")
        if isinstance(detail, dict):
            code = detail.get("code")
            message = detail.get("message")
            return (
                code if isinstance(code, str) else None,
                message.strip() if isinstance(message, str) and message.strip() else default,
            )
        for key in ("message", "detail", "error"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return None, value.strip()
    if isinstance(payload, str) and payload.strip():
        return None, payload.strip()
    return None, default


def _reason_from_code(code: Optional[str]) -> Reason:
    if code is None:
        return Reason.UNAVAILABLE
    try:
        return Reason(code)
    except ValueError:
        return Reason.UNAVAILABLE


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)


def profile_from_payload(payload: Mapping[str, Any]) -> Profile:
    return Profile(
        id=str(payload["id"]),
        name=str(payload["name"]),
        email=str(payload["email"]),
        company_id=payload.get("company_id"),
        company_name=payload.get("company_name"),
        role=Role(payload.get("role") or Role.USER.value),
        created_at=_parse_datetime(payload["created_at"]),  # type: ignore[arg-type]
    )


def record_from_payload(payload: Mapping[str, Any]) -> AttendanceRecord:
    status = payload.get("status")
    return AttendanceRecord(
        user_id=str(payload["user_id"]),
        date=date.fromisoformat(payload["date"]),
        check_in_time=_parse_datetime(payload.get("check_in_time")),
        check_out_time=_parse_datetime(payload.get("check_out_time")),
        status=AttendanceStatus(status) if status else None,
        work_duration=payload.get("work_duration"),
        notes=payload.get("notes") or "",
        updated_at=_parse_datetime(payload.get("updated_at")),
    )


class ServiceError(StoreError):
    """Non-success response from the OfficeHub service."""

    def __init__(self, message: str, *, status_code: Optional[int], reason: Reason) -> None:
        super().__init__(message, status_code=status_code)
        self.reason = reason


class ServiceClient:
    """Shared ``httpx.AsyncClient`` holding the bearer token of the current session.

    The client owns the push channel for HTTP-backed providers: whenever the
    service rejects the stored token with 401 the session is dropped locally
    and ``SIGNED_OUT`` is emitted.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        channel: Optional[PushChannel] = None,
    ) -> None:
        self._base_url = _normalize_base_url(base_url)
        self._http = httpx.AsyncClient(base_url=self._base_url, timeout=timeout, transport=transport)
        self._channel = channel or PushChannel()
        self._session: Optional[Session] = None

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def channel(self) -> PushChannel:
        return self._channel

    @property
    def session(self) -> Optional[Session]:
        return self._session

    def set_session(self, session: Optional[Session]) -> None:
        self._session = session

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "ServiceClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Mapping[str, Any]] = None,
        authenticated: bool = True,
    ) -> Any:
        headers: Dict[str, str] = {}
        token = self._session.access_token if self._session is not None else None
        if authenticated:
            if not token:
                raise ServiceError("Not signed in", status_code=401, reason=Reason.NOT_AUTHENTICATED)
            headers["Authorization"] = f"Bearer {token}"

        try:
            response = await self._http.request(method, path, json=json, headers=headers)
        except httpx.HTTPError as exc:
            raise ServiceError(
                f"Failed to contact the OfficeHub service: {exc}",
                status_code=None,
                reason=Reason.UNAVAILABLE,
            ) from exc

        if response.status_code == 204:
            return None

        try:
            payload = response.json()
        except ValueError:
            payload = response.text

        if response.status_code >= 400:
            code, message = _extract_error(payload, f"Request failed with status {response.status_code}")
            if authenticated and response.status_code == 401:
                self._expire_session()
            raise ServiceError(message, status_code=response.status_code, reason=_reason_from_code(code))
        return payload

    def _expire_session(self) -> None:
        if self._session is None:
            return
        logger.warning("Service rejected the access token for %s", self._session.identity_id)
        self._session = None
        self._channel.emit(AuthEvent.SIGNED_OUT, None)


class HTTPAuthProvider:
    def __init__(self, client: ServiceClient) -> None:
        self._client = client

    async def sign_in(self, email: str, password: str) -> Session:
        try:
            payload = await self._client.request(
                "POST",
                "/auth/sign-in",
                json={"email": email, "password": password},
                authenticated=False,
            )
        except ServiceError as exc:
            if exc.status_code is not None and exc.status_code < 500 and exc.reason is not Reason.UNAVAILABLE:
                raise AuthError(exc.reason) from exc
            raise

        session = self._session_from(payload)
        self._client.set_session(session)
        self._client.channel.emit(AuthEvent.SIGNED_IN, session)
        return session

    async def sign_up(self, email: str, password: str, metadata: Mapping[str, str]) -> Optional[Session]:
        body = {
            "email": email,
            "password": password,
            "name": metadata.get("name", ""),
            "company_id": metadata.get("company_id") or None,
        }
        try:
            payload = await self._client.request("POST", "/auth/sign-up", json=body, authenticated=False)
        except ServiceError as exc:
            if exc.status_code is not None and exc.status_code < 500:
                reason = exc.reason if exc.reason is not Reason.UNAVAILABLE else Reason.INVALID_INPUT
                raise AuthError(reason) from exc
            raise

        if not payload.get("email_verified"):
            return None
        return Session(identity_id=str(payload["user_id"]), email=str(payload["email"]), email_verified=True)

    async def sign_out(self) -> None:
        if self._client.session is not None:
            try:
                await self._client.request("POST", "/auth/sign-out")
            except StoreError as exc:
                logger.warning("Service sign-out failed: %s", exc)
        self._client.set_session(None)
        self._client.channel.emit(AuthEvent.SIGNED_OUT, None)

    async def get_current_session(self) -> Optional[Session]:
        if self._client.session is None:
            return None
        try:
            payload = await self._client.request("GET", "/auth/session")
        except ServiceError as exc:
            if exc.status_code == 401:
                return None
            raise
        session = self._session_from(payload)
        self._client.set_session(session)
        return session

    async def refresh(self) -> Optional[Session]:
        """Rotate the access token and announce ``TOKEN_REFRESHED``."""

        if self._client.session is None:
            return None
        payload = await self._client.request("POST", "/auth/refresh")
        session = self._session_from(payload)
        self._client.set_session(session)
        self._client.channel.emit(AuthEvent.TOKEN_REFRESHED, session)
        return session

    async def request_password_reset(self, email: str) -> None:
        await self._client.request("POST", "/auth/password-reset", json={"email": email}, authenticated=False)

    def subscribe(self, handler: AuthHandler) -> Subscription:
        return self._client.channel.subscribe(handler)

    @staticmethod
    def _session_from(payload: Mapping[str, Any]) -> Session:
        return Session(
            identity_id=str(payload["user_id"]),
            email=str(payload["email"]),
            email_verified=bool(payload.get("email_verified", True)),
            access_token=str(payload["access_token"]),
        )


class HTTPProfileStore:
    def __init__(self, client: ServiceClient) -> None:
        self._client = client

    async def get_profile(self, user_id: str) -> Optional[Profile]:
        try:
            payload = await self._client.request("GET", f"/profiles/{user_id}")
        except ServiceError as exc:
            if exc.status_code == 404:
                return None
            raise
        return profile_from_payload(payload)

    async def update_profile(self, user_id: str, fields: Dict[str, str]) -> Profile:
        payload = await self._client.request("PATCH", f"/profiles/{user_id}", json=dict(fields))
        return profile_from_payload(payload)

    async def list_profiles(self, company_id: str) -> List[Profile]:
        payload = await self._client.request("GET", f"/companies/{company_id}/profiles")
        return [profile_from_payload(item) for item in payload]

    async def update_role(self, user_id: str, role: Role) -> Profile:
        payload = await self._client.request("PUT", f"/profiles/{user_id}/role", json={"role": Role(role).value})
        return profile_from_payload(payload)


class HTTPAttendanceStore:
    """Attendance operations for the signed-in user; ``user_id`` must match the session."""

    def __init__(self, client: ServiceClient) -> None:
        self._client = client

    def _ensure_owner(self, user_id: str) -> None:
        session = self._client.session
        if session is None or session.identity_id != user_id:
            raise ServiceError(
                f"Attendance for {user_id} is only available to that user",
                status_code=None,
                reason=Reason.NOT_AUTHENTICATED,
            )

    async def get_today(self, user_id: str) -> Optional[AttendanceRecord]:
        self._ensure_owner(user_id)
        payload = await self._client.request("GET", "/attendance/today")
        record = payload.get("record")
        return record_from_payload(record) if record else None

    async def check_in(self, user_id: str) -> StoreResult:
        return await self._mutate(user_id, "POST", "/attendance/check-in")

    async def check_out(self, user_id: str) -> StoreResult:
        return await self._mutate(user_id, "POST", "/attendance/check-out")

    async def set_notes(self, user_id: str, text: str) -> StoreResult:
        return await self._mutate(user_id, "PUT", "/attendance/notes", json={"notes": text})

    async def _mutate(
        self,
        user_id: str,
        method: str,
        path: str,
        *,
        json: Optional[Mapping[str, Any]] = None,
    ) -> StoreResult:
        self._ensure_owner(user_id)
        try:
            await self._client.request(method, path, json=json)
        except ServiceError as exc:
            if exc.status_code in _PRECONDITION_STATUSES and exc.reason is not Reason.UNAVAILABLE:
                return StoreResult.failure(exc.reason)
            raise
        return StoreResult.success()


__all__ = [
    "HTTPAttendanceStore",
    "HTTPAuthProvider",
    "HTTPProfileStore",
    "ServiceClient",
    "ServiceError",
    "profile_from_payload",
    "record_from_payload",
]
