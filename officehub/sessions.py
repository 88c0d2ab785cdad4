"""Authentication lifecycle for the dashboard client.

:class:`SessionManager` is the only writer of "who is signed in". It restores
an existing session at start-up, follows the identity provider's push channel
and exposes immutable :class:`SessionView` snapshots to everyone else.

Push events are queued and applied one at a time by a single consumer task,
so the final state always reflects the last delivered event. Transitions that
load a profile hold a lock; an identity that is already active is never
loaded twice.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Mapping, Optional, Tuple

from .events import AuthEvent, Listeners, Subscription
from .models import Profile, Role, Session
from .providers import AuthProvider, ProfileStore
from .results import ActionResult, AuthError, Reason

logger = logging.getLogger("officehub.sessions")

_EDITABLE_PROFILE_FIELDS = frozenset({"name", "email"})
_UNSET = object()


class SessionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    AUTHENTICATED = "authenticated"
    UNAUTHENTICATED = "unauthenticated"


@dataclass(frozen=True)
class SessionView:
    """Read-only snapshot handed to role checks, trackers and the UI."""

    state: SessionState = SessionState.UNINITIALIZED
    session: Optional[Session] = None
    profile: Optional[Profile] = None
    loading: bool = False

    @property
    def is_authenticated(self) -> bool:
        return self.state is SessionState.AUTHENTICATED and self.session is not None

    @property
    def user_id(self) -> Optional[str]:
        return self.session.identity_id if self.is_authenticated else None

    @property
    def role(self) -> Optional[Role]:
        if not self.is_authenticated:
            return None
        return self.profile.role if self.profile is not None else Role.USER


SessionListener = Callable[[SessionView], None]


class SessionManager:
    """Own the session state machine on top of an injected identity provider."""

    def __init__(self, auth: AuthProvider, profiles: ProfileStore) -> None:
        self._auth = auth
        self._profiles = profiles
        self._state = SessionState.UNINITIALIZED
        self._session: Optional[Session] = None
        self._profile: Optional[Profile] = None
        self._loading = False
        self._view = SessionView()
        self._lock = asyncio.Lock()
        self._subscription: Optional[Subscription] = None
        self._events: Optional[asyncio.Queue[Tuple[AuthEvent, Optional[Session]]]] = None
        self._consumer: Optional[asyncio.Task[None]] = None
        self._listeners: Listeners[SessionListener] = Listeners("session view")
        self._scoped_resets: Listeners[Callable[[], None]] = Listeners("session-scoped caches")

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------
    @property
    def view(self) -> SessionView:
        return self._view

    @property
    def state(self) -> SessionState:
        return self._state

    def subscribe(self, listener: SessionListener) -> Subscription:
        """Observe every published :class:`SessionView`, intermediate ones included."""

        return self._listeners.add(listener)

    def register_session_scoped(self, reset: Callable[[], None]) -> Subscription:
        """Register a cache reset run on sign-out and whenever the identity goes away."""

        return self._scoped_resets.add(reset)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def __aenter__(self) -> "SessionManager":
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.teardown()

    async def initialize(self) -> None:
        """Restore any existing session and start following the push channel."""

        if self._state is not SessionState.UNINITIALIZED:
            logger.debug("initialize() ignored in state %s", self._state.value)
            return

        self._publish(state=SessionState.INITIALIZING, loading=True)
        events: "asyncio.Queue[Tuple[AuthEvent, Optional[Session]]]" = asyncio.Queue()
        self._events = events
        self._subscription = self._auth.subscribe(self._on_auth_event)

        try:
            session = await self._auth.get_current_session()
        except Exception:
            logger.exception("Failed to query the identity provider for an existing session")
            session = None

        if self._events is not events:
            logger.info("Initialization abandoned by teardown")
            return

        if session is None:
            self._publish(state=SessionState.UNAUTHENTICATED, session=None, profile=None, loading=False)
        else:
            profile = await self._load_profile(session)
            if self._events is not events:
                logger.info("Initialization abandoned by teardown")
                return
            self._publish(state=SessionState.AUTHENTICATED, session=session, profile=profile, loading=False)
            logger.info("Restored session for %s", session.identity_id)

        # Events delivered while initializing were queued and are applied now.
        self._consumer = asyncio.create_task(self._consume_events(events))

    async def teardown(self) -> None:
        """Release the push subscription; safe to call at any time."""

        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            subscription.close()

        consumer, self._consumer = self._consumer, None
        if consumer is not None:
            consumer.cancel()
            with suppress(asyncio.CancelledError):
                await consumer
        self._events = None

        if self._state is not SessionState.UNINITIALIZED:
            self._publish(state=SessionState.UNINITIALIZED, session=None, profile=None, loading=False)

    async def drain(self) -> None:
        """Wait until every push event delivered so far has been applied."""

        events = self._events
        if events is not None:
            await events.join()

    # ------------------------------------------------------------------
    # Explicit actions
    # ------------------------------------------------------------------
    async def sign_in(self, email: str, password: str) -> ActionResult:
        if self._state is SessionState.UNINITIALIZED:
            logger.warning("sign_in() called before initialize()")
            return ActionResult.failure(Reason.UNAVAILABLE)

        self._publish(loading=True)
        try:
            try:
                session = await self._auth.sign_in(email, password)
            except AuthError as exc:
                logger.info("Sign-in rejected for %s: %s", email, exc.reason.value)
                return ActionResult.failure(exc.reason)
            except Exception:
                logger.exception("Sign-in failed for %s", email)
                return ActionResult.failure(Reason.UNAVAILABLE)

            # Apply anything the provider announced first so ordering is preserved.
            await self.drain()
            await self._establish(session)
            return ActionResult.success(data=self._view)
        finally:
            self._publish(loading=False)

    async def sign_up(self, email: str, password: str, name: str, company_id: str) -> ActionResult:
        metadata = {"name": name, "company_id": company_id}
        try:
            await self._auth.sign_up(email, password, metadata)
        except AuthError as exc:
            logger.info("Sign-up rejected for %s: %s", email, exc.reason.value)
            return ActionResult.failure(exc.reason)
        except Exception:
            logger.exception("Sign-up failed for %s", email)
            return ActionResult.failure(Reason.UNAVAILABLE)
        return ActionResult.success()

    async def sign_out(self) -> ActionResult:
        """Ask the provider to end the session; its push event drives the transition."""

        self._reset_session_scoped()
        try:
            await self._auth.sign_out()
        except Exception:
            logger.exception("Identity provider sign-out failed; ending the local session anyway")
            self._on_auth_event(AuthEvent.SIGNED_OUT, None)
        return ActionResult.success()

    async def refresh_profile(self) -> ActionResult:
        async with self._lock:
            session = self._session
            if session is None or self._state is not SessionState.AUTHENTICATED:
                return ActionResult.failure(Reason.NOT_AUTHENTICATED)

            try:
                profile = await self._profiles.get_profile(session.identity_id)
            except Exception:
                logger.exception("Failed to refresh profile for %s", session.identity_id)
                return ActionResult.failure(Reason.UNAVAILABLE)

            if profile is None or profile.id != session.identity_id:
                logger.warning("No matching profile for %s", session.identity_id)
                return ActionResult.failure(Reason.PROFILE_UNAVAILABLE)

            self._publish(profile=profile)
            return ActionResult.success(data=profile)

    async def update_profile(self, fields: Mapping[str, str]) -> ActionResult:
        """Update editable fields of the signed-in user's own profile."""

        session = self._session
        if session is None or self._state is not SessionState.AUTHENTICATED:
            return ActionResult.failure(Reason.NOT_AUTHENTICATED)

        updates: Dict[str, str] = {key: str(value).strip() for key, value in fields.items()}
        if not updates or set(updates) - _EDITABLE_PROFILE_FIELDS or not all(updates.values()):
            return ActionResult.failure(Reason.INVALID_INPUT)

        try:
            profile = await self._profiles.update_profile(session.identity_id, updates)
        except Exception:
            logger.exception("Failed to update profile for %s", session.identity_id)
            return ActionResult.failure(Reason.UNAVAILABLE)

        async with self._lock:
            if self._session is not None and self._session.identity_id == profile.id:
                self._publish(profile=profile)
        return ActionResult.success(data=profile)

    async def request_password_reset(self, email: str) -> ActionResult:
        try:
            await self._auth.request_password_reset(email)
        except AuthError as exc:
            return ActionResult.failure(exc.reason)
        except Exception:
            logger.exception("Password reset request failed for %s", email)
            return ActionResult.failure(Reason.UNAVAILABLE)
        return ActionResult.success()

    # ------------------------------------------------------------------
    # Push channel
    # ------------------------------------------------------------------
    def _on_auth_event(self, event: AuthEvent, session: Optional[Session]) -> None:
        events = self._events
        if events is None:
            logger.debug("Dropping %s delivered after teardown", event.value)
            return
        events.put_nowait((event, session))

    async def _consume_events(self, events: "asyncio.Queue[Tuple[AuthEvent, Optional[Session]]]") -> None:
        while True:
            event, session = await events.get()
            try:
                await self._apply_event(event, session)
            except Exception:
                logger.exception("Failed to apply auth event %s", event.value)
            finally:
                events.task_done()

    async def _apply_event(self, event: AuthEvent, session: Optional[Session]) -> None:
        if event is AuthEvent.TOKEN_REFRESHED:
            logger.debug("Token refreshed; session state unchanged")
            return

        if event in (AuthEvent.SIGNED_OUT, AuthEvent.USER_DELETED):
            async with self._lock:
                self._clear_identity()
            logger.info("Session ended by provider (%s)", event.value)
            return

        if event in (AuthEvent.SIGNED_IN, AuthEvent.INITIAL_SESSION):
            if session is not None:
                await self._establish(session)
            return

        if event is AuthEvent.USER_UPDATED:
            if session is not None and self._session is not None and session.identity_id == self._session.identity_id:
                await self.refresh_profile()
            return

        logger.debug("Ignoring auth event %s", event)

    # ------------------------------------------------------------------
    # Internal transitions
    # ------------------------------------------------------------------
    async def _establish(self, session: Session) -> None:
        async with self._lock:
            active = self._session
            if (
                self._state is SessionState.AUTHENTICATED
                and active is not None
                and active.identity_id == session.identity_id
            ):
                logger.debug("Identity %s already active", session.identity_id)
                return

            if active is not None:
                self._reset_session_scoped()

            profile = await self._load_profile(session)
            self._publish(state=SessionState.AUTHENTICATED, session=session, profile=profile)
            logger.info("Signed in as %s", session.identity_id)

    def _clear_identity(self) -> None:
        self._publish(state=SessionState.UNAUTHENTICATED, session=None, profile=None, loading=False)
        self._reset_session_scoped()

    async def _load_profile(self, session: Session) -> Optional[Profile]:
        try:
            profile = await self._profiles.get_profile(session.identity_id)
        except Exception:
            logger.exception("Failed to load profile for %s; continuing without it", session.identity_id)
            return None
        if profile is None:
            logger.warning("No profile stored for %s", session.identity_id)
            return None
        if profile.id != session.identity_id:
            logger.warning("Profile %s does not belong to session %s", profile.id, session.identity_id)
            return None
        return profile

    def _reset_session_scoped(self) -> None:
        self._scoped_resets.notify()

    def _publish(
        self,
        *,
        state: Optional[SessionState] = None,
        session: object = _UNSET,
        profile: object = _UNSET,
        loading: Optional[bool] = None,
    ) -> None:
        if state is not None:
            self._state = state
        if session is not _UNSET:
            self._session = session  # type: ignore[assignment]
        if profile is not _UNSET:
            self._profile = profile  # type: ignore[assignment]
        if loading is not None:
            self._loading = loading

        visible_profile = self._profile
        if visible_profile is not None and (self._session is None or visible_profile.id != self._session.identity_id):
            visible_profile = None

        view = SessionView(
            state=self._state,
            session=self._session,
            profile=visible_profile,
            loading=self._loading,
        )
        if view == self._view:
            return
        self._view = view
        self._listeners.notify(view)


__all__ = ["SessionListener", "SessionManager", "SessionState", "SessionView"]
