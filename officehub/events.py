"""Push-channel primitives for provider-initiated session notifications."""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Callable, Dict, Generic, Optional, TypeVar

from .models import Session

logger = logging.getLogger("officehub.events")

T = TypeVar("T")


class AuthEvent(str, Enum):
    """Kinds of session-state notifications emitted by an identity provider."""

    TOKEN_REFRESHED = "token_refreshed"
    SIGNED_IN = "signed_in"
    SIGNED_OUT = "signed_out"
    USER_DELETED = "user_deleted"
    USER_UPDATED = "user_updated"
    INITIAL_SESSION = "initial_session"


AuthHandler = Callable[[AuthEvent, Optional[Session]], None]


class Subscription:
    """Handle for a registered listener; ``close()`` is idempotent."""

    def __init__(self, release: Callable[[], None]) -> None:
        self._release: Optional[Callable[[], None]] = release

    @property
    def closed(self) -> bool:
        return self._release is None

    def close(self) -> None:
        release, self._release = self._release, None
        if release is not None:
            release()

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class Listeners(Generic[T]):
    """Ordered set of callbacks sharing one signature."""

    def __init__(self, name: str) -> None:
        self._name = name
        self._next_id = 0
        self._callbacks: Dict[int, Callable[..., None]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._callbacks)

    def add(self, callback: Callable[..., None]) -> Subscription:
        with self._lock:
            key = self._next_id
            self._next_id += 1
            self._callbacks[key] = callback

        def _release() -> None:
            with self._lock:
                self._callbacks.pop(key, None)

        return Subscription(_release)

    def notify(self, *args: object) -> None:
        with self._lock:
            callbacks = list(self._callbacks.values())
        for callback in callbacks:
            try:
                callback(*args)
            except Exception:
                logger.exception("Listener on %s failed", self._name)


class PushChannel:
    """Fan-out of auth events to subscribed handlers in emission order."""

    def __init__(self) -> None:
        self._listeners: Listeners[AuthHandler] = Listeners("auth push channel")

    @property
    def subscriber_count(self) -> int:
        return len(self._listeners)

    def subscribe(self, handler: AuthHandler) -> Subscription:
        return self._listeners.add(handler)

    def emit(self, event: AuthEvent, session: Optional[Session]) -> None:
        logger.debug("Auth event %s for %s", event.value, session.identity_id if session else None)
        self._listeners.notify(event, session)


__all__ = ["AuthEvent", "AuthHandler", "Listeners", "PushChannel", "Subscription"]
