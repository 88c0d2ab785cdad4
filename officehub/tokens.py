"""In-memory access tokens issued by the OfficeHub HTTP service."""

from __future__ import annotations

import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional


@dataclass
class _TokenRecord:
    user_id: str
    expires_at: datetime


class TokenRegistry:
    """Issue, resolve (with sliding expiry), rotate and revoke access tokens."""

    def __init__(
        self,
        *,
        ttl: timedelta = timedelta(hours=8),
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._ttl = ttl
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._tokens: Dict[str, _TokenRecord] = {}
        self._lock = threading.Lock()

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def issue(self, user_id: str) -> str:
        token = secrets.token_urlsafe(32)
        record = _TokenRecord(user_id=user_id, expires_at=self._clock() + self._ttl)
        with self._lock:
            self._tokens[token] = record
        return token

    def resolve(self, token: str) -> Optional[str]:
        now = self._clock()
        with self._lock:
            record = self._tokens.get(token)
            if record is None:
                return None
            if record.expires_at <= now:
                self._tokens.pop(token, None)
                return None
            record.expires_at = now + self._ttl
            return record.user_id

    def rotate(self, token: str) -> Optional[str]:
        """Replace a live token with a fresh one for the same user."""

        user_id = self.resolve(token)
        if user_id is None:
            return None
        self.revoke(token)
        return self.issue(user_id)

    def revoke(self, token: str) -> None:
        with self._lock:
            self._tokens.pop(token, None)

    def revoke_user(self, user_id: str) -> int:
        with self._lock:
            stale = [token for token, record in self._tokens.items() if record.user_id == user_id]
            for token in stale:
                del self._tokens[token]
        return len(stale)


__all__ = ["TokenRegistry"]
