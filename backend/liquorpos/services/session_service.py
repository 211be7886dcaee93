# Overview: Session store used to attach the acting user to ledger writes.

"""
Session Token Store

Sessions map an opaque bearer token to the Actor (user id + display name)
that journal entries are attributed to. The store is an explicit object
handed to create_app() and kept in app.extensions["session_store"]; request
handlers reach it through get_session_store(), never through a module-level
map.

- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before they are kept (plaintext never stored)
- 24-hour absolute timeout (SESSION_ABSOLUTE_TIMEOUT)
- 2-hour idle timeout (SESSION_IDLE_TIMEOUT)
- Expired sessions are evicted lazily on resolve(); every SESSION_SWEEP_EVERY
  resolves the whole store is swept as well (evict_expired())
- open() is called by whatever authenticates the clerk (login screen, PIN pad)
"""

from __future__ import annotations

import hashlib
import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from flask import current_app

from ..time_utils import utcnow
from .ledger_service import Actor


# Configuration constants
SESSION_ABSOLUTE_TIMEOUT = timedelta(hours=24)  # Maximum session length
SESSION_IDLE_TIMEOUT = timedelta(hours=2)        # Activity timeout
SESSION_SWEEP_EVERY = 256                        # Full eviction pass every N resolves


@dataclass
class SessionRecord:
    actor: Actor
    created_at: datetime
    last_used_at: datetime
    expires_at: datetime


def generate_token() -> str:
    """Return a 64-character hex token (32 bytes of entropy)."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """Hash token for storage using SHA-256."""
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


class SessionStore:
    """Interface every session store implements."""

    def open(self, actor: Actor) -> str:
        """Start a session for actor and return the plaintext token."""
        raise NotImplementedError

    def resolve(self, token: str) -> Actor | None:
        """Actor for a live token, refreshing its idle timer; None if unknown or expired."""
        raise NotImplementedError

    def close(self, token: str) -> bool:
        """End a session. Returns False if the token was not live."""
        raise NotImplementedError

    def evict_expired(self) -> int:
        """Drop every expired session and return how many were dropped."""
        raise NotImplementedError


class InMemorySessionStore(SessionStore):
    """Process-local store; one instance per app."""

    def __init__(
        self,
        *,
        idle_timeout: timedelta = SESSION_IDLE_TIMEOUT,
        absolute_timeout: timedelta = SESSION_ABSOLUTE_TIMEOUT,
        clock: Callable[[], datetime] = utcnow,
        sweep_every: int = SESSION_SWEEP_EVERY,
    ):
        self.idle_timeout = idle_timeout
        self.absolute_timeout = absolute_timeout
        self._clock = clock
        self.sweep_every = sweep_every
        self._resolves = 0
        self._sessions: dict[str, SessionRecord] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def _is_expired(self, record: SessionRecord, now: datetime) -> bool:
        return now >= record.expires_at or now - record.last_used_at >= self.idle_timeout

    def open(self, actor: Actor) -> str:
        if actor is None:
            raise ValueError("actor is required to open a session")
        token = generate_token()
        now = self._clock()
        with self._lock:
            self._sessions[hash_token(token)] = SessionRecord(
                actor=actor,
                created_at=now,
                last_used_at=now,
                expires_at=now + self.absolute_timeout,
            )
        return token

    def _evict_locked(self, now: datetime) -> int:
        expired = [k for k, r in self._sessions.items() if self._is_expired(r, now)]
        for key in expired:
            del self._sessions[key]
        return len(expired)

    def resolve(self, token: str) -> Actor | None:
        key = hash_token(token)
        now = self._clock()
        with self._lock:
            self._resolves += 1
            if self.sweep_every and self._resolves % self.sweep_every == 0:
                self._evict_locked(now)
            record = self._sessions.get(key)
            if record is None:
                return None
            if self._is_expired(record, now):
                del self._sessions[key]
                return None
            record.last_used_at = now
            return record.actor

    def close(self, token: str) -> bool:
        with self._lock:
            return self._sessions.pop(hash_token(token), None) is not None

    def evict_expired(self) -> int:
        now = self._clock()
        with self._lock:
            return self._evict_locked(now)


def get_session_store() -> SessionStore:
    return current_app.extensions["session_store"]
