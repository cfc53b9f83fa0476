"""
Conversation state repository for sol_trenches.

Ephemeral, per-user state (a pending withdrawal waiting for its PIN, a wallet
removal waiting for confirmation) kept in memory with an explicit expiry.
There is one slot per ``(user_key, kind)``: a new request overwrites the
previous one. Handlers read and write it only through this class.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple


class StateKind(str, Enum):
    """Kinds of conversation state a user can be in."""

    PENDING_WITHDRAWAL = "pending_withdrawal"
    PENDING_REMOVAL = "pending_removal"
    AWAITING_EXPORT_PIN = "awaiting_export_pin"


@dataclass
class _Entry:
    payload: Any
    expires_at: float


class ConversationStateRepository:
    """Expiring key -> state map owned by the conversation layer."""

    def __init__(self, default_ttl: float = 60.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.default_ttl = default_ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._state: Dict[Tuple[str, StateKind], _Entry] = {}

    def put(self, user_key: str, kind: StateKind, payload: Any, ttl: float | None = None) -> None:
        """Store ``payload`` for the user, replacing any previous entry of this kind."""
        expires_at = self._clock() + (self.default_ttl if ttl is None else ttl)
        with self._lock:
            self._state[(str(user_key), kind)] = _Entry(payload, expires_at)

    def get(self, user_key: str, kind: StateKind) -> Optional[Any]:
        """Return the live payload, or None. Expired entries are dropped on read."""
        key = (str(user_key), kind)
        with self._lock:
            entry = self._state.get(key)
            if entry is None:
                return None
            if entry.expires_at <= self._clock():
                del self._state[key]
                return None
            return entry.payload

    def is_expired(self, user_key: str, kind: StateKind) -> bool:
        """True if an entry exists but is past its expiry (it is not removed)."""
        with self._lock:
            entry = self._state.get((str(user_key), kind))
            return entry is not None and entry.expires_at <= self._clock()

    def pop(self, user_key: str, kind: StateKind) -> Optional[Any]:
        with self._lock:
            entry = self._state.pop((str(user_key), kind), None)
        return entry.payload if entry else None

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            dead = [k for k, e in self._state.items() if e.expires_at <= now]
            for k in dead:
                del self._state[k]
        return len(dead)
