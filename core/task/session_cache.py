"""TTL cache from ``{user_id}-{project_id}`` to an LLM session id.

Losing an entry only means the next chat starts a fresh session.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable


def session_key(user_id: str, project_id: str) -> str:
    return f"{user_id}-{project_id}"


class SessionCache:
    def __init__(self, ttl_sec: float = 3600.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_sec = ttl_sec
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._entries[key] = (value, self._clock() + self.ttl_sec)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [k for k, (_, expires_at) in self._entries.items() if now >= expires_at]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
