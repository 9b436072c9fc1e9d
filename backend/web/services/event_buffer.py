"""In-memory event buffer decoupling stream producers from SSE consumers."""

import asyncio
from dataclasses import dataclass, field


@dataclass
class RunEventBuffer:
    """Ordered event buffer with cursor-based reading and completion signal."""

    events: list[dict] = field(default_factory=list)
    finished: asyncio.Event = field(default_factory=asyncio.Event)
    _notify: asyncio.Condition = field(default_factory=asyncio.Condition)
    run_id: str = ""

    async def put(self, event: dict) -> None:
        async with self._notify:
            self.events.append(event)
            self._notify.notify_all()

    async def mark_done(self) -> None:
        async with self._notify:
            self.finished.set()
            self._notify.notify_all()

    def _pending(self, cursor: int) -> bool:
        return cursor < len(self.events) or self.finished.is_set()

    async def read(self, cursor: int) -> tuple[list[dict], int]:
        """Return (new_events, new_cursor). Waits if no new events and not finished."""
        async with self._notify:
            # @@@check-under-lock - predicate is evaluated while holding the condition, so a put() between check and wait is never lost.
            await self._notify.wait_for(lambda: self._pending(cursor))
            return self.events[cursor:], len(self.events)

    async def read_with_timeout(self, cursor: int, timeout: float = 30) -> tuple[list[dict] | None, int]:
        """Same as read() but returns (None, cursor) on timeout instead of blocking forever."""
        async with self._notify:
            try:
                await asyncio.wait_for(self._notify.wait_for(lambda: self._pending(cursor)), timeout)
            except TimeoutError:
                return None, cursor
            return self.events[cursor:], len(self.events)
