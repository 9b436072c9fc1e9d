"""Cooperative cancellation token shared by polling and agent loops."""

from __future__ import annotations

import asyncio

from sandbox.errors import CancelledRunError


class CancelToken:
    """Set once by the owner (e.g. on client disconnect); checked at every suspension point."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason = ""

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CancelledRunError(self.reason or "cancelled")

    async def sleep(self, seconds: float) -> None:
        """Sleep up to ``seconds``; raise early if cancelled meanwhile."""
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except TimeoutError:
            return
        self.raise_if_cancelled()
