"""SSE streaming for long-running project operations and chat runs.

Each stream has one producer task writing into a RunEventBuffer and any
number of observers reading from it. The producer always ends the stream
with exactly one terminal event: a ``stage`` event with stage ``ready``,
a ``complete`` event, or an ``error`` event.
"""

import asyncio
import json
import logging
import uuid as _uuid
from collections.abc import AsyncGenerator, Awaitable, Callable
from typing import Any

from backend.web.core.config import KEEPALIVE_SEC, RECONNECT_MS
from backend.web.services.event_buffer import RunEventBuffer
from sandbox.cancel import CancelToken
from sandbox.errors import CancelledRunError
from sandbox.events import EmitFn

logger = logging.getLogger(__name__)

Producer = Callable[[EmitFn], Awaitable[None]]

NO_RESULT_ERROR = "Stream ended without a result"
DETAILS_TAIL = 2_000


def is_terminal(event: str, data: dict[str, Any]) -> bool:
    if event in ("complete", "error"):
        return True
    return event == "stage" and data.get("stage") == "ready"


def error_payload(e: Exception) -> dict[str, Any]:
    """Error event body; build and command failures carry their output tail as ``details``."""
    payload: dict[str, Any] = {"error": str(e)}
    output = getattr(e, "output", "")
    if isinstance(output, str) and output.strip():
        payload["details"] = output.strip()[-DETAILS_TAIL:]
    return payload


class StreamEmitter:
    """Buffer-backed EmitFn that drops anything after the first terminal event."""

    def __init__(self, buf: RunEventBuffer):
        self.buf = buf
        self.terminated = False

    async def __call__(self, event: str, data: dict[str, Any]) -> None:
        if self.terminated:
            logger.debug("Dropping %s event after terminal event on run %s", event, self.buf.run_id)
            return
        self.terminated = is_terminal(event, data)
        await self.buf.put({"event": event, "data": json.dumps(data, ensure_ascii=False)})


async def _run_producer(buf: RunEventBuffer, producer: Producer, label: str) -> None:
    emit = StreamEmitter(buf)
    try:
        await producer(emit)
        if not emit.terminated:
            await emit("error", {"error": NO_RESULT_ERROR})
    except CancelledRunError:
        logger.info("[%s] run %s cancelled", label, buf.run_id)
    except asyncio.CancelledError:
        logger.info("[%s] run %s task cancelled", label, buf.run_id)
        raise
    except Exception as e:
        logger.exception("[%s] run %s failed", label, buf.run_id)
        await emit("error", error_payload(e))
    finally:
        await buf.mark_done()


def start_stream(
    services: Any,
    key: str,
    producer: Producer,
    label: str = "stream",
) -> RunEventBuffer:
    """Create a RunEventBuffer and launch the producer as a background task."""
    buf = RunEventBuffer()
    buf.run_id = str(_uuid.uuid4())
    services.event_buffers[key] = buf
    task = asyncio.create_task(_run_producer(buf, producer, label))
    services.stream_tasks[key] = task
    task.add_done_callback(lambda _t: _forget(services, key, buf, task))
    return buf


def _forget(services: Any, key: str, buf: RunEventBuffer, task: asyncio.Task) -> None:
    if services.event_buffers.get(key) is buf:
        services.event_buffers.pop(key, None)
    if services.stream_tasks.get(key) is task:
        services.stream_tasks.pop(key, None)


async def observe_run_events(
    buf: RunEventBuffer,
    cancel: CancelToken | None = None,
) -> AsyncGenerator[dict[str, str], None]:
    """Consume events from a RunEventBuffer. Yields SSE event dicts.

    When *cancel* is given, the observer going away before the producer
    finishes cancels the run (chat streams). Lifecycle streams pass no
    token and keep running without an audience.
    """
    # Tell the browser to reconnect after 5s if the connection drops
    yield {"retry": RECONNECT_MS}

    cursor = 0
    try:
        while True:
            events, cursor = await buf.read_with_timeout(cursor, timeout=KEEPALIVE_SEC)
            if events is None:
                yield {"comment": "keepalive"}
                continue
            for event in events:
                yield event
            if not events and buf.finished.is_set():
                break
    finally:
        if cancel is not None and not buf.finished.is_set():
            cancel.cancel("client disconnected")
