"""Progress event callback type and payload helpers."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

EmitFn = Callable[[str, dict[str, Any]], Awaitable[None]]


async def discard_event(event: str, data: dict[str, Any]) -> None:
    return None


def stage_payload(
    stage: str,
    message: str,
    *,
    preview_url: str | None = None,
    project_id: str | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {"stage": stage, "message": message}
    if preview_url is not None:
        payload["previewUrl"] = preview_url
    if project_id is not None:
        payload["projectId"] = project_id
    return payload
