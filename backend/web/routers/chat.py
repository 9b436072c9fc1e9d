"""Chat endpoint: one instruction in, task-graph progress out over SSE."""

from typing import Annotated

from fastapi import APIRouter, Depends
from sse_starlette.sse import EventSourceResponse

from backend.web.core.app_services import AppServices
from backend.web.core.config import SSE_HEADERS
from backend.web.core.dependencies import get_services, get_user_id
from backend.web.models.requests import ChatRequest
from backend.web.routers.errors import to_http
from backend.web.services.streaming_service import observe_run_events, start_stream
from sandbox.cancel import CancelToken

router = APIRouter(prefix="/api/chat", tags=["chat"])


@router.post("")
async def chat(
    payload: ChatRequest,
    services: Annotated[AppServices, Depends(get_services)],
    user_id: Annotated[str, Depends(get_user_id)],
) -> EventSourceResponse:
    """Run the task orchestrator for a message; disconnecting cancels the run."""
    try:
        row = services.project_service.require_running(user_id, payload.project_id)
    except Exception as e:
        raise to_http(e) from e

    cancel = CancelToken()

    async def produce(emit):
        await services.chat_service.run_chat(row, user_id, payload.message, emit, cancel)

    buf = start_stream(services, f"chat:{row.id}", produce, "chat")
    return EventSourceResponse(observe_run_events(buf, cancel=cancel), headers=SSE_HEADERS)
