"""Project lifecycle endpoints. Long-running operations stream SSE progress."""

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query
from sse_starlette.sse import EventSourceResponse

from backend.web.core.app_services import AppServices
from backend.web.core.config import SSE_HEADERS
from backend.web.core.dependencies import get_services, get_user_id
from backend.web.models.requests import CreateProjectRequest
from backend.web.routers.errors import to_http
from backend.web.services.streaming_service import observe_run_events, start_stream

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/projects", tags=["projects"])

Services = Annotated[AppServices, Depends(get_services)]
UserId = Annotated[str, Depends(get_user_id)]


def _stream(services: AppServices, key: str, producer: Any, label: str) -> EventSourceResponse:
    buf = start_stream(services, key, producer, label)
    return EventSourceResponse(observe_run_events(buf), headers=SSE_HEADERS)


@router.get("")
async def list_projects(services: Services, user_id: UserId) -> dict[str, Any]:
    rows = services.project_service.list_projects(user_id)
    return {"projects": [row.to_dict() for row in rows]}


@router.post("/stream")
async def create_project_stream(payload: CreateProjectRequest, services: Services, user_id: UserId) -> EventSourceResponse:
    """Create a project and stream sandbox readiness until the preview is up."""
    svc = services.project_service
    try:
        row = svc.create_project(
            user_id,
            payload.name,
            description=payload.description,
            game_type=payload.game_type,
            template=payload.template,
        )
    except Exception as e:
        raise to_http(e) from e
    return _stream(services, f"project:{row.id}", lambda emit: svc.launch_stream(row, emit), "create")


@router.get("/{project_id}")
async def get_project(project_id: str, services: Services, user_id: UserId) -> dict[str, Any]:
    try:
        return services.project_service.get_owned(user_id, project_id).to_dict()
    except Exception as e:
        raise to_http(e) from e


@router.delete("/{project_id}")
async def delete_project(project_id: str, services: Services, user_id: UserId) -> dict[str, Any]:
    try:
        await services.project_service.delete(user_id, project_id)
    except Exception as e:
        raise to_http(e) from e
    return {"ok": True, "id": project_id}


@router.post("/{project_id}/open/stream")
async def open_project_stream(project_id: str, services: Services, user_id: UserId) -> EventSourceResponse:
    svc = services.project_service
    try:
        row = svc.prepare_open(user_id, project_id)
    except Exception as e:
        raise to_http(e) from e
    return _stream(services, f"project:{row.id}", lambda emit: svc.open_stream(row, emit), "open")


@router.post("/{project_id}/restart/stream")
async def restart_project_stream(project_id: str, services: Services, user_id: UserId) -> EventSourceResponse:
    svc = services.project_service
    try:
        row = svc.prepare_restart(user_id, project_id)
    except Exception as e:
        raise to_http(e) from e
    return _stream(services, f"project:{row.id}", lambda emit: svc.restart_stream(row, emit), "restart")


@router.post("/{project_id}/stop")
async def stop_project(project_id: str, services: Services, user_id: UserId) -> dict[str, Any]:
    try:
        row = await services.project_service.stop(user_id, project_id)
    except Exception as e:
        raise to_http(e) from e
    return row.to_dict()


@router.post("/{project_id}/deploy/stream")
async def deploy_project_stream(project_id: str, services: Services, user_id: UserId) -> EventSourceResponse:
    svc = services.project_service
    try:
        row = svc.require_running(user_id, project_id)
    except Exception as e:
        raise to_http(e) from e
    return _stream(services, f"deploy:{row.id}", lambda emit: svc.deploy_stream(row, emit), "deploy")


@router.post("/{project_id}/snapshot")
async def snapshot_project(project_id: str, services: Services, user_id: UserId) -> dict[str, Any]:
    try:
        return await services.project_service.snapshot(user_id, project_id)
    except Exception as e:
        raise to_http(e) from e


@router.get("/{project_id}/files")
async def project_files(project_id: str, services: Services, user_id: UserId) -> dict[str, Any]:
    try:
        tree = await services.project_service.file_tree(user_id, project_id)
    except Exception as e:
        raise to_http(e) from e
    return {"files": tree}


@router.get("/{project_id}/file")
async def project_file(
    project_id: str,
    services: Services,
    user_id: UserId,
    path: Annotated[str, Query(min_length=1)],
) -> dict[str, str]:
    try:
        return await services.project_service.read_file(user_id, project_id, path)
    except Exception as e:
        raise to_http(e) from e


@router.get("/{project_id}/conversations")
async def project_conversations(project_id: str, services: Services, user_id: UserId) -> dict[str, Any]:
    try:
        return {"messages": services.project_service.conversation(user_id, project_id)}
    except Exception as e:
        raise to_http(e) from e
