"""Domain error to HTTP status mapping shared by the routers."""

from fastapi import HTTPException

from backend.web.services.project_service import (
    ActiveProjectConflictError,
    ProjectNotFoundError,
    ProjectNotRunningError,
)
from core.task.scope import ScopeViolation
from sandbox.errors import SandboxConflictError, SandboxNotFoundError


def to_http(e: Exception) -> HTTPException:
    if isinstance(e, ProjectNotFoundError):
        return HTTPException(404, str(e))
    if isinstance(e, ActiveProjectConflictError):
        return HTTPException(409, e.detail())
    if isinstance(e, SandboxConflictError):
        return HTTPException(409, str(e))
    if isinstance(e, (ProjectNotRunningError, ScopeViolation)):
        return HTTPException(400, str(e))
    if isinstance(e, SandboxNotFoundError):
        return HTTPException(404, str(e))
    return HTTPException(500, str(e))
