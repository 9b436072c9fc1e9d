"""FastAPI dependency injection functions."""

from typing import Annotated

from fastapi import Depends, FastAPI, Request

from backend.web.core.app_services import AppServices
from backend.web.core.config import DEFAULT_USER_ID, USER_ID_HEADER


async def get_app(request: Request) -> FastAPI:
    """Get FastAPI app instance from request."""
    return request.app


async def get_services(app: Annotated[FastAPI, Depends(get_app)]) -> AppServices:
    return app.state.services


async def get_user_id(request: Request) -> str:
    return request.headers.get(USER_ID_HEADER) or DEFAULT_USER_ID
