"""Pydantic request models for the Hitbox web API."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class CreateProjectRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(min_length=1, max_length=200)
    description: str = ""
    game_type: Literal["2d", "3d"] = Field("3d", alias="gameType")
    template: str | None = None


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    project_id: str = Field(alias="projectId", min_length=1)
    message: str = Field(min_length=1)
