"""Provider-neutral storage rows."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any


def iso(ts: float | None) -> str | None:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=UTC).isoformat()


@dataclass
class ProjectRow:
    id: str
    user_id: str
    name: str
    status: str
    workload_name: str
    preview_url: str
    created_at: float
    last_activity_at: float
    description: str = ""
    game_type: str = "3d"
    template: str | None = None
    deployment_url: str | None = None
    build_status: str = "none"
    deleted_at: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "gameType": self.game_type,
            "template": self.template,
            "status": self.status,
            "workloadName": self.workload_name,
            "previewUrl": self.preview_url,
            "deploymentUrl": self.deployment_url,
            "buildStatus": self.build_status,
            "createdAt": iso(self.created_at),
            "lastActivityAt": iso(self.last_activity_at),
        }


@dataclass
class SnapshotRow:
    id: str
    project_id: str
    storage_key: str
    size_bytes: int
    snapshot_type: str
    created_at: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "projectId": self.project_id,
            "storageKey": self.storage_key,
            "sizeBytes": self.size_bytes,
            "snapshotType": self.snapshot_type,
            "createdAt": iso(self.created_at),
        }


@dataclass
class ConversationTurnRow:
    id: str
    project_id: str
    role: str  # 'user' | 'assistant' | 'system'
    content: str
    created_at: float
    tool_calls: list[dict[str, Any]] | None = None
    file_diffs: list[dict[str, Any]] | None = None
    task_graph: dict[str, Any] | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "timestamp": iso(self.created_at),
            "toolCalls": self.tool_calls,
            "fileDiffs": self.file_diffs,
        }
