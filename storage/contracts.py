"""Storage contracts consumed by services; implementations live in storage/providers."""

from __future__ import annotations

from typing import Any, Protocol

from storage.models import ConversationTurnRow, ProjectRow, SnapshotRow


class ProjectRepo(Protocol):
    def close(self) -> None: ...

    def create(self, row: ProjectRow) -> ProjectRow: ...

    def get(self, project_id: str, user_id: str | None = None, *, include_deleted: bool = False) -> ProjectRow | None: ...

    def list_by_user(self, user_id: str) -> list[ProjectRow]: ...

    def list_active_by_user(self, user_id: str) -> list[ProjectRow]: ...

    def list_idle(self, cutoff: float) -> list[ProjectRow]: ...

    def update_fields(self, project_id: str, **fields: Any) -> None: ...

    def touch(self, project_id: str, at: float | None = None) -> None: ...

    def soft_delete(self, project_id: str, at: float | None = None) -> None: ...


class SnapshotRepo(Protocol):
    def close(self) -> None: ...

    def create(self, row: SnapshotRow) -> SnapshotRow: ...

    def latest(self, project_id: str) -> SnapshotRow | None: ...

    def list_by_project(self, project_id: str) -> list[SnapshotRow]: ...

    def count(self, project_id: str) -> int: ...


class ConversationRepo(Protocol):
    def close(self) -> None: ...

    def append(self, row: ConversationTurnRow) -> ConversationTurnRow: ...

    def list_by_project(self, project_id: str, *, last: int | None = None) -> list[ConversationTurnRow]: ...


class BlobStore(Protocol):
    def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> str: ...

    def get(self, key: str) -> bytes: ...

    def public_url(self, key: str) -> str: ...
