"""Project lifecycle: create, open, restart, stop, delete, deploy.

Synchronous preconditions (ownership, the one-active-sandbox gate, the
running check for deploy) are raised before any stream starts, so callers
can answer with a plain HTTP status. The ``*_stream`` coroutines are
producers for ``start_stream`` and report progress through ``emit``.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Any

from config.schema import HitboxSettings
from core.task.scope import DirectoryScope
from sandbox.errors import BuildFailedError, SandboxError, SnapshotError
from sandbox.events import EmitFn, stage_payload
from sandbox.lifecycle import (
    BuildStatus,
    ReadinessStage,
    SandboxStatus,
    SnapshotType,
    assert_sandbox_transition,
    is_active,
    parse_sandbox_status,
)
from sandbox.provider import WorkloadController
from sandbox.readiness import ReadinessPoller
from sandbox.snapshot import SnapshotManager
from storage.contracts import BlobStore, ConversationRepo, ProjectRepo
from storage.models import ProjectRow

logger = logging.getLogger(__name__)


class ProjectNotFoundError(LookupError):
    def __init__(self, project_id: str):
        super().__init__(f"Project not found: {project_id}")
        self.project_id = project_id


class ActiveProjectConflictError(RuntimeError):
    """Another project of the same user already holds the active sandbox."""

    def __init__(self, active: ProjectRow):
        super().__init__(
            f"Project '{active.name}' is already running. Stop it before starting another project."
        )
        self.active = active

    def detail(self) -> dict[str, Any]:
        return {
            "message": str(self),
            "activeProject": {
                "id": self.active.id,
                "name": self.active.name,
                "previewUrl": self.active.preview_url,
            },
        }


class ProjectNotRunningError(RuntimeError):
    def __init__(self, project_id: str, status: str):
        super().__init__(f"Project {project_id} is not running (status: {status})")
        self.project_id = project_id
        self.status = status


class ProjectService:
    def __init__(
        self,
        settings: HitboxSettings,
        projects: ProjectRepo,
        conversations: ConversationRepo,
        controller: WorkloadController,
        snapshots: SnapshotManager,
        blob_store: BlobStore,
    ) -> None:
        self.settings = settings
        self.projects = projects
        self.conversations = conversations
        self.controller = controller
        self.snapshots = snapshots
        self.blob_store = blob_store
        self._locks: dict[str, asyncio.Lock] = {}

    # ==================== Lookups ====================

    def get_owned(self, user_id: str, project_id: str) -> ProjectRow:
        row = self.projects.get(project_id, user_id)
        if row is None:
            raise ProjectNotFoundError(project_id)
        return row

    def list_projects(self, user_id: str) -> list[ProjectRow]:
        return self.projects.list_by_user(user_id)

    def ensure_gate(self, user_id: str, exclude_project_id: str | None = None) -> None:
        """Raise ActiveProjectConflictError when another project is active."""
        for row in self.projects.list_active_by_user(user_id):
            if row.id != exclude_project_id:
                raise ActiveProjectConflictError(row)

    def require_running(self, user_id: str, project_id: str) -> ProjectRow:
        row = self.get_owned(user_id, project_id)
        if parse_sandbox_status(row.status) != SandboxStatus.READY:
            raise ProjectNotRunningError(project_id, row.status)
        return row

    def _lock(self, project_id: str) -> asyncio.Lock:
        lock = self._locks.get(project_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[project_id] = lock
        return lock

    def _set_status(self, row: ProjectRow, target: SandboxStatus, reason: str, **fields: Any) -> None:
        current = parse_sandbox_status(row.status)
        assert_sandbox_transition(current, target, reason=reason)
        self.projects.update_fields(row.id, status=str(target), **fields)
        row.status = str(target)
        for name, value in fields.items():
            setattr(row, name, value)

    def _fail(self, row: ProjectRow, error: Exception) -> None:
        logger.error("Project %s failed: %s", row.id, error)
        current = self.projects.get(row.id)
        if current is None:
            return
        row.status = current.status
        if parse_sandbox_status(row.status) in (SandboxStatus.DELETED, SandboxStatus.HIBERNATED):
            return
        self._set_status(row, SandboxStatus.ERROR, reason=f"failed: {error}")

    def _poller(self) -> ReadinessPoller:
        return ReadinessPoller(self.controller, self.settings.readiness)

    # ==================== Create / open / restart ====================

    def create_project(
        self,
        user_id: str,
        name: str,
        *,
        description: str = "",
        game_type: str = "3d",
        template: str | None = None,
    ) -> ProjectRow:
        """Insert the row as ``initializing``; ``launch_stream`` brings up the sandbox."""
        self.ensure_gate(user_id)
        project_id = uuid.uuid4().hex
        now = time.time()
        assert_sandbox_transition(None, SandboxStatus.INITIALIZING, reason="create")
        row = ProjectRow(
            id=project_id,
            user_id=user_id,
            name=name,
            description=description,
            game_type=game_type,
            template=template,
            status=str(SandboxStatus.INITIALIZING),
            workload_name=self.controller.workload_name(project_id),
            preview_url=self.controller.preview_url(project_id),
            created_at=now,
            last_activity_at=now,
        )
        self.projects.create(row)
        logger.info("Created project %s for user %s", project_id, user_id)
        return row

    def prepare_open(self, user_id: str, project_id: str) -> ProjectRow:
        row = self.get_owned(user_id, project_id)
        if not is_active(row.status):
            self.ensure_gate(user_id, exclude_project_id=project_id)
        return row

    def prepare_restart(self, user_id: str, project_id: str) -> ProjectRow:
        row = self.get_owned(user_id, project_id)
        self.ensure_gate(user_id, exclude_project_id=project_id)
        return row

    async def launch_stream(self, row: ProjectRow, emit: EmitFn) -> None:
        async with self._lock(row.id):
            await self._guarded_launch(row, emit)

    async def open_stream(self, row: ProjectRow, emit: EmitFn) -> None:
        async with self._lock(row.id):
            await self._refresh(row)
            status = parse_sandbox_status(row.status)
            if status == SandboxStatus.READY:
                await asyncio.to_thread(self.projects.touch, row.id)
                await emit(
                    "stage",
                    stage_payload(
                        ReadinessStage.READY,
                        "Project is already running",
                        preview_url=row.preview_url,
                        project_id=row.id,
                    ),
                )
                return
            try:
                # @@@stale-workload - stop returns before teardown ends and error rows may still own a workload.
                await self._discard_workload(row.id)
                await asyncio.to_thread(self._set_status, row, SandboxStatus.INITIALIZING, "open")
                await self._launch(row, emit)
            except Exception as e:
                await asyncio.to_thread(self._fail, row, e)
                raise

    async def restart_stream(self, row: ProjectRow, emit: EmitFn) -> None:
        async with self._lock(row.id):
            await self._refresh(row)
            try:
                if parse_sandbox_status(row.status) == SandboxStatus.READY:
                    await emit("stage", stage_payload("saving", "Saving project state...", project_id=row.id))
                    # the workload is deleted only after its tree is saved
                    await asyncio.to_thread(self.snapshots.create_snapshot, row.id, SnapshotType.AUTO_RESTART)
                if is_active(row.status):
                    await emit("stage", stage_payload("stopping", "Stopping sandbox...", project_id=row.id))
                    await asyncio.to_thread(self.controller.delete_sandbox, row.id, True)
                else:
                    await self._discard_workload(row.id)
                await asyncio.to_thread(self._set_status, row, SandboxStatus.INITIALIZING, "restart")
                await self._launch(row, emit)
            except Exception as e:
                await asyncio.to_thread(self._fail, row, e)
                raise

    async def _refresh(self, row: ProjectRow) -> None:
        fresh = await asyncio.to_thread(self.projects.get, row.id)
        if fresh is None:
            raise ProjectNotFoundError(row.id)
        row.status = fresh.status

    async def _guarded_launch(self, row: ProjectRow, emit: EmitFn) -> None:
        try:
            await self._launch(row, emit)
        except Exception as e:
            await asyncio.to_thread(self._fail, row, e)
            raise

    async def _launch(self, row: ProjectRow, emit: EmitFn) -> None:
        """Create the workload, restore the latest snapshot if any, and wait for ready."""
        restore = await asyncio.to_thread(self.snapshots.has_snapshots, row.id)
        template = row.template or row.game_type
        await asyncio.to_thread(self.controller.create_sandbox, row.id, template, restore)
        await asyncio.to_thread(self._set_status, row, SandboxStatus.BUILDING, "workload created")

        poller = self._poller()
        if restore:
            await poller.wait_for_container(row.id, emit)
            await poller.advance(row.id, ReadinessStage.INSTALLING_DEPS, emit, "Restoring snapshot...")
            if not await asyncio.to_thread(self.snapshots.restore_snapshot, row.id):
                raise SnapshotError(f"No snapshot to restore for project {row.id}")
            await asyncio.to_thread(self.controller.start_dev_server, row.id)

        async def on_ready() -> None:
            await asyncio.to_thread(self._mark_ready, row)

        await poller.wait_for_ready(row.id, emit, preview_url=row.preview_url, on_ready=on_ready)

    def _mark_ready(self, row: ProjectRow) -> None:
        self._set_status(row, SandboxStatus.READY, "dev server started", last_activity_at=time.time())

    # ==================== Stop / delete ====================

    async def hibernate(
        self,
        row: ProjectRow,
        snapshot_type: str = SnapshotType.AUTO_CLEANUP,
        *,
        idle_before: float | None = None,
    ) -> ProjectRow | None:
        """Snapshot, delete the workload, and mark the project hibernated.

        A failed snapshot propagates and leaves the workload and status
        untouched. With ``idle_before``, a project touched at or after that time is left
        alone and None is returned.
        """
        async with self._lock(row.id):
            fresh = await asyncio.to_thread(self.projects.get, row.id)
            if fresh is None:
                return None
            if idle_before is not None and fresh.last_activity_at >= idle_before:
                return None
            row.status = fresh.status
            status = parse_sandbox_status(row.status)
            if status == SandboxStatus.HIBERNATED:
                return row
            if status == SandboxStatus.READY:
                await asyncio.to_thread(self.snapshots.create_snapshot, row.id, snapshot_type)
            await asyncio.to_thread(self.controller.delete_sandbox, row.id, False)
            await asyncio.to_thread(self._set_status, row, SandboxStatus.HIBERNATED, "stop")
            logger.info("Project %s hibernated", row.id)
            return row

    async def stop(self, user_id: str, project_id: str) -> ProjectRow:
        row = self.get_owned(user_id, project_id)
        return await self.hibernate(row, SnapshotType.AUTO_CLEANUP) or row

    async def delete(self, user_id: str, project_id: str) -> None:
        row = self.get_owned(user_id, project_id)
        async with self._lock(row.id):
            await self._discard_workload(row.id)
            await asyncio.to_thread(self._set_status, row, SandboxStatus.DELETED, "delete")
            await asyncio.to_thread(self.projects.soft_delete, row.id)
        self._locks.pop(row.id, None)
        logger.info("Project %s deleted", row.id)

    async def _discard_workload(self, project_id: str) -> None:
        try:
            await asyncio.to_thread(self.controller.delete_sandbox, project_id, True)
        except SandboxError as e:
            logger.warning("Failed to delete workload for %s: %s", project_id, e)

    # ==================== Snapshot / deploy ====================

    async def snapshot(self, user_id: str, project_id: str) -> dict[str, Any]:
        row = self.require_running(user_id, project_id)
        async with self._lock(row.id):
            snapshot_id = await asyncio.to_thread(self.snapshots.create_snapshot, row.id, SnapshotType.MANUAL)
        await asyncio.to_thread(self.projects.touch, row.id)
        latest = await asyncio.to_thread(self.snapshots.snapshots.latest, row.id)
        if latest is not None and latest.id == snapshot_id:
            return latest.to_dict()
        return {"id": snapshot_id, "projectId": row.id}

    async def deploy_stream(self, row: ProjectRow, emit: EmitFn) -> None:
        prefix = self.settings.blob.deployment_prefix
        async with self._lock(row.id):
            await asyncio.to_thread(self.projects.update_fields, row.id, build_status=str(BuildStatus.BUILDING))
            try:
                await emit("stage", stage_payload("building", "Building project...", project_id=row.id))
                build = await asyncio.to_thread(self.controller.build_project, row.id)
                if not build.success:
                    raise BuildFailedError(f"Build failed: {build.reason}", build.output)
                await emit("stage", stage_payload("build_complete", "Build completed", project_id=row.id))

                await emit("stage", stage_payload("copying", "Copying build artifacts...", project_id=row.id))
                artifacts = await asyncio.to_thread(self.controller.copy_built_artifacts, row.id, prefix)
                await emit(
                    "stage", stage_payload("files_copied", f"Copied {len(artifacts)} files", project_id=row.id)
                )

                await emit("stage", stage_payload("uploading", "Uploading to storage...", project_id=row.id))
                base = f"{prefix}/{row.id}/dist"
                for artifact in artifacts:
                    await asyncio.to_thread(
                        self.blob_store.put, f"{base}/{artifact.path}", artifact.content, artifact.mime_type
                    )
                deployment_url = self.blob_store.public_url(f"{base}/index.html")
            except Exception:
                await asyncio.to_thread(
                    self.projects.update_fields, row.id, build_status=str(BuildStatus.FAILED)
                )
                raise

            await asyncio.to_thread(
                self.projects.update_fields,
                row.id,
                build_status=str(BuildStatus.SUCCESS),
                deployment_url=deployment_url,
            )
            await asyncio.to_thread(self.projects.touch, row.id)
        logger.info("Deployed project %s (%d files) to %s", row.id, len(artifacts), deployment_url)
        await emit(
            "complete",
            {
                "message": "Deployment successful",
                "deploymentUrl": deployment_url,
                "filesUploaded": len(artifacts),
            },
        )

    # ==================== Files / history ====================

    async def file_tree(self, user_id: str, project_id: str) -> list[dict[str, Any]]:
        row = self.require_running(user_id, project_id)
        nodes = await asyncio.to_thread(self.controller.list_project_files, row.id)
        return [node.to_dict() for node in nodes]

    async def read_file(self, user_id: str, project_id: str, path: str) -> dict[str, str]:
        row = self.require_running(user_id, project_id)
        scope = DirectoryScope(self.controller.config, row.game_type)
        resolved = scope.check_read(path)
        content = await asyncio.to_thread(self.controller.read_file, row.id, resolved)
        return {"path": path, "content": content}

    def conversation(self, user_id: str, project_id: str) -> list[dict[str, Any]]:
        row = self.get_owned(user_id, project_id)
        return [turn.to_dict() for turn in self.conversations.list_by_project(row.id)]
