"""Snapshot save/restore of a sandbox working tree through the blob store.

Archives never include dependency or build directories; a restore always
reinstalls dependencies. Restore is destroy-and-replace of the project dir.
"""

from __future__ import annotations

import logging
import shlex
import time
import uuid
from collections.abc import Callable

from config.schema import ClusterConfig, SnapshotConfig
from sandbox.errors import SandboxError, SnapshotError
from sandbox.lifecycle import SnapshotType
from sandbox.provider import WorkloadController
from storage.contracts import BlobStore, SnapshotRepo
from storage.errors import BlobStoreError
from storage.models import SnapshotRow

logger = logging.getLogger(__name__)


def snapshot_key(prefix: str, project_id: str, snapshot_id: str) -> str:
    return f"{prefix}/{project_id}/{snapshot_id}.tar.gz"


class SnapshotManager:
    """Blocking; callers run it via ``asyncio.to_thread``."""

    def __init__(
        self,
        controller: WorkloadController,
        blob_store: BlobStore,
        snapshots: SnapshotRepo,
        config: SnapshotConfig | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.controller = controller
        self.blob_store = blob_store
        self.snapshots = snapshots
        self.config = config or SnapshotConfig()
        self._sleep = sleep

    @property
    def cluster(self) -> ClusterConfig:
        return self.controller.config

    def has_snapshots(self, project_id: str) -> bool:
        return self.snapshots.count(project_id) > 0

    def create_snapshot(self, project_id: str, snapshot_type: str = SnapshotType.MANUAL) -> str:
        snapshot_id = uuid.uuid4().hex
        project_dir = self.cluster.project_dir
        archive = f"/tmp/snapshot-{snapshot_id}.tar.gz"
        key = snapshot_key(self.config.key_prefix, project_id, snapshot_id)

        try:
            # dependencies are reinstalled on restore
            self.controller.shell(project_id, f"rm -rf {shlex.quote(project_dir)}/node_modules", check=False)
            excludes = [f"--exclude={name}" for name in self.config.exclude_dirs]
            self.controller.exec_checked(
                project_id,
                ["tar", "-czf", archive, *excludes, "-C", project_dir, "."],
                timeout=self.cluster.exec_timeout_sec,
            )
            data = self.controller.get_bytes(project_id, archive)
            self.blob_store.put(key, data, content_type="application/gzip")
        except (SandboxError, BlobStoreError) as e:
            raise SnapshotError(f"Snapshot of project {project_id} failed: {e}") from e
        finally:
            self.controller.remove_quietly(project_id, archive)

        self.snapshots.create(
            SnapshotRow(
                id=snapshot_id,
                project_id=project_id,
                storage_key=key,
                size_bytes=len(data),
                snapshot_type=str(snapshot_type),
                created_at=time.time(),
            )
        )
        logger.info("Snapshot %s of %s saved (%d bytes, %s)", snapshot_id, project_id, len(data), snapshot_type)
        return snapshot_id

    def restore_snapshot(self, project_id: str) -> bool:
        """Restore the latest snapshot; False when the project has none."""
        latest = self.snapshots.latest(project_id)
        if latest is None:
            logger.info("No snapshot to restore for %s", project_id)
            return False

        try:
            data = self.blob_store.get(latest.storage_key)
        except BlobStoreError as e:
            raise SnapshotError(f"Failed to download snapshot {latest.id}: {e}") from e

        self._probe(project_id)

        cfg = self.cluster
        project_dir = shlex.quote(cfg.project_dir)
        archive = f"/tmp/restore-{latest.id}.tar.gz"
        try:
            self.controller.put_bytes(project_id, archive, data)

            listing = self.controller.exec(project_id, ["tar", "-tzf", archive])
            if not listing.ok:
                detail = ((listing.output or "") + (listing.error or "")).strip()[:200]
                raise SnapshotError(
                    f"Snapshot {latest.id} archive is corrupt ({len(data)} bytes): {detail or 'tar listing failed'}"
                )

            self.controller.shell(project_id, f"rm -rf {project_dir} && mkdir -p {project_dir}")
            self.controller.exec_checked(
                project_id, ["tar", "-xzf", archive, "-C", cfg.project_dir], timeout=cfg.exec_timeout_sec
            )
            if not self.controller.exec(project_id, ["test", "-f", f"{cfg.project_dir}/package.json"]).ok:
                raise SnapshotError(f"Snapshot {latest.id} restored without package.json")

            self.controller.shell(
                project_id, f"cd {project_dir} && {cfg.install_command}", timeout=cfg.exec_timeout_sec
            )
        except SnapshotError:
            raise
        except SandboxError as e:
            raise SnapshotError(f"Restore of snapshot {latest.id} failed: {e}") from e
        finally:
            self.controller.remove_quietly(project_id, archive)

        logger.info("Snapshot %s restored into %s", latest.id, project_id)
        return True

    def _probe(self, project_id: str) -> None:
        """Wait until the sandbox answers exec."""
        last_error: SandboxError | None = None
        for attempt in range(1, self.config.probe_retries + 1):
            try:
                if self.controller.exec(project_id, ["true"]).ok:
                    return
            except SandboxError as e:
                last_error = e
            logger.debug("Sandbox %s not answering exec (attempt %d)", project_id, attempt)
            if attempt < self.config.probe_retries:
                self._sleep(self.config.probe_interval_sec)
        raise SnapshotError(f"Sandbox {project_id} did not answer exec before restore") from last_error
