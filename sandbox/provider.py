"""
Abstract workload controller interface.

All sandbox backends (Kubernetes, local subprocess) implement the platform
primitives; file transport, builds and artifact export are shared here and
built on ``exec`` only.
"""

from __future__ import annotations

import base64
import logging
import shlex
import shutil
import tarfile
import tempfile
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from config.schema import ClusterConfig
from sandbox.artifacts import BuildResult, BuiltArtifact, classify_build_output, mime_type_for, rewrite_asset_references
from sandbox.errors import SandboxCommandError, SandboxError, TransferError
from sandbox.file_tree import FileNode, build_file_tree, build_find_script
from sandbox.naming import derive_label_selector, derive_preview_url, derive_workload_name

logger = logging.getLogger(__name__)


@dataclass
class ExecResult:
    """Result of command execution."""
    output: str
    exit_code: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@dataclass
class InstanceStatus:
    """Observed state of the single sandbox instance."""
    phase: str  # 'Pending', 'Running', 'Succeeded', 'Failed', 'Unknown'
    container_state: str  # 'running', a waiting reason, 'terminated', 'unknown'
    ready: bool

    @property
    def running(self) -> bool:
        return self.container_state == "running"

    @property
    def creating(self) -> bool:
        return self.container_state in {"ContainerCreating", "PodInitializing", "unknown"}


class WorkloadController(ABC):
    """
    Abstract interface for sandbox workload controllers.

    Implementations:
    - KubernetesController: Deployment + Service per project
    - LocalController: host subprocess, for development and tests
    """

    name: str

    def __init__(
        self,
        config: ClusterConfig | None = None,
        *,
        chunk_size: int = 100_000,
        transfer_retries: int = 3,
    ) -> None:
        self.config = config or ClusterConfig()
        self.chunk_size = chunk_size
        self.transfer_retries = transfer_retries

    # ==================== Naming ====================

    def workload_name(self, project_id: str) -> str:
        return derive_workload_name(project_id, self.config.name_prefix)

    def label_selector(self, project_id: str) -> str:
        return derive_label_selector(project_id, self.config.name_prefix)

    def preview_url(self, project_id: str) -> str:
        return derive_preview_url(project_id, self.config.preview_domain, self.config.name_prefix)

    def startup_script(self, skip_auto_setup: bool) -> str:
        """Main process script; its echo lines are the readiness markers."""
        cfg = self.config
        steps = ['echo "Installing git..."', cfg.vcs_install_command]
        if skip_auto_setup:
            # @@@restore-gate - restore populates project_dir, then start_dev_server drops the marker
            steps += [
                'echo "Waiting for snapshot restore..."',
                f"while [ ! -f {shlex.quote(cfg.dev_start_marker)} ]; do sleep 1; done",
                f"cd {shlex.quote(cfg.project_dir)}",
            ]
        else:
            steps += [
                'echo "Cloning repo..."',
                f"git clone {shlex.quote(cfg.template_repo)} {shlex.quote(cfg.app_root)}",
                f"cd {shlex.quote(cfg.project_dir)}",
                'echo "Installing dependencies..."',
                cfg.install_command,
            ]
        steps += ['echo "Starting dev server..."', f"exec {cfg.dev_command.format(port=cfg.dev_port)}"]
        return " && ".join(steps)

    # ==================== Platform primitives ====================

    @abstractmethod
    def create_sandbox(self, project_id: str, template: str | None = None, skip_auto_setup: bool = False) -> str:
        """Create workload + service. Returns the preview URL. Not idempotent."""
        pass

    @abstractmethod
    def delete_sandbox(self, project_id: str, wait_for_completion: bool = False) -> None:
        """Delete workload + service, ignoring not-found."""
        pass

    @abstractmethod
    def exec(self, project_id: str, argv: list[str], timeout: float | None = None) -> ExecResult:
        """Run argv in the running instance. Raises SandboxNotFoundError if none runs."""
        pass

    @abstractmethod
    def get_instance_status(self, project_id: str) -> InstanceStatus | None:
        """None when no instance is scheduled yet."""
        pass

    @abstractmethod
    def get_logs(self, project_id: str, window_seconds: int, tail_lines: int = 50) -> str:
        """Best-effort log tail; '' on any failure."""
        pass

    def start_dev_server(self, project_id: str) -> None:
        """Release the restore gate of a skip-auto-setup sandbox."""
        self.exec_checked(project_id, ["touch", self.config.dev_start_marker])

    # ==================== Commands ====================

    def exec_checked(self, project_id: str, argv: list[str], timeout: float | None = None) -> ExecResult:
        result = self.exec(project_id, argv, timeout=timeout)
        if not result.ok:
            raise SandboxCommandError(shlex.join(argv), result.exit_code, (result.output or "") + (result.error or ""))
        return result

    def shell(self, project_id: str, script: str, timeout: float | None = None, *, check: bool = True) -> ExecResult:
        argv = ["sh", "-c", script]
        if check:
            return self.exec_checked(project_id, argv, timeout=timeout)
        return self.exec(project_id, argv, timeout=timeout)

    # ==================== Binary-safe transport ====================

    def put_bytes(self, project_id: str, path: str, data: bytes) -> None:
        """Write bytes into the sandbox as base64 chunks passed through argv.

        A failing chunk restarts the whole transfer, up to transfer_retries.
        """
        encoded = base64.b64encode(data).decode("ascii")
        chunks = [encoded[i : i + self.chunk_size] for i in range(0, len(encoded), self.chunk_size)] or [""]
        staging = f"{path}.{uuid.uuid4().hex[:8]}.b64"
        last_error: SandboxError | None = None

        for attempt in range(1, self.transfer_retries + 1):
            try:
                self.exec_checked(project_id, ["sh", "-c", 'mkdir -p "$(dirname "$1")" && : > "$1"', "sh", staging])
                for chunk in chunks:
                    self.exec_checked(project_id, ["sh", "-c", 'printf %s "$1" >> "$2"', "sh", chunk, staging])
                self.exec_checked(
                    project_id,
                    ["sh", "-c", 'mkdir -p "$(dirname "$2")" && base64 -d "$1" > "$2"', "sh", staging, path],
                )
                return
            except SandboxError as e:
                last_error = e
                logger.warning(
                    "Transfer to %s:%s failed (attempt %d/%d): %s",
                    project_id, path, attempt, self.transfer_retries, e,
                )
            finally:
                self.remove_quietly(project_id, staging)

        raise TransferError(
            f"Failed to transfer {len(data)} bytes to {path} after {self.transfer_retries} attempts"
        ) from last_error

    def remove_quietly(self, project_id: str, path: str) -> None:
        try:
            self.exec(project_id, ["rm", "-f", path])
        except SandboxError as e:
            logger.warning("Failed to remove %s in %s: %s", path, project_id, e)

    def get_bytes(self, project_id: str, path: str) -> bytes:
        result = self.exec_checked(project_id, ["base64", path])
        return base64.b64decode("".join(result.output.split()))

    def read_file(self, project_id: str, path: str) -> str:
        return self.exec_checked(project_id, ["cat", path]).output

    def write_file(self, project_id: str, path: str, content: str) -> None:
        self.put_bytes(project_id, path, content.encode("utf-8"))

    # ==================== Build & deploy ====================

    def build_project(self, project_id: str) -> BuildResult:
        cfg = self.config
        script = f"cd {shlex.quote(cfg.project_dir)} && {cfg.build_command} 2>&1 | tee /tmp/build.log"
        result = self.shell(project_id, script, timeout=cfg.exec_timeout_sec, check=False)
        output = (result.output or "") + (result.error or "")
        build = classify_build_output(output)
        logger.info("Build for %s classified as %s", project_id, "success" if build.success else "failed")
        return build

    def copy_built_artifacts(self, project_id: str, prefix: str = "deployments") -> list[BuiltArtifact]:
        """Export dist/ with asset references rewritten to the deployment sub-path."""
        dist_dir = f"{self.config.project_dir}/dist"
        archive = f"/tmp/dist-{uuid.uuid4().hex[:12]}.tar.gz"
        try:
            self.exec_checked(project_id, ["tar", "-czf", archive, "-C", dist_dir, "."])
            payload = self.get_bytes(project_id, archive)
        finally:
            self.remove_quietly(project_id, archive)

        scratch = Path(tempfile.mkdtemp(prefix=f"deploy-{project_id}-"))
        try:
            archive_path = scratch / "dist.tar.gz"
            archive_path.write_bytes(payload)
            extract_root = scratch / "dist"
            extract_root.mkdir()
            with tarfile.open(archive_path, "r:gz") as tar:
                tar.extractall(extract_root, filter="data")

            artifacts: list[BuiltArtifact] = []
            for file_path in sorted(p for p in extract_root.rglob("*") if p.is_file()):
                relative = file_path.relative_to(extract_root).as_posix()
                content = rewrite_asset_references(relative, file_path.read_bytes(), project_id, prefix)
                artifacts.append(BuiltArtifact(path=relative, content=content, mime_type=mime_type_for(relative)))
            return artifacts
        finally:
            shutil.rmtree(scratch, ignore_errors=True)

    # ==================== Files ====================

    def list_project_files(self, project_id: str) -> list[FileNode]:
        result = self.shell(project_id, build_find_script(self.config.project_dir))
        return build_file_tree(result.output.splitlines())
