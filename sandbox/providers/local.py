"""
Local workload controller.

Runs each sandbox's startup script as a host subprocess and executes
commands directly on the host. No isolation: sandbox paths in ClusterConfig
are host paths. Intended for development and tests.
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading
from pathlib import Path

from config.schema import ClusterConfig
from sandbox.errors import SandboxConflictError, SandboxError, SandboxNotFoundError
from sandbox.provider import ExecResult, InstanceStatus, WorkloadController

logger = logging.getLogger(__name__)


class LocalController(WorkloadController):
    name = "local"

    def __init__(
        self,
        config: ClusterConfig | None = None,
        *,
        state_dir: str | Path | None = None,
        chunk_size: int = 100_000,
        transfer_retries: int = 3,
    ) -> None:
        super().__init__(config, chunk_size=chunk_size, transfer_retries=transfer_retries)
        self.state_dir = Path(state_dir) if state_dir else Path.home() / ".hitbox" / "local"
        self.state_dir.mkdir(parents=True, exist_ok=True)
        self._processes: dict[str, subprocess.Popen] = {}
        self._lock = threading.Lock()

    def _log_path(self, project_id: str) -> Path:
        return self.state_dir / f"{self.workload_name(project_id)}.log"

    def create_sandbox(self, project_id: str, template: str | None = None, skip_auto_setup: bool = False) -> str:
        name = self.workload_name(project_id)
        with self._lock:
            existing = self._processes.get(project_id)
            if existing is not None and existing.poll() is None:
                raise SandboxConflictError(f"Sandbox {name} already exists")
            log_file = open(self._log_path(project_id), "w", encoding="utf-8")
            try:
                env = {**os.environ, "HITBOX_TEMPLATE": template or ""}
                self._processes[project_id] = subprocess.Popen(
                    ["sh", "-c", self.startup_script(skip_auto_setup)],
                    stdout=log_file,
                    stderr=subprocess.STDOUT,
                    cwd=self.state_dir,
                    env=env,
                    start_new_session=True,
                )
            finally:
                log_file.close()
        logger.info("Started local sandbox %s (skip_auto_setup=%s)", name, skip_auto_setup)
        return self.preview_url(project_id)

    def delete_sandbox(self, project_id: str, wait_for_completion: bool = False) -> None:
        with self._lock:
            proc = self._processes.pop(project_id, None)
        try:
            if proc is None or proc.poll() is not None:
                return
            try:
                os.killpg(proc.pid, signal.SIGTERM)
            except ProcessLookupError:
                return
            if wait_for_completion:
                try:
                    proc.wait(timeout=self.config.delete_timeout_sec)
                except subprocess.TimeoutExpired:
                    os.killpg(proc.pid, signal.SIGKILL)
                    proc.wait()
        finally:
            # marker must not leak into the next incarnation of this sandbox
            Path(self.config.dev_start_marker).unlink(missing_ok=True)

    def get_instance_status(self, project_id: str) -> InstanceStatus | None:
        proc = self._processes.get(project_id)
        if proc is None:
            return None
        code = proc.poll()
        if code is None:
            return InstanceStatus(phase="Running", container_state="running", ready=True)
        return InstanceStatus(phase="Succeeded" if code == 0 else "Failed", container_state="terminated", ready=False)

    def get_logs(self, project_id: str, window_seconds: int, tail_lines: int = 50) -> str:
        try:
            lines = self._log_path(project_id).read_text(encoding="utf-8", errors="replace").splitlines()
        except OSError:
            return ""
        return "\n".join(lines[-tail_lines:])

    def exec(self, project_id: str, argv: list[str], timeout: float | None = None) -> ExecResult:
        proc = self._processes.get(project_id)
        if proc is None or proc.poll() is not None:
            raise SandboxNotFoundError(f"No running sandbox for project {project_id}")
        try:
            completed = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                errors="replace",
                timeout=timeout or self.config.exec_timeout_sec,
                cwd=self.state_dir,
            )
        except subprocess.TimeoutExpired as e:
            raise SandboxError(f"Exec timed out after {e.timeout}s: {argv[0]}") from e
        except OSError as e:
            return ExecResult(output="", exit_code=127, error=str(e))
        return ExecResult(output=completed.stdout, exit_code=completed.returncode, error=completed.stderr or None)
