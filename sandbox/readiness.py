"""Readiness polling and log-based stage inference.

The sandbox process exposes no health protocol, so stages are inferred from
pod status and substrings of its log. ``classify`` is the only place that
knows the markers.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from collections.abc import Awaitable, Callable

from config.schema import ReadinessConfig
from sandbox.cancel import CancelToken
from sandbox.errors import ReadinessTimeoutError
from sandbox.events import EmitFn, stage_payload
from sandbox.lifecycle import ReadinessStage, stage_rank
from sandbox.provider import InstanceStatus, WorkloadController

logger = logging.getLogger(__name__)

# First match wins; order is most-advanced stage first.
STAGE_MARKERS: tuple[tuple[ReadinessStage, tuple[str, ...]], ...] = (
    (ReadinessStage.READY, ("Starting dev server", "VITE", "Local:")),
    (ReadinessStage.INSTALLING_DEPS, ("Installing dependencies", "npm install")),
    (ReadinessStage.CLONING_REPO, ("Cloning repo", "git clone")),
    (ReadinessStage.STARTING, ("Installing git",)),
)

STAGE_MESSAGES: dict[ReadinessStage, str] = {
    ReadinessStage.SCHEDULING: "Waiting for the sandbox to be scheduled...",
    ReadinessStage.PULLING_IMAGE: "Pulling container image...",
    ReadinessStage.STARTING: "Container started, installing tools...",
    ReadinessStage.CLONING_REPO: "Cloning project template...",
    ReadinessStage.INSTALLING_DEPS: "Installing dependencies...",
    ReadinessStage.READY: "Project is ready!",
}


def classify(log_text: str, previous_stage: ReadinessStage | None = None) -> ReadinessStage | None:
    """Map log text to a stage; None when nothing matches or nothing advances."""
    for stage, markers in STAGE_MARKERS:
        if any(marker in log_text for marker in markers):
            if stage_rank(stage) <= stage_rank(previous_stage):
                return None
            return stage
    return None


class ReadinessPoller:
    """Single-flow polling state machine.

    Emits each stage at most once, in increasing order. The terminal
    ``ready`` event is emitted by ``wait_for_ready`` after ``on_ready`` has
    persisted the status.
    """

    def __init__(
        self,
        controller: WorkloadController,
        config: ReadinessConfig | None = None,
        *,
        cancel: CancelToken | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.controller = controller
        self.config = config or ReadinessConfig()
        self.cancel = cancel
        self.clock = clock
        self.last_stage: ReadinessStage | None = None
        self.last_log_hash: str | None = None

    async def advance(
        self, project_id: str, stage: ReadinessStage, emit: EmitFn, message: str | None = None
    ) -> bool:
        """Record and emit a stage if it moves forward. READY is emitted by wait_for_ready."""
        if stage_rank(stage) <= stage_rank(self.last_stage):
            return False
        self.last_stage = stage
        logger.info("Sandbox %s stage -> %s", project_id, stage)
        if stage != ReadinessStage.READY:
            await emit("stage", stage_payload(stage, message or STAGE_MESSAGES[stage], project_id=project_id))
        return True

    async def tick(self, project_id: str, emit: EmitFn) -> InstanceStatus | None:
        status = await asyncio.to_thread(self.controller.get_instance_status, project_id)
        if status is None:
            await self.advance(project_id, ReadinessStage.SCHEDULING, emit)
            return None
        if not status.running:
            if status.creating:
                await self.advance(project_id, ReadinessStage.PULLING_IMAGE, emit)
            return status

        logs = await asyncio.to_thread(
            self.controller.get_logs, project_id, self.config.log_window_sec, self.config.tail_lines
        )
        digest = hashlib.sha256(logs.encode("utf-8", errors="replace")).hexdigest()
        if digest == self.last_log_hash:
            return status
        self.last_log_hash = digest

        stage = classify(logs, self.last_stage)
        if stage is not None:
            await self.advance(project_id, stage, emit)
        return status

    async def _sleep(self) -> None:
        if self.cancel is not None:
            await self.cancel.sleep(self.config.poll_interval_sec)
        else:
            await asyncio.sleep(self.config.poll_interval_sec)

    def _check_cancel(self) -> None:
        if self.cancel is not None:
            self.cancel.raise_if_cancelled()

    async def wait_for_container(self, project_id: str, emit: EmitFn) -> InstanceStatus:
        """Poll until the container runs (status stages only, no log inference)."""
        deadline = self.clock() + self.config.timeout_sec
        while True:
            self._check_cancel()
            status = await asyncio.to_thread(self.controller.get_instance_status, project_id)
            if status is None:
                await self.advance(project_id, ReadinessStage.SCHEDULING, emit)
            elif status.running:
                return status
            elif status.creating:
                await self.advance(project_id, ReadinessStage.PULLING_IMAGE, emit)
            if self.clock() >= deadline:
                raise ReadinessTimeoutError(
                    f"Sandbox {project_id} container did not start within {self.config.timeout_sec:.0f}s"
                )
            await self._sleep()

    async def wait_for_ready(
        self,
        project_id: str,
        emit: EmitFn,
        *,
        preview_url: str,
        on_ready: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        deadline = self.clock() + self.config.timeout_sec
        while True:
            self._check_cancel()
            await self.tick(project_id, emit)
            if self.last_stage == ReadinessStage.READY:
                if on_ready is not None:
                    await on_ready()
                await emit(
                    "stage",
                    stage_payload(
                        ReadinessStage.READY,
                        STAGE_MESSAGES[ReadinessStage.READY],
                        preview_url=preview_url,
                        project_id=project_id,
                    ),
                )
                return
            if self.clock() >= deadline:
                raise ReadinessTimeoutError(
                    f"Sandbox {project_id} not ready within {self.config.timeout_sec:.0f}s "
                    f"(last stage: {self.last_stage or 'none'})"
                )
            await self._sleep()
