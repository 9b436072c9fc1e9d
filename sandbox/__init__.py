"""Sandbox: workload lifecycle, readiness inference and snapshots.

Usage:
    from sandbox import create_controller, ReadinessPoller, SnapshotManager

    controller = create_controller(settings)
    preview_url = controller.create_sandbox(project_id)
    await ReadinessPoller(controller, settings.readiness).wait_for_ready(project_id, emit, preview_url=preview_url)
"""

from __future__ import annotations

from sandbox.cancel import CancelToken
from sandbox.errors import (
    BuildFailedError,
    CancelledRunError,
    ReadinessTimeoutError,
    SandboxCommandError,
    SandboxConflictError,
    SandboxError,
    SandboxNotFoundError,
    SnapshotError,
    TransferError,
)
from sandbox.lifecycle import BuildStatus, ReadinessStage, SandboxStatus, SnapshotType
from sandbox.provider import ExecResult, InstanceStatus, WorkloadController
from sandbox.providers import create_controller
from sandbox.readiness import ReadinessPoller, classify
from sandbox.snapshot import SnapshotManager

__all__ = [
    "BuildFailedError",
    "BuildStatus",
    "CancelToken",
    "CancelledRunError",
    "ExecResult",
    "InstanceStatus",
    "ReadinessPoller",
    "ReadinessStage",
    "ReadinessTimeoutError",
    "SandboxCommandError",
    "SandboxConflictError",
    "SandboxError",
    "SandboxNotFoundError",
    "SandboxStatus",
    "SnapshotError",
    "SnapshotManager",
    "SnapshotType",
    "TransferError",
    "WorkloadController",
    "classify",
    "create_controller",
]
