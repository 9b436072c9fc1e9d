"""Lifecycle state machine contracts for project sandboxes.

Fail-loud policy:
- Invalid state strings raise immediately.
- Illegal transitions raise immediately.
"""

from __future__ import annotations

from enum import StrEnum


class SandboxStatus(StrEnum):
    INITIALIZING = "initializing"
    BUILDING = "building"
    READY = "ready"
    ERROR = "error"
    HIBERNATED = "hibernated"
    DELETED = "deleted"


class ReadinessStage(StrEnum):
    SCHEDULING = "scheduling"
    PULLING_IMAGE = "pulling_image"
    STARTING = "starting"
    CLONING_REPO = "cloning_repo"
    INSTALLING_DEPS = "installing_deps"
    READY = "ready"


class BuildStatus(StrEnum):
    NONE = "none"
    BUILDING = "building"
    SUCCESS = "success"
    FAILED = "failed"


class SnapshotType(StrEnum):
    MANUAL = "manual"
    AUTO_CLEANUP = "auto-cleanup"
    AUTO_RESTART = "auto-restart"


# @@@one-active-sandbox - membership here is what the per-user gate counts
ACTIVE_STATUSES: frozenset[SandboxStatus] = frozenset(
    {SandboxStatus.INITIALIZING, SandboxStatus.BUILDING, SandboxStatus.READY}
)

_STAGE_ORDER: dict[ReadinessStage, int] = {stage: i for i, stage in enumerate(ReadinessStage)}


def stage_rank(stage: ReadinessStage | None) -> int:
    if stage is None:
        return -1
    return _STAGE_ORDER[stage]


def is_active(status: SandboxStatus | str) -> bool:
    return parse_sandbox_status(status) in ACTIVE_STATUSES


def parse_sandbox_status(value: str | None) -> SandboxStatus:
    if value is None:
        raise RuntimeError("Sandbox status is required")
    try:
        return SandboxStatus(value)
    except ValueError as e:
        raise RuntimeError(f"Invalid sandbox status: {value}") from e


def parse_build_status(value: str | None) -> BuildStatus:
    if value is None:
        return BuildStatus.NONE
    try:
        return BuildStatus(value)
    except ValueError as e:
        raise RuntimeError(f"Invalid build status: {value}") from e


def assert_sandbox_transition(
    current: SandboxStatus | None,
    target: SandboxStatus,
    *,
    reason: str,
) -> None:
    if current is None:
        if target != SandboxStatus.INITIALIZING:
            raise RuntimeError(f"Illegal sandbox transition: <new> -> {target} ({reason})")
        return
    if current == target:
        return

    allowed: set[tuple[SandboxStatus, SandboxStatus]] = {
        (SandboxStatus.INITIALIZING, SandboxStatus.BUILDING),
        (SandboxStatus.INITIALIZING, SandboxStatus.ERROR),
        (SandboxStatus.INITIALIZING, SandboxStatus.HIBERNATED),
        (SandboxStatus.INITIALIZING, SandboxStatus.DELETED),
        (SandboxStatus.BUILDING, SandboxStatus.READY),
        (SandboxStatus.BUILDING, SandboxStatus.INITIALIZING),
        (SandboxStatus.BUILDING, SandboxStatus.ERROR),
        (SandboxStatus.BUILDING, SandboxStatus.HIBERNATED),
        (SandboxStatus.BUILDING, SandboxStatus.DELETED),
        (SandboxStatus.READY, SandboxStatus.INITIALIZING),
        (SandboxStatus.READY, SandboxStatus.ERROR),
        (SandboxStatus.READY, SandboxStatus.HIBERNATED),
        (SandboxStatus.READY, SandboxStatus.DELETED),
        (SandboxStatus.HIBERNATED, SandboxStatus.INITIALIZING),
        (SandboxStatus.HIBERNATED, SandboxStatus.DELETED),
        (SandboxStatus.ERROR, SandboxStatus.INITIALIZING),
        (SandboxStatus.ERROR, SandboxStatus.HIBERNATED),
        (SandboxStatus.ERROR, SandboxStatus.DELETED),
    }
    if (current, target) not in allowed:
        raise RuntimeError(f"Illegal sandbox transition: {current} -> {target} ({reason})")
