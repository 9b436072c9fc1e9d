"""Sandbox error taxonomy.

Not-found conditions during teardown and polling are handled where they
occur and never surface as these errors.
"""

from __future__ import annotations


class SandboxError(RuntimeError):
    """Base class for workload controller failures."""


class SandboxConflictError(SandboxError):
    """The platform already has a resource with the derived name."""


class SandboxNotFoundError(SandboxError):
    """No running sandbox instance for the project."""


class SandboxCommandError(SandboxError):
    """A command inside the sandbox exited non-zero."""

    def __init__(self, command: str, exit_code: int, output: str):
        self.command = command
        self.exit_code = exit_code
        self.output = output
        tail = output.strip()[-500:]
        super().__init__(f"Command failed with exit code {exit_code}: {command}\n{tail}")


class TransferError(SandboxError):
    """Chunked file transfer exhausted its retries."""


class SnapshotError(SandboxError):
    """Snapshot archive could not be created, validated or restored."""


class ReadinessTimeoutError(SandboxError):
    """Sandbox never reached the ready stage within the poll timeout."""


class BuildFailedError(SandboxError):
    """Project build output did not contain the success marker."""

    def __init__(self, message: str, output: str = ""):
        self.output = output
        super().__init__(message)


class CancelledRunError(RuntimeError):
    """A flow observed its cancel token and stopped."""
