"""Workload controller implementations.

KubernetesController is imported lazily so the local controller works
without cluster credentials.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sandbox.providers.local import LocalController

if TYPE_CHECKING:
    from config.schema import HitboxSettings
    from sandbox.provider import WorkloadController


def create_controller(settings: HitboxSettings) -> WorkloadController:
    """Factory: build the configured workload controller."""
    kwargs = {
        "chunk_size": settings.snapshot.chunk_size,
        "transfer_retries": settings.snapshot.transfer_retries,
    }
    if settings.controller == "local":
        return LocalController(settings.cluster, **kwargs)

    from sandbox.providers.kubernetes import KubernetesController

    return KubernetesController(settings.cluster, **kwargs)


__all__ = ["LocalController", "create_controller"]
