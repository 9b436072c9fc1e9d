"""Deterministic cluster names and URLs derived from a project id.

The edge router maps ``<workload-name>.<preview-domain>`` to the service of
the same name, so these must stay pure functions of the project id.
"""

from __future__ import annotations

DEFAULT_PREFIX = "proj-"
DEFAULT_PREVIEW_DOMAIN = "projects.samosa.wtf"


def derive_workload_name(project_id: str, prefix: str = DEFAULT_PREFIX) -> str:
    if not project_id:
        raise ValueError("project_id is required")
    return f"{prefix}{project_id}"


def derive_preview_url(
    project_id: str,
    domain: str = DEFAULT_PREVIEW_DOMAIN,
    prefix: str = DEFAULT_PREFIX,
) -> str:
    return f"https://{derive_workload_name(project_id, prefix)}.{domain}"


def derive_label_selector(project_id: str, prefix: str = DEFAULT_PREFIX) -> str:
    return f"project={derive_workload_name(project_id, prefix)}"
