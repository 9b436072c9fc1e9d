"""Configuration schema for Hitbox using Pydantic.

Nested config groups:
- cluster: workload naming, image, fixed sandbox paths, shell commands
- readiness: stage polling cadence and timeouts
- snapshot: archive transport and blob key layout
- orchestrator: task graph limits and feature flags
- blob / llm: external collaborator settings
- reaper / session: background cleanup and session cache TTL
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field, field_validator

HITBOX_HOME = Path.home() / ".hitbox"

DEFAULT_MODEL = "gemini-2.5-pro"

# ============================================================================
# Cluster
# ============================================================================


class ClusterConfig(BaseModel):
    """Kubernetes workload layout shared by every sandbox."""

    namespace: str = Field("default", description="Namespace for sandbox workloads")
    name_prefix: str = Field("proj-", description="Prefix for derived workload/service names")
    preview_domain: str = Field("projects.samosa.wtf", description="Wildcard domain routed to services")
    image: str = Field("node:22-alpine", description="Sandbox container image")
    container_name: str = "react-dev"
    dev_port: int = Field(5173, gt=0, lt=65536)
    service_port: int = Field(80, gt=0, lt=65536)
    template_repo: str = "https://github.com/pandeygsundaram/game-template.git"
    vcs_install_command: str = "apk add --no-cache git"
    app_root: str = "/app"
    project_dir: str = "/app/react-templete"
    example_dirs: dict[str, str] = Field(
        default_factory=lambda: {"2d": "/app/mario", "3d": "/app/3d-test-threejs"},
        description="Read-only reference directories keyed by game type",
    )
    install_command: str = "npm install"
    build_command: str = "npm run build"
    dev_command: str = "npm run dev -- --host 0.0.0.0 --port {port}"
    dev_start_marker: str = "/tmp/.hitbox-start-dev-server"
    exec_timeout_sec: int = Field(600, gt=0)
    delete_timeout_sec: int = Field(120, gt=0)
    kubeconfig: str | None = Field(None, description="Explicit kubeconfig path (in-cluster config first)")

    @field_validator("project_dir", "app_root")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/") or "/"


class ReadinessConfig(BaseModel):
    poll_interval_sec: float = Field(2.0, gt=0)
    timeout_sec: float = Field(300.0, gt=0)
    log_window_sec: int = Field(120, gt=0)
    tail_lines: int = Field(50, gt=0)


class SnapshotConfig(BaseModel):
    key_prefix: str = "project-snapshots"
    chunk_size: int = Field(100_000, gt=0, description="Base64 characters per exec chunk")
    transfer_retries: int = Field(3, ge=1)
    probe_retries: int = Field(3, ge=1)
    probe_interval_sec: float = Field(2.0, ge=0)
    exclude_dirs: list[str] = Field(default_factory=lambda: ["node_modules", ".git", "dist", "build"])


# ============================================================================
# Orchestrator
# ============================================================================


class OrchestratorConfig(BaseModel):
    """Task graph limits. Defaults mirror the production agent loop."""

    max_tasks: int = Field(10, gt=0)
    max_task_attempts: int = Field(3, gt=0)
    max_iterations: int = Field(50, gt=0)
    max_tool_iterations: int = Field(10, gt=0)
    max_fix_attempts: int = Field(2, ge=0)
    enable_verification: bool = True
    enable_auto_fix: bool = True
    enforce_path_containment: bool = True
    history_turns: int = Field(20, gt=0, description="Conversation turns read back as context")


# ============================================================================
# External collaborators
# ============================================================================


class BlobConfig(BaseModel):
    """S3-compatible object storage (AWS S3, Cloudflare R2, MinIO), or a local directory."""

    backend: str = Field("s3", description="Blob backend: s3 | filesystem")
    root_dir: Path = Field(default_factory=lambda: HITBOX_HOME / "blobs")
    bucket: str = "hitbox"
    endpoint_url: str | None = None
    region: str | None = None
    access_key_id: str | None = None
    secret_access_key: str | None = None
    public_url: str = Field("", description="Public base URL that serves deployment objects")
    deployment_prefix: str = "deployments"

    @field_validator("backend")
    @classmethod
    def known_backend(cls, v: str) -> str:
        if v not in {"s3", "filesystem"}:
            raise ValueError(f"Unknown blob backend: {v}")
        return v


class LLMConfig(BaseModel):
    model: str = Field(DEFAULT_MODEL, description="Model name passed to init_chat_model")
    model_provider: str | None = Field("google_genai", description="Explicit langchain provider")
    api_key: str | None = None
    temperature: float | None = Field(None, ge=0.0, le=2.0)


class ReaperConfig(BaseModel):
    enabled: bool = True
    interval_sec: float = Field(300.0, gt=0)
    inactivity_sec: float = Field(3600.0, gt=0)


class SessionConfig(BaseModel):
    ttl_sec: float = Field(3600.0, gt=0)


class HitboxSettings(BaseModel):
    """Root settings object."""

    cluster: ClusterConfig = Field(default_factory=ClusterConfig)
    readiness: ReadinessConfig = Field(default_factory=ReadinessConfig)
    snapshot: SnapshotConfig = Field(default_factory=SnapshotConfig)
    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)
    blob: BlobConfig = Field(default_factory=BlobConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    reaper: ReaperConfig = Field(default_factory=ReaperConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    controller: str = Field("kubernetes", description="Workload controller: kubernetes | local")
    db_path: Path = Field(default_factory=lambda: HITBOX_HOME / "hitbox.db")

    @field_validator("controller")
    @classmethod
    def known_controller(cls, v: str) -> str:
        if v not in {"kubernetes", "local"}:
            raise ValueError(f"Unknown workload controller: {v}")
        return v
