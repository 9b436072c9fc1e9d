"""
Kubernetes workload controller.

One Deployment (single replica) and one Service per project, both named
``proj-<project_id>`` so the wildcard edge router needs no per-project
configuration. Exec and logs go through the pod matched by the
``project=<name>`` label.
"""

from __future__ import annotations

import logging
import time

from kubernetes import client
from kubernetes import config as kube_config
from kubernetes.client.rest import ApiException
from kubernetes.stream import stream as k8s_stream

from config.schema import ClusterConfig
from sandbox.errors import SandboxConflictError, SandboxError, SandboxNotFoundError
from sandbox.provider import ExecResult, InstanceStatus, WorkloadController

logger = logging.getLogger(__name__)

DELETE_POLL_INTERVAL_SEC = 1.0


class KubernetesController(WorkloadController):
    """
    Kubernetes sandbox controller.

    Notes:
    - Loads in-cluster config first, then kubeconfig.
    - REST and exec streaming use separate ApiClients; ``stream`` patches the
      client it is given.
    """

    name = "kubernetes"

    def __init__(
        self,
        config: ClusterConfig | None = None,
        *,
        chunk_size: int = 100_000,
        transfer_retries: int = 3,
        core_api: client.CoreV1Api | None = None,
        apps_api: client.AppsV1Api | None = None,
        stream_core_api: client.CoreV1Api | None = None,
    ) -> None:
        super().__init__(config, chunk_size=chunk_size, transfer_retries=transfer_retries)
        self.namespace = self.config.namespace
        if core_api is None or apps_api is None:
            self._load_kube_config()
        self._core_api = core_api or client.CoreV1Api(api_client=client.ApiClient())
        self._apps_api = apps_api or client.AppsV1Api(api_client=client.ApiClient())
        self._stream_core_api = stream_core_api or client.CoreV1Api(api_client=client.ApiClient())

    def _load_kube_config(self) -> None:
        try:
            kube_config.load_incluster_config()
            logger.info("Loaded in-cluster Kubernetes configuration")
        except kube_config.ConfigException:
            try:
                kube_config.load_kube_config(config_file=self.config.kubeconfig)
                logger.info("Loaded kubeconfig")
            except kube_config.ConfigException as e:
                raise SandboxError(f"Failed to load Kubernetes configuration: {e}") from e

    # ==================== Resource specs ====================

    def _deployment_spec(self, project_id: str, template: str | None, skip_auto_setup: bool) -> client.V1Deployment:
        cfg = self.config
        name = self.workload_name(project_id)
        labels = {"project": name}
        container = client.V1Container(
            name=cfg.container_name,
            image=cfg.image,
            ports=[client.V1ContainerPort(container_port=cfg.dev_port)],
            command=["/bin/sh", "-c"],
            args=[self.startup_script(skip_auto_setup)],
            env=[client.V1EnvVar(name="HITBOX_TEMPLATE", value=template or "")],
        )
        return client.V1Deployment(
            api_version="apps/v1",
            kind="Deployment",
            metadata=client.V1ObjectMeta(
                name=name,
                labels=labels,
                annotations={"hitbox/template": template or "", "hitbox/restore": str(skip_auto_setup).lower()},
            ),
            spec=client.V1DeploymentSpec(
                replicas=1,
                selector=client.V1LabelSelector(match_labels=labels),
                template=client.V1PodTemplateSpec(
                    metadata=client.V1ObjectMeta(labels=labels),
                    spec=client.V1PodSpec(containers=[container]),
                ),
            ),
        )

    def _service_spec(self, project_id: str) -> client.V1Service:
        name = self.workload_name(project_id)
        return client.V1Service(
            api_version="v1",
            kind="Service",
            metadata=client.V1ObjectMeta(name=name, labels={"project": name}),
            spec=client.V1ServiceSpec(
                selector={"project": name},
                ports=[client.V1ServicePort(port=self.config.service_port, target_port=self.config.dev_port)],
            ),
        )

    # ==================== Lifecycle ====================

    def create_sandbox(self, project_id: str, template: str | None = None, skip_auto_setup: bool = False) -> str:
        name = self.workload_name(project_id)
        try:
            self._apps_api.create_namespaced_deployment(
                namespace=self.namespace,
                body=self._deployment_spec(project_id, template, skip_auto_setup),
            )
        except ApiException as e:
            if e.status == 409:
                raise SandboxConflictError(f"Deployment {name} already exists") from e
            raise SandboxError(f"Failed to create deployment {name}: {e.reason}") from e

        try:
            self._core_api.create_namespaced_service(namespace=self.namespace, body=self._service_spec(project_id))
        except ApiException as e:
            logger.error("Service creation failed for %s, removing deployment: %s", name, e)
            try:
                self._delete_deployment(name)
            except SandboxError as cleanup_error:
                logger.warning("Compensating delete of %s failed: %s", name, cleanup_error)
            if e.status == 409:
                raise SandboxConflictError(f"Service {name} already exists") from e
            raise SandboxError(f"Failed to create service {name}: {e.reason}") from e

        logger.info("Created sandbox %s (skip_auto_setup=%s)", name, skip_auto_setup)
        return self.preview_url(project_id)

    def _delete_deployment(self, name: str) -> None:
        try:
            self._apps_api.delete_namespaced_deployment(
                name=name,
                namespace=self.namespace,
                body=client.V1DeleteOptions(propagation_policy="Foreground"),
            )
        except ApiException as e:
            if e.status != 404:
                raise SandboxError(f"Failed to delete deployment {name}: {e.reason}") from e

    def _delete_service(self, name: str) -> None:
        try:
            self._core_api.delete_namespaced_service(name=name, namespace=self.namespace)
        except ApiException as e:
            if e.status != 404:
                raise SandboxError(f"Failed to delete service {name}: {e.reason}") from e

    def delete_sandbox(self, project_id: str, wait_for_completion: bool = False) -> None:
        name = self.workload_name(project_id)
        self._delete_deployment(name)
        self._delete_service(name)
        logger.info("Deleted sandbox %s", name)
        if wait_for_completion:
            self._wait_for_teardown(project_id)

    def _wait_for_teardown(self, project_id: str) -> None:
        deadline = time.monotonic() + self.config.delete_timeout_sec
        name = self.workload_name(project_id)
        while time.monotonic() < deadline:
            pods = self._list_pods(project_id)
            deployment_gone = False
            try:
                self._apps_api.read_namespaced_deployment(name=name, namespace=self.namespace)
            except ApiException as e:
                if e.status != 404:
                    raise SandboxError(f"Failed to read deployment {name}: {e.reason}") from e
                deployment_gone = True
            if not pods and deployment_gone:
                return
            time.sleep(DELETE_POLL_INTERVAL_SEC)
        raise SandboxError(f"Timed out waiting for {name} to terminate")

    # ==================== Status ====================

    def _list_pods(self, project_id: str) -> list[client.V1Pod]:
        try:
            pods = self._core_api.list_namespaced_pod(
                namespace=self.namespace,
                label_selector=self.label_selector(project_id),
            )
        except ApiException as e:
            if e.status == 404:
                return []
            raise SandboxError(f"Failed to list pods: {e.reason}") from e
        return list(pods.items or [])

    def _live_pod(self, project_id: str) -> client.V1Pod | None:
        for pod in self._list_pods(project_id):
            if pod.metadata.deletion_timestamp is None:
                return pod
        return None

    def get_instance_status(self, project_id: str) -> InstanceStatus | None:
        pod = self._live_pod(project_id)
        if pod is None:
            return None
        phase = pod.status.phase or "Unknown"
        container_state = "unknown"
        ready = False
        statuses = pod.status.container_statuses or []
        if statuses:
            cs = statuses[0]
            ready = bool(cs.ready)
            if cs.state.running:
                container_state = "running"
            elif cs.state.waiting:
                container_state = cs.state.waiting.reason or "waiting"
            elif cs.state.terminated:
                container_state = "terminated"
        return InstanceStatus(phase=phase, container_state=container_state, ready=ready)

    def get_logs(self, project_id: str, window_seconds: int, tail_lines: int = 50) -> str:
        try:
            pod = self._live_pod(project_id)
            if pod is None:
                return ""
            return self._core_api.read_namespaced_pod_log(
                name=pod.metadata.name,
                namespace=self.namespace,
                container=self.config.container_name,
                since_seconds=window_seconds,
                tail_lines=tail_lines,
            ) or ""
        except Exception as e:
            # @@@logs-best-effort - logs only feed stage heuristics
            logger.debug("Log read failed for %s: %s", project_id, e)
            return ""

    # ==================== Exec ====================

    def _running_pod_name(self, project_id: str) -> str:
        for pod in self._list_pods(project_id):
            if pod.metadata.deletion_timestamp is None and pod.status.phase == "Running":
                return pod.metadata.name
        raise SandboxNotFoundError(f"No running pod for project {project_id}")

    def exec(self, project_id: str, argv: list[str], timeout: float | None = None) -> ExecResult:
        pod_name = self._running_pod_name(project_id)
        timeout = timeout or self.config.exec_timeout_sec
        try:
            ws_client = k8s_stream(
                self._stream_core_api.connect_get_namespaced_pod_exec,
                name=pod_name,
                namespace=self.namespace,
                container=self.config.container_name,
                command=argv,
                stderr=True,
                stdin=False,
                stdout=True,
                tty=False,
                _preload_content=False,
            )
        except ApiException as e:
            if e.status == 404:
                raise SandboxNotFoundError(f"Pod {pod_name} disappeared") from e
            raise SandboxError(f"Exec failed in {pod_name}: {e.reason}") from e

        stdout_parts: list[str] = []
        stderr_parts: list[str] = []
        deadline = time.monotonic() + timeout
        try:
            while ws_client.is_open():
                if time.monotonic() > deadline:
                    raise SandboxError(f"Exec timed out after {timeout}s in {pod_name}: {argv[0]}")
                ws_client.update(timeout=1)
                if ws_client.peek_stdout():
                    stdout_parts.append(ws_client.read_stdout())
                if ws_client.peek_stderr():
                    stderr_parts.append(ws_client.read_stderr())
            stdout_parts.append(ws_client.read_stdout() or "")
            stderr_parts.append(ws_client.read_stderr() or "")
            exit_code = ws_client.returncode
        finally:
            ws_client.close()

        stderr = "".join(stderr_parts)
        return ExecResult(
            output="".join(stdout_parts),
            exit_code=exit_code if exit_code is not None else 0,
            error=stderr or None,
        )
