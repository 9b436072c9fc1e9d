import asyncio

import pytest

from backend.web.services.project_service import (
    ActiveProjectConflictError,
    ProjectNotFoundError,
    ProjectNotRunningError,
    ProjectService,
)
from sandbox.artifacts import BuildResult, BuiltArtifact
from sandbox.errors import BuildFailedError, SandboxError, SnapshotError
from tests.fakes.sandbox import FakeSnapshots


class Recorder:
    def __init__(self):
        self.events = []

    async def __call__(self, event, data):
        self.events.append((event, data))

    def stages(self):
        return [d["stage"] for e, d in self.events if e == "stage"]


@pytest.fixture
def snapshots(storage):
    return FakeSnapshots(storage.snapshot_repo())


@pytest.fixture
def service(settings, storage, controller, snapshots, blob_store):
    return ProjectService(
        settings,
        storage.project_repo(),
        storage.conversation_repo(),
        controller,
        snapshots,
        blob_store,
    )


async def _create_ready(service, user="u1", name="Space Game"):
    row = service.create_project(user, name)
    await service.launch_stream(row, Recorder())
    return row


@pytest.mark.asyncio
async def test_create_brings_project_to_ready(service, controller):
    row = service.create_project("u1", "Space Game", game_type="2d")
    assert row.status == "initializing"
    assert row.workload_name == f"proj-{row.id}"

    emit = Recorder()
    await service.launch_stream(row, emit)

    # the log already shows the dev server, so no intermediate stage is reported
    assert emit.stages() == ["ready"]
    assert emit.events[-1][1]["previewUrl"] == row.preview_url
    assert service.get_owned("u1", row.id).status == "ready"
    assert controller.kinds("create") == [("create", row.id, "2d", False)]


@pytest.mark.asyncio
async def test_one_active_project_per_user(service):
    first = await _create_ready(service)
    with pytest.raises(ActiveProjectConflictError) as exc:
        service.create_project("u1", "Second")
    assert exc.value.detail()["activeProject"]["id"] == first.id
    # other users are unaffected
    service.create_project("u2", "Theirs")


@pytest.mark.asyncio
async def test_stop_then_open_restores_snapshot(service, controller, snapshots):
    row = await _create_ready(service)
    stopped = await service.stop("u1", row.id)
    assert stopped.status == "hibernated"
    assert snapshots.created == [(row.id, "auto-cleanup")]
    assert row.id not in controller.workloads
    # teardown still in progress when the project is reopened
    assert row.id in controller.terminating

    reopened = service.prepare_open("u1", row.id)
    emit = Recorder()
    await service.open_stream(reopened, emit)

    assert snapshots.restored == [row.id]
    assert ("delete", row.id, True) in controller.calls
    assert controller.kinds("create")[-1] == ("create", row.id, "3d", True)
    assert ("start_dev_server", row.id) in controller.calls
    assert emit.stages() == ["installing_deps", "ready"]
    assert emit.events[0][1]["message"] == "Restoring snapshot..."
    assert service.get_owned("u1", row.id).status == "ready"


@pytest.mark.asyncio
async def test_open_active_project_is_immediately_ready(service, controller):
    row = await _create_ready(service)
    creates = len(controller.kinds("create"))
    emit = Recorder()
    await service.open_stream(service.prepare_open("u1", row.id), emit)
    assert emit.stages() == ["ready"]
    assert len(controller.kinds("create")) == creates


@pytest.mark.asyncio
async def test_open_is_gated_by_other_active_project(service):
    row = await _create_ready(service)
    await service.stop("u1", row.id)
    await _create_ready(service, name="Other")
    with pytest.raises(ActiveProjectConflictError):
        service.prepare_open("u1", row.id)


@pytest.mark.asyncio
async def test_failed_launch_marks_error_and_open_recovers(service, controller):
    controller.fail_create = SandboxError("quota exceeded")
    row = service.create_project("u1", "Doomed")
    with pytest.raises(SandboxError):
        await service.launch_stream(row, Recorder())
    assert service.get_owned("u1", row.id).status == "error"

    # error projects do not hold the gate
    service.create_project("u1", "Next")


@pytest.mark.asyncio
async def test_restart_saves_then_restores(service, controller, snapshots):
    row = await _create_ready(service)
    emit = Recorder()
    await service.restart_stream(service.prepare_restart("u1", row.id), emit)

    assert emit.stages() == ["saving", "stopping", "installing_deps", "ready"]
    assert snapshots.created == [(row.id, "auto-restart")]
    assert snapshots.restored == [row.id]
    assert ("delete", row.id, True) in controller.calls
    assert service.get_owned("u1", row.id).status == "ready"


@pytest.mark.asyncio
async def test_restart_keeps_workload_when_save_fails(service, controller, snapshots):
    row = await _create_ready(service)
    snapshots.create_snapshot(row.id, "manual")
    snapshots.fail_create = True
    emit = Recorder()
    with pytest.raises(SnapshotError):
        await service.restart_stream(service.prepare_restart("u1", row.id), emit)

    assert emit.stages() == ["saving"]
    assert controller.kinds("delete") == []
    assert row.id in controller.workloads
    assert snapshots.restored == []
    assert service.get_owned("u1", row.id).status == "error"


@pytest.mark.asyncio
async def test_stop_keeps_workload_when_snapshot_fails(service, controller, snapshots):
    row = await _create_ready(service)
    snapshots.fail_create = True
    with pytest.raises(SnapshotError):
        await service.stop("u1", row.id)

    assert controller.kinds("delete") == []
    assert row.id in controller.workloads
    assert service.get_owned("u1", row.id).status == "ready"


@pytest.mark.asyncio
async def test_delete_soft_deletes_and_releases_gate(service, controller, storage):
    row = await _create_ready(service)
    await service.delete("u1", row.id)
    assert storage.project_repo().get(row.id, include_deleted=True).status == "deleted"
    with pytest.raises(ProjectNotFoundError):
        service.get_owned("u1", row.id)
    service.create_project("u1", "Fresh")


@pytest.mark.asyncio
async def test_delete_survives_controller_failure(service, controller):
    row = await _create_ready(service)
    controller.fail_delete = SandboxError("api unavailable")
    await service.delete("u1", row.id)
    with pytest.raises(ProjectNotFoundError):
        service.get_owned("u1", row.id)


@pytest.mark.asyncio
async def test_deploy_uploads_artifacts(service, controller, blob_store):
    row = await _create_ready(service)
    controller.artifacts = [
        BuiltArtifact("index.html", b"<html></html>", "text/html"),
        BuiltArtifact("assets/index.js", b"console.log(1)", "application/javascript"),
    ]
    emit = Recorder()
    await service.deploy_stream(service.require_running("u1", row.id), emit)

    assert emit.stages() == ["building", "build_complete", "copying", "files_copied", "uploading"]
    event, data = emit.events[-1]
    assert event == "complete"
    assert data["filesUploaded"] == 2
    assert data["deploymentUrl"] == f"https://cdn.example.test/deployments/{row.id}/dist/index.html"
    assert blob_store.objects[f"deployments/{row.id}/dist/assets/index.js"][1] == "application/javascript"
    fresh = service.get_owned("u1", row.id)
    assert fresh.build_status == "success"
    assert fresh.deployment_url == data["deploymentUrl"]


@pytest.mark.asyncio
async def test_failed_build_marks_build_failed(service, controller):
    row = await _create_ready(service)
    controller.build_result = BuildResult(success=False, output="error", reason="Build output reports error")
    with pytest.raises(BuildFailedError):
        await service.deploy_stream(service.require_running("u1", row.id), Recorder())
    assert service.get_owned("u1", row.id).build_status == "failed"


def test_deploy_requires_running_project(service):
    row = service.create_project("u1", "Booting")
    with pytest.raises(ProjectNotRunningError):
        service.require_running("u1", row.id)


@pytest.mark.asyncio
async def test_manual_snapshot_returns_row(service, snapshots):
    row = await _create_ready(service)
    data = await service.snapshot("u1", row.id)
    assert data["projectId"] == row.id
    assert snapshots.created == [(row.id, "manual")]


@pytest.mark.asyncio
async def test_read_file_is_scoped(service, controller):
    row = await _create_ready(service)
    controller.files[row.id] = {"/app/react-templete/src/main.js": "hi"}
    assert (await service.read_file("u1", row.id, "src/main.js"))["content"] == "hi"
    with pytest.raises(ValueError):
        await service.read_file("u1", row.id, "/etc/passwd")


@pytest.mark.asyncio
async def test_concurrent_lifecycle_calls_serialize(service):
    row = await _create_ready(service)
    await asyncio.gather(service.stop("u1", row.id), service.stop("u1", row.id))
    assert service.get_owned("u1", row.id).status == "hibernated"
