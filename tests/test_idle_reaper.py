import time
from types import SimpleNamespace

import pytest

from backend.web.services.idle_reaper import run_idle_reaper_once
from backend.web.services.project_service import ProjectService
from core.task.session_cache import SessionCache
from sandbox.errors import SandboxError
from tests.fakes.sandbox import FakeSnapshots


async def _discard(event, data):
    return None


@pytest.fixture
def snapshots(storage):
    return FakeSnapshots(storage.snapshot_repo())


@pytest.fixture
def services(settings, storage, controller, snapshots, blob_store):
    service = ProjectService(
        settings, storage.project_repo(), storage.conversation_repo(), controller, snapshots, blob_store
    )
    return SimpleNamespace(
        settings=settings,
        projects=storage.project_repo(),
        project_service=service,
        sessions=SessionCache(ttl_sec=10),
    )


async def _ready(services, user="u1"):
    row = services.project_service.create_project(user, "Game")
    await services.project_service.launch_stream(row, _discard)
    return services.projects.get(row.id)


@pytest.mark.asyncio
async def test_recent_projects_are_left_alone(services):
    row = await _ready(services)
    assert await run_idle_reaper_once(services) == 0
    assert services.projects.get(row.id).status == "ready"


@pytest.mark.asyncio
async def test_idle_projects_are_hibernated_with_snapshot(services, snapshots, controller):
    row = await _ready(services)
    later = row.last_activity_at + services.settings.reaper.inactivity_sec + 1
    assert await run_idle_reaper_once(services, now=later) == 1
    assert services.projects.get(row.id).status == "hibernated"
    assert snapshots.created == [(row.id, "auto-cleanup")]
    assert row.id not in controller.workloads


@pytest.mark.asyncio
async def test_project_touched_after_listing_is_skipped(services, snapshots):
    row = await _ready(services)
    later = row.last_activity_at + services.settings.reaper.inactivity_sec + 1
    service = services.project_service
    original = service.hibernate

    async def touch_first(r, snapshot_type, *, idle_before=None):
        services.projects.touch(r.id, at=later)
        return await original(r, snapshot_type, idle_before=idle_before)

    service.hibernate = touch_first
    assert await run_idle_reaper_once(services, now=later) == 0
    assert services.projects.get(row.id).status == "ready"
    assert snapshots.created == []


@pytest.mark.asyncio
async def test_one_failure_does_not_stop_the_sweep(services, controller):
    first = await _ready(services, user="u1")
    second = await _ready(services, user="u2")
    later = time.time() + services.settings.reaper.inactivity_sec + 1

    def delete_sandbox(project_id, wait_for_completion=False):
        if project_id == first.id:
            raise SandboxError("api unavailable")
        controller.workloads.pop(project_id, None)

    controller.delete_sandbox = delete_sandbox
    assert await run_idle_reaper_once(services, now=later) == 1
    assert services.projects.get(first.id).status == "ready"
    assert services.projects.get(second.id).status == "hibernated"


@pytest.mark.asyncio
async def test_failed_snapshot_keeps_the_workload(services, snapshots, controller):
    row = await _ready(services)
    later = row.last_activity_at + services.settings.reaper.inactivity_sec + 1
    snapshots.fail_create = True

    assert await run_idle_reaper_once(services, now=later) == 0
    assert services.projects.get(row.id).status == "ready"
    assert row.id in controller.workloads
    assert controller.kinds("delete") == []

    snapshots.fail_create = False
    assert await run_idle_reaper_once(services, now=later) == 1
    assert services.projects.get(row.id).status == "hibernated"
