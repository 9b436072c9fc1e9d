import pytest

from config.schema import ReadinessConfig
from sandbox.cancel import CancelToken
from sandbox.errors import CancelledRunError, ReadinessTimeoutError
from sandbox.lifecycle import ReadinessStage
from sandbox.provider import InstanceStatus
from sandbox.readiness import ReadinessPoller, classify
from tests.fakes.sandbox import FakeController

CREATING = InstanceStatus(phase="Pending", container_state="ContainerCreating", ready=False)
RUNNING = InstanceStatus(phase="Running", container_state="running", ready=True)


class ScriptedController(FakeController):
    """Replays (status, log) pairs one per poll; the last pair repeats."""

    def __init__(self, script):
        super().__init__()
        self.script = list(script)
        self.polls = 0

    def _current(self):
        return self.script[min(self.polls, len(self.script) - 1)]

    def get_instance_status(self, project_id):
        status = self._current()[0]
        self.polls += 1
        return status

    def get_logs(self, project_id, window_seconds, tail_lines=50):
        return self.script[min(self.polls - 1, len(self.script) - 1)][1]


class Recorder:
    def __init__(self):
        self.events = []

    async def __call__(self, event, data):
        self.events.append((event, data))

    def stages(self):
        return [d["stage"] for e, d in self.events if e == "stage"]


FAST = ReadinessConfig(poll_interval_sec=0.01, timeout_sec=2.0)


class TestClassify:
    def test_most_advanced_marker_wins(self):
        log = "Installing git...\nCloning repo...\nInstalling dependencies..."
        assert classify(log) == ReadinessStage.INSTALLING_DEPS

    def test_dev_server_markers(self):
        assert classify("  VITE v5.0.0  ready in 300 ms") == ReadinessStage.READY
        assert classify("  ➜  Local:   http://localhost:5173/") == ReadinessStage.READY

    def test_no_regression(self):
        log = "Cloning repo..."
        assert classify(log, ReadinessStage.INSTALLING_DEPS) is None
        assert classify(log, ReadinessStage.CLONING_REPO) is None

    def test_unknown_text(self):
        assert classify("hello world") is None


@pytest.mark.asyncio
async def test_poller_emits_each_stage_once_in_order():
    controller = ScriptedController(
        [
            (None, ""),
            (CREATING, ""),
            (RUNNING, "Installing git..."),
            (RUNNING, "Installing git...\nCloning repo..."),
            (RUNNING, "Installing git...\nCloning repo..."),
            (RUNNING, "Cloning repo...\nInstalling dependencies...\nStarting dev server..."),
        ]
    )
    emit = Recorder()
    order = []

    async def on_ready():
        order.append("persisted")

    poller = ReadinessPoller(controller, FAST)
    await poller.wait_for_ready("p1", emit, preview_url="https://proj-p1.example", on_ready=on_ready)

    assert emit.stages() == ["scheduling", "pulling_image", "starting", "cloning_repo", "ready"]
    event, data = emit.events[-1]
    assert data["previewUrl"] == "https://proj-p1.example"
    assert data["projectId"] == "p1"
    assert order == ["persisted"]


@pytest.mark.asyncio
async def test_ready_emitted_after_on_ready():
    controller = ScriptedController([(RUNNING, "Starting dev server...")])
    emit = Recorder()

    async def on_ready():
        assert emit.stages() == []

    poller = ReadinessPoller(controller, FAST)
    await poller.wait_for_ready("p1", emit, preview_url="u", on_ready=on_ready)
    assert emit.stages() == ["ready"]


@pytest.mark.asyncio
async def test_timeout_raises():
    controller = ScriptedController([(RUNNING, "Installing git...")])
    poller = ReadinessPoller(controller, ReadinessConfig(poll_interval_sec=0.01, timeout_sec=0.05))
    with pytest.raises(ReadinessTimeoutError, match="last stage: starting"):
        await poller.wait_for_ready("p1", Recorder(), preview_url="u")


@pytest.mark.asyncio
async def test_cancel_stops_polling():
    controller = ScriptedController([(None, "")])
    cancel = CancelToken()
    cancel.cancel("client disconnected")
    poller = ReadinessPoller(controller, FAST, cancel=cancel)
    with pytest.raises(CancelledRunError):
        await poller.wait_for_ready("p1", Recorder(), preview_url="u")


@pytest.mark.asyncio
async def test_advance_is_monotonic():
    poller = ReadinessPoller(FakeController(), FAST)
    emit = Recorder()
    assert await poller.advance("p1", ReadinessStage.INSTALLING_DEPS, emit, "Restoring snapshot...")
    assert not await poller.advance("p1", ReadinessStage.CLONING_REPO, emit)
    assert emit.events == [
        ("stage", {"stage": "installing_deps", "message": "Restoring snapshot...", "projectId": "p1"})
    ]


@pytest.mark.asyncio
async def test_wait_for_container_ignores_logs():
    controller = ScriptedController([(None, ""), (CREATING, ""), (RUNNING, "Starting dev server...")])
    emit = Recorder()
    poller = ReadinessPoller(controller, FAST)
    status = await poller.wait_for_container("p1", emit)
    assert status.running
    assert emit.stages() == ["scheduling", "pulling_image"]
