import pytest
from langchain_core.messages import AIMessage

from config.schema import OrchestratorConfig
from core.task.orchestrator import DEADLOCK_ERROR, ITERATION_LIMIT_ERROR, TaskOrchestrator
from core.task.types import TaskStatus
from sandbox.cancel import CancelToken
from sandbox.errors import CancelledRunError
from tests.fakes.chat_model import ScriptedChatModel, plan_message, tool_call_message, verdict_message


class Recorder:
    def __init__(self):
        self.events = []

    async def __call__(self, event, data):
        self.events.append((event, data))

    def names(self):
        return [e for e, _ in self.events]

    def of(self, name):
        return [d for e, d in self.events if e == name]


def _orchestrator(model, controller, prompts, emit, config=None, cancel=None):
    controller.create_sandbox("p1")
    return TaskOrchestrator.for_project(
        model, controller, "p1", prompts, config=config or OrchestratorConfig(), emit=emit, cancel=cancel
    )


@pytest.mark.asyncio
async def test_dependent_tasks_run_in_order_with_tool_events(controller, prompts):
    model = ScriptedChatModel(
        planner=[
            plan_message(
                {"id": "t1", "description": "Create the scene", "dependencies": []},
                {"id": "t2", "description": "Add the player", "dependencies": ["t1"]},
            )
        ],
        executor=[
            tool_call_message("write_file", {"path": "src/scene.js", "content": "export const scene = 1;"}),
            AIMessage(content="Scene created"),
            AIMessage(content="Player added"),
        ],
        verifier=[verdict_message(True), verdict_message(True)],
    )
    emit = Recorder()
    store = await _orchestrator(model, controller, prompts, emit).run("Build a game")

    assert emit.names() == [
        "status", "plan",
        "task_start", "tool", "message", "task_executed", "status", "task_verified", "task_completed",
        "task_start", "message", "task_executed", "status", "task_verified", "task_completed",
        "complete",
    ]
    assert emit.of("plan")[0]["totalTasks"] == 2
    assert emit.of("message")[0] == {"text": "Scene created"}
    assert emit.of("tool")[0] == {
        "name": "write_file",
        "input": {"path": "src/scene.js", "content": "export const scene = 1;"},
    }
    assert controller.files["p1"]["/app/react-templete/src/scene.js"] == "export const scene = 1;"
    assert emit.of("complete")[0]["summary"]["completed"] == 2
    assert store.get("t1").result == "Scene created"
    assert store.get("t1").tool_calls[0].result.startswith("Successfully wrote")


@pytest.mark.asyncio
async def test_failed_verification_is_fixed(controller, prompts):
    model = ScriptedChatModel(
        planner=[plan_message({"id": "t1", "description": "Add a jump"})],
        executor=[AIMessage(content="Jump added")],
        verifier=[verdict_message(False, "jump key not bound", 80)],
        fixer=[AIMessage(content="Bound space to jump")],
    )
    emit = Recorder()
    store = await _orchestrator(model, controller, prompts, emit).run("Let the player jump")

    assert "task_fixed" in emit.names()
    verified = emit.of("task_verified")[0]
    assert verified["isCorrect"] is False
    assert verified["confidence"] == 80
    assert store.get("t1").status == TaskStatus.COMPLETED
    assert store.get("t1").result == "Bound space to jump"
    assert "jump key not bound" in model.prompts["fixer"][0]


@pytest.mark.asyncio
async def test_retries_are_bounded(controller, prompts):
    model = ScriptedChatModel(
        planner=[plan_message({"id": "t1", "description": "Flaky"})],
        executor=[RuntimeError("model overloaded")] * 3,
    )
    emit = Recorder()
    store = await _orchestrator(model, controller, prompts, emit).run("Do it")

    assert [d["willRetry"] for d in emit.of("task_failed")] == [True, True, False]
    assert [d["attempt"] for d in emit.of("task_start")] == [1, 2, 3]
    task = store.get("t1")
    assert task.status == TaskStatus.FAILED
    assert task.attempts == 3
    complete = emit.of("complete")[0]
    assert complete["failedTasks"] == [{"id": "t1", "description": "Flaky", "error": "model overloaded"}]


@pytest.mark.asyncio
async def test_unsatisfiable_dependencies_fail_as_deadlock(controller, prompts):
    model = ScriptedChatModel(
        planner=[plan_message({"id": "t1", "description": "Needs ghost", "dependencies": ["ghost"]})],
    )
    emit = Recorder()
    store = await _orchestrator(model, controller, prompts, emit).run("x")

    assert emit.names() == ["status", "plan", "task_failed", "complete"]
    assert store.get("t1").error == DEADLOCK_ERROR
    assert emit.of("task_failed")[0]["willRetry"] is False


@pytest.mark.asyncio
async def test_failed_task_is_retried_before_its_dependents(controller, prompts):
    model = ScriptedChatModel(
        planner=[
            plan_message(
                {"id": "t1", "description": "Create the scene"},
                {"id": "t2", "description": "Add enemies", "dependencies": ["t1"]},
                {"id": "t3", "description": "Add a score counter", "dependencies": ["t2"]},
            )
        ],
        executor=[
            AIMessage(content="Scene created"),
            RuntimeError("request timed out"),
            AIMessage(content="Enemies added"),
            AIMessage(content="Score counter added"),
        ],
    )
    emit = Recorder()
    config = OrchestratorConfig(enable_verification=False)
    store = await _orchestrator(model, controller, prompts, emit, config=config).run("Build a shooter")

    starts = [(d["taskId"], d["attempt"]) for d in emit.of("task_start")]
    assert starts == [("t1", 1), ("t2", 1), ("t2", 2), ("t3", 1)]
    assert emit.of("task_failed") == [
        {"taskId": "t2", "description": "Add enemies", "error": "request timed out", "willRetry": True}
    ]
    assert {t.status for t in store.all()} == {TaskStatus.COMPLETED}
    assert store.get("t2").attempts == 2
    assert emit.of("complete")[0]["summary"]["completed"] == 3


@pytest.mark.asyncio
async def test_dependency_cycle_fails_as_deadlock(controller, prompts):
    model = ScriptedChatModel(
        planner=[
            plan_message(
                {"id": "t1", "description": "Chicken", "dependencies": ["t2"]},
                {"id": "t2", "description": "Egg", "dependencies": ["t1"]},
            )
        ],
    )
    emit = Recorder()
    store = await _orchestrator(model, controller, prompts, emit).run("x")

    assert emit.names() == ["status", "plan", "task_failed", "task_failed", "complete"]
    assert {d["taskId"] for d in emit.of("task_failed")} == {"t1", "t2"}
    for task_id in ("t1", "t2"):
        assert store.get(task_id).status == TaskStatus.FAILED
        assert store.get(task_id).error == DEADLOCK_ERROR
    assert not model.prompts["executor"]


@pytest.mark.asyncio
async def test_iteration_limit_fails_remaining(controller, prompts):
    model = ScriptedChatModel(
        planner=[plan_message({"id": "a", "description": "A"}, {"id": "b", "description": "B"})],
        executor=[AIMessage(content="ok")],
    )
    emit = Recorder()
    config = OrchestratorConfig(max_iterations=1, enable_verification=False)
    store = await _orchestrator(model, controller, prompts, emit, config=config).run("x")

    assert store.get("a").status == TaskStatus.COMPLETED
    assert store.get("b").error == ITERATION_LIMIT_ERROR
    assert emit.names()[-1] == "complete"


@pytest.mark.asyncio
async def test_verifier_failure_counts_as_success(controller, prompts):
    model = ScriptedChatModel(
        planner=[plan_message({"id": "t1", "description": "A"})],
        executor=[AIMessage(content="done")],
        verifier=[RuntimeError("bad gateway")],
    )
    emit = Recorder()
    store = await _orchestrator(model, controller, prompts, emit).run("x")

    assert emit.of("task_verified")[0]["confidence"] == 30
    assert store.get("t1").status == TaskStatus.COMPLETED


@pytest.mark.asyncio
async def test_unknown_tool_is_reported_to_model(controller, prompts):
    model = ScriptedChatModel(
        planner=[plan_message({"id": "t1", "description": "A"})],
        executor=[tool_call_message("delete_everything", {}), AIMessage(content="gave up on that")],
    )
    emit = Recorder()
    config = OrchestratorConfig(enable_verification=False)
    store = await _orchestrator(model, controller, prompts, emit, config=config).run("x")

    assert store.get("t1").tool_calls[0].result == "Error: Tool 'delete_everything' not found"


@pytest.mark.asyncio
async def test_cancellation_stops_before_next_tool(controller, prompts):
    cancel = CancelToken()
    model = ScriptedChatModel(
        planner=[plan_message({"id": "t1", "description": "A"}, {"id": "t2", "description": "B"})],
        executor=[tool_call_message("run_build", {})],
    )

    def cancel_on_executor(role, messages):
        if role == "executor":
            cancel.cancel("client disconnected")

    model.hook = cancel_on_executor
    emit = Recorder()
    orchestrator = _orchestrator(model, controller, prompts, emit, cancel=cancel)

    with pytest.raises(CancelledRunError):
        await orchestrator.run("x")

    assert "complete" not in emit.names()
    assert "tool" not in emit.names()
    assert not controller.kinds("build")
    assert {t.status for t in orchestrator.store.all()} == {TaskStatus.FAILED}
    assert orchestrator.store.get("t2").error == "Cancelled"
