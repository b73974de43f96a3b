"""End-to-end coordination scenarios driven through the coordinator."""

import asyncio

import pytest

from agentboard import (
    AgentboardConfig,
    BaseAgent,
    Coordinator,
    TaskStatus,
    TemplateRegistry,
    WorkflowStatus,
)
from agentboard.errors import UnknownWorkflowTypeError, WorkflowNotFoundError
from agentboard.events import (
    COORDINATOR_STARTED,
    COORDINATOR_STOPPED,
    WORKFLOW_COMPLETED,
    WORKFLOW_STARTED,
)
from agentboard.persistence import SQLiteCoordinationRepository
from agentboard.persistence.models import TaskRecord, WorkflowRecord


class StepAgent(BaseAgent):
    """Records the order in which tasks run and optionally fails."""

    def __init__(self, agent_id, journal, fail=False):
        super().__init__(agent_id)
        self.journal = journal
        self.fail = fail

    async def perform_task(self, task_type, task_data, task):
        self.journal.append(self.agent_id)
        if self.fail:
            raise RuntimeError(f"{task_type} failed")
        return {"done_by": self.agent_id}


async def _run_until_quiet(coordinator, passes=10):
    for _ in range(passes):
        result = await coordinator.run_iteration()
        await coordinator.dispatcher.drain()
        if not result.dispatched and not result.finished:
            return


@pytest.mark.asyncio
async def test_fan_in_runs_dependent_last(coordinator):
    journal = []
    for agent_id in ("agent-a", "agent-b", "agent-c"):
        coordinator.register_agent(StepAgent(agent_id, journal))
    completions = []
    coordinator.events.subscribe(WORKFLOW_COMPLETED, completions.append)

    workflow_id = await coordinator.start_workflow("fan-in", {"release": "1.2"})
    await _run_until_quiet(coordinator)

    assert journal[-1] == "agent-c"
    assert sorted(journal[:2]) == ["agent-a", "agent-b"]

    snapshot = await coordinator.get_workflow_status(workflow_id)
    assert snapshot.workflow.status is WorkflowStatus.COMPLETED
    assert snapshot.workflow.completed_at is not None
    assert all(t.status is TaskStatus.COMPLETED for t in snapshot.tasks)

    by_agent = {t.agent_id: t for t in snapshot.tasks}
    assert by_agent["agent-c"].updated_at >= max(
        by_agent["agent-a"].completed_at, by_agent["agent-b"].completed_at
    )
    assert [e.data["workflow_id"] for e in completions] == [workflow_id]

    completed_entries = await coordinator.audit.history("workflow_completed")
    assert [e.action_data["status"] for e in completed_entries] == ["completed"]


@pytest.mark.asyncio
async def test_failed_dependency_blocks_dependent(coordinator):
    journal = []
    coordinator.register_agent(StepAgent("agent-a", journal, fail=True))
    coordinator.register_agent(StepAgent("agent-b", journal))

    workflow_id = await coordinator.start_workflow("chain")
    await _run_until_quiet(coordinator)
    await _run_until_quiet(coordinator)

    snapshot = await coordinator.get_workflow_status(workflow_id)
    statuses = {t.agent_id: t.status for t in snapshot.tasks}
    assert statuses == {"agent-a": TaskStatus.FAILED, "agent-b": TaskStatus.PENDING}
    # a pending task keeps the workflow open
    assert snapshot.workflow.status is WorkflowStatus.RUNNING
    assert journal == ["agent-a"]

    report = await coordinator.health_check()
    assert report.healthy
    assert report.blocked_tasks == 1


@pytest.mark.asyncio
async def test_any_failure_fails_workflow(repository):
    templates = TemplateRegistry(include_builtin=True)
    coordinator = Coordinator(
        repository, templates=templates, config=AgentboardConfig(tenant_id="qa")
    )
    journal = []
    coordinator.register_agent(StepAgent("code-generator", journal))
    coordinator.register_agent(StepAgent("test-runner", journal, fail=True))
    coordinator.register_agent(StepAgent("security-scanner", journal))

    workflow_id = await coordinator.start_workflow("quality-check")
    await _run_until_quiet(coordinator)

    snapshot = await coordinator.get_workflow_status(workflow_id)
    assert snapshot.workflow.status is WorkflowStatus.FAILED
    assert sorted(journal) == ["code-generator", "security-scanner", "test-runner"]
    failed = [t for t in snapshot.tasks if t.status is TaskStatus.FAILED]
    assert [t.agent_id for t in failed] == ["test-runner"]
    assert failed[0].error_data["error"] == "run_quality_tests failed"


@pytest.mark.asyncio
async def test_empty_workflow_completes(coordinator):
    workflow_id = await coordinator.start_workflow("not-a-template")
    snapshot = await coordinator.get_workflow_status(workflow_id)
    assert snapshot.tasks == []

    result = await coordinator.run_iteration()
    assert [wf.workflow_id for wf in result.finished] == [workflow_id]
    snapshot = await coordinator.get_workflow_status(workflow_id)
    assert snapshot.workflow.status is WorkflowStatus.COMPLETED


@pytest.mark.asyncio
async def test_strict_templates_reject_unknown_type(repository):
    coordinator = Coordinator(
        repository,
        templates=TemplateRegistry(strict=True),
        config=AgentboardConfig(tenant_id="strict"),
    )
    with pytest.raises(UnknownWorkflowTypeError):
        await coordinator.start_workflow("not-a-template")
    assert await repository.list_workflows("strict") == []


@pytest.mark.asyncio
async def test_unknown_workflow_id(coordinator):
    with pytest.raises(WorkflowNotFoundError):
        await coordinator.get_workflow_status("missing")


@pytest.mark.asyncio
async def test_background_loop_drives_workflow(coordinator):
    journal = []
    for agent_id in ("agent-a", "agent-b", "agent-c"):
        coordinator.register_agent(StepAgent(agent_id, journal))
    seen = []
    for event_type in (WORKFLOW_STARTED, WORKFLOW_COMPLETED, COORDINATOR_STARTED, COORDINATOR_STOPPED):
        coordinator.events.subscribe(event_type, lambda e: seen.append(e.event_type))

    async with coordinator:
        assert coordinator.is_running
        workflow_id = await coordinator.start_workflow("fan-in")
        for _ in range(200):
            snapshot = await coordinator.get_workflow_status(workflow_id)
            if snapshot.workflow.status is not WorkflowStatus.RUNNING:
                break
            await asyncio.sleep(0.01)
    await coordinator.dispatcher.drain()

    assert not coordinator.is_running
    assert snapshot.workflow.status is WorkflowStatus.COMPLETED
    assert seen[0] == COORDINATOR_STARTED
    assert seen[-1] == COORDINATOR_STOPPED
    assert WORKFLOW_COMPLETED in seen


@pytest.mark.asyncio
async def test_loop_survives_iteration_errors(coordinator, monkeypatch):
    errors = []
    coordinator.events.subscribe("coordination_error", errors.append)
    calls = 0

    async def flaky_iteration():
        nonlocal calls
        calls += 1
        if calls == 1:
            raise RuntimeError("store hiccup")

    monkeypatch.setattr(coordinator, "run_iteration", flaky_iteration)
    await coordinator.start()
    for _ in range(100):
        if calls >= 2:
            break
        await asyncio.sleep(0.01)
    await coordinator.stop()

    assert calls >= 2
    assert errors[0].data == {"error": "store hiccup", "exception_type": "RuntimeError"}


@pytest.mark.asyncio
async def test_restarted_coordinator_resumes(tmp_path, templates):
    path = tmp_path / "board.db"
    config = AgentboardConfig(tenant_id="resume", polling_interval=0.01)
    journal = []

    first = Coordinator(SQLiteCoordinationRepository(path), templates=templates, config=config)
    first.register_agent(StepAgent("agent-a", journal))
    workflow_id = await first.start_workflow("chain")
    # one pass only: agent-b has no agent here and must stay pending
    await first.run_iteration()
    await first.dispatcher.drain()
    await first.close()

    second = Coordinator(SQLiteCoordinationRepository(path), templates=templates, config=config)
    second.register_agent(StepAgent("agent-a", journal))
    second.register_agent(StepAgent("agent-b", journal))
    await _run_until_quiet(second)

    snapshot = await second.get_workflow_status(workflow_id)
    assert snapshot.workflow.status is WorkflowStatus.COMPLETED
    assert journal == ["agent-a", "agent-b"]
    await second.close()


class GatedAgent(BaseAgent):
    """Holds its task in ``running`` until the gate opens."""

    def __init__(self, agent_id):
        super().__init__(agent_id)
        self.gate = asyncio.Event()

    async def perform_task(self, task_type, task_data, task):
        await self.gate.wait()
        return {"released": True}


async def _wait_for_status(coordinator, workflow_id, agent_id, status):
    for _ in range(200):
        snapshot = await coordinator.get_workflow_status(workflow_id)
        by_agent = {t.agent_id: t for t in snapshot.tasks}
        if by_agent[agent_id].status is status:
            return by_agent
        await asyncio.sleep(0.01)
    raise AssertionError(f"{agent_id} never reached {status}")


@pytest.mark.asyncio
async def test_iteration_does_not_wait_for_execution(coordinator):
    agent = coordinator.register_agent(GatedAgent("agent-a"))
    workflow_id = await coordinator.start_workflow("chain")

    result = await asyncio.wait_for(coordinator.run_iteration(), timeout=1)
    assert [t.agent_id for t in result.dispatched] == ["agent-a"]
    await _wait_for_status(coordinator, workflow_id, "agent-a", TaskStatus.RUNNING)
    assert coordinator.dispatcher.inflight == 1

    # stopping halts polling but leaves the execution alone
    await coordinator.start()
    await coordinator.stop()
    await _wait_for_status(coordinator, workflow_id, "agent-a", TaskStatus.RUNNING)
    assert coordinator.dispatcher.inflight == 1

    agent.gate.set()
    await coordinator.dispatcher.drain()
    by_agent = await _wait_for_status(coordinator, workflow_id, "agent-a", TaskStatus.COMPLETED)
    assert by_agent["agent-a"].result_data == {"released": True}
    assert by_agent["agent-b"].status is TaskStatus.PENDING


@pytest.mark.asyncio
async def test_agent_registered_after_start_is_started(coordinator):
    await coordinator.start()
    agent = coordinator.register_agent(StepAgent("agent-a", []))
    try:
        for _ in range(200):
            if agent.is_running:
                break
            await asyncio.sleep(0.01)
        assert agent.is_running
    finally:
        await coordinator.stop()

    assert not agent.is_running
    started = await coordinator.audit.history("agent_started")
    assert [e.agent_id for e in started] == ["agent-a"]


@pytest.mark.asyncio
async def test_health_counts_come_from_one_pending_read(coordinator, monkeypatch):
    await coordinator.start_workflow("chain")
    repository = coordinator.repository
    original = repository.list_tasks
    late_arrivals = []

    async def list_then_insert(tenant_id, **filters):
        tasks = await original(tenant_id, **filters)
        if filters.get("status") is TaskStatus.PENDING and not late_arrivals:
            wf = WorkflowRecord(tenant_id=tenant_id, workflow_type="late")
            late = TaskRecord(
                workflow_id=wf.workflow_id, tenant_id=tenant_id, agent_id="agent-x", task_type="w"
            )
            late_arrivals.append(late)
            await repository.create_workflow(wf, [late])
        return tasks

    monkeypatch.setattr(repository, "list_tasks", list_then_insert)
    report = await coordinator.health_check()

    assert late_arrivals
    assert report.pending_tasks == 2
    # agent-b waits on agent-a
    assert report.blocked_tasks == 1
