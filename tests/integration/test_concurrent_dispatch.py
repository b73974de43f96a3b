"""Two coordinators polling one store must never double-dispatch."""

import asyncio
from collections import Counter

import pytest

from agentboard import AgentboardConfig, Coordinator, WorkflowStatus
from agentboard.persistence import (
    InMemoryCoordinationRepository,
    SQLiteCoordinationRepository,
)

TENANT = "shared"
WORKFLOWS = 8


def _stores(kind, tmp_path):
    if kind == "inmemory":
        shared = InMemoryCoordinationRepository()
        return shared, shared
    path = tmp_path / "shared.db"
    return SQLiteCoordinationRepository(path), SQLiteCoordinationRepository(path)


def _coordinator(repository, templates, executions):
    coordinator = Coordinator(
        repository, templates=templates, config=AgentboardConfig(tenant_id=TENANT)
    )

    async def work(task):
        executions[task.coordination_id] += 1
        await asyncio.sleep(0)
        return {"by": task.agent_id}

    for agent_id in ("agent-a", "agent-b", "agent-c"):
        coordinator.register(agent_id, work)
    return coordinator


@pytest.mark.asyncio
@pytest.mark.parametrize("kind", ["inmemory", "sqlite"])
async def test_each_task_claimed_and_run_once(kind, tmp_path, templates):
    first_store, second_store = _stores(kind, tmp_path)
    executions = Counter()
    first = _coordinator(first_store, templates, executions)
    second = _coordinator(second_store, templates, executions)

    workflow_ids = [await first.start_workflow("fan-in") for _ in range(WORKFLOWS)]

    for _ in range(10):
        await asyncio.gather(first.run_iteration(), second.run_iteration())
        await asyncio.gather(first.dispatcher.drain(), second.dispatcher.drain())

    tasks = await first_store.list_tasks(TENANT)
    assert len(tasks) == WORKFLOWS * 3
    assert set(executions) == {t.coordination_id for t in tasks}
    assert set(executions.values()) == {1}

    claims = Counter(
        e.action_data["coordination_id"]
        for e in await first.audit.history("task_status_changed")
        if e.action_data["status"] == "assigned"
    )
    assert len(claims) == WORKFLOWS * 3
    assert set(claims.values()) == {1}

    finished = Counter(
        e.action_data["workflow_id"] for e in await first.audit.history("workflow_completed")
    )
    assert set(finished) == set(workflow_ids)
    assert set(finished.values()) == {1}

    for workflow_id in workflow_ids:
        snapshot = await second.get_workflow_status(workflow_id)
        assert snapshot.workflow.status is WorkflowStatus.COMPLETED

    await first_store.close()
    await second_store.close()
