from agentboard.completion import final_status
from agentboard.dependencies import dependencies_satisfied
from agentboard.persistence.models import TaskRecord, utcnow
from agentboard.states import TaskStatus, WorkflowStatus


def _task(agent_id, status=TaskStatus.PENDING, task_type="work"):
    extra = {}
    if status is TaskStatus.COMPLETED:
        extra = {"result_data": {}, "completed_at": utcnow()}
    elif status is TaskStatus.FAILED:
        extra = {"error_data": {"error": "boom"}, "completed_at": utcnow()}
    return TaskRecord(
        workflow_id="wf",
        tenant_id="t",
        agent_id=agent_id,
        task_type=task_type,
        status=status,
        **extra,
    )


def test_empty_dependencies_are_satisfied():
    assert dependencies_satisfied([], [])
    assert dependencies_satisfied([], [_task("a", TaskStatus.FAILED)])


def test_every_dependency_needs_a_completed_task():
    siblings = [_task("a", TaskStatus.COMPLETED), _task("b", TaskStatus.RUNNING)]
    assert dependencies_satisfied(["a"], siblings)
    assert not dependencies_satisfied(["a", "b"], siblings)
    assert not dependencies_satisfied(["missing"], siblings)


def test_any_completed_task_of_the_agent_counts():
    siblings = [
        _task("a", TaskStatus.FAILED, task_type="first"),
        _task("a", TaskStatus.COMPLETED, task_type="second"),
    ]
    assert dependencies_satisfied(["a"], siblings)


def test_failed_dependency_never_satisfies():
    assert not dependencies_satisfied(["a"], [_task("a", TaskStatus.FAILED)])


def test_final_status():
    assert final_status([]) is WorkflowStatus.COMPLETED
    assert final_status([_task("a", TaskStatus.COMPLETED)]) is WorkflowStatus.COMPLETED
    assert (
        final_status([_task("a", TaskStatus.COMPLETED), _task("b", TaskStatus.FAILED)])
        is WorkflowStatus.FAILED
    )
    for active in (TaskStatus.PENDING, TaskStatus.ASSIGNED, TaskStatus.RUNNING):
        assert final_status([_task("a", TaskStatus.FAILED), _task("b", active)]) is None
