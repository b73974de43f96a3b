"""Lifecycle states and legal transitions for workflows and tasks."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Optional, Tuple

from .errors import InvalidTransitionError


class WorkflowStatus(str, Enum):
    """Status of a workflow instance."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value


class TaskStatus(str, Enum):
    """Status of a coordination entry."""

    PENDING = "pending"
    ASSIGNED = "assigned"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value


WORKFLOW_TRANSITIONS: Dict[WorkflowStatus, FrozenSet[WorkflowStatus]] = {
    WorkflowStatus.RUNNING: frozenset(
        {WorkflowStatus.COMPLETED, WorkflowStatus.FAILED}
    ),
    WorkflowStatus.COMPLETED: frozenset(),
    WorkflowStatus.FAILED: frozenset(),
}

TASK_TRANSITIONS: Dict[TaskStatus, FrozenSet[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.ASSIGNED}),
    # assigned -> failed covers execution that never started
    TaskStatus.ASSIGNED: frozenset({TaskStatus.RUNNING, TaskStatus.FAILED}),
    TaskStatus.RUNNING: frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.FAILED: frozenset(),
}

ACTIVE_TASK_STATUSES: Tuple[TaskStatus, ...] = (
    TaskStatus.PENDING,
    TaskStatus.ASSIGNED,
    TaskStatus.RUNNING,
)
TERMINAL_TASK_STATUSES: Tuple[TaskStatus, ...] = (
    TaskStatus.COMPLETED,
    TaskStatus.FAILED,
)


def is_terminal_workflow(status: WorkflowStatus) -> bool:
    return not WORKFLOW_TRANSITIONS[WorkflowStatus(status)]


def is_terminal_task(status: TaskStatus) -> bool:
    return not TASK_TRANSITIONS[TaskStatus(status)]


def task_predecessors(target: TaskStatus) -> Tuple[TaskStatus, ...]:
    """Return every status from which ``target`` may be reached."""
    target = TaskStatus(target)
    return tuple(
        status for status, allowed in TASK_TRANSITIONS.items() if target in allowed
    )


def validate_task_transition(
    expected: Iterable[TaskStatus], target: TaskStatus
) -> Tuple[TaskStatus, ...]:
    """Check that ``target`` is reachable from every status in ``expected``.

    Returns the expected statuses as a normalized tuple.

    Raises:
        InvalidTransitionError: If any expected status cannot move to ``target``.
    """
    target = TaskStatus(target)
    normalized = tuple(TaskStatus(s) for s in expected)
    if not normalized:
        raise InvalidTransitionError(f"No prior status given for move to {target}")
    for current in normalized:
        if target not in TASK_TRANSITIONS[current]:
            raise InvalidTransitionError(
                f"Task cannot move from {current} to {target}"
            )
    return normalized


def validate_workflow_transition(
    current: WorkflowStatus, target: WorkflowStatus
) -> None:
    current = WorkflowStatus(current)
    target = WorkflowStatus(target)
    if target not in WORKFLOW_TRANSITIONS[current]:
        raise InvalidTransitionError(
            f"Workflow cannot move from {current} to {target}"
        )


def normalize_task_payloads(
    status: TaskStatus,
    result_data: Optional[Any] = None,
    error_data: Optional[Dict[str, Any]] = None,
) -> Tuple[Optional[Any], Optional[Dict[str, Any]]]:
    """Return the ``(result, error)`` pair a task in ``status`` may carry.

    A completed task always carries a result and never an error; a failed task
    always carries an error and never a result; every other status carries
    neither.
    """
    status = TaskStatus(status)
    if status is TaskStatus.COMPLETED:
        if error_data is not None:
            raise ValueError("A completed task cannot carry an error payload")
        return ({} if result_data is None else result_data), None
    if status is TaskStatus.FAILED:
        if result_data is not None:
            raise ValueError("A failed task cannot carry a result payload")
        if error_data is None:
            raise ValueError("A failed task requires an error payload")
        return None, error_data
    if result_data is not None or error_data is not None:
        raise ValueError(f"A {status} task carries no result or error payload")
    return None, None


__all__ = [
    "WorkflowStatus",
    "TaskStatus",
    "WORKFLOW_TRANSITIONS",
    "TASK_TRANSITIONS",
    "ACTIVE_TASK_STATUSES",
    "TERMINAL_TASK_STATUSES",
    "is_terminal_workflow",
    "is_terminal_task",
    "task_predecessors",
    "validate_task_transition",
    "validate_workflow_transition",
    "normalize_task_payloads",
]
