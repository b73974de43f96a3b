"""Readiness rule for pending tasks."""

from __future__ import annotations

from typing import Iterable

from .persistence.models import TaskRecord
from .states import TaskStatus


def completed_agents(siblings: Iterable[TaskRecord]) -> set[str]:
    """Return the ids of agents owning at least one completed task."""
    return {task.agent_id for task in siblings if task.status is TaskStatus.COMPLETED}


def dependencies_satisfied(
    dependencies: Iterable[str], siblings: Iterable[TaskRecord]
) -> bool:
    """Decide whether a task with ``dependencies`` may be dispatched.

    ``dependencies`` are agent ids, not task ids. Each is satisfied once any
    task of that agent within the same workflow has completed, regardless of
    its task type. ``siblings`` must be the tasks of a single workflow. An
    empty dependency list is always satisfied.

    A dependency whose agent only ever fails is never satisfied; the dependent
    task then stays pending until an operator intervenes.
    """
    required = set(dependencies)
    if not required:
        return True
    return required <= completed_agents(siblings)
