"""Detection of finished workflows."""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from . import events
from .audit import AuditRecorder
from .events import EventBus
from .persistence.models import TaskRecord, WorkflowRecord
from .persistence.repository import CoordinationRepository
from .states import ACTIVE_TASK_STATUSES, TaskStatus, WorkflowStatus
from .transitions import StatusTransitions

logger = logging.getLogger(__name__)


def final_status(tasks: Iterable[TaskRecord]) -> Optional[WorkflowStatus]:
    """Return the terminal status a workflow with ``tasks`` should take.

    ``None`` while any task is pending, assigned or running. Otherwise
    ``failed`` if at least one task failed, else ``completed``. A workflow
    without tasks is complete.
    """
    failed = False
    for task in tasks:
        if task.status in ACTIVE_TASK_STATUSES:
            return None
        if task.status is TaskStatus.FAILED:
            failed = True
    return WorkflowStatus.FAILED if failed else WorkflowStatus.COMPLETED


class CompletionEvaluator:
    """Moves running workflows whose tasks are all terminal to their final status."""

    def __init__(
        self,
        repository: CoordinationRepository,
        tenant_id: str,
        transitions: StatusTransitions,
        audit: AuditRecorder,
        events_bus: EventBus,
    ) -> None:
        self._repository = repository
        self.tenant_id = tenant_id
        self._transitions = transitions
        self._audit = audit
        self._events = events_bus

    async def evaluate(self) -> list[WorkflowRecord]:
        """Check every running workflow once; return those finished now."""
        finished: list[WorkflowRecord] = []
        running = await self._repository.list_workflows(
            self.tenant_id, status=WorkflowStatus.RUNNING
        )
        for workflow in running:
            tasks = await self._repository.list_tasks(
                self.tenant_id, workflow_id=workflow.workflow_id
            )
            outcome = final_status(tasks)
            if outcome is None:
                continue

            updated = await self._transitions.transition_workflow(
                workflow.workflow_id, outcome
            )
            if updated is None:
                # another coordinator finished it first
                continue

            logger.info(
                f"Workflow {updated.workflow_id} ({updated.workflow_type}) {updated.status}"
            )
            await self._audit.record(
                "workflow_completed",
                {
                    "workflow_id": updated.workflow_id,
                    "workflow_type": updated.workflow_type,
                    "status": updated.status.value,
                },
            )
            await self._events.publish(
                events.WORKFLOW_COMPLETED,
                self.tenant_id,
                {
                    "workflow_id": updated.workflow_id,
                    "workflow_type": updated.workflow_type,
                    "status": updated.status.value,
                },
            )
            finished.append(updated)
        return finished
