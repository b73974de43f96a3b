"""Status changes conditioned on the expected prior status."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

from pydantic_core import to_jsonable_python

from .audit import COORDINATOR_AGENT_ID, AuditRecorder
from .persistence.models import TaskRecord, WorkflowRecord
from .persistence.repository import CoordinationRepository
from .states import (
    TaskStatus,
    WorkflowStatus,
    normalize_task_payloads,
    task_predecessors,
    validate_task_transition,
    validate_workflow_transition,
)

logger = logging.getLogger(__name__)


class StatusTransitions:
    """Apply lifecycle moves through compare-and-swap updates.

    Every move is checked against the state machine, written only if the
    stored status still matches, and audited once it has been written.
    A lost race returns ``None``; the caller decides whether that is an error.
    """

    def __init__(
        self,
        repository: CoordinationRepository,
        tenant_id: str,
        audit: AuditRecorder,
    ) -> None:
        self._repository = repository
        self.tenant_id = tenant_id
        self._audit = audit

    async def transition_task(
        self,
        coordination_id: str,
        new_status: TaskStatus,
        *,
        expected: Optional[Iterable[TaskStatus]] = None,
        result_data: Optional[Any] = None,
        error_data: Optional[dict[str, Any]] = None,
        agent_id: Optional[str] = None,
        actor: str = COORDINATOR_AGENT_ID,
    ) -> TaskRecord | None:
        """Move a task to ``new_status`` if it is currently in ``expected``.

        ``expected`` defaults to every status the lifecycle allows before
        ``new_status``. When ``agent_id`` is given the move only applies to a
        task owned by that agent.
        """
        new_status = TaskStatus(new_status)
        prior = validate_task_transition(
            expected if expected is not None else task_predecessors(new_status),
            new_status,
        )
        result_data, error_data = normalize_task_payloads(
            new_status, result_data, error_data
        )
        # stored payloads are JSON on every backend
        if result_data is not None:
            result_data = to_jsonable_python(result_data, fallback=str)
        if error_data is not None:
            error_data = to_jsonable_python(error_data, fallback=str)
        updated = await self._repository.transition_task(
            self.tenant_id,
            coordination_id,
            prior,
            new_status,
            result_data=result_data,
            error_data=error_data,
            agent_id=agent_id,
        )
        if updated is None:
            logger.debug(
                f"Task {coordination_id} not moved to {new_status}: "
                f"not in {[s.value for s in prior]}"
            )
            return None

        await self._audit.record(
            "task_status_changed",
            {
                "coordination_id": coordination_id,
                "workflow_id": updated.workflow_id,
                "from": [s.value for s in prior],
                "status": new_status.value,
                "result_data": result_data,
                "error_data": error_data,
            },
            agent_id=actor,
        )
        return updated

    async def transition_workflow(
        self,
        workflow_id: str,
        new_status: WorkflowStatus,
        expected: WorkflowStatus = WorkflowStatus.RUNNING,
    ) -> WorkflowRecord | None:
        validate_workflow_transition(expected, new_status)
        updated = await self._repository.transition_workflow(
            self.tenant_id, workflow_id, WorkflowStatus(expected), WorkflowStatus(new_status)
        )
        if updated is None:
            logger.debug(f"Workflow {workflow_id} not moved to {new_status}")
        return updated
