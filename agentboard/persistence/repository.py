"""Repository abstraction for coordination state persistence."""

from __future__ import annotations

from typing import Any, Optional, Protocol, Sequence

from ..states import TaskStatus, WorkflowStatus
from .models import AuditEntry, TaskRecord, WorkflowRecord


class CoordinationRepository(Protocol):
    """Protocol for coordination state persistence backends.

    Every status change goes through ``transition_task`` or
    ``transition_workflow``, which only apply when the stored status is one of
    the expected prior statuses. Backends must make that check and the write a
    single atomic step so that concurrent coordinators never both win.
    """

    async def create_workflow(
        self, workflow: WorkflowRecord, tasks: Sequence[TaskRecord]
    ) -> None:
        """Persist a workflow and its initial tasks in one transaction."""

    async def get_workflow(
        self, tenant_id: str, workflow_id: str
    ) -> WorkflowRecord | None:
        """Retrieve the workflow by id."""

    async def list_workflows(
        self, tenant_id: str, status: Optional[WorkflowStatus] = None
    ) -> list[WorkflowRecord]:
        """Return workflows of the tenant ordered by creation time."""

    async def insert_task(self, task: TaskRecord) -> None:
        """Persist a single task as given."""

    async def get_task(self, tenant_id: str, coordination_id: str) -> TaskRecord | None:
        """Retrieve a task by id."""

    async def list_tasks(
        self,
        tenant_id: str,
        *,
        workflow_id: Optional[str] = None,
        status: Optional[TaskStatus] = None,
        agent_id: Optional[str] = None,
        task_type: Optional[str] = None,
    ) -> list[TaskRecord]:
        """Return matching tasks ordered by creation time, oldest first."""

    async def transition_task(
        self,
        tenant_id: str,
        coordination_id: str,
        expected: Sequence[TaskStatus],
        new_status: TaskStatus,
        *,
        result_data: Optional[Any] = None,
        error_data: Optional[dict[str, Any]] = None,
        agent_id: Optional[str] = None,
    ) -> TaskRecord | None:
        """Conditionally move a task to ``new_status``.

        Returns the updated task, or ``None`` when the task does not exist,
        belongs to another agent, or its status is not in ``expected``.
        """

    async def transition_workflow(
        self,
        tenant_id: str,
        workflow_id: str,
        expected: WorkflowStatus,
        new_status: WorkflowStatus,
    ) -> WorkflowRecord | None:
        """Conditionally move a workflow to ``new_status``."""

    async def append_audit(self, entry: AuditEntry) -> None:
        """Append an audit entry."""

    async def list_audit(
        self,
        tenant_id: str,
        *,
        action_type: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[AuditEntry]:
        """Return audit entries oldest first (the newest ``limit`` if given)."""

    async def ping(self) -> None:
        """Raise if the backend is unreachable."""

    async def close(self) -> None:
        """Release backend resources."""
