"""In-memory implementation of the coordination repository."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Sequence

from ..states import TaskStatus, WorkflowStatus
from .models import AuditEntry, TaskRecord, WorkflowRecord, utcnow
from .repository import CoordinationRepository


class InMemoryCoordinationRepository(CoordinationRepository):
    """Store coordination state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. A single lock makes every
    conditional transition atomic for all coordinators sharing the instance.
    """

    def __init__(self) -> None:
        self._workflows: Dict[str, WorkflowRecord] = {}
        self._tasks: Dict[str, TaskRecord] = {}
        self._audit: List[AuditEntry] = []
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    async def create_workflow(
        self, workflow: WorkflowRecord, tasks: Sequence[TaskRecord]
    ) -> None:
        async with self._lock:
            if workflow.workflow_id in self._workflows:
                raise ValueError(f"Workflow already exists: {workflow.workflow_id}")
            seen: set[str] = set()
            for task in tasks:
                if task.coordination_id in self._tasks or task.coordination_id in seen:
                    raise ValueError(f"Task already exists: {task.coordination_id}")
                seen.add(task.coordination_id)
            self._workflows[workflow.workflow_id] = workflow.model_copy(deep=True)
            for task in tasks:
                self._tasks[task.coordination_id] = task.model_copy(deep=True)

    async def get_workflow(
        self, tenant_id: str, workflow_id: str
    ) -> WorkflowRecord | None:
        wf = self._workflows.get(workflow_id)
        if wf is None or wf.tenant_id != tenant_id:
            return None
        return wf.model_copy(deep=True)

    async def list_workflows(
        self, tenant_id: str, status: Optional[WorkflowStatus] = None
    ) -> list[WorkflowRecord]:
        workflows = [
            wf.model_copy(deep=True)
            for wf in self._workflows.values()
            if wf.tenant_id == tenant_id and (status is None or wf.status == status)
        ]
        return sorted(workflows, key=lambda wf: wf.created_at)

    async def insert_task(self, task: TaskRecord) -> None:
        async with self._lock:
            if task.coordination_id in self._tasks:
                raise ValueError(f"Task already exists: {task.coordination_id}")
            self._tasks[task.coordination_id] = task.model_copy(deep=True)

    async def get_task(self, tenant_id: str, coordination_id: str) -> TaskRecord | None:
        task = self._tasks.get(coordination_id)
        if task is None or task.tenant_id != tenant_id:
            return None
        return task.model_copy(deep=True)

    async def list_tasks(
        self,
        tenant_id: str,
        *,
        workflow_id: Optional[str] = None,
        status: Optional[TaskStatus] = None,
        agent_id: Optional[str] = None,
        task_type: Optional[str] = None,
    ) -> list[TaskRecord]:
        tasks = [
            task.model_copy(deep=True)
            for task in self._tasks.values()
            if task.tenant_id == tenant_id
            and (workflow_id is None or task.workflow_id == workflow_id)
            and (status is None or task.status == status)
            and (agent_id is None or task.agent_id == agent_id)
            and (task_type is None or task.task_type == task_type)
        ]
        # stable sort keeps insertion order for equal timestamps
        return sorted(tasks, key=lambda task: task.created_at)

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
        async with self._lock:
            task = self._tasks.get(coordination_id)
            if task is None or task.tenant_id != tenant_id:
                return None
            if agent_id is not None and task.agent_id != agent_id:
                return None
            if task.status not in expected:
                return None
            now = utcnow()
            updated = TaskRecord.model_validate(
                {
                    **task.model_dump(),
                    "status": TaskStatus(new_status),
                    "result_data": result_data,
                    "error_data": error_data,
                    "updated_at": now,
                    "completed_at": now
                    if new_status in (TaskStatus.COMPLETED, TaskStatus.FAILED)
                    else None,
                }
            )
            self._tasks[coordination_id] = updated
            return updated.model_copy(deep=True)

    async def transition_workflow(
        self,
        tenant_id: str,
        workflow_id: str,
        expected: WorkflowStatus,
        new_status: WorkflowStatus,
    ) -> WorkflowRecord | None:
        async with self._lock:
            wf = self._workflows.get(workflow_id)
            if wf is None or wf.tenant_id != tenant_id or wf.status != expected:
                return None
            updated = WorkflowRecord.model_validate(
                {**wf.model_dump(), "status": new_status, "completed_at": utcnow()}
            )
            self._workflows[workflow_id] = updated
            return updated.model_copy(deep=True)

    async def append_audit(self, entry: AuditEntry) -> None:
        async with self._lock:
            stored = entry.model_copy(
                deep=True, update={"audit_id": len(self._audit) + 1}
            )
            self._audit.append(stored)

    async def list_audit(
        self,
        tenant_id: str,
        *,
        action_type: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[AuditEntry]:
        entries = [
            entry.model_copy(deep=True)
            for entry in self._audit
            if entry.tenant_id == tenant_id
            and (action_type is None or entry.action_type == action_type)
        ]
        if limit is not None:
            entries = entries[-limit:] if limit > 0 else []
        return entries

    async def ping(self) -> None:
        return None

    async def close(self) -> None:
        return None
