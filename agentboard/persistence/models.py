"""Data models for persisted coordination state."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator

from ..states import TaskStatus, WorkflowStatus, is_terminal_task, is_terminal_workflow

DATA_STORAGE_TASK_TYPE = "data_storage"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class WorkflowRecord(BaseModel):
    """One run of a named workflow template within a tenant."""

    workflow_id: str = Field(default_factory=new_id)
    tenant_id: str
    workflow_type: str
    context: dict[str, Any] = Field(default_factory=dict)
    status: WorkflowStatus = WorkflowStatus.RUNNING
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _completion_time_matches_status(self) -> "WorkflowRecord":
        if is_terminal_workflow(self.status) != (self.completed_at is not None):
            raise ValueError(
                "completed_at must be set exactly when the workflow is terminal"
            )
        return self


class TaskRecord(BaseModel):
    """A coordination entry: one unit of work targeted at one agent."""

    coordination_id: str = Field(default_factory=new_id)
    workflow_id: str
    tenant_id: str
    agent_id: str
    task_type: str
    task_data: dict[str, Any] = Field(default_factory=dict)
    dependencies: list[str] = Field(default_factory=list)
    status: TaskStatus = TaskStatus.PENDING
    result_data: Optional[Any] = None
    error_data: Optional[dict[str, Any]] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _payloads_match_status(self) -> "TaskRecord":
        if self.result_data is not None and self.status is not TaskStatus.COMPLETED:
            raise ValueError("result_data is only allowed on completed tasks")
        if self.error_data is not None and self.status is not TaskStatus.FAILED:
            raise ValueError("error_data is only allowed on failed tasks")
        if self.status is TaskStatus.COMPLETED and self.result_data is None:
            raise ValueError("completed tasks require result_data")
        if self.status is TaskStatus.FAILED and self.error_data is None:
            raise ValueError("failed tasks require error_data")
        if is_terminal_task(self.status) != (self.completed_at is not None):
            raise ValueError("completed_at must be set exactly when the task is terminal")
        return self

    @property
    def data_key(self) -> Optional[str]:
        """Key of a shared data entry, if this task is one."""
        if self.task_type != DATA_STORAGE_TASK_TYPE:
            return None
        return self.task_data.get("data_key")


class AuditEntry(BaseModel):
    """Append-only record of a state-changing action."""

    audit_id: Optional[int] = None
    tenant_id: str
    agent_id: str
    action_type: str
    action_data: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


class WorkflowSnapshot(BaseModel):
    """Read-only view of a workflow together with its tasks."""

    workflow: WorkflowRecord
    tasks: list[TaskRecord] = Field(default_factory=list)
