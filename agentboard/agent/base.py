"""Base class for agents executing coordinated tasks."""

from __future__ import annotations

import inspect
import logging
import traceback
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional, Union

from pydantic import BaseModel
from pydantic_core import to_jsonable_python

from .. import events
from ..dependencies import dependencies_satisfied
from ..errors import InvalidTransitionError, StaleTransitionError
from ..persistence.models import (
    DATA_STORAGE_TASK_TYPE,
    TaskRecord,
    utcnow,
)
from ..states import TaskStatus

if TYPE_CHECKING:
    from ..orchestrator import Coordinator

logger = logging.getLogger(__name__)


class AgentMetrics(BaseModel):
    """Execution statistics of one agent over a time window."""

    agent_id: str
    total_tasks: int = 0
    completed_tasks: int = 0
    failed_tasks: int = 0
    avg_execution_time: Optional[float] = None


def _completion_order(task: TaskRecord) -> tuple:
    # tasks that have not finished sort last
    finished_at = task.completed_at
    return (finished_at is None, finished_at.timestamp() if finished_at else 0.0)


class BaseAgent:
    """Worker that executes tasks dispatched to its ``agent_id``.

    Subclasses implement :meth:`perform_task`. All task state lives in the
    coordinator's store: the agent moves its task to ``running``, performs
    the work and records ``completed`` with the result or ``failed`` with the
    error.
    """

    def __init__(
        self,
        agent_id: str,
        *,
        agent_type: str = "generic",
        capabilities: Optional[List[str]] = None,
    ) -> None:
        self.agent_id = agent_id
        self.agent_type = agent_type
        self.capabilities = list(capabilities or [])
        self.is_running = False
        self.coordinator: Optional["Coordinator"] = None
        self.tenant_id: Optional[str] = None

    def bind(self, coordinator: "Coordinator") -> None:
        """Attach the agent to the coordinator whose store it works against."""
        self.coordinator = coordinator
        self.tenant_id = coordinator.tenant_id

    def _require_coordinator(self) -> "Coordinator":
        if self.coordinator is None:
            raise RuntimeError(f"Agent {self.agent_id} is not registered with a coordinator")
        return self.coordinator

    async def start(self) -> None:
        if self.is_running or self.coordinator is None:
            return
        self.is_running = True
        logger.info(f"Agent {self.agent_id} started for tenant: {self.tenant_id}")
        await self.log_activity(
            "agent_started",
            {"agent_id": self.agent_id, "capabilities": self.capabilities},
        )

    async def stop(self) -> None:
        if not self.is_running:
            return
        self.is_running = False
        await self.log_activity("agent_stopped", {"agent_id": self.agent_id})
        logger.info(f"Agent {self.agent_id} stopped")

    # ------------------------------------------------------------------
    # Task execution
    async def execute_task(self, task: TaskRecord) -> Any:
        """Run ``task`` and record its outcome.

        Raises:
            InvalidTransitionError: If the task targets another agent.
            StaleTransitionError: If the task is no longer ``assigned`` when it
                starts, or no longer ``running`` when its result is recorded.
            Exception: Whatever :meth:`perform_task` raised, after the
                failure has been recorded.
        """
        coordinator = self._require_coordinator()
        if task.agent_id != self.agent_id:
            raise InvalidTransitionError(
                f"Agent {self.agent_id} cannot execute task {task.coordination_id} "
                f"dispatched to {task.agent_id}"
            )

        logger.info(f"Agent {self.agent_id} executing task: {task.coordination_id}")
        started = await coordinator.update_task_status(
            task.coordination_id, TaskStatus.RUNNING, agent_id=self.agent_id
        )
        if started is None:
            raise StaleTransitionError(
                f"Task {task.coordination_id} is no longer assigned to {self.agent_id}"
            )
        await self.log_activity(
            "task_started",
            {
                "coordination_id": task.coordination_id,
                "task_type": task.task_type,
                "workflow_id": task.workflow_id,
            },
        )

        try:
            result = self.perform_task(task.task_type, task.task_data, task)
            if inspect.isawaitable(result):
                result = await result
        except Exception as exc:
            logger.error(f"Agent {self.agent_id} task failed: {exc}")
            await self._record_failure(task, exc)
            raise

        try:
            completed = await coordinator.update_task_status(
                task.coordination_id,
                TaskStatus.COMPLETED,
                result_data=result,
                agent_id=self.agent_id,
            )
        except Exception as exc:
            logger.error(
                f"Agent {self.agent_id} could not record result of task "
                f"{task.coordination_id}: {exc}"
            )
            await self._record_failure(task, exc)
            raise
        if completed is None:
            raise StaleTransitionError(
                f"Task {task.coordination_id} is no longer running for {self.agent_id}"
            )

        await self.log_activity(
            "task_completed",
            {
                "coordination_id": task.coordination_id,
                "task_type": task.task_type,
                "result": completed.result_data,
            },
        )
        await coordinator.events.publish(
            events.TASK_COMPLETED,
            coordinator.tenant_id,
            {
                "agent_id": self.agent_id,
                "coordination_id": task.coordination_id,
                "result": completed.result_data,
            },
        )
        return result

    async def _record_failure(self, task: TaskRecord, exc: Exception) -> None:
        coordinator = self._require_coordinator()
        failed = await coordinator.update_task_status(
            task.coordination_id,
            TaskStatus.FAILED,
            error_data={"error": str(exc), "detail": traceback.format_exc()},
            agent_id=self.agent_id,
        )
        if failed is None:
            return
        await self.log_activity(
            "task_failed",
            {"coordination_id": task.coordination_id, "error": str(exc)},
        )
        await coordinator.events.publish(
            events.TASK_FAILED,
            coordinator.tenant_id,
            {
                "agent_id": self.agent_id,
                "coordination_id": task.coordination_id,
                "error": str(exc),
            },
        )

    def perform_task(
        self, task_type: str, task_data: Dict[str, Any], task: TaskRecord
    ) -> Union[Any, Awaitable[Any]]:
        """Do the agent-specific work. Override in subclasses."""
        raise NotImplementedError(f"Agent {self.agent_id} must implement perform_task")

    # ------------------------------------------------------------------
    # Communication through the store
    async def query_agent_results(
        self,
        workflow_id: str,
        agent_id: Optional[str] = None,
        task_type: Optional[str] = None,
    ) -> List[TaskRecord]:
        """Return tasks of ``workflow_id`` ordered by completion time."""
        coordinator = self._require_coordinator()
        tasks = await coordinator.repository.list_tasks(
            coordinator.tenant_id,
            workflow_id=workflow_id,
            agent_id=agent_id,
            task_type=task_type,
        )
        return sorted(tasks, key=_completion_order)

    async def store_workflow_data(
        self, workflow_id: str, data_key: str, data: Any
    ) -> TaskRecord:
        """Publish ``data`` under ``data_key`` for other agents of the workflow."""
        coordinator = self._require_coordinator()
        now = utcnow()
        entry = TaskRecord(
            workflow_id=workflow_id,
            tenant_id=coordinator.tenant_id,
            agent_id=self.agent_id,
            task_type=DATA_STORAGE_TASK_TYPE,
            task_data={"data_key": data_key},
            status=TaskStatus.COMPLETED,
            result_data={} if data is None else to_jsonable_python(data, fallback=str),
            created_at=now,
            updated_at=now,
            completed_at=now,
        )
        await coordinator.repository.insert_task(entry)
        await self.log_activity(
            "workflow_data_stored",
            {"workflow_id": workflow_id, "data_key": data_key, "coordination_id": entry.coordination_id},
        )
        return entry

    async def get_workflow_data(
        self,
        workflow_id: str,
        data_key: str,
        from_agent: Optional[str] = None,
    ) -> Any:
        """Return the most recently stored data for ``data_key``, or ``None``."""
        coordinator = self._require_coordinator()
        entries = await coordinator.repository.list_tasks(
            coordinator.tenant_id,
            workflow_id=workflow_id,
            status=TaskStatus.COMPLETED,
            agent_id=from_agent,
            task_type=DATA_STORAGE_TASK_TYPE,
        )
        matching = [entry for entry in entries if entry.data_key == data_key]
        if not matching:
            return None
        return max(reversed(matching), key=lambda e: e.completed_at).result_data

    async def get_workflow_context(self, workflow_id: str) -> Dict[str, Any]:
        """Return the context the workflow was started with."""
        coordinator = self._require_coordinator()
        snapshot = await coordinator.get_workflow_status(workflow_id)
        return snapshot.workflow.context

    async def check_dependencies(self, dependencies: List[str], workflow_id: str) -> bool:
        if not dependencies:
            return True
        coordinator = self._require_coordinator()
        siblings = await coordinator.repository.list_tasks(
            coordinator.tenant_id, workflow_id=workflow_id
        )
        return dependencies_satisfied(dependencies, siblings)

    async def log_activity(self, action_type: str, action_data: Dict[str, Any]) -> None:
        if self.coordinator is None:
            return
        await self.coordinator.audit.record(action_type, action_data, agent_id=self.agent_id)

    # ------------------------------------------------------------------
    # Monitoring
    async def get_performance_metrics(
        self, window: timedelta = timedelta(hours=24)
    ) -> Optional[AgentMetrics]:
        if self.coordinator is None:
            return None
        since: datetime = utcnow() - window
        tasks = [
            task
            for task in await self.coordinator.repository.list_tasks(
                self.coordinator.tenant_id, agent_id=self.agent_id
            )
            if task.created_at > since
        ]
        durations = [
            (task.completed_at - task.created_at).total_seconds()
            for task in tasks
            if task.completed_at is not None
        ]
        return AgentMetrics(
            agent_id=self.agent_id,
            total_tasks=len(tasks),
            completed_tasks=sum(t.status is TaskStatus.COMPLETED for t in tasks),
            failed_tasks=sum(t.status is TaskStatus.FAILED for t in tasks),
            avg_execution_time=sum(durations) / len(durations) if durations else None,
        )

    async def health_check(self) -> Dict[str, Any]:
        """Verify the agent can reach the coordinator's store."""
        if self.coordinator is None:
            return {"healthy": False, "agent_id": self.agent_id, "error": "No coordinator connection"}
        try:
            await self.coordinator.repository.ping()
        except Exception as exc:
            return {"healthy": False, "agent_id": self.agent_id, "error": str(exc)}
        return {
            "healthy": True,
            "agent_id": self.agent_id,
            "tenant_id": self.tenant_id,
            "capabilities": self.capabilities,
        }


TaskCallable = Callable[[TaskRecord], Union[Any, Awaitable[Any]]]


class CallableAgent(BaseAgent):
    """Agent whose work is a plain callable taking the task."""

    def __init__(self, agent_id: str, entry_point: TaskCallable, **kwargs: Any) -> None:
        super().__init__(agent_id, **kwargs)
        self._entry_point = entry_point

    def perform_task(
        self, task_type: str, task_data: Dict[str, Any], task: TaskRecord
    ) -> Union[Any, Awaitable[Any]]:
        return self._entry_point(task)
