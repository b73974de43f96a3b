"""Task dispatcher for agentboard."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import TYPE_CHECKING, Dict, List, Optional

from . import events
from .dependencies import dependencies_satisfied
from .events import EventBus
from .persistence.models import TaskRecord
from .persistence.repository import CoordinationRepository
from .states import TaskStatus
from .transitions import StatusTransitions

if TYPE_CHECKING:
    from .agent.registry import AgentRegistry

logger = logging.getLogger(__name__)

EXECUTION_FAILED_TO_START = "execution failed to start"


class TaskDispatcher:
    """Claims ready tasks and hands them to their agents.

    Claiming is a conditional ``pending -> assigned`` move, so a task reaches
    at most one agent even when several dispatchers share a store. Execution
    runs as an independent asyncio task; its outcome is only ever observed
    through the store.
    """

    def __init__(
        self,
        repository: CoordinationRepository,
        tenant_id: str,
        registry: "AgentRegistry",
        transitions: StatusTransitions,
        events_bus: EventBus,
    ) -> None:
        self._repository = repository
        self.tenant_id = tenant_id
        self._registry = registry
        self._transitions = transitions
        self._events = events_bus
        self._inflight: set[asyncio.Task] = set()

    @property
    def inflight(self) -> int:
        """Number of executions started by this dispatcher still running."""
        return len(self._inflight)

    async def find_ready_tasks(
        self, pending: Optional[List[TaskRecord]] = None
    ) -> List[TaskRecord]:
        """Return pending tasks whose dependencies are met, oldest first.

        ``pending`` may be an already loaded list of pending tasks.
        """
        if pending is None:
            pending = await self._repository.list_tasks(
                self.tenant_id, status=TaskStatus.PENDING
            )
        siblings: Dict[str, List[TaskRecord]] = {}
        ready: List[TaskRecord] = []
        for task in pending:
            if task.dependencies and task.workflow_id not in siblings:
                siblings[task.workflow_id] = await self._repository.list_tasks(
                    self.tenant_id, workflow_id=task.workflow_id
                )
            if dependencies_satisfied(
                task.dependencies, siblings.get(task.workflow_id, [])
            ):
                ready.append(task)
        return ready

    async def dispatch(self) -> List[TaskRecord]:
        """Claim every ready task and start its execution.

        Returns the tasks this dispatcher moved to ``assigned``. A task whose
        agent is not registered stays ``assigned``; it is reported by the
        coordinator health check rather than retried here.
        """
        claimed: List[TaskRecord] = []
        for task in await self.find_ready_tasks():
            assigned = await self._transitions.transition_task(
                task.coordination_id,
                TaskStatus.ASSIGNED,
                expected=[TaskStatus.PENDING],
            )
            if assigned is None:
                logger.debug(f"Task {task.coordination_id} was claimed elsewhere")
                continue
            claimed.append(assigned)

            agent = self._registry.get(assigned.agent_id)
            if agent is None:
                logger.warning(
                    f"No agent registered for {assigned.agent_id}; "
                    f"task {assigned.coordination_id} left assigned"
                )
                continue

            logger.info(
                f"Dispatched task {assigned.coordination_id} ({assigned.task_type}) "
                f"to {assigned.agent_id}"
            )
            self._spawn(agent, assigned)
        return claimed

    def _spawn(self, agent, task: TaskRecord) -> None:
        job = asyncio.create_task(
            self._execute(agent, task), name=f"agentboard-task-{task.coordination_id}"
        )
        self._inflight.add(job)
        job.add_done_callback(self._inflight.discard)

    async def _execute(self, agent, task: TaskRecord) -> None:
        try:
            outcome = agent.execute_task(task)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as exc:
            logger.error(f"Task execution failed: {task.coordination_id}: {exc}")
            await self._force_fail(task, exc)

    async def _force_fail(self, task: TaskRecord, exc: Exception) -> None:
        error_data = {
            "error": EXECUTION_FAILED_TO_START,
            "detail": str(exc),
            "exception_type": type(exc).__name__,
        }
        try:
            failed = await self._transitions.transition_task(
                task.coordination_id,
                TaskStatus.FAILED,
                expected=[TaskStatus.ASSIGNED, TaskStatus.RUNNING],
                error_data=error_data,
            )
        except Exception:
            logger.exception(f"Could not record failure of task {task.coordination_id}")
            return

        if failed is None:
            # the agent already recorded its own terminal status
            return
        await self._events.publish(
            events.TASK_DISPATCH_FAILED,
            self.tenant_id,
            {
                "coordination_id": task.coordination_id,
                "workflow_id": task.workflow_id,
                "agent_id": task.agent_id,
                "error": error_data,
            },
        )

    async def drain(self) -> None:
        """Wait until every execution started so far has finished."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
