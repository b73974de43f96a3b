"""Coordinator: drives workflows by polling shared coordination state."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field

from . import events
from .agent.base import BaseAgent, TaskCallable
from .agent.registry import AgentRegistry
from .audit import COORDINATOR_AGENT_ID, AuditRecorder
from .completion import CompletionEvaluator
from .config import AgentboardConfig, load_config
from .dispatch import TaskDispatcher
from .errors import WorkflowNotFoundError
from .events import EventBus
from .persistence import get_repository
from .persistence.models import TaskRecord, WorkflowRecord, WorkflowSnapshot
from .persistence.repository import CoordinationRepository
from .states import TaskStatus
from .templates import TemplateRegistry
from .transitions import StatusTransitions

logger = logging.getLogger(__name__)


class IterationResult(BaseModel):
    """What one pass of the coordination loop changed."""

    dispatched: List[TaskRecord] = Field(default_factory=list)
    finished: List[WorkflowRecord] = Field(default_factory=list)


class HealthReport(BaseModel):
    """Operational state of a coordinator and its store."""

    healthy: bool
    tenant_id: str
    running: bool
    store_reachable: bool
    store_error: Optional[str] = None
    agents: List[str] = Field(default_factory=list)
    stranded_tasks: List[str] = Field(
        default_factory=list,
        description="Assigned tasks whose agent is not registered here",
    )
    pending_tasks: int = 0
    blocked_tasks: int = 0
    inflight_tasks: int = 0


class Coordinator:
    """Coordinates agents through durable state within one tenant.

    Each pass of the coordination loop dispatches every ready task, then
    finishes every workflow whose tasks are all terminal, then sleeps for
    ``polling_interval`` seconds. Nothing about scheduling is held in memory,
    so a restarted coordinator, or another one on the same store, picks up
    where this one stopped.
    """

    def __init__(
        self,
        repository: Optional[CoordinationRepository] = None,
        *,
        registry: Optional[AgentRegistry] = None,
        templates: Optional[TemplateRegistry] = None,
        events_bus: Optional[EventBus] = None,
        config: Optional[AgentboardConfig] = None,
        tenant_id: Optional[str] = None,
        polling_interval: Optional[float] = None,
    ) -> None:
        self.config = config or load_config()
        self.tenant_id = tenant_id or self.config.tenant_id
        self.polling_interval = (
            polling_interval
            if polling_interval is not None
            else self.config.polling_interval
        )
        self.repository = repository or get_repository(config=self.config)
        self.registry = registry if registry is not None else AgentRegistry()
        self.templates = templates or TemplateRegistry(self.config.workflows)
        self.events = events_bus or EventBus()

        self.audit = AuditRecorder(self.repository, self.tenant_id)
        self.transitions = StatusTransitions(self.repository, self.tenant_id, self.audit)
        self.dispatcher = TaskDispatcher(
            self.repository, self.tenant_id, self.registry, self.transitions, self.events
        )
        self.completion = CompletionEvaluator(
            self.repository, self.tenant_id, self.transitions, self.audit, self.events
        )

        self.is_running = False
        self._stop_event = asyncio.Event()
        self._loop_task: Optional[asyncio.Task] = None

        for agent in self.registry:
            agent.bind(self)

    # ------------------------------------------------------------------
    # Agent registration
    def register_agent(self, agent: BaseAgent) -> BaseAgent:
        self.registry.register_agent(agent)
        agent.bind(self)
        logger.info(f"Registered agent: {agent.agent_id} for tenant: {self.tenant_id}")
        return agent

    def register(self, agent_id: str, entry_point: TaskCallable, **kwargs: Any) -> BaseAgent:
        """Register a callable as the execution entry point of ``agent_id``."""
        agent = self.registry.register(agent_id, entry_point, **kwargs)
        agent.bind(self)
        logger.info(f"Registered agent: {agent_id} for tenant: {self.tenant_id}")
        return agent

    # ------------------------------------------------------------------
    # Workflow submission and inspection
    async def start_workflow(
        self, workflow_type: str, context: Optional[Dict[str, Any]] = None
    ) -> str:
        """Create a workflow and its task set atomically and return its id."""
        template = self.templates.get(workflow_type)
        workflow = WorkflowRecord(
            tenant_id=self.tenant_id,
            workflow_type=workflow_type,
            context=dict(context or {}),
        )
        tasks = [
            TaskRecord(
                workflow_id=workflow.workflow_id,
                tenant_id=self.tenant_id,
                agent_id=step.agent_id,
                task_type=step.task_type,
                task_data=dict(step.task_data),
                dependencies=list(step.dependencies),
            )
            for step in template.tasks
        ]
        await self.repository.create_workflow(workflow, tasks)
        logger.info(
            f"Started workflow {workflow.workflow_id} ({workflow_type}) with {len(tasks)} tasks"
        )

        await self.audit.record(
            "workflow_started",
            {
                "workflow_id": workflow.workflow_id,
                "workflow_type": workflow_type,
                "context": workflow.context,
            },
        )
        await self.events.publish(
            events.WORKFLOW_STARTED,
            self.tenant_id,
            {"workflow_id": workflow.workflow_id, "workflow_type": workflow_type},
        )
        return workflow.workflow_id

    async def get_workflow_status(self, workflow_id: str) -> WorkflowSnapshot:
        """Return the workflow and its tasks.

        Raises:
            WorkflowNotFoundError: If the workflow does not exist in this tenant.
        """
        workflow = await self.repository.get_workflow(self.tenant_id, workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)
        tasks = await self.repository.list_tasks(self.tenant_id, workflow_id=workflow_id)
        return WorkflowSnapshot(workflow=workflow, tasks=tasks)

    async def update_task_status(
        self,
        coordination_id: str,
        status: TaskStatus,
        *,
        result_data: Optional[Any] = None,
        error_data: Optional[Dict[str, Any]] = None,
        agent_id: Optional[str] = None,
        expected: Optional[Iterable[TaskStatus]] = None,
    ) -> Optional[TaskRecord]:
        """Conditionally change a task's status; ``None`` if the race was lost."""
        return await self.transitions.transition_task(
            coordination_id,
            status,
            expected=expected,
            result_data=result_data,
            error_data=error_data,
            agent_id=agent_id,
            actor=agent_id or COORDINATOR_AGENT_ID,
        )

    # ------------------------------------------------------------------
    # Coordination loop
    async def run_iteration(self) -> IterationResult:
        """Dispatch ready tasks, then finish completed workflows."""
        dispatched = await self.dispatcher.dispatch()
        finished = await self.completion.evaluate()
        if dispatched or finished:
            logger.debug(
                f"Iteration dispatched {len(dispatched)} tasks, finished {len(finished)} workflows"
            )
        return IterationResult(dispatched=dispatched, finished=finished)

    async def coordination_loop(self) -> None:
        while self.is_running:
            try:
                # agents registered after start() join on the next pass
                await self._start_agents()
                await self.run_iteration()
            except Exception as exc:
                logger.exception("Coordination loop error")
                await self.events.publish(
                    events.COORDINATION_ERROR,
                    self.tenant_id,
                    {"error": str(exc), "exception_type": type(exc).__name__},
                )
            await self._sleep()

    async def _sleep(self) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=self.polling_interval)
        except asyncio.TimeoutError:
            pass

    async def start(self) -> None:
        if self.is_running:
            return
        self.is_running = True
        self._stop_event.clear()
        logger.info(f"Starting coordination for tenant: {self.tenant_id}")
        self._loop_task = asyncio.create_task(
            self.coordination_loop(), name=f"agentboard-coordinator-{self.tenant_id}"
        )
        await self._start_agents()
        await self.events.publish(events.COORDINATOR_STARTED, self.tenant_id)

    async def _start_agents(self) -> None:
        for agent in self.registry:
            await agent.start()

    async def stop(self) -> None:
        """Stop polling. Tasks already assigned or running are left as they are."""
        if not self.is_running:
            return
        self.is_running = False
        self._stop_event.set()
        if self._loop_task is not None:
            await self._loop_task
            self._loop_task = None
        for agent in self.registry:
            await agent.stop()
        logger.info(f"Stopped coordination for tenant: {self.tenant_id}")
        await self.events.publish(events.COORDINATOR_STOPPED, self.tenant_id)

    async def close(self) -> None:
        await self.stop()
        await self.repository.close()

    async def __aenter__(self) -> "Coordinator":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    # ------------------------------------------------------------------
    # Monitoring
    async def health_check(self) -> HealthReport:
        try:
            await self.repository.ping()
        except Exception as exc:
            return HealthReport(
                healthy=False,
                tenant_id=self.tenant_id,
                running=self.is_running,
                store_reachable=False,
                store_error=str(exc),
                agents=self.registry.agent_ids(),
                inflight_tasks=self.dispatcher.inflight,
            )

        assigned = await self.repository.list_tasks(
            self.tenant_id, status=TaskStatus.ASSIGNED
        )
        stranded = [t.coordination_id for t in assigned if t.agent_id not in self.registry]
        pending = await self.repository.list_tasks(self.tenant_id, status=TaskStatus.PENDING)
        ready = await self.dispatcher.find_ready_tasks(pending)
        return HealthReport(
            healthy=not stranded,
            tenant_id=self.tenant_id,
            running=self.is_running,
            store_reachable=True,
            agents=self.registry.agent_ids(),
            stranded_tasks=stranded,
            pending_tasks=len(pending),
            blocked_tasks=len(pending) - len(ready),
            inflight_tasks=self.dispatcher.inflight,
        )
