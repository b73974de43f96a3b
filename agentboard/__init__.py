"""Agentboard: agent coordination through durable shared state."""

from .agent import AgentRegistry, BaseAgent, CallableAgent
from .config import AgentboardConfig, load_config
from .errors import (
    AgentboardError,
    InvalidTransitionError,
    StaleTransitionError,
    StoreError,
    UnknownWorkflowTypeError,
    WorkflowNotFoundError,
)
from .events import CoordinationEvent, EventBus
from .orchestrator import Coordinator, HealthReport
from .persistence import get_repository
from .persistence.models import AuditEntry, TaskRecord, WorkflowRecord, WorkflowSnapshot
from .states import TaskStatus, WorkflowStatus
from .templates import TaskTemplate, TemplateRegistry, WorkflowTemplate

__version__ = "0.1.0"
__all__ = [
    "AgentboardConfig",
    "AgentboardError",
    "AgentRegistry",
    "AuditEntry",
    "BaseAgent",
    "CallableAgent",
    "CoordinationEvent",
    "Coordinator",
    "EventBus",
    "HealthReport",
    "InvalidTransitionError",
    "StaleTransitionError",
    "StoreError",
    "TaskRecord",
    "TaskStatus",
    "TaskTemplate",
    "TemplateRegistry",
    "UnknownWorkflowTypeError",
    "WorkflowNotFoundError",
    "WorkflowRecord",
    "WorkflowSnapshot",
    "WorkflowStatus",
    "WorkflowTemplate",
    "get_repository",
    "load_config",
]
