"""Exception types raised by agentboard."""

from __future__ import annotations


class AgentboardError(Exception):
    """Base class for all agentboard errors."""


class WorkflowNotFoundError(AgentboardError):
    """Raised when a workflow id does not exist within the tenant."""

    def __init__(self, workflow_id: str) -> None:
        super().__init__(f"Workflow not found: {workflow_id}")
        self.workflow_id = workflow_id


class UnknownWorkflowTypeError(AgentboardError):
    """Raised by a strict template registry for an unregistered workflow type."""

    def __init__(self, workflow_type: str) -> None:
        super().__init__(f"No template registered for workflow type: {workflow_type}")
        self.workflow_type = workflow_type


class InvalidTransitionError(AgentboardError):
    """Raised when a status change is not allowed by the lifecycle."""


class StaleTransitionError(AgentboardError):
    """Raised when a conditional status update found an unexpected prior status."""


class StoreError(AgentboardError):
    """Raised when the persistence backend fails."""
