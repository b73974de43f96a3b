"""Advisory event notifications.

Events are published after the durable state they describe has been written.
Delivery is best effort: a handler that raises is logged and skipped, and a
restarted coordinator does not replay events it never sent.
"""

from __future__ import annotations

import inspect
import logging
from collections import defaultdict
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from .persistence.models import utcnow

logger = logging.getLogger(__name__)

WORKFLOW_STARTED = "workflow_started"
WORKFLOW_COMPLETED = "workflow_completed"
TASK_DISPATCH_FAILED = "task_dispatch_failed"
TASK_COMPLETED = "task_completed"
TASK_FAILED = "task_failed"
COORDINATOR_STARTED = "coordinator_started"
COORDINATOR_STOPPED = "coordinator_stopped"
COORDINATION_ERROR = "coordination_error"

ALL_EVENTS = "*"


class CoordinationEvent(BaseModel):
    """Notification emitted by the coordinator or an agent."""

    event_type: str
    tenant_id: str
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)


EventHandler = Callable[[CoordinationEvent], Union[None, Awaitable[None]]]


class EventBus:
    """In-process publish/subscribe channel for coordination events."""

    def __init__(self) -> None:
        self._handlers: Dict[str, List[EventHandler]] = defaultdict(list)

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        """Call ``handler`` for ``event_type``; ``"*"`` receives every event."""
        self._handlers[event_type].append(handler)

    def unsubscribe(self, event_type: str, handler: EventHandler) -> None:
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    async def publish(
        self,
        event_type: str,
        tenant_id: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> CoordinationEvent:
        event = CoordinationEvent(event_type=event_type, tenant_id=tenant_id, data=data or {})
        for handler in [*self._handlers.get(event_type, []), *self._handlers.get(ALL_EVENTS, [])]:
            try:
                outcome = handler(event)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                logger.warning(
                    f"Event handler {getattr(handler, '__name__', handler)!r} failed for {event_type}",
                    exc_info=True,
                )
        return event
