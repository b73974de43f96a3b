"""Audit trail of state-changing actions."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from .persistence.models import AuditEntry
from .persistence.repository import CoordinationRepository

logger = logging.getLogger(__name__)

COORDINATOR_AGENT_ID = "coordinator"


class AuditRecorder:
    """Appends audit entries for one tenant.

    The audit log is never read for scheduling decisions. A failed write is
    logged and reported through the return value so the state change that
    preceded it stands.
    """

    def __init__(self, repository: CoordinationRepository, tenant_id: str) -> None:
        self._repository = repository
        self.tenant_id = tenant_id

    async def record(
        self,
        action_type: str,
        action_data: Optional[Dict[str, Any]] = None,
        agent_id: str = COORDINATOR_AGENT_ID,
    ) -> bool:
        entry = AuditEntry(
            tenant_id=self.tenant_id,
            agent_id=agent_id,
            action_type=action_type,
            action_data=action_data or {},
        )
        try:
            await self._repository.append_audit(entry)
        except Exception:
            logger.exception(
                f"Failed to record audit entry {action_type} for agent {agent_id}"
            )
            return False
        return True

    async def history(
        self, action_type: Optional[str] = None, limit: Optional[int] = None
    ) -> list[AuditEntry]:
        return await self._repository.list_audit(
            self.tenant_id, action_type=action_type, limit=limit
        )
