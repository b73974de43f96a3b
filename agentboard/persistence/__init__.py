"""Persistence layer for agentboard coordination state."""

from __future__ import annotations

import os
from typing import Optional

from ..config import AgentboardConfig, load_config
from .inmemory import InMemoryCoordinationRepository
from .models import (
    DATA_STORAGE_TASK_TYPE,
    AuditEntry,
    TaskRecord,
    WorkflowRecord,
    WorkflowSnapshot,
)
from .repository import CoordinationRepository
from .sqlite import SQLiteCoordinationRepository

_repository_instance: CoordinationRepository | None = None


def get_repository(
    database_url: Optional[str] = None, config: Optional[AgentboardConfig] = None
) -> CoordinationRepository:
    """Factory function to obtain a coordination repository.

    The repository backend is selected based on ``database_url`` which can be
    provided explicitly, via environment variable ``AGENTBOARD_DATABASE_URL`` or
    ``DATABASE_URL``, or from loaded configuration. When no database is
    configured, an in-memory repository is returned.
    """

    global _repository_instance
    if _repository_instance is not None and database_url is None and config is None:
        return _repository_instance

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("AGENTBOARD_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or config.database_url
    )

    if not database_url:
        _repository_instance = InMemoryCoordinationRepository()
        return _repository_instance

    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        _repository_instance = SQLiteCoordinationRepository(path)
    elif database_url.startswith("postgres://") or database_url.startswith(
        "postgresql://"
    ):
        from .postgres import PostgresCoordinationRepository

        _repository_instance = PostgresCoordinationRepository(database_url)
    else:
        raise ValueError(f"Unsupported database backend: {database_url}")

    return _repository_instance


__all__ = [
    "AuditEntry",
    "CoordinationRepository",
    "DATA_STORAGE_TASK_TYPE",
    "InMemoryCoordinationRepository",
    "SQLiteCoordinationRepository",
    "TaskRecord",
    "WorkflowRecord",
    "WorkflowSnapshot",
    "get_repository",
]
