"""PostgreSQL implementation of the coordination repository."""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional, Sequence

import asyncpg

from ..errors import StoreError
from ..states import TaskStatus, WorkflowStatus
from .models import AuditEntry, TaskRecord, WorkflowRecord, utcnow
from .repository import CoordinationRepository

_TASK_COLUMNS = (
    "coordination_id, workflow_id, tenant_id, agent_id, task_type, task_data, "
    "dependencies, status, result_data, error_data, created_at, updated_at, completed_at"
)
_WORKFLOW_COLUMNS = (
    "workflow_id, tenant_id, workflow_type, context, status, created_at, completed_at"
)


async def _init_connection(conn: asyncpg.Connection) -> None:
    for type_name in ("json", "jsonb"):
        await conn.set_type_codec(
            type_name,
            encoder=lambda value: json.dumps(value, default=str),
            decoder=json.loads,
            schema="pg_catalog",
        )


class PostgresCoordinationRepository(CoordinationRepository):
    """Persist coordination state using PostgreSQL.

    Row locks taken by ``UPDATE ... WHERE status = ANY(...)`` make the
    conditional transitions safe for coordinators in separate processes.
    """

    def __init__(self, dsn: str, min_size: int = 1, max_size: int = 10):
        self._dsn = dsn
        self._min_size = min_size
        self._max_size = max_size
        self._pool: asyncpg.Pool | None = None

    async def _get_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            pool = await asyncpg.create_pool(
                self._dsn,
                min_size=self._min_size,
                max_size=self._max_size,
                init=_init_connection,
            )
            async with pool.acquire() as conn:
                await self._ensure_schema(conn)
            self._pool = pool
        return self._pool

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[asyncpg.Connection]:
        try:
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                yield conn
        except (asyncpg.PostgresError, OSError) as exc:
            raise StoreError(f"PostgreSQL operation failed: {exc}") from exc

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflows (
                seq BIGSERIAL,
                workflow_id TEXT PRIMARY KEY,
                tenant_id TEXT NOT NULL,
                workflow_type TEXT NOT NULL,
                context JSONB NOT NULL,
                status TEXT NOT NULL,
                created_at TIMESTAMPTZ NOT NULL,
                completed_at TIMESTAMPTZ
            )
            """
        )
        await conn.execute("ALTER TABLE workflows ADD COLUMN IF NOT EXISTS seq BIGSERIAL")
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS agent_coordination (
                seq BIGSERIAL,
                coordination_id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL REFERENCES workflows (workflow_id),
                tenant_id TEXT NOT NULL,
                agent_id TEXT NOT NULL,
                task_type TEXT NOT NULL,
                task_data JSONB NOT NULL,
                dependencies JSONB NOT NULL,
                status TEXT NOT NULL,
                result_data JSONB,
                error_data JSONB,
                created_at TIMESTAMPTZ NOT NULL,
                updated_at TIMESTAMPTZ,
                completed_at TIMESTAMPTZ
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS agent_audit_log (
                audit_id BIGSERIAL PRIMARY KEY,
                tenant_id TEXT NOT NULL,
                agent_id TEXT NOT NULL,
                action_type TEXT NOT NULL,
                action_data JSONB NOT NULL,
                created_at TIMESTAMPTZ NOT NULL
            )
            """
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_coordination_status "
            "ON agent_coordination (tenant_id, status, created_at)"
        )

    @staticmethod
    def _row_to_task(row: asyncpg.Record) -> TaskRecord:
        return TaskRecord(**{key: row[key] for key in _TASK_COLUMNS.split(", ")})

    @staticmethod
    def _row_to_workflow(row: asyncpg.Record) -> WorkflowRecord:
        return WorkflowRecord(**{key: row[key] for key in _WORKFLOW_COLUMNS.split(", ")})

    @staticmethod
    def _task_args(task: TaskRecord) -> tuple:
        return (
            task.coordination_id,
            task.workflow_id,
            task.tenant_id,
            task.agent_id,
            task.task_type,
            task.task_data,
            task.dependencies,
            task.status.value,
            task.result_data,
            task.error_data,
            task.created_at,
            task.updated_at,
            task.completed_at,
        )

    # ------------------------------------------------------------------
    async def create_workflow(
        self, workflow: WorkflowRecord, tasks: Sequence[TaskRecord]
    ) -> None:
        async with self._connection() as conn:
            async with conn.transaction():
                await conn.execute(
                    f"INSERT INTO workflows ({_WORKFLOW_COLUMNS}) "
                    "VALUES ($1, $2, $3, $4, $5, $6, $7)",
                    workflow.workflow_id,
                    workflow.tenant_id,
                    workflow.workflow_type,
                    workflow.context,
                    workflow.status.value,
                    workflow.created_at,
                    workflow.completed_at,
                )
                if tasks:
                    await conn.executemany(
                        f"INSERT INTO agent_coordination ({_TASK_COLUMNS}) VALUES "
                        "($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13)",
                        [self._task_args(task) for task in tasks],
                    )

    async def get_workflow(
        self, tenant_id: str, workflow_id: str
    ) -> WorkflowRecord | None:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                f"SELECT {_WORKFLOW_COLUMNS} FROM workflows "
                "WHERE workflow_id = $1 AND tenant_id = $2",
                workflow_id,
                tenant_id,
            )
        return self._row_to_workflow(row) if row else None

    async def list_workflows(
        self, tenant_id: str, status: Optional[WorkflowStatus] = None
    ) -> list[WorkflowRecord]:
        query = f"SELECT {_WORKFLOW_COLUMNS} FROM workflows WHERE tenant_id = $1"
        params: list[Any] = [tenant_id]
        if status is not None:
            params.append(WorkflowStatus(status).value)
            query += f" AND status = ${len(params)}"
        query += " ORDER BY created_at ASC, seq ASC"
        async with self._connection() as conn:
            rows = await conn.fetch(query, *params)
        return [self._row_to_workflow(r) for r in rows]

    async def insert_task(self, task: TaskRecord) -> None:
        async with self._connection() as conn:
            await conn.execute(
                f"INSERT INTO agent_coordination ({_TASK_COLUMNS}) VALUES "
                "($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13)",
                *self._task_args(task),
            )

    async def get_task(self, tenant_id: str, coordination_id: str) -> TaskRecord | None:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                f"SELECT {_TASK_COLUMNS} FROM agent_coordination "
                "WHERE coordination_id = $1 AND tenant_id = $2",
                coordination_id,
                tenant_id,
            )
        return self._row_to_task(row) if row else None

    async def list_tasks(
        self,
        tenant_id: str,
        *,
        workflow_id: Optional[str] = None,
        status: Optional[TaskStatus] = None,
        agent_id: Optional[str] = None,
        task_type: Optional[str] = None,
    ) -> list[TaskRecord]:
        query = f"SELECT {_TASK_COLUMNS} FROM agent_coordination WHERE tenant_id = $1"
        params: list[Any] = [tenant_id]
        for column, value in (
            ("workflow_id", workflow_id),
            ("status", TaskStatus(status).value if status is not None else None),
            ("agent_id", agent_id),
            ("task_type", task_type),
        ):
            if value is not None:
                params.append(value)
                query += f" AND {column} = ${len(params)}"
        query += " ORDER BY created_at ASC, seq ASC"
        async with self._connection() as conn:
            rows = await conn.fetch(query, *params)
        return [self._row_to_task(r) for r in rows]

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
        new_status = TaskStatus(new_status)
        now = utcnow()
        terminal = new_status in (TaskStatus.COMPLETED, TaskStatus.FAILED)
        query = (
            "UPDATE agent_coordination "
            "SET status = $1, result_data = $2, error_data = $3, updated_at = $4, completed_at = $5 "
            "WHERE coordination_id = $6 AND tenant_id = $7 AND status = ANY($8::text[])"
        )
        params: list[Any] = [
            new_status.value,
            result_data,
            error_data,
            now,
            now if terminal else None,
            coordination_id,
            tenant_id,
            [TaskStatus(s).value for s in expected],
        ]
        if agent_id is not None:
            params.append(agent_id)
            query += f" AND agent_id = ${len(params)}"
        query += f" RETURNING {_TASK_COLUMNS}"
        async with self._connection() as conn:
            row = await conn.fetchrow(query, *params)
        return self._row_to_task(row) if row else None

    async def transition_workflow(
        self,
        tenant_id: str,
        workflow_id: str,
        expected: WorkflowStatus,
        new_status: WorkflowStatus,
    ) -> WorkflowRecord | None:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                "UPDATE workflows SET status = $1, completed_at = $2 "
                "WHERE workflow_id = $3 AND tenant_id = $4 AND status = $5 "
                f"RETURNING {_WORKFLOW_COLUMNS}",
                WorkflowStatus(new_status).value,
                utcnow(),
                workflow_id,
                tenant_id,
                WorkflowStatus(expected).value,
            )
        return self._row_to_workflow(row) if row else None

    async def append_audit(self, entry: AuditEntry) -> None:
        async with self._connection() as conn:
            await conn.execute(
                "INSERT INTO agent_audit_log (tenant_id, agent_id, action_type, action_data, created_at) "
                "VALUES ($1, $2, $3, $4, $5)",
                entry.tenant_id,
                entry.agent_id,
                entry.action_type,
                entry.action_data,
                entry.created_at,
            )

    async def list_audit(
        self,
        tenant_id: str,
        *,
        action_type: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[AuditEntry]:
        query = (
            "SELECT audit_id, tenant_id, agent_id, action_type, action_data, created_at "
            "FROM agent_audit_log WHERE tenant_id = $1"
        )
        params: list[Any] = [tenant_id]
        if action_type is not None:
            params.append(action_type)
            query += f" AND action_type = ${len(params)}"
        query += " ORDER BY audit_id DESC"
        if limit is not None:
            params.append(limit)
            query += f" LIMIT ${len(params)}"
        async with self._connection() as conn:
            rows = await conn.fetch(query, *params)
        return [AuditEntry(**dict(r)) for r in reversed(rows)]

    async def ping(self) -> None:
        async with self._connection() as conn:
            await conn.fetchval("SELECT 1")

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
