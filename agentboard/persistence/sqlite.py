"""SQLite implementation of the coordination repository."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterator, Optional, Sequence, TypeVar

from ..errors import StoreError
from ..states import TaskStatus, WorkflowStatus
from .models import AuditEntry, TaskRecord, WorkflowRecord, utcnow
from .repository import CoordinationRepository

T = TypeVar("T")

_TASK_COLUMNS = (
    "coordination_id, workflow_id, tenant_id, agent_id, task_type, task_data, "
    "dependencies, status, result_data, error_data, created_at, updated_at, completed_at"
)
_WORKFLOW_COLUMNS = (
    "workflow_id, tenant_id, workflow_type, context, status, created_at, completed_at"
)


def _dump(value: Any) -> str | None:
    return None if value is None else json.dumps(value, default=str)


def _load(value: str | None) -> Any:
    return None if value is None else json.loads(value)


def _ts(value: datetime | None) -> str | None:
    return value.isoformat(timespec="microseconds") if value else None


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class SQLiteCoordinationRepository(CoordinationRepository):
    """Persist coordination state using SQLite.

    Conditional transitions are single ``UPDATE ... WHERE status IN (...)``
    statements, so they stay atomic across processes sharing the file.
    """

    def __init__(self, db_path: str | Path, timeout: float = 30.0):
        self.db_path = str(db_path)
        # transactions are opened explicitly, see _transaction
        self._conn = sqlite3.connect(
            self.db_path,
            timeout=timeout,
            check_same_thread=False,
            isolation_level=None,
        )
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._ensure_schema()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        # IMMEDIATE takes the write lock up front so competing writers wait on
        # the busy timeout instead of failing on a lock upgrade
        self._conn.execute("BEGIN IMMEDIATE")
        try:
            yield self._conn
        except BaseException:
            self._conn.rollback()
            raise
        else:
            self._conn.commit()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        with self._lock, self._transaction():
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS workflows (
                    workflow_id TEXT PRIMARY KEY,
                    tenant_id TEXT NOT NULL,
                    workflow_type TEXT NOT NULL,
                    context TEXT NOT NULL,
                    status TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    completed_at TEXT
                )
                """
            )
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS agent_coordination (
                    coordination_id TEXT PRIMARY KEY,
                    workflow_id TEXT NOT NULL REFERENCES workflows (workflow_id),
                    tenant_id TEXT NOT NULL,
                    agent_id TEXT NOT NULL,
                    task_type TEXT NOT NULL,
                    task_data TEXT NOT NULL,
                    dependencies TEXT NOT NULL,
                    status TEXT NOT NULL,
                    result_data TEXT,
                    error_data TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT,
                    completed_at TEXT
                )
                """
            )
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS agent_audit_log (
                    audit_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    tenant_id TEXT NOT NULL,
                    agent_id TEXT NOT NULL,
                    action_type TEXT NOT NULL,
                    action_data TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
                """
            )
            self._conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_coordination_status "
                "ON agent_coordination (tenant_id, status, created_at)"
            )
            self._conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_coordination_workflow "
                "ON agent_coordination (tenant_id, workflow_id)"
            )

    # ------------------------------------------------------------------
    # Helper methods
    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        def locked() -> T:
            with self._lock:
                return fn(*args)

        try:
            return await asyncio.to_thread(locked)
        except sqlite3.Error as exc:
            raise StoreError(f"SQLite operation failed: {exc}") from exc

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        return self._conn.execute(query, params).fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        return self._conn.execute(query, params).fetchall()

    def _execute(self, query: str, *params: Any) -> int:
        with self._transaction():
            return self._conn.execute(query, params).rowcount

    @staticmethod
    def _task_params(task: TaskRecord) -> tuple:
        return (
            task.coordination_id,
            task.workflow_id,
            task.tenant_id,
            task.agent_id,
            task.task_type,
            json.dumps(task.task_data),
            json.dumps(task.dependencies),
            task.status.value,
            _dump(task.result_data),
            _dump(task.error_data),
            _ts(task.created_at),
            _ts(task.updated_at),
            _ts(task.completed_at),
        )

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> TaskRecord:
        return TaskRecord(
            coordination_id=row["coordination_id"],
            workflow_id=row["workflow_id"],
            tenant_id=row["tenant_id"],
            agent_id=row["agent_id"],
            task_type=row["task_type"],
            task_data=json.loads(row["task_data"]),
            dependencies=json.loads(row["dependencies"]),
            status=row["status"],
            result_data=_load(row["result_data"]),
            error_data=_load(row["error_data"]),
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
            completed_at=_parse_ts(row["completed_at"]),
        )

    @staticmethod
    def _row_to_workflow(row: sqlite3.Row) -> WorkflowRecord:
        return WorkflowRecord(
            workflow_id=row["workflow_id"],
            tenant_id=row["tenant_id"],
            workflow_type=row["workflow_type"],
            context=json.loads(row["context"]),
            status=row["status"],
            created_at=_parse_ts(row["created_at"]),
            completed_at=_parse_ts(row["completed_at"]),
        )

    def _insert_workflow_with_tasks(
        self, workflow: WorkflowRecord, tasks: Sequence[TaskRecord]
    ) -> None:
        placeholders = ", ".join("?" * 13)
        with self._transaction():
            self._conn.execute(
                f"INSERT INTO workflows ({_WORKFLOW_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    workflow.workflow_id,
                    workflow.tenant_id,
                    workflow.workflow_type,
                    json.dumps(workflow.context),
                    workflow.status.value,
                    _ts(workflow.created_at),
                    _ts(workflow.completed_at),
                ),
            )
            self._conn.executemany(
                f"INSERT INTO agent_coordination ({_TASK_COLUMNS}) VALUES ({placeholders})",
                [self._task_params(task) for task in tasks],
            )

    # ------------------------------------------------------------------
    # Repository API
    async def create_workflow(
        self, workflow: WorkflowRecord, tasks: Sequence[TaskRecord]
    ) -> None:
        await self._run(self._insert_workflow_with_tasks, workflow, list(tasks))

    async def get_workflow(
        self, tenant_id: str, workflow_id: str
    ) -> WorkflowRecord | None:
        row = await self._run(
            self._fetchone,
            f"SELECT {_WORKFLOW_COLUMNS} FROM workflows WHERE workflow_id = ? AND tenant_id = ?",
            workflow_id,
            tenant_id,
        )
        return self._row_to_workflow(row) if row else None

    async def list_workflows(
        self, tenant_id: str, status: Optional[WorkflowStatus] = None
    ) -> list[WorkflowRecord]:
        query = f"SELECT {_WORKFLOW_COLUMNS} FROM workflows WHERE tenant_id = ?"
        params: list[Any] = [tenant_id]
        if status is not None:
            query += " AND status = ?"
            params.append(WorkflowStatus(status).value)
        query += " ORDER BY created_at ASC, rowid ASC"
        rows = await self._run(self._fetchall, query, *params)
        return [self._row_to_workflow(r) for r in rows]

    async def insert_task(self, task: TaskRecord) -> None:
        placeholders = ", ".join("?" * 13)
        await self._run(
            self._execute,
            f"INSERT INTO agent_coordination ({_TASK_COLUMNS}) VALUES ({placeholders})",
            *self._task_params(task),
        )

    async def get_task(self, tenant_id: str, coordination_id: str) -> TaskRecord | None:
        row = await self._run(
            self._fetchone,
            f"SELECT {_TASK_COLUMNS} FROM agent_coordination "
            "WHERE coordination_id = ? AND tenant_id = ?",
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
        query = f"SELECT {_TASK_COLUMNS} FROM agent_coordination WHERE tenant_id = ?"
        params: list[Any] = [tenant_id]
        if workflow_id is not None:
            query += " AND workflow_id = ?"
            params.append(workflow_id)
        if status is not None:
            query += " AND status = ?"
            params.append(TaskStatus(status).value)
        if agent_id is not None:
            query += " AND agent_id = ?"
            params.append(agent_id)
        if task_type is not None:
            query += " AND task_type = ?"
            params.append(task_type)
        query += " ORDER BY created_at ASC, rowid ASC"
        rows = await self._run(self._fetchall, query, *params)
        return [self._row_to_task(r) for r in rows]

    def _conditional_task_update(
        self,
        tenant_id: str,
        coordination_id: str,
        expected: Sequence[TaskStatus],
        new_status: TaskStatus,
        result_data: Optional[Any],
        error_data: Optional[dict[str, Any]],
        agent_id: Optional[str],
    ) -> sqlite3.Row | None:
        now = utcnow()
        terminal = new_status in (TaskStatus.COMPLETED, TaskStatus.FAILED)
        status_marks = ", ".join("?" * len(expected))
        query = (
            "UPDATE agent_coordination "
            "SET status = ?, result_data = ?, error_data = ?, updated_at = ?, completed_at = ? "
            f"WHERE coordination_id = ? AND tenant_id = ? AND status IN ({status_marks})"
        )
        params: list[Any] = [
            new_status.value,
            _dump(result_data),
            _dump(error_data),
            _ts(now),
            _ts(now) if terminal else None,
            coordination_id,
            tenant_id,
            *(TaskStatus(s).value for s in expected),
        ]
        if agent_id is not None:
            query += " AND agent_id = ?"
            params.append(agent_id)
        with self._transaction():
            changed = self._conn.execute(query, params).rowcount
        if changed != 1:
            return None
        return self._fetchone(
            f"SELECT {_TASK_COLUMNS} FROM agent_coordination WHERE coordination_id = ?",
            coordination_id,
        )

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
        row = await self._run(
            self._conditional_task_update,
            tenant_id,
            coordination_id,
            list(expected),
            TaskStatus(new_status),
            result_data,
            error_data,
            agent_id,
        )
        return self._row_to_task(row) if row else None

    def _conditional_workflow_update(
        self,
        tenant_id: str,
        workflow_id: str,
        expected: WorkflowStatus,
        new_status: WorkflowStatus,
    ) -> sqlite3.Row | None:
        with self._transaction():
            changed = self._conn.execute(
                "UPDATE workflows SET status = ?, completed_at = ? "
                "WHERE workflow_id = ? AND tenant_id = ? AND status = ?",
                (
                    new_status.value,
                    _ts(utcnow()),
                    workflow_id,
                    tenant_id,
                    expected.value,
                ),
            ).rowcount
        if changed != 1:
            return None
        return self._fetchone(
            f"SELECT {_WORKFLOW_COLUMNS} FROM workflows WHERE workflow_id = ?",
            workflow_id,
        )

    async def transition_workflow(
        self,
        tenant_id: str,
        workflow_id: str,
        expected: WorkflowStatus,
        new_status: WorkflowStatus,
    ) -> WorkflowRecord | None:
        row = await self._run(
            self._conditional_workflow_update,
            tenant_id,
            workflow_id,
            WorkflowStatus(expected),
            WorkflowStatus(new_status),
        )
        return self._row_to_workflow(row) if row else None

    async def append_audit(self, entry: AuditEntry) -> None:
        await self._run(
            self._execute,
            "INSERT INTO agent_audit_log (tenant_id, agent_id, action_type, action_data, created_at) "
            "VALUES (?, ?, ?, ?, ?)",
            entry.tenant_id,
            entry.agent_id,
            entry.action_type,
            json.dumps(entry.action_data, default=str),
            _ts(entry.created_at),
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
            "FROM agent_audit_log WHERE tenant_id = ?"
        )
        params: list[Any] = [tenant_id]
        if action_type is not None:
            query += " AND action_type = ?"
            params.append(action_type)
        query += " ORDER BY audit_id DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        rows = await self._run(self._fetchall, query, *params)
        return [
            AuditEntry(
                audit_id=r["audit_id"],
                tenant_id=r["tenant_id"],
                agent_id=r["agent_id"],
                action_type=r["action_type"],
                action_data=json.loads(r["action_data"]),
                created_at=_parse_ts(r["created_at"]),
            )
            for r in reversed(rows)
        ]

    async def ping(self) -> None:
        await self._run(self._fetchone, "SELECT 1")

    async def close(self) -> None:
        await self._run(self._conn.close)
