"""SQLite implementation of the workflow repository."""

from __future__ import annotations

import asyncio
import sqlite3
from pathlib import Path
from typing import Any, Optional, Sequence

from ..contracts import (
    EmployeeWorkflow,
    WorkflowException,
    WorkflowIntegration,
    WorkflowStep,
    WorkflowTemplate,
)
from .repository import WorkflowRepository


class SQLiteWorkflowRepository(WorkflowRepository):
    """Persist workflow state using SQLite.

    Each record is stored as a JSON document next to the columns used for
    lookups.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS templates (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                data TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflows (
                id TEXT PRIMARY KEY,
                data TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_steps (
                id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                step_order INTEGER NOT NULL,
                data TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_integrations (
                id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                step_id TEXT NOT NULL,
                data TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_exceptions (
                id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                data TEXT NOT NULL
            )
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        self._conn.commit()

    def _executemany(self, query: str, rows: list[tuple]) -> None:
        cur = self._conn.cursor()
        cur.executemany(query, rows)
        self._conn.commit()

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchall()

    # ------------------------------------------------------------------
    # Templates
    async def save_template(self, template: WorkflowTemplate) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO templates (id, name, data) VALUES (?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET name = excluded.name, data = excluded.data
            """,
            template.id,
            template.name,
            template.model_dump_json(),
        )

    async def get_template(self, template_id: str) -> WorkflowTemplate | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT data FROM templates WHERE id = ?", template_id
        )
        return WorkflowTemplate.model_validate_json(row["data"]) if row else None

    async def find_template_by_name(self, name: str) -> WorkflowTemplate | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT data FROM templates WHERE name = ?", name
        )
        return WorkflowTemplate.model_validate_json(row["data"]) if row else None

    async def list_templates(self) -> list[WorkflowTemplate]:
        rows = await asyncio.to_thread(
            self._fetchall, "SELECT data FROM templates ORDER BY rowid"
        )
        return [WorkflowTemplate.model_validate_json(r["data"]) for r in rows]

    async def delete_template(self, template_id: str) -> None:
        await asyncio.to_thread(
            self._execute, "DELETE FROM templates WHERE id = ?", template_id
        )

    # ------------------------------------------------------------------
    # Workflows
    async def save_workflow(self, workflow: EmployeeWorkflow) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO workflows (id, data) VALUES (?, ?)
            ON CONFLICT(id) DO UPDATE SET data = excluded.data
            """,
            workflow.id,
            workflow.model_dump_json(),
        )

    async def get_workflow(self, workflow_id: str) -> EmployeeWorkflow | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT data FROM workflows WHERE id = ?", workflow_id
        )
        return EmployeeWorkflow.model_validate_json(row["data"]) if row else None

    async def list_workflows(self) -> list[EmployeeWorkflow]:
        rows = await asyncio.to_thread(
            self._fetchall, "SELECT data FROM workflows ORDER BY rowid"
        )
        return [EmployeeWorkflow.model_validate_json(r["data"]) for r in rows]

    # ------------------------------------------------------------------
    # Steps
    async def save_steps(self, steps: Sequence[WorkflowStep]) -> None:
        rows = [(s.id, s.workflow_id, s.order, s.model_dump_json()) for s in steps]
        if not rows:
            return
        await asyncio.to_thread(
            self._executemany,
            """
            INSERT INTO workflow_steps (id, workflow_id, step_order, data)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET step_order = excluded.step_order, data = excluded.data
            """,
            rows,
        )

    async def get_step(self, step_id: str) -> WorkflowStep | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT data FROM workflow_steps WHERE id = ?", step_id
        )
        return WorkflowStep.model_validate_json(row["data"]) if row else None

    async def list_steps(self, workflow_id: str) -> list[WorkflowStep]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT data FROM workflow_steps WHERE workflow_id = ? ORDER BY step_order",
            workflow_id,
        )
        return [WorkflowStep.model_validate_json(r["data"]) for r in rows]

    # ------------------------------------------------------------------
    # Integrations
    async def save_integration(self, integration: WorkflowIntegration) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO workflow_integrations (id, workflow_id, step_id, data)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET data = excluded.data
            """,
            integration.id,
            integration.workflow_id,
            integration.step_id,
            integration.model_dump_json(),
        )

    async def list_integrations(
        self, workflow_id: Optional[str] = None, step_id: Optional[str] = None
    ) -> list[WorkflowIntegration]:
        query = "SELECT data FROM workflow_integrations WHERE 1=1"
        params: list[Any] = []
        if workflow_id is not None:
            query += " AND workflow_id = ?"
            params.append(workflow_id)
        if step_id is not None:
            query += " AND step_id = ?"
            params.append(step_id)
        query += " ORDER BY rowid"
        rows = await asyncio.to_thread(self._fetchall, query, *params)
        return [WorkflowIntegration.model_validate_json(r["data"]) for r in rows]

    # ------------------------------------------------------------------
    # Exceptions
    async def save_exception(self, exception: WorkflowException) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO workflow_exceptions (id, workflow_id, data) VALUES (?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET data = excluded.data
            """,
            exception.id,
            exception.workflow_id,
            exception.model_dump_json(),
        )

    async def get_exception(self, exception_id: str) -> WorkflowException | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT data FROM workflow_exceptions WHERE id = ?",
            exception_id,
        )
        return WorkflowException.model_validate_json(row["data"]) if row else None

    async def list_exceptions(
        self, workflow_id: Optional[str] = None
    ) -> list[WorkflowException]:
        if workflow_id is None:
            rows = await asyncio.to_thread(
                self._fetchall, "SELECT data FROM workflow_exceptions ORDER BY rowid"
            )
        else:
            rows = await asyncio.to_thread(
                self._fetchall,
                "SELECT data FROM workflow_exceptions WHERE workflow_id = ? ORDER BY rowid",
                workflow_id,
            )
        return [WorkflowException.model_validate_json(r["data"]) for r in rows]
