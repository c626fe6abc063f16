"""PostgreSQL implementation of the workflow repository."""

from __future__ import annotations

from typing import Any, Optional, Sequence

import asyncpg

from ..contracts import (
    EmployeeWorkflow,
    WorkflowException,
    WorkflowIntegration,
    WorkflowStep,
    WorkflowTemplate,
)
from .repository import WorkflowRepository


class PostgresWorkflowRepository(WorkflowRepository):
    """Persist workflow state using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS hrflow_templates (
                seq BIGSERIAL,
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                data JSONB NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS hrflow_workflows (
                seq BIGSERIAL,
                id TEXT PRIMARY KEY,
                data JSONB NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS hrflow_steps (
                id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                step_order INTEGER NOT NULL,
                data JSONB NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS hrflow_integrations (
                seq BIGSERIAL,
                id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                step_id TEXT NOT NULL,
                data JSONB NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS hrflow_exceptions (
                seq BIGSERIAL,
                id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                data JSONB NOT NULL
            )
            """
        )

    async def _execute(self, query: str, *params: Any) -> None:
        conn = await self._connect()
        try:
            await conn.execute(query, *params)
        finally:
            await conn.close()

    async def _fetchrow(self, query: str, *params: Any) -> asyncpg.Record | None:
        conn = await self._connect()
        try:
            return await conn.fetchrow(query, *params)
        finally:
            await conn.close()

    async def _fetch(self, query: str, *params: Any) -> list[asyncpg.Record]:
        conn = await self._connect()
        try:
            return await conn.fetch(query, *params)
        finally:
            await conn.close()

    # ------------------------------------------------------------------
    async def save_template(self, template: WorkflowTemplate) -> None:
        await self._execute(
            """
            INSERT INTO hrflow_templates (id, name, data) VALUES ($1, $2, $3)
            ON CONFLICT (id) DO UPDATE SET name = EXCLUDED.name, data = EXCLUDED.data
            """,
            template.id,
            template.name,
            template.model_dump_json(),
        )

    async def get_template(self, template_id: str) -> WorkflowTemplate | None:
        row = await self._fetchrow(
            "SELECT data FROM hrflow_templates WHERE id = $1", template_id
        )
        return WorkflowTemplate.model_validate_json(row["data"]) if row else None

    async def find_template_by_name(self, name: str) -> WorkflowTemplate | None:
        row = await self._fetchrow(
            "SELECT data FROM hrflow_templates WHERE name = $1", name
        )
        return WorkflowTemplate.model_validate_json(row["data"]) if row else None

    async def list_templates(self) -> list[WorkflowTemplate]:
        rows = await self._fetch("SELECT data FROM hrflow_templates ORDER BY seq")
        return [WorkflowTemplate.model_validate_json(r["data"]) for r in rows]

    async def delete_template(self, template_id: str) -> None:
        await self._execute("DELETE FROM hrflow_templates WHERE id = $1", template_id)

    # ------------------------------------------------------------------
    async def save_workflow(self, workflow: EmployeeWorkflow) -> None:
        await self._execute(
            """
            INSERT INTO hrflow_workflows (id, data) VALUES ($1, $2)
            ON CONFLICT (id) DO UPDATE SET data = EXCLUDED.data
            """,
            workflow.id,
            workflow.model_dump_json(),
        )

    async def get_workflow(self, workflow_id: str) -> EmployeeWorkflow | None:
        row = await self._fetchrow(
            "SELECT data FROM hrflow_workflows WHERE id = $1", workflow_id
        )
        return EmployeeWorkflow.model_validate_json(row["data"]) if row else None

    async def list_workflows(self) -> list[EmployeeWorkflow]:
        rows = await self._fetch("SELECT data FROM hrflow_workflows ORDER BY seq")
        return [EmployeeWorkflow.model_validate_json(r["data"]) for r in rows]

    # ------------------------------------------------------------------
    async def save_steps(self, steps: Sequence[WorkflowStep]) -> None:
        if not steps:
            return
        conn = await self._connect()
        try:
            async with conn.transaction():
                await conn.executemany(
                    """
                    INSERT INTO hrflow_steps (id, workflow_id, step_order, data)
                    VALUES ($1, $2, $3, $4)
                    ON CONFLICT (id) DO UPDATE
                    SET step_order = EXCLUDED.step_order, data = EXCLUDED.data
                    """,
                    [(s.id, s.workflow_id, s.order, s.model_dump_json()) for s in steps],
                )
        finally:
            await conn.close()

    async def get_step(self, step_id: str) -> WorkflowStep | None:
        row = await self._fetchrow("SELECT data FROM hrflow_steps WHERE id = $1", step_id)
        return WorkflowStep.model_validate_json(row["data"]) if row else None

    async def list_steps(self, workflow_id: str) -> list[WorkflowStep]:
        rows = await self._fetch(
            "SELECT data FROM hrflow_steps WHERE workflow_id = $1 ORDER BY step_order",
            workflow_id,
        )
        return [WorkflowStep.model_validate_json(r["data"]) for r in rows]

    # ------------------------------------------------------------------
    async def save_integration(self, integration: WorkflowIntegration) -> None:
        await self._execute(
            """
            INSERT INTO hrflow_integrations (id, workflow_id, step_id, data)
            VALUES ($1, $2, $3, $4)
            ON CONFLICT (id) DO UPDATE SET data = EXCLUDED.data
            """,
            integration.id,
            integration.workflow_id,
            integration.step_id,
            integration.model_dump_json(),
        )

    async def list_integrations(
        self, workflow_id: Optional[str] = None, step_id: Optional[str] = None
    ) -> list[WorkflowIntegration]:
        query = "SELECT data FROM hrflow_integrations WHERE 1=1"
        params: list[Any] = []
        if workflow_id is not None:
            params.append(workflow_id)
            query += f" AND workflow_id = ${len(params)}"
        if step_id is not None:
            params.append(step_id)
            query += f" AND step_id = ${len(params)}"
        query += " ORDER BY seq"
        rows = await self._fetch(query, *params)
        return [WorkflowIntegration.model_validate_json(r["data"]) for r in rows]

    # ------------------------------------------------------------------
    async def save_exception(self, exception: WorkflowException) -> None:
        await self._execute(
            """
            INSERT INTO hrflow_exceptions (id, workflow_id, data) VALUES ($1, $2, $3)
            ON CONFLICT (id) DO UPDATE SET data = EXCLUDED.data
            """,
            exception.id,
            exception.workflow_id,
            exception.model_dump_json(),
        )

    async def get_exception(self, exception_id: str) -> WorkflowException | None:
        row = await self._fetchrow(
            "SELECT data FROM hrflow_exceptions WHERE id = $1", exception_id
        )
        return WorkflowException.model_validate_json(row["data"]) if row else None

    async def list_exceptions(
        self, workflow_id: Optional[str] = None
    ) -> list[WorkflowException]:
        if workflow_id is None:
            rows = await self._fetch("SELECT data FROM hrflow_exceptions ORDER BY seq")
        else:
            rows = await self._fetch(
                "SELECT data FROM hrflow_exceptions WHERE workflow_id = $1 ORDER BY seq",
                workflow_id,
            )
        return [WorkflowException.model_validate_json(r["data"]) for r in rows]
