"""Persistence layer for hrflow workflows."""

from __future__ import annotations

import os
from typing import Optional

from ..config import HrflowConfig, load_config
from .inmemory import InMemoryWorkflowRepository
from .repository import WorkflowRepository
from .sqlite import SQLiteWorkflowRepository

try:  # pragma: no cover - optional dependency
    from .postgres import PostgresWorkflowRepository
except ImportError:  # pragma: no cover - optional dependency
    PostgresWorkflowRepository = None  # type: ignore

_repository_instance: WorkflowRepository | None = None


def get_repository(
    database_url: Optional[str] = None, config: Optional[HrflowConfig] = None
) -> WorkflowRepository:
    """Factory function to obtain a workflow repository.

    The repository backend is selected based on ``database_url`` which can be
    provided explicitly, via environment variable ``HRFLOW_DATABASE_URL`` or
    ``DATABASE_URL``, or from loaded configuration. When no database is
    configured, the process-wide in-memory repository is returned.
    """

    global _repository_instance
    if _repository_instance is not None and database_url is None and config is None:
        return _repository_instance

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("HRFLOW_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or getattr(config, "database_url", None)
    )

    if not database_url:
        # one in-memory store per process, shared by every engine
        if not isinstance(_repository_instance, InMemoryWorkflowRepository):
            _repository_instance = InMemoryWorkflowRepository()
        return _repository_instance

    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        _repository_instance = SQLiteWorkflowRepository(path)
    elif database_url.startswith("postgres://") or database_url.startswith(
        "postgresql://"
    ):
        if PostgresWorkflowRepository is None:
            raise RuntimeError("Postgres support not available")
        _repository_instance = PostgresWorkflowRepository(database_url)
    else:
        raise ValueError(f"Unsupported database backend: {database_url}")

    return _repository_instance


__all__ = [
    "WorkflowRepository",
    "SQLiteWorkflowRepository",
    "PostgresWorkflowRepository",
    "InMemoryWorkflowRepository",
    "get_repository",
]
