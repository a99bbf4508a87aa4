"""Persistence layer for taskplane workflows, tasks and audit entries."""

from __future__ import annotations

import os
from typing import Optional

from ..config import TaskplaneConfig, load_config
from .inmemory import InMemoryWorkflowRepository
from .models import (
    AuditEventType,
    AuditLevel,
    AuditLogEntry,
    ErrorDetail,
    Task,
    TaskStatus,
    Workflow,
    WorkflowStatus,
)
from .repository import WorkflowRepository
from .sqlite import SQLiteWorkflowRepository


def get_repository(
    database_url: Optional[str] = None, config: Optional[TaskplaneConfig] = None
) -> WorkflowRepository:
    """Build a workflow repository.

    The backend is selected based on ``database_url`` which can be provided
    explicitly, via environment variable ``TASKPLANE_DATABASE_URL`` or
    ``DATABASE_URL``, or from loaded configuration. When no database is
    configured, an in-memory repository is returned. Every call builds a new
    instance; callers pass it explicitly to the components that need it.
    """

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("TASKPLANE_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or config.database_url
    )

    if not database_url:
        return InMemoryWorkflowRepository()

    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        return SQLiteWorkflowRepository(path)
    if database_url.startswith("postgres://") or database_url.startswith(
        "postgresql://"
    ):
        from .postgres import PostgresWorkflowRepository

        return PostgresWorkflowRepository(database_url)
    raise ValueError(f"Unsupported database backend: {database_url}")


__all__ = [
    "AuditEventType",
    "AuditLevel",
    "AuditLogEntry",
    "ErrorDetail",
    "Task",
    "TaskStatus",
    "Workflow",
    "WorkflowStatus",
    "WorkflowRepository",
    "SQLiteWorkflowRepository",
    "InMemoryWorkflowRepository",
    "get_repository",
]
