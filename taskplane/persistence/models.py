"""Data models for persisted workflow, task and audit state."""

from __future__ import annotations

import traceback
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, JsonValue

from ..contracts import InvalidTransitionError, TaskKind, utcnow


def _new_id() -> str:
    return str(uuid.uuid4())


class WorkflowStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_WORKFLOW_STATUSES


class TaskStatus(str, Enum):
    PENDING = "PENDING"
    SCHEDULED = "SCHEDULED"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)


TERMINAL_WORKFLOW_STATUSES = frozenset(
    {WorkflowStatus.COMPLETED, WorkflowStatus.FAILED, WorkflowStatus.CANCELLED}
)
OPEN_WORKFLOW_STATUSES = frozenset(set(WorkflowStatus) - TERMINAL_WORKFLOW_STATUSES)
OPEN_TASK_STATUSES = frozenset(
    {TaskStatus.PENDING, TaskStatus.SCHEDULED, TaskStatus.RUNNING}
)

WORKFLOW_TRANSITIONS: dict[WorkflowStatus, frozenset[WorkflowStatus]] = {
    WorkflowStatus.PENDING: frozenset(
        {
            WorkflowStatus.RUNNING,
            WorkflowStatus.COMPLETED,
            WorkflowStatus.FAILED,
            WorkflowStatus.CANCELLED,
        }
    ),
    WorkflowStatus.RUNNING: frozenset(
        {WorkflowStatus.COMPLETED, WorkflowStatus.FAILED, WorkflowStatus.CANCELLED}
    ),
    WorkflowStatus.COMPLETED: frozenset(),
    WorkflowStatus.FAILED: frozenset(),
    WorkflowStatus.CANCELLED: frozenset(),
}

# RUNNING -> RUNNING covers redelivery after a crash mid-execution.
TASK_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset(
        {TaskStatus.SCHEDULED, TaskStatus.RUNNING, TaskStatus.COMPLETED}
    ),
    TaskStatus.SCHEDULED: frozenset({TaskStatus.RUNNING, TaskStatus.COMPLETED}),
    TaskStatus.RUNNING: frozenset(
        {
            TaskStatus.RUNNING,
            TaskStatus.PENDING,
            TaskStatus.COMPLETED,
            TaskStatus.FAILED,
        }
    ),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.FAILED: frozenset(),
}


class AuditLevel(str, Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    DEBUG = "DEBUG"


class AuditEventType(str, Enum):
    """Event tags the core emits. The log accepts any other string as well."""

    WORKFLOW_CREATED = "WORKFLOW_CREATED"
    TASK_SCHEDULED = "TASK_SCHEDULED"
    TASK_STARTED = "TASK_STARTED"
    TASK_COMPLETED = "TASK_COMPLETED"
    TASK_FAILED = "TASK_FAILED"
    WORKFLOW_COMPLETED = "WORKFLOW_COMPLETED"
    WORKFLOW_FAILED = "WORKFLOW_FAILED"


class ErrorDetail(BaseModel):
    """Failure message plus diagnostic detail."""

    message: str
    detail: Optional[str] = None

    @classmethod
    def from_exception(cls, exc: BaseException) -> "ErrorDetail":
        return cls(
            message=str(exc) or type(exc).__name__,
            detail="".join(
                traceback.format_exception(type(exc), exc, exc.__traceback__)
            ),
        )


class Workflow(BaseModel):
    """Top-level unit of work tracked from goal submission to outcome."""

    id: str = Field(default_factory=_new_id, frozen=True)
    trace_id: str = Field(default_factory=_new_id, frozen=True)
    goal: str
    context: dict[str, JsonValue] = Field(default_factory=dict)
    status: WorkflowStatus = WorkflowStatus.PENDING
    result: JsonValue = None
    error: Optional[ErrorDetail] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def transition_to(self, status: WorkflowStatus) -> None:
        if status not in WORKFLOW_TRANSITIONS[self.status]:
            raise InvalidTransitionError("Workflow", self.status, status)
        self.status = status
        self.updated_at = utcnow()

    def mark_running(self) -> None:
        self.transition_to(WorkflowStatus.RUNNING)

    def mark_completed(self, result: Any) -> None:
        self.transition_to(WorkflowStatus.COMPLETED)
        self.result = result
        self.error = None

    def mark_failed(self, error: ErrorDetail) -> None:
        self.transition_to(WorkflowStatus.FAILED)
        self.error = error
        self.result = None


class Task(BaseModel):
    """One decomposed unit of execution belonging to a workflow."""

    id: str = Field(default_factory=_new_id, frozen=True)
    workflow_id: str = Field(frozen=True)
    kind: TaskKind = TaskKind.TOOL_CALL
    name: str
    input: JsonValue = Field(default_factory=dict)
    output: JsonValue = None
    status: TaskStatus = TaskStatus.PENDING
    retry_count: int = Field(default=0, ge=0)
    max_retries: int = Field(default=3, ge=0)
    error: Optional[ErrorDetail] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def has_output(self) -> bool:
        return self.output is not None

    def transition_to(self, status: TaskStatus) -> None:
        if status not in TASK_TRANSITIONS[self.status]:
            raise InvalidTransitionError("Task", self.status, status)
        self.status = status
        self.updated_at = utcnow()

    def mark_running(self) -> None:
        self.transition_to(TaskStatus.RUNNING)
        self.started_at = self.updated_at

    def mark_completed(self, output: Any) -> None:
        self.transition_to(TaskStatus.COMPLETED)
        self.output = output
        self.completed_at = self.updated_at

    def record_failure(self, error: ErrorDetail) -> bool:
        """Count a failed attempt. Returns ``True`` when retries are exhausted."""
        self.retry_count += 1
        self.error = error
        if self.retry_count < self.max_retries:
            self.transition_to(TaskStatus.PENDING)
            return False
        self.transition_to(TaskStatus.FAILED)
        self.completed_at = self.updated_at
        return True


class AuditLogEntry(BaseModel):
    """Immutable audit event. Ordered by ``timestamp`` then ``id``."""

    model_config = ConfigDict(frozen=True)

    id: Optional[int] = None
    workflow_id: str
    level: AuditLevel = AuditLevel.INFO
    event_type: str
    details: JsonValue = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)
