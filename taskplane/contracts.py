"""Core message contracts and error types for taskplane."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, JsonValue

EXECUTE_TASK_JOB = "execute-task"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TaskplaneError(Exception):
    """Base class for taskplane errors."""


class ToolInvocationError(TaskplaneError):
    """Raised when a tool call fails at the transport or protocol level."""


class ToolTimeoutError(ToolInvocationError):
    """Raised when a tool call does not answer within the configured timeout."""


class RoutingError(TaskplaneError):
    """Raised when a goal cannot be decomposed into tasks."""


class InvalidTransitionError(TaskplaneError):
    """Raised when a record is moved into a status its state machine forbids."""

    def __init__(self, record: str, current: Enum, target: Enum) -> None:
        super().__init__(
            f"{record} cannot transition from {current.value} to {target.value}"
        )
        self.current = current
        self.target = target


class TaskKind(str, Enum):
    TOOL_CALL = "TOOL_CALL"
    ROUTING = "ROUTING"
    REASONING = "REASONING"
    SYSTEM = "SYSTEM"


class TaskDescriptor(BaseModel):
    """One unit of work produced by a router."""

    kind: TaskKind = TaskKind.TOOL_CALL
    name: str
    input: JsonValue = Field(default_factory=dict)
    max_retries: Optional[int] = Field(default=None, ge=0)


class ExecutionJob(BaseModel):
    """Payload of an ``execute-task`` job."""

    task_id: str
    attempt_token: str = Field(default_factory=lambda: str(uuid.uuid4()))


class ExecutionOutcome(str, Enum):
    """What the job queue should do with a delivery."""

    SUCCESS = "success"
    RETRY = "retry"
    FAILED = "failed"


class ExecutionResult(BaseModel):
    """Result of one task execution, mapped onto ack/redeliver by the queue."""

    outcome: ExecutionOutcome
    task_id: str
    reason: Optional[str] = None

    @classmethod
    def success(cls, task_id: str) -> "ExecutionResult":
        return cls(outcome=ExecutionOutcome.SUCCESS, task_id=task_id)

    @classmethod
    def retry(cls, task_id: str, reason: str) -> "ExecutionResult":
        return cls(outcome=ExecutionOutcome.RETRY, task_id=task_id, reason=reason)

    @classmethod
    def failed(cls, task_id: str, reason: str) -> "ExecutionResult":
        return cls(outcome=ExecutionOutcome.FAILED, task_id=task_id, reason=reason)

    @property
    def retryable(self) -> bool:
        return self.outcome is ExecutionOutcome.RETRY


class JobMessage(BaseModel):
    """
    Envelope exchanged over the job transport. Includes delivery metadata and payload.
    """

    message_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    job_name: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    attempt: int = 1
    timestamp: datetime = Field(default_factory=utcnow)
    not_before: Optional[datetime] = None

    def to_json(self) -> str:
        """Serialize message to JSON."""
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "JobMessage":
        """Deserialize message from JSON."""
        return cls.model_validate_json(data)

    def is_due(self, now: Optional[datetime] = None) -> bool:
        """Return ``True`` when the message may be delivered."""
        if self.not_before is None:
            return True
        return self.not_before <= (now or utcnow())

    def bump_attempt(self, delay: float = 0.0) -> "JobMessage":
        """Return a redelivery copy with the attempt counter advanced."""
        return self.model_copy(
            update={
                "message_id": str(uuid.uuid4()),
                "attempt": self.attempt + 1,
                "timestamp": utcnow(),
                "not_before": utcnow() + timedelta(seconds=delay) if delay > 0 else None,
            }
        )
