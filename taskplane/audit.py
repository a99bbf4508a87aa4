"""Append-only audit trail for workflow events."""

from __future__ import annotations

import logging
from typing import Any, Optional

from .persistence.models import AuditEventType, AuditLevel, AuditLogEntry
from .persistence.repository import WorkflowRepository

logger = logging.getLogger(__name__)


class AuditService:
    """Records domain events for a workflow.

    Writes are best-effort relative to the workflow state machine: a failed
    write is logged and swallowed so it never changes the caller's control
    flow. Every write that does succeed is permanent.
    """

    def __init__(self, repository: WorkflowRepository) -> None:
        self._repository = repository

    async def append(
        self,
        workflow_id: str,
        event_type: AuditEventType | str,
        details: Optional[dict[str, Any]] = None,
        level: AuditLevel = AuditLevel.INFO,
    ) -> AuditLogEntry | None:
        """Persist an audit entry. Returns ``None`` if the write failed."""
        event = event_type.value if isinstance(event_type, AuditEventType) else event_type
        try:
            entry = AuditLogEntry(
                workflow_id=workflow_id,
                level=level,
                event_type=event,
                details=details or {},
            )
            return await self._repository.append_audit_entry(entry)
        except Exception:
            logger.exception(
                f"Failed to write audit entry {event} for workflow_id={workflow_id}"
            )
            return None

    async def list_entries(self, workflow_id: str) -> list[AuditLogEntry]:
        """Return the workflow's entries, oldest first."""
        return await self._repository.list_audit_entries(workflow_id)
