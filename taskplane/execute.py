"""Task execution engine for taskplane workflows."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict

from pydantic import ValidationError

from .audit import AuditService
from .contracts import (
    ExecutionJob,
    ExecutionResult,
    ToolTimeoutError,
)
from .persistence.models import (
    OPEN_TASK_STATUSES,
    OPEN_WORKFLOW_STATUSES,
    AuditEventType,
    AuditLevel,
    ErrorDetail,
    Task,
    TaskStatus,
)
from .persistence.repository import WorkflowRepository
from .reconcile import Reconciler
from .tools import ToolInvoker

logger = logging.getLogger(__name__)


class TaskExecutor:
    """Executes one task per job delivery, exactly-once in effect.

    The job queue delivers at least once, possibly concurrently and possibly
    after a crash. Before touching the tool the executor checks the stored
    task for evidence of an earlier delivery:

    * COMPLETED: reuse the stored output and only reconcile.
    * FAILED: terminal, only reconcile.
    * output present but not COMPLETED: an earlier delivery crashed between
      saving the output and marking completion; finish that transition.

    Task writes are conditional on the stored task still being open. When a
    concurrent delivery settles the task first, the losing write is dropped
    and the result reflects the stored terminal state.

    Every audit event is written after the state it describes is persisted,
    and reconciliation runs after the task reaches or is confirmed in a
    terminal state.
    """

    def __init__(
        self,
        repository: WorkflowRepository,
        tools: ToolInvoker,
        audit: AuditService,
        reconciler: Reconciler | None = None,
        tool_timeout: float = 30.0,
    ) -> None:
        self._repository = repository
        self._tools = tools
        self._audit = audit
        self._reconciler = reconciler or Reconciler(repository, audit)
        self._tool_timeout = tool_timeout

    async def handle_job(self, payload: Dict[str, Any]) -> ExecutionResult:
        """Job queue entry point for ``execute-task`` jobs."""
        try:
            job = ExecutionJob.model_validate(payload)
        except ValidationError as e:
            task_id = str(payload.get("task_id") or "")
            logger.error(f"Invalid execute-task payload for task {task_id!r}: {e}")
            return ExecutionResult.failed(task_id, f"invalid job payload: {e}")
        return await self.execute(job.task_id, job.attempt_token)

    async def execute(self, task_id: str, attempt_token: str) -> ExecutionResult:
        tag = f"[ExecID: {attempt_token}]"
        task = await self._repository.get_task(task_id)
        if task is None:
            logger.error(f"{tag} Task not found: {task_id}")
            return ExecutionResult.failed(task_id, "task not found")

        if task.status is TaskStatus.COMPLETED:
            logger.warning(
                f"[CrashGuard] {tag} Task {task_id} is already COMPLETED. Skipping execution."
            )
            await self._reconciler.reconcile(task.workflow_id)
            return ExecutionResult.success(task_id)

        if task.status is TaskStatus.FAILED:
            logger.warning(
                f"[CrashGuard] {tag} Task {task_id} is already FAILED. Skipping execution."
            )
            await self._reconciler.reconcile(task.workflow_id)
            return ExecutionResult.failed(task_id, "task already failed")

        if task.has_output:
            logger.warning(
                f"[IdempotencyGuard] {tag} Task {task_id} has output but status={task.status.value}. Marking COMPLETED."
            )
            task.mark_completed(task.output)
            if not await self._save_open(task):
                return await self._settle_lost_write(task, tag)
            await self._audit.append(
                task.workflow_id,
                AuditEventType.TASK_COMPLETED,
                {"task_id": task_id, "tool": task.name, "recovered": True},
            )
            await self._reconciler.reconcile(task.workflow_id)
            return ExecutionResult.success(task_id)

        return await self._run(task, tag)

    async def _save_open(self, task: Task) -> bool:
        return await self._repository.save_task_if_status(task, OPEN_TASK_STATUSES)

    async def _run(self, task: Task, tag: str) -> ExecutionResult:
        task.mark_running()
        if not await self._save_open(task):
            return await self._settle_lost_write(task, tag)
        await self._audit.append(
            task.workflow_id,
            AuditEventType.TASK_STARTED,
            {"task_id": task.id, "tool": task.name, "attempt": task.retry_count + 1},
        )

        try:
            output = await self._invoke(task)
        except Exception as e:
            logger.error(f"{tag} Task execution failed: {task.name}: {e}")
            return await self._handle_failure(task, e, tag)

        task.mark_completed(output)
        if not await self._save_open(task):
            return await self._settle_lost_write(task, tag)
        await self._audit.append(
            task.workflow_id,
            AuditEventType.TASK_COMPLETED,
            {"task_id": task.id, "tool": task.name, "result": output},
        )
        logger.info(f"{tag} Task {task.id} ({task.name}) completed")

        await self._reconciler.reconcile(task.workflow_id)
        return ExecutionResult.success(task.id)

    async def _invoke(self, task: Task) -> Any:
        try:
            return await asyncio.wait_for(
                self._tools.invoke(task.name, task.input), timeout=self._tool_timeout
            )
        except asyncio.TimeoutError as e:
            raise ToolTimeoutError(
                f"Tool {task.name} timed out after {self._tool_timeout}s"
            ) from e

    async def _handle_failure(
        self, task: Task, error: Exception, tag: str
    ) -> ExecutionResult:
        exhausted = task.record_failure(ErrorDetail.from_exception(error))
        if not await self._save_open(task):
            return await self._settle_lost_write(task, tag)

        if not exhausted:
            logger.info(
                f"{tag} Task {task.id} failed. Retrying... ({task.retry_count}/{task.max_retries})"
            )
            return ExecutionResult.retry(task.id, str(error))

        await self._audit.append(
            task.workflow_id,
            AuditEventType.TASK_FAILED,
            {"task_id": task.id, "tool": task.name, "error": str(error), "retry_count": task.retry_count},
            level=AuditLevel.ERROR,
        )
        await self._fail_workflow(task, error, tag)
        return ExecutionResult.failed(task.id, str(error))

    async def _settle_lost_write(self, task: Task, tag: str) -> ExecutionResult:
        """Adopt the stored outcome after another delivery settled the task."""
        stored = await self._repository.get_task(task.id)
        if stored is None:
            logger.error(f"{tag} Task not found: {task.id}")
            return ExecutionResult.failed(task.id, "task not found")

        logger.warning(
            f"[CrashGuard] {tag} Task {task.id} was settled {stored.status.value} by another delivery. Discarding this attempt."
        )
        await self._reconciler.reconcile(stored.workflow_id)
        if stored.status is TaskStatus.COMPLETED:
            return ExecutionResult.success(stored.id)
        return ExecutionResult.failed(stored.id, "task already failed")

    async def _fail_workflow(self, task: Task, error: Exception, tag: str) -> None:
        workflow = await self._repository.get_workflow(task.workflow_id)
        if workflow is None:
            logger.error(f"{tag} Owning workflow not found: {task.workflow_id}")
            return
        if workflow.status.is_terminal:
            logger.info(
                f"{tag} Workflow {workflow.id} already {workflow.status.value}; not marking FAILED"
            )
            return

        workflow.mark_failed(
            ErrorDetail(
                message=f"Task {task.name} failed: {error}",
                detail=task.error.detail if task.error else None,
            )
        )
        landed = await self._repository.save_workflow_if_status(
            workflow, OPEN_WORKFLOW_STATUSES
        )
        if not landed:
            logger.info(
                f"{tag} Workflow {workflow.id} reached a terminal status concurrently; not marking FAILED"
            )
            return
        await self._audit.append(
            workflow.id,
            AuditEventType.WORKFLOW_FAILED,
            {"workflow_id": workflow.id, "task_id": task.id, "error": str(error)},
            level=AuditLevel.ERROR,
        )
