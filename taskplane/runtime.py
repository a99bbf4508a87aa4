"""Explicit wiring of the control plane components."""

from __future__ import annotations

from dataclasses import dataclass
from functools import partial
from typing import Callable, Optional

from .audit import AuditService
from .config import TaskplaneConfig, load_config
from .contracts import EXECUTE_TASK_JOB
from .dispatch import WorkflowDispatcher
from .execute import TaskExecutor
from .persistence import WorkflowRepository, get_repository
from .queue import JobQueue
from .reconcile import Reconciler
from .routing import Router, get_router
from .tools import LocalToolInvoker, ToolInvoker, get_tool_invoker
from .transports import BaseTransport, get_transport
from .utils.retry import compute_backoff


@dataclass
class ControlPlane:
    """The producer and consumer sides of one deployment, wired together."""

    repository: WorkflowRepository
    audit: AuditService
    queue: JobQueue
    executor: TaskExecutor
    dispatcher: WorkflowDispatcher

    @classmethod
    def build(
        cls,
        repository: WorkflowRepository,
        transport: BaseTransport,
        tools: ToolInvoker,
        router: Router,
        tool_timeout: float = 30.0,
        default_max_retries: int = 3,
        backoff: Callable[[int], float] = compute_backoff,
    ) -> "ControlPlane":
        audit = AuditService(repository)
        queue = JobQueue(transport, backoff=backoff)
        executor = TaskExecutor(
            repository,
            tools,
            audit,
            reconciler=Reconciler(repository, audit),
            tool_timeout=tool_timeout,
        )
        queue.on_job(EXECUTE_TASK_JOB, executor.handle_job)
        dispatcher = WorkflowDispatcher(
            repository,
            queue,
            router,
            audit,
            default_max_retries=default_max_retries,
        )
        return cls(
            repository=repository,
            audit=audit,
            queue=queue,
            executor=executor,
            dispatcher=dispatcher,
        )

    @classmethod
    def from_config(
        cls,
        config: Optional[TaskplaneConfig] = None,
        repository: Optional[WorkflowRepository] = None,
        transport: Optional[BaseTransport] = None,
    ) -> "ControlPlane":
        config = config or load_config()
        tools = get_tool_invoker(config)
        tool_names = tools.tool_names if isinstance(tools, LocalToolInvoker) else ()
        engine = config.engine
        return cls.build(
            repository=repository or get_repository(config=config),
            transport=transport or get_transport(config=config),
            tools=tools,
            router=get_router(config, tool_names=tool_names),
            tool_timeout=engine.tool_timeout_seconds,
            default_max_retries=engine.default_max_retries,
            backoff=partial(
                compute_backoff,
                base=engine.retry_backoff_base,
                jitter=engine.retry_backoff_jitter,
            ),
        )
