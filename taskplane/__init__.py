"""Taskplane: workflow orchestration control plane with a crash-safe task engine."""

from .audit import AuditService
from .contracts import ExecutionJob, ExecutionOutcome, ExecutionResult, JobMessage, TaskDescriptor
from .dispatch import WorkflowDispatcher
from .execute import TaskExecutor
from .persistence import get_repository
from .queue import JobQueue
from .reconcile import Reconciler, evaluate
from .routing import AgentRouter, KeywordRouter
from .runtime import ControlPlane
from .tools import LocalToolInvoker, get_tool_invoker
from .transports import get_transport

__version__ = "0.1.0"
__all__ = [
    "AgentRouter",
    "AuditService",
    "ControlPlane",
    "ExecutionJob",
    "ExecutionOutcome",
    "ExecutionResult",
    "JobMessage",
    "JobQueue",
    "KeywordRouter",
    "LocalToolInvoker",
    "Reconciler",
    "TaskDescriptor",
    "TaskExecutor",
    "WorkflowDispatcher",
    "evaluate",
    "get_repository",
    "get_tool_invoker",
    "get_transport",
]
