"""Command line interface for taskplane workflows and workers."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Optional

import typer

from taskplane.audit import AuditService
from taskplane.config import load_config
from taskplane.persistence import Workflow, get_repository
from taskplane.runtime import ControlPlane

app = typer.Typer(help="CLI for taskplane workflows")

# Command groups
workflow_app = typer.Typer(help="Commands for managing workflows")
worker_app = typer.Typer(help="Commands for running task workers")

app.add_typer(workflow_app, name="workflow")
app.add_typer(worker_app, name="worker")


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(
        None, help="Logging level (defaults to log_level from config)"
    ),
) -> None:
    """Taskplane CLI entry point."""
    level = (log_level or load_config().log_level).upper()
    logging.basicConfig(
        level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )


def _echo_workflow(wf: Workflow) -> None:
    typer.echo(f"Workflow {wf.id}: {wf.status.value}")
    typer.echo(f"Trace ID: {wf.trace_id}")
    typer.echo(f"Goal: {wf.goal}")
    if wf.result is not None:
        typer.echo(f"Result: {json.dumps(wf.result, default=str)}")
    if wf.error is not None:
        typer.echo(f"Error: {wf.error.message}")


async def _wait_for_terminal(plane: ControlPlane, workflow_id: str, timeout: float) -> Workflow:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        wf = await plane.repository.get_workflow(workflow_id)
        if wf.status.is_terminal or loop.time() >= deadline:
            return wf
        if await plane.queue.run_until_idle() == 0:
            await asyncio.sleep(0.1)


@workflow_app.command("create")
def workflow_create(
    goal: str,
    context: Optional[str] = typer.Option(None, help="JSON object passed to the router"),
    wait: bool = typer.Option(
        False, help="Run tasks in this process until the workflow finishes"
    ),
    timeout: float = typer.Option(60.0, help="Seconds to wait with --wait"),
) -> None:
    """
    Create a workflow for GOAL and schedule its tasks.

    Example:
        taskplane workflow create "Search for trace execution logs" --wait
        # Output: Workflow 1b2c...: COMPLETED
        #         Trace ID: 9f8e...
    """
    try:
        context_data = json.loads(context) if context else {}
    except json.JSONDecodeError as exc:
        typer.secho(f"Invalid --context JSON: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=2)
    if not isinstance(context_data, dict):
        typer.secho("--context must be a JSON object", fg=typer.colors.RED)
        raise typer.Exit(code=2)

    async def _run() -> Workflow:
        plane = ControlPlane.from_config(load_config())
        wf = await plane.dispatcher.create_workflow(goal, context_data)
        if wait:
            wf = await _wait_for_terminal(plane, wf.id, timeout)
        return wf

    _echo_workflow(asyncio.run(_run()))


@workflow_app.command("list")
def workflow_list() -> None:
    """
    List all workflows with their current status.

    Example:
        taskplane workflow list
        # Output: abc123-def456-789    RUNNING    Search for ...
    """
    repo = get_repository()
    workflows = asyncio.run(repo.list_workflows())
    if not workflows:
        typer.echo("No workflows found")
        return
    for wf in workflows:
        typer.echo(f"{wf.id}\t{wf.status.value}\t{wf.goal}")


@workflow_app.command("show")
def workflow_show(
    workflow_id: str,
    by_trace: bool = typer.Option(False, help="Treat the argument as a trace ID"),
) -> None:
    """Show status, result and error for one workflow."""
    repo = get_repository()
    if by_trace:
        wf = asyncio.run(repo.get_workflow_by_trace_id(workflow_id))
    else:
        wf = asyncio.run(repo.get_workflow(workflow_id))
    if wf is None:
        typer.echo("Workflow not found")
        raise typer.Exit(code=1)
    _echo_workflow(wf)


@workflow_app.command("tasks")
def workflow_tasks(workflow_id: str) -> None:
    """List a workflow's tasks with retry counters and timestamps."""
    repo = get_repository()
    tasks = asyncio.run(repo.list_tasks(workflow_id))
    if not tasks:
        typer.echo("No tasks found")
        return
    for task in tasks:
        line = (
            f"- {task.name} [{task.kind.value}] {task.status.value} "
            f"retries={task.retry_count}/{task.max_retries}"
        )
        if task.started_at or task.completed_at:
            line += f" ({task.started_at} -> {task.completed_at})"
        typer.echo(line)
        if task.error is not None:
            typer.echo(f"    error: {task.error.message}")


@workflow_app.command("logs")
def workflow_logs(workflow_id: str) -> None:
    """Print the audit trail of a workflow, oldest first."""
    audit = AuditService(get_repository())
    entries = asyncio.run(audit.list_entries(workflow_id))
    if not entries:
        typer.echo("No audit entries found")
        return
    for entry in entries:
        typer.echo(
            f"{entry.timestamp.isoformat()} {entry.level.value:<5} {entry.event_type} "
            f"{json.dumps(entry.details, default=str)}"
        )


@worker_app.command("start")
def worker_start(
    lifespan: Optional[float] = typer.Option(
        None, help="Worker timeout in seconds (default: run indefinitely)"
    ),
) -> None:
    """
    Run a worker that executes scheduled tasks.

    The worker connects to the configured transport and repository and
    processes ``execute-task`` jobs until stopped or until LIFESPAN expires.

    Example:
        taskplane worker start --lifespan 300
    """
    plane = ControlPlane.from_config(load_config())
    typer.echo(f"Starting worker for jobs: {', '.join(plane.queue.job_names)}")
    asyncio.run(plane.queue.start(lifespan=lifespan))


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
