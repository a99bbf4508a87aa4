"""Tests for workflow creation, routing and task scheduling."""

import pytest

from taskplane.contracts import (
    EXECUTE_TASK_JOB,
    RoutingError,
    TaskDescriptor,
    TaskKind,
)
from taskplane.persistence import InMemoryWorkflowRepository, TaskStatus, WorkflowStatus
from taskplane.routing import KeywordRouter
from taskplane.runtime import ControlPlane
from taskplane.tools import LocalToolInvoker
from taskplane.transports.inmemory import InMemoryTransport


class StaticRouter:
    def __init__(self, tasks):
        self.tasks = tasks
        self.calls = []

    async def route(self, goal, context):
        self.calls.append((goal, context))
        return list(self.tasks)


class BrokenRouter:
    async def route(self, goal, context):
        raise RoutingError("model unavailable")


@pytest.mark.asyncio
async def test_happy_path_audit_sequence(repo, make_plane, recording_tools):
    tools = recording_tools()
    plane = make_plane(tools=tools)

    workflow = await plane.dispatcher.create_workflow("Search for trace execution logs")
    assert workflow.status is WorkflowStatus.RUNNING

    tasks = await plane.dispatcher.list_tasks(workflow.id)
    assert len(tasks) == 1
    assert tasks[0].name == "search_web"
    assert tasks[0].kind is TaskKind.TOOL_CALL
    assert tasks[0].input == {"query": "Search for trace execution logs"}
    assert tasks[0].status is TaskStatus.PENDING

    processed = await plane.queue.run_until_idle()
    assert processed == 1

    wf = await plane.dispatcher.get_workflow(workflow.id)
    assert wf.status is WorkflowStatus.COMPLETED
    assert wf.result["tasks"][0]["output"] == tools.output

    logs = await plane.dispatcher.list_logs(workflow.id)
    assert [e.event_type for e in logs] == [
        "WORKFLOW_CREATED",
        "TASK_SCHEDULED",
        "TASK_STARTED",
        "TASK_COMPLETED",
        "WORKFLOW_COMPLETED",
    ]
    assert logs[0].details["goal"] == "Search for trace execution logs"
    assert logs[0].details["trace_id"] == workflow.trace_id
    assert logs[1].details["task_id"] == tasks[0].id


@pytest.mark.asyncio
async def test_goal_without_keyword_routes_to_reasoning_task(make_plane):
    plane = make_plane()

    workflow = await plane.dispatcher.create_workflow("Summarise last week's incidents")

    tasks = await plane.dispatcher.list_tasks(workflow.id)
    assert [(t.kind, t.name) for t in tasks] == [(TaskKind.REASONING, "analyze_request")]
    assert tasks[0].input == {"goal": "Summarise last week's incidents"}


@pytest.mark.asyncio
async def test_one_job_is_enqueued_per_task(transport, make_plane):
    router = StaticRouter(
        [
            TaskDescriptor(kind=TaskKind.TOOL_CALL, name="search_web", input={"query": "a"}),
            TaskDescriptor(kind=TaskKind.TOOL_CALL, name="search_web", input={"query": "b"}, max_retries=5),
        ]
    )
    plane = make_plane(router=router, default_max_retries=2)

    workflow = await plane.dispatcher.create_workflow("two searches", {"source": "cli"})

    assert router.calls == [("two searches", {"source": "cli"})]
    assert transport.pending(EXECUTE_TASK_JOB) == 2
    tasks = await plane.dispatcher.list_tasks(workflow.id)
    assert [t.max_retries for t in tasks] == [2, 5]

    _, message = await transport.poll(EXECUTE_TASK_JOB)
    assert message.payload["task_id"] == tasks[0].id
    assert message.payload["attempt_token"]


@pytest.mark.asyncio
async def test_routing_failure_marks_workflow_failed(transport, make_plane):
    plane = make_plane(router=BrokenRouter())

    workflow = await plane.dispatcher.create_workflow("anything")

    assert workflow.status is WorkflowStatus.FAILED
    assert workflow.error.message == "model unavailable"
    stored = await plane.dispatcher.get_workflow(workflow.id)
    assert stored.status is WorkflowStatus.FAILED
    assert await plane.dispatcher.list_tasks(workflow.id) == []
    assert transport.pending(EXECUTE_TASK_JOB) == 0

    logs = await plane.dispatcher.list_logs(workflow.id)
    assert [e.event_type for e in logs] == ["WORKFLOW_CREATED", "WORKFLOW_FAILED"]
    assert logs[1].details["reason"] == "routing_failed"
    assert logs[1].level.value == "ERROR"


@pytest.mark.asyncio
async def test_empty_routing_leaves_workflow_pending(transport, make_plane):
    plane = make_plane(router=StaticRouter([]))

    workflow = await plane.dispatcher.create_workflow("nothing to do")

    stored = await plane.dispatcher.get_workflow(workflow.id)
    assert stored.status is WorkflowStatus.PENDING
    assert transport.pending(EXECUTE_TASK_JOB) == 0
    logs = await plane.dispatcher.list_logs(workflow.id)
    assert [e.event_type for e in logs] == ["WORKFLOW_CREATED"]


@pytest.mark.asyncio
async def test_lookup_by_trace_id(make_plane):
    plane = make_plane()
    workflow = await plane.dispatcher.create_workflow("Search for trace execution logs")

    found = await plane.dispatcher.get_workflow_by_trace_id(workflow.trace_id)

    assert found is not None
    assert found.id == workflow.id
    assert await plane.dispatcher.get_workflow_by_trace_id("unknown") is None
    assert [wf.id for wf in await plane.dispatcher.list_workflows()] == [workflow.id]


class StatusAtTaskSaveRepository(InMemoryWorkflowRepository):
    def __init__(self):
        super().__init__()
        self.statuses_at_task_save = []

    async def save_task(self, task):
        workflow = await self.get_workflow(task.workflow_id)
        self.statuses_at_task_save.append(workflow.status)
        await super().save_task(task)


@pytest.mark.asyncio
async def test_workflow_is_running_before_any_task_is_saved(transport):
    repo = StatusAtTaskSaveRepository()
    plane = ControlPlane.build(
        repository=repo,
        transport=transport,
        tools=LocalToolInvoker(),
        router=KeywordRouter(),
    )

    await plane.dispatcher.create_workflow("Search for trace execution logs")

    assert repo.statuses_at_task_save == [WorkflowStatus.RUNNING]


@pytest.mark.asyncio
async def test_descriptor_zero_max_retries_is_kept(make_plane):
    router = StaticRouter(
        [TaskDescriptor(kind=TaskKind.TOOL_CALL, name="search_web", input={"query": "a"}, max_retries=0)]
    )
    plane = make_plane(router=router, default_max_retries=4)

    workflow = await plane.dispatcher.create_workflow("one shot")

    [task] = await plane.dispatcher.list_tasks(workflow.id)
    assert task.max_retries == 0


class FlakyPublishTransport(InMemoryTransport):
    def __init__(self, fail_on_call):
        super().__init__()
        self.fail_on_call = fail_on_call
        self.publish_calls = 0

    async def publish(self, topic, message):
        self.publish_calls += 1
        if self.publish_calls == self.fail_on_call:
            raise ConnectionError("broker went away")
        await super().publish(topic, message)


@pytest.mark.asyncio
async def test_enqueue_failure_marks_workflow_failed(repo):
    transport = FlakyPublishTransport(fail_on_call=2)
    router = StaticRouter(
        [
            TaskDescriptor(kind=TaskKind.TOOL_CALL, name="search_web", input={"query": "a"}),
            TaskDescriptor(kind=TaskKind.TOOL_CALL, name="search_web", input={"query": "b"}),
            TaskDescriptor(kind=TaskKind.TOOL_CALL, name="search_web", input={"query": "c"}),
        ]
    )
    plane = ControlPlane.build(
        repository=repo,
        transport=transport,
        tools=LocalToolInvoker(),
        router=router,
    )

    workflow = await plane.dispatcher.create_workflow("three searches")

    assert workflow.status is WorkflowStatus.FAILED
    assert workflow.error.message == "broker went away"
    stored = await plane.dispatcher.get_workflow(workflow.id)
    assert stored.status is WorkflowStatus.FAILED

    tasks = await plane.dispatcher.list_tasks(workflow.id)
    assert [t.input["query"] for t in tasks] == ["a", "b"]
    assert transport.pending(EXECUTE_TASK_JOB) == 1

    logs = await plane.dispatcher.list_logs(workflow.id)
    assert [e.event_type for e in logs] == [
        "WORKFLOW_CREATED",
        "TASK_SCHEDULED",
        "WORKFLOW_FAILED",
    ]
    failed = logs[-1]
    assert failed.level.value == "ERROR"
    assert failed.details["reason"] == "enqueue_failed"
    assert failed.details["unscheduled_task_id"] == tasks[1].id
    assert failed.details["scheduled_task_ids"] == [tasks[0].id]
