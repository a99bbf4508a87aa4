import pytest
from pydantic import ValidationError

from taskplane.contracts import (
    ExecutionOutcome,
    ExecutionResult,
    InvalidTransitionError,
    JobMessage,
    TaskDescriptor,
    TaskKind,
)
from taskplane.persistence.models import (
    AuditLogEntry,
    ErrorDetail,
    Task,
    TaskStatus,
    Workflow,
    WorkflowStatus,
)


def test_workflow_defaults():
    wf = Workflow(goal="find logs")
    assert wf.status is WorkflowStatus.PENDING
    assert wf.id != wf.trace_id
    assert wf.context == {}
    assert wf.result is None
    assert wf.error is None


def test_workflow_identity_is_immutable():
    wf = Workflow(goal="find logs")
    with pytest.raises(ValidationError):
        wf.id = "other"
    with pytest.raises(ValidationError):
        wf.trace_id = "other"


@pytest.mark.parametrize(
    "terminal", [WorkflowStatus.COMPLETED, WorkflowStatus.FAILED, WorkflowStatus.CANCELLED]
)
def test_terminal_workflow_statuses_are_absorbing(terminal):
    wf = Workflow(goal="g", status=terminal)
    assert wf.status.is_terminal
    for target in WorkflowStatus:
        with pytest.raises(InvalidTransitionError):
            wf.transition_to(target)


def test_workflow_cannot_return_to_pending():
    wf = Workflow(goal="g")
    wf.mark_running()
    with pytest.raises(InvalidTransitionError) as exc_info:
        wf.transition_to(WorkflowStatus.PENDING)
    assert exc_info.value.current is WorkflowStatus.RUNNING
    assert exc_info.value.target is WorkflowStatus.PENDING


def test_workflow_completion_clears_error():
    wf = Workflow(goal="g")
    wf.mark_completed({"ok": True})
    assert wf.status is WorkflowStatus.COMPLETED
    assert wf.result == {"ok": True}
    assert wf.updated_at >= wf.created_at


def test_task_lifecycle_timestamps():
    task = Task(workflow_id="wf", name="search_web", input={"query": "q"})
    assert task.status is TaskStatus.PENDING
    assert task.started_at is None

    task.mark_running()
    assert task.status is TaskStatus.RUNNING
    assert task.started_at is not None

    task.mark_completed(["hit"])
    assert task.status is TaskStatus.COMPLETED
    assert task.output == ["hit"]
    assert task.has_output
    assert task.completed_at is not None


def test_task_running_can_be_reentered_after_crash():
    task = Task(workflow_id="wf", name="t")
    task.mark_running()
    task.mark_running()
    assert task.status is TaskStatus.RUNNING


def test_record_failure_bounds_retries():
    task = Task(workflow_id="wf", name="t", max_retries=2)

    task.mark_running()
    assert task.record_failure(ErrorDetail(message="first")) is False
    assert task.status is TaskStatus.PENDING
    assert task.retry_count == 1

    task.mark_running()
    assert task.record_failure(ErrorDetail(message="second")) is True
    assert task.status is TaskStatus.FAILED
    assert task.retry_count == 2
    assert task.error.message == "second"
    assert task.completed_at is not None


def test_falsy_output_counts_as_output():
    task = Task(workflow_id="wf", name="t", output=[])
    assert task.has_output
    assert not Task(workflow_id="wf", name="t").has_output


@pytest.mark.parametrize("terminal", [TaskStatus.COMPLETED, TaskStatus.FAILED])
def test_terminal_task_statuses_are_absorbing(terminal):
    task = Task(workflow_id="wf", name="t", status=terminal)
    with pytest.raises(InvalidTransitionError):
        task.transition_to(TaskStatus.RUNNING)
    with pytest.raises(InvalidTransitionError):
        task.transition_to(TaskStatus.PENDING)


def test_zero_max_retries_allows_a_single_attempt():
    task = Task(workflow_id="wf", name="t", max_retries=0)
    assert TaskDescriptor(kind=TaskKind.TOOL_CALL, name="t", max_retries=0).max_retries == 0

    task.mark_running()
    assert task.record_failure(ErrorDetail(message="only")) is True
    assert task.status is TaskStatus.FAILED
    assert task.retry_count == 1


def test_max_retries_must_not_be_negative():
    with pytest.raises(ValidationError):
        Task(workflow_id="wf", name="t", max_retries=-1)
    with pytest.raises(ValidationError):
        TaskDescriptor(kind=TaskKind.TOOL_CALL, name="t", max_retries=-1)


def test_error_detail_from_exception_keeps_traceback():
    try:
        raise RuntimeError("disk full")
    except RuntimeError as exc:
        detail = ErrorDetail.from_exception(exc)
    assert detail.message == "disk full"
    assert "RuntimeError: disk full" in detail.detail


def test_audit_entry_is_frozen():
    entry = AuditLogEntry(workflow_id="wf", event_type="CUSTOM_EVENT")
    with pytest.raises(ValidationError):
        entry.event_type = "OTHER"
    assert entry.details == {}


def test_execution_result_constructors():
    assert ExecutionResult.success("t").outcome is ExecutionOutcome.SUCCESS
    retry = ExecutionResult.retry("t", "flaky")
    assert retry.retryable
    assert retry.reason == "flaky"
    assert not ExecutionResult.failed("t", "gone").retryable


def test_job_message_bump_attempt():
    message = JobMessage(job_name="execute-task", payload={"task_id": "t"})
    assert message.is_due()

    immediate = message.bump_attempt()
    assert immediate.attempt == 2
    assert immediate.message_id != message.message_id
    assert immediate.not_before is None
    assert immediate.payload == message.payload

    delayed = message.bump_attempt(60)
    assert delayed.not_before is not None
    assert not delayed.is_due()


def test_job_message_json_round_trip():
    message = JobMessage(job_name="execute-task", payload={"task_id": "t"}).bump_attempt(5)
    restored = JobMessage.from_json(message.to_json())
    assert restored == message
