import pytest

from taskplane.contracts import ExecutionResult
from taskplane.queue import JobQueue
from taskplane.transports.inmemory import InMemoryTransport
from taskplane.utils.retry import compute_backoff, no_backoff

JOB = "execute-task"


def _queue_with(handler, backoff=no_backoff):
    transport = InMemoryTransport()
    queue = JobQueue(transport, backoff=backoff)
    queue.on_job(JOB, handler)
    return queue, transport


@pytest.mark.asyncio
async def test_success_is_acknowledged():
    seen = []

    async def handler(payload):
        seen.append(payload)
        return ExecutionResult.success(payload["task_id"])

    queue, transport = _queue_with(handler)
    await queue.enqueue_now(JOB, {"task_id": "t1"})

    assert await queue.run_until_idle() == 1
    assert seen == [{"task_id": "t1"}]
    assert transport.pending(JOB) == 0
    assert transport.failed(JOB) == []


@pytest.mark.asyncio
async def test_retry_republishes_with_next_attempt():
    attempts = []

    async def handler(payload):
        attempts.append(payload)
        if len(attempts) < 3:
            return ExecutionResult.retry(payload["task_id"], "flaky")
        return ExecutionResult.success(payload["task_id"])

    queue, transport = _queue_with(handler)
    first = await queue.enqueue_now(JOB, {"task_id": "t1"})

    raw, message = await transport.poll(JOB)
    result = await queue.process(raw, message)
    assert result.retryable

    _, redelivered = await transport.poll(JOB)
    assert redelivered.attempt == 2
    assert redelivered.payload == first.payload
    assert redelivered.message_id != first.message_id
    await transport.publish(JOB, redelivered)

    assert await queue.run_until_idle() == 2
    assert len(attempts) == 3


@pytest.mark.asyncio
async def test_retry_uses_backoff_delay():
    async def handler(payload):
        return ExecutionResult.retry("t1", "flaky")

    queue, transport = _queue_with(handler, backoff=lambda attempt: 60.0)
    await queue.enqueue_now(JOB, {"task_id": "t1"})

    assert await queue.run_until_idle() == 1
    assert transport.pending(JOB) == 1
    assert await transport.poll(JOB) is None


@pytest.mark.asyncio
async def test_failed_is_dead_lettered():
    async def handler(payload):
        return ExecutionResult.failed(payload["task_id"], "task not found")

    queue, transport = _queue_with(handler)
    await queue.enqueue_now(JOB, {"task_id": "t1"})

    assert await queue.run_until_idle() == 1
    assert transport.pending(JOB) == 0
    [(message, reason)] = transport.failed(JOB)
    assert reason == "task not found"
    assert message.payload == {"task_id": "t1"}


@pytest.mark.asyncio
async def test_handler_exception_is_redelivered():
    calls = []

    async def handler(payload):
        calls.append(payload)
        if len(calls) == 1:
            raise RuntimeError("database connection lost")
        return ExecutionResult.success(payload["task_id"])

    queue, transport = _queue_with(handler)
    await queue.enqueue_now(JOB, {"task_id": "t1"})

    assert await queue.run_until_idle() == 2
    assert len(calls) == 2
    assert transport.failed(JOB) == []


@pytest.mark.asyncio
async def test_run_until_idle_respects_max_jobs():
    async def handler(payload):
        return ExecutionResult.success(payload["task_id"])

    queue, transport = _queue_with(handler)
    for n in range(3):
        await queue.enqueue_now(JOB, {"task_id": str(n)})

    assert await queue.run_until_idle(max_jobs=2) == 2
    assert transport.pending(JOB) == 1


@pytest.mark.asyncio
async def test_start_consumes_until_lifespan():
    done = []

    async def handler(payload):
        done.append(payload["task_id"])
        return ExecutionResult.success(payload["task_id"])

    queue, transport = _queue_with(handler)
    transport.poll_interval = 0.01
    await queue.enqueue_now(JOB, {"task_id": "t1"})

    await queue.start(lifespan=0.1)

    assert done == ["t1"]


@pytest.mark.asyncio
async def test_start_without_handlers_fails():
    with pytest.raises(ValueError):
        await JobQueue(InMemoryTransport()).start(lifespan=0.01)


def test_compute_backoff_grows_with_attempts():
    assert compute_backoff(1, base=2.0, jitter=0.0) == 2.0
    assert compute_backoff(3, base=2.0, jitter=0.0) == 8.0
    assert 2.0 <= compute_backoff(1, base=2.0, jitter=0.5) <= 2.5
