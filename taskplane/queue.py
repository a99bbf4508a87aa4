"""Job queue adapter: handler registration, enqueueing and the worker loop."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional

from .contracts import ExecutionOutcome, ExecutionResult, JobMessage
from .transports import BaseTransport
from .utils.retry import compute_backoff

logger = logging.getLogger(__name__)

JobHandler = Callable[[Dict[str, Any]], Awaitable[ExecutionResult]]


class JobQueue:
    """At-least-once job delivery on top of a transport.

    Handlers return an ``ExecutionResult``; the queue maps ``SUCCESS`` to an
    ack, ``RETRY`` to a delayed redelivery and ``FAILED`` to a dead-lettered,
    acknowledged job. A handler that raises is redelivered as well, since the
    job never reached a recorded outcome.
    """

    def __init__(
        self,
        transport: BaseTransport,
        backoff: Callable[[int], float] = compute_backoff,
    ) -> None:
        self._transport = transport
        self._backoff = backoff
        self._handlers: Dict[str, JobHandler] = {}

    @property
    def transport(self) -> BaseTransport:
        return self._transport

    @property
    def job_names(self) -> list[str]:
        return list(self._handlers)

    def on_job(self, job_name: str, handler: JobHandler) -> None:
        """Register the handler for ``job_name``."""
        self._handlers[job_name] = handler

    async def enqueue_now(self, job_name: str, payload: Dict[str, Any]) -> JobMessage:
        """Publish a job that is due immediately."""
        message = JobMessage(job_name=job_name, payload=payload)
        await self._transport.publish(job_name, message)
        return message

    async def enqueue_at(
        self, job_name: str, payload: Dict[str, Any], not_before: datetime
    ) -> JobMessage:
        """Publish a job that must not be delivered before ``not_before``."""
        message = JobMessage(job_name=job_name, payload=payload, not_before=not_before)
        await self._transport.publish(job_name, message)
        return message

    async def process(self, raw_message: Any, message: JobMessage) -> ExecutionResult | None:
        """Run the handler for one delivery and settle it on the transport."""
        handler = self._handlers.get(message.job_name)
        if handler is None:
            logger.error(f"No handler registered for job {message.job_name}")
            await self._transport.nack(raw_message, requeue=True)
            return None

        logger.info(
            f"Running job {message.job_name} message_id={message.message_id} attempt={message.attempt}"
        )
        try:
            result = await handler(message.payload)
        except Exception as e:
            logger.exception(
                f"Job {message.job_name} message_id={message.message_id} raised; scheduling redelivery"
            )
            await self._redeliver(raw_message, message)
            result = ExecutionResult.retry(
                message.payload.get("task_id", ""), reason=str(e)
            )
            return result

        if result.outcome is ExecutionOutcome.RETRY:
            await self._redeliver(raw_message, message)
        elif result.outcome is ExecutionOutcome.FAILED:
            await self._transport.dead_letter(
                message.job_name, message, result.reason or "failed"
            )
            await self._transport.ack(raw_message)
        else:
            await self._transport.ack(raw_message)
            logger.info(f"Job completed: {message.job_name} message_id={message.message_id}")
        return result

    async def _redeliver(self, raw_message: Any, message: JobMessage) -> None:
        delay = self._backoff(message.attempt)
        retry = message.bump_attempt(delay)
        await self._transport.publish(message.job_name, retry)
        await self._transport.ack(raw_message)
        logger.info(
            f"Job {message.job_name} requeued as attempt {retry.attempt} in {delay:.2f}s"
        )

    async def run_until_idle(self, max_jobs: Optional[int] = None) -> int:
        """Process due jobs on every registered topic until none are left.

        Returns the number of deliveries processed.
        """
        processed = 0
        while max_jobs is None or processed < max_jobs:
            progressed = False
            for job_name in self.job_names:
                item = await self._transport.poll(job_name)
                if item is None:
                    continue
                await self.process(*item)
                processed += 1
                progressed = True
            if not progressed:
                break
        return processed

    async def _consume(self, job_name: str, lifespan: Optional[float]) -> None:
        async for raw_message, message in self._transport.subscribe(
            job_name, lifespan=lifespan
        ):
            await self.process(raw_message, message)

    async def start(self, lifespan: Optional[float] = None) -> None:
        """Consume every registered topic until ``lifespan`` expires."""
        if not self._handlers:
            raise ValueError("No job handlers registered.")
        await self._transport.connect()
        try:
            await asyncio.gather(
                *(self._consume(name, lifespan) for name in self.job_names)
            )
        finally:
            await self._transport.disconnect()
