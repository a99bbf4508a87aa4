"""Base transport interface for the taskplane job queue."""

from __future__ import annotations

import abc
import asyncio
import logging
from typing import AsyncIterator, Generic, Optional, Tuple, TypeVar

from ..contracts import JobMessage

RawMessageT = TypeVar("RawMessageT")

logger = logging.getLogger(__name__)


class BaseTransport(Generic[RawMessageT], metaclass=abc.ABCMeta):
    """Abstract base transport for job brokers.

    Delivery is at-least-once: a message that is fetched but never acked may be
    seen again, and nothing orders messages across topics.
    """

    poll_interval: float = 0.1

    async def connect(self) -> None:
        """Open connection to broker (no-op by default)."""
        pass

    async def disconnect(self) -> None:
        """Close connection to broker (no-op by default)."""
        pass

    @abc.abstractmethod
    async def publish(self, topic: str, message: JobMessage) -> None:
        """Send a message to a topic/queue."""
        raise NotImplementedError

    @abc.abstractmethod
    async def poll(self, topic: str) -> Optional[Tuple[RawMessageT, JobMessage]]:
        """Fetch the next due message without blocking, or ``None``."""
        raise NotImplementedError

    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[RawMessageT, JobMessage]]:
        """Yield raw transport message and JobMessage pairs.

        Args:
            topic: The topic to subscribe to
            lifespan: Maximum time in seconds to keep connection open. If None, runs indefinitely.
        """
        loop = asyncio.get_running_loop()
        start_time = loop.time()

        while True:
            if lifespan is not None and loop.time() - start_time >= lifespan:
                break

            item = await self.poll(topic)
            if item is not None:
                yield item
                continue

            await asyncio.sleep(self.poll_interval)

    @abc.abstractmethod
    async def ack(self, raw_message: RawMessageT) -> None:
        """Acknowledge successful processing."""
        raise NotImplementedError

    async def nack(self, raw_message: RawMessageT, requeue: bool = True) -> None:
        """Negatively acknowledge (default to ack if unsupported)."""
        await self.ack(raw_message)

    async def dead_letter(self, topic: str, message: JobMessage, reason: str) -> None:
        """Record a permanently failed job (log only by default)."""
        logger.error(
            f"Job {message.job_name} ({message.message_id}) on {topic} permanently failed: {reason}"
        )
