"""In-memory transport for testing."""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from typing import Deque, Dict, List, Optional, Tuple

from ..contracts import JobMessage, utcnow
from .base import BaseTransport


class InMemoryTransport(BaseTransport[Tuple[str, JobMessage]]):
    """Simple in-process queue for unit tests and single-process runs."""

    def __init__(self) -> None:
        self._queues: Dict[str, Deque[Tuple[str, JobMessage]]] = defaultdict(deque)
        self._failed: Dict[str, List[Tuple[JobMessage, str]]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def publish(self, topic: str, message: JobMessage) -> None:
        """Publish message to in-memory queue."""
        raw = (message.to_json(), message)
        async with self._lock:
            self._queues[topic].append(raw)

    async def poll(self, topic: str) -> Optional[Tuple[Tuple[str, JobMessage], JobMessage]]:
        """Pop the first message whose ``not_before`` has passed."""
        now = utcnow()
        async with self._lock:
            queue = self._queues[topic]
            for index, raw in enumerate(queue):
                if raw[1].is_due(now):
                    del queue[index]
                    return raw, raw[1]
        return None

    async def ack(self, raw_message: Tuple[str, JobMessage]) -> None:
        """No-op acknowledgment for in-memory transport."""
        pass

    async def nack(
        self, raw_message: Tuple[str, JobMessage], requeue: bool = True
    ) -> None:
        if requeue:
            message = raw_message[1]
            async with self._lock:
                self._queues[message.job_name].appendleft(raw_message)

    async def dead_letter(self, topic: str, message: JobMessage, reason: str) -> None:
        await super().dead_letter(topic, message, reason)
        async with self._lock:
            self._failed[topic].append((message, reason))

    def pending(self, topic: str) -> int:
        """Number of messages waiting on ``topic``, due or not."""
        return len(self._queues[topic])

    def failed(self, topic: str) -> List[Tuple[JobMessage, str]]:
        return list(self._failed[topic])
