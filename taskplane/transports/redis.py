"""Redis transport for cross-process job delivery."""

from __future__ import annotations

import json
import logging
from typing import Any, Optional, Tuple

import redis.asyncio as redis

from ..contracts import JobMessage, utcnow
from .base import BaseTransport

logger = logging.getLogger(__name__)


class RedisTransport(BaseTransport[str]):
    """Redis-based transport for distributed job delivery.

    Ready jobs live in a list per topic, delayed redeliveries in a sorted set
    scored by their ``not_before`` epoch, and permanently failed jobs in a
    separate list for inspection.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
    ) -> None:
        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self._redis: Optional[Any] = None

    @staticmethod
    def _queue_name(topic: str) -> str:
        return f"taskplane:{topic}"

    async def connect(self) -> None:
        """Connect to Redis."""
        self._redis = redis.Redis(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
            decode_responses=True,
        )
        await self._redis.ping()

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def publish(self, topic: str, message: JobMessage) -> None:
        """Push a job onto the ready list, or the delayed set if not yet due."""
        if not self._redis:
            await self.connect()

        queue_name = self._queue_name(topic)
        message_json = message.to_json()
        if message.not_before is not None and not message.is_due():
            await self._redis.zadd(
                f"{queue_name}:delayed", {message_json: message.not_before.timestamp()}
            )
        else:
            await self._redis.lpush(queue_name, message_json)

    async def _promote_due(self, queue_name: str) -> None:
        delayed = f"{queue_name}:delayed"
        due = await self._redis.zrangebyscore(delayed, 0, utcnow().timestamp())
        for message_json in due:
            # zrem is the claim: only the worker that removes it re-queues it
            if await self._redis.zrem(delayed, message_json):
                await self._redis.lpush(queue_name, message_json)

    async def poll(self, topic: str) -> Optional[Tuple[str, JobMessage]]:
        if not self._redis:
            await self.connect()

        queue_name = self._queue_name(topic)
        await self._promote_due(queue_name)
        message_json = await self._redis.rpop(queue_name)
        if message_json is None:
            return None
        try:
            message = JobMessage.model_validate(json.loads(message_json))
        except (json.JSONDecodeError, ValueError) as e:
            logger.error(f"Failed to parse job message on {queue_name}: {e}")
            return None
        return message_json, message

    async def ack(self, raw_message: str) -> None:
        """No-op acknowledgment for Redis transport (message already consumed)."""
        pass

    async def nack(self, raw_message: str, requeue: bool = True) -> None:
        if not requeue:
            return
        message = JobMessage.from_json(raw_message)
        await self._redis.rpush(self._queue_name(message.job_name), raw_message)

    async def dead_letter(self, topic: str, message: JobMessage, reason: str) -> None:
        await super().dead_letter(topic, message, reason)
        if not self._redis:
            await self.connect()
        await self._redis.lpush(
            f"{self._queue_name(topic)}:failed",
            json.dumps({"message": message.model_dump(mode="json"), "reason": reason}),
        )
