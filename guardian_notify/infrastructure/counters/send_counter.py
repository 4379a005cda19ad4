# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Weekly automated-send counters.

Counts automated messages per guardian per ISO week. try_acquire
reserves a slot atomically, so two concurrent sends cannot both take
the last slot under the cap.

Two backends:
- InMemorySendCounter: single process, guarded by an asyncio.Lock
- RedisSendCounter: shared across processes, INCR with rollback

Unlike task dispatch rate limiting, these counters do not fail open:
a Redis error is raised so the send is not admitted past the cap.
"""

import asyncio
import logging
from collections import defaultdict
from datetime import datetime
from typing import Protocol, runtime_checkable

from redis.asyncio import Redis
from redis.exceptions import RedisError

from guardian_notify.core.config.settings import RedisSettings
from guardian_notify.utils.datetime import iso_week_key

logger = logging.getLogger(__name__)

COUNTER_TTL_SECONDS = 8 * 24 * 60 * 60


class SendCounterError(Exception):
    """Raised when the counter backend cannot be reached.

    Attributes:
        message: Human-readable error description.
        original_error: The underlying backend error.
    """

    def __init__(self, message: str, original_error: Exception | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.original_error = original_error

    def __str__(self) -> str:
        if self.original_error:
            return f"{self.message}: {self.original_error}"
        return self.message


@runtime_checkable
class SendCounter(Protocol):
    """Per-guardian weekly send counter."""

    async def current(self, guardian_id: str, now: datetime) -> int:
        """Sends counted for the guardian in the week containing now."""
        ...

    async def try_acquire(self, guardian_id: str, limit: int, now: datetime) -> bool:
        """Reserve one send if the count is below limit."""
        ...

    async def release(self, guardian_id: str, now: datetime) -> None:
        """Give back a slot reserved by try_acquire."""
        ...


class InMemorySendCounter:
    """Process-local weekly counter."""

    def __init__(self) -> None:
        self._counts: dict[tuple[str, str], int] = defaultdict(int)
        self._lock = asyncio.Lock()

    async def current(self, guardian_id: str, now: datetime) -> int:
        return self._counts.get((guardian_id, iso_week_key(now)), 0)

    async def try_acquire(self, guardian_id: str, limit: int, now: datetime) -> bool:
        key = (guardian_id, iso_week_key(now))
        async with self._lock:
            if self._counts[key] >= limit:
                logger.debug("Weekly cap reached for guardian %s (%d)", guardian_id, limit)
                return False
            self._counts[key] += 1
            return True

    async def release(self, guardian_id: str, now: datetime) -> None:
        key = (guardian_id, iso_week_key(now))
        async with self._lock:
            if self._counts.get(key, 0) > 0:
                self._counts[key] -= 1


class RedisSendCounter:
    """Weekly counter shared through Redis.

    Keys are "{prefix}:weekly_sends:{guardian_id}:{iso_week}" and expire
    eight days after the first send of the week.

    Attributes:
        key_prefix: Prefix for counter keys.
    """

    def __init__(self, redis: Redis, key_prefix: str = "guardian_notify") -> None:
        self._redis = redis
        self.key_prefix = key_prefix

    @classmethod
    def from_settings(cls, settings: RedisSettings) -> "RedisSendCounter":
        redis = Redis.from_url(settings.url, decode_responses=True)
        return cls(redis, key_prefix=settings.key_prefix)

    def _get_key(self, guardian_id: str, now: datetime) -> str:
        return f"{self.key_prefix}:weekly_sends:{guardian_id}:{iso_week_key(now)}"

    async def current(self, guardian_id: str, now: datetime) -> int:
        try:
            value = await self._redis.get(self._get_key(guardian_id, now))
        except RedisError as e:
            raise SendCounterError("Failed to read weekly send count", e) from e
        return int(value) if value is not None else 0

    async def try_acquire(self, guardian_id: str, limit: int, now: datetime) -> bool:
        key = self._get_key(guardian_id, now)
        try:
            count = await self._redis.incr(key)
            if count == 1:
                await self._redis.expire(key, COUNTER_TTL_SECONDS)
            if count > limit:
                await self._redis.decr(key)
                logger.debug(
                    "Weekly cap reached for guardian %s (count: %d, max: %d)",
                    guardian_id,
                    count - 1,
                    limit,
                )
                return False
        except RedisError as e:
            raise SendCounterError("Failed to reserve weekly send", e) from e
        return True

    async def release(self, guardian_id: str, now: datetime) -> None:
        key = self._get_key(guardian_id, now)
        try:
            count = await self._redis.decr(key)
            if count < 0:
                await self._redis.set(key, 0, ex=COUNTER_TTL_SECONDS)
        except RedisError as e:
            raise SendCounterError("Failed to release weekly send", e) from e

    async def close(self) -> None:
        await self._redis.aclose()
