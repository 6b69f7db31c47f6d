"""Atomic counter store used by the admission controller.

The controller never keeps counters in process memory. It talks to a store
with three operations:

  - ``get_count(key)``: current integer value (0 when absent/expired)
  - ``get_members(key)``: current set members (empty when absent/expired)
  - ``apply(batch)``: execute a ``UsageBatch`` of increments and set-adds,
    each with its TTL, as one atomic unit

``RedisCounterStore`` backs this with ``redis.asyncio`` and a MULTI/EXEC
pipeline so a crash can never leave a batch half applied.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol

from redis.asyncio import Redis

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Increment:
    key: str
    ttl_seconds: int
    amount: int = 1


@dataclass(frozen=True)
class SetAdd:
    key: str
    member: str
    ttl_seconds: int


@dataclass
class UsageBatch:
    """Ordered group of mutations applied atomically."""

    increments: list[Increment] = field(default_factory=list)
    set_adds: list[SetAdd] = field(default_factory=list)

    def incr(self, key: str, ttl_seconds: int, amount: int = 1) -> UsageBatch:
        self.increments.append(Increment(key=key, ttl_seconds=ttl_seconds, amount=amount))
        return self

    def sadd(self, key: str, member: str, ttl_seconds: int) -> UsageBatch:
        self.set_adds.append(SetAdd(key=key, member=member, ttl_seconds=ttl_seconds))
        return self

    def __len__(self) -> int:
        return len(self.increments) + len(self.set_adds)


class CounterStore(Protocol):
    async def get_count(self, key: str) -> int: ...

    async def get_members(self, key: str) -> set[str]: ...

    async def apply(self, batch: UsageBatch) -> dict[str, int]:
        """Apply the batch atomically; returns post-increment counter values."""
        ...


class RedisCounterStore:
    """CounterStore over Redis. Every key gets its TTL reset on write."""

    def __init__(self, redis: Redis):
        self._redis = redis

    async def get_count(self, key: str) -> int:
        value = await self._redis.get(key)
        if value is None:
            return 0
        return int(value)

    async def get_members(self, key: str) -> set[str]:
        members = await self._redis.smembers(key)
        return {m.decode() if isinstance(m, bytes) else m for m in members}

    async def apply(self, batch: UsageBatch) -> dict[str, int]:
        if not len(batch):
            return {}

        async with self._redis.pipeline(transaction=True) as pipe:
            for op in batch.increments:
                pipe.incrby(op.key, op.amount)
                pipe.expire(op.key, op.ttl_seconds)
            for op in batch.set_adds:
                pipe.sadd(op.key, op.member)
                pipe.expire(op.key, op.ttl_seconds)
            results = await pipe.execute()

        # Results alternate (INCRBY value, EXPIRE flag) for each increment
        values: dict[str, int] = {}
        for index, op in enumerate(batch.increments):
            values[op.key] = int(results[index * 2])
        return values

    async def ping(self) -> bool:
        return bool(await self._redis.ping())
