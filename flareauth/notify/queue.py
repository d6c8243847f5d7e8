"""
FlareAuth Notify Queue - durable per-channel task queues.

Transports:
- MemoryQueueTransport: in-process queues for development and testing
- RedisQueueTransport: Redis lists + sorted sets for delayed retries and leases

Consumption contract: a worker ``consume``s an entry (it moves in-flight
under a lease of ``visibility_timeout`` seconds), then reports exactly one
of ``ack`` (delivered), ``nack`` (retry after a delay) or ``dead_letter``
(give up). An entry whose lease runs out unsettled, because its consumer
died, is handed out again by ``requeue_stale`` with the lost attempt
counted, or dead-lettered once its attempts are spent.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import json
import logging
from collections import deque
from datetime import datetime, timedelta
from typing import Any, Protocol

from ..clock import Clock, utcnow
from .task import Channel, DeliveryStatus, QueuedTask

logger = logging.getLogger("flareauth.notify.queue")

LEASE_EXPIRED = "Lease expired before the task was settled"


class QueueTransport(Protocol):
    """Queue transport collaborator."""

    async def enqueue(self, channel: Channel, entry: QueuedTask) -> None:
        ...

    async def consume(self, channel: Channel) -> QueuedTask | None:
        """Next ready entry, or None if nothing is due."""
        ...

    async def ack(self, entry: QueuedTask) -> None:
        ...

    async def nack(self, entry: QueuedTask, retry_after: float) -> None:
        """Requeue an in-flight entry, not consumable for ``retry_after`` seconds."""
        ...

    async def dead_letter(self, entry: QueuedTask) -> None:
        ...

    async def dead_letters(self, channel: Channel) -> list[QueuedTask]:
        ...

    async def requeue_stale(self, channel: Channel) -> int:
        """Return expired in-flight entries to the queue; number reclaimed."""
        ...


def _reclaim(entry: QueuedTask) -> bool:
    """Count the lost attempt; True if the entry may be retried."""
    entry.attempts += 1
    entry.last_error = LEASE_EXPIRED
    return not entry.exhausted


# ============================================================================
# Memory Transport
# ============================================================================

class MemoryQueueTransport:
    """In-memory queue transport (not durable across restarts)."""

    def __init__(self, visibility_timeout: float = 300.0, clock: Clock = utcnow):
        self.visibility_timeout = visibility_timeout
        self._clock = clock
        self._ready: dict[Channel, deque[QueuedTask]] = {c: deque() for c in Channel}
        self._delayed: dict[Channel, list[tuple[Any, int, QueuedTask]]] = {c: [] for c in Channel}
        self._in_flight: dict[str, tuple[QueuedTask, datetime]] = {}
        self._dead: dict[Channel, list[QueuedTask]] = {c: [] for c in Channel}
        self._seq = itertools.count()
        self._lock = asyncio.Lock()

    async def enqueue(self, channel: Channel, entry: QueuedTask) -> None:
        async with self._lock:
            entry.status = DeliveryStatus.QUEUED
            self._ready[Channel(channel)].append(entry)

    async def consume(self, channel: Channel) -> QueuedTask | None:
        channel = Channel(channel)
        async with self._lock:
            self._requeue_stale(channel)
            self._promote_due(channel)
            if not self._ready[channel]:
                return None
            entry = self._ready[channel].popleft()
            entry.status = DeliveryStatus.IN_FLIGHT
            lease = self._clock() + timedelta(seconds=self.visibility_timeout)
            self._in_flight[entry.task_id] = (entry, lease)
            return entry

    def _promote_due(self, channel: Channel) -> None:
        now = self._clock()
        delayed = self._delayed[channel]
        while delayed and delayed[0][0] <= now:
            _, _, entry = heapq.heappop(delayed)
            self._ready[channel].append(entry)

    async def requeue_stale(self, channel: Channel) -> int:
        async with self._lock:
            return self._requeue_stale(Channel(channel))

    def _requeue_stale(self, channel: Channel) -> int:
        now = self._clock()
        stale = [
            entry for entry, lease in self._in_flight.values()
            if entry.channel is channel and lease <= now
        ]
        for entry in stale:
            del self._in_flight[entry.task_id]
            if _reclaim(entry):
                entry.status = DeliveryStatus.QUEUED
                self._ready[channel].append(entry)
            else:
                entry.status = DeliveryStatus.DEAD
                self._dead[channel].append(entry)
            logger.warning(
                "Reclaimed %s task %s after lease expiry (attempt %d/%d, %s)",
                channel.value, entry.task_id, entry.attempts, entry.max_attempts, entry.status.value,
            )
        return len(stale)

    async def ack(self, entry: QueuedTask) -> None:
        async with self._lock:
            self._in_flight.pop(entry.task_id, None)
            entry.status = DeliveryStatus.DELIVERED

    async def nack(self, entry: QueuedTask, retry_after: float) -> None:
        async with self._lock:
            self._in_flight.pop(entry.task_id, None)
            entry.status = DeliveryStatus.RETRYING
            due = self._clock() + timedelta(seconds=retry_after)
            entry.next_attempt_at = due
            heapq.heappush(self._delayed[entry.channel], (due, next(self._seq), entry))

    async def dead_letter(self, entry: QueuedTask) -> None:
        async with self._lock:
            self._in_flight.pop(entry.task_id, None)
            entry.status = DeliveryStatus.DEAD
            self._dead[entry.channel].append(entry)

    async def dead_letters(self, channel: Channel) -> list[QueuedTask]:
        return list(self._dead[Channel(channel)])

    def pending(self, channel: Channel) -> int:
        """Ready plus delayed entries for ``channel``."""
        channel = Channel(channel)
        return len(self._ready[channel]) + len(self._delayed[channel])

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)


# ============================================================================
# Redis Transport
# ============================================================================

def _text(value: Any) -> str:
    return value.decode() if isinstance(value, bytes) else value


class RedisQueueTransport:
    """
    Redis-backed queue transport.

    Keys (per channel):
    - ``{prefix}entries:{channel}``    hash task_id -> serialized entry
    - ``{prefix}queue:{channel}``      list of ready task ids
    - ``{prefix}processing:{channel}`` list of consumed, unsettled task ids
    - ``{prefix}leases:{channel}``     sorted set of processing ids, scored by lease deadline
    - ``{prefix}delayed:{channel}``    sorted set of retry ids, scored by due time
    - ``{prefix}dead:{channel}``       list of dead-lettered entries

    A task id moves from the ready list to the processing list in one
    ``LMOVE``, so a consumer crash never drops it; ``requeue_stale`` picks
    it up once its lease lapses.
    """

    def __init__(
        self,
        redis_client: Any,
        key_prefix: str = "flareauth:notify:",
        visibility_timeout: float = 300.0,
        clock: Clock = utcnow,
    ):
        """
        Initialize Redis transport.

        Args:
            redis_client: Redis async client (e.g., redis.asyncio.Redis)
            key_prefix: Key prefix for all queue keys
            visibility_timeout: Seconds a consumed entry stays leased
            clock: Time source for delayed retries and leases
        """
        self.redis = redis_client
        self.key_prefix = key_prefix
        self.visibility_timeout = visibility_timeout
        self._clock = clock

    def _key(self, kind: str, channel: Channel | str) -> str:
        return f"{self.key_prefix}{kind}:{Channel(channel).value}"

    def _lease_deadline(self) -> float:
        return self._clock().timestamp() + self.visibility_timeout

    @staticmethod
    def _dump(entry: QueuedTask) -> str:
        return json.dumps(entry.to_dict(), separators=(",", ":"), sort_keys=True)

    async def enqueue(self, channel: Channel, entry: QueuedTask) -> None:
        entry.status = DeliveryStatus.QUEUED
        pipe = self.redis.pipeline(transaction=True)
        pipe.hset(self._key("entries", channel), entry.task_id, self._dump(entry))
        pipe.rpush(self._key("queue", channel), entry.task_id)
        await pipe.execute()

    async def consume(self, channel: Channel) -> QueuedTask | None:
        channel = Channel(channel)
        await self.requeue_stale(channel)
        await self._promote_due(channel)

        processing = self._key("processing", channel)
        while True:
            member = await self.redis.lmove(self._key("queue", channel), processing, "LEFT", "RIGHT")
            if member is None:
                return None
            task_id = _text(member)
            await self.redis.zadd(self._key("leases", channel), {task_id: self._lease_deadline()})

            raw = await self.redis.hget(self._key("entries", channel), task_id)
            if raw is not None:
                entry = QueuedTask.from_dict(json.loads(raw))
                entry.status = DeliveryStatus.IN_FLIGHT
                return entry

            # Settled elsewhere after a lease was reclaimed
            await self._release(channel, task_id)

    async def _promote_due(self, channel: Channel) -> None:
        delayed_key = self._key("delayed", channel)
        now = self._clock().timestamp()
        for member in await self.redis.zrangebyscore(delayed_key, "-inf", now):
            # zrem succeeding means this consumer claimed the member
            if await self.redis.zrem(delayed_key, member):
                await self.redis.rpush(self._key("queue", channel), _text(member))

    async def requeue_stale(self, channel: Channel) -> int:
        channel = Channel(channel)
        processing = self._key("processing", channel)
        leases = self._key("leases", channel)
        now = self._clock().timestamp()
        reclaimed = 0

        for member in await self.redis.lrange(processing, 0, -1):
            task_id = _text(member)
            deadline = await self.redis.zscore(leases, task_id)
            if deadline is None:
                # Consumer died between the move and the lease write
                await self.redis.zadd(leases, {task_id: self._lease_deadline()}, nx=True)
                continue
            if float(deadline) > now:
                continue
            # zrem succeeding means this consumer claimed the stale lease
            if not await self.redis.zrem(leases, task_id):
                continue
            await self.redis.lrem(processing, 0, task_id)

            raw = await self.redis.hget(self._key("entries", channel), task_id)
            if raw is None:
                continue
            entry = QueuedTask.from_dict(json.loads(raw))
            if _reclaim(entry):
                entry.status = DeliveryStatus.QUEUED
                pipe = self.redis.pipeline(transaction=True)
                pipe.hset(self._key("entries", channel), task_id, self._dump(entry))
                pipe.rpush(self._key("queue", channel), task_id)
                await pipe.execute()
            else:
                await self.dead_letter(entry)
            reclaimed += 1
            logger.warning(
                "Reclaimed %s task %s after lease expiry (attempt %d/%d)",
                channel.value, task_id, entry.attempts, entry.max_attempts,
            )
        return reclaimed

    async def _release(self, channel: Channel, task_id: str) -> None:
        pipe = self.redis.pipeline(transaction=True)
        pipe.lrem(self._key("processing", channel), 0, task_id)
        pipe.zrem(self._key("leases", channel), task_id)
        await pipe.execute()

    async def ack(self, entry: QueuedTask) -> None:
        entry.status = DeliveryStatus.DELIVERED
        channel = entry.channel
        pipe = self.redis.pipeline(transaction=True)
        pipe.lrem(self._key("processing", channel), 0, entry.task_id)
        pipe.zrem(self._key("leases", channel), entry.task_id)
        pipe.hdel(self._key("entries", channel), entry.task_id)
        await pipe.execute()

    async def nack(self, entry: QueuedTask, retry_after: float) -> None:
        entry.status = DeliveryStatus.RETRYING
        due = self._clock() + timedelta(seconds=retry_after)
        entry.next_attempt_at = due
        channel = entry.channel
        pipe = self.redis.pipeline(transaction=True)
        pipe.lrem(self._key("processing", channel), 0, entry.task_id)
        pipe.zrem(self._key("leases", channel), entry.task_id)
        pipe.hset(self._key("entries", channel), entry.task_id, self._dump(entry))
        pipe.zadd(self._key("delayed", channel), {entry.task_id: due.timestamp()})
        await pipe.execute()

    async def dead_letter(self, entry: QueuedTask) -> None:
        entry.status = DeliveryStatus.DEAD
        channel = entry.channel
        pipe = self.redis.pipeline(transaction=True)
        pipe.lrem(self._key("processing", channel), 0, entry.task_id)
        pipe.zrem(self._key("leases", channel), entry.task_id)
        pipe.hdel(self._key("entries", channel), entry.task_id)
        pipe.rpush(self._key("dead", channel), self._dump(entry))
        await pipe.execute()

    async def dead_letters(self, channel: Channel) -> list[QueuedTask]:
        raw_entries = await self.redis.lrange(self._key("dead", channel), 0, -1)
        return [QueuedTask.from_dict(json.loads(raw)) for raw in raw_entries]
