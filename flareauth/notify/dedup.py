"""
FlareAuth Notify Dedup - idempotency ledger.

Queue delivery is at-least-once. The ledger makes the observable effect
at-most-once per idempotency key within the dedup window:

- ``NotificationDispatcher.enqueue`` reserves the key; a second enqueue of
  the same key returns the original task instead of queueing another.
- ``DeliveryWorker`` skips entries whose key is already delivered and marks
  the key once the transport accepts the message.
"""

from __future__ import annotations

import asyncio
import heapq
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Protocol

from ..clock import Clock, utcnow


class IdempotencyLedger(Protocol):
    async def reserve(self, key: str, task_id: str) -> tuple[bool, str]:
        """
        Claim ``key`` for ``task_id``.

        Returns ``(True, task_id)`` when claimed, or ``(False, owner_task_id)``
        when the key is already held inside the dedup window.
        """
        ...

    async def release(self, key: str) -> None:
        ...

    async def mark_delivered(self, key: str) -> None:
        ...

    async def is_delivered(self, key: str) -> bool:
        ...


@dataclass
class _LedgerEntry:
    task_id: str
    expires_at: datetime
    delivered: bool = False


class MemoryIdempotencyLedger:
    """
    In-memory ledger; entries lapse ``window`` seconds after their last update.

    Lapsed entries are swept on every write, so the ledger holds at most one
    window's worth of keys.
    """

    def __init__(self, window: int = 86400, clock: Clock = utcnow):
        self.window = window
        self._clock = clock
        self._entries: dict[str, _LedgerEntry] = {}
        self._expiries: list[tuple[datetime, str]] = []
        self._lock = asyncio.Lock()

    def _live(self, key: str) -> Optional[_LedgerEntry]:
        entry = self._entries.get(key)
        if entry is not None and entry.expires_at <= self._clock():
            del self._entries[key]
            return None
        return entry

    def _expiry(self) -> datetime:
        return self._clock() + timedelta(seconds=self.window)

    def _touch(self, key: str, entry: _LedgerEntry) -> None:
        entry.expires_at = self._expiry()
        self._entries[key] = entry
        heapq.heappush(self._expiries, (entry.expires_at, key))

    def _sweep(self) -> None:
        now = self._clock()
        while self._expiries and self._expiries[0][0] <= now:
            expires_at, key = heapq.heappop(self._expiries)
            entry = self._entries.get(key)
            # Later touches leave superseded heap records behind
            if entry is not None and entry.expires_at <= now:
                del self._entries[key]

    async def reserve(self, key: str, task_id: str) -> tuple[bool, str]:
        async with self._lock:
            self._sweep()
            entry = self._live(key)
            if entry is not None:
                return False, entry.task_id
            self._touch(key, _LedgerEntry(task_id=task_id, expires_at=self._expiry()))
            return True, task_id

    async def release(self, key: str) -> None:
        async with self._lock:
            entry = self._live(key)
            if entry is not None and not entry.delivered:
                del self._entries[key]

    async def mark_delivered(self, key: str) -> None:
        async with self._lock:
            self._sweep()
            entry = self._live(key) or _LedgerEntry(task_id="", expires_at=self._expiry())
            entry.delivered = True
            self._touch(key, entry)

    async def is_delivered(self, key: str) -> bool:
        async with self._lock:
            entry = self._live(key)
            return entry is not None and entry.delivered

    def __len__(self) -> int:
        return len(self._entries)
