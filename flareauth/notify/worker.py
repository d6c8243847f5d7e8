"""
FlareAuth Notify Worker - consumes queued tasks and drives transports.

For each entry pulled from a channel queue the worker:

1. skips it if its idempotency key was already delivered (at-least-once
   queues may hand the same task out twice),
2. dead-letters it once the task's ``expires_at`` has passed,
3. renders the template and calls the channel's transport adapter,
4. acks on success, nacks with exponential backoff on retryable failure,
   and dead-letters on permanent failure or once ``max_attempts`` is spent.

Workers are independent consumers; run as many as needed. A failing poll
(queue or ledger unreachable) is logged and retried after ``poll_interval``;
it never stops ``run``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable, Mapping, Optional

from ..clock import Clock, utcnow
from ..config import AuthConfig
from .dedup import IdempotencyLedger, MemoryIdempotencyLedger
from .faults import DeliveryFault, NotifyFault
from .providers import TransportAdapter
from .queue import QueueTransport
from .task import Channel, DeliveryStatus, QueuedTask
from .templates import NotificationRenderer

logger = logging.getLogger("flareauth.notify.worker")


class DeliveryWorker:
    """Single consumer over one or more channel queues."""

    def __init__(
        self,
        queue: QueueTransport,
        transports: Mapping[Channel, TransportAdapter],
        renderer: Optional[NotificationRenderer] = None,
        ledger: Optional[IdempotencyLedger] = None,
        base_delay: float = 1.0,
        max_delay: float = 300.0,
        poll_interval: float = 0.5,
        clock: Clock = utcnow,
    ):
        self.queue = queue
        self.transports = {Channel(c): t for c, t in transports.items()}
        self.renderer = renderer or NotificationRenderer()
        self.ledger = ledger or MemoryIdempotencyLedger()
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.poll_interval = poll_interval
        self._clock = clock

    @classmethod
    def from_config(
        cls,
        config: AuthConfig,
        queue: QueueTransport,
        transports: Mapping[Channel, TransportAdapter],
        renderer: Optional[NotificationRenderer] = None,
        ledger: Optional[IdempotencyLedger] = None,
        poll_interval: float = 0.5,
        clock: Clock = utcnow,
    ) -> DeliveryWorker:
        """Worker with backoff, template globals and dedup window taken from ``config``."""
        return cls(
            queue,
            transports,
            renderer=renderer or NotificationRenderer.from_config(config),
            ledger=ledger or MemoryIdempotencyLedger(window=config.dedup_window, clock=clock),
            base_delay=config.delivery_base_delay,
            max_delay=config.delivery_max_delay,
            poll_interval=poll_interval,
            clock=clock,
        )

    def backoff(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        return min(self.base_delay * 2 ** (attempt - 1), self.max_delay)

    async def process_next(self, channel: Channel) -> Optional[DeliveryStatus]:
        """
        Handle one entry from ``channel``.

        Returns the entry's resulting status, or None when nothing was due.
        """
        entry = await self.queue.consume(Channel(channel))
        if entry is None:
            return None

        task = entry.task
        if await self.ledger.is_delivered(task.idempotency_key):
            logger.debug("Task %s already delivered; skipping", task.task_id)
            await self.queue.ack(entry)
            return DeliveryStatus.DELIVERED

        if entry.stale(self._clock()):
            return await self._dead_letter(entry, "Expired before delivery")

        entry.attempts += 1
        entry.last_attempt_at = self._clock()

        transport = self.transports.get(task.channel)
        if transport is None:
            return await self._dead_letter(entry, f"No transport for channel {task.channel.value}")

        rendered = await self.renderer.render(task.template, task.channel, task.variables)
        if rendered.is_err():
            return await self._dead_letter(entry, str(rendered.fault))

        try:
            result = await transport.send(task.recipient, rendered.value)
        except Exception as exc:
            logger.warning("Transport %s raised for task %s", transport.name, task.task_id, exc_info=True)
            fault: NotifyFault = DeliveryFault(str(exc), provider=transport.name, task_id=task.task_id)
            fault.__cause__ = exc
        else:
            if result.is_ok():
                await self.ledger.mark_delivered(task.idempotency_key)
                await self.queue.ack(entry)
                logger.info(
                    "Delivered %s task %s via %s (attempt %d)",
                    task.channel.value, task.task_id, transport.name, entry.attempts,
                )
                return DeliveryStatus.DELIVERED
            fault = result.fault

        if not fault.retryable or entry.exhausted:
            return await self._dead_letter(entry, str(fault))

        delay = self.backoff(entry.attempts)
        entry.last_error = str(fault)
        await self.queue.nack(entry, delay)
        logger.warning(
            "Delivery of %s task %s failed (attempt %d/%d); retrying in %.1fs: %s",
            task.channel.value, task.task_id, entry.attempts, entry.max_attempts, delay, fault,
        )
        return DeliveryStatus.RETRYING

    async def _dead_letter(self, entry: QueuedTask, reason: str) -> DeliveryStatus:
        entry.last_error = reason
        await self.queue.dead_letter(entry)
        logger.error(
            "Dead-lettered %s task %s after %d attempt(s): %s",
            entry.channel.value, entry.task_id, entry.attempts, reason,
        )
        return DeliveryStatus.DEAD

    async def drain(self, channel: Channel) -> list[DeliveryStatus]:
        """Process entries until nothing on ``channel`` is due."""
        outcomes = []
        while (status := await self.process_next(channel)) is not None:
            outcomes.append(status)
        return outcomes

    async def run(self, stop: asyncio.Event, channels: Optional[Iterable[Channel]] = None) -> None:
        """Poll the channel queues until ``stop`` is set."""
        channels = list(channels or self.transports)
        logger.info("Delivery worker started (channels=%s)", ", ".join(c.value for c in channels))
        while not stop.is_set():
            busy = False
            for channel in channels:
                try:
                    if await self.process_next(channel) is not None:
                        busy = True
                except Exception:
                    logger.error("Polling %s queue failed", channel.value, exc_info=True)
            if not busy:
                try:
                    await asyncio.wait_for(stop.wait(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    pass
        logger.info("Delivery worker stopped")
