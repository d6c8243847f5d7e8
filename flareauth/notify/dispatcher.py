"""
FlareAuth Notify Dispatcher - idempotent enqueue of notification tasks.

The orchestrator only ever enqueues; it never waits for delivery. A flow
that needs a message sent is "started" once the task is durably queued.
"""

from __future__ import annotations

import logging
from typing import Optional

from ..clock import Clock, utcnow
from ..config import AuthConfig
from ..result import Err, Ok, Result
from .dedup import IdempotencyLedger, MemoryIdempotencyLedger
from .faults import QueueFault
from .queue import QueueTransport
from .task import NotificationTask, QueuedTask, TaskHandle

logger = logging.getLogger("flareauth.notify.dispatcher")


class NotificationDispatcher:
    """
    Routes tasks onto their channel queue.

    Tasks sharing an idempotency key collapse: only the first is queued,
    later calls get the original task id back with ``duplicate=True``.
    Safe to call concurrently for different users.
    """

    def __init__(
        self,
        queue: QueueTransport,
        ledger: Optional[IdempotencyLedger] = None,
        max_attempts: int = 5,
    ):
        self.queue = queue
        self.ledger = ledger or MemoryIdempotencyLedger()
        self.max_attempts = max_attempts

    @classmethod
    def from_config(
        cls,
        config: AuthConfig,
        queue: QueueTransport,
        ledger: Optional[IdempotencyLedger] = None,
        clock: Clock = utcnow,
    ) -> NotificationDispatcher:
        """Dispatcher with retry budget and dedup window taken from ``config``."""
        return cls(
            queue,
            ledger or MemoryIdempotencyLedger(window=config.dedup_window, clock=clock),
            max_attempts=config.delivery_max_attempts,
        )

    async def enqueue(self, task: NotificationTask) -> Result[TaskHandle]:
        channel = task.channel
        try:
            reserved, owner = await self.ledger.reserve(task.idempotency_key, task.task_id)
        except Exception as exc:
            logger.error("Idempotency ledger unavailable for task %s", task.task_id, exc_info=True)
            fault = QueueFault("Idempotency ledger unavailable", channel=channel.value)
            fault.__cause__ = exc
            return Err(fault)

        if not reserved:
            logger.info(
                "Duplicate %s task collapsed into %s (template=%s)",
                channel.value, owner, task.template,
            )
            return Ok(TaskHandle(owner, channel, task.idempotency_key, duplicate=True))

        try:
            await self.queue.enqueue(channel, QueuedTask(task=task, max_attempts=self.max_attempts))
        except Exception as exc:
            logger.error("Failed to enqueue %s task %s", channel.value, task.task_id, exc_info=True)
            await self.ledger.release(task.idempotency_key)
            fault = QueueFault(f"Failed to enqueue {channel.value} task", channel=channel.value)
            fault.__cause__ = exc
            return Err(fault)

        logger.debug("Queued %s task %s (template=%s)", channel.value, task.task_id, task.template)
        return Ok(TaskHandle(task.task_id, channel, task.idempotency_key))
