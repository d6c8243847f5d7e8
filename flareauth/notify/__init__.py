"""
FlareAuth Notify - idempotent, queued delivery of out-of-band notifications.

The orchestrator hands ``NotificationTask``s to the ``NotificationDispatcher``;
``DeliveryWorker``s consume them, render templates and call transport
adapters, retrying with backoff and dead-lettering what cannot be sent.
"""

from .dedup import IdempotencyLedger, MemoryIdempotencyLedger
from .dispatcher import NotificationDispatcher
from .faults import DeliveryFault, NotifyFault, QueueFault, TemplateFault
from .providers import ConsoleTransport, DeliveryReceipt, OutboxTransport, SMTPTransport, TransportAdapter
from .queue import MemoryQueueTransport, QueueTransport, RedisQueueTransport
from .task import (
    Channel,
    DeliveryStatus,
    NotificationTask,
    QueuedTask,
    TaskHandle,
    Template,
    make_idempotency_key,
)
from .templates import NotificationRenderer, RenderedContent
from .worker import DeliveryWorker

__all__ = [
    "Channel",
    "ConsoleTransport",
    "DeliveryFault",
    "DeliveryReceipt",
    "DeliveryStatus",
    "DeliveryWorker",
    "IdempotencyLedger",
    "MemoryIdempotencyLedger",
    "MemoryQueueTransport",
    "NotificationDispatcher",
    "NotificationRenderer",
    "NotificationTask",
    "NotifyFault",
    "OutboxTransport",
    "QueueFault",
    "QueueTransport",
    "QueuedTask",
    "RedisQueueTransport",
    "RenderedContent",
    "SMTPTransport",
    "TaskHandle",
    "Template",
    "TemplateFault",
    "TransportAdapter",
    "make_idempotency_key",
]
