"""
FlareAuth Transport Adapter Interface - Protocol + receipt type for senders.

Adapters are invoked only by delivery workers, never by the orchestrator.

Included adapters:
- Console (dev)              - flareauth.notify.providers.console
- Outbox (tests / dev)       - flareauth.notify.providers.outbox
- SMTP (aiosmtplib)          - flareauth.notify.providers.smtp
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Protocol, runtime_checkable

from ...result import Result
from ..task import Channel
from ..templates import RenderedContent


@dataclass(frozen=True)
class DeliveryReceipt:
    """Proof that a transport accepted a message."""

    provider: str
    message_id: Optional[str] = None
    accepted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@runtime_checkable
class TransportAdapter(Protocol):
    """
    Interface every mail/SMS sender implements.

    ``send`` never raises for delivery problems; it returns
    ``Err(DeliveryFault)`` whose ``retryable`` flag tells the worker whether
    to back off and retry or dead-letter the task.
    """

    name: str
    channel: Channel

    async def send(self, recipient: str, content: RenderedContent) -> Result[DeliveryReceipt]:
        ...


from .console import ConsoleTransport
from .outbox import OutboxTransport
from .smtp import SMTPTransport

__all__ = [
    "ConsoleTransport",
    "DeliveryReceipt",
    "OutboxTransport",
    "SMTPTransport",
    "TransportAdapter",
]
