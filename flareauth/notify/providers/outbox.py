"""
Outbox Transport - keeps sent messages in memory (tests and development).

Failures can be scripted with ``fail_next`` to exercise the retry and
dead-letter paths of the delivery worker.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Optional

from ...result import Err, Ok, Result
from ..faults import DeliveryFault
from ..task import Channel
from ..templates import RenderedContent
from . import DeliveryReceipt


@dataclass(frozen=True)
class OutboxMessage:
    recipient: str
    content: RenderedContent
    message_id: str


class OutboxTransport:
    """In-memory transport recording every accepted message."""

    def __init__(self, channel: Channel = Channel.EMAIL, name: str = "outbox"):
        self.channel = Channel(channel)
        self.name = name
        self.messages: list[OutboxMessage] = []
        self.attempts = 0
        self._failures: deque[DeliveryFault] = deque()

    def fail_next(self, count: int = 1, *, transient: bool = True, message: Optional[str] = None) -> None:
        """Make the next ``count`` sends fail."""
        for _ in range(count):
            self._failures.append(DeliveryFault(
                message or ("Temporary failure" if transient else "Recipient rejected"),
                provider=self.name,
                transient=transient,
            ))

    async def send(self, recipient: str, content: RenderedContent) -> Result[DeliveryReceipt]:
        self.attempts += 1
        if self._failures:
            return Err(self._failures.popleft())

        message_id = f"{self.name}-{len(self.messages) + 1}"
        self.messages.append(OutboxMessage(recipient, content, message_id))
        return Ok(DeliveryReceipt(provider=self.name, message_id=message_id))

    def last_to(self, recipient: str) -> Optional[OutboxMessage]:
        """Most recent message sent to ``recipient``."""
        for message in reversed(self.messages):
            if message.recipient == recipient:
                return message
        return None

    def clear(self) -> None:
        self.messages.clear()
        self.attempts = 0
        self._failures.clear()
