"""
Console Transport - prints notifications to stdout (development).

Does not actually send anything.
"""

from __future__ import annotations

import logging
import uuid

from ...result import Ok, Result
from ..task import Channel
from ..templates import RenderedContent
from . import DeliveryReceipt

logger = logging.getLogger("flareauth.notify.providers.console")


class ConsoleTransport:
    """Transport that prints messages instead of sending them."""

    def __init__(self, channel: Channel = Channel.EMAIL, name: str = "console"):
        self.channel = Channel(channel)
        self.name = name

    async def send(self, recipient: str, content: RenderedContent) -> Result[DeliveryReceipt]:
        message_id = f"console-{uuid.uuid4().hex[:12]}"
        separator = "=" * 72
        output = (
            f"\n{separator}\n"
            f"  CONSOLE {self.channel.value.upper()} (not actually sent)\n"
            f"{separator}\n"
            f"  ID:      {message_id}\n"
            f"  To:      {recipient}\n"
        )
        if content.subject:
            output += f"  Subject: {content.subject}\n"
        output += f"{'-' * 72}\n{content.text}\n"
        if content.html:
            output += f"{'-' * 72}\n[HTML]\n{content.html}\n"
        output += f"{separator}\n"

        print(output)
        logger.info("Console %s sent (message_id=%s)", self.channel.value, message_id)
        return Ok(DeliveryReceipt(provider=self.name, message_id=message_id))
