"""
SMTP Transport - async mail delivery via aiosmtplib.

Usage::

    transport = SMTPTransport(
        host="smtp.example.com",
        port=587,
        username="user@example.com",
        password="secret",
        from_email="no-reply@example.com",
    )
    result = await transport.send("user@example.com", rendered)
"""

from __future__ import annotations

import logging
import ssl
from email.message import EmailMessage
from email.utils import formatdate, make_msgid
from typing import Optional

import aiosmtplib

from ...config import AuthConfig
from ...result import Err, Ok, Result
from ..faults import DeliveryFault
from ..task import Channel
from ..templates import RenderedContent
from . import DeliveryReceipt

logger = logging.getLogger("flareauth.notify.providers.smtp")

# ── Transient SMTP error codes (safe to retry) ─────────────────────
_TRANSIENT_CODES = frozenset({
    421,  # Service not available, closing channel
    450,  # Mailbox unavailable (busy / blocked)
    451,  # Local error in processing
    452,  # Insufficient storage
})

# ── Permanent SMTP error codes (do NOT retry) ──────────────────────
_PERMANENT_CODES = frozenset({
    550,  # Mailbox unavailable (not found / no access)
    551,  # User not local
    552,  # Exceeded storage allocation
    553,  # Mailbox name not allowed
    554,  # Transaction failed
    555,  # Parameters not recognised
})


class SMTPTransport:
    """Email transport over SMTP with STARTTLS or direct SSL."""

    channel = Channel.EMAIL

    def __init__(
        self,
        host: str = "localhost",
        port: int = 587,
        username: Optional[str] = None,
        password: Optional[str] = None,
        from_email: str = "no-reply@localhost",
        use_tls: bool = True,
        use_ssl: bool = False,
        timeout: float = 30.0,
        *,
        validate_certs: bool = True,
        name: str = "smtp",
    ):
        self.name = name
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.from_email = from_email
        self.use_tls = use_tls
        self.use_ssl = use_ssl
        self.timeout = timeout
        self.validate_certs = validate_certs

    @classmethod
    def from_config(cls, config: AuthConfig, host: str = "localhost", port: int = 587, **kwargs) -> SMTPTransport:
        """Transport sending from ``config.mail_from``; ``kwargs`` as for ``__init__``."""
        return cls(host, port, from_email=config.mail_from, **kwargs)

    def _build_tls_context(self) -> Optional[ssl.SSLContext]:
        if not self.use_tls and not self.use_ssl:
            return None
        ctx = ssl.create_default_context()
        if not self.validate_certs:
            ctx.check_hostname = False
            ctx.verify_mode = ssl.CERT_NONE
        return ctx

    def build_message(self, recipient: str, content: RenderedContent) -> EmailMessage:
        """Plain text message, with an HTML alternative when present."""
        msg = EmailMessage()
        msg["From"] = self.from_email
        msg["To"] = recipient
        msg["Subject"] = content.subject or ""
        msg["Date"] = formatdate(localtime=False)
        msg["Message-ID"] = make_msgid()
        msg.set_content(content.text)
        if content.html:
            msg.add_alternative(content.html, subtype="html")
        return msg

    async def send(self, recipient: str, content: RenderedContent) -> Result[DeliveryReceipt]:
        message = self.build_message(recipient, content)
        try:
            await aiosmtplib.send(
                message,
                hostname=self.host,
                port=self.port,
                username=self.username,
                password=self.password,
                use_tls=self.use_ssl,  # use_tls in aiosmtplib = connect with SSL
                start_tls=self.use_tls and not self.use_ssl,
                timeout=self.timeout,
                tls_context=self._build_tls_context(),
            )
        except aiosmtplib.SMTPException as exc:
            transient = self._is_transient(exc)
            logger.warning(
                "SMTP send via %s failed: %s (transient=%s)", self.name, exc, transient,
            )
            fault = DeliveryFault(str(exc), provider=self.name, transient=transient)
            fault.__cause__ = exc
            return Err(fault)
        except OSError as exc:
            logger.warning("SMTP connection to %s:%s failed: %s", self.host, self.port, exc)
            fault = DeliveryFault(str(exc), provider=self.name, transient=True)
            fault.__cause__ = exc
            return Err(fault)

        message_id = message["Message-ID"]
        logger.info("SMTP sent via %s (msg_id=%s)", self.name, message_id)
        return Ok(DeliveryReceipt(provider=self.name, message_id=message_id))

    @staticmethod
    def _is_transient(error: aiosmtplib.SMTPException) -> bool:
        code = getattr(error, "code", None)
        if isinstance(code, int):
            if code in _TRANSIENT_CODES:
                return True
            if code in _PERMANENT_CODES:
                return False
            return code < 500
        if isinstance(error, aiosmtplib.SMTPRecipientsRefused):
            return all(r.code in _TRANSIENT_CODES for r in error.recipients)
        # Connection-level errors (connect, timeout, disconnect)
        return True
