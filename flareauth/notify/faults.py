"""
FlareAuth Notify Faults - typed faults for queueing, rendering and delivery.

Transport adapters return ``Err(DeliveryFault)``; the delivery worker reads
``retryable`` to choose between backoff and dead-lettering.
"""

from __future__ import annotations

from typing import Any, Optional

from ..faults.core import Fault, FaultDomain, FaultKind, Severity


class NotifyFault(Fault):
    """Base class for all notification faults."""

    domain = FaultDomain.NOTIFY
    kind = FaultKind.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        code: str = "NOTIFY_ERROR",
        severity: Severity = Severity.ERROR,
        details: Optional[dict[str, Any]] = None,
        retryable: bool = False,
        task_id: Optional[str] = None,
    ):
        self.task_id = task_id
        metadata = {**(details or {}), "task_id": task_id} if task_id else (details or {})
        super().__init__(
            message=message,
            code=code,
            severity=severity,
            retryable=retryable,
            metadata=metadata,
        )


class DeliveryFault(NotifyFault):
    """Transport-level send failure (transient or permanent)."""

    def __init__(
        self,
        message: str,
        *,
        provider: str = "unknown",
        transient: bool = True,
        task_id: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        self.provider = provider
        self.transient = transient
        super().__init__(
            message=message,
            code="NOTIFY_SEND_TRANSIENT" if transient else "NOTIFY_SEND_PERMANENT",
            severity=Severity.WARN if transient else Severity.ERROR,
            details={**(details or {}), "provider": provider, "transient": transient},
            retryable=transient,
            task_id=task_id,
        )


class TemplateFault(NotifyFault):
    """Unknown template or render error. Never retried."""

    def __init__(
        self,
        message: str,
        *,
        template_name: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        self.template_name = template_name
        super().__init__(
            message=message,
            code="NOTIFY_TEMPLATE_ERROR",
            details={**(details or {}), "template_name": template_name},
        )


class QueueFault(NotifyFault):
    """Queue transport failure (enqueue, consume, ack)."""

    def __init__(
        self,
        message: str,
        *,
        channel: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            code="NOTIFY_QUEUE_ERROR",
            details={**(details or {}), "channel": channel},
            retryable=True,
        )
