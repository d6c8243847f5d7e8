"""
FlareAuth Notify Task - the unit of work on the notification queues.

A ``NotificationTask`` is immutable once enqueued. The queue wraps it in a
``QueuedTask`` that carries the mutable delivery bookkeeping (attempts,
next attempt time, last error) through retries and dead-lettering.
"""

from __future__ import annotations

import hashlib
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class Channel(str, Enum):
    """Delivery channel; one queue per channel."""

    EMAIL = "email"
    SMS = "sms"


class Template(str, Enum):
    """Built-in notification templates."""

    TWO_FACTOR_CODE = "two_factor_code"
    EMAIL_VERIFICATION = "email_verification"
    PASSWORD_RESET = "password_reset"


class DeliveryStatus(str, Enum):
    """Lifecycle status of a queued task."""

    QUEUED = "queued"
    IN_FLIGHT = "in_flight"
    RETRYING = "retrying"
    DELIVERED = "delivered"
    DEAD = "dead"


def make_idempotency_key(user_id: str, ref: str, channel: Channel | str) -> str:
    """
    Deterministic key for one logical notification.

    ``ref`` is the thing being delivered (challenge id, token jti), so a
    re-send of the same challenge collapses while a new challenge does not.
    """
    material = "|".join([user_id, ref, Channel(channel).value])
    return hashlib.sha256(material.encode()).hexdigest()


@dataclass(frozen=True)
class NotificationTask:
    """Immutable notification request."""

    channel: Channel
    recipient: str
    template: str
    idempotency_key: str
    variables: Dict[str, Any] = field(default_factory=dict)
    task_id: str = field(default_factory=lambda: f"nt_{uuid.uuid4().hex}")
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    expires_at: Optional[datetime] = None

    @classmethod
    def create(
        cls,
        channel: Channel | str,
        recipient: str,
        template: Template | str,
        variables: Optional[Dict[str, Any]] = None,
        *,
        user_id: str,
        ref: str,
        expires_at: Optional[datetime] = None,
    ) -> NotificationTask:
        channel = Channel(channel)
        return cls(
            channel=channel,
            recipient=recipient,
            template=Template(template).value if isinstance(template, Template) else template,
            variables=dict(variables or {}),
            idempotency_key=make_idempotency_key(user_id, ref, channel),
            expires_at=expires_at,
        )

    def to_dict(self) -> dict:
        return {
            "task_id": self.task_id,
            "channel": self.channel.value,
            "recipient": self.recipient,
            "template": self.template,
            "variables": self.variables,
            "idempotency_key": self.idempotency_key,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> NotificationTask:
        return cls(
            task_id=data["task_id"],
            channel=Channel(data["channel"]),
            recipient=data["recipient"],
            template=data["template"],
            variables=data.get("variables", {}),
            idempotency_key=data["idempotency_key"],
            created_at=datetime.fromisoformat(data["created_at"]),
            expires_at=datetime.fromisoformat(data["expires_at"]) if data.get("expires_at") else None,
        )

    def __repr__(self) -> str:
        # Variables carry codes and tokens
        return (
            f"NotificationTask(task_id={self.task_id!r}, channel={self.channel.value}, "
            f"template={self.template!r})"
        )


@dataclass
class QueuedTask:
    """Queue entry: an immutable task plus its delivery bookkeeping."""

    task: NotificationTask
    max_attempts: int = 5
    attempts: int = 0
    status: DeliveryStatus = DeliveryStatus.QUEUED
    next_attempt_at: Optional[datetime] = None
    last_attempt_at: Optional[datetime] = None
    last_error: Optional[str] = None

    @property
    def task_id(self) -> str:
        return self.task.task_id

    @property
    def channel(self) -> Channel:
        return self.task.channel

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.max_attempts

    def stale(self, now: datetime) -> bool:
        """True once the message is no longer worth sending."""
        return self.task.expires_at is not None and now > self.task.expires_at

    def to_dict(self) -> dict:
        return {
            "task": self.task.to_dict(),
            "max_attempts": self.max_attempts,
            "attempts": self.attempts,
            "status": self.status.value,
            "next_attempt_at": self.next_attempt_at.isoformat() if self.next_attempt_at else None,
            "last_attempt_at": self.last_attempt_at.isoformat() if self.last_attempt_at else None,
            "last_error": self.last_error,
        }

    @classmethod
    def from_dict(cls, data: dict) -> QueuedTask:
        next_attempt_at = data.get("next_attempt_at")
        if isinstance(next_attempt_at, str):
            next_attempt_at = datetime.fromisoformat(next_attempt_at)

        last_attempt_at = data.get("last_attempt_at")
        if isinstance(last_attempt_at, str):
            last_attempt_at = datetime.fromisoformat(last_attempt_at)

        return cls(
            task=NotificationTask.from_dict(data["task"]),
            max_attempts=data.get("max_attempts", 5),
            attempts=data.get("attempts", 0),
            status=DeliveryStatus(data.get("status", "queued")),
            next_attempt_at=next_attempt_at,
            last_attempt_at=last_attempt_at,
            last_error=data.get("last_error"),
        )


@dataclass(frozen=True)
class TaskHandle:
    """Returned by ``NotificationDispatcher.enqueue``."""

    task_id: str
    channel: Channel
    idempotency_key: str
    duplicate: bool = False
