"""
FlareAuth Faults - Core types and fault taxonomy.

Defines:
- Fault base class (structured fault objects)
- FaultKind (closed set of tagged error variants callers branch on)
- FaultDomain (explicit fault domains)
- Severity levels
"""

from __future__ import annotations

import hashlib
from enum import Enum
from typing import Any, Optional


# ============================================================================
# Severity, Kind & Domain
# ============================================================================

class Severity(str, Enum):
    """
    Fault severity levels.

    Determines logging level for the fault when it is surfaced.
    """
    INFO = "info"       # Informational, no action needed
    WARN = "warn"       # Warning, should be reviewed
    ERROR = "error"     # Error, immediate attention
    FATAL = "fatal"     # Fatal, unrecoverable, abort


class FaultKind(str, Enum):
    """
    Closed set of error variants.

    Every fault carries exactly one kind. Callers branch on the kind,
    never on the concrete fault class or the message.
    """
    VALIDATION = "validation"
    UNAUTHORIZED = "unauthorized"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    INVALID_TOKEN = "invalid_token"
    EXPIRED_TOKEN = "expired_token"
    WRONG_PURPOSE = "wrong_purpose"
    EXPIRED_CHALLENGE = "expired_challenge"
    EXHAUSTED_ATTEMPTS = "exhausted_attempts"
    ALREADY_VERIFIED = "already_verified"
    INTERNAL = "internal"


class FaultDomain:
    """
    Fault domains (taxonomy).

    Identifies the functional area where a fault occurred.
    """

    def __init__(self, name: str, description: str = ""):
        self.name = name
        self.value = name
        self.description = description

    def __str__(self) -> str:
        return self.name

    def __repr__(self) -> str:
        return f"FaultDomain(name='{self.name}')"

    def __eq__(self, other: Any) -> bool:
        if isinstance(other, FaultDomain):
            return self.name == other.name
        return str(self) == str(other)

    def __hash__(self) -> int:
        return hash(self.name)


# Standard Domains
FaultDomain.CONFIG = FaultDomain("config", "Configuration errors")
FaultDomain.SECURITY = FaultDomain("security", "Authentication and verification")
FaultDomain.STORE = FaultDomain("store", "Persistence store failures")
FaultDomain.NOTIFY = FaultDomain("notify", "Notification queueing and delivery")
FaultDomain.SYSTEM = FaultDomain("system", "System level faults")


# Domain defaults
DOMAIN_DEFAULTS = {
    FaultDomain.CONFIG: {"severity": Severity.FATAL, "retryable": False},
    FaultDomain.SECURITY: {"severity": Severity.WARN, "retryable": False},
    FaultDomain.STORE: {"severity": Severity.ERROR, "retryable": True},
    FaultDomain.NOTIFY: {"severity": Severity.ERROR, "retryable": True},
    FaultDomain.SYSTEM: {"severity": Severity.FATAL, "retryable": False},
}


# ============================================================================
# Fault - Base Class
# ============================================================================

class Fault(Exception):
    """
    Base fault class - structured, typed fault object.

    A fault is NOT a bare exception. It is a first-class value with:
    - Stable machine-readable code
    - Human-readable message
    - Kind (the tagged variant callers branch on)
    - Severity level
    - Domain classification
    - Retry semantics
    - Public exposure control

    Faults are returned inside ``Err`` on every domain path. They subclass
    ``Exception`` only so configuration faults can be raised at startup and
    so ``Err.unwrap()`` can re-raise them.

    Example:
        ```python
        return Err(Fault(
            code="USER_NOT_FOUND",
            message="User with ID 123 not found",
            kind=FaultKind.NOT_FOUND,
            domain=FaultDomain.SECURITY,
        ))
        ```
    """

    code: Optional[str] = None
    message: Optional[str] = None
    kind: Optional[FaultKind] = None
    domain: Optional[FaultDomain] = None

    def __init__(
        self,
        code: str | None = None,
        message: str | None = None,
        *,
        kind: FaultKind | None = None,
        domain: FaultDomain | None = None,
        severity: Optional[Severity] = None,
        retryable: Optional[bool] = None,
        public: Optional[bool] = None,
        metadata: Optional[dict[str, Any]] = None,
    ):
        # Fallback to class attributes if not provided
        self.code = code if code is not None else type(self).code
        self.message = message if message is not None else type(self).message
        self.kind = kind if kind is not None else type(self).kind
        self.domain = domain if domain is not None else type(self).domain

        if self.code is None or self.message is None or self.domain is None:
            raise TypeError(f"{self.__class__.__name__} missing required code, message, or domain")
        if self.kind is None:
            self.kind = FaultKind.INTERNAL

        super().__init__(self.message)

        defaults = DOMAIN_DEFAULTS.get(self.domain, {"severity": Severity.ERROR, "retryable": False})
        self.severity = severity or getattr(type(self), "severity", None) or defaults["severity"]
        if retryable is None:
            retryable = getattr(type(self), "retryable", None)
        self.retryable = retryable if retryable is not None else defaults["retryable"]

        if public is None:
            public = getattr(type(self), "public", False)
        self.public = public

        self.metadata = dict(metadata or {})

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"Fault(code={self.code!r}, kind={self.kind.value}, "
            f"domain={self.domain.value}, severity={self.severity.value})"
        )

    @property
    def cause(self) -> Optional[BaseException]:
        """Underlying exception this fault was converted from, if any."""
        return self.__cause__

    @staticmethod
    def hash_identifier(value: str) -> str:
        """Stable, non-reversible reference to an identifier for logs and metadata."""
        return hashlib.sha256(value.strip().lower().encode()).hexdigest()[:16]

    def to_dict(self) -> dict[str, Any]:
        """
        Serialize fault to dictionary.

        Returns:
            Dictionary representation suitable for logging/serialization
        """
        return {
            "code": self.code,
            "kind": self.kind.value,
            "message": self.message,
            "domain": self.domain.value,
            "severity": self.severity.value,
            "retryable": self.retryable,
            "public": self.public,
            "metadata": self.metadata,
        }


class ConfigFault(Fault):
    """Invalid or missing configuration (raised at construction time)."""

    code = "CONFIG_INVALID"
    message = "Invalid configuration"
    kind = FaultKind.VALIDATION
    domain = FaultDomain.CONFIG

    def __init__(self, message: str, *, config_key: str | None = None):
        super().__init__(
            message=message,
            metadata={"config_key": config_key} if config_key else None,
        )
        self.config_key = config_key
