"""
FlareAuth - Core Types

Users, device contexts, flow outcomes, and the persistence store protocol.
"""

from __future__ import annotations

import hashlib
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional, Protocol

from ..clock import utcnow

if TYPE_CHECKING:
    from .challenges import Challenge


def _parse_dt(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


# ============================================================================
# Enums
# ============================================================================

class TwoFactorMethod(str, Enum):
    """Supported step-up factors."""
    EMAIL = "email"
    SMS = "sms"
    AUTHENTICATOR = "authenticator"


class TokenPurpose(str, Enum):
    """Purpose claim; a token is only valid for the operation it was minted for."""
    ACCESS = "access"
    EMAIL_VERIFY = "email-verify"
    PASSWORD_RESET = "password-reset"
    TWO_FACTOR_CHALLENGE = "2fa-challenge"


# ============================================================================
# Identity Model
# ============================================================================

@dataclass
class User:
    """
    Identity record, owned by the external store.

    ``password_salt`` is the per-user context the password digest is bound to.
    ``two_factor_secret`` is the base32 TOTP secret for authenticator users.
    """
    email: str
    password_hash: str
    password_salt: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    phone: Optional[str] = None
    is_email_verified: bool = False
    two_factor_enabled: bool = False
    two_factor_method: Optional[TwoFactorMethod] = None
    two_factor_secret: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def step_up_method(self) -> TwoFactorMethod:
        """Factor used when a sign-in needs step-up."""
        if self.two_factor_enabled and self.two_factor_method is not None:
            return self.two_factor_method
        return TwoFactorMethod.EMAIL

    def to_public_dict(self) -> dict[str, Any]:
        """Serialize without credential material."""
        return {
            "id": self.id,
            "email": self.email,
            "phone": self.phone,
            "is_email_verified": self.is_email_verified,
            "two_factor_enabled": self.two_factor_enabled,
            "two_factor_method": self.two_factor_method.value if self.two_factor_method else None,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dict (for stores)."""
        data = self.to_public_dict()
        data.update(
            password_hash=self.password_hash,
            password_salt=self.password_salt,
            two_factor_secret=self.two_factor_secret,
        )
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> User:
        """Deserialize from dict."""
        method = data.get("two_factor_method")
        return cls(
            id=data["id"],
            email=data["email"],
            phone=data.get("phone"),
            password_hash=data["password_hash"],
            password_salt=data["password_salt"],
            is_email_verified=data.get("is_email_verified", False),
            two_factor_enabled=data.get("two_factor_enabled", False),
            two_factor_method=TwoFactorMethod(method) if method else None,
            two_factor_secret=data.get("two_factor_secret"),
            created_at=_parse_dt(data.get("created_at")) or utcnow(),
            updated_at=_parse_dt(data.get("updated_at")) or utcnow(),
        )


@dataclass(frozen=True)
class DeviceContext:
    """Last device a user fully authenticated from. One record per user."""
    user_id: str
    ip: str
    user_agent_fingerprint: str
    last_seen_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class DeviceInfo:
    """Device signals presented with a sign-in request."""
    ip: str
    user_agent_fingerprint: str

    @classmethod
    def from_user_agent(cls, ip: str, user_agent: str, *extra: str) -> DeviceInfo:
        return cls(ip=ip, user_agent_fingerprint=fingerprint_device(user_agent, *extra))


def fingerprint_device(user_agent: str, *extra: str) -> str:
    """Stable SHA-256 fingerprint of a user agent plus optional host signals."""
    material = "\x1f".join([user_agent.strip(), *extra])
    return hashlib.sha256(material.encode()).hexdigest()


# ============================================================================
# Flow Outcomes
# ============================================================================

@dataclass
class AccessGrant:
    """Session credential issued once authentication is complete."""
    user_id: str
    access_token: str
    expires_in: int
    token_type: str = "Bearer"

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dict (token response)."""
        return {
            "access_token": self.access_token,
            "token_type": self.token_type,
            "expires_in": self.expires_in,
        }


@dataclass
class StepUpRequired:
    """Sign-in succeeded on password but needs a second factor."""
    user_id: str
    challenge_id: str
    method: TwoFactorMethod
    expires_at: datetime
    challenge_token: str


@dataclass(frozen=True)
class VerificationOutcome:
    """Result of checking one code against a challenge."""
    is_valid: bool
    remaining_attempts: int


@dataclass
class StepUpResult:
    """Step-up verification result; ``grant`` is set only when the code matched."""
    is_valid: bool
    remaining_attempts: int
    grant: Optional[AccessGrant] = None


@dataclass(frozen=True)
class PasswordResetRequested:
    """Uniform reset-request outcome; never reveals whether the account exists."""
    message: str = "If an account exists for this identifier, a reset message has been sent."


@dataclass(frozen=True)
class TwoFactorEnrollment:
    """Enrollment details returned to the user once."""
    method: TwoFactorMethod
    secret: Optional[str] = None
    provisioning_uri: Optional[str] = None


# ============================================================================
# Store Protocol
# ============================================================================

class AuthStore(Protocol):
    """
    Persistence store collaborator.

    Lookups return ``None`` for not-found; they never raise for it.
    Any raised exception is treated as a store failure.
    """

    async def get_user(self, user_id: str) -> User | None:
        ...

    async def get_user_by_email(self, email: str) -> User | None:
        ...

    async def get_user_by_phone(self, phone: str) -> User | None:
        ...

    async def create_user(self, user: User) -> User | None:
        """Persist a new user; ``None`` if email or phone is already taken."""
        ...

    async def update_user(self, user: User) -> User | None:
        """Replace a user; ``None`` if it does not exist."""
        ...

    async def get_device_context(self, user_id: str) -> DeviceContext | None:
        ...

    async def upsert_device_context(self, context: DeviceContext) -> None:
        ...

    async def get_challenge(self, user_id: str) -> Challenge | None:
        ...

    async def upsert_challenge(
        self, challenge: Challenge, expected_version: int | None = None
    ) -> bool:
        """
        Write the user's challenge record.

        With ``expected_version`` the write only succeeds if the stored
        record is still the same challenge (``challenge_id``) at that
        version (compare-and-swap); returns False otherwise. ``None`` overwrites unconditionally.
        """
        ...

    async def delete_challenge(self, user_id: str) -> bool:
        ...
