"""
FlareAuth - Authentication/Verification Faults

Structured error types for auth failures. Each class pins one FaultKind;
orchestrator callers branch on ``fault.kind``.
"""

from __future__ import annotations

from typing import Any

from ..faults import Fault, FaultDomain, FaultKind, Severity


class AuthFault(Fault):
    """Base class for auth faults; keyword arguments become metadata."""

    domain = FaultDomain.SECURITY
    public = True

    def __init__(self, message: str | None = None, **details: Any):
        super().__init__(message=message, metadata=details)


# ============================================================================
# Input & Identity Faults
# ============================================================================

class AUTH_VALIDATION_FAILED(AuthFault):
    """Malformed input (identifier syntax, weak password, ...)."""
    code = "AUTH_001"
    kind = FaultKind.VALIDATION
    severity = Severity.INFO
    message = "Validation failed"

    def __init__(self, message: str | None = None, *, errors: list[str] | None = None, **details: Any):
        super().__init__(message, errors=list(errors or []), **details)

    @property
    def errors(self) -> list[str]:
        return self.metadata.get("errors", [])


class AUTH_INVALID_CREDENTIALS(AuthFault):
    """Invalid identifier or password."""
    code = "AUTH_002"
    kind = FaultKind.UNAUTHORIZED
    message = "Invalid credentials"

    def __init__(self, identifier: str | None = None, **details: Any):
        if identifier:
            details["identifier_hash"] = self.hash_identifier(identifier)
        super().__init__(**details)


class AUTH_ACCOUNT_EXISTS(AuthFault):
    """Identifier already registered."""
    code = "AUTH_003"
    kind = FaultKind.CONFLICT
    message = "An account with this identifier already exists"

    def __init__(self, field: str, identifier: str, **details: Any):
        super().__init__(field=field, identifier_hash=self.hash_identifier(identifier), **details)


class AUTH_ACCOUNT_NOT_FOUND(AuthFault):
    """Unknown user. Internal only: reset flows never surface it."""
    code = "AUTH_004"
    kind = FaultKind.NOT_FOUND
    message = "Account not found"
    public = False

    def __init__(self, identifier: str | None = None, **details: Any):
        if identifier:
            details["identifier_hash"] = self.hash_identifier(identifier)
        super().__init__(**details)


# ============================================================================
# Token Faults
# ============================================================================

class AUTH_TOKEN_INVALID(AuthFault):
    """Malformed token or bad signature."""
    code = "AUTH_010"
    kind = FaultKind.INVALID_TOKEN
    message = "Invalid token"


class AUTH_TOKEN_EXPIRED(AuthFault):
    """Token is past its exp claim."""
    code = "AUTH_011"
    kind = FaultKind.EXPIRED_TOKEN
    message = "Token expired"


class AUTH_TOKEN_WRONG_PURPOSE(AUTH_TOKEN_INVALID):
    """Token was minted for a different operation; it is invalid here."""
    code = "AUTH_012"
    kind = FaultKind.WRONG_PURPOSE
    message = "Token is not valid for this operation"

    def __init__(self, expected: str, actual: str | None, **details: Any):
        super().__init__(expected_purpose=expected, actual_purpose=actual, **details)


# ============================================================================
# Challenge (step-up) Faults
# ============================================================================

class AUTH_CHALLENGE_NOT_FOUND(AuthFault):
    """No challenge is pending for the user."""
    code = "AUTH_020"
    kind = FaultKind.UNAUTHORIZED
    message = "No verification is pending. Please sign in again."


class AUTH_CHALLENGE_CONSUMED(AuthFault):
    """Challenge was already verified once."""
    code = "AUTH_021"
    kind = FaultKind.UNAUTHORIZED
    message = "This verification code was already used. Please sign in again."


class AUTH_CHALLENGE_CONFLICT(AuthFault):
    """Challenge changed underneath a verify (superseded concurrently)."""
    code = "AUTH_022"
    kind = FaultKind.UNAUTHORIZED
    message = "Verification was superseded. Please use the latest code."


class AUTH_CHALLENGE_EXPIRED(AuthFault):
    """Challenge TTL elapsed."""
    code = "AUTH_023"
    kind = FaultKind.EXPIRED_CHALLENGE
    message = "Verification code expired. Please sign in again."


class AUTH_ATTEMPTS_EXHAUSTED(AuthFault):
    """No verification attempts left."""
    code = "AUTH_024"
    kind = FaultKind.EXHAUSTED_ATTEMPTS
    message = "Too many incorrect codes. Please sign in again."


class AUTH_ALREADY_VERIFIED(AuthFault):
    """Email address is already verified; nothing was changed."""
    code = "AUTH_030"
    kind = FaultKind.ALREADY_VERIFIED
    severity = Severity.INFO
    message = "Email address already verified"


class AUTH_MFA_NOT_ENROLLED(AuthFault):
    """Requested two-factor method cannot be used for this account."""
    code = "AUTH_031"
    kind = FaultKind.VALIDATION
    message = "Two-factor method is not available for this account"


# ============================================================================
# Internal
# ============================================================================

class AUTH_INTERNAL(AuthFault):
    """Store or transport failure, converted at a component boundary."""
    code = "AUTH_500"
    kind = FaultKind.INTERNAL
    severity = Severity.ERROR
    message = "Internal error"
    public = False

    @classmethod
    def wrap(cls, exc: BaseException, operation: str) -> AUTH_INTERNAL:
        """Convert an unexpected exception, keeping it as ``__cause__``."""
        if isinstance(exc, AUTH_INTERNAL):
            return exc
        fault = cls(
            f"{operation} failed",
            operation=operation,
            error_type=type(exc).__name__,
        )
        fault.__cause__ = exc
        return fault
