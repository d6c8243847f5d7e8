"""
FlareAuth Auth - credential checks, tokens, device trust, step-up challenges
and the flows that compose them.
"""

from .challenges import Challenge, ChallengeStatus, ChallengeStore
from .core import (
    AccessGrant,
    AuthStore,
    DeviceContext,
    DeviceInfo,
    PasswordResetRequested,
    StepUpRequired,
    StepUpResult,
    TokenPurpose,
    TwoFactorEnrollment,
    TwoFactorMethod,
    User,
    VerificationOutcome,
    fingerprint_device,
)
from .device import DeviceTrustEvaluator
from .faults import (
    AUTH_ACCOUNT_EXISTS,
    AUTH_ACCOUNT_NOT_FOUND,
    AUTH_ALREADY_VERIFIED,
    AUTH_ATTEMPTS_EXHAUSTED,
    AUTH_CHALLENGE_CONFLICT,
    AUTH_CHALLENGE_CONSUMED,
    AUTH_CHALLENGE_EXPIRED,
    AUTH_CHALLENGE_NOT_FOUND,
    AUTH_INTERNAL,
    AUTH_INVALID_CREDENTIALS,
    AUTH_MFA_NOT_ENROLLED,
    AUTH_TOKEN_EXPIRED,
    AUTH_TOKEN_INVALID,
    AUTH_TOKEN_WRONG_PURPOSE,
    AUTH_VALIDATION_FAILED,
    AuthFault,
)
from .hashing import CredentialVerifier, PasswordPolicy
from .manager import AuthOrchestrator
from .mfa import TOTPProvider
from .stores import MemoryAuthStore
from .tokens import TokenConfig, TokenIssuer

__all__ = [
    # Core
    "AccessGrant",
    "AuthStore",
    "DeviceContext",
    "DeviceInfo",
    "PasswordResetRequested",
    "StepUpRequired",
    "StepUpResult",
    "TokenPurpose",
    "TwoFactorEnrollment",
    "TwoFactorMethod",
    "User",
    "VerificationOutcome",
    "fingerprint_device",
    # Components
    "AuthOrchestrator",
    "Challenge",
    "ChallengeStatus",
    "ChallengeStore",
    "CredentialVerifier",
    "DeviceTrustEvaluator",
    "MemoryAuthStore",
    "PasswordPolicy",
    "TOTPProvider",
    "TokenConfig",
    "TokenIssuer",
    # Faults
    "AuthFault",
    "AUTH_ACCOUNT_EXISTS",
    "AUTH_ACCOUNT_NOT_FOUND",
    "AUTH_ALREADY_VERIFIED",
    "AUTH_ATTEMPTS_EXHAUSTED",
    "AUTH_CHALLENGE_CONFLICT",
    "AUTH_CHALLENGE_CONSUMED",
    "AUTH_CHALLENGE_EXPIRED",
    "AUTH_CHALLENGE_NOT_FOUND",
    "AUTH_INTERNAL",
    "AUTH_INVALID_CREDENTIALS",
    "AUTH_MFA_NOT_ENROLLED",
    "AUTH_TOKEN_EXPIRED",
    "AUTH_TOKEN_INVALID",
    "AUTH_TOKEN_WRONG_PURPOSE",
    "AUTH_VALIDATION_FAILED",
]
