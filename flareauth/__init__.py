"""
FlareAuth - embeddable authentication engine.

Credential sign-up/sign-in, purpose-scoped signed tokens, device-trust
triggered step-up verification (email, SMS or TOTP authenticator), email
verification and password reset, with idempotent queued delivery of the
out-of-band messages. The host owns transport, storage and bootstrap.

Example:
    ```python
    from flareauth import AuthConfig, AuthOrchestrator, MemoryAuthStore
    from flareauth.notify import MemoryQueueTransport, NotificationDispatcher

    config = AuthConfig.from_env()
    auth = AuthOrchestrator.from_config(
        config,
        store=MemoryAuthStore(),
        notifications=NotificationDispatcher.from_config(config, MemoryQueueTransport()),
    )
    result = await auth.signin("a@x.com", "Secret1!", device)
    ```
"""

__version__ = "0.1.0"

from .auth import (
    AccessGrant,
    AuthOrchestrator,
    ChallengeStore,
    CredentialVerifier,
    DeviceInfo,
    DeviceTrustEvaluator,
    MemoryAuthStore,
    StepUpRequired,
    StepUpResult,
    TokenIssuer,
    TokenPurpose,
    TwoFactorMethod,
    User,
    fingerprint_device,
)
from .config import AuthConfig
from .faults import ConfigFault, Fault, FaultKind
from .notify import NotificationDispatcher, NotificationTask
from .result import Err, Ok, Result

__all__ = [
    "__version__",
    "AccessGrant",
    "AuthConfig",
    "AuthOrchestrator",
    "ChallengeStore",
    "ConfigFault",
    "CredentialVerifier",
    "DeviceInfo",
    "DeviceTrustEvaluator",
    "Err",
    "Fault",
    "FaultKind",
    "MemoryAuthStore",
    "NotificationDispatcher",
    "NotificationTask",
    "Ok",
    "Result",
    "StepUpRequired",
    "StepUpResult",
    "TokenIssuer",
    "TokenPurpose",
    "TwoFactorMethod",
    "User",
    "fingerprint_device",
]
