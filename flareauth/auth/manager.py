"""
FlareAuth - Auth Orchestrator

Composes the credential verifier, token issuer, device trust evaluator,
challenge store and notification dispatcher into the end-to-end flows:
signup, signin, step-up verification, email verification, password reset,
password change and two-factor enrollment.

Every flow returns a ``Result``. Domain failures come back with their
precise ``FaultKind``; store and queue failures are converted to
AUTH_INTERNAL at this boundary. Password reset requests always return the
same outcome so callers cannot probe for accounts.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from typing import Any, Awaitable, Optional, Union

from ..clock import Clock, utcnow
from ..config import AuthConfig
from ..notify.dispatcher import NotificationDispatcher
from ..notify.task import Channel, NotificationTask, TaskHandle, Template
from ..result import Err, Ok, Result
from .challenges import Challenge, ChallengeStore
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
)
from .device import DeviceTrustEvaluator
from .faults import (
    AUTH_ACCOUNT_EXISTS,
    AUTH_ACCOUNT_NOT_FOUND,
    AUTH_ALREADY_VERIFIED,
    AUTH_INTERNAL,
    AUTH_INVALID_CREDENTIALS,
    AUTH_MFA_NOT_ENROLLED,
    AUTH_TOKEN_INVALID,
    AUTH_VALIDATION_FAILED,
)
from .hashing import CredentialVerifier, PasswordPolicy, is_valid_email, is_valid_phone, normalize_email
from .mfa import TOTPProvider
from .tokens import TokenConfig, TokenIssuer

logger = logging.getLogger("flareauth.auth")

SignInOutcome = Union[AccessGrant, StepUpRequired]


def _password_binding(password_hash: str) -> str:
    """Short fingerprint of the current digest; reset tokens die once it changes."""
    return hashlib.sha256(password_hash.encode()).hexdigest()[:16]


class AuthOrchestrator:
    """
    Authentication flow coordinator.

    All collaborators are passed in; nothing is looked up globally. Use
    ``from_config`` to wire the standard components from an ``AuthConfig``.
    """

    def __init__(
        self,
        store: AuthStore,
        credentials: CredentialVerifier,
        tokens: TokenIssuer,
        devices: DeviceTrustEvaluator,
        challenges: ChallengeStore,
        notifications: NotificationDispatcher,
        config: AuthConfig,
        password_policy: Optional[PasswordPolicy] = None,
        totp: Optional[TOTPProvider] = None,
        clock: Clock = utcnow,
    ):
        self.store = store
        self.credentials = credentials
        self.tokens = tokens
        self.devices = devices
        self.challenges = challenges
        self.notifications = notifications
        self.config = config
        self.password_policy = password_policy or PasswordPolicy()
        self.totp = totp or challenges.totp
        self._clock = clock
        self._dummy_digest: Optional[str] = None

    @classmethod
    def from_config(
        cls,
        config: AuthConfig,
        store: AuthStore,
        notifications: NotificationDispatcher,
        credentials: Optional[CredentialVerifier] = None,
        password_policy: Optional[PasswordPolicy] = None,
        clock: Clock = utcnow,
    ) -> AuthOrchestrator:
        """Build the standard component graph for ``config``."""
        config.validate()
        tokens = TokenIssuer(
            config.token_secret,
            TokenConfig(
                issuer=config.issuer,
                access_token_ttl=config.access_token_ttl,
                verification_token_ttl=config.verification_token_ttl,
                reset_token_ttl=config.reset_token_ttl,
                challenge_token_ttl=config.challenge_token_ttl,
            ),
            clock=clock,
        )
        totp = TOTPProvider(issuer=config.totp_issuer)
        challenges = ChallengeStore(
            store,
            code_signer=tokens.sign_code,
            totp=totp,
            code_ttl=config.challenge_code_ttl,
            max_attempts=config.max_verification_attempts,
            code_digits=config.code_digits,
            totp_window=config.totp_window,
            clock=clock,
        )
        return cls(
            store=store,
            credentials=credentials or CredentialVerifier(),
            tokens=tokens,
            devices=DeviceTrustEvaluator(store),
            challenges=challenges,
            notifications=notifications,
            config=config,
            password_policy=password_policy,
            totp=totp,
            clock=clock,
        )

    async def _guarded(self, operation: str, flow: Awaitable[Result[Any]]) -> Result[Any]:
        try:
            return await flow
        except Exception as exc:
            logger.error("%s failed", operation, exc_info=True)
            return Err(AUTH_INTERNAL.wrap(exc, operation))

    # ========================================================================
    # Signup
    # ========================================================================

    async def signup(self, email: str, password: str, phone: Optional[str] = None) -> Result[User]:
        """
        Register a new account.

        Rejects malformed identifiers and weak passwords (VALIDATION) and
        already registered email or phone (CONFLICT). Queues an email
        verification message when ``config.send_verification_email`` is set.
        """
        return await self._guarded("signup", self._signup(email, password, phone))

    async def _signup(self, email: str, password: str, phone: Optional[str]) -> Result[User]:
        email = normalize_email(email)
        errors = []
        if not is_valid_email(email):
            errors.append("Invalid email address")
        if phone is not None and not is_valid_phone(phone):
            errors.append("Phone number must be in E.164 format")
        _, password_errors = self.password_policy.validate(password)
        errors.extend(password_errors)
        if errors:
            return Err(AUTH_VALIDATION_FAILED(errors=errors))

        if await self.store.get_user_by_email(email) is not None:
            return Err(AUTH_ACCOUNT_EXISTS("email", email))
        if phone and await self.store.get_user_by_phone(phone) is not None:
            return Err(AUTH_ACCOUNT_EXISTS("phone", phone))

        salt = secrets.token_hex(16)
        user = User(
            email=email,
            phone=phone,
            password_hash=self.credentials.hash(password, salt),
            password_salt=salt,
        )
        created = await self.store.create_user(user)
        if created is None:
            # Lost a race with a concurrent signup
            return Err(AUTH_ACCOUNT_EXISTS("email", email))

        logger.info("User %s signed up", created.id)

        if self.config.send_verification_email:
            queued = await self._queue_email_verification(created)
            if queued.is_err():
                # The account exists; the host can resend via send_email_verification
                logger.error(
                    "Could not queue verification email for user %s: %s", created.id, queued.fault,
                )
        return Ok(created)

    # ========================================================================
    # Signin & Step-up
    # ========================================================================

    async def signin(self, identifier: str, password: str, device: DeviceInfo) -> Result[SignInOutcome]:
        """
        Check credentials, then device trust.

        A recognized device gets an ``AccessGrant`` directly. Anything else
        starts a step-up challenge and gets ``StepUpRequired``.
        """
        return await self._guarded("signin", self._signin(identifier, password, device))

    async def _signin(self, identifier: str, password: str, device: DeviceInfo) -> Result[SignInOutcome]:
        user = await self._find_user(identifier)
        if user is None:
            # Same hashing cost as a real check
            self.credentials.verify(password, identifier, self._get_dummy_digest())
            logger.warning("Sign-in rejected: unknown identifier %s", AUTH_INVALID_CREDENTIALS.hash_identifier(identifier))
            return Err(AUTH_INVALID_CREDENTIALS(identifier))

        if not self.credentials.verify(password, user.password_salt, user.password_hash):
            logger.warning("Sign-in rejected: wrong password for user %s", user.id)
            return Err(AUTH_INVALID_CREDENTIALS(identifier))

        trusted = await self.devices.is_trusted(user.id, device.ip, device.user_agent_fingerprint)
        if trusted.is_err():
            return trusted

        if trusted.value:
            await self._record_device(user.id, device)
            logger.info("User %s signed in from a known device", user.id)
            return Ok(self._grant(user))

        return await self._start_step_up(user)

    async def _start_step_up(self, user: User) -> Result[StepUpRequired]:
        method = user.step_up_method()
        created = await self.challenges.create(user.id, method)
        if created.is_err():
            return created
        challenge = created.value

        if method is not TwoFactorMethod.AUTHENTICATOR:
            queued = await self.notifications.enqueue(self._code_task(user, challenge))
            if queued.is_err():
                return Err(AUTH_INTERNAL.wrap(queued.fault, "enqueue_notification"))
            marked = await self.challenges.mark_sent(user.id, challenge.challenge_id)
            if marked.is_err():
                return marked

        challenge_token = self.tokens.issue(
            TokenPurpose.TWO_FACTOR_CHALLENGE,
            {"sub": user.id, "cid": challenge.challenge_id},
        )
        logger.info("Step-up required for user %s (method=%s)", user.id, method.value)
        return Ok(StepUpRequired(
            user_id=user.id,
            challenge_id=challenge.challenge_id,
            method=method,
            expires_at=challenge.expires_at,
            challenge_token=challenge_token,
        ))

    def _code_task(self, user: User, challenge: Challenge) -> NotificationTask:
        if challenge.method is TwoFactorMethod.SMS and user.phone:
            channel, recipient = Channel.SMS, user.phone
        else:
            channel, recipient = Channel.EMAIL, user.email
        return NotificationTask.create(
            channel,
            recipient,
            Template.TWO_FACTOR_CODE,
            {"code": challenge.code, "expiry_seconds": self.config.challenge_code_ttl},
            user_id=user.id,
            ref=challenge.challenge_id,
            expires_at=challenge.expires_at,
        )

    async def verify_step_up(self, user_id: str, code: str, device: DeviceInfo) -> Result[StepUpResult]:
        """
        Check a step-up code.

        A wrong code with attempts left is ``Ok`` with ``is_valid=False``.
        Expired, exhausted and consumed challenges are terminal errors: the
        caller must restart sign-in.
        """
        return await self._guarded("verify_step_up", self._verify_step_up(user_id, code, device))

    async def _verify_step_up(
        self, user_id: str, code: str, device: DeviceInfo, challenge_id: Optional[str] = None
    ) -> Result[StepUpResult]:
        verified = await self.challenges.verify(user_id, code, challenge_id)
        if verified.is_err():
            return verified
        outcome = verified.value

        if not outcome.is_valid:
            return Ok(StepUpResult(is_valid=False, remaining_attempts=outcome.remaining_attempts))

        user = await self.store.get_user(user_id)
        if user is None:
            return Err(AUTH_ACCOUNT_NOT_FOUND(user_id=user_id))

        await self._record_device(user.id, device)
        logger.info("User %s completed step-up", user.id)
        return Ok(StepUpResult(
            is_valid=True,
            remaining_attempts=outcome.remaining_attempts,
            grant=self._grant(user),
        ))

    async def verify_step_up_token(self, challenge_token: str, code: str, device: DeviceInfo) -> Result[StepUpResult]:
        """``verify_step_up`` for callers holding the challenge token from sign-in."""
        return await self._guarded(
            "verify_step_up", self._verify_step_up_token(challenge_token, code, device)
        )

    async def _verify_step_up_token(self, challenge_token: str, code: str, device: DeviceInfo) -> Result[StepUpResult]:
        validated = self.tokens.validate(challenge_token, TokenPurpose.TWO_FACTOR_CHALLENGE)
        if validated.is_err():
            return validated
        user_id = validated.value.get("sub")
        challenge_id = validated.value.get("cid")
        if not user_id or not challenge_id:
            return Err(AUTH_TOKEN_INVALID("Challenge token is missing claims"))

        return await self._verify_step_up(user_id, code, device, challenge_id)

    # ========================================================================
    # Email Verification
    # ========================================================================

    async def send_email_verification(self, user_id: str) -> Result[TaskHandle]:
        """(Re)send the verification email for an unverified account."""
        return await self._guarded("send_email_verification", self._send_email_verification(user_id))

    async def _send_email_verification(self, user_id: str) -> Result[TaskHandle]:
        user = await self.store.get_user(user_id)
        if user is None:
            return Err(AUTH_ACCOUNT_NOT_FOUND(user_id=user_id))
        if user.is_email_verified:
            return Err(AUTH_ALREADY_VERIFIED(user_id=user_id))
        return await self._queue_email_verification(user)

    async def _queue_email_verification(self, user: User) -> Result[TaskHandle]:
        token = self.tokens.issue(TokenPurpose.EMAIL_VERIFY, {"sub": user.id, "email": user.email})
        task = NotificationTask.create(
            Channel.EMAIL,
            user.email,
            Template.EMAIL_VERIFICATION,
            {
                "token": token,
                "action_url": f"{self.config.app_domain}/auth/verify-email/?token={token}",
                "expiry_minutes": self.config.verification_token_ttl // 60,
            },
            user_id=user.id,
            ref=token,
        )
        queued = await self.notifications.enqueue(task)
        if queued.is_err():
            return Err(AUTH_INTERNAL.wrap(queued.fault, "enqueue_notification"))
        return queued

    async def verify_email(self, token: str) -> Result[User]:
        """
        Mark the account's email verified.

        A token reused after success returns ALREADY_VERIFIED and changes
        nothing.
        """
        return await self._guarded("verify_email", self._verify_email(token))

    async def _verify_email(self, token: str) -> Result[User]:
        validated = self.tokens.validate(token, TokenPurpose.EMAIL_VERIFY)
        if validated.is_err():
            return validated
        claims = validated.value

        user = await self.store.get_user(claims.get("sub", ""))
        if user is None:
            return Err(AUTH_ACCOUNT_NOT_FOUND(user_id=claims.get("sub")))
        if claims.get("email") != user.email:
            return Err(AUTH_TOKEN_INVALID("Token was issued for a different email address"))
        if user.is_email_verified:
            return Err(AUTH_ALREADY_VERIFIED(user_id=user.id))

        user.is_email_verified = True
        user.updated_at = self._clock()
        updated = await self.store.update_user(user)
        if updated is None:
            return Err(AUTH_ACCOUNT_NOT_FOUND(user_id=user.id))

        logger.info("User %s verified their email address", user.id)
        return Ok(updated)

    # ========================================================================
    # Password Reset & Change
    # ========================================================================

    async def request_password_reset(self, identifier: str) -> Result[PasswordResetRequested]:
        """
        Queue a reset email if the account exists.

        The outcome is identical whether or not it does; the not-found and
        queue-failure branches are only logged.
        """
        return await self._guarded("request_password_reset", self._request_password_reset(identifier))

    async def _request_password_reset(self, identifier: str) -> Result[PasswordResetRequested]:
        user = await self._find_user(identifier)
        if user is None:
            missing = AUTH_ACCOUNT_NOT_FOUND(identifier)
            logger.info(
                "Password reset requested for unknown account (%s)",
                missing.metadata["identifier_hash"],
            )
            return Ok(PasswordResetRequested())

        token = self.tokens.issue(
            TokenPurpose.PASSWORD_RESET,
            {"sub": user.id, "pwb": _password_binding(user.password_hash)},
        )
        task = NotificationTask.create(
            Channel.EMAIL,
            user.email,
            Template.PASSWORD_RESET,
            {
                "token": token,
                "action_url": f"{self.config.app_domain}/auth/reset-password/?token={token}",
                "expiry_minutes": self.config.reset_token_ttl // 60,
            },
            user_id=user.id,
            ref=token,
        )
        queued = await self.notifications.enqueue(task)
        if queued.is_err():
            logger.error("Could not queue password reset for user %s: %s", user.id, queued.fault)
        else:
            logger.info("Password reset requested for user %s", user.id)
        return Ok(PasswordResetRequested())

    async def complete_password_reset(self, token: str, new_password: str) -> Result[None]:
        """Set a new password with a ``password-reset`` token. Each token works once."""
        return await self._guarded("complete_password_reset", self._complete_password_reset(token, new_password))

    async def _complete_password_reset(self, token: str, new_password: str) -> Result[None]:
        validated = self.tokens.validate(token, TokenPurpose.PASSWORD_RESET)
        if validated.is_err():
            return validated
        claims = validated.value

        user = await self.store.get_user(claims.get("sub", ""))
        if user is None:
            return Err(AUTH_ACCOUNT_NOT_FOUND(user_id=claims.get("sub")))
        if claims.get("pwb") != _password_binding(user.password_hash):
            return Err(AUTH_TOKEN_INVALID("Reset token has already been used"))

        valid, errors = self.password_policy.validate(new_password)
        if not valid:
            return Err(AUTH_VALIDATION_FAILED(errors=errors))

        result = await self._set_password(user, new_password)
        if result.is_ok():
            logger.info("User %s reset their password", user.id)
        return result

    async def change_password(self, user_id: str, current_password: str, new_password: str) -> Result[None]:
        """Replace the password after checking the current one."""
        return await self._guarded(
            "change_password", self._change_password(user_id, current_password, new_password)
        )

    async def _change_password(self, user_id: str, current_password: str, new_password: str) -> Result[None]:
        user = await self.store.get_user(user_id)
        if user is None:
            return Err(AUTH_ACCOUNT_NOT_FOUND(user_id=user_id))

        if not self.credentials.verify(current_password, user.password_salt, user.password_hash):
            logger.warning("Password change rejected for user %s: wrong current password", user.id)
            return Err(AUTH_INVALID_CREDENTIALS())

        valid, errors = self.password_policy.validate(new_password)
        if new_password == current_password:
            errors = [*errors, "New password must differ from the current one"]
            valid = False
        if not valid:
            return Err(AUTH_VALIDATION_FAILED(errors=errors))

        result = await self._set_password(user, new_password)
        if result.is_ok():
            logger.info("User %s changed their password", user.id)
        return result

    async def _set_password(self, user: User, password: str) -> Result[None]:
        user.password_salt = secrets.token_hex(16)
        user.password_hash = self.credentials.hash(password, user.password_salt)
        user.updated_at = self._clock()
        if await self.store.update_user(user) is None:
            return Err(AUTH_ACCOUNT_NOT_FOUND(user_id=user.id))
        return Ok(None)

    # ========================================================================
    # Two-factor Enrollment
    # ========================================================================

    async def enable_two_factor(self, user_id: str, method: TwoFactorMethod) -> Result[TwoFactorEnrollment]:
        """
        Turn on a step-up method.

        ``authenticator`` returns a fresh TOTP secret and otpauth:// URI,
        shown to the user once. ``sms`` needs a phone on the account.
        """
        return await self._guarded("enable_two_factor", self._enable_two_factor(user_id, method))

    async def _enable_two_factor(self, user_id: str, method: TwoFactorMethod) -> Result[TwoFactorEnrollment]:
        try:
            method = TwoFactorMethod(method)
        except ValueError:
            return Err(AUTH_VALIDATION_FAILED(errors=[f"Unknown two-factor method: {method}"]))

        user = await self.store.get_user(user_id)
        if user is None:
            return Err(AUTH_ACCOUNT_NOT_FOUND(user_id=user_id))
        if method is TwoFactorMethod.SMS and not user.phone:
            return Err(AUTH_MFA_NOT_ENROLLED("A phone number is required for SMS codes", method=method.value))

        enrollment = TwoFactorEnrollment(method=method)
        user.two_factor_secret = None
        if method is TwoFactorMethod.AUTHENTICATOR:
            secret = self.totp.generate_secret()
            user.two_factor_secret = secret
            enrollment = TwoFactorEnrollment(
                method=method,
                secret=secret,
                provisioning_uri=self.totp.generate_provisioning_uri(secret, user.email),
            )

        user.two_factor_enabled = True
        user.two_factor_method = method
        user.updated_at = self._clock()
        if await self.store.update_user(user) is None:
            return Err(AUTH_ACCOUNT_NOT_FOUND(user_id=user_id))

        logger.info("User %s enabled two-factor (method=%s)", user.id, method.value)
        return Ok(enrollment)

    async def disable_two_factor(self, user_id: str) -> Result[None]:
        """Clear two-factor configuration and any pending challenge. Idempotent."""
        return await self._guarded("disable_two_factor", self._disable_two_factor(user_id))

    async def _disable_two_factor(self, user_id: str) -> Result[None]:
        user = await self.store.get_user(user_id)
        if user is None:
            return Err(AUTH_ACCOUNT_NOT_FOUND(user_id=user_id))

        if user.two_factor_enabled or user.two_factor_secret:
            user.two_factor_enabled = False
            user.two_factor_method = None
            user.two_factor_secret = None
            user.updated_at = self._clock()
            if await self.store.update_user(user) is None:
                return Err(AUTH_ACCOUNT_NOT_FOUND(user_id=user_id))
            logger.info("User %s disabled two-factor", user.id)

        return await self.challenges.disable(user_id)

    # ========================================================================
    # Helpers
    # ========================================================================

    async def _find_user(self, identifier: str) -> Optional[User]:
        identifier = identifier.strip()
        if "@" in identifier:
            return await self.store.get_user_by_email(normalize_email(identifier))
        return await self.store.get_user_by_phone(identifier)

    async def _record_device(self, user_id: str, device: DeviceInfo) -> None:
        await self.store.upsert_device_context(DeviceContext(
            user_id=user_id,
            ip=device.ip,
            user_agent_fingerprint=device.user_agent_fingerprint,
            last_seen_at=self._clock(),
        ))

    def _grant(self, user: User) -> AccessGrant:
        return AccessGrant(
            user_id=user.id,
            access_token=self.tokens.issue_access_token(user.id, email=user.email),
            expires_in=self.config.access_token_ttl,
        )

    def _get_dummy_digest(self) -> str:
        if self._dummy_digest is None:
            self._dummy_digest = self.credentials.hash(secrets.token_hex(16), "dummy")
        return self._dummy_digest
