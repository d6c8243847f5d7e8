"""
FlareAuth - Step-up Challenges

One active challenge per user:

    Pending --mark_sent--> Sent --verify--> Verified | Expired | Exhausted

Creating a challenge supersedes whatever the user had before. Terminal
challenges stay in the store until superseded or disabled so a late verify
reports the precise terminal reason.
"""

from __future__ import annotations

import asyncio
import dataclasses
import hmac
import logging
import secrets
import uuid
import weakref
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Optional

from ..clock import Clock, utcnow
from ..result import Err, Ok, Result
from .core import AuthStore, TwoFactorMethod, VerificationOutcome
from .faults import (
    AUTH_ATTEMPTS_EXHAUSTED,
    AUTH_CHALLENGE_CONFLICT,
    AUTH_CHALLENGE_CONSUMED,
    AUTH_CHALLENGE_EXPIRED,
    AUTH_CHALLENGE_NOT_FOUND,
    AUTH_INTERNAL,
    AUTH_MFA_NOT_ENROLLED,
)
from .mfa import TOTPProvider

logger = logging.getLogger("flareauth.auth.challenges")

TOTP_CODE_REF = "totp"


class ChallengeStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    VERIFIED = "verified"
    EXPIRED = "expired"
    EXHAUSTED = "exhausted"

    @property
    def is_terminal(self) -> bool:
        return self in (ChallengeStatus.VERIFIED, ChallengeStatus.EXPIRED, ChallengeStatus.EXHAUSTED)


@dataclass
class Challenge:
    """
    In-flight verification record.

    ``code_ref`` holds the HMAC of the generated code (email/SMS) or the
    ``"totp"`` marker for authenticator challenges, whose secret lives on the
    user. ``code`` is the plain code, present only on the value returned by
    ``ChallengeStore.create`` so it can be delivered; it is never persisted.
    """
    user_id: str
    method: TwoFactorMethod
    code_ref: str
    created_at: datetime
    expires_at: datetime
    attempts_remaining: int
    challenge_id: str = field(default_factory=lambda: f"ch_{uuid.uuid4().hex}")
    status: ChallengeStatus = ChallengeStatus.PENDING
    version: int = 1
    code: Optional[str] = field(default=None, repr=False, compare=False)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dict (for stores). The plain code is never included."""
        return {
            "challenge_id": self.challenge_id,
            "user_id": self.user_id,
            "method": self.method.value,
            "code_ref": self.code_ref,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "attempts_remaining": self.attempts_remaining,
            "status": self.status.value,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Challenge:
        return cls(
            challenge_id=data["challenge_id"],
            user_id=data["user_id"],
            method=TwoFactorMethod(data["method"]),
            code_ref=data["code_ref"],
            created_at=datetime.fromisoformat(data["created_at"]),
            expires_at=datetime.fromisoformat(data["expires_at"]),
            attempts_remaining=data["attempts_remaining"],
            status=ChallengeStatus(data["status"]),
            version=data["version"],
        )


class ChallengeStore:
    """
    Challenge state machine over the persistence store.

    Read-modify-write cycles for one user run under a per-user
    ``asyncio.Lock`` and are committed with a compare-and-swap on
    ``(challenge_id, version)``, so a verify racing a re-create from another
    process fails with AUTH_CHALLENGE_CONFLICT instead of acting on a stale
    record.
    """

    def __init__(
        self,
        store: AuthStore,
        code_signer: Callable[[str], str],
        totp: TOTPProvider | None = None,
        code_ttl: int = 300,
        max_attempts: int = 3,
        code_digits: int = 6,
        totp_window: int = 1,
        clock: Clock = utcnow,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.store = store
        self.code_signer = code_signer
        self.totp = totp or TOTPProvider(digits=code_digits)
        self.code_ttl = code_ttl
        self.max_attempts = max_attempts
        self.code_digits = code_digits
        self.totp_window = totp_window
        self._clock = clock
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    def _generate_code(self) -> str:
        return str(secrets.randbelow(10**self.code_digits)).zfill(self.code_digits)

    async def create(self, user_id: str, method: TwoFactorMethod) -> Result[Challenge]:
        """
        Start a new challenge, superseding any previous one.

        Email/SMS challenges carry a fresh numeric code; authenticator
        challenges are checked against the user's TOTP secret and start in
        ``Sent`` since there is nothing to deliver.
        """
        method = TwoFactorMethod(method)
        async with self._lock_for(user_id):
            try:
                previous = await self.store.get_challenge(user_id)
                now = self._clock()
                code = None
                if method is TwoFactorMethod.AUTHENTICATOR:
                    code_ref = TOTP_CODE_REF
                    status = ChallengeStatus.SENT
                else:
                    code = self._generate_code()
                    code_ref = self.code_signer(code)
                    status = ChallengeStatus.PENDING

                challenge = Challenge(
                    user_id=user_id,
                    method=method,
                    code_ref=code_ref,
                    created_at=now,
                    expires_at=now + timedelta(seconds=self.code_ttl),
                    attempts_remaining=self.max_attempts,
                    status=status,
                    version=previous.version + 1 if previous else 1,
                )
                await self.store.upsert_challenge(challenge)
            except Exception as exc:
                logger.error("Challenge creation failed for user %s", user_id, exc_info=True)
                return Err(AUTH_INTERNAL.wrap(exc, "create_challenge"))

        if previous is not None and not previous.status.is_terminal:
            logger.info("Challenge %s superseded for user %s", previous.challenge_id, user_id)
        logger.info(
            "Challenge %s created for user %s (method=%s)",
            challenge.challenge_id, user_id, method.value,
        )
        return Ok(dataclasses.replace(challenge, code=code))

    async def mark_sent(self, user_id: str, challenge_id: str) -> Result[None]:
        """
        Pending -> Sent. A no-op when the challenge is gone, superseded,
        already sent or terminal.
        """
        async with self._lock_for(user_id):
            try:
                challenge = await self.store.get_challenge(user_id)
                if (
                    challenge is None
                    or challenge.challenge_id != challenge_id
                    or challenge.status is not ChallengeStatus.PENDING
                ):
                    return Ok(None)
                updated = dataclasses.replace(
                    challenge, status=ChallengeStatus.SENT, version=challenge.version + 1
                )
                if not await self.store.upsert_challenge(updated, expected_version=challenge.version):
                    logger.debug("Challenge %s changed before mark_sent", challenge_id)
            except Exception as exc:
                logger.error("mark_sent failed for challenge %s", challenge_id, exc_info=True)
                return Err(AUTH_INTERNAL.wrap(exc, "mark_sent"))
        return Ok(None)

    async def verify(
        self, user_id: str, code: str, challenge_id: Optional[str] = None
    ) -> Result[VerificationOutcome]:
        """
        Check one code against the user's active challenge.

        With ``challenge_id`` the active challenge must be that one, else
        AUTH_CHALLENGE_CONFLICT.

        Terminal failures come back as ``Err``: AUTH_CHALLENGE_NOT_FOUND,
        AUTH_CHALLENGE_CONSUMED (already verified), AUTH_CHALLENGE_EXPIRED,
        AUTH_ATTEMPTS_EXHAUSTED. A wrong code with attempts to spare is an
        ``Ok`` outcome with ``is_valid=False``.
        """
        async with self._lock_for(user_id):
            try:
                return await self._verify_locked(user_id, code, challenge_id)
            except Exception as exc:
                logger.error("Challenge verification failed for user %s", user_id, exc_info=True)
                return Err(AUTH_INTERNAL.wrap(exc, "verify_challenge"))

    async def _verify_locked(
        self, user_id: str, code: str, challenge_id: Optional[str]
    ) -> Result[VerificationOutcome]:
        challenge = await self.store.get_challenge(user_id)
        if challenge is None:
            return Err(AUTH_CHALLENGE_NOT_FOUND())
        if challenge_id is not None and challenge.challenge_id != challenge_id:
            return Err(AUTH_CHALLENGE_CONFLICT(challenge_id=challenge_id))

        if challenge.status is ChallengeStatus.VERIFIED:
            return Err(AUTH_CHALLENGE_CONSUMED(challenge_id=challenge.challenge_id))
        if challenge.status is ChallengeStatus.EXHAUSTED:
            return Err(AUTH_ATTEMPTS_EXHAUSTED(challenge_id=challenge.challenge_id))
        if challenge.status is ChallengeStatus.EXPIRED:
            return Err(AUTH_CHALLENGE_EXPIRED(challenge_id=challenge.challenge_id))

        now = self._clock()
        if now > challenge.expires_at:
            await self._commit(challenge, status=ChallengeStatus.EXPIRED)
            logger.warning("Challenge %s expired for user %s", challenge.challenge_id, user_id)
            return Err(AUTH_CHALLENGE_EXPIRED(challenge_id=challenge.challenge_id))

        if challenge.attempts_remaining <= 0:
            await self._commit(challenge, status=ChallengeStatus.EXHAUSTED)
            return Err(AUTH_ATTEMPTS_EXHAUSTED(challenge_id=challenge.challenge_id))

        if challenge.method is TwoFactorMethod.AUTHENTICATOR:
            user = await self.store.get_user(user_id)
            if user is None or not user.two_factor_secret:
                return Err(AUTH_MFA_NOT_ENROLLED(method=challenge.method.value))
            matched = self.totp.verify_code(
                user.two_factor_secret, code, int(now.timestamp()), window=self.totp_window
            )
        else:
            matched = hmac.compare_digest(self.code_signer(code), challenge.code_ref)

        if matched:
            if not await self._commit(challenge, status=ChallengeStatus.VERIFIED):
                return Err(AUTH_CHALLENGE_CONFLICT(challenge_id=challenge.challenge_id))
            logger.info("Challenge %s verified for user %s", challenge.challenge_id, user_id)
            return Ok(VerificationOutcome(True, challenge.attempts_remaining))

        remaining = challenge.attempts_remaining - 1
        status = ChallengeStatus.EXHAUSTED if remaining == 0 else challenge.status
        if not await self._commit(challenge, status=status, attempts_remaining=remaining):
            return Err(AUTH_CHALLENGE_CONFLICT(challenge_id=challenge.challenge_id))

        if status is ChallengeStatus.EXHAUSTED:
            logger.warning("Challenge %s exhausted for user %s", challenge.challenge_id, user_id)
        else:
            logger.warning(
                "Wrong code for challenge %s (user %s, %d attempt(s) left)",
                challenge.challenge_id, user_id, remaining,
            )
        return Ok(VerificationOutcome(False, remaining))

    async def _commit(self, challenge: Challenge, **changes: Any) -> bool:
        updated = dataclasses.replace(challenge, version=challenge.version + 1, **changes)
        return await self.store.upsert_challenge(updated, expected_version=challenge.version)

    async def disable(self, user_id: str) -> Result[None]:
        """Drop the user's challenge, whatever its state. Idempotent."""
        async with self._lock_for(user_id):
            try:
                await self.store.delete_challenge(user_id)
            except Exception as exc:
                logger.error("Challenge removal failed for user %s", user_id, exc_info=True)
                return Err(AUTH_INTERNAL.wrap(exc, "delete_challenge"))
        return Ok(None)
