"""
FlareAuth - Token Issuer

Stateless, purpose-scoped signed tokens (JWT-compatible HS256).

Tokens are never persisted and there is no revocation list: short TTLs
are the only mitigation for a leaked token.
"""

from __future__ import annotations

import base64
import json
import secrets
from dataclasses import dataclass
from typing import Any

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.hmac import HMAC

from ..clock import Clock, utcnow
from ..result import Err, Ok, Result
from .core import TokenPurpose
from .faults import AUTH_TOKEN_EXPIRED, AUTH_TOKEN_INVALID, AUTH_TOKEN_WRONG_PURPOSE


RESERVED_CLAIMS = frozenset({"purpose", "iat", "exp", "jti", "iss"})


@dataclass
class TokenConfig:
    """Token issuer configuration."""
    issuer: str = "flareauth"
    access_token_ttl: int = 3600            # 1 hour
    verification_token_ttl: int = 900       # 15 minutes
    reset_token_ttl: int = 900              # 15 minutes
    challenge_token_ttl: int = 600          # 10 minutes

    def default_ttl(self, purpose: TokenPurpose) -> int:
        return {
            TokenPurpose.ACCESS: self.access_token_ttl,
            TokenPurpose.EMAIL_VERIFY: self.verification_token_ttl,
            TokenPurpose.PASSWORD_RESET: self.reset_token_ttl,
            TokenPurpose.TWO_FACTOR_CHALLENGE: self.challenge_token_ttl,
        }[purpose]


class TokenIssuer:
    """
    Issues and validates signed tokens.

    Format: header.payload.signature
    - header: {"alg": "HS256", "typ": "JWT"}
    - payload: {"iss": ..., "purpose": "email-verify", "iat": ..., "exp": ..., "jti": ..., **claims}
    - signature: HMAC-SHA256(header + "." + payload, secret)
    """

    def __init__(
        self,
        secret: str | bytes,
        config: TokenConfig | None = None,
        clock: Clock = utcnow,
    ):
        if not secret:
            raise ValueError("Token secret must not be empty")
        self._key = secret.encode() if isinstance(secret, str) else secret
        self.config = config or TokenConfig()
        self._clock = clock

    def issue(
        self,
        purpose: TokenPurpose | str,
        claims: dict[str, Any] | None = None,
        ttl: int | None = None,
    ) -> str:
        """
        Issue a signed token.

        ``ttl`` defaults to the configured TTL for ``purpose``; ``ttl=0``
        yields a token that is already expired.

        Raises:
            ValueError: claims override a reserved claim, or ttl is negative
        """
        purpose = TokenPurpose(purpose)
        claims = dict(claims or {})
        clashing = RESERVED_CLAIMS & claims.keys()
        if clashing:
            raise ValueError(f"Reserved claim(s) cannot be set: {', '.join(sorted(clashing))}")

        if ttl is None:
            ttl = self.config.default_ttl(purpose)
        if ttl < 0:
            raise ValueError("ttl must not be negative")

        now = int(self._clock().timestamp())
        payload = {
            **claims,
            "iss": self.config.issuer,
            "purpose": purpose.value,
            "iat": now,
            "exp": now + ttl,
            "jti": secrets.token_urlsafe(12),
        }
        return self._sign_token(payload)

    def issue_access_token(self, user_id: str, ttl: int | None = None, **claims: Any) -> str:
        """Issue an ``access`` token for ``user_id``."""
        return self.issue(TokenPurpose.ACCESS, {"sub": user_id, **claims}, ttl)

    def validate(self, token: str, expected_purpose: TokenPurpose | str) -> Result[dict[str, Any]]:
        """
        Validate a token for one operation.

        Checks, in order:
        1. Format and signature -> AUTH_TOKEN_INVALID
        2. Expiration (``now >= exp``) -> AUTH_TOKEN_EXPIRED
        3. Purpose -> AUTH_TOKEN_WRONG_PURPOSE
        """
        expected = TokenPurpose(expected_purpose)

        try:
            header_b64, payload_b64, signature_b64 = token.split(".")
            header = self._base64_decode_json(header_b64)
            signature = self._base64_decode(signature_b64)
        except (ValueError, AttributeError, TypeError):
            return Err(AUTH_TOKEN_INVALID("Malformed token"))

        if not isinstance(header, dict) or header.get("alg") != "HS256":
            return Err(AUTH_TOKEN_INVALID("Unsupported token algorithm"))

        if not self._verify_signature(f"{header_b64}.{payload_b64}".encode(), signature):
            return Err(AUTH_TOKEN_INVALID("Invalid signature"))

        try:
            payload = self._base64_decode_json(payload_b64)
        except ValueError:
            return Err(AUTH_TOKEN_INVALID("Malformed token payload"))

        exp = payload.get("exp") if isinstance(payload, dict) else None
        if not isinstance(exp, int):
            return Err(AUTH_TOKEN_INVALID("Missing exp claim"))

        if int(self._clock().timestamp()) >= exp:
            return Err(AUTH_TOKEN_EXPIRED())

        actual = payload.get("purpose")
        if actual != expected.value:
            return Err(AUTH_TOKEN_WRONG_PURPOSE(expected.value, actual))

        return Ok(payload)

    def sign_code(self, code: str) -> str:
        """HMAC-SHA256 hex digest of a one-time code, for storage."""
        h = HMAC(self._key, hashes.SHA256())
        h.update(code.encode())
        return h.finalize().hex()

    def _sign_token(self, payload: dict[str, Any]) -> str:
        header_b64 = self._base64_encode_json({"alg": "HS256", "typ": "JWT"})
        payload_b64 = self._base64_encode_json(payload)
        message = f"{header_b64}.{payload_b64}".encode()
        signature_b64 = self._base64_encode(self._create_signature(message))
        return f"{header_b64}.{payload_b64}.{signature_b64}"

    def _create_signature(self, message: bytes) -> bytes:
        h = HMAC(self._key, hashes.SHA256())
        h.update(message)
        return h.finalize()

    def _verify_signature(self, message: bytes, signature: bytes) -> bool:
        h = HMAC(self._key, hashes.SHA256())
        h.update(message)
        try:
            h.verify(signature)
        except InvalidSignature:
            return False
        return True

    def _base64_encode(self, data: bytes) -> str:
        """URL-safe base64 encode."""
        return base64.urlsafe_b64encode(data).rstrip(b"=").decode()

    def _base64_decode(self, data: str) -> bytes:
        """URL-safe base64 decode."""
        return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))

    def _base64_encode_json(self, data: dict) -> str:
        json_bytes = json.dumps(data, separators=(",", ":")).encode()
        return self._base64_encode(json_bytes)

    def _base64_decode_json(self, data: str) -> Any:
        return json.loads(self._base64_decode(data))
