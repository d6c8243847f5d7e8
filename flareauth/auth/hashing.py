"""
FlareAuth - Credential Hashing

Deterministic, context-bound secret hashing (Argon2id or PBKDF2) and the
password strength policy.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import re
from typing import Literal

from argon2.low_level import ARGON2_VERSION, Type, hash_secret_raw


_SALT_PREFIX = b"flareauth:"
_SPECIAL_CHARS = '!@#$%^&*(),.?":{}|<>'


def _b64encode(data: bytes) -> str:
    return base64.b64encode(data).rstrip(b"=").decode()


def _b64decode(data: str) -> bytes:
    return base64.b64decode(data + "=" * (-len(data) % 4))


class CredentialVerifier:
    """
    Stateless secret hasher.

    The digest is a pure function of ``(secret, context)``: the salt is
    derived from the per-user context value (stored salt, phone number, ...)
    rather than drawn at random, so the same pair always yields the same
    digest. Encoded parameters make digests self-describing:

        $argon2id$v=19$m=65536,t=2,p=4$<salt>$<hash>
        $pbkdf2_sha256$600000$<salt>$<hash>
    """

    def __init__(
        self,
        algorithm: Literal["argon2id", "pbkdf2_sha256"] = "argon2id",
        # Argon2 parameters
        time_cost: int = 2,
        memory_cost: int = 65536,  # 64 MB
        parallelism: int = 4,
        hash_len: int = 32,
        # PBKDF2 parameters
        iterations: int = 600000,
    ):
        if algorithm not in ("argon2id", "pbkdf2_sha256"):
            raise ValueError(f"Unsupported algorithm: {algorithm}")
        self.algorithm = algorithm
        self.time_cost = time_cost
        self.memory_cost = memory_cost
        self.parallelism = parallelism
        self.hash_len = hash_len
        self.iterations = iterations

    @staticmethod
    def derive_salt(context: str) -> bytes:
        """16-byte salt bound to the context value."""
        return hashlib.sha256(_SALT_PREFIX + context.encode()).digest()[:16]

    def hash(self, secret: str, context: str) -> str:
        """Hash ``secret`` bound to ``context``."""
        salt = self.derive_salt(context)
        if self.algorithm == "argon2id":
            raw = self._argon2(secret, salt, self.time_cost, self.memory_cost, self.parallelism, self.hash_len)
            return (
                f"$argon2id$v={ARGON2_VERSION}"
                f"$m={self.memory_cost},t={self.time_cost},p={self.parallelism}"
                f"${_b64encode(salt)}${_b64encode(raw)}"
            )
        raw = self._pbkdf2(secret, salt, self.iterations, self.hash_len)
        return f"$pbkdf2_sha256${self.iterations}${_b64encode(salt)}${_b64encode(raw)}"

    def verify(self, secret: str, context: str, stored_digest: str) -> bool:
        """
        Recompute the digest with the stored parameters and compare.

        The comparison always covers the full digest. Unparseable digests
        never match.
        """
        salt = self.derive_salt(context)
        try:
            if stored_digest.startswith("$argon2id$"):
                params, salt_b64, hash_b64 = self._split_argon2(stored_digest)
                expected = _b64decode(hash_b64)
                computed = self._argon2(
                    secret, salt, params["t"], params["m"], params["p"], len(expected)
                )
            elif stored_digest.startswith("$pbkdf2_sha256$"):
                _, _, iterations, salt_b64, hash_b64 = stored_digest.split("$")
                expected = _b64decode(hash_b64)
                computed = self._pbkdf2(secret, salt, int(iterations), len(expected))
            else:
                return False
        except (ValueError, KeyError):
            return False

        salt_ok = hmac.compare_digest(_b64encode(salt), salt_b64)
        return hmac.compare_digest(computed, expected) and salt_ok

    def needs_rehash(self, stored_digest: str) -> bool:
        """True if the digest was produced with different parameters."""
        try:
            if stored_digest.startswith("$argon2id$"):
                if self.algorithm != "argon2id":
                    return True
                params, _, hash_b64 = self._split_argon2(stored_digest)
                return (
                    params["m"] != self.memory_cost
                    or params["t"] != self.time_cost
                    or params["p"] != self.parallelism
                    or len(_b64decode(hash_b64)) != self.hash_len
                )
            if stored_digest.startswith("$pbkdf2_sha256$"):
                if self.algorithm != "pbkdf2_sha256":
                    return True
                return int(stored_digest.split("$")[2]) != self.iterations
        except (ValueError, KeyError, IndexError):
            return True
        return True

    @staticmethod
    def _split_argon2(digest: str) -> tuple[dict[str, int], str, str]:
        # ['', 'argon2id', 'v=19', 'm=..,t=..,p=..', salt, hash]
        parts = digest.split("$")
        if len(parts) != 6:
            raise ValueError("Malformed argon2 digest")
        params = {}
        for item in parts[3].split(","):
            key, _, value = item.partition("=")
            params[key] = int(value)
        return params, parts[4], parts[5]

    @staticmethod
    def _argon2(secret: str, salt: bytes, t: int, m: int, p: int, hash_len: int) -> bytes:
        return hash_secret_raw(
            secret=secret.encode(),
            salt=salt,
            time_cost=t,
            memory_cost=m,
            parallelism=p,
            hash_len=hash_len,
            type=Type.ID,
        )

    @staticmethod
    def _pbkdf2(secret: str, salt: bytes, iterations: int, hash_len: int) -> bytes:
        return hashlib.pbkdf2_hmac("sha256", secret.encode(), salt, iterations, dklen=hash_len)


# ============================================================================
# Password Validation
# ============================================================================

class PasswordPolicy:
    """
    Password strength policy.

    Enforces:
    - Minimum length
    - Character requirements (uppercase, lowercase, digit, special)
    - Common password blacklist
    """

    def __init__(
        self,
        min_length: int = 8,
        require_uppercase: bool = True,
        require_lowercase: bool = True,
        require_digit: bool = True,
        require_special: bool = True,
    ):
        self.min_length = min_length
        self.require_uppercase = require_uppercase
        self.require_lowercase = require_lowercase
        self.require_digit = require_digit
        self.require_special = require_special

        self.blacklist = {
            "password", "password1", "password123", "12345678", "qwerty123",
            "abc12345", "letmein1", "iloveyou", "passw0rd", "welcome1",
            "p@ssw0rd", "admin123", "trustno1", "sunshine", "football",
        }

    def validate(self, password: str) -> tuple[bool, list[str]]:
        """
        Validate password against policy.

        Returns:
            (is_valid, error_messages)
        """
        errors = []

        if len(password) < self.min_length:
            errors.append(f"Password must be at least {self.min_length} characters")

        if self.require_uppercase and not any(c.isupper() for c in password):
            errors.append("Password must contain at least one uppercase letter")

        if self.require_lowercase and not any(c.islower() for c in password):
            errors.append("Password must contain at least one lowercase letter")

        if self.require_digit and not any(c.isdigit() for c in password):
            errors.append("Password must contain at least one digit")

        if self.require_special and not any(c in _SPECIAL_CHARS for c in password):
            errors.append("Password must contain at least one special character")

        if password.lower() in self.blacklist:
            errors.append("Password is too common")

        return len(errors) == 0, errors


# ============================================================================
# Identifier Validation
# ============================================================================

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_E164_RE = re.compile(r"^\+[1-9]\d{6,14}$")


def normalize_email(email: str) -> str:
    return email.strip().lower()


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL_RE.match(email)) and len(email) <= 254


def is_valid_phone(phone: str) -> bool:
    """E.164: leading '+', country code, up to 15 digits."""
    return bool(_E164_RE.match(phone))
