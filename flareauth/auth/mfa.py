"""
FlareAuth - TOTP

RFC 6238 time-based one-time passwords for the authenticator method,
compatible with Google Authenticator, Authy, etc.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import secrets
import struct
from urllib.parse import quote, urlencode


_DIGESTS = {
    "SHA1": hashlib.sha1,
    "SHA256": hashlib.sha256,
    "SHA512": hashlib.sha512,
}


class TOTPProvider:
    """
    TOTP provider.

    Time is always passed in by the caller (unix seconds) so the engine
    clock drives verification.
    """

    def __init__(
        self,
        issuer: str = "FlareAuth",
        digits: int = 6,
        period: int = 30,
        algorithm: str = "SHA1",
    ):
        if algorithm not in _DIGESTS:
            raise ValueError(f"Unsupported TOTP algorithm: {algorithm}")
        self.issuer = issuer
        self.digits = digits
        self.period = period
        self.algorithm = algorithm

    def generate_secret(self) -> str:
        """Random 160-bit secret, base32 without padding."""
        return base64.b32encode(secrets.token_bytes(20)).decode("utf-8").rstrip("=")

    def generate_code(self, secret: str, timestamp: int) -> str:
        """Code for the period containing ``timestamp``."""
        counter = timestamp // self.period
        secret_bytes = base64.b32decode(secret.upper() + "=" * (-len(secret) % 8))

        digest = hmac.new(
            secret_bytes,
            struct.pack(">Q", counter),
            _DIGESTS[self.algorithm],
        ).digest()

        # Dynamic truncation
        offset = digest[-1] & 0x0F
        code = struct.unpack(">I", digest[offset : offset + 4])[0] & 0x7FFFFFFF
        return str(code % (10**self.digits)).zfill(self.digits)

    def verify_code(self, secret: str, code: str, timestamp: int, window: int = 1) -> bool:
        """
        Verify ``code`` against the current period and ``window`` periods
        either side (clock drift tolerance). Every candidate is compared.
        """
        try:
            candidates = [
                self.generate_code(secret, timestamp + offset * self.period)
                for offset in range(-window, window + 1)
            ]
        except (binascii.Error, ValueError):
            return False

        matched = False
        for expected in candidates:
            matched |= hmac.compare_digest(code.encode(), expected.encode())
        return matched

    def generate_provisioning_uri(self, secret: str, account_name: str) -> str:
        """otpauth:// URI for QR code generation."""
        label = quote(f"{self.issuer}:{account_name}")
        query = urlencode({
            "secret": secret,
            "issuer": self.issuer,
            "algorithm": self.algorithm,
            "digits": self.digits,
            "period": self.period,
        })
        return f"otpauth://totp/{label}?{query}"
