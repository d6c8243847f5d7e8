"""
Config - typed engine configuration with layered loading.

The engine consumes configuration; it does not own process bootstrap.
Hosts either construct ``AuthConfig`` directly or call
``AuthConfig.from_env()``, which merges (later overrides earlier):

1. Field defaults
2. ``.env`` file values (FLAREAUTH_* keys)
3. Process environment variables (FLAREAUTH_* keys)
4. Explicit keyword overrides
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from typing import Any, Optional

from dotenv import dotenv_values

from .faults import ConfigFault


_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _to_bool(key: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ConfigFault(f"Expected a boolean for {key}, got {value!r}", config_key=key)


@dataclass
class AuthConfig:
    """Engine configuration. All durations are in seconds."""

    token_secret: str = ""
    issuer: str = "flareauth"

    # Tokens
    access_token_ttl: int = 3600                # 1 hour
    verification_token_ttl: int = 900           # 15 minutes
    reset_token_ttl: int = 900                  # 15 minutes
    challenge_token_ttl: int = 600

    # Step-up challenges
    challenge_code_ttl: int = 300               # 5 minutes
    max_verification_attempts: int = 3
    code_digits: int = 6
    totp_issuer: str = "FlareAuth"
    totp_window: int = 1

    # Flows
    send_verification_email: bool = True

    # Notification delivery
    delivery_max_attempts: int = 5
    delivery_base_delay: float = 1.0
    delivery_max_delay: float = 300.0
    dedup_window: int = 86400

    # Rendering
    app_domain: str = "http://localhost:4000"
    project_name: str = "FlareAuth"
    mail_from: str = "no-reply@localhost"

    def validate(self) -> AuthConfig:
        """Raise ConfigFault on unusable values; return self for chaining."""
        if not self.token_secret:
            raise ConfigFault("token_secret is required", config_key="token_secret")
        for name in (
            "access_token_ttl",
            "verification_token_ttl",
            "reset_token_ttl",
            "challenge_token_ttl",
            "challenge_code_ttl",
        ):
            if getattr(self, name) <= 0:
                raise ConfigFault(f"{name} must be positive", config_key=name)
        if self.max_verification_attempts < 1:
            raise ConfigFault(
                "max_verification_attempts must be at least 1",
                config_key="max_verification_attempts",
            )
        if not 4 <= self.code_digits <= 10:
            raise ConfigFault("code_digits must be between 4 and 10", config_key="code_digits")
        if self.totp_window < 0:
            raise ConfigFault("totp_window must not be negative", config_key="totp_window")
        if self.delivery_max_attempts < 1:
            raise ConfigFault(
                "delivery_max_attempts must be at least 1",
                config_key="delivery_max_attempts",
            )
        if self.delivery_base_delay > self.delivery_max_delay:
            raise ConfigFault(
                "delivery_base_delay must be <= delivery_max_delay",
                config_key="delivery_base_delay",
            )
        return self

    @classmethod
    def from_env(
        cls,
        env_file: Optional[str] = None,
        prefix: str = "FLAREAUTH_",
        environ: Optional[dict[str, str]] = None,
        **overrides: Any,
    ) -> AuthConfig:
        """
        Build a validated config from a .env file, the environment and overrides.

        Keys are the upper-cased field names behind ``prefix``, e.g.
        ``FLAREAUTH_TOKEN_SECRET`` or ``FLAREAUTH_CHALLENGE_CODE_TTL``.
        """
        raw: dict[str, str] = {}
        if env_file:
            for key, value in dotenv_values(env_file).items():
                if value is not None and key.startswith(prefix):
                    raw[key] = value
        for key, value in (os.environ if environ is None else environ).items():
            if key.startswith(prefix):
                raw[key] = value

        values: dict[str, Any] = {}
        for f in fields(cls):
            key = prefix + f.name.upper()
            if key in raw:
                values[f.name] = cls._coerce(key, f.type, raw[key])

        unknown = set(overrides) - {f.name for f in fields(cls)}
        if unknown:
            raise ConfigFault(f"Unknown config option(s): {', '.join(sorted(unknown))}")
        values.update(overrides)

        return cls(**values).validate()

    @staticmethod
    def _coerce(key: str, type_name: Any, value: str) -> Any:
        # Annotations are strings under postponed evaluation
        type_name = getattr(type_name, "__name__", type_name)
        try:
            if type_name == "int":
                return int(value)
            if type_name == "float":
                return float(value)
        except ValueError:
            raise ConfigFault(f"Expected a {type_name} for {key}, got {value!r}", config_key=key)
        if type_name == "bool":
            return _to_bool(key, value)
        return value
