"""
AuthConfig loading and validation.
"""

import pytest

from flareauth.config import AuthConfig
from flareauth.faults import ConfigFault, FaultKind


class TestAuthConfig:

    def test_defaults(self):
        config = AuthConfig(token_secret="s").validate()
        assert config.challenge_code_ttl == 300
        assert config.max_verification_attempts == 3
        assert config.code_digits == 6
        assert config.send_verification_email is True

    def test_secret_required(self):
        with pytest.raises(ConfigFault) as exc_info:
            AuthConfig().validate()
        assert exc_info.value.config_key == "token_secret"
        assert exc_info.value.kind is FaultKind.VALIDATION

    @pytest.mark.parametrize("field, value", [
        ("access_token_ttl", 0),
        ("challenge_code_ttl", -5),
        ("max_verification_attempts", 0),
        ("code_digits", 3),
        ("code_digits", 11),
        ("totp_window", -1),
        ("delivery_max_attempts", 0),
        ("delivery_base_delay", 500.0),
    ])
    def test_invalid_values(self, field, value):
        with pytest.raises(ConfigFault) as exc_info:
            AuthConfig(token_secret="s", **{field: value}).validate()
        assert exc_info.value.config_key == field


class TestFromEnv:

    def test_environ(self):
        config = AuthConfig.from_env(environ={
            "FLAREAUTH_TOKEN_SECRET": "from-env",
            "FLAREAUTH_CHALLENGE_CODE_TTL": "120",
            "FLAREAUTH_DELIVERY_BASE_DELAY": "0.5",
            "FLAREAUTH_SEND_VERIFICATION_EMAIL": "off",
            "OTHER_APP_TOKEN_SECRET": "ignored",
        })
        assert config.token_secret == "from-env"
        assert config.challenge_code_ttl == 120
        assert config.delivery_base_delay == 0.5
        assert config.send_verification_email is False

    def test_layering(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text(
            "FLAREAUTH_TOKEN_SECRET=from-file\n"
            "FLAREAUTH_PROJECT_NAME=Acme\n"
            "FLAREAUTH_CODE_DIGITS=8\n"
        )
        config = AuthConfig.from_env(
            env_file=str(env_file),
            environ={"FLAREAUTH_CODE_DIGITS": "7"},
            app_domain="https://acme.test",
        )
        assert config.token_secret == "from-file"
        assert config.project_name == "Acme"
        assert config.code_digits == 7
        assert config.app_domain == "https://acme.test"

    def test_override_beats_environment(self):
        config = AuthConfig.from_env(
            environ={"FLAREAUTH_TOKEN_SECRET": "env"}, token_secret="explicit"
        )
        assert config.token_secret == "explicit"

    def test_custom_prefix(self):
        config = AuthConfig.from_env(prefix="MYAPP_AUTH_", environ={"MYAPP_AUTH_TOKEN_SECRET": "s"})
        assert config.token_secret == "s"

    def test_bad_int(self):
        with pytest.raises(ConfigFault) as exc_info:
            AuthConfig.from_env(environ={
                "FLAREAUTH_TOKEN_SECRET": "s",
                "FLAREAUTH_ACCESS_TOKEN_TTL": "an hour",
            })
        assert exc_info.value.config_key == "FLAREAUTH_ACCESS_TOKEN_TTL"

    def test_bad_bool(self):
        with pytest.raises(ConfigFault):
            AuthConfig.from_env(environ={
                "FLAREAUTH_TOKEN_SECRET": "s",
                "FLAREAUTH_SEND_VERIFICATION_EMAIL": "maybe",
            })

    def test_unknown_override(self):
        with pytest.raises(ConfigFault):
            AuthConfig.from_env(environ={}, token_secret="s", session_ttl=10)

    def test_missing_secret(self):
        with pytest.raises(ConfigFault):
            AuthConfig.from_env(environ={})
