"""
TokenIssuer: purpose-scoped signed tokens.
"""

import base64
import json

import pytest

from flareauth.auth import (
    AUTH_TOKEN_EXPIRED,
    AUTH_TOKEN_INVALID,
    AUTH_TOKEN_WRONG_PURPOSE,
    TokenConfig,
    TokenIssuer,
    TokenPurpose,
)
from flareauth.faults import FaultKind


def _rewrite_payload(token: str, **changes) -> str:
    header, payload, signature = token.split(".")
    data = json.loads(base64.urlsafe_b64decode(payload + "=" * (-len(payload) % 4)))
    data.update(changes)
    forged = base64.urlsafe_b64encode(json.dumps(data).encode()).rstrip(b"=").decode()
    return f"{header}.{forged}.{signature}"


class TestIssue:

    def test_issue_and_validate(self, tokens):
        token = tokens.issue(TokenPurpose.EMAIL_VERIFY, {"sub": "user-1", "email": "a@x.com"})
        claims = tokens.validate(token, TokenPurpose.EMAIL_VERIFY).unwrap()
        assert claims["sub"] == "user-1"
        assert claims["email"] == "a@x.com"
        assert claims["purpose"] == "email-verify"
        assert claims["iss"] == "flareauth"
        assert claims["jti"]

    def test_default_ttls(self, tokens):
        access = tokens.validate(tokens.issue_access_token("u"), "access").unwrap()
        assert access["exp"] - access["iat"] == 3600
        reset = tokens.validate(tokens.issue("password-reset", {"sub": "u"}), "password-reset").unwrap()
        assert reset["exp"] - reset["iat"] == 900

    def test_configured_ttl(self, config, clock):
        issuer = TokenIssuer(config.token_secret, TokenConfig(access_token_ttl=60), clock=clock)
        claims = issuer.validate(issuer.issue_access_token("u"), "access").unwrap()
        assert claims["exp"] - claims["iat"] == 60

    def test_tokens_are_unique(self, tokens):
        assert tokens.issue_access_token("u") != tokens.issue_access_token("u")

    @pytest.mark.parametrize("claim", ["purpose", "exp", "iat", "jti", "iss"])
    def test_reserved_claims_rejected(self, tokens, claim):
        with pytest.raises(ValueError):
            tokens.issue(TokenPurpose.ACCESS, {claim: "x"})

    def test_negative_ttl_rejected(self, tokens):
        with pytest.raises(ValueError):
            tokens.issue(TokenPurpose.ACCESS, ttl=-1)

    def test_empty_secret_rejected(self):
        with pytest.raises(ValueError):
            TokenIssuer("")

    def test_unknown_purpose_rejected(self, tokens):
        with pytest.raises(ValueError):
            tokens.issue("session")


class TestValidate:

    def test_zero_ttl_is_expired_immediately(self, tokens):
        token = tokens.issue(TokenPurpose.ACCESS, {"sub": "u"}, ttl=0)
        result = tokens.validate(token, TokenPurpose.ACCESS)
        assert result.is_err()
        assert isinstance(result.fault, AUTH_TOKEN_EXPIRED)
        assert result.kind is FaultKind.EXPIRED_TOKEN

    def test_expiry_boundary(self, tokens, clock):
        token = tokens.issue(TokenPurpose.ACCESS, {"sub": "u"}, ttl=60)
        clock.advance(59)
        assert tokens.validate(token, TokenPurpose.ACCESS).is_ok()
        clock.advance(1)
        assert tokens.validate(token, TokenPurpose.ACCESS).kind is FaultKind.EXPIRED_TOKEN

    def test_wrong_purpose(self, tokens):
        token = tokens.issue(TokenPurpose.EMAIL_VERIFY, {"sub": "u"})
        result = tokens.validate(token, TokenPurpose.PASSWORD_RESET)
        assert isinstance(result.fault, AUTH_TOKEN_WRONG_PURPOSE)
        assert result.kind is FaultKind.WRONG_PURPOSE
        assert result.fault.metadata["expected_purpose"] == "password-reset"
        assert result.fault.metadata["actual_purpose"] == "email-verify"

    def test_expiry_checked_before_purpose(self, tokens):
        token = tokens.issue(TokenPurpose.EMAIL_VERIFY, ttl=0)
        assert tokens.validate(token, TokenPurpose.ACCESS).kind is FaultKind.EXPIRED_TOKEN

    def test_tampered_payload(self, tokens):
        token = tokens.issue(TokenPurpose.ACCESS, {"sub": "alice"})
        forged = _rewrite_payload(token, sub="mallory")
        result = tokens.validate(forged, TokenPurpose.ACCESS)
        assert isinstance(result.fault, AUTH_TOKEN_INVALID)
        assert result.kind is FaultKind.INVALID_TOKEN

    def test_purpose_cannot_be_rewritten(self, tokens):
        token = tokens.issue(TokenPurpose.EMAIL_VERIFY, {"sub": "u"})
        forged = _rewrite_payload(token, purpose="password-reset")
        assert tokens.validate(forged, TokenPurpose.PASSWORD_RESET).kind is FaultKind.INVALID_TOKEN

    def test_foreign_secret(self, tokens, clock):
        other = TokenIssuer("another-secret", clock=clock)
        token = other.issue_access_token("u")
        assert tokens.validate(token, TokenPurpose.ACCESS).kind is FaultKind.INVALID_TOKEN

    @pytest.mark.parametrize("token", ["", "abc", "a.b", "a.b.c.d", "!!!.???.###"])
    def test_malformed(self, tokens, token):
        assert tokens.validate(token, TokenPurpose.ACCESS).kind is FaultKind.INVALID_TOKEN

    def test_unsigned_algorithm_rejected(self, tokens):
        token = tokens.issue_access_token("u")
        _, payload, _ = token.split(".")
        header = base64.urlsafe_b64encode(b'{"alg":"none","typ":"JWT"}').rstrip(b"=").decode()
        assert tokens.validate(f"{header}.{payload}.", TokenPurpose.ACCESS).kind is FaultKind.INVALID_TOKEN


class TestSignCode:

    def test_deterministic_hex(self, tokens):
        digest = tokens.sign_code("123456")
        assert digest == tokens.sign_code("123456")
        assert len(digest) == 64

    def test_distinct_codes(self, tokens):
        assert tokens.sign_code("123456") != tokens.sign_code("123457")

    def test_keyed(self, tokens):
        assert TokenIssuer("another-secret").sign_code("123456") != tokens.sign_code("123456")
