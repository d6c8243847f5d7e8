"""
AuthOrchestrator flows, end to end over the in-memory store and queue.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from flareauth.auth import (
    AUTH_ACCOUNT_EXISTS,
    AUTH_ALREADY_VERIFIED,
    AUTH_CHALLENGE_CONFLICT,
    AUTH_INTERNAL,
    AUTH_INVALID_CREDENTIALS,
    AUTH_VALIDATION_FAILED,
    AccessGrant,
    AuthOrchestrator,
    ChallengeStatus,
    DeviceInfo,
    PasswordResetRequested,
    StepUpRequired,
    TokenPurpose,
    TwoFactorMethod,
)
from flareauth.faults import FaultKind
from flareauth.notify import Channel

PASSWORD = "Secret1!"
NEW_PASSWORD = "N3w-Secret!"


def _token_from(text: str) -> str:
    return text.split("?token=", 1)[1].split()[0]


# ============================================================================
# End to end
# ============================================================================

class TestEndToEnd:

    @pytest.mark.asyncio
    async def test_signup_signin_step_up_trusted_device(
        self, auth, store, tokens, worker, queue, email_outbox, laptop, code_from
    ):
        user = (await auth.signup("a@x.com", PASSWORD)).unwrap()

        duplicate = await auth.signup("a@x.com", PASSWORD)
        assert isinstance(duplicate.fault, AUTH_ACCOUNT_EXISTS)
        assert duplicate.kind is FaultKind.CONFLICT

        # Unseen device: step-up
        step_up = (await auth.signin("a@x.com", PASSWORD, laptop)).unwrap()
        assert isinstance(step_up, StepUpRequired)
        assert step_up.method is TwoFactorMethod.EMAIL
        challenge = await store.get_challenge(user.id)
        assert challenge.challenge_id == step_up.challenge_id
        assert challenge.status is ChallengeStatus.SENT
        assert queue.pending(Channel.EMAIL) == 2

        await worker.drain(Channel.EMAIL)
        code = code_from(email_outbox.last_to("a@x.com").content.text)

        result = (await auth.verify_step_up(user.id, code, laptop)).unwrap()
        assert result.is_valid
        claims = tokens.validate(result.grant.access_token, TokenPurpose.ACCESS).unwrap()
        assert claims["sub"] == user.id
        assert result.grant.expires_in == 3600

        context = await store.get_device_context(user.id)
        assert context.user_agent_fingerprint == laptop.user_agent_fingerprint
        assert context.ip == laptop.ip

        # Same device: direct grant, no new challenge
        grant = (await auth.signin("a@x.com", PASSWORD, laptop)).unwrap()
        assert isinstance(grant, AccessGrant)
        assert grant.user_id == user.id
        after = await store.get_challenge(user.id)
        assert after.challenge_id == step_up.challenge_id
        assert after.status is ChallengeStatus.VERIFIED
        assert queue.pending(Channel.EMAIL) == 0


# ============================================================================
# Signup
# ============================================================================

class TestSignup:

    @pytest.mark.asyncio
    async def test_creates_user(self, auth, store, credentials):
        user = (await auth.signup("  Alice@Example.com ", PASSWORD, phone="+15551234567")).unwrap()

        assert user.email == "alice@example.com"
        assert user.phone == "+15551234567"
        assert not user.is_email_verified
        assert user.password_hash != PASSWORD
        assert credentials.verify(PASSWORD, user.password_salt, user.password_hash)
        assert (await store.get_user_by_email("alice@example.com")).id == user.id

    @pytest.mark.asyncio
    async def test_queues_verification_email(self, auth, worker, email_outbox):
        await auth.signup("a@x.com", PASSWORD)
        await worker.drain(Channel.EMAIL)

        message = email_outbox.last_to("a@x.com")
        assert message.content.subject == "Verify your FlareAuth email address"
        assert "http://localhost:4000/auth/verify-email/?token=" in message.content.text

    @pytest.mark.asyncio
    async def test_verification_email_can_be_disabled(self, config, store, dispatcher, credentials, clock, queue):
        config.send_verification_email = False
        auth = AuthOrchestrator.from_config(
            config, store=store, notifications=dispatcher, credentials=credentials, clock=clock
        )
        assert (await auth.signup("a@x.com", PASSWORD)).is_ok()
        assert queue.pending(Channel.EMAIL) == 0

    @pytest.mark.asyncio
    async def test_validation_errors(self, auth):
        result = await auth.signup("not-an-email", "weak", phone="555")

        assert isinstance(result.fault, AUTH_VALIDATION_FAILED)
        assert result.kind is FaultKind.VALIDATION
        errors = result.fault.errors
        assert "Invalid email address" in errors
        assert "Phone number must be in E.164 format" in errors
        assert any("at least 8" in e for e in errors)

    @pytest.mark.asyncio
    async def test_duplicate_phone(self, auth):
        await auth.signup("a@x.com", PASSWORD, phone="+15551234567")
        result = await auth.signup("b@x.com", PASSWORD, phone="+15551234567")

        assert result.kind is FaultKind.CONFLICT
        assert result.fault.metadata["field"] == "phone"

    @pytest.mark.asyncio
    async def test_email_is_case_insensitive(self, auth):
        await auth.signup("a@x.com", PASSWORD)
        assert (await auth.signup("A@X.COM", PASSWORD)).kind is FaultKind.CONFLICT

    @pytest.mark.asyncio
    async def test_concurrent_signups(self, auth):
        results = await asyncio.gather(*(auth.signup("a@x.com", PASSWORD) for _ in range(3)))
        assert sum(1 for r in results if r.is_ok()) == 1
        assert all(r.kind is FaultKind.CONFLICT for r in results if r.is_err())

    @pytest.mark.asyncio
    async def test_enqueue_failure_keeps_account(self, auth, store, dispatcher):
        dispatcher.queue.enqueue = AsyncMock(side_effect=ConnectionError("queue down"))

        user = (await auth.signup("a@x.com", PASSWORD)).unwrap()
        assert await store.get_user(user.id) is not None

    @pytest.mark.asyncio
    async def test_store_failure_is_internal(self, auth, store):
        store.get_user_by_email = AsyncMock(side_effect=RuntimeError("db down"))

        result = await auth.signup("a@x.com", PASSWORD)

        assert isinstance(result.fault, AUTH_INTERNAL)
        assert result.kind is FaultKind.INTERNAL
        assert isinstance(result.fault.cause, RuntimeError)


# ============================================================================
# Signin
# ============================================================================

class TestSignin:

    @pytest.mark.asyncio
    async def test_wrong_password(self, auth, register, laptop):
        await register()
        result = await auth.signin("a@x.com", "Wrong1!!", laptop)

        assert isinstance(result.fault, AUTH_INVALID_CREDENTIALS)
        assert result.kind is FaultKind.UNAUTHORIZED

    @pytest.mark.asyncio
    async def test_unknown_account_looks_the_same(self, auth, register, laptop):
        await register()
        wrong = await auth.signin("a@x.com", "Wrong1!!", laptop)
        unknown = await auth.signin("nobody@x.com", PASSWORD, laptop)

        assert unknown.kind is wrong.kind
        assert unknown.fault.message == wrong.fault.message

    @pytest.mark.asyncio
    async def test_signin_by_phone(self, auth, register, laptop):
        user = await register(phone="+15551234567")
        step_up = (await auth.signin("+15551234567", PASSWORD, laptop)).unwrap()
        assert step_up.user_id == user.id

    @pytest.mark.asyncio
    async def test_new_device_after_trust(self, auth, signed_in, phone_device):
        user, _, _ = await signed_in()
        result = (await auth.signin("a@x.com", PASSWORD, phone_device)).unwrap()
        assert isinstance(result, StepUpRequired)

    @pytest.mark.asyncio
    async def test_step_up_moves_trust(self, auth, signed_in, worker, email_outbox, laptop, phone_device, code_from):
        user, _, _ = await signed_in()

        await auth.signin("a@x.com", PASSWORD, phone_device)
        await worker.drain(Channel.EMAIL)
        code = code_from(email_outbox.last_to("a@x.com").content.text)
        assert (await auth.verify_step_up(user.id, code, phone_device)).unwrap().is_valid

        assert isinstance((await auth.signin("a@x.com", PASSWORD, phone_device)).unwrap(), AccessGrant)
        assert isinstance((await auth.signin("a@x.com", PASSWORD, laptop)).unwrap(), StepUpRequired)

    @pytest.mark.asyncio
    async def test_same_agent_new_ip_is_trusted(self, auth, signed_in, laptop):
        await signed_in()
        roaming = DeviceInfo("192.0.2.44", laptop.user_agent_fingerprint)
        assert isinstance((await auth.signin("a@x.com", PASSWORD, roaming)).unwrap(), AccessGrant)

    @pytest.mark.asyncio
    async def test_repeat_signin_supersedes_challenge(self, auth, register, store, worker, email_outbox, laptop, code_from):
        user = await register()
        first = (await auth.signin("a@x.com", PASSWORD, laptop)).unwrap()
        second = (await auth.signin("a@x.com", PASSWORD, laptop)).unwrap()

        assert first.challenge_id != second.challenge_id
        assert (await store.get_challenge(user.id)).challenge_id == second.challenge_id

        await worker.drain(Channel.EMAIL)
        assert len(email_outbox.messages) == 2
        code = code_from(email_outbox.messages[-1].content.text)
        assert (await auth.verify_step_up(user.id, code, laptop)).unwrap().is_valid

    @pytest.mark.asyncio
    async def test_device_store_failure(self, auth, register, store, laptop):
        await register()
        store.get_device_context = AsyncMock(side_effect=RuntimeError("down"))
        assert (await auth.signin("a@x.com", PASSWORD, laptop)).kind is FaultKind.INTERNAL

    @pytest.mark.asyncio
    async def test_code_enqueue_failure(self, auth, register, dispatcher, laptop):
        await register()
        dispatcher.queue.enqueue = AsyncMock(side_effect=ConnectionError("queue down"))

        result = await auth.signin("a@x.com", PASSWORD, laptop)
        assert result.kind is FaultKind.INTERNAL
        assert isinstance(result.fault.cause.__cause__, ConnectionError)

    @pytest.mark.asyncio
    async def test_concurrent_users(self, auth, register, laptop):
        await register("a@x.com")
        await register("b@x.com")

        results = await asyncio.gather(
            auth.signin("a@x.com", PASSWORD, laptop),
            auth.signin("b@x.com", PASSWORD, laptop),
        )
        assert all(isinstance(r.unwrap(), StepUpRequired) for r in results)
        assert results[0].value.user_id != results[1].value.user_id


# ============================================================================
# Step-up verification
# ============================================================================

class TestStepUp:

    @pytest.mark.asyncio
    async def test_wrong_code(self, auth, register, laptop, store):
        user = await register()
        await auth.signin("a@x.com", PASSWORD, laptop)
        challenge = await store.get_challenge(user.id)
        wrong = "000000" if challenge.code_ref != auth.tokens.sign_code("000000") else "111111"

        result = (await auth.verify_step_up(user.id, wrong, laptop)).unwrap()

        assert not result.is_valid
        assert result.remaining_attempts == 2
        assert result.grant is None
        assert await store.get_device_context(user.id) is None

    @pytest.mark.asyncio
    async def test_exhausted(self, auth, register, worker, email_outbox, laptop, code_from):
        user = await register()
        await auth.signin("a@x.com", PASSWORD, laptop)
        await worker.drain(Channel.EMAIL)
        code = code_from(email_outbox.last_to("a@x.com").content.text)
        wrong = "000000" if code != "000000" else "111111"

        for _ in range(3):
            await auth.verify_step_up(user.id, wrong, laptop)

        assert (await auth.verify_step_up(user.id, code, laptop)).kind is FaultKind.EXHAUSTED_ATTEMPTS

    @pytest.mark.asyncio
    async def test_expired(self, auth, register, worker, email_outbox, laptop, clock, code_from):
        user = await register()
        await auth.signin("a@x.com", PASSWORD, laptop)
        await worker.drain(Channel.EMAIL)
        code = code_from(email_outbox.last_to("a@x.com").content.text)
        clock.advance(301)

        assert (await auth.verify_step_up(user.id, code, laptop)).kind is FaultKind.EXPIRED_CHALLENGE

    @pytest.mark.asyncio
    async def test_code_is_single_use(self, auth, signed_in, worker, email_outbox, laptop):
        user, _, _ = await signed_in()
        result = await auth.verify_step_up(user.id, "123456", laptop)
        assert result.kind is FaultKind.UNAUTHORIZED

    @pytest.mark.asyncio
    async def test_without_signin(self, auth, register, laptop):
        user = await register()
        assert (await auth.verify_step_up(user.id, "123456", laptop)).kind is FaultKind.UNAUTHORIZED

    @pytest.mark.asyncio
    async def test_with_challenge_token(self, auth, register, worker, email_outbox, laptop, code_from):
        await register()
        step_up = (await auth.signin("a@x.com", PASSWORD, laptop)).unwrap()
        await worker.drain(Channel.EMAIL)
        code = code_from(email_outbox.last_to("a@x.com").content.text)

        result = (await auth.verify_step_up_token(step_up.challenge_token, code, laptop)).unwrap()
        assert result.is_valid
        assert result.grant.user_id == step_up.user_id

    @pytest.mark.asyncio
    async def test_stale_challenge_token(self, auth, register, laptop):
        await register()
        stale = (await auth.signin("a@x.com", PASSWORD, laptop)).unwrap()
        await auth.signin("a@x.com", PASSWORD, laptop)

        result = await auth.verify_step_up_token(stale.challenge_token, "123456", laptop)
        assert isinstance(result.fault, AUTH_CHALLENGE_CONFLICT)

    @pytest.mark.asyncio
    async def test_stale_challenge_token_with_current_code(
        self, auth, register, worker, email_outbox, laptop, store, code_from
    ):
        user = await register()
        stale = (await auth.signin("a@x.com", PASSWORD, laptop)).unwrap()
        current = (await auth.signin("a@x.com", PASSWORD, laptop)).unwrap()
        await worker.drain(Channel.EMAIL)
        code = code_from(email_outbox.last_to("a@x.com").content.text)

        result = await auth.verify_step_up_token(stale.challenge_token, code, laptop)
        assert isinstance(result.fault, AUTH_CHALLENGE_CONFLICT)
        assert (await store.get_challenge(user.id)).attempts_remaining == 3

        accepted = await auth.verify_step_up_token(current.challenge_token, code, laptop)
        assert accepted.unwrap().is_valid

    @pytest.mark.asyncio
    async def test_access_token_is_not_a_challenge_token(self, auth, signed_in, laptop):
        _, _, result = await signed_in()
        wrong = await auth.verify_step_up_token(result.grant.access_token, "123456", laptop)
        assert wrong.kind is FaultKind.WRONG_PURPOSE

    @pytest.mark.asyncio
    async def test_expired_challenge_token(self, auth, register, laptop, clock):
        await register()
        step_up = (await auth.signin("a@x.com", PASSWORD, laptop)).unwrap()
        clock.advance(600)

        result = await auth.verify_step_up_token(step_up.challenge_token, "123456", laptop)
        assert result.kind is FaultKind.EXPIRED_TOKEN


# ============================================================================
# Two-factor methods
# ============================================================================

class TestTwoFactor:

    @pytest.mark.asyncio
    async def test_sms(self, auth, register, worker, email_outbox, sms_outbox, laptop, code_from):
        user = await register(phone="+15551234567")
        assert (await auth.enable_two_factor(user.id, TwoFactorMethod.SMS)).is_ok()

        step_up = (await auth.signin("a@x.com", PASSWORD, laptop)).unwrap()
        assert step_up.method is TwoFactorMethod.SMS

        assert await worker.drain(Channel.EMAIL) == []
        await worker.drain(Channel.SMS)
        text = sms_outbox.last_to("+15551234567").content.text
        assert text.startswith("FlareAuth sign-in: Your OTP is ")
        assert email_outbox.messages == []

        code = code_from(text)
        assert (await auth.verify_step_up(user.id, code, laptop)).unwrap().is_valid

    @pytest.mark.asyncio
    async def test_sms_requires_phone(self, auth, register):
        user = await register()
        result = await auth.enable_two_factor(user.id, TwoFactorMethod.SMS)
        assert result.kind is FaultKind.VALIDATION

    @pytest.mark.asyncio
    async def test_unknown_method(self, auth, register):
        user = await register()
        result = await auth.enable_two_factor(user.id, "carrier-pigeon")
        assert result.kind is FaultKind.VALIDATION

    @pytest.mark.asyncio
    async def test_unknown_user(self, auth):
        result = await auth.enable_two_factor("missing", TwoFactorMethod.EMAIL)
        assert result.kind is FaultKind.NOT_FOUND

    @pytest.mark.asyncio
    async def test_authenticator(self, auth, register, store, queue, totp, clock, laptop):
        user = await register()
        enrollment = (await auth.enable_two_factor(user.id, TwoFactorMethod.AUTHENTICATOR)).unwrap()

        assert enrollment.secret
        assert enrollment.provisioning_uri.startswith("otpauth://totp/FlareAuth%3Aa%40x.com?")
        assert (await store.get_user(user.id)).two_factor_secret == enrollment.secret

        step_up = (await auth.signin("a@x.com", PASSWORD, laptop)).unwrap()
        assert step_up.method is TwoFactorMethod.AUTHENTICATOR
        assert queue.pending(Channel.EMAIL) == 0
        assert queue.pending(Channel.SMS) == 0

        code = totp.generate_code(enrollment.secret, int(clock().timestamp()))
        result = (await auth.verify_step_up(user.id, code, laptop)).unwrap()
        assert result.is_valid
        assert result.grant is not None

    @pytest.mark.asyncio
    async def test_disable(self, auth, register, store, laptop):
        user = await register()
        await auth.enable_two_factor(user.id, TwoFactorMethod.AUTHENTICATOR)
        await auth.signin("a@x.com", PASSWORD, laptop)

        assert (await auth.disable_two_factor(user.id)).is_ok()

        stored = await store.get_user(user.id)
        assert not stored.two_factor_enabled
        assert stored.two_factor_method is None
        assert stored.two_factor_secret is None
        assert await store.get_challenge(user.id) is None

        step_up = (await auth.signin("a@x.com", PASSWORD, laptop)).unwrap()
        assert step_up.method is TwoFactorMethod.EMAIL

    @pytest.mark.asyncio
    async def test_disable_is_idempotent(self, auth, register):
        user = await register()
        assert (await auth.disable_two_factor(user.id)).is_ok()
        assert (await auth.disable_two_factor(user.id)).is_ok()


# ============================================================================
# Email verification
# ============================================================================

class TestEmailVerification:

    @pytest.mark.asyncio
    async def test_verify_once(self, auth, store, worker, email_outbox):
        user = (await auth.signup("a@x.com", PASSWORD)).unwrap()
        await worker.drain(Channel.EMAIL)
        token = _token_from(email_outbox.last_to("a@x.com").content.text)

        verified = (await auth.verify_email(token)).unwrap()
        assert verified.is_email_verified
        assert (await store.get_user(user.id)).is_email_verified

        again = await auth.verify_email(token)
        assert isinstance(again.fault, AUTH_ALREADY_VERIFIED)
        assert again.kind is FaultKind.ALREADY_VERIFIED

    @pytest.mark.asyncio
    async def test_resend(self, auth, register, worker, email_outbox):
        user = await register()
        handle = (await auth.send_email_verification(user.id)).unwrap()
        assert handle.channel is Channel.EMAIL

        await worker.drain(Channel.EMAIL)
        token = _token_from(email_outbox.last_to("a@x.com").content.text)
        assert (await auth.verify_email(token)).is_ok()

        assert (await auth.send_email_verification(user.id)).kind is FaultKind.ALREADY_VERIFIED

    @pytest.mark.asyncio
    async def test_resend_unknown_user(self, auth):
        assert (await auth.send_email_verification("missing")).kind is FaultKind.NOT_FOUND

    @pytest.mark.asyncio
    async def test_expired_token(self, auth, worker, email_outbox, clock):
        await auth.signup("a@x.com", PASSWORD)
        await worker.drain(Channel.EMAIL)
        token = _token_from(email_outbox.last_to("a@x.com").content.text)
        clock.advance(900)

        assert (await auth.verify_email(token)).kind is FaultKind.EXPIRED_TOKEN

    @pytest.mark.asyncio
    async def test_reset_token_rejected(self, auth, register, worker, email_outbox):
        await register()
        await auth.request_password_reset("a@x.com")
        await worker.drain(Channel.EMAIL)
        token = _token_from(email_outbox.last_to("a@x.com").content.text)

        assert (await auth.verify_email(token)).kind is FaultKind.WRONG_PURPOSE

    @pytest.mark.asyncio
    async def test_garbage_token(self, auth):
        assert (await auth.verify_email("garbage")).kind is FaultKind.INVALID_TOKEN


# ============================================================================
# Password reset & change
# ============================================================================

class TestPasswordReset:

    @pytest.mark.asyncio
    async def test_uniform_response(self, auth, register, queue):
        await register()

        known = (await auth.request_password_reset("a@x.com")).unwrap()
        unknown = (await auth.request_password_reset("nobody@x.com")).unwrap()

        assert known == unknown == PasswordResetRequested()
        assert queue.pending(Channel.EMAIL) == 1

    @pytest.mark.asyncio
    async def test_enqueue_failure_is_hidden(self, auth, register, dispatcher):
        await register()
        dispatcher.queue.enqueue = AsyncMock(side_effect=ConnectionError("queue down"))

        assert (await auth.request_password_reset("a@x.com")).unwrap() == PasswordResetRequested()

    @pytest.mark.asyncio
    async def test_complete(self, auth, register, worker, email_outbox, laptop):
        await register()
        await auth.request_password_reset("a@x.com")
        await worker.drain(Channel.EMAIL)
        message = email_outbox.last_to("a@x.com")
        assert "/auth/reset-password/?token=" in message.content.text
        token = _token_from(message.content.text)

        assert (await auth.complete_password_reset(token, NEW_PASSWORD)).is_ok()

        assert (await auth.signin("a@x.com", PASSWORD, laptop)).kind is FaultKind.UNAUTHORIZED
        assert (await auth.signin("a@x.com", NEW_PASSWORD, laptop)).is_ok()

    @pytest.mark.asyncio
    async def test_token_works_once(self, auth, register, worker, email_outbox):
        await register()
        await auth.request_password_reset("a@x.com")
        await worker.drain(Channel.EMAIL)
        token = _token_from(email_outbox.last_to("a@x.com").content.text)

        await auth.complete_password_reset(token, NEW_PASSWORD)
        again = await auth.complete_password_reset(token, "An0ther-Secret!")
        assert again.kind is FaultKind.INVALID_TOKEN

    @pytest.mark.asyncio
    async def test_weak_password(self, auth, register, worker, email_outbox):
        await register()
        await auth.request_password_reset("a@x.com")
        await worker.drain(Channel.EMAIL)
        token = _token_from(email_outbox.last_to("a@x.com").content.text)

        result = await auth.complete_password_reset(token, "weak")
        assert result.kind is FaultKind.VALIDATION
        # A rejected attempt does not burn the token
        assert (await auth.complete_password_reset(token, NEW_PASSWORD)).is_ok()

    @pytest.mark.asyncio
    async def test_verification_token_rejected(self, auth, worker, email_outbox):
        await auth.signup("a@x.com", PASSWORD)
        await worker.drain(Channel.EMAIL)
        token = _token_from(email_outbox.last_to("a@x.com").content.text)

        assert (await auth.complete_password_reset(token, NEW_PASSWORD)).kind is FaultKind.WRONG_PURPOSE


class TestChangePassword:

    @pytest.mark.asyncio
    async def test_change(self, auth, register, laptop):
        user = await register()
        assert (await auth.change_password(user.id, PASSWORD, NEW_PASSWORD)).is_ok()
        assert (await auth.signin("a@x.com", NEW_PASSWORD, laptop)).is_ok()

    @pytest.mark.asyncio
    async def test_wrong_current_password(self, auth, register):
        user = await register()
        result = await auth.change_password(user.id, "Wrong1!!", NEW_PASSWORD)
        assert result.kind is FaultKind.UNAUTHORIZED

    @pytest.mark.asyncio
    async def test_same_password(self, auth, register):
        user = await register()
        result = await auth.change_password(user.id, PASSWORD, PASSWORD)
        assert result.kind is FaultKind.VALIDATION
        assert "New password must differ from the current one" in result.fault.errors

    @pytest.mark.asyncio
    async def test_unknown_user(self, auth):
        assert (await auth.change_password("missing", PASSWORD, NEW_PASSWORD)).kind is FaultKind.NOT_FOUND

    @pytest.mark.asyncio
    async def test_invalidates_outstanding_reset_token(self, auth, register, worker, email_outbox):
        user = await register()
        await auth.request_password_reset("a@x.com")
        await worker.drain(Channel.EMAIL)
        token = _token_from(email_outbox.last_to("a@x.com").content.text)

        await auth.change_password(user.id, PASSWORD, NEW_PASSWORD)
        assert (await auth.complete_password_reset(token, "An0ther-Secret!")).kind is FaultKind.INVALID_TOKEN
