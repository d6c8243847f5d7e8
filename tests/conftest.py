"""
Shared test fixtures for the FlareAuth test suite.
"""

from datetime import datetime, timedelta, timezone

import pytest

from flareauth.auth import (
    AuthOrchestrator,
    ChallengeStore,
    CredentialVerifier,
    DeviceInfo,
    MemoryAuthStore,
    TokenIssuer,
    TOTPProvider,
    fingerprint_device,
)
from flareauth.config import AuthConfig
from flareauth.notify import (
    Channel,
    DeliveryWorker,
    MemoryIdempotencyLedger,
    MemoryQueueTransport,
    NotificationDispatcher,
    NotificationRenderer,
    OutboxTransport,
)

TEST_SECRET = "test-secret-0123456789abcdef"
PASSWORD = "Secret1!"


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


# ============================================================================
# Primitives
# ============================================================================


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def config():
    return AuthConfig(token_secret=TEST_SECRET, send_verification_email=True).validate()


@pytest.fixture
def credentials():
    # Minimum argon2 cost keeps the suite fast
    return CredentialVerifier(time_cost=1, memory_cost=1024, parallelism=1)


@pytest.fixture
def store():
    return MemoryAuthStore()


@pytest.fixture
def tokens(clock):
    return TokenIssuer(TEST_SECRET, clock=clock)


@pytest.fixture
def totp():
    return TOTPProvider()


@pytest.fixture
def challenges(store, tokens, totp, clock):
    return ChallengeStore(store, code_signer=tokens.sign_code, totp=totp, clock=clock)


# ============================================================================
# Notifications
# ============================================================================


@pytest.fixture
def queue(clock):
    return MemoryQueueTransport(clock=clock)


@pytest.fixture
def ledger(clock):
    return MemoryIdempotencyLedger(window=3600, clock=clock)


@pytest.fixture
def dispatcher(queue, ledger):
    return NotificationDispatcher(queue, ledger, max_attempts=3)


@pytest.fixture
def email_outbox():
    return OutboxTransport(Channel.EMAIL)


@pytest.fixture
def sms_outbox():
    return OutboxTransport(Channel.SMS, name="sms-outbox")


@pytest.fixture
def worker(queue, ledger, email_outbox, sms_outbox, clock):
    return DeliveryWorker(
        queue,
        {Channel.EMAIL: email_outbox, Channel.SMS: sms_outbox},
        renderer=NotificationRenderer(project_name="FlareAuth"),
        ledger=ledger,
        base_delay=1.0,
        max_delay=10.0,
        clock=clock,
    )


# ============================================================================
# Orchestrator
# ============================================================================


@pytest.fixture
def auth(config, store, dispatcher, credentials, clock):
    return AuthOrchestrator.from_config(
        config,
        store=store,
        notifications=dispatcher,
        credentials=credentials,
        clock=clock,
    )


@pytest.fixture
def laptop():
    return DeviceInfo("203.0.113.7", fingerprint_device("Mozilla/5.0 (X11; Linux x86_64) Firefox/128.0"))


@pytest.fixture
def phone_device():
    return DeviceInfo("198.51.100.20", fingerprint_device("Mozilla/5.0 (iPhone) Safari/605.1"))


@pytest.fixture
def register(auth, worker, email_outbox):
    """Sign up an account and flush its verification email."""

    async def _register(email="a@x.com", password=PASSWORD, phone=None):
        result = await auth.signup(email, password, phone=phone)
        assert result.is_ok(), result
        await worker.drain(Channel.EMAIL)
        email_outbox.clear()
        return result.value

    return _register


@pytest.fixture
def signed_in(auth, register, worker, email_outbox, laptop):
    """Register an account and complete one step-up sign-in from ``laptop``."""

    async def _signed_in(email="a@x.com", password=PASSWORD):
        user = await register(email, password)
        step_up = (await auth.signin(email, password, laptop)).unwrap()
        await worker.drain(Channel.EMAIL)
        code = extract_code(email_outbox.last_to(email).content.text)
        result = (await auth.verify_step_up(user.id, code, laptop)).unwrap()
        assert result.is_valid
        email_outbox.clear()
        return user, step_up, result

    return _signed_in


def extract_code(text: str) -> str:
    """Pull the six-digit code out of a rendered message."""
    for word in text.replace(".", " ").split():
        if word.isdigit() and len(word) == 6:
            return word
    raise AssertionError(f"no code in {text!r}")


@pytest.fixture
def code_from():
    return extract_code
