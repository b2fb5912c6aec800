"""Shared test doubles for the SMTP transport and the delivery engine."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

import pytest

from registration_mailer.config_loader import Credentials, MailerSettings, TransportConfig
from registration_mailer.delivery import DeliveryEngine
from registration_mailer.prometheus import NotifierMetrics
from registration_mailer.reporting import OutcomeReporter


class DummySMTP:
    """aiosmtplib.SMTP stand-in. Raises queued errors from send_message."""

    def __init__(self, hostname=None, port=None, use_tls=False, start_tls=None, timeout=None, **_kwargs):
        self.hostname = hostname
        self.port = port
        self.use_tls = use_tls
        self.start_tls = start_tls
        self.timeout = timeout
        self.login_credentials = None
        self.connected = False
        self.closed = False
        self.noop_code = 250
        self.send_errors: list[BaseException] = []
        self.sent: list[Any] = []

    async def connect(self):
        self.connected = True

    async def login(self, user, password):
        self.login_credentials = (user, password)

    async def noop(self):
        return self.noop_code, "OK"

    async def send_message(self, message, **_kwargs):
        if self.send_errors:
            raise self.send_errors.pop(0)
        self.sent.append(message)
        return {}, "250 OK"

    async def quit(self):
        self.closed = True


class ScriptedPool:
    """Pool double handing out a single DummySMTP.

    ``verify_errors`` are raised by successive verify() calls and the
    smtp's ``send_errors`` by successive sends.
    """

    def __init__(self, send_errors=(), verify_errors=()):
        self.smtp = DummySMTP(hostname="smtp.test", port=587)
        self.smtp.send_errors = list(send_errors)
        self.verify_errors = list(verify_errors)
        self.connections = 0
        self.verify_calls = 0
        self.cleanups = 0
        self.closed = False

    @asynccontextmanager
    async def connection(self):
        self.connections += 1
        yield self.smtp

    async def verify(self, smtp):
        self.verify_calls += 1
        if self.verify_errors:
            raise self.verify_errors.pop(0)

    async def cleanup(self):
        self.cleanups += 1

    async def close(self):
        self.closed = True


class CountingRateLimiter:
    def __init__(self):
        self.acquired = 0

    async def acquire(self):
        self.acquired += 1
        return 0.0


TRANSPORT = TransportConfig(
    host="smtp.test",
    port=587,
    credentials=Credentials(user="mailer@example.com", secret="s3cret"),
)

SETTINGS = MailerSettings(
    from_name="Youth Registration",
    from_email="noreply@example.com",
    reply_to="office@example.com",
    admin_emails=("admin@example.com", "desk@example.com"),
    base_url="https://register.example.com",
)


def make_engine(
    pool: ScriptedPool | None = None,
    *,
    transport=TRANSPORT,
    settings: MailerSettings = SETTINGS,
    mask: bool | None = False,
    sleeps: list[float] | None = None,
) -> DeliveryEngine:
    """Build an engine whose backoff sleeps are recorded instead of awaited."""
    recorded = sleeps if sleeps is not None else []

    async def fake_sleep(delay):
        recorded.append(delay)

    return DeliveryEngine(
        transport,
        settings,
        pool=pool if pool is not None else ScriptedPool(),
        rate_limiter=CountingRateLimiter(),
        reporter=OutcomeReporter(metrics=NotifierMetrics()),
        mask_failures_in_prod=mask,
        sleep=fake_sleep,
    )


@pytest.fixture
def pool():
    return ScriptedPool()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def engine(pool, sleeps):
    return make_engine(pool, sleeps=sleeps)


@pytest.fixture
def make_pool():
    """Factory for :class:`ScriptedPool` instances."""
    return ScriptedPool


@pytest.fixture
def engine_factory():
    """Factory for engines wired to test doubles, see :func:`make_engine`."""
    return make_engine


@pytest.fixture
def patch_aiosmtplib(monkeypatch):
    """Replace ``aiosmtplib.SMTP`` in the pool module and collect the instances."""
    created = []

    def factory(**kwargs):
        smtp = DummySMTP(**kwargs)
        created.append(smtp)
        return smtp

    monkeypatch.setattr("registration_mailer.smtp_pool.aiosmtplib.SMTP", factory)
    return created


@pytest.fixture
def transport():
    return TRANSPORT


@pytest.fixture
def settings():
    return SETTINGS
