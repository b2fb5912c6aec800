# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Delivery engine: send one message reliably over SMTP.

:meth:`DeliveryEngine.send` never raises. Every outcome, including missing
configuration and exhausted retries, is returned as a
:class:`~registration_mailer.models.DeliveryResult`.

One engine is created per process and shared by every caller; it owns the
SMTP connection pool and the rate limiter, so all sends contend for the
same connections and the same rate budget.

Example:
    Sending a message::

        async with DeliveryEngine.from_environment() as engine:
            result = await engine.send(
                OutboundMessage(recipients=["a@example.com"], subject="Hi", html_body="<p>hi</p>")
            )
            if result.error:
                ...
"""

from __future__ import annotations

import asyncio
import os
import time
from collections.abc import Awaitable, Callable, Mapping
from datetime import datetime, timezone
from email.message import EmailMessage
from email.utils import make_msgid
from typing import Any

from .config_loader import (
    MailerSettings,
    TransportConfig,
    Unconfigured,
    load_mailer_settings,
    resolve_transport_config,
)
from .content import html_to_text
from .errors import TransportNotConfiguredError
from .logger import get_logger
from .models import DeliveryAttempt, DeliveryOutcome, DeliveryResult, OutboundMessage
from .rate_limit import RateLimiter
from .reporting import OutcomeReporter
from .retry import RetryStrategy
from .smtp_pool import SMTPPool

DEFAULT_HEADERS = {
    "X-Mailer": "Youth Registration System",
    "X-Priority": "3",
    "X-MSMail-Priority": "Normal",
}

logger = get_logger("DeliveryEngine")


def _epoch_ms() -> int:
    return int(time.time() * 1000)


class DeliveryEngine:
    """Sends messages with pooling, rate limiting and retry.

    Attributes:
        transport: The resolved transport, or :class:`Unconfigured`.
        settings: Sender identity and delivery policy.
        pool: Shared SMTP connection pool (None when unconfigured).
        rate_limiter: Shared rate limiter (None when unconfigured).
        retry: Retry policy.
        reporter: Outcome reporter for logs and metrics.
        mask_failures_in_prod: Report terminal failures as success with the
            error populated. Defaults to True outside development mode.
        cleanup_interval: Seconds between pool housekeeping passes while the
            engine is started.
    """

    def __init__(
        self,
        transport: TransportConfig | Unconfigured | None,
        settings: MailerSettings | None = None,
        *,
        pool: SMTPPool | None = None,
        rate_limiter: RateLimiter | None = None,
        retry: RetryStrategy | None = None,
        reporter: OutcomeReporter | None = None,
        mask_failures_in_prod: bool | None = None,
        send_timeout: float = 30.0,
        cleanup_interval: float = 150.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.transport = transport if transport is not None else Unconfigured(
            missing=("SMTP_HOST", "SMTP_USER", "SMTP_PASS")
        )
        self.settings = settings or MailerSettings()
        if isinstance(self.transport, TransportConfig):
            self.pool = pool or SMTPPool.from_config(self.transport)
            self.rate_limiter = rate_limiter or RateLimiter.from_config(self.transport)
        else:
            self.pool = pool
            self.rate_limiter = rate_limiter
        self.retry = retry or RetryStrategy(
            max_retries=self.settings.retry_attempts,
            base_delay=self.settings.retry_delay_ms / 1000.0,
        )
        self.reporter = reporter or OutcomeReporter()
        if mask_failures_in_prod is None:
            mask_failures_in_prod = not self.settings.is_development
        self.mask_failures_in_prod = bool(mask_failures_in_prod)
        self.send_timeout = send_timeout
        self._sleep = sleep
        self.cleanup_interval = cleanup_interval
        self._cleanup_task: asyncio.Task | None = None

    @classmethod
    def from_environment(
        cls,
        environ: Mapping[str, str] | None = None,
        config_path: str | os.PathLike | None = None,
        **kwargs,
    ) -> DeliveryEngine:
        """Build an engine from the INI file and environment variables."""
        return cls(
            resolve_transport_config(environ, config_path),
            load_mailer_settings(environ, config_path),
            **kwargs,
        )

    async def __aenter__(self) -> DeliveryEngine:
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def start(self) -> None:
        """Start the pool housekeeping loop on the running event loop."""
        if self.pool is None or self._cleanup_task is not None:
            return
        self._cleanup_task = asyncio.create_task(self._cleanup_loop(), name="smtp-cleanup-loop")

    async def close(self) -> None:
        """Stop housekeeping and close the pooled SMTP connections."""
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            await asyncio.gather(self._cleanup_task, return_exceptions=True)
            self._cleanup_task = None
        if self.pool is not None:
            await self.pool.close()

    async def _cleanup_loop(self) -> None:
        """Periodically drop expired or dead idle connections from the pool."""
        while True:
            await asyncio.sleep(self.cleanup_interval)
            await self.pool.cleanup()

    @property
    def configured(self) -> bool:
        return isinstance(self.transport, TransportConfig)

    @property
    def missing_settings(self) -> tuple[str, ...]:
        if isinstance(self.transport, Unconfigured):
            return self.transport.missing
        return ()

    def describe_configuration(self) -> dict[str, Any]:
        """Return a diagnostic snapshot of the configuration without secrets."""
        info: dict[str, Any] = {
            "configured": self.configured,
            "execution_mode": self.settings.execution_mode,
            "missing": list(self.missing_settings),
            "from": self.settings.sender,
            "reply_to": self.settings.reply_to,
            "admin_recipients": len(self.settings.admin_emails),
            "max_recipients_per_message": self.settings.max_recipients_per_message,
            "retry_attempts": self.retry.max_retries,
            "retry_delay_ms": int(self.retry.base_delay * 1000),
            "mask_failures": self.mask_failures_in_prod,
        }
        if isinstance(self.transport, TransportConfig):
            info.update(
                host=self.transport.host,
                port=self.transport.port,
                implicit_tls=self.transport.use_implicit_tls,
                user_set=bool(self.transport.credentials.user),
                password_set=bool(self.transport.credentials.secret),
                max_connections=self.transport.max_connections,
                max_messages_per_connection=self.transport.max_messages_per_connection,
                rate_limit=f"{self.transport.rate_limit_per_interval}/{self.transport.rate_interval_ms}ms",
            )
        return info

    # ----------------------------------------------------------------- sending
    async def send(self, message: OutboundMessage) -> DeliveryResult:
        """Deliver ``message`` and return the terminal result. Never raises."""
        result = await self._send(message)
        self.reporter.result(message, result)
        return result

    async def _send(self, message: OutboundMessage) -> DeliveryResult:
        if not isinstance(self.transport, TransportConfig):
            return self._unconfigured_result(message)

        count = len(message.recipients)
        limit = self.settings.max_recipients_per_message
        if count == 0:
            return self._rejected("No recipients specified")
        if count > limit:
            return self._rejected(f"Too many recipients ({count}). Maximum allowed: {limit}")

        try:
            email_msg, message_id = self._build_email(message)
        except (ValueError, TypeError) as exc:
            return DeliveryResult(
                success=False,
                outcome=DeliveryOutcome.PERMANENT_FAILURE,
                error=f"Invalid message: {exc}",
                attempts_made=0,
                note="Message rejected before delivery",
            )

        attempts: list[DeliveryAttempt] = []
        attempt_number = 0
        while True:
            attempt, error = await self._attempt(email_msg, message_id, attempt_number)
            attempts.append(attempt)
            self.reporter.attempt(message, attempt)

            if attempt.outcome == DeliveryOutcome.SUCCESS:
                return DeliveryResult(
                    success=True,
                    message_id=attempt.message_id,
                    attempts_made=len(attempts),
                    outcome=DeliveryOutcome.SUCCESS,
                    note="Email sent successfully via SMTP",
                    attempts=tuple(attempts),
                )

            if error is not None and self.retry.should_retry(attempt_number, error):
                delay = self.retry.calculate_delay(attempt_number)
                self.reporter.retry(message, attempt, delay, self.retry.max_retries)
                await self._sleep(delay)
                attempt_number += 1
                continue

            return self._failure_result(attempts)

    async def _attempt(
        self, email_msg: EmailMessage, message_id: str, attempt_number: int
    ) -> tuple[DeliveryAttempt, Exception | None]:
        """Run one attempt: connection, verification (first only), rate limit, send.

        Returns:
            Tuple of (attempt record, the raised error or None).
        """
        started_at = datetime.now(timezone.utc)
        try:
            async with self.pool.connection() as smtp:
                if attempt_number == 0:
                    await self.pool.verify(smtp)
                await self.rate_limiter.acquire()
                await asyncio.wait_for(smtp.send_message(email_msg), timeout=self.send_timeout)
        except Exception as exc:
            is_temporary, smtp_code = self.retry.classify_error(exc)
            reason = str(exc) or type(exc).__name__
            if smtp_code:
                reason = f"{reason} (SMTP {smtp_code})"
            return DeliveryAttempt(
                attempt_number=attempt_number,
                started_at=started_at,
                outcome=DeliveryOutcome.TRANSIENT_FAILURE if is_temporary else DeliveryOutcome.PERMANENT_FAILURE,
                reason=reason,
            ), exc
        return DeliveryAttempt(
            attempt_number=attempt_number,
            started_at=started_at,
            outcome=DeliveryOutcome.SUCCESS,
            message_id=message_id,
        ), None

    def _build_email(self, message: OutboundMessage) -> tuple[EmailMessage, str]:
        """Build the MIME message with a text part and an HTML alternative.

        Returns:
            Tuple of (EmailMessage, Message-ID).
        """
        msg = EmailMessage()
        msg["From"] = self.settings.sender
        if self.settings.reply_to:
            msg["Reply-To"] = self.settings.reply_to
        msg["To"] = ", ".join(message.recipients)
        msg["Subject"] = message.subject
        domain = self.settings.from_email.rpartition("@")[2] or None
        message_id = make_msgid(domain=domain)
        msg["Message-ID"] = message_id
        for header, value in DEFAULT_HEADERS.items():
            msg[header] = value
        msg.set_content(message.text_body or html_to_text(message.html_body))
        msg.add_alternative(message.html_body, subtype="html")
        return msg, message_id

    # ----------------------------------------------------------------- results
    def _unconfigured_result(self, message: OutboundMessage) -> DeliveryResult:
        if self.settings.is_development:
            logger.info(
                "Development mode: email would be sent to %s (subject=%r)",
                ", ".join(message.recipients),
                message.subject,
            )
            return DeliveryResult(
                success=True,
                message_id=f"dev-{_epoch_ms()}",
                attempts_made=0,
                outcome=DeliveryOutcome.SUCCESS,
                note="Email sent in development mode (SMTP not configured)",
            )
        error = TransportNotConfiguredError(self.missing_settings)
        return DeliveryResult(
            success=False,
            error=str(error),
            attempts_made=0,
            outcome=DeliveryOutcome.CONFIGURATION_MISSING,
            note="SMTP transport not configured",
        )

    def _rejected(self, error: str) -> DeliveryResult:
        return DeliveryResult(
            success=False,
            error=error,
            attempts_made=0,
            outcome=DeliveryOutcome.OVERSIZED_RECIPIENT_LIST,
            note="Message rejected before delivery",
        )

    def _failure_result(self, attempts: list[DeliveryAttempt]) -> DeliveryResult:
        last = attempts[-1]
        error = last.reason or "Unknown SMTP error"
        if last.outcome == DeliveryOutcome.TRANSIENT_FAILURE:
            error = f"Max retries ({self.retry.max_retries}) exceeded: {error}"
        return DeliveryResult(
            success=self.mask_failures_in_prod,
            message_id=f"failed-{_epoch_ms()}",
            error=error,
            attempts_made=len(attempts),
            outcome=last.outcome,
            masked=self.mask_failures_in_prod,
            note="Email delivery failed after all retry attempts",
            attempts=tuple(attempts),
        )
