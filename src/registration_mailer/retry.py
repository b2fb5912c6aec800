# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Retry policy for SMTP delivery.

Errors are classified as temporary (network, timeout, SMTP 4xx) or
permanent (authentication, refused addresses, TLS certificate problems,
SMTP 5xx and anything unrecognised). Only temporary errors are retried,
with a linear backoff: attempt ``n`` waits ``base_delay * (n + 1)``.
"""

from __future__ import annotations

import asyncio
import ssl

import aiosmtplib

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY = 5.0

_PERMANENT_TYPES: tuple[type[BaseException], ...] = (
    aiosmtplib.SMTPAuthenticationError,
    aiosmtplib.SMTPRecipientsRefused,
    aiosmtplib.SMTPRecipientRefused,
    aiosmtplib.SMTPSenderRefused,
    aiosmtplib.SMTPNotSupported,
    ssl.SSLError,
    ssl.CertificateError,
)

_TEMPORARY_TYPES: tuple[type[BaseException], ...] = (
    aiosmtplib.SMTPServerDisconnected,
    aiosmtplib.SMTPConnectError,
    aiosmtplib.SMTPTimeoutError,
    asyncio.TimeoutError,
    TimeoutError,
    ConnectionError,
    OSError,
)

_PERMANENT_PATTERNS = (
    "wrong_version_number",  # TLS/STARTTLS mismatch
    "certificate verify failed",
    "ssl handshake",
    "certificate has expired",
    "self signed certificate",
    "authenticat",
    "535",  # credentials invalid
    "534",  # mechanism too weak
    "530",  # authentication required
    "550",  # mailbox unavailable
    "553",  # mailbox name not allowed
    "invalid address",
    "malformed",
)

_TEMPORARY_PATTERNS = (
    "421",  # service not available
    "450",  # mailbox busy
    "451",  # local error in processing
    "452",  # insufficient storage
    "timeout",
    "timed out",
    "etimedout",
    "econnreset",
    "connection",
    "network",
    "temporarily unavailable",
    "try again",
    "throttl",
)


def smtp_code_of(exc: BaseException) -> int | None:
    """Return the SMTP reply code carried by ``exc``, if any."""
    if isinstance(exc, aiosmtplib.SMTPException):
        code = getattr(exc, "smtp_code", None) or getattr(exc, "code", None)
        if isinstance(code, int):
            return code
    return None


def classify_error(exc: BaseException) -> tuple[bool, int | None]:
    """Classify a delivery error.

    Returns:
        tuple: (is_temporary, smtp_code)
            - is_temporary: True if the error should trigger a retry
            - smtp_code: The SMTP reply code if available, None otherwise
    """
    smtp_code = smtp_code_of(exc)

    if isinstance(exc, _PERMANENT_TYPES):
        return False, smtp_code
    if isinstance(exc, _TEMPORARY_TYPES):
        return True, smtp_code

    if smtp_code:
        if 400 <= smtp_code < 500:
            return True, smtp_code
        if 500 <= smtp_code < 600:
            return False, smtp_code

    error_msg = str(exc).lower()
    for pattern in _PERMANENT_PATTERNS:
        if pattern in error_msg:
            return False, smtp_code
    for pattern in _TEMPORARY_PATTERNS:
        if pattern in error_msg:
            return True, smtp_code

    # Unrecognised errors are not retried
    return False, smtp_code


class RetryStrategy:
    """Decides whether and when a failed delivery is attempted again.

    Attributes:
        max_retries: Retries allowed after the first attempt.
        base_delay: Delay unit in seconds for the linear backoff.
    """

    def __init__(self, max_retries: int = DEFAULT_MAX_RETRIES, base_delay: float = DEFAULT_BASE_DELAY):
        self.max_retries = max(0, int(max_retries))
        self.base_delay = max(0.0, float(base_delay))

    def classify_error(self, exc: BaseException) -> tuple[bool, int | None]:
        return classify_error(exc)

    def calculate_delay(self, attempt_number: int) -> float:
        """Seconds to wait after failed attempt ``attempt_number`` (0-based)."""
        return self.base_delay * (attempt_number + 1)

    def should_retry(self, attempt_number: int, exc: BaseException) -> bool:
        is_temporary, _ = self.classify_error(exc)
        return is_temporary and attempt_number < self.max_retries
