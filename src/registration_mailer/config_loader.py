# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Configuration loader for the SMTP transport and mailer settings.

Settings are read from an optional INI file (``MAILER_CONFIG``, default
``mailer.ini``) with environment variables as fallbacks. A value present in
the file wins over the environment.

Example:
    Configuration file format (mailer.ini)::

        [smtp]
        host = smtp.example.com
        port = 465
        secure = true
        user = mailer@example.com
        password = secret
        max_connections = 5
        max_messages = 100
        rate_delta_ms = 1000
        rate_limit = 5

        [email]
        from_name = Youth Registration
        reply_to = office@example.com
        admin_emails = admin@example.com, desk@example.com
        max_recipients = 50

        [delivery]
        retry_attempts = 3
        retry_delay_ms = 5000

        [app]
        env = production
        base_url = https://register.example.com

    Environment variables::

        SMTP_HOST, SMTP_PORT, SMTP_SECURE, SMTP_USER, SMTP_PASS,
        SMTP_MAX_CONNECTIONS, SMTP_MAX_MESSAGES, SMTP_RATE_DELTA_MS,
        SMTP_RATE_LIMIT, EMAIL_FROM_NAME, EMAIL_FROM_ADDRESS, EMAIL_REPLY_TO,
        ADMIN_EMAILS, MAX_RECIPIENTS_PER_EMAIL, EMAIL_RETRY_ATTEMPTS,
        EMAIL_RETRY_DELAY, APP_BASE_URL, MAILER_ENV

    Resolving the transport::

        transport = resolve_transport_config()
        if isinstance(transport, Unconfigured):
            print("missing:", transport.missing)
"""

from __future__ import annotations

import configparser
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from email.utils import formataddr
from pathlib import Path

from .errors import ConfigurationError
from .logger import get_logger

EXECUTION_MODE_DEVELOPMENT = "development"
EXECUTION_MODE_PRODUCTION = "production"

DEFAULT_CONFIG_PATH = "mailer.ini"
DEFAULT_SMTP_PORT = 587
DEFAULT_MAX_RECIPIENTS = 50
DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_RETRY_DELAY_MS = 5000

logger = get_logger("ConfigLoader")


@dataclass(frozen=True)
class Credentials:
    """SMTP login credentials. The secret is kept out of ``repr``."""

    user: str
    secret: str = field(repr=False)


@dataclass(frozen=True)
class TransportConfig:
    """Resolved connection descriptor for the SMTP transport."""

    host: str
    credentials: Credentials
    port: int = DEFAULT_SMTP_PORT
    use_implicit_tls: bool = False
    """Connect with TLS from the first byte (port 465 style)."""

    max_connections: int = 5
    """Upper bound on simultaneously open SMTP connections."""

    max_messages_per_connection: int = 100
    """Connections are closed after sending this many messages."""

    rate_interval_ms: int = 1000
    """Length of the rate limiting window."""

    rate_limit_per_interval: int = 5
    """Sends permitted per window across the whole process."""

    def __post_init__(self) -> None:
        for name in (
            "port",
            "max_connections",
            "max_messages_per_connection",
            "rate_interval_ms",
            "rate_limit_per_interval",
        ):
            if int(getattr(self, name)) <= 0:
                raise ConfigurationError(f"{name} must be a positive integer", setting=name)


@dataclass(frozen=True)
class Unconfigured:
    """Marker returned when the transport cannot be used.

    Attributes:
        missing: Names of the settings that are absent or invalid.
    """

    missing: tuple[str, ...]


@dataclass(frozen=True)
class MailerSettings:
    """Sender identity and delivery policy shared by all outgoing mail."""

    from_name: str = "Youth Registration System"
    from_email: str = "noreply@localhost"
    reply_to: str | None = None
    admin_emails: tuple[str, ...] = ()
    max_recipients_per_message: int = DEFAULT_MAX_RECIPIENTS
    retry_attempts: int = DEFAULT_RETRY_ATTEMPTS
    retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS
    base_url: str = "http://localhost:3000"
    execution_mode: str = EXECUTION_MODE_PRODUCTION

    @property
    def is_development(self) -> bool:
        return self.execution_mode == EXECUTION_MODE_DEVELOPMENT

    @property
    def sender(self) -> str:
        """The formatted ``From`` header value."""
        return formataddr((self.from_name, self.from_email))


class SettingsReader:
    """Look up a setting in the INI file, falling back to the environment."""

    def __init__(self, config_path: str | os.PathLike | None = None, environ: Mapping[str, str] | None = None):
        self.environ = os.environ if environ is None else environ
        path = config_path or self.environ.get("MAILER_CONFIG", DEFAULT_CONFIG_PATH)
        self.config_path = Path(path)
        # Secrets may contain "%", so values are read verbatim
        self.parser = configparser.ConfigParser(interpolation=None)
        if self.config_path.exists():
            try:
                self.parser.read(self.config_path)
            except configparser.Error as exc:
                raise ConfigurationError(f"Invalid configuration file {self.config_path}: {exc}") from exc
            logger.debug("Loaded mailer configuration from %s", self.config_path)

    def get(self, section: str, option: str, env: str | None = None) -> str | None:
        if self.parser.has_option(section, option):
            value = self.parser.get(section, option)
        elif env is not None:
            value = self.environ.get(env)
        else:
            value = None
        if value is None:
            return None
        value = value.strip()
        return value or None

    def get_int(self, section: str, option: str, env: str | None = None, default: int | None = None) -> int | None:
        value = self.get(section, option, env)
        if value is None:
            return default
        try:
            return int(value)
        except ValueError as exc:
            raise ConfigurationError(
                f"Invalid integer for {env or option}: {value!r}", setting=env or option
            ) from exc

    def get_bool(self, section: str, option: str, env: str | None = None, default: bool = False) -> bool:
        value = self.get(section, option, env)
        if value is None:
            return default
        normalized = value.lower()
        if normalized in {"1", "true", "yes", "on"}:
            return True
        if normalized in {"0", "false", "no", "off"}:
            return False
        return default

    def get_list(self, section: str, option: str, env: str | None = None) -> tuple[str, ...]:
        value = self.get(section, option, env)
        if value is None:
            return ()
        return tuple(part.strip() for part in value.split(",") if part.strip())


def current_execution_mode(
    environ: Mapping[str, str] | None = None,
    config_path: str | os.PathLike | None = None,
) -> str:
    """Return the execution mode (``development``, ``production``, ...)."""
    reader = SettingsReader(config_path, environ)
    return (reader.get("app", "env", "MAILER_ENV") or EXECUTION_MODE_PRODUCTION).lower()


def resolve_transport_config(
    environ: Mapping[str, str] | None = None,
    config_path: str | os.PathLike | None = None,
) -> TransportConfig | Unconfigured:
    """Resolve the SMTP transport descriptor.

    Returns:
        A :class:`TransportConfig`, or :class:`Unconfigured` naming the
        missing settings when the host or either credential is absent.

    Raises:
        ConfigurationError: If a numeric setting is present but invalid.
    """
    reader = SettingsReader(config_path, environ)
    host = reader.get("smtp", "host", "SMTP_HOST")
    user = reader.get("smtp", "user", "SMTP_USER")
    secret = reader.get("smtp", "password", "SMTP_PASS")

    missing = tuple(
        name
        for name, value in (("SMTP_HOST", host), ("SMTP_USER", user), ("SMTP_PASS", secret))
        if not value
    )
    if missing:
        return Unconfigured(missing=missing)

    port = reader.get_int("smtp", "port", "SMTP_PORT", DEFAULT_SMTP_PORT)
    # Port 465 always means implicit TLS
    use_implicit_tls = reader.get_bool("smtp", "secure", "SMTP_SECURE", False) or port == 465
    return TransportConfig(
        host=host,
        port=port,
        use_implicit_tls=use_implicit_tls,
        credentials=Credentials(user=user, secret=secret),
        max_connections=reader.get_int("smtp", "max_connections", "SMTP_MAX_CONNECTIONS", 5),
        max_messages_per_connection=reader.get_int("smtp", "max_messages", "SMTP_MAX_MESSAGES", 100),
        rate_interval_ms=reader.get_int("smtp", "rate_delta_ms", "SMTP_RATE_DELTA_MS", 1000),
        rate_limit_per_interval=reader.get_int("smtp", "rate_limit", "SMTP_RATE_LIMIT", 5),
    )


def load_mailer_settings(
    environ: Mapping[str, str] | None = None,
    config_path: str | os.PathLike | None = None,
) -> MailerSettings:
    """Load sender identity, recipients and retry policy."""
    reader = SettingsReader(config_path, environ)
    smtp_user = reader.get("smtp", "user", "SMTP_USER")
    defaults = MailerSettings()
    return MailerSettings(
        from_name=reader.get("email", "from_name", "EMAIL_FROM_NAME") or defaults.from_name,
        from_email=reader.get("email", "from_address", "EMAIL_FROM_ADDRESS") or smtp_user or defaults.from_email,
        reply_to=reader.get("email", "reply_to", "EMAIL_REPLY_TO") or smtp_user,
        admin_emails=reader.get_list("email", "admin_emails", "ADMIN_EMAILS"),
        max_recipients_per_message=reader.get_int(
            "email", "max_recipients", "MAX_RECIPIENTS_PER_EMAIL", DEFAULT_MAX_RECIPIENTS
        ),
        retry_attempts=max(0, reader.get_int("delivery", "retry_attempts", "EMAIL_RETRY_ATTEMPTS", DEFAULT_RETRY_ATTEMPTS)),
        retry_delay_ms=max(0, reader.get_int("delivery", "retry_delay_ms", "EMAIL_RETRY_DELAY", DEFAULT_RETRY_DELAY_MS)),
        base_url=(reader.get("app", "base_url", "APP_BASE_URL") or defaults.base_url).rstrip("/"),
        execution_mode=(reader.get("app", "env", "MAILER_ENV") or EXECUTION_MODE_PRODUCTION).lower(),
    )


__all__ = [
    "Credentials",
    "EXECUTION_MODE_DEVELOPMENT",
    "EXECUTION_MODE_PRODUCTION",
    "MailerSettings",
    "SettingsReader",
    "TransportConfig",
    "Unconfigured",
    "current_execution_mode",
    "load_mailer_settings",
    "resolve_transport_config",
]
