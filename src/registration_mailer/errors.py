# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Exceptions raised between layers of the registration mailer.

The public entry points (:meth:`DeliveryEngine.send` and the fan-out
runners) never raise these; they are converted into result objects at the
boundary.
"""


class MailerError(Exception):
    """Base class for registration mailer errors."""


class ConfigurationError(MailerError):
    """Raised when a configuration value is present but cannot be parsed."""

    def __init__(self, message: str, *, setting: str | None = None):
        super().__init__(message)
        self.setting = setting
        self.code = "invalid_configuration"


class TransportNotConfiguredError(MailerError):
    """Raised when the SMTP transport lacks required settings."""

    def __init__(self, missing: tuple[str, ...] | list[str] = ()):
        self.missing = tuple(missing)
        names = ", ".join(self.missing) or "SMTP settings"
        super().__init__(
            f"SMTP configuration missing: {names}. "
            "Configure the SMTP settings before sending email."
        )
        self.code = "configuration_missing"
