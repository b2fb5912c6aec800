"""Logging utilities for the registration mailer.

Modules obtain their logger through :func:`get_logger`; handlers, level and
format are installed once by the entry point through
:func:`configure_logging`, which reads ``MAILER_LOG_LEVEL`` from the
environment.

Example:
    Typical usage in a module::

        from registration_mailer.logger import get_logger

        logger = get_logger("DeliveryEngine")
        logger.info("Delivery succeeded for %s", message_id)
"""

import logging
import os

DEFAULT_LOGGER_NAME = "RegistrationMailer"
LOG_FORMAT = "[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def get_logger(name: str = DEFAULT_LOGGER_NAME) -> logging.Logger:
    """Retrieve a logger instance.

    This function returns a standard library logger with the specified name.
    It does not configure handlers or formatters; that responsibility lies
    with :func:`configure_logging` called from the entry point.

    Args:
        name: The logger name. Defaults to "RegistrationMailer".

    Returns:
        A ``logging.Logger`` instance bound to the given name.
    """
    return logging.getLogger(name)


def configure_logging(level: str | None = None) -> None:
    """Install the root handler for command line and service entry points.

    Args:
        level: Level name such as ``"DEBUG"``. Falls back to the
            ``MAILER_LOG_LEVEL`` environment variable, then ``INFO``.
    """
    level_name = (level or os.getenv("MAILER_LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
        force=True,  # replace handlers installed by earlier calls
    )
