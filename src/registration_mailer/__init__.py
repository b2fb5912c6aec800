"""Outbound notification delivery for the registration application.

This package provides the notification pipeline run after a registration
is committed:

- Resilient single-message delivery over a pooled, rate limited SMTP
  transport with linear-backoff retry
- Pure content builders for the registrant confirmation and admin alert
- A failure-isolated fan-out of the registration follow-up tasks, run on an
  in-process background dispatcher
- Structured outcome logging and Prometheus counters

Example:
    Wiring the pipeline at application start-up::

        from registration_mailer import (
            BackgroundDispatcher,
            DeliveryEngine,
            RegistrationSideEffects,
        )

        engine = DeliveryEngine.from_environment()
        dispatcher = BackgroundDispatcher()
        await dispatcher.start()
        side_effects = RegistrationSideEffects(
            engine, generate_qr_code, create_notification, dispatcher=dispatcher
        )

        # after the registration row is committed and the response is built
        side_effects.dispatch(registration)
"""

from .config_loader import (
    Credentials,
    MailerSettings,
    TransportConfig,
    Unconfigured,
    current_execution_mode,
    load_mailer_settings,
    resolve_transport_config,
)
from .delivery import DeliveryEngine
from .fanout import BackgroundDispatcher, FanOutOrchestrator, FanOutReport, FanOutTask, TaskOutcome, TaskState
from .models import (
    ArtifactResult,
    DeliveryAttempt,
    DeliveryOutcome,
    DeliveryResult,
    OutboundMessage,
    RegistrationRecord,
    RenderedContent,
)
from .registration import RegistrationSideEffects

__all__ = [
    "ArtifactResult",
    "BackgroundDispatcher",
    "Credentials",
    "DeliveryAttempt",
    "DeliveryEngine",
    "DeliveryOutcome",
    "DeliveryResult",
    "FanOutOrchestrator",
    "FanOutReport",
    "FanOutTask",
    "MailerSettings",
    "OutboundMessage",
    "RegistrationRecord",
    "RegistrationSideEffects",
    "RenderedContent",
    "TaskOutcome",
    "TaskState",
    "TransportConfig",
    "Unconfigured",
    "current_execution_mode",
    "load_mailer_settings",
    "resolve_transport_config",
]
