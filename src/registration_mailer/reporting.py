# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Outcome reporting for deliveries and fan-out runs.

Delivery failures never reach the user who triggered them; these log lines
and counters are the only operational signal. Every line carries
``key=value`` fields so that log processors can index them.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .logger import get_logger
from .models import DeliveryAttempt, DeliveryOutcome, DeliveryResult, OutboundMessage
from .prometheus import NotifierMetrics

if TYPE_CHECKING:
    from .fanout import FanOutReport


def _recipient_summary(message: OutboundMessage) -> str:
    recipients = message.recipients
    if len(recipients) <= 3:
        return ",".join(recipients) or "-"
    return f"{','.join(recipients[:3])},+{len(recipients) - 3}"


class OutcomeReporter:
    """Logs attempt, result and fan-out outcomes and updates the metrics.

    Attributes:
        logger: Destination logger.
        metrics: Prometheus counters.
    """

    def __init__(self, logger: logging.Logger | None = None, metrics: NotifierMetrics | None = None):
        self.logger = logger or get_logger("OutcomeReporter")
        self.metrics = metrics or NotifierMetrics()

    def attempt(self, message: OutboundMessage, attempt: DeliveryAttempt) -> None:
        self.logger.debug(
            "Delivery attempt attempt=%d outcome=%s subject=%r recipients=%s reason=%s",
            attempt.attempt_number,
            attempt.outcome.value,
            message.subject,
            _recipient_summary(message),
            attempt.reason or "-",
        )

    def retry(self, message: OutboundMessage, attempt: DeliveryAttempt, delay: float, max_retries: int) -> None:
        self.metrics.inc_retry()
        self.logger.warning(
            "Temporary delivery error attempt=%d/%d subject=%r recipients=%s: %s - retrying in %.1fs",
            attempt.attempt_number + 1,
            max_retries + 1,
            message.subject,
            _recipient_summary(message),
            attempt.reason,
            delay,
        )

    def result(self, message: OutboundMessage, result: DeliveryResult) -> None:
        """Log the terminal result of one message."""
        subject = message.subject
        recipients = _recipient_summary(message)

        match result.outcome:
            case DeliveryOutcome.SUCCESS:
                self.metrics.inc_sent()
                self.logger.info(
                    "Delivery succeeded message_id=%s attempts=%d subject=%r recipients=%s",
                    result.message_id,
                    result.attempts_made,
                    subject,
                    recipients,
                )
            case DeliveryOutcome.CONFIGURATION_MISSING:
                self.metrics.inc_failed(result.outcome.value)
                self.logger.error("Delivery skipped subject=%r recipients=%s: %s", subject, recipients, result.error)
            case _:
                self.metrics.inc_failed(result.outcome.value)
                if result.masked:
                    self.metrics.inc_masked()
                self.logger.error(
                    "Delivery failed outcome=%s attempts=%d masked=%s message_id=%s subject=%r recipients=%d: %s",
                    result.outcome.value,
                    result.attempts_made,
                    result.masked,
                    result.message_id or "-",
                    subject,
                    len(message.recipients),
                    result.error,
                )

    def report(self, report: FanOutReport) -> None:
        """Log the aggregate outcome of a fan-out run."""
        for outcome in report.outcomes.values():
            self.metrics.inc_task(outcome.name, outcome.state.value)
            if outcome.failed:
                self.logger.error(
                    "Background task failed event=%s task=%s duration=%.3fs: %s",
                    report.event_id,
                    outcome.name,
                    outcome.duration,
                    outcome.error,
                )
        self.logger.info(
            "Background tasks completed event=%s succeeded=%d failed=%d",
            report.event_id,
            len(report.succeeded),
            len(report.failed),
        )
