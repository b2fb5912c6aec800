# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Prometheus metrics for notification delivery.

All metrics use the ``regmail_`` prefix.

Metrics exposed:
    - ``regmail_sent_total``: Messages accepted by the transport.
    - ``regmail_failed_total``: Messages not delivered, by outcome.
    - ``regmail_masked_failures_total``: Failures reported to callers as success.
    - ``regmail_retries_total``: Retries scheduled after transient failures.
    - ``regmail_tasks_total``: Fan-out task outcomes, by task and state.

Example:
    Exporting the metrics::

        metrics = NotifierMetrics()
        payload = metrics.generate_latest()
"""

from prometheus_client import CollectorRegistry, Counter, generate_latest


class NotifierMetrics:
    """Prometheus metrics collector for the registration mailer.

    Attributes:
        registry: The Prometheus CollectorRegistry holding all metrics.
        sent: Counter of delivered messages.
        failed: Counter of undelivered messages labelled by outcome.
        masked: Counter of failures reported as success.
        retries: Counter of retries after transient failures.
        tasks: Counter of fan-out task outcomes labelled by task and state.
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """Initialize metrics with an optional custom registry.

        Args:
            registry: Optional Prometheus CollectorRegistry. If not provided,
                a new registry is created.
        """
        self.registry = registry or CollectorRegistry()
        self.sent = Counter(
            "regmail_sent_total",
            "Total delivered emails",
            registry=self.registry,
        )
        self.failed = Counter(
            "regmail_failed_total",
            "Total undelivered emails",
            ["outcome"],
            registry=self.registry,
        )
        self.masked = Counter(
            "regmail_masked_failures_total",
            "Total delivery failures reported to callers as success",
            registry=self.registry,
        )
        self.retries = Counter(
            "regmail_retries_total",
            "Total retries after transient failures",
            registry=self.registry,
        )
        self.tasks = Counter(
            "regmail_tasks_total",
            "Total fan-out task outcomes",
            ["task", "state"],
            registry=self.registry,
        )

    def inc_sent(self) -> None:
        self.sent.inc()

    def inc_failed(self, outcome: str) -> None:
        self.failed.labels(outcome=outcome or "unknown").inc()

    def inc_masked(self) -> None:
        self.masked.inc()

    def inc_retry(self) -> None:
        self.retries.inc()

    def inc_task(self, task: str, state: str) -> None:
        self.tasks.labels(task=task, state=state).inc()

    def generate_latest(self) -> bytes:
        """Export all metrics in Prometheus text exposition format."""
        return generate_latest(self.registry)
