from registration_mailer.prometheus import NotifierMetrics


def test_notifier_metrics_counters():
    metrics = NotifierMetrics()

    metrics.inc_sent()
    metrics.inc_failed("permanent_failure")
    metrics.inc_failed("")
    metrics.inc_masked()
    metrics.inc_retry()
    metrics.inc_task("confirmation_email", "failed")

    output = metrics.generate_latest()
    assert b"regmail_sent_total 1.0" in output
    assert b'regmail_failed_total{outcome="permanent_failure"} 1.0' in output
    assert b'regmail_failed_total{outcome="unknown"} 1.0' in output
    assert b"regmail_masked_failures_total 1.0" in output
    assert b"regmail_retries_total 1.0" in output
    assert metrics.registry.get_sample_value(
        "regmail_tasks_total", {"task": "confirmation_email", "state": "failed"}
    ) == 1.0


def test_registries_are_independent():
    first = NotifierMetrics()
    second = NotifierMetrics()

    first.inc_sent()

    assert first.registry.get_sample_value("regmail_sent_total") == 1.0
    assert second.registry.get_sample_value("regmail_sent_total") == 0.0
