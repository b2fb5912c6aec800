"""Tests for the fan-out orchestrator and the background dispatcher."""

import asyncio
import logging

import pytest

from registration_mailer.fanout import (
    BackgroundDispatcher,
    FanOutOrchestrator,
    FanOutTask,
    TaskState,
    outcome_error,
)
from registration_mailer.models import DeliveryOutcome, DeliveryResult
from registration_mailer.prometheus import NotifierMetrics
from registration_mailer.reporting import OutcomeReporter


@pytest.fixture
def metrics():
    return NotifierMetrics()


@pytest.fixture
def orchestrator(metrics):
    return FanOutOrchestrator(reporter=OutcomeReporter(metrics=metrics))


def task_count(metrics, task, state):
    return metrics.registry.get_sample_value("regmail_tasks_total", {"task": task, "state": state}) or 0.0


# --- FanOutOrchestrator ---

@pytest.mark.asyncio
async def test_tasks_run_concurrently(orchestrator):
    first_started = asyncio.Event()
    second_started = asyncio.Event()

    async def first():
        first_started.set()
        await second_started.wait()
        return "first"

    async def second():
        second_started.set()
        await first_started.wait()
        return "second"

    report = await asyncio.wait_for(
        orchestrator.run("evt-1", [FanOutTask("first", first), FanOutTask("second", second)]),
        timeout=1.0,
    )

    assert report.succeeded == ["first", "second"]
    assert report["first"].value == "first"


@pytest.mark.asyncio
async def test_failure_does_not_affect_siblings(orchestrator, metrics):
    async def boom():
        raise RuntimeError("artifact service down")

    async def slow_ok():
        await asyncio.sleep(0.01)
        return {"success": True}

    report = await orchestrator.run("evt-2", [FanOutTask("boom", boom), FanOutTask("slow", slow_ok)])

    assert report.settled is True
    assert report.failed == ["boom"]
    assert report.succeeded == ["slow"]
    assert report["boom"].state == TaskState.FAILED
    assert report["boom"].error == "RuntimeError: artifact service down"
    assert report["slow"].duration > 0
    assert task_count(metrics, "boom", "failed") == 1.0
    assert task_count(metrics, "slow", "succeeded") == 1.0


@pytest.mark.asyncio
async def test_all_failing_tasks_still_settle(orchestrator):
    async def fail_a():
        raise ValueError("a")

    async def fail_b():
        raise KeyError("b")

    report = await orchestrator.run("evt-3", [FanOutTask("a", fail_a), FanOutTask("b", fail_b)])

    assert report.settled is True
    assert sorted(report.failed) == ["a", "b"]
    assert report.succeeded == []


@pytest.mark.asyncio
async def test_returned_failure_marks_task_failed(orchestrator):
    masked = DeliveryResult(
        success=True,
        error="Max retries (3) exceeded: Connection lost",
        outcome=DeliveryOutcome.TRANSIENT_FAILURE,
        masked=True,
        attempts_made=4,
    )

    async def masked_send():
        return masked

    async def refused():
        return {"success": False, "error": "refused"}

    report = await orchestrator.run(
        "evt-4", [FanOutTask("masked", masked_send), FanOutTask("refused", refused)]
    )

    assert report["masked"].failed
    assert report["masked"].error.startswith("Max retries")
    assert report["masked"].value is masked
    assert report["refused"].error == "refused"


@pytest.mark.asyncio
async def test_duplicate_task_names_rejected(orchestrator):
    calls = []

    async def action():
        calls.append(1)

    with pytest.raises(ValueError):
        await orchestrator.run("evt-5", [FanOutTask("same", action), FanOutTask("same", action)])
    assert calls == []


@pytest.mark.asyncio
async def test_empty_task_list(orchestrator):
    report = await orchestrator.run("evt-6", [])

    assert report.settled is True
    assert report.outcomes == {}


@pytest.mark.asyncio
async def test_report_is_logged(orchestrator, caplog):
    async def boom():
        raise RuntimeError("nope")

    with caplog.at_level(logging.INFO, logger="OutcomeReporter"):
        await orchestrator.run("evt-7", [FanOutTask("boom", boom)])

    messages = [record.getMessage() for record in caplog.records]
    assert any("task=boom" in m and "RuntimeError: nope" in m for m in messages)
    assert any("event=evt-7 succeeded=0 failed=1" in m for m in messages)


def test_outcome_error():
    assert outcome_error(None) is None
    assert outcome_error("anything") is None
    assert outcome_error({"success": True}) is None
    assert outcome_error({"success": False}) == "task reported failure"
    assert outcome_error({"success": True, "error": "masked"}) == "masked"


# --- BackgroundDispatcher ---

@pytest.mark.asyncio
async def test_submit_returns_before_job_starts():
    events = []

    async def job():
        events.append("job")

    async with BackgroundDispatcher(workers=1) as dispatcher:
        dispatcher.submit(job, name="job")
        events.append("response")
        await dispatcher.join()

    assert events == ["response", "job"]


@pytest.mark.asyncio
async def test_job_exception_is_logged_and_worker_survives(caplog):
    events = []

    async def broken():
        raise RuntimeError("job failed")

    async def healthy():
        events.append("healthy")

    dispatcher = BackgroundDispatcher(workers=1)
    await dispatcher.start()
    with caplog.at_level(logging.ERROR, logger="BackgroundDispatcher"):
        dispatcher.submit(broken, name="broken")
        dispatcher.submit(healthy, name="healthy")
        await dispatcher.join()
    await dispatcher.stop()

    assert events == ["healthy"]
    assert any("broken" in record.getMessage() for record in caplog.records)


@pytest.mark.asyncio
async def test_submit_requires_start():
    dispatcher = BackgroundDispatcher()

    async def job():
        pass

    with pytest.raises(RuntimeError):
        dispatcher.submit(job)


@pytest.mark.asyncio
async def test_stop_drains_queue():
    done = []

    async def job(n):
        await asyncio.sleep(0)
        done.append(n)

    dispatcher = BackgroundDispatcher(workers=2)
    await dispatcher.start()
    for n in range(5):
        dispatcher.submit(lambda n=n: job(n), name=f"job-{n}")
    assert dispatcher.pending == 5

    await dispatcher.stop()

    assert sorted(done) == [0, 1, 2, 3, 4]
    assert dispatcher.running is False
