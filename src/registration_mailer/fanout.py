# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Failure-isolated fan-out of independent follow-up tasks.

:class:`FanOutOrchestrator` runs a set of named tasks concurrently, waits
for all of them and returns a :class:`FanOutReport` with one settled outcome
per task. A task that raises, or that returns an outcome with
``success=False`` or an ``error``, is recorded as failed; it never cancels
or delays its siblings and never propagates to the caller.

:class:`BackgroundDispatcher` is the in-process queue and worker pool that
runs such jobs after the triggering request has been answered.
:meth:`BackgroundDispatcher.submit` only enqueues, so a job cannot start
before the submitting coroutine yields control.

Example:
    Running follow-up tasks in the background::

        dispatcher = BackgroundDispatcher()
        await dispatcher.start()

        orchestrator = FanOutOrchestrator()
        dispatcher.submit(
            lambda: orchestrator.run("evt-1", [FanOutTask("audit", write_audit)]),
            name="evt-1",
        )

        await dispatcher.stop()
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .logger import get_logger
from .reporting import OutcomeReporter


class TaskState(str, Enum):
    """Lifecycle of a fan-out task: pending, running, then one terminal state."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class FanOutTask:
    """A named, independent unit of follow-up work."""

    name: str
    action: Callable[[], Awaitable[Any]]


@dataclass
class TaskOutcome:
    """Settled state of one task within a run."""

    name: str
    state: TaskState = TaskState.PENDING
    value: Any = None
    error: str | None = None
    duration: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.state == TaskState.SUCCEEDED

    @property
    def failed(self) -> bool:
        return self.state == TaskState.FAILED


@dataclass
class FanOutReport:
    """Per-task outcomes of one run. Informational only."""

    event_id: str
    outcomes: dict[str, TaskOutcome] = field(default_factory=dict)

    @property
    def succeeded(self) -> list[str]:
        return [name for name, outcome in self.outcomes.items() if outcome.succeeded]

    @property
    def failed(self) -> list[str]:
        return [name for name, outcome in self.outcomes.items() if outcome.failed]

    @property
    def settled(self) -> bool:
        return all(outcome.succeeded or outcome.failed for outcome in self.outcomes.values())

    def __getitem__(self, name: str) -> TaskOutcome:
        return self.outcomes[name]


def outcome_error(value: Any) -> str | None:
    """Return the failure described by a task's return value, if any.

    Objects and mappings exposing ``success`` and ``error`` (such as
    :class:`~registration_mailer.models.DeliveryResult`) are inspected; any
    other value counts as success.
    """
    if value is None:
        return None
    if isinstance(value, Mapping):
        success = value.get("success", True)
        error = value.get("error")
    else:
        success = getattr(value, "success", True)
        error = getattr(value, "error", None)
    if success is False:
        return str(error) if error else "task reported failure"
    if error:
        return str(error)
    return None


class FanOutOrchestrator:
    """Runs tasks concurrently and collects their outcomes.

    Attributes:
        reporter: Receives the aggregate report for logging and metrics.
        logger: Logger for per-task diagnostics.
    """

    def __init__(self, reporter: OutcomeReporter | None = None, logger: logging.Logger | None = None):
        self.reporter = reporter or OutcomeReporter()
        self.logger = logger or get_logger("FanOutOrchestrator")

    async def run(self, event_id: str, tasks: Iterable[FanOutTask]) -> FanOutReport:
        """Run ``tasks`` to completion and return their report.

        Raises:
            ValueError: If two tasks share a name. Nothing is run in that case.
        """
        tasks = list(tasks)
        names = [task.name for task in tasks]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate task names: {names}")

        report = FanOutReport(event_id=event_id, outcomes={name: TaskOutcome(name) for name in names})
        await asyncio.gather(*(self._run_task(event_id, task, report.outcomes[task.name]) for task in tasks))
        self.reporter.report(report)
        return report

    async def _run_task(self, event_id: str, task: FanOutTask, outcome: TaskOutcome) -> None:
        outcome.state = TaskState.RUNNING
        started = time.monotonic()
        try:
            value = await task.action()
        except Exception as exc:
            outcome.state = TaskState.FAILED
            outcome.error = f"{type(exc).__name__}: {exc}"
            self.logger.debug("Task %s for event %s raised", task.name, event_id, exc_info=True)
        else:
            outcome.value = value
            error = outcome_error(value)
            if error:
                outcome.state = TaskState.FAILED
                outcome.error = error
            else:
                outcome.state = TaskState.SUCCEEDED
        finally:
            outcome.duration = time.monotonic() - started


Job = Callable[[], Awaitable[Any]]


class BackgroundDispatcher:
    """In-process job queue drained by a fixed number of worker tasks.

    Attributes:
        workers: Number of worker tasks.
        logger: Logger for job failures.
    """

    def __init__(self, workers: int = 4, logger: logging.Logger | None = None):
        self.workers = max(1, int(workers))
        self.logger = logger or get_logger("BackgroundDispatcher")
        self._queue: asyncio.Queue[tuple[str, Job]] | None = None
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._tasks) and not all(task.done() for task in self._tasks)

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    async def start(self) -> None:
        """Start the worker tasks on the running event loop."""
        if self.running:
            return
        self._queue = asyncio.Queue()
        self._tasks = [
            asyncio.create_task(self._worker(self._queue), name=f"background-worker-{index}")
            for index in range(self.workers)
        ]

    def submit(self, job: Job, *, name: str = "job") -> None:
        """Enqueue ``job`` and return immediately.

        Raises:
            RuntimeError: If the dispatcher has not been started.
        """
        if not self.running or self._queue is None:
            raise RuntimeError("BackgroundDispatcher is not running; call start() first")
        self._queue.put_nowait((name, job))
        self.logger.debug("Scheduled background job %s (pending=%d)", name, self._queue.qsize())

    async def join(self) -> None:
        """Wait until every submitted job has finished."""
        if self._queue is not None:
            await self._queue.join()

    async def stop(self, *, drain: bool = True) -> None:
        """Stop the workers, by default after draining the queue."""
        if drain:
            await self.join()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

    async def __aenter__(self) -> BackgroundDispatcher:
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    async def _worker(self, queue: asyncio.Queue[tuple[str, Job]]) -> None:
        while True:
            name, job = await queue.get()
            try:
                await job()
            except Exception:
                self.logger.exception("Background job %s raised", name)
            finally:
                queue.task_done()
