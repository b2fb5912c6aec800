# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Follow-up work for a newly committed registration.

Four independent tasks run for every registration:

- ``artifact``: generate the check-in QR code
- ``audit_record``: persist the admin inbox notification
- ``confirmation_email``: email the registrant
- ``admin_alert``: email the administrators

The confirmation email waits for the artifact task's outcome to embed the
QR code and falls back to a placeholder image when generation failed.
No other task waits for a sibling.

Example:
    Wiring the side effects into the submit handler::

        side_effects = RegistrationSideEffects(
            engine,
            generate_artifact=qr_codes.generate,
            persist_audit_record=notifications.create,
            dispatcher=dispatcher,
        )

        registration = await repository.create(payload)
        response = {"success": True, "registrationId": registration.id}
        side_effects.dispatch(registration)
        return response
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from .config_loader import MailerSettings
from .content import build_admin_alert, build_audit_record, build_confirmation
from .delivery import DeliveryEngine
from .fanout import BackgroundDispatcher, FanOutOrchestrator, FanOutReport, FanOutTask
from .logger import get_logger
from .models import ArtifactResult, DeliveryResult, RegistrationRecord

TASK_ARTIFACT = "artifact"
TASK_AUDIT_RECORD = "audit_record"
TASK_CONFIRMATION = "confirmation_email"
TASK_ADMIN_ALERT = "admin_alert"

ArtifactGenerator = Callable[[str], Awaitable[ArtifactResult | Mapping[str, Any]]]
AuditRecorder = Callable[[str, dict[str, Any]], Awaitable[Any]]

logger = get_logger("RegistrationSideEffects")


def _as_record(record: RegistrationRecord | Mapping[str, Any]) -> RegistrationRecord:
    if isinstance(record, RegistrationRecord):
        return record
    return RegistrationRecord.model_validate(record)


def _as_artifact(value: ArtifactResult | Mapping[str, Any]) -> ArtifactResult:
    if isinstance(value, ArtifactResult):
        return value
    return ArtifactResult.model_validate(value)


class RegistrationSideEffects:
    """Runs the follow-up tasks of a registration.

    Attributes:
        engine: Shared delivery engine used by both email tasks.
        generate_artifact: Async collaborator producing the check-in artifact.
        persist_audit_record: Async collaborator storing the audit row.
        orchestrator: Runs the tasks and reports their outcomes.
        dispatcher: Background queue used by :meth:`dispatch`.
        settings: Admin recipients and base URL for the alert.
    """

    def __init__(
        self,
        engine: DeliveryEngine,
        generate_artifact: ArtifactGenerator,
        persist_audit_record: AuditRecorder,
        *,
        orchestrator: FanOutOrchestrator | None = None,
        dispatcher: BackgroundDispatcher | None = None,
        settings: MailerSettings | None = None,
    ):
        self.engine = engine
        self.generate_artifact = generate_artifact
        self.persist_audit_record = persist_audit_record
        self.orchestrator = orchestrator or FanOutOrchestrator(reporter=engine.reporter)
        self.dispatcher = dispatcher
        self.settings = settings or engine.settings

    def build_tasks(self, record: RegistrationRecord) -> list[FanOutTask]:
        """Create the four tasks for ``record``. Must run inside the event loop."""
        artifact_ready: asyncio.Future[ArtifactResult] = asyncio.get_running_loop().create_future()

        async def artifact() -> ArtifactResult:
            outcome = ArtifactResult(success=False, error="artifact generation did not complete")
            try:
                outcome = _as_artifact(await self.generate_artifact(record.id))
                if outcome.success:
                    logger.info("QR code generated for registration %s", record.id)
                return outcome
            except Exception as exc:
                outcome = ArtifactResult(success=False, error=f"{type(exc).__name__}: {exc}")
                raise
            finally:
                artifact_ready.set_result(outcome)

        async def audit_record() -> None:
            await self.persist_audit_record(record.id, build_audit_record(record))
            logger.info("Audit record created for registration %s", record.id)

        async def confirmation_email() -> DeliveryResult:
            generated = await artifact_ready
            content = build_confirmation(record, generated.artifact_ref if generated.success else None)
            recipients = [record.email_address] if record.email_address else []
            return await self.engine.send(content.to_message(recipients))

        async def admin_alert() -> DeliveryResult:
            content = build_admin_alert(record, base_url=self.settings.base_url)
            return await self.engine.send(content.to_message(list(self.settings.admin_emails)))

        return [
            FanOutTask(TASK_ARTIFACT, artifact),
            FanOutTask(TASK_AUDIT_RECORD, audit_record),
            FanOutTask(TASK_CONFIRMATION, confirmation_email),
            FanOutTask(TASK_ADMIN_ALERT, admin_alert),
        ]

    async def run(self, record: RegistrationRecord | Mapping[str, Any]) -> FanOutReport:
        """Run every task for ``record`` and return the settled report."""
        record = _as_record(record)
        return await self.orchestrator.run(record.id, self.build_tasks(record))

    def dispatch(self, record: RegistrationRecord | Mapping[str, Any]) -> None:
        """Schedule :meth:`run` on the background dispatcher and return.

        Raises:
            RuntimeError: If no running dispatcher is attached.
            pydantic.ValidationError: If ``record`` is not a valid registration.
        """
        if self.dispatcher is None:
            raise RuntimeError("RegistrationSideEffects.dispatch requires a BackgroundDispatcher")
        record = _as_record(record)

        async def job() -> None:
            await self.run(record)

        self.dispatcher.submit(job, name=f"registration:{record.id}")
