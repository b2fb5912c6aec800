"""Tests for the registration follow-up side effects."""

import asyncio
from datetime import datetime, timezone

import aiosmtplib
import pydantic
import pytest

from registration_mailer.content import PLACEHOLDER_IMAGE
from registration_mailer.fanout import BackgroundDispatcher, TaskState
from registration_mailer.models import ArtifactResult
from registration_mailer.registration import (
    TASK_ADMIN_ALERT,
    TASK_ARTIFACT,
    TASK_AUDIT_RECORD,
    TASK_CONFIRMATION,
    RegistrationSideEffects,
)

QR = "data:image/png;base64,UVJDT0RF"

REGISTRATION = {
    "id": 42,
    "fullName": "Ada Lovelace",
    "emailAddress": "ada@example.com",
    "phoneNumber": "+44 20 7946 0000",
    "dateOfBirth": "2008-12-10T00:00:00.000Z",
    "parentGuardianName": "Anne Byron",
    "createdAt": datetime(2024, 3, 5, 9, 30, tzinfo=timezone.utc),
}


class Collaborators:
    """Records calls to the artifact generator and the audit store."""

    def __init__(self, artifact=None, artifact_error=None, audit_error=None):
        self.artifact = artifact if artifact is not None else {"success": True, "qrDataUrl": QR}
        self.artifact_error = artifact_error
        self.audit_error = audit_error
        self.artifact_calls = []
        self.audit_rows = []

    async def generate_artifact(self, registration_id):
        self.artifact_calls.append(registration_id)
        await asyncio.sleep(0)
        if self.artifact_error:
            raise self.artifact_error
        return self.artifact

    async def persist_audit_record(self, registration_id, row):
        if self.audit_error:
            raise self.audit_error
        self.audit_rows.append((registration_id, row))


def sent_by_subject(pool):
    return {str(msg["Subject"]): msg for msg in pool.smtp.sent}


def html_of(msg):
    return msg.get_body(preferencelist=("html",)).get_content()


@pytest.mark.asyncio
async def test_all_tasks_succeed(engine, pool):
    collab = Collaborators()
    side_effects = RegistrationSideEffects(engine, collab.generate_artifact, collab.persist_audit_record)

    report = await side_effects.run(REGISTRATION)

    assert report.event_id == "42"
    assert sorted(report.succeeded) == sorted(
        [TASK_ARTIFACT, TASK_AUDIT_RECORD, TASK_CONFIRMATION, TASK_ADMIN_ALERT]
    )
    assert collab.artifact_calls == ["42"]
    assert collab.audit_rows[0][0] == "42"
    assert collab.audit_rows[0][1]["type"] == "new_registration"

    messages = sent_by_subject(pool)
    confirmation = messages["Registration Confirmed - Your QR Code for Mopgomglobal"]
    alert = messages["New Registration: Ada Lovelace"]
    assert confirmation["To"] == "ada@example.com"
    assert QR in html_of(confirmation)
    assert alert["To"] == "admin@example.com, desk@example.com"
    assert "https://register.example.com/admin/registrations" in html_of(alert)


@pytest.mark.asyncio
async def test_artifact_failure_uses_placeholder_image(engine, pool):
    collab = Collaborators(artifact_error=RuntimeError("qr service down"))
    side_effects = RegistrationSideEffects(engine, collab.generate_artifact, collab.persist_audit_record)

    report = await side_effects.run(REGISTRATION)

    assert report.failed == [TASK_ARTIFACT]
    assert report[TASK_ARTIFACT].error == "RuntimeError: qr service down"
    assert report[TASK_CONFIRMATION].state == TaskState.SUCCEEDED
    confirmation = sent_by_subject(pool)["Registration Confirmed - Your QR Code for Mopgomglobal"]
    assert PLACEHOLDER_IMAGE in html_of(confirmation)


@pytest.mark.asyncio
async def test_unsuccessful_artifact_result_uses_placeholder_image(engine, pool):
    collab = Collaborators(artifact=ArtifactResult(success=False, error="encoder failed"))
    side_effects = RegistrationSideEffects(engine, collab.generate_artifact, collab.persist_audit_record)

    report = await side_effects.run(REGISTRATION)

    assert report[TASK_ARTIFACT].failed
    assert report[TASK_ARTIFACT].error == "encoder failed"
    confirmation = sent_by_subject(pool)["Registration Confirmed - Your QR Code for Mopgomglobal"]
    assert PLACEHOLDER_IMAGE in html_of(confirmation)


@pytest.mark.asyncio
async def test_audit_failure_is_isolated(engine, pool):
    collab = Collaborators(audit_error=ConnectionError("database unavailable"))
    side_effects = RegistrationSideEffects(engine, collab.generate_artifact, collab.persist_audit_record)

    report = await side_effects.run(REGISTRATION)

    assert report.failed == [TASK_AUDIT_RECORD]
    assert len(pool.smtp.sent) == 2


@pytest.mark.asyncio
async def test_email_failure_reported_without_affecting_siblings(engine_factory, make_pool):
    pool = make_pool(send_errors=[aiosmtplib.SMTPAuthenticationError(535, "Authentication failed") for _ in range(2)])
    engine = engine_factory(pool, mask=True)
    collab = Collaborators()
    side_effects = RegistrationSideEffects(engine, collab.generate_artifact, collab.persist_audit_record)

    report = await side_effects.run(REGISTRATION)

    assert sorted(report.failed) == sorted([TASK_CONFIRMATION, TASK_ADMIN_ALERT])
    assert report[TASK_CONFIRMATION].value.success is True
    assert report[TASK_CONFIRMATION].value.masked is True
    assert sorted(report.succeeded) == sorted([TASK_ARTIFACT, TASK_AUDIT_RECORD])


@pytest.mark.asyncio
async def test_registrant_without_email_fails_confirmation_only(engine, pool):
    collab = Collaborators()
    side_effects = RegistrationSideEffects(engine, collab.generate_artifact, collab.persist_audit_record)

    report = await side_effects.run({**REGISTRATION, "emailAddress": None})

    assert report.failed == [TASK_CONFIRMATION]
    assert report[TASK_CONFIRMATION].error == "No recipients specified"
    assert list(sent_by_subject(pool)) == ["New Registration: Ada Lovelace"]


@pytest.mark.asyncio
async def test_dispatch_runs_after_caller_returns(engine, pool):
    collab = Collaborators()
    events = []

    async with BackgroundDispatcher(workers=1) as dispatcher:
        side_effects = RegistrationSideEffects(
            engine, collab.generate_artifact, collab.persist_audit_record, dispatcher=dispatcher
        )
        side_effects.dispatch(REGISTRATION)
        events.append(("response", list(collab.artifact_calls)))
        await dispatcher.join()

    assert events == [("response", [])]
    assert collab.artifact_calls == ["42"]
    assert len(pool.smtp.sent) == 2


def test_dispatch_requires_dispatcher(engine):
    collab = Collaborators()
    side_effects = RegistrationSideEffects(engine, collab.generate_artifact, collab.persist_audit_record)

    with pytest.raises(RuntimeError):
        side_effects.dispatch(REGISTRATION)


@pytest.mark.asyncio
async def test_dispatch_rejects_invalid_record_before_enqueueing(engine, pool):
    collab = Collaborators()

    async with BackgroundDispatcher(workers=1) as dispatcher:
        side_effects = RegistrationSideEffects(
            engine, collab.generate_artifact, collab.persist_audit_record, dispatcher=dispatcher
        )
        with pytest.raises(pydantic.ValidationError):
            side_effects.dispatch({"fullName": "No Id"})
        assert dispatcher.pending == 0

    assert collab.artifact_calls == []
    assert pool.smtp.sent == []
