# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Pydantic models for outbound notifications.

This module defines the data models passed between the delivery engine,
the content builders and the fan-out runners.

Models:
    - OutboundMessage: One email to transmit
    - DeliveryAttempt: A single try at transmitting a message
    - DeliveryResult: Terminal projection of the attempts for one message
    - RegistrationRecord: The registration that triggers notifications
    - ArtifactResult: Outcome of the check-in artifact generator
    - RenderedContent: Subject and bodies produced by a content builder
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum
from typing import Annotated, Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class DeliveryOutcome(str, Enum):
    """Classification of a delivery attempt or result.

    Attributes:
        SUCCESS: The transport accepted the message.
        TRANSIENT_FAILURE: Network or timeout class error, retried.
        PERMANENT_FAILURE: Authentication, addressing or unclassified error.
        CONFIGURATION_MISSING: The transport is not configured.
        OVERSIZED_RECIPIENT_LIST: Rejected before any attempt because the
            recipient count is outside the permitted range.
    """

    SUCCESS = "success"
    TRANSIENT_FAILURE = "transient_failure"
    PERMANENT_FAILURE = "permanent_failure"
    CONFIGURATION_MISSING = "configuration_missing"
    OVERSIZED_RECIPIENT_LIST = "oversized_recipient_list"


class OutboundMessage(BaseModel):
    """An email to deliver.

    The recipient count is deliberately not validated here: the delivery
    engine rejects out-of-range lists as a result rather than an exception.

    Attributes:
        recipients: Ordered recipient addresses.
        subject: Subject line.
        html_body: HTML body.
        text_body: Plain text body, derived from ``html_body`` when absent.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    recipients: Annotated[list[str], Field(description="Recipient addresses")]
    subject: Annotated[str, Field(description="Email subject")]
    html_body: Annotated[str, Field(description="HTML body")]
    text_body: Annotated[str | None, Field(default=None, description="Plain text body")]

    @field_validator("recipients", mode="before")
    @classmethod
    def split_recipients(cls, v: Any) -> Any:
        """Accept a single address or a comma separated string."""
        if isinstance(v, str):
            return [part.strip() for part in v.split(",") if part.strip()]
        if isinstance(v, (list, tuple)):
            return [str(addr).strip() for addr in v if addr and str(addr).strip()]
        return v


class DeliveryAttempt(BaseModel):
    """One try at transmitting a message.

    Attributes:
        attempt_number: Zero-based attempt index.
        started_at: When the attempt started (UTC).
        outcome: Classification of the attempt.
        message_id: Message-ID accepted by the transport, on success.
        reason: Error description, on failure.
    """

    model_config = ConfigDict(frozen=True)

    attempt_number: Annotated[int, Field(ge=0)]
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    outcome: DeliveryOutcome
    message_id: str | None = None
    reason: str | None = None


class DeliveryResult(BaseModel):
    """Terminal result of sending one message. Never mutated after return.

    Attributes:
        success: Whether the caller should treat the send as succeeded.
            True for masked failures; check ``masked`` and ``error``.
        message_id: Transport Message-ID, or a ``dev-``/``failed-`` marker.
        error: Error description for any non-delivered message.
        attempts_made: Number of transmission attempts performed.
        outcome: Final classification.
        masked: True when a failure is reported as success.
        note: Human readable summary.
        attempts: The ordered attempt history.
    """

    model_config = ConfigDict(frozen=True)

    success: bool
    message_id: str | None = None
    error: str | None = None
    attempts_made: Annotated[int, Field(ge=0)] = 0
    outcome: DeliveryOutcome
    masked: bool = False
    note: str | None = None
    attempts: tuple[DeliveryAttempt, ...] = ()

    @property
    def delivered(self) -> bool:
        """True only when the transport actually accepted the message."""
        return self.outcome == DeliveryOutcome.SUCCESS and not self.masked


class RegistrationRecord(BaseModel):
    """A committed registration. Only ``id`` is required.

    Field aliases match the camelCase keys used by the web application so
    that request payloads and ORM rows validate directly.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    full_name: str | None = Field(default=None, alias="fullName")
    email_address: str | None = Field(default=None, alias="emailAddress")
    phone_number: str | None = Field(default=None, alias="phoneNumber")
    date_of_birth: date | None = Field(default=None, alias="dateOfBirth")
    gender: str | None = None
    address: str | None = None
    parent_guardian_name: str | None = Field(default=None, alias="parentGuardianName")
    parent_guardian_phone: str | None = Field(default=None, alias="parentGuardianPhone")
    parent_guardian_email: str | None = Field(default=None, alias="parentGuardianEmail")
    created_at: datetime | None = Field(default=None, alias="createdAt")
    qr_code: str | None = Field(default=None, alias="qrCode")

    @field_validator("id", mode="before")
    @classmethod
    def id_as_string(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) else v

    @field_validator("date_of_birth", mode="before")
    @classmethod
    def date_from_datetime(cls, v: Any) -> Any:
        if isinstance(v, datetime):
            return v.date()
        if isinstance(v, str) and "T" in v:
            return v.split("T", 1)[0]
        return v


class ArtifactResult(BaseModel):
    """Outcome of the check-in artifact generator.

    Attributes:
        success: Whether an artifact was produced.
        artifact_ref: Reference to the artifact, typically an image data URL.
        error: Failure description.
    """

    success: bool
    artifact_ref: str | None = Field(
        default=None,
        validation_alias=AliasChoices("artifact_ref", "artifactRef", "qrDataUrl"),
    )
    error: str | None = None


class RenderedContent(BaseModel):
    """Subject and bodies produced by a content builder."""

    model_config = ConfigDict(frozen=True)

    subject: str
    html: str
    text: str

    def to_message(self, recipients: list[str] | tuple[str, ...] | str) -> OutboundMessage:
        """Address this content to ``recipients``."""
        return OutboundMessage(
            recipients=recipients,
            subject=self.subject,
            html_body=self.html,
            text_body=self.text,
        )
