# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Notification content builders.

Pure functions that render subjects and bodies from a registration. They
perform no I/O and return the same output for the same input. Missing
optional fields render as a placeholder instead of raising, and every user
supplied value is HTML escaped.
"""

from __future__ import annotations

import html
import json
import re
from datetime import date, datetime
from typing import Any

from .models import RegistrationRecord, RenderedContent

PLACEHOLDER = "Not provided"
PLACEHOLDER_IMAGE = (
    "data:image/png;base64,iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)
ORGANISATION = "Mopgomglobal"

_HIDDEN_BLOCKS = re.compile(r"<(head|style|script)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_BREAKS = re.compile(r"<\s*(br|/p|/div|/h[1-6]|/li|/tr)\b[^>]*>", re.IGNORECASE)
_TAGS = re.compile(r"<[^>]*>")
_SPACES = re.compile(r"[ \t\r\f\v]+")

_STYLE = """
        body { font-family: 'Inter', -apple-system, 'Segoe UI', Roboto, Arial, sans-serif; line-height: 1.6; color: #374151; margin: 0; padding: 0; background-color: #f9fafb; }
        .container { max-width: 600px; margin: 0 auto; padding: 20px; }
        .header { background: linear-gradient(135deg, #667eea 0%, #764ba2 100%); color: white; padding: 32px 24px; border-radius: 12px 12px 0 0; text-align: center; }
        .content { background: #ffffff; padding: 32px 24px; border-radius: 0 0 12px 12px; }
        .info-item { background: #f8fafc; padding: 16px; border-radius: 8px; border-left: 3px solid #667eea; margin-bottom: 12px; }
        .info-label { font-weight: 500; color: #6b7280; font-size: 12px; text-transform: uppercase; letter-spacing: 0.5px; }
        .info-value { color: #111827; font-weight: 600; }
        .qr-section { background-color: #f8fafc; border: 2px dashed #e2e8f0; border-radius: 12px; padding: 30px; text-align: center; margin: 30px 0; }
        .qr-text { font-family: 'Courier New', monospace; font-size: 12px; word-break: break-all; background-color: #f1f5f9; padding: 15px; border-radius: 6px; }
        .button { display: inline-block; background: #667eea; color: white; padding: 14px 28px; text-decoration: none; border-radius: 8px; font-weight: 600; }
        .footer { text-align: center; margin-top: 32px; color: #9ca3af; font-size: 14px; }
"""


def html_to_text(markup: str) -> str:
    """Derive a plain text body from HTML.

    Drops ``<head>``, ``<style>`` and ``<script>`` blocks, turns block ends
    into line breaks, strips the remaining tags and unescapes entities.
    """
    text = _HIDDEN_BLOCKS.sub("", markup)
    text = _BREAKS.sub("\n", text)
    text = _TAGS.sub("", text)
    text = html.unescape(text)
    lines = [_SPACES.sub(" ", line).strip() for line in text.splitlines()]
    return "\n".join(line for line in lines if line)


def _value(value: Any) -> str:
    """Escape a field for HTML, substituting the placeholder when empty."""
    if value is None or value == "":
        return PLACEHOLDER
    return html.escape(str(value))


def _format_date(value: date | datetime | None) -> str:
    if value is None:
        return PLACEHOLDER
    return value.strftime("%B %d, %Y").replace(" 0", " ")


def age_on(date_of_birth: date | None, reference: date | datetime | None) -> int | None:
    """Whole years between ``date_of_birth`` and ``reference``."""
    if date_of_birth is None or reference is None:
        return None
    if isinstance(reference, datetime):
        reference = reference.date()
    age = reference.year - date_of_birth.year
    if (reference.month, reference.day) < (date_of_birth.month, date_of_birth.day):
        age -= 1
    return age


def _info_item(label: str, value: str) -> str:
    return (
        '<div class="info-item">'
        f'<div class="info-label">{label}</div>'
        f'<div class="info-value">{value}</div>'
        "</div>"
    )


def _page(title: str, header: str, subheader: str, body: str, footer: str) -> str:
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{title}</title>
    <style>{_STYLE}</style>
</head>
<body>
    <div class="container">
        <div class="header">
            <h1 style="margin: 0;">{header}</h1>
            <p style="margin: 10px 0 0 0; opacity: 0.9;">{subheader}</p>
        </div>
        <div class="content">
{body}
        </div>
        <div class="footer">
{footer}
        </div>
    </div>
</body>
</html>
"""


def check_in_data(record: RegistrationRecord) -> str:
    """The check-in payload printed under the QR code."""
    if record.qr_code:
        return record.qr_code
    return json.dumps(
        {"id": record.id, "fullName": record.full_name, "email": record.email_address},
        separators=(",", ":"),
    )


def build_confirmation(record: RegistrationRecord, artifact_ref: str | None = None) -> RenderedContent:
    """Render the confirmation sent to the registrant.

    Args:
        record: The committed registration.
        artifact_ref: Image reference of the check-in QR code. A placeholder
            image is used when it is None.
    """
    image = html.escape(artifact_ref or PLACEHOLDER_IMAGE, quote=True)
    name = _value(record.full_name)
    body = f"""
            <h2 style="text-align: center; color: #1e293b;">Hello {name}!</h2>
            <p style="text-align: center; color: #64748b;">
                Your registration has been successfully completed. Below is your unique QR code for event check-in.
            </p>
            <div class="qr-section">
                <h3 style="color: #1e293b; margin-top: 0;">Your Check-in QR Code</h3>
                <p>Save this QR code and bring it with you to the event for quick check-in.</p>
                <img src="{image}" alt="QR Code" style="width: 200px; height: 200px;" />
                <div class="qr-text"><strong>QR Code Data:</strong><br>{html.escape(check_in_data(record))}</div>
                <p><strong>Note:</strong> You can also show this email or the QR code data above for manual check-in.</p>
            </div>
            {_info_item("Registration Date", _format_date(record.created_at))}
            {_info_item("Email Address", _value(record.email_address))}
            {_info_item("Phone Number", _value(record.phone_number))}
            {_info_item("Gender", _value(record.gender))}
            <div>
                <h4>Important Reminders:</h4>
                <ul>
                    <li>Save this email or take a screenshot of your QR code</li>
                    <li>Bring your QR code to the event for quick check-in</li>
                    <li>Arrive early for smooth registration process</li>
                    <li>Contact us if you have any questions or need assistance</li>
                </ul>
            </div>"""
    footer = f"""            <p><strong>{ORGANISATION}</strong></p>
            <p>This is an automated message. Please do not reply to this email.</p>"""
    markup = _page(
        f"Registration Confirmation - {ORGANISATION}",
        "Registration Confirmed!",
        f"Welcome to {ORGANISATION}",
        body,
        footer,
    )
    return RenderedContent(
        subject=f"Registration Confirmed - Your QR Code for {ORGANISATION}",
        html=markup,
        text=html_to_text(markup),
    )


def build_admin_alert(record: RegistrationRecord, base_url: str = "http://localhost:3000") -> RenderedContent:
    """Render the alert sent to administrators for a new registration."""
    age = age_on(record.date_of_birth, record.created_at)
    link = html.escape(f"{base_url.rstrip('/')}/admin/registrations", quote=True)
    body = f"""
            {_info_item("Participant Name", _value(record.full_name))}
            {_info_item("Email Address", _value(record.email_address))}
            {_info_item("Phone Number", _value(record.phone_number))}
            {_info_item("Age", f"{age} years old" if age is not None else PLACEHOLDER)}
            {_info_item("Parent/Guardian", _value(record.parent_guardian_name))}
            {_info_item("Registration Date", _format_date(record.created_at))}
            <div style="text-align: center; margin: 30px 0;">
                <a href="{link}" class="button">View Registration Details</a>
            </div>
            <div>
                <h3 style="margin-top: 0; color: #667eea;">Quick Summary</h3>
                <p><strong>Registration ID:</strong> {_value(record.id)}</p>
                <p><strong>Address:</strong> {_value(record.address)}</p>
            </div>"""
    footer = """            <p>This is an automated notification from the Youth Registration System</p>
            <p>Please do not reply to this email</p>"""
    markup = _page(
        "New Registration Notification",
        "New Registration Received!",
        "A new participant has registered for the youth program",
        body,
        footer,
    )
    name = record.full_name or PLACEHOLDER
    return RenderedContent(
        subject=f"New Registration: {name}",
        html=markup,
        text=html_to_text(markup),
    )


def build_audit_record(record: RegistrationRecord) -> dict[str, Any]:
    """The ``new_registration`` notification row persisted for the admin inbox."""
    name = record.full_name or PLACEHOLDER
    return {
        "type": "new_registration",
        "title": "New Registration",
        "message": f"{name} has registered for the youth program",
        "priority": "medium",
        "metadata": {
            "registrationId": record.id,
            "participantName": record.full_name,
            "participantEmail": record.email_address,
            "participantPhone": record.phone_number,
            "parentGuardian": record.parent_guardian_name,
            "registrationDate": record.created_at.isoformat() if record.created_at else None,
        },
    }


def build_test_message(sent_by: str, sent_at: datetime) -> RenderedContent:
    """Render the message used to check the SMTP configuration."""
    timestamp = sent_at.isoformat()
    body = f"""
            <p>This is a test email to verify your email configuration is working correctly.</p>
            {_info_item("Sent By", _value(sent_by))}
            {_info_item("Sent At", html.escape(timestamp))}"""
    markup = _page(
        "Email Configuration Test",
        "Email Configuration Test",
        "Your SMTP settings are working",
        body,
        "            <p>This is an automated message. Please do not reply to this email.</p>",
    )
    return RenderedContent(
        subject="Email Configuration Test",
        html=markup,
        text=(
            "This is a test email to verify your email configuration is working correctly. "
            f"Sent by: {sent_by} at {timestamp}"
        ),
    )
