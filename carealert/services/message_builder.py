"""Notification message rendering.

Builds the subject, plain text and HTML body for a dispatch round. The
initial round asks for a response; escalation rounds say that nobody
has responded yet. Check-in messages go to the patient themselves and
ask whether they are okay. All user-supplied values are HTML-escaped in
the HTML body.
"""

import html
import uuid
from dataclasses import dataclass
from typing import Any

from carealert.models.alert import Alert, AlertKind, AlertSeverity

SIGNATURE = "CareAlert"

# Severity -> emoji mapping
SEVERITY_EMOJI: dict[AlertSeverity, str] = {
    AlertSeverity.LOW: "\u2139\ufe0f",  # ℹ️
    AlertSeverity.MEDIUM: "\u26a0\ufe0f",  # ⚠️
    AlertSeverity.HIGH: "\U0001f6a8",  # 🚨
    AlertSeverity.CRITICAL: "\U0001f198",  # 🆘
}

# Alert kind -> headline mapping
ALERT_HEADLINE: dict[AlertKind, str] = {
    AlertKind.PROLONGED_INACTIVITY: "No Movement Detected",
    AlertKind.FALL_DETECTED: "Possible Fall Detected",
    AlertKind.OUT_OF_RANGE_VITAL: "Health Reading Out of Range",
    AlertKind.DISTRESS_SIGNAL: "Distress Signal",
    AlertKind.MISSED_CHECKIN: "Missed Check-In",
    AlertKind.MANUAL_REPORT: "Safety Concern Reported",
}

# Alert kind -> recommended action
ALERT_ACTION: dict[AlertKind, str] = {
    AlertKind.PROLONGED_INACTIVITY: "Call {name} or check on them in person",
    AlertKind.FALL_DETECTED: "Contact {name} immediately or check on them in person",
    AlertKind.OUT_OF_RANGE_VITAL: "Call {name} and check how they are feeling",
    AlertKind.DISTRESS_SIGNAL: "Contact {name} immediately; call emergency services if unreachable",
    AlertKind.MISSED_CHECKIN: "Give {name} a call to make sure everything is fine",
    AlertKind.MANUAL_REPORT: "Review the report and contact {name}",
}


@dataclass(frozen=True)
class Message:
    """Rendered notification, channel-neutral.

    Adapters pick the representation their provider supports.
    """

    alert_id: uuid.UUID
    severity: AlertSeverity
    subject: str
    text: str
    html: str
    round_number: int = 0


def describe_context(context: dict[str, Any]) -> list[str]:
    """Human-readable detail lines from the trigger context."""
    lines: list[str] = []
    location = context.get("location") or context.get("zone")
    if location:
        lines.append(f"Location: {location}")
    minutes = context.get("inactivity_minutes")
    if minutes is not None:
        lines.append(f"No motion detected for {minutes} minutes")
    metric = context.get("metric")
    if metric:
        value = context.get("value")
        unit = context.get("unit", "")
        reading = f"{value} {unit}".strip() if value is not None else "unknown"
        lines.append(f"{metric}: {reading}")
    note = context.get("message")
    if note:
        lines.append(f"Message: {note}")
    return lines


def build_message(
    alert: Alert,
    patient_name: str,
    round_number: int,
    check_in_unanswered: bool = False,
) -> Message:
    """Render the message for one dispatch round of an alert.

    Args:
        alert: The alert being notified.
        patient_name: Display name of the patient.
        round_number: 0 for the initial round, n for escalation step n.
        check_in_unanswered: The patient was asked first and did not reply.

    Returns:
        Message with subject, text and HTML bodies.
    """
    emoji = SEVERITY_EMOJI.get(alert.severity, "\U0001f6a8")
    headline = ALERT_HEADLINE.get(alert.kind, "Safety Alert")
    action = ALERT_ACTION.get(alert.kind, "Contact {name}").format(name=patient_name)
    details = describe_context(alert.context or {})
    escalated = round_number > 0
    if check_in_unanswered:
        details.append(f"Check-in sent to {patient_name}, no response")

    if escalated:
        subject = f"{emoji} URGENT: {patient_name}: {headline} (no response yet)"
        status = "No one has responded to this alert yet"
    else:
        subject = f"{emoji} {patient_name}: {headline}"
        status = "Waiting for a response"

    text_lines = [
        f"{emoji} {'URGENT ALERT' if escalated else 'Alert'} - {headline}",
        "",
        f"Patient: {patient_name}",
        f"Severity: {alert.severity.value}",
        f"Status: {status}",
    ]
    if details:
        text_lines.append("")
        text_lines.extend(f"• {line}" for line in details)
    text_lines.extend(
        [
            "",
            f"ACTION REQUIRED: {action}.",
            "",
            f"Alert ID: {alert.id}",
            f"- {SIGNATURE}",
        ]
    )

    safe_name = html.escape(patient_name)
    border = "#DC2626" if escalated else "#F59E0B"
    html_lines = [
        f'<div style="font-family: Arial, sans-serif; max-width: 600px; '
        f'border: 3px solid {border}; padding: 20px;">',
        f"<h2>{emoji} {html.escape(headline)}</h2>",
        f"<p><strong>Patient:</strong> {safe_name}</p>",
        f"<p><strong>Severity:</strong> {alert.severity.value}</p>",
        f"<p><strong>Status:</strong> {status}</p>",
    ]
    if details:
        html_lines.append("<ul>")
        html_lines.extend(f"<li>{html.escape(line)}</li>" for line in details)
        html_lines.append("</ul>")
    html_lines.extend(
        [
            f"<p><strong>ACTION REQUIRED:</strong> {html.escape(action)}.</p>",
            f'<p style="color: #6B7280;">Alert ID: {alert.id}<br>- {SIGNATURE}</p>',
            "</div>",
        ]
    )

    return Message(
        alert_id=alert.id,
        severity=alert.severity,
        subject=subject,
        text="\n".join(text_lines),
        html="\n".join(html_lines),
        round_number=round_number,
    )


def build_check_in_message(alert: Alert, patient_name: str) -> Message:
    """Ask the patient whether they are okay before anyone else is told."""
    subject = f"\U0001f44b {SIGNATURE} Check-In: Are You Okay?"
    details = describe_context(alert.context or {})

    text_lines = [
        f"Hi {patient_name}!",
        "",
        "Just checking in - are you okay?",
    ]
    if details:
        text_lines.append("")
        text_lines.extend(f"• {line}" for line in details)
    text_lines.extend(
        [
            "",
            "Please confirm that everything is fine. If we do not hear back, "
            "your caregivers will be notified.",
            "",
            f"Alert ID: {alert.id}",
            f"- {SIGNATURE}",
        ]
    )

    html_lines = [
        '<div style="font-family: Arial, sans-serif; max-width: 600px; '
        'border: 3px solid #4F46E5; padding: 20px;">',
        f"<h2>Hi {html.escape(patient_name)}! \U0001f44b</h2>",
        "<p>Just checking in - are you okay?</p>",
    ]
    if details:
        html_lines.append("<ul>")
        html_lines.extend(f"<li>{html.escape(line)}</li>" for line in details)
        html_lines.append("</ul>")
    html_lines.extend(
        [
            "<p>Please confirm that everything is fine. If we do not hear back, "
            "your caregivers will be notified.</p>",
            f'<p style="color: #6B7280;">Alert ID: {alert.id}<br>- {SIGNATURE}</p>',
            "</div>",
        ]
    )

    return Message(
        alert_id=alert.id,
        severity=alert.severity,
        subject=subject,
        text="\n".join(text_lines),
        html="\n".join(html_lines),
        round_number=0,
    )


def format_telegram_html(message: Message) -> str:
    """Telegram's HTML parse mode only supports a handful of tags.

    The plain text is escaped and the first line is made bold.
    """
    first, _, rest = message.text.partition("\n")
    body = html.escape(rest)
    return f"<b>{html.escape(first)}</b>\n{body}" if body else f"<b>{html.escape(first)}</b>"
