from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from html import escape

from backend.models.meeting_model import Meeting, Participant
from backend.utils.time_utils import format_for_display

PRODUCT_NAME = "SkillSwap Hub"

MEETING_TIPS = [
    "Test your camera and microphone beforehand",
    "Find a quiet, well-lit space",
    "Have your materials ready",
    "Be punctual and respectful of each other's time",
]


class NotificationKind(str, Enum):
    MEETING_REQUEST = "meeting_request"
    MEETING_ACCEPTED = "meeting_accepted"
    MEETING_REJECTED = "meeting_rejected"
    MEETING_CANCELLED = "meeting_cancelled"
    MEETING_CANCELLATION_CONFIRMED = "meeting_cancellation_confirmed"
    MEETING_REMINDER = "meeting_reminder"


@dataclass(frozen=True)
class RenderedMessage:
    subject: str
    text: str
    html: str


def _html(title: str, greeting: str, lead: str, details: list[tuple[str, str]], extra: str = "") -> str:
    rows = "".join(f"<p style=\"margin: 5px 0;\"><strong>{escape(label)}:</strong> {escape(value)}</p>" for label, value in details)
    return (
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\">"
        f"<title>{escape(title)}</title></head>"
        "<body style=\"font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto;\">"
        f"<h1 style=\"font-size: 24px;\">{escape(title)}</h1>"
        f"<p>Hi <strong>{escape(greeting)}</strong>,</p>"
        f"<p>{escape(lead)}</p>"
        f"<div style=\"background-color: #e3f2fd; padding: 20px; border-radius: 8px;\">{rows}</div>"
        f"{extra}"
        f"<p style=\"font-size: 12px; color: #666;\">This is an automated notification from {PRODUCT_NAME}.</p>"
        "</body></html>"
    )


def _text(title: str, greeting: str, lead: str, details: list[tuple[str, str]], extra: list[str] | None = None) -> str:
    lines = [title, "", f"Hi {greeting},", "", lead, "", "Meeting Details:"]
    lines.extend(f"- {label}: {value}" for label, value in details)
    if extra:
        lines.append("")
        lines.extend(extra)
    lines.extend(["", f"This is an automated notification from {PRODUCT_NAME}."])
    return "\n".join(lines)


def render_reminder(recipient: Participant, other: Participant, meeting: Meeting, tz_name: str = "UTC") -> RenderedMessage:
    when = format_for_display(meeting.scheduled_time, tz_name)
    lead = f"This is a friendly reminder that your meeting with {other.display_name} is starting soon!"
    details = [
        ("Time", when),
        ("With", other.display_name),
        ("Description", meeting.description or "-"),
        ("Meeting Link", meeting.meeting_link or "-"),
    ]
    tips_html = "".join(f"<li>{escape(tip)}</li>" for tip in MEETING_TIPS)
    link_html = ""
    if meeting.meeting_link:
        link = escape(meeting.meeting_link, quote=True)
        link_html = f"<p><a href=\"{link}\" style=\"font-weight: bold;\">Join the meeting</a></p>"
    return RenderedMessage(
        subject="Meeting Reminder: Your meeting starts soon!",
        text=_text("Meeting Reminder - Starting Soon!", recipient.display_name, lead, details,
                   ["Quick Tips for a Great Meeting:", *(f"* {tip}" for tip in MEETING_TIPS)]),
        html=_html("Meeting Starting Soon!", recipient.display_name, lead, details,
                   f"{link_html}<h4>Quick Tips for a Great Meeting:</h4><ul>{tips_html}</ul>"),
    )


def render_cancellation(recipient: Participant, other: Participant, meeting: Meeting, reason: str,
                        tz_name: str = "UTC", cancelled_by_recipient: bool = False) -> RenderedMessage:
    """Cancellation notice for the other party, or the canceller's own confirmation."""
    if cancelled_by_recipient:
        subject = "Meeting Cancelled: Confirmation of your cancellation"
        lead = f"You have successfully cancelled your meeting with {other.display_name}."
        closing = [
            "Cancellation Confirmed",
            f"Both you and {other.display_name} have been notified.",
        ]
    else:
        subject = "Meeting Cancelled: Your meeting has been cancelled"
        lead = f"{other.display_name} has cancelled your scheduled meeting."
        closing = [
            "What's Next?",
            "Consider reaching out to reschedule if the timing didn't work.",
        ]
    details = [
        ("Originally Scheduled", format_for_display(meeting.scheduled_time, tz_name)),
        ("With", other.display_name),
        ("Description", meeting.description or "-"),
        ("Reason", reason),
        ("Meeting ID", meeting.id),
    ]
    extra_html = f"<h4>{escape(closing[0])}</h4><p>{escape(closing[1])}</p>"
    return RenderedMessage(
        subject=subject,
        text=_text("Meeting Cancelled", recipient.display_name, lead, details, closing),
        html=_html("Meeting Cancelled", recipient.display_name, lead, details, extra_html),
    )


def render_lifecycle(kind: NotificationKind, recipient: Participant, actor: Participant, meeting: Meeting,
                     tz_name: str = "UTC") -> RenderedMessage:
    subjects = {
        NotificationKind.MEETING_REQUEST: ("New meeting request", f"{actor.display_name} sent you a meeting request."),
        NotificationKind.MEETING_ACCEPTED: ("Meeting accepted", f"{actor.display_name} accepted your meeting request."),
        NotificationKind.MEETING_REJECTED: ("Meeting declined", f"{actor.display_name} declined your meeting request."),
    }
    title, lead = subjects[kind]
    details = [
        ("Time", format_for_display(meeting.scheduled_time, tz_name)),
        ("With", actor.display_name),
        ("Description", meeting.description or "-"),
    ]
    if kind is NotificationKind.MEETING_ACCEPTED and meeting.meeting_link:
        details.append(("Meeting Link", meeting.meeting_link))
    return RenderedMessage(
        subject=title,
        text=_text(title, recipient.display_name, lead, details),
        html=_html(title, recipient.display_name, lead, details),
    )
