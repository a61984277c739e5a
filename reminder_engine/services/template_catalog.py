"""Message templates for appointment notifications.

Templates carry ``{{variable}}`` placeholders that are filled from the
appointment when a notification is created. Rendering is plain substitution:
a placeholder without a value becomes an empty string, so recipients never
see template syntax.
"""

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from reminder_engine.config import settings

PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*(\w+)\s*\}\}")


@dataclass(frozen=True)
class NotificationTemplate:
    """A named message with an optional subject."""

    name: str
    message: str
    subject: str | None = None
    variables: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class RenderedContent:
    """Subject and body with every placeholder substituted."""

    message: str
    subject: str | None = None


NOTIFICATION_TEMPLATES: dict[str, NotificationTemplate] = {
    "APPOINTMENT_REMINDER_24H": NotificationTemplate(
        name="APPOINTMENT_REMINDER_24H",
        subject="Reminder: your appointment is tomorrow",
        message=(
            "Hello {{client_name}},\n\n"
            "This is a reminder that you have an appointment tomorrow:\n\n"
            "Date: {{date}}\n"
            "Time: {{time}}\n"
            "Type: {{type}}\n"
            "Title: {{title}}\n\n"
            "Please confirm your attendance or get in touch if you need to reschedule.\n\n"
            "Kind regards,\n"
            "The scheduling team"
        ),
        variables=("client_name", "date", "time", "type", "title"),
    ),
    "APPOINTMENT_REMINDER_2H": NotificationTemplate(
        name="APPOINTMENT_REMINDER_2H",
        subject="Reminder: your appointment is in 2 hours",
        message=(
            "Hello {{client_name}},\n\n"
            "Your appointment starts in 2 hours:\n\n"
            "Time: {{time}}\n"
            "{{title}}\n\n"
            "See you soon!"
        ),
        variables=("client_name", "time", "title"),
    ),
    "APPOINTMENT_CONFIRMATION": NotificationTemplate(
        name="APPOINTMENT_CONFIRMATION",
        subject="Appointment confirmed",
        message=(
            "Hello {{client_name}},\n\n"
            "Your appointment has been confirmed:\n\n"
            "Date: {{date}}\n"
            "Time: {{time}}\n"
            "Type: {{type}}\n"
            "Title: {{title}}\n\n"
            "See you then!"
        ),
        variables=("client_name", "date", "time", "type", "title"),
    ),
    "APPOINTMENT_CANCELLED": NotificationTemplate(
        name="APPOINTMENT_CANCELLED",
        subject="Appointment cancelled",
        message=(
            "Hello {{client_name}},\n\n"
            "Your appointment has been cancelled:\n\n"
            "Date: {{date}}\n"
            "Time: {{time}}\n"
            "Title: {{title}}\n\n"
            "Contact us if you would like to book a new time."
        ),
        variables=("client_name", "date", "time", "title"),
    ),
}


def get_template(name: str) -> NotificationTemplate | None:
    """Look up a template by name."""
    return NOTIFICATION_TEMPLATES.get(name)


def render_text(text: str, variables: Mapping[str, Any]) -> str:
    """Replace every ``{{key}}`` with its value, or with nothing when unset."""

    def substitute(match: re.Match[str]) -> str:
        value = variables.get(match.group(1))
        return "" if value is None else str(value)

    return PLACEHOLDER_PATTERN.sub(substitute, text)


def render_template(
    template: NotificationTemplate, variables: Mapping[str, Any]
) -> RenderedContent:
    """Render subject and message of a template."""
    subject = render_text(template.subject, variables) if template.subject else template.subject
    return RenderedContent(
        message=render_text(template.message, variables),
        subject=subject,
    )


def appointment_variables(appointment: Any, date_format: str | None = None) -> dict[str, str]:
    """Template variables for an appointment record or schema."""
    return {
        "client_name": str(appointment.client),
        "date": appointment.date.strftime(date_format or settings.date_display_format),
        "time": appointment.time,
        "type": appointment.type,
        "title": appointment.title,
        "description": appointment.description or "",
        "case": appointment.case_reference or "",
    }
