"""
Template rendering for notifications.

Turns a notification type plus a variable set into an email subject, plain
text and HTML body, and a Teams Adaptive Card.
"""

import html
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable
from zoneinfo import ZoneInfo

from ..integrations.teams import TeamsCards
from ..models import NotificationType

logger = logging.getLogger(__name__)


@dataclass
class RenderedMessage:
    """A notification ready for any channel."""
    subject: str
    text: str
    html: str
    card: dict


def format_meeting_date(value: datetime | None, timezone_name: str = "UTC") -> str | None:
    if value is None:
        return None
    local = value.astimezone(ZoneInfo(timezone_name))
    return local.strftime("%A, %B %d, %Y at %I:%M %p %Z")


def urgency_text(days_until: int) -> str:
    if days_until <= 0:
        return "today"
    if days_until == 1:
        return "tomorrow"
    return f"in {days_until} days"


class TemplateRenderer:
    """Opaque renderer: (type, variables) -> RenderedMessage."""

    def __init__(self, frontend_url: str = "http://localhost:3000", timezone_name: str = "UTC"):
        self._frontend_url = frontend_url.rstrip("/")
        self._timezone_name = timezone_name
        self._builders: dict[NotificationType, tuple[Callable, Callable]] = {
            NotificationType.PAIRING: (self._pairing, TeamsCards.pairing_card),
            NotificationType.REMINDER: (self._reminder, TeamsCards.reminder_card),
            NotificationType.FEEDBACK_REQUEST: (self._feedback_request, TeamsCards.feedback_card),
            NotificationType.WELCOME: (self._welcome, TeamsCards.welcome_card),
            NotificationType.ADMIN_ALERT: (self._admin_alert, TeamsCards.admin_alert_card),
        }

    def prepare_variables(self, raw: dict[str, Any]) -> dict[str, Any]:
        """Derive display values (dates, URLs, icebreaker lists) from raw values."""
        variables = dict(raw)

        variables["formatted_date"] = format_meeting_date(
            variables.get("meeting_date"), self._timezone_name
        )

        icebreakers = variables.get("icebreakers") or []
        variables["icebreakers"] = list(icebreakers)
        variables["icebreaker_html"] = "\n".join(
            f"<li>{html.escape(topic)}</li>" for topic in icebreakers
        )
        variables["icebreaker_list"] = "\n".join(
            f"{i}. {topic}" for i, topic in enumerate(icebreakers, start=1)
        )

        if variables.get("days_until") is not None:
            variables["urgency"] = urgency_text(variables["days_until"])

        if variables.get("pairing_id"):
            variables["pairing_url"] = f"{self._frontend_url}/pairings/{variables['pairing_id']}"
            variables["feedback_url"] = f"{self._frontend_url}/pairings/{variables['pairing_id']}/feedback"
        variables["portal_url"] = f"{self._frontend_url}/portal"

        return variables

    def render(self, notification_type: NotificationType, variables: dict[str, Any]) -> RenderedMessage:
        prepared = self.prepare_variables(variables)
        email_builder, card_builder = self._builders[notification_type]
        subject, text, body = email_builder(prepared)
        return RenderedMessage(
            subject=subject,
            text=text,
            html=self._wrap_html(subject, body),
            card=card_builder(prepared),
        )

    # =========================================================================
    # EMAIL BUILDERS
    # =========================================================================

    @staticmethod
    def _wrap_html(title: str, body: str) -> str:
        return f"""
<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
</head>
<body style="font-family: 'Segoe UI', Tahoma, Geneva, Verdana, sans-serif;
             line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
    <div style="background-color: #6F4E37; color: white; padding: 16px; border-radius: 8px 8px 0 0;">
        <h1 style="margin: 0; font-size: 18px;">{html.escape(title)}</h1>
    </div>
    <div style="border: 1px solid #E5E7EB; border-top: none; padding: 24px; border-radius: 0 0 8px 8px;">
{body}
    </div>
</body>
</html>
"""

    def _pairing(self, v: dict) -> tuple[str, str, str]:
        partner = v.get("partner_name", "a colleague")
        meeting = v.get("formatted_date") or "To be arranged"
        subject = f"You've been matched with {partner}!"
        text = (
            f"Hi {v.get('user_name', 'there')},\n\n"
            f"Your Coffee Roulette partner for this round is {partner} "
            f"({v.get('partner_department', 'Unknown')}, {v.get('partner_email', '')}).\n\n"
            f"Meeting: {meeting}\n\n"
        )
        if v["icebreaker_list"]:
            text += f"Conversation starters:\n{v['icebreaker_list']}\n\n"
        if v.get("pairing_url"):
            text += f"Details: {v['pairing_url']}\n"
        body = (
            f"<p>Hi {html.escape(v.get('user_name', 'there'))},</p>"
            f"<p>Your Coffee Roulette partner for this round is "
            f"<strong>{html.escape(partner)}</strong> from {html.escape(v.get('partner_department', 'Unknown'))}.</p>"
            f"<p><strong>Meeting:</strong> {html.escape(meeting)}</p>"
        )
        if v["icebreaker_html"]:
            body += f"<h3>Conversation starters</h3><ul>{v['icebreaker_html']}</ul>"
        return subject, text, body

    def _reminder(self, v: dict) -> tuple[str, str, str]:
        partner = v.get("partner_name", "your partner")
        urgency = v.get("urgency", "soon")
        subject = f"Reminder: Coffee meeting with {partner} {urgency}"
        text = (
            f"Hi {v.get('user_name', 'there')},\n\n"
            f"Just a friendly reminder that your Coffee Roulette meeting is {urgency}!\n\n"
            f"Date: {v.get('formatted_date') or 'check your calendar'}\nWith: {partner}\n"
        )
        if v["icebreaker_list"]:
            text += f"\nConversation starters:\n{v['icebreaker_list']}\n"
        body = (
            f"<p>Hi {html.escape(v.get('user_name', 'there'))},</p>"
            f"<p>Just a friendly reminder that your Coffee Roulette meeting with "
            f"<strong>{html.escape(partner)}</strong> is {html.escape(urgency)}!</p>"
        )
        if v["icebreaker_html"]:
            body += f"<ul>{v['icebreaker_html']}</ul>"
        return subject, text, body

    def _feedback_request(self, v: dict) -> tuple[str, str, str]:
        partner = v.get("partner_name", "your partner")
        subject = f"How was your coffee with {partner}?"
        url = v.get("feedback_url", "")
        text = (
            f"Hi {v.get('user_name', 'there')},\n\n"
            f"We hope you enjoyed meeting {partner}. Let us know how it went: {url}\n"
        )
        body = (
            f"<p>Hi {html.escape(v.get('user_name', 'there'))},</p>"
            f"<p>We hope you enjoyed meeting {html.escape(partner)}.</p>"
            f'<p><a href="{html.escape(url)}">Share your feedback</a></p>'
        )
        return subject, text, body

    def _welcome(self, v: dict) -> tuple[str, str, str]:
        subject = "Welcome to Coffee Roulette!"
        text = (
            f"Hi {v.get('user_name', 'there')},\n\n"
            f"You're in! We'll match you with a colleague in the next round.\n"
            f"Manage your preferences at {v['portal_url']}\n"
        )
        body = (
            f"<p>Hi {html.escape(v.get('user_name', 'there'))},</p>"
            f"<p>You're in! We'll match you with a colleague in the next round.</p>"
            f'<p><a href="{html.escape(v["portal_url"])}">Manage your preferences</a></p>'
        )
        return subject, text, body

    def _admin_alert(self, v: dict) -> tuple[str, str, str]:
        subject = v.get("subject", "Coffee Roulette alert")
        details = v.get("details") or {}
        text = "\n".join(f"{k}: {value}" for k, value in details.items())
        rows = "".join(
            f"<tr><td><strong>{html.escape(str(k))}</strong></td><td>{html.escape(str(value))}</td></tr>"
            for k, value in details.items()
        )
        body = f"<table>{rows}</table>" if rows else "<p>No details provided.</p>"
        return subject, text or subject, body
