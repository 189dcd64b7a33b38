"""Microsoft Teams Adaptive Card builders.

Provides card templates for:
- Pairing announcement with partner details and icebreakers
- Meeting reminder
- Feedback request
- Welcome message
- Admin alert
"""

from typing import Any

ADAPTIVE_CARD_SCHEMA = "http://adaptivecards.io/schemas/adaptive-card.json"
ADAPTIVE_CARD_CONTENT_TYPE = "application/vnd.microsoft.card.adaptive"


class TeamsCards:
    """Adaptive Card builders for Teams incoming-webhook delivery."""

    @staticmethod
    def _card(body: list[dict], actions: list[dict] | None = None) -> dict:
        card: dict[str, Any] = {
            "$schema": ADAPTIVE_CARD_SCHEMA,
            "type": "AdaptiveCard",
            "version": "1.4",
            "body": body,
        }
        if actions:
            card["actions"] = actions
        return card

    @staticmethod
    def _header(title: str, subtitle: str | None = None) -> list[dict]:
        blocks = [
            {
                "type": "TextBlock",
                "text": "COFFEE ROULETTE",
                "weight": "bolder",
                "color": "accent",
                "size": "small",
            },
            {
                "type": "TextBlock",
                "text": title,
                "weight": "bolder",
                "size": "medium",
                "wrap": True,
            },
        ]
        if subtitle:
            blocks.append({
                "type": "TextBlock",
                "text": subtitle,
                "spacing": "small",
                "isSubtle": True,
                "wrap": True,
            })
        return blocks

    @staticmethod
    def _icebreakers(topics: list[str]) -> list[dict]:
        if not topics:
            return []
        return [{
            "type": "Container",
            "separator": True,
            "spacing": "medium",
            "items": [
                {
                    "type": "TextBlock",
                    "text": "Conversation starters",
                    "weight": "bolder",
                    "size": "small",
                },
                *[
                    {
                        "type": "TextBlock",
                        "text": f"{i}. {topic}",
                        "wrap": True,
                        "size": "small",
                    }
                    for i, topic in enumerate(topics, start=1)
                ],
            ],
        }]

    @staticmethod
    def _open_url(title: str, url: str | None) -> list[dict]:
        if not url:
            return []
        return [{"type": "Action.OpenUrl", "title": title, "url": url}]

    @staticmethod
    def pairing_card(variables: dict) -> dict:
        """
        Build pairing announcement card.

        Args:
            variables: Prepared template variables (user_name, partner_name,
                partner_email, partner_department, formatted_date, icebreakers,
                pairing_url)
        """
        meeting = variables.get("formatted_date") or "To be arranged"
        body = TeamsCards._header(
            f"You've been matched with {variables.get('partner_name', 'a colleague')}!",
            f"Hi {variables.get('user_name', 'there')}, here is your coffee partner for this round.",
        )
        body.append({
            "type": "FactSet",
            "facts": [
                {"title": "Partner", "value": variables.get("partner_name", "")},
                {"title": "Email", "value": variables.get("partner_email", "")},
                {"title": "Department", "value": variables.get("partner_department", "Unknown")},
                {"title": "Scheduled", "value": meeting},
            ],
        })
        body.extend(TeamsCards._icebreakers(variables.get("icebreakers", [])))
        return TeamsCards._card(
            body, TeamsCards._open_url("View Pairing", variables.get("pairing_url"))
        )

    @staticmethod
    def reminder_card(variables: dict) -> dict:
        body = TeamsCards._header(
            f"Coffee with {variables.get('partner_name', 'your partner')} {variables.get('urgency', 'soon')}",
            f"Meeting: {variables.get('formatted_date') or 'check your calendar'}",
        )
        body.extend(TeamsCards._icebreakers(variables.get("icebreakers", [])))
        return TeamsCards._card(
            body, TeamsCards._open_url("View Meeting Details", variables.get("pairing_url"))
        )

    @staticmethod
    def feedback_card(variables: dict) -> dict:
        body = TeamsCards._header(
            f"How was your coffee with {variables.get('partner_name', 'your partner')}?",
            "Your feedback helps us make better matches.",
        )
        return TeamsCards._card(
            body, TeamsCards._open_url("Share Feedback", variables.get("feedback_url"))
        )

    @staticmethod
    def welcome_card(variables: dict) -> dict:
        body = TeamsCards._header(
            f"Welcome to Coffee Roulette, {variables.get('user_name', 'there')}!",
            "You'll be matched with a colleague in the next round.",
        )
        return TeamsCards._card(
            body, TeamsCards._open_url("Open Portal", variables.get("portal_url"))
        )

    @staticmethod
    def admin_alert_card(variables: dict) -> dict:
        details = variables.get("details") or {}
        body = TeamsCards._header(variables.get("subject", "Coffee Roulette alert"))
        if details:
            body.append({
                "type": "FactSet",
                "facts": [{"title": str(k), "value": str(v)} for k, v in details.items()],
            })
        return TeamsCards._card(body)

    @staticmethod
    def webhook_message(card: dict) -> dict:
        """Wrap a card in the envelope Teams incoming webhooks expect."""
        return {
            "type": "message",
            "attachments": [
                {
                    "contentType": ADAPTIVE_CARD_CONTENT_TYPE,
                    "contentUrl": None,
                    "content": card,
                }
            ],
        }
