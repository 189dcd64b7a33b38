"""Operator alerting for scheduled jobs (Slack and generic webhooks).

Every alert names the matching round and/or the notification tasks it is
about, so operators can go straight to ``/matching/rounds/{id}`` or
``/notifications/{id}/retry``.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

import httpx

from ..core.config import get_settings

logger = logging.getLogger(__name__)

SEVERITY_COLORS = {
    "critical": "#dc2626",
    "error": "#dc2626",
    "warning": "#f59e0b",
}


@dataclass
class JobAlert:
    title: str
    message: str
    severity: str = "error"
    source: str = "coffee-roulette-job"
    round_id: str | None = None
    task_ids: list[str] = field(default_factory=list)
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_payload(self) -> dict[str, Any]:
        """Generic webhook body (PagerDuty, Opsgenie and similar)."""
        return {
            "title": self.title,
            "message": self.message,
            "severity": self.severity,
            "source": self.source,
            "timestamp": self.timestamp.isoformat(),
            "round_id": self.round_id,
            "task_ids": self.task_ids,
            "details": self.details,
        }

    def to_slack(self) -> dict[str, Any]:
        facts = []
        if self.round_id:
            facts.append(f"• *Round*: `{self.round_id}`")
        if self.task_ids:
            facts.append(f"• *Tasks*: {', '.join(f'`{t}`' for t in self.task_ids)}")
        facts += [f"• *{k}*: {v}" for k, v in self.details.items()]

        blocks: list[dict[str, Any]] = [
            {"type": "header", "text": {"type": "plain_text", "text": self.title, "emoji": True}},
            {"type": "section", "text": {"type": "mrkdwn", "text": self.message}},
        ]
        if facts:
            blocks.append({"type": "section", "text": {"type": "mrkdwn", "text": "\n".join(facts)}})
        blocks.append({
            "type": "context",
            "elements": [{
                "type": "mrkdwn",
                "text": f"Severity: *{self.severity.upper()}* | Source: {self.source} | "
                        f"Time: {self.timestamp.isoformat()}",
            }],
        })
        return {"attachments": [{"color": SEVERITY_COLORS.get(self.severity, "#f59e0b"), "blocks": blocks}]}

    def log_line(self) -> str:
        line = f"[JOB ALERT] {self.title}: {self.message}"
        if self.round_id:
            line += f" | round={self.round_id}"
        if self.task_ids:
            line += f" | tasks={','.join(self.task_ids)}"
        if self.details:
            line += f" | details={self.details}"
        return line


async def send_alert(
    title: str,
    message: str,
    severity: str = "error",
    details: dict | None = None,
    source: str = "coffee-roulette-job",
    round_id: UUID | str | None = None,
    task_ids: list[UUID] | list[str] | None = None,
) -> JobAlert:
    """
    Log an alert and fan it out to the configured webhooks.

    Webhook failures are logged, never raised: alerting must not turn a
    warning into a job crash.
    """
    settings = get_settings()
    alert = JobAlert(
        title=title,
        message=message,
        severity=severity,
        source=source,
        round_id=str(round_id) if round_id else None,
        task_ids=[str(t) for t in task_ids or []],
        details=details or {},
    )

    if severity == "critical":
        logger.critical(alert.log_line())
    elif severity == "warning":
        logger.warning(alert.log_line())
    else:
        logger.error(alert.log_line())

    targets = (
        ("Slack", settings.slack_alerts_webhook_url, alert.to_slack),
        ("webhook", settings.alert_webhook_url, alert.to_payload),
    )
    for name, url, build_body in targets:
        if not url:
            continue
        try:
            await _post(url, build_body())
        except httpx.HTTPError as e:
            logger.error(f"Failed to send {name} alert: {e}")

    return alert


async def _post(url: str, body: dict[str, Any]) -> None:
    async with httpx.AsyncClient() as client:
        response = await client.post(url, json=body, timeout=10)
        response.raise_for_status()
