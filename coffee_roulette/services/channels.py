"""
Notification channels: deliver a rendered message to one recipient.

Every channel returns ``(success, error_message)`` and never raises for
provider errors, so the dispatcher can combine channels for ``both``.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

import httpx

from ..integrations.teams import TeamsCards
from ..models import NotificationType, User
from .templates import RenderedMessage

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================


@dataclass
class EmailConfig:
    """Transactional email API configuration."""
    api_url: str | None = None
    api_key: str | None = None
    from_email: str = "coffee-roulette@example.com"
    from_name: str = "Coffee Roulette"
    timeout_seconds: float = 10.0
    dry_run: bool = False

    @property
    def configured(self) -> bool:
        return bool(self.api_url and self.api_key)


@dataclass
class TeamsConfig:
    """Teams incoming-webhook configuration."""
    webhook_url: str | None = None
    timeout_seconds: float = 10.0
    dry_run: bool = False


# =============================================================================
# NOTIFICATION CHANNELS
# =============================================================================


class NotificationChannel(ABC):
    """Abstract base for notification delivery channels."""

    name: str = "channel"

    @abstractmethod
    async def send(
        self,
        recipient: User,
        message: RenderedMessage,
        notification_type: NotificationType,
    ) -> tuple[bool, str | None]:
        """
        Send a notification.

        Returns:
            (success, error_message)
        """
        pass


class EmailChannel(NotificationChannel):
    """Email delivery through an HTTP email API."""

    name = "email"

    def __init__(self, config: EmailConfig, client: httpx.AsyncClient | None = None):
        self._config = config
        self._client = client

    async def send(
        self,
        recipient: User,
        message: RenderedMessage,
        notification_type: NotificationType,
    ) -> tuple[bool, str | None]:
        if self._config.dry_run or not self._config.configured:
            logger.info(
                f"[EMAIL] (not sent) To: {recipient.email}, Subject: {message.subject}, "
                f"Type: {notification_type.value}"
            )
            return True, None

        payload = {
            "from": {"email": self._config.from_email, "name": self._config.from_name},
            "to": [{"email": recipient.email, "name": recipient.full_name}],
            "subject": message.subject,
            "text": message.text,
            "html": message.html,
        }
        headers = {"Authorization": f"Bearer {self._config.api_key}"}

        try:
            if self._client is not None:
                response = await self._client.post(
                    self._config.api_url, json=payload, headers=headers,
                    timeout=self._config.timeout_seconds,
                )
            else:
                async with httpx.AsyncClient(timeout=self._config.timeout_seconds) as client:
                    response = await client.post(self._config.api_url, json=payload, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            error_msg = f"Email API returned {e.response.status_code}"
            logger.error(f"{error_msg} for {recipient.email}")
            return False, error_msg
        except httpx.HTTPError as e:
            error_msg = f"Failed to send email: {e}"
            logger.error(error_msg)
            return False, error_msg

        logger.info(f"[EMAIL] To: {recipient.email}, Subject: {message.subject}")
        return True, None


class TeamsChannel(NotificationChannel):
    """Adaptive Card delivery through a Teams incoming webhook."""

    name = "teams"

    def __init__(self, config: TeamsConfig, client: httpx.AsyncClient | None = None):
        self._config = config
        self._client = client

    async def send(
        self,
        recipient: User,
        message: RenderedMessage,
        notification_type: NotificationType,
    ) -> tuple[bool, str | None]:
        if self._config.dry_run or not self._config.webhook_url:
            logger.info(
                f"[TEAMS] (not sent) To: {recipient.email}, Title: {message.subject}, "
                f"Type: {notification_type.value}"
            )
            return True, None

        body = TeamsCards.webhook_message(message.card)

        try:
            if self._client is not None:
                response = await self._client.post(
                    self._config.webhook_url, json=body, timeout=self._config.timeout_seconds,
                )
            else:
                async with httpx.AsyncClient(timeout=self._config.timeout_seconds) as client:
                    response = await client.post(self._config.webhook_url, json=body)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            error_msg = f"Teams webhook returned {e.response.status_code}"
            logger.error(f"{error_msg} for {recipient.email}")
            return False, error_msg
        except httpx.HTTPError as e:
            error_msg = f"Failed to post Teams card: {e}"
            logger.error(error_msg)
            return False, error_msg

        logger.info(f"[TEAMS] To: {recipient.email}, Title: {message.subject}")
        return True, None


def build_channels(settings) -> tuple[EmailChannel, TeamsChannel]:
    """Channels configured from application settings."""
    email = EmailChannel(EmailConfig(
        api_url=settings.email_api_url,
        api_key=settings.email_api_key,
        from_email=settings.email_from,
        from_name=settings.email_from_name,
        dry_run=settings.notifications_dry_run,
    ))
    teams = TeamsChannel(TeamsConfig(
        webhook_url=settings.teams_webhook_url,
        dry_run=settings.notifications_dry_run,
    ))
    return email, teams
