"""Schemas for the notification operator endpoints."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import Field

from ..models import DeliveryChannel, NotificationStatus, NotificationType
from .base import RouletteBaseModel


class QueueStatsResponse(RouletteBaseModel):
    pending: int
    processing: int
    sent: int
    failed: int
    total: int


class NotificationTaskResponse(RouletteBaseModel):
    id: UUID
    recipient_id: UUID
    pairing_id: UUID | None = None
    matching_round_id: UUID | None = None
    notification_type: NotificationType
    channel: DeliveryChannel
    status: NotificationStatus
    scheduled_for: datetime
    sent_at: datetime | None = None
    error_message: str | None = None
    retry_count: int
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
