"""
Notification Queue: durable store of what must be sent, to whom, and when.

Task lifecycle:

    pending --claim--> processing --Sent--------------> sent
                                  --Retrying----------> pending (scheduled_for pushed back)
                                  --PermanentlyFailed-> failed

Claiming is a conditional UPDATE (``status = pending``), so concurrent
dispatchers cannot both deliver the same task.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import (
    DeliveryChannel,
    NotificationStatus,
    NotificationTask,
    NotificationType,
    Pairing,
)
from .exceptions import NotificationError, NotificationTaskNotFoundError

logger = logging.getLogger(__name__)

REMINDER_DAYS_BEFORE = (7, 1)
FEEDBACK_DAYS_AFTER = 1


# =============================================================================
# DELIVERY OUTCOMES
# =============================================================================


@dataclass(frozen=True)
class Sent:
    task_id: UUID
    sent_at: datetime


@dataclass(frozen=True)
class Retrying:
    task_id: UUID
    retry_at: datetime
    attempt: int
    error: str


@dataclass(frozen=True)
class PermanentlyFailed:
    task_id: UUID
    attempts: int
    error: str


DeliveryOutcome = Sent | Retrying | PermanentlyFailed


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff: 2x base, 4x base ... until the cap."""

    max_attempts: int = 3
    base_delay_minutes: int = 5

    def backoff(self, attempt: int) -> timedelta:
        """Delay after the ``attempt``-th failure (1-based, already incremented)."""
        return timedelta(minutes=self.base_delay_minutes * 2 ** attempt)

    def on_failure(
        self,
        task_id: UUID,
        previous_attempts: int,
        error: str,
        now: datetime,
    ) -> Retrying | PermanentlyFailed:
        attempts = previous_attempts + 1
        if attempts < self.max_attempts:
            return Retrying(
                task_id=task_id,
                retry_at=now + self.backoff(attempts),
                attempt=attempts,
                error=error,
            )
        return PermanentlyFailed(task_id=task_id, attempts=attempts, error=error)


@dataclass
class QueueStats:
    pending: int = 0
    processing: int = 0
    sent: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.pending + self.processing + self.sent + self.failed


# =============================================================================
# NOTIFICATION QUEUE
# =============================================================================


class NotificationQueue:
    """Session-scoped access to the ``notification_queue`` table."""

    def __init__(
        self,
        session: AsyncSession,
        default_channel: DeliveryChannel = DeliveryChannel.BOTH,
    ):
        self._session = session
        self._default_channel = default_channel

    # =========================================================================
    # ENQUEUE
    # =========================================================================

    async def enqueue(
        self,
        recipient_id: UUID,
        notification_type: NotificationType,
        channel: DeliveryChannel | None = None,
        scheduled_for: datetime | None = None,
        pairing_id: UUID | None = None,
        matching_round_id: UUID | None = None,
        payload: dict[str, Any] | None = None,
    ) -> NotificationTask:
        task = NotificationTask(
            recipient_id=recipient_id,
            notification_type=notification_type,
            channel=channel or self._default_channel,
            status=NotificationStatus.PENDING,
            scheduled_for=scheduled_for or datetime.now(timezone.utc),
            pairing_id=pairing_id,
            matching_round_id=matching_round_id,
            payload=payload or {},
            retry_count=0,
        )
        self._session.add(task)
        await self._session.flush()

        logger.info(
            f"Notification queued: id={task.id} type={notification_type.value} "
            f"channel={task.channel.value} recipient={recipient_id}"
        )
        return task

    async def _enqueue_for_members(
        self,
        pairing: Pairing,
        notification_type: NotificationType,
        scheduled_for: datetime | None = None,
        channel: DeliveryChannel | None = None,
    ) -> list[NotificationTask]:
        tasks = []
        for recipient_id in (pairing.user1_id, pairing.user2_id):
            tasks.append(await self.enqueue(
                recipient_id=recipient_id,
                notification_type=notification_type,
                channel=channel,
                scheduled_for=scheduled_for,
                pairing_id=pairing.id,
                matching_round_id=pairing.matching_round_id,
            ))
        return tasks

    async def enqueue_pairing_notifications(
        self,
        pairing: Pairing,
        channel: DeliveryChannel | None = None,
    ) -> list[NotificationTask]:
        """Immediate announcement to both members."""
        tasks = await self._enqueue_for_members(pairing, NotificationType.PAIRING, channel=channel)
        logger.info(f"Queued {len(tasks)} pairing notifications for pairing {pairing.id}")
        return tasks

    async def enqueue_reminders(
        self,
        pairing: Pairing,
        days_before: Sequence[int] = REMINDER_DAYS_BEFORE,
        channel: DeliveryChannel | None = None,
        now: datetime | None = None,
    ) -> list[NotificationTask]:
        """Reminders offset backward from the meeting; past offsets are skipped."""
        if not pairing.meeting_scheduled_at:
            return []

        now = now or datetime.now(timezone.utc)
        tasks = []
        for days in days_before:
            scheduled_for = pairing.meeting_scheduled_at - timedelta(days=days)
            if scheduled_for < now:
                logger.debug(
                    f"Skipping {days}-day reminder for pairing {pairing.id}: meeting is sooner"
                )
                continue
            tasks.extend(await self._enqueue_for_members(
                pairing, NotificationType.REMINDER, scheduled_for=scheduled_for, channel=channel,
            ))

        logger.info(f"Queued {len(tasks)} reminder notifications for pairing {pairing.id}")
        return tasks

    async def enqueue_feedback_request(
        self,
        pairing: Pairing,
        days_after: int = FEEDBACK_DAYS_AFTER,
        channel: DeliveryChannel | None = None,
    ) -> list[NotificationTask]:
        """Feedback request offset forward from the meeting."""
        if not pairing.meeting_scheduled_at:
            return []

        scheduled_for = pairing.meeting_scheduled_at + timedelta(days=days_after)
        tasks = await self._enqueue_for_members(
            pairing, NotificationType.FEEDBACK_REQUEST, scheduled_for=scheduled_for, channel=channel,
        )
        logger.info(f"Queued {len(tasks)} feedback notifications for pairing {pairing.id}")
        return tasks

    async def enqueue_welcome(
        self,
        recipient_id: UUID,
        channel: DeliveryChannel | None = None,
    ) -> NotificationTask:
        return await self.enqueue(
            recipient_id=recipient_id,
            notification_type=NotificationType.WELCOME,
            channel=channel,
        )

    async def enqueue_admin_alert(
        self,
        recipient_id: UUID,
        subject: str,
        details: dict[str, Any] | None = None,
        matching_round_id: UUID | None = None,
        channel: DeliveryChannel | None = None,
    ) -> NotificationTask:
        return await self.enqueue(
            recipient_id=recipient_id,
            notification_type=NotificationType.ADMIN_ALERT,
            channel=channel,
            matching_round_id=matching_round_id,
            payload={"subject": subject, "details": details or {}},
        )

    # =========================================================================
    # DISPATCH SUPPORT
    # =========================================================================

    async def due_task_ids(self, now: datetime, limit: int) -> list[UUID]:
        """Pending tasks whose time has come, oldest first."""
        result = await self._session.execute(
            select(NotificationTask.id)
            .where(
                NotificationTask.status == NotificationStatus.PENDING,
                NotificationTask.scheduled_for <= now,
            )
            .order_by(NotificationTask.scheduled_for.asc(), NotificationTask.created_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def claim(self, task_id: UUID, now: datetime) -> bool:
        """Atomically move a pending task to processing. False if someone else won."""
        result = await self._session.execute(
            update(NotificationTask)
            .where(
                NotificationTask.id == task_id,
                NotificationTask.status == NotificationStatus.PENDING,
            )
            .values(status=NotificationStatus.PROCESSING, claimed_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def apply_outcome(self, outcome: DeliveryOutcome) -> bool:
        """Record a delivery outcome on a task this dispatcher has claimed."""
        if isinstance(outcome, Sent):
            values = {
                "status": NotificationStatus.SENT,
                "sent_at": outcome.sent_at,
                "error_message": None,
            }
        elif isinstance(outcome, Retrying):
            values = {
                "status": NotificationStatus.PENDING,
                "scheduled_for": outcome.retry_at,
                "retry_count": outcome.attempt,
                "error_message": outcome.error,
            }
        else:
            values = {
                "status": NotificationStatus.FAILED,
                "retry_count": outcome.attempts,
                "error_message": outcome.error,
            }
        values["claimed_at"] = None

        result = await self._session.execute(
            update(NotificationTask)
            .where(
                NotificationTask.id == outcome.task_id,
                NotificationTask.status == NotificationStatus.PROCESSING,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(f"Notification {outcome.task_id} was no longer in flight, outcome dropped")
            return False
        return True

    async def release_stale_claims(
        self,
        older_than: datetime,
        policy: RetryPolicy | None = None,
        now: datetime | None = None,
    ) -> int:
        """
        Settle tasks stuck in processing (crashed or hung dispatcher).

        An expired claim counts as a failed attempt, so a task that takes the
        worker down every time still reaches the retry cap and ends ``failed``.
        """
        policy = policy or RetryPolicy()
        now = now or datetime.now(timezone.utc)

        result = await self._session.execute(
            select(NotificationTask.id, NotificationTask.retry_count)
            .where(
                NotificationTask.status == NotificationStatus.PROCESSING,
                NotificationTask.claimed_at < older_than,
            )
        )
        released = 0
        for task_id, retry_count in result.all():
            outcome = policy.on_failure(
                task_id, retry_count, "Delivery attempt abandoned: claim expired", now,
            )
            if await self.apply_outcome(outcome):
                released += 1

        if released:
            logger.warning(f"Released {released} stale notification claims")
        return released

    async def get(self, task_id: UUID) -> NotificationTask:
        task = await self._session.get(NotificationTask, task_id)
        if task is None:
            raise NotificationTaskNotFoundError(f"Notification task {task_id} not found")
        return task

    # =========================================================================
    # OPERATOR SURFACE
    # =========================================================================

    async def stats(self) -> QueueStats:
        result = await self._session.execute(
            select(NotificationTask.status, func.count())
            .group_by(NotificationTask.status)
        )
        stats = QueueStats()
        for status, count in result.all():
            setattr(stats, NotificationStatus(status).value, count)
        return stats

    async def failed_tasks(self, limit: int = 100) -> list[NotificationTask]:
        result = await self._session.execute(
            select(NotificationTask)
            .where(NotificationTask.status == NotificationStatus.FAILED)
            .order_by(NotificationTask.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def requeue(self, task_id: UUID, now: datetime | None = None) -> NotificationTask:
        """Manual intervention: give a permanently failed task a fresh retry budget."""
        task = await self.get(task_id)
        if task.status != NotificationStatus.FAILED:
            raise NotificationError(
                f"Notification task {task_id} is {task.status.value}, only failed tasks can be re-queued"
            )
        task.status = NotificationStatus.PENDING
        task.retry_count = 0
        task.error_message = None
        task.scheduled_for = now or datetime.now(timezone.utc)
        await self._session.flush()
        logger.info(f"Notification {task_id} re-queued by operator")
        return task
