"""
Notification Dispatcher: polls due tasks and delivers them with retry/backoff.

One pass:
1. Settle claims left behind by a crashed dispatcher (counted as a failed attempt)
2. Select up to ``batch_size`` due task ids, oldest first
3. For each task: claim (own transaction), render and deliver (no
   transaction held), record the outcome (own transaction)

Channel ``both`` succeeds when at least one channel succeeds. A task whose
delivery fails ``max_retries`` times ends permanently ``failed``.
"""

import asyncio
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from ..core.database import unit_of_work
from ..models import DeliveryChannel, NotificationTask, NotificationType, Pairing, User
from .channels import NotificationChannel
from .exceptions import DeliveryError
from .notification_queue import (
    DeliveryOutcome,
    NotificationQueue,
    Retrying,
    RetryPolicy,
    Sent,
)
from .templates import RenderedMessage, TemplateRenderer

logger = logging.getLogger(__name__)


@dataclass
class DispatchReport:
    """Summary of one dispatcher pass."""
    due: int = 0
    claimed: int = 0
    sent: int = 0
    retrying: int = 0
    failed: int = 0
    released: int = 0
    outcomes: list[DeliveryOutcome] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def record(self, outcome: DeliveryOutcome) -> None:
        self.outcomes.append(outcome)
        if isinstance(outcome, Sent):
            self.sent += 1
        elif isinstance(outcome, Retrying):
            self.retrying += 1
            self.errors.append(f"Notification {outcome.task_id}: {outcome.error}")
        else:
            self.failed += 1
            self.errors.append(f"Notification {outcome.task_id}: {outcome.error}")


class NotificationDispatcher:
    """Delivers due notification tasks through the configured channels."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        email_channel: NotificationChannel,
        teams_channel: NotificationChannel,
        renderer: TemplateRenderer,
        batch_size: int = 50,
        max_retries: int = 3,
        backoff_base_minutes: int = 5,
        claim_timeout_minutes: int = 15,
    ):
        self._session_factory = session_factory
        self._channels: dict[DeliveryChannel, list[NotificationChannel]] = {
            DeliveryChannel.EMAIL: [email_channel],
            DeliveryChannel.TEAMS: [teams_channel],
            DeliveryChannel.BOTH: [email_channel, teams_channel],
        }
        self._renderer = renderer
        self._batch_size = batch_size
        self._policy = RetryPolicy(max_attempts=max_retries, base_delay_minutes=backoff_base_minutes)
        self._claim_timeout = timedelta(minutes=claim_timeout_minutes)

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._policy

    # =========================================================================
    # POLLING
    # =========================================================================

    async def dispatch_due(self, now: datetime | None = None) -> DispatchReport:
        """Run a single pass over due tasks."""
        now = now or datetime.now(timezone.utc)
        report = DispatchReport()

        async with unit_of_work(self._session_factory) as session:
            queue = NotificationQueue(session)
            report.released = await queue.release_stale_claims(
                now - self._claim_timeout, self._policy, now,
            )
            task_ids = await queue.due_task_ids(now, self._batch_size)

        report.due = len(task_ids)
        logger.info(f"Processing {len(task_ids)} pending notifications")

        for task_id in task_ids:
            outcome = await self.dispatch_task(task_id, now)
            if outcome is None:
                continue
            report.claimed += 1
            report.record(outcome)

        logger.info(
            f"Notification processing completed: due={report.due} sent={report.sent} "
            f"retrying={report.retrying} failed={report.failed}"
        )
        return report

    async def run_forever(
        self,
        poll_interval_seconds: float = 300,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        """Poll on a fixed cadence until ``stop_event`` is set."""
        stop_event = stop_event or asyncio.Event()
        logger.info(f"Notification dispatcher started (poll every {poll_interval_seconds}s)")

        while not stop_event.is_set():
            try:
                await self.dispatch_due()
            except Exception as e:
                logger.exception(f"Notification pass failed: {e}")

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=poll_interval_seconds)
            except asyncio.TimeoutError:
                pass

        logger.info("Notification dispatcher stopped")

    # =========================================================================
    # SINGLE TASK
    # =========================================================================

    async def dispatch_task(self, task_id: UUID, now: datetime | None = None) -> DeliveryOutcome | None:
        """
        Claim, deliver and record one task.

        Returns None when another dispatcher already claimed it.
        """
        now = now or datetime.now(timezone.utc)

        async with unit_of_work(self._session_factory) as session:
            claimed = await NotificationQueue(session).claim(task_id, now)
            if claimed:
                previous_attempts = await session.scalar(
                    select(NotificationTask.retry_count).where(NotificationTask.id == task_id)
                )
        if not claimed:
            logger.debug(f"Notification {task_id} already claimed elsewhere, skipping")
            return None

        try:
            async with unit_of_work(self._session_factory) as session:
                task = await self._load_task(session, task_id)
                message = self._render(task, now)
                recipient = task.recipient
                channel = task.channel
                notification_type = task.notification_type

            await self._deliver(channel, recipient, message, notification_type)
            outcome: DeliveryOutcome = Sent(task_id=task_id, sent_at=datetime.now(timezone.utc))
            logger.info(
                f"Notification sent: id={task_id} type={notification_type.value} "
                f"channel={channel.value} recipient={recipient.email}"
            )
        except Exception as e:
            outcome = self._policy.on_failure(task_id, previous_attempts, str(e), now)
            if isinstance(outcome, Retrying):
                logger.warning(
                    f"Notification {task_id} failed (attempt {outcome.attempt}), "
                    f"retrying at {outcome.retry_at.isoformat()}: {e}"
                )
            else:
                logger.error(
                    f"Notification {task_id} permanently failed after {outcome.attempts} attempts: {e}"
                )

        async with unit_of_work(self._session_factory) as session:
            await NotificationQueue(session).apply_outcome(outcome)

        return outcome

    async def _load_task(self, session: AsyncSession, task_id: UUID) -> NotificationTask:
        result = await session.execute(
            select(NotificationTask)
            .where(NotificationTask.id == task_id)
            .options(
                selectinload(NotificationTask.recipient).selectinload(User.department),
                selectinload(NotificationTask.pairing).selectinload(Pairing.user1).selectinload(User.department),
                selectinload(NotificationTask.pairing).selectinload(Pairing.user2).selectinload(User.department),
                selectinload(NotificationTask.pairing).selectinload(Pairing.icebreakers),
            )
        )
        return result.scalar_one()

    def _render(self, task: NotificationTask, now: datetime) -> RenderedMessage:
        return self._renderer.render(task.notification_type, self.build_variables(task, now))

    @staticmethod
    def build_variables(task: NotificationTask, now: datetime) -> dict:
        """Fully prepared variable set for the renderer."""
        recipient = task.recipient
        variables: dict = {
            "user_name": recipient.first_name,
            "user_email": recipient.email,
        }

        if task.notification_type == NotificationType.ADMIN_ALERT:
            variables.update(task.payload or {})
            return variables
        if task.notification_type == NotificationType.WELCOME:
            return variables

        pairing = task.pairing
        if pairing is None:
            raise ValueError(f"Notification {task.id} of type {task.notification_type.value} has no pairing")

        partner = pairing.user2 if recipient.id == pairing.user1_id else pairing.user1
        variables.update(
            pairing_id=str(pairing.id),
            partner_name=partner.full_name,
            partner_email=partner.email,
            partner_department=partner.department.name if partner.department else "Unknown",
            meeting_date=pairing.meeting_scheduled_at,
            meeting_link=pairing.meeting_link,
            icebreakers=[topic.topic for topic in pairing.icebreakers],
        )
        if task.notification_type == NotificationType.REMINDER and pairing.meeting_scheduled_at:
            remaining = (pairing.meeting_scheduled_at - now).total_seconds() / 86400
            variables["days_until"] = max(0, math.ceil(remaining))
        return variables

    async def _deliver(
        self,
        channel: DeliveryChannel,
        recipient: User,
        message: RenderedMessage,
        notification_type: NotificationType,
    ) -> None:
        """Raise DeliveryError only if every channel for this task failed."""
        errors: dict[str, str] = {}
        delivered = 0

        for sender in self._channels[channel]:
            success, error = await sender.send(recipient, message, notification_type)
            if success:
                delivered += 1
            else:
                errors[sender.name] = error or "unknown error"

        if delivered == 0:
            detail = "; ".join(f"{name}: {err}" for name, err in errors.items())
            raise DeliveryError(f"All channels failed ({detail})", channel_errors=errors)

        if errors:
            logger.warning(
                f"Partial delivery to {recipient.email}: "
                + ", ".join(f"{name} failed ({err})" for name, err in errors.items())
            )
