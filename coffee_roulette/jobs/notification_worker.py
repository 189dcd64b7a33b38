"""
Notification Worker: runs the dispatcher on a fixed polling cadence.

Run it as a long-lived process, or with ``--once`` from cron for a single
pass. Several workers may run at the same time; task claiming keeps them
from delivering the same notification twice.
"""

import asyncio
import logging
import signal
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.config import Settings, get_settings
from ..core.database import build_engine, build_session_factory
from ..services.channels import build_channels
from ..services.notification_dispatcher import NotificationDispatcher
from ..services.notification_queue import PermanentlyFailed
from ..services.templates import TemplateRenderer
from .alerts import send_alert

logger = logging.getLogger(__name__)


def build_dispatcher(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings | None = None,
) -> NotificationDispatcher:
    """Dispatcher wired from application settings."""
    settings = settings or get_settings()
    email_channel, teams_channel = build_channels(settings)
    return NotificationDispatcher(
        session_factory=session_factory,
        email_channel=email_channel,
        teams_channel=teams_channel,
        renderer=TemplateRenderer(settings.frontend_url, settings.matching_timezone),
        batch_size=settings.notification_batch_size,
        max_retries=settings.notification_max_retries,
        backoff_base_minutes=settings.notification_backoff_base_minutes,
        claim_timeout_minutes=settings.notification_claim_timeout_minutes,
    )


async def run_single_pass(dispatcher: NotificationDispatcher) -> dict[str, Any]:
    """One dispatcher pass; alerts operators about permanent failures."""
    report = await dispatcher.dispatch_due()
    results = {
        "due": report.due,
        "claimed": report.claimed,
        "sent": report.sent,
        "retrying": report.retrying,
        "failed": report.failed,
        "released": report.released,
    }

    if report.failed:
        failed_ids = [o.task_id for o in report.outcomes if isinstance(o, PermanentlyFailed)]
        await send_alert(
            title="Notifications Permanently Failed",
            message=f"{report.failed} notifications exhausted their retries and need manual intervention.",
            severity="warning",
            task_ids=failed_ids,
            details={**results, "errors": report.errors[:5]},
            source="coffee-roulette-notifications",
        )
    return results


async def run_notification_worker(
    database_url: str | None = None,
    once: bool = False,
    poll_interval_seconds: float | None = None,
) -> dict[str, Any] | None:
    settings = get_settings()
    engine = build_engine(database_url)
    dispatcher = build_dispatcher(build_session_factory(engine), settings)

    try:
        if once:
            return await run_single_pass(dispatcher)

        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)

        await dispatcher.run_forever(
            poll_interval_seconds or settings.notification_poll_interval_seconds,
            stop_event,
        )
        return None
    finally:
        await engine.dispose()


# =============================================================================
# CLI ENTRY POINT
# =============================================================================


def main():
    """CLI entry point for the notification worker."""
    import argparse
    import os

    parser = argparse.ArgumentParser(description="Deliver queued Coffee Roulette notifications")
    parser.add_argument(
        "--database-url",
        default=os.environ.get("DATABASE_URL"),
        help="PostgreSQL connection string",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single pass and exit",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Polling interval in seconds (defaults to settings)",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    database_url = args.database_url
    if database_url and database_url.startswith("postgresql://"):
        database_url = database_url.replace("postgresql://", "postgresql+asyncpg://", 1)

    try:
        results = asyncio.run(run_notification_worker(
            database_url=database_url,
            once=args.once,
            poll_interval_seconds=args.interval,
        ))
        if results is not None:
            print(f"Pass completed: {results}")
    except Exception as e:
        print(f"Worker failed: {e}")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
