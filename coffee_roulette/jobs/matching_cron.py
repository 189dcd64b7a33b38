"""
Matching Cron Job: scheduled execution of a matching round.

This module is invoked by an external scheduler (cron, Kubernetes CronJob or
similar). Each invocation consults the stored schedule: the round only runs
when auto-scheduling is enabled and the next run date has arrived, so the
external tick can be more frequent than the cadence. A manual round with
``reset_auto_schedule`` pushes the next run date forward the same way.

Typical cron schedule: 0 9 * * * (daily check at 9 AM, America/New_York)
"""

import asyncio
import logging
import traceback
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.database import build_engine, build_session_factory, unit_of_work
from ..models import RoundSource
from ..services.exceptions import InsufficientParticipantsError, MatchingError, RoundInProgressError
from ..services.round_coordinator import RoundCoordinator, RoundRequest
from ..services.schedule import ScheduleService
from .alerts import send_alert

logger = logging.getLogger(__name__)


async def run_matching_job(
    database_url: str | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    seed: int | None = None,
    ignore_recent_history: bool = False,
    force: bool = False,
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Main entry point for the scheduled matching round.

    Business-rule rejections (not enough participants, a round already
    running) are reported as warnings and do not raise. Anything else is a
    crash: alert as critical and re-raise.

    Returns:
        Job result summary
    """
    start_time = now or datetime.now(timezone.utc)

    engine = None
    if session_factory is None:
        engine = build_engine(database_url)
        session_factory = build_session_factory(engine)

    results: dict[str, Any] = {
        "started_at": start_time.isoformat(),
        "completed_at": None,
        "status": None,
        "round_id": None,
        "total_participants": 0,
        "total_pairings": 0,
        "notifications_queued": 0,
        "next_run_at": None,
        "errors": [],
    }

    try:
        async with unit_of_work(session_factory) as session:
            schedule = ScheduleService(session)
            config = await schedule.get_config(start_time)
            due = force or await schedule.is_due(start_time)

        logger.info(
            f"Matching job tick at {start_time.isoformat()} "
            f"(schedule '{config.cron_expression}', tz {config.timezone}, "
            f"enabled={config.enabled}, next run {config.next_run_at})"
        )
        if not due:
            results["status"] = "disabled" if not config.enabled else "not_due"
            results["next_run_at"] = config.next_run_at.isoformat() if config.next_run_at else None
            logger.info(f"Matching round not run: {results['status']}")
            return results

        coordinator = RoundCoordinator(
            session_factory=session_factory,
            seed=seed,
            timezone_name=config.timezone,
        )
        await _run_round(coordinator, results, ignore_recent_history)

        if results["status"] == "completed" or results["skip_reason"] == "insufficient_participants":
            async with unit_of_work(session_factory) as session:
                recorded = await ScheduleService(session).record_scheduled_run(start_time)
            results["next_run_at"] = recorded.next_run_at.isoformat() if recorded.next_run_at else None

    finally:
        if engine is not None:
            await engine.dispose()

    end_time = datetime.now(timezone.utc)
    results["completed_at"] = end_time.isoformat()
    results["duration_seconds"] = (end_time - start_time).total_seconds()

    logger.info(
        f"Matching job finished in {results['duration_seconds']:.2f}s: status={results['status']}, "
        f"{results['total_pairings']} pairings, {results['notifications_queued']} notifications queued"
    )
    return results


async def _run_round(
    coordinator: RoundCoordinator,
    results: dict[str, Any],
    ignore_recent_history: bool,
) -> None:
    results["skip_reason"] = None
    try:
        outcome = await coordinator.run_round(RoundRequest(
            source=RoundSource.SCHEDULED,
            triggered_by="cron",
            ignore_recent_history=ignore_recent_history,
        ))
        results.update(
            status=outcome.status.value,
            round_id=str(outcome.round_id),
            total_participants=outcome.total_participants,
            total_pairings=outcome.total_pairings,
            notifications_queued=outcome.notifications_queued,
        )

    except (InsufficientParticipantsError, RoundInProgressError) as e:
        results["status"] = "skipped"
        results["skip_reason"] = (
            "insufficient_participants" if isinstance(e, InsufficientParticipantsError) else "round_in_progress"
        )
        results["round_id"] = str(e.round_id) if e.round_id else None
        results["errors"].append(str(e))
        await send_alert(
            title="Matching Round Skipped",
            message=str(e),
            severity="warning",
            round_id=e.round_id,
            details={"reason": results["skip_reason"], "started_at": results["started_at"]},
        )

    except Exception as e:
        error_msg = f"Matching job failed: {e}"
        logger.error(error_msg)
        results["status"] = "failed"
        results["errors"].append(error_msg)

        await send_alert(
            title="Matching Cron Job Failed",
            message="The scheduled matching round crashed unexpectedly.",
            severity="critical",
            round_id=e.round_id if isinstance(e, MatchingError) else None,
            details={
                "error": str(e),
                "traceback": traceback.format_exc()[-500:],
                "started_at": results["started_at"],
            },
        )
        raise


# =============================================================================
# CLI ENTRY POINT
# =============================================================================


def main():
    """CLI entry point for the matching job."""
    import argparse
    import os

    parser = argparse.ArgumentParser(description="Run a scheduled Coffee Roulette matching round")
    parser.add_argument(
        "--database-url",
        default=os.environ.get("DATABASE_URL"),
        help="PostgreSQL connection string",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Random seed for a reproducible shuffle",
    )
    parser.add_argument(
        "--ignore-recent-history",
        action="store_true",
        help="Do not penalize recent repeat pairings",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Run even if the stored schedule says the next run is not due yet",
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
        results = asyncio.run(run_matching_job(
            database_url=database_url,
            seed=args.seed,
            ignore_recent_history=args.ignore_recent_history,
            force=args.force,
        ))
        print(f"Job completed: {results}")
    except Exception as e:
        print(f"Job failed: {e}")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
