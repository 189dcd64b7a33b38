"""Scheduled jobs: matching rounds and notification delivery."""

from .alerts import send_alert
from .matching_cron import run_matching_job
from .notification_worker import build_dispatcher, run_notification_worker, run_single_pass

__all__ = [
    "send_alert",
    "run_matching_job",
    "build_dispatcher",
    "run_notification_worker",
    "run_single_pass",
]
