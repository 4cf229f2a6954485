"""
Background execution of alert checks and the schedule for running them.
"""

import logging
from concurrent.futures import Future, ThreadPoolExecutor, wait
from datetime import datetime
from typing import Any, Callable, Optional

from alertwatch.config import ALERT_TYPES, ScheduleConfig
from alertwatch.data.stock import is_market_open

logger = logging.getLogger(__name__)


class JobQueue:
    """
    Runs units of work later on a single background worker.

    One worker keeps checks for the same alert strictly sequential.
    """

    def __init__(self, max_workers: int = 1):
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="alertwatch-job"
        )
        self._futures: list[Future] = []

    def submit(self, job: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        """Queue a job and return its future."""
        future = self._executor.submit(self._run, job, *args, **kwargs)
        self._futures.append(future)
        return future

    def wait_all(self, timeout: Optional[float] = None) -> int:
        """
        Block until every queued job has finished.

        Returns:
            Number of jobs that raised
        """
        done, _ = wait(self._futures, timeout=timeout)
        failed = sum(1 for future in done if future.exception() is not None)
        self._futures = [future for future in self._futures if not future.done()]
        return failed

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)

    def __enter__(self) -> "JobQueue":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.shutdown()

    @staticmethod
    def _run(job: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        try:
            return job(*args, **kwargs)
        except Exception as e:
            logger.error(f"Background job {getattr(job, '__name__', job)} failed: {e}")
            raise


def should_check_type(
    alert_type: str,
    force: bool = False,
    now: Optional[datetime] = None,
    market_timezone: str = "America/New_York",
) -> bool:
    """
    Decide whether a scheduled check of an alert type should run.

    Stock checks are skipped outside regular market hours unless forced.
    """
    if alert_type != "stock" or force:
        return True
    if is_market_open(now, market_timezone):
        return True
    logger.info("Market is closed. Skipping stock alerts. Use --force to check anyway.")
    return False


def cron_expression(minutes: int) -> str:
    """
    Cron schedule for a check that runs every `minutes` minutes.

    Intervals of an hour or more are rounded down to whole hours and
    anything from a day up runs once at midnight.
    """
    if minutes <= 1:
        return "* * * * *"
    if minutes < 60:
        return f"*/{minutes} * * * *"
    hours = minutes // 60
    if hours == 1:
        return "0 * * * *"
    if hours < 24:
        return f"0 */{hours} * * *"
    return "0 0 * * *"


def crontab_lines(schedule: ScheduleConfig, command: str = "alertwatch") -> list[str]:
    """
    Crontab entries that run each alert type's check at its interval.

    Args:
        schedule: Timezone and per-type intervals in minutes
        command: Command line prefix invoking the CLI

    Returns:
        A CRON_TZ line followed by one entry per alert type
    """
    lines = [f"CRON_TZ={schedule.timezone}"]
    for alert_type in ALERT_TYPES:
        minutes = schedule.intervals[alert_type]
        lines.append(f"{cron_expression(minutes)} {command} check --type {alert_type}")
    return lines
