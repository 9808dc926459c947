"""
BinWatch — Weekly Summary Scheduler
Background thread that runs the aggregator every Sunday 02:00 (local to
SUMMARY_TIMEZONE) over the trailing week. Failed runs are retried a fixed
number of times; a run that still fails is logged and skipped, and the
next weekly slot is unaffected.
"""
import logging
import threading
import time
from datetime import timedelta, timezone
from zoneinfo import ZoneInfo

from alerting.errors import BinWatchError
from alerting.models import utcnow
from config.settings import (
    SUMMARY_HOUR, SUMMARY_RETRY_COUNT, SUMMARY_RETRY_DELAY_SEC,
    SUMMARY_TIMEZONE, SUMMARY_WEEKDAY,
)

logger = logging.getLogger(__name__)


def next_weekly_run(after, weekday=SUMMARY_WEEKDAY, hour=SUMMARY_HOUR, tz_name=SUMMARY_TIMEZONE):
    """First `weekday` at `hour`:00 local time strictly after `after`, in UTC."""
    local = after.astimezone(ZoneInfo(tz_name))
    days_ahead = (weekday - local.weekday()) % 7
    candidate = (local + timedelta(days=days_ahead)).replace(hour=hour, minute=0, second=0, microsecond=0)
    if candidate <= local:
        candidate += timedelta(days=7)
    return candidate.astimezone(timezone.utc)


def run_with_retries(job, retries=SUMMARY_RETRY_COUNT, delay=SUMMARY_RETRY_DELAY_SEC, sleep=time.sleep):
    """
    Call `job()` up to 1 + `retries` times on BinWatchError.
    Returns the job's result, or None when every attempt failed.
    """
    attempts = retries + 1
    for attempt in range(1, attempts + 1):
        try:
            return job()
        except BinWatchError as e:
            if attempt == attempts:
                logger.error("Scheduled job failed after %d attempts: %s", attempts, e)
                return None
            logger.warning("Scheduled job attempt %d/%d failed: %s; retrying in %ss",
                           attempt, attempts, e, delay)
            sleep(delay)
    return None


class WeeklySummaryScheduler:

    def __init__(self, aggregator, clock=None, retries=SUMMARY_RETRY_COUNT,
                 retry_delay=SUMMARY_RETRY_DELAY_SEC):
        self.aggregator = aggregator
        self.retries = retries
        self.retry_delay = retry_delay
        self._clock = clock or utcnow
        self._stop = threading.Event()
        self._thread = None

    def run_once(self):
        """One scheduled run with retries. Returns the summaries, or None."""
        now = self._clock()
        return run_with_retries(
            lambda: self.aggregator.summarize_last_week(now),
            retries=self.retries,
            delay=self.retry_delay,
            sleep=self._stop.wait,
        )

    def start(self):
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="weekly-summary", daemon=True)
        self._thread.start()
        logger.info("Weekly summary scheduler started (next run %s)", next_weekly_run(self._clock()))

    def stop(self):
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=5)

    def _loop(self):
        last_slot = None
        while not self._stop.is_set():
            now = self._clock()
            next_run = next_weekly_run(max(now, last_slot) if last_slot else now)
            wait_sec = max(0.0, (next_run - now).total_seconds())
            if self._stop.wait(wait_sec):
                break
            last_slot = next_run
            try:
                self.run_once()
            except Exception:
                logger.exception("Weekly summary run crashed")
