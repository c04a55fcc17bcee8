"""
Scheduler: Triggers jobs at fixed wall-clock times (UTC).

Owns its own lifecycle. start() runs the loop on a daemon thread, stop()
prevents future firings without interrupting a callback already running.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

import structlog

from funding_trader.core.config import Config

logger = structlog.get_logger(__name__)


@dataclass
class ScheduledJob:
    """
    A callback fired at minute `minute` of each hour in `hours`.

    hours=None means every hour.
    """

    name: str
    callback: Callable[[], None]
    minute: int = 0
    hours: Optional[List[int]] = None
    next_run: Optional[datetime] = field(default=None, compare=False)
    last_run: Optional[datetime] = field(default=None, compare=False)


class Scheduler:
    """
    Wall-clock job scheduler.

    Funding-rate settlements happen at 00:00, 08:00 and 16:00 UTC on most
    venues, so the trading job fires at those instants. The hourly
    snapshot job shares the same loop.
    """

    def __init__(self, config: Config, jobs: Optional[List[ScheduledJob]] = None):
        """
        Initialize scheduler.

        Args:
            config: System configuration
            jobs: Jobs to fire; more can be added with add_job()
        """
        self.config = config
        self.jobs: List[ScheduledJob] = []
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        for job in jobs or []:
            self.add_job(job)

    def add_job(self, job: ScheduledJob):
        self.jobs.append(job)

    @staticmethod
    def next_fire_time(job: ScheduledJob, after: datetime) -> datetime:
        """
        First firing of `job` strictly after `after`.

        Returns:
            Next fire datetime (UTC)
        """
        hours = sorted(set(job.hours)) if job.hours is not None else list(range(24))
        day = after.replace(minute=0, second=0, microsecond=0, hour=0)
        for offset in range(2):
            base = day + timedelta(days=offset)
            for h in hours:
                candidate = base.replace(hour=h, minute=job.minute)
                if candidate > after:
                    return candidate
        raise ValueError(f"job {job.name!r} has no valid firing hours")

    def next_due(self, now: Optional[datetime] = None) -> Optional[ScheduledJob]:
        """Job with the earliest pending firing time."""
        if not self.jobs:
            return None
        now = now or datetime.now(timezone.utc)
        for job in self.jobs:
            if job.next_run is None:
                job.next_run = self.next_fire_time(job, now)
        return min(self.jobs, key=lambda j: j.next_run)

    def seconds_until_next(self, now: Optional[datetime] = None) -> float:
        now = now or datetime.now(timezone.utc)
        job = self.next_due(now)
        if job is None:
            return float(self.config.schedule.poll_interval_sec)
        return max(0.0, (job.next_run - now).total_seconds())

    def fire(self, job: ScheduledJob, now: Optional[datetime] = None):
        """Run one job's callback. Exceptions are logged, never raised."""
        now = now or datetime.now(timezone.utc)
        logger.info("job_triggered", job=job.name, scheduled_for=job.next_run.isoformat() if job.next_run else None)
        try:
            job.callback()
        except Exception:
            logger.exception("job_failed", job=job.name)
        job.last_run = now
        job.next_run = self.next_fire_time(job, max(now, job.next_run or now))

    def run_forever(self):
        """
        Run scheduler loop until stop() is called.

        Blocks. Sleeps in slices of at most poll_interval_sec so a stop
        request is noticed promptly.
        """
        self._reset()
        self._loop()

    def _reset(self):
        """Clear the stop flag and drop slots computed before a previous stop."""
        self._stop.clear()
        for job in self.jobs:
            job.next_run = None

    def _loop(self):
        logger.info("scheduler_started", jobs=[j.name for j in self.jobs])
        poll = self.config.schedule.poll_interval_sec

        while not self._stop.is_set():
            now = datetime.now(timezone.utc)
            job = self.next_due(now)
            if job is None:
                self._stop.wait(poll)
                continue

            sleep_sec = (job.next_run - now).total_seconds()
            if sleep_sec > 0:
                logger.debug("scheduler_waiting", job=job.name, seconds=round(sleep_sec), at=job.next_run.isoformat())
                self._stop.wait(min(sleep_sec, poll))
                continue

            self.fire(job, now)
            # Avoid double-trigger within the same minute
            self._stop.wait(self.config.schedule.refire_guard_sec)

        logger.info("scheduler_stopped")

    def start(self) -> threading.Thread:
        """Run the loop on a daemon thread."""
        if self.is_running:
            return self._thread
        self._reset()
        self._thread = threading.Thread(target=self._loop, name="scheduler", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self, timeout: Optional[float] = None):
        """Stop future firings. An in-flight callback runs to completion."""
        logger.info("scheduler_stopping")
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()


def build_default_scheduler(config: Config, cycle, kill_switch=None, metrics=None) -> Scheduler:
    """
    Scheduler with the funding-rate trading job and the hourly asset snapshot.

    When a kill switch is given, a tripped switch makes the trading job skip
    until reset.
    """

    def trading_job():
        if kill_switch is not None and kill_switch.triggered:
            logger.warning("trading_cycle_skipped", reason=kill_switch.reason)
            return
        cycle.run()
        if metrics is not None and cycle.last_report is not None:
            metrics.record_cycle(cycle.last_report)
            if kill_switch is not None:
                kill_switch.check(metrics.snapshot())

    jobs = [
        ScheduledJob(
            name="funding_trade",
            callback=trading_job,
            minute=config.schedule.funding_minute,
            hours=list(config.schedule.funding_hours_utc),
        )
    ]
    if config.schedule.snapshot_enabled:
        jobs.append(
            ScheduledJob(
                name="asset_snapshot",
                callback=cycle.record_asset_snapshots,
                minute=config.schedule.snapshot_minute,
            )
        )
    return Scheduler(config, jobs)
