"""Tests for the wall-clock scheduler."""

import time
from datetime import datetime, timezone
from unittest.mock import Mock

from funding_trader.core.scheduler import ScheduledJob, Scheduler, build_default_scheduler
from funding_trader.monitoring.kill_switch import KillSwitch
from funding_trader.monitoring.metrics import MetricsCollector
from funding_trader.trading.cycle import CycleReport, UnitOutcome, UnitResult


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def funding_job(callback=None):
    return ScheduledJob(name="funding_trade", callback=callback or Mock(), minute=0, hours=[0, 8, 16])


class TestNextFireTime:
    """Firing-time arithmetic."""

    def test_next_funding_hour(self):
        assert Scheduler.next_fire_time(funding_job(), utc(2024, 5, 1, 3, 17)) == utc(2024, 5, 1, 8, 0)

    def test_strictly_after(self):
        assert Scheduler.next_fire_time(funding_job(), utc(2024, 5, 1, 8, 0)) == utc(2024, 5, 1, 16, 0)

    def test_wraps_to_next_day(self):
        assert Scheduler.next_fire_time(funding_job(), utc(2024, 5, 31, 16, 0, 1)) == utc(2024, 6, 1, 0, 0)

    def test_hourly_job(self):
        job = ScheduledJob(name="asset_snapshot", callback=Mock(), minute=5)
        assert Scheduler.next_fire_time(job, utc(2024, 5, 1, 23, 30)) == utc(2024, 5, 2, 0, 5)


class TestScheduler:
    """Job selection and firing."""

    def test_next_due_picks_earliest(self, config):
        hourly = ScheduledJob(name="asset_snapshot", callback=Mock(), minute=0)
        scheduler = Scheduler(config, [funding_job(), hourly])
        now = utc(2024, 5, 1, 3, 17)
        assert scheduler.next_due(now) is hourly
        assert scheduler.seconds_until_next(now) == 43 * 60

    def test_fire_swallows_callback_errors(self, config):
        job = funding_job(Mock(side_effect=RuntimeError("exchange down")))
        scheduler = Scheduler(config, [job])
        now = utc(2024, 5, 1, 8, 0)
        scheduler.next_due(utc(2024, 5, 1, 7, 59))
        scheduler.fire(job, now)
        job.callback.assert_called_once_with()
        assert job.last_run == now
        assert job.next_run == utc(2024, 5, 1, 16, 0)

    def test_stop_without_start(self, config):
        scheduler = Scheduler(config)
        scheduler.stop()
        assert not scheduler.is_running

    def test_start_and_stop_thread(self, config):
        config.schedule.poll_interval_sec = 0.05
        scheduler = Scheduler(config, [funding_job()])
        scheduler.start()
        assert scheduler.is_running
        scheduler.stop(timeout=2)
        assert not scheduler.is_running

    def test_restart_drops_stale_slot(self, config):
        config.schedule.poll_interval_sec = 0.05
        job = funding_job()
        job.next_run = utc(2020, 1, 1, 8, 0)
        scheduler = Scheduler(config, [job])
        scheduler.start()
        time.sleep(0.2)
        scheduler.stop(timeout=2)
        job.callback.assert_not_called()
        assert job.next_run > datetime.now(timezone.utc)


class TestDefaultScheduler:
    """Jobs wired to the trading cycle."""

    def test_jobs_from_config(self, config):
        config.schedule.funding_hours_utc = [4, 12, 20]
        scheduler = build_default_scheduler(config, Mock())
        assert [j.name for j in scheduler.jobs] == ["funding_trade", "asset_snapshot"]
        assert scheduler.jobs[0].hours == [4, 12, 20]
        assert scheduler.jobs[1].hours is None

    def test_snapshot_job_optional(self, config):
        config.schedule.snapshot_enabled = False
        assert [j.name for j in build_default_scheduler(config, Mock()).jobs] == ["funding_trade"]

    def test_kill_switch_trips_and_skips(self, config):
        config.kill_switch.max_consecutive_failed_cycles = 2
        cycle = Mock()
        cycle.last_report = CycleReport(
            started_at=utc(2024, 5, 1, 8, 0),
            finished_at=utc(2024, 5, 1, 8, 0, 3),
            results=[UnitResult("u1", "bybit", "BTC", UnitOutcome.FAILED, "timeout")],
        )
        kill_switch = KillSwitch(config)
        scheduler = build_default_scheduler(config, cycle, kill_switch, MetricsCollector(config))
        trade = scheduler.jobs[0].callback

        trade()
        assert not kill_switch.triggered
        trade()
        assert kill_switch.triggered
        trade()
        assert cycle.run.call_count == 2
