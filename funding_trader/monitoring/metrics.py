"""
Metrics Collector

Tracks per-cycle outcome counts, failures per exchange, and how many
consecutive cycles failed outright.
"""

from datetime import datetime, timezone

from funding_trader.core.config import Config


class MetricsCollector:
    """Collects trading-cycle metrics in memory."""

    def __init__(self, config: Config):
        self.config = config
        self.metrics = {
            "cycles": 0,
            "consecutive_failed_cycles": 0,
            "outcomes": {},
            "failures_by_exchange": {},
            "last_cycle_at": None,
            "last_cycle_duration_sec": None,
        }

    def record_cycle(self, report):
        """Fold one CycleReport into the running totals."""
        m = self.metrics
        m["cycles"] += 1

        for outcome, count in report.counts().items():
            m["outcomes"][outcome] = m["outcomes"].get(outcome, 0) + count

        for result in report.results:
            if result.outcome.value == "failed":
                by_ex = m["failures_by_exchange"]
                by_ex[result.exchange] = by_ex.get(result.exchange, 0) + 1

        if report.all_failed:
            m["consecutive_failed_cycles"] += 1
        elif report.results:
            m["consecutive_failed_cycles"] = 0

        finished = report.finished_at or datetime.now(timezone.utc)
        m["last_cycle_at"] = finished.isoformat()
        m["last_cycle_duration_sec"] = (finished - report.started_at).total_seconds()

    def snapshot(self) -> dict:
        m = self.metrics
        return {
            **m,
            "outcomes": dict(m["outcomes"]),
            "failures_by_exchange": dict(m["failures_by_exchange"]),
        }
