"""
Kill Switch

Circuit breaker that halts the trading job after repeated cycles in which
every attempted unit failed (expired keys, exchange outage, bad config).
"""

import structlog

from funding_trader.core.config import Config

logger = structlog.get_logger(__name__)


class KillSwitch:
    """Circuit breaker for system failures."""

    def __init__(self, config: Config):
        self.config = config
        self.triggered = False
        self.reason = None

    def check(self, metrics: dict) -> bool:
        """
        Check if kill switch should trigger.

        Returns:
            True if trading should halt
        """
        cfg = self.config.kill_switch
        if not cfg.enabled:
            return False
        if self.triggered:
            return True

        failed = metrics.get("consecutive_failed_cycles", 0)
        if failed >= cfg.max_consecutive_failed_cycles:
            self.trigger(f"{failed} consecutive cycles failed for every unit")
            return True
        return False

    def trigger(self, reason: str):
        """Trigger kill switch."""
        self.triggered = True
        self.reason = reason
        logger.error("kill_switch_triggered", reason=reason)

    def reset(self):
        """Reset kill switch (manual intervention)."""
        self.triggered = False
        self.reason = None
        logger.info("kill_switch_reset")
