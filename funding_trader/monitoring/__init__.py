"""Monitoring: structured logging, cycle metrics, kill-switch."""

from funding_trader.monitoring.kill_switch import KillSwitch
from funding_trader.monitoring.logger import configure_logging, get_logger
from funding_trader.monitoring.metrics import MetricsCollector

__all__ = ["MetricsCollector", "KillSwitch", "configure_logging", "get_logger"]
