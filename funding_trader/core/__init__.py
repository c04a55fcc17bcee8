"""Core system components: config, errors, scheduler."""

from funding_trader.core.config import Config
from funding_trader.core.scheduler import ScheduledJob, Scheduler, build_default_scheduler

__all__ = [
    "Config",
    "ScheduledJob",
    "Scheduler",
    "build_default_scheduler",
]
