"""Structured logging configuration."""

import logging
import os
import sys
from datetime import datetime, timezone
from typing import Optional

import structlog


def configure_logging(
    service_name: str = "funding-trader",
    log_level: str = "INFO",
    log_format: str = "console",
    log_file: Optional[str] = None,
    include_stdlib: bool = True,
) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        service_name: Added to every entry as "service"
        log_level: DEBUG, INFO, WARNING, ERROR
        log_format: 'json' or 'console'
        log_file: Optional file path; stdout when empty
        include_stdlib: Whether to configure stdlib logging as well
    """
    log_level_obj = getattr(logging, log_level.upper(), logging.INFO)

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        add_service_name(service_name),
        add_timestamp,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if log_format.lower() == "json":
        processors += [structlog.processors.UnicodeDecoder(), structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=log_file in (None, "")))

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    if include_stdlib:
        if log_file:
            directory = os.path.dirname(log_file)
            if directory:
                os.makedirs(directory, exist_ok=True)
            handler = logging.FileHandler(log_file)
        else:
            handler = logging.StreamHandler(sys.stdout)
        # structlog has already rendered the message
        handler.setFormatter(logging.Formatter("%(message)s"))

        root_logger = logging.getLogger()
        root_logger.setLevel(log_level_obj)
        root_logger.handlers.clear()
        root_logger.addHandler(handler)

        # Suppress noisy third-party loggers
        logging.getLogger("urllib3").setLevel(logging.WARNING)
        logging.getLogger("requests").setLevel(logging.WARNING)


def add_service_name(service_name: str):
    """Processor to add service name to all log entries."""

    def processor(logger, method_name, event_dict):
        event_dict["service"] = service_name
        return event_dict

    return processor


def add_timestamp(logger, method_name, event_dict):
    """Processor to add ISO timestamp to all log entries."""
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
