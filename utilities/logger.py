"""
Structured logging setup using structlog.

Console output follows LOG_FORMAT (json or console); the optional log file
always receives one JSON object per line so it can be grepped and shipped.
"""

import logging
import sys
from pathlib import Path
from typing import Iterable, List, Optional, Union

import structlog
from structlog.stdlib import LoggerFactory, ProcessorFormatter


def _shared_processors(debug: bool) -> List:
    """Processors applied to structlog and stdlib records alike."""
    processors = [
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    if debug:
        processors.append(structlog.processors.CallsiteParameterAdder())
    return processors


def _json_formatter(shared: List) -> ProcessorFormatter:
    return ProcessorFormatter(
        foreign_pre_chain=shared,
        processors=[
            ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(ensure_ascii=False),
        ],
    )


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    log_file: Optional[Union[str, Path]] = None,
    debug: bool = False
) -> None:
    """
    Set up structured logging with configurable output formats.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Console output format (json or console)
        log_file: Optional log file path, written as JSON lines
        debug: Add call site (module, function, line) to every event
    """
    level = getattr(logging, log_level.upper())
    shared = _shared_processors(debug)

    structlog.configure(
        processors=[structlog.stdlib.filter_by_level, *shared, ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    if log_format == "json":
        console_formatter = _json_formatter(shared)
    else:
        console_formatter = ProcessorFormatter(
            foreign_pre_chain=shared,
            processors=[
                ProcessorFormatter.remove_processors_meta,
                structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()),
            ],
        )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(console_formatter)
    handlers: List[logging.Handler] = [console_handler]

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(_json_formatter(shared))
        handlers.append(file_handler)

    root_logger = logging.getLogger()
    root_logger.handlers = handlers
    root_logger.setLevel(level)

    # APScheduler logs every job run at INFO
    logging.getLogger("apscheduler").setLevel(max(level, logging.WARNING))
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))

    structlog.get_logger(__name__).info(
        "Logging system initialized",
        level=log_level,
        format=log_format,
        file=str(log_file) if log_file else None,
        debug=debug
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


class PollLogger:
    """
    Specialized logger for polling cycles with context management.
    """

    _CHANGE_LEVELS = {
        "cancelled": "warning",
        "restored": "info",
        "modified": "info",
    }

    def __init__(self, name: str = "poller"):
        self.logger = structlog.get_logger(name)
        self.context = {}

    def bind_context(self, **kwargs) -> 'PollLogger':
        """
        Bind context variables to the logger.

        Args:
            **kwargs: Context variables to bind

        Returns:
            Self for method chaining
        """
        self.context.update(kwargs)
        return self

    def clear_context(self) -> 'PollLogger':
        """Clear all context variables."""
        self.context.clear()
        return self

    def log_check_start(self, weeks: Iterable[int]) -> None:
        """Log the start of a timetable check."""
        self.logger.info(
            "Checking timetables",
            weeks=list(weeks),
            **self.context
        )

    def log_first_observation(self, week: int) -> None:
        """Log a week seen for the first time (no alerts for it)."""
        self.logger.info(
            "First check for week, no alerts will be sent",
            week=week,
            **self.context
        )

    def log_lesson_change(self, change_type: str, subject: str, time: str, details: Iterable[str] = ()) -> None:
        """Log one detected lesson change."""
        level = self._CHANGE_LEVELS.get(change_type, "info")
        getattr(self.logger, level)(
            "Lesson change detected",
            change_type=change_type,
            subject=subject,
            time=time,
            details=list(details),
            **self.context
        )

    def log_check_end(self, changes_count: int, duration_seconds: float) -> None:
        """Log the end of a timetable check."""
        if changes_count > 0:
            message = "Check finished, changes detected"
        else:
            message = "Check finished, no changes detected"
        self.logger.info(
            message,
            changes_detected=changes_count,
            duration_seconds=duration_seconds,
            **self.context
        )

    def log_notifications_sent(self, sent_count: int) -> None:
        """Log the number of delivered notifications."""
        self.logger.info(
            "Notifications sent",
            notifications_sent=sent_count,
            **self.context
        )

    def log_eviction(self, weeks: Iterable[int]) -> None:
        """Log stale weeks removed from the cache."""
        self.logger.debug(
            "Evicted stale weeks from cache",
            weeks=list(weeks),
            **self.context
        )
