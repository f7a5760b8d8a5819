"""
FuelWatch logging setup.

Features:
- Structured JSON output for production, coloured console output for debug
- Rotating log files (main, errors)
- Analysis run id attached to every record
- Separate audit log (alert writes and resolutions)
- Performance log (operation durations)

Usage:
    from fuelwatch.core.logging import get_logger, audit_log

    logger = get_logger(__name__)
    logger.info("Analysis started", extra={"analysis_date": "2024-06-01"})

    audit_log.info("Alert resolved", extra={"alert_id": "ALT-1a2b3c"})
"""

import functools
import json
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler, TimedRotatingFileHandler
from pathlib import Path
from typing import Any

from .config import settings

run_id_var: ContextVar[str | None] = ContextVar("run_id", default=None)


def get_run_id() -> str:
    """Return the current analysis run id ("no-run-id" when unset)."""
    return run_id_var.get() or "no-run-id"


def set_run_id(run_id: str | None = None) -> str:
    """
    Set the analysis run id for the current context.

    Args:
        run_id: Run id to set. Generated when None.

    Returns:
        The run id that was set.
    """
    if run_id is None:
        run_id = str(uuid.uuid4())[:8]
    run_id_var.set(run_id)
    return run_id


class RunIdFilter(logging.Filter):
    """Attach the current run id to every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = get_run_id()
        return True


class JSONFormatter(logging.Formatter):
    """Format records as single-line JSON documents."""

    EXTRA_FIELDS = [
        "analysis_date",
        "station_id",
        "sale_id",
        "alert_id",
        "rule_id",
        "alert_count",
        "sale_count",
        "resolved_by",
        "status",
        "duration_ms",
        "success",
        "error_code",
    ]

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "run_id": getattr(record, "run_id", "no-run-id"),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for field in self.EXTRA_FIELDS:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        return json.dumps(log_data, ensure_ascii=False, default=str)


class ColoredFormatter(logging.Formatter):
    """Console formatter with level colours, used in debug mode."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        run_id = getattr(record, "run_id", "no-run-id")

        formatted = (
            f"{color}{record.levelname:8}{self.RESET} "
            f"[{run_id}] "
            f"{record.name}: "
            f"{record.getMessage()}"
        )

        if record.exc_info:
            formatted += f"\n{self.formatException(record.exc_info)}"

        return formatted


MB = 1024 * 1024


def _attach(
    logger: logging.Logger,
    handler: logging.Handler,
    level: int,
    formatter: logging.Formatter,
) -> None:
    handler.setLevel(level)
    handler.addFilter(RunIdFilter())
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def _dedicated_logger(name: str) -> logging.Logger:
    """Logger writing only to its own files."""
    logger = logging.getLogger(name)
    logger.setLevel(logging.INFO)
    logger.propagate = False
    logger.handlers.clear()
    return logger


def setup_logging(log_dir: Path | None = None) -> None:
    """
    Configure logging for the whole application.

    Files written to ``log_dir``:
        fuelwatch.log              every record at the configured level
        fuelwatch_error.log        ERROR and above
        fuelwatch_audit.log        alert writes and resolutions, daily rotation
        fuelwatch_performance.log  LogContext timings

    Args:
        log_dir: Directory for log files. Defaults to settings.log_dir.
    """
    log_dir = log_dir or settings.log_dir
    log_dir.mkdir(parents=True, exist_ok=True)
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    console_formatter = ColoredFormatter() if settings.debug else JSONFormatter()
    _attach(root, logging.StreamHandler(sys.stdout), level, console_formatter)
    _attach(
        root,
        RotatingFileHandler(
            log_dir / "fuelwatch.log", maxBytes=10 * MB, backupCount=10, encoding="utf-8"
        ),
        level,
        JSONFormatter(),
    )
    _attach(
        root,
        RotatingFileHandler(
            log_dir / "fuelwatch_error.log", maxBytes=10 * MB, backupCount=10, encoding="utf-8"
        ),
        logging.ERROR,
        JSONFormatter(),
    )

    _attach(
        _dedicated_logger("fuelwatch.audit"),
        TimedRotatingFileHandler(
            log_dir / "fuelwatch_audit.log", when="midnight", backupCount=365, encoding="utf-8"
        ),
        logging.INFO,
        JSONFormatter(),
    )
    _attach(
        _dedicated_logger("fuelwatch.performance"),
        RotatingFileHandler(
            log_dir / "fuelwatch_performance.log", maxBytes=50 * MB, backupCount=5, encoding="utf-8"
        ),
        logging.INFO,
        JSONFormatter(),
    )

    logging.getLogger("duckdb").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """
    Return a logger by name.

    Args:
        name: Logger name, usually __name__.
    """
    return logging.getLogger(name)


audit_log = logging.getLogger("fuelwatch.audit")
perf_log = logging.getLogger("fuelwatch.performance")


class LogContext:
    """
    Context manager logging the start, end and duration of an operation.

    Usage:
        with LogContext(logger, "analysis", analysis_date="2024-06-01"):
            ...
    """

    def __init__(
        self,
        logger: logging.Logger,
        operation: str,
        level: int = logging.INFO,
        **context: Any,
    ):
        self.logger = logger
        self.operation = operation
        self.level = level
        self.context = context
        self.start_time: datetime | None = None

    def __enter__(self) -> "LogContext":
        self.start_time = datetime.now()
        self.logger.log(self.level, f"{self.operation} started", extra=self.context)
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        duration_ms = (datetime.now() - self.start_time).total_seconds() * 1000

        if exc_type is not None:
            self.logger.error(
                f"{self.operation} failed",
                extra={**self.context, "duration_ms": duration_ms},
                exc_info=True,
            )
        else:
            self.logger.log(
                self.level,
                f"{self.operation} completed",
                extra={**self.context, "duration_ms": duration_ms},
            )

        perf_log.info(
            self.operation,
            extra={
                **self.context,
                "duration_ms": duration_ms,
                "success": exc_type is None,
            },
        )


def log_function_call(logger: logging.Logger):
    """
    Decorator logging calls, durations and failures of a function.

    Usage:
        @log_function_call(logger)
        def run(day): ...
    """

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            start_time = datetime.now()
            try:
                logger.debug(f"calling {func.__name__}")
                result = func(*args, **kwargs)
                duration_ms = (datetime.now() - start_time).total_seconds() * 1000
                logger.debug(
                    f"{func.__name__} completed",
                    extra={"duration_ms": duration_ms},
                )
                return result
            except Exception as e:
                duration_ms = (datetime.now() - start_time).total_seconds() * 1000
                logger.error(
                    f"{func.__name__} raised: {e}",
                    extra={"duration_ms": duration_ms},
                    exc_info=True,
                )
                raise

        return wrapper

    return decorator
