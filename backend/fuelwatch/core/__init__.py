"""
FuelWatch core module.

Modules:
- config: settings (environment variables, .env)
- logging: logging setup (structured logs, audit log)
- exceptions: custom exception classes
"""

from fuelwatch.core.config import Settings, settings
from fuelwatch.core.exceptions import (
    AlertNotFoundError,
    AlreadyResolvedError,
    AnalysisCancelledError,
    AnalysisError,
    ConflictError,
    DatabaseError,
    DataUnavailableError,
    DataValidationError,
    DuplicateStationCodeError,
    FuelWatchException,
    InvalidDateError,
    InvalidTransitionError,
    ResourceNotFoundError,
    StationNotFoundError,
    ValidationError,
)
from fuelwatch.core.logging import (
    LogContext,
    audit_log,
    get_logger,
    get_run_id,
    log_function_call,
    perf_log,
    set_run_id,
    setup_logging,
)

__all__ = [
    # Settings
    "Settings",
    "settings",
    # Logging
    "setup_logging",
    "get_logger",
    "audit_log",
    "perf_log",
    "get_run_id",
    "set_run_id",
    "LogContext",
    "log_function_call",
    # Exceptions
    "FuelWatchException",
    "ValidationError",
    "DataValidationError",
    "InvalidDateError",
    "InvalidTransitionError",
    "DatabaseError",
    "DataUnavailableError",
    "AnalysisError",
    "AnalysisCancelledError",
    "ResourceNotFoundError",
    "AlertNotFoundError",
    "StationNotFoundError",
    "ConflictError",
    "AlreadyResolvedError",
    "DuplicateStationCodeError",
]
