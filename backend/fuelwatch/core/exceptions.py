"""
FuelWatch custom exceptions.

Exception hierarchy:
    FuelWatchException (base)
    ├── ValidationError
    │   ├── DataValidationError
    │   ├── InvalidDateError
    │   └── InvalidTransitionError
    ├── DatabaseError
    │   └── DataUnavailableError
    ├── AnalysisError
    │   └── AnalysisCancelledError
    ├── ResourceNotFoundError
    │   ├── AlertNotFoundError
    │   └── StationNotFoundError
    └── ConflictError
        ├── AlreadyResolvedError
        └── DuplicateStationCodeError

Usage:
    from fuelwatch.core.exceptions import DataValidationError

    if liters <= 0:
        raise DataValidationError(
            message="Liters must be positive",
            field="liters",
            actual_value=liters,
        )
"""

from typing import Any


class FuelWatchException(Exception):
    """
    Base class for every FuelWatch error.

    Attributes:
        message: Error message.
        error_code: Machine readable code for API responses.
        detail: Additional structured detail.
        http_status_code: Status code an outer API layer should use.
    """

    error_code: str = "FUELWATCH_ERROR"
    http_status_code: int = 500

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        detail: dict[str, Any] | None = None,
        http_status_code: int | None = None
    ):
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        if http_status_code:
            self.http_status_code = http_status_code
        self.detail = detail or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert the exception into an API response payload."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "detail": self.detail
        }

    def __str__(self) -> str:
        if self.detail:
            return f"[{self.error_code}] {self.message} - {self.detail}"
        return f"[{self.error_code}] {self.message}"


# ========================================
# Validation
# ========================================

class ValidationError(FuelWatchException):
    """Base class for validation errors."""

    error_code = "VALIDATION_ERROR"
    http_status_code = 400


class DataValidationError(ValidationError):
    """
    Data validation error.

    Raised by the pre-ingestion validators when a value, type or
    format check fails.
    """

    error_code = "DATA_VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        field: str | None = None,
        expected_value: Any = None,
        actual_value: Any = None,
        **kwargs
    ):
        detail = kwargs.pop("detail", {})
        if field:
            detail["field"] = field
        if expected_value is not None:
            detail["expected_value"] = str(expected_value)
        if actual_value is not None:
            detail["actual_value"] = str(actual_value)
        super().__init__(message, detail=detail, **kwargs)


class InvalidDateError(ValidationError):
    """Structurally malformed analysis date. Never raised for dates without data."""

    error_code = "INVALID_DATE"

    def __init__(self, message: str, value: Any = None, **kwargs):
        detail = kwargs.pop("detail", {})
        if value is not None:
            detail["value"] = repr(value)
        super().__init__(message, detail=detail, **kwargs)


class InvalidTransitionError(ValidationError):
    """Requested alert state is not a terminal state."""

    error_code = "INVALID_TRANSITION"

    def __init__(self, message: str, target_state: Any = None, **kwargs):
        detail = kwargs.pop("detail", {})
        if target_state is not None:
            detail["target_state"] = str(target_state)
        super().__init__(message, detail=detail, **kwargs)


# ========================================
# Database
# ========================================

class DatabaseError(FuelWatchException):
    """Base class for storage errors."""

    error_code = "DATABASE_ERROR"
    http_status_code = 500


class DataUnavailableError(DatabaseError):
    """
    Repository or baseline source unreachable or timed out.

    Retryable by the caller with backoff.
    """

    error_code = "DATA_UNAVAILABLE"
    http_status_code = 503

    def __init__(
        self,
        message: str,
        source: str | None = None,
        timeout_seconds: float | None = None,
        **kwargs
    ):
        detail = kwargs.pop("detail", {})
        if source:
            detail["source"] = source
        if timeout_seconds is not None:
            detail["timeout_seconds"] = timeout_seconds
        super().__init__(message, detail=detail, **kwargs)


# ========================================
# Analysis
# ========================================

class AnalysisError(FuelWatchException):
    """Base class for detection errors."""

    error_code = "ANALYSIS_ERROR"
    http_status_code = 500


class AnalysisCancelledError(AnalysisError):
    """Analysis was cancelled before every station finished."""

    error_code = "ANALYSIS_CANCELLED"
    http_status_code = 499

    def __init__(self, message: str, analysis_date: Any = None, **kwargs):
        detail = kwargs.pop("detail", {})
        if analysis_date is not None:
            detail["analysis_date"] = str(analysis_date)
        super().__init__(message, detail=detail, **kwargs)


# ========================================
# Lookup / conflict
# ========================================

class ResourceNotFoundError(FuelWatchException):
    """Requested resource does not exist."""

    error_code = "RESOURCE_NOT_FOUND"
    http_status_code = 404

    def __init__(
        self,
        message: str,
        resource_type: str | None = None,
        resource_id: Any = None,
        **kwargs
    ):
        detail = kwargs.pop("detail", {})
        if resource_type:
            detail["resource_type"] = resource_type
        if resource_id is not None:
            detail["resource_id"] = str(resource_id)
        super().__init__(message, detail=detail, **kwargs)


class AlertNotFoundError(ResourceNotFoundError):
    """Resolution target does not exist."""

    error_code = "ALERT_NOT_FOUND"

    def __init__(self, alert_id: str, **kwargs):
        super().__init__(
            f"Alert not found: {alert_id}",
            resource_type="alert",
            resource_id=alert_id,
            **kwargs,
        )


class StationNotFoundError(ResourceNotFoundError):
    """Station does not exist."""

    error_code = "STATION_NOT_FOUND"

    def __init__(self, station_id: int, **kwargs):
        super().__init__(
            f"Station not found: {station_id}",
            resource_type="station",
            resource_id=station_id,
            **kwargs,
        )


class ConflictError(FuelWatchException):
    """Request conflicts with the current state of a resource."""

    error_code = "CONFLICT"
    http_status_code = 409


class AlreadyResolvedError(ConflictError):
    """Resolution attempted on an alert that is no longer pending. Not retryable."""

    error_code = "ALREADY_RESOLVED"

    def __init__(self, alert_id: str, current_status: Any = None, **kwargs):
        detail = kwargs.pop("detail", {})
        detail["alert_id"] = alert_id
        if current_status is not None:
            detail["current_status"] = str(current_status)
        super().__init__(
            f"Alert {alert_id} has already been resolved",
            detail=detail,
            **kwargs,
        )


class DuplicateStationCodeError(ConflictError):
    """A station with the same code already exists."""

    error_code = "DUPLICATE_STATION_CODE"

    def __init__(self, code: str, **kwargs):
        super().__init__(
            f"Station code already issued: {code}",
            detail={"code": code},
            **kwargs,
        )
