"""Fraud alert models."""

from datetime import date, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, model_validator


class AlertType(StrEnum):
    """Alert category, one per detection rule."""

    UNIT_PRICE_OUTLIER = "unit_price_outlier"
    IMPROBABLE_VELOCITY = "improbable_velocity"
    DUPLICATE_INVOICE = "duplicate_invoice"
    OFF_HOURS = "off_hours"
    ROUND_NUMBER_CLUSTER = "round_number_cluster"
    ZERO_VARIANCE_RUN = "zero_variance_run"


class AlertStatus(StrEnum):
    """Alert lifecycle state."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    FALSE_POSITIVE = "false_positive"

    @property
    def is_terminal(self) -> bool:
        return self is not AlertStatus.PENDING


class Severity(StrEnum):
    """Severity level of a finding."""

    CRITICAL = "critical"  # strong fraud indication
    HIGH = "high"  # investigate
    MEDIUM = "medium"  # review
    LOW = "low"  # note
    INFO = "info"


class Alert(BaseModel):
    """Lifecycle-tracked record of one finding.

    Resolution fields are either both unset (pending) or both set
    (confirmed / false positive).
    """

    alert_id: str
    alert_type: AlertType
    rule_id: str
    description: str = Field(..., max_length=1000)
    station_id: int
    sale_id: int | None = Field(
        None,
        description="Originating sale; None for station-level findings",
    )
    analysis_date: date
    severity: Severity = Severity.MEDIUM
    score: float = 0.0
    status: AlertStatus = AlertStatus.PENDING
    detected_at: datetime
    resolved_at: datetime | None = None
    resolved_by: str | None = None
    resolution_comment: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def check_resolution_fields(self) -> "Alert":
        resolved = self.resolved_at is not None and self.resolved_by is not None
        unresolved = self.resolved_at is None and self.resolved_by is None
        if self.status.is_terminal and not resolved:
            raise ValueError("terminal alerts require resolved_at and resolved_by")
        if self.status is AlertStatus.PENDING and not unresolved:
            raise ValueError("pending alerts cannot carry resolution fields")
        return self

    @property
    def dedup_key(self) -> tuple[int, str, int | None]:
        """(station, type, sale) identity used to suppress repeated alerts."""
        return (self.station_id, self.alert_type.value, self.sale_id)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-compatible dictionary."""
        return self.model_dump(mode="json")
