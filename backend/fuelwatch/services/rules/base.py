"""Building blocks shared by all detection rules.

A rule is a plain function ``(rule, sales, baseline, config) -> findings``
wrapped by the :func:`detection_rule` decorator into an immutable
:class:`DetectionRule` value. Calling the value evaluates the rule:

    findings = unit_price_outlier(sales_df, baseline, config)

``sales`` holds the eligible sales of ONE station for ONE date, with the
columns of :data:`SALES_SCHEMA`.
"""

from collections.abc import Callable
from dataclasses import asdict, dataclass, field, replace
from typing import Any

import polars as pl

from fuelwatch.core.config import Settings, settings
from fuelwatch.models.alert import AlertType, Severity
from fuelwatch.services.rules.baseline import StationBaseline

SALES_SCHEMA: dict[str, pl.DataType] = {
    "sale_id": pl.Int64,
    "station_id": pl.Int64,
    "sold_at": pl.Datetime("us"),
    "liters": pl.Float64,
    "amount": pl.Float64,
    "invoice_number": pl.Utf8,
}

SEVERITY_WEIGHTS: dict[Severity, float] = {
    Severity.CRITICAL: 25.0,
    Severity.HIGH: 15.0,
    Severity.MEDIUM: 10.0,
    Severity.LOW: 5.0,
    Severity.INFO: 0.0,
}


def empty_sales_frame() -> pl.DataFrame:
    """Return an empty DataFrame with the sales columns."""
    return pl.DataFrame(schema=SALES_SCHEMA)


def unit_price_expr() -> pl.Expr:
    return (pl.col("amount") / pl.col("liters")).alias("unit_price")


@dataclass(frozen=True)
class DetectionConfig:
    """Thresholds and resource limits for one analysis run.

    Passed explicitly into the engine so runs are reproducible with
    varied thresholds.
    """

    price_sigma_multiple: float = 3.0
    max_pump_flow_lpm: float = 50.0
    default_pump_count: int = 8
    velocity_window_minutes: int = 10
    off_hours_grace_minutes: int = 15
    round_unit: int = 10
    round_share_excess: float = 0.3
    round_min_sales: int = 5
    zero_variance_min_run: int = 5
    zero_variance_decimals: int = 6
    baseline_window_days: int = 28
    baseline_min_sales: int = 10
    max_workers: int = 4
    repository_timeout_seconds: float = 30.0

    @classmethod
    def from_settings(cls, source: Settings | None = None) -> "DetectionConfig":
        """Build a config from application settings."""
        source = source or settings
        return cls(
            price_sigma_multiple=source.price_sigma_multiple,
            max_pump_flow_lpm=source.max_pump_flow_lpm,
            default_pump_count=source.default_pump_count,
            velocity_window_minutes=source.velocity_window_minutes,
            off_hours_grace_minutes=source.off_hours_grace_minutes,
            round_unit=source.round_unit,
            round_share_excess=source.round_share_excess,
            round_min_sales=source.round_min_sales,
            zero_variance_min_run=source.zero_variance_min_run,
            zero_variance_decimals=source.zero_variance_decimals,
            baseline_window_days=source.baseline_window_days,
            baseline_min_sales=source.baseline_min_sales,
            max_workers=source.max_workers,
            repository_timeout_seconds=source.repository_timeout_seconds,
        )

    def with_overrides(self, **overrides: Any) -> "DetectionConfig":
        """Return a copy with some thresholds replaced."""
        return replace(self, **overrides)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Finding:
    """Candidate anomaly produced by one rule, before dedup/materialization."""

    rule_id: str
    alert_type: AlertType
    station_id: int
    sale_id: int | None
    description: str
    severity: Severity
    weight: float
    details: dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def dedup_key(self) -> tuple[int, str, int | None]:
        return (self.station_id, self.alert_type.value, self.sale_id)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "rule_id": self.rule_id,
            "alert_type": self.alert_type.value,
            "station_id": self.station_id,
            "sale_id": self.sale_id,
            "description": self.description,
            "severity": self.severity.value,
            "weight": self.weight,
            "details": self.details,
        }


RuleFunction = Callable[
    ["DetectionRule", pl.DataFrame, StationBaseline, DetectionConfig],
    list[Finding],
]


@dataclass(frozen=True)
class DetectionRule:
    """A catalogue entry: rule metadata plus its evaluation function."""

    rule_id: str
    rule_name: str
    alert_type: AlertType
    severity: Severity
    description: str
    evaluate: RuleFunction = field(repr=False, compare=False)

    def __call__(
        self,
        sales: pl.DataFrame,
        baseline: StationBaseline,
        config: DetectionConfig,
    ) -> list[Finding]:
        return self.evaluate(self, sales, baseline, config)

    def finding(
        self,
        station_id: int,
        sale_id: int | None,
        message: str,
        details: dict[str, Any] | None = None,
        weight: float | None = None,
    ) -> Finding:
        """Create a finding for this rule.

        Args:
            station_id: Station the finding belongs to.
            sale_id: Originating sale, None for station-level findings.
            message: Human-readable description.
            details: Structured evidence.
            weight: Severity weight (derived from severity if not provided).
        """
        if weight is None:
            weight = SEVERITY_WEIGHTS.get(self.severity, 5.0)

        return Finding(
            rule_id=self.rule_id,
            alert_type=self.alert_type,
            station_id=station_id,
            sale_id=sale_id,
            description=message,
            severity=self.severity,
            weight=weight,
            details=details or {},
        )


def detection_rule(
    rule_id: str,
    rule_name: str,
    alert_type: AlertType,
    severity: Severity,
    description: str,
) -> Callable[[RuleFunction], DetectionRule]:
    """Decorator turning a rule function into a :class:`DetectionRule`."""

    def decorator(func: RuleFunction) -> DetectionRule:
        return DetectionRule(
            rule_id=rule_id,
            rule_name=rule_name,
            alert_type=alert_type,
            severity=severity,
            description=description,
            evaluate=func,
        )

    return decorator
