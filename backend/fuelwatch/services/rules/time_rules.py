"""Time-based detection rules.

- TIM-001: Off-hours transaction
"""

import polars as pl

from fuelwatch.models.alert import AlertType, Severity
from fuelwatch.services.rules.base import (
    DetectionConfig,
    DetectionRule,
    Finding,
    detection_rule,
)
from fuelwatch.services.rules.baseline import StationBaseline


def _format_minute(minute: float) -> str:
    minute = int(max(0, min(minute, 24 * 60 - 1)))
    return f"{minute // 60:02d}:{minute % 60:02d}"


@detection_rule(
    rule_id="TIM-001",
    rule_name="Off-hours transaction",
    alert_type=AlertType.OFF_HOURS,
    severity=Severity.MEDIUM,
    description=(
        "Flags sales recorded outside the station's usual operating window, "
        "allowing a small grace margin on either side."
    ),
)
def off_hours(
    rule: DetectionRule,
    sales: pl.DataFrame,
    baseline: StationBaseline,
    config: DetectionConfig,
) -> list[Finding]:
    if sales.height == 0 or not baseline.has_operating_window:
        return []

    grace = config.off_hours_grace_minutes
    opens_at = baseline.open_minute - grace
    closes_at = baseline.close_minute + grace

    timed = sales.with_columns(
        (
            pl.col("sold_at").dt.hour().cast(pl.Float64) * 60
            + pl.col("sold_at").dt.minute().cast(pl.Float64)
            + pl.col("sold_at").dt.second().cast(pl.Float64) / 60
        ).alias("minute_of_day")
    )
    outside = timed.filter(
        (pl.col("minute_of_day") < opens_at) | (pl.col("minute_of_day") > closes_at)
    ).sort("sale_id")

    findings = []
    for row in outside.iter_rows(named=True):
        findings.append(
            rule.finding(
                station_id=row["station_id"],
                sale_id=row["sale_id"],
                message=(
                    f"Sale at {row['sold_at']:%H:%M} outside operating window "
                    f"{_format_minute(baseline.open_minute)}-"
                    f"{_format_minute(baseline.close_minute)} "
                    f"(grace {grace} min)"
                ),
                details={
                    "sold_at": row["sold_at"].isoformat(),
                    "open_minute": baseline.open_minute,
                    "close_minute": baseline.close_minute,
                    "grace_minutes": grace,
                    "liters": row["liters"],
                    "amount": row["amount"],
                },
            )
        )
    return findings
