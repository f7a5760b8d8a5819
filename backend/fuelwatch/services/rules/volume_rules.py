"""Volume-based detection rules.

- VOL-001: Improbable dispensing velocity
- VOL-002: Round-number clustering
"""

import polars as pl

from fuelwatch.models.alert import AlertType, Severity
from fuelwatch.services.rules.base import (
    DetectionConfig,
    DetectionRule,
    Finding,
    detection_rule,
)
from fuelwatch.services.rules.baseline import StationBaseline, round_number_expr


@detection_rule(
    rule_id="VOL-001",
    rule_name="Improbable velocity",
    alert_type=AlertType.IMPROBABLE_VELOCITY,
    severity=Severity.CRITICAL,
    description=(
        "Flags a station when the liters reported within a sliding window "
        "exceed what its pumps can physically dispense in that window at "
        "maximum flow rate."
    ),
)
def improbable_velocity(
    rule: DetectionRule,
    sales: pl.DataFrame,
    baseline: StationBaseline,
    config: DetectionConfig,
) -> list[Finding]:
    if sales.height == 0:
        return []

    window_minutes = config.velocity_window_minutes
    pump_count = baseline.pump_count or config.default_pump_count
    capacity = pump_count * config.max_pump_flow_lpm * window_minutes

    # Cheap exit: the whole day fits in one window's capacity
    if sales["liters"].sum() <= capacity:
        return []

    ordered = sales.sort(["sold_at", "sale_id"])
    windows = ordered.rolling(
        index_column="sold_at",
        period=f"{window_minutes}m",
        closed="both",
    ).agg(
        pl.col("liters").sum().alias("window_liters"),
        pl.len().alias("window_sales"),
        pl.col("sold_at").min().alias("window_start"),
    )
    over_capacity = windows.filter(pl.col("window_liters") > capacity)

    if over_capacity.height == 0:
        return []

    worst = over_capacity.sort(
        ["window_liters", "sold_at"], descending=[True, False]
    ).row(0, named=True)
    station_id = int(sales["station_id"][0])

    return [
        rule.finding(
            station_id=station_id,
            sale_id=None,
            message=(
                f"{worst['window_liters']:,.1f} L reported between "
                f"{worst['window_start']:%H:%M} and {worst['sold_at']:%H:%M}; "
                f"{pump_count} pumps can dispense at most {capacity:,.0f} L "
                f"in {window_minutes} minutes"
            ),
            details={
                "window_start": worst["window_start"].isoformat(),
                "window_end": worst["sold_at"].isoformat(),
                "window_liters": worst["window_liters"],
                "window_sales": worst["window_sales"],
                "capacity_liters": capacity,
                "pump_count": pump_count,
                "max_pump_flow_lpm": config.max_pump_flow_lpm,
                "window_minutes": window_minutes,
                "windows_over_capacity": over_capacity.height,
            },
        )
    ]


@detection_rule(
    rule_id="VOL-002",
    rule_name="Round-number clustering",
    alert_type=AlertType.ROUND_NUMBER_CLUSTER,
    severity=Severity.MEDIUM,
    description=(
        "Flags a station-day where the share of sales with a round liters or "
        "amount value rises well above the station's historical share, a sign "
        "of manually entered transactions."
    ),
)
def round_number_cluster(
    rule: DetectionRule,
    sales: pl.DataFrame,
    baseline: StationBaseline,
    config: DetectionConfig,
) -> list[Finding]:
    total = sales.height
    if total < config.round_min_sales:
        return []

    round_count = sales.filter(round_number_expr(config.round_unit)).height
    share = round_count / total
    historical = baseline.round_share if baseline.round_share is not None else 0.0
    excess = share - historical

    if excess <= config.round_share_excess:
        return []

    station_id = int(sales["station_id"][0])
    return [
        rule.finding(
            station_id=station_id,
            sale_id=None,
            message=(
                f"{round_count} of {total} sales ({share:.0%}) use round "
                f"values (multiples of {config.round_unit}); historical share "
                f"is {historical:.0%}"
            ),
            details={
                "round_sales": round_count,
                "total_sales": total,
                "share": share,
                "historical_share": baseline.round_share,
                "excess": excess,
                "round_unit": config.round_unit,
                "threshold": config.round_share_excess,
            },
        )
    ]
