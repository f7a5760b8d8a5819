"""Price-based detection rules.

- PRC-001: Unit-price outlier
- PRC-002: Zero-variance run
"""

import polars as pl

from fuelwatch.models.alert import AlertType, Severity
from fuelwatch.services.rules.base import (
    DetectionConfig,
    DetectionRule,
    Finding,
    detection_rule,
    unit_price_expr,
)
from fuelwatch.services.rules.baseline import StationBaseline

# Posted prices are quoted in whole cents per liter
PRICE_GRANULARITY_DECIMALS = 2


@detection_rule(
    rule_id="PRC-001",
    rule_name="Unit-price outlier",
    alert_type=AlertType.UNIT_PRICE_OUTLIER,
    severity=Severity.HIGH,
    description=(
        "Flags sales whose price per liter deviates from the station mean by "
        "more than the configured number of standard deviations. Cheap and "
        "expensive fills both point at meter tampering or price manipulation."
    ),
)
def unit_price_outlier(
    rule: DetectionRule,
    sales: pl.DataFrame,
    baseline: StationBaseline,
    config: DetectionConfig,
) -> list[Finding]:
    if sales.height == 0 or not baseline.has_price_stats(config.baseline_min_sales):
        return []

    mean = baseline.price_mean
    std = baseline.price_std
    sigma = config.price_sigma_multiple

    scored = sales.with_columns(unit_price_expr()).with_columns(
        ((pl.col("unit_price") - mean) / std).alias("z_score")
    )
    outliers = scored.filter(pl.col("z_score").abs() > sigma).sort("sale_id")

    findings = []
    for row in outliers.iter_rows(named=True):
        direction = "above" if row["z_score"] > 0 else "below"
        findings.append(
            rule.finding(
                station_id=row["station_id"],
                sale_id=row["sale_id"],
                message=(
                    f"Unit price {row['unit_price']:.4f} is "
                    f"{abs(row['z_score']):.1f}σ {direction} the station mean "
                    f"{mean:.4f} (invoice {row['invoice_number']})"
                ),
                details={
                    "unit_price": row["unit_price"],
                    "z_score": row["z_score"],
                    "baseline_mean": mean,
                    "baseline_std": std,
                    "sigma_multiple": sigma,
                    "liters": row["liters"],
                    "amount": row["amount"],
                },
            )
        )
    return findings


@detection_rule(
    rule_id="PRC-002",
    rule_name="Zero-variance run",
    alert_type=AlertType.ZERO_VARIANCE_RUN,
    severity=Severity.MEDIUM,
    description=(
        "Flags a station-day with a run of consecutive sales sharing the exact "
        "same unit price beyond pricing granularity. Independently metered "
        "fills do not repeat to that precision; copied records do."
    ),
)
def zero_variance_run(
    rule: DetectionRule,
    sales: pl.DataFrame,
    baseline: StationBaseline,
    config: DetectionConfig,
) -> list[Finding]:
    min_run = config.zero_variance_min_run
    if sales.height < min_run:
        return []

    ordered = sales.sort(["sold_at", "sale_id"]).with_columns(
        (pl.col("amount") / pl.col("liters"))
        .round(config.zero_variance_decimals)
        .alias("price_key")
    )
    # A new run starts wherever the price key changes
    with_runs = ordered.with_columns(
        (pl.col("price_key") != pl.col("price_key").shift(1))
        .fill_null(True)
        .cast(pl.Int32)
        .cum_sum()
        .alias("run_id")
    )
    runs = (
        with_runs.group_by("run_id", maintain_order=True)
        .agg(
            pl.len().alias("run_length"),
            pl.col("price_key").first().alias("unit_price"),
            pl.col("sale_id").alias("sale_ids"),
            pl.col("sold_at").first().alias("run_start"),
            pl.col("sold_at").last().alias("run_end"),
        )
        .filter(
            (pl.col("run_length") >= min_run)
            # Every fill at a whole-cent posted price repeats the price exactly
            & (
                (pl.col("unit_price") - pl.col("unit_price").round(PRICE_GRANULARITY_DECIMALS)).abs()
                > 1e-9
            )
        )
    )

    if runs.height == 0:
        return []

    run_details = [
        {
            "unit_price": row["unit_price"],
            "run_length": row["run_length"],
            "sale_ids": list(row["sale_ids"]),
            "run_start": row["run_start"].isoformat(),
            "run_end": row["run_end"].isoformat(),
        }
        for row in runs.iter_rows(named=True)
    ]
    longest = max(run_details, key=lambda r: r["run_length"])
    station_id = int(sales["station_id"][0])

    return [
        rule.finding(
            station_id=station_id,
            sale_id=None,
            message=(
                f"{len(run_details)} run(s) of identical unit price; longest is "
                f"{longest['run_length']} consecutive sales at "
                f"{longest['unit_price']:.{config.zero_variance_decimals}f}"
            ),
            details={
                "runs": run_details,
                "min_run": min_run,
                "decimals": config.zero_variance_decimals,
            },
        )
    ]
