"""Invoice-based detection rules.

- INV-001: Duplicate invoice number
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


@detection_rule(
    rule_id="INV-001",
    rule_name="Duplicate invoice number",
    alert_type=AlertType.DUPLICATE_INVOICE,
    severity=Severity.HIGH,
    description=(
        "Flags sales reusing an invoice number already issued at the same "
        "station on the same date. The earliest sale keeps the number; every "
        "later one is a finding."
    ),
)
def duplicate_invoice(
    rule: DetectionRule,
    sales: pl.DataFrame,
    baseline: StationBaseline,
    config: DetectionConfig,
) -> list[Finding]:
    invoiced = sales.filter(pl.col("invoice_number").is_not_null())
    if invoiced.height < 2:
        return []

    ranked = invoiced.sort(["sold_at", "sale_id"]).with_columns(
        pl.int_range(0, pl.len()).over("invoice_number").alias("occurrence"),
        pl.len().over("invoice_number").alias("occurrences"),
        pl.col("sale_id").first().over("invoice_number").alias("first_sale_id"),
    )
    duplicates = ranked.filter(pl.col("occurrence") > 0).sort("sale_id")

    findings = []
    for row in duplicates.iter_rows(named=True):
        findings.append(
            rule.finding(
                station_id=row["station_id"],
                sale_id=row["sale_id"],
                message=(
                    f"Invoice {row['invoice_number']} reused "
                    f"({row['occurrences']} sales share it; first issued "
                    f"on sale {row['first_sale_id']})"
                ),
                details={
                    "invoice_number": row["invoice_number"],
                    "occurrence": row["occurrence"] + 1,
                    "occurrences": row["occurrences"],
                    "first_sale_id": row["first_sale_id"],
                },
            )
        )
    return findings
