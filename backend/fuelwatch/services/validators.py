"""Pre-ingestion validators for stations and sales.

Provides single-value checks (station code, invoice number), a batch
validator for sale imports, and the eligibility filter applied before a
sale reaches the detection rules.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

import polars as pl

from fuelwatch.core.config import settings
from fuelwatch.core.exceptions import DataValidationError


def is_valid_station_code(code: str | None, pattern: str | None = None) -> bool:
    """Check a station code against the configured format."""
    if not code:
        return False
    return re.fullmatch(pattern or settings.station_code_pattern, code) is not None


def validate_station_code(code: str | None, pattern: str | None = None) -> str:
    """Validate a station code.

    Raises:
        DataValidationError: When the code is missing or malformed.
    """
    if not is_valid_station_code(code, pattern):
        raise DataValidationError(
            message="Invalid station code format",
            field="code",
            expected_value=pattern or settings.station_code_pattern,
            actual_value=code,
        )
    return code


def is_valid_invoice_number(invoice: str | None, pattern: str | None = None) -> bool:
    """Check an invoice number against the configured format."""
    if not invoice:
        return False
    return (
        re.fullmatch(pattern or settings.invoice_number_pattern, invoice) is not None
    )


def validate_invoice_number(invoice: str | None, pattern: str | None = None) -> str:
    """Validate an invoice number.

    Raises:
        DataValidationError: When the invoice number is missing or malformed.
    """
    if not is_valid_invoice_number(invoice, pattern):
        raise DataValidationError(
            message="Invalid invoice number format",
            field="invoice_number",
            expected_value=pattern or settings.invoice_number_pattern,
            actual_value=invoice,
        )
    return invoice


def eligible_sales(
    df: pl.DataFrame,
    now: datetime | None = None,
    invoice_pattern: str | None = None,
) -> pl.DataFrame:
    """Drop rows the detection rules must not consider.

    Excluded: missing ids, null/non-finite/non-positive liters or amount,
    missing or future timestamps, malformed invoice numbers. Never raises
    on data shape.
    """
    now = now or datetime.now()
    pattern = invoice_pattern or settings.invoice_number_pattern
    # fullmatch semantics for str.contains
    anchored = f"^(?:{pattern.removeprefix('^').removesuffix('$')})$"

    return df.with_columns(
        pl.col("liters").cast(pl.Float64, strict=False),
        pl.col("amount").cast(pl.Float64, strict=False),
    ).filter(
        pl.col("sale_id").is_not_null()
        & pl.col("station_id").is_not_null()
        & pl.col("liters").is_not_null()
        & pl.col("liters").is_finite()
        & (pl.col("liters") > 0)
        & pl.col("amount").is_not_null()
        & pl.col("amount").is_finite()
        & (pl.col("amount") > 0)
        & pl.col("sold_at").is_not_null()
        & (pl.col("sold_at") <= now)
        & pl.col("invoice_number").is_not_null()
        & pl.col("invoice_number").str.contains(anchored)
    )


@dataclass
class ValidationIssue:
    """A single validation problem in a batch."""

    check_id: str
    check_name: str
    row_index: int
    column: str | None
    value: Any
    message: str


@dataclass
class ValidationResult:
    """Result of batch validation checks."""

    is_valid: bool = True
    total_rows: int = 0
    error_count: int = 0
    error_rows: list[int] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)

    def add_error(self, issue: ValidationIssue) -> None:
        """Add an error to the result."""
        self.error_count += 1
        if issue.row_index not in self.error_rows:
            self.error_rows.append(issue.row_index)
        self.errors.append({
            "check_id": issue.check_id,
            "check_name": issue.check_name,
            "row": issue.row_index,
            "column": issue.column,
            "value": str(issue.value) if issue.value is not None else None,
            "message": issue.message,
        })
        self.is_valid = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "total_rows": self.total_rows,
            "error_count": self.error_count,
            "error_rows": self.error_rows,
            "errors": self.errors,
        }


class SaleBatchValidator:
    """Validates a batch of sales before import.

    Checks:
    1. Required columns
    2. Positive liters
    3. Positive amount
    4. Timestamp present and not in the future
    5. Invoice number format
    """

    REQUIRED_COLUMNS = [
        "station_id",
        "sold_at",
        "liters",
        "amount",
        "invoice_number",
    ]

    def __init__(self, invoice_pattern: str | None = None) -> None:
        self.invoice_pattern = invoice_pattern or settings.invoice_number_pattern
        self.checks: list[Callable[[pl.DataFrame, ValidationResult], None]] = [
            self._check_positive_liters,
            self._check_positive_amount,
            self._check_timestamps,
            self._check_invoice_numbers,
        ]

    def validate_dataframe(self, df: pl.DataFrame) -> ValidationResult:
        """Run all validation checks on a DataFrame.

        Args:
            df: Sales to validate.

        Returns:
            ValidationResult listing every failing row.
        """
        result = ValidationResult(total_rows=len(df))

        missing = [c for c in self.REQUIRED_COLUMNS if c not in df.columns]
        if missing:
            for column in missing:
                result.add_error(ValidationIssue(
                    check_id="SV-001",
                    check_name="required_columns",
                    row_index=-1,
                    column=column,
                    value=None,
                    message=f"Required column missing: {column}",
                ))
            return result

        indexed = df.with_columns(
            pl.col("liters").cast(pl.Float64, strict=False),
            pl.col("amount").cast(pl.Float64, strict=False),
        ).with_row_index("_row")
        for check in self.checks:
            check(indexed, result)
        result.error_rows.sort()
        return result

    def _check_positive_liters(self, df: pl.DataFrame, result: ValidationResult) -> None:
        bad = df.filter(
            pl.col("liters").is_null()
            | ~pl.col("liters").is_finite()
            | (pl.col("liters") <= 0)
        )
        for row in bad.iter_rows(named=True):
            result.add_error(ValidationIssue(
                check_id="SV-002",
                check_name="positive_liters",
                row_index=row["_row"],
                column="liters",
                value=row["liters"],
                message="Liters must be a positive number",
            ))

    def _check_positive_amount(self, df: pl.DataFrame, result: ValidationResult) -> None:
        bad = df.filter(
            pl.col("amount").is_null()
            | ~pl.col("amount").is_finite()
            | (pl.col("amount") <= 0)
        )
        for row in bad.iter_rows(named=True):
            result.add_error(ValidationIssue(
                check_id="SV-003",
                check_name="positive_amount",
                row_index=row["_row"],
                column="amount",
                value=row["amount"],
                message="Amount must be a positive number",
            ))

    def _check_timestamps(self, df: pl.DataFrame, result: ValidationResult) -> None:
        now = datetime.now()
        bad = df.filter(pl.col("sold_at").is_null() | (pl.col("sold_at") > now))
        for row in bad.iter_rows(named=True):
            result.add_error(ValidationIssue(
                check_id="SV-004",
                check_name="sale_timestamp",
                row_index=row["_row"],
                column="sold_at",
                value=row["sold_at"],
                message="Sale timestamp missing or in the future",
            ))

    def _check_invoice_numbers(self, df: pl.DataFrame, result: ValidationResult) -> None:
        for row in df.select("_row", "invoice_number").iter_rows(named=True):
            if not is_valid_invoice_number(row["invoice_number"], self.invoice_pattern):
                result.add_error(ValidationIssue(
                    check_id="SV-005",
                    check_name="invoice_format",
                    row_index=row["_row"],
                    column="invoice_number",
                    value=row["invoice_number"],
                    message="Invoice number does not match the expected format",
                ))
