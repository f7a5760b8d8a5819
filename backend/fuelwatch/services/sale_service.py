"""Sale ingestion service.

Every sale passes the pre-ingestion validators before it is written.
Recorded sales are never modified.
"""

from dataclasses import dataclass
from typing import Any

import duckdb
import polars as pl

from fuelwatch.core.exceptions import (
    DatabaseError,
    DataValidationError,
    StationNotFoundError,
)
from fuelwatch.core.logging import audit_log, get_logger
from fuelwatch.db import DuckDBManager, get_db
from fuelwatch.models.sale import Sale, SaleCreate
from fuelwatch.services.validators import (
    SaleBatchValidator,
    ValidationIssue,
    ValidationResult,
    validate_invoice_number,
)

logger = get_logger(__name__)


@dataclass
class SaleImportResult:
    """Result of a batch sale import."""

    success: bool
    total_rows: int = 0
    imported_rows: int = 0
    skipped_rows: int = 0
    validation: ValidationResult | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "total_rows": self.total_rows,
            "imported_rows": self.imported_rows,
            "skipped_rows": self.skipped_rows,
            "validation": self.validation.to_dict() if self.validation else None,
        }


class SaleService:
    """Records validated sales."""

    def __init__(self, db: DuckDBManager | None = None) -> None:
        self.db = db or get_db()
        self.validator = SaleBatchValidator()

    def record_sale(self, data: SaleCreate) -> Sale:
        """Record one sale.

        Raises:
            DataValidationError: Malformed invoice number.
            StationNotFoundError: Unknown or inactive station.
        """
        validate_invoice_number(data.invoice_number)
        if data.station_id not in self._active_station_ids():
            raise StationNotFoundError(data.station_id)

        try:
            row = self.db.execute(
                """
                INSERT INTO sales (station_id, sold_at, liters, amount, invoice_number)
                VALUES (?, ?, ?, ?, ?)
                RETURNING sale_id
                """,
                [
                    data.station_id,
                    data.sold_at,
                    data.liters,
                    data.amount,
                    data.invoice_number,
                ],
            )
        except duckdb.Error as e:
            raise DatabaseError(f"Failed to record sale: {e}") from e

        return Sale(sale_id=row[0][0], **data.model_dump(exclude={"unit_price"}))

    def import_sales(self, df: pl.DataFrame, skip_invalid: bool = False) -> SaleImportResult:
        """Validate and import a batch of sales.

        Args:
            df: Sales with station_id, sold_at, liters, amount, invoice_number.
            skip_invalid: Import the valid rows and skip the others instead
                of rejecting the whole batch.

        Raises:
            DataValidationError: Batch has invalid rows and skip_invalid is False.
        """
        validation = self.validator.validate_dataframe(df)
        result = SaleImportResult(success=False, total_rows=len(df), validation=validation)

        if -1 in validation.error_rows:
            raise DataValidationError(
                "Sale batch is missing required columns",
                detail={"errors": validation.errors},
            )

        self._check_stations(df, validation)

        if not validation.is_valid and not skip_invalid:
            raise DataValidationError(
                f"{len(validation.error_rows)} invalid sales in batch",
                detail={"errors": validation.errors[:50]},
            )

        rejected = [int(r) for r in validation.error_rows]
        valid = (
            df.with_row_index("_row")
            .filter(~pl.col("_row").is_in(rejected) if rejected else pl.lit(True))
            .select(SaleBatchValidator.REQUIRED_COLUMNS)
            .with_columns(
                pl.col("station_id").cast(pl.Int64),
                pl.col("liters").cast(pl.Float64),
                pl.col("amount").cast(pl.Float64),
            )
        )
        result.skipped_rows = len(df) - len(valid)

        if len(valid) > 0:
            try:
                with self.db.transaction() as conn:
                    conn.register("sales_df", valid.to_arrow())
                    conn.execute("""
                        INSERT INTO sales
                            (station_id, sold_at, liters, amount, invoice_number)
                        SELECT station_id, sold_at, liters, amount, invoice_number
                        FROM sales_df
                    """)
                    conn.unregister("sales_df")
            except duckdb.Error as e:
                raise DatabaseError(f"Failed to import sales: {e}") from e

        result.imported_rows = len(valid)
        result.success = True
        audit_log.info(
            f"{result.imported_rows} sales imported, {result.skipped_rows} skipped",
            extra={"sale_count": result.imported_rows},
        )
        return result

    def _check_stations(self, df: pl.DataFrame, validation: ValidationResult) -> None:
        active = sorted(self._active_station_ids())
        known = (
            pl.col("station_id").cast(pl.Int64, strict=False).is_in(active)
            if active
            else pl.lit(False)
        )
        unknown = (
            df.with_row_index("_row")
            .filter(pl.col("station_id").is_null() | ~known)
            .select("_row", "station_id")
        )
        for row in unknown.iter_rows(named=True):
            validation.add_error(ValidationIssue(
                check_id="SV-006",
                check_name="known_station",
                row_index=row["_row"],
                column="station_id",
                value=row["station_id"],
                message="Sale refers to an unknown or inactive station",
            ))
        validation.error_rows.sort()

    def _active_station_ids(self) -> set[int]:
        try:
            rows = self.db.execute("SELECT station_id FROM stations WHERE is_active")
        except duckdb.Error as e:
            raise DatabaseError(f"Failed to read stations: {e}") from e
        return {row[0] for row in rows}
