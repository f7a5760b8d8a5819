"""Station registry service.

Stations are registered with a validated, unique code that never changes.
They are deactivated instead of deleted so their sales and alerts keep a
valid owner.
"""

from typing import Any

import duckdb

from fuelwatch.core.exceptions import (
    DatabaseError,
    DuplicateStationCodeError,
    StationNotFoundError,
)
from fuelwatch.core.logging import audit_log, get_logger
from fuelwatch.db import DuckDBManager, get_db
from fuelwatch.models.sale import Sale
from fuelwatch.models.station import Station, StationCreate, StationUpdate
from fuelwatch.services.validators import validate_station_code

logger = get_logger(__name__)

STATION_COLUMNS = [
    "station_id",
    "name",
    "location",
    "code",
    "pump_count",
    "is_active",
    "created_at",
]

SALE_COLUMNS = ["sale_id", "station_id", "sold_at", "liters", "amount", "invoice_number"]


class StationService:
    """Create, read, update and deactivate stations."""

    def __init__(self, db: DuckDBManager | None = None) -> None:
        self.db = db or get_db()

    def create_station(self, data: StationCreate) -> Station:
        """Register a new station.

        Raises:
            DataValidationError: Malformed station code.
            DuplicateStationCodeError: Code already issued.
        """
        code = validate_station_code(data.code)

        try:
            with self.db.transaction() as conn:
                exists = conn.execute(
                    "SELECT COUNT(*) FROM stations WHERE code = ?", [code]
                ).fetchone()[0]
                if exists:
                    raise DuplicateStationCodeError(code)
                row = conn.execute(
                    f"""
                    INSERT INTO stations (name, location, code, pump_count)
                    VALUES (?, ?, ?, ?)
                    RETURNING {', '.join(STATION_COLUMNS)}
                    """,
                    [data.name, data.location, code, data.pump_count],
                ).fetchone()
        except duckdb.ConstraintException as e:
            # Lost a race with a concurrent registration of the same code
            raise DuplicateStationCodeError(code) from e
        except duckdb.Error as e:
            raise DatabaseError(f"Failed to create station: {e}") from e

        station = self._to_station(row)
        audit_log.info(
            f"Station {code} registered",
            extra={"station_id": station.station_id},
        )
        return station

    def get_station(self, station_id: int) -> Station:
        """Get a station by ID.

        Raises:
            StationNotFoundError: No such station.
        """
        rows = self._select("WHERE station_id = ?", [station_id])
        if not rows:
            raise StationNotFoundError(station_id)
        return rows[0]

    def get_station_by_code(self, code: str) -> Station | None:
        rows = self._select("WHERE code = ?", [code])
        return rows[0] if rows else None

    def recent_sales(self, station_id: int, limit: int = 5) -> list[Sale]:
        """Most recent sales of a station, newest first.

        Raises:
            StationNotFoundError: No such station.
        """
        self.get_station(station_id)
        try:
            rows = self.db.execute(
                f"""
                SELECT {', '.join(SALE_COLUMNS)}
                FROM sales
                WHERE station_id = ?
                ORDER BY sold_at DESC, sale_id DESC
                LIMIT {max(int(limit), 0)}
                """,
                [station_id],
            )
        except duckdb.Error as e:
            raise DatabaseError(f"Failed to read sales of station {station_id}: {e}") from e
        return [Sale(**dict(zip(SALE_COLUMNS, row))) for row in rows]

    def list_stations(self, include_inactive: bool = False) -> list[Station]:
        """List stations ordered by name."""
        clause = "" if include_inactive else "WHERE is_active"
        return self._select(f"{clause} ORDER BY name, station_id", [])

    def update_station(self, station_id: int, data: StationUpdate) -> Station:
        """Update mutable station fields. The code cannot be changed."""
        changes: dict[str, Any] = data.model_dump(exclude_unset=True)
        changes = {k: v for k, v in changes.items() if k in ("name", "location", "pump_count")}

        station = self.get_station(station_id)
        if not changes:
            return station

        assignments = ", ".join(f"{column} = ?" for column in changes)
        try:
            self.db.execute(
                f"UPDATE stations SET {assignments} WHERE station_id = ?",
                [*changes.values(), station_id],
            )
        except duckdb.Error as e:
            raise DatabaseError(f"Failed to update station {station_id}: {e}") from e

        audit_log.info(
            f"Station {station.code} updated: {', '.join(changes)}",
            extra={"station_id": station_id},
        )
        return self.get_station(station_id)

    def deactivate_station(self, station_id: int) -> Station:
        """Soft-delete a station. Its history is kept."""
        station = self.get_station(station_id)
        if not station.is_active:
            return station

        try:
            self.db.execute(
                "UPDATE stations SET is_active = FALSE WHERE station_id = ?",
                [station_id],
            )
        except duckdb.Error as e:
            raise DatabaseError(
                f"Failed to deactivate station {station_id}: {e}"
            ) from e

        audit_log.info(
            f"Station {station.code} deactivated",
            extra={"station_id": station_id},
        )
        return station.model_copy(update={"is_active": False})

    def _select(self, clause: str, params: list[Any]) -> list[Station]:
        query = f"SELECT {', '.join(STATION_COLUMNS)} FROM stations {clause}"
        try:
            rows = self.db.execute(query, params or None)
        except duckdb.Error as e:
            raise DatabaseError(f"Failed to read stations: {e}") from e
        return [self._to_station(row) for row in rows]

    @staticmethod
    def _to_station(row: tuple[Any, ...]) -> Station:
        return Station(**dict(zip(STATION_COLUMNS, row)))
