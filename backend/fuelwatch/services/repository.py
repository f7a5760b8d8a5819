"""Repositories consumed by the detection engine and lifecycle manager.

The engine and lifecycle manager only see the abstract contracts; the
DuckDB implementations below back them in production.
"""

import json
import threading
from abc import ABC, abstractmethod
from datetime import date, datetime, time, timedelta
from typing import Any

import duckdb
import polars as pl

from fuelwatch.core.exceptions import DatabaseError, DataUnavailableError
from fuelwatch.core.logging import audit_log, get_logger
from fuelwatch.db import DuckDBManager
from fuelwatch.models.alert import Alert, AlertStatus, AlertType
from fuelwatch.services.rules.base import SALES_SCHEMA, DetectionConfig
from fuelwatch.services.rules.baseline import StationBaseline, compute_baseline

logger = get_logger(__name__)

AlertKey = tuple[int, str, int | None]

ALERT_COLUMNS = [
    "alert_id",
    "alert_type",
    "rule_id",
    "description",
    "station_id",
    "sale_id",
    "analysis_date",
    "severity",
    "score",
    "status",
    "detected_at",
    "resolved_at",
    "resolved_by",
    "resolution_comment",
    "details",
]


def _day_bounds(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


_date_locks_guard = threading.Lock()
_date_locks: dict[tuple[str, date], threading.Lock] = {}


def _date_write_lock(db_path: Any, day: date) -> threading.Lock:
    """Lock serializing alert writes for one analysis date of one database file."""
    key = (str(db_path), day)
    with _date_locks_guard:
        return _date_locks.setdefault(key, threading.Lock())


class SalesRepository(ABC):
    """Read-only source of sales and station baselines."""

    @abstractmethod
    def fetch_sales(self, day: date) -> pl.DataFrame:
        """All sales of ``day`` at active stations (columns of SALES_SCHEMA)."""

    @abstractmethod
    def fetch_station_baseline(
        self, station_id: int, as_of: date, config: DetectionConfig
    ) -> StationBaseline:
        """Historical baseline for a station, excluding ``as_of`` itself."""


class AlertRepository(ABC):
    """Persistence for alerts."""

    @abstractmethod
    def persist_alerts(self, alerts: list[Alert]) -> int:
        """Insert alerts in one transaction; all or nothing."""

    @abstractmethod
    def persist_new_alerts(self, alerts: list[Alert], day: date) -> list[Alert]:
        """Insert the alerts whose (station, type, sale) key is not stored for ``day``.

        The check and the insert are atomic with respect to other writers.

        Returns:
            The alerts actually stored.
        """

    @abstractmethod
    def persist_alert_resolution(self, alert: Alert) -> bool:
        """Store a resolution if the stored alert is still pending.

        Returns:
            False when the stored alert was no longer pending.
        """

    @abstractmethod
    def get_alert(self, alert_id: str) -> Alert | None:
        """Get an alert by ID."""

    @abstractmethod
    def existing_alert_keys(self, day: date) -> set[AlertKey]:
        """(station, type, sale) keys already stored for an analysis date."""


class DuckDBSalesRepository(SalesRepository):
    """Sales repository backed by DuckDB."""

    def __init__(self, db: DuckDBManager) -> None:
        self.db = db

    def fetch_sales(self, day: date) -> pl.DataFrame:
        start, end = _day_bounds(day)
        query = """
            SELECT s.sale_id, s.station_id, s.sold_at, s.liters, s.amount,
                   s.invoice_number
            FROM sales s
            JOIN stations st ON st.station_id = s.station_id
            WHERE st.is_active
              AND s.sold_at >= ? AND s.sold_at < ?
            ORDER BY s.station_id, s.sold_at, s.sale_id
        """
        try:
            df = self.db.execute_df(query, [start, end])
        except duckdb.Error as e:
            raise DataUnavailableError(
                f"Could not load sales for {day.isoformat()}: {e}",
                source="sales",
            ) from e
        return df.cast(SALES_SCHEMA)

    def fetch_station_baseline(
        self, station_id: int, as_of: date, config: DetectionConfig
    ) -> StationBaseline:
        window_start = datetime.combine(
            as_of - timedelta(days=config.baseline_window_days), time.min
        )
        as_of_start, _ = _day_bounds(as_of)
        try:
            history = self.db.execute_df(
                """
                SELECT sold_at, liters, amount
                FROM sales
                WHERE station_id = ? AND sold_at >= ? AND sold_at < ?
                """,
                [station_id, window_start, as_of_start],
            )
            pumps = self.db.execute(
                "SELECT pump_count FROM stations WHERE station_id = ?",
                [station_id],
            )
        except duckdb.Error as e:
            raise DataUnavailableError(
                f"Could not load baseline for station {station_id}: {e}",
                source="baseline",
            ) from e

        pump_count = pumps[0][0] if pumps else None
        history = history.cast({"liters": pl.Float64, "amount": pl.Float64})
        return compute_baseline(
            station_id,
            history,
            as_of,
            round_unit=config.round_unit,
            pump_count=pump_count,
        )


class DuckDBAlertRepository(AlertRepository):
    """Alert repository backed by DuckDB."""

    def __init__(self, db: DuckDBManager) -> None:
        self.db = db

    def persist_alerts(self, alerts: list[Alert]) -> int:
        if not alerts:
            return 0

        try:
            with self.db.transaction() as conn:
                self._insert(conn, alerts)
        except duckdb.Error as e:
            raise DatabaseError(f"Failed to persist alerts: {e}") from e

        audit_log.info(
            f"{len(alerts)} alerts stored",
            extra={"alert_count": len(alerts)},
        )
        return len(alerts)

    def persist_new_alerts(self, alerts: list[Alert], day: date) -> list[Alert]:
        if not alerts:
            return []

        # DuckDB allows one writing process per file, so an in-process
        # lock per date covers every concurrent writer.
        with _date_write_lock(self.db.db_path.resolve(), day):
            try:
                with self.db.transaction() as conn:
                    rows = conn.execute(
                        """
                        SELECT station_id, alert_type, sale_id
                        FROM fraud_alerts
                        WHERE analysis_date = ?
                        """,
                        [day],
                    ).fetchall()
                    existing = set(rows)
                    new_alerts = []
                    for alert in alerts:
                        if alert.dedup_key not in existing:
                            existing.add(alert.dedup_key)
                            new_alerts.append(alert)
                    if new_alerts:
                        self._insert(conn, new_alerts)
            except duckdb.Error as e:
                raise DatabaseError(f"Failed to persist alerts: {e}") from e

        audit_log.info(
            f"{len(new_alerts)} new alerts stored for {day.isoformat()}, "
            f"{len(alerts) - len(new_alerts)} already present",
            extra={"analysis_date": day.isoformat(), "alert_count": len(new_alerts)},
        )
        return new_alerts

    @staticmethod
    def _insert(conn: duckdb.DuckDBPyConnection, alerts: list[Alert]) -> None:
        rows = [
            [
                a.alert_id,
                a.alert_type.value,
                a.rule_id,
                a.description[:1000],
                a.station_id,
                a.sale_id,
                a.analysis_date,
                a.severity.value,
                a.score,
                a.status.value,
                a.detected_at,
                a.resolved_at,
                a.resolved_by,
                a.resolution_comment,
                json.dumps(a.details, ensure_ascii=False, default=str),
            ]
            for a in alerts
        ]
        placeholders = ", ".join("?" for _ in ALERT_COLUMNS)
        conn.executemany(
            f"INSERT INTO fraud_alerts ({', '.join(ALERT_COLUMNS)}) "
            f"VALUES ({placeholders})",
            rows,
        )

    def persist_alert_resolution(self, alert: Alert) -> bool:
        try:
            updated = self.db.execute(
                """
                UPDATE fraud_alerts
                SET status = ?, resolved_at = ?, resolved_by = ?,
                    resolution_comment = ?
                WHERE alert_id = ? AND status = 'pending'
                RETURNING alert_id
                """,
                [
                    alert.status.value,
                    alert.resolved_at,
                    alert.resolved_by,
                    alert.resolution_comment,
                    alert.alert_id,
                ],
            )
        except duckdb.Error as e:
            raise DatabaseError(
                f"Failed to store resolution of {alert.alert_id}: {e}"
            ) from e
        return len(updated) > 0

    def get_alert(self, alert_id: str) -> Alert | None:
        alerts = self._select("WHERE alert_id = ?", [alert_id])
        return alerts[0] if alerts else None

    def list_alerts(
        self,
        status: AlertStatus | None = None,
        alert_type: AlertType | None = None,
        station_id: int | None = None,
        analysis_date: date | None = None,
        limit: int | None = None,
    ) -> list[Alert]:
        """List alerts, newest first.

        Args:
            status: Filter by lifecycle status.
            alert_type: Filter by alert type.
            station_id: Filter by station.
            analysis_date: Filter by analysed date.
            limit: Maximum number of alerts.
        """
        conditions = []
        params: list[Any] = []

        if status:
            conditions.append("status = ?")
            params.append(AlertStatus(status).value)
        if alert_type:
            conditions.append("alert_type = ?")
            params.append(AlertType(alert_type).value)
        if station_id is not None:
            conditions.append("station_id = ?")
            params.append(station_id)
        if analysis_date:
            conditions.append("analysis_date = ?")
            params.append(analysis_date)

        where_clause = "WHERE " + " AND ".join(conditions) if conditions else ""
        limit_clause = f"LIMIT {int(limit)}" if limit else ""
        return self._select(
            f"{where_clause} ORDER BY detected_at DESC, alert_id {limit_clause}",
            params,
        )

    def existing_alert_keys(self, day: date) -> set[AlertKey]:
        try:
            rows = self.db.execute(
                """
                SELECT station_id, alert_type, sale_id
                FROM fraud_alerts
                WHERE analysis_date = ?
                """,
                [day],
            )
        except duckdb.Error as e:
            raise DataUnavailableError(
                f"Could not load stored alerts for {day.isoformat()}: {e}",
                source="fraud_alerts",
            ) from e
        return {(station_id, alert_type, sale_id) for station_id, alert_type, sale_id in rows}

    def _select(self, clause: str, params: list[Any]) -> list[Alert]:
        query = f"SELECT {', '.join(ALERT_COLUMNS)} FROM fraud_alerts {clause}"
        try:
            rows = self.db.execute(query, params or None)
        except duckdb.Error as e:
            raise DataUnavailableError(
                f"Could not read alerts: {e}", source="fraud_alerts"
            ) from e
        return [self._to_alert(dict(zip(ALERT_COLUMNS, row))) for row in rows]

    @staticmethod
    def _to_alert(record: dict[str, Any]) -> Alert:
        details = record.pop("details")
        if isinstance(details, str):
            details = json.loads(details)
        return Alert(**record, details=details or {})
