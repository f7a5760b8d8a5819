"""Alert and sales statistics for dashboards and reports."""

from datetime import date, datetime, time, timedelta
from typing import Any

import duckdb

from fuelwatch.core.exceptions import DataUnavailableError
from fuelwatch.db import DuckDBManager, get_db


class StatisticsService:
    """Read-only aggregations over stations, sales and alerts."""

    def __init__(self, db: DuckDBManager | None = None) -> None:
        """Initialize statistics service.

        Args:
            db: DuckDB manager instance.
        """
        self.db = db or get_db()

    def _rows(self, query: str, params: list[Any] | None = None) -> list[dict[str, Any]]:
        try:
            return self.db.execute_df(query, params).to_dicts()
        except duckdb.Error as e:
            raise DataUnavailableError(f"Statistics query failed: {e}", source="statistics") from e

    def _scalar(self, query: str, params: list[Any] | None = None) -> Any:
        try:
            return self.db.execute(query, params)[0][0]
        except duckdb.Error as e:
            raise DataUnavailableError(f"Statistics query failed: {e}", source="statistics") from e

    def alert_statistics(self) -> dict[str, Any]:
        """Alert totals by status and by type."""
        by_status = self._rows("""
            SELECT status, COUNT(*) AS count
            FROM fraud_alerts
            GROUP BY status
            ORDER BY status
        """)
        by_type = self._rows("""
            SELECT alert_type, COUNT(*) AS count,
                   COUNT(*) FILTER (WHERE status = 'pending') AS pending
            FROM fraud_alerts
            GROUP BY alert_type
            ORDER BY count DESC, alert_type
        """)
        status_counts = {r["status"]: r["count"] for r in by_status}
        return {
            "total": sum(status_counts.values()),
            "pending": status_counts.get("pending", 0),
            "confirmed": status_counts.get("confirmed", 0),
            "false_positive": status_counts.get("false_positive", 0),
            "by_type": by_type,
        }

    def alerts_by_station(self) -> list[dict[str, Any]]:
        """Alert counts per station, busiest first."""
        return self._rows("""
            SELECT
                a.station_id,
                COALESCE(s.name, 'N/A') AS station_name,
                COUNT(*) AS total_alerts,
                COUNT(*) FILTER (WHERE a.status = 'pending') AS pending,
                COUNT(*) FILTER (WHERE a.status = 'confirmed') AS confirmed,
                COUNT(*) FILTER (WHERE a.status = 'false_positive') AS false_positive
            FROM fraud_alerts a
            LEFT JOIN stations s ON s.station_id = a.station_id
            GROUP BY a.station_id, s.name
            ORDER BY total_alerts DESC, a.station_id
        """)

    def recent_alerts(self, limit: int = 10) -> list[dict[str, Any]]:
        """Most recently detected alerts with their station name."""
        return self._rows(
            f"""
            SELECT
                a.alert_id, a.alert_type, a.description, a.status,
                a.severity, a.detected_at, a.station_id,
                COALESCE(s.name, 'N/A') AS station_name
            FROM fraud_alerts a
            LEFT JOIN stations s ON s.station_id = a.station_id
            ORDER BY a.detected_at DESC, a.alert_id
            LIMIT {int(limit)}
            """
        )

    def sales_summary(self, today: date | None = None) -> dict[str, Any]:
        """Headline figures: stations, alerts, today's and this month's sales."""
        today = today or date.today()
        day_start = datetime.combine(today, time.min)
        month_start = datetime.combine(today.replace(day=1), time.min)
        next_day = day_start + timedelta(days=1)

        def totals(start: datetime, end: datetime) -> dict[str, Any]:
            return self._rows(
                """
                SELECT COUNT(*) AS count,
                       COALESCE(SUM(amount), 0) AS amount,
                       COALESCE(SUM(liters), 0) AS liters
                FROM sales
                WHERE sold_at >= ? AND sold_at < ?
                """,
                [start, end],
            )[0]

        return {
            "active_stations": self._scalar(
                "SELECT COUNT(*) FROM stations WHERE is_active"
            ),
            "pending_alerts": self._scalar(
                "SELECT COUNT(*) FROM fraud_alerts WHERE status = 'pending'"
            ),
            "total_alerts": self._scalar("SELECT COUNT(*) FROM fraud_alerts"),
            "today": totals(day_start, next_day),
            "month": totals(month_start, next_day),
        }

    def sales_by_day(self, days: int = 7, today: date | None = None) -> list[dict[str, Any]]:
        """Daily sale count, amount and liters over the last ``days`` days."""
        today = today or date.today()
        start = datetime.combine(today - timedelta(days=days), time.min)
        end = datetime.combine(today, time.min) + timedelta(days=1)
        return self._rows(
            """
            SELECT
                CAST(sold_at AS DATE) AS sale_date,
                COUNT(*) AS sale_count,
                SUM(amount) AS total_amount,
                SUM(liters) AS total_liters
            FROM sales
            WHERE sold_at >= ? AND sold_at < ?
            GROUP BY sale_date
            ORDER BY sale_date
            """,
            [start, end],
        )

    def top_stations(self, limit: int = 5, since: date | None = None) -> list[dict[str, Any]]:
        """Stations ranked by sales amount since a date (month start by default)."""
        since = since or date.today().replace(day=1)
        return self._rows(
            f"""
            SELECT
                s.station_id,
                s.name AS station_name,
                COUNT(*) AS sale_count,
                SUM(v.amount) AS total_amount,
                SUM(v.liters) AS total_liters
            FROM sales v
            JOIN stations s ON s.station_id = v.station_id
            WHERE v.sold_at >= ?
            GROUP BY s.station_id, s.name
            ORDER BY total_amount DESC, s.station_id
            LIMIT {int(limit)}
            """,
            [datetime.combine(since, time.min)],
        )
