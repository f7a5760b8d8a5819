"""DuckDB storage for stations, sales and fraud alerts."""

import threading
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import duckdb
import polars as pl

from fuelwatch.core.config import settings

TABLES = ("stations", "sales", "fraud_alerts")


class DuckDBManager:
    """Owns the FuelWatch database file.

    A single connection is opened lazily and shared. Each operation gets
    its own cursor, so the detection workers can read in parallel while
    writes go through ``transaction()``.
    """

    def __init__(self, db_path: Path | None = None) -> None:
        """
        Args:
            db_path: Database file. Defaults to settings.duckdb_path.
        """
        self.db_path = Path(db_path or settings.duckdb_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: duckdb.DuckDBPyConnection | None = None
        self._lock = threading.Lock()

    @property
    def connection(self) -> duckdb.DuckDBPyConnection:
        """Shared connection, opened on first use."""
        with self._lock:
            if self._conn is None:
                self._conn = duckdb.connect(str(self.db_path))
            return self._conn

    @contextmanager
    def connect(self) -> Generator[duckdb.DuckDBPyConnection, None, None]:
        """Yield a cursor that is closed when the block ends.

        Example:
            >>> with db.connect() as cur:
            ...     cur.execute("SELECT COUNT(*) FROM sales").fetchone()
        """
        cursor = self.connection.cursor()
        try:
            yield cursor
        finally:
            cursor.close()

    @contextmanager
    def transaction(self) -> Generator[duckdb.DuckDBPyConnection, None, None]:
        """Yield a cursor inside BEGIN/COMMIT; any exception rolls back."""
        with self.connect() as cursor:
            cursor.execute("BEGIN TRANSACTION")
            try:
                yield cursor
            except BaseException:
                cursor.execute("ROLLBACK")
                raise
            cursor.execute("COMMIT")

    def _run(self, cursor: duckdb.DuckDBPyConnection, query: str, params: list[Any] | None):
        return cursor.execute(query, params) if params else cursor.execute(query)

    def execute(
        self, query: str, params: list[Any] | None = None
    ) -> list[tuple[Any, ...]]:
        """Run a query and fetch every row as a tuple."""
        with self.connect() as cursor:
            return self._run(cursor, query, params).fetchall()

    def execute_df(self, query: str, params: list[Any] | None = None) -> pl.DataFrame:
        """Run a query and return the result as a Polars DataFrame."""
        with self.connect() as cursor:
            return self._run(cursor, query, params).pl()

    def table_exists(self, table_name: str) -> bool:
        rows = self.execute(
            "SELECT COUNT(*) FROM information_schema.tables WHERE table_name = ?",
            [table_name],
        )
        return rows[0][0] > 0

    def get_table_count(self, table_name: str) -> int:
        """Row count of one of the FuelWatch tables."""
        if table_name not in TABLES:
            raise ValueError(f"Unknown table: {table_name}")
        return self.execute(f"SELECT COUNT(*) FROM {table_name}")[0][0]

    def initialize_schema(self) -> None:
        """Create the FuelWatch tables, sequences and indexes if missing."""
        from fuelwatch.db.schema import schema_statements

        with self.connect() as cursor:
            for statement in schema_statements():
                cursor.execute(statement)

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None


_duckdb_manager: DuckDBManager | None = None


def get_db() -> DuckDBManager:
    """Process-wide manager on settings.duckdb_path."""
    global _duckdb_manager
    if _duckdb_manager is None:
        _duckdb_manager = DuckDBManager()
    return _duckdb_manager
