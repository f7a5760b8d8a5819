"""Database modules for FuelWatch."""

from fuelwatch.db.duckdb import DuckDBManager, get_db

__all__ = ["DuckDBManager", "get_db"]
