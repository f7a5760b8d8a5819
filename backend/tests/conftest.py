"""
Shared FuelWatch test fixtures.

Environment variables are set at module level, before any
``fuelwatch`` import creates the global settings.
"""

import atexit
import os
import shutil
import tempfile
from collections.abc import Callable, Generator
from datetime import date, datetime, time, timedelta
from pathlib import Path

import polars as pl
import pytest

_test_data_dir = tempfile.mkdtemp(prefix="fuelwatch_test_")
atexit.register(shutil.rmtree, _test_data_dir, ignore_errors=True)

os.environ["DEBUG"] = "true"
os.environ["LOG_LEVEL"] = "DEBUG"
os.environ["DATA_DIR"] = _test_data_dir
os.environ["DUCKDB_PATH"] = str(Path(_test_data_dir) / "test.duckdb")
os.environ["LOG_DIR"] = str(Path(_test_data_dir) / "logs")

ANALYSIS_DATE = date(2024, 6, 3)

SaleRow = tuple[int, int, datetime, float, float, str]


def at(hour: int, minute: int = 0, day: date = ANALYSIS_DATE) -> datetime:
    """Timestamp on the analysis date (or ``day``)."""
    return datetime.combine(day, time(hour, minute))


def make_sales(rows: list[SaleRow]) -> pl.DataFrame:
    """Build a sales frame from (sale_id, station_id, sold_at, liters, amount, invoice)."""
    from fuelwatch.services.rules.base import SALES_SCHEMA

    columns = list(SALES_SCHEMA)
    return pl.DataFrame(
        [dict(zip(columns, row)) for row in rows],
        schema=SALES_SCHEMA,
    )


@pytest.fixture(scope="session")
def temp_data_dir() -> Generator[Path, None, None]:
    """Temporary data directory shared by the session."""
    yield Path(_test_data_dir)


@pytest.fixture(scope="session")
def test_settings():
    from fuelwatch.core.config import Settings

    return Settings()


@pytest.fixture
def analysis_date() -> date:
    return ANALYSIS_DATE


@pytest.fixture
def config():
    """Default detection thresholds."""
    from fuelwatch.services.rules.base import DetectionConfig

    return DetectionConfig()


@pytest.fixture
def baseline():
    """
    Baseline of station 1: unit price 1.00 ± 0.02, open 06:00-22:00,
    4 pumps, 10% round-number share.
    """
    from fuelwatch.services.rules.baseline import StationBaseline

    return StationBaseline(
        station_id=1,
        as_of=ANALYSIS_DATE,
        sample_size=200,
        price_mean=1.00,
        price_std=0.02,
        mean_ticket=40.0,
        open_minute=6 * 60,
        close_minute=22 * 60,
        round_share=0.1,
        pump_count=4,
    )


@pytest.fixture
def sales_factory() -> Callable[[list[SaleRow]], pl.DataFrame]:
    return make_sales


@pytest.fixture
def normal_sales() -> pl.DataFrame:
    """A quiet morning at station 1: nothing any rule should flag."""
    return make_sales([
        (1, 1, at(8, 5), 40.13, 40.53, "INV-1"),
        (2, 1, at(8, 40), 25.71, 25.97, "INV-2"),
        (3, 1, at(9, 15), 51.02, 50.51, "INV-3"),
        (4, 1, at(10, 2), 33.48, 33.82, "INV-4"),
    ])


@pytest.fixture
def db(tmp_path) -> Generator:
    """Fresh DuckDB database with the FuelWatch schema."""
    from fuelwatch.db import DuckDBManager

    manager = DuckDBManager(tmp_path / "fuelwatch.duckdb")
    manager.initialize_schema()
    yield manager
    manager.close()


def history_rows(station_id: int, days: int = 14) -> list[dict]:
    """Deterministic history before ANALYSIS_DATE, 07:00-20:00 every day."""
    rows = []
    for offset in range(1, days + 1):
        day = ANALYSIS_DATE - timedelta(days=offset)
        for hour in range(7, 21):
            liters = 30 + (hour % 7) + 0.37
            price = 1.00 + ((offset * hour) % 5 - 2) * 0.01
            rows.append({
                "station_id": station_id,
                "sold_at": datetime.combine(day, time(hour, 17)),
                "liters": liters,
                "amount": round(liters * price, 2),
                "invoice_number": f"HIS-{offset:02d}{hour:02d}",
            })
    return rows


@pytest.fixture
def station(db):
    """An active station with 4 pumps."""
    from fuelwatch.models.station import StationCreate
    from fuelwatch.services.station_service import StationService

    return StationService(db).create_station(
        StationCreate(name="North Depot", location="Route 9 km 12", code="FWN-001", pump_count=4)
    )


@pytest.fixture
def seeded_db(db, station):
    """
    Station with two weeks of history and an analysis day containing one
    unit-price outlier (sale at 1.25/L) and one reused invoice number.
    """
    from fuelwatch.services.sale_service import SaleService

    day_rows = [
        {"sold_at": at(8, 5), "liters": 40.13, "amount": 40.53, "invoice_number": "INV-100"},
        {"sold_at": at(9, 30), "liters": 40.0, "amount": 50.00, "invoice_number": "INV-101"},
        {"sold_at": at(11, 45), "liters": 33.48, "amount": 33.82, "invoice_number": "INV-100"},
        {"sold_at": at(14, 10), "liters": 28.91, "amount": 29.20, "invoice_number": "INV-102"},
    ]
    for row in day_rows:
        row["station_id"] = station.station_id

    df = pl.DataFrame(history_rows(station.station_id) + day_rows)
    SaleService(db).import_sales(df)
    return db
