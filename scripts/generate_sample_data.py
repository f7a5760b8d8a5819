"""
Generate sample stations and sales with planted anomalies.

Four weeks of ordinary trading are generated for each station, then
the target day gets a handful of suspicious sales:

- FWN-001: an overpriced sale and a duplicated invoice
- FWS-002: two large deliveries within two minutes on a 2-pump site
- FWE-003: a sale at 03:10 and a run of identical tickets
"""

import argparse
import random
import sys
from datetime import date, datetime, time, timedelta
from pathlib import Path

import polars as pl

# Set up paths
project_root = Path(__file__).parent.parent
backend_dir = project_root / "backend"
sys.path.insert(0, str(backend_dir))

from fuelwatch.db import DuckDBManager
from fuelwatch.models import StationCreate
from fuelwatch.services import SaleService, StationService

STATIONS = [
    StationCreate(name="North Depot", location="Route 9, km 12", code="FWN-001", pump_count=6),
    StationCreate(name="South Corner", location="Harbour Road 4", code="FWS-002", pump_count=2),
    StationCreate(name="East Plaza", location="East Avenue 210", code="FWE-003", pump_count=4),
]

BASE_PRICE = 1.65


def normal_day(rng: random.Random, station_id: int, day: date, start_no: int) -> list[dict]:
    """Ordinary trading between 06:00 and 22:00."""
    rows = []
    minute = 6 * 60 + rng.randint(0, 20)
    no = start_no
    while minute < 22 * 60:
        liters = round(rng.uniform(15, 60), 2)
        price = BASE_PRICE + rng.gauss(0, 0.02)
        rows.append({
            "station_id": station_id,
            "sold_at": datetime.combine(day, time(minute // 60, minute % 60)),
            "liters": liters,
            "amount": round(liters * price, 2),
            "invoice_number": f"INV-{no}",
        })
        no += 1
        minute += rng.randint(8, 25)
    return rows


def planted_anomalies(station_ids: dict[str, int], day: date, start_no: int) -> list[dict]:
    def sale(code, hour, minute, liters, amount, invoice):
        return {
            "station_id": station_ids[code],
            "sold_at": datetime.combine(day, time(hour, minute)),
            "liters": liters,
            "amount": amount,
            "invoice_number": invoice,
        }

    no = start_no
    rows = [
        sale("FWN-001", 9, 41, 40.0, 99.0, f"INV-{no}"),
        sale("FWN-001", 12, 5, 30.0, 49.5, f"INV-{no + 1}"),
        sale("FWN-001", 12, 30, 25.0, 41.25, f"INV-{no + 1}"),
        sale("FWS-002", 15, 0, 180.0, 297.0, f"INV-{no + 2}"),
        sale("FWS-002", 15, 2, 175.0, 288.75, f"INV-{no + 3}"),
        sale("FWE-003", 3, 10, 35.0, 57.75, f"INV-{no + 4}"),
    ]
    for i in range(6):
        rows.append(sale("FWE-003", 17, 10 + i * 3, 30.3, 50.0, f"INV-{no + 5 + i}"))
    return rows


def main():
    parser = argparse.ArgumentParser(description="Generate FuelWatch sample data")
    parser.add_argument("--date", default=date.today().isoformat(), help="Day with anomalies")
    parser.add_argument("--days", type=int, default=28, help="Days of normal history")
    parser.add_argument("--seed", type=int, default=42)
    args = parser.parse_args()

    target = date.fromisoformat(args.date)
    rng = random.Random(args.seed)

    db = DuckDBManager()
    db.initialize_schema()
    stations = StationService(db)
    sales = SaleService(db)

    station_ids = {}
    for data in STATIONS:
        station = stations.get_station_by_code(data.code) or stations.create_station(data)
        station_ids[station.code] = station.station_id
        print(f"Station {station.code}: id={station.station_id}")

    rows = []
    invoice_no = 100000
    for offset in range(args.days, -1, -1):
        day = target - timedelta(days=offset)
        for station_id in station_ids.values():
            day_rows = normal_day(rng, station_id, day, invoice_no)
            invoice_no += len(day_rows)
            rows.extend(day_rows)
    rows.extend(planted_anomalies(station_ids, target, invoice_no))

    # Sales later than now would fail validation when generating for today
    now = datetime.now()
    df = pl.DataFrame(rows).filter(pl.col("sold_at") <= now)

    result = sales.import_sales(df, skip_invalid=True)
    print(f"Imported {result.imported_rows:,} sales ({result.skipped_rows} skipped)")
    print(f"Run: python scripts/run_analysis.py {target.isoformat()}")

    db.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
