"""Create the FuelWatch database schema."""

import sys
from pathlib import Path

# Set up paths
project_root = Path(__file__).parent.parent
backend_dir = project_root / "backend"
sys.path.insert(0, str(backend_dir))

from fuelwatch.core.config import settings
from fuelwatch.db import DuckDBManager


def main():
    """Initialize schema."""
    print("Initializing database schema...")
    print(f"Database path: {settings.duckdb_path.absolute()}")

    db = DuckDBManager()
    db.initialize_schema()

    for table in ("stations", "sales", "fraud_alerts"):
        print(f"  {table}: {db.get_table_count(table):,} rows")

    db.close()
    print("Schema ready.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
