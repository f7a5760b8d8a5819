"""Run fraud detection for one day and print the result."""

import argparse
import json
import sys
from pathlib import Path

# Set up paths
project_root = Path(__file__).parent.parent
backend_dir = project_root / "backend"
sys.path.insert(0, str(backend_dir))

from fuelwatch.core.config import settings
from fuelwatch.core.exceptions import FuelWatchException
from fuelwatch.core.logging import setup_logging
from fuelwatch.db import DuckDBManager
from fuelwatch.services import FraudAnalysisService
from fuelwatch.services.rules.base import DetectionConfig


def main():
    parser = argparse.ArgumentParser(description="Run FuelWatch detection for a date")
    parser.add_argument("date", help="Analysis date, YYYY-MM-DD")
    parser.add_argument("--dry-run", action="store_true", help="Detect without storing alerts")
    parser.add_argument("--sigma", type=float, help="Unit price outlier threshold in std devs")
    parser.add_argument("--workers", type=int, help="Stations analysed in parallel")
    parser.add_argument("--json", action="store_true", help="Print the result as JSON")
    args = parser.parse_args()

    setup_logging()

    overrides = {}
    if args.sigma is not None:
        overrides["price_sigma_multiple"] = args.sigma
    if args.workers is not None:
        overrides["max_workers"] = args.workers
    config = DetectionConfig.from_settings().with_overrides(**overrides)

    db = DuckDBManager()
    service = FraudAnalysisService(db)
    try:
        result = service.run(args.date, config=config, persist=not args.dry_run)
    except FuelWatchException as e:
        print(f"Analysis failed: {e}", file=sys.stderr)
        return 1
    finally:
        db.close()

    if args.json:
        payload = result.to_dict()
        payload["alerts"] = [a.to_dict() for a in result.alerts]
        print(json.dumps(payload, indent=2, ensure_ascii=False))
        return 0

    print(f"{settings.app_name} {settings.app_version} ({settings.environment})")
    print(f"Analysis {result.run_id} for {result.analysis_date}:")
    print(f"  Alerts detected:   {result.alerts_detected}")
    print(f"  Already stored:    {result.alerts_suppressed}")
    print(f"  Alerts stored:     {result.alerts_stored}")
    print(f"  Execution time:    {result.execution_time_ms / 1000:.2f}s")

    if result.alerts_by_type:
        print("\n  New alerts by type:")
        for alert_type, count in result.alerts_by_type.items():
            print(f"    {alert_type}: {count}")

    if result.alerts:
        print("\n  New alerts:")
        for alert in result.alerts:
            print(f"    {alert.alert_id} [{alert.severity}] station {alert.station_id}: {alert.description}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
