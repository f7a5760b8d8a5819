"""
Analysis service tests: detection, re-run suppression and persistence.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock

import pytest

from conftest import ANALYSIS_DATE
from fuelwatch.core.exceptions import DataUnavailableError
from fuelwatch.models.alert import AlertStatus, AlertType
from fuelwatch.services.analysis_service import FraudAnalysisService
from fuelwatch.services.repository import AlertRepository, DuckDBAlertRepository, SalesRepository
from fuelwatch.services.rules.base import DetectionConfig


@pytest.fixture
def service(seeded_db):
    return FraudAnalysisService(db=seeded_db, config=DetectionConfig())


class TestFraudAnalysisService:
    """FraudAnalysisService.run"""

    def test_run_stores_detected_alerts(self, service, seeded_db):
        result = service.run(ANALYSIS_DATE)

        assert result.alerts_detected == 2
        assert result.alerts_stored == 2
        assert result.alerts_suppressed == 0
        assert result.alerts_by_type == {"unit_price_outlier": 1, "duplicate_invoice": 1}
        assert seeded_db.get_table_count("fraud_alerts") == 2

        stored = DuckDBAlertRepository(seeded_db).list_alerts()
        assert {a.alert_type for a in stored} == {
            AlertType.UNIT_PRICE_OUTLIER,
            AlertType.DUPLICATE_INVOICE,
        }
        assert all(a.status == AlertStatus.PENDING for a in stored)

    def test_outlier_points_at_the_expensive_sale(self, service, seeded_db):
        expensive_id = seeded_db.execute(
            "SELECT sale_id FROM sales WHERE amount = 50.0 AND liters = 40.0"
        )[0][0]

        result = service.run(ANALYSIS_DATE)

        outlier = next(a for a in result.alerts if a.alert_type == AlertType.UNIT_PRICE_OUTLIER)
        assert outlier.sale_id == expensive_id

    def test_duplicate_points_at_the_later_sale(self, service, seeded_db):
        later_id = seeded_db.execute(
            "SELECT MAX(sale_id) FROM sales WHERE invoice_number = 'INV-100'"
        )[0][0]

        result = service.run(ANALYSIS_DATE)

        duplicate = next(a for a in result.alerts if a.alert_type == AlertType.DUPLICATE_INVOICE)
        assert duplicate.sale_id == later_id

    def test_rerun_stores_nothing_new(self, service, seeded_db):
        service.run(ANALYSIS_DATE)

        second = service.run(ANALYSIS_DATE)

        assert second.alerts_detected == 2
        assert second.alerts_suppressed == 2
        assert second.alerts_stored == 0
        assert seeded_db.get_table_count("fraud_alerts") == 2

    def test_rerun_after_resolution_does_not_reopen(self, service, seeded_db):
        from fuelwatch.services.alert_lifecycle import AlertLifecycleManager

        first = service.run(ANALYSIS_DATE)
        AlertLifecycleManager(service.alert_repository).resolve(
            first.alerts[0].alert_id, "false_positive", "analyst"
        )

        service.run(ANALYSIS_DATE)

        statuses = [a.status for a in DuckDBAlertRepository(seeded_db).list_alerts()]
        assert sorted(statuses) == [AlertStatus.FALSE_POSITIVE, AlertStatus.PENDING]

    def test_dry_run_persists_nothing(self, service, seeded_db):
        result = service.run(ANALYSIS_DATE, persist=False)

        assert result.alerts_detected == 2
        assert result.alerts_stored == 0
        assert seeded_db.get_table_count("fraud_alerts") == 0

    def test_quiet_date(self, service):
        result = service.run("2024-05-01")

        assert result.alerts_detected == 0
        assert result.alerts == []

    def test_result_to_dict(self, service):
        data = service.run(ANALYSIS_DATE).to_dict()

        assert data["analysis_date"] == "2024-06-03"
        assert data["alerts_stored"] == 2
        assert "detection" in data["phase_timings"]

    def test_detection_failure_writes_nothing(self):
        sales_repo = MagicMock(spec=SalesRepository)
        sales_repo.fetch_sales.side_effect = ConnectionError("down")
        alert_repo = MagicMock(spec=AlertRepository)
        service = FraudAnalysisService(
            sales_repository=sales_repo, alert_repository=alert_repo, config=DetectionConfig()
        )

        with pytest.raises(DataUnavailableError):
            service.run(ANALYSIS_DATE)

        alert_repo.persist_alerts.assert_not_called()
        alert_repo.persist_new_alerts.assert_not_called()

    def test_overlapping_runs_store_each_alert_once(self, seeded_db):
        services = [FraudAnalysisService(db=seeded_db, config=DetectionConfig()) for _ in range(2)]
        barrier = threading.Barrier(len(services))
        for svc in services:
            write = svc.alert_repository.persist_new_alerts

            def gated(alerts, day, _write=write):
                # Both runs have detected before either writes
                barrier.wait(timeout=10)
                return _write(alerts, day)

            svc.alert_repository.persist_new_alerts = gated

        with ThreadPoolExecutor(max_workers=2) as pool:
            results = list(pool.map(lambda s: s.run(ANALYSIS_DATE), services))

        assert sorted(r.alerts_stored for r in results) == [0, 2]
        assert sorted(r.alerts_suppressed for r in results) == [0, 2]
        assert seeded_db.get_table_count("fraud_alerts") == 2
        duplicated = seeded_db.execute("""
            SELECT station_id, alert_type, sale_id, COUNT(*)
            FROM fraud_alerts
            GROUP BY station_id, alert_type, sale_id
            HAVING COUNT(*) > 1
        """)
        assert duplicated == []
