"""
Detection engine tests.

The repository is mocked so each test controls exactly which sales and
baselines the engine sees.
"""

import threading
from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest

from conftest import ANALYSIS_DATE, at, make_sales
from fuelwatch.core.exceptions import (
    AnalysisCancelledError,
    AnalysisError,
    DataUnavailableError,
    InvalidDateError,
)
from fuelwatch.models.alert import AlertStatus, AlertType, Severity
from fuelwatch.services.detection_engine import (
    DetectionEngine,
    coerce_date,
    merge_findings,
)
from fuelwatch.services.repository import SalesRepository
from fuelwatch.services.rules import StationBaseline, detection_rule, empty_sales_frame
from fuelwatch.services.rules.base import Finding


def make_repository(sales, baseline=None):
    repo = MagicMock(spec=SalesRepository)
    repo.fetch_sales.return_value = sales
    if baseline is not None:
        repo.fetch_station_baseline.side_effect = lambda station_id, as_of, config: (
            StationBaseline(**{**baseline.to_dict(), "station_id": station_id, "as_of": as_of})
        )
    else:
        repo.fetch_station_baseline.side_effect = lambda station_id, as_of, config: (
            StationBaseline.empty(station_id, as_of)
        )
    return repo


@pytest.fixture
def scenario_sales():
    """Station 1: one 1.25/L sale and an invoice used twice."""
    return make_sales([
        (1, 1, at(9), 40.0, 40.40, "INV-100"),
        (2, 1, at(10), 40.0, 50.00, "INV-101"),
        (3, 1, at(11), 35.0, 35.35, "INV-100"),
    ])


class TestCoerceDate:
    """Date argument handling"""

    def test_accepts_date_datetime_and_iso_string(self):
        assert coerce_date(ANALYSIS_DATE) == ANALYSIS_DATE
        assert coerce_date(datetime(2024, 6, 3, 17, 45)) == ANALYSIS_DATE
        assert coerce_date("2024-06-03") == ANALYSIS_DATE

    @pytest.mark.parametrize(
        "value",
        ["2024-13-01", "2024-02-30", "yesterday", "03/06/2024", "", None, 20240603],
    )
    def test_rejects_malformed_dates(self, value):
        with pytest.raises(InvalidDateError):
            coerce_date(value)


class TestAnalyze:
    """DetectionEngine.analyze"""

    def test_date_without_sales_gives_empty_list(self, config):
        repo = make_repository(empty_sales_frame())
        engine = DetectionEngine(repo, config=config)

        assert engine.analyze(ANALYSIS_DATE) == []
        repo.fetch_station_baseline.assert_not_called()

    def test_invalid_date_raises_before_loading(self, config):
        repo = make_repository(empty_sales_frame())
        engine = DetectionEngine(repo, config=config)

        with pytest.raises(InvalidDateError):
            engine.analyze("not-a-date")
        repo.fetch_sales.assert_not_called()

    def test_scenario_outlier_and_duplicate(self, scenario_sales, baseline, config):
        engine = DetectionEngine(make_repository(scenario_sales, baseline), config=config)

        alerts = engine.analyze(ANALYSIS_DATE)

        assert [(a.alert_type, a.sale_id) for a in alerts] == [
            (AlertType.UNIT_PRICE_OUTLIER, 2),
            (AlertType.DUPLICATE_INVOICE, 3),
        ]

    def test_alerts_are_pending(self, scenario_sales, baseline, config):
        engine = DetectionEngine(make_repository(scenario_sales, baseline), config=config)

        alerts = engine.analyze("2024-06-03")

        for alert in alerts:
            assert alert.status == AlertStatus.PENDING
            assert alert.resolved_at is None
            assert alert.resolved_by is None
            assert alert.analysis_date == ANALYSIS_DATE
            assert alert.alert_id.startswith("ALT-")
        assert len({a.alert_id for a in alerts}) == len(alerts)

    def test_score_follows_severity(self, scenario_sales, baseline, config):
        engine = DetectionEngine(make_repository(scenario_sales, baseline), config=config)

        outlier = engine.analyze(ANALYSIS_DATE)[0]

        assert outlier.severity == Severity.HIGH
        assert outlier.score == 15.0

    def test_rerun_gives_identical_set(self, scenario_sales, baseline, config):
        engine = DetectionEngine(make_repository(scenario_sales, baseline), config=config)

        first = engine.analyze(ANALYSIS_DATE)
        second = engine.analyze(ANALYSIS_DATE)

        assert [a.dedup_key for a in first] == [a.dedup_key for a in second]

    def test_baseline_fetched_once_per_station(self, baseline, config):
        sales = make_sales([
            (1, 1, at(9), 40.0, 40.40, "INV-1"),
            (2, 2, at(9), 40.0, 40.40, "INV-1"),
            (3, 1, at(10), 40.0, 40.40, "INV-2"),
            (4, 3, at(11), 40.0, 40.40, "INV-1"),
        ])
        repo = make_repository(sales, baseline)

        DetectionEngine(repo, config=config).analyze(ANALYSIS_DATE)

        called = sorted(c.args[0] for c in repo.fetch_station_baseline.call_args_list)
        assert called == [1, 2, 3]
        for c in repo.fetch_station_baseline.call_args_list:
            assert c.args[1] == ANALYSIS_DATE

    def test_invoices_are_scoped_per_station(self, baseline, config):
        sales = make_sales([
            (1, 1, at(9), 40.0, 40.40, "INV-100"),
            (2, 2, at(9), 40.0, 40.40, "INV-100"),
        ])
        engine = DetectionEngine(make_repository(sales, baseline), config=config)

        assert engine.analyze(ANALYSIS_DATE) == []

    def test_output_sorted_by_station_then_catalogue(self, baseline, config):
        sales = make_sales([
            (10, 2, at(3), 40.0, 40.40, "INV-100"),
            (11, 2, at(9), 40.0, 40.40, "INV-100"),
            (12, 1, at(9), 40.0, 40.40, "INV-200"),
            (13, 1, at(10), 40.0, 50.00, "INV-200"),
        ])
        engine = DetectionEngine(make_repository(sales, baseline), config=config)

        alerts = engine.analyze(ANALYSIS_DATE)

        assert [(a.station_id, a.rule_id, a.sale_id) for a in alerts] == [
            (1, "PRC-001", 13),
            (1, "INV-001", 13),
            (2, "INV-001", 11),
            (2, "TIM-001", 10),
        ]

    def test_ineligible_sales_are_skipped(self, baseline, config):
        future = datetime.now() + timedelta(days=2)
        sales = make_sales([
            (1, 1, at(9), 40.0, 40.40, "INV-1"),
            (2, 1, at(10), 0.0, 50.00, "INV-2"),
            (3, 1, at(10), -5.0, 50.00, "INV-3"),
            (4, 1, at(11), 40.0, None, "INV-4"),
            (5, 1, None, 40.0, 50.00, "INV-5"),
            (6, 1, future, 40.0, 50.00, "INV-6"),
            (7, 1, at(12), 40.0, 50.00, "bad invoice"),
        ])
        engine = DetectionEngine(make_repository(sales, baseline), config=config)

        assert engine.analyze(ANALYSIS_DATE) == []

    def test_sales_of_other_dates_are_ignored(self, baseline, config):
        sales = make_sales([
            (1, 1, at(10, day=ANALYSIS_DATE - timedelta(days=1)), 40.0, 50.00, "INV-1"),
        ])
        engine = DetectionEngine(make_repository(sales, baseline), config=config)

        assert engine.analyze(ANALYSIS_DATE) == []

    def test_config_override_per_call(self, baseline, config):
        sales = make_sales([(1, 1, at(9), 40.0, 42.00, "INV-1")])
        engine = DetectionEngine(make_repository(sales, baseline), config=config)

        assert engine.analyze(ANALYSIS_DATE) == []
        strict = config.with_overrides(price_sigma_multiple=2.0)
        assert len(engine.analyze(ANALYSIS_DATE, config=strict)) == 1

    def test_single_worker(self, scenario_sales, baseline, config):
        engine = DetectionEngine(
            make_repository(scenario_sales, baseline),
            config=config.with_overrides(max_workers=1),
        )

        assert len(engine.analyze(ANALYSIS_DATE)) == 2


class TestRepositoryFailures:
    """Repository errors abort the run"""

    def test_sales_fetch_error(self, config):
        repo = MagicMock(spec=SalesRepository)
        repo.fetch_sales.side_effect = ConnectionError("database down")

        with pytest.raises(DataUnavailableError) as exc_info:
            DetectionEngine(repo, config=config).analyze(ANALYSIS_DATE)

        assert exc_info.value.detail["source"] == "sales"
        assert exc_info.value.http_status_code == 503

    def test_sales_fetch_timeout(self, config):
        release = threading.Event()
        repo = MagicMock(spec=SalesRepository)
        repo.fetch_sales.side_effect = lambda day: release.wait(5)
        fast = config.with_overrides(repository_timeout_seconds=0.05)

        try:
            with pytest.raises(DataUnavailableError) as exc_info:
                DetectionEngine(repo, config=fast).analyze(ANALYSIS_DATE)
        finally:
            release.set()

        assert exc_info.value.detail["timeout_seconds"] == 0.05

    def test_baseline_timeout_gives_no_partial_result(self, scenario_sales, baseline, config):
        release = threading.Event()
        repo = make_repository(scenario_sales, baseline)
        repo.fetch_station_baseline.side_effect = lambda *args: release.wait(5)
        fast = config.with_overrides(repository_timeout_seconds=0.05)

        try:
            with pytest.raises(DataUnavailableError) as exc_info:
                DetectionEngine(repo, config=fast).analyze(ANALYSIS_DATE)
        finally:
            release.set()

        assert exc_info.value.detail["source"] == "baseline"

    def test_failing_rule_aborts_run(self, scenario_sales, baseline, config):
        @detection_rule(
            rule_id="TST-001",
            rule_name="Broken",
            alert_type=AlertType.OFF_HOURS,
            severity=Severity.LOW,
            description="Always fails",
        )
        def broken(rule, sales, baseline, config):
            raise ZeroDivisionError("boom")

        engine = DetectionEngine(
            make_repository(scenario_sales, baseline), catalogue=(broken,), config=config
        )

        with pytest.raises(AnalysisError) as exc_info:
            engine.analyze(ANALYSIS_DATE)
        assert exc_info.value.detail["rule_id"] == "TST-001"


class TestCancellation:
    """Cooperative cancellation"""

    def test_cancel_before_start(self, scenario_sales, baseline, config):
        repo = make_repository(scenario_sales, baseline)
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(AnalysisCancelledError):
            DetectionEngine(repo, config=config).analyze(ANALYSIS_DATE, cancel_event=cancel)
        repo.fetch_sales.assert_not_called()

    def test_cancel_while_stations_run(self, scenario_sales, baseline, config):
        cancel = threading.Event()
        repo = make_repository(scenario_sales, baseline)

        def fetch_and_cancel(station_id, as_of, config):
            cancel.set()
            return baseline

        repo.fetch_station_baseline.side_effect = fetch_and_cancel

        with pytest.raises(AnalysisCancelledError) as exc_info:
            DetectionEngine(repo, config=config).analyze(ANALYSIS_DATE, cancel_event=cancel)
        assert exc_info.value.detail["analysis_date"] == "2024-06-03"


class TestDeduplication:
    """Finding merge"""

    def _finding(self, sale_id, weight, details, alert_type=AlertType.OFF_HOURS):
        return Finding(
            rule_id="TIM-001",
            alert_type=alert_type,
            station_id=1,
            sale_id=sale_id,
            description=f"weight {weight}",
            severity=Severity.MEDIUM,
            weight=weight,
            details=details,
        )

    def test_highest_weight_wins_and_details_merge(self):
        merged = merge_findings([
            self._finding(1, 5.0, {"a": 1, "shared": "low"}),
            self._finding(1, 20.0, {"b": 2, "shared": "high"}),
        ])

        assert len(merged) == 1
        assert merged[0].weight == 20.0
        assert merged[0].details == {"a": 1, "b": 2, "shared": "high"}

    def test_different_types_on_one_sale_stay_distinct(self):
        merged = merge_findings([
            self._finding(1, 5.0, {}),
            self._finding(1, 5.0, {}, alert_type=AlertType.DUPLICATE_INVOICE),
        ])

        assert len(merged) == 2

    def test_rule_emitting_twice_gives_one_alert(self, scenario_sales, baseline, config):
        @detection_rule(
            rule_id="TST-002",
            rule_name="Echo",
            alert_type=AlertType.OFF_HOURS,
            severity=Severity.LOW,
            description="Emits every sale twice",
        )
        def echo(rule, sales, baseline, config):
            findings = []
            for sale_id in sales["sale_id"].to_list():
                findings.append(rule.finding(1, sale_id, "first", {"n": 1}, weight=1.0))
                findings.append(rule.finding(1, sale_id, "second", {"m": 2}, weight=3.0))
            return findings

        engine = DetectionEngine(
            make_repository(scenario_sales, baseline), catalogue=(echo,), config=config
        )

        alerts = engine.analyze(ANALYSIS_DATE)

        assert [a.sale_id for a in alerts] == [1, 2, 3]
        assert all(a.description == "second" for a in alerts)
        assert all(a.details == {"n": 1, "m": 2} for a in alerts)
        assert all(a.score == 3.0 for a in alerts)
