"""
Station baseline tests.
"""

from datetime import datetime, time, timedelta

import polars as pl
import pytest

from conftest import ANALYSIS_DATE
from fuelwatch.services.rules.baseline import StationBaseline, compute_baseline, round_number_expr


def history(rows):
    return pl.DataFrame(
        rows,
        schema={"sold_at": pl.Datetime("us"), "liters": pl.Float64, "amount": pl.Float64},
        orient="row",
    )


def day(offset: int, hour: int, minute: int = 0) -> datetime:
    return datetime.combine(ANALYSIS_DATE - timedelta(days=offset), time(hour, minute))


class TestComputeBaseline:
    """compute_baseline"""

    def test_price_statistics(self):
        df = history([
            (day(1, 8), 40.0, 40.0),
            (day(1, 9), 40.0, 40.8),
            (day(2, 10), 40.0, 39.2),
            (day(2, 11), 40.0, 40.0),
        ])

        baseline = compute_baseline(1, df, ANALYSIS_DATE)

        assert baseline.sample_size == 4
        assert baseline.price_mean == pytest.approx(1.0)
        assert baseline.price_std == pytest.approx(0.016329931, rel=1e-6)
        assert baseline.mean_ticket == pytest.approx(40.0)

    def test_excludes_analysis_date_and_later(self):
        df = history([
            (day(1, 8), 40.0, 40.0),
            (datetime.combine(ANALYSIS_DATE, time(9)), 40.0, 80.0),
            (day(-1, 9), 40.0, 80.0),
        ])

        baseline = compute_baseline(1, df, ANALYSIS_DATE)

        assert baseline.sample_size == 1
        assert baseline.price_mean == pytest.approx(1.0)

    def test_ignores_unusable_rows(self):
        df = history([
            (day(1, 8), 40.0, 40.0),
            (day(1, 9), 0.0, 40.0),
            (day(1, 10), 40.0, None),
            (None, 40.0, 40.0),
        ])

        assert compute_baseline(1, df, ANALYSIS_DATE).sample_size == 1

    def test_operating_window(self):
        rows = [(day(d, h, 30), 40.0, 40.4) for d in range(1, 5) for h in range(6, 23)]

        baseline = compute_baseline(1, history(rows), ANALYSIS_DATE)

        assert baseline.open_minute == 6 * 60 + 30
        assert baseline.close_minute == 22 * 60 + 30
        assert baseline.has_operating_window

    def test_round_share(self):
        df = history([
            (day(1, 8), 40.0, 40.4),
            (day(1, 9), 33.3, 50.0),
            (day(1, 10), 31.7, 32.1),
            (day(1, 11), 28.2, 28.5),
        ])

        assert compute_baseline(1, df, ANALYSIS_DATE).round_share == pytest.approx(0.5)

    def test_empty_history(self):
        baseline = compute_baseline(3, history([]), ANALYSIS_DATE, pump_count=6)

        assert baseline == StationBaseline.empty(3, ANALYSIS_DATE, pump_count=6)
        assert not baseline.has_price_stats(1)
        assert not baseline.has_operating_window

    def test_single_sale_has_no_usable_std(self):
        df = history([(day(1, 8), 40.0, 40.0)])

        baseline = compute_baseline(1, df, ANALYSIS_DATE)

        assert not baseline.has_price_stats(1)


class TestStationBaseline:
    """StationBaseline helpers"""

    def test_price_stats_need_enough_history(self, baseline):
        assert baseline.has_price_stats(200)
        assert not baseline.has_price_stats(201)

    def test_to_dict(self, baseline):
        data = baseline.to_dict()

        assert data["as_of"] == "2024-06-03"
        assert data["price_mean"] == 1.0
        assert data["pump_count"] == 4


class TestRoundNumberExpr:
    """Round-number predicate"""

    def test_multiple_of_unit_on_either_column(self):
        sales = pl.DataFrame({
            "liters": [20.0, 31.7, 33.33],
            "amount": [20.4, 50.0, 34.12],
        })

        assert sales.select(round_number_expr(10)).to_series().to_list() == [True, True, False]

    def test_volume_rules_share_the_predicate(self):
        from fuelwatch.services.rules import base, volume_rules

        assert volume_rules.round_number_expr is round_number_expr
        assert not hasattr(base, "round_number_expr")
