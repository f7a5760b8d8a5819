"""Station baseline: the rolling statistical normal of a station.

Built from a trailing history window that excludes the analysis date, so
the baseline never absorbs the anomalies it is compared against.
"""

from dataclasses import dataclass
from datetime import date
from typing import Any

import polars as pl

# Quantiles delimiting the typical operating window
OPEN_QUANTILE = 0.01
CLOSE_QUANTILE = 0.99


def round_number_expr(unit: int) -> pl.Expr:
    """True when liters or amount is an exact multiple of ``unit``."""
    return ((pl.col("liters") % unit) == 0) | ((pl.col("amount") % unit) == 0)


@dataclass(frozen=True)
class StationBaseline:
    """Historical summary for one station as of one date."""

    station_id: int
    as_of: date
    sample_size: int = 0
    price_mean: float | None = None
    price_std: float | None = None
    mean_ticket: float | None = None
    open_minute: int | None = None
    close_minute: int | None = None
    round_share: float | None = None
    pump_count: int | None = None

    @classmethod
    def empty(
        cls, station_id: int, as_of: date, pump_count: int | None = None
    ) -> "StationBaseline":
        """Baseline for a station without usable history."""
        return cls(station_id=station_id, as_of=as_of, pump_count=pump_count)

    def has_price_stats(self, min_sales: int) -> bool:
        return (
            self.sample_size >= min_sales
            and self.price_mean is not None
            and self.price_std is not None
            and self.price_std > 0
        )

    @property
    def has_operating_window(self) -> bool:
        return self.open_minute is not None and self.close_minute is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "station_id": self.station_id,
            "as_of": self.as_of.isoformat(),
            "sample_size": self.sample_size,
            "price_mean": self.price_mean,
            "price_std": self.price_std,
            "mean_ticket": self.mean_ticket,
            "open_minute": self.open_minute,
            "close_minute": self.close_minute,
            "round_share": self.round_share,
            "pump_count": self.pump_count,
        }


def compute_baseline(
    station_id: int,
    history: pl.DataFrame,
    as_of: date,
    round_unit: int = 10,
    pump_count: int | None = None,
) -> StationBaseline:
    """Summarize a station's sale history.

    Rows on or after ``as_of`` and rows with non-positive or missing
    liters/amount are ignored.

    Args:
        station_id: Station identifier.
        history: Sales with at least sold_at, liters and amount columns.
        as_of: Analysis date (excluded).
        round_unit: Unit defining a "round" liters/amount value.
        pump_count: Station pump count, carried through unchanged.

    Returns:
        StationBaseline (empty when no usable history).
    """
    usable = history.filter(
        pl.col("sold_at").is_not_null()
        & (pl.col("sold_at").dt.date() < as_of)
        & pl.col("liters").is_finite()
        & (pl.col("liters") > 0)
        & pl.col("amount").is_finite()
        & (pl.col("amount") > 0)
    )

    if usable.height == 0:
        return StationBaseline.empty(station_id, as_of, pump_count)

    minute_of_day = (
        pl.col("sold_at").dt.hour().cast(pl.Int32) * 60
        + pl.col("sold_at").dt.minute().cast(pl.Int32)
    )

    stats = usable.select(
        (pl.col("amount") / pl.col("liters")).mean().alias("price_mean"),
        (pl.col("amount") / pl.col("liters")).std().alias("price_std"),
        pl.col("amount").mean().alias("mean_ticket"),
        minute_of_day.quantile(OPEN_QUANTILE, "lower").alias("open_minute"),
        minute_of_day.quantile(CLOSE_QUANTILE, "higher").alias("close_minute"),
        round_number_expr(round_unit)
        .cast(pl.Float64)
        .mean()
        .alias("round_share"),
    ).row(0, named=True)

    return StationBaseline(
        station_id=station_id,
        as_of=as_of,
        sample_size=usable.height,
        price_mean=stats["price_mean"],
        price_std=stats["price_std"],
        mean_ticket=stats["mean_ticket"],
        open_minute=int(stats["open_minute"]),
        close_minute=int(stats["close_minute"]),
        round_share=stats["round_share"],
        pump_count=pump_count,
    )
