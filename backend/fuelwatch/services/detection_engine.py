"""Fraud detection engine.

Runs the rule catalogue over one calendar day of sales and turns the
findings into pending alerts. The engine never persists anything; the
caller decides what to store.
"""

import contextvars
import re
import threading
import time
import uuid
from collections.abc import Callable, Sequence
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import replace
from datetime import date, datetime
from typing import Any, TypeVar

import polars as pl

from fuelwatch.core.exceptions import (
    AnalysisCancelledError,
    AnalysisError,
    DataUnavailableError,
    FuelWatchException,
    InvalidDateError,
)
from fuelwatch.core.logging import LogContext, get_logger, set_run_id
from fuelwatch.models.alert import Alert, AlertStatus
from fuelwatch.services.repository import SalesRepository
from fuelwatch.services.rules.base import SALES_SCHEMA, DetectionConfig, DetectionRule, Finding
from fuelwatch.services.rules.baseline import StationBaseline
from fuelwatch.services.rules.catalogue import DEFAULT_CATALOGUE
from fuelwatch.services.validators import eligible_sales

logger = get_logger(__name__)

T = TypeVar("T")

ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

# How often the coordinator checks the cancellation event
CANCEL_POLL_SECONDS = 0.05


def coerce_date(value: Any) -> date:
    """Turn a date, datetime or ``YYYY-MM-DD`` string into a date.

    Raises:
        InvalidDateError: For anything else, including impossible dates.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        if ISO_DATE.match(text):
            try:
                return date.fromisoformat(text)
            except ValueError as e:
                raise InvalidDateError(f"Invalid calendar date: {value}", value=value) from e
    raise InvalidDateError(
        "Analysis date must be a date, datetime or YYYY-MM-DD string",
        value=value,
    )


def new_alert_id() -> str:
    return f"ALT-{uuid.uuid4().hex[:12]}"


def merge_findings(findings: list[Finding]) -> list[Finding]:
    """Collapse findings sharing (station, type, sale).

    The highest weight wins; details of both are merged. First-seen order
    is preserved.
    """
    merged: dict[tuple[int, str, int | None], Finding] = {}
    for finding in findings:
        key = finding.dedup_key
        existing = merged.get(key)
        if existing is None:
            merged[key] = finding
            continue
        winner, other = (
            (finding, existing) if finding.weight > existing.weight else (existing, finding)
        )
        merged[key] = replace(winner, details={**other.details, **winner.details})
    return list(merged.values())


class DetectionEngine:
    """Evaluates the rule catalogue for a calendar day.

    Features:
    - Per-station evaluation on a bounded worker pool
    - One baseline fetch per station per run
    - Repository calls bounded by a timeout
    - Cooperative cancellation
    - Deterministic, deduplicated output
    """

    def __init__(
        self,
        repository: SalesRepository,
        catalogue: Sequence[DetectionRule] = DEFAULT_CATALOGUE,
        config: DetectionConfig | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            repository: Source of sales and baselines.
            catalogue: Ordered rules to evaluate.
            config: Default thresholds (from settings when omitted).
        """
        self.repository = repository
        self.catalogue = tuple(catalogue)
        self.config = config or DetectionConfig.from_settings()
        self._rule_order = {rule.rule_id: i for i, rule in enumerate(self.catalogue)}

    def analyze(
        self,
        day: date | datetime | str,
        config: DetectionConfig | None = None,
        cancel_event: threading.Event | None = None,
    ) -> list[Alert]:
        """Detect suspicious sales for one calendar day.

        Args:
            day: Date to analyse.
            config: Thresholds for this run (engine default when omitted).
            cancel_event: Set it to abort the run.

        Returns:
            Pending alerts sorted by station, catalogue order and sale.

        Raises:
            InvalidDateError: Malformed date.
            DataUnavailableError: Repository failed or timed out.
            AnalysisCancelledError: ``cancel_event`` was set.
        """
        analysis_date = coerce_date(day)
        config = config or self.config
        cancel_event = cancel_event or threading.Event()
        set_run_id()

        io_pool = ThreadPoolExecutor(
            max_workers=max(1, config.max_workers),
            thread_name_prefix="fuelwatch-io",
        )
        try:
            with LogContext(
                logger, "analysis", analysis_date=analysis_date.isoformat()
            ):
                return self._analyze(analysis_date, config, cancel_event, io_pool)
        finally:
            io_pool.shutdown(wait=False, cancel_futures=True)

    def _analyze(
        self,
        analysis_date: date,
        config: DetectionConfig,
        cancel_event: threading.Event,
        io_pool: ThreadPoolExecutor,
    ) -> list[Alert]:
        self._check_cancelled(cancel_event, analysis_date)

        raw = self._call_repository(
            io_pool,
            config,
            "sales",
            self.repository.fetch_sales,
            analysis_date,
        )
        processed_at = datetime.now()
        sales = self._prepare_sales(raw, analysis_date, processed_at)

        if sales.height == 0:
            logger.info(
                "No eligible sales",
                extra={"analysis_date": analysis_date.isoformat(), "sale_count": 0},
            )
            return []

        station_ids = sorted(sales["station_id"].unique().to_list())
        partitions = sales.partition_by("station_id", as_dict=True, maintain_order=True)

        logger.info(
            f"Analysing {sales.height} sales at {len(station_ids)} stations",
            extra={
                "analysis_date": analysis_date.isoformat(),
                "sale_count": sales.height,
            },
        )

        findings = self._evaluate_stations(
            station_ids,
            partitions,
            analysis_date,
            config,
            cancel_event,
            io_pool,
        )
        self._check_cancelled(cancel_event, analysis_date)

        alerts = self._materialize(merge_findings(findings), analysis_date)
        logger.info(
            f"{len(alerts)} alerts raised",
            extra={
                "analysis_date": analysis_date.isoformat(),
                "alert_count": len(alerts),
            },
        )
        return alerts

    def _prepare_sales(
        self, raw: pl.DataFrame, analysis_date: date, now: datetime
    ) -> pl.DataFrame:
        if raw is None or raw.height == 0:
            return pl.DataFrame(schema=SALES_SCHEMA)

        sales = raw.select(list(SALES_SCHEMA)).cast(SALES_SCHEMA, strict=False)
        sales = eligible_sales(sales, now=now)
        dropped = raw.height - sales.height
        if dropped:
            logger.warning(
                f"{dropped} ineligible sales skipped",
                extra={"analysis_date": analysis_date.isoformat()},
            )
        # Repository contract is one calendar day; enforce it
        return sales.filter(pl.col("sold_at").dt.date() == analysis_date)

    def _evaluate_stations(
        self,
        station_ids: list[int],
        partitions: dict[Any, pl.DataFrame],
        analysis_date: date,
        config: DetectionConfig,
        cancel_event: threading.Event,
        io_pool: ThreadPoolExecutor,
    ) -> list[Finding]:
        results: dict[int, list[Finding]] = {}
        workers = ThreadPoolExecutor(
            max_workers=max(1, config.max_workers),
            thread_name_prefix="fuelwatch-station",
        )
        try:
            futures: dict[Future, int] = {}
            for station_id in station_ids:
                ctx = contextvars.copy_context()
                future = workers.submit(
                    ctx.run,
                    self._evaluate_station,
                    station_id,
                    partitions[(station_id,)],
                    analysis_date,
                    config,
                    cancel_event,
                    io_pool,
                )
                futures[future] = station_id

            pending = set(futures)
            while pending:
                done, pending = wait(
                    pending, timeout=CANCEL_POLL_SECONDS, return_when=FIRST_COMPLETED
                )
                for future in done:
                    # Re-raises the first station failure; the rest is cancelled below
                    results[futures[future]] = future.result()
                self._check_cancelled(cancel_event, analysis_date)
        finally:
            workers.shutdown(wait=False, cancel_futures=True)

        findings: list[Finding] = []
        for station_id in station_ids:
            findings.extend(results[station_id])
        return findings

    def _evaluate_station(
        self,
        station_id: int,
        sales: pl.DataFrame,
        analysis_date: date,
        config: DetectionConfig,
        cancel_event: threading.Event,
        io_pool: ThreadPoolExecutor,
    ) -> list[Finding]:
        self._check_cancelled(cancel_event, analysis_date)
        start_time = time.perf_counter()

        baseline = self._call_repository(
            io_pool,
            config,
            "baseline",
            self.repository.fetch_station_baseline,
            station_id,
            analysis_date,
            config,
        )
        if baseline is None:
            baseline = StationBaseline.empty(station_id, analysis_date)

        findings: list[Finding] = []
        for rule in self.catalogue:
            self._check_cancelled(cancel_event, analysis_date)
            try:
                findings.extend(rule(sales, baseline, config))
            except FuelWatchException:
                raise
            except Exception as e:
                raise AnalysisError(
                    f"Rule {rule.rule_id} failed for station {station_id}: {e}",
                    detail={"rule_id": rule.rule_id, "station_id": station_id},
                ) from e

        logger.debug(
            f"Station {station_id} evaluated",
            extra={
                "station_id": station_id,
                "sale_count": sales.height,
                "alert_count": len(findings),
                "duration_ms": (time.perf_counter() - start_time) * 1000,
            },
        )
        return findings

    def _call_repository(
        self,
        io_pool: ThreadPoolExecutor,
        config: DetectionConfig,
        source: str,
        func: Callable[..., T],
        *args: Any,
    ) -> T:
        """Run a repository call with the configured timeout."""
        future = io_pool.submit(contextvars.copy_context().run, func, *args)
        try:
            return future.result(timeout=config.repository_timeout_seconds)
        except FutureTimeoutError as e:
            future.cancel()
            raise DataUnavailableError(
                f"Repository call timed out after "
                f"{config.repository_timeout_seconds}s",
                source=source,
                timeout_seconds=config.repository_timeout_seconds,
            ) from e
        except FuelWatchException:
            raise
        except Exception as e:
            raise DataUnavailableError(
                f"Repository call failed: {e}",
                source=source,
            ) from e

    def _materialize(self, findings: list[Finding], analysis_date: date) -> list[Alert]:
        detected_at = datetime.now()

        ordered = sorted(
            findings,
            key=lambda f: (
                f.station_id,
                self._rule_order.get(f.rule_id, len(self._rule_order)),
                f.sale_id is not None,
                f.sale_id or 0,
            ),
        )
        return [
            Alert(
                alert_id=new_alert_id(),
                alert_type=f.alert_type,
                rule_id=f.rule_id,
                description=f.description[:1000],
                station_id=f.station_id,
                sale_id=f.sale_id,
                analysis_date=analysis_date,
                severity=f.severity,
                score=f.weight,
                status=AlertStatus.PENDING,
                detected_at=detected_at,
                details=f.details,
            )
            for f in ordered
        ]

    @staticmethod
    def _check_cancelled(cancel_event: threading.Event, analysis_date: date) -> None:
        if cancel_event.is_set():
            raise AnalysisCancelledError(
                "Analysis cancelled", analysis_date=analysis_date.isoformat()
            )
