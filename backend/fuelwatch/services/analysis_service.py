"""Analysis orchestration service.

Coordinates one analysis run:
1. Detection over the day's sales
2. Suppression of alerts already stored for that date
3. Atomic persistence of the remaining alerts
"""

import threading
import time
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from fuelwatch.core.logging import audit_log, get_logger, get_run_id
from fuelwatch.db import DuckDBManager, get_db
from fuelwatch.models.alert import Alert
from fuelwatch.services.detection_engine import DetectionEngine, coerce_date
from fuelwatch.services.repository import (
    AlertRepository,
    DuckDBAlertRepository,
    DuckDBSalesRepository,
    SalesRepository,
)
from fuelwatch.services.rules.base import DetectionConfig

logger = get_logger(__name__)


@dataclass
class AnalysisRunResult:
    """Result of one analysis run."""

    run_id: str
    analysis_date: date
    started_at: datetime = field(default_factory=datetime.now)
    completed_at: datetime | None = None
    alerts_detected: int = 0
    alerts_suppressed: int = 0
    alerts_stored: int = 0
    alerts_by_type: dict[str, int] = field(default_factory=dict)
    alerts_by_severity: dict[str, int] = field(default_factory=dict)
    execution_time_ms: float = 0.0
    phase_timings: dict[str, float] = field(default_factory=dict)
    alerts: list[Alert] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "run_id": self.run_id,
            "analysis_date": self.analysis_date.isoformat(),
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "alerts_detected": self.alerts_detected,
            "alerts_suppressed": self.alerts_suppressed,
            "alerts_stored": self.alerts_stored,
            "alerts_by_type": self.alerts_by_type,
            "alerts_by_severity": self.alerts_by_severity,
            "execution_time_ms": round(self.execution_time_ms, 2),
            "phase_timings": {k: round(v, 2) for k, v in self.phase_timings.items()},
        }


class FraudAnalysisService:
    """Runs detection for a date and stores new alerts."""

    def __init__(
        self,
        db: DuckDBManager | None = None,
        sales_repository: SalesRepository | None = None,
        alert_repository: AlertRepository | None = None,
        config: DetectionConfig | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            db: DuckDB manager backing the default repositories.
            sales_repository: Overrides the DuckDB sales repository.
            alert_repository: Overrides the DuckDB alert repository.
            config: Default detection thresholds.
        """
        if sales_repository is None or alert_repository is None:
            db = db or get_db()
        self.sales_repository = sales_repository or DuckDBSalesRepository(db)
        self.alert_repository = alert_repository or DuckDBAlertRepository(db)
        self.engine = DetectionEngine(self.sales_repository, config=config)

    def run(
        self,
        day: date | datetime | str,
        config: DetectionConfig | None = None,
        cancel_event: threading.Event | None = None,
        persist: bool = True,
    ) -> AnalysisRunResult:
        """Analyse a date and persist alerts not stored before.

        Re-running a date stores nothing new unless the data changed.
        Detection errors propagate unchanged and nothing is written.

        Args:
            day: Date to analyse.
            config: Thresholds for this run.
            cancel_event: Aborts detection when set.
            persist: Store the new alerts (False for a dry run).
        """
        analysis_date = coerce_date(day)
        start_time = time.perf_counter()

        phase_start = time.perf_counter()
        alerts = self.engine.analyze(analysis_date, config=config, cancel_event=cancel_event)
        result = AnalysisRunResult(run_id=get_run_id(), analysis_date=analysis_date)
        result.phase_timings["detection"] = (time.perf_counter() - phase_start) * 1000
        result.alerts_detected = len(alerts)

        phase_start = time.perf_counter()
        if persist:
            # Suppression happens inside the write so overlapping runs of
            # one date cannot both store the same key
            new_alerts = (
                self.alert_repository.persist_new_alerts(alerts, analysis_date)
                if alerts
                else []
            )
            result.alerts_stored = len(new_alerts)
            result.phase_timings["persistence"] = (time.perf_counter() - phase_start) * 1000
        else:
            existing = self.alert_repository.existing_alert_keys(analysis_date)
            new_alerts = [a for a in alerts if a.dedup_key not in existing]
            result.phase_timings["suppression"] = (time.perf_counter() - phase_start) * 1000
        result.alerts_suppressed = len(alerts) - len(new_alerts)

        for alert in new_alerts:
            type_key = alert.alert_type.value
            result.alerts_by_type[type_key] = result.alerts_by_type.get(type_key, 0) + 1
            sev_key = alert.severity.value
            result.alerts_by_severity[sev_key] = (
                result.alerts_by_severity.get(sev_key, 0) + 1
            )

        result.alerts = new_alerts
        result.completed_at = datetime.now()
        result.execution_time_ms = (time.perf_counter() - start_time) * 1000

        audit_log.info(
            f"Analysis of {analysis_date.isoformat()} finished",
            extra={
                "analysis_date": analysis_date.isoformat(),
                "alert_count": result.alerts_stored,
                "duration_ms": result.execution_time_ms,
            },
        )
        logger.info(
            f"{result.alerts_detected} detected, {result.alerts_suppressed} "
            f"already stored, {result.alerts_stored} stored",
            extra={"analysis_date": analysis_date.isoformat()},
        )
        return result
