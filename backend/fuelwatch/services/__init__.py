"""FuelWatch business logic services."""

from fuelwatch.services.alert_lifecycle import AlertLifecycleManager
from fuelwatch.services.analysis_service import AnalysisRunResult, FraudAnalysisService
from fuelwatch.services.detection_engine import DetectionEngine
from fuelwatch.services.repository import (
    AlertRepository,
    DuckDBAlertRepository,
    DuckDBSalesRepository,
    SalesRepository,
)
from fuelwatch.services.sale_service import SaleImportResult, SaleService
from fuelwatch.services.station_service import StationService
from fuelwatch.services.statistics_service import StatisticsService

__all__ = [
    "AlertLifecycleManager",
    "AlertRepository",
    "AnalysisRunResult",
    "DetectionEngine",
    "DuckDBAlertRepository",
    "DuckDBSalesRepository",
    "FraudAnalysisService",
    "SaleImportResult",
    "SaleService",
    "SalesRepository",
    "StationService",
    "StatisticsService",
]
