"""Pydantic models for FuelWatch."""

from fuelwatch.models.alert import Alert, AlertStatus, AlertType, Severity
from fuelwatch.models.sale import Sale, SaleCreate
from fuelwatch.models.station import Station, StationCreate, StationUpdate

__all__ = [
    # Alert
    "Alert",
    "AlertStatus",
    "AlertType",
    "Severity",
    # Sale
    "Sale",
    "SaleCreate",
    # Station
    "Station",
    "StationCreate",
    "StationUpdate",
]
