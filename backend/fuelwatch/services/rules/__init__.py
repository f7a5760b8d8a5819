"""Fraud detection rule package.

This package provides:
- Rule building blocks (findings, config, the rule decorator)
- Station baselines
- Six detection rules and their ordered catalogue

Rules (catalogue order):
- PRC-001: Unit-price outlier
- VOL-001: Improbable velocity
- INV-001: Duplicate invoice number
- TIM-001: Off-hours transaction
- VOL-002: Round-number clustering
- PRC-002: Zero-variance run
"""

from fuelwatch.services.rules.base import (
    SALES_SCHEMA,
    DetectionConfig,
    DetectionRule,
    Finding,
    detection_rule,
    empty_sales_frame,
)
from fuelwatch.services.rules.baseline import StationBaseline, compute_baseline
from fuelwatch.services.rules.catalogue import DEFAULT_CATALOGUE, get_rule
from fuelwatch.services.rules.invoice_rules import duplicate_invoice
from fuelwatch.services.rules.price_rules import unit_price_outlier, zero_variance_run
from fuelwatch.services.rules.time_rules import off_hours
from fuelwatch.services.rules.volume_rules import (
    improbable_velocity,
    round_number_cluster,
)

__all__ = [
    # Building blocks
    "SALES_SCHEMA",
    "DetectionConfig",
    "DetectionRule",
    "Finding",
    "detection_rule",
    "empty_sales_frame",
    # Baseline
    "StationBaseline",
    "compute_baseline",
    # Catalogue
    "DEFAULT_CATALOGUE",
    "get_rule",
    # Rules
    "unit_price_outlier",
    "improbable_velocity",
    "duplicate_invoice",
    "off_hours",
    "round_number_cluster",
    "zero_variance_run",
]
