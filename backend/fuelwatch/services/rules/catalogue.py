"""The ordered rule catalogue evaluated by the detection engine."""

from fuelwatch.services.rules.base import DetectionRule
from fuelwatch.services.rules.invoice_rules import duplicate_invoice
from fuelwatch.services.rules.price_rules import unit_price_outlier, zero_variance_run
from fuelwatch.services.rules.time_rules import off_hours
from fuelwatch.services.rules.volume_rules import (
    improbable_velocity,
    round_number_cluster,
)

DEFAULT_CATALOGUE: tuple[DetectionRule, ...] = (
    unit_price_outlier,
    improbable_velocity,
    duplicate_invoice,
    off_hours,
    round_number_cluster,
    zero_variance_run,
)


def get_rule(rule_id: str) -> DetectionRule | None:
    """Get a catalogue rule by ID."""
    for rule in DEFAULT_CATALOGUE:
        if rule.rule_id == rule_id:
            return rule
    return None
