"""Alert lifecycle management.

State machine::

    pending --> confirmed
    pending --> false_positive

Both targets are terminal. An alert leaves ``pending`` at most once.
"""

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Any

from fuelwatch.core.exceptions import (
    AlertNotFoundError,
    AlreadyResolvedError,
    DataValidationError,
    InvalidTransitionError,
)
from fuelwatch.core.logging import audit_log, get_logger
from fuelwatch.models.alert import Alert, AlertStatus
from fuelwatch.services.repository import AlertRepository

logger = get_logger(__name__)


def parse_target_state(target_state: Any) -> AlertStatus:
    """Validate a resolution target.

    Raises:
        InvalidTransitionError: Target is ``pending`` or not a known state.
    """
    try:
        target = AlertStatus(target_state)
    except ValueError as e:
        raise InvalidTransitionError(
            f"Unknown alert state: {target_state}", target_state=target_state
        ) from e
    if not target.is_terminal:
        raise InvalidTransitionError(
            "Alerts can only be resolved to a terminal state",
            target_state=target,
        )
    return target


def apply_resolution(
    alert: Alert,
    target: AlertStatus,
    resolved_by: str,
    comment: str | None = None,
    resolved_at: datetime | None = None,
) -> Alert:
    """Return a resolved copy of a pending alert."""
    if alert.status.is_terminal:
        raise AlreadyResolvedError(alert.alert_id, alert.status)

    data = alert.model_dump()
    data.update(
        status=target,
        resolved_at=resolved_at or datetime.now(),
        resolved_by=resolved_by,
        resolution_comment=comment,
    )
    return Alert.model_validate(data)


class AlertLifecycleManager:
    """Resolves alerts exactly once.

    Concurrent resolutions of one alert are serialized in process; the
    store's conditional update guards against other processes.
    """

    def __init__(self, store: AlertRepository) -> None:
        self.store = store
        self._guard = threading.Lock()
        self._locks: dict[str, list[Any]] = {}

    @contextmanager
    def _alert_lock(self, alert_id: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(alert_id, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[alert_id]

    def resolve(
        self,
        alert_id: str,
        target_state: AlertStatus | str,
        resolved_by: str,
        comment: str | None = None,
    ) -> Alert:
        """Move a pending alert to a terminal state.

        Args:
            alert_id: Alert to resolve.
            target_state: ``confirmed`` or ``false_positive``.
            resolved_by: Analyst making the decision.
            comment: Optional resolution note.

        Returns:
            The resolved alert.

        Raises:
            AlertNotFoundError: No such alert.
            AlreadyResolvedError: Alert is no longer pending (any target).
            InvalidTransitionError: Target is ``pending`` or unknown.
            DataValidationError: ``resolved_by`` is empty.
        """
        if resolved_by is None or not str(resolved_by).strip():
            raise DataValidationError(
                "Resolver identity is required", field="resolved_by"
            )

        with self._alert_lock(alert_id):
            alert = self.store.get_alert(alert_id)
            if alert is None:
                raise AlertNotFoundError(alert_id)
            if alert.status.is_terminal:
                raise AlreadyResolvedError(alert_id, alert.status)

            target = parse_target_state(target_state)
            resolved = apply_resolution(alert, target, str(resolved_by).strip(), comment)

            if not self.store.persist_alert_resolution(resolved):
                # Another process won the race
                current = self.store.get_alert(alert_id)
                raise AlreadyResolvedError(
                    alert_id, current.status if current else None
                )

        audit_log.info(
            f"Alert {alert_id} resolved as {target.value}",
            extra={
                "alert_id": alert_id,
                "status": target.value,
                "resolved_by": resolved.resolved_by,
                "station_id": resolved.station_id,
            },
        )
        return resolved
