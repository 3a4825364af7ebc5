from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Optional, Protocol

from .models import (
    Alert,
    AlertAction,
    AlertConfigurationError,
    AlertContext,
    AllUsersPresentAlert,
    EventPresence,
    GeofenceEvent,
    PresenceResolver,
    ensure_utc,
)
from .registry import evaluate


logger = logging.getLogger("officeradar.alerts.engine")

ActionInvoker = Callable[[AlertAction], None]


class LifecycleStore(Protocol):
    def update(self, alert: Alert) -> Alert:
        ...

    def delete(self, alert: Alert) -> None:
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AlertEngine:
    """
    Evaluates alerts against geofence events and applies their lifecycle.

    The engine holds no alert state: every call works on the alert value it is
    handed, and lifecycle decisions are written straight to ``store``.
    """

    def __init__(
        self,
        presence: Optional[PresenceResolver],
        store: Optional[LifecycleStore],
        *,
        clock: Callable[[], datetime] = _utcnow,
        include_triggering_event: bool = True,
    ) -> None:
        if presence is None:
            raise AlertConfigurationError("AlertEngine requires a presence resolver")
        if store is None:
            raise AlertConfigurationError("AlertEngine requires an alert store")
        self._presence = presence
        self._store = store
        self._clock = clock
        self._include_triggering_event = include_triggering_event

    def now(self) -> datetime:
        return ensure_utc(self._clock())

    def process(self, alert: Alert, event: GeofenceEvent, now: Optional[datetime] = None) -> bool:
        """
        Decide whether ``alert`` fires for ``event``.

        Presence lookups may raise; a non-matching event simply returns False.
        For all-users alerts the triggering profile is looked up as though the
        event had already been recorded.
        """
        current = ensure_utc(now) if now is not None else self.now()
        presence: PresenceResolver = self._presence
        if self._include_triggering_event and isinstance(alert, AllUsersPresentAlert):
            presence = EventPresence(presence, event, now=current)
        context = AlertContext(now=current, presence=presence)
        fired = evaluate(alert, event, context)
        logger.debug(
            "alert.evaluated",
            extra={"alert_id": alert.id, "alert_type": alert.tag, "event_id": event.id, "fired": fired},
        )
        return fired

    def perform_actions(
        self,
        alert: Alert,
        invoke: ActionInvoker,
        *,
        fail_fast: bool = True,
    ) -> None:
        """
        Invoke every action of ``alert`` in order.

        By default the first failure stops the run and is re-raised. With
        ``fail_fast=False`` all actions are attempted, each failure is logged,
        and the first one is re-raised once the list is exhausted.
        """
        first_error: Optional[Exception] = None
        for index, action in enumerate(alert.actions):
            try:
                invoke(action)
            except Exception as exc:  # noqa: BLE001 - re-raised below
                if fail_fast:
                    raise
                logger.warning(
                    "Action %s/%s of alert %s failed: %s",
                    index + 1,
                    len(alert.actions),
                    alert.id,
                    exc,
                    extra={"alert_id": alert.id, "recipient": action.recipient},
                )
                if first_error is None:
                    first_error = exc
        if first_error is not None:
            raise first_error

    def reschedule_or_delete(self, alert: Alert, now: Optional[datetime] = None) -> Optional[Alert]:
        """
        Apply the post-fire lifecycle rule.

        Sticky alerts are written back with ``active_on = now +
        reactivate_after`` and returned with their new revision; other alerts
        are deleted and ``None`` is returned. Store errors propagate unchanged.
        """
        if not alert.sticky:
            self._store.delete(alert)
            logger.info("Deleted fired alert %s", alert.id, extra={"alert_id": alert.id})
            return None

        current = ensure_utc(now) if now is not None else self.now()
        rescheduled = replace(alert, active_on=current + alert.reactivate_after)
        updated = self._store.update(rescheduled)
        logger.info(
            "Rescheduled alert %s until %s",
            alert.id,
            rescheduled.active_on.isoformat() if rescheduled.active_on else None,
            extra={"alert_id": alert.id},
        )
        return updated
