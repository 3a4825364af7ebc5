from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional, Protocol

from .alerts import Alert, AlertAction, AlertConfigurationError, AlertEngine, GeofenceEvent
from .store import DocumentStore, fetch_beacon, fetch_profile


logger = logging.getLogger("officeradar.dispatcher")


class ActiveAlertSource(Protocol):
    def list_active_alerts(self, now: datetime) -> List[Alert]:
        ...


class ActionDelivery(Protocol):
    def deliver(self, action: AlertAction) -> None:
        ...


class PresenceRecorder(Protocol):
    def record(self, event: GeofenceEvent, *, now: Optional[datetime] = None) -> bool:
        ...


@dataclass
class DispatchReport:
    """What happened to each alert while dispatching one event."""

    event_id: str
    evaluated: List[str] = field(default_factory=list)
    fired: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    action_failures: List[str] = field(default_factory=list)
    rescheduled: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    lifecycle_failures: List[str] = field(default_factory=list)
    alerts_loaded: bool = True
    presence_recorded: bool = False


def describe_event(client: DocumentStore, event: GeofenceEvent) -> str:
    """Render ``event`` as "<name> entered <location>", falling back to ids."""
    name = event.profile_id
    location = event.beacon_id
    try:
        name = fetch_profile(client, event.profile_id).name or name
    except Exception as exc:  # noqa: BLE001 - description is best effort
        logger.warning("Error loading profile for event %s: %s", event.id, exc)
    try:
        location = fetch_beacon(client, event.beacon_id).location or location
    except Exception as exc:  # noqa: BLE001 - description is best effort
        logger.warning("Error loading beacon for event %s: %s", event.id, exc)
    return f"{name} {event.action_past_tense()} {location}"


class EventDispatcher:
    """
    Feeds one geofence event to every active alert.

    Each alert is handled on its own: an evaluation, delivery or lifecycle
    failure is logged and the next alert still runs. The only exception is
    ``AlertConfigurationError``, which propagates.
    """

    def __init__(
        self,
        store: ActiveAlertSource,
        engine: AlertEngine,
        notifier: ActionDelivery,
        *,
        history: Optional[PresenceRecorder] = None,
        fail_fast_actions: bool = True,
        describe: Optional[Callable[[GeofenceEvent], str]] = None,
    ) -> None:
        self._store = store
        self._engine = engine
        self._notifier = notifier
        self._history = history
        self._fail_fast_actions = fail_fast_actions
        self._describe = describe

    def dispatch(self, event: GeofenceEvent, now: Optional[datetime] = None) -> DispatchReport:
        current = now or self._engine.now()
        report = DispatchReport(event_id=event.id)

        if self._describe is not None:
            logger.info("Geofence event %s: %s", event.id, self._describe(event))

        try:
            alerts = self._store.list_active_alerts(current)
        except Exception:  # noqa: BLE001 - abandon this event, keep following
            logger.exception("Failed to find active alerts", extra={"event_id": event.id})
            report.alerts_loaded = False
            alerts = []

        for alert in alerts:
            self._dispatch_one(alert, event, current, report)

        if self._history is not None:
            try:
                self._history.record(event, now=current)
                report.presence_recorded = True
            except Exception:  # noqa: BLE001
                logger.exception("Failed to record presence", extra={"event_id": event.id})

        logger.info(
            "Dispatched event %s: %s alerts, %s fired, %s failed",
            event.id,
            len(report.evaluated),
            len(report.fired),
            len(report.failed),
        )
        return report

    def _dispatch_one(
        self,
        alert: Alert,
        event: GeofenceEvent,
        now: datetime,
        report: DispatchReport,
    ) -> None:
        report.evaluated.append(alert.id)
        try:
            should_fire = self._engine.process(alert, event, now)
        except AlertConfigurationError:
            raise
        except Exception:  # noqa: BLE001 - one alert must not block the others
            logger.exception(
                "Alert failed to process event",
                extra={"alert_id": alert.id, "event_id": event.id},
            )
            report.failed.append(alert.id)
            return

        logger.debug("alert.process", extra={"alert_id": alert.id, "should_fire": should_fire})
        if not should_fire:
            return
        report.fired.append(alert.id)

        try:
            self._engine.perform_actions(alert, self._notifier.deliver, fail_fast=self._fail_fast_actions)
        except Exception:  # noqa: BLE001 - lifecycle still applies
            logger.exception(
                "Alert failed to perform actions",
                extra={"alert_id": alert.id, "event_id": event.id},
            )
            report.action_failures.append(alert.id)

        try:
            updated = self._engine.reschedule_or_delete(alert, now)
        except Exception:  # noqa: BLE001 - left as stored, picked up on a later event
            logger.exception(
                "Unable to reschedule or delete alert",
                extra={"alert_id": alert.id, "revision": alert.revision},
            )
            report.lifecycle_failures.append(alert.id)
            return
        if updated is None:
            report.deleted.append(alert.id)
        else:
            report.rescheduled.append(alert.id)
