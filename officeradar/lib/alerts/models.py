from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, ClassVar, Dict, FrozenSet, Optional, Protocol, Tuple, Union


ACTION_ENTRY = "entry"
ACTION_EXIT = "exit"

_PAST_TENSE = {
    ACTION_ENTRY: "entered",
    ACTION_EXIT: "exited",
}


class AlertConfigurationError(RuntimeError):
    """Raised when an alert is evaluated without a collaborator its rule depends on.

    This is a wiring mistake rather than a data problem, so callers must let it
    propagate instead of logging it and moving on.
    """


class AlertDocumentError(ValueError):
    """Raised when a persisted alert document cannot be decoded."""


class PresenceResolver(Protocol):
    def last_seen(self, profile_id: str, beacon_id: str) -> Tuple[bool, Optional[datetime]]:
        ...


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True, slots=True)
class GeofenceEvent:
    """A profile entering or leaving the range of a beacon."""

    id: str
    action: str
    beacon_id: str
    profile_id: str
    created_at: Optional[datetime] = None
    revision: Optional[str] = None

    def action_past_tense(self) -> str:
        return _PAST_TENSE.get(self.action, "error")


@dataclass(frozen=True, slots=True)
class AlertAction:
    recipient: str
    message: str


@dataclass(frozen=True, slots=True, kw_only=True)
class BaseAlert:
    """Fields shared by every alert variant.

    ``revision`` is the store's optimistic-concurrency token and must be sent
    back unchanged with every lifecycle write. ``document`` is the stored
    document the alert was decoded from, kept so rewrites preserve fields the
    alert does not model (Sync Gateway ``channels``, owners, embedded users).
    """

    tag: ClassVar[str] = ""

    id: str
    revision: Optional[str] = None
    actions: Tuple[AlertAction, ...] = ()
    sticky: bool = False
    reactivate_after: timedelta = timedelta(0)
    active_on: Optional[datetime] = None
    document: Optional[Dict[str, Any]] = field(default=None, compare=False, repr=False)


@dataclass(frozen=True, slots=True, kw_only=True)
class AnyUsersPresentAlert(BaseAlert):
    """Fires when any listed user comes into range of one specific beacon."""

    tag: ClassVar[str] = "any_users_present_alert"

    users: FrozenSet[str] = frozenset()
    beacon: str = ""


@dataclass(frozen=True, slots=True, kw_only=True)
class SurpriseAppearanceAlert(BaseAlert):
    """Fires when a listed user shows up at a listed beacon after a long absence."""

    tag: ClassVar[str] = "surprise_appearance_alert"

    users: FrozenSet[str] = frozenset()
    beacons: FrozenSet[str] = frozenset()
    min_last_seen_ago: timedelta = timedelta(0)


@dataclass(frozen=True, slots=True, kw_only=True)
class AllUsersPresentAlert(BaseAlert):
    """Fires when every listed user has been at the same beacon within ``window``."""

    tag: ClassVar[str] = "all_users_present_alert"

    users: FrozenSet[str] = frozenset()
    beacons: FrozenSet[str] = frozenset()
    window: timedelta = timedelta(0)


Alert = Union[AnyUsersPresentAlert, SurpriseAppearanceAlert, AllUsersPresentAlert]


class EventPresence:
    """Presence view in which ``event`` is already recorded.

    The event's own profile is reported at the event's beacon no earlier than
    the event's timestamp; every other lookup goes to ``history``.
    """

    def __init__(self, history: PresenceResolver, event: GeofenceEvent, *, now: datetime) -> None:
        self._history = history
        self._event = event
        self._seen_at = ensure_utc(event.created_at or now)

    def last_seen(self, profile_id: str, beacon_id: str) -> Tuple[bool, Optional[datetime]]:
        found, seen_at = self._history.last_seen(profile_id, beacon_id)
        if profile_id != self._event.profile_id or beacon_id != self._event.beacon_id:
            return found, seen_at
        if not found or seen_at is None:
            return True, self._seen_at
        return True, max(ensure_utc(seen_at), self._seen_at)


@dataclass(slots=True)
class AlertContext:
    """Contextual data available to rules when evaluating an event."""

    now: datetime
    presence: Optional[PresenceResolver] = None
