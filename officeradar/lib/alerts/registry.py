from __future__ import annotations

import copy
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, FrozenSet, Optional, Tuple

from pydantic import TypeAdapter

from .models import (
    Alert,
    AlertAction,
    AlertContext,
    AlertDocumentError,
    AllUsersPresentAlert,
    AnyUsersPresentAlert,
    GeofenceEvent,
    SurpriseAppearanceAlert,
    ensure_utc,
)
from .rules.all_users_present import evaluate_all_users_present
from .rules.any_users_present import evaluate_any_users_present
from .rules.base import AlertRule
from .rules.surprise_appearance import evaluate_surprise_appearance


_SECONDS_PER_UNIT = {
    "second": 1,
    "sec": 1,
    "minute": 60,
    "min": 60,
    "hour": 3600,
    "day": 86400,
    "week": 7 * 86400,
    "month": 30 * 86400,
    "year": 365 * 86400,
}


_TIMESTAMP = TypeAdapter(datetime)


@dataclass(frozen=True)
class AlertVariant:
    tag: str
    alert_cls: type
    rule: AlertRule
    decode_fields: Callable[[Dict[str, Any]], Dict[str, Any]]
    encode_fields: Callable[[Any], Dict[str, Any]]


def parse_duration(raw: Any) -> timedelta:
    """Durations are stored as seconds; ``"14 days"`` style strings are accepted too."""
    # seconds, not the nanosecond counts of Go time.Duration
    if isinstance(raw, timedelta):
        return raw
    if isinstance(raw, bool):
        raise ValueError(f"Invalid duration: {raw!r}")
    if isinstance(raw, (int, float)):
        if raw < 0:
            raise ValueError(f"Duration must not be negative: {raw!r}")
        return timedelta(seconds=raw)
    if isinstance(raw, str):
        parts = raw.strip().split()
        if len(parts) == 1:
            return parse_duration(float(parts[0]))
        if len(parts) != 2:
            raise ValueError(f"Invalid duration: {raw!r}")
        value, unit = parts
        amount = float(value)
        unit = unit.lower()
        for prefix, seconds in _SECONDS_PER_UNIT.items():
            if unit.startswith(prefix):
                return parse_duration(amount * seconds)
        raise ValueError(f"Unsupported duration unit: {unit}")
    raise ValueError(f"Invalid duration: {raw!r}")


def parse_timestamp(raw: Any) -> Optional[datetime]:
    if raw in (None, ""):
        return None
    if not isinstance(raw, (datetime, str)):
        raise ValueError(f"Invalid timestamp: {raw!r}")
    # same parser pydantic applies to event documents, including nanosecond fractions
    value = ensure_utc(_TIMESTAMP.validate_python(raw.strip() if isinstance(raw, str) else raw))
    # zero-valued timestamps written by older clients mean "unset"
    if value.year <= 1:
        return None
    return value


def format_timestamp(value: datetime) -> str:
    return ensure_utc(value).isoformat(timespec="seconds").replace("+00:00", "Z")


def _doc_id(entry: Any) -> str:
    # ids may be embedded as whole documents rather than plain strings
    if isinstance(entry, dict):
        entry = entry.get("_id") or entry.get("id")
    if not isinstance(entry, str) or not entry:
        raise ValueError(f"Invalid document reference: {entry!r}")
    return entry


def _id_set(raw: Any, field: str) -> FrozenSet[str]:
    if raw is None:
        return frozenset()
    if not isinstance(raw, (list, tuple)):
        raise ValueError(f"'{field}' must be a list")
    return frozenset(_doc_id(entry) for entry in raw)


def _actions(raw: Any) -> Tuple[AlertAction, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, list):
        raise ValueError("'actions' must be a list")
    actions = []
    for entry in raw:
        if not isinstance(entry, dict):
            raise ValueError(f"Invalid action: {entry!r}")
        recipient = entry.get("recipient")
        message = entry.get("message")
        if recipient is None or message is None:
            raise ValueError(f"Action missing recipient or message: {entry!r}")
        actions.append(AlertAction(recipient=_doc_id(recipient), message=str(message)))
    return tuple(actions)


def _base_fields(doc: Dict[str, Any]) -> Dict[str, Any]:
    alert_id = doc.get("_id")
    if not isinstance(alert_id, str) or not alert_id:
        raise ValueError("Alert document missing '_id'")
    sticky = doc.get("sticky", False)
    if not isinstance(sticky, bool):
        raise ValueError("'sticky' must be a boolean")
    return {
        "id": alert_id,
        "revision": doc.get("_rev"),
        "actions": _actions(doc.get("actions")),
        "sticky": sticky,
        "reactivate_after": parse_duration(doc.get("reactivateAfter") or 0),
        "active_on": parse_timestamp(doc.get("activeOn")),
    }


def _decode_any_users(doc: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "users": _id_set(doc.get("users"), "users"),
        "beacon": _doc_id(doc.get("beacon")),
    }


def _encode_any_users(alert: AnyUsersPresentAlert) -> Dict[str, Any]:
    return {"users": sorted(alert.users), "beacon": alert.beacon}


def _decode_surprise(doc: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "users": _id_set(doc.get("users"), "users"),
        "beacons": _id_set(doc.get("beacons"), "beacons"),
        "min_last_seen_ago": parse_duration(doc.get("minLastSeenAgo") or 0),
    }


def _encode_surprise(alert: SurpriseAppearanceAlert) -> Dict[str, Any]:
    return {
        "users": sorted(alert.users),
        "beacons": sorted(alert.beacons),
        "minLastSeenAgo": alert.min_last_seen_ago.total_seconds(),
    }


def _decode_all_users(doc: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "users": _id_set(doc.get("users"), "users"),
        "beacons": _id_set(doc.get("beacons"), "beacons"),
        "window": parse_duration(doc.get("window") or 0),
    }


def _encode_all_users(alert: AllUsersPresentAlert) -> Dict[str, Any]:
    return {
        "users": sorted(alert.users),
        "beacons": sorted(alert.beacons),
        "window": alert.window.total_seconds(),
    }


VARIANTS: Dict[str, AlertVariant] = {
    variant.tag: variant
    for variant in (
        AlertVariant(
            AnyUsersPresentAlert.tag,
            AnyUsersPresentAlert,
            evaluate_any_users_present,
            _decode_any_users,
            _encode_any_users,
        ),
        AlertVariant(
            SurpriseAppearanceAlert.tag,
            SurpriseAppearanceAlert,
            evaluate_surprise_appearance,
            _decode_surprise,
            _encode_surprise,
        ),
        AlertVariant(
            AllUsersPresentAlert.tag,
            AllUsersPresentAlert,
            evaluate_all_users_present,
            _decode_all_users,
            _encode_all_users,
        ),
    )
}

ALERT_TYPES: FrozenSet[str] = frozenset(VARIANTS)


def _variant_for(alert: Alert) -> AlertVariant:
    variant = VARIANTS.get(getattr(alert, "tag", None))  # type: ignore[arg-type]
    if variant is None or not isinstance(alert, variant.alert_cls):
        raise TypeError(f"Not an alert variant: {type(alert).__name__}")
    return variant


def evaluate(alert: Alert, event: GeofenceEvent, context: AlertContext) -> bool:
    """Run the rule belonging to ``alert``'s variant against ``event``."""
    return _variant_for(alert).rule(alert, event, context)


def alert_from_document(doc: Dict[str, Any]) -> Alert:
    if not isinstance(doc, dict):
        raise AlertDocumentError(f"Alert document must be an object, got {type(doc).__name__}")
    tag = doc.get("type")
    variant = VARIANTS.get(tag)  # type: ignore[arg-type]
    if variant is None:
        raise AlertDocumentError(f"Unknown alert type {tag!r} for document {doc.get('_id')!r}")
    try:
        fields = _base_fields(doc)
        fields.update(variant.decode_fields(doc))
    except (TypeError, ValueError) as exc:
        raise AlertDocumentError(f"Malformed {tag} document {doc.get('_id')!r}: {exc}") from exc
    return variant.alert_cls(document=copy.deepcopy(doc), **fields)


def alert_to_document(alert: Alert) -> Dict[str, Any]:
    """
    Encode ``alert`` in its persisted layout.

    An alert loaded from the store is written back as the document it came
    from with only ``activeOn`` and ``_rev`` taken from the alert, so fields
    the alert does not model survive a lifecycle rewrite.
    """
    variant = _variant_for(alert)
    if alert.document is not None:
        stored = copy.deepcopy(alert.document)
        stored["activeOn"] = format_timestamp(alert.active_on) if alert.active_on else None
        if alert.revision:
            stored["_rev"] = alert.revision
        else:
            stored.pop("_rev", None)
        return stored
    document: Dict[str, Any] = {
        "_id": alert.id,
        "type": variant.tag,
        "actions": [
            {"recipient": action.recipient, "message": action.message}
            for action in alert.actions
        ],
        "sticky": alert.sticky,
        "reactivateAfter": alert.reactivate_after.total_seconds(),
        "activeOn": format_timestamp(alert.active_on) if alert.active_on else None,
    }
    if alert.revision:
        document["_rev"] = alert.revision
    document.update(variant.encode_fields(alert))
    return document
