"""Alerts package exposing the rule engine, alert variants and document codec."""

from .engine import AlertEngine
from .models import (
    ACTION_ENTRY,
    ACTION_EXIT,
    Alert,
    AlertAction,
    AlertConfigurationError,
    AlertContext,
    AlertDocumentError,
    AllUsersPresentAlert,
    AnyUsersPresentAlert,
    EventPresence,
    GeofenceEvent,
    PresenceResolver,
    SurpriseAppearanceAlert,
)
from .registry import ALERT_TYPES, alert_from_document, alert_to_document, evaluate

__all__ = [
    "ACTION_ENTRY",
    "ACTION_EXIT",
    "ALERT_TYPES",
    "Alert",
    "AlertAction",
    "AlertConfigurationError",
    "AlertContext",
    "AlertDocumentError",
    "AlertEngine",
    "AllUsersPresentAlert",
    "AnyUsersPresentAlert",
    "EventPresence",
    "GeofenceEvent",
    "PresenceResolver",
    "SurpriseAppearanceAlert",
    "alert_from_document",
    "alert_to_document",
    "evaluate",
]
