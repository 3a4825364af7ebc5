from __future__ import annotations

from ..models import AlertContext, GeofenceEvent, SurpriseAppearanceAlert
from .base import elapsed_since, require_presence


def evaluate_surprise_appearance(
    alert: SurpriseAppearanceAlert,
    event: GeofenceEvent,
    context: AlertContext,
) -> bool:
    presence = require_presence(alert, context)

    if event.beacon_id not in alert.beacons or event.profile_id not in alert.users:
        return False

    found, seen_at = presence.last_seen(event.profile_id, event.beacon_id)
    elapsed = elapsed_since(context.now, seen_at) if found else None
    if elapsed is None:
        # never seen at this beacon counts as an infinitely long absence
        return True
    return elapsed >= alert.min_last_seen_ago
