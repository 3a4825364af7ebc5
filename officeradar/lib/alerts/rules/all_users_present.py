from __future__ import annotations

from ..models import AlertContext, AllUsersPresentAlert, GeofenceEvent
from .base import elapsed_since, require_presence


def evaluate_all_users_present(
    alert: AllUsersPresentAlert,
    event: GeofenceEvent,
    context: AlertContext,
) -> bool:
    presence = require_presence(alert, context)

    if event.beacon_id not in alert.beacons or event.profile_id not in alert.users:
        return False

    # any unseen or stale user settles it; order only affects lookup count
    for user in sorted(alert.users):
        found, seen_at = presence.last_seen(user, event.beacon_id)
        elapsed = elapsed_since(context.now, seen_at) if found else None
        if elapsed is None or elapsed > alert.window:
            return False
    return True
