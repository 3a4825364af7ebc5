from __future__ import annotations

from ..models import AlertContext, AnyUsersPresentAlert, GeofenceEvent


def evaluate_any_users_present(
    alert: AnyUsersPresentAlert,
    event: GeofenceEvent,
    context: AlertContext,
) -> bool:
    # exact beacon id match, there is no wildcard beacon
    if event.beacon_id != alert.beacon:
        return False
    return event.profile_id in alert.users
