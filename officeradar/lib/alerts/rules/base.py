from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, Optional

from ..models import (
    Alert,
    AlertConfigurationError,
    AlertContext,
    GeofenceEvent,
    PresenceResolver,
    ensure_utc,
)


AlertRule = Callable[[Alert, GeofenceEvent, AlertContext], bool]


def require_presence(alert: Alert, context: AlertContext) -> PresenceResolver:
    if context.presence is None:
        raise AlertConfigurationError(
            f"{alert.tag} '{alert.id}' needs a presence resolver but none is configured"
        )
    return context.presence


def elapsed_since(now: datetime, seen_at: Optional[datetime]) -> Optional[timedelta]:
    """Time since ``seen_at``; ``None`` stands for never seen."""
    if seen_at is None:
        return None
    return ensure_utc(now) - ensure_utc(seen_at)
