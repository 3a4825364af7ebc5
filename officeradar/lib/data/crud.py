from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import insert, select, update
from sqlalchemy.orm import Session

from .tables import presence


def _to_storage(value: datetime) -> datetime:
    # SQLite keeps naive datetimes; everything stored is UTC
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.replace(tzinfo=None)


def _from_storage(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc)


def get_presence(session: Session, profile_id: str, beacon_id: str) -> Optional[Dict[str, Any]]:
    result = session.execute(
        select(presence).where(
            presence.c.profile_id == profile_id,
            presence.c.beacon_id == beacon_id,
        )
    ).mappings().first()
    if result is None:
        return None
    row = dict(result)
    row["last_seen"] = _from_storage(row["last_seen"])
    return row


def upsert_presence(
    session: Session,
    *,
    profile_id: str,
    beacon_id: str,
    seen_at: datetime,
    action: Optional[str],
    event_id: Optional[str],
) -> bool:
    """
    Record a sighting. Returns False when an equal or newer sighting is
    already stored, in which case only the sighting counter moves.
    """
    existing = get_presence(session, profile_id, beacon_id)
    stored_at = _to_storage(seen_at)

    if existing is None:
        session.execute(
            insert(presence).values(
                profile_id=profile_id,
                beacon_id=beacon_id,
                last_seen=stored_at,
                last_action=action,
                event_id=event_id,
                sightings=1,
            )
        )
        return True

    values: Dict[str, Any] = {"sightings": int(existing.get("sightings") or 0) + 1}
    newer = existing["last_seen"] is None or _to_storage(existing["last_seen"]) < stored_at
    if newer:
        values.update(last_seen=stored_at, last_action=action, event_id=event_id)
    session.execute(
        update(presence)
        .where(
            presence.c.profile_id == profile_id,
            presence.c.beacon_id == beacon_id,
        )
        .values(**values)
    )
    return newer
