from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .alerts import GeofenceEvent
from .data import crud
from .data.db import get_session


logger = logging.getLogger("officeradar.presence")


class PresenceUnavailableError(RuntimeError):
    """Raised when presence history cannot be read or written."""


class PresenceHistory:
    """
    Last sighting of every profile at every beacon, backed by SQLAlchemy.

    ``last_seen`` answers for sightings recorded so far; the dispatcher
    records an event only after every alert has been evaluated against it.
    """

    def __init__(self, session_factory: Callable[[], Session] = get_session) -> None:
        self._session_factory = session_factory

    def last_seen(self, profile_id: str, beacon_id: str) -> Tuple[bool, Optional[datetime]]:
        session = self._session_factory()
        try:
            row = crud.get_presence(session, profile_id, beacon_id)
        except SQLAlchemyError as exc:
            raise PresenceUnavailableError(
                f"Failed to read presence for profile={profile_id} beacon={beacon_id}: {exc}"
            ) from exc
        finally:
            session.close()
        if row is None:
            return False, None
        return True, row["last_seen"]

    def record(self, event: GeofenceEvent, *, now: Optional[datetime] = None) -> bool:
        """Store ``event`` as a sighting; returns True when it became the latest one."""
        seen_at = event.created_at or now or datetime.now(timezone.utc)
        session = self._session_factory()
        try:
            newer = crud.upsert_presence(
                session,
                profile_id=event.profile_id,
                beacon_id=event.beacon_id,
                seen_at=seen_at,
                action=event.action,
                event_id=event.id,
            )
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise PresenceUnavailableError(
                f"Failed to record presence for event {event.id}: {exc}"
            ) from exc
        finally:
            session.close()
        logger.debug(
            "presence.recorded",
            extra={
                "event_id": event.id,
                "profile_id": event.profile_id,
                "beacon_id": event.beacon_id,
                "newer": newer,
            },
        )
        return newer
