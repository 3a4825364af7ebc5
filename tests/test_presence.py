from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from sqlalchemy import select

from officeradar.lib.alerts import GeofenceEvent
from officeradar.lib.config import DatabaseConfig
from officeradar.lib.data import db as db_module
from officeradar.lib.data.db import get_session, initialize_database
from officeradar.lib.data.tables import presence
from officeradar.lib.presence import PresenceHistory, PresenceUnavailableError


NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
def temp_database(tmp_path):
    db_file = Path(tmp_path) / "presence.db"
    config = DatabaseConfig(engine="sqlite", name=db_file.name, path=db_file.parent)

    db_module._ENGINE = None
    db_module._SESSION_FACTORY = None

    initialize_database(config)
    try:
        yield config
    finally:
        db_module.dispose_database()


def _event(event_id: str, created_at: datetime, *, profile: str = "foo", beacon: str = "b1") -> GeofenceEvent:
    return GeofenceEvent(
        id=event_id,
        action="entry",
        beacon_id=beacon,
        profile_id=profile,
        created_at=created_at,
    )


def test_unknown_profile_was_never_seen(temp_database):
    history = PresenceHistory()

    assert history.last_seen("foo", "b1") == (False, None)


def test_record_then_last_seen(temp_database):
    history = PresenceHistory()
    seen_at = NOW - timedelta(minutes=2)

    assert history.record(_event("e1", seen_at)) is True

    assert history.last_seen("foo", "b1") == (True, seen_at)
    assert history.last_seen("foo", "b2") == (False, None)
    assert history.last_seen("bar", "b1") == (False, None)


def test_older_sighting_does_not_move_last_seen_back(temp_database):
    history = PresenceHistory()
    history.record(_event("e2", NOW))

    assert history.record(_event("e1", NOW - timedelta(days=1))) is False

    assert history.last_seen("foo", "b1") == (True, NOW)
    session = get_session()
    try:
        row = session.execute(select(presence)).mappings().one()
    finally:
        session.close()
    assert row["sightings"] == 2
    assert row["event_id"] == "e2"


def test_event_without_timestamp_uses_now(temp_database):
    history = PresenceHistory()
    event = GeofenceEvent(id="e1", action="exit", beacon_id="b1", profile_id="foo")

    history.record(event, now=NOW)

    assert history.last_seen("foo", "b1") == (True, NOW)


def test_uninitialized_database_surfaces_as_presence_error():
    class BrokenSession:
        def execute(self, *_args, **_kwargs):
            from sqlalchemy.exc import OperationalError

            raise OperationalError("SELECT", {}, Exception("database is locked"))

        def close(self):
            pass

    history = PresenceHistory(session_factory=BrokenSession)

    with pytest.raises(PresenceUnavailableError):
        history.last_seen("foo", "b1")


def test_schema_steps_apply_once(temp_database):
    engine = initialize_database(temp_database)

    assert db_module.run_migrations(engine) == 0
