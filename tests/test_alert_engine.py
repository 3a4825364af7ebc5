from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from officeradar.lib.alerts import (
    ACTION_ENTRY,
    AlertAction,
    AlertConfigurationError,
    AlertContext,
    AlertEngine,
    AllUsersPresentAlert,
    AnyUsersPresentAlert,
    GeofenceEvent,
    SurpriseAppearanceAlert,
    evaluate,
)

from stubs import StubAlertStore, StubPresence


NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _event(profile: str = "foo", beacon: str = "b1", created_at: datetime | None = NOW) -> GeofenceEvent:
    return GeofenceEvent(
        id="event-1",
        action=ACTION_ENTRY,
        beacon_id=beacon,
        profile_id=profile,
        created_at=created_at,
    )


def _engine(presence=None, store=None) -> tuple[AlertEngine, StubAlertStore]:
    store = store or StubAlertStore()
    engine = AlertEngine(presence or StubPresence(), store, clock=lambda: NOW)
    return engine, store


@pytest.mark.parametrize(
    ("beacon", "profile", "expected"),
    [
        ("b1", "foo", True),
        ("b1", "stranger", False),
        ("b2", "foo", False),
        ("b2", "stranger", False),
    ],
)
def test_any_users_present_requires_beacon_and_user_match(beacon, profile, expected):
    alert = AnyUsersPresentAlert(id="a1", users=frozenset({"foo", "bar"}), beacon="b1")
    context = AlertContext(now=NOW)

    assert evaluate(alert, _event(profile, beacon), context) is expected


def test_any_users_present_fires_for_listed_user_only():
    engine, _ = _engine()
    alert = AnyUsersPresentAlert(
        id="a1",
        users=frozenset({"foo", "bar"}),
        beacon="b1",
        actions=(AlertAction(recipient="foo", message="yo"),),
    )

    assert engine.process(alert, _event("foo")) is True
    assert engine.process(alert, _event("unknown")) is False


def test_surprise_appearance_fires_when_never_seen():
    presence = StubPresence()
    alert = SurpriseAppearanceAlert(
        id="s1",
        users=frozenset({"foo"}),
        beacons=frozenset({"b1", "b2"}),
        min_last_seen_ago=timedelta(days=3650),
    )

    assert evaluate(alert, _event(), AlertContext(now=NOW, presence=presence)) is True
    assert presence.calls == [("foo", "b1")]


@pytest.mark.parametrize(
    ("seen_ago", "expected"),
    [
        (timedelta(0), False),
        (timedelta(days=14) - timedelta(seconds=1), False),
        (timedelta(days=14), True),
        (timedelta(days=21), True),
    ],
)
def test_surprise_appearance_threshold(seen_ago, expected):
    presence = StubPresence({("foo", "b1"): NOW - seen_ago})
    engine, _ = _engine(presence)
    alert = SurpriseAppearanceAlert(
        id="s1",
        users=frozenset({"foo", "bar"}),
        beacons=frozenset({"b1", "b2"}),
        min_last_seen_ago=timedelta(days=14),
    )

    assert engine.process(alert, _event("foo", "b1")) is expected


def test_surprise_appearance_ignores_other_beacons_and_users():
    presence = StubPresence()
    context = AlertContext(now=NOW, presence=presence)
    alert = SurpriseAppearanceAlert(
        id="s1",
        users=frozenset({"foo"}),
        beacons=frozenset({"b1"}),
        min_last_seen_ago=timedelta(days=14),
    )

    assert evaluate(alert, _event("foo", "elsewhere"), context) is False
    assert evaluate(alert, _event("stranger", "b1"), context) is False
    assert presence.calls == []


def test_all_users_present_requires_every_user_within_window():
    alert = AllUsersPresentAlert(
        id="w1",
        users=frozenset({"foo", "bar"}),
        beacons=frozenset({"b1"}),
        window=timedelta(hours=1),
    )

    stale = StubPresence({("foo", "b1"): NOW - timedelta(days=21), ("bar", "b1"): NOW})
    engine, _ = _engine(stale)
    assert engine.process(alert, _event("bar", "b1")) is False

    fresh = StubPresence({("foo", "b1"): NOW - timedelta(minutes=2), ("bar", "b1"): NOW})
    engine, _ = _engine(fresh)
    assert engine.process(alert, _event("bar", "b1")) is True


def test_all_users_present_window_boundary_is_inclusive():
    alert = AllUsersPresentAlert(
        id="w1",
        users=frozenset({"foo", "bar"}),
        beacons=frozenset({"b1"}),
        window=timedelta(hours=1),
    )
    presence = StubPresence({("foo", "b1"): NOW - timedelta(hours=1), ("bar", "b1"): NOW})

    assert evaluate(alert, _event("bar"), AlertContext(now=NOW, presence=presence)) is True

    presence.sightings[("foo", "b1")] = NOW - timedelta(hours=1, seconds=1)
    assert evaluate(alert, _event("bar"), AlertContext(now=NOW, presence=presence)) is False


def test_all_users_present_unseen_user_never_fires():
    alert = AllUsersPresentAlert(
        id="w1",
        users=frozenset({"foo", "bar"}),
        beacons=frozenset({"b1"}),
        window=timedelta(hours=1),
    )
    presence = StubPresence({("bar", "b1"): NOW})

    assert evaluate(alert, _event("bar"), AlertContext(now=NOW, presence=presence)) is False


def test_all_users_present_checks_triggering_profile_through_presence():
    alert = AllUsersPresentAlert(
        id="w1",
        users=frozenset({"foo", "bar"}),
        beacons=frozenset({"b1"}),
        window=timedelta(hours=1),
    )
    # foo triggers the event but history has not recorded it yet
    presence = StubPresence({("bar", "b1"): NOW - timedelta(minutes=5)})

    assert evaluate(alert, _event("foo"), AlertContext(now=NOW, presence=presence)) is False

    engine, _ = _engine(presence)
    assert engine.process(alert, _event("foo")) is True


def test_engine_can_skip_triggering_event_overlay():
    alert = AllUsersPresentAlert(
        id="w1",
        users=frozenset({"foo", "bar"}),
        beacons=frozenset({"b1"}),
        window=timedelta(hours=1),
    )
    presence = StubPresence({("bar", "b1"): NOW})
    engine = AlertEngine(presence, StubAlertStore(), clock=lambda: NOW, include_triggering_event=False)

    assert engine.process(alert, _event("foo")) is False


def test_process_is_repeatable_without_side_effects():
    presence = StubPresence({("foo", "b1"): NOW - timedelta(days=1)})
    engine, store = _engine(presence)
    alert = SurpriseAppearanceAlert(
        id="s1",
        users=frozenset({"foo"}),
        beacons=frozenset({"b1"}),
        min_last_seen_ago=timedelta(days=14),
    )
    snapshot = dict(presence.sightings)

    results = [engine.process(alert, _event()) for _ in range(3)]

    assert results == [False, False, False]
    assert presence.sightings == snapshot
    assert store.updated == [] and store.deleted == []


@pytest.mark.parametrize(
    "alert",
    [
        SurpriseAppearanceAlert(id="s1", users=frozenset({"foo"}), beacons=frozenset({"b1"})),
        AllUsersPresentAlert(id="w1", users=frozenset({"foo"}), beacons=frozenset({"b1"})),
    ],
)
def test_presence_rules_fail_loudly_without_resolver(alert):
    with pytest.raises(AlertConfigurationError):
        evaluate(alert, _event(), AlertContext(now=NOW))
    # even when the event would not match
    with pytest.raises(AlertConfigurationError):
        evaluate(alert, _event("stranger", "nowhere"), AlertContext(now=NOW))


def test_engine_requires_presence_resolver():
    with pytest.raises(AlertConfigurationError):
        AlertEngine(None, StubAlertStore())


def test_perform_actions_invokes_in_order():
    engine, _ = _engine()
    alert = AnyUsersPresentAlert(
        id="a1",
        users=frozenset({"foo"}),
        beacon="b1",
        actions=(
            AlertAction(recipient="foo", message="first"),
            AlertAction(recipient="bar", message="second"),
        ),
    )
    invoked = []

    engine.perform_actions(alert, invoked.append)

    assert [action.message for action in invoked] == ["first", "second"]


def test_perform_actions_stops_at_first_failure():
    engine, _ = _engine()
    alert = AnyUsersPresentAlert(
        id="a1",
        users=frozenset({"foo"}),
        beacon="b1",
        actions=(
            AlertAction(recipient="foo", message="one"),
            AlertAction(recipient="bad", message="two"),
            AlertAction(recipient="bar", message="three"),
        ),
    )
    invoked = []

    def invoke(action):
        if action.recipient == "bad":
            raise RuntimeError("gateway down")
        invoked.append(action.recipient)

    with pytest.raises(RuntimeError, match="gateway down"):
        engine.perform_actions(alert, invoke)
    assert invoked == ["foo"]

    invoked.clear()
    with pytest.raises(RuntimeError, match="gateway down"):
        engine.perform_actions(alert, invoke, fail_fast=False)
    assert invoked == ["foo", "bar"]


def test_sticky_alert_is_rescheduled_not_deleted():
    engine, store = _engine()
    alert = AnyUsersPresentAlert(
        id="a1",
        revision="3-abc",
        users=frozenset({"foo"}),
        beacon="b1",
        sticky=True,
        reactivate_after=timedelta(seconds=30),
    )

    updated = engine.reschedule_or_delete(alert)

    assert store.deleted == []
    assert len(store.updated) == 1
    written = store.updated[0]
    assert written.active_on == NOW + timedelta(seconds=30)
    assert written.revision == "3-abc"
    assert updated is not None and updated.revision == "3-abc-next"
    assert alert.active_on is None


def test_non_sticky_alert_is_deleted_not_updated():
    engine, store = _engine()
    alert = AnyUsersPresentAlert(id="a1", revision="1-x", users=frozenset({"foo"}), beacon="b1")

    assert engine.reschedule_or_delete(alert) is None
    assert store.updated == []
    assert store.deleted == [alert]


def test_reschedule_propagates_store_errors():
    class Conflict(Exception):
        pass

    engine, _ = _engine(store=StubAlertStore(fail_update=Conflict("stale revision")))
    alert = AnyUsersPresentAlert(id="a1", users=frozenset({"foo"}), beacon="b1", sticky=True)

    with pytest.raises(Conflict):
        engine.reschedule_or_delete(alert)


def test_action_past_tense():
    assert _event().action_past_tense() == "entered"
    exited = GeofenceEvent(id="e", action="exit", beacon_id="b1", profile_id="foo")
    assert exited.action_past_tense() == "exited"
    odd = GeofenceEvent(id="e", action="lingered", beacon_id="b1", profile_id="foo")
    assert odd.action_past_tense() == "error"
