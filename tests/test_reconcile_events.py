"""
Tests for event reconciliation
"""
import re
from dataclasses import replace
from datetime import date, datetime, timezone

import pandas as pd

from adherence_sync.core.config import (
    BATTERY_HEALTH_DATA_ELEMENT,
    DEVICE_HEALTH_DATA_ELEMENT,
    DEVICE_SIGNAL_DATA_ELEMENT,
    DOSAGE_TIME_DATA_ELEMENT,
)
from adherence_sync.models.domain import AdherenceMapping, DeviceStatus, TrackedEntity
from adherence_sync.services.assignment import enrollment_signal_event
from adherence_sync.transforms.reconcile_events import (
    expand_adherence,
    generate_uid,
    reconcile_entity,
    reconcile_events,
    signal_value,
    trailing_signal_run,
    utc_now,
    within_window,
)

from conftest import EPISODE_ATTRIBUTE


def _values(event):
    return {dv["dataElement"]: dv["value"] for dv in event["dataValues"]}


def test_expand_anchors_first_code_at_start_date(episode):
    """Codes are read oldest first, one day each from the episode start"""
    mappings = expand_adherence(replace(episode, adherence_string="12091", episode_start_date="2024-01-01"))

    assert [m.date.date() for m in mappings] == [date(2024, 1, d) for d in range(1, 6)]
    assert [m.code for m in mappings] == ["1", "2", "0", "9", "1"]


def test_expand_without_start_date_is_empty(episode):
    assert expand_adherence(replace(episode, episode_start_date=None)) == []


def test_window_bounds_are_inclusive():
    mappings = [AdherenceMapping(pd.Timestamp(2024, 1, d), "1") for d in range(1, 6)]
    kept = within_window(mappings, "2024-01-02", "2024-01-04")
    assert [m.date.day for m in kept] == [2, 3, 4]


def test_window_end_defaults_to_now():
    mappings = [AdherenceMapping(pd.Timestamp(2024, 1, d), "1") for d in range(1, 6)]
    kept = within_window(mappings, now=pd.Timestamp("2024-01-03 12:00"))
    assert [m.date.day for m in kept] == [1, 2, 3]


def test_trailing_run_stops_at_first_silent_day():
    mappings = [AdherenceMapping(pd.Timestamp(2024, 1, d), c) for d, c in zip(range(1, 5), "1029")]
    run = trailing_signal_run(mappings)
    assert [m.code for m in run] == ["2", "9"]
    assert run[0].date < run[1].date


def test_generate_uid_shape():
    for _ in range(50):
        assert re.fullmatch(r"[A-Za-z][A-Za-z0-9]{10}", generate_uid())


def test_fresh_episode_emits_latest_signal(entity, episode, mapping, fresh_now):
    """`1,1,0,2` last seen on day four gives one Multiple event on that day"""
    events = reconcile_entity(entity, episode, mapping.program_stage, now=fresh_now)

    assert len(events) == 1
    event = events[0]
    values = _values(event)
    assert values[DEVICE_SIGNAL_DATA_ELEMENT] == "Multiple"
    assert values[DOSAGE_TIME_DATA_ELEMENT] == "2024-03-04T10:00:00"
    assert values[BATTERY_HEALTH_DATA_ELEMENT] == 0.85
    assert values[DEVICE_HEALTH_DATA_ELEMENT] == "Device Linked to Episode"
    assert event["occurredAt"] == "2024-03-04T10:00:00"
    assert event["status"] == "COMPLETED"
    assert event["trackedEntity"] == "TeiPatient1"
    assert event["enrollment"] == "EnrPatient1"
    assert event["programStage"] == mapping.program_stage
    assert re.fullmatch(r"[A-Za-z][A-Za-z0-9]{10}", event["event"])


def test_stale_episode_emits_nothing(entity, episode, mapping):
    events = reconcile_entity(entity, episode, mapping.program_stage, now=pd.Timestamp("2024-03-06 09:00:00"))
    assert events == []


def test_latest_day_without_signal_emits_nothing(entity, episode, mapping, fresh_now):
    events = reconcile_entity(entity, replace(episode, adherence_string="1,1,2,0"), mapping.program_stage, now=fresh_now)
    assert events == []


def test_optional_values_left_out_when_unknown(entity, episode, mapping, fresh_now):
    quiet = replace(episode, battery_level=0.0, device_status=DeviceStatus.UNKNOWN)
    values = _values(reconcile_entity(entity, quiet, mapping.program_stage, now=fresh_now)[0])
    assert BATTERY_HEALTH_DATA_ELEMENT not in values
    assert DEVICE_HEALTH_DATA_ELEMENT not in values


def test_second_pass_over_stored_events_is_empty(entity, episode, mapping, fresh_now):
    """Reconciling against the events just produced sends nothing new"""
    first = reconcile_entity(entity, episode, mapping.program_stage, now=fresh_now)
    stored = replace(entity, events=first)
    assert reconcile_entity(stored, episode, mapping.program_stage, now=fresh_now) == []


def test_changed_signal_updates_existing_event(entity, episode, mapping, fresh_now):
    existing = {
        "event": "EvtStored01",
        "programStage": mapping.program_stage,
        "occurredAt": "2024-03-04T07:30:00.000",
        "status": "COMPLETED",
        "dataValues": [
            {"dataElement": DOSAGE_TIME_DATA_ELEMENT, "value": "2024-03-04T07:30:00"},
            {"dataElement": DEVICE_SIGNAL_DATA_ELEMENT, "value": "Once"},
            {"dataElement": BATTERY_HEALTH_DATA_ELEMENT, "value": "0.5"},
            {"dataElement": "CustomDe001", "value": "kept"},
        ],
    }
    events = reconcile_entity(replace(entity, events=[existing]), episode, mapping.program_stage, now=fresh_now)

    assert len(events) == 1
    updated = events[0]
    assert updated["event"] == "EvtStored01"
    assert updated["occurredAt"] == "2024-03-04T07:30:00.000"
    assert signal_value(updated["dataValues"]) == "Multiple"
    others = [dv for dv in updated["dataValues"] if dv["dataElement"] != DEVICE_SIGNAL_DATA_ELEMENT]
    expected = [dv for dv in existing["dataValues"] if dv["dataElement"] != DEVICE_SIGNAL_DATA_ELEMENT]
    assert others == expected


def test_window_backfills_every_day_in_range(entity, episode, mapping):
    backfill = replace(episode, adherence_string="1,0,2,9,1", episode_start_date="2024-01-01")
    events = reconcile_entity(
        entity, backfill, mapping.program_stage,
        start_date=date(2024, 1, 2), end_date=date(2024, 1, 4), now=pd.Timestamp("2024-03-04"),
    )

    assert [e["occurredAt"] for e in events] == [
        "2024-01-02T00:00:00", "2024-01-03T00:00:00", "2024-01-04T00:00:00",
    ]
    assert [signal_value(e["dataValues"]) for e in events] == ["None", "Multiple", "Heartbeat"]
    for event in events:
        assert BATTERY_HEALTH_DATA_ELEMENT not in _values(event)
        assert DEVICE_HEALTH_DATA_ELEMENT not in _values(event)


def test_window_only_start_runs_up_to_now(entity, episode, mapping):
    backfill = replace(episode, adherence_string="1,1,1,1,1", episode_start_date="2024-01-01")
    events = reconcile_entity(
        entity, backfill, mapping.program_stage, start_date="2024-01-01", now=pd.Timestamp("2024-01-03 08:00"),
    )
    assert len(events) == 3


def test_entities_without_a_fetched_episode_are_skipped(entity, episode, mapping, fresh_now):
    unlinked = replace(entity, tracked_entity="TeiNoEpis01", attributes={})
    orphan = replace(entity, tracked_entity="TeiOrphan01", attributes={EPISODE_ATTRIBUTE: "EP404"})
    not_enrolled = TrackedEntity(
        tracked_entity="TeiNoEnrl01", org_unit="OuFacility1", attributes={EPISODE_ATTRIBUTE: "EP1"},
    )

    events = reconcile_events([unlinked, orphan, not_enrolled, entity], [episode], mapping, now=fresh_now)

    assert [e["trackedEntity"] for e in events] == ["TeiPatient1"]


def test_enrollment_marker_becomes_completed_dosing_event(entity, episode, mapping, fresh_now):
    """On assignment day the ACTIVE enrollment event is taken over by the dosing signal"""
    marker = enrollment_signal_event(entity, mapping.program_stage, pd.Timestamp("2024-03-04 08:00:00"))
    stored = replace(entity, events=[marker])

    events = reconcile_entity(stored, episode, mapping.program_stage, now=fresh_now)

    assert len(events) == 1
    assert events[0]["event"] == marker["event"]
    assert events[0]["status"] == "COMPLETED"
    assert signal_value(events[0]["dataValues"]) == "Multiple"


def test_freshness_compares_on_one_clock(entity, episode, mapping):
    """Offsets on either side are normalized before the one-day check"""
    seen = replace(episode, last_seen="2024-03-04T10:00:00+03:00")

    fresh = reconcile_entity(entity, seen, mapping.program_stage, now=pd.Timestamp("2024-03-05T09:30:00+03:00"))
    stale = reconcile_entity(entity, seen, mapping.program_stage, now=pd.Timestamp("2024-03-05T10:30:00+03:00"))

    assert len(fresh) == 1
    assert fresh[0]["occurredAt"] == "2024-03-04T07:00:00"
    assert stale == []


def test_default_clock_is_naive_utc():
    before = pd.Timestamp(datetime.now(timezone.utc).replace(tzinfo=None))
    now = utc_now()
    assert now.tzinfo is None
    assert abs(now - before) < pd.Timedelta(minutes=1)
