"""
Reconcile device adherence with tracker events.

For each tracked entity linked to an episode, compute the adherence events that
should exist, then merge them with the events already stored in the tracker:
  - no event on that day        -> create one with a new id
  - same device signal stored   -> nothing to send
  - different signal stored     -> update the stored event, keeping its id and
                                   every other data value it already carries;
                                   the update is always COMPLETED, so the
                                   ACTIVE enrollment marker of assignment day
                                   becomes that day's dosing event

Adherence strings are read oldest day first, anchored at the episode start date.
Without an evaluation window only a fresh episode (seen within a day) is used,
and only its latest code is considered. With a window the whole history is
expanded and filtered to the window.
"""

from __future__ import annotations
import logging
import secrets
import string
from datetime import date
from typing import Iterable, Optional
import pandas as pd
from adherence_sync.core.config import (
    BATTERY_HEALTH_DATA_ELEMENT,
    DEVICE_HEALTH_DATA_ELEMENT,
    DEVICE_SIGNAL_DATA_ELEMENT,
    DOSAGE_TIME_DATA_ELEMENT,
)
from adherence_sync.models.domain import (
    AdherenceMapping,
    AdherenceSignal,
    DeviceStatus,
    Episode,
    EventStatus,
    ProgramMapping,
    TrackedEntity,
)
from adherence_sync.transforms.adherence_codec import classify_adherence_code, parse_adherence_codes

log = logging.getLogger(__name__)

FRESHNESS = pd.Timedelta(days=1)
TIMESTAMP_FMT = "%Y-%m-%dT%H:%M:%S"
UID_CHARS = string.ascii_letters + string.digits


def generate_uid() -> str:
    """DHIS2-style uid: 11 alphanumerics, starting with a letter."""
    return secrets.choice(string.ascii_letters) + "".join(secrets.choice(UID_CHARS) for _ in range(10))


def utc_now() -> pd.Timestamp:
    """Current time on the same clock as parsed timestamps: naive UTC."""
    return pd.Timestamp.now(tz="UTC").tz_localize(None)


def to_timestamp(value) -> Optional[pd.Timestamp]:
    """Parse to a naive UTC timestamp (aware values are converted, naive ones taken as UTC)."""
    if value is None:
        return None
    ts = pd.to_datetime(value, errors="coerce")
    if pd.isna(ts):
        return None
    if ts.tzinfo is not None:
        ts = ts.tz_convert(None)
    return ts


def to_day(value) -> Optional[date]:
    ts = to_timestamp(value)
    return ts.date() if ts is not None else None


def _fmt(ts: pd.Timestamp) -> str:
    return ts.strftime(TIMESTAMP_FMT)


def expand_adherence(episode: Episode) -> list[AdherenceMapping]:
    """One (date, code) pair per code, starting at the episode start date."""
    codes = parse_adherence_codes(episode.adherence_string)
    start = to_timestamp(episode.episode_start_date)
    if start is None or not codes:
        return []
    days = pd.date_range(start=start.normalize(), periods=len(codes), freq="D")
    return [AdherenceMapping(date=day, code=code) for day, code in zip(days, codes)]


def within_window(
    mappings: Iterable[AdherenceMapping],
    start_date=None,
    end_date=None,
    now=None,
) -> list[AdherenceMapping]:
    start_day = to_day(start_date) if start_date is not None else date.min
    end_day = to_day(end_date) if end_date is not None else to_day(now if now is not None else utc_now())
    return [m for m in mappings if start_day <= m.date.date() <= end_day]


def is_fresh(episode: Episode, now: pd.Timestamp) -> bool:
    last_seen = to_timestamp(episode.last_seen)
    return last_seen is not None and now - last_seen <= FRESHNESS


def trailing_signal_run(mappings: list[AdherenceMapping]) -> list[AdherenceMapping]:
    """Newest first, stop at the first day without a signal. Returned oldest first."""
    run = []
    for mapping in reversed(mappings):
        if classify_adherence_code(mapping.code) is AdherenceSignal.NONE:
            break
        run.append(mapping)
    run.reverse()
    return run


def build_data_values(
    mapping: AdherenceMapping,
    battery_level: float | None = None,
    device_status: DeviceStatus | None = None,
) -> list[dict]:
    data_values = [
        {"dataElement": DOSAGE_TIME_DATA_ELEMENT, "value": _fmt(mapping.date)},
        {"dataElement": DEVICE_SIGNAL_DATA_ELEMENT, "value": classify_adherence_code(mapping.code).value},
    ]
    if battery_level:
        data_values.append({"dataElement": BATTERY_HEALTH_DATA_ELEMENT, "value": battery_level})
    if device_status not in (None, DeviceStatus.UNKNOWN):
        data_values.append({"dataElement": DEVICE_HEALTH_DATA_ELEMENT, "value": device_status.value})
    return data_values


def signal_value(data_values: Iterable[dict] | None):
    for dv in data_values or []:
        if dv.get("dataElement") == DEVICE_SIGNAL_DATA_ELEMENT:
            return dv.get("value")
    return None


def index_events_by_day(events: Iterable[dict]) -> dict[date, dict]:
    indexed: dict[date, dict] = {}
    for event in events:
        day = to_day(event.get("occurredAt") or event.get("eventDate"))
        if day is not None and day not in indexed:
            indexed[day] = event
    return indexed


def event_base(entity: TrackedEntity, program_stage: str, org_unit: str | None = None) -> dict:
    return {
        "trackedEntity": entity.tracked_entity,
        "enrollment": entity.enrollment,
        "program": entity.program,
        "programStage": program_stage,
        "orgUnit": entity.enrollment_org_unit or entity.org_unit or org_unit,
    }


def merge_with_existing(existing: dict | None, data_values: list[dict], base: dict, occurred_at: str) -> Optional[dict]:
    """Payload to send for one day, or None when the stored event is already up to date."""
    if existing is None:
        return {
            "event": generate_uid(),
            **base,
            "occurredAt": occurred_at,
            "status": EventStatus.COMPLETED.value,
            "dataValues": data_values,
        }

    new_signal = signal_value(data_values)
    if signal_value(existing.get("dataValues")) == new_signal:
        return None

    kept = [dv for dv in existing.get("dataValues") or [] if dv.get("dataElement") != DEVICE_SIGNAL_DATA_ELEMENT]
    return {
        **base,
        "event": existing["event"],
        "occurredAt": existing.get("occurredAt") or occurred_at,
        "status": EventStatus.COMPLETED.value,
        "dataValues": [{"dataElement": DEVICE_SIGNAL_DATA_ELEMENT, "value": new_signal}] + kept,
    }


def reconcile_entity(
    entity: TrackedEntity,
    episode: Episode,
    program_stage: str,
    start_date=None,
    end_date=None,
    now=None,
    org_unit: str | None = None,
) -> list[dict]:
    now = to_timestamp(now) if now is not None else utc_now()
    windowed = start_date is not None or end_date is not None

    if windowed:
        mappings = within_window(expand_adherence(episode), start_date, end_date, now)
    else:
        if not is_fresh(episode, now):
            log.info(
                "Episode %s (device %s) last seen %s; no fresh adherence to sync",
                episode.episode_id, episode.imei, episode.last_seen or "never",
            )
            return []
        codes = parse_adherence_codes(episode.adherence_string)
        if not codes:
            return []
        mappings = trailing_signal_run([AdherenceMapping(date=to_timestamp(episode.last_seen), code=codes[-1])])

    base = event_base(entity, program_stage, org_unit)
    existing_by_day = index_events_by_day(entity.events)
    payloads = []
    for mapping in mappings:
        if windowed:
            data_values = build_data_values(mapping)
        else:
            data_values = build_data_values(mapping, episode.battery_level, episode.device_status)

        day = mapping.date.date()
        payload = merge_with_existing(existing_by_day.get(day), data_values, base, _fmt(mapping.date))
        if payload is not None:
            payloads.append(payload)
            existing_by_day[day] = payload
    return payloads


def reconcile_events(
    entities: Iterable[TrackedEntity],
    episodes: Iterable[Episode],
    mapping: ProgramMapping,
    start_date=None,
    end_date=None,
    now=None,
    org_unit: str | None = None,
) -> list[dict]:
    """Create/update payloads for every tracked entity in the mapping's program stage."""
    episodes_by_id = {e.episode_id: e for e in episodes if e.episode_id}
    payloads: list[dict] = []
    skipped = 0

    for entity in entities:
        episode_id = entity.attribute(mapping.episode_attribute)
        if not episode_id:
            log.warning("Tracked entity %s has no linked episode. Skipping", entity.tracked_entity)
            skipped += 1
            continue
        episode = episodes_by_id.get(str(episode_id))
        if episode is None:
            log.warning("Episode %s for tracked entity %s was not fetched. Skipping", episode_id, entity.tracked_entity)
            skipped += 1
            continue
        if not entity.enrollment:
            log.warning("Tracked entity %s is not enrolled in %s. Skipping", entity.tracked_entity, mapping.program)
            skipped += 1
            continue

        payloads.extend(
            reconcile_entity(entity, episode, mapping.program_stage, start_date, end_date, now, org_unit)
        )

    log.info(
        "Reconciled %s stage: %d events to send, %d entities skipped",
        mapping.program_stage, len(payloads), skipped,
    )
    return payloads
