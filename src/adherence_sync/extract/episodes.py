"""
Extract device episodes from the device registry, merged with each device's details.

IMEIs are fetched in fixed-size batches. For every batch the episode list and the
device detail list are two independent reads, so they run side by side; both must
finish before the merge. A batch that fails is logged and skipped.
"""

from __future__ import annotations
import logging
from concurrent.futures import ThreadPoolExecutor
import pandas as pd
import requests
from adherence_sync.clients.registry import DeviceRegistryClient, RegistryError, as_records
from adherence_sync.core.config import EPISODE_BATCH_SIZE
from adherence_sync.models.domain import BatchOutcome, Episode, SkippedBatch
from adherence_sync.transforms.adherence_codec import battery_fraction, classify_device_status

log = logging.getLogger(__name__)

JOIN_KEY = "device_imei"


def chunked(values: list, size: int) -> list[list]:
    return [values[i:i + size] for i in range(0, len(values), size)]


def _nan_to_none(rec: dict) -> dict:
    return {k: (None if not isinstance(v, (list, dict)) and pd.isna(v) else v) for k, v in rec.items()}


def _str_or_none(value) -> str | None:
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return None
    text = str(value).strip()
    return text or None


def merge_episodes_with_devices(episodes: list[dict], devices: list[dict]) -> list[dict]:
    """
    Left-join episode records to device records on the IMEI.
    Episode values win on shared columns; device values only fill gaps.
    Devices not referenced by any episode are ignored.
    """
    episodes_df = pd.DataFrame(episodes, dtype=object)
    if episodes_df.empty or JOIN_KEY not in episodes_df.columns:
        return []

    episodes_df[JOIN_KEY] = episodes_df[JOIN_KEY].map(_str_or_none)
    episodes_df = episodes_df[episodes_df[JOIN_KEY].notna()].copy()

    devices_df = pd.DataFrame(devices, dtype=object)
    if devices_df.empty or JOIN_KEY not in devices_df.columns:
        merged = episodes_df
    else:
        devices_df[JOIN_KEY] = devices_df[JOIN_KEY].map(_str_or_none)
        devices_df = devices_df[devices_df[JOIN_KEY].isin(set(episodes_df[JOIN_KEY]))]
        devices_df = devices_df.drop_duplicates(subset=[JOIN_KEY], keep="first")

        merged = episodes_df.merge(devices_df, on=JOIN_KEY, how="left", suffixes=("", "_device"))
        for col in devices_df.columns:
            device_col = f"{col}_device"
            if device_col in merged.columns:
                merged[col] = merged[col].combine_first(merged[device_col])
                merged = merged.drop(columns=device_col)

    return [_nan_to_none(rec) for rec in merged.to_dict("records")]


def to_episode(record: dict) -> Episode:
    return Episode(
        episode_id=_str_or_none(record.get("episode_id") or record.get("id")),
        imei=str(record[JOIN_KEY]),
        adherence_string=record.get("adherence_string") or "",
        episode_start_date=_str_or_none(record.get("episode_start_date")),
        last_seen=_str_or_none(record.get("last_seen")),
        battery_level=battery_fraction(record.get("last_battery_level")),
        device_status=classify_device_status(record.get("device_status")),
    )


def _fetch_batch(registry: DeviceRegistryClient, imeis: list[str]):
    with ThreadPoolExecutor(max_workers=2) as pool:
        episodes_future = pool.submit(registry.get_episodes, imeis)
        devices_future = pool.submit(registry.get_device_details, imeis)
        return episodes_future.result(), devices_future.result()


def fetch_episodes(
    registry: DeviceRegistryClient,
    imeis: list[str],
    batch_size: int = EPISODE_BATCH_SIZE,
) -> BatchOutcome[Episode]:
    outcome: BatchOutcome[Episode] = BatchOutcome()
    batches = chunked(list(dict.fromkeys(i for i in imeis if i)), batch_size)

    for index, batch in enumerate(batches, start=1):
        try:
            episodes_result, devices_result = _fetch_batch(registry, batch)
        except requests.RequestException as e:
            log.warning("Failed to fetch episodes for batch %d/%d: %s", index, len(batches), e)
            outcome.skipped.append(SkippedBatch(index=index, keys=batch, reason=str(e)))
            continue

        failure = next((r for r in (episodes_result, devices_result) if isinstance(r, RegistryError)), None)
        if failure is not None:
            log.warning(
                "Device registry refused batch %d/%d: [%s] %s",
                index, len(batches), failure.code, failure.message,
            )
            outcome.skipped.append(SkippedBatch(index=index, keys=batch, reason=failure.message))
            continue

        records = merge_episodes_with_devices(as_records(episodes_result.records), as_records(devices_result.records))
        outcome.items.extend(to_episode(rec) for rec in records)
        log.info("Fetched episodes: %d/%d (%d records)", index, len(batches), len(records))

    if outcome.skipped:
        log.warning("Skipped %d of %d episode batches", len(outcome.skipped), len(batches))
    return outcome
