"""
Read views over registry devices: single device details, and the list of devices
in use with their latest episode.
"""
from __future__ import annotations
import logging
import pandas as pd
from adherence_sync.clients.registry import DeviceRegistryClient, as_records
from adherence_sync.clients.tracker import TrackerClient
from adherence_sync.core.config import EPISODE_BATCH_SIZE
from adherence_sync.extract.datastore import get_assigned_devices
from adherence_sync.extract.episodes import chunked
from adherence_sync.services.results import ServiceResult
from adherence_sync.transforms.adherence_codec import battery_fraction, bits_to_days_mask, classify_device_status

log = logging.getLogger(__name__)

def _int(value, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default

def get_device_details(registry: DeviceRegistryClient, imei: str) -> ServiceResult:
    result = registry.get_device(imei)
    if not result.ok:
        return ServiceResult(409, {"message": result.message, "code": result.code})

    records = as_records(result.records)
    if not records:
        return ServiceResult(404, {"message": f"Device {imei} not found"})
    device = records[0]

    alarm_days = device.get("alarm_days")
    return ServiceResult(200, {
        "alarmDays": bits_to_days_mask(alarm_days) if alarm_days not in (None, "") else "",
        "alarmTime": device.get("alarm_time") or "",
        "alarmStatus": _int(device.get("alarm")),
        "refillAlarm": device.get("refill_alarm_datetime") or "",
        "refillAlarmStatus": _int(device.get("refill_alarm")),
        "batteryLevel": battery_fraction(device.get("last_battery_level")),
        "lastOpened": device.get("last_opened") or "",
        "lastHeartBeat": device.get("last_seen") or "",
        "enrollmentDate": device.get("episode_start_date") or "",
        "deviceOpenings": _int(device.get("total_device_dose_days")),
        "deviceStatus": classify_device_status(device.get("device_status")).value,
    })

def merge_latest_episodes(devices: list[dict], episodes: list[dict]) -> list[dict]:
    """Overlay each device with its most recently seen episode and total days in use."""
    df = pd.DataFrame(episodes, dtype=object)
    if df.empty or "device_imei" not in df.columns:
        return devices
    for col in ("last_seen", "total_device_days"):
        if col not in df.columns:
            df[col] = None

    df["device_imei"] = df["device_imei"].astype(str)
    df["_seen"] = pd.to_datetime(df["last_seen"], errors="coerce", format="mixed")
    df["_days"] = pd.to_numeric(df["total_device_days"], errors="coerce").fillna(0).astype(int)
    totals = df.groupby("device_imei")["_days"].sum()
    latest = (
        df.sort_values("_seen", ascending=False, na_position="last")
          .drop_duplicates(subset=["device_imei"], keep="first")
          .drop(columns=["_seen", "_days"])
    )
    by_imei = {
        rec["device_imei"]: {
            k: v for k, v in rec.items()
            if v is not None and not (isinstance(v, float) and pd.isna(v))
        }
        for rec in latest.to_dict("records")
    }

    merged = []
    for device in devices:
        imei = str(device.get("device_imei"))
        episode = by_imei.get(imei)
        if episode is None:
            merged.append(device)
            continue
        merged.append({**device, **episode, "total_device_days": int(totals.get(imei, 0))})
    return merged

def sanitize_device(record: dict) -> dict:
    return {
        "imei": record.get("device_imei") or "",
        "lastHeartBeat": record.get("last_seen") or "",
        "batteryLevel": battery_fraction(record.get("last_battery_level")),
        "lastOpened": record.get("last_opened") or "",
        "daysDeviceInUse": _int(record.get("total_device_days")),
        "deviceStatus": classify_device_status(record.get("device_status")).value,
    }

def list_assigned_devices(
    registry: DeviceRegistryClient,
    tracker: TrackerClient,
    batch_size: int = EPISODE_BATCH_SIZE,
) -> ServiceResult:
    imeis = get_assigned_devices(tracker)
    devices: list[dict] = []
    if not imeis:
        return ServiceResult(200, {"devices": devices})

    for batch in chunked(imeis, batch_size):
        device_result = registry.get_device_details(batch)
        if not device_result.ok:
            return ServiceResult(409, {"message": device_result.message, "code": device_result.code})
        records = as_records(device_result.records)

        episode_result = registry.get_episodes([r["device_imei"] for r in records if r.get("device_imei")])
        if episode_result.ok:
            records = merge_latest_episodes(records, as_records(episode_result.records))
        else:
            log.warning("Episodes for %d devices could not be fetched: %s", len(records), episode_result.message)
        devices.extend(sanitize_device(r) for r in records)

    return ServiceResult(200, {"devices": devices})
