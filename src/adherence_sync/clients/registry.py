"""
Device registry (Wisepill) API client.

Every registry response is a {ResultCode, Result, records} envelope. It is decoded
here, at the boundary, into RegistryOk or RegistryError so callers never branch
on raw envelope fields. Transport problems surface as requests exceptions.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Optional, Union
from urllib.parse import urljoin
import requests
from adherence_sync.core.config import Settings

log = logging.getLogger(__name__)

DOMAIN_ERROR_THRESHOLD = 100


@dataclass(frozen=True)
class RegistryOk:
    records: Any
    message: str = ""

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class RegistryError:
    code: int
    message: str

    @property
    def ok(self) -> bool:
        return False


RegistryResult = Union[RegistryOk, RegistryError]


def decode_envelope(payload) -> RegistryResult:
    if not isinstance(payload, dict):
        return RegistryError(code=-1, message="Unexpected response from the device registry")
    try:
        code = int(payload.get("ResultCode") or 0)
    except (TypeError, ValueError):
        return RegistryError(code=-1, message=f"Invalid result code: {payload.get('ResultCode')!r}")

    message = str(payload.get("Result") or "")
    if code >= DOMAIN_ERROR_THRESHOLD:
        return RegistryError(code=code, message=message)

    records = payload.get("records")
    if records is None:
        # single-device lookups put the fields on the envelope itself
        records = {k: v for k, v in payload.items() if k not in ("ResultCode", "Result")}
    return RegistryOk(records=records, message=message)


def as_records(records) -> list[dict]:
    if records is None:
        return []
    if isinstance(records, dict):
        return [records]
    return [r for r in records if isinstance(r, dict)]


class DeviceRegistryClient:
    def __init__(self, settings: Settings, session: Optional[requests.Session] = None):
        self.base_url = settings.registry_base_url.rstrip("/") + "/"
        self.timeout = settings.request_timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "Accept": "application/json",
            "Username": settings.registry_username,
            "Secret": settings.registry_secret,
        })

    def _request(self, method: str, path: str, *, params: dict | None = None, json: dict | None = None) -> RegistryResult:
        url = urljoin(self.base_url, path)
        log.debug("%s %s params=%s", method, url, params)
        resp = self.session.request(method, url, params=params, json=json, timeout=self.timeout)
        resp.raise_for_status()
        return decode_envelope(resp.json())

    # lookups
    def find_device(self, imei: str) -> RegistryResult:
        return self._request("GET", "devices/findDevice", params={"input": imei})

    def get_device(self, imei: str) -> RegistryResult:
        return self._request("GET", "devices/getDevices", params={"device_imei": imei})

    def get_device_details(self, imeis: list[str]) -> RegistryResult:
        return self._request("POST", "devices/getDeviceDetail", json={"data": {"imeis": list(imeis)}})

    def get_episodes(self, imeis: list[str]) -> RegistryResult:
        return self._request("POST", "episodes/getEpisodes", json={"data": {"imeis": list(imeis)}})

    # episode lifecycle
    def create_episode(self, patient_id: str, start_date: date) -> RegistryResult:
        return self._request(
            "POST",
            "episodes/createEpisode",
            params={"external_id": patient_id, "episode_start_date": start_date.isoformat()},
        )

    def assign_episode(self, episode_id: str, imei: str) -> RegistryResult:
        return self._request("PUT", "episodes/assignDevice", params={"episode_id": episode_id, "device_imei": imei})

    def unassign_device(self, imei: str) -> RegistryResult:
        return self._request("PUT", "episodes/unassignDevice", params={"device_imei": imei})

    def close_episode(self, episode_id: str) -> RegistryResult:
        return self._request("PUT", "episodes/closeEpisode", params={"episode_id": episode_id})

    # device configuration
    def set_alarm(self, imei: str, status: int, alarm_time: str | None = None, alarm_days: int | None = None) -> RegistryResult:
        params = {"alarm": status, "device_imei": imei}
        if alarm_time:
            params.update({"alarm_time": alarm_time, "alarm_days": alarm_days})
        return self._request("PUT", "devices/setAlarm", params=params)

    def set_refill_alarm(self, imei: str, status: int, refill_at: str | None = None) -> RegistryResult:
        params = {"refill_alarm": status, "device_imei": imei}
        if refill_at:
            params["refill_alarm_datetime"] = refill_at
        return self._request("PUT", "devices/setRefillAlarm", params=params)

    def set_timezone(self, imei: str, time_zone: str) -> RegistryResult:
        return self._request("PUT", "devices/setTimezone", params={"device_imei": imei, "timezone": time_zone})
