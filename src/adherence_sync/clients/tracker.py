"""
Tracker (DHIS2) API client.
"""

from __future__ import annotations
import logging
from typing import Optional
from urllib.parse import urljoin
import requests
from adherence_sync.core.config import Settings, WEB_APP_DATASTORE_KEY

log = logging.getLogger(__name__)

TRACKED_ENTITY_FIELDS = (
    "trackedEntity,orgUnit,attributes[attribute,value],"
    "enrollments[enrollment,program,orgUnit,enrolledAt,status,"
    "events[event,programStage,occurredAt,status,dataValues[dataElement,value]]]"
)


def _api_root(base_url: str) -> str:
    root = base_url.rstrip("/")
    if not root.endswith("/api"):
        root += "/api"
    return root + "/"


def describe_tracker_error(error: Exception) -> str:
    """Flatten an HTTP error into a log line, including any validation report in the body."""
    response = getattr(error, "response", None)
    if response is None:
        return str(error)

    try:
        body = response.json()
    except ValueError:
        return f"{error} {response.text}".strip()

    parts = [str(error)]
    if isinstance(body, dict):
        if body.get("message"):
            parts.append(str(body["message"]))
        report = body.get("validationReport") or (body.get("response") or {}).get("validationReport") or {}
        for item in report.get("errorReports") or []:
            parts.append(f"[{item.get('errorCode', '')}] {item.get('message', '')}".strip())
        for item in report.get("warningReports") or []:
            parts.append(f"warning: {item.get('message', '')}")
    return " | ".join(parts)


class TrackerClient:
    def __init__(self, settings: Settings, session: Optional[requests.Session] = None):
        self.base_url = _api_root(settings.tracker_base_url)
        self.timeout = settings.request_timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json"})
        if settings.tracker_token:
            self.session.headers.update({"Authorization": f"ApiToken {settings.tracker_token}"})
        elif settings.tracker_username:
            self.session.auth = (settings.tracker_username, settings.tracker_password)

    def _get(self, path: str, params: dict | None = None):
        resp = self.session.get(urljoin(self.base_url, path), params=params, timeout=self.timeout)
        resp.raise_for_status()
        return resp.json()

    def get_datastore_settings(self) -> dict:
        return self._get(f"dataStore/{WEB_APP_DATASTORE_KEY}/settings") or {}

    def get_root_org_unit(self) -> Optional[str]:
        data = self._get("organisationUnits.json", params={"filter": "level:eq:1", "fields": "id", "paging": "false"})
        units = data.get("organisationUnits") or []
        return units[0].get("id") if units else None

    def get_tracked_entities(self, program: str, attribute: str, values: list[str]) -> list[dict]:
        params = {
            "program": program,
            "filter": f"{attribute}:in:{';'.join(values)}",
            "ouMode": "ALL",
            "skipPaging": "true",
            "fields": TRACKED_ENTITY_FIELDS,
        }
        data = self._get("tracker/trackedEntities", params=params)
        # 2.41 returns "instances", older releases "trackedEntities"
        return data.get("instances") or data.get("trackedEntities") or []

    def upload_events(self, events: list[dict]) -> dict:
        resp = self.session.post(
            urljoin(self.base_url, "tracker"),
            params={"async": "false", "importStrategy": "CREATE_AND_UPDATE"},
            json={"events": events},
            timeout=self.timeout,
        )
        # a 409 still carries the import report
        if resp.status_code != 409:
            resp.raise_for_status()
        return resp.json()
