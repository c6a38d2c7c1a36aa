"""
Extract integration settings (program mapping, assigned devices) from the tracker datastore.
"""
import logging
import requests
from adherence_sync.clients.tracker import TrackerClient, describe_tracker_error
from adherence_sync.models.domain import ProgramMapping

log = logging.getLogger(__name__)

def read_datastore_settings(tracker: TrackerClient) -> dict:
    try:
        return tracker.get_datastore_settings()
    except requests.RequestException as e:
        log.error("Failed to fetch data store configurations. Check the logs below!")
        log.error(describe_tracker_error(e))
        return {}

def get_program_mappings(tracker: TrackerClient, settings: dict | None = None) -> list[ProgramMapping]:
    """Valid program mappings; a single mapping object or a list of them is accepted."""
    if settings is None:
        settings = read_datastore_settings(tracker)
    raw = settings.get("programMapping") or []
    if isinstance(raw, dict):
        raw = [raw]

    mappings = []
    for item in raw:
        mapping = ProgramMapping.from_dict(item)
        if mapping is None:
            log.warning("Ignoring incomplete program mapping: %s", item)
            continue
        mappings.append(mapping)
    return mappings

def get_assigned_devices(tracker: TrackerClient, settings: dict | None = None) -> list[str]:
    if settings is None:
        settings = read_datastore_settings(tracker)
    devices = settings.get("deviceEmeiList") or []
    imeis = [str(d.get("code")).strip() for d in devices if d.get("inUse") and d.get("code")]
    log.info("Devices in use: %d", len(imeis))
    return imeis
