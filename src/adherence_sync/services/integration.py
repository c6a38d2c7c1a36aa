"""
Integration service - fetches, reconciles and uploads adherence events
"""
from __future__ import annotations
import logging
from datetime import datetime, timezone
import requests
from sqlalchemy.orm import Session
from adherence_sync.clients.registry import DeviceRegistryClient
from adherence_sync.clients.tracker import TrackerClient, describe_tracker_error
from adherence_sync.core.config import ConfigurationError, Settings
from adherence_sync.core.db import create_tables
from adherence_sync.extract.datastore import get_assigned_devices, get_program_mappings, read_datastore_settings
from adherence_sync.extract.episodes import fetch_episodes
from adherence_sync.extract.tracked_entities import fetch_tracked_entities
from adherence_sync.load.upload_events import upload_events
from adherence_sync.models import SyncRun
from adherence_sync.transforms.reconcile_events import reconcile_events, to_day

log = logging.getLogger(__name__)

def _root_org_unit(tracker: TrackerClient) -> str | None:
    try:
        return tracker.get_root_org_unit()
    except requests.RequestException as e:
        log.warning("Could not resolve the root organisation unit: %s", describe_tracker_error(e))
        return None

def run_integration(
    settings: Settings,
    start_date=None,
    end_date=None,
    registry: DeviceRegistryClient | None = None,
    tracker: TrackerClient | None = None,
    engine=None,
    now=None,
) -> list[dict]:
    """Execute one reconciliation run; returns one stats dict per program stage."""
    start_day, end_day = to_day(start_date), to_day(end_date)
    window = " ".join(
        part for part in (
            f"from {start_day}" if start_day else "",
            f"up to {end_day}" if end_day else "",
        ) if part
    )
    log.info("Started integration with the device registry %s", window)

    registry = registry or DeviceRegistryClient(settings)
    tracker = tracker or TrackerClient(settings)
    engine = engine or create_tables(settings.database_url)

    log.info("Fetching program mappings.")
    datastore = read_datastore_settings(tracker)
    mappings = get_program_mappings(tracker, datastore)
    if not mappings:
        log.error("There is no program metadata configured for the integration")
        log.error("Terminating the integration script!")
        raise ConfigurationError("No program mapping configured")

    log.info("Fetching devices assigned in the tracker.")
    imeis = get_assigned_devices(tracker, datastore)
    if not imeis:
        log.warning("No devices are in use. Nothing to synchronize")
        return []

    log.info("Fetching adherence episodes from the device registry.")
    episodes = fetch_episodes(registry, imeis)
    org_unit = _root_org_unit(tracker)

    stats = []
    with Session(engine) as session:
        for mapping in mappings:
            run = SyncRun(
                started_at=datetime.now(timezone.utc),
                window_start=start_day,
                window_end=end_day,
                program_stage=mapping.program_stage,
                status="RUNNING",
                episodes=len(episodes.items),
            )
            session.add(run)
            try:
                if not mapping.imei_attribute:
                    log.warning("Program mapping for %s has no device IMEI attribute. Skipping", mapping.program)
                    run.status = "SKIPPED"
                    continue

                entities = fetch_tracked_entities(
                    tracker, mapping.program, imeis, mapping.imei_attribute, mapping.program_stage
                )
                events = reconcile_events(
                    entities.items, episodes.items, mapping, start_date, end_date, now=now, org_unit=org_unit
                )
                upload = upload_events(tracker, events, session=session, run=run)

                run.entities = len(entities.items)
                run.events_computed = len(events)
                run.skipped_batches = len(episodes.skipped) + len(entities.skipped)
                run.status = "COMPLETED"
                stats.append({
                    "program_stage": mapping.program_stage,
                    "entities": len(entities.items),
                    "episodes": len(episodes.items),
                    "events": len(events),
                    "imported": upload.imported,
                    "updated": upload.updated,
                    "ignored": upload.ignored,
                    "failed_pages": upload.failed_pages,
                })
            except Exception as e:
                run.status = "FAILED"
                run.error = str(e)
                log.error("Integration failed for %s: %s", mapping.program_stage, e, exc_info=True)
                raise
            finally:
                run.finished_at = datetime.now(timezone.utc)
                session.commit()

    log.info("Integration complete: %s", stats)
    return stats
