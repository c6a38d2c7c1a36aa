"""
Extract tracked entities from the tracker by attribute value, with their latest
enrollment in the program and that enrollment's events.
"""

from __future__ import annotations
import logging
from typing import Optional
import requests
from adherence_sync.clients.tracker import TrackerClient, describe_tracker_error
from adherence_sync.core.config import TRACKER_PAGE_SIZE
from adherence_sync.extract.episodes import chunked
from adherence_sync.models.domain import BatchOutcome, ProgramMapping, SkippedBatch, TrackedEntity

log = logging.getLogger(__name__)


def latest_enrollment(enrollments: list[dict] | None, program: str) -> Optional[dict]:
    in_program = [e for e in enrollments or [] if e.get("program") == program]
    in_program.sort(key=lambda e: e.get("enrolledAt") or "", reverse=True)
    return in_program[0] if in_program else None


def to_tracked_entity(raw: dict, program: str, program_stage: str | None = None) -> TrackedEntity:
    attributes = {
        a["attribute"]: a.get("value")
        for a in raw.get("attributes") or []
        if a.get("attribute")
    }
    enrollment = latest_enrollment(raw.get("enrollments"), program) or {}
    events = enrollment.get("events") or []
    if program_stage:
        events = [e for e in events if e.get("programStage") == program_stage]

    return TrackedEntity(
        tracked_entity=raw.get("trackedEntity") or raw.get("trackedEntityInstance"),
        org_unit=raw.get("orgUnit"),
        attributes=attributes,
        program=program,
        enrollment=enrollment.get("enrollment"),
        enrollment_org_unit=enrollment.get("orgUnit"),
        events=events,
    )


def fetch_tracked_entities(
    tracker: TrackerClient,
    program: str,
    values: list[str],
    attribute: str,
    program_stage: str | None = None,
    page_size: int = TRACKER_PAGE_SIZE,
) -> BatchOutcome[TrackedEntity]:
    log.info("Fetching tracked entities for %s program", program)
    outcome: BatchOutcome[TrackedEntity] = BatchOutcome()
    pages = chunked(list(dict.fromkeys(v for v in values if v)), page_size)

    for page, page_values in enumerate(pages, start=1):
        try:
            raw_entities = tracker.get_tracked_entities(program, attribute, page_values)
        except requests.RequestException as e:
            detail = describe_tracker_error(e)
            log.warning("Failed to fetch tracked entities for page %d/%d. Check the error below!", page, len(pages))
            log.error(detail)
            outcome.skipped.append(SkippedBatch(index=page, keys=page_values, reason=detail))
            continue

        outcome.items.extend(to_tracked_entity(raw, program, program_stage) for raw in raw_entities)
        log.info("Fetched tracked entities from %s program: %d/%d", program, page, len(pages))

    return outcome


def find_patient(tracker: TrackerClient, mapping: ProgramMapping, patient_id: str) -> Optional[TrackedEntity]:
    """Resolve one patient by the mapping's patient-number attribute. Transport errors propagate."""
    if not mapping.patient_attribute:
        log.warning("Program mapping for %s has no patient number attribute", mapping.program)
        return None
    raw_entities = tracker.get_tracked_entities(mapping.program, mapping.patient_attribute, [patient_id])
    if not raw_entities:
        return None
    return to_tracked_entity(raw_entities[0], mapping.program, mapping.program_stage)
