"""
Upload reconciled events to the tracker.
- Pages are posted one after another so import summaries log in order.
- A failed page is logged and the next page still goes.
- When a ledger session is given, each page outcome is recorded as an UploadPage row.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
import requests
from sqlalchemy.orm import Session
from adherence_sync.clients.tracker import TrackerClient, describe_tracker_error
from adherence_sync.core.config import UPLOAD_PAGE_SIZE
from adherence_sync.extract.episodes import chunked
from adherence_sync.models import SyncRun, UploadPage

log = logging.getLogger(__name__)

@dataclass
class ImportSummary:
    imported: int = 0
    updated: int = 0
    ignored: int = 0
    deleted: int = 0
    conflicts: list[str] = field(default_factory=list)

@dataclass
class UploadStats:
    pages: int = 0
    failed_pages: int = 0
    imported: int = 0
    updated: int = 0
    ignored: int = 0
    deleted: int = 0

    def add(self, summary: ImportSummary) -> None:
        self.imported += summary.imported
        self.updated += summary.updated
        self.ignored += summary.ignored
        self.deleted += summary.deleted

def _count(value) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0

def summarize_import(response: dict) -> ImportSummary:
    """Read counts and conflict descriptions from a tracker or legacy events import report."""
    response = response or {}
    stats = response.get("stats")
    if isinstance(stats, dict):
        report = response.get("validationReport") or {}
        conflicts = [r.get("message", "") for r in report.get("errorReports") or []]
        return ImportSummary(
            imported=_count(stats.get("created")),
            updated=_count(stats.get("updated")),
            ignored=_count(stats.get("ignored")),
            deleted=_count(stats.get("deleted")),
            conflicts=conflicts,
        )

    legacy = response.get("response") if isinstance(response.get("response"), dict) else response
    conflicts = []
    for item in legacy.get("importSummaries") or []:
        if _count((item.get("importCount") or {}).get("ignored")):
            if item.get("description"):
                conflicts.append(item["description"])
            conflicts.extend(c.get("value", "") for c in item.get("conflicts") or [])
    return ImportSummary(
        imported=_count(legacy.get("imported")),
        updated=_count(legacy.get("updated")),
        ignored=_count(legacy.get("ignored")),
        deleted=_count(legacy.get("deleted")),
        conflicts=conflicts,
    )

def log_import_summary(page: int, summary: ImportSummary) -> None:
    if summary.imported or summary.updated or summary.deleted or summary.ignored:
        log.info(
            "Import summary for page %d: imported=%d, updated=%d, deleted=%d, ignored=%d",
            page, summary.imported, summary.updated, summary.deleted, summary.ignored,
        )
    for conflict in summary.conflicts:
        log.warning("Page %d conflict: %s", page, conflict)

def upload_events(
    tracker: TrackerClient,
    events: list[dict],
    page_size: int = UPLOAD_PAGE_SIZE,
    session: Optional[Session] = None,
    run: Optional[SyncRun] = None,
) -> UploadStats:
    stats = UploadStats()
    pages = chunked(list(events), page_size)
    if not pages:
        log.info("No events to upload")
        return stats

    for page, page_events in enumerate(pages, start=1):
        stats.pages += 1
        row = UploadPage(page=page, events=len(page_events), uploaded_at=datetime.now(timezone.utc))
        try:
            response = tracker.upload_events(page_events)
        except requests.RequestException as e:
            detail = describe_tracker_error(e)
            log.error("Failed to upload events page %d/%d: %s", page, len(pages), detail)
            stats.failed_pages += 1
            row.error = detail
        else:
            summary = summarize_import(response)
            log_import_summary(page, summary)
            stats.add(summary)
            row.imported, row.updated = summary.imported, summary.updated
            row.ignored, row.deleted = summary.ignored, summary.deleted
            row.conflicts = "\n".join(summary.conflicts) or None
        log.info("Uploaded events page %d/%d", page, len(pages))

        if session is not None and run is not None:
            row.run = run
            session.add(row)

    log.info(
        "Upload complete: %d pages (%d failed), imported=%d, updated=%d, ignored=%d",
        stats.pages, stats.failed_pages, stats.imported, stats.updated, stats.ignored,
    )
    return stats
