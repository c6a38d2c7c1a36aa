"""
Assign a device to a patient.

    Searching -> NotFound (404) | Found
    Found     -> Conflict (409) | Available -> EpisodeEnsured -> Assigned (201)

Each registry call that fails after the device is found ends in a terminal state
with a message; nothing already done is rolled back. Registry operations are
idempotent, so the caller may simply retry.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Callable, Optional
import pandas as pd
import requests
from adherence_sync.clients.registry import DeviceRegistryClient, RegistryResult, as_records
from adherence_sync.clients.tracker import TrackerClient, describe_tracker_error
from adherence_sync.core.config import DEVICE_SIGNAL_DATA_ELEMENT, DOSAGE_TIME_DATA_ELEMENT
from adherence_sync.extract.datastore import get_program_mappings
from adherence_sync.extract.tracked_entities import find_patient
from adherence_sync.load.upload_events import log_import_summary, summarize_import
from adherence_sync.models.domain import AdherenceSignal, DeviceStatus, EventStatus, ProgramMapping, TrackedEntity
from adherence_sync.transforms.adherence_codec import classify_device_status
from adherence_sync.transforms.reconcile_events import TIMESTAMP_FMT, event_base, generate_uid

log = logging.getLogger(__name__)


class AssignmentState(str, Enum):
    SEARCHING = "Searching"
    NOT_FOUND = "NotFound"
    FOUND = "Found"
    CONFLICT = "Conflict"
    AVAILABLE = "Available"
    EPISODE_ENSURED = "EpisodeEnsured"
    ASSIGNED = "Assigned"
    FAILED = "Failed"


TERMINAL_STATUS_CODES = {
    AssignmentState.NOT_FOUND: 404,
    AssignmentState.CONFLICT: 409,
    AssignmentState.ASSIGNED: 201,
    AssignmentState.FAILED: 500,
}


@dataclass
class AssignmentResult:
    state: AssignmentState
    message: str
    imei: str
    patient_id: str
    episode_id: Optional[str] = None
    history: list[AssignmentState] = field(default_factory=list)

    @property
    def status_code(self) -> int:
        return TERMINAL_STATUS_CODES[self.state]

    def body(self) -> dict:
        body = {
            "status": self.status_code,
            "message": self.message,
            "imei": self.imei,
            "patientId": self.patient_id,
        }
        if self.episode_id:
            body["episode"] = self.episode_id
        return body


def enrollment_signal_event(entity: TrackedEntity, program_stage: str, when: pd.Timestamp) -> dict:
    occurred_at = when.strftime(TIMESTAMP_FMT)
    return {
        "event": generate_uid(),
        **event_base(entity, program_stage),
        "occurredAt": occurred_at,
        "status": EventStatus.ACTIVE.value,
        "dataValues": [
            {"dataElement": DOSAGE_TIME_DATA_ELEMENT, "value": occurred_at},
            {"dataElement": DEVICE_SIGNAL_DATA_ELEMENT, "value": AdherenceSignal.ENROLLMENT.value},
        ],
    }


def _episode_id_from(records) -> Optional[str]:
    for record in as_records(records):
        episode_id = record.get("episode_id") or record.get("id")
        if episode_id:
            return str(episode_id)
    return None


class _Terminal(Exception):
    def __init__(self, state: AssignmentState, message: str):
        super().__init__(message)
        self.state = state
        self.message = message


class AssignmentOrchestrator:
    def __init__(
        self,
        registry: DeviceRegistryClient,
        tracker: TrackerClient,
        time_zone: str,
        close_previous_episode: bool = False,
        mapping: ProgramMapping | None = None,
        clock: Callable[[], pd.Timestamp] = pd.Timestamp.now,
    ):
        self.registry = registry
        self.tracker = tracker
        self.time_zone = time_zone
        self.close_previous_episode = close_previous_episode
        self.mapping = mapping
        self.clock = clock

    def assign(self, imei: str, patient_id: str, force: bool = False) -> AssignmentResult:
        history: list[AssignmentState] = [AssignmentState.SEARCHING]
        episode_id = None
        try:
            episode_id = self._run(imei, patient_id, force, history)
        except _Terminal as t:
            history.append(t.state)
            log.warning("Assignment of device %s to patient %s ended in %s: %s", imei, patient_id, t.state.value, t.message)
            return AssignmentResult(t.state, t.message, imei, patient_id, history=history)
        except requests.RequestException as e:
            history.append(AssignmentState.FAILED)
            detail = describe_tracker_error(e)
            log.error("Assignment of device %s to patient %s failed: %s", imei, patient_id, detail)
            return AssignmentResult(AssignmentState.FAILED, f"Internal server error: {detail}", imei, patient_id, history=history)

        history.append(AssignmentState.ASSIGNED)
        message = f"Device {imei} assigned to patient {patient_id}"
        log.info("%s (episode %s)", message, episode_id)
        return AssignmentResult(AssignmentState.ASSIGNED, message, imei, patient_id, episode_id, history)

    def _require(self, result: RegistryResult, message: str) -> RegistryResult:
        if not result.ok:
            raise _Terminal(AssignmentState.CONFLICT, f"{message} {result.message}".strip())
        return result

    def _program_mapping(self) -> ProgramMapping:
        if self.mapping is None:
            mappings = get_program_mappings(self.tracker)
            if not mappings:
                raise _Terminal(AssignmentState.FAILED, "No program mapping is configured for the integration")
            self.mapping = mappings[0]
        return self.mapping

    def _run(self, imei: str, patient_id: str, force: bool, history: list[AssignmentState]) -> str:
        found = self.registry.find_device(imei)
        devices = as_records(found.records) if found.ok else []
        if not devices:
            raise _Terminal(AssignmentState.NOT_FOUND, f"Device {imei} not found")
        history.append(AssignmentState.FOUND)

        device = devices[0]
        status = classify_device_status(device.get("device_status"))
        if status is DeviceStatus.DAMAGED_OR_LOST:
            raise _Terminal(AssignmentState.CONFLICT, f"Device {imei} is marked as damaged. Contact your system administrator for follow up.")
        if status is DeviceStatus.UNAVAILABLE:
            raise _Terminal(AssignmentState.CONFLICT, f"Device {imei} is unavailable. Contact your system administrator for follow up.")
        if status is DeviceStatus.LINKED and not force:
            raise _Terminal(
                AssignmentState.CONFLICT,
                f"Device {imei} is already assigned to another client. Verify the device IMEI number "
                "or contact your system administrator for follow up.",
            )
        if status not in (DeviceStatus.LINKED, DeviceStatus.AVAILABLE):
            raise _Terminal(AssignmentState.CONFLICT, f"Device {imei} has an unknown status.")

        mapping = self._program_mapping()
        patient = find_patient(self.tracker, mapping, patient_id)
        if patient is None or not patient.tracked_entity:
            raise _Terminal(AssignmentState.NOT_FOUND, f"Patient {patient_id} not found")
        if not patient.enrollment:
            raise _Terminal(AssignmentState.CONFLICT, f"Patient {patient_id} is not enrolled in program {mapping.program}")

        if status is DeviceStatus.LINKED:
            self._release_device(imei, device.get("episode_id"))
        history.append(AssignmentState.AVAILABLE)

        episode_id = patient.attribute(mapping.episode_attribute)
        if not episode_id:
            created = self._require(
                self.registry.create_episode(patient_id, self._today()),
                f"Could not generate episode for device {imei}.",
            )
            episode_id = _episode_id_from(created.records)
            if not episode_id:
                raise _Terminal(AssignmentState.CONFLICT, f"Could not generate episode for device {imei}.")
            log.info("Created episode %s for patient %s", episode_id, patient_id)
        history.append(AssignmentState.EPISODE_ENSURED)

        self._require(
            self.registry.assign_episode(str(episode_id), imei),
            f"Device {imei} could not be assigned to episode {episode_id}.",
        )
        self._require(
            self.registry.set_timezone(imei, self.time_zone),
            f"Device {imei} was assigned but its timezone could not be set.",
        )
        self._emit_enrollment_signal(patient, mapping, imei)
        return str(episode_id)

    def _release_device(self, imei: str, previous_episode_id) -> None:
        log.info("Unassigning device %s from its current episode", imei)
        self._require(
            self.registry.unassign_device(imei),
            f"Device {imei} could not be unassigned from its current episode.",
        )
        if self.close_previous_episode and previous_episode_id:
            log.info("Closing previous episode %s", previous_episode_id)
            self._require(
                self.registry.close_episode(str(previous_episode_id)),
                f"Previous episode {previous_episode_id} could not be closed.",
            )

    def _emit_enrollment_signal(self, patient: TrackedEntity, mapping: ProgramMapping, imei: str) -> None:
        event = enrollment_signal_event(patient, mapping.program_stage, self.clock())
        summary = summarize_import(self.tracker.upload_events([event]))
        log_import_summary(1, summary)
        if summary.ignored:
            raise _Terminal(
                AssignmentState.CONFLICT,
                f"Device {imei} was assigned but the enrollment signal was not recorded. {' '.join(summary.conflicts)}".strip(),
            )

    def _today(self) -> date:
        return self.clock().date()
