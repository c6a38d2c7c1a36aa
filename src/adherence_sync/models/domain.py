"""
Domain types shared by the fetchers, the reconciler and the services.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


class AdherenceSignal(str, Enum):
    NONE = "None"
    ONCE = "Once"
    MULTIPLE = "Multiple"
    HEARTBEAT = "Heartbeat"
    ENROLLMENT = "Enrollment"


class DeviceStatus(str, Enum):
    LINKED = "Device Linked to Episode"
    AVAILABLE = "Device available"
    DAMAGED_OR_LOST = "Device lost or damaged"
    UNAVAILABLE = "Device is unavailable"
    UNKNOWN = ""


class EventStatus(str, Enum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"


@dataclass
class Episode:
    episode_id: Optional[str]
    imei: str
    adherence_string: str = ""
    episode_start_date: Optional[str] = None
    last_seen: Optional[str] = None
    battery_level: float = 0.0
    device_status: DeviceStatus = DeviceStatus.UNKNOWN


@dataclass
class AdherenceMapping:
    """One dated adherence code."""
    date: Any  # pandas Timestamp
    code: str


@dataclass
class TrackedEntity:
    tracked_entity: str
    org_unit: Optional[str]
    attributes: dict[str, str] = field(default_factory=dict)
    program: Optional[str] = None
    enrollment: Optional[str] = None
    enrollment_org_unit: Optional[str] = None
    events: list[dict] = field(default_factory=list)

    def attribute(self, attribute_id: Optional[str]) -> Optional[str]:
        if not attribute_id:
            return None
        value = self.attributes.get(attribute_id)
        return value if value not in ("", None) else None


@dataclass(frozen=True)
class ProgramMapping:
    program: str
    program_stage: str
    attributes: dict[str, str]

    @property
    def imei_attribute(self) -> Optional[str]:
        return self.attributes.get("deviceIMEInumber")

    @property
    def episode_attribute(self) -> Optional[str]:
        return self.attributes.get("episodeId")

    @property
    def patient_attribute(self) -> Optional[str]:
        return self.attributes.get("patientNumber")

    @classmethod
    def from_dict(cls, raw: dict) -> Optional["ProgramMapping"]:
        program = (raw or {}).get("program")
        program_stage = (raw or {}).get("programStage")
        attributes = (raw or {}).get("attributes")
        if not program or not program_stage or not attributes:
            return None
        return cls(program=program, program_stage=program_stage, attributes=dict(attributes))


@dataclass
class SkippedBatch:
    index: int
    keys: list[str]
    reason: str


@dataclass
class BatchOutcome(Generic[T]):
    """Items from every batch that succeeded, plus the batches that did not."""
    items: list[T] = field(default_factory=list)
    skipped: list[SkippedBatch] = field(default_factory=list)
