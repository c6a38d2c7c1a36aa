from unittest.mock import Mock

import pandas as pd
import pytest

from adherence_sync.clients.registry import DeviceRegistryClient
from adherence_sync.clients.tracker import TrackerClient
from adherence_sync.core.config import Settings
from adherence_sync.models.domain import DeviceStatus, Episode, ProgramMapping, TrackedEntity


IMEI_ATTRIBUTE = "AtrImei0001"
EPISODE_ATTRIBUTE = "AtrEpis0001"
PATIENT_ATTRIBUTE = "AtrPatn0001"


@pytest.fixture
def settings() -> Settings:
    return Settings(
        registry_base_url="https://registry.test/api",
        tracker_base_url="https://tracker.test",
        registry_username="user",
        registry_secret="secret",
        tracker_username="admin",
        tracker_password="district",
        time_zone="Africa/Dar_es_Salaam",
    )


@pytest.fixture
def mapping() -> ProgramMapping:
    return ProgramMapping(
        program="PrgDat00001",
        program_stage="StgAdh00001",
        attributes={
            "deviceIMEInumber": IMEI_ATTRIBUTE,
            "episodeId": EPISODE_ATTRIBUTE,
            "patientNumber": PATIENT_ATTRIBUTE,
        },
    )


@pytest.fixture
def episode() -> Episode:
    """The `1,1,0,2` episode started on 2024-03-01 and last seen on its fourth day."""
    return Episode(
        episode_id="EP1",
        imei="860000000000001",
        adherence_string="1,1,0,2",
        episode_start_date="2024-03-01",
        last_seen="2024-03-04 10:00:00",
        battery_level=0.85,
        device_status=DeviceStatus.LINKED,
    )


@pytest.fixture
def entity(mapping) -> TrackedEntity:
    return TrackedEntity(
        tracked_entity="TeiPatient1",
        org_unit="OuFacility1",
        attributes={IMEI_ATTRIBUTE: "860000000000001", EPISODE_ATTRIBUTE: "EP1", PATIENT_ATTRIBUTE: "P-001"},
        program=mapping.program,
        enrollment="EnrPatient1",
        enrollment_org_unit="OuFacility1",
        events=[],
    )


@pytest.fixture
def fresh_now() -> pd.Timestamp:
    return pd.Timestamp("2024-03-04 18:00:00")


@pytest.fixture
def registry() -> Mock:
    return Mock(spec=DeviceRegistryClient)


@pytest.fixture
def tracker() -> Mock:
    return Mock(spec=TrackerClient)


def raw_tracked_entity(mapping: ProgramMapping, attributes: dict, events: list | None = None) -> dict:
    """A tracked entity as the tracker API returns it."""
    return {
        "trackedEntity": "TeiPatient1",
        "orgUnit": "OuFacility1",
        "attributes": [{"attribute": k, "value": v} for k, v in attributes.items()],
        "enrollments": [
            {
                "enrollment": "EnrPatient1",
                "program": mapping.program,
                "orgUnit": "OuFacility1",
                "enrolledAt": "2024-03-01T00:00:00.000",
                "events": events or [],
            }
        ],
    }
