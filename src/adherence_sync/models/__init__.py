from adherence_sync.models.domain import (
    AdherenceMapping,
    AdherenceSignal,
    BatchOutcome,
    DeviceStatus,
    Episode,
    EventStatus,
    ProgramMapping,
    SkippedBatch,
    TrackedEntity,
)
from adherence_sync.models.tables import Base, SyncRun, UploadPage
