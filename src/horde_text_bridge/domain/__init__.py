"""Domain public API."""

from horde_text_bridge.domain.errors import (
    BackendClientError,
    BridgeError,
    HordeClientError,
    MalformedResponseError,
    ModerationUnavailableError,
    UnsupportedBackendError,
    WorkerMaintenanceError,
)
from horde_text_bridge.domain.horde_models import (
    GenerationMetadata,
    PopRequest,
    SubmitRequest,
    WorkerInfoUpdate,
)
from horde_text_bridge.domain.jobs import CycleOutcome, FaultReason, Job, WorkerStatus
from horde_text_bridge.domain.moderation import (
    ModerationDecision,
    ModerationMode,
    ModerationReason,
    PositiveAction,
)
from horde_text_bridge.domain.ports import (
    AuditLog,
    BackendAdapter,
    InferenceBackend,
    JobQueue,
    PollScheduler,
    RemoteModerationClient,
    RemoteModerationResult,
    StatusReporter,
    ThroughputThrottle,
    Tokenizer,
)
from horde_text_bridge.domain.runtime import RuntimeState
from horde_text_bridge.domain.status_models import (
    BridgeStatusResponse,
    JobResult,
    WorkerState,
)

__all__ = [
    "AuditLog",
    "BackendAdapter",
    "BackendClientError",
    "BridgeError",
    "BridgeStatusResponse",
    "CycleOutcome",
    "FaultReason",
    "GenerationMetadata",
    "HordeClientError",
    "InferenceBackend",
    "Job",
    "JobQueue",
    "JobResult",
    "MalformedResponseError",
    "ModerationDecision",
    "ModerationMode",
    "ModerationReason",
    "ModerationUnavailableError",
    "PollScheduler",
    "PopRequest",
    "PositiveAction",
    "RemoteModerationClient",
    "RemoteModerationResult",
    "RuntimeState",
    "StatusReporter",
    "SubmitRequest",
    "ThroughputThrottle",
    "Tokenizer",
    "UnsupportedBackendError",
    "WorkerInfoUpdate",
    "WorkerMaintenanceError",
    "WorkerState",
    "WorkerStatus",
]
