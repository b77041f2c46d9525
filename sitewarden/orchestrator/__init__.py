"""Orchestrator module — queue-based job dispatch and completion polling."""

from sitewarden.orchestrator.exceptions import OrchestratorError, PublishError
from sitewarden.orchestrator.orchestrator import QueueOrchestrator
from sitewarden.orchestrator.queue import (
    EventLog,
    InMemoryEventLog,
    InMemoryJobQueue,
    JobQueue,
)
from sitewarden.orchestrator.types import (
    AsyncOrchestrationResult,
    EventType,
    Job,
    JobPayload,
    JobStatus,
    OrchestrationResult,
    RunState,
    RunStatus,
    ServiceName,
    WorkerCallResult,
    WorkerEvent,
    WorkerStatus,
)

__all__ = [
    "AsyncOrchestrationResult",
    "EventLog",
    "EventType",
    "InMemoryEventLog",
    "InMemoryJobQueue",
    "Job",
    "JobPayload",
    "JobQueue",
    "JobStatus",
    "OrchestrationResult",
    "OrchestratorError",
    "PublishError",
    "QueueOrchestrator",
    "RunState",
    "RunStatus",
    "ServiceName",
    "WorkerCallResult",
    "WorkerEvent",
    "WorkerStatus",
]
