"""Queue and event-log collaborators.

Both are treated as at-least-once, independently failing externalities.
The in-memory implementations back the tests and local runs.
"""

from __future__ import annotations

import abc
import uuid

from sitewarden.orchestrator.types import Job, WorkerEvent


class JobQueue(abc.ABC):
    """Durable job queue that workers claim from."""

    async def initialize(self) -> None:
        """Create tables / connections.  Default: nothing to do."""

    async def close(self) -> None:
        """Release connections.  Default: nothing to do."""

    @abc.abstractmethod
    async def publish(self, job: Job) -> str:
        """Enqueue *job* and return its id."""


class EventLog(abc.ABC):
    """Append-only log of worker events, readable by job id or run id.

    Reads return every matching event in no particular order.
    """

    async def initialize(self) -> None:
        """Create tables / connections.  Default: nothing to do."""

    async def close(self) -> None:
        """Release connections.  Default: nothing to do."""

    @abc.abstractmethod
    async def append(self, event: WorkerEvent) -> None:
        """Write one event."""

    @abc.abstractmethod
    async def read_by_job_id(self, site_id: str, job_id: str) -> list[WorkerEvent]:
        """All events for a job."""

    @abc.abstractmethod
    async def read_by_run_id(self, site_id: str, run_id: str) -> list[WorkerEvent]:
        """All events for a run."""


class InMemoryJobQueue(JobQueue):
    """FIFO-by-priority list of jobs."""

    def __init__(self) -> None:
        self._jobs: dict[str, Job] = {}
        self._pending: list[str] = []
        self.initialized = False
        self.closed = False

    @property
    def jobs(self) -> dict[str, Job]:
        return dict(self._jobs)

    async def initialize(self) -> None:
        self.initialized = True

    async def close(self) -> None:
        self.closed = True

    async def publish(self, job: Job) -> str:
        job_id = str(uuid.uuid4())
        self._jobs[job_id] = job
        self._pending.append(job_id)
        return job_id

    def claim(self) -> tuple[str, Job] | None:
        """Take the highest-priority pending job, oldest first."""
        if not self._pending:
            return None
        best = max(self._pending, key=lambda jid: self._jobs[jid].priority)
        self._pending.remove(best)
        return best, self._jobs[best]


class InMemoryEventLog(EventLog):
    def __init__(self) -> None:
        self._events: list[WorkerEvent] = []
        self.closed = False

    @property
    def events(self) -> list[WorkerEvent]:
        return list(self._events)

    async def close(self) -> None:
        self.closed = True

    async def append(self, event: WorkerEvent) -> None:
        self._events.append(event.model_copy(deep=True))

    async def read_by_job_id(self, site_id: str, job_id: str) -> list[WorkerEvent]:
        return [
            e.model_copy(deep=True)
            for e in self._events
            if e.website_id == site_id and e.job_id == job_id
        ]

    async def read_by_run_id(self, site_id: str, run_id: str) -> list[WorkerEvent]:
        return [
            e.model_copy(deep=True)
            for e in self._events
            if e.website_id == site_id and e.run_id == run_id
        ]
