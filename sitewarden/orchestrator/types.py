"""Domain types for job dispatch and worker completion tracking."""

from __future__ import annotations

import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


class ServiceName(StrEnum):
    """Canonical worker names.  Any string is accepted as a service."""

    COMPETITIVE_SNAPSHOT = "competitive-intel"
    SERP_INTEL = "serp-intel"
    CRAWL_RENDER = "technical-seo"
    CORE_WEB_VITALS = "vital-monitor"
    CONTENT_GENERATOR = "blog-writer"
    CONTENT_QA = "content-qa"
    CONTENT_DECAY = "decay-monitor"
    BACKLINK_AUTHORITY = "domain-authority"
    NOTIFICATIONS = "notification"
    GOOGLE_ADS = "google-ads"


class EventType(StrEnum):
    RESULT = "result"
    JOB_STATUS = "job_status"
    RUN_STATUS = "run_status"


class JobStatus(StrEnum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class RunState(StrEnum):
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"
    UNKNOWN = "unknown"


class WorkerStatus(StrEnum):
    SUCCESS = "success"
    FAILED = "failed"
    TIMEOUT = "timeout"
    SKIPPED = "skipped"


class JobPayload(BaseModel):
    website_id: str
    run_id: str
    domain: str
    action: str = "analyze"
    params: dict[str, Any] = Field(default_factory=dict)


class Job(BaseModel):
    """Unit of work handed to the queue.  Never mutated after publish."""

    model_config = ConfigDict(frozen=True)

    type: str
    payload: JobPayload
    priority: int = 5
    max_attempts: int = 3


class WorkerEvent(BaseModel):
    """One row of the append-only worker event log."""

    type: EventType
    website_id: str
    run_id: str | None = None
    job_id: str | None = None
    service: str | None = None
    status: str | None = None
    summary: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime.datetime = Field(default_factory=_utcnow)


class WorkerCallResult(BaseModel):
    """Terminal outcome of one job, as seen by the orchestrator."""

    model_config = ConfigDict(frozen=True)

    service: str
    status: WorkerStatus
    duration_ms: int = 0
    payload: Any = None
    metrics: dict[str, Any] = Field(default_factory=dict)
    summary: str | None = None
    error_code: str | None = None
    error_detail: str | None = None
    job_id: str | None = None


class OrchestrationResult(BaseModel):
    """Aggregate of a sequential orchestration run, in service order."""

    run_id: str
    site_id: str
    domain: str
    started_at: datetime.datetime
    finished_at: datetime.datetime
    workers: list[WorkerCallResult] = Field(default_factory=list)
    success_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0

    @property
    def duration_ms(self) -> int:
        return int((self.finished_at - self.started_at).total_seconds() * 1000)


class AsyncOrchestrationResult(BaseModel):
    run_id: str
    job_ids: list[str] = Field(default_factory=list)
    skipped_services: list[str] = Field(default_factory=list)


class RunStatus(BaseModel):
    """Progress of a run derived from the event log."""

    run_id: str
    status: str = RunState.UNKNOWN
    completed_jobs: int = 0
    failed_jobs: int = 0
    total_jobs: int = 0
