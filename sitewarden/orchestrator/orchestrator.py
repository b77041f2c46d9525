"""QueueOrchestrator — publishes worker jobs and polls the event log for results."""

from __future__ import annotations

import asyncio
import datetime
import math
import time
import uuid
from collections.abc import Awaitable, Callable
from types import TracebackType
from typing import Any

import structlog

from sitewarden.core.config import OrchestratorConfig
from sitewarden.core.logging import bound_context
from sitewarden.orchestrator.exceptions import PublishError
from sitewarden.orchestrator.queue import EventLog, JobQueue
from sitewarden.orchestrator.types import (
    AsyncOrchestrationResult,
    EventType,
    Job,
    JobPayload,
    JobStatus,
    OrchestrationResult,
    RunState,
    RunStatus,
    WorkerCallResult,
    WorkerEvent,
    WorkerStatus,
)
from sitewarden.safety.gate import SafetyGate

logger = structlog.get_logger(__name__)

SleepFn = Callable[[float], Awaitable[Any]]
ClockFn = Callable[[], float]
RunFinishedCallback = Callable[[OrchestrationResult], Awaitable[None] | None]


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


class QueueOrchestrator:
    """Dispatches work to workers through a queue; observes completion via events.

    The orchestrator never talks to a worker directly.  It publishes a job,
    then polls the event log for a ``result`` or ``job_status=failed`` event
    with a bounded number of attempts.  When a SafetyGate is attached, every
    worker call is checked first and a denied call becomes a ``skipped``
    result without touching the queue.

    Usage::

        async with QueueOrchestrator(queue, events, safety=gate) as orch:
            result = await orch.run_orchestration("S1", "example.com", ["serp-intel"])
    """

    def __init__(
        self,
        queue: JobQueue,
        events: EventLog,
        config: OrchestratorConfig | None = None,
        safety: SafetyGate | None = None,
        sleep: SleepFn = asyncio.sleep,
        clock: ClockFn = time.monotonic,
    ) -> None:
        from sitewarden.core.config import get_settings

        self._queue = queue
        self._events = events
        self._config = config or get_settings().orchestrator
        self._safety = safety
        self._sleep = sleep
        self._clock = clock
        self._callbacks: list[RunFinishedCallback] = []

    def _elapsed_ms(self, start: float) -> int:
        return int((self._clock() - start) * 1000)

    # ── Lifecycle ────────────────────────────────────────────────

    async def initialize(self) -> None:
        await self._queue.initialize()
        await self._events.initialize()
        logger.info("orchestrator_initialized")

    async def close(self) -> None:
        await self._queue.close()
        await self._events.close()
        logger.info("orchestrator_closed")

    async def __aenter__(self) -> QueueOrchestrator:
        await self.initialize()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    # ── Callbacks ────────────────────────────────────────────────

    def on_run_finished(self, callback: RunFinishedCallback) -> None:
        """Register a callback invoked with every sequential OrchestrationResult."""
        self._callbacks.append(callback)

    async def _emit(self, result: OrchestrationResult) -> None:
        for cb in self._callbacks:
            try:
                outcome = cb(result)
                if asyncio.iscoroutine(outcome):
                    await outcome
            except Exception:
                logger.exception("run_finished_callback_error", run_id=result.run_id)

    # ── Publish / wait ───────────────────────────────────────────

    async def publish(
        self,
        service: str,
        site_id: str,
        run_id: str,
        domain: str,
        params: dict[str, Any] | None = None,
    ) -> str:
        """Queue one job and record it as ``queued``.  Returns the job id."""
        job = Job(
            type=service,
            payload=JobPayload(
                website_id=site_id,
                run_id=run_id,
                domain=domain,
                action=self._config.job_action,
                params=params or {},
            ),
            priority=self._config.job_priority,
            max_attempts=self._config.job_max_attempts,
        )
        job_id = await self._queue.publish(job)

        await self._events.append(WorkerEvent(
            type=EventType.JOB_STATUS,
            website_id=site_id,
            run_id=run_id,
            job_id=job_id,
            service=service,
            status=JobStatus.QUEUED,
            summary=f"Job queued for {service}",
        ))
        logger.info("job_published", job_id=job_id, service=service, site_id=site_id)
        return job_id

    async def wait_for_completion(
        self,
        job_id: str,
        site_id: str,
        run_id: str,
        service: str,
        timeout_ms: int | None = None,
        poll_interval_ms: int | None = None,
    ) -> WorkerCallResult:
        """Poll until the job succeeds, fails, or the attempt budget runs out.

        The loop makes ``ceil(timeout_ms / poll_interval_ms)`` reads with a
        fixed sleep between them.  Cancelling the awaiting task stops it.
        """
        timeout_ms = timeout_ms if timeout_ms is not None else self._config.job_timeout_ms
        interval_ms = (
            poll_interval_ms if poll_interval_ms is not None
            else self._config.poll_interval_ms
        )
        max_attempts = max(1, math.ceil(timeout_ms / max(interval_ms, 1)))
        start = self._clock()

        logger.debug(
            "job_wait_started",
            job_id=job_id,
            service=service,
            max_attempts=max_attempts,
        )

        for _ in range(max_attempts):
            events = await self._events.read_by_job_id(site_id, job_id)

            result_event = next((e for e in events if e.type == EventType.RESULT), None)
            if result_event is not None:
                duration_ms = self._elapsed_ms(start)
                logger.info(
                    "job_completed",
                    job_id=job_id,
                    service=service,
                    duration_ms=duration_ms,
                )
                metrics = result_event.payload.get("metrics")
                return WorkerCallResult(
                    service=service,
                    status=WorkerStatus.SUCCESS,
                    duration_ms=duration_ms,
                    payload=result_event.payload,
                    metrics=metrics if isinstance(metrics, dict) else {},
                    summary=result_event.summary,
                    job_id=job_id,
                )

            failure_event = next(
                (
                    e for e in events
                    if e.type == EventType.JOB_STATUS and e.status == JobStatus.FAILED
                ),
                None,
            )
            if failure_event is not None:
                duration_ms = self._elapsed_ms(start)
                logger.error(
                    "job_failed",
                    job_id=job_id,
                    service=service,
                    error=failure_event.summary,
                )
                return WorkerCallResult(
                    service=service,
                    status=WorkerStatus.FAILED,
                    duration_ms=duration_ms,
                    summary=failure_event.summary,
                    error_code="JOB_FAILED",
                    error_detail=failure_event.summary or "Job failed",
                    job_id=job_id,
                )

            await self._sleep(interval_ms / 1000.0)

        duration_ms = self._elapsed_ms(start)
        logger.warning(
            "job_timeout",
            job_id=job_id,
            service=service,
            duration_ms=duration_ms,
        )
        return WorkerCallResult(
            service=service,
            status=WorkerStatus.TIMEOUT,
            duration_ms=duration_ms,
            summary=f"Job timed out after {timeout_ms}ms",
            error_code="TIMEOUT",
            error_detail=f"Job did not complete within {timeout_ms}ms",
            job_id=job_id,
        )

    async def call_worker(
        self,
        service: str,
        site_id: str,
        run_id: str,
        domain: str,
        params: dict[str, Any] | None = None,
        timeout_ms: int | None = None,
    ) -> WorkerCallResult:
        """Publish and wait.  Never raises: errors become a ``failed`` result."""
        start = self._clock()
        try:
            if self._safety is not None:
                check = await self._safety.perform_safety_check(
                    service_name=service, site_id=site_id,
                )
                if not check.allowed:
                    logger.warning(
                        "worker_call_blocked",
                        service=service,
                        site_id=site_id,
                        reason=check.reason,
                    )
                    return WorkerCallResult(
                        service=service,
                        status=WorkerStatus.SKIPPED,
                        summary=check.reason,
                        error_code="SAFETY_BLOCKED",
                        error_detail=check.reason,
                    )

            job_id = await self.publish(service, site_id, run_id, domain, params)
            return await self.wait_for_completion(
                job_id, site_id, run_id, service, timeout_ms=timeout_ms,
            )
        except Exception as exc:
            logger.exception("worker_call_error", service=service, site_id=site_id)
            return WorkerCallResult(
                service=service,
                status=WorkerStatus.FAILED,
                duration_ms=self._elapsed_ms(start),
                summary=str(exc),
                error_code="ERROR",
                error_detail=f"{type(exc).__name__}: {exc}",
            )

    # ── Orchestration modes ──────────────────────────────────────

    async def run_orchestration(
        self,
        site_id: str,
        domain: str,
        services: list[str],
        params: dict[str, Any] | None = None,
    ) -> OrchestrationResult:
        """Call each service in order and aggregate the results.

        Calls are serialized: ``workers`` is in the same order as *services*.
        """
        run_id = str(uuid.uuid4())
        started_at = _utcnow()

        with bound_context(run_id=run_id, site_id=site_id):
            logger.info(
                "orchestration_started",
                domain=domain,
                service_count=len(services),
            )
            await self._write_run_status(
                site_id, run_id, RunState.STARTED,
                f"Orchestration started: {len(services)} services",
            )

            workers: list[WorkerCallResult] = []
            for service in services:
                workers.append(
                    await self.call_worker(service, site_id, run_id, domain, params),
                )

            success_count = sum(1 for w in workers if w.status == WorkerStatus.SUCCESS)
            skipped_count = sum(1 for w in workers if w.status == WorkerStatus.SKIPPED)
            failed_count = len(workers) - success_count - skipped_count
            finished_at = _utcnow()

            await self._write_run_status(
                site_id, run_id,
                RunState.COMPLETED if success_count > 0 else RunState.FAILED,
                f"Orchestration completed: {success_count} succeeded,"
                f" {failed_count} failed, {skipped_count} skipped",
            )

            result = OrchestrationResult(
                run_id=run_id,
                site_id=site_id,
                domain=domain,
                started_at=started_at,
                finished_at=finished_at,
                workers=workers,
                success_count=success_count,
                failed_count=failed_count,
                skipped_count=skipped_count,
            )
            logger.info(
                "orchestration_finished",
                success_count=success_count,
                failed_count=failed_count,
                skipped_count=skipped_count,
                duration_ms=result.duration_ms,
            )

        await self._emit(result)
        return result

    async def run_async_orchestration(
        self,
        site_id: str,
        domain: str,
        services: list[str],
        params: dict[str, Any] | None = None,
    ) -> AsyncOrchestrationResult:
        """Publish every job concurrently and return without waiting for results.

        Waits for all publishes to settle.  If any failed, raises PublishError
        listing the failures and the job ids that were published.
        """
        run_id = str(uuid.uuid4())
        allowed: list[str] = []
        skipped: list[str] = []

        with bound_context(run_id=run_id, site_id=site_id):
            for service in services:
                if await self._is_allowed(service, site_id):
                    allowed.append(service)
                else:
                    skipped.append(service)

            logger.info(
                "async_orchestration_started",
                domain=domain,
                service_count=len(allowed),
                skipped=skipped,
            )
            await self._write_run_status(
                site_id, run_id, RunState.STARTED,
                f"Async orchestration started: {len(allowed)} services",
            )

            outcomes = await asyncio.gather(
                *(
                    self.publish(service, site_id, run_id, domain, params)
                    for service in allowed
                ),
                return_exceptions=True,
            )

            job_ids: list[str] = []
            errors: dict[str, BaseException] = {}
            for service, outcome in zip(allowed, outcomes):
                if isinstance(outcome, BaseException):
                    errors[service] = outcome
                else:
                    job_ids.append(outcome)

            if errors:
                logger.error(
                    "async_orchestration_publish_failed",
                    failed_services=sorted(errors),
                    published=len(job_ids),
                )
                raise PublishError(run_id, errors, job_ids)

            logger.info("async_orchestration_queued", job_ids=job_ids)

        return AsyncOrchestrationResult(
            run_id=run_id,
            job_ids=job_ids,
            skipped_services=skipped,
        )

    async def get_run_status(self, site_id: str, run_id: str) -> RunStatus:
        """Derive run progress from every event recorded for *run_id*."""
        events = await self._events.read_by_run_id(site_id, run_id)

        job_status_events = [e for e in events if e.type == EventType.JOB_STATUS]
        # Counted per job: the event log may redeliver a status.
        completed = len({
            e.job_id for e in job_status_events if e.status == JobStatus.COMPLETED and e.job_id
        })
        failed = len({
            e.job_id for e in job_status_events if e.status == JobStatus.FAILED and e.job_id
        })
        total = len({e.job_id for e in events if e.job_id})

        # Ties on created_at go to the later-read event.
        latest: WorkerEvent | None = None
        for event in events:
            if event.type != EventType.RUN_STATUS:
                continue
            if latest is None or event.created_at >= latest.created_at:
                latest = event
        status = latest.status if latest is not None and latest.status else RunState.UNKNOWN

        return RunStatus(
            run_id=run_id,
            status=status,
            completed_jobs=completed,
            failed_jobs=failed,
            total_jobs=total,
        )

    # ── Internal ─────────────────────────────────────────────────

    async def _is_allowed(self, service: str, site_id: str) -> bool:
        if self._safety is None:
            return True
        try:
            check = await self._safety.perform_safety_check(
                service_name=service, site_id=site_id,
            )
        except Exception:
            # An unreadable gate blocks the service.
            logger.exception("safety_check_failed", service=service, site_id=site_id)
            return False
        if not check.allowed:
            logger.warning("job_publish_blocked", service=service, reason=check.reason)
        return check.allowed

    async def _write_run_status(
        self,
        site_id: str,
        run_id: str,
        status: RunState,
        summary: str,
    ) -> None:
        try:
            await self._events.append(WorkerEvent(
                type=EventType.RUN_STATUS,
                website_id=site_id,
                run_id=run_id,
                status=status,
                summary=summary,
            ))
        except Exception:
            logger.exception("run_status_write_failed", status=status.value)
