"""DiagnosticsRunner — instruments one connector check as an ordered stage run."""

from __future__ import annotations

import datetime
import json
import secrets
import time
import uuid
from collections.abc import Awaitable, Callable, Mapping
from typing import Any
from urllib.parse import urlparse

import structlog

from sitewarden.core.config import DiagnosticsConfig
from sitewarden.diagnostics.classifier import classify
from sitewarden.diagnostics.exceptions import DiagnosticsError
from sitewarden.diagnostics.redaction import REDACTED, redact_secrets
from sitewarden.diagnostics.store import DiagnosticsStore
from sitewarden.diagnostics.types import (
    STAGE_ORDER,
    DiagnosticOutcome,
    DiagnosticRecord,
    DiagnosticStage,
    DiagnosticStatus,
    ServiceDiagnosticConfig,
    StageResult,
    StageStatus,
)

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime.datetime]
DiagnosticExecutor = Callable[["DiagnosticsRunner"], Awaitable[None]]


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


def generate_run_id() -> str:
    """``diag_<epoch ms>_<6 random chars>``."""
    return f"diag_{int(time.time() * 1000)}_{secrets.token_hex(3)}"


def _elapsed_ms(start: datetime.datetime, end: datetime.datetime) -> int:
    return int((end - start).total_seconds() * 1000)


class DiagnosticsRunner:
    """Owns one diagnostic run at a time.

    Stage transitions never raise: instrumentation must not crash the work
    it observes.  Calls made with no active run, for an unknown stage, or for
    a stage that already finished are logged and ignored.

    Usage::

        runner = DiagnosticsRunner(store)
        await runner.start(config)
        await runner.pass_stage(DiagnosticStage.CONFIG_LOADED, "3 keys present")
        await runner.fail_stage(DiagnosticStage.AUTH_READY, "401", {"status": 401})
        stages = await runner.finish()
    """

    def __init__(
        self,
        store: DiagnosticsStore,
        config: DiagnosticsConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        from sitewarden.core.config import get_settings

        self._store = store
        self._config = config or get_settings().diagnostics
        self._clock = clock or _utcnow
        self._record: DiagnosticRecord | None = None
        self._service_config: ServiceDiagnosticConfig | None = None
        self._last_outcome: DiagnosticOutcome | None = None

    # ── Properties ────────────────────────────────────────────────

    @property
    def active(self) -> bool:
        return self._record is not None

    @property
    def run_id(self) -> str | None:
        return self._record.run_id if self._record else None

    @property
    def request_id(self) -> str | None:
        return self._record.request_id if self._record else None

    @property
    def stages(self) -> tuple[StageResult, ...]:
        """Copies of the current stage results (empty when no run is active)."""
        if self._record is None:
            return ()
        return tuple(s.model_copy(deep=True) for s in self._record.stages)

    @property
    def last_outcome(self) -> DiagnosticOutcome | None:
        """Outcome of the most recently finished run."""
        return self._last_outcome

    # ── Lifecycle ─────────────────────────────────────────────────

    async def start(self, config: ServiceDiagnosticConfig) -> str:
        """Begin a run: every declared stage starts as pending."""
        if self._record is not None:
            logger.warning(
                "diagnostic_run_replaced",
                previous_run_id=self._record.run_id,
            )

        record = DiagnosticRecord(
            run_id=generate_run_id(),
            request_id=str(uuid.uuid4()),
            service_id=config.service_id,
            service_name=config.service_name,
            site_id=config.site_id,
            trigger=config.trigger,
            stages=[StageResult(stage=stage) for stage in STAGE_ORDER],
            auth_mode=config.auth_mode,
            expected_response_type=config.expected_response_type,
            required_output_fields=list(config.required_output_fields),
            started_at=self._clock(),
        )
        self._record = record
        self._service_config = config

        try:
            await self._store.create_diagnostic(record)
        except Exception:
            logger.exception("diagnostic_persist_failed", run_id=record.run_id, op="create")

        logger.info(
            "diagnostic_run_started",
            run_id=record.run_id,
            request_id=record.request_id,
            service_id=config.service_id,
        )
        return record.run_id

    async def pass_stage(
        self,
        stage: DiagnosticStage | str,
        message: str,
        details: Mapping[str, Any] | None = None,
    ) -> None:
        await self._update_stage(stage, StageStatus.PASS, message, details)

    async def fail_stage(
        self,
        stage: DiagnosticStage | str,
        message: str,
        details: Mapping[str, Any] | None = None,
    ) -> None:
        await self._update_stage(stage, StageStatus.FAIL, message, details)

    async def skip_stage(
        self,
        stage: DiagnosticStage | str,
        message: str,
        details: Mapping[str, Any] | None = None,
    ) -> None:
        await self._update_stage(stage, StageStatus.SKIPPED, message, details)

    async def set_config_snapshot(
        self,
        present_settings: list[str],
        resolved_base_url: str | None = None,
    ) -> None:
        """Record which settings were resolved: names and host only, never values."""
        if self._record is None or self._service_config is None:
            logger.warning("diagnostic_no_active_run", op="config_snapshot")
            return

        host = urlparse(resolved_base_url).netloc if resolved_base_url else ""
        limit = self._config.snapshot_max_required_fields
        snapshot = {
            "present_settings": list(present_settings),
            "resolved_host": host or None,
            "connection_mode": self._service_config.auth_mode.value,
            "required_metrics": self._service_config.required_output_fields[:limit],
        }
        self._record.config_snapshot = redact_secrets(
            snapshot, self._config.redaction_marker,
        )
        await self._persist(config_snapshot=self._record.config_snapshot)

    def compute_overall_status(self) -> DiagnosticStatus:
        """FAIL if any stage failed, PASS if all passed or skipped, else PARTIAL."""
        if self._record is None:
            return DiagnosticStatus.FAIL
        statuses = [s.status for s in self._record.stages]
        if StageStatus.FAIL in statuses:
            return DiagnosticStatus.FAIL
        if all(s in (StageStatus.PASS, StageStatus.SKIPPED) for s in statuses):
            return DiagnosticStatus.PASS
        return DiagnosticStatus.PARTIAL

    async def finish(
        self,
        overall_status: DiagnosticStatus | None = None,
    ) -> tuple[StageResult, ...]:
        """Close the run and release it.  Returns an immutable stage snapshot."""
        record = self._record
        if record is None:
            return ()

        status = overall_status or self.compute_overall_status()
        now = self._clock()
        record.overall_status = status
        record.finished_at = now
        record.duration_ms = _elapsed_ms(record.started_at, now)

        await self._persist(
            overall_status=status,
            stages=[s.model_copy(deep=True) for s in record.stages],
            finished_at=now,
            duration_ms=record.duration_ms,
        )

        stages = self.stages
        self._last_outcome = DiagnosticOutcome(
            run_id=record.run_id,
            request_id=record.request_id,
            status=status,
            stages=stages,
        )
        logger.info(
            "diagnostic_run_finished",
            run_id=record.run_id,
            status=status.value,
            duration_ms=record.duration_ms,
        )
        self._record = None
        self._service_config = None
        return stages

    # ── Internal ─────────────────────────────────────────────────

    async def _update_stage(
        self,
        stage: DiagnosticStage | str,
        status: StageStatus,
        message: str,
        details: Mapping[str, Any] | None,
    ) -> None:
        record = self._record
        if record is None:
            logger.warning("diagnostic_no_active_run", stage=str(stage))
            return

        try:
            stage_key = DiagnosticStage(stage)
        except ValueError:
            logger.warning("diagnostic_unknown_stage", stage=str(stage), run_id=record.run_id)
            return

        index = STAGE_ORDER.index(stage_key)
        result = record.stages[index]
        if result.status != StageStatus.PENDING:
            logger.warning(
                "diagnostic_stage_already_finished",
                stage=stage_key.value,
                status=result.status.value,
                run_id=record.run_id,
            )
            return

        now = self._clock()
        # Measured from the previous stage's finish, not this stage's start.
        if index == 0:
            anchor: datetime.datetime | None = record.started_at
        else:
            anchor = record.stages[index - 1].finished_at

        result.status = status
        result.message = message
        result.finished_at = now
        result.started_at = anchor or now
        result.duration_ms = _elapsed_ms(anchor, now) if anchor is not None else None
        result.details = (
            redact_secrets(details, self._config.redaction_marker) if details else None
        )

        if status == StageStatus.FAIL:
            evidence: dict[str, Any] = dict(details or {})
            evidence.setdefault("message", message)
            classification = classify(evidence)
            result.failure_bucket = classification.bucket
            result.suggested_fix = classification.suggested_fix

        await self._persist(stages=[s.model_copy(deep=True) for s in record.stages])

        logger.debug(
            "diagnostic_stage_updated",
            run_id=record.run_id,
            stage=stage_key.value,
            status=status.value,
            failure_bucket=result.failure_bucket,
        )

    async def _persist(self, **fields: Any) -> None:
        if self._record is None:
            return
        run_id = self._record.run_id
        try:
            await self._store.update_diagnostic(run_id, **fields)
        except Exception:
            logger.exception(
                "diagnostic_persist_failed",
                run_id=run_id,
                fields=sorted(fields),
            )


async def run_diagnostics_for_service(
    config: ServiceDiagnosticConfig,
    executor: DiagnosticExecutor,
    store: DiagnosticsStore,
    diagnostics_config: DiagnosticsConfig | None = None,
) -> DiagnosticOutcome:
    """Run *executor* under a fresh DiagnosticsRunner.

    If the executor raises, the first still-pending stage is failed with the
    exception's message and type, so every run reaches a terminal status.
    """
    runner = DiagnosticsRunner(store, config=diagnostics_config)
    await runner.start(config)

    try:
        await executor(runner)
    except Exception as exc:
        logger.warning(
            "diagnostic_executor_error",
            run_id=runner.run_id,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        pending = next(
            (s for s in runner.stages if s.status == StageStatus.PENDING),
            None,
        )
        if pending is not None:
            await runner.fail_stage(
                pending.stage,
                f"Unexpected error: {exc}",
                {"errorType": type(exc).__name__, "errorMessage": str(exc)},
            )

    if runner.active:
        await runner.finish(runner.compute_overall_status())

    # The executor may have finished the run itself.
    outcome = runner.last_outcome
    if outcome is None:
        raise DiagnosticsError("Diagnostic run ended without an outcome")
    return outcome


def format_diagnostics_for_copy(
    record: DiagnosticRecord,
    marker: str = REDACTED,
) -> str:
    """Render a run as pretty JSON for pasting into a support ticket."""
    export = {
        "run_id": record.run_id,
        "request_id": record.request_id,
        "service_id": record.service_id,
        "service_name": record.service_name,
        "overall_status": record.overall_status.value,
        "stages": [
            {
                "stage": s.stage.value,
                "status": s.status.value,
                "message": s.message,
                "duration_ms": s.duration_ms,
                "failure_bucket": s.failure_bucket.value if s.failure_bucket else None,
                "suggested_fix": s.suggested_fix,
                "details": redact_secrets(s.details, marker) if s.details else None,
            }
            for s in record.stages
        ],
        "config_snapshot": (
            redact_secrets(record.config_snapshot, marker)
            if record.config_snapshot
            else None
        ),
    }
    return json.dumps(export, indent=2, default=str)
