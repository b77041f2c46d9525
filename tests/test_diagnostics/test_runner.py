"""Tests for DiagnosticsRunner — stage transitions, status, persistence, export."""

from __future__ import annotations

import asyncio
import datetime
import json

import pytest

from sitewarden.core.config import DiagnosticsConfig
from sitewarden.diagnostics.exceptions import DiagnosticsError
from sitewarden.diagnostics.runner import (
    DiagnosticsRunner,
    format_diagnostics_for_copy,
    run_diagnostics_for_service,
)
from sitewarden.diagnostics.store import DiagnosticsStore, InMemoryDiagnosticsStore
from sitewarden.diagnostics.types import (
    STAGE_ORDER,
    AuthMode,
    DiagnosticRecord,
    DiagnosticStage,
    DiagnosticStatus,
    FailureBucket,
    ServiceDiagnosticConfig,
    StageStatus,
)

_T0 = datetime.datetime(2026, 1, 5, 12, 0, 0, tzinfo=datetime.UTC)


# ── Helpers ─────────────────────────────────────────────────────


class _StepClock:
    """Advances by one second per call."""

    def __init__(self) -> None:
        self.now = _T0

    def __call__(self) -> datetime.datetime:
        current = self.now
        self.now = self.now + datetime.timedelta(seconds=1)
        return current


class _BrokenStore(DiagnosticsStore):
    async def create_diagnostic(self, record: DiagnosticRecord) -> None:
        raise RuntimeError("db down")

    async def update_diagnostic(self, run_id: str, **fields: object) -> None:
        raise RuntimeError("db down")

    async def get_diagnostic(self, run_id: str) -> DiagnosticRecord | None:
        return None


def _config(**kw: object) -> ServiceDiagnosticConfig:
    defaults: dict[str, object] = {
        "service_id": "gsc",
        "service_name": "Search Console",
        "site_id": "S1",
        "auth_mode": AuthMode.OAUTH,
        "required_output_fields": ["clicks", "impressions"],
    }
    defaults.update(kw)
    return ServiceDiagnosticConfig(**defaults)  # type: ignore[arg-type]


def _runner(store: DiagnosticsStore | None = None) -> DiagnosticsRunner:
    return DiagnosticsRunner(
        store or InMemoryDiagnosticsStore(),
        config=DiagnosticsConfig(),
        clock=_StepClock(),
    )


async def _pass_all(runner: DiagnosticsRunner) -> None:
    for stage in STAGE_ORDER:
        await runner.pass_stage(stage, "ok")


# ── Start ───────────────────────────────────────────────────────


class TestStart:
    async def test_all_stages_pending(self) -> None:
        runner = _runner()
        run_id = await runner.start(_config())

        assert run_id.startswith("diag_")
        assert runner.active
        assert [s.stage for s in runner.stages] == list(STAGE_ORDER)
        assert all(s.status == StageStatus.PENDING for s in runner.stages)

    async def test_record_persisted(self) -> None:
        store = InMemoryDiagnosticsStore()
        runner = _runner(store)
        run_id = await runner.start(_config())

        record = await store.get_diagnostic(run_id)
        assert record is not None
        assert record.overall_status == DiagnosticStatus.PENDING
        assert record.service_id == "gsc"

    async def test_run_ids_unique(self) -> None:
        runner = _runner()
        first = await runner.start(_config())
        await runner.finish()
        second = await runner.start(_config())
        assert first != second


# ── Stage transitions ──────────────────────────────────────────


class TestStageTransitions:
    async def test_pass_sets_duration_from_run_start(self) -> None:
        runner = _runner()
        await runner.start(_config())  # clock t0
        await runner.pass_stage(DiagnosticStage.CONFIG_LOADED, "3 keys")  # t0+1

        stage = runner.stages[0]
        assert stage.status == StageStatus.PASS
        assert stage.message == "3 keys"
        assert stage.duration_ms == 1000

    async def test_duration_measured_from_previous_finish(self) -> None:
        runner = _runner()
        await runner.start(_config())
        await runner.pass_stage(DiagnosticStage.CONFIG_LOADED, "ok")  # t0+1
        await runner.pass_stage(DiagnosticStage.AUTH_READY, "ok")  # t0+2

        assert runner.stages[1].duration_ms == 1000
        assert runner.stages[1].started_at == runner.stages[0].finished_at

    async def test_duration_none_when_previous_unfinished(self) -> None:
        runner = _runner()
        await runner.start(_config())
        await runner.pass_stage(DiagnosticStage.ENDPOINT_BUILT, "ok")

        assert runner.stages[2].status == StageStatus.PASS
        assert runner.stages[2].duration_ms is None

    async def test_fail_classifies(self) -> None:
        runner = _runner()
        await runner.start(_config())
        await runner.fail_stage(DiagnosticStage.REQUEST_SENT, "HTTP 404", {"status": 404})

        stage = runner.stages[3]
        assert stage.status == StageStatus.FAIL
        assert stage.failure_bucket == FailureBucket.WRONG_ENDPOINT_404
        assert stage.suggested_fix

    async def test_fail_classifies_from_message_alone(self) -> None:
        runner = _runner()
        await runner.start(_config())
        await runner.fail_stage(DiagnosticStage.REQUEST_SENT, "Request timed out")

        assert runner.stages[3].failure_bucket == FailureBucket.TIMEOUT

    async def test_details_redacted(self) -> None:
        runner = _runner()
        await runner.start(_config())
        await runner.pass_stage(
            DiagnosticStage.AUTH_READY, "ok", {"accessToken": "abc", "scopes": 2},
        )

        assert runner.stages[1].details == {"accessToken": "[REDACTED]", "scopes": 2}

    async def test_finished_stage_not_overwritten(self) -> None:
        runner = _runner()
        await runner.start(_config())
        await runner.pass_stage(DiagnosticStage.CONFIG_LOADED, "ok")
        await runner.fail_stage(DiagnosticStage.CONFIG_LOADED, "late failure")

        assert runner.stages[0].status == StageStatus.PASS

    async def test_unknown_stage_ignored(self) -> None:
        runner = _runner()
        await runner.start(_config())
        await runner.pass_stage("not_a_stage", "ok")
        assert all(s.status == StageStatus.PENDING for s in runner.stages)

    async def test_no_active_run_ignored(self) -> None:
        runner = _runner()
        await runner.pass_stage(DiagnosticStage.CONFIG_LOADED, "ok")
        assert runner.stages == ()

    async def test_stages_returns_copies(self) -> None:
        runner = _runner()
        await runner.start(_config())
        runner.stages[0].status = StageStatus.FAIL
        assert runner.stages[0].status == StageStatus.PENDING

    async def test_each_transition_persisted(self) -> None:
        store = InMemoryDiagnosticsStore()
        runner = _runner(store)
        run_id = await runner.start(_config())
        await runner.pass_stage(DiagnosticStage.CONFIG_LOADED, "ok")
        await runner.skip_stage(DiagnosticStage.AUTH_READY, "no auth")

        record = await store.get_diagnostic(run_id)
        assert record is not None
        assert record.stages[0].status == StageStatus.PASS
        assert record.stages[1].status == StageStatus.SKIPPED
        assert store.write_count == 3


# ── Overall status ─────────────────────────────────────────────


class TestOverallStatus:
    async def test_all_pass(self) -> None:
        runner = _runner()
        await runner.start(_config())
        await _pass_all(runner)
        assert runner.compute_overall_status() == DiagnosticStatus.PASS

    async def test_pass_and_skipped_is_pass(self) -> None:
        runner = _runner()
        await runner.start(_config())
        for stage in STAGE_ORDER[:-1]:
            await runner.pass_stage(stage, "ok")
        await runner.skip_stage(STAGE_ORDER[-1], "not applicable")
        assert runner.compute_overall_status() == DiagnosticStatus.PASS

    async def test_any_fail_is_fail(self) -> None:
        runner = _runner()
        await runner.start(_config())
        await runner.pass_stage(DiagnosticStage.CONFIG_LOADED, "ok")
        await runner.fail_stage(DiagnosticStage.AUTH_READY, "401", {"status": 401})
        await runner.skip_stage(DiagnosticStage.ENDPOINT_BUILT, "blocked")
        assert runner.compute_overall_status() == DiagnosticStatus.FAIL

    async def test_pending_left_is_partial(self) -> None:
        runner = _runner()
        await runner.start(_config())
        await runner.pass_stage(DiagnosticStage.CONFIG_LOADED, "ok")
        assert runner.compute_overall_status() == DiagnosticStatus.PARTIAL


# ── Finish ──────────────────────────────────────────────────────


class TestFinish:
    async def test_finish_releases_run(self) -> None:
        store = InMemoryDiagnosticsStore()
        runner = _runner(store)
        run_id = await runner.start(_config())
        await _pass_all(runner)
        stages = await runner.finish()

        assert len(stages) == len(STAGE_ORDER)
        assert not runner.active
        assert runner.last_outcome is not None
        assert runner.last_outcome.status == DiagnosticStatus.PASS

        record = await store.get_diagnostic(run_id)
        assert record is not None
        assert record.overall_status == DiagnosticStatus.PASS
        assert record.finished_at is not None
        assert record.duration_ms == 8000

    async def test_explicit_status(self) -> None:
        runner = _runner()
        await runner.start(_config())
        await runner.finish(DiagnosticStatus.PARTIAL)
        assert runner.last_outcome is not None
        assert runner.last_outcome.status == DiagnosticStatus.PARTIAL

    async def test_finish_without_run(self) -> None:
        assert await _runner().finish() == ()

    async def test_store_failures_do_not_raise(self) -> None:
        runner = _runner(_BrokenStore())
        await runner.start(_config())
        await runner.fail_stage(DiagnosticStage.CONFIG_LOADED, "missing key")
        stages = await runner.finish()
        assert stages[0].status == StageStatus.FAIL


# ── Config snapshot ────────────────────────────────────────────


class TestConfigSnapshot:
    async def test_snapshot_has_names_and_host_only(self) -> None:
        store = InMemoryDiagnosticsStore()
        runner = _runner(store)
        run_id = await runner.start(_config())
        await runner.set_config_snapshot(
            ["base_url", "client_id"], "https://api.example.com/v1?x=1",
        )

        record = await store.get_diagnostic(run_id)
        assert record is not None
        assert record.config_snapshot == {
            "present_settings": ["base_url", "client_id"],
            "resolved_host": "api.example.com",
            "connection_mode": "oauth",
            "required_metrics": ["clicks", "impressions"],
        }

    async def test_snapshot_without_url(self) -> None:
        store = InMemoryDiagnosticsStore()
        runner = _runner(store)
        run_id = await runner.start(_config())
        await runner.set_config_snapshot([])

        record = await store.get_diagnostic(run_id)
        assert record is not None
        assert record.config_snapshot["resolved_host"] is None


# ── run_diagnostics_for_service ────────────────────────────────


class TestRunDiagnosticsForService:
    async def test_executor_success(self) -> None:
        outcome = await run_diagnostics_for_service(
            _config(), _pass_all, InMemoryDiagnosticsStore(), DiagnosticsConfig(),
        )
        assert outcome.status == DiagnosticStatus.PASS
        assert len(outcome.stages) == len(STAGE_ORDER)

    async def test_executor_exception_fails_first_pending(self) -> None:
        async def executor(runner: DiagnosticsRunner) -> None:
            await runner.pass_stage(DiagnosticStage.CONFIG_LOADED, "ok")
            raise ConnectionResetError("peer reset")

        outcome = await run_diagnostics_for_service(
            _config(), executor, InMemoryDiagnosticsStore(), DiagnosticsConfig(),
        )

        assert outcome.status == DiagnosticStatus.FAIL
        failed = outcome.stages[1]
        assert failed.stage == DiagnosticStage.AUTH_READY
        assert failed.status == StageStatus.FAIL
        assert failed.message == "Unexpected error: peer reset"
        assert failed.failure_bucket == FailureBucket.TIMEOUT

    async def test_executor_may_finish_itself(self) -> None:
        async def executor(runner: DiagnosticsRunner) -> None:
            await _pass_all(runner)
            await runner.finish()

        outcome = await run_diagnostics_for_service(
            _config(), executor, InMemoryDiagnosticsStore(), DiagnosticsConfig(),
        )
        assert outcome.status == DiagnosticStatus.PASS

    async def test_cancelled_executor_propagates(self) -> None:
        async def executor(runner: DiagnosticsRunner) -> None:
            raise asyncio.CancelledError

        with pytest.raises(asyncio.CancelledError):
            await run_diagnostics_for_service(
                _config(), executor, InMemoryDiagnosticsStore(), DiagnosticsConfig(),
            )

    def test_diagnostics_error_is_exception(self) -> None:
        assert issubclass(DiagnosticsError, Exception)


# ── Export ──────────────────────────────────────────────────────


class TestFormatForCopy:
    async def test_export_is_json_and_redacted(self) -> None:
        store = InMemoryDiagnosticsStore()
        runner = _runner(store)
        run_id = await runner.start(_config())
        await runner.fail_stage(DiagnosticStage.CONFIG_LOADED, "bad", {"status": 401})
        await runner.finish()

        record = await store.get_diagnostic(run_id)
        assert record is not None
        record.config_snapshot = {"apiKey": "leak-me", "resolved_host": "h"}
        exported = format_diagnostics_for_copy(record)

        data = json.loads(exported)
        assert data["run_id"] == run_id
        assert data["overall_status"] == "fail"
        assert data["stages"][0]["failure_bucket"] == "auth_401_403"
        assert data["config_snapshot"]["apiKey"] == "[REDACTED]"
        assert "leak-me" not in exported
        assert exported.startswith("{\n  ")
