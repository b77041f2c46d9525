"""Pure functions that convert control-plane outcomes into NotificationRequests.

Each formatter returns ``None`` when the outcome is not worth a notification
(a successful worker call, a passing diagnostic run).
"""

from __future__ import annotations

from sitewarden.diagnostics.types import DiagnosticOutcome, DiagnosticStatus, StageStatus
from sitewarden.notify.types import NotificationRequest, Severity
from sitewarden.orchestrator.types import OrchestrationResult, WorkerCallResult, WorkerStatus
from sitewarden.safety.types import AuditAction, AuditLogEntry, KillSwitchScope

WORKER_FAILURE = "worker_failure"
ORCHESTRATION_FAILURE = "orchestration_failure"
CONNECTOR_FAILURE = "connector_failure"
KILL_SWITCH_CHANGED = "kill_switch_changed"
SYSTEM_MODE_CHANGED = "system_mode_changed"

# ── Severity mappings ───────────────────────────────────────────

_WORKER_SEVERITY: dict[WorkerStatus, Severity] = {
    WorkerStatus.FAILED: Severity.WARNING,
    WorkerStatus.TIMEOUT: Severity.WARNING,
}

_AUDIT_SEVERITY: dict[AuditAction, Severity] = {
    AuditAction.KILL_SWITCH_ACTIVATED: Severity.CRITICAL,
    AuditAction.KILL_SWITCH_DEACTIVATED: Severity.INFO,
    AuditAction.MODE_CHANGED: Severity.WARNING,
}


# ── Formatters ──────────────────────────────────────────────────


def format_worker_failure(
    result: WorkerCallResult,
    site_id: str,
    run_id: str | None = None,
) -> NotificationRequest | None:
    """A failed or timed-out worker call.  Deduplicated per service."""
    severity = _WORKER_SEVERITY.get(result.status)
    if severity is None:
        return None

    verb = "timed out" if result.status == WorkerStatus.TIMEOUT else "failed"
    return NotificationRequest(
        website_id=site_id,
        event_type=WORKER_FAILURE,
        severity=severity,
        title=f"Worker {result.service} {verb}",
        summary=result.error_detail or result.summary,
        payload={
            "service": result.service,
            "status": result.status.value,
            "error_code": result.error_code,
            "job_id": result.job_id,
            "run_id": run_id,
            "duration_ms": result.duration_ms,
        },
        dedup_key=f"{WORKER_FAILURE}:{result.service}",
    )


def format_orchestration_result(result: OrchestrationResult) -> NotificationRequest | None:
    """One notification per run with at least one failed or timed-out worker.

    Critical when nothing succeeded, warning otherwise.
    """
    if result.failed_count == 0:
        return None

    failed = [
        w for w in result.workers
        if w.status in (WorkerStatus.FAILED, WorkerStatus.TIMEOUT)
    ]
    severity = Severity.CRITICAL if result.success_count == 0 else Severity.WARNING
    lines = [f"{w.service}: {w.status.value} ({w.error_detail or w.summary or 'no detail'})"
             for w in failed]

    return NotificationRequest(
        website_id=result.site_id,
        event_type=ORCHESTRATION_FAILURE,
        severity=severity,
        title=(
            f"{result.failed_count} of {len(result.workers)} workers failed"
            f" for {result.domain}"
        ),
        summary="; ".join(lines),
        payload={
            "run_id": result.run_id,
            "domain": result.domain,
            "success_count": result.success_count,
            "failed_count": result.failed_count,
            "skipped_count": result.skipped_count,
            "failed_services": [w.service for w in failed],
            "duration_ms": result.duration_ms,
        },
    )


def format_diagnostic_outcome(
    outcome: DiagnosticOutcome,
    site_id: str,
    service_name: str,
) -> NotificationRequest | None:
    """A failed connector diagnostic run, summarised by its first failing stage."""
    if outcome.status != DiagnosticStatus.FAIL:
        return None

    first_failure = next((s for s in outcome.stages if s.status == StageStatus.FAIL), None)
    payload: dict[str, object] = {
        "run_id": outcome.run_id,
        "request_id": outcome.request_id,
        "service_name": service_name,
    }
    summary = None
    if first_failure is not None:
        payload["stage"] = first_failure.stage.value
        payload["failure_bucket"] = (
            first_failure.failure_bucket.value if first_failure.failure_bucket else None
        )
        summary = f"{first_failure.stage.value}: {first_failure.message}"
        if first_failure.suggested_fix:
            summary += f". {first_failure.suggested_fix}"

    return NotificationRequest(
        website_id=site_id,
        event_type=CONNECTOR_FAILURE,
        severity=Severity.WARNING,
        title=f"Connector check failed for {service_name}",
        summary=summary,
        payload=payload,
        dedup_key=f"{CONNECTOR_FAILURE}:{service_name}",
    )


def format_safety_change(
    entry: AuditLogEntry,
    operations_site_id: str = "global",
) -> NotificationRequest:
    """A kill switch flip or mode change.

    Website switches go to that website's recipients; global and service
    changes go to *operations_site_id*.
    """
    details = entry.details
    if details.target_type == KillSwitchScope.WEBSITE and details.target_id:
        site_id = details.target_id
    else:
        site_id = operations_site_id

    target = details.target_id or details.target_type.value
    if entry.action == AuditAction.MODE_CHANGED:
        event_type = SYSTEM_MODE_CHANGED
        new_mode = details.new_value.get("mode") if isinstance(details.new_value, dict) else None
        title = f"System mode changed to {new_mode or 'unknown'}"
    else:
        event_type = KILL_SWITCH_CHANGED
        state = "activated" if entry.action == AuditAction.KILL_SWITCH_ACTIVATED else "deactivated"
        title = f"{details.target_type.value.capitalize()} kill switch {state}: {target}"

    return NotificationRequest(
        website_id=site_id,
        event_type=event_type,
        severity=_AUDIT_SEVERITY[entry.action],
        title=title,
        summary=details.reason,
        payload={
            "action": entry.action.value,
            "actor": entry.actor,
            "target_type": details.target_type.value,
            "target_id": details.target_id,
            "timestamp": entry.timestamp.isoformat(),
        },
        dedup_key=f"{event_type}:{details.target_type.value}:{target}:{entry.action.value}",
    )
