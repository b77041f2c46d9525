"""Convenience factory for wiring the control plane."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any

import structlog

from sitewarden.core.config import Settings, get_settings
from sitewarden.diagnostics.runner import DiagnosticExecutor, run_diagnostics_for_service
from sitewarden.diagnostics.store import DiagnosticsStore, InMemoryDiagnosticsStore
from sitewarden.diagnostics.types import DiagnosticOutcome, ServiceDiagnosticConfig
from sitewarden.notify.formatters import (
    format_diagnostic_outcome,
    format_orchestration_result,
    format_safety_change,
    format_worker_failure,
)
from sitewarden.notify.pipeline import NotificationService
from sitewarden.notify.store import InMemoryNotificationStore, NotificationStore
from sitewarden.notify.transport import DisabledTransport, EmailTransport, SendGridTransport
from sitewarden.notify.types import NotificationRequest
from sitewarden.orchestrator.orchestrator import QueueOrchestrator
from sitewarden.orchestrator.queue import EventLog, InMemoryEventLog, InMemoryJobQueue, JobQueue
from sitewarden.orchestrator.types import WorkerCallResult
from sitewarden.safety.gate import SafetyGate
from sitewarden.safety.store import ConfigStore, InMemoryConfigStore

logger = structlog.get_logger(__name__)


@dataclass
class ControlPlane:
    """The wired components.  Terminal outcomes are forwarded to ``notifications``."""

    settings: Settings
    gate: SafetyGate
    orchestrator: QueueOrchestrator
    notifications: NotificationService
    diagnostics_store: DiagnosticsStore

    async def notify(self, request: NotificationRequest | None) -> None:
        if request is None:
            return
        try:
            result = await self.notifications.process_event(request)
        except Exception:
            logger.exception(
                "control_plane_notify_failed",
                event_type=request.event_type,
                site_id=request.website_id,
            )
            return
        logger.debug(
            "control_plane_notified",
            event_type=request.event_type,
            event_id=result.event_id,
        )

    async def call_worker(
        self,
        service: str,
        site_id: str,
        domain: str,
        params: dict[str, Any] | None = None,
    ) -> WorkerCallResult:
        """One-off worker call outside a run; failures are notified."""
        run_id = str(uuid.uuid4())
        result = await self.orchestrator.call_worker(service, site_id, run_id, domain, params)
        await self.notify(format_worker_failure(result, site_id, run_id))
        return result

    async def run_diagnostics(
        self,
        config: ServiceDiagnosticConfig,
        executor: DiagnosticExecutor,
    ) -> DiagnosticOutcome:
        """Run a connector check; a failing run is notified to the site (if any)."""
        outcome = await run_diagnostics_for_service(
            config, executor, self.diagnostics_store, self.settings.diagnostics,
        )
        site_id = config.site_id or self.settings.notifications.operations_site_id
        await self.notify(format_diagnostic_outcome(outcome, site_id, config.service_name))
        return outcome

    async def close(self) -> None:
        await self.orchestrator.close()
        await self.notifications.close()


def create_transport(settings: Settings) -> EmailTransport:
    """SendGrid when email is enabled, otherwise a transport that never sends.

    Raises EmailConfigError when email is enabled without an API key.
    """
    if settings.email.enabled:
        return SendGridTransport(settings.email)
    return DisabledTransport()


def create_control_plane(
    settings: Settings | None = None,
    *,
    queue: JobQueue | None = None,
    events: EventLog | None = None,
    config_store: ConfigStore | None = None,
    diagnostics_store: DiagnosticsStore | None = None,
    notification_store: NotificationStore | None = None,
    transport: EmailTransport | None = None,
) -> ControlPlane:
    """Build gate, orchestrator and notification pipeline from settings.

    Collaborators default to the in-memory implementations.  Orchestration
    runs and safety changes are forwarded to the notification pipeline.
    """
    settings = settings or get_settings()

    gate = SafetyGate(config_store or InMemoryConfigStore())
    orchestrator = QueueOrchestrator(
        queue or InMemoryJobQueue(),
        events or InMemoryEventLog(),
        config=settings.orchestrator,
        safety=gate,
    )
    notifications = NotificationService(
        notification_store or InMemoryNotificationStore(),
        transport or create_transport(settings),
        config=settings.notifications,
    )

    plane = ControlPlane(
        settings=settings,
        gate=gate,
        orchestrator=orchestrator,
        notifications=notifications,
        diagnostics_store=diagnostics_store or InMemoryDiagnosticsStore(),
    )

    ops_site_id = settings.notifications.operations_site_id
    orchestrator.on_run_finished(lambda r: plane.notify(format_orchestration_result(r)))
    gate.on_change(lambda e: plane.notify(format_safety_change(e, ops_site_id)))

    logger.info(
        "control_plane_created",
        email_enabled=notifications.is_email_configured(),
    )
    return plane
