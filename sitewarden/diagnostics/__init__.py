"""Connector diagnostics — stage runner, failure classifier, secret redaction."""

from sitewarden.diagnostics.classifier import SUGGESTED_FIXES, classify
from sitewarden.diagnostics.exceptions import DiagnosticsError
from sitewarden.diagnostics.redaction import REDACTED, redact_secrets
from sitewarden.diagnostics.runner import (
    DiagnosticExecutor,
    DiagnosticsRunner,
    format_diagnostics_for_copy,
    run_diagnostics_for_service,
)
from sitewarden.diagnostics.store import DiagnosticsStore, InMemoryDiagnosticsStore
from sitewarden.diagnostics.types import (
    STAGE_ORDER,
    AuthMode,
    Classification,
    DiagnosticOutcome,
    DiagnosticRecord,
    DiagnosticStage,
    DiagnosticStatus,
    FailureBucket,
    ResponseType,
    ServiceDiagnosticConfig,
    StageResult,
    StageStatus,
)

__all__ = [
    "REDACTED",
    "STAGE_ORDER",
    "SUGGESTED_FIXES",
    "AuthMode",
    "Classification",
    "DiagnosticExecutor",
    "DiagnosticOutcome",
    "DiagnosticRecord",
    "DiagnosticStage",
    "DiagnosticStatus",
    "DiagnosticsError",
    "DiagnosticsRunner",
    "DiagnosticsStore",
    "FailureBucket",
    "InMemoryDiagnosticsStore",
    "ResponseType",
    "ServiceDiagnosticConfig",
    "StageResult",
    "StageStatus",
    "classify",
    "format_diagnostics_for_copy",
    "redact_secrets",
    "run_diagnostics_for_service",
]
