"""Domain types for connector diagnostic runs."""

from __future__ import annotations

import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class DiagnosticStage(StrEnum):
    """Fixed, ordered sequence of checks in a connector diagnostic run."""

    CONFIG_LOADED = "config_loaded"
    AUTH_READY = "auth_ready"
    ENDPOINT_BUILT = "endpoint_built"
    REQUEST_SENT = "request_sent"
    RESPONSE_TYPE_VALIDATED = "response_type_validated"
    SCHEMA_VALIDATED = "schema_validated"
    UI_MAPPING = "ui_mapping"


# Declaration order is evaluation order.
STAGE_ORDER: tuple[DiagnosticStage, ...] = tuple(DiagnosticStage)


class StageStatus(StrEnum):
    PENDING = "pending"
    PASS = "pass"
    FAIL = "fail"
    SKIPPED = "skipped"


class DiagnosticStatus(StrEnum):
    """Run-level status.  PENDING until the run is finished."""

    PENDING = "pending"
    PASS = "pass"
    PARTIAL = "partial"
    FAIL = "fail"


class FailureBucket(StrEnum):
    """Failure taxonomy used to explain why a check failed."""

    TIMEOUT = "timeout"
    DNS = "dns"
    WRONG_ENDPOINT_404 = "wrong_endpoint_404"
    AUTH_401_403 = "auth_401_403"
    REDIRECT_3XX = "redirect_3xx"
    HTML_200_APP_SHELL = "html_200_app_shell"
    UNKNOWN = "unknown"


class Classification(BaseModel):
    """Classifier output: a bucket plus its pre-written remediation hint."""

    model_config = ConfigDict(frozen=True)

    bucket: FailureBucket
    suggested_fix: str


class AuthMode(StrEnum):
    OAUTH = "oauth"
    API_KEY = "api_key"
    NONE = "none"


class ResponseType(StrEnum):
    JSON = "json"
    HTML = "html"
    TEXT = "text"


class ServiceDiagnosticConfig(BaseModel):
    """What is being checked: one service, optionally scoped to one site."""

    service_id: str
    service_name: str
    site_id: str | None = None
    auth_mode: AuthMode = AuthMode.NONE
    expected_response_type: ResponseType = ResponseType.JSON
    required_output_fields: list[str] = Field(default_factory=list)
    trigger: str = "manual"


class StageResult(BaseModel):
    """Outcome of one stage.

    ``duration_ms`` is measured from the previous stage's finish time (or
    run start for the first stage) and stays ``None`` while the previous
    stage is unfinished.
    """

    stage: DiagnosticStage
    status: StageStatus = StageStatus.PENDING
    message: str = "Not started"
    failure_bucket: FailureBucket | None = None
    suggested_fix: str | None = None
    details: dict[str, Any] | None = None
    started_at: datetime.datetime | None = None
    finished_at: datetime.datetime | None = None
    duration_ms: int | None = None


class DiagnosticRecord(BaseModel):
    """Persisted audit record of one diagnostic run."""

    run_id: str
    request_id: str
    service_id: str
    service_name: str
    site_id: str | None = None
    trigger: str = "manual"
    overall_status: DiagnosticStatus = DiagnosticStatus.PENDING
    stages: list[StageResult] = Field(default_factory=list)
    config_snapshot: dict[str, Any] = Field(default_factory=dict)
    auth_mode: AuthMode = AuthMode.NONE
    expected_response_type: ResponseType = ResponseType.JSON
    required_output_fields: list[str] = Field(default_factory=list)
    started_at: datetime.datetime
    finished_at: datetime.datetime | None = None
    duration_ms: int | None = None


class DiagnosticOutcome(BaseModel):
    """Return value of a complete diagnostic run."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    request_id: str
    status: DiagnosticStatus
    stages: tuple[StageResult, ...] = ()
