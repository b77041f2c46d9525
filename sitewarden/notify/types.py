"""Domain types for the notification pipeline."""

from __future__ import annotations

import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


class Severity(StrEnum):
    """Notification severity.  Ordered: info < warning < critical."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER[self]


_SEVERITY_ORDER: dict[Severity, int] = {
    Severity.INFO: 0,
    Severity.WARNING: 1,
    Severity.CRITICAL: 2,
}


def severity_meets_minimum(severity: str, minimum: str) -> bool:
    """``severity >= minimum``.  Unknown values rank as ``info``."""
    return _rank(severity) >= _rank(minimum)


def _rank(value: str) -> int:
    try:
        return Severity(value).rank
    except ValueError:
        return 0


class DeliveryStatus(StrEnum):
    SENT = "sent"
    FAILED = "failed"


class NotificationRequest(BaseModel):
    """Incoming event, as accepted by the ingestion endpoint."""

    website_id: str
    event_type: str
    severity: Severity
    title: str
    summary: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    dedup_key: str | None = None

    @property
    def effective_dedup_key(self) -> str:
        return self.dedup_key or self.event_type


class NotificationEvent(BaseModel):
    """A persisted event.  Stored once, never modified."""

    model_config = ConfigDict(frozen=True)

    id: int
    website_id: str
    event_type: str
    severity: Severity
    title: str
    summary: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    dedup_key: str
    source: str = "sitewarden"
    occurred_at: datetime.datetime = Field(default_factory=_utcnow)


class NotificationDelivery(BaseModel):
    """One send attempt for one (event, recipient) pair."""

    event_id: int
    website_id: str
    channel: str = "email"
    recipient: str
    subject: str
    template_id: str
    provider_message_id: str | None = None
    status: DeliveryStatus
    error_code: str | None = None
    error_message: str | None = None
    attempt_count: int = 1
    last_attempt_at: datetime.datetime = Field(default_factory=_utcnow)


class Suppression(BaseModel):
    """Blocks redelivery of a dedup key for a site until ``suppressed_until``."""

    website_id: str
    dedup_key: str
    suppressed_until: datetime.datetime
    reason: str


class NotificationSettings(BaseModel):
    """Per-site delivery settings.  Quiet hours are ``HH:MM`` local times."""

    website_id: str
    timezone: str = "America/Chicago"
    quiet_hours_start: str | None = "21:00"
    quiet_hours_end: str | None = "07:00"
    from_name: str | None = None
    from_email: str | None = None
    reply_to_email: str | None = None
    enabled: bool = True


class NotificationRecipient(BaseModel):
    website_id: str
    email: str
    name: str | None = None
    role: str = "admin"
    enabled: bool = True


class NotificationRule(BaseModel):
    website_id: str
    event_type: str
    min_severity: Severity = Severity.INFO
    throttle_minutes: int = 30
    enabled: bool = True


class RenderedEmail(BaseModel):
    model_config = ConfigDict(frozen=True)

    subject: str
    html: str
    text: str


class SendResult(BaseModel):
    """Outcome of one transport call."""

    model_config = ConfigDict(frozen=True)

    success: bool
    message_id: str | None = None
    error: str | None = None


class ProcessEventResult(BaseModel):
    """What happened to one incoming event."""

    event_id: int
    deliveries_created: int = 0
    deliveries_sent: int = 0
    suppressed: bool = False
    quiet_hours: bool = False

    def to_response(self) -> dict[str, Any]:
        """Body returned by the ingestion endpoint."""
        return {"ok": True, **self.model_dump()}
