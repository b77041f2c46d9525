"""Notification pipeline — event gating, templates and email delivery."""

from sitewarden.notify.exceptions import EmailConfigError, NotificationError
from sitewarden.notify.formatters import (
    format_diagnostic_outcome,
    format_orchestration_result,
    format_safety_change,
    format_worker_failure,
)
from sitewarden.notify.pipeline import NotificationService, is_in_quiet_hours
from sitewarden.notify.store import InMemoryNotificationStore, NotificationStore
from sitewarden.notify.templates import render_notification_email, render_test_email
from sitewarden.notify.transport import DisabledTransport, EmailTransport, SendGridTransport
from sitewarden.notify.types import (
    DeliveryStatus,
    NotificationDelivery,
    NotificationEvent,
    NotificationRecipient,
    NotificationRequest,
    NotificationRule,
    NotificationSettings,
    ProcessEventResult,
    RenderedEmail,
    SendResult,
    Severity,
    Suppression,
    severity_meets_minimum,
)

__all__ = [
    "DeliveryStatus",
    "DisabledTransport",
    "EmailConfigError",
    "EmailTransport",
    "InMemoryNotificationStore",
    "NotificationDelivery",
    "NotificationError",
    "NotificationEvent",
    "NotificationRecipient",
    "NotificationRequest",
    "NotificationRule",
    "NotificationService",
    "NotificationSettings",
    "NotificationStore",
    "ProcessEventResult",
    "RenderedEmail",
    "SendGridTransport",
    "SendResult",
    "Severity",
    "Suppression",
    "format_diagnostic_outcome",
    "format_orchestration_result",
    "format_safety_change",
    "format_worker_failure",
    "is_in_quiet_hours",
    "render_notification_email",
    "render_test_email",
    "severity_meets_minimum",
]
