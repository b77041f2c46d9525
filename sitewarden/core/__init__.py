"""Core module — config and logging."""

from sitewarden.core.config import (
    DiagnosticsConfig,
    EmailConfig,
    LoggingConfig,
    NotificationsConfig,
    OrchestratorConfig,
    Settings,
    get_settings,
    load_settings,
    reset_settings,
)
from sitewarden.core.logging import bound_context, setup_logging

__all__ = [
    "DiagnosticsConfig",
    "EmailConfig",
    "LoggingConfig",
    "NotificationsConfig",
    "OrchestratorConfig",
    "Settings",
    "bound_context",
    "get_settings",
    "load_settings",
    "reset_settings",
    "setup_logging",
]
