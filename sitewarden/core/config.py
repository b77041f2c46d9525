"""Pydantic settings loaded from YAML configuration."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, SecretStr

_settings: Settings | None = None

_DEFAULT_CONFIG_PATH = Path("config/settings.yaml")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "json"


class OrchestratorConfig(BaseModel):
    """Job dispatch and completion polling."""

    job_timeout_ms: int = 60000
    poll_interval_ms: int = 2000
    job_priority: int = 5
    job_max_attempts: int = 3
    job_action: str = "analyze"


class NotificationsConfig(BaseModel):
    """Notification pipeline defaults applied when a site has no rule/settings."""

    default_timezone: str = "America/Chicago"
    default_min_severity: str = "info"
    default_throttle_minutes: int = 30
    max_concurrent_sends: int = 5
    recent_events_limit: int = 50
    source: str = "sitewarden"
    operations_site_id: str = "global"


class EmailConfig(BaseModel):
    """SendGrid email transport configuration."""

    enabled: bool = False
    api_url: str = "https://api.sendgrid.com/v3/mail/send"
    api_key: SecretStr = SecretStr("")
    from_email: str = "noreply@arclo.pro"
    from_name: str = "Arclo Notifications"
    timeout_secs: float = 10.0


class DiagnosticsConfig(BaseModel):
    """Connector diagnostics configuration."""

    redaction_marker: str = "[REDACTED]"
    snapshot_max_required_fields: int = 5


class Settings(BaseModel):
    """Root settings container."""

    logging: LoggingConfig = LoggingConfig()
    orchestrator: OrchestratorConfig = OrchestratorConfig()
    notifications: NotificationsConfig = NotificationsConfig()
    email: EmailConfig = EmailConfig()
    diagnostics: DiagnosticsConfig = DiagnosticsConfig()


def load_settings(path: str | Path | None = None) -> Settings:
    """Load settings from a YAML file and cache globally.

    Args:
        path: Path to YAML config. Defaults to config/settings.yaml.

    Returns:
        Parsed Settings instance.
    """
    global _settings  # noqa: PLW0603

    config_path = Path(path) if path else _DEFAULT_CONFIG_PATH

    data: dict[str, Any] = {}
    if config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f)
            if isinstance(raw, dict):
                data = raw

    _settings = Settings(**data)
    return _settings


def get_settings() -> Settings:
    """Return the cached settings, loading defaults if not yet loaded."""
    global _settings  # noqa: PLW0603
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Reset the cached settings (useful for testing)."""
    global _settings  # noqa: PLW0603
    _settings = None
