"""Domain types for kill switches, system modes and the audit trail."""

from __future__ import annotations

import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class SystemMode(StrEnum):
    """Global operating mode."""

    NORMAL = "normal"
    OBSERVE_ONLY = "observe_only"  # checks run, no mutating actions
    SAFE_MODE = "safe_mode"  # reported only; callers decide how to degrade


class KillSwitchScope(StrEnum):
    GLOBAL = "global"
    SERVICE = "service"
    WEBSITE = "website"


class AuditAction(StrEnum):
    KILL_SWITCH_ACTIVATED = "kill_switch_activated"
    KILL_SWITCH_DEACTIVATED = "kill_switch_deactivated"
    MODE_CHANGED = "mode_changed"


class KillSwitchState(BaseModel):
    """One switch.  ``activated_at`` is the time of the last write, on or off."""

    enabled: bool = False
    reason: str | None = None
    activated_at: datetime.datetime | None = None


class SystemModeState(BaseModel):
    mode: SystemMode = SystemMode.NORMAL
    reason: str | None = None
    changed_at: datetime.datetime | None = None


class AuditDetails(BaseModel):
    target_type: KillSwitchScope
    target_id: str | None = None
    old_value: Any = None
    new_value: Any = None
    reason: str | None = None


class AuditLogEntry(BaseModel):
    """Append-only record of a configuration write."""

    action: AuditAction
    actor: str
    details: AuditDetails
    timestamp: datetime.datetime


class SafetyChecks(BaseModel):
    """Individual conditions evaluated by a safety check."""

    global_kill_switch: bool = False
    service_disabled: bool = False
    website_paused: bool = False
    observe_only_mode: bool = False
    safe_mode: bool = False


class SafetyCheckResult(BaseModel):
    """Outcome of a safety check.  A denial is a normal result, not an error."""

    allowed: bool = True
    reason: str | None = None
    checks: SafetyChecks = Field(default_factory=SafetyChecks)


class SafetyStatus(BaseModel):
    """Everything the gate knows, for an operations view."""

    global_kill_switch: KillSwitchState
    mode: SystemModeState
    services: dict[str, KillSwitchState] = Field(default_factory=dict)
    websites: dict[str, KillSwitchState] = Field(default_factory=dict)
