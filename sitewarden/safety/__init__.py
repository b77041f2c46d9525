"""Safety gate — kill switches, system modes and their audit trail."""

from sitewarden.safety.gate import (
    GLOBAL_KILL_SWITCH_KEY,
    GLOBAL_MODE_KEY,
    SERVICE_KILL_SWITCHES_KEY,
    WEBSITE_KILL_SWITCHES_KEY,
    SafetyGate,
)
from sitewarden.safety.exceptions import InvalidModeError, SafetyError
from sitewarden.safety.store import ConfigStore, InMemoryConfigStore
from sitewarden.safety.types import (
    AuditAction,
    AuditDetails,
    AuditLogEntry,
    KillSwitchScope,
    KillSwitchState,
    SafetyCheckResult,
    SafetyChecks,
    SafetyStatus,
    SystemMode,
    SystemModeState,
)

__all__ = [
    "GLOBAL_KILL_SWITCH_KEY",
    "GLOBAL_MODE_KEY",
    "SERVICE_KILL_SWITCHES_KEY",
    "WEBSITE_KILL_SWITCHES_KEY",
    "AuditAction",
    "AuditDetails",
    "AuditLogEntry",
    "ConfigStore",
    "InMemoryConfigStore",
    "InvalidModeError",
    "KillSwitchScope",
    "KillSwitchState",
    "SafetyCheckResult",
    "SafetyChecks",
    "SafetyError",
    "SafetyGate",
    "SafetyStatus",
    "SystemMode",
    "SystemModeState",
]
