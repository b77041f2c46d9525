"""SafetyGate — kill switches and system mode, consulted before any dispatch."""

from __future__ import annotations

import asyncio
import copy
import datetime
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import structlog
from pydantic import BaseModel, ValidationError

from sitewarden.safety.exceptions import InvalidModeError
from sitewarden.safety.store import ConfigStore
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

logger = structlog.get_logger(__name__)

GLOBAL_KILL_SWITCH_KEY = "global_kill_switch"
GLOBAL_MODE_KEY = "global_mode"
SERVICE_KILL_SWITCHES_KEY = "service_kill_switches"
WEBSITE_KILL_SWITCHES_KEY = "website_kill_switches"

Clock = Callable[[], datetime.datetime]
ChangeCallback = Callable[[AuditLogEntry], Awaitable[None] | None]

_M = TypeVar("_M", bound=BaseModel)
_UNREAD = object()


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


def _parse(model: type[_M], raw: Any, key: str) -> _M | None:
    if raw is None:
        return None
    try:
        return model.model_validate(raw)
    except ValidationError:
        logger.warning("safety_config_invalid", key=key)
        return None


class SafetyGate:
    """Process-wide emergency controls backed by a ConfigStore.

    Three independent switch scopes (global, per-service, per-website) and
    one global SystemMode.  Every write goes through ``_set_config_value``,
    which appends an audit row with the old and new value.  Writes always
    happen, even when the state is unchanged, so the audit history is
    complete.

    Reads in ``perform_safety_check`` are not transactional; a switch flipped
    mid-check may race with the dispatch decision.

    Usage::

        gate = SafetyGate(config_store)
        check = await gate.perform_safety_check(service_name="serp-intel", site_id="S1")
        if not check.allowed:
            return  # check.reason says why
    """

    def __init__(self, store: ConfigStore, clock: Clock | None = None) -> None:
        self._store = store
        self._clock = clock or _utcnow
        self._callbacks: list[ChangeCallback] = []

    def on_change(self, callback: ChangeCallback) -> None:
        """Register a callback invoked with the audit row of every write."""
        self._callbacks.append(callback)

    async def _emit(self, entry: AuditLogEntry) -> None:
        for cb in self._callbacks:
            try:
                result = cb(entry)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("safety_change_callback_error", action=entry.action.value)

    # ── Config accessor ──────────────────────────────────────────

    async def _set_config_value(
        self,
        key: str,
        new_value: Any,
        action: AuditAction,
        target_type: KillSwitchScope,
        target_id: str | None,
        reason: str | None,
        triggered_by: str,
        old_value: Any = _UNREAD,
    ) -> None:
        if old_value is _UNREAD:
            old_value = await self._store.get_value(key)
        await self._store.set_value(key, new_value)
        entry = AuditLogEntry(
            action=action,
            actor=triggered_by,
            details=AuditDetails(
                target_type=target_type,
                target_id=target_id,
                old_value=old_value,
                new_value=new_value,
                reason=reason,
            ),
            timestamp=self._clock(),
        )
        await self._store.append_audit(entry)
        await self._emit(entry)

    async def _get_switch_map(self, key: str) -> dict[str, KillSwitchState]:
        raw = await self._store.get_value(key)
        if not isinstance(raw, dict):
            return {}
        switches: dict[str, KillSwitchState] = {}
        for name, value in raw.items():
            state = _parse(KillSwitchState, value, key)
            if state is not None:
                switches[name] = state
        return switches

    async def _set_switch_in_map(
        self,
        key: str,
        scope: KillSwitchScope,
        name: str,
        state: KillSwitchState,
        action: AuditAction,
        reason: str | None,
        triggered_by: str,
    ) -> None:
        # Copied so the audit row keeps the pre-write map.
        current = await self._store.get_value(key)
        switches = copy.deepcopy(current) if isinstance(current, dict) else {}
        switches[name] = state.model_dump(mode="json")
        await self._set_config_value(
            key, switches, action, scope, name, reason, triggered_by, old_value=current,
        )

    # ── Global kill switch ───────────────────────────────────────

    async def get_global_kill_switch_state(self) -> KillSwitchState:
        raw = await self._store.get_value(GLOBAL_KILL_SWITCH_KEY)
        return _parse(KillSwitchState, raw, GLOBAL_KILL_SWITCH_KEY) or KillSwitchState()

    async def is_global_kill_switch_active(self) -> bool:
        return (await self.get_global_kill_switch_state()).enabled

    async def activate_global_kill_switch(self, reason: str, triggered_by: str) -> None:
        """Stop all processing."""
        state = KillSwitchState(enabled=True, reason=reason, activated_at=self._clock())
        await self._set_config_value(
            GLOBAL_KILL_SWITCH_KEY,
            state.model_dump(mode="json"),
            AuditAction.KILL_SWITCH_ACTIVATED,
            KillSwitchScope.GLOBAL,
            None,
            reason,
            triggered_by,
        )
        logger.warning(
            "global_kill_switch_activated",
            triggered_by=triggered_by,
            reason=reason,
        )

    async def deactivate_global_kill_switch(
        self,
        triggered_by: str,
        reason: str | None = None,
    ) -> None:
        """Resume processing."""
        state = KillSwitchState(
            enabled=False,
            reason=reason or "Manually deactivated",
            activated_at=self._clock(),
        )
        await self._set_config_value(
            GLOBAL_KILL_SWITCH_KEY,
            state.model_dump(mode="json"),
            AuditAction.KILL_SWITCH_DEACTIVATED,
            KillSwitchScope.GLOBAL,
            None,
            reason,
            triggered_by,
        )
        logger.info("global_kill_switch_deactivated", triggered_by=triggered_by)

    # ── System mode ──────────────────────────────────────────────

    async def get_system_mode_state(self) -> SystemModeState:
        raw = await self._store.get_value(GLOBAL_MODE_KEY)
        return _parse(SystemModeState, raw, GLOBAL_MODE_KEY) or SystemModeState()

    async def get_system_mode(self) -> SystemMode:
        return (await self.get_system_mode_state()).mode

    async def set_system_mode(
        self,
        mode: SystemMode | str,
        triggered_by: str,
        reason: str | None = None,
    ) -> None:
        """Switch the global mode.  Raises InvalidModeError for an unknown mode."""
        try:
            mode = SystemMode(mode)
        except ValueError:
            raise InvalidModeError(str(mode)) from None
        state = SystemModeState(mode=mode, reason=reason, changed_at=self._clock())
        await self._set_config_value(
            GLOBAL_MODE_KEY,
            state.model_dump(mode="json"),
            AuditAction.MODE_CHANGED,
            KillSwitchScope.GLOBAL,
            None,
            reason,
            triggered_by,
        )
        logger.info("system_mode_changed", mode=mode.value, triggered_by=triggered_by)

    async def is_observe_only_mode(self) -> bool:
        return await self.get_system_mode() == SystemMode.OBSERVE_ONLY

    async def is_safe_mode(self) -> bool:
        return await self.get_system_mode() == SystemMode.SAFE_MODE

    # ── Service kill switches ────────────────────────────────────

    async def get_service_kill_switches(self) -> dict[str, KillSwitchState]:
        return await self._get_switch_map(SERVICE_KILL_SWITCHES_KEY)

    async def is_service_disabled(self, service_name: str) -> bool:
        state = (await self.get_service_kill_switches()).get(service_name)
        return state.enabled if state else False

    async def disable_service(self, service_name: str, reason: str, triggered_by: str) -> None:
        await self._set_switch_in_map(
            SERVICE_KILL_SWITCHES_KEY,
            KillSwitchScope.SERVICE,
            service_name,
            KillSwitchState(enabled=True, reason=reason, activated_at=self._clock()),
            AuditAction.KILL_SWITCH_ACTIVATED,
            reason,
            triggered_by,
        )
        logger.warning(
            "service_disabled",
            service=service_name,
            triggered_by=triggered_by,
            reason=reason,
        )

    async def enable_service(
        self,
        service_name: str,
        triggered_by: str,
        reason: str | None = None,
    ) -> None:
        await self._set_switch_in_map(
            SERVICE_KILL_SWITCHES_KEY,
            KillSwitchScope.SERVICE,
            service_name,
            KillSwitchState(
                enabled=False,
                reason=reason or "Manually enabled",
                activated_at=self._clock(),
            ),
            AuditAction.KILL_SWITCH_DEACTIVATED,
            reason,
            triggered_by,
        )
        logger.info("service_enabled", service=service_name, triggered_by=triggered_by)

    # ── Website kill switches ────────────────────────────────────

    async def get_site_kill_switches(self) -> dict[str, KillSwitchState]:
        return await self._get_switch_map(WEBSITE_KILL_SWITCHES_KEY)

    async def is_site_paused(self, site_id: str) -> bool:
        state = (await self.get_site_kill_switches()).get(site_id)
        return state.enabled if state else False

    async def pause_site(self, site_id: str, reason: str, triggered_by: str) -> None:
        await self._set_switch_in_map(
            WEBSITE_KILL_SWITCHES_KEY,
            KillSwitchScope.WEBSITE,
            site_id,
            KillSwitchState(enabled=True, reason=reason, activated_at=self._clock()),
            AuditAction.KILL_SWITCH_ACTIVATED,
            reason,
            triggered_by,
        )
        logger.warning(
            "site_paused",
            site_id=site_id,
            triggered_by=triggered_by,
            reason=reason,
        )

    async def resume_site(
        self,
        site_id: str,
        triggered_by: str,
        reason: str | None = None,
    ) -> None:
        await self._set_switch_in_map(
            WEBSITE_KILL_SWITCHES_KEY,
            KillSwitchScope.WEBSITE,
            site_id,
            KillSwitchState(
                enabled=False,
                reason=reason or "Manually resumed",
                activated_at=self._clock(),
            ),
            AuditAction.KILL_SWITCH_DEACTIVATED,
            reason,
            triggered_by,
        )
        logger.info("site_resumed", site_id=site_id, triggered_by=triggered_by)

    # ── Safety check ─────────────────────────────────────────────

    async def perform_safety_check(
        self,
        service_name: str | None = None,
        site_id: str | None = None,
        requires_changes: bool = False,
    ) -> SafetyCheckResult:
        """Decide whether work may proceed.

        Priority: global kill switch, service switch, site switch, then
        observe-only mode (only when *requires_changes*).  Safe mode is
        reported in ``checks`` but never denies.
        """
        checks = SafetyChecks(
            global_kill_switch=await self.is_global_kill_switch_active(),
            service_disabled=(
                await self.is_service_disabled(service_name) if service_name else False
            ),
            website_paused=await self.is_site_paused(site_id) if site_id else False,
            observe_only_mode=(
                await self.is_observe_only_mode() if requires_changes else False
            ),
            safe_mode=await self.is_safe_mode(),
        )

        reason: str | None = None
        if checks.global_kill_switch:
            reason = "Global kill switch is active"
        elif checks.service_disabled:
            reason = f"Service {service_name} is disabled"
        elif checks.website_paused:
            reason = f"Website {site_id} is paused"
        elif checks.observe_only_mode:
            reason = "System is in observe-only mode (no changes allowed)"

        return SafetyCheckResult(allowed=reason is None, reason=reason, checks=checks)

    async def status(self) -> SafetyStatus:
        """Snapshot of every switch and the current mode."""
        return SafetyStatus(
            global_kill_switch=await self.get_global_kill_switch_state(),
            mode=await self.get_system_mode_state(),
            services=await self.get_service_kill_switches(),
            websites=await self.get_site_kill_switches(),
        )
