"""Persistence for notification events, deliveries, suppressions and site config."""

from __future__ import annotations

import abc
import datetime
import itertools

from sitewarden.notify.types import (
    NotificationDelivery,
    NotificationEvent,
    NotificationRecipient,
    NotificationRequest,
    NotificationRule,
    NotificationSettings,
    Suppression,
)


class NotificationStore(abc.ABC):
    """Tables backing the notification pipeline."""

    @abc.abstractmethod
    async def create_event(
        self,
        request: NotificationRequest,
        source: str,
        occurred_at: datetime.datetime,
    ) -> NotificationEvent:
        """Persist an incoming event and return it with its assigned id."""

    @abc.abstractmethod
    async def get_recent_events(self, site_id: str, limit: int) -> list[NotificationEvent]:
        """Newest first."""

    @abc.abstractmethod
    async def create_delivery(self, delivery: NotificationDelivery) -> None: ...

    @abc.abstractmethod
    async def get_active_suppression(
        self,
        site_id: str,
        dedup_key: str,
        now: datetime.datetime,
    ) -> Suppression | None:
        """A suppression for the key whose ``suppressed_until`` is not before *now*."""

    @abc.abstractmethod
    async def create_suppression(self, suppression: Suppression) -> None: ...

    @abc.abstractmethod
    async def get_settings(self, site_id: str) -> NotificationSettings | None: ...

    @abc.abstractmethod
    async def get_recipients(
        self,
        site_id: str,
        enabled_only: bool = False,
    ) -> list[NotificationRecipient]: ...

    @abc.abstractmethod
    async def get_rules(
        self,
        site_id: str,
        event_type: str | None = None,
        enabled_only: bool = False,
    ) -> list[NotificationRule]:
        """Rules in insertion order, optionally narrowed to one event type."""


class InMemoryNotificationStore(NotificationStore):
    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self._events: list[NotificationEvent] = []
        self._deliveries: list[NotificationDelivery] = []
        self._suppressions: list[Suppression] = []
        self._settings: dict[str, NotificationSettings] = {}
        self._recipients: list[NotificationRecipient] = []
        self._rules: list[NotificationRule] = []

    # ── Inspection / seeding ─────────────────────────────────────

    @property
    def events(self) -> list[NotificationEvent]:
        return list(self._events)

    @property
    def deliveries(self) -> list[NotificationDelivery]:
        return list(self._deliveries)

    @property
    def suppressions(self) -> list[Suppression]:
        return list(self._suppressions)

    def set_settings(self, settings: NotificationSettings) -> None:
        self._settings[settings.website_id] = settings

    def add_recipient(self, recipient: NotificationRecipient) -> None:
        self._recipients.append(recipient)

    def add_rule(self, rule: NotificationRule) -> None:
        self._rules.append(rule)

    # ── NotificationStore ────────────────────────────────────────

    async def create_event(
        self,
        request: NotificationRequest,
        source: str,
        occurred_at: datetime.datetime,
    ) -> NotificationEvent:
        event = NotificationEvent(
            id=next(self._ids),
            website_id=request.website_id,
            event_type=request.event_type,
            severity=request.severity,
            title=request.title,
            summary=request.summary,
            payload=dict(request.payload),
            dedup_key=request.effective_dedup_key,
            source=source,
            occurred_at=occurred_at,
        )
        self._events.append(event)
        return event

    async def get_recent_events(self, site_id: str, limit: int) -> list[NotificationEvent]:
        matching = [e for e in self._events if e.website_id == site_id]
        matching.sort(key=lambda e: (e.occurred_at, e.id), reverse=True)
        return matching[:limit]

    async def create_delivery(self, delivery: NotificationDelivery) -> None:
        self._deliveries.append(delivery)

    async def get_active_suppression(
        self,
        site_id: str,
        dedup_key: str,
        now: datetime.datetime,
    ) -> Suppression | None:
        for s in self._suppressions:
            if s.website_id == site_id and s.dedup_key == dedup_key and s.suppressed_until >= now:
                return s
        return None

    async def create_suppression(self, suppression: Suppression) -> None:
        self._suppressions.append(suppression)

    async def get_settings(self, site_id: str) -> NotificationSettings | None:
        return self._settings.get(site_id)

    async def get_recipients(
        self,
        site_id: str,
        enabled_only: bool = False,
    ) -> list[NotificationRecipient]:
        return [
            r for r in self._recipients
            if r.website_id == site_id and (r.enabled or not enabled_only)
        ]

    async def get_rules(
        self,
        site_id: str,
        event_type: str | None = None,
        enabled_only: bool = False,
    ) -> list[NotificationRule]:
        return [
            r for r in self._rules
            if r.website_id == site_id
            and (event_type is None or r.event_type == event_type)
            and (r.enabled or not enabled_only)
        ]
