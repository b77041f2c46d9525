"""Tests for NotificationService — quiet hours, throttling, rules, fan-out."""

from __future__ import annotations

import asyncio
import datetime

from sitewarden.core.config import NotificationsConfig
from sitewarden.notify.pipeline import NotificationService, is_in_quiet_hours
from sitewarden.notify.store import InMemoryNotificationStore
from sitewarden.notify.transport import EmailTransport
from sitewarden.notify.types import (
    DeliveryStatus,
    NotificationRecipient,
    NotificationRequest,
    NotificationRule,
    NotificationSettings,
    SendResult,
    Severity,
)

# 05:00 UTC in January is 23:00 in America/Chicago (CST, UTC-6).
_NIGHT = datetime.datetime(2026, 1, 15, 5, 0, tzinfo=datetime.UTC)
# 18:00 UTC is 12:00 in Chicago.
_NOON = datetime.datetime(2026, 1, 15, 18, 0, tzinfo=datetime.UTC)


# ── Helpers ─────────────────────────────────────────────────────


class _FakeTransport(EmailTransport):
    def __init__(
        self,
        fail_for: set[str] | None = None,
        raise_for: set[str] | None = None,
    ) -> None:
        self.sent: list[tuple[str, str]] = []
        self._fail_for = fail_for or set()
        self._raise_for = raise_for or set()
        self.in_flight = 0
        self.max_in_flight = 0

    async def send(self, to: str, subject: str, html: str, text: str) -> SendResult:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            if to in self._raise_for:
                raise ConnectionError("provider unreachable")
            if to in self._fail_for:
                return SendResult(success=False, error="mailbox full")
            self.sent.append((to, subject))
            return SendResult(success=True, message_id=f"msg-{len(self.sent)}")
        finally:
            self.in_flight -= 1


class _Clock:
    def __init__(self, now: datetime.datetime) -> None:
        self.now = now

    def __call__(self) -> datetime.datetime:
        return self.now


def _request(**kw: object) -> NotificationRequest:
    defaults: dict[str, object] = {
        "website_id": "S1",
        "event_type": "crawl_failure",
        "severity": Severity.WARNING,
        "title": "Crawl failed",
        "summary": "robots.txt blocked the crawler",
    }
    defaults.update(kw)
    return NotificationRequest(**defaults)  # type: ignore[arg-type]


def _service(
    now: datetime.datetime = _NOON,
    transport: _FakeTransport | None = None,
    recipients: tuple[str, ...] = ("a@example.com",),
    quiet_hours: bool = True,
    **config: object,
) -> tuple[NotificationService, InMemoryNotificationStore, _FakeTransport, _Clock]:
    store = InMemoryNotificationStore()
    if quiet_hours:
        store.set_settings(NotificationSettings(website_id="S1"))
    for email in recipients:
        store.add_recipient(NotificationRecipient(website_id="S1", email=email))
    transport = transport or _FakeTransport()
    clock = _Clock(now)
    service = NotificationService(
        store, transport, config=NotificationsConfig(**config), clock=clock,  # type: ignore[arg-type]
    )
    return service, store, transport, clock


# ── Quiet hours ─────────────────────────────────────────────────


class TestQuietHours:
    async def test_non_critical_at_night_is_held(self) -> None:
        service, store, transport, _ = _service(now=_NIGHT)
        result = await service.process_event(_request())

        assert result.quiet_hours is True
        assert result.suppressed is False
        assert result.deliveries_created == 0
        assert transport.sent == []
        assert len(store.events) == 1
        assert store.suppressions == []

    async def test_critical_bypasses(self) -> None:
        service, _, transport, _ = _service(now=_NIGHT)
        result = await service.process_event(_request(severity=Severity.CRITICAL))

        assert result.quiet_hours is False
        assert result.deliveries_sent == 1
        assert len(transport.sent) == 1

    async def test_daytime_delivers(self) -> None:
        service, _, _, _ = _service(now=_NOON)
        result = await service.process_event(_request())
        assert result.deliveries_sent == 1

    async def test_no_settings_means_no_quiet_hours(self) -> None:
        service, _, _, _ = _service(now=_NIGHT, quiet_hours=False)
        result = await service.process_event(_request())
        assert result.quiet_hours is False
        assert result.deliveries_sent == 1


class TestIsInQuietHours:
    def _at(self, hour: int, minute: int = 0) -> datetime.datetime:
        return datetime.datetime(2026, 7, 1, hour, minute, tzinfo=datetime.UTC)

    def _settings(self, start: str = "21:00", end: str = "07:00") -> NotificationSettings:
        return NotificationSettings(
            website_id="S1", timezone="UTC", quiet_hours_start=start, quiet_hours_end=end,
        )

    def test_overnight_window(self) -> None:
        s = self._settings()
        assert is_in_quiet_hours(s, self._at(23)) is True
        assert is_in_quiet_hours(s, self._at(21)) is True
        assert is_in_quiet_hours(s, self._at(6, 59)) is True
        assert is_in_quiet_hours(s, self._at(7)) is False
        assert is_in_quiet_hours(s, self._at(20, 59)) is False

    def test_same_day_window(self) -> None:
        s = self._settings("09:00", "17:00")
        assert is_in_quiet_hours(s, self._at(9)) is True
        assert is_in_quiet_hours(s, self._at(16, 59)) is True
        assert is_in_quiet_hours(s, self._at(17)) is False
        assert is_in_quiet_hours(s, self._at(3)) is False

    def test_site_timezone_applied(self) -> None:
        s = NotificationSettings(website_id="S1", timezone="America/Chicago")
        assert is_in_quiet_hours(s, _NIGHT) is True
        assert is_in_quiet_hours(s, _NOON) is False

    def test_invalid_timezone_is_not_quiet(self) -> None:
        s = NotificationSettings(website_id="S1", timezone="Mars/Olympus_Mons")
        assert is_in_quiet_hours(s, _NIGHT) is False

    def test_invalid_window_is_not_quiet(self) -> None:
        assert is_in_quiet_hours(self._settings("late", "07:00"), self._at(23)) is False

    def test_missing_bounds(self) -> None:
        s = NotificationSettings(website_id="S1", quiet_hours_start=None)
        assert is_in_quiet_hours(s, _NIGHT) is False
        assert is_in_quiet_hours(None, _NIGHT) is False


# ── Throttling ──────────────────────────────────────────────────


class TestThrottling:
    async def test_second_event_suppressed(self) -> None:
        service, store, transport, _ = _service()
        first = await service.process_event(_request())
        second = await service.process_event(_request())

        assert first.deliveries_sent == 1
        assert second.suppressed is True
        assert second.deliveries_created == 0
        assert len(transport.sent) == 1
        assert len(store.events) == 2

    async def test_dedup_key_defaults_to_event_type(self) -> None:
        service, store, _, _ = _service()
        await service.process_event(_request())
        assert store.events[0].dedup_key == "crawl_failure"
        assert store.suppressions[0].dedup_key == "crawl_failure"

    async def test_different_dedup_keys_not_throttled(self) -> None:
        service, _, transport, _ = _service()
        await service.process_event(_request(dedup_key="crawl:home"))
        await service.process_event(_request(dedup_key="crawl:blog"))
        assert len(transport.sent) == 2

    async def test_suppression_expires(self) -> None:
        service, _, transport, clock = _service()
        await service.process_event(_request())
        clock.now = clock.now + datetime.timedelta(minutes=31)
        result = await service.process_event(_request())

        assert result.suppressed is False
        assert len(transport.sent) == 2

    async def test_default_throttle_window(self) -> None:
        service, store, _, clock = _service()
        await service.process_event(_request())

        (suppression,) = store.suppressions
        assert suppression.suppressed_until == clock.now + datetime.timedelta(minutes=30)
        assert suppression.reason == "Throttled for 30 minutes"


# ── Rules ───────────────────────────────────────────────────────


class TestRules:
    async def test_below_minimum_stops_silently(self) -> None:
        service, store, transport, _ = _service()
        store.add_rule(NotificationRule(
            website_id="S1", event_type="crawl_failure", min_severity=Severity.CRITICAL,
        ))
        result = await service.process_event(_request(severity=Severity.WARNING))

        assert result.suppressed is False
        assert result.quiet_hours is False
        assert result.deliveries_created == 0
        assert transport.sent == []
        assert store.suppressions == []

    async def test_rule_throttle_window(self) -> None:
        service, store, _, clock = _service()
        store.add_rule(NotificationRule(
            website_id="S1", event_type="crawl_failure", throttle_minutes=5,
        ))
        await service.process_event(_request())

        (suppression,) = store.suppressions
        assert suppression.suppressed_until == clock.now + datetime.timedelta(minutes=5)
        assert suppression.reason == "Throttled for 5 minutes"

    async def test_disabled_rule_ignored(self) -> None:
        service, store, transport, _ = _service()
        store.add_rule(NotificationRule(
            website_id="S1",
            event_type="crawl_failure",
            min_severity=Severity.CRITICAL,
            enabled=False,
        ))
        await service.process_event(_request(severity=Severity.INFO))
        assert len(transport.sent) == 1

    async def test_rule_for_other_event_type_ignored(self) -> None:
        service, store, transport, _ = _service()
        store.add_rule(NotificationRule(
            website_id="S1", event_type="daily_diagnosis_summary", min_severity=Severity.CRITICAL,
        ))
        await service.process_event(_request(severity=Severity.INFO))
        assert len(transport.sent) == 1

    async def test_config_default_min_severity(self) -> None:
        service, _, transport, _ = _service(default_min_severity="warning")
        await service.process_event(_request(severity=Severity.INFO))
        assert transport.sent == []


# ── Fan-out ─────────────────────────────────────────────────────


class TestFanOut:
    async def test_no_recipients(self) -> None:
        service, store, _, _ = _service(recipients=())
        result = await service.process_event(_request())
        assert result.deliveries_created == 0
        assert store.suppressions == []

    async def test_disabled_recipients_skipped(self) -> None:
        service, store, transport, _ = _service()
        store.add_recipient(NotificationRecipient(
            website_id="S1", email="off@example.com", enabled=False,
        ))
        result = await service.process_event(_request())
        assert result.deliveries_created == 1
        assert [to for to, _ in transport.sent] == ["a@example.com"]

    async def test_partial_failure_isolated(self) -> None:
        transport = _FakeTransport(fail_for={"b@example.com"}, raise_for={"c@example.com"})
        service, store, _, _ = _service(
            transport=transport,
            recipients=("a@example.com", "b@example.com", "c@example.com"),
        )
        result = await service.process_event(_request())

        assert result.deliveries_created == 3
        assert result.deliveries_sent == 1

        by_recipient = {d.recipient: d for d in store.deliveries}
        assert by_recipient["a@example.com"].status == DeliveryStatus.SENT
        assert by_recipient["a@example.com"].provider_message_id == "msg-1"
        assert by_recipient["b@example.com"].status == DeliveryStatus.FAILED
        assert by_recipient["b@example.com"].error_code == "send_failed"
        assert by_recipient["b@example.com"].error_message == "mailbox full"
        assert by_recipient["c@example.com"].status == DeliveryStatus.FAILED
        assert by_recipient["c@example.com"].error_message == "provider unreachable"
        assert len(store.suppressions) == 1

    async def test_delivery_row_fields(self) -> None:
        service, store, _, _ = _service()
        result = await service.process_event(_request())

        (delivery,) = store.deliveries
        assert delivery.event_id == result.event_id
        assert delivery.channel == "email"
        assert delivery.template_id == "crawl_failure"
        assert delivery.attempt_count == 1
        assert delivery.subject == "[Arclo] S1: Crawl Failure Detected"

    async def test_sends_bounded(self) -> None:
        recipients = tuple(f"r{i}@example.com" for i in range(6))
        service, _, transport, _ = _service(recipients=recipients, max_concurrent_sends=2)
        result = await service.process_event(_request())

        assert result.deliveries_sent == 6
        assert transport.max_in_flight <= 2


# ── Queries ─────────────────────────────────────────────────────


class TestQueries:
    async def test_send_test_notification(self) -> None:
        service, _, transport, _ = _service()
        result = await service.send_test_notification("S1", "me@example.com")
        assert result.success is True
        assert transport.sent == [("me@example.com", "[Arclo] Test Email - S1")]

    async def test_recent_events_newest_first(self) -> None:
        service, _, _, clock = _service()
        await service.process_event(_request(title="first", dedup_key="a"))
        clock.now = clock.now + datetime.timedelta(minutes=1)
        await service.process_event(_request(title="second", dedup_key="b"))

        events = await service.get_recent_events("S1")
        assert [e.title for e in events] == ["second", "first"]
        assert len(await service.get_recent_events("S1", limit=1)) == 1

    async def test_settings_recipients_rules(self) -> None:
        service, store, _, _ = _service()
        store.add_rule(NotificationRule(website_id="S1", event_type="crawl_failure"))

        settings = await service.get_notification_settings("S1")
        assert settings is not None
        assert settings.timezone == "America/Chicago"
        assert len(await service.get_recipients("S1")) == 1
        assert len(await service.get_rules("S1")) == 1
        assert await service.get_notification_settings("other") is None

    def test_is_email_configured(self) -> None:
        service, _, _, _ = _service()
        assert service.is_email_configured() is True

    async def test_response_shape(self) -> None:
        service, _, _, _ = _service()
        result = await service.process_event(_request())
        assert result.to_response() == {
            "ok": True,
            "event_id": result.event_id,
            "deliveries_created": 1,
            "deliveries_sent": 1,
            "suppressed": False,
            "quiet_hours": False,
        }
