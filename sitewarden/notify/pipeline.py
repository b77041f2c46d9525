"""NotificationService — event ingestion, gating and email fan-out."""

from __future__ import annotations

import asyncio
import datetime
from collections.abc import Callable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog

from sitewarden.core.config import NotificationsConfig
from sitewarden.notify.store import NotificationStore
from sitewarden.notify.templates import render_notification_email, render_test_email
from sitewarden.notify.transport import EmailTransport
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

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime.datetime]


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


def _parse_hhmm(value: str) -> datetime.time | None:
    try:
        hours, minutes = value.strip().split(":", 1)
        return datetime.time(int(hours), int(minutes))
    except ValueError:
        return None


def is_in_quiet_hours(
    settings: NotificationSettings | None,
    now: datetime.datetime,
    default_timezone: str = "America/Chicago",
) -> bool:
    """Whether *now* falls in the site's ``[start, end)`` local-time window.

    A window whose start is after its end wraps past midnight
    (``21:00``-``07:00`` covers 23:00 and 06:59, not 07:00).  Missing
    settings, an unparseable window or an unknown timezone all mean
    "not quiet".
    """
    if settings is None or not settings.quiet_hours_start or not settings.quiet_hours_end:
        return False

    start = _parse_hhmm(settings.quiet_hours_start)
    end = _parse_hhmm(settings.quiet_hours_end)
    if start is None or end is None:
        logger.warning(
            "quiet_hours_invalid",
            site_id=settings.website_id,
            start=settings.quiet_hours_start,
            end=settings.quiet_hours_end,
        )
        return False

    tz_name = settings.timezone or default_timezone
    try:
        local = now.astimezone(ZoneInfo(tz_name))
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("quiet_hours_bad_timezone", site_id=settings.website_id, tz=tz_name)
        return False

    current = datetime.time(local.hour, local.minute)
    if start > end:
        return current >= start or current < end
    return start <= current < end


class NotificationService:
    """Turns incoming events into throttled, quiet-hours-aware email deliveries.

    Each event passes through, in order: persist, quiet hours, throttle,
    rule resolution, recipient fan-out, suppression re-arm.  The first gate
    that stops the event ends processing; the event row is always kept.

    Recipient sends run concurrently, bounded by ``max_concurrent_sends``.
    A failed or raising send only affects its own delivery row.
    """

    def __init__(
        self,
        store: NotificationStore,
        transport: EmailTransport,
        config: NotificationsConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        from sitewarden.core.config import get_settings

        self._store = store
        self._transport = transport
        self._config = config or get_settings().notifications
        self._clock = clock or _utcnow
        self._send_slots = asyncio.Semaphore(max(1, self._config.max_concurrent_sends))

    async def close(self) -> None:
        await self._transport.close()

    # ── Pipeline ─────────────────────────────────────────────────

    async def process_event(self, request: NotificationRequest) -> ProcessEventResult:
        now = self._clock()
        site_id = request.website_id
        dedup_key = request.effective_dedup_key

        event = await self._store.create_event(request, self._config.source, now)
        result = ProcessEventResult(event_id=event.id)
        log = logger.bind(event_id=event.id, site_id=site_id, event_type=request.event_type)

        settings = await self._store.get_settings(site_id)
        if request.severity != Severity.CRITICAL and is_in_quiet_hours(
            settings, now, self._config.default_timezone,
        ):
            result.quiet_hours = True
            log.info("notification_quiet_hours")
            return result

        if await self._store.get_active_suppression(site_id, dedup_key, now) is not None:
            result.suppressed = True
            log.info("notification_throttled", dedup_key=dedup_key)
            return result

        min_severity, throttle_minutes = await self._resolve_rule(site_id, request.event_type)
        if not severity_meets_minimum(request.severity, min_severity):
            log.info(
                "notification_below_min_severity",
                severity=request.severity.value,
                min_severity=min_severity,
            )
            return result

        recipients = await self._store.get_recipients(site_id, enabled_only=True)
        if not recipients:
            log.info("notification_no_recipients")
            return result

        rendered = render_notification_email(event, site_id)
        outcomes = await asyncio.gather(
            *(self._deliver(event, recipient, rendered) for recipient in recipients),
        )
        result.deliveries_created = len(outcomes)
        result.deliveries_sent = sum(1 for sent in outcomes if sent)

        await self._store.create_suppression(Suppression(
            website_id=site_id,
            dedup_key=dedup_key,
            suppressed_until=now + datetime.timedelta(minutes=throttle_minutes),
            reason=f"Throttled for {throttle_minutes} minutes",
        ))

        log.info(
            "notification_processed",
            deliveries_sent=result.deliveries_sent,
            deliveries_created=result.deliveries_created,
        )
        return result

    async def _resolve_rule(self, site_id: str, event_type: str) -> tuple[str, int]:
        rules = await self._store.get_rules(site_id, event_type=event_type, enabled_only=True)
        if not rules:
            return (
                self._config.default_min_severity,
                self._config.default_throttle_minutes,
            )
        rule = rules[0]
        return (
            rule.min_severity or self._config.default_min_severity,
            rule.throttle_minutes or self._config.default_throttle_minutes,
        )

    async def _deliver(
        self,
        event: NotificationEvent,
        recipient: NotificationRecipient,
        rendered: RenderedEmail,
    ) -> bool:
        async with self._send_slots:
            try:
                send = await self._transport.send(
                    recipient.email, rendered.subject, rendered.html, rendered.text,
                )
            except Exception as exc:
                logger.exception("notification_send_error", event_id=event.id)
                send = SendResult(success=False, error=str(exc) or type(exc).__name__)

        delivery = NotificationDelivery(
            event_id=event.id,
            website_id=event.website_id,
            recipient=recipient.email,
            subject=rendered.subject,
            template_id=event.event_type,
            provider_message_id=send.message_id,
            status=DeliveryStatus.SENT if send.success else DeliveryStatus.FAILED,
            error_code=None if send.success else "send_failed",
            error_message=send.error,
            last_attempt_at=self._clock(),
        )
        try:
            await self._store.create_delivery(delivery)
        except Exception:
            logger.exception(
                "notification_delivery_write_failed",
                event_id=event.id,
                status=delivery.status.value,
            )

        if not send.success:
            logger.warning("notification_send_failed", event_id=event.id, error=send.error)
        return send.success

    # ── Queries / utilities ──────────────────────────────────────

    async def send_test_notification(self, site_id: str, email: str) -> SendResult:
        rendered = render_test_email(site_id, self._clock())
        try:
            return await self._transport.send(email, rendered.subject, rendered.html, rendered.text)
        except Exception as exc:
            logger.exception("notification_test_send_error", site_id=site_id)
            return SendResult(success=False, error=str(exc) or type(exc).__name__)

    async def get_notification_settings(self, site_id: str) -> NotificationSettings | None:
        return await self._store.get_settings(site_id)

    async def get_recent_events(
        self,
        site_id: str,
        limit: int | None = None,
    ) -> list[NotificationEvent]:
        return await self._store.get_recent_events(
            site_id, limit if limit is not None else self._config.recent_events_limit,
        )

    async def get_recipients(self, site_id: str) -> list[NotificationRecipient]:
        return await self._store.get_recipients(site_id)

    async def get_rules(self, site_id: str) -> list[NotificationRule]:
        return await self._store.get_rules(site_id)

    def is_email_configured(self) -> bool:
        return self._transport.is_configured
