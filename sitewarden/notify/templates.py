"""HTML + plain-text email rendering for notification events.

Every value that came from an event (title, summary, payload fields, site id)
goes through ``html.escape`` before it lands in the HTML body.
"""

from __future__ import annotations

import datetime
from collections.abc import Callable
from html import escape as html_escape
from typing import Any

from sitewarden.notify.types import NotificationEvent, RenderedEmail

_BASE_STYLES = """
  body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; margin: 0; padding: 0; background-color: #f5f5f5; }
  .container { max-width: 600px; margin: 0 auto; background: white; }
  .header { background: #1e3a5f; padding: 24px; text-align: center; }
  .header h1 { color: white; margin: 0; font-size: 18px; font-weight: 600; }
  .content { padding: 32px 24px; }
  .alert-box { padding: 16px; border-radius: 8px; margin-bottom: 24px; }
  .alert-critical { background: #fef2f2; border-left: 4px solid #dc2626; }
  .alert-warning { background: #fffbeb; border-left: 4px solid #f59e0b; }
  .alert-info { background: #eff6ff; border-left: 4px solid #3b82f6; }
  .metric-table { width: 100%; border-collapse: collapse; margin: 16px 0; }
  .metric-table th, .metric-table td { padding: 12px; text-align: left; border-bottom: 1px solid #e5e7eb; }
  .footer { padding: 24px; background: #f9fafb; text-align: center; font-size: 12px; color: #6b7280; }
  .badge { display: inline-block; padding: 4px 8px; border-radius: 4px; font-size: 12px; font-weight: 500; }
  .badge-critical { background: #fee2e2; color: #dc2626; }
  .badge-warning { background: #fef3c7; color: #d97706; }
  .badge-info { background: #dbeafe; color: #2563eb; }
"""

_NO_CHANGES = "No significant changes detected in the last 24 hours."

Renderer = Callable[[NotificationEvent, str], RenderedEmail]


# ── Helpers ─────────────────────────────────────────────────────


def _severity_class(severity: str) -> str:
    return {"critical": "alert-critical", "warning": "alert-warning"}.get(severity, "alert-info")


def _badge_class(severity: str) -> str:
    return {"critical": "badge-critical", "warning": "badge-warning"}.get(severity, "badge-info")


def format_timestamp(value: datetime.datetime | None) -> str:
    if value is None:
        return "N/A"
    return value.strftime("%b %d, %Y, %H:%M %Z").rstrip()


def _number(value: Any) -> str:
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, int):
        return f"{value:,}"
    if isinstance(value, float):
        return f"{value:,.2f}".rstrip("0").rstrip(".")
    return str(value)


def _page(body: str, footer: str) -> str:
    return (
        "<!DOCTYPE html>\n"
        f"<html>\n<head><style>{_BASE_STYLES}</style></head>\n<body>\n"
        '  <div class="container">\n'
        '    <div class="header"><h1>Arclo Notifications</h1></div>\n'
        f'    <div class="content">\n{body}\n    </div>\n'
        f'    <div class="footer">{footer}</div>\n'
        "  </div>\n</body>\n</html>"
    )


def _alert_box(event: NotificationEvent) -> str:
    severity = event.severity.value
    return (
        f'      <div class="alert-box {_severity_class(severity)}">\n'
        f'        <span class="badge {_badge_class(severity)}">{severity.upper()}</span>\n'
        f'        <h2 style="margin: 12px 0 8px 0; font-size: 18px;">{html_escape(event.title)}</h2>\n'
        f'        <p style="margin: 0; color: #6b7280;">{html_escape(event.summary or "")}</p>\n'
        "      </div>"
    )


def _event_footer(event: NotificationEvent, site: str) -> str:
    return (
        f"<p>Notification sent by Arclo for {site}</p>"
        f"<p>Event ID: {event.id} | {format_timestamp(event.occurred_at)}</p>"
    )


def _text_footer(event: NotificationEvent, website_id: str) -> str:
    return (
        f"---\nWebsite: {website_id}\nEvent ID: {event.id}\n"
        f"Time: {format_timestamp(event.occurred_at)}"
    )


# ── Renderers ───────────────────────────────────────────────────


def render_critical_drop(event: NotificationEvent, website_id: str) -> RenderedEmail:
    payload = event.payload
    metric = payload.get("metric") or "clicks"
    delta_pct = payload.get("delta_pct") or 0
    current = payload.get("current_value") or 0
    previous = payload.get("previous_value") or 0
    site = html_escape(website_id)

    try:
        negative = float(delta_pct) < 0
        sign = "+" if float(delta_pct) > 0 else ""
    except (TypeError, ValueError):
        negative, sign = False, ""
    colour = "#dc2626" if negative else "#16a34a"

    body = (
        f"{_alert_box(event)}\n"
        '      <h3 style="margin-bottom: 12px; font-size: 14px;">Key Metrics</h3>\n'
        '      <table class="metric-table">\n'
        "        <tr><th>Metric</th><th>Current</th><th>Previous</th><th>Change</th></tr>\n"
        f"        <tr><td>{html_escape(str(metric))}</td>"
        f"<td>{html_escape(_number(current))}</td>"
        f"<td>{html_escape(_number(previous))}</td>"
        f'<td style="color: {colour}">{sign}{html_escape(str(delta_pct))}%</td></tr>\n'
        "      </table>"
    )
    text = (
        f"[Arclo] {event.severity.value.upper()}: {event.title}\n\n{event.summary or ''}\n\n"
        f"Key Metrics:\n- Metric: {metric}\n- Current: {current}\n"
        f"- Previous: {previous}\n- Change: {delta_pct}%\n\n"
        f"{_text_footer(event, website_id)}"
    )
    return RenderedEmail(
        subject=f"[Arclo] {website_id}: Critical drop in {metric} ({delta_pct}% WoW)",
        html=_page(body, _event_footer(event, site)),
        text=text,
    )


def render_crawl_failure(event: NotificationEvent, website_id: str) -> RenderedEmail:
    site = html_escape(website_id)
    text = (
        f"[Arclo] {event.severity.value.upper()}: {event.title}\n\n{event.summary or ''}\n\n"
        f"{_text_footer(event, website_id)}"
    )
    return RenderedEmail(
        subject=f"[Arclo] {website_id}: Crawl Failure Detected",
        html=_page(_alert_box(event), _event_footer(event, site)),
        text=text,
    )


def render_approval_needed(event: NotificationEvent, website_id: str) -> RenderedEmail:
    change_type = str(event.payload.get("change_type") or "update")
    risk_level = str(event.payload.get("risk_level") or "low")
    site = html_escape(website_id)

    body = (
        f"{_alert_box(event)}\n"
        f'      <p style="margin-bottom: 8px;"><strong>Change Type:</strong> {html_escape(change_type)}</p>\n'
        f'      <p style="margin-bottom: 8px;"><strong>Risk Level:</strong> {html_escape(risk_level)}</p>'
    )
    text = (
        f"[Arclo] Approval Needed: {event.title}\n\n{event.summary or ''}\n\n"
        f"Change Type: {change_type}\nRisk Level: {risk_level}\n\n"
        f"{_text_footer(event, website_id)}"
    )
    return RenderedEmail(
        subject=f"[Arclo] {website_id}: Approval Needed - {change_type}",
        html=_page(body, _event_footer(event, site)),
        text=text,
    )


def render_daily_summary(event: NotificationEvent, website_id: str) -> RenderedEmail:
    site = html_escape(website_id)
    summary = event.summary or _NO_CHANGES
    when = format_timestamp(event.occurred_at)

    body = (
        '      <h2 style="margin: 0 0 16px 0; font-size: 20px;">Daily Diagnosis Summary</h2>\n'
        f'      <p style="color: #6b7280; margin-bottom: 24px;">{when}</p>\n'
        '      <div class="alert-box alert-info">\n'
        "        <h3 style=\"margin: 0 0 8px 0; font-size: 14px;\">What's Changed</h3>\n"
        f'        <p style="margin: 0; color: #6b7280;">{html_escape(summary)}</p>\n'
        "      </div>"
    )
    footer = f"<p>Summary sent by Arclo for {site}</p><p>Event ID: {event.id}</p>"
    text = (
        f"[Arclo] Daily Diagnosis Summary for {website_id}\n{when}\n\n"
        f"What's Changed:\n{summary}\n\n---\nEvent ID: {event.id}"
    )
    return RenderedEmail(
        subject=f"[Arclo] {website_id}: Daily Diagnosis Summary",
        html=_page(body, footer),
        text=text,
    )


def render_system_alert(event: NotificationEvent, website_id: str) -> RenderedEmail:
    """Control-plane events (worker, run and safety changes): subject is the event title."""
    site = html_escape(website_id)
    rows = [
        (str(key), _number(value))
        for key, value in event.payload.items()
        if value is not None and not isinstance(value, (dict, list))
    ]

    body = _alert_box(event)
    if rows:
        body += (
            '\n      <table class="metric-table">\n'
            + "".join(
                f"        <tr><th>{html_escape(key)}</th><td>{html_escape(value)}</td></tr>\n"
                for key, value in rows
            )
            + "      </table>"
        )
    details = "".join(f"- {key}: {value}\n" for key, value in rows)
    text = (
        f"[Arclo] {event.severity.value.upper()}: {event.title}\n\n{event.summary or ''}\n\n"
        + (f"Details:\n{details}\n" if details else "")
        + _text_footer(event, website_id)
    )
    return RenderedEmail(
        subject=f"[Arclo] {website_id}: {event.title}",
        html=_page(body, _event_footer(event, site)),
        text=text,
    )


def render_test_email(website_id: str, sent_at: datetime.datetime | None = None) -> RenderedEmail:
    """Email used to verify a recipient's setup."""
    site = html_escape(website_id)
    when = format_timestamp(sent_at or datetime.datetime.now(datetime.UTC))

    body = (
        '      <div class="alert-box alert-info">\n'
        '        <span class="badge badge-info">TEST</span>\n'
        '        <h2 style="margin: 12px 0 8px 0; font-size: 18px;">Test Email</h2>\n'
        '        <p style="margin: 0; color: #6b7280;">This is a test email to verify'
        " your notification setup is working correctly.</p>\n"
        "      </div>\n"
        f'      <p style="margin-bottom: 8px;"><strong>Website:</strong> {site}</p>\n'
        f'      <p style="margin-bottom: 8px;"><strong>Sent:</strong> {when}</p>'
    )
    text = (
        "[Arclo] Test Email\n\nThis is a test to verify your notification setup.\n\n"
        f"Website: {website_id}\nSent: {when}"
    )
    return RenderedEmail(
        subject=f"[Arclo] Test Email - {website_id}",
        html=_page(body, "<p>Test notification sent by Arclo</p>"),
        text=text,
    )


# ── Selector ────────────────────────────────────────────────────

_RENDERERS: dict[str, Renderer] = {
    "critical_drop_detected": render_critical_drop,
    "crawl_failure": render_crawl_failure,
    "connector_failure": render_crawl_failure,
    "approval_needed": render_approval_needed,
    "approval_reminder": render_approval_needed,
    "daily_diagnosis_summary": render_daily_summary,
    "worker_failure": render_system_alert,
    "orchestration_failure": render_system_alert,
    "kill_switch_changed": render_system_alert,
    "system_mode_changed": render_system_alert,
}


def render_notification_email(event: NotificationEvent, website_id: str) -> RenderedEmail:
    """Pick the template for the event type; unknown types get the failure template."""
    renderer = _RENDERERS.get(event.event_type, render_crawl_failure)
    return renderer(event, website_id)
