"""Pure failure classifier — maps raw failure evidence to a FailureBucket.

Evidence is a loosely-shaped mapping produced by whatever code observed the
failure (an HTTP probe, a worker error, a JSON decoder).  Fields are looked
up case-insensitively under several aliases, so ``{"statusCode": 404}`` and
``{"status": "404"}`` classify the same way.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

import structlog

from sitewarden.diagnostics.types import Classification, FailureBucket

logger = structlog.get_logger(__name__)

SUGGESTED_FIXES: dict[FailureBucket, str] = {
    FailureBucket.TIMEOUT: (
        "The service did not respond in time. Check that the worker is running"
        " and reachable, then retry; slow endpoints may need a longer timeout."
    ),
    FailureBucket.DNS: (
        "The hostname could not be resolved or the TLS handshake failed."
        " Verify the base URL, the DNS records and the SSL certificate."
    ),
    FailureBucket.WRONG_ENDPOINT_404: (
        "The endpoint path does not exist. Verify the base URL and the route"
        " configured for this service."
    ),
    FailureBucket.AUTH_401_403: (
        "The service rejected the credentials. Re-check the API key or"
        " reconnect the integration and confirm it has the required scopes."
    ),
    FailureBucket.REDIRECT_3XX: (
        "The endpoint redirected instead of returning data. Configure the final"
        " URL directly (check http vs https and trailing slashes)."
    ),
    FailureBucket.HTML_200_APP_SHELL: (
        "The request reached a web application's HTML page instead of the data"
        " API. Point the base URL at the API host or path, not the browser app."
    ),
    FailureBucket.UNKNOWN: (
        "Unrecognised failure. Copy the diagnostics for support and check the"
        " worker logs for details."
    ),
}

# ── Field aliases (compared lower-cased) ───────────────────────

_STATUS_KEYS = ("status", "statuscode", "status_code", "httpstatus", "http_status")
_CONTENT_TYPE_KEYS = ("contenttype", "content_type", "content-type")
_ERROR_KEYS = (
    "error",
    "errormessage",
    "error_message",
    "errortype",
    "error_type",
    "code",
    "message",
)
_BODY_KEYS = (
    "body",
    "bodysnippet",
    "body_snippet",
    "responsesnippet",
    "response_snippet",
    "snippet",
    "responsebody",
    "response_body",
)

# ── Patterns ───────────────────────────────────────────────────

_TIMEOUT_RE = re.compile(
    r"timeout|timed out|etimedout|econnreset|econnaborted|socket hang up"
    r"|connection ?reset|aborted",
    re.IGNORECASE,
)
_DNS_RE = re.compile(
    r"enotfound|eai_again|getaddrinfo|\bdns\b|name resolution|certificate"
    r"|\bssl|\btls|cert_|self[- ]signed",
    re.IGNORECASE,
)
_AUTH_RE = re.compile(
    r"unauthori[sz]ed|unauthenticated|forbidden|access denied|permission denied"
    r"|invalid (api )?key|invalid credentials|invalid token|\bauth",
    re.IGNORECASE,
)
_NOT_FOUND_RE = re.compile(r"not found|\b404\b", re.IGNORECASE)
_REDIRECT_RE = re.compile(r"redirect|moved", re.IGNORECASE)
_JSON_PARSE_RE = re.compile(r"json|unexpected token", re.IGNORECASE)
_HTML_MARKER_RE = re.compile(r"<|doctype", re.IGNORECASE)
_HTML_BODY_RE = re.compile(r"<!doctype\s+html|<html[\s>]", re.IGNORECASE)


def _bucket(bucket: FailureBucket) -> Classification:
    return Classification(bucket=bucket, suggested_fix=SUGGESTED_FIXES[bucket])


# ── Extractors ─────────────────────────────────────────────────


def _lowered(details: Mapping[Any, Any]) -> dict[str, Any]:
    return {str(k).lower(): v for k, v in details.items()}


def _first(fields: dict[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = fields.get(key)
        if value is not None and value != "":
            return value
    return None


def extract_status(fields: dict[str, Any]) -> int | None:
    """HTTP status as an int, or None when absent or not numeric."""
    for key in _STATUS_KEYS:
        value = fields.get(key)
        if isinstance(value, bool) or value is None:
            continue
        if isinstance(value, int):
            return value
        if isinstance(value, str) and value.strip().isdigit():
            return int(value.strip())
    return None


def extract_content_type(fields: dict[str, Any]) -> str:
    value = _first(fields, _CONTENT_TYPE_KEYS)
    if value is None:
        headers = fields.get("headers")
        if isinstance(headers, Mapping):
            value = _first(_lowered(headers), _CONTENT_TYPE_KEYS)
    return str(value).lower() if value is not None else ""


def extract_error_text(fields: dict[str, Any]) -> str:
    """All error-ish fields joined, so patterns can match any of them."""
    parts = [
        str(fields[key])
        for key in _ERROR_KEYS
        if fields.get(key) is not None and not isinstance(fields[key], Mapping)
    ]
    return " ".join(parts)


def extract_body(fields: dict[str, Any]) -> str:
    value = _first(fields, _BODY_KEYS)
    return str(value) if value is not None else ""


def _is_html_content_type(content_type: str) -> bool:
    return "text/html" in content_type or "application/xhtml" in content_type


def _looks_like_html(body: str) -> bool:
    return bool(_HTML_BODY_RE.search(body[:4096]))


# ── Classifier ─────────────────────────────────────────────────


def classify(details: Mapping[Any, Any] | None) -> Classification:
    """Classify failure evidence; always returns a Classification."""
    try:
        return _classify(details)
    except Exception:
        logger.exception("classify_failed")
        return _bucket(FailureBucket.UNKNOWN)


def _classify(details: Mapping[Any, Any] | None) -> Classification:
    if not isinstance(details, Mapping) or not details:
        return _bucket(FailureBucket.UNKNOWN)

    fields = _lowered(details)
    status = extract_status(fields)
    content_type = extract_content_type(fields)
    error_text = extract_error_text(fields)
    body = extract_body(fields)
    html_content = _is_html_content_type(content_type)

    # 1-2. Transport-level errors win over anything the status says.
    if error_text and _TIMEOUT_RE.search(error_text):
        return _bucket(FailureBucket.TIMEOUT)
    if error_text and _DNS_RE.search(error_text):
        return _bucket(FailureBucket.DNS)

    # 3-6. Status codes.
    if status == 404:
        return _bucket(FailureBucket.WRONG_ENDPOINT_404)
    if status in (401, 403):
        return _bucket(FailureBucket.AUTH_401_403)
    if status is not None and 300 <= status < 400:
        return _bucket(FailureBucket.REDIRECT_3XX)
    if status == 200 and (html_content or _looks_like_html(body)):
        return _bucket(FailureBucket.HTML_200_APP_SHELL)

    # 7. HTML body without a status only counts with an HTML content type.
    if status is None and html_content and _looks_like_html(body):
        return _bucket(FailureBucket.HTML_200_APP_SHELL)

    # 8. Fall back to words in the error text.
    if error_text:
        if _AUTH_RE.search(error_text):
            return _bucket(FailureBucket.AUTH_401_403)
        if _NOT_FOUND_RE.search(error_text):
            return _bucket(FailureBucket.WRONG_ENDPOINT_404)
        if _REDIRECT_RE.search(error_text):
            return _bucket(FailureBucket.REDIRECT_3XX)
        if _JSON_PARSE_RE.search(error_text) and _HTML_MARKER_RE.search(error_text):
            return _bucket(FailureBucket.HTML_200_APP_SHELL)

    return _bucket(FailureBucket.UNKNOWN)
