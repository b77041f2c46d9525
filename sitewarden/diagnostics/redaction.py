"""Secret redaction for anything a diagnostic run stores or exports."""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

REDACTED = "[REDACTED]"

_SECRET_KEY_RE = re.compile(r"token|secret|key|password|auth|credential", re.IGNORECASE)


def is_secret_key(key: object) -> bool:
    """True when a field name suggests its value is a credential."""
    return bool(_SECRET_KEY_RE.search(str(key)))


def redact_secrets(obj: Mapping[str, Any], marker: str = REDACTED) -> dict[str, Any]:
    """Return a copy of *obj* with secret-looking values replaced by *marker*.

    Walks nested mappings and lists of mappings.  The input is never mutated.
    """
    redacted: dict[str, Any] = {}
    for key, value in obj.items():
        if is_secret_key(key):
            redacted[key] = marker
        else:
            redacted[key] = _redact_value(value, marker)
    return redacted


def _redact_value(value: Any, marker: str) -> Any:
    if isinstance(value, Mapping):
        return redact_secrets(value, marker)
    if isinstance(value, (list, tuple)):
        return [_redact_value(item, marker) for item in value]
    return value
