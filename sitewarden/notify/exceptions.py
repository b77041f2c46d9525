"""Notification exceptions."""

from __future__ import annotations


class NotificationError(Exception):
    """Base exception for notification errors."""


class EmailConfigError(NotificationError):
    """Email delivery is enabled but the transport is missing required configuration."""
