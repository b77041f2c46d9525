"""Diagnostics exceptions."""

from __future__ import annotations


class DiagnosticsError(Exception):
    """Base exception for diagnostics errors."""
