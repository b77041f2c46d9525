"""Safety gate exceptions."""

from __future__ import annotations


class SafetyError(Exception):
    """Base exception for safety gate errors."""


class InvalidModeError(SafetyError):
    """Requested system mode is not one of the known modes."""

    def __init__(self, mode: str) -> None:
        self.mode = mode
        super().__init__(f"Unknown system mode: {mode!r}")
