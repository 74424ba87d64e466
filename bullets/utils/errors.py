"""Custom exceptions for engine and host logic."""

from __future__ import annotations


class HostStoreError(Exception):
    """Raised by a document store when a read or write cannot be served."""

    def __init__(self, message: str, *, uid: str | None = None) -> None:
        super().__init__(message)
        self.uid = uid


class UnknownPatternError(ValueError):
    """Raised when a pattern id is not declared in the pattern table."""

    def __init__(self, pattern_id: str) -> None:
        super().__init__(f"Unknown pattern id: {pattern_id}")
        self.pattern_id = pattern_id
