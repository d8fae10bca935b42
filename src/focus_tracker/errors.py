"""Exception types shared across the tracker, stores and web API."""

from __future__ import annotations


class TrackerError(Exception):
    """Base class for errors raised by the focus tracker."""


class ProviderError(TrackerError):
    """The platform snapshot could not be acquired."""


class StoreError(TrackerError):
    """A persistence operation failed."""


class NotFoundError(StoreError):
    """An update or delete targeted an id that does not exist."""


class RuleCompileError(TrackerError, ValueError):
    """A rule pattern is not a valid regular expression."""

    def __init__(self, pattern: str, reason: str) -> None:
        super().__init__(f"invalid pattern {pattern!r}: {reason}")
        self.pattern = pattern
        self.reason = reason
