from __future__ import annotations


class TidymarksError(RuntimeError):
    """Base exception for import, validation and link-check failures."""


class ParseError(TidymarksError):
    """Raised when an export has no recognisable bookmark list."""


class ValidationError(TidymarksError):
    """Raised when a request is rejected before any work is attempted."""


class TransportError(TidymarksError):
    """Raised when the link prober cannot be reached or answers garbage."""


class ScanCancelled(TidymarksError):
    """Raised by a prober that observed the scan's cancellation token."""
