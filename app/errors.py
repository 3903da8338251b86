"""Exception hierarchy for the collection-intelligence service."""

from __future__ import annotations


class IntelligenceError(RuntimeError):
    """Base class for failures raised by the intelligence layer."""


class SerializationError(IntelligenceError):
    """Raised when a payload cannot be canonically encoded for fingerprinting."""


class UpstreamError(IntelligenceError):
    """Raised when the completion backend cannot be reached or misbehaves."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class EmptyResponseError(UpstreamError):
    """Raised when the completion backend answers without any content."""


class DecodeError(IntelligenceError):
    """Raised when model output does not parse into the expected shape."""


class CollectionError(IntelligenceError):
    """Raised when a stored collection item cannot be read back."""
