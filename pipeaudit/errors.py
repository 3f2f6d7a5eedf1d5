"""Error types raised by the audit engine and its adapters."""

from typing import Optional
from uuid import UUID


class AuditError(Exception):
    """Base class for all pipeaudit errors."""

    def __init__(self, message: str, correlation_id: Optional[UUID] = None):
        super().__init__(message)
        self.message = message
        self.correlation_id = correlation_id

    def __str__(self) -> str:
        if self.correlation_id is None:
            return self.message
        return f"{self.message} (correlation_id={self.correlation_id})"


class AuditValidationError(AuditError, ValueError):
    """Caller supplied an invalid or incomplete argument. Never retried."""


class AuditPersistenceError(AuditError):
    """The event store failed to read or write audit events."""


class MetadataDecodeError(AuditError):
    """An event's metadata payload could not be decoded."""
