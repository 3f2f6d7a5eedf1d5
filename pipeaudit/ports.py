"""Port definitions for the event store and the metadata codec."""

from datetime import datetime
from typing import Any, Mapping, Optional, Protocol, Sequence, Union
from uuid import UUID

from .models import AuditDetails, AuditEvent, AuditStatus, EventFilters


class EventStoreGateway(Protocol):
    """Repository interface that adapters can implement for any backend.

    Adapters own persistence, indexing and pagination. Read methods return
    events in storage (arrival) order unless stated otherwise.
    """

    def save(self, event: AuditEvent) -> None:
        """Persist one event."""

    def find_by_correlation_id(self, correlation_id: UUID) -> Sequence[AuditEvent]:
        """Return every event recorded for one pipeline run."""

    def find_by_time_range(
        self,
        start_date: datetime,
        end_date: datetime,
        filters: Optional[EventFilters] = None,
    ) -> Sequence[AuditEvent]:
        """Return events whose timestamp falls within ``[start_date, end_date]``."""

    def count_by_correlation_id_and_status(self, correlation_id: UUID, status: AuditStatus) -> int:
        """Count a run's events with the given status."""

    def find_with_filters(
        self,
        filters: EventFilters,
        offset: int,
        limit: int,
    ) -> Sequence[AuditEvent]:
        """Return one page of matching events, newest first."""

    def count_with_filters(self, filters: EventFilters) -> int:
        """Count events matching ``filters``."""


RawMetadata = Union[str, bytes, Mapping[str, Any], None]


class MetadataCodec(Protocol):
    """Converts between raw metadata payloads and ``AuditDetails``."""

    def decode(self, raw: RawMetadata) -> Optional[AuditDetails]:
        """Decode a payload; ``None`` means the event carried no metadata."""

    def encode(self, details: Optional[AuditDetails]) -> Optional[str]:
        """Encode details for storage."""
