"""In-process event store, for demos and tests."""

from datetime import datetime, timezone
from threading import Lock
from typing import List, Optional, Sequence
from uuid import UUID

from ..models import AuditEvent, AuditStatus, EventFilters


class InMemoryEventStore:
    """Keeps events in a list in arrival order."""

    def __init__(self, events: Optional[Sequence[AuditEvent]] = None):
        self._events: List[AuditEvent] = list(events or [])
        self._lock = Lock()

    def save(self, event: AuditEvent) -> None:
        with self._lock:
            self._events.append(event)

    def find_by_correlation_id(self, correlation_id: UUID) -> Sequence[AuditEvent]:
        return [event for event in self._snapshot() if event.correlation_id == correlation_id]

    def find_by_time_range(
        self,
        start_date: datetime,
        end_date: datetime,
        filters: Optional[EventFilters] = None,
    ) -> Sequence[AuditEvent]:
        start, end = _as_utc(start_date), _as_utc(end_date)
        return [
            event
            for event in self._snapshot()
            if event.event_timestamp is not None
            and start <= _as_utc(event.event_timestamp) <= end
            and _matches(event, filters)
        ]

    def count_by_correlation_id_and_status(self, correlation_id: UUID, status: AuditStatus) -> int:
        return sum(
            1
            for event in self._snapshot()
            if event.correlation_id == correlation_id and event.status == status
        )

    def find_with_filters(
        self,
        filters: EventFilters,
        offset: int,
        limit: int,
    ) -> Sequence[AuditEvent]:
        matching = [event for event in self._snapshot() if _matches(event, filters)]
        matching.sort(key=lambda event: event.event_timestamp, reverse=True)
        return matching[offset : offset + limit]

    def count_with_filters(self, filters: EventFilters) -> int:
        return sum(1 for event in self._snapshot() if _matches(event, filters))

    def _snapshot(self) -> List[AuditEvent]:
        with self._lock:
            return list(self._events)


def _matches(event: AuditEvent, filters: Optional[EventFilters]) -> bool:
    if filters is None:
        return True
    if filters.source_system and event.source_system != filters.source_system:
        return False
    if filters.module_name and event.module_name != filters.module_name:
        return False
    if filters.status is not None and event.status != filters.status:
        return False
    if filters.checkpoint_stage is not None and event.checkpoint_stage != filters.checkpoint_stage:
        return False
    return True


def _as_utc(value: datetime) -> datetime:
    # naive timestamps are taken as UTC, as the SQL adapter stores them
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
