"""Pure statistics over audit events for a reporting period."""

from datetime import date, datetime
from typing import Dict, Iterable, Optional

from .models import AuditEvent, AuditStatus


def compute_audit_statistics(
    events: Iterable[AuditEvent],
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> Dict:
    """Compute volume and outcome statistics from audit events."""
    events_list = list(events)
    if not events_list:
        return empty_audit_statistics(start_date=start_date, end_date=end_date)

    total_events = len(events_list)
    by_status = _count_by(events_list, lambda event: event.status.value)
    success_count = by_status.get(AuditStatus.SUCCESS.value, 0)
    failure_count = by_status.get(AuditStatus.FAILURE.value, 0)
    warning_count = by_status.get(AuditStatus.WARNING.value, 0)

    by_day: Dict[date, int] = {}
    for event in events_list:
        day = event.event_timestamp.date()
        by_day[day] = by_day.get(day, 0) + 1
    peak_day = min(by_day, key=lambda day: (-by_day[day], day))

    return {
        "period": _period(start_date, end_date),
        "overview": {
            "total_events": total_events,
            "success_count": success_count,
            "failure_count": failure_count,
            "warning_count": warning_count,
            "success_rate": success_count / total_events * 100,
            "failure_rate": failure_count / total_events * 100,
            "warning_rate": warning_count / total_events * 100,
            "correlation_ids": len({event.correlation_id for event in events_list}),
        },
        "by_source_system": _count_by(events_list, lambda event: event.source_system or "unknown"),
        "by_module": _count_by(events_list, lambda event: event.module_name or "unknown"),
        "by_checkpoint_stage": _count_by(events_list, lambda event: event.checkpoint_stage.value),
        "by_status": by_status,
        "daily": {
            "average_events_per_day": total_events / len(by_day),
            "peak_events_per_day": by_day[peak_day],
            "peak_date": peak_day.isoformat(),
        },
    }


def empty_audit_statistics(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> Dict:
    """Return empty audit statistics structure."""
    return {
        "period": _period(start_date, end_date),
        "overview": {
            "total_events": 0,
            "success_count": 0,
            "failure_count": 0,
            "warning_count": 0,
            "success_rate": 0.0,
            "failure_rate": 0.0,
            "warning_rate": 0.0,
            "correlation_ids": 0,
        },
        "by_source_system": {},
        "by_module": {},
        "by_checkpoint_stage": {},
        "by_status": {},
        "daily": {
            "average_events_per_day": 0.0,
            "peak_events_per_day": 0,
            "peak_date": None,
        },
    }


def _period(start_date: Optional[datetime], end_date: Optional[datetime]) -> Dict:
    return {
        "start": start_date.isoformat() if start_date else None,
        "end": end_date.isoformat() if end_date else None,
    }


def _count_by(events: Iterable[AuditEvent], key) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for event in events:
        label = key(event)
        counts[label] = counts.get(label, 0) + 1
    return counts
