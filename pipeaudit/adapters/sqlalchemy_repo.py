"""SQLAlchemy event store adapter for pipeaudit."""

import json
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import DateTime, String, Text, bindparam, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..errors import AuditPersistenceError
from ..log import get_logger
from ..models import AuditEvent, AuditStatus, CheckpointStage, EventFilters

logger = get_logger(__name__)

_SELECT_EVENTS = """
    SELECT audit_id, correlation_id, source_system, module_name, process_name,
           source_entity, destination_entity, key_identifier, checkpoint_stage,
           event_timestamp, status, message, details_json
    FROM pipeline_audit_log
"""

_RESULT_TYPES = {
    "audit_id": String(),
    "correlation_id": String(),
    "source_system": String(),
    "module_name": String(),
    "process_name": String(),
    "source_entity": String(),
    "destination_entity": String(),
    "key_identifier": String(),
    "checkpoint_stage": String(),
    "event_timestamp": DateTime(),
    "status": String(),
    "message": Text(),
    "details_json": Text(),
}


class SQLAlchemyEventStore:
    """Reads and writes audit events in the ``pipeline_audit_log`` table."""

    def __init__(self, db: Session):
        self.db = db

    def save(self, event: AuditEvent) -> None:
        statement = text(
            """
            INSERT INTO pipeline_audit_log (
                audit_id, correlation_id, source_system, module_name, process_name,
                source_entity, destination_entity, key_identifier, checkpoint_stage,
                event_timestamp, status, message, details_json
            ) VALUES (
                :audit_id, :correlation_id, :source_system, :module_name, :process_name,
                :source_entity, :destination_entity, :key_identifier, :checkpoint_stage,
                :event_timestamp, :status, :message, :details_json
            )
            """
        ).bindparams(bindparam("event_timestamp", type_=DateTime()))
        params = {
            "audit_id": str(event.audit_id) if event.audit_id else None,
            "correlation_id": str(event.correlation_id),
            "source_system": event.source_system,
            "module_name": event.module_name,
            "process_name": event.process_name,
            "source_entity": event.source_entity,
            "destination_entity": event.destination_entity,
            "key_identifier": event.key_identifier,
            "checkpoint_stage": event.checkpoint_stage.value,
            "event_timestamp": event.event_timestamp,
            "status": event.status.value,
            "message": event.message,
            "details_json": _serialize_details(event.details_json),
        }
        try:
            self.db.execute(statement, params)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise AuditPersistenceError(
                f"Failed to save audit event with ID: {event.audit_id}",
                event.correlation_id,
            ) from exc

    def find_by_correlation_id(self, correlation_id: UUID) -> Sequence[AuditEvent]:
        return self._fetch_events(
            _SELECT_EVENTS + " WHERE correlation_id = :correlation_id ORDER BY event_timestamp",
            {"correlation_id": str(correlation_id)},
            correlation_id=correlation_id,
        )

    def find_by_time_range(
        self,
        start_date: datetime,
        end_date: datetime,
        filters: Optional[EventFilters] = None,
    ) -> Sequence[AuditEvent]:
        where, params = _filter_clause(filters)
        where.append("event_timestamp >= :start_date AND event_timestamp <= :end_date")
        params.update({"start_date": start_date, "end_date": end_date})
        return self._fetch_events(
            _SELECT_EVENTS + " WHERE " + " AND ".join(where) + " ORDER BY event_timestamp",
            params,
            datetime_params=("start_date", "end_date"),
        )

    def count_by_correlation_id_and_status(self, correlation_id: UUID, status: AuditStatus) -> int:
        return self._count(
            "SELECT COUNT(*) FROM pipeline_audit_log WHERE correlation_id = :correlation_id AND status = :status",
            {"correlation_id": str(correlation_id), "status": status.value},
        )

    def find_with_filters(
        self,
        filters: EventFilters,
        offset: int,
        limit: int,
    ) -> Sequence[AuditEvent]:
        where, params = _filter_clause(filters)
        sql = _SELECT_EVENTS
        if where:
            sql += " WHERE " + " AND ".join(where)
        sql += " ORDER BY event_timestamp DESC LIMIT :limit OFFSET :offset"
        params.update({"limit": limit, "offset": offset})
        return self._fetch_events(sql, params)

    def count_with_filters(self, filters: EventFilters) -> int:
        where, params = _filter_clause(filters)
        sql = "SELECT COUNT(*) FROM pipeline_audit_log"
        if where:
            sql += " WHERE " + " AND ".join(where)
        return self._count(sql, params)

    def _fetch_events(
        self,
        sql: str,
        params: Dict[str, Any],
        datetime_params: Tuple[str, ...] = (),
        correlation_id: Optional[UUID] = None,
    ) -> List[AuditEvent]:
        statement = text(sql)
        if datetime_params:
            statement = statement.bindparams(*(bindparam(name, type_=DateTime()) for name in datetime_params))
        try:
            rows = self.db.execute(statement.columns(**_RESULT_TYPES), params).fetchall()
        except SQLAlchemyError as exc:
            logger.error("audit_event_query_failed", error=str(exc))
            raise AuditPersistenceError("Failed to retrieve audit events", correlation_id) from exc
        return [_row_to_event(row) for row in rows]

    def _count(self, sql: str, params: Dict[str, Any]) -> int:
        try:
            value = self.db.execute(text(sql), params).scalar()
        except SQLAlchemyError as exc:
            logger.error("audit_event_count_failed", error=str(exc))
            raise AuditPersistenceError("Failed to count audit events") from exc
        return int(value or 0)


def _filter_clause(filters: Optional[EventFilters]) -> Tuple[List[str], Dict[str, Any]]:
    where: List[str] = []
    params: Dict[str, Any] = {}
    if filters is None:
        return where, params
    if filters.source_system and filters.source_system.strip():
        where.append("source_system = :source_system")
        params["source_system"] = filters.source_system
    if filters.module_name and filters.module_name.strip():
        where.append("module_name = :module_name")
        params["module_name"] = filters.module_name
    if filters.status is not None:
        where.append("status = :status")
        params["status"] = filters.status.value
    if filters.checkpoint_stage is not None:
        where.append("checkpoint_stage = :checkpoint_stage")
        params["checkpoint_stage"] = filters.checkpoint_stage.value
    return where, params


def _row_to_event(row) -> AuditEvent:
    return AuditEvent(
        audit_id=UUID(row.audit_id) if row.audit_id else None,
        correlation_id=UUID(row.correlation_id),
        source_system=row.source_system,
        module_name=row.module_name,
        process_name=row.process_name,
        source_entity=row.source_entity,
        destination_entity=row.destination_entity,
        key_identifier=row.key_identifier,
        checkpoint_stage=CheckpointStage(row.checkpoint_stage),
        event_timestamp=row.event_timestamp,
        status=AuditStatus(row.status),
        message=row.message,
        details_json=row.details_json,
    )


def _serialize_details(raw_details) -> Optional[str]:
    if raw_details is None or isinstance(raw_details, str):
        return raw_details
    if isinstance(raw_details, (bytes, bytearray)):
        return raw_details.decode("utf-8")
    return json.dumps(raw_details, sort_keys=True, default=str)
