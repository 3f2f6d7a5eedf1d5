"""Application service orchestrating the event store and the reconciliation engine."""

import uuid
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from .codec import JsonMetadataCodec
from .correlation import current_correlation_id
from .errors import AuditPersistenceError, AuditValidationError
from .log import get_logger
from .models import (
    AuditDetails,
    AuditEvent,
    AuditStatus,
    CheckpointStage,
    Discrepancy,
    DiscrepancyFilters,
    EventFilters,
    ReconciliationReport,
)
from .ports import EventStoreGateway, MetadataCodec
from .reconciliation import REPORT_VIEWS, Clock, ReconciliationSynthesizer, utc_now
from .rules import DiscrepancyDetector, default_rules, sort_discrepancies
from .settings import AuditSettings, get_settings
from .statistics import compute_audit_statistics
from .timeline import RunAssembler

logger = get_logger(__name__)

_LOADER_START_HINTS = ("start", "begin", "init")
_LOADER_COMPLETE_HINTS = ("complete", "finish", "end", "done")


class AuditService:
    """Facade over audit logging, audit queries and reconciliation reporting."""

    def __init__(
        self,
        repo: EventStoreGateway,
        codec: Optional[MetadataCodec] = None,
        settings: Optional[AuditSettings] = None,
        clock: Optional[Clock] = None,
        detector: Optional[DiscrepancyDetector] = None,
    ):
        self.repo = repo
        self.codec = codec or JsonMetadataCodec()
        self.settings = settings or get_settings()
        self.clock = clock or utc_now
        self.detector = detector or DiscrepancyDetector(default_rules(self.settings))
        self.assembler = RunAssembler(repo, self.codec)
        self.synthesizer = ReconciliationSynthesizer(self.assembler, self.detector, clock=self.clock)

    # Event logging

    def log_event(self, event: AuditEvent) -> AuditEvent:
        """Validate, stamp and persist one event. Returns the stored event."""
        _validate_event(event)
        if event.audit_id is None:
            event = replace(event, audit_id=uuid.uuid4())
        if event.event_timestamp is None:
            event = replace(event, event_timestamp=self.clock())

        try:
            self.repo.save(event)
        except AuditPersistenceError:
            logger.error(
                "audit_event_persist_failed",
                audit_id=str(event.audit_id),
                correlation_id=str(event.correlation_id),
            )
            raise

        logger.info(
            "audit_event_logged",
            audit_id=str(event.audit_id),
            correlation_id=str(event.correlation_id),
            stage=event.checkpoint_stage.value,
            status=event.status.value,
        )
        return event

    def log_file_transfer(
        self,
        source_system: str,
        file_name: str,
        process_name: str,
        status: AuditStatus,
        correlation_id: Optional[UUID] = None,
        source_entity: Optional[str] = None,
        destination_entity: Optional[str] = None,
        key_identifier: Optional[str] = None,
        message: Optional[str] = None,
        details: Optional[AuditDetails] = None,
    ) -> AuditEvent:
        """Record a mainframe file landing."""
        _require_text(file_name, "File name")
        return self._log_checkpoint(
            correlation_id=correlation_id,
            source_system=source_system,
            module_name="FILE_TRANSFER",
            process_name=process_name,
            stage=CheckpointStage.LANDING,
            status=status,
            source_entity=source_entity,
            destination_entity=destination_entity,
            key_identifier=key_identifier,
            message=message or f"File transfer {status.value.lower()}: {file_name}",
            details=details,
        )

    def log_sql_loader_operation(
        self,
        source_system: str,
        table_name: str,
        process_name: str,
        status: AuditStatus,
        correlation_id: Optional[UUID] = None,
        source_entity: Optional[str] = None,
        destination_entity: Optional[str] = None,
        key_identifier: Optional[str] = None,
        message: Optional[str] = None,
        details: Optional[AuditDetails] = None,
    ) -> AuditEvent:
        """Record a bulk-load start or completion; the stage is inferred from the process name."""
        _require_text(table_name, "Table name")
        return self._log_checkpoint(
            correlation_id=correlation_id,
            source_system=source_system,
            module_name="SQL_LOADER",
            process_name=process_name,
            stage=determine_loader_stage(process_name, status),
            status=status,
            source_entity=source_entity,
            destination_entity=destination_entity or table_name,
            key_identifier=key_identifier,
            message=message or f"SQL*Loader operation {status.value.lower()} for table: {table_name}",
            details=details,
        )

    def log_business_rule_application(
        self,
        source_system: str,
        module_name: str,
        process_name: str,
        status: AuditStatus,
        correlation_id: Optional[UUID] = None,
        source_entity: Optional[str] = None,
        destination_entity: Optional[str] = None,
        key_identifier: Optional[str] = None,
        message: Optional[str] = None,
        details: Optional[AuditDetails] = None,
    ) -> AuditEvent:
        _require_text(module_name, "Module name")
        return self._log_checkpoint(
            correlation_id=correlation_id,
            source_system=source_system,
            module_name=module_name,
            process_name=process_name,
            stage=CheckpointStage.RULES_APPLIED,
            status=status,
            source_entity=source_entity,
            destination_entity=destination_entity,
            key_identifier=key_identifier,
            message=message or f"Business rule application {status.value.lower()} in module: {module_name}",
            details=details,
        )

    def log_file_generation(
        self,
        source_system: str,
        file_name: str,
        process_name: str,
        status: AuditStatus,
        correlation_id: Optional[UUID] = None,
        source_entity: Optional[str] = None,
        destination_entity: Optional[str] = None,
        key_identifier: Optional[str] = None,
        message: Optional[str] = None,
        details: Optional[AuditDetails] = None,
    ) -> AuditEvent:
        _require_text(file_name, "File name")
        return self._log_checkpoint(
            correlation_id=correlation_id,
            source_system=source_system,
            module_name="FILE_GENERATOR",
            process_name=process_name,
            stage=CheckpointStage.OUTPUT_GENERATED,
            status=status,
            source_entity=source_entity,
            destination_entity=destination_entity,
            key_identifier=key_identifier,
            message=message or f"File generation {status.value.lower()}: {file_name}",
            details=details,
        )

    def _log_checkpoint(
        self,
        correlation_id: Optional[UUID],
        source_system: str,
        module_name: str,
        process_name: str,
        stage: CheckpointStage,
        status: AuditStatus,
        source_entity: Optional[str],
        destination_entity: Optional[str],
        key_identifier: Optional[str],
        message: str,
        details: Optional[AuditDetails],
    ) -> AuditEvent:
        _require_text(process_name, "Process name")
        event = AuditEvent(
            audit_id=uuid.uuid4(),
            correlation_id=_resolve_correlation_id(correlation_id),
            source_system=source_system,
            module_name=module_name,
            process_name=process_name,
            source_entity=source_entity,
            destination_entity=destination_entity,
            key_identifier=key_identifier,
            checkpoint_stage=stage,
            event_timestamp=self.clock(),
            status=status,
            message=message,
            details_json=self.codec.encode(details),
        )
        return self.log_event(event)

    # Queries

    def get_audit_trail(self, correlation_id: Optional[UUID]) -> List[AuditEvent]:
        """All events of one run in event-time order."""
        run = self.assembler.assemble(correlation_id)
        logger.info("audit_trail_retrieved", correlation_id=str(correlation_id), event_count=len(run.events))
        return list(run.events)

    def get_events_with_filters(
        self,
        filters: Optional[EventFilters] = None,
        page: int = 0,
        size: int = 50,
    ) -> List[AuditEvent]:
        if page < 0:
            raise AuditValidationError("Page number cannot be negative")
        if size <= 0:
            raise AuditValidationError("Page size must be positive")
        if size > self.settings.max_page_size:
            raise AuditValidationError(f"Page size cannot exceed {self.settings.max_page_size}")

        events = self.repo.find_with_filters(filters or EventFilters(), offset=page * size, limit=size)
        logger.debug("audit_events_filtered", page=page, size=size, returned=len(events))
        return list(events)

    def count_events_with_filters(self, filters: Optional[EventFilters] = None) -> int:
        return self.repo.count_with_filters(filters or EventFilters())

    def count_events_by_correlation_and_status(self, correlation_id: Optional[UUID], status: AuditStatus) -> int:
        if correlation_id is None:
            raise AuditValidationError("Correlation ID cannot be null")
        return self.repo.count_by_correlation_id_and_status(correlation_id, status)

    def get_audit_statistics(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> Dict:
        start, end = self._normalize_period(start_date, end_date)
        events = self.repo.find_by_time_range(start, end)
        return compute_audit_statistics(events, start_date=start, end_date=end)

    # Reconciliation

    def generate_reconciliation_report(self, correlation_id: Optional[UUID]) -> ReconciliationReport:
        return self.synthesizer.synthesize(correlation_id)

    def generate_report_view(self, correlation_id: Optional[UUID], view: str = "standard") -> Dict:
        """Synthesize once and render the requested view (standard, detailed or summary)."""
        try:
            render = REPORT_VIEWS[view]
        except KeyError:
            raise AuditValidationError(f"Unknown report view: {view}") from None
        return render(self.generate_reconciliation_report(correlation_id))

    def generate_standard_report(self, correlation_id: Optional[UUID]) -> Dict:
        return self.generate_report_view(correlation_id, "standard")

    def generate_detailed_report(self, correlation_id: Optional[UUID]) -> Dict:
        return self.generate_report_view(correlation_id, "detailed")

    def generate_summary_report(self, correlation_id: Optional[UUID]) -> Dict:
        return self.generate_report_view(correlation_id, "summary")

    def validate_data_integrity(self, correlation_id: Optional[UUID]) -> bool:
        return self.generate_reconciliation_report(correlation_id).summary.data_integrity_valid

    def get_record_counts_by_source_system(self, correlation_id: Optional[UUID]) -> Dict[str, int]:
        """Records landed per source system for one run."""
        run = self.assembler.assemble(correlation_id)
        counts: Dict[str, int] = {}
        for event, details in run.events_at(CheckpointStage.LANDING):
            if details is None or details.effective_record_count is None:
                continue
            counts[event.source_system] = counts.get(event.source_system, 0) + details.effective_record_count
        return counts

    def detect_discrepancies(self, filters: Optional[DiscrepancyFilters] = None) -> List[Discrepancy]:
        """Run detection over every run with an event matching the filters.

        Filters only choose which runs are checked; each chosen run is then
        loaded in full, so detection sees the same events as a report would.
        """
        filters = filters or DiscrepancyFilters()
        start, end = self._normalize_period(filters.start, filters.end)
        events = self.repo.find_by_time_range(
            start,
            end,
            EventFilters(source_system=filters.source_system, module_name=filters.module_name),
        )

        correlation_ids = list(dict.fromkeys(event.correlation_id for event in events))
        runs = [self.assembler.assemble(correlation_id) for correlation_id in correlation_ids]
        runs = [run for run in runs if not run.is_empty]
        runs.sort(key=lambda run: (run.first_event_time, str(run.correlation_id)))

        detected_at = self.clock()
        discrepancies: List[Discrepancy] = []
        for run in runs:
            discrepancies.extend(self.detector.detect(run, detected_at=detected_at))
        if filters.severity is not None:
            discrepancies = [item for item in discrepancies if item.severity == filters.severity]

        logger.info(
            "discrepancies_detected",
            runs=len(runs),
            discrepancy_count=len(discrepancies),
            start=start.isoformat(),
            end=end.isoformat(),
        )
        return sort_discrepancies(discrepancies)

    def _normalize_period(
        self,
        start_date: Optional[datetime],
        end_date: Optional[datetime],
    ) -> Tuple[datetime, datetime]:
        if end_date is None:
            end_date = self.clock()
            if start_date is not None:
                end_date = _match_timezone(end_date, start_date)
        if start_date is None:
            start_date = end_date - timedelta(days=self.settings.default_period_days)
        if (start_date.tzinfo is None) != (end_date.tzinfo is None):
            raise AuditValidationError("Start and end dates must both include a timezone or both omit it")
        if start_date > end_date:
            raise AuditValidationError("Start date cannot be after end date")
        return start_date, end_date


def determine_loader_stage(process_name: Optional[str], status: AuditStatus) -> CheckpointStage:
    """Map a loader process name to LOAD_START or LOAD_COMPLETE."""
    if process_name:
        lowered = process_name.lower()
        if any(hint in lowered for hint in _LOADER_START_HINTS):
            return CheckpointStage.LOAD_START
        if any(hint in lowered for hint in _LOADER_COMPLETE_HINTS):
            return CheckpointStage.LOAD_COMPLETE
    return CheckpointStage.LOAD_COMPLETE if status == AuditStatus.SUCCESS else CheckpointStage.LOAD_START


def _resolve_correlation_id(correlation_id: Optional[UUID]) -> UUID:
    if correlation_id is None:
        correlation_id = current_correlation_id()
    if correlation_id is None:
        raise AuditValidationError("Correlation ID cannot be null and none is bound to the current context")
    return correlation_id


def _validate_event(event: Optional[AuditEvent]) -> None:
    if event is None:
        raise AuditValidationError("Audit event cannot be null")
    if event.correlation_id is None:
        raise AuditValidationError("Correlation ID cannot be null")
    if event.source_system is None or not event.source_system.strip():
        raise AuditValidationError("Source system cannot be null or empty", event.correlation_id)
    if event.status is None:
        raise AuditValidationError("Status cannot be null", event.correlation_id)
    if event.checkpoint_stage is None:
        raise AuditValidationError("Checkpoint stage cannot be null", event.correlation_id)


def _require_text(value: Optional[str], label: str) -> None:
    if value is None or not value.strip():
        raise AuditValidationError(f"{label} cannot be null or empty")


def _match_timezone(value: datetime, reference: datetime) -> datetime:
    """Give ``value`` the same timezone awareness as ``reference``; naive means UTC."""
    if (value.tzinfo is None) == (reference.tzinfo is None):
        return value
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).replace(tzinfo=None)
