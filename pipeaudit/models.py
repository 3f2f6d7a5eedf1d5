"""Core domain models used by the audit and reconciliation engine."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple, Union
from uuid import UUID


class CheckpointStage(str, Enum):
    """The five checkpoints a pipeline run reports, in pipeline order."""

    LANDING = "LANDING"
    LOAD_START = "LOAD_START"
    LOAD_COMPLETE = "LOAD_COMPLETE"
    RULES_APPLIED = "RULES_APPLIED"
    OUTPUT_GENERATED = "OUTPUT_GENERATED"


EXPECTED_STAGES: Tuple[CheckpointStage, ...] = tuple(CheckpointStage)


class AuditStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    WARNING = "WARNING"


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


class DiscrepancyType(str, Enum):
    MISSING_CHECKPOINT = "MISSING_CHECKPOINT"
    RECORD_COUNT_MISMATCH = "RECORD_COUNT_MISMATCH"
    PROCESSING_TIMEOUT = "PROCESSING_TIMEOUT"
    EXCESSIVE_FAILURE_RATE = "EXCESSIVE_FAILURE_RATE"


class DiscrepancyStatus(str, Enum):
    """Operator triage state. Detection always creates OPEN discrepancies."""

    OPEN = "OPEN"
    INVESTIGATING = "INVESTIGATING"
    RESOLVED = "RESOLVED"
    FALSE_POSITIVE = "FALSE_POSITIVE"
    ACKNOWLEDGED = "ACKNOWLEDGED"


class ReportStatus(str, Enum):
    SUCCESS = "SUCCESS"
    WARNING = "WARNING"
    FAILURE = "FAILURE"


@dataclass(frozen=True)
class AuditEvent:
    """One observation recorded at one pipeline checkpoint."""

    correlation_id: UUID
    source_system: str
    checkpoint_stage: CheckpointStage
    status: AuditStatus
    event_timestamp: Optional[datetime] = None
    audit_id: Optional[UUID] = None
    module_name: Optional[str] = None
    process_name: Optional[str] = None
    source_entity: Optional[str] = None
    destination_entity: Optional[str] = None
    key_identifier: Optional[str] = None
    message: Optional[str] = None
    details_json: Union[str, Mapping[str, Any], None] = None


@dataclass(frozen=True)
class AuditDetails:
    """Decoded checkpoint metadata. Every field is optional."""

    file_size_bytes: Optional[int] = None
    file_hash_sha256: Optional[str] = None
    rows_read: Optional[int] = None
    rows_loaded: Optional[int] = None
    rows_rejected: Optional[int] = None
    record_count: Optional[int] = None
    record_count_before: Optional[int] = None
    record_count_after: Optional[int] = None
    control_total_debits: Optional[Decimal] = None
    control_total_credits: Optional[Decimal] = None
    control_total_amount: Optional[Decimal] = None
    rule_input: Optional[Mapping[str, Any]] = None
    rule_output: Optional[Mapping[str, Any]] = None
    rule_applied: Optional[str] = None
    entity_identifier: Optional[str] = None
    transformation_details: Optional[str] = None

    @property
    def effective_record_count(self) -> Optional[int]:
        for value in (self.record_count, self.rows_loaded, self.record_count_after):
            if value is not None:
                return value
        return None

    @property
    def control_total(self) -> Optional[Decimal]:
        if self.control_total_amount is not None:
            return self.control_total_amount
        if self.control_total_credits is None and self.control_total_debits is None:
            return None
        return (self.control_total_credits or Decimal(0)) - (self.control_total_debits or Decimal(0))


@dataclass(frozen=True)
class Discrepancy:
    """A detected deviation from expected pipeline behaviour."""

    discrepancy_id: UUID
    correlation_id: UUID
    type: DiscrepancyType
    severity: Severity
    expected_value: str
    actual_value: str
    description: str
    detected_at: datetime
    source_system: Optional[str] = None
    module_name: Optional[str] = None
    checkpoint_stage: Optional[CheckpointStage] = None
    difference: Optional[str] = None
    status: DiscrepancyStatus = DiscrepancyStatus.OPEN


@dataclass(frozen=True)
class CheckpointDetail:
    stage: CheckpointStage
    event_count: int
    record_count: Optional[int]
    control_total: Optional[Decimal]
    status: AuditStatus
    start_time: datetime
    end_time: datetime

    @property
    def duration(self) -> timedelta:
        return self.end_time - self.start_time


@dataclass(frozen=True)
class StageTransition:
    """Gap between two consecutive events of a run."""

    from_stage: CheckpointStage
    to_stage: CheckpointStage
    gap: timedelta


@dataclass(frozen=True)
class ReconciliationSummary:
    total_events: int
    success_count: int
    failure_count: int
    warning_count: int
    success_rate: float
    elapsed: timedelta
    data_integrity_valid: bool
    critical_issues_count: int
    total_records_processed: int


@dataclass(frozen=True)
class ReconciliationReport:
    """Canonical synthesis result for one correlation id."""

    correlation_id: UUID
    source_system: Optional[str]
    generated_at: datetime
    pipeline_start_time: Optional[datetime]
    pipeline_end_time: Optional[datetime]
    overall_status: ReportStatus
    checkpoint_counts: Dict[CheckpointStage, int]
    control_totals: Dict[CheckpointStage, Decimal]
    discrepancies: Tuple[Discrepancy, ...]
    summary: ReconciliationSummary
    checkpoint_details: Tuple[CheckpointDetail, ...] = ()
    stage_transitions: Tuple[StageTransition, ...] = ()
    notes: Tuple[str, ...] = ()


@dataclass(frozen=True)
class EventFilters:
    """Optional equality filters applied by the event store."""

    source_system: Optional[str] = None
    module_name: Optional[str] = None
    status: Optional[AuditStatus] = None
    checkpoint_stage: Optional[CheckpointStage] = None


@dataclass(frozen=True)
class DiscrepancyFilters:
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    source_system: Optional[str] = None
    module_name: Optional[str] = None
    severity: Optional[Severity] = None

