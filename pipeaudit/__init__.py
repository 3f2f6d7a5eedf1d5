"""pipeaudit - checkpoint audit correlation and reconciliation for batch pipelines."""

from .codec import JsonMetadataCodec
from .correlation import (
    clear_correlation_id,
    correlation_scope,
    current_correlation_id,
    generate_correlation_id,
    has_correlation_id,
    set_correlation_id,
)
from .errors import AuditError, AuditPersistenceError, AuditValidationError, MetadataDecodeError
from .log import configure_logging
from .models import (
    AuditDetails,
    AuditEvent,
    AuditStatus,
    CheckpointStage,
    Discrepancy,
    DiscrepancyFilters,
    DiscrepancyType,
    EventFilters,
    ReconciliationReport,
    ReportStatus,
    Severity,
)
from .reconciliation import ReconciliationSynthesizer, detailed_view, standard_view, summary_view
from .rules import DiscrepancyDetector, default_rules
from .service import AuditService
from .settings import AuditSettings
from .timeline import Run, RunAssembler

__all__ = [
    "AuditService",
    "AuditSettings",
    "AuditDetails",
    "AuditEvent",
    "AuditStatus",
    "CheckpointStage",
    "Discrepancy",
    "DiscrepancyFilters",
    "DiscrepancyType",
    "EventFilters",
    "ReconciliationReport",
    "ReportStatus",
    "Severity",
    "Run",
    "RunAssembler",
    "DiscrepancyDetector",
    "default_rules",
    "ReconciliationSynthesizer",
    "standard_view",
    "detailed_view",
    "summary_view",
    "JsonMetadataCodec",
    "generate_correlation_id",
    "set_correlation_id",
    "current_correlation_id",
    "has_correlation_id",
    "clear_correlation_id",
    "correlation_scope",
    "configure_logging",
    "AuditError",
    "AuditValidationError",
    "AuditPersistenceError",
    "MetadataDecodeError",
]

__version__ = "0.1.0"
