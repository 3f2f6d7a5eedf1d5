"""Reconciliation report synthesis and its read-only views."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from .log import get_logger
from .models import (
    EXPECTED_STAGES,
    AuditStatus,
    CheckpointDetail,
    CheckpointStage,
    Discrepancy,
    ReconciliationReport,
    ReconciliationSummary,
    ReportStatus,
    Severity,
    StageTransition,
)
from .rules import DiscrepancyDetector
from .timeline import Run, RunAssembler

logger = get_logger(__name__)

Clock = Callable[[], datetime]

_BLOCKING_SEVERITIES = (Severity.HIGH, Severity.CRITICAL)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ReconciliationSynthesizer:
    """Assembles a run, detects discrepancies and builds the report."""

    def __init__(
        self,
        assembler: RunAssembler,
        detector: DiscrepancyDetector,
        clock: Optional[Clock] = None,
    ):
        self.assembler = assembler
        self.detector = detector
        self.clock = clock or utc_now

    def synthesize(self, correlation_id: UUID) -> ReconciliationReport:
        run = self.assembler.assemble(correlation_id)
        now = self.clock()
        discrepancies = self.detector.detect(run, detected_at=now)
        report = build_report(run, discrepancies, generated_at=now)
        logger.info(
            "reconciliation_report_generated",
            correlation_id=str(correlation_id),
            overall_status=report.overall_status.value,
            discrepancy_count=len(report.discrepancies),
            data_integrity_valid=report.summary.data_integrity_valid,
        )
        return report


def build_report(
    run: Run,
    discrepancies: Sequence[Discrepancy],
    generated_at: datetime,
) -> ReconciliationReport:
    """Combine a run and its discrepancies into one report. Pure."""
    notes = []
    if run.is_empty:
        notes.append(
            f"No audit events recorded for this correlation ID; "
            f"checkpoint coverage 0 of {len(EXPECTED_STAGES)}"
        )

    return ReconciliationReport(
        correlation_id=run.correlation_id,
        source_system=run.source_system,
        generated_at=generated_at,
        pipeline_start_time=run.first_event_time,
        pipeline_end_time=run.last_event_time,
        overall_status=_overall_status(run),
        checkpoint_counts=_checkpoint_counts(run),
        control_totals=_control_totals(run),
        discrepancies=tuple(discrepancies),
        summary=_summarize(run, discrepancies),
        checkpoint_details=_checkpoint_details(run),
        stage_transitions=_stage_transitions(run),
        notes=tuple(notes),
    )


def _overall_status(run: Run) -> ReportStatus:
    statuses = {event.status for event in run.events}
    if run.is_empty or AuditStatus.FAILURE in statuses:
        return ReportStatus.FAILURE
    if AuditStatus.WARNING in statuses:
        return ReportStatus.WARNING
    return ReportStatus.SUCCESS


def _checkpoint_counts(run: Run) -> Dict[CheckpointStage, int]:
    counts = {stage: 0 for stage in EXPECTED_STAGES}
    for event in run.events:
        counts[event.checkpoint_stage] += 1
    return counts


def _control_totals(run: Run) -> Dict[CheckpointStage, Decimal]:
    totals: Dict[CheckpointStage, Decimal] = {}
    for event, details in zip(run.events, run.details):
        if details is None or details.control_total is None:
            continue
        stage = event.checkpoint_stage
        totals[stage] = totals.get(stage, Decimal(0)) + details.control_total
    return totals


def _summarize(run: Run, discrepancies: Sequence[Discrepancy]) -> ReconciliationSummary:
    total_events = len(run.events)
    success_count = sum(1 for event in run.events if event.status == AuditStatus.SUCCESS)
    failure_count = sum(1 for event in run.events if event.status == AuditStatus.FAILURE)
    warning_count = sum(1 for event in run.events if event.status == AuditStatus.WARNING)
    critical_issues = sum(1 for item in discrepancies if item.severity in _BLOCKING_SEVERITIES)

    elapsed = timedelta(0)
    if total_events > 1:
        elapsed = run.last_event_time - run.first_event_time

    return ReconciliationSummary(
        total_events=total_events,
        success_count=success_count,
        failure_count=failure_count,
        warning_count=warning_count,
        success_rate=success_count / total_events * 100 if total_events > 0 else 0.0,
        elapsed=elapsed,
        data_integrity_valid=critical_issues == 0,
        critical_issues_count=critical_issues,
        total_records_processed=_total_records_processed(run),
    )


def _total_records_processed(run: Run) -> int:
    """Record count reported by the latest stage that reports one."""
    stage_details = run.stage_details
    for stage in reversed(EXPECTED_STAGES):
        details = stage_details.get(stage)
        if details is not None and details.effective_record_count is not None:
            return details.effective_record_count
    return 0


def _checkpoint_details(run: Run) -> Tuple[CheckpointDetail, ...]:
    result: List[CheckpointDetail] = []
    for stage in EXPECTED_STAGES:
        entries = run.events_at(stage)
        if not entries:
            continue
        record_count = None
        control_total = None
        for _, details in entries:
            if details is None:
                continue
            if details.effective_record_count is not None:
                record_count = details.effective_record_count
            if details.control_total is not None:
                control_total = (control_total or Decimal(0)) + details.control_total
        result.append(
            CheckpointDetail(
                stage=stage,
                event_count=len(entries),
                record_count=record_count,
                control_total=control_total,
                status=entries[-1][0].status,
                start_time=entries[0][0].event_timestamp,
                end_time=entries[-1][0].event_timestamp,
            )
        )
    return tuple(result)


def _stage_transitions(run: Run) -> Tuple[StageTransition, ...]:
    return tuple(
        StageTransition(
            from_stage=previous.checkpoint_stage,
            to_stage=current.checkpoint_stage,
            gap=current.event_timestamp - previous.event_timestamp,
        )
        for previous, current in zip(run.events, run.events[1:])
    )


def standard_view(report: ReconciliationReport) -> Dict:
    """Stage counts, control totals, discrepancy count and basic summary."""
    summary = report.summary
    return {
        **_header(report),
        "pipeline_start_time": _iso(report.pipeline_start_time),
        "pipeline_end_time": _iso(report.pipeline_end_time),
        "checkpoint_counts": {stage.value: count for stage, count in report.checkpoint_counts.items()},
        "control_totals": {stage.value: float(total) for stage, total in report.control_totals.items()},
        "discrepancy_count": len(report.discrepancies),
        "summary": {
            "total_events": summary.total_events,
            "success_count": summary.success_count,
            "failure_count": summary.failure_count,
            "warning_count": summary.warning_count,
            "success_rate": summary.success_rate,
        },
    }


def detailed_view(report: ReconciliationReport) -> Dict:
    """Everything in the standard view plus discrepancies, checkpoints and timings."""
    result = standard_view(report)
    summary = report.summary
    result["summary"].update(
        {
            "total_processing_time_ms": _millis(summary.elapsed),
            "total_records_processed": summary.total_records_processed,
            "data_integrity_valid": summary.data_integrity_valid,
            "critical_issues_count": summary.critical_issues_count,
        }
    )
    result["discrepancies"] = [discrepancy_to_dict(item) for item in report.discrepancies]
    result["checkpoint_details"] = [
        {
            "checkpoint_stage": detail.stage.value,
            "event_count": detail.event_count,
            "record_count": detail.record_count,
            "control_total": float(detail.control_total) if detail.control_total is not None else None,
            "status": detail.status.value,
            "start_time": _iso(detail.start_time),
            "end_time": _iso(detail.end_time),
            "duration_ms": _millis(detail.duration),
        }
        for detail in report.checkpoint_details
    ]
    result["performance"] = _performance(report)
    result["notes"] = list(report.notes)
    return result


def summary_view(report: ReconciliationReport) -> Dict:
    """Totals, success rate, elapsed time and the integrity flag."""
    summary = report.summary
    return {
        **_header(report),
        "total_events": summary.total_events,
        "total_records_processed": summary.total_records_processed,
        "success_rate": summary.success_rate,
        "total_processing_time_ms": _millis(summary.elapsed),
        "data_integrity_valid": summary.data_integrity_valid,
        "discrepancy_count": len(report.discrepancies),
    }


REPORT_VIEWS: Dict[str, Callable[[ReconciliationReport], Dict]] = {
    "standard": standard_view,
    "detailed": detailed_view,
    "summary": summary_view,
}


def discrepancy_to_dict(item: Discrepancy) -> Dict:
    return {
        "discrepancy_id": str(item.discrepancy_id),
        "correlation_id": str(item.correlation_id),
        "source_system": item.source_system,
        "module_name": item.module_name,
        "type": item.type.value,
        "severity": item.severity.value,
        "checkpoint_stage": item.checkpoint_stage.value if item.checkpoint_stage else None,
        "expected_value": item.expected_value,
        "actual_value": item.actual_value,
        "difference": item.difference,
        "description": item.description,
        "detected_at": _iso(item.detected_at),
        "status": item.status.value,
    }


def _header(report: ReconciliationReport) -> Dict:
    return {
        "correlation_id": str(report.correlation_id),
        "source_system": report.source_system,
        "generated_at": _iso(report.generated_at),
        "overall_status": report.overall_status.value,
    }


def _performance(report: ReconciliationReport) -> Dict:
    gaps = [_millis(transition.gap) for transition in report.stage_transitions]
    elapsed_seconds = report.summary.elapsed.total_seconds()
    records = report.summary.total_records_processed
    return {
        "total_processing_time_ms": _millis(report.summary.elapsed),
        "average_stage_gap_ms": sum(gaps) / len(gaps) if gaps else 0,
        "longest_stage_gap_ms": max(gaps) if gaps else 0,
        "records_per_second": records / elapsed_seconds if elapsed_seconds > 0 else 0.0,
        "stage_transitions": [
            {
                "from_stage": transition.from_stage.value,
                "to_stage": transition.to_stage.value,
                "gap_ms": _millis(transition.gap),
            }
            for transition in report.stage_transitions
        ],
    }


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _millis(value: timedelta) -> int:
    return int(value.total_seconds() * 1000)
