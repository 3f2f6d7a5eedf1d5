"""Discrepancy detection rules.

Each rule is a pure function ``(run, detected_at) -> List[Discrepancy]``; extra
keyword arguments are thresholds bound through ``default_rules``. Rules do not
look at each other's output, so the registry can grow or shrink freely.
"""

import uuid
from datetime import datetime, timedelta
from functools import partial
from typing import Callable, Iterable, List, Optional, Sequence

from .models import (
    AuditStatus,
    CheckpointStage,
    Discrepancy,
    DiscrepancyType,
    Severity,
)
from .settings import AuditSettings
from .timeline import Run

Rule = Callable[[Run, datetime], List[Discrepancy]]

# Fixed namespace so the same anomaly on the same run always gets the same id.
_DISCREPANCY_NAMESPACE = uuid.UUID("6f1f8c52-3c1e-4b8a-9d55-1c2a0b7e4d90")


def make_discrepancy(
    run: Run,
    detected_at: datetime,
    type: DiscrepancyType,
    severity: Severity,
    expected_value: str,
    actual_value: str,
    description: str,
    checkpoint_stage: Optional[CheckpointStage] = None,
    module_name: Optional[str] = None,
    source_system: Optional[str] = None,
) -> Discrepancy:
    key = "|".join(
        [
            str(run.correlation_id),
            type.value,
            checkpoint_stage.value if checkpoint_stage else "",
            expected_value,
            actual_value,
            description,
        ]
    )
    return Discrepancy(
        discrepancy_id=uuid.uuid5(_DISCREPANCY_NAMESPACE, key),
        correlation_id=run.correlation_id,
        type=type,
        severity=severity,
        expected_value=expected_value,
        actual_value=actual_value,
        description=description,
        detected_at=detected_at,
        source_system=source_system or run.source_system,
        module_name=module_name,
        checkpoint_stage=checkpoint_stage,
        difference=_numeric_difference(expected_value, actual_value),
    )


def detect_missing_checkpoints(run: Run, detected_at: datetime) -> List[Discrepancy]:
    """One HIGH discrepancy for every expected stage that never reported."""
    return [
        make_discrepancy(
            run,
            detected_at,
            type=DiscrepancyType.MISSING_CHECKPOINT,
            severity=Severity.HIGH,
            expected_value=stage.value,
            actual_value="MISSING",
            description=f"Expected checkpoint {stage.value} was not recorded for this run",
            checkpoint_stage=stage,
        )
        for stage in run.missing_stages
    ]


def detect_record_count_mismatch(run: Run, detected_at: datetime) -> List[Discrepancy]:
    """Compare the landed record count with the loaded record count.

    Skipped when either stage is missing or does not report a count.
    """
    stage_details = run.stage_details
    landing = stage_details.get(CheckpointStage.LANDING)
    loaded = stage_details.get(CheckpointStage.LOAD_COMPLETE)
    if landing is None or loaded is None:
        return []

    expected = landing.effective_record_count
    actual = loaded.effective_record_count
    if expected is None or actual is None or expected == actual:
        return []

    load_event = run.stage_events[CheckpointStage.LOAD_COMPLETE]
    return [
        make_discrepancy(
            run,
            detected_at,
            type=DiscrepancyType.RECORD_COUNT_MISMATCH,
            severity=Severity.MEDIUM,
            expected_value=str(expected),
            actual_value=str(actual),
            description=(
                f"Record count mismatch between {CheckpointStage.LANDING.value} ({expected}) "
                f"and {CheckpointStage.LOAD_COMPLETE.value} ({actual})"
            ),
            checkpoint_stage=CheckpointStage.LOAD_COMPLETE,
            module_name=load_event.module_name,
            source_system=load_event.source_system,
        )
    ]


def detect_processing_timeouts(
    run: Run,
    detected_at: datetime,
    timeout_minutes: int = 60,
) -> List[Discrepancy]:
    """Flag every consecutive event pair whose gap exceeds ``timeout_minutes``."""
    limit = timedelta(minutes=timeout_minutes)
    discrepancies = []
    for previous, current in zip(run.events, run.events[1:]):
        gap = current.event_timestamp - previous.event_timestamp
        if gap <= limit:
            continue
        minutes = int(gap.total_seconds() // 60)
        discrepancies.append(
            make_discrepancy(
                run,
                detected_at,
                type=DiscrepancyType.PROCESSING_TIMEOUT,
                severity=Severity.MEDIUM,
                expected_value=f"< {timeout_minutes} minutes",
                actual_value=f"{minutes} minutes",
                description=(
                    f"Processing from {previous.checkpoint_stage.value} to "
                    f"{current.checkpoint_stage.value} took {minutes} minutes"
                ),
                checkpoint_stage=current.checkpoint_stage,
                module_name=current.module_name,
                source_system=current.source_system,
            )
        )
    return discrepancies


def detect_excessive_failure_rate(
    run: Run,
    detected_at: datetime,
    failure_rate_threshold: float = 0.5,
) -> List[Discrepancy]:
    """Run-level check: more than ``failure_rate_threshold`` of events failed."""
    total_count = len(run.events)
    if total_count == 0:
        return []

    failure_count = sum(1 for event in run.events if event.status == AuditStatus.FAILURE)
    failure_rate = failure_count / total_count
    if failure_rate <= failure_rate_threshold:
        return []

    return [
        make_discrepancy(
            run,
            detected_at,
            type=DiscrepancyType.EXCESSIVE_FAILURE_RATE,
            severity=Severity.HIGH,
            expected_value=f"< {failure_rate_threshold * 100:.0f}% failures",
            actual_value=f"{failure_rate * 100:.1f}% failures",
            description=f"{failure_count} of {total_count} events failed",
        )
    ]


def default_rules(settings: Optional[AuditSettings] = None) -> List[Rule]:
    """The standard rule registry, with thresholds taken from ``settings``."""
    timeout_minutes = settings.processing_timeout_minutes if settings else 60
    failure_rate_threshold = settings.failure_rate_threshold if settings else 0.5
    return [
        detect_missing_checkpoints,
        detect_record_count_mismatch,
        partial(detect_processing_timeouts, timeout_minutes=timeout_minutes),
        partial(detect_excessive_failure_rate, failure_rate_threshold=failure_rate_threshold),
    ]


def sort_discrepancies(discrepancies: Iterable[Discrepancy]) -> List[Discrepancy]:
    """Severity descending, then most recently detected first.

    Both passes are stable, so equal keys keep rule registration order.
    """
    ordered = sorted(discrepancies, key=lambda item: item.detected_at, reverse=True)
    return sorted(ordered, key=lambda item: item.severity.rank, reverse=True)


class DiscrepancyDetector:
    """Runs a registry of rules over a run and merges their findings."""

    def __init__(self, rules: Optional[Sequence[Rule]] = None):
        self.rules: List[Rule] = list(rules) if rules is not None else default_rules()

    def register(self, rule: Rule) -> None:
        self.rules.append(rule)

    def detect(self, run: Run, detected_at: datetime) -> List[Discrepancy]:
        discrepancies: List[Discrepancy] = []
        for rule in self.rules:
            discrepancies.extend(rule(run, detected_at))
        return sort_discrepancies(discrepancies)


def _numeric_difference(expected_value: str, actual_value: str) -> Optional[str]:
    try:
        return str(abs(int(expected_value) - int(actual_value)))
    except ValueError:
        return None
