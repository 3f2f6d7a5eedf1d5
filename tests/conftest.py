"""Shared fixtures: deterministic ids, a fixed clock and an event factory."""

import json
from datetime import datetime, timedelta, timezone
from uuid import UUID

import pytest

from pipeaudit.models import AuditEvent, AuditStatus, CheckpointStage

T0 = datetime(2026, 3, 2, 1, 0, tzinfo=timezone.utc)
DETECTED_AT = datetime(2026, 3, 2, 6, 0, tzinfo=timezone.utc)


@pytest.fixture
def t0() -> datetime:
    return T0


@pytest.fixture
def fixed_clock():
    return lambda: DETECTED_AT


@pytest.fixture
def run_id() -> UUID:
    return UUID("00000000-0000-4000-8000-000000000001")


@pytest.fixture
def make_event(run_id):
    counter = {"next": 1}

    def _make_event(
        stage: CheckpointStage,
        minutes: float = 0,
        status: AuditStatus = AuditStatus.SUCCESS,
        correlation_id: UUID = None,
        source_system: str = "MAINFRAME_GL",
        module_name: str = None,
        details=None,
        base: datetime = T0,
    ) -> AuditEvent:
        audit_id = UUID(int=counter["next"])
        counter["next"] += 1
        return AuditEvent(
            audit_id=audit_id,
            correlation_id=correlation_id or run_id,
            source_system=source_system,
            module_name=module_name,
            checkpoint_stage=stage,
            status=status,
            event_timestamp=base + timedelta(minutes=minutes),
            message=f"{stage.value} {status.value}",
            details_json=json.dumps(details) if isinstance(details, dict) else details,
        )

    return _make_event


@pytest.fixture
def scenario_a(make_event):
    """LOAD_START missing, 10 records lost in the load and a 70 minute gap."""
    return [
        make_event(CheckpointStage.LANDING, 0, details={"recordCount": 1000}),
        make_event(CheckpointStage.LOAD_COMPLETE, 70, details={"recordCount": 990}),
        make_event(CheckpointStage.RULES_APPLIED, 75),
        make_event(CheckpointStage.OUTPUT_GENERATED, 80),
    ]


@pytest.fixture
def scenario_b(make_event):
    """Ten events over all five stages, six of them failures, five minutes apart."""
    stages = list(CheckpointStage)
    return [
        make_event(
            stages[idx % len(stages)],
            idx * 5,
            status=AuditStatus.FAILURE if idx < 6 else AuditStatus.SUCCESS,
        )
        for idx in range(10)
    ]


@pytest.fixture
def scenario_c(make_event):
    """A clean run: every stage, all successful, matching counts, short gaps."""
    return [
        make_event(CheckpointStage.LANDING, 0, details={"recordCount": 500, "controlTotalAmount": "1250.50"}),
        make_event(CheckpointStage.LOAD_START, 10),
        make_event(CheckpointStage.LOAD_COMPLETE, 20, details={"rowsRead": 500, "rowsLoaded": 500}),
        make_event(CheckpointStage.RULES_APPLIED, 30, details={"ruleApplied": "gl-mapping"}),
        make_event(CheckpointStage.OUTPUT_GENERATED, 40, details={"recordCount": 500, "controlTotalAmount": 1250.5}),
    ]
