"""Reconciliation demo: FastAPI backend over an in-memory event store seeded with sample runs."""

from datetime import datetime, timedelta, timezone
from random import Random
from uuid import UUID

from fastapi import FastAPI

from pipeaudit import AuditDetails, AuditEvent, AuditService, AuditStatus, CheckpointStage, configure_logging
from pipeaudit.adapters import InMemoryEventStore
from pipeaudit.adapters.fastapi_router import build_router
from pipeaudit.codec import JsonMetadataCodec

RNG = Random(42)
CODEC = JsonMetadataCodec()

configure_logging()


def _build_demo_events() -> list:
    now = datetime.now(timezone.utc)
    events = []
    for idx in range(20):
        correlation_id = UUID(int=RNG.getrandbits(128))
        run_start = now - timedelta(hours=idx * 3)
        landed = RNG.randint(9_000, 11_000)
        # every fifth run drops records during the load
        loaded = landed - (RNG.randint(1, 50) if idx % 5 == 0 else 0)
        # every seventh run stalls before the rules stage
        rules_delay = 95 if idx % 7 == 0 else RNG.randint(5, 30)

        checkpoints = [
            (CheckpointStage.LANDING, 0, AuditDetails(record_count=landed, file_size_bytes=landed * 120)),
            (CheckpointStage.LOAD_START, 2, None),
            (CheckpointStage.LOAD_COMPLETE, 12, AuditDetails(rows_read=landed, rows_loaded=loaded)),
            (CheckpointStage.RULES_APPLIED, 12 + rules_delay, AuditDetails(rule_applied="standard-mapping")),
            (CheckpointStage.OUTPUT_GENERATED, 20 + rules_delay, AuditDetails(record_count=loaded)),
        ]
        if idx % 9 == 0:
            # drop the load start checkpoint
            checkpoints.pop(1)

        for stage, offset_minutes, details in checkpoints:
            events.append(
                AuditEvent(
                    audit_id=UUID(int=RNG.getrandbits(128)),
                    correlation_id=correlation_id,
                    source_system="MAINFRAME_GL" if idx % 2 else "MAINFRAME_AP",
                    module_name=stage.value.lower(),
                    checkpoint_stage=stage,
                    status=AuditStatus.WARNING if idx % 11 == 0 else AuditStatus.SUCCESS,
                    event_timestamp=run_start + timedelta(minutes=offset_minutes),
                    message=f"{stage.value} for demo run {idx}",
                    details_json=CODEC.encode(details),
                )
            )
    return events


SERVICE = AuditService(InMemoryEventStore(_build_demo_events()))

app = FastAPI(title="pipeaudit Reconciliation Demo", version="0.1.0")
app.include_router(build_router(SERVICE), prefix="/api")


@app.get("/health")
def health() -> dict:
    return {"status": "ok", "demo": "pipeaudit-reconciliation"}
