"""Assembly of one pipeline run's events into an ordered timeline."""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple
from uuid import UUID

from .errors import AuditValidationError, MetadataDecodeError
from .log import get_logger
from .models import EXPECTED_STAGES, AuditDetails, AuditEvent, CheckpointStage
from .ports import EventStoreGateway, MetadataCodec

logger = get_logger(__name__)


@dataclass(frozen=True)
class Run:
    """All events of one correlation id, sorted by event time.

    ``details`` is aligned with ``events``; an entry is ``None`` when the event
    had no metadata or its metadata could not be decoded.
    """

    correlation_id: UUID
    events: Tuple[AuditEvent, ...]
    details: Tuple[Optional[AuditDetails], ...]

    @property
    def is_empty(self) -> bool:
        return not self.events

    @property
    def source_system(self) -> Optional[str]:
        return self.events[0].source_system if self.events else None

    @property
    def first_event_time(self) -> Optional[datetime]:
        return self.events[0].event_timestamp if self.events else None

    @property
    def last_event_time(self) -> Optional[datetime]:
        return self.events[-1].event_timestamp if self.events else None

    @property
    def stage_events(self) -> Dict[CheckpointStage, AuditEvent]:
        """Stage to event; the latest event wins when a stage repeats."""
        return {event.checkpoint_stage: event for event in self.events}

    @property
    def stage_details(self) -> Dict[CheckpointStage, Optional[AuditDetails]]:
        return {event.checkpoint_stage: details for event, details in zip(self.events, self.details)}

    @property
    def present_stages(self) -> FrozenSet[CheckpointStage]:
        return frozenset(event.checkpoint_stage for event in self.events)

    @property
    def missing_stages(self) -> Tuple[CheckpointStage, ...]:
        present = self.present_stages
        return tuple(stage for stage in EXPECTED_STAGES if stage not in present)

    def events_at(self, stage: CheckpointStage) -> List[Tuple[AuditEvent, Optional[AuditDetails]]]:
        return [
            (event, details)
            for event, details in zip(self.events, self.details)
            if event.checkpoint_stage == stage
        ]


def build_run(
    correlation_id: UUID,
    events: Iterable[AuditEvent],
    codec: MetadataCodec,
) -> Run:
    """Sort events by timestamp and decode their metadata.

    The sort is stable, so events sharing a timestamp keep the order the store
    returned them in. Events without a timestamp cannot be placed on the
    timeline and are left out.
    """
    timed = []
    for event in events:
        if event.event_timestamp is None:
            logger.warning(
                "audit_event_untimed",
                audit_id=str(event.audit_id),
                correlation_id=str(correlation_id),
                stage=event.checkpoint_stage.value,
            )
            continue
        timed.append(event)
    ordered = sorted(timed, key=lambda event: event.event_timestamp)
    details = tuple(_decode_details(event, codec) for event in ordered)
    return Run(correlation_id=correlation_id, events=tuple(ordered), details=details)


def _decode_details(event: AuditEvent, codec: MetadataCodec) -> Optional[AuditDetails]:
    try:
        return codec.decode(event.details_json)
    except MetadataDecodeError as exc:
        logger.warning(
            "audit_metadata_undecodable",
            audit_id=str(event.audit_id),
            correlation_id=str(event.correlation_id),
            stage=event.checkpoint_stage.value,
            error=exc.message,
        )
        return None


class RunAssembler:
    """Loads a run from the event store. Store failures propagate unchanged."""

    def __init__(self, repo: EventStoreGateway, codec: MetadataCodec):
        self.repo = repo
        self.codec = codec

    def assemble(self, correlation_id: Optional[UUID]) -> Run:
        if correlation_id is None:
            raise AuditValidationError("Correlation ID cannot be null")

        events = self.repo.find_by_correlation_id(correlation_id)
        run = build_run(correlation_id, events, self.codec)
        logger.debug(
            "audit_run_assembled",
            correlation_id=str(correlation_id),
            event_count=len(run.events),
            missing_stages=[stage.value for stage in run.missing_stages],
        )
        return run
