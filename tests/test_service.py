from datetime import datetime, timedelta, timezone
from uuid import UUID

import pytest

from pipeaudit.adapters.memory import InMemoryEventStore
from pipeaudit.correlation import clear_correlation_id, correlation_scope
from pipeaudit.errors import AuditPersistenceError, AuditValidationError
from pipeaudit.models import (
    AuditDetails,
    AuditEvent,
    AuditStatus,
    CheckpointStage,
    DiscrepancyFilters,
    DiscrepancyType,
    EventFilters,
    Severity,
)
from pipeaudit.service import AuditService, determine_loader_stage
from pipeaudit.settings import AuditSettings

OTHER_RUN = UUID("00000000-0000-4000-8000-000000000002")


class FakeRepo:
    def __init__(self, events=None, save_error=None):
        self.events = events or []
        self.save_error = save_error
        self.saved = []
        self.last_range = None
        self.last_filters = None

    def save(self, event):
        if self.save_error is not None:
            raise self.save_error
        self.saved.append(event)

    def find_by_correlation_id(self, correlation_id):
        return [event for event in self.events if event.correlation_id == correlation_id]

    def find_by_time_range(self, start_date, end_date, filters=None):
        self.last_range = (start_date, end_date)
        self.last_filters = filters
        return list(self.events)


@pytest.fixture
def service_factory(fixed_clock):
    def _factory(repo, **overrides):
        return AuditService(repo, settings=AuditSettings(**overrides), clock=fixed_clock)

    return _factory


def setup_function():
    clear_correlation_id()


def test_statistics_use_explicit_period(service_factory, scenario_c):
    repo = FakeRepo(scenario_c)
    service = service_factory(repo)
    start = datetime(2026, 3, 1, tzinfo=timezone.utc)
    end = datetime(2026, 3, 3, tzinfo=timezone.utc)

    stats = service.get_audit_statistics(start, end)

    assert repo.last_range == (start, end)
    assert stats["overview"]["total_events"] == 5
    assert stats["overview"]["success_rate"] == 100


def test_statistics_default_to_trailing_week(service_factory, fixed_clock):
    repo = FakeRepo()
    service = service_factory(repo)

    stats = service.get_audit_statistics()

    assert repo.last_range == (fixed_clock() - timedelta(days=7), fixed_clock())
    assert stats["overview"]["total_events"] == 0


def test_inverted_period_is_rejected(service_factory):
    service = service_factory(FakeRepo())
    end = datetime(2026, 3, 1, tzinfo=timezone.utc)

    with pytest.raises(AuditValidationError):
        service.get_audit_statistics(end + timedelta(days=1), end)


def test_log_event_stamps_missing_id_and_timestamp(service_factory, fixed_clock, run_id):
    repo = FakeRepo()
    service = service_factory(repo)
    event = AuditEvent(
        correlation_id=run_id,
        source_system="MAINFRAME_GL",
        checkpoint_stage=CheckpointStage.LANDING,
        status=AuditStatus.SUCCESS,
    )

    stored = service.log_event(event)

    assert stored.audit_id is not None
    assert stored.event_timestamp == fixed_clock()
    assert repo.saved == [stored]


@pytest.mark.parametrize(
    "changes",
    [
        {"correlation_id": None},
        {"source_system": "  "},
        {"status": None},
        {"checkpoint_stage": None},
    ],
)
def test_log_event_rejects_incomplete_events(service_factory, run_id, changes):
    repo = FakeRepo()
    fields = {
        "correlation_id": run_id,
        "source_system": "MAINFRAME_GL",
        "checkpoint_stage": CheckpointStage.LANDING,
        "status": AuditStatus.SUCCESS,
    }
    fields.update(changes)

    with pytest.raises(AuditValidationError):
        service_factory(repo).log_event(AuditEvent(**fields))
    assert repo.saved == []


def test_log_event_propagates_persistence_failure(service_factory, run_id):
    failure = AuditPersistenceError("insert failed", run_id)
    service = service_factory(FakeRepo(save_error=failure))

    with pytest.raises(AuditPersistenceError) as excinfo:
        service.log_file_transfer("MAINFRAME_GL", "gl.dat", "transfer", AuditStatus.SUCCESS, correlation_id=run_id)

    assert excinfo.value is failure


def test_file_transfer_uses_bound_correlation_id(service_factory):
    repo = FakeRepo()
    service = service_factory(repo)

    with correlation_scope() as correlation_id:
        event = service.log_file_transfer(
            "MAINFRAME_GL",
            "gl_20260302.dat",
            "nightly-transfer",
            AuditStatus.SUCCESS,
            details=AuditDetails(record_count=1000),
        )

    assert event.correlation_id == correlation_id
    assert event.checkpoint_stage == CheckpointStage.LANDING
    assert event.module_name == "FILE_TRANSFER"
    assert "gl_20260302.dat" in event.message
    assert service.codec.decode(event.details_json).record_count == 1000


def test_logging_without_any_correlation_id_fails(service_factory):
    service = service_factory(FakeRepo())

    with pytest.raises(AuditValidationError):
        service.log_file_generation("MAINFRAME_GL", "out.csv", "export", AuditStatus.SUCCESS)


def test_loader_and_rule_checkpoints(service_factory, run_id):
    service = service_factory(FakeRepo())

    loader = service.log_sql_loader_operation(
        "MAINFRAME_GL", "GL_STAGE", "load-complete", AuditStatus.SUCCESS, correlation_id=run_id
    )
    rules = service.log_business_rule_application(
        "MAINFRAME_GL", "GL_MAPPING", "apply-rules", AuditStatus.WARNING, correlation_id=run_id
    )

    assert loader.checkpoint_stage == CheckpointStage.LOAD_COMPLETE
    assert loader.destination_entity == "GL_STAGE"
    assert rules.checkpoint_stage == CheckpointStage.RULES_APPLIED
    assert rules.module_name == "GL_MAPPING"


def test_blank_identifier_is_rejected(service_factory, run_id):
    with pytest.raises(AuditValidationError):
        service_factory(FakeRepo()).log_sql_loader_operation(
            "MAINFRAME_GL", "", "load", AuditStatus.SUCCESS, correlation_id=run_id
        )


@pytest.mark.parametrize(
    "process_name, status, expected",
    [
        ("gl-load-start", AuditStatus.SUCCESS, CheckpointStage.LOAD_START),
        ("Begin bulk load", AuditStatus.FAILURE, CheckpointStage.LOAD_START),
        ("bulk load complete", AuditStatus.FAILURE, CheckpointStage.LOAD_COMPLETE),
        ("sqlldr", AuditStatus.SUCCESS, CheckpointStage.LOAD_COMPLETE),
        ("sqlldr", AuditStatus.FAILURE, CheckpointStage.LOAD_START),
        (None, AuditStatus.WARNING, CheckpointStage.LOAD_START),
    ],
)
def test_determine_loader_stage(process_name, status, expected):
    assert determine_loader_stage(process_name, status) == expected


def test_paging_is_validated(service_factory):
    service = service_factory(InMemoryEventStore(), max_page_size=100)

    with pytest.raises(AuditValidationError):
        service.get_events_with_filters(page=-1)
    with pytest.raises(AuditValidationError):
        service.get_events_with_filters(size=0)
    with pytest.raises(AuditValidationError):
        service.get_events_with_filters(size=101)


def test_paging_returns_newest_first(service_factory, scenario_c):
    service = service_factory(InMemoryEventStore(scenario_c))

    first_page = service.get_events_with_filters(page=0, size=2)
    last_page = service.get_events_with_filters(page=2, size=2)

    assert [event.checkpoint_stage for event in first_page] == [
        CheckpointStage.OUTPUT_GENERATED,
        CheckpointStage.RULES_APPLIED,
    ]
    assert [event.checkpoint_stage for event in last_page] == [CheckpointStage.LANDING]
    assert service.count_events_with_filters(EventFilters(checkpoint_stage=CheckpointStage.LOAD_START)) == 1


def test_count_by_correlation_and_status(service_factory, scenario_b, run_id):
    service = service_factory(InMemoryEventStore(scenario_b))

    assert service.count_events_by_correlation_and_status(run_id, AuditStatus.FAILURE) == 6
    with pytest.raises(AuditValidationError):
        service.count_events_by_correlation_and_status(None, AuditStatus.FAILURE)


def test_audit_trail_is_time_ordered(service_factory, scenario_a, run_id):
    service = service_factory(InMemoryEventStore(list(reversed(scenario_a))))

    trail = service.get_audit_trail(run_id)

    assert trail == scenario_a


def test_unknown_report_view_is_rejected(service_factory, run_id):
    with pytest.raises(AuditValidationError):
        service_factory(InMemoryEventStore()).generate_report_view(run_id, "verbose")


def test_report_views(service_factory, scenario_a, run_id):
    service = service_factory(InMemoryEventStore(scenario_a))

    assert service.generate_summary_report(run_id)["discrepancy_count"] == 3
    assert len(service.generate_detailed_report(run_id)["discrepancies"]) == 3
    assert service.generate_standard_report(run_id)["overall_status"] == "SUCCESS"


def test_validate_data_integrity(service_factory, scenario_a, scenario_c, run_id):
    assert service_factory(InMemoryEventStore(scenario_c)).validate_data_integrity(run_id) is True
    assert service_factory(InMemoryEventStore(scenario_a)).validate_data_integrity(run_id) is False


def test_thresholds_come_from_settings(service_factory, scenario_a, run_id):
    service = service_factory(InMemoryEventStore(scenario_a), processing_timeout_minutes=90)

    report = service.generate_reconciliation_report(run_id)

    assert DiscrepancyType.PROCESSING_TIMEOUT not in [item.type for item in report.discrepancies]


def test_record_counts_by_source_system(service_factory, make_event, run_id):
    events = [
        make_event(CheckpointStage.LANDING, 0, details={"recordCount": 100}),
        make_event(CheckpointStage.LANDING, 1, source_system="AP_LEDGER", details={"recordCount": 40}),
        make_event(CheckpointStage.LANDING, 2, details={"recordCount": 25}),
        make_event(CheckpointStage.LOAD_COMPLETE, 3, details={"recordCount": 165}),
    ]
    service = service_factory(InMemoryEventStore(events))

    assert service.get_record_counts_by_source_system(run_id) == {"MAINFRAME_GL": 125, "AP_LEDGER": 40}


def test_detect_discrepancies_groups_runs(service_factory, make_event, scenario_a, scenario_c, t0):
    later_run = [
        make_event(stage, minutes=5, correlation_id=OTHER_RUN, base=t0 + timedelta(hours=1))
        for stage in CheckpointStage
        if stage != CheckpointStage.RULES_APPLIED
    ]
    repo = FakeRepo(later_run + scenario_a)
    service = service_factory(repo)
    filters = DiscrepancyFilters(source_system="MAINFRAME_GL")

    discrepancies = service.detect_discrepancies(filters)

    assert repo.last_filters == EventFilters(source_system="MAINFRAME_GL")
    assert [(item.correlation_id, item.type) for item in discrepancies] == [
        (scenario_a[0].correlation_id, DiscrepancyType.MISSING_CHECKPOINT),
        (OTHER_RUN, DiscrepancyType.MISSING_CHECKPOINT),
        (scenario_a[0].correlation_id, DiscrepancyType.RECORD_COUNT_MISMATCH),
        (scenario_a[0].correlation_id, DiscrepancyType.PROCESSING_TIMEOUT),
    ]


def test_detect_discrepancies_severity_filter(service_factory, scenario_a):
    service = service_factory(FakeRepo(scenario_a))

    discrepancies = service.detect_discrepancies(DiscrepancyFilters(severity=Severity.MEDIUM))

    assert [item.type for item in discrepancies] == [
        DiscrepancyType.RECORD_COUNT_MISMATCH,
        DiscrepancyType.PROCESSING_TIMEOUT,
    ]


def test_naive_start_date_without_end_date(service_factory, fixed_clock):
    repo = FakeRepo()
    service = service_factory(repo)
    start = datetime(2026, 3, 1)

    service.get_audit_statistics(start_date=start)

    assert repo.last_range == (start, fixed_clock().replace(tzinfo=None))


def test_mixed_timezone_period_is_rejected(service_factory):
    service = service_factory(FakeRepo())

    with pytest.raises(AuditValidationError):
        service.get_audit_statistics(datetime(2026, 3, 1), datetime(2026, 3, 2, tzinfo=timezone.utc))


def _clean_run_with_modules(make_event):
    return [
        make_event(CheckpointStage.LANDING, 0, module_name="FILE_TRANSFER", details={"recordCount": 500}),
        make_event(CheckpointStage.LOAD_START, 10, module_name="SQL_LOADER"),
        make_event(CheckpointStage.LOAD_COMPLETE, 20, module_name="SQL_LOADER", details={"rowsLoaded": 500}),
        make_event(CheckpointStage.RULES_APPLIED, 30, module_name="GL_MAPPING"),
        make_event(CheckpointStage.OUTPUT_GENERATED, 40, module_name="FILE_GENERATOR", details={"recordCount": 500}),
    ]


def test_module_filter_selects_runs_without_trimming_them(service_factory, make_event, run_id):
    service = service_factory(InMemoryEventStore(_clean_run_with_modules(make_event)))

    assert service.generate_reconciliation_report(run_id).discrepancies == ()
    assert service.detect_discrepancies(DiscrepancyFilters(module_name="SQL_LOADER")) == []


def test_run_crossing_the_period_start_is_checked_in_full(service_factory, make_event, t0):
    service = service_factory(InMemoryEventStore(_clean_run_with_modules(make_event)))

    assert service.detect_discrepancies(DiscrepancyFilters(start=t0 + timedelta(minutes=15))) == []
