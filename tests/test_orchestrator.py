"""
Refresh orchestrator tests: per-table isolation, maintenance and error folding.
"""

import pytest

from common.config import RefreshSettings
from common.errors import (
    BulkLoadError,
    CleanupError,
    CommitError,
    MaintenanceError,
    MultiError,
    SetupError
)
from observability.metrics.collector import MetricsCollector
from warehouse.orchestrator import RefreshOrchestrator

from conftest import FakeExecutor, FakeObjectStore, PREFIX, REGION, make_spec, live, staging

TABLES = ["a", "b", "c"]


def old(name):
    return f"{PREFIX}old-{name}.txt.gz"


def new(name):
    return f"{PREFIX}{name}.txt.gz"


@pytest.fixture
def warehouse():
    return FakeExecutor({live(t): old(t) for t in TABLES})


def refresh(orchestrator, tables=TABLES, namespace="public"):
    specs = {t: make_spec(t, namespace) for t in tables}
    return orchestrator.refresh_tables(specs, namespace, PREFIX, REGION, "|", run_id="test-run")


def test_all_tables_refreshed_then_maintenance(warehouse):
    results = refresh(RefreshOrchestrator(warehouse))

    assert warehouse.tables == {live(t): new(t) for t in TABLES}
    assert sorted(r["table"] for r in results) == TABLES
    assert all(r["status"] == "success" for r in results)
    assert warehouse.statements[-2:] == ["VACUUM FULL", "ANALYZE"]
    assert warehouse.statements[0] == 'CREATE SCHEMA IF NOT EXISTS "public"'


def test_one_failing_table_does_not_affect_siblings(warehouse):
    warehouse.fail_on(f"COPY {staging('b')}")
    orchestrator = RefreshOrchestrator(warehouse)

    with pytest.raises(BulkLoadError) as exc_info:
        refresh(orchestrator)

    assert exc_info.value.table == "b"
    assert warehouse.tables == {
        live("a"): new("a"),
        live("b"): old("b"),
        live("c"): new("c"),
    }
    assert warehouse.executed("VACUUM FULL") == ["VACUUM FULL"]
    statuses = {r["table"]: r["status"] for r in orchestrator.results}
    assert statuses == {"a": "success", "b": "failed", "c": "success"}


def test_several_failures_become_one_multi_error(warehouse):
    warehouse.fail_on(f"COPY {staging('a')}")
    warehouse.fail_on(f"COPY {staging('c')}")

    with pytest.raises(MultiError) as exc_info:
        refresh(RefreshOrchestrator(warehouse))

    assert str(exc_info.value).startswith("multiple errors: ")
    assert sorted(e.table for e in exc_info.value.errors) == ["a", "c"]
    assert warehouse.tables[live("b")] == new("b")


def test_maintenance_failure_alone_is_raised(warehouse):
    warehouse.fail_on("VACUUM")

    with pytest.raises(MaintenanceError):
        refresh(RefreshOrchestrator(warehouse))

    assert warehouse.tables == {live(t): new(t) for t in TABLES}


def test_maintenance_failure_is_folded_with_table_failures(warehouse):
    warehouse.fail_on(f"ALTER TABLE {staging('a')}")
    warehouse.fail_on("ANALYZE")

    with pytest.raises(MultiError) as exc_info:
        refresh(RefreshOrchestrator(warehouse))

    errors = exc_info.value.errors
    assert len(errors) == 2
    assert isinstance(errors[0], CommitError)
    assert isinstance(errors[1], MaintenanceError)


def test_cleanup_failures_are_flattened(warehouse):
    warehouse.fail_on(f"COPY {staging('a')}")
    warehouse.fail_on(f"DROP TABLE IF EXISTS {staging('a')}", skip=1)
    warehouse.fail_on(f"COPY {staging('b')}")

    with pytest.raises(MultiError) as exc_info:
        refresh(RefreshOrchestrator(warehouse))

    errors = exc_info.value.errors
    assert len(errors) == 3
    assert not any(isinstance(e, MultiError) for e in errors)
    assert sum(isinstance(e, CleanupError) for e in errors) == 1


def test_setup_failure_aborts_before_any_table(warehouse):
    warehouse.fail_on("CREATE SCHEMA")

    with pytest.raises(SetupError):
        refresh(RefreshOrchestrator(warehouse))

    assert warehouse.executed("CREATE TABLE") == []
    assert warehouse.executed("VACUUM") == []
    assert warehouse.tables == {live(t): old(t) for t in TABLES}


def test_per_table_maintenance_scope(warehouse):
    settings = RefreshSettings(maintenance_scope="tables")
    refresh(RefreshOrchestrator(warehouse, settings=settings), tables=["a"])

    assert warehouse.statements[-2:] == [f"VACUUM FULL {live('a')}", f"ANALYZE {live('a')}"]


def test_per_table_maintenance_skips_tables_that_failed():
    # a is new: its failed first refresh leaves no live table to vacuum
    warehouse = FakeExecutor({live("b"): old("b"), live("c"): old("c")})
    warehouse.fail_on(f"COPY {staging('a')}")
    warehouse.fail_on(f"VACUUM FULL {live('a')}")
    settings = RefreshSettings(maintenance_scope="tables")

    with pytest.raises(BulkLoadError) as exc_info:
        refresh(RefreshOrchestrator(warehouse, settings=settings))

    assert exc_info.value.table == "a"
    maintained = sorted(warehouse.executed("VACUUM") + warehouse.executed("ANALYZE"))
    assert maintained == sorted(
        [f"VACUUM FULL {live(t)}" for t in ("b", "c")] + [f"ANALYZE {live(t)}" for t in ("b", "c")]
    )
    assert warehouse.tables == {live("b"): new("b"), live("c"): new("c")}


def test_staged_files_are_checked_when_store_given(warehouse):
    store = FakeObjectStore([new("a"), new("c")])

    with pytest.raises(BulkLoadError, match="does not exist"):
        refresh(RefreshOrchestrator(warehouse, object_store=store))

    assert warehouse.tables[live("b")] == old("b")
    assert warehouse.executed(f"COPY {staging('b')}") == []


def test_verification_can_be_disabled(warehouse):
    settings = RefreshSettings(verify_staged_files=False)
    refresh(RefreshOrchestrator(warehouse, settings=settings, object_store=FakeObjectStore()))
    assert warehouse.tables == {live(t): new(t) for t in TABLES}


def test_other_namespace(executor):
    refresh(RefreshOrchestrator(executor), tables=["a"], namespace="analytics")
    assert executor.tables == {live("a", "analytics"): new("a")}
    assert '"analytics"' in executor.schemas


def test_metrics_are_recorded(warehouse):
    warehouse.fail_on(f"COPY {staging('b')}")
    metrics = MetricsCollector(backend="memory")

    with pytest.raises(BulkLoadError):
        refresh(RefreshOrchestrator(warehouse, metrics=metrics))

    recorded = metrics.get_memory_metrics()
    refreshes = [m for m in recorded if m["metric_name"] == "replication_table_refresh_total"]
    assert sorted((m["labels"]["table_name"], m["labels"]["status"]) for m in refreshes) == [
        ("a", "success"), ("b", "failed"), ("c", "success")
    ]
    cycles = [m for m in recorded if m["metric_name"] == "replication_cycle_duration_seconds"]
    assert [m["labels"]["status"] for m in cycles] == ["failed"]
    maintenance = [m for m in recorded if m["metric_name"] == "replication_maintenance_duration_seconds"]
    assert [m["labels"]["status"] for m in maintenance] == ["success"]
