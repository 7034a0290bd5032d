"""
Refresh Orchestrator
====================

Refreshes a set of warehouse tables concurrently, one thread per table,
then runs VACUUM/ANALYZE and reports every failure of the cycle as one error.

A table's failure is recorded on the TaskGroup rather than raised, so it
never stops sibling tables. Maintenance runs whatever the tables did.
"""

import logging
import time
from typing import Dict, List, Optional

from common.config import RefreshSettings
from common.errors import MaintenanceError, MultiError, SetupError
from common.task_group import TaskGroup
from ingestion.connectors.minio_connector import stage_path
from observability.logging.structured_logger import log_context
from .commands import create_schema_statement, maintenance_statements
from .redshift_connector import SqlExecutor
from .refresh import RefreshState, TableRefreshController
from .schema import RefreshJob, TableSpec

logger = logging.getLogger(__name__)


def _flatten(error: Optional[BaseException]) -> List[BaseException]:
    if error is None:
        return []
    if isinstance(error, MultiError):
        flat = []
        for e in error.errors:
            flat.extend(_flatten(e))
        return flat
    return [error]


class RefreshOrchestrator:
    """
    Fans table refreshes out over a TaskGroup and aggregates the outcome.
    """

    def __init__(
        self,
        executor: SqlExecutor,
        settings: Optional[RefreshSettings] = None,
        object_store=None,
        metrics=None
    ):
        """
        Initialize the orchestrator.

        Args:
            executor: Warehouse SQL executor shared by all table refreshes
            settings: Staging prefix, maintenance scope and COPY credentials
            object_store: Optional MinIOConnector; when set, each table checks
                its staged file exists before loading
            metrics: Optional MetricsCollector
        """
        self.executor = executor
        self.settings = settings or RefreshSettings()
        self.object_store = object_store
        self.metrics = metrics
        self.results: List[Dict] = []

    def prepare(self, namespace: str):
        """
        Pre-fan-out setup: make sure the target namespace exists.

        Raises:
            SetupError: the cycle cannot start
        """
        try:
            self.executor.execute(create_schema_statement(namespace))
        except Exception as e:
            raise SetupError(f"cannot create namespace {namespace}: {e}") from e

    def build_jobs(
        self,
        tables: Dict[str, TableSpec],
        namespace: str,
        stage_prefix: str,
        region: str,
        delimiter: str
    ) -> List[RefreshJob]:
        return [
            RefreshJob(
                table=name,
                spec=spec,
                stage_path=stage_path(stage_prefix, name),
                delimiter=delimiter,
                region=region,
                namespace=namespace,
            )
            for name, spec in tables.items()
        ]

    def _refresh_one(self, controller: TableRefreshController, run_id: Optional[str]):
        """Task body for one table; exceptions propagate to the TaskGroup."""
        start = time.time()
        status = "failed"
        try:
            with log_context(trace_id=run_id):
                controller.run()
            status = "success"
        finally:
            if self.metrics is not None:
                self.metrics.record_table_refresh(
                    controller.job.table, status, time.time() - start
                )

    def run_maintenance(self, tables: Optional[List[str]] = None):
        """
        VACUUM FULL and ANALYZE, for the whole database or for given tables.

        Raises:
            MaintenanceError: first failing statement
        """
        start = time.time()
        status = "failed"
        try:
            for stmt in maintenance_statements(tables):
                self.executor.execute(stmt)
            status = "success"
        except Exception as e:
            raise MaintenanceError(f"maintenance failed: {e}") from e
        finally:
            if self.metrics is not None:
                self.metrics.record_maintenance(status, time.time() - start)

    def refresh_tables(
        self,
        tables: Dict[str, TableSpec],
        namespace: str,
        stage_prefix: str,
        region: str,
        delimiter: str,
        run_id: Optional[str] = None
    ) -> List[Dict]:
        """
        Refresh every table, then run maintenance.

        Args:
            tables: Table name -> TableSpec
            namespace: Target warehouse schema
            stage_prefix: Object store prefix the dump phase wrote to
            region: Bucket region for COPY
            delimiter: Field delimiter of the staged files
            run_id: Correlation id attached to the logs

        Returns:
            Per-table result dictionaries (also kept on self.results)

        Raises:
            SetupError: before any table was touched
            ReplicationError: the only failure of the cycle, unchanged
            MultiError: every failure of the cycle
        """
        cycle_start = time.time()
        self.results = []

        logger.info("=" * 60)
        logger.info("STARTING WAREHOUSE REFRESH")
        logger.info(f"Namespace: {namespace}")
        logger.info(f"Tables to refresh: {len(tables)}")
        logger.info("=" * 60)

        self.prepare(namespace)

        controllers = [
            TableRefreshController(
                self.executor,
                job,
                credentials=self.settings.credentials,
                staging_prefix=self.settings.staging_prefix,
                object_store=self.object_store if self.settings.verify_staged_files else None,
            )
            for job in self.build_jobs(tables, namespace, stage_prefix, region, delimiter)
        ]

        group = TaskGroup("refresh")
        for controller in controllers:
            group.go(self._refresh_one, controller, run_id)
        refresh_error = group.wait()

        self.results = [c.result for c in controllers if c.result is not None]

        maintenance_error = None
        scope = None
        if self.settings.maintenance_scope == "tables":
            # a table that failed before commit may have no live table to maintain
            scope = [c.live_ref for c in controllers if c.state is RefreshState.COMMITTED]
        try:
            self.run_maintenance(scope)
        except MaintenanceError as e:
            logger.error(f"  ✗ {e}")
            maintenance_error = e

        # Fold both passes into one error, flattening the first pass so the
        # message lists each failure once.
        errs = TaskGroup("refresh-result")
        for e in _flatten(refresh_error):
            errs.error(e)
        if maintenance_error is not None:
            errs.error(maintenance_error)
        error = errs.wait()

        success = sum(1 for r in self.results if r["status"] == "success")
        failed = len(self.results) - success
        status = "success" if error is None else "failed"
        if self.metrics is not None:
            self.metrics.record_cycle(status, time.time() - cycle_start)

        logger.info("=" * 60)
        logger.info("WAREHOUSE REFRESH COMPLETE")
        logger.info(f"  Tables: {success} success, {failed} failed")
        logger.info(f"  Maintenance: {'failed' if maintenance_error else 'success'}")
        logger.info("=" * 60)

        if error is not None:
            raise error
        return self.results
