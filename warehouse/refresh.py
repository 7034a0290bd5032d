r"""
Table Refresh
=============

Reloads one warehouse table from its staged file while the live table stays
queryable.

    START -> STAGING_CREATED -> LOADED -> COMMITTED
      \_____________\______________\____-> FAILED

1. Drop-if-exists and create a staging table next to the live one. Starting
   with the drop makes a rerun after a failed attempt safe.
2. COPY the gzipped delimited file from the object store into staging.
3. In one transaction, drop the live table and rename staging into its place.
   Readers see the old table until commit and the new one right after.

Any failure before commit drops the staging table (best effort) and re-raises
the original error. A failed cleanup is reported next to the original error,
never instead of it.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Dict, Optional

from common.config import S3Credentials, DEFAULT_STAGING_PREFIX
from common.errors import (
    BulkLoadError,
    CleanupError,
    CommitError,
    MultiError,
    StagingError
)
from observability.logging.structured_logger import log_context
from .commands import (
    copy_statement,
    create_table_statement,
    drop_table_statement,
    redact_credentials,
    swap_statements,
    table_ref
)
from .redshift_connector import SqlExecutor
from .schema import RefreshJob

logger = logging.getLogger(__name__)


class RefreshState(Enum):
    START = "start"
    STAGING_CREATED = "staging_created"
    LOADED = "loaded"
    COMMITTED = "committed"
    FAILED = "failed"


class TableRefreshController:
    """
    Drives one RefreshJob through the refresh state machine.

    A controller is good for a single run; build a new one per job.
    """

    def __init__(
        self,
        executor: SqlExecutor,
        job: RefreshJob,
        credentials: Optional[S3Credentials] = None,
        staging_prefix: str = DEFAULT_STAGING_PREFIX,
        object_store=None
    ):
        """
        Initialize the controller.

        Args:
            executor: Warehouse SQL executor
            job: The table to refresh and where its staged file lives
            credentials: Key pair passed to COPY
            staging_prefix: Prefix that turns the live name into the staging name
            object_store: Optional MinIOConnector used to check the staged file
                exists before issuing COPY
        """
        self.executor = executor
        self.job = job
        self.credentials = credentials
        self.object_store = object_store
        self.staging_name = f"{staging_prefix}{job.table}"
        self.state = RefreshState.START
        self.result: Optional[Dict] = None

    @property
    def live_ref(self) -> str:
        return table_ref(self.job.namespace, self.job.table)

    @property
    def staging_ref(self) -> str:
        return table_ref(self.job.namespace, self.staging_name)

    def _require(self, expected: RefreshState, action: str):
        if self.state is not expected:
            raise RuntimeError(
                f"cannot {action} table {self.job.table} in state {self.state.value}"
            )

    def _staged_file_exists(self) -> bool:
        try:
            return self.object_store.object_exists(self.job.stage_path)
        except Exception as e:
            raise BulkLoadError(
                f"cannot check staged file {self.job.stage_path}: {e}", table=self.job.table
            ) from e

    # =========================================
    # TRANSITIONS
    # =========================================

    def create_staging(self):
        """START -> STAGING_CREATED."""
        self._require(RefreshState.START, "create staging for")
        try:
            self.executor.execute(drop_table_statement(self.staging_ref, if_exists=True))
            self.executor.execute(create_table_statement(self.staging_ref, self.job.spec.columns))
        except Exception as e:
            raise StagingError(
                f"creating staging table {self.staging_name} failed: {e}", table=self.job.table
            ) from e
        self.state = RefreshState.STAGING_CREATED

    def load(self):
        """STAGING_CREATED -> LOADED."""
        self._require(RefreshState.STAGING_CREATED, "load")
        if self.object_store is not None and not self._staged_file_exists():
            raise BulkLoadError(
                f"staged file {self.job.stage_path} for table {self.job.table} does not exist",
                table=self.job.table,
            )

        stmt = copy_statement(
            self.staging_ref,
            self.job.spec.columns,
            self.job.stage_path,
            self.job.region,
            self.job.delimiter,
            credentials=self.credentials,
        )
        try:
            self.executor.execute(stmt)
        except Exception as e:
            raise BulkLoadError(
                f"loading {self.job.stage_path} into {self.staging_name} failed: "
                f"{redact_credentials(str(e))}",
                table=self.job.table,
            ) from e
        self.state = RefreshState.LOADED

    def commit(self):
        """LOADED -> COMMITTED, atomically swapping staging in for live."""
        self._require(RefreshState.LOADED, "commit")
        try:
            with self.executor.begin() as tx:
                for stmt in swap_statements(self.job.namespace, self.job.table, self.staging_name):
                    tx.execute(stmt)
        except Exception as e:
            raise CommitError(
                f"swapping {self.staging_name} into {self.job.table} failed: {e}",
                table=self.job.table,
            ) from e
        self.state = RefreshState.COMMITTED

    def _cleanup(self) -> Optional[CleanupError]:
        """Drop the staging table; return the failure instead of raising it."""
        try:
            self.executor.execute(drop_table_statement(self.staging_ref, if_exists=True))
        except Exception as e:
            logger.error(f"  ✗ Cleanup of {self.staging_name} failed: {e}")
            cleanup_error = CleanupError(
                f"dropping staging table {self.staging_name} failed: {e}", table=self.job.table
            )
            cleanup_error.__cause__ = e
            return cleanup_error
        return None

    # =========================================
    # RUN
    # =========================================

    def run(self) -> Dict:
        """
        Refresh the table.

        Returns:
            Result dictionary with status, final state and timings

        Raises:
            StagingError, BulkLoadError, CommitError: the step that failed
            MultiError: the failing step's error plus a CleanupError
        """
        result = {
            "table": self.job.table,
            "namespace": self.job.namespace,
            "stage_path": self.job.stage_path,
            "status": "pending",
            "state": self.state.value,
            "start_time": datetime.now().isoformat(),
            "end_time": None,
            "error": None
        }
        self.result = result

        with log_context(table=self.job.table):
            logger.info(f"Refreshing {self.live_ref} from {self.job.stage_path}")
            try:
                self.create_staging()
                self.load()
                self.commit()
            except Exception as e:
                self.state = RefreshState.FAILED
                result["status"] = "failed"
                result["state"] = self.state.value
                result["end_time"] = datetime.now().isoformat()
                message = redact_credentials(str(e))
                result["error"] = message
                logger.error(f"  ✗ Refresh of {self.job.table} failed: {message}")

                cleanup_error = self._cleanup()
                if cleanup_error is not None:
                    result["error"] = f"{message} | {cleanup_error}"
                    raise MultiError([e, cleanup_error]) from e
                raise

            result["status"] = "success"
            result["state"] = self.state.value
            result["end_time"] = datetime.now().isoformat()
            logger.info(f"  ✓ Refreshed {self.live_ref}")
        return result
