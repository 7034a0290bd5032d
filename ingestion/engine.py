"""
Ingestion Engine Core
=====================

Dump phase of replication: copies each source table, as gzip-compressed
delimited text, to its staging path in the object store. Tables are dumped
in parallel and one table's failure does not stop the others.
"""

import gzip
import io
import logging
import threading
from datetime import datetime
from typing import Dict, List

from common.errors import DumpError
from common.task_group import TaskGroup
from observability.logging.structured_logger import log_context
from .connectors.minio_connector import MinIOConnector, parse_path, stage_path
from .connectors.postgres_connector import PostgresConnector, DEFAULT_NAMESPACE

logger = logging.getLogger(__name__)


class IngestionEngine:
    """
    Moves source tables into the object store staging area.
    """

    def __init__(
        self,
        source_connector: PostgresConnector,
        target_connector: MinIOConnector,
        namespace: str = DEFAULT_NAMESPACE,
        delimiter: str = "|",
        metrics=None
    ):
        """
        Initialize the ingestion engine.

        Args:
            source_connector: Connected PostgreSQL source
            target_connector: Connected object store
            namespace: Source schema holding the tables
            delimiter: Field delimiter written into the dump
            metrics: Optional MetricsCollector
        """
        self.source_connector = source_connector
        self.target_connector = target_connector
        self.namespace = namespace
        self.delimiter = delimiter
        self.metrics = metrics
        self.results: List[Dict] = []
        self._lock = threading.Lock()

    def dump_table(self, table: str, prefix: str) -> Dict:
        """
        Dump a single table to the object store.

        Args:
            table: Source table name
            prefix: Staging prefix (s3://bucket/path/)

        Returns:
            Result dictionary with target path and compressed size

        Raises:
            DumpError: the dump or the upload failed
        """
        target_path = stage_path(prefix, table)
        result = {
            "table": table,
            "target_path": target_path,
            "status": "pending",
            "bytes_written": 0,
            "start_time": datetime.now().isoformat(),
            "end_time": None,
            "error": None
        }
        with self._lock:
            self.results.append(result)

        with log_context(table=table):
            logger.info(f"Dumping {self.namespace}.{table} -> {target_path}")
            try:
                buffer = io.BytesIO()
                with gzip.GzipFile(fileobj=buffer, mode="wb") as gz:
                    self.source_connector.dump_table(
                        table, gz, namespace=self.namespace, delimiter=self.delimiter
                    )
                data = buffer.getvalue()
                self.target_connector.write_bytes(target_path, data)
            except Exception as e:
                result["status"] = "failed"
                result["error"] = str(e)
                result["end_time"] = datetime.now().isoformat()
                logger.error(f"  ✗ Dump of {table} failed: {e}")
                if self.metrics is not None:
                    self.metrics.record_dump(table, "failed")
                raise DumpError(f"dumping {table} to {target_path} failed: {e}", table=table) from e

            result["status"] = "success"
            result["bytes_written"] = len(data)
            result["end_time"] = datetime.now().isoformat()
            logger.info(f"  ✓ Dumped {table}: {len(data)} compressed bytes")
            if self.metrics is not None:
                self.metrics.record_dump(table, "success", len(data))
        return result

    def prepare_bucket(self, prefix: str, table: str):
        """
        Create the staging bucket on a fresh object store.

        Raises:
            DumpError: the bucket could not be checked or created
        """
        target_path = stage_path(prefix, table)
        try:
            bucket, _ = parse_path(target_path)
            self.target_connector.ensure_bucket(bucket)
        except Exception as e:
            logger.error(f"  ✗ Cannot prepare staging bucket for {prefix}: {e}")
            raise DumpError(f"cannot prepare staging bucket for {prefix}: {e}") from e

    def dump_tables(self, tables: List[str], prefix: str) -> List[Dict]:
        """
        Dump many tables in parallel.

        Returns:
            Per-table result dictionaries (also kept on self.results)

        Raises:
            DumpError: the staging bucket could not be prepared, or the only failing table
            MultiError: several tables failed
        """
        self.results = []

        logger.info("=" * 60)
        logger.info("STARTING SOURCE DUMP")
        logger.info(f"Tables to dump: {len(tables)}")
        logger.info(f"Staging prefix: {prefix}")
        logger.info("=" * 60)

        if tables:
            self.prepare_bucket(prefix, tables[0])

        group = TaskGroup("dump")
        for table in tables:
            group.go(self.dump_table, table, prefix)
        err = group.wait()

        success = sum(1 for r in self.results if r["status"] == "success")
        total_bytes = sum(r["bytes_written"] for r in self.results)

        logger.info("=" * 60)
        logger.info("SOURCE DUMP COMPLETE")
        logger.info(f"  Tables: {success} success, {len(self.results) - success} failed")
        logger.info(f"  Total compressed bytes: {total_bytes}")
        logger.info("=" * 60)

        if err is not None:
            raise err
        return self.results
