#!/usr/bin/env python3
"""
Replication Job Runner
======================

Main entry point for a replication run: dumps the configured PostgreSQL
tables to the object store, then refreshes each one in Redshift.

Usage:
    replicate --tables orders,customers --stage-prefix s3://bucket/pg/
    replicate --settings jobs/task_settings.json --no-dump-source
    replicate --tables orders --stage-prefix s3://bucket/pg/ --log-format json

AWS_REGION, AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY are read from the
environment; flags win over the settings file.
"""

import argparse
import logging
import sys
import time
from dataclasses import replace
from typing import Dict, List, Mapping, Optional

from common.config import ReplicationConfig, load_task_settings, MAINTENANCE_SCOPES
from common.errors import ReplicationError
from common.utils import split_csv
from ingestion.connectors.minio_connector import MinIOConnector
from ingestion.connectors.postgres_connector import PostgresConnector
from ingestion.engine import IngestionEngine
from observability.logging.structured_logger import configure_logging, get_logger, log_context, new_trace_id
from observability.metrics.collector import MetricsCollector
from warehouse.commands import redact_credentials
from warehouse.orchestrator import RefreshOrchestrator
from warehouse.redshift_connector import RedshiftConnector
from warehouse.schema import TableSpec, build_table_specs

logger = logging.getLogger(__name__)

PIPELINE_NAME = "replication"


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="replicate",
        description="Replicate PostgreSQL tables into Redshift through S3"
    )
    parser.add_argument("--settings", type=str, help="Path to a JSON task settings file")
    parser.add_argument("--tables", type=str, help="Comma separated list of tables to replicate")
    parser.add_argument("--stage-prefix", type=str, help="Object store prefix for dumps, e.g. s3://bucket/path/")
    parser.add_argument("--namespace", type=str, help="Redshift schema to refresh (default: public)")
    parser.add_argument("--delimiter", type=str, help="Field delimiter of the dump files (default: |)")
    parser.add_argument(
        "--dump-source",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Dump the source tables to the object store"
    )
    parser.add_argument(
        "--refresh-destination",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Refresh the Redshift tables from the object store"
    )
    parser.add_argument("--maintenance-scope", choices=MAINTENANCE_SCOPES, help="VACUUM/ANALYZE target")

    source = parser.add_argument_group("source")
    source.add_argument("--source-host", type=str)
    source.add_argument("--source-port", type=int)
    source.add_argument("--source-database", type=str)
    source.add_argument("--source-user", type=str)
    source.add_argument("--source-password", type=str)
    source.add_argument("--source-namespace", type=str, help="Source schema (default: public)")

    warehouse = parser.add_argument_group("warehouse")
    warehouse.add_argument("--warehouse-host", type=str)
    warehouse.add_argument("--warehouse-port", type=int)
    warehouse.add_argument("--warehouse-database", type=str)
    warehouse.add_argument("--warehouse-user", type=str)
    warehouse.add_argument("--warehouse-password", type=str)

    parser.add_argument("--log-format", choices=["text", "json"], help="Log output format")
    parser.add_argument("--log-level", type=str, help="Log level (default: INFO)")
    parser.add_argument("--metrics-backend", choices=["memory", "prometheus"])
    parser.add_argument("--pushgateway-url", type=str)
    return parser.parse_args(argv)


def _given(values: Dict) -> Dict:
    return {k: v for k, v in values.items() if v is not None}


def build_config(args: argparse.Namespace, env: Optional[Mapping[str, str]] = None) -> ReplicationConfig:
    """
    Layer CLI flags over the settings file and environment.

    Raises:
        ValueError: the resulting configuration is incomplete
    """
    config = ReplicationConfig.from_settings(load_task_settings(args.settings), env)

    overrides = _given({
        "tables": split_csv(args.tables) or None,
        "stage_prefix": args.stage_prefix,
        "namespace": args.namespace,
        "delimiter": args.delimiter,
        "dump_source": args.dump_source,
        "refresh_destination": args.refresh_destination,
        "log_level": args.log_level,
        "log_json": None if args.log_format is None else args.log_format == "json",
        "metrics_backend": args.metrics_backend,
        "pushgateway_url": args.pushgateway_url,
    })

    source = _given({
        "host": args.source_host,
        "port": args.source_port,
        "database": args.source_database,
        "username": args.source_user,
        "password": args.source_password,
        "namespace": args.source_namespace,
    })
    if source:
        overrides["source"] = replace(config.source, **source)

    warehouse = _given({
        "host": args.warehouse_host,
        "port": args.warehouse_port,
        "database": args.warehouse_database,
        "username": args.warehouse_user,
        "password": args.warehouse_password,
    })
    if warehouse:
        overrides["warehouse"] = replace(config.warehouse, **warehouse)

    if args.maintenance_scope:
        overrides["refresh"] = replace(config.refresh, maintenance_scope=args.maintenance_scope)

    config = replace(config, **overrides)
    config.validate()
    return config


# =========================================
# PHASES
# =========================================

def read_table_specs(config: ReplicationConfig, source: PostgresConnector) -> Dict[str, TableSpec]:
    """Introspect every table on the source and shape it for the warehouse."""
    schemas = source.get_table_schemas(config.tables, config.source.namespace)
    specs = build_table_specs(schemas, config.namespace, config.table_hints)
    for name in config.tables:
        logger.info(f"  {name}: {len(specs[name].columns)} columns")
    return specs


def run_dump(
    config: ReplicationConfig,
    source: PostgresConnector,
    object_store: MinIOConnector,
    metrics: MetricsCollector
) -> List[Dict]:
    engine = IngestionEngine(
        source,
        object_store,
        namespace=config.source.namespace,
        delimiter=config.delimiter,
        metrics=metrics
    )
    return engine.dump_tables(config.tables, config.stage_prefix)


def run_refresh(
    config: ReplicationConfig,
    specs: Dict[str, TableSpec],
    object_store: Optional[MinIOConnector],
    metrics: MetricsCollector,
    run_id: str
) -> List[Dict]:
    warehouse = RedshiftConnector(config.warehouse, pool_size=len(config.tables))
    warehouse.connect()
    try:
        orchestrator = RefreshOrchestrator(
            warehouse,
            settings=config.refresh,
            object_store=object_store,
            metrics=metrics
        )
        return orchestrator.refresh_tables(
            specs,
            namespace=config.namespace,
            stage_prefix=config.stage_prefix,
            region=config.region,
            delimiter=config.delimiter,
            run_id=run_id
        )
    finally:
        warehouse.disconnect()


def _run_phase(slog, name: str, run_id: str, fn, *args):
    """Run one phase between task start/end events."""
    start = time.time()
    slog.log_task_start(name, run_id)
    status = "failed"
    try:
        result = fn(*args)
        status = "success"
        return result
    finally:
        slog.log_task_end(name, run_id, status, time.time() - start)


def run_replication(config: ReplicationConfig) -> bool:
    """
    Run the enabled phases in order.

    Returns:
        True when every table replicated, False on the first fatal error
    """
    run_id = new_trace_id()
    slog = get_logger(__name__)
    metrics = MetricsCollector(
        backend=config.metrics_backend,
        pushgateway_url=config.pushgateway_url,
        job_name=PIPELINE_NAME
    )
    start = time.time()

    logger.info("=" * 60)
    logger.info("REPLICATION JOB")
    logger.info("=" * 60)
    slog.log_pipeline_start(
        PIPELINE_NAME,
        run_id,
        config={
            "tables": config.tables,
            "namespace": config.namespace,
            "stage_prefix": config.stage_prefix,
            "dump_source": config.dump_source,
            "refresh_destination": config.refresh_destination,
        }
    )

    source = PostgresConnector(config.source, pool_size=len(config.tables))
    object_store = MinIOConnector(config.object_store.as_client_config())
    status = "failed"
    with log_context(trace_id=run_id):
        try:
            source.connect()
            object_store.connect()
            specs = _run_phase(slog, "read_schemas", run_id, read_table_specs, config, source)

            if config.dump_source:
                _run_phase(slog, "dump_source", run_id, run_dump, config, source, object_store, metrics)
            else:
                logger.info("Source dump disabled, using files already staged")

            if config.refresh_destination:
                verify = object_store if config.refresh.verify_staged_files else None
                _run_phase(
                    slog, "refresh_destination", run_id,
                    run_refresh, config, specs, verify, metrics, run_id
                )
            else:
                logger.info("Warehouse refresh disabled")

            status = "success"
        except (ReplicationError, ValueError) as e:
            logger.error(f"✗ Replication failed: {redact_credentials(str(e))}")
        finally:
            source.disconnect()
            slog.log_pipeline_end(
                PIPELINE_NAME,
                run_id,
                status,
                time.time() - start,
                tables_processed=len(config.tables)
            )
            metrics.push_to_prometheus()

    return status == "success"


def main(argv: Optional[List[str]] = None):
    args = parse_args(argv)

    try:
        config = build_config(args)
    except (ValueError, OSError) as e:
        configure_logging()
        logger.error(f"✗ {e}")
        sys.exit(1)

    configure_logging(config.log_level, config.log_json)
    success = run_replication(config)
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
