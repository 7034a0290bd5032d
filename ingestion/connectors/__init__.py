"""
Ingestion Connectors
====================

Source and staging connectors for the replication jobs.
"""

from .minio_connector import MinIOConnector, stage_path, parse_path
from .postgres_connector import PostgresConnector

__all__ = ["MinIOConnector", "PostgresConnector", "stage_path", "parse_path"]
