"""
PostgreSQL Source Connector
===========================

Connector for the transactional PostgreSQL source.

Provides:
- Column metadata introspection from the system catalogs, mapped to
  warehouse column types
- Batched introspection of many tables in parallel
- Table dumps as delimited CSV via COPY TO STDOUT
"""

import logging
import threading
from typing import Dict, IO, List, Optional

import pandas as pd
from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL
from sqlalchemy.exc import SQLAlchemyError

from common.config import SourceConfig
from common.errors import ConnectionSetupError, SchemaQueryError
from common.task_group import TaskGroup
from warehouse.commands import table_ref
from warehouse.schema import ColumnInfo, TableSchema

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "public"

SCHEMA_QUERY = """
    SELECT
        f.attnum AS ordinal,
        f.attname AS name,
        pg_catalog.format_type(f.atttypid, f.atttypmod) AS col_type,
        CASE
            WHEN f.atthasdef THEN pg_catalog.pg_get_expr(d.adbin, d.adrelid)
            ELSE ''
        END AS default_val,
        f.attnotnull AS not_null,
        p.contype IS NOT NULL AS primary_key
    FROM pg_attribute f
        JOIN pg_class c ON c.oid = f.attrelid
        LEFT JOIN pg_attrdef d ON d.adrelid = c.oid AND d.adnum = f.attnum
        LEFT JOIN pg_namespace n ON n.oid = c.relnamespace
        LEFT JOIN pg_constraint p
            ON p.conrelid = c.oid AND f.attnum = ANY (p.conkey) AND p.contype = 'p'
    WHERE c.relkind = 'r'
        AND n.nspname = :namespace
        AND c.relname = :table
        AND f.attnum > 0
        AND NOT f.attisdropped
    ORDER BY f.attnum
"""

# Source types Redshift does not have, and what to load them as.
WAREHOUSE_TYPES = {
    "text": "varchar(max)",
    "citext": "varchar(max)",
    "character varying": "varchar(max)",
    "json": "varchar(max)",
    "jsonb": "varchar(max)",
    "xml": "varchar(max)",
    "bytea": "varchar(max)",
    "uuid": "char(36)",
    "inet": "varchar(45)",
    "cidr": "varchar(45)",
    "interval": "varchar(64)",
}


def warehouse_type(source_type: str) -> str:
    """Map a PostgreSQL format_type() string to a Redshift column type."""
    if source_type.endswith("[]"):
        return "varchar(max)"
    return WAREHOUSE_TYPES.get(source_type, source_type)


def warehouse_default(default: Optional[str]) -> Optional[str]:
    """Drop defaults Redshift cannot evaluate (sequences)."""
    if not default or default.startswith("nextval("):
        return None
    return default


def schema_from_frame(df: pd.DataFrame) -> TableSchema:
    """Convert catalog query rows into ColumnInfo objects."""
    return [
        ColumnInfo(
            ordinal=int(row["ordinal"]),
            name=row["name"],
            type=warehouse_type(row["col_type"]),
            default=warehouse_default(row["default_val"]),
            not_null=bool(row["not_null"]),
            primary_key=bool(row["primary_key"]),
        )
        for _, row in df.iterrows()
    ]


class PostgresConnector:
    """
    PostgreSQL database connector for schema introspection and dumps.
    """

    def __init__(self, config: SourceConfig, pool_size: int = 5):
        """
        Initialize PostgreSQL connector.

        Args:
            config: Source connection settings
            pool_size: Connection pool size; one connection per table dumped
                or introspected in parallel
        """
        self.config = config
        self.pool_size = max(pool_size, 1)
        self.engine = None

    def connect(self):
        """Establish connection to the PostgreSQL source."""
        url = URL.create(
            "postgresql+psycopg2",
            username=self.config.username,
            password=self.config.password,
            host=self.config.host,
            port=self.config.port,
            database=self.config.database,
        )
        try:
            self.engine = create_engine(
                url,
                pool_size=self.pool_size,
                max_overflow=0,
                connect_args={"sslmode": self.config.sslmode},
            )
            # Test connection
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            raise ConnectionSetupError(f"cannot connect to PostgreSQL at {self.config.host}: {e}") from e

        logger.info(f"Connected to PostgreSQL: {self.config.host}:{self.config.port}/{self.config.database}")

    def disconnect(self):
        """Close database connection."""
        if self.engine:
            self.engine.dispose()
            logger.info("PostgreSQL connection closed")

    # =========================================
    # SCHEMA INTROSPECTION
    # =========================================

    def get_table_schema(self, table: str, namespace: str = "") -> TableSchema:
        """
        Get column metadata for one table.

        Args:
            table: Table name
            namespace: Schema name, "public" when empty

        Returns:
            Columns in ordinal order, typed for the warehouse

        Raises:
            SchemaQueryError: query failed or the table has no columns
        """
        namespace = namespace or DEFAULT_NAMESPACE
        logger.info(f"Reading schema of {namespace}.{table}")
        try:
            df = pd.read_sql(
                text(SCHEMA_QUERY),
                self.engine,
                params={"namespace": namespace, "table": table}
            )
        except SQLAlchemyError as e:
            raise SchemaQueryError(f"schema query for {namespace}.{table} failed: {e}", table=table) from e

        if df.empty:
            raise SchemaQueryError(f"table {namespace}.{table} not found or has no columns", table=table)
        return schema_from_frame(df)

    def get_table_schemas(self, tables: List[str], namespace: str = "") -> Dict[str, TableSchema]:
        """
        Get schemas for many tables in parallel.

        Returns:
            Table name -> TableSchema

        Raises:
            SchemaQueryError: the only failing table
            MultiError: several tables failed
        """
        group = TaskGroup("schema")
        schemas: Dict[str, TableSchema] = {}
        lock = threading.Lock()

        def _fetch(table: str):
            schema = self.get_table_schema(table, namespace)
            with lock:
                schemas[table] = schema

        for table in tables:
            group.go(_fetch, table)

        err = group.wait()
        if err is not None:
            raise err
        return schemas

    # =========================================
    # DUMPS
    # =========================================

    def dump_table(
        self,
        table: str,
        writer: IO[bytes],
        namespace: str = DEFAULT_NAMESPACE,
        delimiter: str = "|"
    ):
        """
        Stream a table as headerless delimited CSV into a binary writer.

        Args:
            table: Table name
            writer: Binary file-like object (e.g. a GzipFile)
            namespace: Schema name
            delimiter: Field delimiter
        """
        cmd = (
            f"COPY {table_ref(namespace, table)} TO STDOUT "
            f"WITH (FORMAT csv, DELIMITER '{delimiter}', HEADER false)"
        )
        logger.info(cmd)
        conn = self.engine.raw_connection()
        try:
            with conn.cursor() as cur:
                cur.copy_expert(cmd, writer)
            conn.commit()
        finally:
            conn.close()
