"""
Warehouse Commands
==================

Pure rendering of table metadata into Redshift statements: staging table
creation, bulk COPY from the object store, the drop+rename swap and
VACUUM/ANALYZE maintenance. No I/O happens here.

Identifiers come from source catalog metadata, not user input, so they are
quoted but not otherwise escaped.
"""

import re
from typing import Iterable, List, Optional, Sequence

from common.config import S3Credentials
from .schema import ColumnInfo, sorted_columns

COPY_OPTIONS = (
    "ACCEPTINVCHARS TRUNCATECOLUMNS TRIMBLANKS BLANKSASNULL EMPTYASNULL "
    "DATEFORMAT 'auto' ACCEPTANYDATE COMPUPDATE ON"
)

_CREDENTIALS_RE = re.compile(r"CREDENTIALS\s+'[^']*'", re.IGNORECASE)


def quote_ident(name: str) -> str:
    return f'"{name}"'


def table_ref(namespace: Optional[str], name: str) -> str:
    """
    Render a table reference.

    Args:
        namespace: Schema name; empty/None renders the bare table name
        name: Table name

    Returns:
        '"namespace"."name"' or 'name'
    """
    if not namespace:
        return name
    return f"{quote_ident(namespace)}.{quote_ident(name)}"


def column_definition(col: ColumnInfo) -> str:
    """
    Render one column for CREATE TABLE.

    Clause order is fixed: DEFAULT, DISTKEY, SORTKEY, NOT NULL, PRIMARY KEY.
    Primary key columns are always sort keys.
    """
    parts = [col.name, col.type]
    if col.default:
        parts.append(f"DEFAULT {col.default}")
    if col.dist_key:
        parts.append("DISTKEY")
    if col.sort_key or col.primary_key:
        parts.append("SORTKEY")
    if col.not_null:
        parts.append("NOT NULL")
    if col.primary_key:
        parts.append("PRIMARY KEY")
    return " ".join(parts)


def create_table_statement(table: str, columns: Sequence[ColumnInfo]) -> str:
    """CREATE TABLE with columns in ordinal order."""
    cols = ", ".join(column_definition(c) for c in sorted_columns(columns))
    return f"CREATE TABLE {table} ({cols})"


def drop_table_statement(table: str, if_exists: bool = True) -> str:
    if if_exists:
        return f"DROP TABLE IF EXISTS {table}"
    return f"DROP TABLE {table}"


def create_schema_statement(namespace: str) -> str:
    return f"CREATE SCHEMA IF NOT EXISTS {quote_ident(namespace)}"


def credentials_clause(credentials: S3Credentials) -> str:
    return (
        f"CREDENTIALS 'aws_access_key_id={credentials.access_key_id};"
        f"aws_secret_access_key={credentials.secret_access_key}'"
    )


def copy_statement(
    table: str,
    columns: Sequence[ColumnInfo],
    path: str,
    region: str,
    delimiter: str,
    credentials: Optional[S3Credentials] = None,
    gzip: bool = True,
    ignore_header: int = 0
) -> str:
    """
    Render a COPY of a delimited file from the object store into a table.

    The column list uses the same ordinal order as create_table_statement,
    which is also the column order the source dump writes.

    Args:
        table: Rendered target table reference
        columns: Table columns (any order)
        path: s3:// path of the staged file
        region: Region of the bucket
        delimiter: Single field delimiter character
        credentials: Key pair appended as a CREDENTIALS clause when given
        gzip: Whether the staged file is gzip compressed
        ignore_header: Number of header rows to skip

    Returns:
        COPY statement text. It contains secrets; log it through
        redact_credentials() only.
    """
    names = ", ".join(c.name for c in sorted_columns(columns))
    compression = " GZIP" if gzip else ""
    stmt = (
        f"COPY {table} ({names}) FROM '{path}' WITH REGION '{region}'"
        f"{compression} CSV DELIMITER '{delimiter}'"
        f" IGNOREHEADER {ignore_header} {COPY_OPTIONS}"
    )
    if credentials is not None:
        stmt += " " + credentials_clause(credentials)
    return stmt


def swap_statements(namespace: Optional[str], live: str, staging: str) -> List[str]:
    """
    Statements that replace the live table with the staging table.

    Both must run inside one transaction so readers see either the old or
    the new table, never neither.
    """
    return [
        drop_table_statement(table_ref(namespace, live), if_exists=True),
        f"ALTER TABLE {table_ref(namespace, staging)} RENAME TO {quote_ident(live)}",
    ]


def maintenance_statements(tables: Optional[Iterable[str]] = None) -> List[str]:
    """
    VACUUM/ANALYZE statements.

    Args:
        tables: Rendered table references to maintain; None for the whole database

    Returns:
        Statements to run one by one outside a transaction block
    """
    if tables is None:
        return ["VACUUM FULL", "ANALYZE"]
    statements = []
    for table in tables:
        statements.append(f"VACUUM FULL {table}")
        statements.append(f"ANALYZE {table}")
    return statements


def redact_credentials(statement: str) -> str:
    """Mask any CREDENTIALS literal so the statement is safe to log."""
    return _CREDENTIALS_RE.sub("CREDENTIALS '****'", statement)
