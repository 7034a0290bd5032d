"""
Warehouse Refresh
=================

Destination side of replication: reloads Redshift tables from files staged
in the object store.

- schema: column/table metadata
- commands: SQL rendering (create, COPY, swap, maintenance)
- redshift_connector: SQL execution
- refresh: per-table refresh state machine
- orchestrator: concurrent refresh of many tables plus maintenance
"""

from .schema import (
    ColumnInfo, TableSpec, RefreshJob, sorted_columns, apply_table_hints, build_table_specs
)
from .refresh import TableRefreshController, RefreshState
from .orchestrator import RefreshOrchestrator
from .redshift_connector import RedshiftConnector, SqlExecutor

__all__ = [
    "ColumnInfo",
    "TableSpec",
    "RefreshJob",
    "sorted_columns",
    "apply_table_hints",
    "build_table_specs",
    "TableRefreshController",
    "RefreshState",
    "RefreshOrchestrator",
    "RedshiftConnector",
    "SqlExecutor"
]
