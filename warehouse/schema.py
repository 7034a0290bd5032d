"""
Table Metadata
==============

Column and table descriptions shared by the source connector, the command
builder and the refresh controller.
"""

from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Sequence


@dataclass(frozen=True)
class ColumnInfo:
    """
    One column of a table.

    sort_key and dist_key are Redshift physical layout hints.
    """
    ordinal: int
    name: str
    type: str
    default: Optional[str] = None
    not_null: bool = False
    primary_key: bool = False
    sort_key: bool = False
    dist_key: bool = False


# An unordered collection of columns; sort with sorted_columns() before use.
TableSchema = List[ColumnInfo]


def sorted_columns(columns: Sequence[ColumnInfo]) -> List[ColumnInfo]:
    """Return columns ascending by ordinal."""
    return sorted(columns, key=lambda c: c.ordinal)


@dataclass(frozen=True)
class TableSpec:
    """A table to replicate, fixed for the duration of one cycle."""
    name: str
    namespace: str
    columns: tuple = field(default_factory=tuple)
    data_date_column: Optional[str] = None

    def __post_init__(self):
        columns = tuple(self.columns)
        seen = set()
        for col in columns:
            if col.ordinal in seen:
                raise ValueError(f"duplicate ordinal {col.ordinal} in table {self.name}")
            seen.add(col.ordinal)
        object.__setattr__(self, "columns", columns)

    @property
    def ordered_columns(self) -> List[ColumnInfo]:
        return sorted_columns(self.columns)

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self.ordered_columns]


@dataclass(frozen=True)
class RefreshJob:
    """
    One table's unit of work for a single refresh cycle.

    Built by the orchestrator and consumed by exactly one controller run.
    """
    table: str
    spec: TableSpec
    stage_path: str
    delimiter: str
    region: str
    namespace: str


def apply_table_hints(spec: TableSpec, hints: Optional[Dict]) -> TableSpec:
    """
    Overlay configured layout hints onto an introspected table.

    Args:
        spec: TableSpec built from source metadata
        hints: Dict with optional sort_keys (list), dist_key and data_date_column

    Returns:
        A new TableSpec (the input is left unchanged)
    """
    if not hints:
        return spec

    sort_keys = set(hints.get("sort_keys", []))
    dist_key = hints.get("dist_key")
    known = {c.name for c in spec.columns}
    missing = (sort_keys | ({dist_key} if dist_key else set())) - known
    if missing:
        raise ValueError(f"hints for {spec.name} name unknown columns: {sorted(missing)}")

    columns = tuple(
        replace(
            c,
            sort_key=c.sort_key or c.name in sort_keys,
            dist_key=c.dist_key or c.name == dist_key,
        )
        for c in spec.columns
    )
    return replace(
        spec,
        columns=columns,
        data_date_column=hints.get("data_date_column", spec.data_date_column),
    )


def build_table_specs(
    schemas: Dict[str, TableSchema],
    namespace: str,
    hints: Optional[Dict[str, Dict]] = None
) -> Dict[str, TableSpec]:
    """
    Turn introspected schemas into TableSpecs for the destination namespace.

    Args:
        schemas: Table name -> columns, as returned by the source connector
        namespace: Destination schema
        hints: Table name -> layout hints (see apply_table_hints)

    Returns:
        Table name -> TableSpec
    """
    hints = hints or {}
    return {
        table: apply_table_hints(
            TableSpec(name=table, namespace=namespace, columns=tuple(columns)),
            hints.get(table),
        )
        for table, columns in schemas.items()
    }
