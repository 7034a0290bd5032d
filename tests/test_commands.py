"""
Statement rendering tests for the warehouse command builder.
"""

import pytest

from common.config import S3Credentials
from warehouse.commands import (
    column_definition,
    copy_statement,
    create_schema_statement,
    create_table_statement,
    drop_table_statement,
    maintenance_statements,
    redact_credentials,
    swap_statements,
    table_ref
)
from warehouse.schema import ColumnInfo, TableSpec, apply_table_hints, build_table_specs


# ============================================================================
# COLUMN DEFINITIONS
# ============================================================================

def test_primary_key_column_is_also_sort_key():
    col = ColumnInfo(ordinal=1, name="id", type="int", primary_key=True)
    assert column_definition(col) == "id int SORTKEY PRIMARY KEY"


def test_plain_column_has_no_clauses():
    assert column_definition(ColumnInfo(ordinal=1, name="val", type="text")) == "val text"


def test_clause_order_is_fixed():
    col = ColumnInfo(
        ordinal=1,
        name="id",
        type="integer",
        default="0",
        not_null=True,
        primary_key=True,
        dist_key=True,
    )
    assert column_definition(col) == "id integer DEFAULT 0 DISTKEY SORTKEY NOT NULL PRIMARY KEY"


def test_sort_key_without_primary_key():
    col = ColumnInfo(ordinal=1, name="created_at", type="timestamp", sort_key=True, not_null=True)
    assert column_definition(col) == "created_at timestamp SORTKEY NOT NULL"


# ============================================================================
# CREATE / DROP
# ============================================================================

def test_create_table_statement():
    columns = [
        ColumnInfo(ordinal=1, name="id", type="int", primary_key=True),
        ColumnInfo(ordinal=2, name="val", type="text"),
    ]
    assert (
        create_table_statement("staging", columns)
        == "CREATE TABLE staging (id int SORTKEY PRIMARY KEY, val text)"
    )


def test_columns_follow_ordinal_not_input_order():
    columns = [
        ColumnInfo(ordinal=3, name="c", type="text"),
        ColumnInfo(ordinal=1, name="a", type="text"),
        ColumnInfo(ordinal=2, name="b", type="text"),
    ]
    assert create_table_statement("t", columns) == "CREATE TABLE t (a text, b text, c text)"
    assert copy_statement("t", columns, "s3://b/t.txt.gz", "us-east-1", "|").startswith(
        "COPY t (a, b, c) FROM"
    )


def test_drop_and_schema_statements():
    assert drop_table_statement('"public"."t"') == 'DROP TABLE IF EXISTS "public"."t"'
    assert drop_table_statement("t", if_exists=False) == "DROP TABLE t"
    assert create_schema_statement("analytics") == 'CREATE SCHEMA IF NOT EXISTS "analytics"'


def test_table_ref():
    assert table_ref("public", "orders") == '"public"."orders"'
    assert table_ref("", "orders") == "orders"
    assert table_ref(None, "orders") == "orders"


# ============================================================================
# COPY
# ============================================================================

COLUMNS = [
    ColumnInfo(ordinal=2, name="val", type="text"),
    ColumnInfo(ordinal=1, name="id", type="int", primary_key=True),
]


def test_copy_statement():
    stmt = copy_statement(
        '"public"."tmp_refresh_table_orders"',
        COLUMNS,
        "s3://bucket/pg/orders.txt.gz",
        "us-east-1",
        "|",
    )
    assert stmt == (
        "COPY \"public\".\"tmp_refresh_table_orders\" (id, val) "
        "FROM 's3://bucket/pg/orders.txt.gz' WITH REGION 'us-east-1' GZIP CSV DELIMITER '|' "
        "IGNOREHEADER 0 ACCEPTINVCHARS TRUNCATECOLUMNS TRIMBLANKS BLANKSASNULL EMPTYASNULL "
        "DATEFORMAT 'auto' ACCEPTANYDATE COMPUPDATE ON"
    )


def test_copy_statement_uncompressed_with_header():
    stmt = copy_statement("t", COLUMNS, "s3://b/t.csv", "eu-west-1", ",", gzip=False, ignore_header=1)
    assert " GZIP" not in stmt
    assert "CSV DELIMITER ','" in stmt
    assert "IGNOREHEADER 1" in stmt


def test_copy_credentials_are_appended_and_redactable():
    creds = S3Credentials("AKIAEXAMPLE", "very-secret")
    stmt = copy_statement("t", COLUMNS, "s3://b/t.txt.gz", "us-east-1", "|", credentials=creds)

    assert stmt.endswith(
        "CREDENTIALS 'aws_access_key_id=AKIAEXAMPLE;aws_secret_access_key=very-secret'"
    )
    redacted = redact_credentials(stmt)
    assert "very-secret" not in redacted
    assert redacted.endswith("CREDENTIALS '****'")


def test_credentials_repr_hides_secret():
    assert "very-secret" not in repr(S3Credentials("AKIAEXAMPLE", "very-secret"))


# ============================================================================
# SWAP / MAINTENANCE
# ============================================================================

def test_swap_statements():
    assert swap_statements("public", "orders", "tmp_refresh_table_orders") == [
        'DROP TABLE IF EXISTS "public"."orders"',
        'ALTER TABLE "public"."tmp_refresh_table_orders" RENAME TO "orders"',
    ]


def test_database_wide_maintenance():
    assert maintenance_statements() == ["VACUUM FULL", "ANALYZE"]


def test_per_table_maintenance():
    assert maintenance_statements(['"public"."a"', '"public"."b"']) == [
        'VACUUM FULL "public"."a"',
        'ANALYZE "public"."a"',
        'VACUUM FULL "public"."b"',
        'ANALYZE "public"."b"',
    ]


# ============================================================================
# TABLE SPECS
# ============================================================================

def test_duplicate_ordinals_are_rejected():
    with pytest.raises(ValueError, match="duplicate ordinal"):
        TableSpec(
            name="t",
            namespace="public",
            columns=[
                ColumnInfo(ordinal=1, name="a", type="text"),
                ColumnInfo(ordinal=1, name="b", type="text"),
            ],
        )


def test_table_spec_orders_columns():
    spec = TableSpec(name="t", namespace="public", columns=COLUMNS)
    assert isinstance(spec.columns, tuple)
    assert spec.column_names == ["id", "val"]


def test_table_hints_mark_layout_columns():
    spec = TableSpec(name="t", namespace="public", columns=COLUMNS)
    hinted = apply_table_hints(spec, {"sort_keys": ["val"], "dist_key": "id", "data_date_column": "val"})

    by_name = {c.name: c for c in hinted.columns}
    assert by_name["val"].sort_key
    assert by_name["id"].dist_key
    assert hinted.data_date_column == "val"
    assert not any(c.sort_key for c in spec.columns)


def test_table_hints_reject_unknown_columns():
    spec = TableSpec(name="t", namespace="public", columns=COLUMNS)
    with pytest.raises(ValueError, match="unknown columns"):
        apply_table_hints(spec, {"sort_keys": ["missing"]})


def test_build_table_specs_targets_namespace():
    specs = build_table_specs(
        {"a": list(COLUMNS), "b": list(COLUMNS)},
        "analytics",
        {"a": {"dist_key": "id"}},
    )
    assert set(specs) == {"a", "b"}
    assert specs["a"].namespace == "analytics"
    assert any(c.dist_key for c in specs["a"].columns)
    assert not any(c.dist_key for c in specs["b"].columns)
