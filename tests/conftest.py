"""
Shared fakes for the replication tests.

FakeExecutor models the warehouse as a map of rendered table reference to
the staged path last loaded into it, which is enough to check what readers of
the live table would see after each step.
"""

import re
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, List, Optional

import pytest

from warehouse.schema import ColumnInfo, TableSpec, RefreshJob

NAMESPACE = "public"
PREFIX = "s3://bucket/pg/"
REGION = "us-east-1"

_REF = r'("[^"]+"\."[^"]+"|\S+)'
_CREATE_SCHEMA = re.compile(r'^CREATE SCHEMA IF NOT EXISTS (\S+)$')
_DROP = re.compile(r'^DROP TABLE (IF EXISTS )?' + _REF + r'$')
_CREATE = re.compile(r'^CREATE TABLE ' + _REF + r' \(')
_COPY = re.compile(r"^COPY " + _REF + r" \(.*?\) FROM '([^']+)'")
_RENAME = re.compile(r'^ALTER TABLE ' + _REF + r' RENAME TO "([^"]+)"$')


@dataclass
class FailRule:
    """Raise `error` for statements containing `match`, after letting `skip` through."""
    match: str
    error: Exception
    skip: int = 0
    seen: int = 0


class FakeWarehouseError(Exception):
    pass


class FakeTransaction:

    def __init__(self, executor: "FakeExecutor"):
        self._executor = executor
        self.pending: List[str] = []
        self.committed = False
        self.rolled_back = False

    def execute(self, statement: str):
        self._executor._check(statement)
        self.pending.append(statement)

    def commit(self):
        self._executor._apply_all(self.pending)
        self.committed = True

    def rollback(self):
        self.pending = []
        self.rolled_back = True


class FakeExecutor:
    """In-memory SqlExecutor with injectable failures."""

    def __init__(self, tables: Optional[Dict[str, Optional[str]]] = None):
        self.tables: Dict[str, Optional[str]] = dict(tables or {})
        self.schemas = set()
        self.statements: List[str] = []
        self.transactions: List[FakeTransaction] = []
        self.rules: List[FailRule] = []
        self._lock = threading.RLock()
        self.connected = False

    def connect(self):
        self.connected = True

    def disconnect(self):
        self.connected = False

    def fail_on(self, match: str, error: Optional[Exception] = None, skip: int = 0) -> Exception:
        error = error or FakeWarehouseError(f"injected failure on {match}")
        self.rules.append(FailRule(match, error, skip))
        return error

    def _check(self, statement: str):
        with self._lock:
            self.statements.append(statement)
            for rule in self.rules:
                if rule.match in statement:
                    rule.seen += 1
                    if rule.seen > rule.skip:
                        raise rule.error

    def _apply(self, state: Dict[str, Optional[str]], statement: str):
        m = _CREATE_SCHEMA.match(statement)
        if m:
            self.schemas.add(m.group(1))
            return
        m = _DROP.match(statement)
        if m:
            if m.group(2) in state:
                del state[m.group(2)]
            elif not m.group(1):
                raise FakeWarehouseError(f"table {m.group(2)} does not exist")
            return
        m = _CREATE.match(statement)
        if m:
            if m.group(1) in state:
                raise FakeWarehouseError(f"table {m.group(1)} already exists")
            state[m.group(1)] = None
            return
        m = _COPY.match(statement)
        if m:
            if m.group(1) not in state:
                raise FakeWarehouseError(f"table {m.group(1)} does not exist")
            state[m.group(1)] = m.group(2)
            return
        m = _RENAME.match(statement)
        if m:
            old = m.group(1)
            if old not in state:
                raise FakeWarehouseError(f"table {old} does not exist")
            namespace = old.rsplit(".", 1)[0] if "." in old else None
            new = f'{namespace}."{m.group(2)}"' if namespace else m.group(2)
            if new in state:
                raise FakeWarehouseError(f"table {new} already exists")
            state[new] = state.pop(old)
            return
        # VACUUM, ANALYZE and anything else leave the tables alone

    def _apply_all(self, statements: List[str]):
        with self._lock:
            state = dict(self.tables)
            for statement in statements:
                self._apply(state, statement)
            self.tables = state

    def execute(self, statement: str):
        self._check(statement)
        self._apply_all([statement])

    @contextmanager
    def begin(self):
        tx = FakeTransaction(self)
        with self._lock:
            self.transactions.append(tx)
        try:
            yield tx
        except Exception:
            tx.rollback()
            raise
        if not tx.rolled_back and not tx.committed:
            tx.commit()

    def executed(self, prefix: str) -> List[str]:
        with self._lock:
            return [s for s in self.statements if s.startswith(prefix)]


class FakeObjectStore:
    """Object store double keyed by full s3:// path."""

    def __init__(self, paths=()):
        self.objects: Dict[str, bytes] = {p: b"" for p in paths}
        self.error: Optional[Exception] = None
        self.buckets = set()
        self.bucket_error: Optional[Exception] = None
        self._lock = threading.Lock()

    def connect(self):
        pass

    def write_bytes(self, path: str, data: bytes, content_type: str = "application/gzip") -> str:
        with self._lock:
            self.objects[path] = data
        return path

    def ensure_bucket(self, bucket: str):
        if self.bucket_error is not None:
            raise self.bucket_error
        self.buckets.add(bucket)

    def object_exists(self, path: str) -> bool:
        if self.error is not None:
            raise self.error
        return path in self.objects


class FakeSource:
    """Source double: schemas come from a dict, dumps write canned rows."""

    def __init__(self, schemas: Dict[str, List[ColumnInfo]], rows: Optional[Dict[str, bytes]] = None):
        self.schemas = schemas
        self.rows = rows or {}
        self.failing = set()
        self.dumped: List[tuple] = []
        self.connected = False

    def connect(self):
        self.connected = True

    def disconnect(self):
        self.connected = False

    def get_table_schemas(self, tables, namespace=""):
        return {t: self.schemas[t] for t in tables}

    def dump_table(self, table, writer, namespace="public", delimiter="|"):
        if table in self.failing:
            raise FakeWarehouseError(f"relation {table} does not exist")
        self.dumped.append((table, namespace, delimiter))
        writer.write(self.rows.get(table, f"1{delimiter}{table}\n".encode()))


def make_columns() -> List[ColumnInfo]:
    return [
        ColumnInfo(ordinal=2, name="val", type="varchar(max)"),
        ColumnInfo(ordinal=1, name="id", type="integer", not_null=True, primary_key=True),
    ]


def make_spec(name: str, namespace: str = NAMESPACE) -> TableSpec:
    return TableSpec(name=name, namespace=namespace, columns=tuple(make_columns()))


def make_job(name: str = "orders", namespace: str = NAMESPACE) -> RefreshJob:
    return RefreshJob(
        table=name,
        spec=make_spec(name, namespace),
        stage_path=f"{PREFIX}{name}.txt.gz",
        delimiter="|",
        region=REGION,
        namespace=namespace,
    )


def live(name: str, namespace: str = NAMESPACE) -> str:
    return f'"{namespace}"."{name}"'


def staging(name: str, namespace: str = NAMESPACE) -> str:
    return f'"{namespace}"."tmp_refresh_table_{name}"'


@pytest.fixture
def executor():
    return FakeExecutor()


@pytest.fixture
def object_store():
    return FakeObjectStore()


@pytest.fixture
def clean_env(monkeypatch):
    """Remove the AWS variables config reads, for isolation."""
    for var in ("AWS_REGION", "AWS_ACCESS_KEY_ID", "AWS_SECRET_ACCESS_KEY"):
        monkeypatch.delenv(var, raising=False)
    return monkeypatch
