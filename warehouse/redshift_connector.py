"""
Redshift Target Connector
=========================

SQL execution against the Redshift warehouse.

The refresh code only depends on the narrow SqlExecutor protocol below, so
tests substitute an in-memory double without any inheritance.
"""

import logging
from contextlib import contextmanager
from typing import ContextManager, Iterator, Protocol

from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL
from sqlalchemy.exc import SQLAlchemyError

from common.config import WarehouseConfig
from common.errors import ConnectionSetupError
from .commands import redact_credentials

logger = logging.getLogger(__name__)


class Transaction(Protocol):
    """Statements issued here become visible together on commit."""

    def execute(self, statement: str):
        ...

    def commit(self):
        ...

    def rollback(self):
        ...


class SqlExecutor(Protocol):
    """
    What the refresh controller needs from a warehouse connection.

    execute() runs a single statement in autocommit mode. begin() yields a
    Transaction that commits when the block exits normally and rolls back
    when it raises.
    """

    def execute(self, statement: str):
        ...

    def begin(self) -> ContextManager[Transaction]:
        ...


class _SQLAlchemyTransaction:
    """Transaction over one SQLAlchemy connection."""

    def __init__(self, conn):
        self._conn = conn
        self._tx = conn.begin()

    @property
    def is_active(self) -> bool:
        return self._tx.is_active

    def execute(self, statement: str):
        logger.info(f"Executing Redshift command (in transaction): {redact_credentials(statement)}")
        return self._conn.execute(text(statement))

    def commit(self):
        self._tx.commit()

    def rollback(self):
        if self._tx.is_active:
            self._tx.rollback()


class RedshiftConnector:
    """
    Redshift warehouse connector.

    Redshift speaks the PostgreSQL protocol, so this goes through SQLAlchemy
    with the psycopg2 driver.
    """

    def __init__(self, config: WarehouseConfig, pool_size: int = 5):
        """
        Initialize Redshift connector.

        Args:
            config: Warehouse connection settings
            pool_size: Connection pool size; size it to the number of tables
                refreshed concurrently so fan-out queues instead of failing
        """
        self.config = config
        self.pool_size = max(pool_size, 1)
        self.engine = None

    def connect(self):
        """Create the engine and check the warehouse answers."""
        url = URL.create(
            "postgresql+psycopg2",
            username=self.config.username,
            password=self.config.password,
            host=self.config.host,
            port=self.config.port,
            database=self.config.database,
        )
        logger.info(
            f"Connecting to Redshift: host={self.config.host} port={self.config.port} "
            f"dbname={self.config.database} connect_timeout={self.config.connect_timeout}"
        )
        try:
            self.engine = create_engine(
                url,
                pool_size=self.pool_size,
                max_overflow=0,
                pool_pre_ping=True,
                connect_args={"connect_timeout": self.config.connect_timeout},
            )
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            raise ConnectionSetupError(f"cannot connect to Redshift at {self.config.host}: {e}") from e

        logger.info(f"Connected to Redshift: {self.config.host}:{self.config.port}/{self.config.database}")

    def disconnect(self):
        """Dispose of pooled connections."""
        if self.engine:
            self.engine.dispose()
            logger.info("Redshift connection closed")

    def execute(self, statement: str):
        """
        Run one statement outside any transaction block.

        VACUUM must run this way; Redshift rejects it inside a transaction.
        """
        logger.info(f"Executing Redshift command: {redact_credentials(statement)}")
        with self.engine.connect() as conn:
            conn = conn.execution_options(isolation_level="AUTOCOMMIT")
            conn.execute(text(statement))

    @contextmanager
    def begin(self) -> Iterator[_SQLAlchemyTransaction]:
        """Open a transaction; commit on clean exit, roll back on error."""
        with self.engine.connect() as conn:
            tx = _SQLAlchemyTransaction(conn)
            try:
                yield tx
            except Exception:
                tx.rollback()
                raise
            if tx.is_active:
                tx.commit()
