"""
Replication Errors
==================

Error taxonomy for a replication cycle.

Setup errors abort the whole cycle before any table work starts.
Everything else is scoped to one table (or to the maintenance step) and is
collected into the cycle result without stopping sibling tables.
"""

from typing import List, Optional


class ReplicationError(Exception):
    """Base class for all replication failures."""

    def __init__(self, message: str, table: Optional[str] = None):
        super().__init__(message)
        self.table = table


class SetupError(ReplicationError):
    """Pre-fan-out failure (e.g. the target namespace cannot be created)."""


class ConnectionSetupError(SetupError):
    """A source, warehouse or object store connection could not be opened."""


class SchemaQueryError(ReplicationError):
    """Column metadata for a source table could not be read."""


class DumpError(ReplicationError):
    """A source table could not be dumped to the object store."""


class StagingError(ReplicationError):
    """The staging table could not be (re)created."""


class BulkLoadError(ReplicationError):
    """The bulk load into the staging table failed."""


class CommitError(ReplicationError):
    """The swap transaction failed; the live table is left untouched."""


class MaintenanceError(ReplicationError):
    """Post-refresh VACUUM/ANALYZE failed."""


class CleanupError(ReplicationError):
    """Dropping a staging table after a failure did not succeed."""


class MultiError(ReplicationError):
    """
    Several failures reported as one error.

    The message is "multiple errors: " followed by each error's message
    joined with " | ", in the order they were recorded.
    """

    def __init__(self, errors: List[BaseException]):
        if len(errors) < 2:
            raise ValueError(f"MultiError needs at least 2 errors, got {len(errors)}")
        self.errors = list(errors)
        super().__init__("multiple errors: " + " | ".join(str(e) for e in self.errors))

    def __iter__(self):
        return iter(self.errors)

    def __len__(self):
        return len(self.errors)
