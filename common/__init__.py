"""
Common Code Module
==================

Shared pieces used by both replication phases: configuration, the error
taxonomy and the TaskGroup fan-out primitive.
"""

from .errors import (
    ReplicationError,
    SetupError,
    ConnectionSetupError,
    SchemaQueryError,
    DumpError,
    StagingError,
    BulkLoadError,
    CommitError,
    MaintenanceError,
    CleanupError,
    MultiError
)
from .task_group import TaskGroup

__all__ = [
    "ReplicationError",
    "SetupError",
    "ConnectionSetupError",
    "SchemaQueryError",
    "DumpError",
    "StagingError",
    "BulkLoadError",
    "CommitError",
    "MaintenanceError",
    "CleanupError",
    "MultiError",
    "TaskGroup"
]
