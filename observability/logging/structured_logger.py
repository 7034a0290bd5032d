"""
Structured Logger
=================

Provides structured logging for the replication jobs.

Features:
- JSON-formatted logs
- Per-thread context enrichment (each table refresh runs in its own thread)
- Log correlation (trace_id, run_id)
"""

import json
import logging
import sys
import threading
import traceback
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, Optional

# Thread-local storage for context
_context = threading.local()

_RESERVED_ATTRS = {
    'name', 'msg', 'args', 'created', 'filename', 'funcName',
    'levelname', 'levelno', 'lineno', 'module', 'msecs',
    'pathname', 'process', 'processName', 'relativeCreated',
    'stack_info', 'exc_info', 'exc_text', 'thread', 'threadName',
    'message', 'taskName'
}

TEXT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def current_context() -> Dict:
    """Context fields set on the calling thread."""
    return dict(getattr(_context, 'data', {}))


@contextmanager
def log_context(**kwargs):
    """
    Add fields to every log record emitted by this thread within the block.

    Usage:
        with log_context(table="orders"):
            logger.info("Loading")  # JSON output includes "table": "orders"
    """
    if not hasattr(_context, 'data'):
        _context.data = {}

    old_data = _context.data.copy()
    _context.data.update(kwargs)

    try:
        yield
    finally:
        _context.data = old_data


class JsonFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def __init__(self, include_extra: bool = True):
        super().__init__()
        self.include_extra = include_extra

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "thread": record.threadName
        }

        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": traceback.format_exception(*record.exc_info)
            }

        context = getattr(record, "context", None)
        if context:
            log_entry["context"] = context

        if self.include_extra:
            for key in set(record.__dict__.keys()) - _RESERVED_ATTRS - {"context"}:
                log_entry[key] = getattr(record, key)

        return json.dumps(log_entry, default=str)


class ContextFilter(logging.Filter):
    """Copies the emitting thread's context onto the record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.context = current_context()
        return True


def configure_logging(level: str = "INFO", json_format: bool = False, stream=None):
    """
    Configure the root logger for a job run.

    Args:
        level: Log level name
        json_format: Emit JSON lines instead of plain text
        stream: Output stream, stdout when omitted
    """
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.addFilter(ContextFilter())
    if json_format:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))

    root = logging.getLogger()
    root.handlers = []
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))


class StructuredLogger:
    """
    Logger with pipeline/task lifecycle events.

    Usage:
        logger = StructuredLogger("replication")
        logger.log_pipeline_start("replication", run_id)
        with log_context(table="orders"):
            logger.info("Processing")
    """

    def __init__(self, name: str):
        self.name = name
        self._logger = logging.getLogger(name)

    def _log(
        self,
        level: int,
        message: str,
        extra: Optional[Dict] = None,
        exception: Optional[BaseException] = None
    ):
        """Internal logging method."""
        extra = dict(extra or {})

        if 'trace_id' not in extra:
            trace_id = current_context().get('trace_id')
            if trace_id:
                extra['trace_id'] = trace_id

        if exception:
            self._logger.log(level, message, extra=extra, exc_info=exception)
        else:
            self._logger.log(level, message, extra=extra)

    def info(self, message: str, extra: Optional[Dict] = None):
        self._log(logging.INFO, message, extra)

    def warning(self, message: str, extra: Optional[Dict] = None):
        self._log(logging.WARNING, message, extra)

    def error(
        self,
        message: str,
        extra: Optional[Dict] = None,
        exception: Optional[BaseException] = None
    ):
        self._log(logging.ERROR, message, extra, exception)

    def log_pipeline_start(
        self,
        pipeline_name: str,
        run_id: str,
        config: Optional[Dict] = None
    ):
        """Log pipeline start event."""
        self.info(
            f"Pipeline started: {pipeline_name}",
            extra={
                "event": "pipeline_start",
                "pipeline_name": pipeline_name,
                "run_id": run_id,
                "config": config
            }
        )

    def log_pipeline_end(
        self,
        pipeline_name: str,
        run_id: str,
        status: str,
        duration_seconds: float,
        tables_processed: int = 0
    ):
        """Log pipeline end event."""
        level = logging.INFO if status == "success" else logging.ERROR
        self._log(
            level,
            f"Pipeline completed: {pipeline_name} ({status})",
            extra={
                "event": "pipeline_end",
                "pipeline_name": pipeline_name,
                "run_id": run_id,
                "status": status,
                "duration_seconds": duration_seconds,
                "tables_processed": tables_processed
            }
        )

    def log_task_start(self, task_name: str, run_id: str):
        """Log task start event."""
        self.info(
            f"Task started: {task_name}",
            extra={
                "event": "task_start",
                "task_name": task_name,
                "run_id": run_id
            }
        )

    def log_task_end(
        self,
        task_name: str,
        run_id: str,
        status: str,
        duration_seconds: float
    ):
        """Log task end event."""
        level = logging.INFO if status == "success" else logging.ERROR
        self._log(
            level,
            f"Task completed: {task_name} ({status})",
            extra={
                "event": "task_end",
                "task_name": task_name,
                "run_id": run_id,
                "status": status,
                "duration_seconds": duration_seconds
            }
        )


def get_logger(name: str) -> StructuredLogger:
    """Get or create a structured logger."""
    return StructuredLogger(name)


def new_trace_id() -> str:
    """Generate a new trace ID."""
    return str(uuid.uuid4())[:8]
