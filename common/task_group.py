"""
Task Group
==========

A single-use fan-out primitive: tracks outstanding work like a wait group
and collects the errors raised by concurrently running tasks.

Usage:
    group = TaskGroup()
    for table in tables:
        group.go(refresh, table)
    err = group.wait()   # None, the sole error, or a MultiError
"""

import logging
import threading
from typing import Callable, List, Optional

from .errors import MultiError

logger = logging.getLogger(__name__)


class TaskGroup:
    """
    Wait group with error collection.

    Errors are never reset, so a group can only be waited on once.
    Recorded order is arrival order, which under concurrency is whatever
    order the tasks happened to fail in.
    """

    def __init__(self, name: str = "tasks"):
        self.name = name
        self._lock = threading.Lock()
        self._zero = threading.Condition(self._lock)
        self._count = 0
        self._errors: List[BaseException] = []
        self._waited = False
        self._spawned = 0

    def add(self, n: int = 1):
        """Register n units of outstanding work. Call before the work starts."""
        with self._lock:
            if self._count + n < 0:
                raise ValueError("negative TaskGroup counter")
            self._count += n
            if self._count == 0:
                self._zero.notify_all()

    def done(self):
        """Mark one unit of work finished."""
        self.add(-1)

    def error(self, err: BaseException):
        """Record an error to be returned by wait(). err must not be None."""
        if err is None:
            raise ValueError("error must not be None")
        with self._lock:
            self._errors.append(err)

    def go(self, fn: Callable, *args, **kwargs) -> threading.Thread:
        """
        Run fn(*args, **kwargs) in its own thread as part of this group.

        Any exception fn raises is recorded with error(); done() always runs.
        """
        self.add(1)
        with self._lock:
            self._spawned += 1
            thread_name = f"{self.name}-{self._spawned}"

        def _run():
            try:
                fn(*args, **kwargs)
            except Exception as e:
                self.error(e)
            finally:
                self.done()

        thread = threading.Thread(target=_run, name=thread_name)
        thread.start()
        return thread

    def wait(self) -> Optional[BaseException]:
        """
        Block until the counter reaches zero.

        Returns:
            None if no error was recorded, the error itself if exactly one
            was recorded, otherwise a MultiError of all of them.

        Raises:
            RuntimeError: if called a second time on the same group.
        """
        with self._lock:
            if self._waited:
                raise RuntimeError(f"TaskGroup '{self.name}' already waited on")
            self._waited = True
            while self._count > 0:
                self._zero.wait()
            errors = list(self._errors)

        if not errors:
            return None
        if len(errors) == 1:
            return errors[0]
        logger.debug(f"TaskGroup '{self.name}' collected {len(errors)} errors")
        return MultiError(errors)
