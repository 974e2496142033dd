#!/usr/bin/env python3
"""
Work scheduling for the ADLA ACL tools.

- JobPool: bounded worker pool for ACL removal calls. submit() hands back a
  Future and blocks once max_pending calls are in flight; join() waits for
  everything submitted so far and summarises the failures.
- BackgroundJob: a thread running one long operation (the full replication
  walk) so the caller can return right away and wait later.
"""

import itertools
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple


@dataclass
class RemovalSummary:
    submitted: int = 0
    successful: int = 0
    failed: int = 0
    errors: List[Tuple[str, BaseException]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.failed == 0

    def merge(self, other: "RemovalSummary") -> "RemovalSummary":
        return RemovalSummary(
            submitted=self.submitted + other.submitted,
            successful=self.successful + other.successful,
            failed=self.failed + other.failed,
            errors=self.errors + other.errors,
        )


class JobPool:
    """Thread pool with a cap on queued plus running work.

    Only unfinished futures and failures are kept; successful units are
    counted and dropped as they complete.
    """

    def __init__(self, max_workers: int = 16, max_pending: int = 256):
        if max_workers < 1 or max_pending < 1:
            raise ValueError("max_workers and max_pending must be positive")
        self.max_workers = max_workers
        self.max_pending = max_pending
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="adla-acl")
        self._slots = threading.BoundedSemaphore(max_pending)
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._outstanding: Dict[Future, str] = {}
        self._summary = RemovalSummary()

    def submit(self, label: str, fn: Callable, *args, **kwargs) -> Future:
        """
        Submit one unit of work.

        Args:
            label: Name used for this unit in the join summary (usually the path)
            fn: Callable to run on a worker thread

        Returns:
            Future for the unit; exceptions raised by fn are stored in it
        """
        self._slots.acquire()
        try:
            future = self._executor.submit(fn, *args, **kwargs)
        except BaseException:
            self._slots.release()
            raise

        with self._lock:
            self._outstanding[future] = label
            self._summary.submitted += 1
        # May run right away on this thread if the unit already finished
        future.add_done_callback(self._record)
        return future

    def _record(self, future: Future) -> None:
        with self._idle:
            label = self._outstanding.pop(future)
            if future.cancelled():
                self._summary.failed += 1
                self._summary.errors.append((label, RuntimeError("cancelled")))
            elif future.exception() is not None:
                self._summary.failed += 1
                self._summary.errors.append((label, future.exception()))
            else:
                self._summary.successful += 1
            if not self._outstanding:
                self._idle.notify_all()
        self._slots.release()

    def retained(self) -> int:
        """Number of units still tracked as unfinished."""
        with self._lock:
            return len(self._outstanding)

    def join(self) -> RemovalSummary:
        """Wait for every unit submitted since the last join and summarise the results."""
        with self._idle:
            while self._outstanding:
                self._idle.wait()
            summary, self._summary = self._summary, RemovalSummary()
        return summary

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> "JobPool":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown(wait=True)


class BackgroundJob:
    """Handle for an operation running on its own (non-daemon) thread."""

    _ids = itertools.count(1)

    def __init__(self, name: str, target: Callable[..., Any], *args, **kwargs):
        self.id = f"{name}-{next(self._ids)}"
        self.result: Any = None
        self.error: Optional[BaseException] = None
        self._target = target
        self._args = args
        self._kwargs = kwargs
        self._done = threading.Event()
        self._thread = threading.Thread(target=self._run, name=self.id)

    def start(self) -> "BackgroundJob":
        self._thread.start()
        return self

    def _run(self) -> None:
        try:
            self.result = self._target(*self._args, **self._kwargs)
        except Exception as e:
            self.error = e
        finally:
            self._done.set()

    def done(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the job finishes. Returns False if the timeout expired first."""
        return self._done.wait(timeout)

    def __repr__(self) -> str:
        state = "done" if self.done() else "running"
        return f"<BackgroundJob {self.id} {state}>"
