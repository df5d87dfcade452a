"""Bounded background queue for best-effort side effects.

Write-path work that must not delay or fail the HTTP response (event
publishing, orchestrator hand-off) is submitted here. Each job is retried
with exponential backoff; a job that still fails is logged and counted. A
full queue drops the job instead of blocking the request.
"""
import logging
import queue
import threading
import time
from typing import Any, Callable, List, Optional, Tuple

from .metrics import background_job_failures_total


logger = logging.getLogger(__name__)

_STOP = object()


class BackgroundTaskQueue:
    def __init__(
        self,
        maxsize: int = 1000,
        workers: int = 2,
        max_attempts: int = 3,
        backoff_seconds: float = 1.0,
    ):
        self._queue: "queue.Queue[Any]" = queue.Queue(maxsize=maxsize)
        self.workers = workers
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds
        self._threads: List[threading.Thread] = []
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    def start(self) -> None:
        with self._lock:
            if self.running:
                return
            self._threads = [
                threading.Thread(target=self._worker, name=f"reminder-bg-{i}", daemon=True)
                for i in range(self.workers)
            ]
            for t in self._threads:
                t.start()
        logger.info("Background task queue started with %d worker(s)", self.workers)

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        with self._lock:
            threads, self._threads = self._threads, []
        for _ in threads:
            self._queue.put(_STOP)
        for t in threads:
            t.join(timeout)
        logger.info("Background task queue stopped")

    def submit(self, description: str, fn: Callable[..., Any], *args: Any) -> bool:
        """Queue ``fn(*args)``. Returns False when the queue is full and the job was dropped."""
        try:
            self._queue.put_nowait((description, fn, args))
        except queue.Full:
            logger.warning("Background queue full, dropping job: %s", description)
            background_job_failures_total.inc()
            return False
        return True

    def drain(self) -> None:
        """Block until every queued job has finished (used on shutdown and in tests)."""
        self._queue.join()

    def _worker(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                description, fn, args = item
                self._run(description, fn, args)
            finally:
                self._queue.task_done()

    def _run(self, description: str, fn: Callable[..., Any], args: Tuple[Any, ...]) -> None:
        for attempt in range(1, self.max_attempts + 1):
            try:
                # An explicit False is a soft failure (e.g. publish not confirmed)
                if fn(*args) is not False:
                    return
                logger.warning("Attempt %d/%d failed for %s", attempt, self.max_attempts, description)
            except Exception:
                logger.exception("Attempt %d/%d raised for %s", attempt, self.max_attempts, description)

            if attempt < self.max_attempts:
                delay = self.backoff_seconds * (2 ** (attempt - 1))
                if delay > 0:
                    time.sleep(delay)

        background_job_failures_total.inc()
        logger.error("All %d attempts failed for %s", self.max_attempts, description)
