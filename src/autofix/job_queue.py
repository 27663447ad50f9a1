from __future__ import annotations

from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
import logging
import threading
import time

from autofix.models import Job, JobResult
from autofix.observability import log_event


LOGGER = logging.getLogger("autofix.job_queue")

JobHandler = Callable[[Job], "JobResult | None"]


class QueueConfigurationError(RuntimeError):
    pass


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    retry_failed_results: bool = False

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")


class JobQueue:
    """In-memory FIFO of Jobs drained one at a time by a single handler.

    ``enqueue`` never blocks on processing. Jobs that arrive before a handler is
    registered wait in the queue. Handler exceptions are logged and the Job is
    re-appended until ``RetryPolicy.max_attempts`` is reached.
    """

    def __init__(self, policy: RetryPolicy | None = None) -> None:
        self._policy = policy or RetryPolicy()
        self._pending: deque[Job] = deque()
        self._condition = threading.Condition()
        self._handler: JobHandler | None = None
        self._active = False
        self._stop_requested = False
        self._worker: threading.Thread | None = None

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    @property
    def pending_count(self) -> int:
        with self._condition:
            return len(self._pending)

    @property
    def is_processing(self) -> bool:
        with self._condition:
            return self._active

    @property
    def has_handler(self) -> bool:
        with self._condition:
            return self._handler is not None

    def enqueue(self, job: Job) -> None:
        with self._condition:
            self._pending.append(job)
            pending = len(self._pending)
            self._condition.notify_all()
        log_event(
            LOGGER,
            "job_enqueued",
            job_id=job.job_id,
            channel=job.channel,
            pending_count=pending,
        )

    def set_handler(self, handler: JobHandler) -> None:
        with self._condition:
            if self._handler is not None:
                raise QueueConfigurationError("A job handler is already registered")
            self._handler = handler
            pending = len(self._pending)
            self._condition.notify_all()
        log_event(LOGGER, "job_handler_registered", pending_count=pending)

    def process_next(self, *, block: bool = False, timeout: float | None = None) -> bool:
        with self._condition:
            if block:
                self._condition.wait_for(
                    lambda: self._stop_requested or self._can_take_locked(),
                    timeout=timeout,
                )
            handler = self._handler
            if handler is None or not self._can_take_locked():
                return False
            job = self._pending.popleft()
            self._active = True

        try:
            self._run_handler(handler, job)
        finally:
            with self._condition:
                self._active = False
                self._condition.notify_all()
        return True

    def start(self) -> None:
        with self._condition:
            if self._worker is not None and self._worker.is_alive():
                return
            self._stop_requested = False
            self._worker = threading.Thread(
                target=self._worker_loop,
                name="autofix-worker",
                daemon=True,
            )
            self._worker.start()
        log_event(LOGGER, "queue_worker_started")

    def stop(self, timeout: float | None = None) -> bool:
        with self._condition:
            self._stop_requested = True
            worker = self._worker
            self._condition.notify_all()
        if worker is None:
            return True
        worker.join(timeout=timeout)
        stopped = not worker.is_alive()
        log_event(
            LOGGER,
            "queue_worker_stopped",
            stopped=stopped,
            pending_count=self.pending_count,
        )
        return stopped

    def _worker_loop(self) -> None:
        while True:
            with self._condition:
                if self._stop_requested:
                    return
            self.process_next(block=True, timeout=1.0)

    def _can_take_locked(self) -> bool:
        return self._handler is not None and not self._active and bool(self._pending)

    def _run_handler(self, handler: JobHandler, job: Job) -> None:
        started_at = time.monotonic()
        log_event(
            LOGGER,
            "job_started",
            job_id=job.job_id,
            attempt=job.retry_count + 1,
        )
        try:
            result = handler(job)
        except Exception as exc:  # noqa: BLE001
            log_event(
                LOGGER,
                "job_handler_failed",
                level=logging.ERROR,
                exc_info=True,
                job_id=job.job_id,
                error_type=type(exc).__name__,
            )
            self._handle_failure(job, reason=type(exc).__name__)
            return

        status = result.status if isinstance(result, JobResult) else None
        log_event(
            LOGGER,
            "job_finished",
            job_id=job.job_id,
            status=status,
            duration_seconds=round(time.monotonic() - started_at, 3),
        )
        if isinstance(result, JobResult) and result.failed and self._policy.retry_failed_results:
            self._handle_failure(job, reason="failed_result")

    def _handle_failure(self, job: Job, *, reason: str) -> None:
        job.retry_count += 1
        if job.retry_count < self._policy.max_attempts:
            with self._condition:
                self._pending.append(job)
                self._condition.notify_all()
            log_event(
                LOGGER,
                "job_retry_scheduled",
                job_id=job.job_id,
                retry_count=job.retry_count,
                reason=reason,
            )
            return
        log_event(
            LOGGER,
            "job_dropped",
            level=logging.WARNING,
            job_id=job.job_id,
            retry_count=job.retry_count,
            reason=reason,
        )
