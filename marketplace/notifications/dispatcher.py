from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Callable, Optional, Set

import structlog

logger = structlog.get_logger(__name__)


class NotificationDispatcher:
    """Fire-and-forget side effects on a bounded worker pool.

    Each job gets exactly one attempt. Failures are logged and never reach
    the caller; jobs beyond ``max_pending`` are dropped.

    Running jobs are not interrupted. The time bound on a job is the socket
    timeout of the client it drives (``NOTIFY_TIMEOUT_SECONDS`` for SMTP, the
    pika connection timeouts for events); a job that hits it raises and is
    logged as failed. ``flush(timeout)`` bounds how long a caller waits.
    """

    def __init__(self, emailer, *, max_workers: int = 4, max_pending: int = 100) -> None:
        self.emailer = emailer
        self._max_pending = max_pending
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="notify")
        self._pending: Set[Future] = set()
        self._lock = threading.Lock()

    def submit(self, event: str, fn: Callable, *args, **kwargs) -> Optional[Future]:
        with self._lock:
            if len(self._pending) >= self._max_pending:
                logger.warning("notification.dropped", notification=event, pending=len(self._pending))
                return None
            try:
                future = self._executor.submit(self._run, event, fn, args, kwargs)
            except RuntimeError:
                # Executor already shut down
                logger.warning("notification.dropped", notification=event, reason="shutdown")
                return None
            self._pending.add(future)
        future.add_done_callback(self._discard)
        return future

    def send_email(self, event: str, *, to_email: str, subject: str, body: str) -> Optional[Future]:
        return self.submit(event, self.emailer.send, to_email=to_email, subject=subject, body=body)

    def _run(self, event: str, fn: Callable, args: tuple, kwargs: dict) -> bool:
        try:
            result = fn(*args, **kwargs)
        except Exception:
            logger.exception("notification.failed", notification=event)
            return False
        if result is False:
            logger.warning("notification.failed", notification=event, reason="not delivered")
            return False
        return True

    def _discard(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._pending)

    def flush(self, timeout: Optional[float] = None) -> None:
        """Block until every job submitted so far has finished, or ``timeout`` elapses."""
        with self._lock:
            futures = list(self._pending)
        if futures:
            wait(futures, timeout=timeout)

    def shutdown(self, wait_for_jobs: bool = True) -> None:
        self._executor.shutdown(wait=wait_for_jobs)
