"""Supervised background execution of ingestion jobs."""
from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Optional

LOGGER = logging.getLogger(__name__)


class IngestionWorker:
    """Runs jobs off the request path and reports every failure.

    A job that raises is logged and handed to its ``on_error`` callback, so a
    crashed job never leaves its caller without a terminal outcome.
    """

    def __init__(self, max_workers: int = 4, *, name: str = "ingest") -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=name)
        self._pending: set[Future[Any]] = set()
        self._lock = threading.Lock()
        self._closed = False

    def submit(
        self,
        func: Callable[..., Any],
        *args: Any,
        job_name: str = "job",
        on_error: Optional[Callable[[BaseException], None]] = None,
        **kwargs: Any,
    ) -> Future[Any]:
        def _supervised() -> Any:
            try:
                return func(*args, **kwargs)
            except Exception as error:
                LOGGER.exception("Background job %s failed", job_name)
                if on_error is not None:
                    try:
                        on_error(error)
                    except Exception:
                        LOGGER.exception("Failure handler for %s raised", job_name)
                return None

        with self._lock:
            if self._closed:
                raise RuntimeError("Ingestion worker is shut down")
            future = self._executor.submit(_supervised)
            self._pending.add(future)
        future.add_done_callback(self._discard)
        LOGGER.debug("Submitted background job %s", job_name)
        return future

    def _discard(self, future: Future[Any]) -> None:
        with self._lock:
            self._pending.discard(future)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._pending)

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until every submitted job finished. Returns ``False`` on timeout."""

        with self._lock:
            snapshot = set(self._pending)
        if not snapshot:
            return True
        _, not_done = wait(snapshot, timeout=timeout)
        return not not_done

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=wait)
