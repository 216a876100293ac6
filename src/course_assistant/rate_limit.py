"""Fixed-window request limiting keyed by caller and endpoint."""
from __future__ import annotations

import asyncio
import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .errors import RateLimitedError

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class RateLimitRule:
    max_requests: int
    window_seconds: float


@dataclass(slots=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_in: int
    limit: int

    def headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_in),
        }


@dataclass(slots=True)
class _Window:
    count: int
    reset_at: float


CHAT_MESSAGE = "chat_message"
FILE_UPLOAD = "file_upload"

RATE_LIMITS: dict[str, RateLimitRule] = {
    CHAT_MESSAGE: RateLimitRule(max_requests=20, window_seconds=60),
    FILE_UPLOAD: RateLimitRule(max_requests=5, window_seconds=60),
}


class RateLimiter:
    """Counts requests per ``identifier:endpoint`` inside a window that starts
    with the first request and resets once it elapses.

    ``clock`` is injectable so tests can drive time explicitly.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.monotonic,
        cleanup_interval: float = 600.0,
    ) -> None:
        self._clock = clock
        self._cleanup_interval = cleanup_interval
        self._windows: dict[str, _Window] = {}
        self._lock = threading.Lock()
        self._cleanup_task: Optional[asyncio.Task[None]] = None

    @staticmethod
    def _key(identifier: str, endpoint: str) -> str:
        return f"{identifier}:{endpoint}"

    def _seconds_until(self, reset_at: float, now: float) -> int:
        return max(0, math.ceil(reset_at - now))

    def check(self, identifier: str, endpoint: str, rule: RateLimitRule) -> RateLimitResult:
        """Count one request and report whether it is allowed."""

        key = self._key(identifier, endpoint)
        with self._lock:
            now = self._clock()
            window = self._windows.get(key)
            if window is None or window.reset_at <= now:
                window = _Window(count=1, reset_at=now + rule.window_seconds)
                self._windows[key] = window
                return RateLimitResult(
                    allowed=True,
                    remaining=rule.max_requests - 1,
                    reset_in=self._seconds_until(window.reset_at, now),
                    limit=rule.max_requests,
                )

            if window.count >= rule.max_requests:
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    reset_in=self._seconds_until(window.reset_at, now),
                    limit=rule.max_requests,
                )

            window.count += 1
            return RateLimitResult(
                allowed=True,
                remaining=rule.max_requests - window.count,
                reset_in=self._seconds_until(window.reset_at, now),
                limit=rule.max_requests,
            )

    def enforce(
        self, identifier: str, endpoint: str, rule: Optional[RateLimitRule] = None
    ) -> RateLimitResult:
        """Like :meth:`check` but raise :class:`RateLimitedError` when denied."""

        result = self.check(identifier, endpoint, rule or RATE_LIMITS[endpoint])
        if not result.allowed:
            LOGGER.info("Rate limit hit for %s on %s", identifier, endpoint)
            raise RateLimitedError(
                limit=result.limit, remaining=result.remaining, reset_in=result.reset_in
            )
        return result

    def status(self, identifier: str, endpoint: str, rule: RateLimitRule) -> RateLimitResult:
        """Report the current window without counting a request."""

        key = self._key(identifier, endpoint)
        with self._lock:
            now = self._clock()
            window = self._windows.get(key)
            if window is None or window.reset_at <= now:
                return RateLimitResult(
                    allowed=True,
                    remaining=rule.max_requests,
                    reset_in=math.ceil(rule.window_seconds),
                    limit=rule.max_requests,
                )
            return RateLimitResult(
                allowed=window.count < rule.max_requests,
                remaining=max(0, rule.max_requests - window.count),
                reset_in=self._seconds_until(window.reset_at, now),
                limit=rule.max_requests,
            )

    def reset(self, identifier: str, endpoint: str) -> None:
        with self._lock:
            self._windows.pop(self._key(identifier, endpoint), None)

    def cleanup(self) -> int:
        """Drop expired windows and return how many were removed."""

        with self._lock:
            now = self._clock()
            expired = [key for key, window in self._windows.items() if window.reset_at <= now]
            for key in expired:
                del self._windows[key]
        if expired:
            LOGGER.debug("Removed %d expired rate limit windows", len(expired))
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self._cleanup_interval)
            self.cleanup()

    def start(self) -> None:
        """Schedule periodic cleanup on the running event loop."""

        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.get_running_loop().create_task(self._cleanup_loop())

    async def stop(self) -> None:
        task, self._cleanup_task = self._cleanup_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
