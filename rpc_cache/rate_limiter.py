"""Per-client rate limiting for the RPC endpoint."""

import math
import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Dict

# Configuration
RATE_LIMIT_REQUESTS = 35  # Keeps a single client under the upstream's 40 RPS
RATE_LIMIT_WINDOW_SECONDS = 60


@dataclass
class RateWindow:
    count: int
    window_start: float


class RateLimiter:
    """
    Fixed-window rate limiter.

    Each client gets ``max_requests`` calls per window, starting at its first
    call. A client can burst up to twice the limit across a window boundary.

    Windows live only in process memory; a restart resets every quota.
    """

    def __init__(
        self,
        max_requests: int = RATE_LIMIT_REQUESTS,
        window_seconds: int = RATE_LIMIT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: Dict[str, RateWindow] = {}
        self._lock = Lock()

    def is_limited(self, client_id: str) -> bool:
        """
        Count a call and report whether it exceeds the client's quota.

        Args:
            client_id: Unique identifier for the client (usually its IP)

        Returns:
            True if the call must be rejected
        """
        now = self._clock()

        with self._lock:
            window = self._windows.get(client_id)
            if window is None or now - window.window_start > self.window_seconds:
                self._windows[client_id] = RateWindow(count=1, window_start=now)
                return False

            window.count += 1
            return window.count > self.max_requests

    def retry_after(self, client_id: str) -> int:
        """Seconds until the client's current window resets."""
        now = self._clock()
        with self._lock:
            window = self._windows.get(client_id)
            if window is None:
                return 0
            remaining = window.window_start + self.window_seconds - now
        return max(1, math.ceil(remaining))

    def remaining(self, client_id: str) -> int:
        """Calls left for the client in its current window."""
        now = self._clock()
        with self._lock:
            window = self._windows.get(client_id)
            if window is None or now - window.window_start > self.window_seconds:
                return self.max_requests
            return max(0, self.max_requests - window.count)

    def reset(self, client_id: str) -> None:
        """
        Reset the rate limit for a specific client.

        Useful for testing or admin override.
        """
        with self._lock:
            self._windows.pop(client_id, None)

    def cleanup(self) -> int:
        """
        Drop windows that have already elapsed.

        Returns the number of clients cleaned up.
        """
        now = self._clock()
        with self._lock:
            stale = [
                client_id for client_id, window in self._windows.items()
                if now - window.window_start > self.window_seconds
            ]
            for client_id in stale:
                del self._windows[client_id]
        return len(stale)
