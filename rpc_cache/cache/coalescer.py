"""
Single-flight de-duplication of upstream fetches.

Concurrent misses for the same primary key share one upstream call instead
of each hitting the RPC provider. Writes stay idempotent overwrites either
way, so this only reduces upstream load.
"""
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger("cache.coalescer")


@dataclass
class _Flight:
    """One upstream call in progress."""
    done: threading.Event = field(default_factory=threading.Event)
    result: Any = None
    error: Optional[BaseException] = None
    started_at: float = field(default_factory=time.monotonic)
    followers: int = 0


class RequestCoalescer:
    """
    Runs at most one fetch per key at a time.

    The first caller for a key (the leader) performs the fetch; callers that
    arrive while it runs block until it finishes and receive the same result
    or exception.
    """

    def __init__(self, timeout: float = 30.0):
        """
        Args:
            timeout: Max seconds a follower waits for the leader
        """
        self._flights: Dict[str, _Flight] = {}
        self._lock = threading.Lock()
        self._timeout = timeout
        self._joined = 0

    def run(self, key: str, fetch_fn: Callable[[], Any]) -> Any:
        """
        Fetch for ``key``, joining an in-flight fetch if there is one.

        Raises:
            TimeoutError: If a follower waits longer than the timeout
            Exception: Whatever the fetch raised
        """
        with self._lock:
            flight = self._flights.get(key)
            leader = flight is None
            if leader:
                flight = _Flight()
                self._flights[key] = flight
            else:
                flight.followers += 1
                self._joined += 1

        if leader:
            try:
                flight.result = fetch_fn()
            except Exception as e:
                flight.error = e
            finally:
                with self._lock:
                    self._flights.pop(key, None)
                flight.done.set()
        else:
            logger.debug(f"Joining in-flight fetch for {key} (followers: {flight.followers})")
            if not flight.done.wait(timeout=self._timeout):
                logger.error(f"Timeout waiting for in-flight fetch: {key}")
                raise TimeoutError(f"Fetch for {key} timed out after {self._timeout}s")

        if flight.error is not None:
            raise flight.error
        return flight.result

    @property
    def in_flight(self) -> int:
        with self._lock:
            return len(self._flights)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "in_flight": len(self._flights),
                "joined_total": self._joined,
            }
