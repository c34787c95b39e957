"""
Cache hit/miss metrics with a durable snapshot.

Counts are approximate across processes: each process loads the snapshot
once and overwrites it on every update, so concurrent writers may lose
increments.
"""
import json
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict

from rpc_cache.cache.store import KeyValueStore

logger = logging.getLogger("gateway.metrics")

METRICS_KEY = "CACHE_METRICS"


@dataclass
class MethodStats:
    hits: int = 0
    misses: int = 0
    avg_response_time_ms: float = 0.0

    @property
    def calls(self) -> int:
        return self.hits + self.misses

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "avgResponseTimeMs": self.avg_response_time_ms,
        }


@dataclass
class CacheMetrics:
    hits: int = 0
    misses: int = 0
    method_stats: Dict[str, MethodStats] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "methodStats": {m: s.to_dict() for m, s in self.method_stats.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheMetrics":
        method_stats = {}
        for method, stats in (data.get("methodStats") or {}).items():
            method_stats[method] = MethodStats(
                hits=int(stats.get("hits", 0)),
                misses=int(stats.get("misses", 0)),
                avg_response_time_ms=float(
                    stats.get("avgResponseTimeMs", stats.get("avgResponseTime", 0.0))
                ),
            )
        return cls(
            hits=int(data.get("hits", 0)),
            misses=int(data.get("misses", 0)),
            method_stats=method_stats,
        )


class MetricsAggregator:
    """
    Accumulates global and per-method hit/miss counts and latency.

    The snapshot is read once at construction. With ``persist_every_update``
    it is written back after each record call; otherwise only on ``flush``.
    Persistence failures are logged and never reach the caller.
    """

    def __init__(self, store: KeyValueStore, persist_every_update: bool = True):
        self._store = store
        self._persist_every_update = persist_every_update
        self._lock = threading.Lock()
        self._metrics = self._load()

    def _load(self) -> CacheMetrics:
        try:
            raw = self._store.get(METRICS_KEY)
        except Exception as e:
            logger.error(f"Error loading cache metrics: {e}")
            return CacheMetrics()
        if not raw:
            return CacheMetrics()
        try:
            metrics = CacheMetrics.from_dict(json.loads(raw))
        except (ValueError, TypeError, AttributeError) as e:
            logger.error(f"Discarding unreadable metrics snapshot: {e}")
            return CacheMetrics()
        logger.info(f"Loaded cache metrics: hits={metrics.hits} misses={metrics.misses}")
        return metrics

    def record_hit(self, method: str, elapsed_ms: float) -> None:
        self._record(method, elapsed_ms, hit=True)

    def record_miss(self, method: str, elapsed_ms: float) -> None:
        self._record(method, elapsed_ms, hit=False)

    def _record(self, method: str, elapsed_ms: float, hit: bool) -> None:
        with self._lock:
            stats = self._metrics.method_stats.setdefault(method, MethodStats())
            if hit:
                self._metrics.hits += 1
                stats.hits += 1
            else:
                self._metrics.misses += 1
                stats.misses += 1
            # Running average over every call of this method
            n = stats.calls
            stats.avg_response_time_ms = (
                (stats.avg_response_time_ms * (n - 1)) + elapsed_ms
            ) / n
            snapshot = self._metrics.to_dict() if self._persist_every_update else None

        if snapshot is not None:
            self._save(snapshot)

    def flush(self) -> None:
        """Persist the current snapshot."""
        self._save(self.snapshot())

    def _save(self, snapshot: Dict[str, Any]) -> None:
        try:
            self._store.put(METRICS_KEY, json.dumps(snapshot))
        except Exception as e:
            logger.warning(f"Error saving cache metrics: {e}")

    def snapshot(self) -> Dict[str, Any]:
        """Full metrics in wire format."""
        with self._lock:
            return self._metrics.to_dict()

    def method_stats(self, method: str) -> MethodStats:
        with self._lock:
            stats = self._metrics.method_stats.get(method, MethodStats())
            return MethodStats(stats.hits, stats.misses, stats.avg_response_time_ms)

    def summary(self) -> Dict[str, Any]:
        """Totals and hit rate for the status endpoint."""
        with self._lock:
            hits, misses = self._metrics.hits, self._metrics.misses
        total = hits + misses
        hit_rate = (hits / total * 100) if total > 0 else 0
        return {"hits": hits, "misses": misses, "hitRate": hit_rate}
