"""
Cache orchestration: the read/write path for RPC calls.

Lookup order:
1. Secondary index (semantic key -> primary key) -> primary store
2. Primary store by the canonical key, re-populating the index on a hit
3. Upstream, then write the primary entry and refresh the index

There is no lock around read-then-write. Two concurrent misses for the same
key may both fetch and both write; the writes are identical overwrites.
The optional coalescer collapses such fetches into one.
"""
import logging
import time
from typing import Any, Dict, List, Mapping, Optional

from rpc_cache.errors import (
    InternalError,
    MethodNotFoundError,
    RpcError,
    UpstreamRejectedError,
)
from rpc_cache.methods import METHODS, MethodSpec
from rpc_cache.metrics import MetricsAggregator
from rpc_cache.schemas import RpcRequest, RpcResponse, error_response
from rpc_cache.upstream import Upstream, UpstreamError

from .coalescer import RequestCoalescer
from .core import CacheEntry, Clock, now_ms
from .index import HASH, SecondaryIndex, semantic_key
from .keys import canonical_serialize, content_hash, primary_key
from .store import PrimaryStore

logger = logging.getLogger("cache.manager")


class CacheOrchestrator:
    """
    Answers RPC calls from the cache, falling through to upstream on a miss.
    """

    def __init__(
        self,
        store: PrimaryStore,
        index: SecondaryIndex,
        upstream: Upstream,
        metrics: MetricsAggregator,
        coalescer: Optional[RequestCoalescer] = None,
        methods: Mapping[str, MethodSpec] = METHODS,
        clock: Clock = time.time,
    ):
        self._store = store
        self._index = index
        self._upstream = upstream
        self._metrics = metrics
        self._coalescer = coalescer
        self._methods = methods
        self._clock = clock

    def process(self, request: RpcRequest) -> RpcResponse:
        """
        Answer one request. Never raises: failures become error envelopes.
        """
        start = now_ms(self._clock)
        logger.debug(f"Processing RPC request: {request.method} params={request.params}")

        try:
            spec = self._resolve(request.method)
            spec.validate(request.params)
            return self._serve(request, spec, start)
        except RpcError as e:
            return error_response(request.id, e, self._elapsed(start))
        except Exception as e:
            logger.exception(f"Error processing RPC request {request.method}")
            return error_response(
                request.id, InternalError(f"Internal error: {e}"), self._elapsed(start)
            )

    def call(self, method: str, params: List[Any], request_id: Any = None) -> RpcResponse:
        """Convenience wrapper around ``process``."""
        return self.process(RpcRequest(id=request_id, method=method, params=params))

    def _resolve(self, method: str) -> MethodSpec:
        spec = self._methods.get(method)
        if spec is None:
            raise MethodNotFoundError(method)
        return spec

    def _serve(self, request: RpcRequest, spec: MethodSpec, start: int) -> RpcResponse:
        method, params = request.method, request.params
        cache_key = primary_key(method, params)

        # 1. Secondary index
        semantic = semantic_key(method, params)
        if semantic is not None:
            indexed_key = self._index_lookup(*semantic)
            if indexed_key:
                entry = self._store.read(indexed_key)
                if entry is None:
                    logger.info(f"Index key {indexed_key} found, but no data in primary store")
                elif self._matches(entry, method, params) and self._store.is_valid(entry):
                    logger.debug(f"CACHE HIT (index): {indexed_key}")
                    return self._hit(request, entry, start)

        # 2. Primary store by derived key
        entry = self._store.read(cache_key)
        if entry is not None and self._store.is_valid(entry):
            logger.debug(f"CACHE HIT: {cache_key}")
            response = self._hit(request, entry, start)
            self._update_index(method, params, cache_key)
            return response

        # 3. Upstream
        logger.info(f"CACHE MISS: {cache_key}, fetching from upstream")
        try:
            result = self._fetch(spec, cache_key, params)
        finally:
            self._metrics.record_miss(method, self._elapsed(start))

        self._store.write(cache_key, result, method, params)
        self._update_index(method, params, cache_key)
        return RpcResponse(
            id=request.id,
            result=result,
            response_time=self._elapsed(start),
            cache_hit=False,
        )

    def _hit(self, request: RpcRequest, entry: CacheEntry, start: int) -> RpcResponse:
        elapsed = self._elapsed(start)
        self._metrics.record_hit(request.method, elapsed)
        return RpcResponse(
            id=request.id,
            result=entry.payload,
            response_time=elapsed,
            cache_hit=True,
        )

    @staticmethod
    def _matches(entry: CacheEntry, method: str, params: List[Any]) -> bool:
        """Whether an indexed entry answers this exact call."""
        return (
            entry.metadata.method == method
            and canonical_serialize(entry.metadata.params) == canonical_serialize(params)
        )

    def _fetch(self, spec: MethodSpec, cache_key: str, params: List[Any]) -> Any:
        def fetch():
            return spec.execute(self._upstream, params)

        try:
            if self._coalescer is not None:
                return self._coalescer.run(cache_key, fetch)
            return fetch()
        except UpstreamError as e:
            logger.error(f"Upstream call {spec.name} failed: {e}")
            if e.rejected:
                raise UpstreamRejectedError() from e
            raise InternalError(f"Internal error: {e}") from e
        except TimeoutError as e:
            raise InternalError(f"Internal error: {e}") from e

    def _index_lookup(self, namespace: str, key: str) -> Optional[str]:
        try:
            return self._index.get(namespace, key)
        except Exception as e:
            logger.warning(f"Lookup index read failed for {namespace}:{key}: {e}")
            return None

    def _update_index(self, method: str, params: List[Any], cache_key: str) -> None:
        """Best-effort index refresh; failures are logged only."""
        semantic = semantic_key(method, params)
        if semantic is not None:
            namespace, key = semantic
            try:
                self._index.put(namespace, key, cache_key)
            except Exception as e:
                logger.warning(f"Error updating lookup index {namespace}:{key}: {e}")
        try:
            self._index.put(HASH, content_hash(params), cache_key)
        except Exception as e:
            logger.warning(f"Error updating content hash index for {method}: {e}")

    def _elapsed(self, start: int) -> int:
        return max(0, now_ms(self._clock) - start)

    def clear_expired(self) -> int:
        """Sweep expired primary entries. Returns count removed."""
        return self._store.sweep_expired()

    def get_stats(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = dict(self._metrics.summary())
        if self._coalescer is not None:
            stats["coalescer"] = self._coalescer.get_stats()
        return stats
