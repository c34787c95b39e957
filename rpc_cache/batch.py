"""
Batch request dispatch.

Requests are grouped by method so calls for the same method run together,
then answered in the original request order.
"""
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional, Tuple

from rpc_cache.cache.core import Clock, now_ms
from rpc_cache.errors import InternalError, ParseError
from rpc_cache.schemas import RpcRequest, RpcResponse, error_response, parse_request

logger = logging.getLogger("gateway.batch")

Processor = Callable[[RpcRequest], RpcResponse]


def _id_key(request_id: Any) -> Tuple[str, Any]:
    # 1 and "1" are different ids
    return type(request_id).__name__, request_id


class BatchDispatcher:
    """
    Executes a JSON-RPC batch and preserves request order.

    Method groups run one after another; requests within a group run in
    parallel on a thread pool. The response list always has one entry per
    request.
    """

    def __init__(self, process: Processor, max_workers: int = 8, clock: Clock = time.time):
        self._process = process
        self._max_workers = max_workers
        self._clock = clock

    def dispatch(self, items: List[Any]) -> List[RpcResponse]:
        start = now_ms(self._clock)

        # Parse every slot; malformed elements get a parse error in place
        slots: List[Tuple[Optional[RpcRequest], Optional[RpcResponse]]] = []
        groups: Dict[str, List[RpcRequest]] = {}
        for item in items:
            try:
                request = parse_request(item)
            except ParseError as e:
                request_id = item.get("id") if isinstance(item, dict) else None
                if not isinstance(request_id, (int, str)) or isinstance(request_id, bool):
                    request_id = None
                slots.append((None, error_response(request_id, e)))
                continue
            slots.append((request, None))
            groups.setdefault(request.method, []).append(request)

        results: Dict[Tuple[str, Any], RpcResponse] = {}
        if groups:
            workers = max(1, min(self._max_workers, max(len(g) for g in groups.values())))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="rpc-batch") as executor:
                for method, requests in groups.items():
                    futures = [executor.submit(self._process, r) for r in requests]
                    for request, future in zip(requests, futures):
                        try:
                            response = future.result()
                        except Exception as e:
                            logger.error(f"Batch request {request.id} ({method}) failed: {e}")
                            continue
                        results.setdefault(_id_key(response.id), response)

        responses: List[RpcResponse] = []
        for request, parsed_error in slots:
            if parsed_error is not None:
                responses.append(parsed_error)
                continue
            response = results.get(_id_key(request.id))
            if response is None:
                logger.warning(f"No response computed for batch id {request.id!r}")
                response = error_response(
                    request.id, InternalError(), max(0, now_ms(self._clock) - start)
                )
            responses.append(response)
        return responses
