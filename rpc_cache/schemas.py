"""
Request/response envelopes for the JSON-RPC gateway.
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from rpc_cache.errors import ParseError, RpcError

RequestId = Optional[Union[int, str]]


class RpcRequest(BaseModel):
    """A single JSON-RPC 2.0 call."""
    jsonrpc: str = "2.0"
    id: RequestId = None
    method: str = Field(min_length=1)
    params: List[Any] = Field(default_factory=list)


def parse_request(payload: Any) -> RpcRequest:
    """
    Validate one request object.

    Raises:
        ParseError: If the payload is not a well-formed request envelope
    """
    if not isinstance(payload, dict):
        raise ParseError()
    data = dict(payload)
    if data.get("params") is None:
        data.pop("params", None)
    try:
        return RpcRequest.model_validate(data)
    except ValidationError as e:
        raise ParseError(f"Parse error: {e.errors()[0]['msg']}")


@dataclass
class RpcResponse:
    """
    A JSON-RPC response carrying cache metadata.

    A successful call always emits ``result`` (even when it is null);
    ``error`` replaces it on failure.
    """
    id: RequestId
    result: Any = None
    error: Optional[Dict[str, Any]] = None
    response_time: int = 0
    cache_hit: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"jsonrpc": "2.0", "id": self.id}
        if self.error is None:
            body["result"] = self.result
        else:
            body["error"] = self.error
        body["responseTime"] = self.response_time
        body["cacheHit"] = self.cache_hit
        return body


def error_response(
    request_id: RequestId,
    error: RpcError,
    response_time: int = 0,
) -> RpcResponse:
    """Build an error envelope for a request id."""
    return RpcResponse(
        id=request_id,
        error=error.to_dict(),
        response_time=response_time,
        cache_hit=False,
    )


def subscription_confirmation(subscription_id: Union[int, str], request_id: RequestId) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "result": subscription_id, "id": request_id}


def subscription_notification(
    subscription_id: Union[int, str],
    result: Any,
    response_time: int,
    cache_hit: bool,
) -> Dict[str, Any]:
    return {
        "jsonrpc": "2.0",
        "method": "subscription",
        "params": {"subscription": subscription_id, "result": result},
        "responseTime": response_time,
        "cacheHit": cache_hit,
    }
