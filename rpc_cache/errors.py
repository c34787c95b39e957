"""
JSON-RPC error taxonomy for the gateway.

Every failure that reaches a client is one of these kinds. Index writes,
metrics persistence and notification sends recover locally and never
produce one.
"""
from typing import Any, Dict, Optional


PARSE_ERROR = -32700
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
RATE_LIMITED = -32429
UPSTREAM_REJECTED = -32003


class RpcError(Exception):
    """Base class for errors surfaced in a JSON-RPC error envelope."""

    code: int = INTERNAL_ERROR
    default_message: str = "Internal error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message}


class ParseError(RpcError):
    """Malformed request body or envelope."""
    code = PARSE_ERROR
    default_message = "Parse error"


class MethodNotFoundError(RpcError):
    code = METHOD_NOT_FOUND
    default_message = "Method not found"

    def __init__(self, method: str):
        self.method = method
        super().__init__(f"Method {method} not supported or implemented")


class InvalidParamsError(RpcError):
    code = INVALID_PARAMS
    default_message = "Invalid params"


class InternalError(RpcError):
    code = INTERNAL_ERROR
    default_message = "Internal error"


class RateLimitExceededError(RpcError):
    """Client exceeded its fixed-window quota."""
    code = RATE_LIMITED
    default_message = "Too many requests, please try again later"

    def __init__(self, retry_after: int = 60, message: Optional[str] = None):
        self.retry_after = retry_after
        super().__init__(message)


class UpstreamRejectedError(RpcError):
    """
    The upstream RPC provider refused the call (e.g. 403 Forbidden).

    Operator action is needed (switch provider), so clients should not retry.
    """
    code = UPSTREAM_REJECTED
    default_message = (
        "RPC endpoint rejected the request. You may need to use a paid RPC "
        "service instead of the public endpoint."
    )
