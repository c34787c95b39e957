"""
Supported RPC methods.

Each method is a row in ``METHODS``: how its params are validated and
defaulted and the handler that executes it upstream. TTL tiers live in
``rpc_cache.cache.ttl_policies``.
"""
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from rpc_cache.cache.index import is_valid_address
from rpc_cache.errors import InvalidParamsError
from rpc_cache.upstream import Upstream

Handler = Callable[[Upstream, List[Any]], Any]
Validator = Callable[[List[Any]], None]


def passthrough(method: str) -> Handler:
    """Handler that forwards the call unchanged."""
    def handler(upstream: Upstream, params: List[Any]) -> Any:
        return upstream.call(method, params)
    return handler


def _get_fees(upstream: Upstream, params: List[Any]) -> Any:
    # getFees was removed from the node API; rebuild it from its parts
    blockhash = upstream.call("getLatestBlockhash", params)
    return {
        "blockhash": blockhash,
        "lastValidSlot": upstream.call("getSlot", []),
        "lastValidBlockHeight": upstream.call("getBlockHeight", []),
    }


def _validate_token_filter(params: List[Any]) -> None:
    token_filter = params[1]
    if not isinstance(token_filter, dict):
        raise InvalidParamsError("Invalid params: token filter must be an object")
    if "mint" in token_filter:
        if not is_valid_address(token_filter["mint"]):
            raise InvalidParamsError("Invalid params: malformed mint address")
    elif "programId" in token_filter:
        if not is_valid_address(token_filter["programId"]):
            raise InvalidParamsError("Invalid params: malformed programId")
    else:
        raise InvalidParamsError("Invalid params: filter needs mint or programId")


def _validate_address_list(params: List[Any]) -> None:
    addresses = params[0]
    if not isinstance(addresses, list) or not addresses:
        raise InvalidParamsError("Invalid params: expected a list of addresses")
    for address in addresses:
        if not is_valid_address(address):
            raise InvalidParamsError(f"Invalid params: malformed address {address!r}")


def _validate_integer(params: List[Any]) -> None:
    if isinstance(params[0], bool) or not isinstance(params[0], int):
        raise InvalidParamsError("Invalid params: expected an integer")


@dataclass(frozen=True)
class MethodSpec:
    """One supported RPC method."""
    name: str
    handler: Handler
    min_params: int = 0
    address_params: Tuple[int, ...] = ()
    defaults: Dict[int, Any] = field(default_factory=dict)
    validator: Optional[Validator] = None

    def validate(self, params: List[Any]) -> None:
        """
        Check required params.

        Raises:
            InvalidParamsError: If params are missing or malformed
        """
        if len(params) < self.min_params:
            raise InvalidParamsError(
                f"Invalid params: {self.name} expects at least {self.min_params} param(s)"
            )
        for position in self.address_params:
            if position < len(params) and not is_valid_address(params[position]):
                raise InvalidParamsError(
                    f"Invalid params: malformed address {params[position]!r}"
                )
        if self.validator is not None:
            self.validator(params)

    def upstream_params(self, params: List[Any]) -> List[Any]:
        """Params as sent upstream, with defaults filled in."""
        filled = list(params)
        for position in sorted(self.defaults):
            if position == len(filled):
                filled.append(self.defaults[position])
            elif position < len(filled) and filled[position] is None:
                filled[position] = self.defaults[position]
        return filled

    def execute(self, upstream: Upstream, params: List[Any]) -> Any:
        return self.handler(upstream, self.upstream_params(params))


def _spec(name: str, **kwargs) -> MethodSpec:
    kwargs.setdefault("handler", passthrough(name))
    return MethodSpec(name=name, **kwargs)


METHODS: Dict[str, MethodSpec] = {
    spec.name: spec
    for spec in (
        _spec("getAccountInfo", min_params=1, address_params=(0,),
              defaults={1: {"encoding": "base64"}}),
        _spec("getBalance", min_params=1, address_params=(0,)),
        _spec("getBlock", min_params=1),
        _spec("getBlockHeight"),
        _spec("getSlot"),
        _spec("getTransaction", min_params=1),
        _spec("getSignaturesForAddress", min_params=1, address_params=(0,),
              defaults={1: {"limit": 10}}),
        _spec("getProgramAccounts", min_params=1, address_params=(0,)),
        _spec("getTokenAccountBalance", min_params=1, address_params=(0,)),
        _spec("getTokenAccountsByOwner", min_params=2, address_params=(0,),
              validator=_validate_token_filter),
        _spec("getEpochInfo"),
        _spec("getLatestBlockhash"),
        _spec("getFeeForMessage", min_params=1),
        _spec("getFees", handler=_get_fees),
        _spec("getMinimumBalanceForRentExemption", min_params=1,
              validator=_validate_integer),
        _spec("getMultipleAccounts", min_params=1, validator=_validate_address_list),
        _spec("getInflationGovernor"),
        _spec("getInflationRate"),
        _spec("getSupply"),
        _spec("getTokenSupply", min_params=1, address_params=(0,)),
        _spec("getVoteAccounts"),
        _spec("isBlockhashValid", min_params=1),
        _spec("getIdentity"),
        _spec("getVersion"),
    )
}
