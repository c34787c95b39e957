"""
Core cache data structures.
"""
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

Clock = Callable[[], float]


def now_ms(clock: Clock = time.time) -> int:
    """Current clock reading in epoch milliseconds."""
    return int(clock() * 1000)


class TtlTier(Enum):
    """Freshness tiers for RPC methods."""
    VOLATILE = "volatile"        # latest slot / blockhash, seconds
    EPOCH = "epoch"              # epoch and fee level, minutes
    ACCOUNT = "account"          # balances and token state, 1 hour
    HISTORICAL = "historical"    # confirmed transactions and blocks, 1 month
    SUPPLY = "supply"            # supply and program data, 1 day
    STATIC = "static"            # node metadata, 1 week


@dataclass
class CacheMetadata:
    """Bookkeeping stored alongside every cached payload."""
    created_at: int                 # epoch ms
    method: str
    params: List[Any] = field(default_factory=list)
    expires_at: Optional[int] = None  # epoch ms; None = never expires

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "createdAt": self.created_at,
            "method": self.method,
            "params": self.params,
        }
        if self.expires_at is not None:
            result["expiresAt"] = self.expires_at
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheMetadata":
        return cls(
            created_at=int(data["createdAt"]),
            method=data["method"],
            params=list(data.get("params") or []),
            expires_at=data.get("expiresAt"),
        )


@dataclass
class CacheEntry:
    """
    A cached RPC result as held by the primary store.

    Immutable once written; a rewrite under the same key replaces it.
    """
    payload: Any
    metadata: CacheMetadata

    def is_expired(self, at_ms: int) -> bool:
        """True if the entry carries an expiry that has passed."""
        expires_at = self.metadata.expires_at
        return expires_at is not None and expires_at <= at_ms

    def to_dict(self) -> Dict[str, Any]:
        return {"data": self.payload, "metadata": self.metadata.to_dict()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheEntry":
        return cls(
            payload=data.get("data"),
            metadata=CacheMetadata.from_dict(data["metadata"]),
        )
