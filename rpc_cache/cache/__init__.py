"""
Two-tier RPC cache: primary store, secondary index, tiered TTL and
single-flight upstream fetches.

The orchestrator lives in ``rpc_cache.cache.manager``.
"""
from .core import CacheEntry, CacheMetadata, TtlTier, now_ms
from .ttl_policies import (
    TTL_CONFIG,
    METHOD_TIERS,
    get_ttl_ms,
    get_tier_for_method,
)
from .keys import PRIMARY_PREFIX, canonical_serialize, content_hash, primary_key
from .coalescer import RequestCoalescer
from .store import (
    BlobStore,
    KeyValueStore,
    PrimaryStore,
    SqlBlobStore,
    SqlKeyValueStore,
)
from .index import InvalidAddressError, SecondaryIndex, semantic_key

__all__ = [
    # Core types
    "CacheEntry",
    "CacheMetadata",
    "TtlTier",
    "now_ms",
    # TTL policies
    "TTL_CONFIG",
    "METHOD_TIERS",
    "get_ttl_ms",
    "get_tier_for_method",
    # Keys
    "PRIMARY_PREFIX",
    "canonical_serialize",
    "content_hash",
    "primary_key",
    # Coalescing
    "RequestCoalescer",
    # Stores
    "BlobStore",
    "KeyValueStore",
    "PrimaryStore",
    "SqlBlobStore",
    "SqlKeyValueStore",
    # Index
    "InvalidAddressError",
    "SecondaryIndex",
    "semantic_key",
]
